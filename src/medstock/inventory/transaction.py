"""
Transaction Orchestrator - submit a Device + usage pair as one unit.

Primary path: POST the whole Bundle to the store root as a FHIR transaction.

Fallback (any primary-path error): stepped creates.
1. Create the Device alone and capture its server id
2. Rewrite the usage's temporary device reference to ``Device/<id>``
3. Create the usage
4. Return a synthesized ``batch-response`` Bundle of what was created

There is no compensating rollback. If step 3 fails after step 1 succeeded,
the Device stays persisted without a usage; the error propagates and the
orphaned Device is logged.
"""

import logging
from typing import Any

from medstock.fhir.gateway import FHIRGateway
from medstock.inventory.models import TransactionBundle

logger = logging.getLogger(__name__)


def _device_reference(usage: dict[str, Any]) -> str | None:
    device = usage.get("device")
    if isinstance(device, dict):
        ref = device.get("reference")
        if isinstance(ref, str):
            return ref
    return None


class TransactionOrchestrator:
    """
    Submits TransactionBundles with a stepped-write fallback.

    Usage:
        orchestrator = TransactionOrchestrator(gateway)
        result = await orchestrator.submit(bundle)
    """

    def __init__(self, gateway: FHIRGateway) -> None:
        self.gateway = gateway

    async def submit(self, bundle: TransactionBundle) -> Any:
        """
        Submit ``bundle`` atomically when the store allows it, stepwise otherwise.

        Args:
            bundle: Device/usage pair to persist

        Returns:
            Transaction response from the store, or a synthesized batch-response Bundle

        Raises:
            Exception: The original transaction error when the bundle has no entries,
                or the error of a failed stepped create
        """
        try:
            return await self.gateway.transaction(bundle.to_fhir())
        except Exception as e:
            if bundle.device is None and bundle.usage is None:
                raise
            logger.warning(f"Transaction POST to store root failed; falling back to stepped create: {e}")
            return await self._stepped_create(bundle)

    async def _stepped_create(self, bundle: TransactionBundle) -> dict[str, Any]:
        created: list[dict[str, Any]] = []
        created_device: Any = None

        if bundle.device is not None:
            created_device = await self.gateway.create("Device", bundle.device)
            if created_device is not None:
                created.append({"resource": created_device})

        if bundle.usage is not None:
            usage = dict(bundle.usage)
            device_id = created_device.get("id") if isinstance(created_device, dict) else None

            if _device_reference(usage) == bundle.temp_ref:
                if device_id:
                    usage["device"] = {"reference": f"Device/{device_id}"}
                else:
                    logger.warning("Created Device returned no id; usage keeps its temporary reference")

            usage_type = usage.get("resourceType", "DeviceUseStatement")
            try:
                created_usage = await self.gateway.create(usage_type, usage)
            except Exception:
                if device_id:
                    logger.error(f"Usage create failed; Device/{device_id} left without a usage record")
                raise
            created.append({"resource": created_usage})

        return {"resourceType": "Bundle", "type": "batch-response", "entry": created}
