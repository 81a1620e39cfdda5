"""
Resolution Cascade - locate usage/device pairs across servers of varying capability.

FHIR servers differ in which search parameters they index, whether they
honour ``_include`` and which release of the usage resource they host. The
cascade tries an ordered list of strategies and stops at the first one that
yields any pairs:

1. DeviceUseStatement by subject (``subject=``, then ``patient=``), with included Devices
2. DeviceUseStatement by application tag, with included Devices
3. R5 DeviceUsage by subject, patient, then tag; Devices read one by one
4. Application-tagged Devices as synthetic pairs (registered, never consumed)

A failing query counts as zero results for its strategy; it never aborts the
cascade.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from medstock.fhir.gateway import FHIRGateway
from medstock.fhir.resources import bundle_entries, relative_reference
from medstock.inventory.models import CascadeContext, UsagePair, UsageResourceType

logger = logging.getLogger(__name__)

Strategy = Callable[[CascadeContext], Awaitable[list[UsagePair]]]

DUS = UsageResourceType.DEVICE_USE_STATEMENT.value
DEVICE_USAGE = UsageResourceType.DEVICE_USAGE.value
INCLUDE_DEVICE = f"_include={DUS}:device"
SORT_RECENT = "_sort=-_lastUpdated"


def device_reference_of(usage: dict[str, Any]) -> str | None:
    """Device reference of a usage (R4 Reference or R5 CodeableReference)."""
    device = usage.get("device")
    if not isinstance(device, dict):
        return None
    ref = device.get("reference")
    if isinstance(ref, dict):
        ref = ref.get("reference")
    return ref if isinstance(ref, str) and ref else None


def pairs_from_bundle(bundle: Any, usage_type: str = DUS) -> list[UsagePair]:
    """Pair each usage in ``bundle`` with a Device included in the same bundle."""
    resources = [r for r in bundle_entries(bundle) if isinstance(r, dict)]
    devices = {
        f"Device/{r['id']}": r
        for r in resources
        if r.get("resourceType") == "Device" and r.get("id")
    }

    pairs = []
    for usage in resources:
        if usage.get("resourceType") != usage_type:
            continue
        ref = device_reference_of(usage)
        device = devices.get(relative_reference(ref)) if ref else None
        pairs.append(UsagePair(usage=usage, device=device))
    return pairs


class ResolutionCascade:
    """
    Ordered fallback search for usage/device pairs.

    Each strategy is a coroutine taking a CascadeContext and returning pairs,
    so strategies can be exercised in isolation.

    Usage:
        cascade = ResolutionCascade(gateway)
        pairs = await cascade.find_pairs(CascadeContext(tag_param=tag.search_param, patient_id="123"))
    """

    def __init__(self, gateway: FHIRGateway) -> None:
        self.gateway = gateway

    @property
    def strategies(self) -> list[tuple[str, Strategy]]:
        return [
            ("statements_by_subject", self.statements_by_subject),
            ("statements_by_tag", self.statements_by_tag),
            ("device_usages", self.device_usages),
            ("registered_devices", self.registered_devices),
        ]

    async def find_pairs(
        self,
        context: CascadeContext,
        include_registered: bool = True,
    ) -> list[UsagePair]:
        """Run strategies in order, returning the first non-empty result.

        Args:
            context: Patient/tag scope
            include_registered: Fall back to never-consumed Devices (stock view);
                the used-devices view turns this off
        """
        for name, strategy in self.strategies:
            if name == "registered_devices" and not include_registered:
                continue
            pairs = await strategy(context)
            if pairs:
                logger.debug(f"Resolution cascade: {name} found {len(pairs)} pair(s)")
                return pairs
            logger.debug(f"Resolution cascade: {name} found nothing")
        return []

    # ------------------------------------------
    # Strategies
    # ------------------------------------------
    async def statements_by_subject(self, context: CascadeContext) -> list[UsagePair]:
        subject = context.subject_reference
        if not subject:
            return []
        for param in ("subject", "patient"):
            bundle = await self._search(f"{DUS}?{param}={subject}&{INCLUDE_DEVICE}&{SORT_RECENT}")
            pairs = pairs_from_bundle(bundle)
            if pairs:
                return pairs
        return []

    async def statements_by_tag(self, context: CascadeContext) -> list[UsagePair]:
        bundle = await self._search(f"{DUS}?_tag={context.tag_param}&{INCLUDE_DEVICE}&{SORT_RECENT}")
        return pairs_from_bundle(bundle)

    async def device_usages(self, context: CascadeContext) -> list[UsagePair]:
        queries = []
        if context.subject_reference:
            queries.append(f"{DEVICE_USAGE}?subject={context.subject_reference}&{SORT_RECENT}")
            queries.append(f"{DEVICE_USAGE}?patient={context.subject_reference}&{SORT_RECENT}")
        queries.append(f"{DEVICE_USAGE}?_tag={context.tag_param}&{SORT_RECENT}")

        for query in queries:
            pairs = pairs_from_bundle(await self._search(query), usage_type=DEVICE_USAGE)
            if pairs:
                return await self.resolve_devices(pairs)
        return []

    async def registered_devices(self, context: CascadeContext) -> list[UsagePair]:
        bundle = await self._search(f"Device?_tag={context.tag_param}&{SORT_RECENT}")
        pairs = []
        for device in bundle_entries(bundle):
            if not isinstance(device, dict):
                continue
            last_updated = (device.get("meta") or {}).get("lastUpdated")
            pairs.append(UsagePair(usage={"meta": {"lastUpdated": last_updated}}, device=device))
        return pairs

    # ------------------------------------------
    # Helpers
    # ------------------------------------------
    async def resolve_devices(self, pairs: list[UsagePair]) -> list[UsagePair]:
        """Read the referenced Device for every pair that lacks one."""
        for pair in pairs:
            if pair.device is not None:
                continue
            ref = device_reference_of(pair.usage)
            if not ref:
                continue
            try:
                pair.device = await self.gateway.read(relative_reference(ref))
            except Exception as e:
                logger.debug(f"Device lookup for {ref} failed: {e}")
        return pairs

    async def _search(self, query: str) -> Any:
        try:
            return await self.gateway.search(query)
        except Exception as e:
            logger.debug(f"Cascade query failed ({query}): {e}")
            return None
