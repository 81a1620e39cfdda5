"""
Inventory Upsert Reconciler - decide create-vs-update for a scanned device.

A scan of a barcode already registered in the store consumes one unit of the
existing Device (stock is decremented and the Device is written back whole).
Anything else registers a new Device whose stock is the described level minus
the unit being used.

Lookup or update failures never block a save: they are logged and the scan is
registered as a new Device built from the original description.
"""

import logging
from typing import Any
from urllib.parse import quote
from uuid import uuid4

from medstock.barcode.resolver import DeviceDescription
from medstock.fhir.gateway import FHIRGateway
from medstock.fhir.resources import (
    BARCODE_SYSTEM,
    CATEGORY_EXTENSION_URL,
    INVENTORY_SYSTEM,
    SUPPLIER_EXTENSION_URL,
    AppTag,
    bundle_entries,
    get_stock_level,
    set_stock_level,
)
from medstock.inventory.models import ReconcileOutcome

logger = logging.getLogger(__name__)


def consume_one(level: int) -> int:
    """Stock after using one unit; never negative."""
    return max(0, (level or 0) - 1)


def build_device(
    description: DeviceDescription,
    uid: str,
    tag: AppTag,
    barcode: str | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    """Build a new FHIR Device resource from a description.

    Args:
        description: Resolved/entered device description
        uid: Inventory UID (also the temporary bundle reference)
        tag: Application tag for ``meta.tag``
        barcode: Scanned barcode, adds a barcode identifier and UDI carrier
        note: Free-text note for ``note[0]``

    Returns:
        Device resource dict with stock written to both shadow fields
    """
    category = description.Category.strip()
    supplier = description.Supplier.strip()

    identifiers = [{"system": INVENTORY_SYSTEM, "value": uid}]
    if barcode:
        identifiers.append({"system": BARCODE_SYSTEM, "value": barcode})

    properties: list[dict[str, Any]] = []
    extensions: list[dict[str, Any]] = []
    if category:
        properties.append({"type": {"text": "category"}, "valueString": category})
        extensions.append({"url": CATEGORY_EXTENSION_URL, "valueString": category})
    if supplier:
        properties.append({"type": {"text": "supplier"}, "valueString": supplier})
        extensions.append({"url": SUPPLIER_EXTENSION_URL, "valueString": supplier})

    device: dict[str, Any] = {
        "resourceType": "Device",
        "status": "active",
        "meta": tag.meta(),
        "identifier": identifiers,
        "deviceName": [{"name": description.Products.strip(), "type": "user-friendly-name"}],
        "type": {"text": category},
        "property": properties,
        "extension": extensions,
    }
    if supplier:
        device["manufacturer"] = supplier
    if barcode:
        device["udiCarrier"] = [{"carrierHRF": barcode, "entryType": "barcode"}]
    if note:
        device["note"] = [{"text": note}]

    return set_stock_level(device, description.StockLevel)


class InventoryReconciler:
    """
    Reconciles a scan with existing inventory.

    Usage:
        reconciler = InventoryReconciler(gateway)
        outcome = await reconciler.reconcile(description, scanned_barcode="1000000000001")
        if outcome.existing:
            ...  # Device already updated; reference it from the usage
    """

    def __init__(self, gateway: FHIRGateway, tag: AppTag | None = None) -> None:
        self.gateway = gateway
        self.tag = tag or AppTag.from_settings()

    async def reconcile(
        self,
        description: DeviceDescription,
        scanned_barcode: str | None = None,
        *,
        uid: str | None = None,
        note: str | None = None,
    ) -> ReconcileOutcome:
        """
        Decide whether the scan updates an existing Device or creates a new one.

        Args:
            description: Device description from the form
            scanned_barcode: Raw barcode when the device was scanned
            uid: Inventory UID for a new Device (default: random UUID)
            note: Note attached to a new Device

        Returns:
            ReconcileOutcome with the create entry (or None) and the usage reference
        """
        uid = uid or str(uuid4())

        if scanned_barcode:
            try:
                outcome = await self._consume_existing(scanned_barcode)
                if outcome is not None:
                    return outcome
            except Exception as e:
                logger.warning(f"Device lookup/update failed, registering as new: {e}")

        level = consume_one(description.StockLevel)
        device = build_device(
            description.model_copy(update={"StockLevel": level}),
            uid,
            self.tag,
            barcode=scanned_barcode,
            note=note,
        )
        return ReconcileOutcome(
            device_entry=device,
            device_ref_for_usage=f"urn:uuid:{uid}",
            stock_level=level,
        )

    async def find_by_barcode(self, barcode: str) -> dict[str, Any] | None:
        """Most recently updated application-tagged Device carrying ``barcode``."""
        query = (
            f"Device?identifier={BARCODE_SYSTEM}|{quote(barcode, safe='')}"
            f"&_tag={self.tag.search_param}&_sort=-_lastUpdated&_count=1"
        )
        bundle = await self.gateway.search(query)
        for resource in bundle_entries(bundle):
            if isinstance(resource, dict) and resource.get("id"):
                return resource
        return None

    async def _consume_existing(self, barcode: str) -> ReconcileOutcome | None:
        existing = await self.find_by_barcode(barcode)
        if existing is None:
            return None

        level = consume_one(get_stock_level(existing))
        set_stock_level(existing, level)

        ref = f"Device/{existing['id']}"
        await self.gateway.update(ref, existing)
        logger.info(f"Consumed one unit of {ref}, stock now {level}")

        return ReconcileOutcome(device_entry=None, device_ref_for_usage=ref, stock_level=level)
