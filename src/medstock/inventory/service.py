"""
Inventory Service - registration, stock and detail operations behind the views.

Wires the reconciler, orchestrator and cascade to one gateway:
- save(): validate form -> reconcile -> build bundle -> submit
- reorder(): add received units to a Device
- delete_record(): remove a usage and its Device
- load_stock() / load_used(): rebuild the stock and used-device views
- describe(): detail-view fields for one usage/device pair

One save may be in flight per service instance. Two service instances
updating the same Device race; the last write wins.
"""

import copy
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from medstock.barcode.resolver import DeviceDescription, resolve_barcode
from medstock.fhir.errors import SaveInProgressError, ValidationError
from medstock.fhir.gateway import FHIRGateway
from medstock.fhir.resources import (
    AppTag,
    barcode_of,
    category_of,
    display_name_of,
    get_stock_level,
    set_stock_level,
    supplier_of,
)
from medstock.inventory.aggregation import group_pairs
from medstock.inventory.cascade import ResolutionCascade, device_reference_of
from medstock.inventory.models import (
    CascadeContext,
    DeviceDetail,
    GroupedInventoryRow,
    SaveResult,
    StockStatus,
    TransactionBundle,
    UsagePair,
    UsageResourceType,
)
from medstock.inventory.reconciler import InventoryReconciler
from medstock.inventory.transaction import TransactionOrchestrator

logger = logging.getLogger(__name__)

PLACEHOLDER_SUBJECT = "Patient/example"
AUTO_IDENTIFIED_MARK = "(auto-identified)"


def utc_now_iso() -> str:
    """Current time as a FHIR instant (``...Z``, millisecond precision)."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RegistrationForm(BaseModel):
    """Registration form state."""

    category: str = ""
    products: str = ""
    supplier: str = ""
    stock_level: int = Field(default=0, ge=0)
    scanned_barcode: str | None = None
    auto_identified: bool = False
    notes: str = ""

    @classmethod
    def from_scan(cls, raw: str, notes: str = "") -> "RegistrationForm":
        """Pre-fill the form from a scanned barcode."""
        described = resolve_barcode(raw)
        return cls(
            category=described.Category,
            products=described.Products,
            supplier=described.Supplier,
            stock_level=described.StockLevel,
            scanned_barcode=raw,
            auto_identified=True,
            notes=notes,
        )

    def description(self) -> DeviceDescription:
        return DeviceDescription(
            Category=self.category,
            Products=self.products,
            Supplier=self.supplier,
            StockLevel=self.stock_level,
        )


def build_note(created_at: str, auto_identified: bool, notes: str = "") -> str:
    note = f"Medical device created at {created_at}"
    if auto_identified:
        note += f" {AUTO_IDENTIFIED_MARK}"
    if notes:
        note += f"\nNotes: {notes}"
    return note


class ViewGuard:
    """Generation counter that marks view loads as stale once superseded.

    Usage:
        token = guard.begin()
        rows = await service.load_stock()
        if guard.is_current(token):
            render(rows)
    """

    def __init__(self) -> None:
        self._generation = 0

    def begin(self) -> int:
        self._generation += 1
        return self._generation

    def invalidate(self) -> None:
        self._generation += 1

    def is_current(self, token: int) -> bool:
        return token == self._generation


class InventoryService:
    """
    Registration and stock operations against one FHIR store.

    Attributes:
        gateway: FHIR gateway (carries the auth context)
        tag: Application tag for created resources and scoped searches
    """

    def __init__(
        self,
        gateway: FHIRGateway,
        tag: AppTag | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.gateway = gateway
        self.tag = tag or AppTag.from_settings()
        self.reconciler = InventoryReconciler(gateway, self.tag)
        self.orchestrator = TransactionOrchestrator(gateway)
        self.cascade = ResolutionCascade(gateway)
        self._clock = clock
        self._saving = False

    @property
    def saving(self) -> bool:
        return self._saving

    @property
    def cascade_context(self) -> CascadeContext:
        return CascadeContext(tag_param=self.tag.search_param, patient_id=self.gateway.patient_id)

    # ------------------------------------------
    # Registration
    # ------------------------------------------
    async def save(self, form: RegistrationForm) -> SaveResult:
        """
        Register one use of a device.

        Args:
            form: Registration form state

        Returns:
            SaveResult with the store response and the Device reference used

        Raises:
            ValidationError: Products or category missing
            SaveInProgressError: Another save is running on this service
            FHIRRequestError: The store rejected both the transaction and the fallback
        """
        if not form.products.strip() or not form.category.strip():
            raise ValidationError("Please fill in or scan device product/category information")
        if self._saving:
            raise SaveInProgressError("A save is already in progress")

        self._saving = True
        try:
            now = self._clock()
            note = build_note(now, form.auto_identified, form.notes)
            bundle = TransactionBundle()
            uid = bundle.temp_ref.removeprefix("urn:uuid:")

            outcome = await self.reconciler.reconcile(
                form.description(),
                form.scanned_barcode,
                uid=uid,
                note=note,
            )
            bundle.device = outcome.device_entry
            bundle.usage = self._build_usage(outcome.device_ref_for_usage, now, note)

            response = await self.orchestrator.submit(bundle)
            logger.info(
                f"Saved usage of {outcome.device_ref_for_usage} "
                f"({'existing' if outcome.existing else 'new'} device, stock {outcome.stock_level})"
            )
            return SaveResult(
                response=response,
                device_ref=outcome.device_ref_for_usage,
                stock_level=outcome.stock_level,
                existing_device=outcome.existing,
            )
        finally:
            self._saving = False

    def _build_usage(self, device_ref: str, timing: str, note: str) -> dict[str, Any]:
        return {
            "resourceType": UsageResourceType.DEVICE_USE_STATEMENT.value,
            "status": "completed",
            "meta": self.tag.meta(),
            "device": {"reference": device_ref},
            "subject": {"reference": self.gateway.auth.subject_reference or PLACEHOLDER_SUBJECT},
            "timingDateTime": timing,
            "note": [{"text": note}],
        }

    # ------------------------------------------
    # Stock
    # ------------------------------------------
    async def reorder(self, device: dict[str, Any], quantity: int) -> Any:
        """Add ``quantity`` received units to ``device`` and write it back."""
        if not device or not device.get("id"):
            raise ValidationError("Missing device ID.")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Please enter a positive integer.")

        updated = copy.deepcopy(device)
        level = get_stock_level(updated) + quantity
        set_stock_level(updated, level)
        logger.info(f"Reorder Device/{device['id']}: +{quantity} -> {level}")
        return await self.gateway.update(f"Device/{device['id']}", updated)

    async def delete_record(self, usage: dict[str, Any] | None, device: dict[str, Any] | None) -> None:
        """Delete a usage and then its Device; the first failure propagates."""
        if usage and usage.get("id"):
            usage_type = usage.get("resourceType") or UsageResourceType.DEVICE_USE_STATEMENT.value
            await self.gateway.delete(f"{usage_type}/{usage['id']}")
        if device and device.get("id"):
            await self.gateway.delete(f"Device/{device['id']}")

    # ------------------------------------------
    # Views
    # ------------------------------------------
    async def load_stock(self) -> list[GroupedInventoryRow]:
        pairs = await self.cascade.find_pairs(self.cascade_context)
        return group_pairs(pairs)

    async def load_used(self) -> list[UsagePair]:
        return await self.cascade.find_pairs(self.cascade_context, include_registered=False)

    async def fetch_device(self, device_id: str) -> dict[str, Any]:
        return await self.gateway.read(f"Device/{device_id}")

    @staticmethod
    def describe(usage: dict[str, Any] | None, device: dict[str, Any] | None) -> DeviceDetail:
        """Detail-view fields for a usage/device pair."""
        usage = usage or {}
        level = get_stock_level(device)

        barcode = ""
        carriers = (device or {}).get("udiCarrier") or []
        if carriers and isinstance(carriers[0], dict):
            barcode = str(carriers[0].get("carrierHRF") or "")
        barcode = barcode or barcode_of(device)

        device_notes = (device or {}).get("note") or []
        first_note = device_notes[0].get("text", "") if device_notes and isinstance(device_notes[0], dict) else ""

        device_id = (device or {}).get("id")
        usage_type = usage.get("resourceType") or UsageResourceType.DEVICE_USE_STATEMENT.value

        return DeviceDetail(
            name=display_name_of(device) or "(Not filled)",
            category=category_of(device),
            supplier=supplier_of(device),
            stock_level=level,
            stock_status=StockStatus.for_level(level),
            barcode=barcode,
            device_path=f"Device/{device_id}" if device_id else None,
            usage_path=f"{usage_type}/{usage['id']}" if usage.get("id") else None,
            subject=(usage.get("subject") or {}).get("reference") or PLACEHOLDER_SUBJECT,
            auto_identified=AUTO_IDENTIFIED_MARK in (first_note or ""),
            notes=[n.get("text", "") for n in usage.get("note") or [] if isinstance(n, dict)],
        )

    @staticmethod
    def usage_device_reference(usage: dict[str, Any] | None) -> str | None:
        return device_reference_of(usage) if usage else None
