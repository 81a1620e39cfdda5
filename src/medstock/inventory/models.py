"""
Data models for inventory reconciliation and views.

Defines:
- UsageResourceType: R4/R5 names of the usage resource
- ReconcileOutcome: create-vs-update decision for one save
- TransactionBundle: Device + usage pair linked by a temporary id
- UsagePair / CascadeContext: input and output of the resolution cascade
- GroupedInventoryRow / DeviceDetail: view-only rows
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class UsageResourceType(str, Enum):
    """Usage resource name per FHIR release."""
    DEVICE_USE_STATEMENT = "DeviceUseStatement"  # R4
    DEVICE_USAGE = "DeviceUsage"                 # R5


class StockStatus(str, Enum):
    """Operator-facing stock band."""
    ADEQUATE = "Adequate"
    LOW = "Low"
    CRITICAL = "Critical"
    OUT_OF_STOCK = "Out of Stock"

    @classmethod
    def for_level(cls, level: int) -> "StockStatus":
        if level > 10:
            return cls.ADEQUATE
        if level > 5:
            return cls.LOW
        if level > 0:
            return cls.CRITICAL
        return cls.OUT_OF_STOCK


def new_temp_reference() -> str:
    """Temporary local identifier linking entries inside one bundle."""
    return f"urn:uuid:{uuid4()}"


@dataclass
class ReconcileOutcome:
    """
    Result of reconciling one scan against the store.

    Attributes:
        device_entry: New Device resource to create, None when an existing one was updated
        device_ref_for_usage: ``Device/<id>`` or the bundle's temporary ``urn:uuid:`` reference
        stock_level: Stock level written into the Device
    """
    device_entry: dict[str, Any] | None
    device_ref_for_usage: str
    stock_level: int = 0

    @property
    def existing(self) -> bool:
        return self.device_entry is None


@dataclass
class TransactionBundle:
    """
    At most one Device create and one usage create, linked by ``temp_ref``.

    Ephemeral: built and submitted within a single save.
    """
    temp_ref: str = field(default_factory=new_temp_reference)
    device: dict[str, Any] | None = None
    usage: dict[str, Any] | None = None

    def to_fhir(self) -> dict[str, Any]:
        """Serialize as a FHIR ``transaction`` Bundle."""
        entries: list[dict[str, Any]] = []
        if self.device is not None:
            entries.append({
                "fullUrl": self.temp_ref,
                "resource": self.device,
                "request": {"method": "POST", "url": "Device"},
            })
        if self.usage is not None:
            entries.append({
                "resource": self.usage,
                "request": {
                    "method": "POST",
                    "url": self.usage.get("resourceType", UsageResourceType.DEVICE_USE_STATEMENT.value),
                },
            })
        return {"resourceType": "Bundle", "type": "transaction", "entry": entries}


@dataclass
class SaveResult:
    """What one registration save persisted."""
    response: Any
    device_ref: str
    stock_level: int
    existing_device: bool


@dataclass
class UsagePair:
    """A usage resource and the Device it references (None when unresolved)."""
    usage: dict[str, Any]
    device: dict[str, Any] | None = None


@dataclass
class CascadeContext:
    """
    Scope for locating usage/device pairs.

    Attributes:
        tag_param: Encoded ``_tag`` value for the application tag
        patient_id: Patient in context, None when unknown
    """
    tag_param: str
    patient_id: str | None = None

    @property
    def subject_reference(self) -> str | None:
        return f"Patient/{self.patient_id}" if self.patient_id else None


@dataclass
class GroupedInventoryRow:
    """One deduplicated inventory line (view-only)."""
    key: str
    device: dict[str, Any] | None
    usages: list[dict[str, Any]] = field(default_factory=list)
    count: int = 0
    when: datetime | None = None


@dataclass
class DeviceDetail:
    """Fields shown on the detail view of a usage/device pair."""
    name: str
    category: str
    supplier: str
    stock_level: int
    stock_status: StockStatus
    barcode: str
    device_path: str | None
    usage_path: str | None
    subject: str
    auto_identified: bool
    notes: list[str] = field(default_factory=list)
