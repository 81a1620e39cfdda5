"""
Barcode Resolver - map a raw scanned/typed string to a DeviceDescription.

Resolution order (first match wins):
1. Static catalog keyed by the literal barcode
2. JSON QR payload carrying ``Products`` or ``name``
3. GS1-style hints for 13-character codes (``100...`` / ``010...``)
4. Uncategorized default

Pure and deterministic: no I/O, never raises.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DeviceDescription(BaseModel):
    """Structured device description used as registration form state."""

    Category: str
    Products: str
    Supplier: str
    StockLevel: int = Field(default=0, ge=0)


BARCODE_CATALOG: dict[str, dict[str, Any]] = {
    "1000000000001": {"Category": "Guide Catheter", "Products": "6FR JR4.0", "Supplier": "Medtronic", "StockLevel": 50},
    "1000000000002": {"Category": "Diagnostic Catheter", "Products": "5FR TIG", "Supplier": "Terumo", "StockLevel": 100},
    "1000000000003": {"Category": "Guide Wire", "Products": "260J 0.35", "Supplier": "Merit", "StockLevel": 100},
    "1000000000004": {"Category": "Interventional Wire", "Products": "Sion Blue", "Supplier": "Asahi", "StockLevel": 100},
    "0101234567890": {"Category": "Stent", "Products": "3.5mm*30mm", "Supplier": "Medtronic Onyx Frontier", "StockLevel": 5},
    "1000000000006": {"Category": "Balloon NC", "Products": "3.5mm*10mm", "Supplier": "Boston Scientific NC Emerge", "StockLevel": 9},
    "1000000000007": {"Category": "Balloon Semi", "Products": "3.0mm*15mm", "Supplier": "Boston Scientific Emerge", "StockLevel": 12},
}

# 13-character prefix -> category
PATTERN_HINTS: dict[str, str] = {
    "100": "Medical Device",
    "010": "Implantable Device",
}


def _parse_payload(raw: str) -> dict[str, Any] | None:
    """Parse a JSON object payload, None for anything else."""
    try:
        parsed = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def _stock(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return 0
    return value if isinstance(value, int) and value > 0 else 0


def _from_payload(payload: dict[str, Any]) -> DeviceDescription | None:
    products = _text(payload.get("Products")) or _text(payload.get("name"))
    if not products:
        return None
    return DeviceDescription(
        Category=_text(payload.get("Category")) or "Uncategorized",
        Products=products,
        Supplier=_text(payload.get("Supplier")) or "Unknown Supplier",
        StockLevel=_stock(payload.get("StockLevel")),
    )


def resolve_barcode(raw: str) -> DeviceDescription:
    """Resolve a raw barcode string into a DeviceDescription.

    Args:
        raw: Text decoded from a barcode/QR code or typed by the operator

    Returns:
        DeviceDescription (never raises; unknown input yields the default)

    Examples:
        >>> resolve_barcode("1001234567890").Category
        'Medical Device'
        >>> resolve_barcode("UNKNOWN-CODE").Supplier
        'Unknown'
    """
    raw = raw if isinstance(raw, str) else ""

    entry = BARCODE_CATALOG.get(raw)
    if entry is not None:
        return DeviceDescription(**entry)

    payload = _parse_payload(raw)
    if payload is not None:
        described = _from_payload(payload)
        if described is not None:
            return described
        logger.debug("JSON barcode payload has no Products/name, falling through")

    if len(raw) == 13:
        for prefix, category in PATTERN_HINTS.items():
            if raw.startswith(prefix):
                return DeviceDescription(Category=category, Products=raw, Supplier="Unknown", StockLevel=0)

    return DeviceDescription(Category="Uncategorized", Products=raw, Supplier="Unknown", StockLevel=0)
