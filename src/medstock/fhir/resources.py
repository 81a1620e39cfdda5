"""
FHIR resource helpers shared by the gateway, reconciler and views.

Covers three concerns:
- Reference/bundle plumbing (id_from_location, bundle_entries, relative_reference)
- The application tag stamped on every resource MedStock creates
- Accessors for Device fields that live in more than one place

Stock level is stored twice on a Device: once in ``property[]`` and once in
``extension[]``. Call sites go through get_stock_level/set_stock_level only,
so both copies are always rewritten together.
"""

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from medstock.core.settings import EnvSettings, settings

# Identifier systems
INVENTORY_SYSTEM = "urn:demo:inventory"
BARCODE_SYSTEM = "urn:barcode"

# Shadow field keys
STOCK_PROPERTY = "stockLevel"
STOCK_EXTENSION_URL = "urn:demo:stockLevel"
CATEGORY_EXTENSION_URL = "urn:demo:category"
SUPPLIER_EXTENSION_URL = "urn:demo:supplier"

_LOCATION_RE = re.compile(r"^[A-Za-z]+/([^/]+)")


# ============================================
# References & Bundles
# ============================================
def id_from_location(location: str | None) -> str | None:
    """Extract the logical id from a ``Type/id[/_history/n]`` reference.

    Examples:
        >>> id_from_location("Device/123/_history/1")
        '123'
        >>> id_from_location(None) is None
        True
    """
    if not location:
        return None
    match = _LOCATION_RE.match(location)
    return match.group(1) if match else None


def bundle_entries(bundle: Any) -> list[Any]:
    """Flatten ``bundle.entry[].resource`` into a list, in entry order."""
    if not isinstance(bundle, dict):
        return []
    entries = bundle.get("entry")
    if not isinstance(entries, list):
        return []
    return [
        entry["resource"]
        for entry in entries
        if isinstance(entry, dict) and entry.get("resource") is not None
    ]


def relative_reference(reference: str) -> str:
    """Turn an absolute Device URL into a ``Device/<id>`` path the gateway can read."""
    if reference.startswith("http") and "/Device" in reference:
        reference = reference[reference.index("/Device") :]
    return reference.lstrip("/")


# ============================================
# Application Tag
# ============================================
@dataclass(frozen=True)
class AppTag:
    """Fixed system/code pair stamped on every resource MedStock creates."""

    system: str
    code: str
    display: str = ""

    @classmethod
    def from_settings(cls, env: EnvSettings | None = None) -> "AppTag":
        env = env or settings
        return cls(env.app_tag_system, env.app_tag_code, env.app_tag_display)

    @property
    def search_param(self) -> str:
        """``_tag`` search value (``system|code``, each part URL-encoded)."""
        return f"{quote(self.system, safe='')}|{quote(self.code, safe='')}"

    def meta(self) -> dict[str, Any]:
        """``meta`` element carrying the tag."""
        tag = {"system": self.system, "code": self.code}
        if self.display:
            tag["display"] = self.display
        return {"tag": [tag]}


# ============================================
# Stock Level (shadow fields)
# ============================================
def _as_stock(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float) and value.is_integer():
        return max(0, int(value))
    return None


def get_stock_level(device: dict[str, Any] | None) -> int:
    """Return the stock level of a Device, 0 when neither shadow field is set.

    ``property[]`` is preferred; ``extension[]`` is the fallback.
    """
    if not device:
        return 0

    for prop in device.get("property") or []:
        if isinstance(prop, dict) and (prop.get("type") or {}).get("text") == STOCK_PROPERTY:
            level = _as_stock((prop.get("valueQuantity") or {}).get("value"))
            if level is not None:
                return level

    for ext in device.get("extension") or []:
        if isinstance(ext, dict) and ext.get("url") == STOCK_EXTENSION_URL:
            level = _as_stock(ext.get("valueInteger"))
            if level is not None:
                return level

    return 0


def set_stock_level(device: dict[str, Any], level: int) -> dict[str, Any]:
    """Write ``level`` into both shadow fields of ``device`` (mutates and returns it).

    Leaves exactly one stock entry in each list; other entries keep their order.
    """
    level = max(0, int(level))

    extensions = [
        ext
        for ext in device.get("extension") or []
        if not (isinstance(ext, dict) and ext.get("url") == STOCK_EXTENSION_URL)
    ]
    extensions.append({"url": STOCK_EXTENSION_URL, "valueInteger": level})
    device["extension"] = extensions

    properties: list[Any] = []
    replaced = False
    for prop in device.get("property") or []:
        is_stock = isinstance(prop, dict) and (prop.get("type") or {}).get("text") == STOCK_PROPERTY
        if not is_stock:
            properties.append(prop)
        elif not replaced:
            properties.append({**prop, "valueQuantity": {"value": level}})
            replaced = True
    if not replaced:
        properties.append({"type": {"text": STOCK_PROPERTY}, "valueQuantity": {"value": level}})
    device["property"] = properties

    return device


# ============================================
# Display Accessors
# ============================================
def _property_string(device: dict[str, Any], text: str) -> str:
    for prop in device.get("property") or []:
        if isinstance(prop, dict) and (prop.get("type") or {}).get("text") == text:
            value = prop.get("valueString")
            if value:
                return str(value)
    return ""


def _extension_string(device: dict[str, Any], url: str) -> str:
    for ext in device.get("extension") or []:
        if isinstance(ext, dict) and ext.get("url") == url:
            value = ext.get("valueString")
            if value:
                return str(value)
    return ""


def barcode_of(device: dict[str, Any] | None) -> str:
    """Barcode identifier value, or ``""``."""
    if not device:
        return ""
    for ident in device.get("identifier") or []:
        if isinstance(ident, dict) and ident.get("system") == BARCODE_SYSTEM and ident.get("value"):
            return str(ident["value"])
    return ""


def display_name_of(device: dict[str, Any] | None) -> str:
    if not device:
        return ""
    names = device.get("deviceName") or []
    if names and isinstance(names[0], dict):
        return str(names[0].get("name") or "")
    return ""


def size_of(device: dict[str, Any] | None) -> str:
    return _property_string(device, "size") if device else ""


def manufacturer_of(device: dict[str, Any] | None) -> str:
    if not device:
        return ""
    return str(device.get("manufacturer") or "")


def category_of(device: dict[str, Any] | None, default: str = "Uncategorized") -> str:
    if not device:
        return default
    return (
        str((device.get("type") or {}).get("text") or "")
        or _property_string(device, "category")
        or _extension_string(device, CATEGORY_EXTENSION_URL)
        or default
    )


def supplier_of(device: dict[str, Any] | None, default: str = "Unknown Supplier") -> str:
    if not device:
        return default
    return (
        manufacturer_of(device)
        or _property_string(device, "supplier")
        or _extension_string(device, SUPPLIER_EXTENSION_URL)
        or default
    )
