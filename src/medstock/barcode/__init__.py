"""Barcode resolution for MedStock."""

from medstock.barcode.resolver import BARCODE_CATALOG, DeviceDescription, resolve_barcode

__all__ = ["BARCODE_CATALOG", "DeviceDescription", "resolve_barcode"]
