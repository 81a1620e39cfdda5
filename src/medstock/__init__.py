"""
MedStock - FHIR-backed Medical Device Stock
Barcode resolution, inventory reconciliation and usage views
"""

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy import so the barcode resolver stays usable without httpx loaded."""
    if name == "resolve_barcode":
        from medstock.barcode.resolver import resolve_barcode

        return resolve_barcode

    if name in ("AuthContext", "FHIRGateway"):
        from medstock.fhir.gateway import AuthContext, FHIRGateway

        return locals()[name]

    if name in ("InventoryService", "RegistrationForm"):
        from medstock.inventory.service import InventoryService, RegistrationForm

        return locals()[name]

    raise AttributeError(f"module 'medstock' has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Barcode
    "resolve_barcode",
    # Gateway
    "AuthContext",
    "FHIRGateway",
    # Service
    "InventoryService",
    "RegistrationForm",
]
