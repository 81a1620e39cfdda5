"""
FHIR store access for MedStock.

This module provides:
- FHIRGateway: read/search/create/update/delete/transaction with SMART/anonymous routing
- AuthContext: injected authentication state (client + patient in context)
- Resource helpers: reference parsing, bundle flattening, shadow stock accessors
"""

from medstock.fhir.errors import FHIRRequestError, MedStockError
from medstock.fhir.gateway import ANONYMOUS, AuthContext, AuthenticatedClient, FHIRGateway
from medstock.fhir.resources import (
    AppTag,
    bundle_entries,
    get_stock_level,
    id_from_location,
    set_stock_level,
)

__all__ = [
    "ANONYMOUS",
    "AppTag",
    "AuthContext",
    "AuthenticatedClient",
    "FHIRGateway",
    "FHIRRequestError",
    "MedStockError",
    "bundle_entries",
    "get_stock_level",
    "id_from_location",
    "set_stock_level",
]
