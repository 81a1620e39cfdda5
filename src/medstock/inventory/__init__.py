"""
Inventory reconciliation and views.

This module provides:
- InventoryReconciler: create-vs-update decision and stock decrement for a scan
- TransactionOrchestrator: transaction Bundle submit with stepped-create fallback
- ResolutionCascade: ordered fallback search for usage/device pairs
- group_pairs: deduplicated, time-ordered inventory rows
- InventoryService: save/reorder/delete/view operations wired to one gateway

Usage:
    from medstock.inventory import InventoryService, RegistrationForm

    service = InventoryService(gateway)
    await service.save(RegistrationForm.from_scan("1000000000001"))
    rows = await service.load_stock()
"""

from medstock.inventory.aggregation import group_pairs
from medstock.inventory.cascade import ResolutionCascade
from medstock.inventory.models import (
    CascadeContext,
    DeviceDetail,
    GroupedInventoryRow,
    ReconcileOutcome,
    SaveResult,
    StockStatus,
    TransactionBundle,
    UsagePair,
    UsageResourceType,
)
from medstock.inventory.reconciler import InventoryReconciler
from medstock.inventory.service import InventoryService, RegistrationForm, ViewGuard
from medstock.inventory.transaction import TransactionOrchestrator

__all__ = [
    # Components
    "InventoryReconciler",
    "InventoryService",
    "ResolutionCascade",
    "TransactionOrchestrator",
    "ViewGuard",
    "group_pairs",
    # Models
    "CascadeContext",
    "DeviceDetail",
    "GroupedInventoryRow",
    "ReconcileOutcome",
    "RegistrationForm",
    "SaveResult",
    "StockStatus",
    "TransactionBundle",
    "UsagePair",
    "UsageResourceType",
]
