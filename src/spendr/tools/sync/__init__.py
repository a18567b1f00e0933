"""Sync tools package."""

from spendr.tools.sync.account_reconciler import AccountReconciler
from spendr.tools.sync.item_locks import ItemLockRegistry
from spendr.tools.sync.orchestrator import SyncAllResult, SyncOrchestrator
from spendr.tools.sync.sync_tool import (
    ItemSyncResult,
    PageResult,
    SyncTool,
)

__all__ = [
    "AccountReconciler",
    "ItemLockRegistry",
    "ItemSyncResult",
    "PageResult",
    "SyncAllResult",
    "SyncOrchestrator",
    "SyncTool",
]
