"""
Execution package - ledger reads and writes.

This package contains:
- CooldownGate: per-operation minimum interval between fetch cycles
- ThrottledBatchExecutor: batched concurrent view calls
- ReconciliationEngine: two-phase auction/item join into one snapshot
- ExpiryWatcher: finalizes overdue auctions
- MarketplaceActions: validated write actions
"""

from marketsync.execution.batch_executor import (
    BatchExecutorConfig,
    BatchStats,
    ThrottledBatchExecutor,
    Unavailable,
    is_unavailable,
)
from marketsync.execution.cooldown import FETCH_AUCTIONS, FETCH_ITEMS, CooldownConfig, CooldownGate
from marketsync.execution.expiry_watcher import ExpiryScanResult, ExpiryWatcher
from marketsync.execution.marketplace_actions import ActionResult, MarketplaceActions
from marketsync.execution.reconciliation_service import (
    CycleResult,
    CycleStatus,
    ReconciliationConfig,
    ReconciliationEngine,
)

__all__ = [
    "BatchExecutorConfig",
    "BatchStats",
    "ThrottledBatchExecutor",
    "Unavailable",
    "is_unavailable",
    "FETCH_AUCTIONS",
    "FETCH_ITEMS",
    "CooldownConfig",
    "CooldownGate",
    "ExpiryScanResult",
    "ExpiryWatcher",
    "ActionResult",
    "MarketplaceActions",
    "CycleResult",
    "CycleStatus",
    "ReconciliationConfig",
    "ReconciliationEngine",
]
