"""
Core package.

Domain records, the hex codec, fixed-point units, the error taxonomy, the
event bus and logging helpers shared by every other package.
"""

from marketsync.core.codec import decode, encode, encode_hex
from marketsync.core.cycle_context import CycleContext
from marketsync.core.errors import (
    ActionRejected,
    ErrorCategory,
    LedgerQueryError,
    MarketSyncError,
    MarketplaceUninitializedError,
    TransactionError,
    classify_error,
    describe,
)
from marketsync.core.event_bus import Event, EventBus, EventType, Subscription
from marketsync.core.models import (
    ZERO_ADDRESS,
    Auction,
    AuctionState,
    Item,
    ItemFilter,
    MarketplaceSnapshot,
    annotate_items,
    is_zero_address,
)
from marketsync.core.units import BASE_UNITS_PER_MAJOR, to_base, to_major

__all__ = [
    "decode",
    "encode",
    "encode_hex",
    "CycleContext",
    "ActionRejected",
    "ErrorCategory",
    "LedgerQueryError",
    "MarketSyncError",
    "MarketplaceUninitializedError",
    "TransactionError",
    "classify_error",
    "describe",
    "Event",
    "EventBus",
    "EventType",
    "Subscription",
    "ZERO_ADDRESS",
    "Auction",
    "AuctionState",
    "Item",
    "ItemFilter",
    "MarketplaceSnapshot",
    "annotate_items",
    "is_zero_address",
    "BASE_UNITS_PER_MAJOR",
    "to_base",
    "to_major",
]
