"""
Domain records for the marketplace snapshot.

Item and Auction are read-only projections rebuilt from ledger reads on every
reconciliation cycle; nothing here is mutated after construction. Status
flags that depend on wall-clock time take ``now`` explicitly.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum, auto
from typing import FrozenSet, Iterable, Optional, Tuple

from marketsync.core.units import to_major

ZERO_ADDRESS = "0x0"

_ZERO_ADDRESS_RE = re.compile(r"^0x0*$")

RARITY_LABELS = {
    1: "Common",
    2: "Uncommon",
    3: "Rare",
    4: "Super Rare",
}


def is_zero_address(address: str) -> bool:
    return bool(_ZERO_ADDRESS_RE.match(address or ""))


@dataclass(frozen=True)
class Item:
    """A listed marketplace item (NFT)."""
    id: int
    owner: str
    name: str
    description: str
    uri: str
    price_base: int
    for_sale: bool
    rarity: int
    in_auction: bool = False

    @property
    def price(self) -> Decimal:
        return to_major(self.price_base)

    @property
    def rarity_label(self) -> str:
        return RARITY_LABELS.get(self.rarity, "Unknown")


class AuctionState(Enum):
    """Client-observed auction lifecycle (not ledger-authoritative)."""
    ACTIVE = auto()
    PENDING_FINALIZE = auto()   # past end_time, ledger still reports active
    SETTLED = auto()            # closed with a winning bid
    FAILED = auto()             # closed without bids


@dataclass(frozen=True)
class Auction:
    """A time-bound auction of one item."""
    auction_id: int
    item_id: int
    seller: str
    start_price_base: int
    current_price_base: int
    highest_bidder: str
    end_time: int
    is_active: bool
    # Joined from the referenced item; absent for membership-only reads
    item_name: Optional[str] = None
    item_description: Optional[str] = None
    item_uri: Optional[str] = None
    item_rarity: Optional[int] = None

    @property
    def start_price(self) -> Decimal:
        return to_major(self.start_price_base)

    @property
    def current_price(self) -> Decimal:
        return to_major(self.current_price_base)

    @property
    def has_bidder(self) -> bool:
        return not is_zero_address(self.highest_bidder)

    def is_ended(self, now: float) -> bool:
        return self.end_time <= now

    def is_failed(self, now: float) -> bool:
        return self.is_ended(now) and not self.has_bidder

    def is_closed(self, now: float) -> bool:
        return self.is_ended(now) or not self.is_active

    def is_overdue(self, now: float) -> bool:
        """Ledger still reports active although end_time has passed."""
        return self.is_active and 0 < self.end_time <= now

    def state(self, now: float) -> AuctionState:
        if self.is_active:
            return AuctionState.PENDING_FINALIZE if self.is_ended(now) else AuctionState.ACTIVE
        return AuctionState.SETTLED if self.has_bidder else AuctionState.FAILED

    def seconds_left(self, now: float) -> int:
        return max(0, int(self.end_time - now))


@dataclass(frozen=True)
class ItemFilter:
    """Projection filter; never affects what is fetched."""
    rarity: Optional[int] = None
    for_sale_only: bool = False

    def matches(self, item: Item) -> bool:
        if self.for_sale_only and not item.for_sale:
            return False
        if self.rarity is not None and item.rarity != self.rarity:
            return False
        return True


def locking_item_ids(auctions: Iterable[Auction], now: float) -> FrozenSet[int]:
    """Item ids referenced by an active, unexpired auction."""
    return frozenset(
        a.item_id for a in auctions if a.is_active and not a.is_ended(now)
    )


def annotate_items(items: Iterable[Item], auctions: Iterable[Auction], now: float) -> Tuple[Item, ...]:
    """Return copies of ``items`` with in_auction derived from ``auctions``."""
    locked = locking_item_ids(auctions, now)
    return tuple(replace(item, in_auction=item.id in locked) for item in items)


@dataclass(frozen=True)
class MarketplaceSnapshot:
    """
    Immutable reconciled view produced by one engine cycle.

    ``items`` is the unfiltered item list; filters are applied through
    ``filtered()`` so in_auction derivation always sees every record.
    """
    items: Tuple[Item, ...] = ()
    auctions: Tuple[Auction, ...] = ()
    initialized: bool = False
    taken_at: float = field(default_factory=time.time)
    generation: int = 0

    def item(self, item_id: int) -> Optional[Item]:
        for it in self.items:
            if it.id == item_id:
                return it
        return None

    def auction(self, auction_id: int) -> Optional[Auction]:
        for a in self.auctions:
            if a.auction_id == auction_id:
                return a
        return None

    def ledger_locked_ids(self) -> FrozenSet[int]:
        """Item ids in any ledger-active auction, expired or not."""
        return frozenset(a.item_id for a in self.auctions if a.is_active)

    def filtered(self, item_filter: Optional[ItemFilter]) -> "MarketplaceSnapshot":
        if item_filter is None:
            return self
        return replace(self, items=tuple(i for i in self.items if item_filter.matches(i)))

    def buy_now(self, rarity: Optional[int] = None) -> Tuple[Item, ...]:
        """Items that can be purchased directly right now."""
        locked = self.ledger_locked_ids()
        return tuple(
            i for i in self.items
            if i.for_sale
            and not i.in_auction
            and i.id not in locked
            and (rarity is None or i.rarity == rarity)
        )

    def live_auctions(self, now: float) -> Tuple[Auction, ...]:
        """Auctions worth displaying; failed ones (ended without bids) are hidden."""
        return tuple(a for a in self.auctions if not a.is_failed(now))

    def overdue_auctions(self, now: float) -> Tuple[Auction, ...]:
        return tuple(a for a in self.auctions if a.is_overdue(now))
