"""
MarketplaceActions: write path for the marketplace module.

Every action validates locally first (amounts, ownership, auction state as
seen in the current snapshot), builds an entry-function payload, has the
wallet sign and submit it, and waits until the transaction is final.

Outcomes are returned as ActionResult rather than raised, with a
user-facing title/message derived from the error category. A confirmed
action publishes ACTION_CONFIRMED (ITEM_MINTED for mints) so the scheduler
can refresh the snapshot outside its regular interval.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TYPE_CHECKING

from marketsync.core.codec import encode
from marketsync.core.errors import (
    ActionRejected,
    ErrorCategory,
    MarketSyncError,
    TransactionError,
    describe,
)
from marketsync.core.event_bus import EventType
from marketsync.core.json_utils import dumps
from marketsync.core.models import RARITY_LABELS, Auction, Item, MarketplaceSnapshot
from marketsync.core.units import Amount, to_base

if TYPE_CHECKING:
    from marketsync.core.event_bus import EventBus
    from marketsync.infra.ledger_client import LedgerQueryClient
    from marketsync.monitoring.metrics_rich import SyncMetrics

log = logging.getLogger("marketsync")

MIN_AUCTION_DURATION_SEC = 300
MAX_AUCTION_DURATION_SEC = 86400


@dataclass
class ActionResult:
    action: str
    success: bool
    tx_hash: Optional[str] = None
    category: Optional[ErrorCategory] = None
    title: str = ""
    message: str = ""


class MarketplaceActions:
    """
    Usage:
        actions = MarketplaceActions(client, marketplace_addr, event_bus=bus)
        result = await actions.place_bid(auction, bidder=me, amount="2.75")
        if not result.success:
            show(result.title, result.message)
    """

    def __init__(
        self,
        client: "LedgerQueryClient",
        marketplace_addr: str,
        event_bus: Optional["EventBus"] = None,
        metrics: Optional["SyncMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.marketplace_addr = marketplace_addr
        self.event_bus = event_bus
        self.metrics = metrics
        self._clock = clock

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def initialize(self) -> ActionResult:
        return await self._submit(
            "initialize", "initialize", [], "Marketplace initialized successfully!"
        )

    async def mint(self, name: str, description: str, uri: str, rarity: int) -> ActionResult:
        try:
            if not name or not uri:
                raise ActionRejected(ErrorCategory.INVALID_INPUT, "Name and URI are required")
            if rarity not in RARITY_LABELS:
                raise ActionRejected(ErrorCategory.INVALID_INPUT, f"Rarity must be one of {sorted(RARITY_LABELS)}")
        except ActionRejected as exc:
            return self._rejected("mint", exc)

        return await self._submit(
            "mint",
            "mint_nft_to_marketplace",
            [self.marketplace_addr, encode(name), encode(description), encode(uri), rarity],
            "NFT minted successfully!",
            event_type=EventType.ITEM_MINTED,
            event_data={"name": name, "rarity": rarity},
        )

    async def list_for_sale(self, item_id: int, price: Amount) -> ActionResult:
        try:
            price_base = _positive_amount(price, "Price")
        except ActionRejected as exc:
            return self._rejected("list_for_sale", exc)

        return await self._submit(
            "list_for_sale",
            "list_for_sale",
            [self.marketplace_addr, str(item_id), str(price_base)],
            "NFT listed for sale successfully!",
            event_data={"item_id": item_id, "price_base": price_base},
        )

    async def purchase(
        self,
        item: Item,
        buyer: str,
        snapshot: Optional[MarketplaceSnapshot] = None,
    ) -> ActionResult:
        """Buy ``item`` at its listed price. ``snapshot`` adds the ledger-lock check."""
        try:
            if _same_address(item.owner, buyer):
                raise ActionRejected(ErrorCategory.CANNOT_BUY_OWN, "You cannot purchase your own NFT")
            if not item.for_sale:
                raise ActionRejected(ErrorCategory.NOT_FOR_SALE, "This NFT is not for sale")
            locked = snapshot.ledger_locked_ids() if snapshot is not None else frozenset()
            if item.in_auction or item.id in locked:
                raise ActionRejected(ErrorCategory.NOT_FOR_SALE, "This NFT is currently in an auction")
            if item.price_base <= 0:
                raise ActionRejected(ErrorCategory.INVALID_INPUT, "Listing has no price")
        except ActionRejected as exc:
            return self._rejected("purchase", exc)

        return await self._submit(
            "purchase",
            "purchase_nft",
            [self.marketplace_addr, str(item.id), str(item.price_base)],
            "NFT purchased successfully!",
            event_data={"item_id": item.id, "price_base": item.price_base},
        )

    async def place_bid(
        self,
        auction: Auction,
        bidder: str,
        amount: Amount,
        now: Optional[float] = None,
    ) -> ActionResult:
        now = self._clock() if now is None else now
        try:
            bid_base = _positive_amount(amount, "Bid")
            if bid_base <= auction.current_price_base or bid_base < auction.start_price_base:
                raise ActionRejected(
                    ErrorCategory.BID_TOO_LOW,
                    f"Bid must be higher than current price ({auction.current_price} APT)",
                )
            if not auction.is_active or auction.is_ended(now):
                raise ActionRejected(ErrorCategory.AUCTION_ENDED, "This auction has ended")
            if _same_address(auction.seller, bidder):
                raise ActionRejected(ErrorCategory.SELLER_CANNOT_BID, "You cannot bid on your own auction")
        except ActionRejected as exc:
            return self._rejected("place_bid", exc)

        return await self._submit(
            "place_bid",
            "place_bid",
            [self.marketplace_addr, str(auction.auction_id), str(bid_base)],
            "Bid placed successfully!",
            event_data={"auction_id": auction.auction_id, "amount_base": bid_base},
        )

    async def create_auction(self, item_id: int, start_price: Amount, duration_sec: int) -> ActionResult:
        try:
            start_base = _positive_amount(start_price, "Starting price")
            if not MIN_AUCTION_DURATION_SEC <= int(duration_sec) <= MAX_AUCTION_DURATION_SEC:
                raise ActionRejected(
                    ErrorCategory.INVALID_INPUT,
                    f"Duration must be between {MIN_AUCTION_DURATION_SEC} and {MAX_AUCTION_DURATION_SEC} seconds",
                )
        except ActionRejected as exc:
            return self._rejected("create_auction", exc)

        return await self._submit(
            "create_auction",
            "create_auction",
            [self.marketplace_addr, str(item_id), str(start_base), str(int(duration_sec))],
            "Auction created successfully!",
            event_data={"item_id": item_id, "start_price_base": start_base},
        )

    async def end_auction(self, auction_id: int) -> ActionResult:
        return await self._submit(
            "end_auction",
            "end_auction",
            [self.marketplace_addr, str(auction_id)],
            "Auction ended successfully!",
            event_data={"auction_id": auction_id},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _submit(
        self,
        action: str,
        function: str,
        arguments: Sequence[Any],
        success_message: str,
        event_type: EventType = EventType.ACTION_CONFIRMED,
        event_data: Optional[dict] = None,
    ) -> ActionResult:
        payload = self.client.entry_payload(function, arguments)
        try:
            txn = await self.client.submit_and_await(payload)
        except TransactionError as exc:
            title, message = describe(exc.category)
            log.warning(dumps({
                "event": "action_failed",
                "action": action,
                "category": exc.category.value,
                "vm_status": exc.vm_status,
                "tx_hash": exc.tx_hash,
                "error": str(exc),
            }))
            self._count(action, exc.category.value)
            return ActionResult(
                action=action,
                success=False,
                tx_hash=exc.tx_hash,
                category=exc.category,
                title=title,
                message=message,
            )

        tx_hash = txn.get("hash") if isinstance(txn, dict) else None
        log.info(dumps({"event": "action_confirmed", "action": action, "tx_hash": tx_hash}))
        self._count(action, "ok")

        if self.event_bus:
            await self.event_bus.emit(
                event_type,
                source="actions",
                action=action,
                tx_hash=tx_hash,
                **(event_data or {}),
            )
        return ActionResult(action=action, success=True, tx_hash=tx_hash, title="Success", message=success_message)

    def _rejected(self, action: str, exc: MarketSyncError) -> ActionResult:
        category = getattr(exc, "category", ErrorCategory.INVALID_INPUT)
        title, _ = describe(category)
        log.info(dumps({"event": "action_rejected", "action": action, "category": category.value, "reason": str(exc)}))
        self._count(action, f"rejected_{category.value}")
        return ActionResult(action=action, success=False, category=category, title=title, message=str(exc))

    def _count(self, action: str, category: str) -> None:
        if self.metrics:
            self.metrics.actions.labels(action=action, category=category).inc()


def _positive_amount(value: Amount, label: str) -> int:
    try:
        base = to_base(value)
    except ValueError as exc:
        raise ActionRejected(ErrorCategory.INVALID_INPUT, f"{label} is not a valid amount") from exc
    if base <= 0:
        raise ActionRejected(ErrorCategory.INVALID_INPUT, f"{label} must be greater than 0")
    return base


def _same_address(a: str, b: str) -> bool:
    """Addresses compare case-insensitively and ignoring leading zeros."""
    def norm(addr: str) -> str:
        body = (addr or "").lower()
        body = body[2:] if body.startswith("0x") else body
        return body.lstrip("0")
    return norm(a) == norm(b)
