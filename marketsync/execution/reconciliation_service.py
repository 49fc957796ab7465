"""
ReconciliationEngine: rebuilds the marketplace snapshot from ledger reads.

This module handles the periodic join between the two collections the ledger
exposes independently:
- Auctions (active auction ids -> auction detail tuples -> joined item details)
- Items (marketplace resource or owner-scoped ids -> item detail tuples)

Architecture:
    A cycle is a two-phase join. Phase 1 resolves the auction set; phase 2
    decodes items and derives in_auction from the phase-1 auctions. Phase 2
    never starts before phase 1 has finished, so in_auction always agrees
    with the auctions published in the same snapshot.

    Every cycle builds a brand new MarketplaceSnapshot and hands it to the
    SnapshotStore, which swaps it in atomically (or discards it when a newer
    cycle already published or the store was unmounted).

    Per-record failures drop that record and are logged; list-level failures
    fail the cycle and leave the previous snapshot in place.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from marketsync.core.codec import decode
from marketsync.core.cycle_context import CycleContext
from marketsync.core.errors import LedgerQueryError, MarketplaceUninitializedError
from marketsync.core.event_bus import EventType
from marketsync.core.models import Auction, Item, ItemFilter, MarketplaceSnapshot, annotate_items
from marketsync.core.units import to_int_safe
from marketsync.execution.batch_executor import ThrottledBatchExecutor, is_unavailable
from marketsync.execution.cooldown import FETCH_AUCTIONS, FETCH_ITEMS, CooldownGate

if TYPE_CHECKING:
    from marketsync.core.event_bus import EventBus
    from marketsync.infra.ledger_client import LedgerQueryClient
    from marketsync.monitoring.metrics_rich import SyncMetrics
    from marketsync.state.snapshot_store import SnapshotStore


@dataclass
class ReconciliationConfig:
    """Configuration for ReconciliationEngine."""
    marketplace_addr: str

    # Owner scope: items/auctions of one account instead of the whole market
    owner: Optional[str] = None
    owner_page_limit: int = 100
    owner_page_offset: int = 0

    # Fetch the referenced item's details for every auction. When False only
    # auction membership/detail tuples are read (one view call per auction).
    join_auction_items: bool = True

    resource_name: str = "Marketplace"


class CycleStatus(Enum):
    COMPLETED = auto()
    SKIPPED = auto()        # cooldown gate closed
    UNINITIALIZED = auto()  # marketplace resource not initialized
    FAILED = auto()         # list-level fetch failed; previous snapshot kept
    DISCARDED = auto()      # finished but a newer cycle had already published


@dataclass
class CycleResult:
    """Result of one reconciliation cycle."""
    status: CycleStatus
    snapshot: Optional[MarketplaceSnapshot] = None
    items: int = 0
    auctions: int = 0
    dropped_items: int = 0
    dropped_auctions: int = 0
    error: Optional[str] = None
    duration_ms: float = 0.0
    trace_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (CycleStatus.COMPLETED, CycleStatus.SKIPPED)


# ----------------------------------------------------------------------
# Tuple decoding
# ----------------------------------------------------------------------

def parse_item_tuple(details: Sequence[Any]) -> Item:
    """get_nft_details -> (id, owner, name, description, uri, price, for_sale, rarity)."""
    if len(details) < 8:
        raise ValueError(f"item tuple too short: {len(details)}")
    item_id, owner, name, description, uri, price, for_sale, rarity = details[:8]
    return Item(
        id=to_int_safe(item_id),
        owner=str(owner),
        name=decode(name),
        description=decode(description),
        uri=decode(uri),
        price_base=_non_negative(price),
        for_sale=bool(for_sale),
        rarity=to_int_safe(rarity),
    )


def parse_item_record(record: Dict[str, Any]) -> Item:
    """Decode one entry of the Marketplace resource's ``nfts`` vector."""
    return parse_item_tuple([
        record["id"],
        record["owner"],
        record["name"],
        record["description"],
        record["uri"],
        record["price"],
        record["for_sale"],
        record["rarity"],
    ])


def parse_auction(
    auction_id: Any,
    details: Sequence[Any],
    item_details: Optional[Sequence[Any]] = None,
) -> Auction:
    """get_auction_details -> (nft_id, seller, start, current, bidder, end_time, is_active)."""
    if len(details) < 7:
        raise ValueError(f"auction tuple too short: {len(details)}")
    nft_id, seller, start_price, current_price, highest_bidder, end_time, is_active = details[:7]
    joined: Dict[str, Any] = {}
    if item_details is not None:
        item = parse_item_tuple(item_details)
        joined = {
            "item_name": item.name,
            "item_description": item.description,
            "item_uri": item.uri,
            "item_rarity": item.rarity,
        }
    return Auction(
        auction_id=to_int_safe(auction_id),
        item_id=to_int_safe(nft_id),
        seller=str(seller),
        start_price_base=_non_negative(start_price),
        current_price_base=_non_negative(current_price),
        highest_bidder=str(highest_bidder),
        end_time=to_int_safe(end_time),
        is_active=bool(is_active),
        **joined,
    )


def _non_negative(value: Any) -> int:
    amount = to_int_safe(value)
    if amount < 0:
        raise ValueError(f"negative amount: {amount}")
    return amount


def _first_vector(result: Sequence[Any]) -> List[Any]:
    """View functions returning vector<u64> come back as [[...]]."""
    if result and isinstance(result[0], list):
        return result[0]
    return []


class ReconciliationEngine:
    """
    Produces one consistent MarketplaceSnapshot per cycle.

    Usage:
        engine = ReconciliationEngine(
            client=ledger_client,
            store=snapshot_store,
            config=ReconciliationConfig(marketplace_addr=addr),
        )

        result = await engine.reconcile(ItemFilter(rarity=3))
        if result.status is CycleStatus.COMPLETED:
            render(result.snapshot)
    """

    def __init__(
        self,
        client: "LedgerQueryClient",
        store: "SnapshotStore",
        config: ReconciliationConfig,
        executor: Optional[ThrottledBatchExecutor] = None,
        cooldown: Optional[CooldownGate] = None,
        event_bus: Optional["EventBus"] = None,
        metrics: Optional["SyncMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.store = store
        self.config = config
        self.executor = executor or ThrottledBatchExecutor()
        self.cooldown = cooldown or CooldownGate()
        self.event_bus = event_bus
        self.metrics = metrics
        self._clock = clock
        self._auction_refresh: Optional[asyncio.Task] = None

    @property
    def addr(self) -> str:
        return self.config.marketplace_addr

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def reconcile(self, item_filter: Optional[ItemFilter] = None) -> CycleResult:
        """
        Run a full cycle: initialization check, auctions, items, publish.

        ``item_filter`` only shapes the returned view; the store always holds
        the unfiltered snapshot.
        """
        if not self.cooldown.try_enter(FETCH_ITEMS):
            self._count_skip(FETCH_ITEMS)
            return CycleResult(status=CycleStatus.SKIPPED, snapshot=self.store.current.filtered(item_filter))
        # Closed when a standalone auction refresh ran moments ago; its
        # result is already in the store and gets reused for the join.
        fetch_auctions = self.cooldown.try_enter(FETCH_AUCTIONS)
        if not fetch_auctions:
            # The ticket below must be newer than the refresh that holds the
            # auctions being reused, so wait for it to publish first.
            fetch_auctions = not await self._settle_auction_refresh()

        ctx = CycleContext("reconcile")
        generation = self.store.begin_cycle()
        ctx.set_tag("generation", generation)
        ctx.info("reconcile_start", scope=self.config.owner or "marketplace", fetch_auctions=fetch_auctions)

        try:
            await self._require_initialized()

            # Phase 1: auction set
            if fetch_auctions:
                auctions, dropped_auctions = await self._fetch_auctions(ctx)
            else:
                auctions, dropped_auctions = list(self.store.current.auctions), 0

            # Phase 2: items, annotated against the phase-1 auctions
            raw_items, dropped_items = await self._fetch_items(ctx)
        except MarketplaceUninitializedError as exc:
            return await self._uninitialized(ctx, generation, exc)
        except LedgerQueryError as exc:
            ctx.error("reconcile_error", error=str(exc), target=exc.target)
            self._count_cycle("full", "failed", ctx)
            return CycleResult(
                status=CycleStatus.FAILED,
                snapshot=self.store.current.filtered(item_filter),
                error=str(exc),
                duration_ms=ctx.elapsed_ms(),
                trace_id=ctx.trace_id,
            )

        now = self._clock()
        snapshot = MarketplaceSnapshot(
            items=annotate_items(raw_items, auctions, now),
            auctions=tuple(auctions),
            initialized=True,
            taken_at=now,
        )
        return await self._publish(
            ctx, "full", snapshot, generation, item_filter,
            dropped_items=dropped_items, dropped_auctions=dropped_auctions,
        )

    async def refresh_auctions(self) -> CycleResult:
        """
        Re-read only the auction set and re-derive in_auction on the items
        already held. Used after bids and finalizations.
        """
        if not self.cooldown.try_enter(FETCH_AUCTIONS):
            self._count_skip(FETCH_AUCTIONS)
            return CycleResult(status=CycleStatus.SKIPPED, snapshot=self.store.current)

        task = asyncio.ensure_future(self._refresh_auctions())
        self._auction_refresh = task
        task.add_done_callback(self._clear_auction_refresh)
        return await task

    def invalidate_auctions(self) -> None:
        """Force the next cycle to re-read auctions (after a confirmed write)."""
        self.cooldown.reset(FETCH_AUCTIONS)

    async def _settle_auction_refresh(self) -> bool:
        """
        Wait for an in-flight auction refresh. True when the store's auctions
        are fresh enough to reuse.
        """
        pending = self._auction_refresh
        if pending is None:
            return True
        # asyncio.wait never cancels the refresh, even if this cycle is cancelled
        await asyncio.wait([pending])
        if pending.cancelled() or pending.exception() is not None:
            return False
        return pending.result().status is CycleStatus.COMPLETED

    def _clear_auction_refresh(self, task: asyncio.Task) -> None:
        if self._auction_refresh is task:
            self._auction_refresh = None

    async def _refresh_auctions(self) -> CycleResult:
        ctx = CycleContext("refresh_auctions")
        generation = self.store.begin_cycle()
        ctx.set_tag("generation", generation)

        try:
            auctions, dropped = await self._fetch_auctions(ctx)
        except LedgerQueryError as exc:
            ctx.error("refresh_auctions_error", error=str(exc), target=exc.target)
            # Nothing reusable was read; let the next cycle fetch auctions itself
            self.cooldown.reset(FETCH_AUCTIONS)
            self._count_cycle("auctions", "failed", ctx)
            return CycleResult(
                status=CycleStatus.FAILED,
                snapshot=self.store.current,
                error=str(exc),
                duration_ms=ctx.elapsed_ms(),
                trace_id=ctx.trace_id,
            )

        now = self._clock()
        current = self.store.current
        snapshot = MarketplaceSnapshot(
            items=annotate_items(current.items, auctions, now),
            auctions=tuple(auctions),
            initialized=True,
            taken_at=now,
        )
        return await self._publish(ctx, "auctions", snapshot, generation, None, dropped_auctions=dropped)

    # ------------------------------------------------------------------
    # Fetch phases
    # ------------------------------------------------------------------

    async def _require_initialized(self) -> None:
        result = await self.client.call_view("is_marketplace_initialized", [self.addr])
        if not (result and result[0]):
            raise MarketplaceUninitializedError(self.addr)

    async def _fetch_auction_ids(self) -> List[Any]:
        if self.config.owner:
            result = await self.client.call_view("get_auctions_by_seller", [self.addr, self.config.owner])
        else:
            result = await self.client.call_view("get_all_active_auctions", [self.addr])
        return _first_vector(result)

    async def _fetch_auctions(self, ctx: CycleContext) -> Tuple[List[Auction], int]:
        auction_ids = await self._fetch_auction_ids()
        results = await self.executor.run([
            (lambda aid=aid: self._load_auction(ctx, aid)) for aid in auction_ids
        ])

        auctions: List[Auction] = []
        dropped = 0
        for aid, res in zip(auction_ids, results):
            if is_unavailable(res):
                dropped += 1
                ctx.warning("record_dropped", key="auction", auction_id=str(aid), error=str(res.error))
                continue
            auctions.append(res)
        self._count_dropped("auctions", dropped)
        return auctions, dropped

    async def _load_auction(self, ctx: CycleContext, auction_id: Any) -> Auction:
        details = await self.client.call_view("get_auction_details", [self.addr, auction_id])
        if not self.config.join_auction_items:
            return parse_auction(auction_id, details)

        item_id = details[0] if details else None
        try:
            item_details = await self.client.call_view("get_nft_details", [self.addr, item_id])
            return parse_auction(auction_id, details, item_details)
        except (LedgerQueryError, ValueError, KeyError) as exc:
            # The auction itself decoded; keep it so its item stays locked
            ctx.warning("auction_item_join_failed", auction_id=str(auction_id), item_id=str(item_id), error=str(exc))
            return parse_auction(auction_id, details)

    async def _fetch_items(self, ctx: CycleContext) -> Tuple[List[Item], int]:
        if self.config.owner:
            return await self._fetch_owner_items(ctx)
        return self._decode_marketplace_items(ctx, await self._read_marketplace_nfts())

    async def _read_marketplace_nfts(self) -> List[Dict[str, Any]]:
        resource = await self.client.read_resource(self.addr, self.config.resource_name)
        data = resource.get("data")
        if not isinstance(data, dict):
            raise LedgerQueryError(self.config.resource_name, "resource has no data")
        nfts = data.get("nfts", [])
        return nfts if isinstance(nfts, list) else []

    def _decode_marketplace_items(self, ctx: CycleContext, records: List[Dict[str, Any]]) -> Tuple[List[Item], int]:
        items: List[Item] = []
        dropped = 0
        for record in records:
            try:
                items.append(parse_item_record(record))
            except (KeyError, TypeError, ValueError) as exc:
                dropped += 1
                ctx.warning("record_dropped", key="item", item_id=str(_safe_get(record, "id")), error=str(exc))
        self._count_dropped("items", dropped)
        return items, dropped

    async def _fetch_owner_items(self, ctx: CycleContext) -> Tuple[List[Item], int]:
        result = await self.client.call_view(
            "get_all_nfts_for_owner",
            [self.addr, self.config.owner, self.config.owner_page_limit, self.config.owner_page_offset],
        )
        item_ids = _first_vector(result)

        async def load(item_id: Any) -> Item:
            return parse_item_tuple(await self.client.call_view("get_nft_details", [self.addr, item_id]))

        results = await self.executor.run([(lambda iid=iid: load(iid)) for iid in item_ids])

        items: List[Item] = []
        dropped = 0
        for iid, res in zip(item_ids, results):
            if is_unavailable(res):
                dropped += 1
                ctx.warning("record_dropped", key="item", item_id=str(iid), error=str(res.error))
                continue
            items.append(res)
        self._count_dropped("items", dropped)
        return items, dropped

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    async def _uninitialized(
        self, ctx: CycleContext, generation: int, exc: MarketplaceUninitializedError
    ) -> CycleResult:
        self.store.mark_uninitialized(generation)
        ctx.warning("marketplace_uninitialized", marketplace=self.addr)
        self._count_cycle("full", "uninitialized", ctx)
        if self.event_bus:
            await self.event_bus.emit(EventType.MARKETPLACE_UNINITIALIZED, source="engine", marketplace=self.addr)
        return CycleResult(
            status=CycleStatus.UNINITIALIZED,
            snapshot=self.store.current,
            error=str(exc),
            duration_ms=ctx.elapsed_ms(),
            trace_id=ctx.trace_id,
        )

    async def _publish(
        self,
        ctx: CycleContext,
        collection: str,
        snapshot: MarketplaceSnapshot,
        generation: int,
        item_filter: Optional[ItemFilter],
        dropped_items: int = 0,
        dropped_auctions: int = 0,
    ) -> CycleResult:
        published = await self.store.publish(snapshot, generation)
        status = CycleStatus.COMPLETED if published else CycleStatus.DISCARDED
        current = self.store.current if published else snapshot

        ctx.info(
            "reconcile_complete" if published else "reconcile_discarded",
            collection=collection,
            items=len(snapshot.items),
            auctions=len(snapshot.auctions),
            in_auction=sum(1 for i in snapshot.items if i.in_auction),
            dropped_items=dropped_items,
            dropped_auctions=dropped_auctions,
        )
        self._count_cycle(collection, "completed" if published else "discarded", ctx)
        if self.metrics:
            if published:
                self.metrics.snapshot_items.set(len(snapshot.items))
                self.metrics.snapshot_auctions.set(len(snapshot.auctions))
            else:
                self.metrics.stale_publishes.inc()

        if published and self.event_bus:
            await self.event_bus.emit(
                EventType.SNAPSHOT_PUBLISHED,
                source="engine",
                generation=generation,
                collection=collection,
            )

        return CycleResult(
            status=status,
            snapshot=current.filtered(item_filter),
            items=len(snapshot.items),
            auctions=len(snapshot.auctions),
            dropped_items=dropped_items,
            dropped_auctions=dropped_auctions,
            duration_ms=ctx.elapsed_ms(),
            trace_id=ctx.trace_id,
        )

    # ------------------------------------------------------------------
    # Metrics helpers
    # ------------------------------------------------------------------

    def _count_skip(self, key: str) -> None:
        if self.metrics:
            self.metrics.cooldown_skips.labels(key=key).inc()

    def _count_dropped(self, collection: str, dropped: int) -> None:
        if self.metrics and dropped:
            self.metrics.records_dropped.labels(collection=collection).inc(dropped)

    def _count_cycle(self, collection: str, outcome: str, ctx: CycleContext) -> None:
        if self.metrics:
            self.metrics.cycles.labels(collection=collection, outcome=outcome).inc()
            self.metrics.cycle_duration_ms.labels(collection=collection).observe(ctx.elapsed_ms())


def _safe_get(record: Any, key: str) -> Any:
    return record.get(key) if isinstance(record, dict) else None
