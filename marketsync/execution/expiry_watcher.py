"""
ExpiryWatcher: finalizes auctions that are past end_time but still active.

The ledger never closes an auction by itself; someone has to submit
``end_auction``. On every scan the watcher looks at the current snapshot,
re-reads each overdue auction from the ledger (the snapshot may be seconds
old and another client may have finalized it already) and only then submits.

Each candidate is processed independently: an abort from one finalize is
logged and counted, and the loop moves on. A finalize that aborts because
the auction is already closed is a benign race, not a failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TYPE_CHECKING

from marketsync.core.cycle_context import CycleContext
from marketsync.core.errors import ErrorCategory, LedgerQueryError, TransactionError
from marketsync.core.event_bus import EventType
from marketsync.core.json_utils import dumps
from marketsync.core.models import Auction
from marketsync.execution.reconciliation_service import parse_auction

if TYPE_CHECKING:
    from marketsync.core.event_bus import EventBus
    from marketsync.infra.ledger_client import LedgerQueryClient
    from marketsync.monitoring.metrics_rich import SyncMetrics
    from marketsync.state.snapshot_store import SnapshotStore

log = logging.getLogger("marketsync")


@dataclass
class ExpiryScanResult:
    """Outcome counters for one scan."""
    candidates: int = 0
    submitted: int = 0
    finalized: int = 0
    benign: int = 0             # end_auction aborted because it was already closed
    failed: int = 0
    skipped_inactive: int = 0   # re-read showed the auction already closed
    refreshed: bool = False
    skipped: bool = False       # a previous scan was still running
    errors: List[str] = field(default_factory=list)


class ExpiryWatcher:
    def __init__(
        self,
        client: "LedgerQueryClient",
        store: "SnapshotStore",
        marketplace_addr: str,
        on_refresh: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional["SyncMetrics"] = None,
        event_bus: Optional["EventBus"] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.marketplace_addr = marketplace_addr
        self.on_refresh = on_refresh
        self.metrics = metrics
        self.event_bus = event_bus
        self._clock = clock
        self._scanning = False

    @property
    def scanning(self) -> bool:
        return self._scanning

    def candidates(self, now: float) -> List[Auction]:
        return list(self.store.current.overdue_auctions(now))

    async def scan(self, now: Optional[float] = None) -> ExpiryScanResult:
        if self._scanning:
            log.debug(dumps({"event": "expiry_scan_overlap"}))
            return ExpiryScanResult(skipped=True)

        self._scanning = True
        try:
            return await self._scan(self._clock() if now is None else now)
        finally:
            self._scanning = False

    async def _scan(self, now: float) -> ExpiryScanResult:
        result = ExpiryScanResult()
        overdue = self.candidates(now)
        result.candidates = len(overdue)
        if self.metrics:
            self.metrics.overdue_auctions.set(len(overdue))
        if not overdue:
            return result

        ctx = CycleContext("expiry_scan")
        ctx.info("expiry_scan_start", candidates=len(overdue))

        for auction in overdue:
            try:
                await self._finalize(ctx.child("finalize"), auction, now, result)
            except Exception as exc:
                # One auction never stops the rest of the scan
                result.failed += 1
                result.errors.append(f"{auction.auction_id}: {exc}")
                self._count("failed")
                ctx.error("finalize_error", auction_id=auction.auction_id, error=str(exc))
                await self._emit(EventType.AUCTION_FINALIZE_FAILED, auction_id=auction.auction_id, error=str(exc))

        if self.on_refresh is not None:
            try:
                await self.on_refresh()
                result.refreshed = True
            except Exception as exc:
                ctx.error("expiry_refresh_error", error=str(exc))

        ctx.info(
            "expiry_scan_complete",
            candidates=result.candidates,
            finalized=result.finalized,
            benign=result.benign,
            failed=result.failed,
            skipped_inactive=result.skipped_inactive,
        )
        return result

    async def _finalize(self, ctx: CycleContext, auction: Auction, now: float, result: ExpiryScanResult) -> None:
        try:
            details = await self.client.call_view(
                "get_auction_details", [self.marketplace_addr, auction.auction_id]
            )
            fresh = parse_auction(auction.auction_id, details)
        except (LedgerQueryError, ValueError, TypeError) as exc:
            result.failed += 1
            result.errors.append(f"{auction.auction_id}: {exc}")
            self._count("reread_failed")
            ctx.warning("finalize_reread_failed", auction_id=auction.auction_id, error=str(exc))
            return

        if not fresh.is_overdue(now):
            result.skipped_inactive += 1
            self._count("already_closed")
            ctx.debug("finalize_not_needed", auction_id=auction.auction_id, is_active=fresh.is_active)
            return

        payload = self.client.entry_payload("end_auction", [self.marketplace_addr, str(auction.auction_id)])
        result.submitted += 1
        try:
            txn = await self.client.submit_and_await(payload)
        except TransactionError as exc:
            if exc.category is ErrorCategory.ALREADY_INACTIVE:
                result.benign += 1
                self._count("benign")
                ctx.info("finalize_race", auction_id=auction.auction_id, vm_status=exc.vm_status)
                return
            result.failed += 1
            result.errors.append(f"{auction.auction_id}: {exc}")
            self._count("failed")
            ctx.error(
                "finalize_failed",
                auction_id=auction.auction_id,
                category=exc.category.value,
                vm_status=exc.vm_status,
                tx_hash=exc.tx_hash,
            )
            await self._emit(
                EventType.AUCTION_FINALIZE_FAILED,
                auction_id=auction.auction_id,
                category=exc.category.value,
            )
            return

        result.finalized += 1
        self._count("finalized")
        tx_hash = txn.get("hash") if isinstance(txn, dict) else None
        ctx.info("auction_finalized", auction_id=auction.auction_id, tx_hash=tx_hash, had_bidder=fresh.has_bidder)
        await self._emit(EventType.AUCTION_FINALIZED, auction_id=auction.auction_id, tx_hash=tx_hash)

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.finalize_attempts.labels(outcome=outcome).inc()

    async def _emit(self, event_type: EventType, **data: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, source="expiry_watcher", **data)
