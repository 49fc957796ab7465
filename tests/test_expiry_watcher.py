"""
Tests for ExpiryWatcher.
"""
import asyncio
import json
import logging

import pytest
from unittest.mock import AsyncMock

from conftest import BOB, MARKET, NOW
from marketsync.core.errors import LedgerQueryError
from marketsync.core.event_bus import EventBus, EventType
from marketsync.core.models import MarketplaceSnapshot
from marketsync.execution.expiry_watcher import ExpiryWatcher
from marketsync.execution.reconciliation_service import parse_auction
from marketsync.monitoring.metrics_rich import SyncMetrics
from marketsync.state.snapshot_store import SnapshotStore


async def seed(store, ledger):
    """Publish the ledger's current auctions as the store snapshot."""
    auctions = tuple(parse_auction(aid, row) for aid, row in ledger.auctions.items())
    await store.publish(MarketplaceSnapshot(auctions=auctions, initialized=True), store.begin_cycle())


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def refresh():
    return AsyncMock()


@pytest.fixture
def watcher(ledger, store, refresh):
    return ExpiryWatcher(ledger, store, MARKET, on_refresh=refresh, clock=lambda: NOW)


class TestCandidates:
    """Which auctions get finalized."""

    @pytest.mark.asyncio
    async def test_overdue_active_auction_finalized_once(self, ledger, store, watcher, refresh):
        ledger.add_auction(1, 9, end_time=NOW - 5, bidder=BOB)
        await seed(store, ledger)

        result = await watcher.scan()

        assert result.candidates == 1
        assert result.finalized == 1
        assert len(ledger.submitted) == 1
        assert ledger.submitted[0]["function"].endswith("::end_auction")
        assert ledger.submitted[0]["arguments"] == [MARKET, "1"]
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_finalize_logs_link_to_scan_trace(self, ledger, store, watcher):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        records = []

        class Collect(logging.Handler):
            def emit(self, record):
                records.append(json.loads(record.getMessage()))

        logger = logging.getLogger("marketsync")
        handler = Collect()
        previous_level = logger.level
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        try:
            await watcher.scan()
        finally:
            logger.removeHandler(handler)
            logger.setLevel(previous_level)

        start = next(r for r in records if r.get("event") == "expiry_scan_start")
        finalized = next(r for r in records if r.get("event") == "auction_finalized")
        assert finalized["op"] == "finalize"
        assert finalized["parent_trace_id"] == start["trace_id"]

    @pytest.mark.asyncio
    async def test_ledger_inactive_auction_not_finalized(self, ledger, store, watcher):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        # Someone else finalized it after our snapshot was taken
        ledger.close_auction(1)

        result = await watcher.scan()

        assert result.candidates == 1
        assert result.skipped_inactive == 1
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_future_and_unset_end_times_ignored(self, ledger, store, watcher, refresh):
        ledger.add_auction(1, 9, end_time=NOW + 60)
        ledger.add_auction(2, 8, end_time=0)
        await seed(store, ledger)

        result = await watcher.scan()

        assert result.candidates == 0
        assert ledger.count("get_auction_details") == 0
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_now(self, ledger, store, watcher):
        ledger.add_auction(1, 9, end_time=NOW + 60)
        await seed(store, ledger)

        result = await watcher.scan(now=NOW + 61)

        assert result.finalized == 1


class TestFailureIsolation:
    """Per-candidate error handling."""

    @pytest.mark.asyncio
    async def test_already_inactive_abort_is_benign(self, ledger, store, watcher, refresh):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        ledger.abort("end_auction", "Move abort in 0xcafe::nft_marketplace: EAUCTION_NOT_ACTIVE(0x5)")

        result = await watcher.scan()

        assert result.benign == 1
        assert result.failed == 0
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_other_candidates(self, ledger, store, refresh):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        ledger.add_auction(2, 8, end_time=NOW - 5)
        ledger.add_auction(3, 7, end_time=NOW - 5)
        await seed(store, ledger)
        ledger.failures[("get_auction_details", 1)] = LedgerQueryError("get_auction_details", "timeout")
        bus = EventBus()
        watcher = ExpiryWatcher(ledger, store, MARKET, on_refresh=refresh, clock=lambda: NOW, event_bus=bus)

        result = await watcher.scan()

        assert result.failed == 1
        assert result.finalized == 2
        assert [p["arguments"][1] for p in ledger.submitted] == ["2", "3"]
        assert len(bus.get_history(EventType.AUCTION_FINALIZED)) == 2
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generic_abort_counted_as_failure(self, ledger, store, refresh):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        ledger.abort("end_auction", "Move abort: ENOT_AUTHORIZED")
        metrics = SyncMetrics()
        bus = EventBus()
        watcher = ExpiryWatcher(ledger, store, MARKET, on_refresh=refresh, clock=lambda: NOW, metrics=metrics, event_bus=bus)

        result = await watcher.scan()

        assert result.failed == 1
        assert result.submitted == 1
        failed = bus.get_history(EventType.AUCTION_FINALIZE_FAILED)
        assert failed[0].data["category"] == "permission_denied"
        assert metrics.registry.get_sample_value("finalize_attempts_total", {"outcome": "failed"}) == 1.0
        assert metrics.registry.get_sample_value("overdue_auctions") == 1.0

    @pytest.mark.asyncio
    async def test_refresh_error_does_not_raise(self, ledger, store):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        watcher = ExpiryWatcher(
            ledger, store, MARKET,
            on_refresh=AsyncMock(side_effect=RuntimeError("node down")),
            clock=lambda: NOW,
        )

        result = await watcher.scan()

        assert result.finalized == 1
        assert result.refreshed is False


class TestOverlap:
    """Concurrent scans."""

    @pytest.mark.asyncio
    async def test_overlapping_scan_skipped(self, ledger, store):
        ledger.add_auction(1, 9, end_time=NOW - 5)
        await seed(store, ledger)
        release = asyncio.Event()

        async def slow_refresh():
            await release.wait()

        watcher = ExpiryWatcher(ledger, store, MARKET, on_refresh=slow_refresh, clock=lambda: NOW)
        first = asyncio.create_task(watcher.scan())
        while not watcher.scanning or not ledger.submitted:
            await asyncio.sleep(0)

        second = await watcher.scan()
        release.set()
        await first

        assert second.skipped is True
        assert len(ledger.submitted) == 1
        assert watcher.scanning is False
