"""
Tests for EventBus.
"""
import asyncio

import pytest

from marketsync.core.event_bus import Event, EventBus, EventType


class TestEventBus:
    """Delivery, ordering, isolation."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        seen = []

        async def async_handler(event):
            seen.append(("async", event.data["item"]))

        bus.subscribe(EventType.ITEM_MINTED, lambda e: seen.append(("sync", e.data["item"])))
        bus.subscribe(EventType.ITEM_MINTED, async_handler)

        delivered = await bus.emit(EventType.ITEM_MINTED, source="test", item=1)

        assert delivered == 2
        assert seen == [("sync", 1), ("async", 1)]

    @pytest.mark.asyncio
    async def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe(EventType.SNAPSHOT_PUBLISHED, lambda e: order.append("low"), priority=0)
        bus.subscribe(EventType.SNAPSHOT_PUBLISHED, lambda e: order.append("high"), priority=10)

        await bus.emit(EventType.SNAPSHOT_PUBLISHED)

        assert order == ["high", "low"]

    @pytest.mark.asyncio
    async def test_handler_error_isolated(self):
        bus = EventBus()
        seen = []

        def broken(_event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.ACTION_CONFIRMED, broken, priority=5)
        bus.subscribe(EventType.ACTION_CONFIRMED, seen.append)

        delivered = await bus.emit(EventType.ACTION_CONFIRMED)

        assert delivered == 1
        assert len(seen) == 1
        assert bus.get_stats()["handler_errors"] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        sub = bus.subscribe(EventType.ITEM_MINTED, seen.append)

        assert bus.unsubscribe(EventType.ITEM_MINTED, sub) is True
        await bus.emit(EventType.ITEM_MINTED)

        assert seen == []
        assert bus.unsubscribe(EventType.ITEM_MINTED, sub) is False

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        bus = EventBus(history_size=3)
        for i in range(5):
            await bus.emit(EventType.SNAPSHOT_PUBLISHED, generation=i)

        history = bus.get_history()
        assert [e.data["generation"] for e in history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_publish_nowait_and_drain(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.AUCTION_FINALIZED, seen.append)

        bus.publish_nowait(Event(type=EventType.AUCTION_FINALIZED, data={"auction_id": 1}))
        await bus.drain()

        assert [e.data["auction_id"] for e in seen] == [1]
