"""
Event Bus: in-process topics for refresh signals and cycle notifications.

Decouples the components that cause a refresh (a confirmed mint, a bid, a
finalized auction) from the scheduler that runs reconciliation. Handlers are
plain callables, sync or async; a failing handler never stops the others.

Features:
- Typed event kinds with a small data payload
- Priority-ordered handlers
- Error isolation per handler
- Bounded history for debugging
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from marketsync.core.json_utils import dumps

log = logging.getLogger("marketsync")


class EventType(Enum):
    """Event kinds carried by the bus."""
    # Refresh signals
    ITEM_MINTED = auto()              # A mint transaction was confirmed
    ACTION_CONFIRMED = auto()         # Any other write action was confirmed

    # Reconciliation
    SNAPSHOT_PUBLISHED = auto()       # A new snapshot replaced the previous one
    MARKETPLACE_UNINITIALIZED = auto()

    # Expiry handling
    AUCTION_FINALIZED = auto()        # end_auction confirmed
    AUCTION_FINALIZE_FAILED = auto()


@dataclass
class Event:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    source: Optional[str] = None

    def __str__(self) -> str:
        return f"Event({self.type.name}, ts={self.timestamp_ms}, source={self.source})"


Handler = Union[
    Callable[[Event], Awaitable[None]],
    Callable[[Event], None],
]


@dataclass
class Subscription:
    handler: Handler
    priority: int = 0  # Higher = called first
    name: Optional[str] = None


class EventBus:
    """
    Central event bus.

    Usage:
        bus = EventBus()
        bus.subscribe(EventType.ITEM_MINTED, lambda _e: scheduler.request_refresh())

        await bus.emit(EventType.ITEM_MINTED, source="actions", item_name="Foo")
    """

    DEFAULT_HISTORY_SIZE = 200

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._log = log_event or self._default_log
        self._subscribers: Dict[EventType, List[Subscription]] = {}
        self._history_size = history_size
        self._history: List[Event] = []
        self._pending: Set[asyncio.Task] = set()
        self._stats = {
            "events_published": 0,
            "handler_errors": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Subscription Management
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        event_type: EventType,
        handler: Handler,
        priority: int = 0,
        name: Optional[str] = None,
    ) -> Subscription:
        """Subscribe ``handler`` to ``event_type``; returns the subscription for unsubscribe()."""
        sub = Subscription(handler=handler, priority=priority, name=name)
        subs = self._subscribers.setdefault(event_type, [])

        # Insert sorted by priority (descending), stable for equal priorities
        insert_idx = len(subs)
        for i, existing in enumerate(subs):
            if existing.priority < priority:
                insert_idx = i
                break
        subs.insert(insert_idx, sub)

        self._log(
            "event_bus_subscribe",
            event_type=event_type.name,
            handler_name=name or getattr(handler, "__name__", "handler"),
            total_subscribers=len(subs),
        )
        return sub

    def unsubscribe(self, event_type: EventType, subscription: Subscription) -> bool:
        subs = self._subscribers.get(event_type, [])
        if subscription in subs:
            subs.remove(subscription)
            return True
        return False

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, event: Event) -> int:
        """
        Deliver ``event`` to every subscriber in priority order.

        Returns the number of handlers that completed without raising.
        """
        self._stats["events_published"] += 1
        if self._history_size > 0:
            self._history.append(event)
            if len(self._history) > self._history_size:
                self._history.pop(0)

        delivered = 0
        for sub in list(self._subscribers.get(event.type, [])):
            try:
                result = sub.handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as exc:
                self._stats["handler_errors"] += 1
                self._log(
                    "event_bus_handler_error",
                    event_type=event.type.name,
                    handler_name=sub.name or "unknown",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
        return delivered

    def publish_nowait(self, event: Event) -> None:
        """Schedule delivery from sync code running inside the event loop."""
        task = asyncio.get_running_loop().create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def emit(self, event_type: EventType, source: Optional[str] = None, **data: Any) -> int:
        return await self.publish(Event(type=event_type, data=data, source=source))

    async def drain(self) -> None:
        """Wait for deliveries scheduled with publish_nowait()."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    def get_history(self, event_type: Optional[EventType] = None, limit: int = 100) -> List[Event]:
        events = self._history
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "history_size": len(self._history),
            "subscriber_count": sum(len(s) for s in self._subscribers.values()),
        }

    def get_subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))
