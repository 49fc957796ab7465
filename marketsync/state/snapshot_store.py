"""
SnapshotStore: single owner of the current marketplace snapshot.

Architecture:
    The reconciliation engine builds a complete MarketplaceSnapshot off to the
    side and hands it to publish(). The store swaps it in wholesale, so
    consumers only ever see a fully reconciled state.

    Two guards protect against late writes:
    - generation: every cycle takes a ticket from begin_cycle(); a result whose
      ticket is older than the last published one is discarded, so a slow
      cycle cannot overwrite a newer one.
    - mounted: once unmount() is called (scheduler teardown) every publish is
      ignored; in-flight requests finish but their results are dropped.
      mount() reopens the store for cycles that begin after it.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Union

from marketsync.core.json_utils import dumps
from marketsync.core.models import MarketplaceSnapshot

log = logging.getLogger("marketsync")

Listener = Union[
    Callable[[MarketplaceSnapshot], None],
    Callable[[MarketplaceSnapshot], Awaitable[None]],
]


class SnapshotStore:
    def __init__(self, log_event: Optional[Callable[..., None]] = None) -> None:
        self._snapshot = MarketplaceSnapshot()
        self._initialized: Optional[bool] = None
        self._issued_generation = 0
        self._published_generation = 0
        self._mounted = True
        self._listeners: List[Listener] = []
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def current(self) -> MarketplaceSnapshot:
        return self._snapshot

    @property
    def initialized(self) -> Optional[bool]:
        """None until the first initialization check has completed."""
        return self._initialized

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def published_generation(self) -> int:
        return self._published_generation

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def begin_cycle(self) -> int:
        """Issue a generation ticket for a cycle about to start fetching."""
        self._issued_generation += 1
        return self._issued_generation

    def is_stale(self, generation: int) -> bool:
        return not self._mounted or generation < self._published_generation

    async def publish(self, snapshot: MarketplaceSnapshot, generation: int) -> bool:
        """
        Replace the current snapshot. Returns False when the result was
        discarded (unmounted store or a newer generation already published).
        """
        if not self._mounted:
            self._log_event("snapshot_discarded", reason="unmounted", generation=generation)
            return False
        if generation < self._published_generation:
            self._log_event(
                "snapshot_discarded",
                reason="stale",
                generation=generation,
                published=self._published_generation,
            )
            return False

        self._snapshot = replace(snapshot, generation=generation, initialized=True)
        self._initialized = True
        self._published_generation = generation

        for listener in list(self._listeners):
            try:
                result = listener(self._snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._log_event("snapshot_listener_error", error=str(exc))
        return True

    def mark_uninitialized(self, generation: int) -> bool:
        """Record that the marketplace is not initialized; the last snapshot stays."""
        if self.is_stale(generation):
            return False
        self._initialized = False
        self._snapshot = replace(self._snapshot, initialized=False)
        return True

    def mount(self) -> None:
        """Accept results again. Cycles begun before the remount stay stale."""
        if self._mounted:
            return
        self._mounted = True
        self._issued_generation += 1
        self._published_generation = self._issued_generation

    def unmount(self) -> None:
        """Stop accepting results; later publish() calls are ignored."""
        self._mounted = False
        self._listeners.clear()
