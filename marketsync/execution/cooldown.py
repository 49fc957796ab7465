"""
CooldownGate: per-operation minimum interval between fetch cycles.

Sits underneath the fixed-interval scheduler and absorbs bursts from multiple
triggers (scheduled ticks, mint notifications, manual refreshes) that would
otherwise start overlapping fetch cycles against a rate-limited node.

Thread-safe for single-threaded asyncio usage: try_enter() reads and writes
the timestamp with no await in between.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from marketsync.core.json_utils import dumps

log = logging.getLogger("marketsync")

FETCH_ITEMS = "fetch-items"
FETCH_AUCTIONS = "fetch-auctions"


@dataclass
class CooldownConfig:
    """Configuration for CooldownGate."""
    min_interval_sec: float = 5.0
    # Per-key overrides, e.g. {"fetch-auctions": 2.0}
    per_key_sec: Dict[str, float] = field(default_factory=dict)


class CooldownGate:
    """
    Timestamp guard keyed by operation class.

    Usage:
        gate = CooldownGate(CooldownConfig(min_interval_sec=5.0))
        if not gate.try_enter("fetch-items"):
            return  # skip this cycle
    """

    def __init__(
        self,
        config: Optional[CooldownConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.config = config or CooldownConfig()
        self._clock = clock
        self._last_entry: Dict[str, float] = {}
        self._skips: Dict[str, int] = {}
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    def interval_for(self, key: str) -> float:
        return self.config.per_key_sec.get(key, self.config.min_interval_sec)

    def try_enter(self, key: str) -> bool:
        """
        Record an entry for ``key`` and return True, or return False if the
        previous entry is younger than the key's minimum interval.
        """
        now = self._clock()
        last = self._last_entry.get(key)
        if last is not None and now - last < self.interval_for(key):
            self._skips[key] = self._skips.get(key, 0) + 1
            self._log_event(
                "cooldown_skip",
                key=key,
                remaining_sec=round(self.interval_for(key) - (now - last), 3),
            )
            return False
        self._last_entry[key] = now
        return True

    def remaining(self, key: str) -> float:
        """Seconds until ``key`` may be entered again (0 if open)."""
        last = self._last_entry.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.interval_for(key) - (self._clock() - last))

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._last_entry.clear()
        else:
            self._last_entry.pop(key, None)

    def skip_count(self, key: str) -> int:
        return self._skips.get(key, 0)
