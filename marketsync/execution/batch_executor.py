"""
ThrottledBatchExecutor: bounded-concurrency runner for independent reads.

Fullnodes rate-limit bursts of concurrent view calls. Operations run in
groups of ``batch_size`` with ``asyncio.gather`` and the executor sleeps
``inter_batch_delay_sec`` between groups (not after the last one). Results
come back in input order; a failed operation occupies its slot with an
``Unavailable`` marker instead of aborting the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar, Union

from marketsync.core.json_utils import dumps

log = logging.getLogger("marketsync")

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class Unavailable:
    """Slot marker for an operation that raised."""
    error: BaseException


def is_unavailable(value: Any) -> bool:
    return isinstance(value, Unavailable)


@dataclass
class BatchExecutorConfig:
    batch_size: int = 5
    inter_batch_delay_sec: float = 0.2


@dataclass
class BatchStats:
    """Counters for the most recent run()."""
    operations: int = 0
    batches: int = 0
    delays: int = 0
    failures: int = 0


class ThrottledBatchExecutor(Generic[T]):
    """
    Usage:
        executor = ThrottledBatchExecutor()
        results = await executor.run([lambda i=i: client.call_view("get_nft_details", [addr, i]) for i in ids])
        ok = [r for r in results if not is_unavailable(r)]
    """

    def __init__(
        self,
        config: Optional[BatchExecutorConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.config = config or BatchExecutorConfig()
        if self.config.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.config.inter_batch_delay_sec < 0:
            raise ValueError("inter_batch_delay_sec must be >= 0")
        self._sleep = sleep
        self._log_event = log_event or self._default_log
        self.last_stats = BatchStats()

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    async def run(self, operations: Sequence[Operation]) -> List[Union[T, Unavailable]]:
        stats = BatchStats(operations=len(operations))
        results: List[Union[T, Unavailable]] = []
        size = self.config.batch_size

        for start in range(0, len(operations), size):
            group = operations[start:start + size]
            group_results = await asyncio.gather(*(self._guard(op) for op in group))
            results.extend(group_results)
            stats.batches += 1

            if start + size < len(operations):
                stats.delays += 1
                await self._sleep(self.config.inter_batch_delay_sec)

        stats.failures = sum(1 for r in results if is_unavailable(r))
        self.last_stats = stats
        if stats.failures:
            self._log_event(
                "batch_partial_failure",
                operations=stats.operations,
                failures=stats.failures,
                batches=stats.batches,
            )
        return results

    async def _guard(self, op: Operation) -> Union[T, Unavailable]:
        try:
            return await op()
        except Exception as exc:
            return Unavailable(exc)
