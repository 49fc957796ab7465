"""
PollingScheduler: drives reconciliation, expiry scans and the time cursor.

Jobs are named periodic coroutines, each running in its own asyncio task:
- reconcile   every reconcile_interval_sec   (full two-phase cycle)
- clock       every clock_tick_sec           (TimeCursor tick for countdowns)
- expiry      every expiry_scan_interval_sec (only when a watcher is given)

Each job runs once immediately on start. A failing run is logged and the
loop continues. Out-of-schedule refreshes are requested through the event
bus (ITEM_MINTED, ACTION_CONFIRMED) and still pass the cooldown gate.

stop() stops the timers and unmounts the snapshot store. Requests already in
flight are allowed to finish (up to a grace period) but the store ignores
what they produce.
start() remounts the store, so a stopped scheduler can be started again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from marketsync.core.event_bus import Event, EventType, Subscription
from marketsync.core.json_utils import dumps
from marketsync.core.models import ItemFilter

if TYPE_CHECKING:
    from marketsync.core.event_bus import EventBus
    from marketsync.execution.expiry_watcher import ExpiryWatcher
    from marketsync.execution.reconciliation_service import CycleResult, ReconciliationEngine
    from marketsync.state.snapshot_store import SnapshotStore

log = logging.getLogger("marketsync")

JobFunc = Callable[[], Awaitable[Any]]

REFRESH_SIGNALS = (EventType.ITEM_MINTED, EventType.ACTION_CONFIRMED)


class TimeCursor:
    """
    Second-resolution wall clock shared by countdown consumers.

    tick() advances ``now``; listeners get the new value synchronously.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._now = int(clock())
        self._listeners: List[Callable[[int], None]] = []

    @property
    def now(self) -> int:
        return self._now

    def add_listener(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    def tick(self) -> int:
        self._now = int(self._clock())
        for listener in list(self._listeners):
            try:
                listener(self._now)
            except Exception as exc:
                log.warning(dumps({"event": "time_cursor_listener_error", "error": str(exc)}))
        return self._now

    def seconds_left(self, end_time: int) -> int:
        return max(0, int(end_time) - self._now)


@dataclass
class SchedulerConfig:
    reconcile_interval_sec: float = 15.0
    clock_tick_sec: float = 1.0
    expiry_scan_interval_sec: float = 30.0
    # How long stop() waits for in-flight runs before cancelling them
    stop_grace_sec: float = 5.0


@dataclass
class JobStats:
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_run_at: Optional[float] = None


@dataclass
class Job:
    name: str
    interval_sec: float
    func: JobFunc
    run_immediately: bool = True
    stats: JobStats = field(default_factory=JobStats)


class PollingScheduler:
    """
    Usage:
        scheduler = PollingScheduler(engine, store, watcher=watcher, event_bus=bus)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: "ReconciliationEngine",
        store: "SnapshotStore",
        watcher: Optional["ExpiryWatcher"] = None,
        event_bus: Optional["EventBus"] = None,
        config: Optional[SchedulerConfig] = None,
        cursor: Optional[TimeCursor] = None,
        item_filter: Optional[ItemFilter] = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.watcher = watcher
        self.event_bus = event_bus
        self.config = config or SchedulerConfig()
        self.cursor = cursor or TimeCursor()
        self.item_filter = item_filter

        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._signal_tasks: Set[asyncio.Task] = set()
        self._subscriptions: List[tuple[EventType, Subscription]] = []
        self._stop_event = asyncio.Event()
        self._running = False

        self.add_job("reconcile", self.config.reconcile_interval_sec, self._run_reconcile)
        self.add_job("clock", self.config.clock_tick_sec, self._run_clock)
        if watcher is not None:
            self.add_job("expiry", self.config.expiry_scan_interval_sec, self._run_expiry)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> Dict[str, Job]:
        return dict(self._jobs)

    def add_job(self, name: str, interval_sec: float, func: JobFunc, run_immediately: bool = True) -> Job:
        if interval_sec <= 0:
            raise ValueError(f"job {name}: interval must be > 0")
        job = Job(name=name, interval_sec=interval_sec, func=func, run_immediately=run_immediately)
        self._jobs[name] = job
        if self._running:
            self._tasks[name] = asyncio.create_task(self._job_loop(job), name=f"job:{name}")
        return job

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self.store.mount()

        if self.event_bus is not None:
            for event_type in REFRESH_SIGNALS:
                sub = self.event_bus.subscribe(event_type, self._on_refresh_signal, name="scheduler_refresh")
                self._subscriptions.append((event_type, sub))

        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._job_loop(job), name=f"job:{name}")

        log.info(dumps({
            "event": "scheduler_started",
            "jobs": {name: job.interval_sec for name, job in self._jobs.items()},
        }))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        # Results of anything still in flight must not land in the store
        self.store.unmount()
        self._stop_event.set()

        if self.event_bus is not None:
            for event_type, sub in self._subscriptions:
                self.event_bus.unsubscribe(event_type, sub)
        self._subscriptions.clear()

        pending = [*self._tasks.values(), *self._signal_tasks]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.config.stop_grace_sec)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        self._tasks.clear()
        self._signal_tasks.clear()
        log.info(dumps({"event": "scheduler_stopped"}))

    # ------------------------------------------------------------------
    # Refresh requests
    # ------------------------------------------------------------------

    async def request_refresh(self, reason: str = "manual") -> Optional["CycleResult"]:
        """Run a reconciliation outside the schedule (cooldown still applies)."""
        if not self._running:
            return None
        log.debug(dumps({"event": "refresh_requested", "reason": reason}))
        return await self.engine.reconcile(self.item_filter)

    def _on_refresh_signal(self, event: Event) -> None:
        if event.type is EventType.ACTION_CONFIRMED:
            # Auctions read before the write may miss a new or closed auction
            self.engine.invalidate_auctions()
        # The publisher is usually a write action; do not make it wait for a cycle
        task = asyncio.create_task(self._guarded("signal_refresh", lambda: self.request_refresh(event.type.name)))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _run_reconcile(self) -> None:
        await self.engine.reconcile(self.item_filter)

    async def _run_clock(self) -> None:
        self.cursor.tick()

    async def _run_expiry(self) -> None:
        if self.watcher is not None:
            await self.watcher.scan(self.cursor.tick())

    async def _job_loop(self, job: Job) -> None:
        if not job.run_immediately and await self._wait(job.interval_sec):
            return
        while self._running:
            job.stats.last_run_at = time.time()
            job.stats.runs += 1
            try:
                await job.func()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                job.stats.failures += 1
                job.stats.last_error = str(exc)
                log.error(dumps({"event": "job_error", "job": job.name, "error": str(exc)}))
            if await self._wait(job.interval_sec):
                return

    async def _wait(self, interval_sec: float) -> bool:
        """Sleep one interval; True when stop() was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval_sec)
            return True
        except asyncio.TimeoutError:
            return False

    async def _guarded(self, name: str, func: JobFunc) -> None:
        try:
            await func()
        except Exception as exc:
            log.error(dumps({"event": "job_error", "job": name, "error": str(exc)}))
