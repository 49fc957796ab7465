"""
Orchestrator package - periodic job scheduling.

Runs reconciliation, expiry scans and the time cursor on fixed intervals and
turns refresh signals from the event bus into out-of-schedule cycles.
"""

from marketsync.orchestrator.polling_scheduler import (
    Job,
    JobStats,
    PollingScheduler,
    SchedulerConfig,
    TimeCursor,
)

__all__ = [
    "Job",
    "JobStats",
    "PollingScheduler",
    "SchedulerConfig",
    "TimeCursor",
]
