"""
Monitoring package.

Prometheus metrics for reconciliation, expiry handling and write actions.
"""

from marketsync.monitoring.metrics_rich import SyncMetrics

__all__ = [
    "SyncMetrics",
]
