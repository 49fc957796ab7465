"""
Prometheus metrics for the reconciliation client.

Organized into: reconciliation, expiry, actions.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class SyncMetrics:
    """Metrics for marketplace reconciliation observability."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Reconciliation ===
        self.cycles = Counter(
            'reconcile_cycles_total',
            'Reconciliation cycles by collection and outcome',
            labelnames=['collection', 'outcome'],
            registry=reg
        )
        self.cooldown_skips = Counter(
            'cooldown_skips_total',
            'Fetch cycles skipped by the cooldown gate',
            labelnames=['key'],
            registry=reg
        )
        self.records_dropped = Counter(
            'records_dropped_total',
            'Records dropped from a snapshot after a fetch or decode failure',
            labelnames=['collection'],
            registry=reg
        )
        self.cycle_duration_ms = Histogram(
            'reconcile_cycle_duration_ms',
            'Wall time of a reconciliation cycle (milliseconds)',
            labelnames=['collection'],
            buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )
        self.snapshot_items = Gauge(
            'snapshot_items',
            'Items in the current snapshot',
            registry=reg
        )
        self.snapshot_auctions = Gauge(
            'snapshot_auctions',
            'Auctions in the current snapshot',
            registry=reg
        )
        self.stale_publishes = Counter(
            'stale_publishes_total',
            'Cycle results discarded because a newer cycle already published',
            registry=reg
        )

        # === Expiry ===
        self.finalize_attempts = Counter(
            'finalize_attempts_total',
            'end_auction submissions by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.overdue_auctions = Gauge(
            'overdue_auctions',
            'Auctions past end_time still reported active by the ledger',
            registry=reg
        )

        # === Actions ===
        self.actions = Counter(
            'marketplace_actions_total',
            'Write actions by name and outcome category',
            labelnames=['action', 'category'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry
