"""
State package.

Owns the current reconciled marketplace snapshot.
"""

from marketsync.state.snapshot_store import SnapshotStore

__all__ = [
    "SnapshotStore",
]
