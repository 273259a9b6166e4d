"""
Snapshot persistence.
"""

from specwatch.snapshots.store import SnapshotStore

__all__ = ["SnapshotStore"]
