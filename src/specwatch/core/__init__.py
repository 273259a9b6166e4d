"""
Core module for specwatch.

Contains shared models, the canonical document tree, errors and configuration
used across all modules.
"""

from specwatch.core.canonical import (
    CanonicalDocument,
    MapNode,
    ScalarNode,
    SeqNode,
    SetNode,
    canonicalize,
    content_hash,
)
from specwatch.core.errors import (
    FetchError,
    FetchTimeoutError,
    InvalidDocumentError,
    InvariantViolation,
    SpecwatchError,
    UnreachableError,
)
from specwatch.core.models import (
    ChangeKind,
    ChangelogEntry,
    ChangeRecord,
    Channel,
    MonitoredTarget,
    NotificationPreferences,
    NotificationTask,
    Severity,
    Snapshot,
    TaskStatus,
)

__all__ = [
    "CanonicalDocument",
    "MapNode",
    "ScalarNode",
    "SeqNode",
    "SetNode",
    "canonicalize",
    "content_hash",
    "FetchError",
    "FetchTimeoutError",
    "InvalidDocumentError",
    "InvariantViolation",
    "SpecwatchError",
    "UnreachableError",
    "ChangeKind",
    "ChangelogEntry",
    "ChangeRecord",
    "Channel",
    "MonitoredTarget",
    "NotificationPreferences",
    "NotificationTask",
    "Severity",
    "Snapshot",
    "TaskStatus",
]
