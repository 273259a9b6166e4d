"""
Core data models for specwatch.

Defines the shared data structures used across the fetcher, snapshot store,
change monitor and notification modules.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from specwatch.core.canonical import CanonicalDocument
from specwatch.core.errors import InvariantViolation


class Severity(str, Enum):
    """Severity tiers for change records, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __ge__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def max_severity(severities: Iterable[Severity]) -> Severity:
    """Highest severity of a collection (LOW for an empty one)."""
    return max(severities, key=lambda s: s.rank, default=Severity.LOW)


class ChangeKind(str, Enum):
    """Kinds of atomic structural differences."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class Channel(str, Enum):
    """Delivery channels for notifications."""

    IN_APP = "in-app"
    REALTIME = "realtime"
    EMAIL = "email"
    WEBHOOK = "webhook"


class TaskStatus(str, Enum):
    """Delivery status of a notification task."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


_INTERVAL_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")


def parse_interval(value: Any) -> int:
    """
    Parse a polling interval into seconds.

    Accepts plain seconds or the frequency strings used in target
    registration forms (``5m``, ``15m``, ``1h``, ``6h``, ``1d``).

    Args:
        value: Seconds as int/str, or a ``<number><unit>`` string

    Returns:
        Interval in seconds

    Raises:
        ValueError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid interval: {value!r}")
    if isinstance(value, (int, float)):
        seconds = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        seconds = int(value.strip())
    elif isinstance(value, str) and _INTERVAL_RE.match(value):
        amount, unit = _INTERVAL_RE.match(value).groups()
        seconds = int(amount) * _INTERVAL_UNITS[unit]
    else:
        raise ValueError(f"Invalid interval: {value!r}")

    if seconds <= 0:
        raise ValueError(f"Interval must be positive, got {value!r}")
    return seconds


class MonitoredTarget(BaseModel):
    """
    One external API under observation.

    Owned by the registry; the engine only reads it.
    """

    target_id: str
    name: str
    url: str
    poll_interval_seconds: int = 3600
    active: bool = True
    subscribers: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @field_validator("poll_interval_seconds", mode="before")
    @classmethod
    def validate_interval(cls, v: Any) -> int:
        """Accept seconds or frequency strings such as '15m'."""
        return parse_interval(v)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "target_id": "petstore",
                "name": "Petstore API",
                "url": "https://petstore3.swagger.io/api/v3/openapi.json",
                "poll_interval_seconds": "1h",
                "subscribers": ["alice", "bob"],
            }
        }


class ChangeRecord(BaseModel):
    """
    One atomic structural difference between two snapshots.

    ``severity`` and ``breaking`` are filled in by the severity classifier;
    records produced by the diff engine carry ``severity=None``.
    """

    kind: ChangeKind
    location: str
    segments: Tuple[str, ...]
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    description: str = ""
    severity: Optional[Severity] = None
    breaking: bool = False
    rule: Optional[str] = None

    class Config:
        frozen = True

    @property
    def classified(self) -> bool:
        return self.severity is not None


class ChangelogEntry(BaseModel):
    """
    Durable record of one snapshot comparison.

    Entries are immutable; a later comparison supersedes, never updates, an
    earlier one.
    """

    entry_id: str
    target_id: str
    from_snapshot_id: str
    to_snapshot_id: str
    records: List[ChangeRecord]
    severity: Severity
    breaking: bool
    summary: str = ""
    impact_score: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True

    @classmethod
    def build(
        cls,
        entry_id: str,
        target_id: str,
        from_snapshot_id: str,
        to_snapshot_id: str,
        records: List[ChangeRecord],
        summary: str = "",
        impact_score: int = 0,
        created_at: Optional[datetime] = None,
    ) -> "ChangelogEntry":
        """
        Build an entry from classified records, computing the aggregates.

        Raises:
            InvariantViolation: If records is empty or contains unclassified records
        """
        if not records:
            raise InvariantViolation(
                f"Changelog entry for {target_id} ({from_snapshot_id} -> "
                f"{to_snapshot_id}) has no change records"
            )
        unclassified = [r.location for r in records if not r.classified]
        if unclassified:
            raise InvariantViolation(
                f"Changelog entry for {target_id} has unclassified records: {unclassified[:5]}"
            )

        return cls(
            entry_id=entry_id,
            target_id=target_id,
            from_snapshot_id=from_snapshot_id,
            to_snapshot_id=to_snapshot_id,
            records=list(records),
            severity=max_severity(r.severity for r in records),
            breaking=any(r.breaking for r in records),
            summary=summary,
            impact_score=impact_score,
            created_at=created_at or datetime.utcnow(),
        )


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable canonical representation of a target's interface at one point in time.

    Attributes:
        snapshot_id: Unique snapshot identifier
        target_id: Target the snapshot belongs to
        captured_at: Capture time
        content_hash: SHA-256 of the canonical form
        document: Canonical document tree
    """
    snapshot_id: str
    target_id: str
    captured_at: datetime
    content_hash: str
    document: CanonicalDocument


@dataclass
class NotificationTask:
    """
    One obligation to deliver a changelog entry to one subscriber on one channel.

    Attributes:
        task_id: Unique task identifier
        entry_id: Changelog entry being delivered
        subscriber_id: Recipient
        channel: Delivery channel
        status: pending, delivered or failed
        attempts: Number of delivery attempts made so far
        last_error: Error reported by the last failed attempt
        next_attempt_at: Earliest time of the next attempt (pending tasks only)
        created_at: When the task was created
        updated_at: Last status change
    """
    task_id: str
    entry_id: str
    subscriber_id: str
    channel: Channel
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.DELIVERED, TaskStatus.FAILED)

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        return (self.entry_id, self.subscriber_id, self.channel.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "entry_id": self.entry_id,
            "subscriber_id": self.subscriber_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# Channels that carry target recovery alerts
_RECOVERY_CHANNELS = (Channel.IN_APP, Channel.REALTIME)


def _default_channels() -> Dict[Channel, bool]:
    return {
        Channel.IN_APP: True,
        Channel.REALTIME: True,
        Channel.EMAIL: False,
        Channel.WEBHOOK: False,
    }


class NotificationPreferences(BaseModel):
    """
    Per-subscriber notification preferences.

    Precedence: ``muted`` suppresses everything. Otherwise ``breaking_only``
    and ``min_severity`` must both be satisfied, and then each channel must be
    opted in and meet its own ``channel_min_severity`` threshold, if any.

    Target health alerts ignore the severity filters; they are governed by
    ``muted`` and ``api_errors``.
    """

    muted: bool = False
    breaking_only: bool = False
    min_severity: Severity = Severity.LOW
    channels: Dict[Channel, bool] = Field(default_factory=_default_channels)
    channel_min_severity: Dict[Channel, Severity] = Field(default_factory=dict)
    api_errors: bool = True
    email: Optional[str] = None
    webhook_url: Optional[str] = None

    def wants(self, severity: Severity, breaking: bool) -> bool:
        """Whether an entry with this aggregate severity/breaking flag passes the global filters."""
        if self.muted:
            return False
        if self.breaking_only and not breaking:
            return False
        return severity >= self.min_severity

    def channels_for(self, severity: Severity, breaking: bool) -> List[Channel]:
        """
        Channels that should receive an entry, in a stable order.

        Args:
            severity: Aggregate severity of the entry
            breaking: Aggregate breaking flag of the entry

        Returns:
            List of channels (empty if nothing should be delivered)
        """
        if not self.wants(severity, breaking):
            return []

        selected = []
        for channel in Channel:
            if not self.channels.get(channel, False):
                continue
            threshold = self.channel_min_severity.get(channel)
            if threshold is not None and severity < threshold:
                continue
            selected.append(channel)
        return selected

    def channels_for_health(self, recovered: bool) -> List[Channel]:
        """
        Channels that should receive a target health alert.

        Failure alerts go to every opted-in channel, recovery alerts only to
        the in-app feed and realtime push.

        Args:
            recovered: True for a recovery alert, False for a failure alert

        Returns:
            List of channels (empty if nothing should be delivered)
        """
        if self.muted or not self.api_errors:
            return []

        selected = []
        for channel in Channel:
            if recovered and channel not in _RECOVERY_CHANNELS:
                continue
            if self.channels.get(channel, False):
                selected.append(channel)
        return selected
