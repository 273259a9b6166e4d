"""
Target health tracking.

Health is a reported fact about the last poll of each target; it never
influences diffing or classification. A target going down or coming back
is recorded as a health event so subscribers can be alerted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from specwatch.core.database import connect, ensure_parent_dir

logger = logging.getLogger(__name__)

# Health event ids share the notification task key space with changelog entries
HEALTH_EVENT_PREFIX = "health-"


class HealthStatus(str, Enum):
    """Health of a monitored target."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


@dataclass
class TargetHealth:
    """
    Result of the latest poll of a target.

    Attributes:
        target_id: Target identifier
        status: Health status
        last_checked: Time of the last completed poll
        last_success: Time of the last successful fetch
        last_error: Error of the last failed poll, if any
        consecutive_failures: Failed polls since the last success
    """
    target_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    last_checked: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
        }


class HealthEventKind(str, Enum):
    """Health transitions that are reported to subscribers."""

    API_ERROR = "api_error"
    API_RECOVERED = "api_recovered"


@dataclass
class HealthEvent:
    """
    A target starting to fail or recovering.

    Attributes:
        event_id: Unique event identifier (prefixed with ``health-``)
        target_id: Target identifier
        kind: Transition kind
        error: Error of the failed poll (failure events only)
        created_at: When the transition was observed
    """
    event_id: str
    target_id: str
    kind: HealthEventKind
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def recovered(self) -> bool:
        return self.kind == HealthEventKind.API_RECOVERED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "event_id": self.event_id,
            "target_id": self.target_id,
            "kind": self.kind.value,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }


_FAILING = (HealthStatus.DEGRADED, HealthStatus.UNREACHABLE)


def transition_kind(previous: HealthStatus, current: HealthStatus) -> Optional[HealthEventKind]:
    """
    Health event implied by a status change, if any.

    A target that was healthy or never polled and now fails raises
    ``api_error``; a failing target that is healthy again raises
    ``api_recovered``. Moving between failure states raises nothing.
    """
    if current in _FAILING and previous not in _FAILING:
        return HealthEventKind.API_ERROR
    if current == HealthStatus.HEALTHY and previous in _FAILING:
        return HealthEventKind.API_RECOVERED
    return None


class HealthStore:
    """
    SQLite-backed target health records.
    """

    def __init__(self, db_path: str = "/var/lib/specwatch/specwatch.db"):
        self.db_path = db_path

        ensure_parent_dir(db_path)
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS target_health (
                    target_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    last_checked TEXT,
                    last_success TEXT,
                    last_error TEXT,
                    consecutive_failures INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS health_events (
                    event_id TEXT PRIMARY KEY,
                    target_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    error TEXT,
                    created_at TEXT NOT NULL
                )
            """)

    def get(self, target_id: str) -> TargetHealth:
        """
        Get the health of a target.

        Args:
            target_id: Target identifier

        Returns:
            TargetHealth (status ``unknown`` if the target was never polled)
        """
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM target_health WHERE target_id = ?",
                (target_id,)
            ).fetchone()

        if row:
            return self._row_to_health(row)
        return TargetHealth(target_id=target_id)

    def list_all(self) -> List[TargetHealth]:
        """Health of every polled target, by target id."""
        with connect(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM target_health ORDER BY target_id").fetchall()
        return [self._row_to_health(row) for row in rows]

    def record_success(self, target_id: str, now: Optional[datetime] = None) -> TargetHealth:
        """Record a successful poll."""
        now = now or datetime.utcnow()
        health = self.get(target_id)
        health.status = HealthStatus.HEALTHY
        health.last_checked = now
        health.last_success = now
        health.last_error = None
        health.consecutive_failures = 0
        self._save(health)
        return health

    def record_failure(
        self,
        target_id: str,
        status: HealthStatus,
        error: str,
        now: Optional[datetime] = None,
    ) -> TargetHealth:
        """
        Record a failed poll.

        Args:
            target_id: Target identifier
            status: ``degraded`` for invalid documents, ``unreachable`` otherwise
            error: Error message
            now: Poll time (default: current UTC time)

        Returns:
            Updated TargetHealth
        """
        health = self.get(target_id)
        health.status = status
        health.last_checked = now or datetime.utcnow()
        health.last_error = error
        health.consecutive_failures += 1
        self._save(health)

        logger.warning(
            f"Target {target_id} is {status.value} "
            f"({health.consecutive_failures} consecutive failures): {error}"
        )
        return health

    def observe(
        self,
        target_id: str,
        status: HealthStatus,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[HealthEvent]:
        """
        Record the outcome of a poll and the health event it implies.

        Args:
            target_id: Target identifier
            status: ``healthy`` after a successful fetch, a failure status otherwise
            error: Error message of a failed poll
            now: Poll time (default: current UTC time)

        Returns:
            HealthEvent if the target started failing or recovered, else None
        """
        now = now or datetime.utcnow()
        previous = self.get(target_id).status

        if status == HealthStatus.HEALTHY:
            self.record_success(target_id, now)
        else:
            self.record_failure(target_id, status, error or status.value, now)

        kind = transition_kind(previous, status)
        if kind is None:
            return None

        event = HealthEvent(
            event_id=f"{HEALTH_EVENT_PREFIX}{uuid4().hex}",
            target_id=target_id,
            kind=kind,
            error=error if kind == HealthEventKind.API_ERROR else None,
            created_at=now,
        )
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO health_events (event_id, target_id, kind, error, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event.event_id, target_id, kind.value, event.error, now.isoformat())
            )

        logger.info(f"Target {target_id} health {previous.value} -> {status.value} ({kind.value})")
        return event

    def get_event(self, event_id: str) -> Optional[HealthEvent]:
        """Get a health event by id."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM health_events WHERE event_id = ?",
                (event_id,)
            ).fetchone()

        if row is None:
            return None
        return HealthEvent(
            event_id=row["event_id"],
            target_id=row["target_id"],
            kind=HealthEventKind(row["kind"]),
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _save(self, health: TargetHealth) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO target_health (
                    target_id, status, last_checked, last_success, last_error,
                    consecutive_failures
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    health.target_id,
                    health.status.value,
                    health.last_checked.isoformat() if health.last_checked else None,
                    health.last_success.isoformat() if health.last_success else None,
                    health.last_error,
                    health.consecutive_failures,
                )
            )

    def _row_to_health(self, row) -> TargetHealth:
        return TargetHealth(
            target_id=row["target_id"],
            status=HealthStatus(row["status"]),
            last_checked=datetime.fromisoformat(row["last_checked"]) if row["last_checked"] else None,
            last_success=datetime.fromisoformat(row["last_success"]) if row["last_success"] else None,
            last_error=row["last_error"],
            consecutive_failures=row["consecutive_failures"],
        )
