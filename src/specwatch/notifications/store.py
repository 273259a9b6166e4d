"""
SQLite-backed notification task store.

At most one task exists per (entry, subscriber, channel); creating a task
that already exists returns the stored one. Status transitions only apply to
pending tasks, so terminal tasks are never re-opened.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from specwatch.core.database import connect, ensure_parent_dir, transaction
from specwatch.core.models import Channel, NotificationTask, TaskStatus

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TaskStore:
    """
    Persistent storage for notification tasks.
    """

    def __init__(self, db_path: str = "/var/lib/specwatch/specwatch.db"):
        """
        Initialize task store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        ensure_parent_dir(db_path)
        self._init_db()

        logger.info(f"Initialized TaskStore at {db_path}")

    def _init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_tasks (
                    task_id TEXT PRIMARY KEY,
                    entry_id TEXT NOT NULL,
                    subscriber_id TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    next_attempt_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (entry_id, subscriber_id, channel)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_due
                ON notification_tasks(status, next_attempt_at)
            """)

    def create(
        self, entry_id: str, subscriber_id: str, channel: Channel
    ) -> Tuple[NotificationTask, bool]:
        """
        Create a pending task unless one already exists for the same key.

        Args:
            entry_id: Changelog entry
            subscriber_id: Recipient
            channel: Delivery channel

        Returns:
            Tuple of (task, created) where created is False for an existing task
        """
        now = datetime.utcnow()
        task = NotificationTask(
            task_id=uuid4().hex,
            entry_id=entry_id,
            subscriber_id=subscriber_id,
            channel=channel,
            status=TaskStatus.PENDING,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )

        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO notification_tasks (
                    task_id, entry_id, subscriber_id, channel, status, attempts,
                    last_error, next_attempt_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 0, NULL, ?, ?, ?)
                """,
                (
                    task.task_id,
                    entry_id,
                    subscriber_id,
                    channel.value,
                    task.status.value,
                    now.isoformat(),
                    now.isoformat(),
                    now.isoformat(),
                )
            )
            if cursor.rowcount > 0:
                return task, True

            row = conn.execute(
                """
                SELECT * FROM notification_tasks
                WHERE entry_id = ? AND subscriber_id = ? AND channel = ?
                """,
                (entry_id, subscriber_id, channel.value)
            ).fetchone()

        logger.debug(f"Task for {(entry_id, subscriber_id, channel.value)} already exists")
        return self._row_to_task(row), False

    def get(self, task_id: str) -> Optional[NotificationTask]:
        """Get a task by id."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM notification_tasks WHERE task_id = ?",
                (task_id,)
            ).fetchone()

        if row:
            return self._row_to_task(row)
        return None

    def list_for_entry(self, entry_id: str) -> List[NotificationTask]:
        """All tasks of one changelog entry."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM notification_tasks
                WHERE entry_id = ?
                ORDER BY subscriber_id, channel
                """,
                (entry_id,)
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def due(self, now: Optional[datetime] = None, limit: int = 100) -> List[NotificationTask]:
        """
        Pending tasks whose next attempt time has passed, oldest first.

        Args:
            now: Reference time (default: current UTC time)
            limit: Maximum number of tasks to return

        Returns:
            List of NotificationTask objects
        """
        now = now or datetime.utcnow()
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM notification_tasks
                WHERE status = ?
                  AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
                ORDER BY created_at, task_id
                LIMIT ?
                """,
                (TaskStatus.PENDING.value, now.isoformat(), limit)
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def transition(
        self,
        task_id: str,
        status: TaskStatus,
        attempts: int,
        last_error: Optional[str],
        next_attempt_at: Optional[datetime],
    ) -> bool:
        """
        Apply a status change to a pending task.

        Args:
            task_id: Task identifier
            status: New status
            attempts: New attempt count
            last_error: Error of the last attempt, if any
            next_attempt_at: Next attempt time (pending tasks only)

        Returns:
            True if the task was pending and has been updated, False otherwise
        """
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE notification_tasks
                SET status = ?, attempts = ?, last_error = ?, next_attempt_at = ?,
                    updated_at = ?
                WHERE task_id = ? AND status = ?
                """,
                (
                    status.value,
                    attempts,
                    last_error,
                    next_attempt_at.isoformat() if next_attempt_at else None,
                    datetime.utcnow().isoformat(),
                    task_id,
                    TaskStatus.PENDING.value,
                )
            )
            updated = cursor.rowcount > 0
        return updated

    def count_by_status(self) -> Dict[str, int]:
        """Number of tasks per status."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM notification_tasks GROUP BY status"
            ).fetchall()

        counts = {status.value: 0 for status in TaskStatus}
        counts.update({row["status"]: row["n"] for row in rows})
        return counts

    def _row_to_task(self, row) -> NotificationTask:
        """Convert database row to NotificationTask object."""
        return NotificationTask(
            task_id=row["task_id"],
            entry_id=row["entry_id"],
            subscriber_id=row["subscriber_id"],
            channel=Channel(row["channel"]),
            status=TaskStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
            next_attempt_at=_parse_ts(row["next_attempt_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
