"""
Changelog writer.

Aggregates the classified changes of one comparison into an immutable
changelog entry and persists it exactly once per (target, snapshot pair).
The entry and its dispatch request (outbox row) are written in the same
transaction, so a crash can never leave an entry that will not be
dispatched.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from specwatch.core.database import connect, ensure_parent_dir, transaction
from specwatch.core.models import ChangeKind, ChangelogEntry, ChangeRecord, Severity, max_severity

logger = logging.getLogger(__name__)

SEVERITY_BASE_SCORES = {
    Severity.LOW: 10,
    Severity.MEDIUM: 30,
    Severity.HIGH: 60,
    Severity.CRITICAL: 100,
}


def summarize(records: List[ChangeRecord]) -> str:
    """
    Summarize change counts, e.g. "2 additions, 1 removal".

    Args:
        records: Change records

    Returns:
        Summary string
    """
    added = sum(1 for r in records if r.kind == ChangeKind.ADDED)
    removed = sum(1 for r in records if r.kind == ChangeKind.REMOVED)
    modified = sum(1 for r in records if r.kind == ChangeKind.MODIFIED)

    parts = []
    if added:
        parts.append(f"{added} addition{'s' if added > 1 else ''}")
    if removed:
        parts.append(f"{removed} removal{'s' if removed > 1 else ''}")
    if modified:
        parts.append(f"{modified} modification{'s' if modified > 1 else ''}")

    return ", ".join(parts) if parts else "No significant changes"


def impact_score(records: List[ChangeRecord], severity: Severity) -> int:
    """
    Score the impact of a comparison from 0 to 100.

    Base score by aggregate severity, plus 20 per removal and 5 per addition.
    """
    removals = sum(1 for r in records if r.kind == ChangeKind.REMOVED)
    additions = sum(1 for r in records if r.kind == ChangeKind.ADDED)
    return min(100, SEVERITY_BASE_SCORES[severity] + removals * 20 + additions * 5)


def row_to_entry(row) -> ChangelogEntry:
    """Convert database row to ChangelogEntry object."""
    return ChangelogEntry(
        entry_id=row["entry_id"],
        target_id=row["target_id"],
        from_snapshot_id=row["from_snapshot_id"],
        to_snapshot_id=row["to_snapshot_id"],
        records=[ChangeRecord(**r) for r in json.loads(row["records"])],
        severity=Severity(row["severity"]),
        breaking=bool(row["breaking"]),
        summary=row["summary"] or "",
        impact_score=row["impact_score"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class ChangelogWriter:
    """
    SQLite-backed changelog writer with an outbox of pending dispatches.
    """

    def __init__(self, db_path: str = "/var/lib/specwatch/specwatch.db"):
        """
        Initialize changelog writer.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        ensure_parent_dir(db_path)
        self._init_db()

        logger.info(f"Initialized ChangelogWriter at {db_path}")

    def _init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS changelog_entries (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id TEXT NOT NULL UNIQUE,
                    target_id TEXT NOT NULL,
                    from_snapshot_id TEXT NOT NULL,
                    to_snapshot_id TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    severity_rank INTEGER NOT NULL,
                    breaking INTEGER NOT NULL,
                    summary TEXT,
                    impact_score INTEGER NOT NULL DEFAULT 0,
                    records TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (target_id, from_snapshot_id, to_snapshot_id)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_changelog_target
                ON changelog_entries(target_id, created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS dispatch_outbox (
                    entry_id TEXT PRIMARY KEY,
                    enqueued_at TEXT NOT NULL,
                    dispatched_at TEXT
                )
            """)

    def write(
        self,
        target_id: str,
        from_snapshot_id: str,
        to_snapshot_id: str,
        records: List[ChangeRecord],
    ) -> Optional[ChangelogEntry]:
        """
        Persist the changelog entry of one comparison.

        Args:
            target_id: Target identifier
            from_snapshot_id: Older snapshot of the pair
            to_snapshot_id: Newer snapshot of the pair
            records: Classified change records

        Returns:
            The new entry, the already stored entry for the same snapshot pair,
            or None when records is empty (no-op)

        Raises:
            InvariantViolation: If records contains unclassified records
        """
        if not records:
            logger.debug(
                f"No changes for {target_id} ({from_snapshot_id} -> {to_snapshot_id}), "
                f"nothing written"
            )
            return None

        severity = max_severity(r.severity for r in records if r.severity is not None)
        entry = ChangelogEntry.build(
            entry_id=uuid4().hex,
            target_id=target_id,
            from_snapshot_id=from_snapshot_id,
            to_snapshot_id=to_snapshot_id,
            records=records,
            summary=summarize(records),
            impact_score=impact_score(records, severity),
        )

        with transaction(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT * FROM changelog_entries
                WHERE target_id = ? AND from_snapshot_id = ? AND to_snapshot_id = ?
                """,
                (target_id, from_snapshot_id, to_snapshot_id)
            ).fetchone()

            if row:
                existing = row_to_entry(row)
                logger.info(
                    f"Changelog entry {existing.entry_id} already exists for {target_id} "
                    f"({from_snapshot_id} -> {to_snapshot_id})"
                )
                return existing

            conn.execute(
                """
                INSERT INTO changelog_entries (
                    entry_id, target_id, from_snapshot_id, to_snapshot_id,
                    severity, severity_rank, breaking, summary, impact_score,
                    records, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.target_id,
                    entry.from_snapshot_id,
                    entry.to_snapshot_id,
                    entry.severity.value,
                    entry.severity.rank,
                    int(entry.breaking),
                    entry.summary,
                    entry.impact_score,
                    json.dumps([r.model_dump(mode="json") for r in entry.records]),
                    entry.created_at.isoformat(),
                )
            )
            conn.execute(
                "INSERT INTO dispatch_outbox (entry_id, enqueued_at) VALUES (?, ?)",
                (entry.entry_id, datetime.utcnow().isoformat())
            )

        logger.info(
            f"Created changelog entry {entry.entry_id} for {target_id}: "
            f"{entry.summary} (severity: {entry.severity.value}, breaking: {entry.breaking})"
        )
        return entry

    def get(self, entry_id: str) -> Optional[ChangelogEntry]:
        """
        Get a changelog entry by id.

        Args:
            entry_id: Entry identifier

        Returns:
            ChangelogEntry if found, None otherwise
        """
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM changelog_entries WHERE entry_id = ?",
                (entry_id,)
            ).fetchone()

        if row:
            return row_to_entry(row)
        return None

    def find(
        self, target_id: str, from_snapshot_id: str, to_snapshot_id: str
    ) -> Optional[ChangelogEntry]:
        """Get the entry of a snapshot pair, if one was written."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT * FROM changelog_entries
                WHERE target_id = ? AND from_snapshot_id = ? AND to_snapshot_id = ?
                """,
                (target_id, from_snapshot_id, to_snapshot_id)
            ).fetchone()

        if row:
            return row_to_entry(row)
        return None

    def count(self, target_id: Optional[str] = None) -> int:
        """Number of stored entries, optionally for one target."""
        with connect(self.db_path) as conn:
            if target_id:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM changelog_entries WHERE target_id = ?",
                    (target_id,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) AS n FROM changelog_entries").fetchone()
        return row["n"]

    def pending_dispatch(self, limit: int = 100) -> List[ChangelogEntry]:
        """
        Entries whose dispatch has not been completed, oldest first.

        Args:
            limit: Maximum number of entries to return

        Returns:
            List of ChangelogEntry objects
        """
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT e.* FROM changelog_entries e
                JOIN dispatch_outbox o ON o.entry_id = e.entry_id
                WHERE o.dispatched_at IS NULL
                ORDER BY e.seq
                LIMIT ?
                """,
                (limit,)
            ).fetchall()
        return [row_to_entry(row) for row in rows]

    def mark_dispatched(self, entry_id: str) -> bool:
        """
        Mark the dispatch of an entry as completed.

        Args:
            entry_id: Entry identifier

        Returns:
            True if the outbox row was pending, False otherwise
        """
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE dispatch_outbox SET dispatched_at = ?
                WHERE entry_id = ? AND dispatched_at IS NULL
                """,
                (datetime.utcnow().isoformat(), entry_id)
            )
            updated = cursor.rowcount > 0
        return updated
