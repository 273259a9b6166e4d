"""
Snapshot store for persisting canonical interface descriptions.

Uses SQLite for lightweight persistence. Snapshots are append-only; the
store only deletes them when enforcing the per-target retention limit.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from specwatch.core.canonical import CanonicalDocument, canonical_json, canonicalize, content_hash
from specwatch.core.database import connect, ensure_parent_dir, transaction
from specwatch.core.models import Snapshot

logger = logging.getLogger(__name__)

# The two most recent snapshots are needed for every comparison
MIN_RETENTION = 2


class SnapshotStore:
    """
    SQLite-based storage for snapshots.

    Writes for one target are serialized with ``BEGIN IMMEDIATE`` so the
    hash check, insert and pruning happen atomically.
    """

    def __init__(
        self,
        db_path: str = "/var/lib/specwatch/specwatch.db",
        retention: int = 10,
        order_significant_fields: Iterable[str] = (),
    ):
        """
        Initialize snapshot store.

        Args:
            db_path: Path to SQLite database file
            retention: Snapshots kept per target (clamped to at least 2)
            order_significant_fields: Array keys whose order is significant,
                used when rebuilding canonical documents from storage
        """
        self.db_path = db_path
        self.retention = max(MIN_RETENTION, retention)
        self.order_significant_fields = tuple(order_significant_fields)

        if retention < MIN_RETENTION:
            logger.warning(
                f"Snapshot retention {retention} is below {MIN_RETENTION}, using {self.retention}"
            )

        ensure_parent_dir(db_path)
        self._init_db()

        logger.info(f"Initialized SnapshotStore at {db_path} (retention: {self.retention})")

    def _init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    snapshot_id TEXT NOT NULL UNIQUE,
                    target_id TEXT NOT NULL,
                    captured_at TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    document TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_target
                ON snapshots(target_id, captured_at, seq)
            """)

    def record(
        self,
        target_id: str,
        document: CanonicalDocument,
        captured_at: Optional[datetime] = None,
    ) -> str:
        """
        Append a snapshot unless it equals the latest one.

        Args:
            target_id: Target the document belongs to
            document: Canonical document
            captured_at: Capture time (default: now)

        Returns:
            Id of the new snapshot, or of the latest snapshot when the content
            hash is unchanged
        """
        doc_hash = content_hash(document)
        captured_at = captured_at or datetime.utcnow()

        with transaction(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT snapshot_id, content_hash FROM snapshots
                WHERE target_id = ?
                ORDER BY captured_at DESC, seq DESC LIMIT 1
                """,
                (target_id,)
            ).fetchone()

            if row and row["content_hash"] == doc_hash:
                logger.debug(f"Snapshot unchanged for {target_id} ({doc_hash[:12]})")
                return row["snapshot_id"]

            snapshot_id = uuid4().hex
            conn.execute(
                """
                INSERT INTO snapshots (snapshot_id, target_id, captured_at, content_hash, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    snapshot_id,
                    target_id,
                    captured_at.isoformat(),
                    doc_hash,
                    canonical_json(document.to_plain()),
                )
            )
            pruned = self._prune(conn, target_id)

        logger.info(
            f"Recorded snapshot {snapshot_id} for {target_id} ({doc_hash[:12]})"
            + (f", pruned {pruned}" if pruned else "")
        )
        return snapshot_id

    def _prune(self, conn, target_id: str) -> int:
        """Delete snapshots beyond the retention limit for one target."""
        cursor = conn.execute(
            """
            DELETE FROM snapshots
            WHERE target_id = ? AND seq NOT IN (
                SELECT seq FROM snapshots
                WHERE target_id = ?
                ORDER BY captured_at DESC, seq DESC
                LIMIT ?
            )
            """,
            (target_id, target_id, self.retention)
        )
        return cursor.rowcount

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        """
        Get a snapshot by id.

        Args:
            snapshot_id: Snapshot identifier

        Returns:
            Snapshot if found, None otherwise
        """
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM snapshots WHERE snapshot_id = ?",
                (snapshot_id,)
            ).fetchone()

        if row:
            return self._row_to_snapshot(row)
        return None

    def latest(self, target_id: str) -> Optional[Snapshot]:
        """Most recent snapshot of a target, if any."""
        snapshots = self._most_recent(target_id, 1)
        return snapshots[0] if snapshots else None

    def latest_two(self, target_id: str) -> Optional[Tuple[Snapshot, Snapshot]]:
        """
        Get the two most recent snapshots of a target.

        Args:
            target_id: Target identifier

        Returns:
            (previous, latest) tuple, or None if fewer than two snapshots exist
        """
        snapshots = self._most_recent(target_id, 2)
        if len(snapshots) < 2:
            return None
        latest, previous = snapshots
        return previous, latest

    def list_snapshots(self, target_id: str, limit: int = 100) -> List[Snapshot]:
        """
        List snapshots of a target, newest first.

        Args:
            target_id: Target identifier
            limit: Maximum number of snapshots to return

        Returns:
            List of Snapshot objects
        """
        return self._most_recent(target_id, limit)

    def count(self, target_id: str) -> int:
        """Number of stored snapshots for a target."""
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM snapshots WHERE target_id = ?",
                (target_id,)
            ).fetchone()
        return row["n"]

    def _most_recent(self, target_id: str, limit: int) -> List[Snapshot]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM snapshots
                WHERE target_id = ?
                ORDER BY captured_at DESC, seq DESC
                LIMIT ?
                """,
                (target_id, limit)
            ).fetchall()
        return [self._row_to_snapshot(row) for row in rows]

    def _row_to_snapshot(self, row) -> Snapshot:
        """Convert database row to Snapshot object."""
        return Snapshot(
            snapshot_id=row["snapshot_id"],
            target_id=row["target_id"],
            captured_at=datetime.fromisoformat(row["captured_at"]),
            content_hash=row["content_hash"],
            document=canonicalize(json.loads(row["document"]), self.order_significant_fields),
        )
