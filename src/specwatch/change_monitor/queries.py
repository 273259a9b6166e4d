"""
Read-only query service over changelog entries and snapshots.

Serves the listing, detail, comparison and statistics views without
re-running the diff engine for comparisons that already have an entry.
"""

import json
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.change_monitor.changelog import ChangelogWriter, row_to_entry, summarize
from specwatch.change_monitor.classifier import SeverityClassifier
from specwatch.core.database import connect
from specwatch.core.models import ChangeKind, ChangelogEntry, ChangeRecord, Severity, max_severity
from specwatch.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class Page(BaseModel):
    """One page of changelog entries, newest first."""

    items: List[ChangelogEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0


class Comparison(BaseModel):
    """Classified differences between two snapshots of one target."""

    target_id: str
    from_snapshot_id: str
    to_snapshot_id: str
    records: List[ChangeRecord] = Field(default_factory=list)
    severity: Optional[Severity] = None
    breaking: bool = False
    summary: str = ""
    entry_id: Optional[str] = None


class SnapshotNotFound(LookupError):
    """Raised when a compared snapshot id does not exist."""


class ChangelogQueryService:
    """
    Query projections for the API layer.
    """

    def __init__(
        self,
        changelog: ChangelogWriter,
        store: SnapshotStore,
        analyzer: Optional[ChangeAnalyzer] = None,
        classifier: Optional[SeverityClassifier] = None,
    ):
        self.changelog = changelog
        self.store = store
        self.analyzer = analyzer or ChangeAnalyzer()
        self.classifier = classifier or SeverityClassifier()

    @property
    def db_path(self) -> str:
        return self.changelog.db_path

    def _where(
        self,
        target_id: Optional[str] = None,
        severity: Optional[Severity] = None,
        breaking: Optional[bool] = None,
        kind: Optional[ChangeKind] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        search: Optional[str] = None,
    ):
        clauses = []
        params: List[Any] = []

        if target_id:
            clauses.append("target_id = ?")
            params.append(target_id)
        if severity is not None:
            clauses.append("severity = ?")
            params.append(severity.value)
        if breaking is not None:
            clauses.append("breaking = ?")
            params.append(int(breaking))
        if kind is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(records) "
                "WHERE json_extract(json_each.value, '$.kind') = ?)"
            )
            params.append(kind.value)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        if until is not None:
            clauses.append("created_at <= ?")
            params.append(until.isoformat())
        if search:
            # LIKE is case-insensitive for ASCII
            clauses.append("(summary LIKE ? OR records LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_entries(
        self,
        target_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        severity: Optional[Severity] = None,
        breaking: Optional[bool] = None,
        kind: Optional[ChangeKind] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> Page:
        """
        List changelog entries, newest first.

        Args:
            target_id: Only entries of this target
            page: 1-based page number
            limit: Page size (capped at 100)
            severity: Only entries with this aggregate severity
            breaking: Only breaking (True) or non-breaking (False) entries
            kind: Only entries containing a record of this kind
            since: Only entries created at or after this time
            until: Only entries created at or before this time
            search: Case-insensitive text match on summary and change records

        Returns:
            Page of entries
        """
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        where, params = self._where(target_id, severity, breaking, kind, since, until, search)

        with connect(self.db_path) as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS n FROM changelog_entries {where}", params
            ).fetchone()["n"]
            rows = conn.execute(
                f"""
                SELECT * FROM changelog_entries {where}
                ORDER BY created_at DESC, seq DESC
                LIMIT ? OFFSET ?
                """,
                params + [limit, (page - 1) * limit]
            ).fetchall()

        return Page(
            items=[row_to_entry(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def get_entry(self, entry_id: str) -> Optional[ChangelogEntry]:
        """Get a single changelog entry."""
        return self.changelog.get(entry_id)

    def compare_snapshots(self, from_snapshot_id: str, to_snapshot_id: str) -> Comparison:
        """
        Compare two arbitrary snapshots of the same target.

        Uses the stored changelog entry when the pair was already compared.

        Args:
            from_snapshot_id: Older snapshot
            to_snapshot_id: Newer snapshot

        Returns:
            Comparison

        Raises:
            SnapshotNotFound: If either snapshot does not exist
            InvariantViolation: If the snapshots belong to different targets
        """
        previous = self.store.get(from_snapshot_id)
        if previous is None:
            raise SnapshotNotFound(f"Snapshot not found: {from_snapshot_id}")
        current = self.store.get(to_snapshot_id)
        if current is None:
            raise SnapshotNotFound(f"Snapshot not found: {to_snapshot_id}")

        entry = self.changelog.find(previous.target_id, from_snapshot_id, to_snapshot_id)
        if entry is not None:
            return Comparison(
                target_id=entry.target_id,
                from_snapshot_id=from_snapshot_id,
                to_snapshot_id=to_snapshot_id,
                records=entry.records,
                severity=entry.severity,
                breaking=entry.breaking,
                summary=entry.summary,
                entry_id=entry.entry_id,
            )

        records = self.classifier.classify_all(self.analyzer.compare_snapshots(previous, current))
        return Comparison(
            target_id=previous.target_id,
            from_snapshot_id=from_snapshot_id,
            to_snapshot_id=to_snapshot_id,
            records=records,
            severity=max_severity(r.severity for r in records) if records else None,
            breaking=any(r.breaking for r in records),
            summary=summarize(records),
        )

    def stats(
        self,
        target_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate change statistics over a time window.

        Args:
            target_id: Only entries of this target
            since: Window start
            until: Window end

        Returns:
            Dictionary of counters
        """
        where, params = self._where(target_id=target_id, since=since, until=until)

        with connect(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT target_id, severity, breaking, impact_score, records, created_at
                FROM changelog_entries {where}
                """,
                params
            ).fetchall()

        by_severity = {s.value: 0 for s in Severity}
        by_kind = {k.value: 0 for k in ChangeKind}
        by_target: Dict[str, int] = {}
        breaking = 0
        total_changes = 0
        impact_total = 0
        last_change_at = None

        for row in rows:
            by_severity[row["severity"]] += 1
            by_target[row["target_id"]] = by_target.get(row["target_id"], 0) + 1
            breaking += row["breaking"]
            impact_total += row["impact_score"]
            for record in json.loads(row["records"]):
                by_kind[record["kind"]] += 1
                total_changes += 1
            if last_change_at is None or row["created_at"] > last_change_at:
                last_change_at = row["created_at"]

        return {
            "total_entries": len(rows),
            "total_changes": total_changes,
            "breaking_entries": breaking,
            "by_severity": by_severity,
            "by_kind": by_kind,
            "by_target": by_target,
            "average_impact_score": round(impact_total / len(rows), 1) if rows else 0.0,
            "last_change_at": last_change_at,
        }
