"""
Changelog API endpoints.

Read-only views over changelog entries, snapshots, target health and the
in-app notification feed.
"""

import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.health import HealthStore
from specwatch.change_monitor.queries import (
    ChangelogQueryService,
    Comparison,
    Page,
    SnapshotNotFound,
)
from specwatch.core.config import get_config
from specwatch.core.errors import InvariantViolation
from specwatch.core.models import ChangeKind, ChangelogEntry, Severity
from specwatch.notifications.providers import InAppProvider
from specwatch.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["changelog"])


@lru_cache()
def get_query_service() -> ChangelogQueryService:
    """Query service over the configured database."""
    config = get_config()
    return ChangelogQueryService(
        ChangelogWriter(config.store.database_path),
        SnapshotStore(
            config.store.database_path,
            retention=config.store.snapshot_retention,
            order_significant_fields=config.diff.order_significant_fields,
        ),
    )


@lru_cache()
def get_health_store() -> HealthStore:
    return HealthStore(get_config().store.database_path)


@lru_cache()
def get_feed() -> InAppProvider:
    return InAppProvider(get_config().store.database_path)


def _window(
    days: Optional[int], since: Optional[datetime], until: Optional[datetime]
) -> Optional[datetime]:
    if since is None and days is not None:
        return (until or datetime.utcnow()) - timedelta(days=days)
    return since


@router.get("/targets/health")
async def list_target_health(
    health: HealthStore = Depends(get_health_store),
) -> List[Dict[str, Any]]:
    """
    Get the health of every polled target.

    Returns:
        List of target health records
    """
    return [h.to_dict() for h in health.list_all()]


@router.get("/targets/{target_id}/changelog", response_model=Page)
async def list_changelog(
    target_id: str,
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Entries per page"),
    severity: Optional[Severity] = Query(None, description="Aggregate severity"),
    breaking: Optional[bool] = Query(None, description="Breaking entries only (true) or non-breaking only (false)"),
    kind: Optional[ChangeKind] = Query(None, description="Entries containing a change of this kind"),
    days: Optional[int] = Query(None, ge=1, le=365, description="Entries of the last N days"),
    since: Optional[datetime] = Query(None, description="Window start"),
    until: Optional[datetime] = Query(None, description="Window end"),
    search: Optional[str] = Query(None, max_length=200, description="Text search"),
    service: ChangelogQueryService = Depends(get_query_service),
) -> Page:
    """
    List the changelog of a target, newest first.

    Args:
        target_id: Target identifier

    Returns:
        Page of changelog entries
    """
    logger.info(f"Listing changelog for {target_id} (page {page})")
    return service.list_entries(
        target_id=target_id,
        page=page,
        limit=limit,
        severity=severity,
        breaking=breaking,
        kind=kind,
        since=_window(days, since, until),
        until=until,
        search=search,
    )


@router.get("/targets/{target_id}/snapshots")
async def list_snapshots(
    target_id: str,
    limit: int = Query(20, ge=1, le=100),
    service: ChangelogQueryService = Depends(get_query_service),
) -> List[Dict[str, Any]]:
    """List stored snapshots of a target, newest first (without documents)."""
    return [
        {
            "snapshot_id": s.snapshot_id,
            "target_id": s.target_id,
            "captured_at": s.captured_at.isoformat(),
            "content_hash": s.content_hash,
        }
        for s in service.store.list_snapshots(target_id, limit=limit)
    ]


@router.get("/changelog/{entry_id}", response_model=ChangelogEntry)
async def get_changelog_entry(
    entry_id: str,
    service: ChangelogQueryService = Depends(get_query_service),
) -> ChangelogEntry:
    """Get a single changelog entry."""
    entry = service.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Changelog entry not found: {entry_id}")
    return entry


@router.get("/compare", response_model=Comparison)
async def compare_snapshots(
    from_snapshot: str = Query(..., description="Older snapshot id"),
    to_snapshot: str = Query(..., description="Newer snapshot id"),
    service: ChangelogQueryService = Depends(get_query_service),
) -> Comparison:
    """
    Compare two snapshots of the same target.

    Returns:
        Classified changes between the snapshots
    """
    try:
        return service.compare_snapshots(from_snapshot, to_snapshot)
    except SnapshotNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvariantViolation as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/stats")
async def get_stats(
    target_id: Optional[str] = Query(None, description="Restrict to one target"),
    days: Optional[int] = Query(None, ge=1, le=365, description="Last N days"),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    service: ChangelogQueryService = Depends(get_query_service),
) -> Dict[str, Any]:
    """Aggregate change statistics over a time window."""
    return service.stats(target_id=target_id, since=_window(days, since, until), until=until)


@router.get("/subscribers/{subscriber_id}/feed")
async def get_feed_items(
    subscriber_id: str,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    feed: InAppProvider = Depends(get_feed),
) -> List[Dict[str, Any]]:
    """In-app notification feed of a subscriber, newest first."""
    return feed.list_feed(subscriber_id, unread_only=unread_only, limit=limit)


@router.post("/subscribers/{subscriber_id}/feed/read")
async def mark_feed_read(
    subscriber_id: str,
    item_id: Optional[int] = Query(None, description="Single item (default: all)"),
    feed: InAppProvider = Depends(get_feed),
) -> Dict[str, int]:
    """Mark feed items as read."""
    return {"updated": feed.mark_read(subscriber_id, item_id)}
