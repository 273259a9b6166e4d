"""
Notification formatters - convert changelog entries to human-readable notifications.
"""

import logging
from typing import Optional

from specwatch.change_monitor.health import HealthEvent
from specwatch.core.models import ChangeKind, ChangelogEntry, Severity
from specwatch.notifications.models import Notification

logger = logging.getLogger(__name__)

# Number of change descriptions listed in a message body
MAX_LISTED_CHANGES = 3

VERSION_LOCATION = "info.version"


def new_version(entry: ChangelogEntry) -> Optional[str]:
    """Version the entry moved the document to, if its `info.version` changed."""
    for record in entry.records:
        if record.location == VERSION_LOCATION and record.kind != ChangeKind.REMOVED:
            if record.new_value is not None:
                return str(record.new_value)
    return None


def build_subject(entry: ChangelogEntry, target_name: Optional[str] = None) -> str:
    """
    Build a notification subject such as "Petstore API Updated (v2.1) - 3 changes".

    Args:
        entry: Changelog entry
        target_name: Human name of the target (default: target id)

    Returns:
        Subject line
    """
    name = target_name or entry.target_id
    count = len(entry.records)
    prefix = "[BREAKING] " if entry.breaking else ""
    version = new_version(entry)
    version_text = f" (v{version})" if version else ""
    return f"{prefix}{name} Updated{version_text} - {count} change{'s' if count != 1 else ''}"


def build_message(entry: ChangelogEntry, dashboard_url: str = "") -> str:
    """
    Build a notification body listing the most important changes.

    Changes are listed most severe first; the remainder is summarized.

    Args:
        entry: Changelog entry
        dashboard_url: Optional dashboard base URL for a details link

    Returns:
        Message body
    """
    ranked = sorted(entry.records, key=lambda r: r.severity.rank if r.severity else 0, reverse=True)

    message_parts = [
        f"Severity: {entry.severity.value.upper()}"
        + (" (breaking)" if entry.breaking else ""),
        f"Summary: {entry.summary}",
        "",
    ]
    for record in ranked[:MAX_LISTED_CHANGES]:
        level = record.severity.value.upper() if record.severity else "?"
        message_parts.append(f"  • [{level}] {record.description or record.location}")

    remaining = len(ranked) - MAX_LISTED_CHANGES
    if remaining > 0:
        message_parts.append(f"  ...and {remaining} more change{'s' if remaining > 1 else ''}")

    if dashboard_url:
        message_parts.append("")
        message_parts.append(f"Details: {dashboard_url.rstrip('/')}/changelog/{entry.entry_id}")

    return "\n".join(message_parts)


def entry_to_notification(
    entry: ChangelogEntry,
    target_name: Optional[str] = None,
    dashboard_url: str = "",
) -> Notification:
    """
    Convert a changelog entry to a notification.

    Args:
        entry: Changelog entry to convert
        target_name: Human name of the target
        dashboard_url: Optional dashboard base URL

    Returns:
        Notification instance
    """
    tags = ["api_change", entry.severity.value]
    if entry.breaking:
        tags.append("breaking")

    return Notification(
        subject=build_subject(entry, target_name),
        message=build_message(entry, dashboard_url),
        severity=entry.severity,
        breaking=entry.breaking,
        entry_id=entry.entry_id,
        target_id=entry.target_id,
        tags=tags,
        metadata={
            "changes_count": len(entry.records),
            "new_version": new_version(entry),
            "impact_score": entry.impact_score,
            "from_snapshot_id": entry.from_snapshot_id,
            "to_snapshot_id": entry.to_snapshot_id,
            "changes": [r.model_dump(mode="json") for r in entry.records[:5]],
        },
        timestamp=entry.created_at,
    )


def health_event_to_notification(
    event: HealthEvent,
    target_name: Optional[str] = None,
    dashboard_url: str = "",
) -> Notification:
    """
    Convert a target health event to a notification.

    Args:
        event: Failure or recovery event
        target_name: Human name of the target
        dashboard_url: Optional dashboard base URL

    Returns:
        Notification instance
    """
    name = target_name or event.target_id

    if event.recovered:
        subject = f"API Recovered: {name}"
        message = "API is now responding normally"
        severity = Severity.LOW
    else:
        subject = f"API Error: {name}"
        message = f"Failed to check API: {event.error}"
        severity = Severity.HIGH

    if dashboard_url:
        message += f"\n\nDetails: {dashboard_url.rstrip('/')}/targets/{event.target_id}"

    return Notification(
        subject=subject,
        message=message,
        severity=severity,
        entry_id=event.event_id,
        target_id=event.target_id,
        event=event.kind.value,
        tags=[event.kind.value],
        metadata={"error": event.error} if event.error else {},
        timestamp=event.created_at,
    )
