"""
Notification system for specwatch.

Turns changelog entries into per-subscriber, per-channel delivery tasks and
delivers them through in-app, realtime push, email and webhook providers.
"""

from specwatch.notifications.dispatcher import NotificationDispatcher
from specwatch.notifications.formatters import entry_to_notification
from specwatch.notifications.models import DeliveryResult, DeliveryStatus, Notification
from specwatch.notifications.providers import (
    EmailProvider,
    InAppProvider,
    NotificationProvider,
    RealtimePushProvider,
    WebhookProvider,
    build_providers,
)
from specwatch.notifications.store import TaskStore
from specwatch.notifications.worker import DeliveryWorker

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "DeliveryWorker",
    "EmailProvider",
    "InAppProvider",
    "Notification",
    "NotificationDispatcher",
    "NotificationProvider",
    "RealtimePushProvider",
    "TaskStore",
    "WebhookProvider",
    "build_providers",
    "entry_to_notification",
]
