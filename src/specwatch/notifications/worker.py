"""
Delivery worker - consumes due notification tasks and calls channel providers.

Runs independently of the poller; tasks left pending by a crash are picked up
again on the next run.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Union

from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.health import HEALTH_EVENT_PREFIX, HealthEvent, HealthStore
from specwatch.core.models import Channel, ChangelogEntry, NotificationTask, TaskStatus
from specwatch.notifications.dispatcher import NotificationDispatcher
from specwatch.notifications.formatters import entry_to_notification, health_event_to_notification
from specwatch.notifications.models import DeliveryResult, Notification
from specwatch.notifications.providers import NotificationProvider
from specwatch.notifications.store import TaskStore
from specwatch.registry import TargetRegistry

logger = logging.getLogger(__name__)

TaskSource = Union[ChangelogEntry, HealthEvent]


class DeliveryWorker:
    """
    Delivers pending notification tasks.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        task_store: TaskStore,
        changelog: ChangelogWriter,
        registry: TargetRegistry,
        providers: Dict[Channel, NotificationProvider],
        dashboard_url: str = "",
        batch_size: int = 100,
        health: Optional[HealthStore] = None,
    ):
        """
        Initialize delivery worker.

        Args:
            dispatcher: Applies delivery results to tasks
            task_store: Source of due tasks
            changelog: Source of changelog entries
            registry: Source of target names and subscriber preferences
            providers: Provider per channel
            dashboard_url: Base URL for links in notifications
            batch_size: Maximum tasks handled per run
            health: Source of target health events, if health alerts are enabled
        """
        self.dispatcher = dispatcher
        self.task_store = task_store
        self.changelog = changelog
        self.registry = registry
        self.providers = providers
        self.dashboard_url = dashboard_url
        self.batch_size = batch_size
        self.health = health

    def _recipient(self, task: NotificationTask) -> Optional[str]:
        preferences = self.registry.get_preferences(task.subscriber_id)
        if task.channel == Channel.EMAIL:
            return preferences.email
        if task.channel == Channel.WEBHOOK:
            return preferences.webhook_url
        return None

    def load_source(self, entry_id: str) -> Optional[TaskSource]:
        """Changelog entry or health event a task delivers."""
        if entry_id.startswith(HEALTH_EVENT_PREFIX):
            return self.health.get_event(entry_id) if self.health else None
        return self.changelog.get(entry_id)

    def _notification(self, source: TaskSource) -> Notification:
        target = self.registry.get_target(source.target_id)
        target_name = target.name if target else None
        if isinstance(source, HealthEvent):
            return health_event_to_notification(source, target_name, self.dashboard_url)
        return entry_to_notification(source, target_name=target_name, dashboard_url=self.dashboard_url)

    def deliver(self, task: NotificationTask, entry: Optional[TaskSource]) -> NotificationTask:
        """
        Make one delivery attempt for a task and record its result.

        Args:
            task: Pending task
            entry: Changelog entry or health event of the task (None if it no longer exists)

        Returns:
            Task after the transition
        """
        provider = self.providers.get(task.channel)

        if entry is None:
            result = DeliveryResult.exhausted(f"Source {task.entry_id} of task not found")
        elif provider is None or not provider.is_enabled():
            result = DeliveryResult.exhausted(f"No provider enabled for channel {task.channel.value}")
        else:
            notification = self._notification(entry)
            notification.task_id = task.task_id
            notification.recipient = self._recipient(task)

            try:
                result = provider.send(task.subscriber_id, notification)
            except Exception as e:
                logger.error(
                    f"Provider {provider.__class__.__name__} failed: {e}",
                    exc_info=True
                )
                result = DeliveryResult.retry(str(e))

        return self.dispatcher.record_result(task, result)

    def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Deliver every task that is due.

        Args:
            now: Reference time (default: current UTC time)

        Returns:
            Number of tasks per resulting status
        """
        tasks = self.task_store.due(now, limit=self.batch_size)
        counts = {status.value: 0 for status in TaskStatus}
        entries: Dict[str, Optional[TaskSource]] = {}

        for task in tasks:
            if task.entry_id not in entries:
                entries[task.entry_id] = self.load_source(task.entry_id)

            updated = self.deliver(task, entries[task.entry_id])
            counts[updated.status.value] += 1

        if tasks:
            logger.info(
                f"Delivery run: {len(tasks)} tasks, {counts['delivered']} delivered, "
                f"{counts['pending']} retrying, {counts['failed']} failed"
            )
        return counts
