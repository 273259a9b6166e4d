"""
Notification dispatcher - fans changelog entries and target health events out
into delivery tasks and applies delivery results to them.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from specwatch.change_monitor.health import HealthEvent
from specwatch.core.models import Channel, ChangelogEntry, NotificationTask, TaskStatus
from specwatch.notifications.models import DeliveryResult, DeliveryStatus
from specwatch.notifications.store import TaskStore
from specwatch.registry import TargetRegistry

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Creates notification tasks from changelog entries and drives their
    ``pending -> delivered | failed`` state machine.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        task_store: TaskStore,
        max_attempts: int = 5,
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
        enabled_channels: Optional[Iterable[Channel]] = None,
    ):
        """
        Initialize notification dispatcher.

        Args:
            registry: Source of subscribers and their preferences
            task_store: Persistent task storage
            max_attempts: Attempts before a task is marked failed
            backoff_base_seconds: Delay after the first failed attempt
            backoff_max_seconds: Upper bound of the delay
            enabled_channels: Channels with a working provider (default: all).
                No tasks are created for other channels.
        """
        self.registry = registry
        self.task_store = task_store
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.enabled_channels = set(enabled_channels) if enabled_channels is not None else set(Channel)

    def dispatch(self, entry: ChangelogEntry) -> List[NotificationTask]:
        """
        Create one task per (subscriber, channel) the entry should reach.

        Dispatching the same entry again creates nothing new and returns the
        existing tasks.

        Args:
            entry: Changelog entry to deliver

        Returns:
            Tasks of the entry, one per (subscriber, channel)
        """
        tasks = []
        created = 0

        for subscriber_id in self.registry.get_subscribers(entry.target_id):
            preferences = self.registry.get_preferences(subscriber_id)
            channels = self._enabled(preferences.channels_for(entry.severity, entry.breaking))

            if not channels:
                logger.debug(
                    f"Subscriber {subscriber_id} filtered out entry {entry.entry_id} "
                    f"(severity: {entry.severity.value}, breaking: {entry.breaking})"
                )
                continue

            for channel in channels:
                task, is_new = self.task_store.create(entry.entry_id, subscriber_id, channel)
                tasks.append(task)
                created += int(is_new)

        logger.info(
            f"Dispatched entry {entry.entry_id} for {entry.target_id}: "
            f"{len(tasks)} tasks ({created} new)"
        )
        return tasks

    def _enabled(self, channels: List[Channel]) -> List[Channel]:
        return [c for c in channels if c in self.enabled_channels]

    def dispatch_health(self, event: HealthEvent) -> List[NotificationTask]:
        """
        Create one task per (subscriber, channel) a target health event should reach.

        Args:
            event: Failure or recovery event

        Returns:
            Tasks of the event
        """
        tasks = []
        for subscriber_id in self.registry.get_subscribers(event.target_id):
            preferences = self.registry.get_preferences(subscriber_id)
            for channel in self._enabled(preferences.channels_for_health(event.recovered)):
                task, _ = self.task_store.create(event.event_id, subscriber_id, channel)
                tasks.append(task)

        logger.info(
            f"Dispatched {event.kind.value} event for {event.target_id}: {len(tasks)} tasks"
        )
        return tasks

    def backoff_delay(self, attempts: int) -> timedelta:
        """Delay before the next attempt after ``attempts`` failed attempts."""
        seconds = self.backoff_base_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    def record_result(
        self,
        task: NotificationTask,
        result: DeliveryResult,
        now: Optional[datetime] = None,
    ) -> NotificationTask:
        """
        Apply the result of one delivery attempt to a task.

        Args:
            task: Task that was attempted
            result: Provider result
            now: Reference time (default: current UTC time)

        Returns:
            The task after the transition (unchanged if it was already terminal)
        """
        if task.is_terminal:
            logger.warning(
                f"Ignoring {result.status.value} result for task {task.task_id}: "
                f"already {task.status.value}"
            )
            return task

        now = now or datetime.utcnow()
        attempts = task.attempts + 1
        next_attempt_at = None

        if result.status == DeliveryStatus.DELIVERED:
            status = TaskStatus.DELIVERED
        elif result.status == DeliveryStatus.EXHAUSTED or attempts >= self.max_attempts:
            status = TaskStatus.FAILED
        else:
            status = TaskStatus.PENDING
            next_attempt_at = now + self.backoff_delay(attempts)

        if not self.task_store.transition(
            task.task_id, status, attempts, result.error, next_attempt_at
        ):
            current = self.task_store.get(task.task_id)
            logger.warning(
                f"Task {task.task_id} changed concurrently, result "
                f"{result.status.value} not applied"
            )
            return current or task

        if status == TaskStatus.FAILED:
            logger.error(
                f"Task {task.task_id} ({task.channel.value} -> {task.subscriber_id}) "
                f"failed after {attempts} attempts: {result.error}"
            )
        elif status == TaskStatus.PENDING:
            logger.warning(
                f"Task {task.task_id} ({task.channel.value} -> {task.subscriber_id}) "
                f"attempt {attempts} failed, retrying at {next_attempt_at.isoformat()}: "
                f"{result.error}"
            )
        else:
            logger.info(
                f"Delivered entry {task.entry_id} to {task.subscriber_id} "
                f"via {task.channel.value}"
            )

        return NotificationTask(
            task_id=task.task_id,
            entry_id=task.entry_id,
            subscriber_id=task.subscriber_id,
            channel=task.channel,
            status=status,
            attempts=attempts,
            last_error=result.error,
            next_attempt_at=next_attempt_at,
            created_at=task.created_at,
            updated_at=now,
        )
