"""
Tests for the notification dispatcher and task store.
"""

from datetime import datetime, timedelta

import pytest

from specwatch.change_monitor.health import HealthStatus, HealthStore
from specwatch.core.models import Channel, ChangeKind, ChangelogEntry, Severity, TaskStatus
from specwatch.notifications import DeliveryResult, NotificationDispatcher, TaskStore

from helpers import classified_record


def make_entry(severity, breaking, entry_id="e1"):
    record = classified_record(
        "paths./users.get.parameters.sort", ChangeKind.ADDED, severity, breaking
    )
    return ChangelogEntry.build(entry_id, "users", "s1", "s2", [record])


@pytest.fixture
def task_store(db_path):
    return TaskStore(db_path)


@pytest.fixture
def dispatcher(registry, task_store):
    return NotificationDispatcher(
        registry, task_store, max_attempts=3, backoff_base_seconds=30, backoff_max_seconds=100
    )


def routing(tasks):
    return sorted((t.subscriber_id, t.channel.value) for t in tasks)


class TestDispatch:
    """Test fan-out of entries into tasks."""

    def test_non_breaking_medium_entry(self, dispatcher):
        tasks = dispatcher.dispatch(make_entry(Severity.MEDIUM, False))

        # bob only wants breaking changes, carol is muted
        assert routing(tasks) == [("alice", "in-app"), ("alice", "realtime")]
        assert all(t.status == TaskStatus.PENDING and t.attempts == 0 for t in tasks)

    def test_breaking_entry_reaches_breaking_only_subscriber(self, dispatcher):
        tasks = dispatcher.dispatch(make_entry(Severity.CRITICAL, True))

        assert routing(tasks) == [
            ("alice", "in-app"),
            ("alice", "realtime"),
            ("bob", "email"),
            ("bob", "in-app"),
        ]

    def test_muted_subscriber_gets_nothing(self, dispatcher):
        tasks = dispatcher.dispatch(make_entry(Severity.CRITICAL, True))
        assert "carol" not in {t.subscriber_id for t in tasks}

    def test_dispatch_is_idempotent(self, dispatcher, task_store):
        entry = make_entry(Severity.HIGH, True)

        first = dispatcher.dispatch(entry)
        second = dispatcher.dispatch(entry)

        assert {t.task_id for t in first} == {t.task_id for t in second}
        assert len(task_store.list_for_entry(entry.entry_id)) == len(first)

    def test_unknown_target_has_no_subscribers(self, dispatcher):
        record = classified_record("info.version")
        entry = ChangelogEntry.build("e2", "orders", "s1", "s2", [record])
        assert dispatcher.dispatch(entry) == []

    def test_channel_threshold(self, registry, task_store):
        registry.set_preferences(
            "alice",
            registry.get_preferences("alice").model_copy(
                update={"channel_min_severity": {Channel.REALTIME: Severity.HIGH}}
            ),
        )
        dispatcher = NotificationDispatcher(registry, task_store)

        tasks = dispatcher.dispatch(make_entry(Severity.MEDIUM, False))

        assert routing(tasks) == [("alice", "in-app")]

    def test_channels_without_provider_are_skipped(self, registry, task_store):
        dispatcher = NotificationDispatcher(
            registry, task_store, enabled_channels=[Channel.IN_APP, Channel.WEBHOOK]
        )

        tasks = dispatcher.dispatch(make_entry(Severity.CRITICAL, True))

        assert routing(tasks) == [("alice", "in-app"), ("bob", "in-app")]

    def test_health_events(self, dispatcher, db_path):
        health = HealthStore(db_path)
        down = health.observe("users", HealthStatus.UNREACHABLE, "connection refused")
        up = health.observe("users", HealthStatus.HEALTHY)

        assert routing(dispatcher.dispatch_health(down)) == [
            ("alice", "in-app"),
            ("alice", "realtime"),
            ("bob", "email"),
            ("bob", "in-app"),
        ]
        recovery = [("alice", "in-app"), ("alice", "realtime"), ("bob", "in-app")]
        assert routing(dispatcher.dispatch_health(up)) == recovery
        # Dispatching the same event again creates nothing new
        assert routing(dispatcher.dispatch_health(up)) == recovery


class TestStateMachine:
    """Test delivery result handling."""

    def _task(self, dispatcher):
        tasks = dispatcher.dispatch(make_entry(Severity.MEDIUM, False))
        return next(t for t in tasks if t.channel == Channel.IN_APP)

    def test_delivered(self, dispatcher, task_store):
        task = dispatcher.record_result(self._task(dispatcher), DeliveryResult.ok())

        assert task.status == TaskStatus.DELIVERED
        assert task.attempts == 1
        assert task_store.get(task.task_id).status == TaskStatus.DELIVERED

    def test_retry_schedules_backoff(self, dispatcher, task_store):
        now = datetime(2024, 1, 1, 12, 0, 0)

        task = dispatcher.record_result(
            self._task(dispatcher), DeliveryResult.retry("timeout"), now=now
        )

        assert task.status == TaskStatus.PENDING
        assert task.attempts == 1
        assert task.last_error == "timeout"
        assert task.next_attempt_at == now + timedelta(seconds=30)
        assert task_store.due(now=now) == []
        assert [t.task_id for t in task_store.due(now=now + timedelta(seconds=30))] == [task.task_id]

    def test_backoff_is_exponential_and_capped(self, dispatcher):
        delays = [dispatcher.backoff_delay(n).total_seconds() for n in range(1, 5)]
        assert delays == [30, 60, 100, 100]

    def test_fails_after_max_attempts(self, dispatcher, task_store):
        task = self._task(dispatcher)

        for _ in range(3):
            task = dispatcher.record_result(task, DeliveryResult.retry("connection refused"))

        assert task.status == TaskStatus.FAILED
        assert task.attempts == 3
        assert task_store.get(task.task_id).last_error == "connection refused"

    def test_exhausted_fails_immediately(self, dispatcher):
        task = dispatcher.record_result(self._task(dispatcher), DeliveryResult.exhausted("404"))

        assert task.status == TaskStatus.FAILED
        assert task.attempts == 1

    def test_terminal_tasks_never_transition(self, dispatcher, task_store):
        task = dispatcher.record_result(self._task(dispatcher), DeliveryResult.ok())

        after = dispatcher.record_result(task, DeliveryResult.retry("late"))

        assert after.status == TaskStatus.DELIVERED
        stored = task_store.get(task.task_id)
        assert stored.status == TaskStatus.DELIVERED
        assert stored.attempts == 1

    def test_stale_copy_does_not_reopen_task(self, dispatcher, task_store):
        stale = self._task(dispatcher)
        dispatcher.record_result(stale, DeliveryResult.exhausted("gone"))

        after = dispatcher.record_result(stale, DeliveryResult.ok())

        assert after.status == TaskStatus.FAILED
        assert task_store.get(stale.task_id).status == TaskStatus.FAILED

    def test_count_by_status(self, dispatcher, task_store):
        tasks = dispatcher.dispatch(make_entry(Severity.MEDIUM, False))
        dispatcher.record_result(tasks[0], DeliveryResult.ok())

        assert task_store.count_by_status() == {"pending": 1, "delivered": 1, "failed": 0}
