"""
Tests for target health tracking and health alerts.
"""

from datetime import datetime

import pytest

from specwatch.change_monitor.health import (
    HEALTH_EVENT_PREFIX,
    HealthEventKind,
    HealthStatus,
    HealthStore,
    transition_kind,
)
from specwatch.notifications.formatters import health_event_to_notification


class TestTransitions:
    """Test which status changes raise events."""

    @pytest.mark.parametrize(
        "previous, current, expected",
        [
            (HealthStatus.HEALTHY, HealthStatus.UNREACHABLE, HealthEventKind.API_ERROR),
            (HealthStatus.UNKNOWN, HealthStatus.DEGRADED, HealthEventKind.API_ERROR),
            (HealthStatus.UNREACHABLE, HealthStatus.HEALTHY, HealthEventKind.API_RECOVERED),
            (HealthStatus.DEGRADED, HealthStatus.HEALTHY, HealthEventKind.API_RECOVERED),
            (HealthStatus.UNREACHABLE, HealthStatus.DEGRADED, None),
            (HealthStatus.HEALTHY, HealthStatus.HEALTHY, None),
            (HealthStatus.UNKNOWN, HealthStatus.HEALTHY, None),
        ],
    )
    def test_transition_kind(self, previous, current, expected):
        assert transition_kind(previous, current) == expected


class TestHealthStore:
    """Test health persistence."""

    def test_observe_records_events(self, db_path):
        health = HealthStore(db_path)
        now = datetime(2024, 1, 1, 12, 0, 0)

        down = health.observe("users", HealthStatus.UNREACHABLE, "connection refused", now=now)
        again = health.observe("users", HealthStatus.UNREACHABLE, "connection refused", now=now)
        up = health.observe("users", HealthStatus.HEALTHY, now=now)

        assert down.event_id.startswith(HEALTH_EVENT_PREFIX)
        assert down.kind == HealthEventKind.API_ERROR
        assert again is None
        assert up.recovered is True
        assert up.error is None
        assert health.get("users").consecutive_failures == 0

        stored = health.get_event(down.event_id)
        assert stored.error == "connection refused"
        assert stored.created_at == now
        assert health.get_event("health-missing") is None

    def test_failure_counts(self, db_path):
        health = HealthStore(db_path)
        health.record_failure("users", HealthStatus.DEGRADED, "invalid document")
        health.record_failure("users", HealthStatus.UNREACHABLE, "connection refused")

        record = health.get("users")
        assert record.status == HealthStatus.UNREACHABLE
        assert record.consecutive_failures == 2
        assert record.last_error == "connection refused"


class TestHealthNotification:
    """Test health alert content."""

    def test_error_and_recovery(self, db_path):
        health = HealthStore(db_path)
        down = health.observe("users", HealthStatus.UNREACHABLE, "HTTP 503 from https://api")
        up = health.observe("users", HealthStatus.HEALTHY)

        error = health_event_to_notification(down, "Users API", "https://dash.example.com")
        recovered = health_event_to_notification(up, "Users API")

        assert error.subject == "API Error: Users API"
        assert error.message.startswith("Failed to check API: HTTP 503 from https://api")
        assert error.message.endswith("Details: https://dash.example.com/targets/users")
        assert error.event == "api_error"
        assert error.entry_id == down.event_id
        assert error.to_dict()["event"] == "api_error"

        assert recovered.subject == "API Recovered: Users API"
        assert recovered.message == "API is now responding normally"
        assert recovered.event == "api_recovered"
