"""
Shared fixtures for specwatch tests.
"""

from typing import Any, Dict

import pytest

from specwatch.core.models import Channel, MonitoredTarget, NotificationPreferences
from specwatch.registry import StaticTargetRegistry

from helpers import users_api


@pytest.fixture
def api_doc() -> Dict[str, Any]:
    return users_api()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "specwatch.db")


@pytest.fixture
def target() -> MonitoredTarget:
    return MonitoredTarget(
        target_id="users",
        name="Users API",
        url="https://api.example.com/openapi.json",
        poll_interval_seconds=60,
        subscribers=["alice", "bob", "carol"],
    )


@pytest.fixture
def registry(target) -> StaticTargetRegistry:
    return StaticTargetRegistry(
        targets=[target],
        preferences={
            # Everything, in-app and realtime
            "alice": NotificationPreferences(),
            # Breaking changes only, by email as well
            "bob": NotificationPreferences(
                breaking_only=True,
                channels={Channel.IN_APP: True, Channel.EMAIL: True},
                email="bob@example.com",
            ),
            "carol": NotificationPreferences(muted=True),
        },
    )
