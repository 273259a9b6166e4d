"""
Target registry - monitored targets, their subscribers and preferences.

The registry is owned by the registration collaborator; the engine only
reads from it.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from specwatch.core.models import MonitoredTarget, NotificationPreferences

logger = logging.getLogger(__name__)


class TargetRegistry(ABC):
    """Read-only view of registered targets and subscribers."""

    @abstractmethod
    def get_active_targets(self) -> List[MonitoredTarget]:
        """Return all targets that should currently be polled."""
        pass

    @abstractmethod
    def get_target(self, target_id: str) -> Optional[MonitoredTarget]:
        """Return one target by id, active or not."""
        pass

    @abstractmethod
    def get_subscribers(self, target_id: str) -> List[str]:
        """Return the subscriber ids of a target."""
        pass

    @abstractmethod
    def get_preferences(self, subscriber_id: str) -> NotificationPreferences:
        """Return the notification preferences of a subscriber."""
        pass


class StaticTargetRegistry(TargetRegistry):
    """
    In-memory registry, typically loaded from a YAML file.

    Example file:

        targets:
          - target_id: petstore
            name: Petstore API
            url: https://petstore3.swagger.io/api/v3/openapi.json
            poll_interval_seconds: 15m
            subscribers: [alice, bob]
        subscribers:
          alice:
            breaking_only: true
            channels: {in-app: true, email: true}
            email: alice@example.com
    """

    def __init__(
        self,
        targets: Optional[List[MonitoredTarget]] = None,
        preferences: Optional[Dict[str, NotificationPreferences]] = None,
    ):
        """
        Initialize registry.

        Args:
            targets: Registered targets
            preferences: Preferences by subscriber id
        """
        self.targets: Dict[str, MonitoredTarget] = {t.target_id: t for t in targets or []}
        self.preferences: Dict[str, NotificationPreferences] = dict(preferences or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StaticTargetRegistry":
        """
        Build a registry from a parsed configuration mapping.

        Invalid target or subscriber entries are logged and skipped.
        """
        targets = []
        for target_data in data.get("targets") or []:
            try:
                targets.append(MonitoredTarget(**target_data))
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to load target {target_data!r}: {e}")

        preferences = {}
        for subscriber_id, prefs_data in (data.get("subscribers") or {}).items():
            try:
                preferences[str(subscriber_id)] = NotificationPreferences(**(prefs_data or {}))
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to load preferences for {subscriber_id}: {e}")

        return cls(targets=targets, preferences=preferences)

    @classmethod
    def from_yaml(cls, path: str) -> "StaticTargetRegistry":
        """
        Load a registry from a YAML file.

        Args:
            path: Path to the registry YAML file

        Returns:
            Registry (empty if the file does not exist)
        """
        if not Path(path).exists():
            logger.warning(f"Registry file not found: {path}")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        registry = cls.from_dict(data)
        logger.info(
            f"Loaded {len(registry.targets)} targets and {len(registry.preferences)} "
            f"subscribers from {path}"
        )
        return registry

    def add_target(self, target: MonitoredTarget) -> None:
        """Register or replace a target."""
        self.targets[target.target_id] = target

    def set_preferences(self, subscriber_id: str, preferences: NotificationPreferences) -> None:
        """Register or replace a subscriber's preferences."""
        self.preferences[subscriber_id] = preferences

    def get_active_targets(self) -> List[MonitoredTarget]:
        return [t for t in self.targets.values() if t.active]

    def get_target(self, target_id: str) -> Optional[MonitoredTarget]:
        return self.targets.get(target_id)

    def get_subscribers(self, target_id: str) -> List[str]:
        target = self.targets.get(target_id)
        return list(target.subscribers) if target else []

    def get_preferences(self, subscriber_id: str) -> NotificationPreferences:
        return self.preferences.get(subscriber_id) or NotificationPreferences()
