"""
Configuration management for specwatch.

Uses Pydantic Settings for environment variable validation and type safety.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class StoreConfig(BaseSettings):
    """SQLite persistence configuration."""

    database_path: str = Field(
        default="/var/lib/specwatch/specwatch.db",
        description="Path to the SQLite database holding snapshots, changelog and tasks"
    )
    snapshot_retention: int = Field(
        default=10,
        ge=2,
        description="Number of snapshots kept per target (never fewer than two)"
    )

    class Config:
        env_prefix = "STORE_"


class FetcherConfig(BaseSettings):
    """Document fetch configuration."""

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for one interface description fetch"
    )
    user_agent: str = Field(
        default="specwatch/0.3",
        description="User-Agent header sent to monitored APIs"
    )

    class Config:
        env_prefix = "FETCH_"


class DiffConfig(BaseSettings):
    """Diff engine configuration."""

    order_significant_fields: List[str] = Field(
        default_factory=list,
        description="Array keys whose element order is semantically significant"
    )

    class Config:
        env_prefix = "DIFF_"


class SchedulerConfig(BaseSettings):
    """Poller configuration."""

    registry_path: str = Field(
        default="/etc/specwatch/targets.yml",
        description="Path to the YAML target registry"
    )
    tick_seconds: int = Field(
        default=30,
        ge=1,
        description="How often the poller checks which targets are due"
    )
    max_concurrent_targets: int = Field(
        default=5,
        ge=1,
        description="Maximum number of targets polled in parallel"
    )
    fetch_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per poll for retryable fetch failures"
    )
    fetch_retry_backoff_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Base delay of the exponential fetch backoff"
    )

    class Config:
        env_prefix = "SCHEDULER_"


class NotificationConfig(BaseSettings):
    """Notification delivery configuration."""

    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Delivery attempts before a task is marked failed"
    )
    backoff_base_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Base delay between delivery attempts"
    )
    backoff_max_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Upper bound for the delivery backoff"
    )
    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for one HTTP delivery"
    )
    realtime_gateway_url: str = Field(
        default="",
        description="Realtime push gateway endpoint (WebSocket bridge)"
    )
    realtime_gateway_token: str = Field(
        default="",
        description="Optional bearer token for the realtime gateway"
    )
    smtp_host: str = Field(default="", description="SMTP server hostname")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_user: str = Field(default="", description="SMTP username")
    smtp_pass: str = Field(default="", description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    email_from: str = Field(default="", description="Sender email address")
    dashboard_url: str = Field(
        default="",
        description="Base URL of the dashboard, used for links in notifications"
    )

    class Config:
        env_prefix = "NOTIFY_"


class AppConfig(BaseSettings):
    """Main application configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # Nested configurations
    store: StoreConfig = Field(default_factory=StoreConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Lazily loads configuration on first access.

    Returns:
        AppConfig: The global configuration instance
    """
    global _config
    if _config is None:
        _config = AppConfig(
            store=StoreConfig(),
            fetcher=FetcherConfig(),
            diff=DiffConfig(),
            scheduler=SchedulerConfig(),
            notifications=NotificationConfig(),
        )
    return _config


def reload_config() -> AppConfig:
    """
    Reload configuration from environment variables.

    Useful for testing or when environment changes.

    Returns:
        AppConfig: The reloaded configuration instance
    """
    global _config
    _config = None
    return get_config()
