"""
Notification providers for delivering notifications via different channels.

Every provider reports the outcome of one attempt as a ``DeliveryResult``:
transient failures (timeouts, connection errors, 5xx answers) are ``retry``,
missing configuration or recipient and rejected requests are ``exhausted``.
"""

import html
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import requests

from specwatch.core.config import NotificationConfig
from specwatch.core.database import connect, ensure_parent_dir
from specwatch.core.models import Channel
from specwatch.notifications.models import DeliveryResult, Notification

logger = logging.getLogger(__name__)

USER_AGENT = "specwatch/0.3"


class NotificationProvider(ABC):
    """Base class for notification providers."""

    channel: Channel

    @abstractmethod
    def send(self, subscriber_id: str, notification: Notification) -> DeliveryResult:
        """
        Send a notification to one subscriber.

        Args:
            subscriber_id: Recipient
            notification: Notification to send

        Returns:
            DeliveryResult of this attempt
        """
        pass

    @abstractmethod
    def is_enabled(self) -> bool:
        """Check if provider is properly configured and enabled."""
        pass


def _post_json(
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    token: str = "",
) -> DeliveryResult:
    """POST a JSON payload and map the outcome to a DeliveryResult."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.Timeout:
        return DeliveryResult.retry(f"Timeout after {timeout}s posting to {url}")
    except requests.ConnectionError as e:
        return DeliveryResult.retry(f"Connection error posting to {url}: {e}")
    except requests.RequestException as e:
        return DeliveryResult.exhausted(f"Request to {url} failed: {e}")

    if response.status_code >= 500 or response.status_code == 429:
        return DeliveryResult.retry(f"HTTP {response.status_code} from {url}")
    if response.status_code >= 400:
        return DeliveryResult.exhausted(f"HTTP {response.status_code} from {url}")
    return DeliveryResult.ok()


class InAppProvider(NotificationProvider):
    """
    In-app notification feed stored in SQLite.

    Writing the same task twice keeps a single feed item.
    """

    channel = Channel.IN_APP

    def __init__(self, db_path: str = "/var/lib/specwatch/specwatch.db"):
        """
        Initialize in-app provider.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        ensure_parent_dir(db_path)

        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS in_app_feed (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL UNIQUE,
                    subscriber_id TEXT NOT NULL,
                    entry_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    breaking INTEGER NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_feed_subscriber
                ON in_app_feed(subscriber_id, created_at)
            """)

    def is_enabled(self) -> bool:
        return True

    def send(self, subscriber_id: str, notification: Notification) -> DeliveryResult:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO in_app_feed (
                    task_id, subscriber_id, entry_id, target_id, title, message,
                    severity, breaking, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.task_id or f"{notification.entry_id}:{subscriber_id}",
                    subscriber_id,
                    notification.entry_id,
                    notification.target_id,
                    notification.subject,
                    notification.message,
                    notification.severity.value,
                    int(notification.breaking),
                    datetime.utcnow().isoformat(),
                )
            )

        logger.debug(f"Stored in-app notification for {subscriber_id}: {notification.subject}")
        return DeliveryResult.ok()

    def list_feed(
        self, subscriber_id: str, unread_only: bool = False, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """
        List a subscriber's feed, newest first.

        Args:
            subscriber_id: Subscriber
            unread_only: Only return unread items
            limit: Maximum number of items

        Returns:
            List of feed items as dictionaries
        """
        query = "SELECT * FROM in_app_feed WHERE subscriber_id = ?"
        params: List[Any] = [subscriber_id]
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            {
                "id": row["id"],
                "entry_id": row["entry_id"],
                "target_id": row["target_id"],
                "title": row["title"],
                "message": row["message"],
                "severity": row["severity"],
                "breaking": bool(row["breaking"]),
                "read": bool(row["read"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def mark_read(self, subscriber_id: str, item_id: Optional[int] = None) -> int:
        """
        Mark one feed item, or the whole feed, as read.

        Returns:
            Number of items updated
        """
        with connect(self.db_path) as conn:
            if item_id is None:
                cursor = conn.execute(
                    "UPDATE in_app_feed SET read = 1 WHERE subscriber_id = ? AND read = 0",
                    (subscriber_id,)
                )
            else:
                cursor = conn.execute(
                    "UPDATE in_app_feed SET read = 1 WHERE subscriber_id = ? AND id = ?",
                    (subscriber_id, item_id)
                )
            updated = cursor.rowcount
        return updated


class RealtimePushProvider(NotificationProvider):
    """
    Realtime push via an HTTP gateway that forwards to connected WebSocket clients.

    Configuration via environment variables:
        NOTIFY_REALTIME_GATEWAY_URL: Gateway endpoint URL
        NOTIFY_REALTIME_GATEWAY_TOKEN: Optional authentication token (Bearer)
    """

    channel = Channel.REALTIME

    def __init__(self, gateway_url: str = "", token: str = "", timeout: float = 10.0):
        self.gateway_url = gateway_url
        self.token = token
        self.timeout = timeout

        if self.is_enabled():
            logger.info(f"RealtimePushProvider configured: {self.gateway_url}")

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "RealtimePushProvider":
        return cls(
            gateway_url=config.realtime_gateway_url,
            token=config.realtime_gateway_token,
            timeout=config.send_timeout_seconds,
        )

    def is_enabled(self) -> bool:
        return bool(self.gateway_url)

    def send(self, subscriber_id: str, notification: Notification) -> DeliveryResult:
        if not self.is_enabled():
            return DeliveryResult.exhausted("Realtime gateway not configured")

        result = _post_json(
            self.gateway_url,
            {
                "subscriber_id": subscriber_id,
                "event": notification.event,
                "payload": notification.to_dict(),
            },
            timeout=self.timeout,
            token=self.token,
        )
        if result.delivered:
            logger.info(f"Pushed realtime notification to {subscriber_id}: {notification.subject}")
        return result


class EmailProvider(NotificationProvider):
    """
    Email notification provider using SMTP.

    The recipient address comes from the subscriber's preferences
    (``notification.recipient``).

    Configuration via environment variables:
        NOTIFY_SMTP_HOST: SMTP server hostname
        NOTIFY_SMTP_PORT: SMTP server port (default: 587)
        NOTIFY_SMTP_USER: SMTP username
        NOTIFY_SMTP_PASS: SMTP password
        NOTIFY_EMAIL_FROM: Sender email address
        NOTIFY_SMTP_USE_TLS: Use TLS (default: true)
    """

    channel = Channel.EMAIL

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_pass: str = "",
        email_from: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.email_from = email_from
        self.use_tls = use_tls
        self.timeout = timeout

        if self.is_enabled():
            logger.info(f"EmailProvider configured: {self.smtp_host}:{self.smtp_port}")

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "EmailProvider":
        return cls(
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port,
            smtp_user=config.smtp_user,
            smtp_pass=config.smtp_pass,
            email_from=config.email_from,
            use_tls=config.smtp_use_tls,
            timeout=config.send_timeout_seconds,
        )

    def is_enabled(self) -> bool:
        """Check if email is properly configured."""
        return bool(self.smtp_host and self.email_from)

    def build_message(self, notification: Notification) -> MIMEMultipart:
        """Build the MIME message for a notification."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[{notification.severity.value.upper()}] {notification.subject}"
        msg["From"] = self.email_from
        msg["To"] = notification.recipient or ""

        text = f"""
API Change Notification

{notification.subject}
Time: {notification.timestamp.strftime('%Y-%m-%d %H:%M:%S')}

{notification.message}
"""
        severity_color = {
            "low": "#0066cc",
            "medium": "#ff9900",
            "high": "#e65c00",
            "critical": "#cc0000",
        }.get(notification.severity.value, "#0066cc")

        subject = html.escape(notification.subject)
        body = html.escape(notification.message)
        html_part = f"""
<html>
<head></head>
<body style="font-family: Arial, sans-serif;">
    <h2 style="color: {severity_color};">{subject}</h2>
    <div style="margin-top: 20px; padding: 15px; background-color: #f5f5f5; border-left: 4px solid {severity_color};">
        <pre style="white-space: pre-wrap; font-family: monospace;">{body}</pre>
    </div>
</body>
</html>
"""
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html_part, "html"))
        return msg

    def send(self, subscriber_id: str, notification: Notification) -> DeliveryResult:
        if not self.is_enabled():
            return DeliveryResult.exhausted("SMTP not configured")
        if not notification.recipient:
            return DeliveryResult.exhausted(f"No email address for subscriber {subscriber_id}")

        msg = self.build_message(notification)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_pass)
                server.send_message(msg)
        except smtplib.SMTPRecipientsRefused as e:
            return DeliveryResult.exhausted(f"Recipient refused: {e}")
        except (smtplib.SMTPException, OSError) as e:
            return DeliveryResult.retry(f"SMTP delivery failed: {e}")

        logger.info(f"Sent email notification to {subscriber_id}: {notification.subject}")
        return DeliveryResult.ok()


class WebhookProvider(NotificationProvider):
    """
    Webhook notification provider.

    Sends JSON POST requests to the subscriber's webhook URL
    (``notification.recipient``).
    """

    channel = Channel.WEBHOOK

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "WebhookProvider":
        return cls(timeout=config.send_timeout_seconds)

    def is_enabled(self) -> bool:
        return True

    def send(self, subscriber_id: str, notification: Notification) -> DeliveryResult:
        if not notification.recipient:
            return DeliveryResult.exhausted(f"No webhook URL for subscriber {subscriber_id}")

        result = _post_json(notification.recipient, notification.to_dict(), timeout=self.timeout)
        if result.delivered:
            logger.info(f"Sent webhook notification to {subscriber_id}: {notification.subject}")
        return result


def build_providers(config: NotificationConfig, db_path: str) -> Dict[Channel, NotificationProvider]:
    """
    Build the built-in provider of every channel.

    Args:
        config: Notification configuration
        db_path: SQLite database holding the in-app feed

    Returns:
        Providers by channel
    """
    providers: List[NotificationProvider] = [
        InAppProvider(db_path),
        RealtimePushProvider.from_config(config),
        EmailProvider.from_config(config),
        WebhookProvider.from_config(config),
    ]
    enabled = [p.__class__.__name__ for p in providers if p.is_enabled()]
    logger.info(f"Notification providers enabled: {enabled}")
    return {p.channel: p for p in providers}
