"""
Notification data models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from specwatch.core.models import Severity


@dataclass
class Notification:
    """
    Notification payload handed to a channel provider.

    Attributes:
        subject: Notification subject/title
        message: Notification body/content
        severity: Aggregate severity of the changelog entry
        breaking: Whether the entry contains breaking changes
        entry_id: Changelog entry or health event being delivered
        target_id: Monitored target the entry belongs to
        event: Event type (``api_change``, ``api_error`` or ``api_recovered``)
        task_id: Notification task this payload belongs to
        recipient: Channel-specific address (email, webhook URL), if any
        tags: Optional tags for categorization
        metadata: Additional notification data
        timestamp: When the changelog entry was created
    """
    subject: str
    message: str
    severity: Severity = Severity.LOW
    breaking: bool = False
    entry_id: str = ""
    target_id: str = ""
    event: str = "api_change"
    task_id: str = ""
    recipient: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subject": self.subject,
            "message": self.message,
            "severity": self.severity.value,
            "breaking": self.breaking,
            "entry_id": self.entry_id,
            "target_id": self.target_id,
            "event": self.event,
            "task_id": self.task_id,
            "tags": self.tags,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt as reported by a provider."""

    DELIVERED = "delivered"
    RETRY = "retry"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class DeliveryResult:
    """
    Result of one send attempt.

    ``RETRY`` means the failure is transient and another attempt may succeed;
    ``EXHAUSTED`` means the sender gave up and the task must be failed.
    """
    status: DeliveryStatus
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "DeliveryResult":
        return cls(DeliveryStatus.DELIVERED)

    @classmethod
    def retry(cls, error: str) -> "DeliveryResult":
        return cls(DeliveryStatus.RETRY, error)

    @classmethod
    def exhausted(cls, error: str) -> "DeliveryResult":
        return cls(DeliveryStatus.EXHAUSTED, error)

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED
