"""Database models for in-app notifications.

Notifications are partitioned by user so a user's feed is a single-partition
read, newest first.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import orjson

from internhub.enrollments.models import ensure_utc_aware


class NotificationEvent(str, Enum):
    """Events the engine reports to users."""

    SUBMISSION_REVIEWED = "submission_reviewed"
    ENROLLMENT_COMPLETED = "enrollment_completed"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    CERTIFICATE_ISSUED = "certificate_issued"
    CERTIFICATE_REVOKED = "certificate_revoked"


EVENT_TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.SUBMISSION_REVIEWED: "Your submission was reviewed",
    NotificationEvent.ENROLLMENT_COMPLETED: "Program completed",
    NotificationEvent.PAYMENT_COMPLETED: "Payment received",
    NotificationEvent.PAYMENT_FAILED: "Payment failed",
    NotificationEvent.PAYMENT_REFUNDED: "Refund processed",
    NotificationEvent.CERTIFICATE_ISSUED: "Certificate issued",
    NotificationEvent.CERTIFICATE_REVOKED: "Certificate revoked",
}


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

NOTIFICATION_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.notifications (
    user_id UUID,
    created_at TIMESTAMP,
    notification_id UUID,
    event TEXT,
    title TEXT,
    payload TEXT,
    is_read BOOLEAN,
    PRIMARY KEY ((user_id), created_at, notification_id)
) WITH CLUSTERING ORDER BY (created_at DESC, notification_id ASC)
"""

NOTIFICATIONS_TABLES_CQL = [
    NOTIFICATION_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Notification:
    """In-app notification."""

    notification_id: UUID
    user_id: UUID
    event: NotificationEvent
    title: str
    payload: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(
        cls,
        user_id: UUID,
        event: NotificationEvent,
        payload: dict[str, Any],
    ) -> "Notification":
        return cls(
            notification_id=uuid4(),
            user_id=user_id,
            event=event,
            title=EVENT_TITLES[event],
            payload=payload,
        )

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        """Create Notification from Cassandra row."""
        return cls(
            notification_id=row.notification_id,
            user_id=row.user_id,
            event=NotificationEvent(row.event),
            title=row.title,
            payload=orjson.loads(row.payload) if row.payload else {},
            is_read=row.is_read or False,
            created_at=ensure_utc_aware(row.created_at),
        )

    def payload_json(self) -> str:
        return orjson.dumps(self.payload, default=str).decode()

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": str(self.notification_id),
            "user_id": str(self.user_id),
            "event": self.event.value,
            "title": self.title,
            "payload": self.payload,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
        }
