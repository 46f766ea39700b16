"""Pydantic schemas for notifications."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from .models import Notification, NotificationEvent


class NotificationResponse(BaseModel):
    notification_id: UUID
    event: NotificationEvent
    title: str
    payload: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            notification_id=notification.notification_id,
            event=notification.event,
            title=notification.title,
            payload=notification.payload,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    count: int
