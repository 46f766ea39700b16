# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Notification persistence, real-time fan-out and background dispatch.

``NotificationDispatcher.notify`` is what the engine calls after a commit. It
returns immediately; delivery (Cassandra row, Redis publish, email) runs in a
background task whose failures are logged and never reach the caller.
"""

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from uuid import UUID

import orjson

from internhub.core.logging import get_logger
from internhub.core.redis import notification_channel
from internhub.email import templates
from internhub.email.schemas import NotificationEmail

from .models import EVENT_TITLES, Notification, NotificationEvent


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from redis.asyncio import Redis

    from internhub.email.service import EmailService


logger = get_logger(__name__)


class NotificationService:
    """Stores in-app notifications and pushes them over Redis pub/sub."""

    def __init__(self, session: "Session", keyspace: str, redis: "Redis | None" = None):
        self.session = session
        self.keyspace = keyspace
        self.redis = redis
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._insert_notification = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.notifications
            (user_id, created_at, notification_id, event, title, payload, is_read)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_notifications = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.notifications
            WHERE user_id = ?
            LIMIT ?
        """)

    async def create_notification(self, notification: Notification) -> Notification:
        await self.session.aexecute(
            self._insert_notification,
            [
                notification.user_id,
                notification.created_at,
                notification.notification_id,
                notification.event.value,
                notification.title,
                notification.payload_json(),
                notification.is_read,
            ],
        )
        await self._publish(notification)
        return notification

    async def list_notifications(self, user_id: UUID, limit: int = 20) -> list[Notification]:
        rows = await self.session.aexecute(self._get_notifications, [user_id, limit])
        return [Notification.from_row(row) for row in rows]

    async def _publish(self, notification: Notification) -> None:
        """Publish to the user's channel; a Redis outage only skips the live push."""
        if not self.redis:
            return

        message = orjson.dumps(
            {"type": "notification", "data": notification.to_dict()}, default=str
        )
        try:
            await self.redis.publish(notification_channel(str(notification.user_id)), message)
        except Exception as e:
            logger.warning(
                "notification_publish_failed",
                notification_id=str(notification.notification_id),
                error=str(e),
            )


# ==============================================================================
# Email rendering per event
# ==============================================================================

EmailRenderer = Callable[[str, dict[str, Any]], tuple[str, str]]

EMAIL_RENDERERS: dict[NotificationEvent, EmailRenderer] = {
    NotificationEvent.SUBMISSION_REVIEWED: lambda name, p: templates.render_submission_reviewed(
        name, p["task_title"], p["outcome"], p.get("feedback"), p.get("grade")
    ),
    NotificationEvent.ENROLLMENT_COMPLETED: lambda name, p: templates.render_enrollment_completed(
        name, p["program_title"]
    ),
    NotificationEvent.PAYMENT_COMPLETED: lambda name, p: templates.render_payment_completed(
        name, p["program_title"], p["amount"], p["currency"]
    ),
    NotificationEvent.PAYMENT_FAILED: lambda name, p: templates.render_payment_failed(
        name, p["program_title"], p.get("reason")
    ),
    NotificationEvent.PAYMENT_REFUNDED: lambda name, p: templates.render_payment_refunded(
        name, p["program_title"], p["amount"], p["currency"]
    ),
    NotificationEvent.CERTIFICATE_ISSUED: lambda name, p: templates.render_certificate_issued(
        name, p["program_title"], p["certificate_number"], p["verify_url"]
    ),
    NotificationEvent.CERTIFICATE_REVOKED: lambda name, p: templates.render_certificate_revoked(
        name, p["program_title"], p["certificate_number"], p.get("reason")
    ),
}


class NotificationDispatcher:
    """Fire-and-forget delivery of engine events to users.

    Both collaborators are optional so the engine runs without Cassandra
    notifications or Gmail configured.
    """

    def __init__(
        self,
        notification_service: NotificationService | None = None,
        email_service: "EmailService | None" = None,
    ):
        self.notification_service = notification_service
        self.email_service = email_service
        self._pending: set[asyncio.Task] = set()

    def notify(
        self,
        user_id: UUID,
        event: NotificationEvent,
        payload: dict[str, Any],
        email: str | None = None,
        name: str | None = None,
    ) -> None:
        """Schedule delivery of ``event`` to ``user_id`` and return immediately."""
        task = asyncio.create_task(self._deliver(user_id, event, payload, email, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery (shutdown and tests)."""
        while self._pending:
            results = await asyncio.gather(*list(self._pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("notification_delivery_crashed", error=repr(result))

    async def _deliver(
        self,
        user_id: UUID,
        event: NotificationEvent,
        payload: dict[str, Any],
        email: str | None,
        name: str | None,
    ) -> None:
        if self.notification_service:
            try:
                await self.notification_service.create_notification(
                    Notification.create(user_id, event, payload)
                )
            except Exception:
                logger.exception(
                    "notification_store_failed",
                    user_id=str(user_id),
                    notification_event=event.value,
                )

        if self.email_service and email:
            try:
                body_html, body_text = EMAIL_RENDERERS[event](name or "there", payload)
                result = await self.email_service.send(
                    NotificationEmail(
                        to=email,
                        to_name=name,
                        subject=f"{EVENT_TITLES[event]} - InternHub",
                        body_html=body_html,
                        body_text=body_text,
                    )
                )
                if not result.sent:
                    logger.warning(
                        "notification_email_not_sent",
                        user_id=str(user_id),
                        notification_event=event.value,
                        error=result.error,
                    )
            except Exception:
                logger.exception(
                    "notification_email_failed",
                    user_id=str(user_id),
                    notification_event=event.value,
                )

        logger.debug(
            "notification_dispatched",
            user_id=str(user_id),
            notification_event=event.value,
        )
