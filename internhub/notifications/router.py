"""Notification API routes.

Endpoints for:
- GET /v1/notifications - Newest notifications of the current user
"""

from fastapi import APIRouter, Query

from internhub.auth.dependencies import CurrentUser

from .dependencies import NotificationServiceDep
from .schemas import NotificationListResponse, NotificationResponse


router = APIRouter(
    prefix="/v1/notifications",
    tags=["notifications"],
)


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List user notifications",
)
async def list_notifications(
    current_user: CurrentUser,
    service: NotificationServiceDep,
    limit: int = Query(default=20, ge=1, le=100, description="Items to return"),
) -> NotificationListResponse:
    notifications = await service.list_notifications(current_user.id, limit=limit)
    return NotificationListResponse(
        items=[NotificationResponse.from_notification(n) for n in notifications],
        count=len(notifications),
    )
