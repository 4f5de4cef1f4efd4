"""Notification routes. Every operation is scoped to the caller's own notifications."""

from fastapi import APIRouter, Request

from ..auth import CurrentUser
from ..database import Database
from ..errors import NotFoundError
from ..logging_config import get_logger
from ..notifications.models import (
    NotificationActionResponse,
    NotificationResponse,
    UnreadNotificationCount,
    to_notification_response,
)
from ..notifications.service import (
    count_unread_notifications,
    delete_notification,
    list_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)
from ..rate_limit import limiter

logger = get_logger("sasa.routes.notifications")
router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
@limiter.limit("60/minute")
async def get_notifications(request: Request, auth: CurrentUser, db: Database):
    """All of the caller's notifications, newest first."""
    rows = await list_notifications(db, auth.user_id)
    return [to_notification_response(r) for r in rows]


@router.get("/unread", response_model=list[NotificationResponse])
@limiter.limit("60/minute")
async def get_unread_notifications(request: Request, auth: CurrentUser, db: Database):
    rows = await list_notifications(db, auth.user_id, unread_only=True)
    return [to_notification_response(r) for r in rows]


@router.get("/unread/count", response_model=UnreadNotificationCount)
@limiter.limit("120/minute")
async def get_unread_notification_count(request: Request, auth: CurrentUser, db: Database):
    return UnreadNotificationCount(unread_count=await count_unread_notifications(db, auth.user_id))


@router.patch("/read-all", response_model=NotificationActionResponse)
@limiter.limit("30/minute")
async def mark_all_read(request: Request, auth: CurrentUser, db: Database):
    marked = await mark_all_notifications_read(db, auth.user_id)
    logger.info(f"PATCH /notifications/read-all | user={auth.user_id} | marked={marked}")
    return NotificationActionResponse(message="All notifications marked as read")


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
@limiter.limit("60/minute")
async def mark_read(request: Request, notification_id: str, auth: CurrentUser, db: Database):
    """Mark one notification read. Other users' notifications are reported as missing."""
    row = await mark_notification_read(db, notification_id, auth.user_id)
    if not row:
        raise NotFoundError("Notification not found")
    return to_notification_response(row)


@router.delete("/{notification_id}", response_model=NotificationActionResponse)
@limiter.limit("30/minute")
async def remove_notification(request: Request, notification_id: str, auth: CurrentUser, db: Database):
    logger.info(f"DELETE /notifications/{notification_id} | user={auth.user_id}")
    if not await delete_notification(db, notification_id, auth.user_id):
        raise NotFoundError("Notification not found")
    return NotificationActionResponse(message="Notification deleted successfully")
