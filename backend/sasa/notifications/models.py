"""Pydantic models for notifications."""

from datetime import datetime
from typing import Literal

from ..models import ApiModel

NotificationType = Literal[
    "job_posted",
    "job_cancelled",
    "job_status_changed",
    "application_received",
    "application_accepted",
    "application_rejected",
    "message_received",
    "category_request_submitted",
    "category_request_approved",
    "category_request_rejected",
    "new_report",
    "new_verification",
    "new_migration",
]


class NotificationResponse(ApiModel):
    id: str
    recipient_id: str
    job_id: str | None = None
    type: NotificationType
    title: str
    message: str
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime


class UnreadNotificationCount(ApiModel):
    unread_count: int


class NotificationActionResponse(ApiModel):
    message: str


def to_notification_response(row: dict) -> NotificationResponse:
    """Convert DB notification dict to response model."""
    return NotificationResponse(
        id=row["id"],
        recipient_id=row["recipient_id"],
        job_id=row.get("job_id"),
        type=row["type"],
        title=row["title"],
        message=row["message"],
        is_read=bool(row.get("is_read")),
        read_at=row.get("read_at"),
        created_at=row["created_at"],
    )
