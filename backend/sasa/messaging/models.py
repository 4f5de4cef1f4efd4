"""Pydantic models for job and admin chat messages."""

from datetime import datetime
from typing import Literal

from pydantic import Field, model_validator

from ..models import ApiModel, PublicUser

MessageType = Literal["job_message", "admin_message"]

ADMIN_THREAD_ID = "admin-messages"


class MessageCreate(ApiModel):
    """A message sent over HTTP or the live channel."""

    message_text: str = Field(..., min_length=1, max_length=5000)
    job_id: str | None = None
    receiver_id: str | None = None
    message_type: MessageType = "job_message"

    @model_validator(mode="after")
    def needs_destination(self) -> "MessageCreate":
        if not self.job_id and not self.receiver_id:
            raise ValueError("Either jobId or receiverId is required")
        return self


class AdminChatCreate(ApiModel):
    """Admin chat message. Admins must name the user they write to."""

    message_text: str = Field(..., min_length=1, max_length=5000)
    receiver_id: str | None = None


class MarkReadPayload(ApiModel):
    message_id: str = Field(..., min_length=1)


class MessageResponse(ApiModel):
    id: str
    sender_id: str
    receiver_id: str | None = None
    job_id: str | None = None
    message_text: str
    message_type: MessageType = "job_message"
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime
    sender: PublicUser | None = None


class UnreadMessageCount(ApiModel):
    count: int


class AdminChatReadResponse(ApiModel):
    success: bool = True
    unread_count: int


class ConversationResponse(ApiModel):
    """One row of the caller's inbox."""

    job_id: str
    job_title: str
    other_user: PublicUser | None = None
    last_message: str
    last_message_time: datetime
    unread_count: int = 0
    message_type: MessageType = "job_message"


class AdminConversationResponse(ApiModel):
    """One user thread in the admin inbox."""

    user_id: str
    user: PublicUser | None = None
    last_message: str
    last_message_time: datetime
    unread_count: int = 0


def to_message_response(row: dict) -> MessageResponse:
    """Convert DB message dict to response model."""
    sender = row.get("sender")
    return MessageResponse(
        id=row["id"],
        sender_id=row["sender_id"],
        receiver_id=row.get("receiver_id"),
        job_id=row.get("job_id"),
        message_text=row["message_text"],
        message_type=row.get("message_type") or "job_message",
        is_read=bool(row.get("is_read")),
        read_at=row.get("read_at"),
        created_at=row["created_at"],
        sender=PublicUser(**sender) if sender else None,
    )
