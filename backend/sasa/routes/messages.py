"""Messaging routes: job conversations and admin chat.

Static paths (``conversations``, ``unread-count``, ``admin-chat``) are
declared before ``/{job_id}`` so they are not captured as job ids.
"""

from fastapi import APIRouter, Query, Request, status

from ..auth import CurrentUser
from ..connections import Connections
from ..database import Database, get_admin_user
from ..errors import NotFoundError, ValidationFailedError
from ..jobs.storage import get_job
from ..logging_config import get_logger
from ..messaging.models import (
    AdminChatCreate,
    AdminChatReadResponse,
    AdminConversationResponse,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
    UnreadMessageCount,
    to_message_response,
)
from ..messaging.service import (
    count_unread_messages,
    get_admin_chat,
    get_admin_conversations,
    get_conversations,
    get_job_messages,
    list_user_messages,
    mark_admin_messages_read,
    send_message,
)
from ..notifications.service import Notifier
from ..rate_limit import limiter

logger = get_logger("sasa.routes.messages")
router = APIRouter(prefix="/messages", tags=["messages"])


async def primary_admin_id(db) -> str:
    admin = await get_admin_user(db)
    if not admin:
        raise NotFoundError("Admin account not found")
    return admin["id"]


@router.get("", response_model=list[MessageResponse])
@limiter.limit("60/minute")
async def list_messages(
    request: Request,
    auth: CurrentUser,
    db: Database,
    unread: bool = Query(False, description="Only unread messages received by the caller"),
):
    """List messages the caller sent or received, newest first."""
    logger.info(f"GET /messages | user={auth.user_id} | unread={unread}")
    rows = await list_user_messages(db, auth.user_id, unread_only=unread)
    return [to_message_response(r) for r in rows]


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def create_message(
    request: Request,
    message: MessageCreate,
    auth: CurrentUser,
    db: Database,
    notifier: Notifier,
    connections: Connections,
):
    """
    Send a message.

    Without ``receiverId`` a job message goes to the other party of the job.
    """
    logger.info(f"POST /messages | user={auth.user_id} | job={message.job_id} | type={message.message_type}")
    created = await send_message(db, notifier, connections, auth.user_id, message)
    return to_message_response(created)


@router.get("/conversations", response_model=None)
@limiter.limit("60/minute")
async def list_conversations(
    request: Request,
    auth: CurrentUser,
    db: Database,
):
    """
    The caller's inbox, newest first.

    Users get one entry per job conversation plus their admin thread;
    admins get one entry per user they have chatted with.
    """
    logger.info(f"GET /messages/conversations | user={auth.user_id}")
    if auth.is_admin:
        threads = await get_admin_conversations(db, auth.user_id)
        return [AdminConversationResponse(**t) for t in threads]
    conversations = await get_conversations(db, auth.user_id)
    return [ConversationResponse(**c) for c in conversations]


@router.get("/unread-count", response_model=UnreadMessageCount)
@limiter.limit("120/minute")
async def unread_message_count(
    request: Request,
    auth: CurrentUser,
    db: Database,
):
    count = await count_unread_messages(db, auth.user_id)
    return UnreadMessageCount(count=count)


@router.get("/admin-chat", response_model=list[MessageResponse])
@limiter.limit("60/minute")
async def get_admin_chat_messages(
    request: Request,
    auth: CurrentUser,
    db: Database,
    user_id: str | None = Query(None, alias="userId", description="Counterpart user (admins only)"),
):
    """
    The caller's admin thread.

    Users read their chat with the primary admin; admins pass ``userId``.
    """
    logger.info(f"GET /messages/admin-chat | user={auth.user_id} | target={user_id}")

    if auth.is_admin:
        if not user_id:
            raise ValidationFailedError([{"field": "userId", "message": "userId is required for admins"}])
        rows = await get_admin_chat(db, auth.user_id, user_id)
    else:
        rows = await get_admin_chat(db, await primary_admin_id(db), auth.user_id)
    return [to_message_response(r) for r in rows]


@router.post("/admin-chat", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def send_admin_chat_message(
    request: Request,
    body: AdminChatCreate,
    auth: CurrentUser,
    db: Database,
    notifier: Notifier,
    connections: Connections,
):
    """Send an admin chat message: users write to the primary admin, admins to ``receiverId``."""
    logger.info(f"POST /messages/admin-chat | user={auth.user_id}")

    if auth.is_admin:
        if not body.receiver_id:
            raise ValidationFailedError([{"field": "receiverId", "message": "receiverId is required for admins"}])
        receiver_id = body.receiver_id
    else:
        receiver_id = await primary_admin_id(db)

    message = MessageCreate(
        message_text=body.message_text,
        receiver_id=receiver_id,
        message_type="admin_message",
    )
    created = await send_message(db, notifier, connections, auth.user_id, message)
    return to_message_response(created)


@router.post("/admin-chat/read-all", response_model=AdminChatReadResponse)
@limiter.limit("60/minute")
async def read_all_admin_messages(
    request: Request,
    auth: CurrentUser,
    db: Database,
):
    """Mark the caller's received admin messages read."""
    marked = await mark_admin_messages_read(db, auth.user_id)
    logger.info(f"POST /messages/admin-chat/read-all | user={auth.user_id} | marked={marked}")
    return AdminChatReadResponse(success=True, unread_count=await count_unread_messages(db, auth.user_id))


@router.get("/{job_id}", response_model=list[MessageResponse])
@limiter.limit("60/minute")
async def get_job_thread(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
):
    """
    Messages of one job, oldest first.

    The requester, the assigned provider and admins see the whole thread;
    anyone else only the messages they sent or received.
    """
    logger.info(f"GET /messages/{job_id} | user={auth.user_id}")

    job = await get_job(db, job_id)
    if not job:
        raise NotFoundError("Job not found")

    rows = await get_job_messages(db, job, auth)
    return [to_message_response(r) for r in rows]
