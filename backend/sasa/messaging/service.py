"""Messaging: persistence, thread queries and delivery.

Job messages belong to a job conversation; admin messages form a private
thread between one user and an admin. Whoever sends a message,
:func:`send_message` is the single path that resolves the receiver, stores
the row, writes the ``message_received`` notification and pushes live frames.
"""

from datetime import datetime, timezone

from supabase import Client

from ..auth import AuthContext
from ..connections import ConnectionManager
from ..database import MESSAGES_TABLE, get_admin_user, get_user, get_users, public_user
from ..errors import ForbiddenError, NotFoundError
from ..jobs.storage import get_job, list_jobs
from ..logging_config import get_logger
from ..notifications.service import NotificationWriter
from .models import ADMIN_THREAD_ID, MessageCreate, to_message_response

logger = get_logger("sasa.messaging")

JOB_MESSAGE = "job_message"
ADMIN_MESSAGE = "admin_message"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def resolve_receiver(message: MessageCreate, sender_id: str, job: dict | None) -> str | None:
    """Work out who a message is addressed to.

    - an explicit ``receiver_id`` always wins;
    - an admin message without one has no receiver;
    - a job message goes to the other party of the job: the assigned
      provider when the requester writes (None until one is selected),
      the requester when anyone else writes;
    - without a job there is no receiver.
    """
    if message.receiver_id:
        return message.receiver_id
    if message.message_type == ADMIN_MESSAGE:
        return None
    if job is None:
        return None
    if sender_id == job["requester_id"]:
        return job.get("provider_id")
    return job["requester_id"]


def has_full_thread_access(auth: AuthContext, job: dict) -> bool:
    """Admins and the job's two parties see a job thread in full."""
    return auth.is_admin or auth.user_id in (job["requester_id"], job.get("provider_id"))


# =============================================================================
# Storage
# =============================================================================


async def insert_message(db: Client, sender_id: str, receiver_id: str | None, message: MessageCreate) -> dict:
    data = {
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "job_id": message.job_id,
        "message_text": message.message_text,
        "message_type": message.message_type,
        "is_read": False,
    }
    result = db.table(MESSAGES_TABLE).insert(data).execute()
    if not result.data:
        raise RuntimeError("Failed to store message")
    return result.data[0]


async def attach_senders(db: Client, rows: list[dict]) -> list[dict]:
    """Add a public ``sender`` snippet to each message row."""
    users = await get_users(db, [row["sender_id"] for row in rows])
    return [{**row, "sender": public_user(users.get(row["sender_id"]))} for row in rows]


async def list_user_messages(db: Client, user_id: str, unread_only: bool = False) -> list[dict]:
    """Messages the user sent or received, newest first.

    With ``unread_only`` only unread received messages are returned.
    """
    received_query = db.table(MESSAGES_TABLE).select("*").eq("receiver_id", user_id)
    if unread_only:
        received_query = received_query.eq("is_read", False)
    rows = received_query.execute().data or []

    if not unread_only:
        sent = db.table(MESSAGES_TABLE).select("*").eq("sender_id", user_id).execute().data or []
        seen = {row["id"] for row in rows}
        rows.extend(row for row in sent if row["id"] not in seen)

    rows.sort(key=lambda r: str(r["created_at"]), reverse=True)
    return await attach_senders(db, rows)


async def count_unread_messages(db: Client, user_id: str) -> int:
    result = (
        db.table(MESSAGES_TABLE)
        .select("id", count="exact")
        .eq("receiver_id", user_id)
        .eq("is_read", False)
        .execute()
    )
    if result.count is not None:
        return result.count
    return len(result.data or [])


async def get_job_messages(db: Client, job: dict, viewer: AuthContext) -> list[dict]:
    """A job's thread, oldest first, trimmed to what the viewer may read."""
    result = (
        db.table(MESSAGES_TABLE)
        .select("*")
        .eq("job_id", job["id"])
        .order("created_at")
        .execute()
    )
    rows = result.data or []
    if not has_full_thread_access(viewer, job):
        rows = [r for r in rows if viewer.user_id in (r["sender_id"], r.get("receiver_id"))]
    return await attach_senders(db, rows)


async def get_admin_chat(db: Client, admin_id: str, user_id: str) -> list[dict]:
    """The admin thread between one admin and one user, oldest first."""
    result = (
        db.table(MESSAGES_TABLE)
        .select("*")
        .eq("message_type", ADMIN_MESSAGE)
        .in_("sender_id", [admin_id, user_id])
        .in_("receiver_id", [admin_id, user_id])
        .order("created_at")
        .execute()
    )
    rows = [r for r in result.data or [] if r["sender_id"] != r.get("receiver_id")]
    return await attach_senders(db, rows)


async def mark_message_read(db: Client, message_id: str, user_id: str) -> dict | None:
    """Mark a message read. Only its receiver can; None otherwise."""
    result = (
        db.table(MESSAGES_TABLE)
        .update({"is_read": True, "read_at": _now()})
        .eq("id", message_id)
        .eq("receiver_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def mark_admin_messages_read(db: Client, user_id: str) -> int:
    """Mark every unread admin message the user received as read."""
    result = (
        db.table(MESSAGES_TABLE)
        .update({"is_read": True, "read_at": _now()})
        .eq("message_type", ADMIN_MESSAGE)
        .eq("receiver_id", user_id)
        .eq("is_read", False)
        .execute()
    )
    return len(result.data or [])


# =============================================================================
# Conversations
# =============================================================================


async def get_conversations(db: Client, user_id: str) -> list[dict]:
    """Inbox: one entry per job thread with messages, plus the admin thread."""
    jobs = {j["id"]: j for j in await list_jobs(db, requester_id=user_id)}
    for job in await list_jobs(db, provider_id=user_id):
        jobs.setdefault(job["id"], job)

    conversations = []
    if jobs:
        result = (
            db.table(MESSAGES_TABLE)
            .select("*")
            .in_("job_id", sorted(jobs))
            .order("created_at", desc=True)
            .execute()
        )
        latest: dict[str, dict] = {}
        unread: dict[str, int] = {}
        for row in result.data or []:
            latest.setdefault(row["job_id"], row)
            if row.get("receiver_id") == user_id and not row.get("is_read"):
                unread[row["job_id"]] = unread.get(row["job_id"], 0) + 1

        other_ids = {}
        for job_id in latest:
            job = jobs[job_id]
            other_ids[job_id] = job.get("provider_id") if job["requester_id"] == user_id else job["requester_id"]
        users = await get_users(db, list(other_ids.values()))

        for job_id, last in latest.items():
            conversations.append(
                {
                    "job_id": job_id,
                    "job_title": jobs[job_id]["title"],
                    "other_user": public_user(users.get(other_ids[job_id])),
                    "last_message": last["message_text"],
                    "last_message_time": last["created_at"],
                    "unread_count": unread.get(job_id, 0),
                    "message_type": last.get("message_type") or JOB_MESSAGE,
                }
            )

    admin = await get_admin_user(db)
    if admin and admin["id"] != user_id:
        thread = await get_admin_chat(db, admin["id"], user_id)
        if thread:
            last = thread[-1]
            conversations.append(
                {
                    "job_id": ADMIN_THREAD_ID,
                    "job_title": "Admin Messages",
                    "other_user": public_user(admin),
                    "last_message": last["message_text"],
                    "last_message_time": last["created_at"],
                    "unread_count": sum(
                        1 for m in thread if m.get("receiver_id") == user_id and not m.get("is_read")
                    ),
                    "message_type": ADMIN_MESSAGE,
                }
            )

    conversations.sort(key=lambda c: str(c["last_message_time"]), reverse=True)
    return conversations


async def get_admin_conversations(db: Client, admin_id: str) -> list[dict]:
    """Admin inbox: one entry per user the admin has chatted with, newest first."""
    received = (
        db.table(MESSAGES_TABLE)
        .select("*")
        .eq("message_type", ADMIN_MESSAGE)
        .eq("receiver_id", admin_id)
        .execute()
    ).data or []
    sent = (
        db.table(MESSAGES_TABLE)
        .select("*")
        .eq("message_type", ADMIN_MESSAGE)
        .eq("sender_id", admin_id)
        .execute()
    ).data or []

    threads: dict[str, dict] = {}
    for row in sorted(received + sent, key=lambda r: str(r["created_at"]), reverse=True):
        other_id = row.get("receiver_id") if row["sender_id"] == admin_id else row["sender_id"]
        if not other_id or other_id == admin_id:
            continue
        thread = threads.get(other_id)
        if thread is None:
            thread = threads[other_id] = {
                "user_id": other_id,
                "last_message": row["message_text"],
                "last_message_time": row["created_at"],
                "unread_count": 0,
            }
        if row.get("receiver_id") == admin_id and not row.get("is_read"):
            thread["unread_count"] += 1

    users = await get_users(db, list(threads))
    for other_id, thread in threads.items():
        thread["user"] = public_user(users.get(other_id))
    return list(threads.values())


# =============================================================================
# Delivery
# =============================================================================


async def push_message(db: Client, connections: ConnectionManager | None, message: dict) -> bool:
    """Push a stored message and the receiver's new unread count, if they are online."""
    receiver_id = message.get("receiver_id")
    if connections is None or not receiver_id or not connections.is_connected(receiver_id):
        return False
    try:
        payload = to_message_response(message).to_wire()
        if not await connections.send(receiver_id, {"type": "message", "payload": payload}):
            return False
        count = await count_unread_messages(db, receiver_id)
        await connections.send(receiver_id, {"type": "unread_count", "payload": {"count": count}})
    except Exception as e:
        logger.warning(f"Live delivery failed | message={message.get('id')} | {e}")
        return False
    return True


async def _check_admin_party(db: Client, sender_id: str, receiver_id: str | None) -> None:
    users = await get_users(db, [uid for uid in (sender_id, receiver_id) if uid])
    if not any((users.get(uid) or {}).get("role") == "admin" for uid in (sender_id, receiver_id)):
        logger.warning(f"Admin message refused | sender={sender_id} | receiver={receiver_id}")
        raise ForbiddenError(
            "Admin messages must be sent to or from an admin; use the admin chat",
            code="ADMIN_MESSAGE_FORBIDDEN",
        )


async def send_message(
    db: Client,
    notifier: NotificationWriter,
    connections: ConnectionManager | None,
    sender_id: str,
    message: MessageCreate,
) -> dict:
    """Store a message and tell its receiver, by notification and live push.

    Raises:
        NotFoundError: the message names a job that does not exist.
        ForbiddenError: an admin message with no admin on either end.
    """
    job = None
    if message.job_id:
        job = await get_job(db, message.job_id)
        if not job:
            raise NotFoundError("Job not found")

    receiver_id = resolve_receiver(message, sender_id, job)
    if message.message_type == ADMIN_MESSAGE:
        await _check_admin_party(db, sender_id, receiver_id)
    row = await insert_message(db, sender_id, receiver_id, message)
    logger.info(
        f"Message stored | id={row['id']} | type={message.message_type} | "
        f"sender={sender_id} | receiver={receiver_id}"
    )

    if not receiver_id:
        logger.warning(f"No receiver resolved for message {row['id']}")
        return row

    try:
        sender = await get_user(db, sender_id)
    except Exception as e:
        logger.warning(f"Sender lookup failed for message {row['id']}: {e}")
        sender = None

    await notifier.notify_recipient_of_message(
        receiver_id,
        (sender or {}).get("name") or "Someone",
        message.message_text,
    )
    row = {**row, "sender": public_user(sender)}
    await push_message(db, connections, row)
    return row
