"""Notification writer and recipient-scoped notification queries.

Writing a notification is best-effort: :class:`NotificationWriter` logs and
swallows every failure so the business operation that triggered it never
fails because of it. When the recipient is online the new row is also pushed
over the live channel as a ``notification`` frame.
"""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends

from supabase import Client

from ..connections import ConnectionManager, Connections
from ..database import (
    NOTIFICATIONS_TABLE,
    Database,
    get_company_user_ids,
    get_provider_profiles,
    get_providers_approved_for_category,
    list_admin_ids,
)
from ..jobs.eligibility import approved_areas, provider_type_matches
from ..logging_config import get_logger
from .models import to_notification_response

logger = get_logger("sasa.notifications")

STATUS_LABELS = {
    "enroute": "on the way",
    "onsite": "on site",
    "completed": "completed",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationWriter:
    """Creates notification rows and pushes them to online recipients."""

    def __init__(self, db: Client, connections: ConnectionManager | None = None):
        self.db = db
        self.connections = connections

    async def notify(
        self,
        recipient_id: str,
        type: str,
        title: str,
        message: str,
        job_id: str | None = None,
    ) -> dict | None:
        """Insert one notification. Returns the row, or None if it could not be written."""
        data = {
            "recipient_id": recipient_id,
            "job_id": job_id,
            "type": type,
            "title": title,
            "message": message,
            "is_read": False,
        }
        try:
            result = self.db.table(NOTIFICATIONS_TABLE).insert(data).execute()
        except Exception as e:
            logger.error(f"Failed to write notification | recipient={recipient_id} | type={type} | {e}")
            return None

        row = result.data[0] if result.data else None
        if row:
            await self._push(row)
        return row

    async def _push(self, row: dict) -> None:
        if self.connections is None:
            return
        try:
            frame = {"type": "notification", "payload": to_notification_response(row).to_wire()}
            await self.connections.send(row["recipient_id"], frame)
        except Exception as e:
            logger.warning(f"Notification push failed | id={row.get('id')} | {e}")

    async def notify_providers_of_new_job(self, job: dict) -> list[str]:
        """Tell every provider who could take the job that it was posted.

        A provider qualifies with an approved verification for the job's
        category, the job's city among its approved areas, and a matching
        individual/company classification. Returns the notified provider ids.
        """
        try:
            candidates = await get_providers_approved_for_category(self.db, job["category_id"])
            candidates = [pid for pid in candidates if pid != job.get("requester_id")]
            if not candidates:
                return []

            profiles = await get_provider_profiles(self.db, candidates)
            companies = await get_company_user_ids(self.db, candidates)
        except Exception as e:
            logger.error(f"Error notifying providers of new job {job.get('id')}: {e}")
            return []

        urgent = "URGENT " if job.get("urgency") == "emergency" else ""
        title = f"New {urgent}Job in {job['city']}"
        message = f'A new job has been posted: "{job["title"]}". Tap to view details and apply.'

        notified = []
        for provider_id in candidates:
            profile = profiles.get(provider_id)
            if not profile or job["city"] not in approved_areas(profile):
                continue
            if not provider_type_matches(provider_id in companies, job.get("allowed_provider_type")):
                continue
            if await self.notify(provider_id, "job_posted", title, message, job_id=job["id"]):
                notified.append(provider_id)
        return notified

    async def notify_recipient_of_message(self, recipient_id: str, sender_name: str, preview: str) -> dict | None:
        return await self.notify(
            recipient_id,
            "message_received",
            f"New message from {sender_name}",
            preview or "Sent a message",
        )

    async def notify_recipient(self, recipient_id: str, job: dict, new_status: str) -> dict | None:
        """Tell one party that a job moved along its lifecycle."""
        if new_status == "cancelled":
            return await self.notify(
                recipient_id,
                "job_cancelled",
                "Job Cancelled",
                f'"{job["title"]}" has been cancelled.',
                job_id=job["id"],
            )
        label = STATUS_LABELS.get(new_status, new_status)
        return await self.notify(
            recipient_id,
            "job_status_changed",
            "Job Update",
            f'Your job "{job["title"]}" is now {label}.',
            job_id=job["id"],
        )

    async def notify_requester_of_application(self, job: dict, provider_name: str | None) -> dict | None:
        return await self.notify(
            job["requester_id"],
            "application_received",
            "New Application",
            f'{provider_name or "A provider"} has applied to your job "{job["title"]}". '
            "Tap to view their profile and message.",
            job_id=job["id"],
        )

    async def notify_application_accepted(self, provider_id: str, job: dict) -> dict | None:
        return await self.notify(
            provider_id,
            "application_accepted",
            "Application Accepted!",
            f'Your application for "{job["title"]}" has been accepted. The requester will contact you soon.',
            job_id=job["id"],
        )

    async def notify_application_rejected(self, provider_id: str, job: dict) -> dict | None:
        return await self.notify(
            provider_id,
            "application_rejected",
            "Application Update",
            f'Unfortunately, you were not selected for "{job["title"]}". Keep applying to other opportunities!',
            job_id=job["id"],
        )

    async def create_admin_notification(self, type: str, title: str, message: str) -> list[str]:
        """Notify every admin account. Returns the admins reached."""
        try:
            admin_ids = await list_admin_ids(self.db)
        except Exception as e:
            logger.error(f"Failed to look up admins for {type} notification: {e}")
            return []
        return [admin_id for admin_id in admin_ids if await self.notify(admin_id, type, title, message)]


def get_notifier(db: Database, connections: Connections) -> NotificationWriter:
    """FastAPI dependency for a notification writer bound to this request."""
    return NotificationWriter(db, connections)


Notifier = Annotated[NotificationWriter, Depends(get_notifier)]


# =============================================================================
# Recipient-scoped queries
# =============================================================================


async def list_notifications(db: Client, recipient_id: str, unread_only: bool = False) -> list[dict]:
    """The recipient's notifications, newest first."""
    query = db.table(NOTIFICATIONS_TABLE).select("*").eq("recipient_id", recipient_id)
    if unread_only:
        query = query.eq("is_read", False)
    result = query.order("created_at", desc=True).execute()
    return result.data or []


async def count_unread_notifications(db: Client, recipient_id: str) -> int:
    result = (
        db.table(NOTIFICATIONS_TABLE)
        .select("id", count="exact")
        .eq("recipient_id", recipient_id)
        .eq("is_read", False)
        .execute()
    )
    if result.count is not None:
        return result.count
    return len(result.data or [])


async def mark_notification_read(db: Client, notification_id: str, recipient_id: str) -> dict | None:
    """Mark one of the recipient's notifications read. None if it is not theirs."""
    result = (
        db.table(NOTIFICATIONS_TABLE)
        .update({"is_read": True, "read_at": _now()})
        .eq("id", notification_id)
        .eq("recipient_id", recipient_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def mark_all_notifications_read(db: Client, recipient_id: str) -> int:
    result = (
        db.table(NOTIFICATIONS_TABLE)
        .update({"is_read": True, "read_at": _now()})
        .eq("recipient_id", recipient_id)
        .eq("is_read", False)
        .execute()
    )
    return len(result.data or [])


async def delete_notification(db: Client, notification_id: str, recipient_id: str) -> bool:
    result = (
        db.table(NOTIFICATIONS_TABLE)
        .delete()
        .eq("id", notification_id)
        .eq("recipient_id", recipient_id)
        .execute()
    )
    return bool(result.data)
