"""Job application store.

A job's ``pending_applications`` counter mirrors its number of ``pending``
application rows. Applying claims a slot on the counter with a versioned
update before the row is inserted, so the per-job cap holds no matter how
many providers apply at once; withdrawing deletes the row first and then
gives the slot back, restoring the row if the slot cannot be released.
"""

from decimal import Decimal

from supabase import Client

from ..database import (
    JOB_APPLICATIONS_TABLE,
    get_company_user_ids,
    get_provider_profiles,
    get_users,
)
from ..logging_config import get_logger
from .models import ACCEPTING_STATUSES, JobApplicationResponse, ProviderSnippet
from .storage import atomic_update_job, get_job

logger = get_logger("sasa.jobs.applications")

DEFAULT_MAX_PENDING = 4
DEFAULT_MAX_ATTEMPTS = 5


def _is_duplicate_error(e: Exception) -> bool:
    text = str(e).lower()
    return "duplicate" in text or "unique" in text


# =============================================================================
# Reads
# =============================================================================


async def get_application(db: Client, application_id: str) -> dict | None:
    """Get an application by ID."""
    result = db.table(JOB_APPLICATIONS_TABLE).select("*").eq("id", application_id).execute()
    return result.data[0] if result.data else None


async def has_applied(db: Client, job_id: str, provider_id: str) -> bool:
    """True if the provider holds an application of any status for the job."""
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .select("id")
        .eq("job_id", job_id)
        .eq("provider_id", provider_id)
        .limit(1)
        .execute()
    )
    return bool(result.data)


async def get_application_count(db: Client, job_id: str) -> int:
    """Count the job's pending applications."""
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .select("id", count="exact")
        .eq("job_id", job_id)
        .eq("status", "pending")
        .execute()
    )
    if result.count is not None:
        return result.count
    return len(result.data or [])


async def get_application_rows(db: Client, job_id: str, status: str | None = None) -> list[dict]:
    """Raw application rows for a job, oldest first."""
    query = db.table(JOB_APPLICATIONS_TABLE).select("*").eq("job_id", job_id)
    if status:
        query = query.eq("status", status)
    result = query.order("created_at").execute()
    return result.data or []


async def get_applications(db: Client, job_id: str) -> list[dict]:
    """All applications for a job, oldest first, each with a ``provider`` snippet."""
    rows = await get_application_rows(db, job_id)
    if not rows:
        return []

    provider_ids = [row["provider_id"] for row in rows]
    users = await get_users(db, provider_ids)
    profiles = await get_provider_profiles(db, provider_ids)
    companies = await get_company_user_ids(db, provider_ids)

    enriched = []
    for row in rows:
        pid = row["provider_id"]
        user = users.get(pid) or {}
        profile = profiles.get(pid) or {}
        enriched.append(
            {
                **row,
                "provider": {
                    "id": pid,
                    "name": user.get("name"),
                    "profile_photo_url": user.get("profile_photo_url"),
                    "rating_average": profile.get("rating_average") or 0,
                    "completed_jobs_count": profile.get("completed_jobs_count") or 0,
                    "is_company": pid in companies,
                },
            }
        )
    return enriched


# =============================================================================
# Writes
# =============================================================================


async def update_application_status(db: Client, application_id: str, new_status: str) -> dict | None:
    """Update an application status."""
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .update({"status": new_status})
        .eq("id", application_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def atomic_update_application_status(
    db: Client,
    application_id: str,
    expected_status: str,
    new_status: str,
) -> tuple[dict | None, str | None]:
    """Atomically update application status with optimistic locking.

    Returns:
        Tuple of (updated_application, error_message).
        - If successful: (app_dict, None)
        - If not found: (None, "not_found")
        - If status mismatch: (None, "conflict")
    """
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .update({"status": new_status})
        .eq("id", application_id)
        .eq("status", expected_status)
        .execute()
    )

    if result.data:
        return result.data[0], None

    app = await get_application(db, application_id)
    if not app:
        return None, "not_found"

    logger.warning(
        f"Race condition detected on application {application_id}: "
        f"expected status '{expected_status}', found '{app['status']}'"
    )
    return None, "conflict"


async def reject_other_applications(db: Client, job_id: str, keep_id: str | None = None) -> list[dict]:
    """Set every application of the job except ``keep_id`` to rejected."""
    query = db.table(JOB_APPLICATIONS_TABLE).update({"status": "rejected"}).eq("job_id", job_id)
    if keep_id:
        query = query.neq("id", keep_id)
    result = query.execute()
    return result.data or []


async def reject_pending_applications(db: Client, job_id: str) -> list[dict]:
    """Reject whatever is still pending on the job."""
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .update({"status": "rejected"})
        .eq("job_id", job_id)
        .eq("status", "pending")
        .execute()
    )
    return result.data or []


async def delete_applications_for_job(db: Client, job_id: str) -> list[dict]:
    """Delete every application of a job. Returns the deleted rows."""
    result = db.table(JOB_APPLICATIONS_TABLE).delete().eq("job_id", job_id).execute()
    return result.data or []


async def claim_slot(
    db: Client,
    job_id: str,
    max_pending: int = DEFAULT_MAX_PENDING,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[dict | None, str | None]:
    """Reserve one pending-application slot on a job.

    The first slot moves the job from ``open`` to ``pending_selection``.

    Returns:
        Tuple of (updated_job, error_message). Errors: "not_found",
        "not_accepting", "job_full", "conflict" (retries exhausted).
    """
    for attempt in range(max_attempts):
        job = await get_job(db, job_id)
        if not job:
            return None, "not_found"
        if job["status"] not in ACCEPTING_STATUSES:
            return None, "not_accepting"

        pending = job.get("pending_applications") or 0
        if pending >= max_pending:
            return None, "job_full"

        updates = {"pending_applications": pending + 1}
        if job["status"] == "open":
            updates["status"] = "pending_selection"

        updated, error = await atomic_update_job(db, job, **updates)
        if error != "conflict":
            return updated, error

        logger.info(f"Retrying slot claim | job={job_id} | attempt={attempt + 1}")

    return None, "conflict"


async def release_slot(
    db: Client,
    job_id: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[dict | None, str | None]:
    """Give back one pending-application slot.

    Releasing the last slot moves the job back to ``open``. Jobs that are no
    longer taking applications were already settled by selection or
    cancellation and are returned unchanged.
    """
    for attempt in range(max_attempts):
        job = await get_job(db, job_id)
        if not job:
            return None, "not_found"
        if job["status"] not in ACCEPTING_STATUSES:
            return job, None

        remaining = max((job.get("pending_applications") or 0) - 1, 0)
        updates = {"pending_applications": remaining}
        if remaining == 0:
            updates["status"] = "open"

        updated, error = await atomic_update_job(db, job, **updates)
        if error != "conflict":
            return updated, error

        logger.info(f"Retrying slot release | job={job_id} | attempt={attempt + 1}")

    logger.error(f"Could not release application slot on job {job_id}")
    return None, "conflict"


async def apply_to_job(
    db: Client,
    job_id: str,
    provider_id: str,
    message: str | None = None,
    max_pending: int = DEFAULT_MAX_PENDING,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[dict | None, str | None]:
    """Create a pending application for the provider.

    Returns:
        Tuple of (application, error_message).
        - If successful: (application_dict, None)
        - If job not found: (None, "not_found")
        - If the provider already has an application: (None, "already_applied")
        - If the job holds the maximum pending applications: (None, "job_full")
        - If the job stopped taking applications: (None, "not_accepting")
        - If the job kept changing underneath us: (None, "conflict")
    """
    # Checked before the cap so the caller can tell the two apart
    if await has_applied(db, job_id, provider_id):
        return None, "already_applied"

    job, error = await claim_slot(db, job_id, max_pending, max_attempts)
    if error:
        return None, error

    data = {
        "job_id": job_id,
        "provider_id": provider_id,
        "message": message,
        "status": "pending",
    }
    try:
        result = db.table(JOB_APPLICATIONS_TABLE).insert(data).execute()
    except Exception as e:
        await release_slot(db, job_id, max_attempts)
        if _is_duplicate_error(e):
            return None, "already_applied"
        raise

    created = result.data[0] if result.data else None
    if not created:
        await release_slot(db, job_id, max_attempts)
        return None, "insert_failed"

    # A selection or cancellation may have landed between the claim and the insert
    current = await get_job(db, job_id)
    if not current or current["status"] not in ACCEPTING_STATUSES:
        logger.warning(f"Job {job_id} closed while provider {provider_id} was applying")
        await update_application_status(db, created["id"], "rejected")
        return None, "not_accepting"

    return created, None


async def withdraw_application(
    db: Client,
    application_id: str,
    provider_id: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[dict | None, str | None]:
    """Delete the provider's own pending application.

    Returns:
        Tuple of (job_after_withdrawal, error_message). Errors: "not_found"
        (including an application already withdrawn), "forbidden",
        "not_pending", "conflict" (the job kept changing; the application is
        left in place).
    """
    application = await get_application(db, application_id)
    if not application:
        return None, "not_found"
    if application["provider_id"] != provider_id:
        return None, "forbidden"
    if application["status"] != "pending":
        return None, "not_pending"

    # Guarded delete: loses cleanly against a concurrent selection or withdraw
    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .delete()
        .eq("id", application_id)
        .eq("provider_id", provider_id)
        .eq("status", "pending")
        .execute()
    )
    if not result.data:
        return None, "not_pending"

    job, error = await release_slot(db, application["job_id"], max_attempts)
    if error == "conflict":
        # The counter still holds the slot, so the row has to come back with it
        await _restore_application(db, result.data[0])
        return None, "conflict"
    if error or job is None:
        return None, "not_found"
    return job, None


async def _restore_application(db: Client, row: dict) -> None:
    try:
        db.table(JOB_APPLICATIONS_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Could not restore application {row['id']} on job {row['job_id']}: {e}")
        raise
    logger.warning(f"Withdrawal of application {row['id']} rolled back after slot release conflict")


# =============================================================================
# Helper Functions
# =============================================================================


def to_application_response(app: dict) -> JobApplicationResponse:
    """Convert DB application dict to response model."""
    provider = app.get("provider")
    return JobApplicationResponse(
        id=app["id"],
        job_id=app["job_id"],
        provider_id=app["provider_id"],
        message=app.get("message"),
        status=app["status"],
        created_at=app["created_at"],
        updated_at=app.get("updated_at"),
        provider=(
            ProviderSnippet(
                id=provider["id"],
                name=provider.get("name"),
                profile_photo_url=provider.get("profile_photo_url"),
                rating_average=Decimal(str(provider.get("rating_average") or 0)),
                completed_jobs_count=provider.get("completed_jobs_count") or 0,
                is_company=provider.get("is_company", False),
            )
            if provider
            else None
        ),
    )
