"""Job persistence helpers.

Every write to a job row bumps its ``version`` column. Writes that depend on
what was read earlier go through :func:`atomic_update_job`, which only
succeeds if the row still carries the version the caller saw
(``UPDATE ... WHERE id = ? AND version = ?``).
"""

from datetime import datetime, timezone

from supabase import Client

from ..database import JOBS_TABLE
from ..logging_config import get_logger
from .models import INCOMPLETE_STATUSES, JobCreate

logger = get_logger("sasa.jobs.storage")

# Valid lifecycle transitions driven by PATCH /jobs/{id}/status.
# Application-driven moves (open <-> pending_selection -> accepted) are
# owned by the application store and selection engine.
VALID_TRANSITIONS = {
    "open": {"cancelled"},
    "pending_selection": {"cancelled"},
    "accepted": {"enroute", "cancelled"},
    "enroute": {"onsite", "cancelled"},
    "onsite": {"completed"},
}

STATUS_TIMESTAMPS = {
    "accepted": "accepted_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}


def can_transition(from_status: str, to_status: str) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _versioned(job_version: int, updates: dict) -> dict:
    data = {**updates, "version": job_version + 1, "updated_at": _now()}
    new_status = updates.get("status")
    if new_status in STATUS_TIMESTAMPS:
        data.setdefault(STATUS_TIMESTAMPS[new_status], data["updated_at"])
    return data


async def create_job(db: Client, requester_id: str, job: JobCreate) -> dict | None:
    """Create a new job in 'open' status."""
    data = {
        "requester_id": requester_id,
        "provider_id": None,
        "category_id": job.category_id,
        "title": job.title,
        "description": job.description,
        "city": job.city,
        "address": job.address,
        "urgency": job.urgency,
        "allowed_provider_type": job.allowed_provider_type,
        "budget_min": float(job.budget_min) if job.budget_min is not None else None,
        "budget_max": float(job.budget_max) if job.budget_max is not None else None,
        "preferred_time": job.preferred_time.isoformat() if job.preferred_time else None,
        "status": "open",
        "version": 0,
        "pending_applications": 0,
    }
    result = db.table(JOBS_TABLE).insert(data).execute()
    return result.data[0] if result.data else None


async def get_job(db: Client, job_id: str) -> dict | None:
    """Get a job by ID."""
    result = db.table(JOBS_TABLE).select("*").eq("id", job_id).execute()
    return result.data[0] if result.data else None


async def list_jobs(
    db: Client,
    requester_id: str | None = None,
    provider_id: str | None = None,
    cities: list[str] | None = None,
    statuses: list[str] | None = None,
    category_id: int | None = None,
) -> list[dict]:
    """List jobs matching every given filter, newest first."""
    query = db.table(JOBS_TABLE).select("*")

    if requester_id:
        query = query.eq("requester_id", requester_id)
    if provider_id:
        query = query.eq("provider_id", provider_id)
    if cities is not None:
        if not cities:
            return []
        query = query.in_("city", cities)
    if statuses:
        query = query.in_("status", statuses)
    if category_id is not None:
        query = query.eq("category_id", category_id)

    result = query.order("created_at", desc=True).execute()
    return result.data or []


async def count_incomplete_jobs(db: Client, provider_id: str) -> int:
    """Count jobs assigned to the provider that are not finished yet."""
    result = (
        db.table(JOBS_TABLE)
        .select("id", count="exact")
        .eq("provider_id", provider_id)
        .in_("status", sorted(INCOMPLETE_STATUSES))
        .execute()
    )
    if result.count is not None:
        return result.count
    return len(result.data or [])


async def delete_job(db: Client, job_id: str) -> bool:
    """Hard-delete a job row."""
    result = db.table(JOBS_TABLE).delete().eq("id", job_id).execute()
    return bool(result.data)


async def atomic_update_job(
    db: Client,
    job: dict,
    **updates,
) -> tuple[dict | None, str | None]:
    """Update a job only if nobody else wrote to it since it was read.

    Args:
        db: Database client
        job: The job row as previously read (its ``version`` is the guard)
        **updates: Fields to set

    Returns:
        Tuple of (updated_job, error_message).
        - If successful: (job_dict, None)
        - If job not found: (None, "not_found")
        - If the row changed underneath us: (None, "conflict")
    """
    version = job.get("version") or 0
    result = (
        db.table(JOBS_TABLE)
        .update(_versioned(version, updates))
        .eq("id", job["id"])
        .eq("version", version)
        .execute()
    )

    if result.data:
        return result.data[0], None

    current = await get_job(db, job["id"])
    if not current:
        return None, "not_found"

    logger.warning(
        f"Concurrent update on job {job['id']}: "
        f"expected version {version}, found {current.get('version')}"
    )
    return None, "conflict"


async def atomic_update_job_status(
    db: Client,
    job_id: str,
    expected_status: str,
    new_status: str,
    **updates,
) -> tuple[dict | None, str | None]:
    """Atomically update job status with optimistic locking on the status.

    Uses UPDATE ... WHERE status = expected_status to prevent two requests
    from both moving the job out of the same state.

    Returns:
        Tuple of (updated_job, error_message) with the same error codes as
        :func:`atomic_update_job`.
    """
    job = await get_job(db, job_id)
    if not job:
        return None, "not_found"
    if job["status"] != expected_status:
        return None, "conflict"

    version = job.get("version") or 0
    result = (
        db.table(JOBS_TABLE)
        .update(_versioned(version, {"status": new_status, **updates}))
        .eq("id", job_id)
        .eq("status", expected_status)
        .eq("version", version)
        .execute()
    )

    if result.data:
        return result.data[0], None

    current = await get_job(db, job_id)
    if not current:
        return None, "not_found"

    logger.warning(
        f"Race condition detected on job {job_id}: "
        f"expected status '{expected_status}', found '{current['status']}'"
    )
    return None, "conflict"
