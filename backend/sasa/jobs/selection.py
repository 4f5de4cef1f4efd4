"""Selecting the winning application for a job.

Order of writes:

1. claim the chosen application (``pending -> selected``, status-guarded);
2. move the job ``pending_selection -> accepted`` with the provider attached
   (version-guarded, retried while the job is still selectable); if this
   fails the claim from step 1 is undone;
3. reject every other application of the job.

Only one request can win step 2, so at most one application ends up
``selected``. Step 3 also catches applications inserted by providers whose
apply raced the selection.
"""

from dataclasses import dataclass, field

from supabase import Client

from ..logging_config import get_logger
from .applications import (
    DEFAULT_MAX_ATTEMPTS,
    atomic_update_application_status,
    get_application,
    reject_other_applications,
)
from .storage import atomic_update_job, get_job

logger = get_logger("sasa.jobs.selection")


@dataclass
class Selection:
    """Outcome of a successful selection."""

    job: dict
    selected: dict
    rejected: list[dict] = field(default_factory=list)


async def _undo_claim(db: Client, application_id: str) -> None:
    _, error = await atomic_update_application_status(db, application_id, "selected", "pending")
    if error:
        logger.warning(f"Could not undo claim on application {application_id}: {error}")


async def select_provider(
    db: Client,
    application_id: str,
    requester_id: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> tuple[Selection | None, str | None]:
    """Pick one application and assign its provider to the job.

    Returns:
        Tuple of (selection, error_message). Errors:
        "application_not_found", "job_not_found", "forbidden",
        "not_pending_selection", "application_not_pending", "conflict".
    """
    application = await get_application(db, application_id)
    if not application:
        return None, "application_not_found"

    job_id = application["job_id"]
    job = await get_job(db, job_id)
    if not job:
        return None, "job_not_found"
    if job["requester_id"] != requester_id:
        return None, "forbidden"
    if job["status"] != "pending_selection":
        return None, "not_pending_selection"
    if application["status"] != "pending":
        return None, "application_not_pending"

    selected, error = await atomic_update_application_status(db, application_id, "pending", "selected")
    if error == "not_found":
        return None, "application_not_found"
    if error:
        return None, "application_not_pending"

    updated_job = None
    for attempt in range(max_attempts):
        updated_job, job_error = await atomic_update_job(
            db,
            job,
            status="accepted",
            provider_id=application["provider_id"],
            pending_applications=0,
        )
        if not job_error:
            break

        # Applies and withdrawals bump the version too; retry while still selectable
        job = await get_job(db, job_id) if job_error == "conflict" else None
        if not job:
            await _undo_claim(db, application_id)
            return None, "job_not_found"
        if job["status"] != "pending_selection":
            await _undo_claim(db, application_id)
            return None, "not_pending_selection"
        logger.info(f"Retrying selection | job={job_id} | attempt={attempt + 1}")
    else:
        await _undo_claim(db, application_id)
        return None, "conflict"

    rejected = await reject_other_applications(db, job_id, keep_id=application_id)

    logger.info(
        f"Provider selected | job={job_id} | provider={application['provider_id']} | rejected={len(rejected)}"
    )
    return Selection(job=updated_job, selected=selected, rejected=rejected), None
