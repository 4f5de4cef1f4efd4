"""Job routes.

Posting, browsing and the job lifecycle, plus the application and
provider-selection endpoints nested under a job.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..auth import AuthContext, CurrentUser
from ..cache import Listings
from ..config import Settings, get_settings
from ..database import Database, get_user
from ..errors import (
    AlreadyAppliedError,
    CapacityError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from ..jobs.applications import (
    apply_to_job,
    delete_applications_for_job,
    get_application,
    get_application_count,
    get_applications,
    has_applied,
    reject_pending_applications,
    to_application_response,
)
from ..jobs.eligibility import (
    ProviderContext,
    has_incomplete_jobs,
    ineligibility_message,
    ineligibility_reason,
    is_eligible,
    load_provider_context,
)
from ..jobs.listing import compose_job_listing
from ..jobs.models import (
    ACCEPTING_STATUSES,
    ApplicationStatusResponse,
    JobApplicationCreate,
    JobApplicationResponse,
    JobCreate,
    JobDeletedResponse,
    JobResponse,
    JobStatusUpdate,
    SelectProviderRequest,
    SortOrder,
)
from ..jobs.selection import select_provider
from ..jobs.storage import (
    atomic_update_job_status,
    can_transition,
    create_job,
    delete_job,
    get_job,
)
from ..logging_config import get_logger
from ..notifications.service import Notifier
from ..rate_limit import limiter

logger = get_logger("sasa.routes.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])

SettingsDep = Annotated[Settings, Depends(get_settings)]

JOB_POSTER_ROLES = ("requester", "company")


# =============================================================================
# Helper Functions
# =============================================================================


def to_job_response(job: dict) -> JobResponse:
    """Convert DB job dict to response model."""
    return JobResponse(
        id=job["id"],
        requester_id=job["requester_id"],
        provider_id=job.get("provider_id"),
        category_id=job["category_id"],
        title=job["title"],
        description=job.get("description"),
        city=job["city"],
        address=job.get("address"),
        urgency=job.get("urgency") or "normal",
        status=job["status"],
        allowed_provider_type=job.get("allowed_provider_type") or "both",
        budget_min=job.get("budget_min"),
        budget_max=job.get("budget_max"),
        preferred_time=job.get("preferred_time"),
        created_at=job["created_at"],
        updated_at=job.get("updated_at"),
        accepted_at=job.get("accepted_at"),
        completed_at=job.get("completed_at"),
        cancelled_at=job.get("cancelled_at"),
    )


async def require_job(db, job_id: str) -> dict:
    job = await get_job(db, job_id)
    if not job:
        raise NotFoundError("Job not found")
    return job


async def require_provider(db, auth: AuthContext) -> ProviderContext:
    """The caller's provider context; providers and company providers only."""
    ctx = None
    if auth.role in ("provider", "company"):
        ctx = await load_provider_context(db, auth.user_id)
    if ctx is None:
        raise ForbiddenError("Only providers can perform this action")
    return ctx


async def can_view_job(db, auth: AuthContext, job: dict) -> bool:
    if auth.is_admin or auth.user_id in (job["requester_id"], job.get("provider_id")):
        return True
    if auth.role not in ("provider", "company"):
        return False
    if await has_applied(db, job["id"], auth.user_id):
        return True
    if job["status"] not in ACCEPTING_STATUSES:
        return False
    ctx = await load_provider_context(db, auth.user_id)
    return ctx is not None and is_eligible(ctx, job)


# =============================================================================
# Routes
# =============================================================================


@router.get("", response_model=list[JobResponse])
@limiter.limit("60/minute")
async def list_jobs_endpoint(
    request: Request,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    category: str | None = Query(None, description="Category id, or 'all'"),
    status_filter: str | None = Query(None, alias="status", description="Job status; 'open' includes pending selection"),
    sort: SortOrder | None = Query(None),
):
    """
    List the jobs visible to the caller.

    Requesters see their own jobs, providers the open jobs they are eligible
    for plus the jobs assigned to them, admins every job.
    """
    logger.info(
        f"GET /jobs | user={auth.user_id} | role={auth.role} | "
        f"category={category} | status={status_filter} | sort={sort}"
    )
    jobs = await compose_job_listing(db, cache, auth, category=category, status=status_filter, sort=sort)
    return [to_job_response(j) for j in jobs]


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_job_listing(
    request: Request,
    job: JobCreate,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    notifier: Notifier,
):
    """
    Post a new job.

    Only requesters and companies can post. Providers who could take the job
    are notified.
    """
    logger.info(f"POST /jobs | user={auth.user_id} | city={job.city} | category={job.category_id}")

    if auth.role not in JOB_POSTER_ROLES:
        raise ForbiddenError("Only requesters and companies can post jobs")

    created = await create_job(db, auth.user_id, job)
    if not created:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create job",
        )

    cache.invalidate_job(created)
    notified = await notifier.notify_providers_of_new_job(created)

    logger.info(f"Job created | id={created['id']} | requester={auth.user_id} | notified={len(notified)}")
    return to_job_response(created)


@router.get("/{job_id}", response_model=JobResponse)
@limiter.limit("60/minute")
async def get_job_details(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
):
    """Get a job the caller is involved in or may apply to."""
    logger.info(f"GET /jobs/{job_id} | user={auth.user_id}")

    job = await require_job(db, job_id)
    if not await can_view_job(db, auth, job):
        raise ForbiddenError("Access denied to this job")

    return to_job_response(job)


@router.patch("/{job_id}/status", response_model=JobResponse)
@limiter.limit("20/minute")
async def update_job_status(
    request: Request,
    job_id: str,
    update: JobStatusUpdate,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    notifier: Notifier,
):
    """
    Move a job along its lifecycle.

    The assigned provider reports progress (enroute, onsite, completed);
    the requester cancels. Admins may do either. Cancelling detaches the
    provider and rejects whatever applications are still pending.
    """
    new_status = update.status
    logger.info(f"PATCH /jobs/{job_id}/status | user={auth.user_id} | status={new_status}")

    job = await require_job(db, job_id)
    is_requester = job["requester_id"] == auth.user_id
    is_provider = job.get("provider_id") == auth.user_id

    if new_status == "cancelled":
        if not (is_requester or auth.is_admin):
            raise ForbiddenError("Only the job requester can cancel this job")
    elif not (is_provider or auth.is_admin):
        raise ForbiddenError("Only the assigned provider can update job progress")

    if not can_transition(job["status"], new_status):
        raise InvalidStateError(
            f"Cannot change job status from {job['status']} to {new_status}",
            code="INVALID_STATUS_TRANSITION",
        )

    updates = {}
    if new_status == "cancelled":
        updates = {"provider_id": None, "pending_applications": 0}

    updated, error = await atomic_update_job_status(
        db,
        job_id,
        expected_status=job["status"],
        new_status=new_status,
        **updates,
    )
    if error == "not_found":
        raise NotFoundError("Job not found")
    if error == "conflict":
        raise ConflictError("Job status changed concurrently. Reload and try again.")

    cache.invalidate_job(job)

    if new_status == "cancelled":
        rejected = await reject_pending_applications(db, job_id)
        recipients = {job["requester_id"], job.get("provider_id")}
        recipients.update(a["provider_id"] for a in rejected)
        recipients.discard(auth.user_id)
        recipients.discard(None)
        for recipient_id in sorted(recipients):
            await notifier.notify_recipient(recipient_id, job, "cancelled")
    else:
        await notifier.notify_recipient(job["requester_id"], job, new_status)

    logger.info(f"Job status updated | id={job_id} | {job['status']} -> {new_status} | by={auth.user_id}")
    return to_job_response(updated)


@router.delete("/{job_id}", response_model=JobDeletedResponse)
@limiter.limit("10/minute")
async def delete_job_endpoint(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    notifier: Notifier,
):
    """
    Delete a job that has not been assigned yet.

    The job is closed first so no application or selection can land while
    its applications and the job itself are removed.
    """
    logger.info(f"DELETE /jobs/{job_id} | user={auth.user_id}")

    job = await require_job(db, job_id)
    if job["requester_id"] != auth.user_id and not auth.is_admin:
        raise ForbiddenError("Only the job requester can delete this job")
    if job["status"] not in ACCEPTING_STATUSES:
        raise InvalidStateError(
            f"Cannot delete job in status: {job['status']}",
            code="JOB_NOT_DELETABLE",
        )

    _, error = await atomic_update_job_status(
        db,
        job_id,
        expected_status=job["status"],
        new_status="cancelled",
        pending_applications=0,
    )
    if error == "not_found":
        raise NotFoundError("Job not found")
    if error == "conflict":
        raise ConflictError("Job changed concurrently. Reload and try again.")

    removed = await delete_applications_for_job(db, job_id)
    await delete_job(db, job_id)
    cache.invalidate_job(job)

    for provider_id in sorted({a["provider_id"] for a in removed}):
        await notifier.notify_recipient(provider_id, job, "cancelled")

    logger.info(f"Job deleted | id={job_id} | by={auth.user_id} | applications={len(removed)}")
    return JobDeletedResponse(id=job_id)


# =============================================================================
# Applications
# =============================================================================


@router.post(
    "/{job_id}/apply",
    response_model=JobApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
async def apply_to_job_endpoint(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    notifier: Notifier,
    settings: SettingsDep,
    application: JobApplicationCreate | None = None,
):
    """
    Apply to an open job.

    A job takes at most ``max_pending_applications`` pending applications.
    Providers holding an unfinished assigned job cannot apply anywhere.
    """
    logger.info(f"POST /jobs/{job_id}/apply | user={auth.user_id}")

    ctx = await require_provider(db, auth)
    job = await require_job(db, job_id)

    if job["requester_id"] == auth.user_id:
        raise InvalidStateError("Cannot apply to your own job", code="OWN_JOB")
    if job["status"] not in ACCEPTING_STATUSES:
        raise InvalidStateError(
            "This job is no longer accepting applications",
            code="JOB_NOT_ACCEPTING_APPLICATIONS",
        )
    if await has_incomplete_jobs(db, auth.user_id):
        raise InvalidStateError(
            "You have incomplete jobs. Complete them before applying to new ones.",
            code="INCOMPLETE_JOBS_EXIST",
        )

    reason = ineligibility_reason(ctx, job)
    if reason:
        raise ForbiddenError(ineligibility_message(ctx, job, reason), code="NOT_ELIGIBLE")

    created, error = await apply_to_job(
        db,
        job_id,
        auth.user_id,
        message=application.message if application else None,
        max_pending=settings.max_pending_applications,
        max_attempts=settings.apply_max_attempts,
    )

    if error == "already_applied":
        raise AlreadyAppliedError("You have already applied to this job")
    if error == "job_full":
        raise CapacityError("Maximum applicants reached for this job")
    if error == "not_accepting":
        raise InvalidStateError(
            "This job is no longer accepting applications",
            code="JOB_NOT_ACCEPTING_APPLICATIONS",
        )
    if error == "not_found":
        raise NotFoundError("Job not found")
    if error == "conflict":
        raise ConflictError("Too many concurrent applications. Please retry.")
    if not created:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create application",
        )

    cache.invalidate_job(job)
    provider = await get_user(db, auth.user_id)
    await notifier.notify_requester_of_application(job, (provider or {}).get("name"))

    logger.info(f"Application created | job={job_id} | provider={auth.user_id}")
    return to_application_response(created)


@router.get("/{job_id}/applications", response_model=list[JobApplicationResponse])
@limiter.limit("30/minute")
async def list_applications(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
):
    """List a job's applications, oldest first. Requester or admin only."""
    logger.info(f"GET /jobs/{job_id}/applications | user={auth.user_id}")

    job = await require_job(db, job_id)
    if job["requester_id"] != auth.user_id and not auth.is_admin:
        raise ForbiddenError("Only the job requester can view applications")

    applications = await get_applications(db, job_id)
    return [to_application_response(a) for a in applications]


@router.get("/{job_id}/application-status", response_model=ApplicationStatusResponse)
@limiter.limit("60/minute")
async def get_application_status(
    request: Request,
    job_id: str,
    auth: CurrentUser,
    db: Database,
    settings: SettingsDep,
):
    """Whether the calling provider has applied and whether it still can."""
    logger.info(f"GET /jobs/{job_id}/application-status | user={auth.user_id}")

    await require_provider(db, auth)
    job = await require_job(db, job_id)

    applied = await has_applied(db, job_id, auth.user_id)
    count = await get_application_count(db, job_id)
    max_applications = settings.max_pending_applications

    return ApplicationStatusResponse(
        has_applied=applied,
        application_count=count,
        max_applications=max_applications,
        can_apply=(
            not applied
            and count < max_applications
            and job["status"] in ACCEPTING_STATUSES
        ),
    )


@router.post("/{job_id}/select-provider", response_model=JobResponse)
@limiter.limit("10/minute")
async def select_provider_endpoint(
    request: Request,
    job_id: str,
    selection_request: SelectProviderRequest,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    notifier: Notifier,
    settings: SettingsDep,
):
    """
    Choose the provider for a job.

    The chosen application becomes selected, every other one rejected, and
    the job moves to accepted with the provider attached.
    """
    application_id = selection_request.application_id
    logger.info(f"POST /jobs/{job_id}/select-provider | user={auth.user_id} | app={application_id}")

    application = await get_application(db, application_id)
    if not application or application["job_id"] != job_id:
        raise NotFoundError("Application not found for this job")

    selection, error = await select_provider(
        db,
        application_id,
        auth.user_id,
        max_attempts=settings.apply_max_attempts,
    )

    if error in ("application_not_found", "job_not_found"):
        raise NotFoundError("Application not found for this job" if error == "application_not_found" else "Job not found")
    if error == "forbidden":
        raise ForbiddenError("Only the job requester can select a provider")
    if error == "not_pending_selection":
        raise InvalidStateError(
            "Job is not awaiting provider selection",
            code="JOB_NOT_PENDING_SELECTION",
        )
    if error == "application_not_pending":
        raise InvalidStateError("Application is no longer pending", code="APPLICATION_NOT_PENDING")
    if error == "conflict":
        raise ConflictError("Job changed concurrently. Reload and try again.")

    job = selection.job
    cache.invalidate_job(job)

    await notifier.notify_application_accepted(selection.selected["provider_id"], job)
    for rejected in selection.rejected:
        await notifier.notify_application_rejected(rejected["provider_id"], job)

    logger.info(f"Provider selected | job={job_id} | provider={job['provider_id']}")
    return to_job_response(job)
