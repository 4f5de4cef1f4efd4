"""Application routes that are addressed by application id."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ..auth import CurrentUser
from ..cache import Listings
from ..config import Settings, get_settings
from ..database import Database
from ..errors import ConflictError, InvalidStateError
from ..jobs.applications import withdraw_application
from ..jobs.models import ApplicationWithdrawnResponse
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("sasa.routes.applications")
router = APIRouter(prefix="/applications", tags=["applications"])

WITHDRAW_ERRORS = {
    "not_found": ("Application not found or already withdrawn", "APPLICATION_NOT_FOUND"),
    "forbidden": ("You can only withdraw your own applications", "NOT_APPLICATION_OWNER"),
    "not_pending": ("Only pending applications can be withdrawn", "APPLICATION_NOT_PENDING"),
}


@router.delete("/{application_id}", response_model=ApplicationWithdrawnResponse)
@limiter.limit("30/minute")
async def withdraw_application_endpoint(
    request: Request,
    application_id: str,
    auth: CurrentUser,
    db: Database,
    cache: Listings,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Withdraw a pending application.

    Withdrawing the last pending application reopens the job. Repeating the
    call fails with 400 and changes nothing.
    """
    logger.info(f"DELETE /applications/{application_id} | user={auth.user_id}")

    job, error = await withdraw_application(
        db,
        application_id,
        auth.user_id,
        max_attempts=settings.apply_max_attempts,
    )
    if error == "conflict":
        raise ConflictError("Job changed concurrently. Reload and try again.")
    if error:
        message, code = WITHDRAW_ERRORS.get(error, ("Cannot withdraw application", "CANNOT_WITHDRAW"))
        raise InvalidStateError(message, code=code)

    cache.invalidate_job(job)

    logger.info(f"Application withdrawn | id={application_id} | job={job['id']} | job_status={job['status']}")
    return ApplicationWithdrawnResponse(id=application_id, job_id=job["id"], job_status=job["status"])
