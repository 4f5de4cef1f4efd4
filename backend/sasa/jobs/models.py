"""Pydantic models for jobs and job applications."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator, model_validator

from ..models import ApiModel

JobStatus = Literal[
    "open",
    "pending_selection",
    "accepted",
    "enroute",
    "onsite",
    "completed",
    "cancelled",
]
ApplicationStatus = Literal["pending", "selected", "rejected"]
AllowedProviderType = Literal["individual", "company", "both"]
Urgency = Literal["normal", "emergency"]
SortOrder = Literal["urgent", "recent"]

# Assigned but unfinished: blocks the provider from applying elsewhere
INCOMPLETE_STATUSES = frozenset({"accepted", "enroute", "onsite"})
# Statuses in which the job still takes applications
ACCEPTING_STATUSES = frozenset({"open", "pending_selection"})


# =============================================================================
# Requests
# =============================================================================


class JobCreate(ApiModel):
    """Request to post a job."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category_id: int = Field(..., gt=0)
    city: str = Field(..., min_length=1, max_length=100)
    address: str | None = None
    urgency: Urgency = "normal"
    allowed_provider_type: AllowedProviderType = "both"
    budget_min: Decimal | None = Field(None, ge=0)
    budget_max: Decimal | None = Field(None, ge=0)
    preferred_time: datetime | None = None

    @field_validator("city")
    @classmethod
    def strip_city(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("City is required")
        return v

    @model_validator(mode="after")
    def budget_range(self) -> "JobCreate":
        if self.budget_min is not None and self.budget_max is not None:
            if self.budget_min > self.budget_max:
                raise ValueError("budgetMin cannot exceed budgetMax")
        return self


class JobStatusUpdate(ApiModel):
    """Request to move a job along its lifecycle."""

    status: Literal["enroute", "onsite", "completed", "cancelled"]


class JobApplicationCreate(ApiModel):
    """Request to apply to a job."""

    message: str | None = Field(None, max_length=2000)


class SelectProviderRequest(ApiModel):
    """Request to select one application for a job."""

    application_id: str = Field(..., min_length=1)


# =============================================================================
# Responses
# =============================================================================


class JobResponse(ApiModel):
    """Job details response."""

    id: str
    requester_id: str
    provider_id: str | None = None
    category_id: int
    title: str
    description: str | None = None
    city: str
    address: str | None = None
    urgency: Urgency = "normal"
    status: JobStatus
    allowed_provider_type: AllowedProviderType = "both"
    budget_min: Decimal | None = None
    budget_max: Decimal | None = None
    preferred_time: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class ProviderSnippet(ApiModel):
    """Public profile of an applying provider."""

    id: str
    name: str | None = None
    profile_photo_url: str | None = None
    rating_average: Decimal = Decimal("0")
    completed_jobs_count: int = 0
    is_company: bool = False


class JobApplicationResponse(ApiModel):
    """Job application response."""

    id: str
    job_id: str
    provider_id: str
    message: str | None = None
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime | None = None
    provider: ProviderSnippet | None = None


class ApplicationStatusResponse(ApiModel):
    """A provider's standing on one job."""

    has_applied: bool
    application_count: int
    max_applications: int
    can_apply: bool


class JobDeletedResponse(ApiModel):
    id: str
    deleted: bool = True
    message: str = "Job deleted"


class ApplicationWithdrawnResponse(ApiModel):
    id: str
    job_id: str
    job_status: JobStatus
    message: str = "Application withdrawn"
