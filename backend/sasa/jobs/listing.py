"""Job listing composition for GET /jobs.

Who sees what:

- admin: every job;
- provider (or a company account with a provider profile): open /
  pending-selection jobs it is eligible for, plus every job assigned to it;
- everyone else: the jobs they posted.

Results are cached per (caller, category, status, sort) and tagged with the
caller, every listed job, and ``providers``/``admin`` for role-wide
invalidation.
"""

from datetime import datetime, timezone

from supabase import Client

from ..auth import AuthContext
from ..cache import ADMIN_TAG, PROVIDERS_TAG, ListingCache, job_tag, listing_key, user_tag
from ..errors import NotFoundError, ValidationFailedError
from ..logging_config import get_logger
from .eligibility import ProviderContext, is_eligible, load_provider_context
from .storage import list_jobs

logger = get_logger("sasa.jobs.listing")

BROWSING_STATUSES = ("open", "pending_selection")
# Status filter values that mean "jobs still taking applications"
BROWSING_ALIASES = {"open", "browsing"}


def expand_status_filter(status: str | None) -> set[str] | None:
    """Translate the ``status`` query value into the set of statuses to keep."""
    if not status:
        return None
    if status in BROWSING_ALIASES:
        return set(BROWSING_STATUSES)
    return {status}


def parse_category_filter(category: str | None) -> int | None:
    """Parse the ``category`` query value; ``all`` or empty means no filter."""
    if category is None or category == "" or category == "all":
        return None
    try:
        return int(category)
    except (TypeError, ValueError):
        raise ValidationFailedError(
            [{"field": "category", "message": "Category must be a number or 'all'"}]
        )


def apply_filters(
    jobs: list[dict],
    category_id: int | None = None,
    statuses: set[str] | None = None,
) -> list[dict]:
    if category_id is not None:
        jobs = [j for j in jobs if j.get("category_id") == category_id]
    if statuses is not None:
        jobs = [j for j in jobs if j.get("status") in statuses]
    return jobs


def _created_ts(job: dict) -> float:
    value = job.get("created_at")
    if isinstance(value, datetime):
        dt = value
    elif value:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def sort_jobs(jobs: list[dict], sort: str | None) -> list[dict]:
    """Apply the ``sort`` query value. Unknown or missing values keep fetch order."""
    if sort == "urgent":
        return sorted(
            jobs,
            key=lambda j: (j.get("urgency") != "emergency", -_created_ts(j)),
        )
    if sort == "recent":
        return sorted(jobs, key=_created_ts, reverse=True)
    return list(jobs)


def merge_unique(*job_lists: list[dict]) -> list[dict]:
    """Concatenate job lists, keeping the first occurrence of each id."""
    seen: set[str] = set()
    merged = []
    for jobs in job_lists:
        for job in jobs:
            if job["id"] not in seen:
                seen.add(job["id"])
                merged.append(job)
    return merged


async def provider_visible_jobs(db: Client, ctx: ProviderContext) -> list[dict]:
    """Open jobs the provider is eligible for, plus jobs assigned to it."""
    if not ctx.approved_category_ids:
        return []

    open_jobs = await list_jobs(db, cities=list(ctx.approved_areas), statuses=list(BROWSING_STATUSES))
    eligible = [j for j in open_jobs if is_eligible(ctx, j)]
    assigned = await list_jobs(db, provider_id=ctx.provider_id)
    return merge_unique(eligible, assigned)


async def compose_job_listing(
    db: Client,
    cache: ListingCache,
    auth: AuthContext,
    category: str | None = None,
    status: str | None = None,
    sort: str | None = None,
) -> list[dict]:
    """Build (or fetch from cache) the job list visible to the caller."""
    category_id = parse_category_filter(category)
    statuses = expand_status_filter(status)

    key = listing_key(auth.user_id, category, status, sort)
    cached = cache.get(key)
    if cached is not None:
        logger.debug(f"Listing cache hit | key={key}")
        return cached

    tags = {user_tag(auth.user_id)}

    if auth.is_admin:
        jobs = await list_jobs(db)
        tags.add(ADMIN_TAG)
    else:
        ctx = None
        if auth.role in ("provider", "company"):
            ctx = await load_provider_context(db, auth.user_id)
            if ctx is None and auth.role == "provider":
                raise NotFoundError("Provider profile not found")

        if ctx is not None:
            jobs = await provider_visible_jobs(db, ctx)
            tags.add(PROVIDERS_TAG)
        else:
            jobs = await list_jobs(db, requester_id=auth.user_id)

    jobs = sort_jobs(apply_filters(jobs, category_id, statuses), sort)

    tags.update(job_tag(j["id"]) for j in jobs)
    cache.set(key, jobs, tags=tags)
    return jobs
