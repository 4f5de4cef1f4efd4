"""Provider eligibility for viewing and applying to jobs.

A provider may see an open job when all of these hold:

- the job's city is one of the provider's approved service areas
  (``approved_service_areas``, or ``[primary_city]`` when unset);
- the job's category has an approved category verification for the provider
  (no approved categories means no open jobs at all);
- the job's ``allowed_provider_type`` is ``both`` or matches the provider's
  classification (company provider = provider profile + company profile).

Applying additionally requires the provider to have no assigned job that is
still unfinished; that lock is checked at apply time only.
"""

from dataclasses import dataclass

from supabase import Client

from ..database import get_approved_category_ids, get_company_user_ids, get_provider_profile
from .storage import count_incomplete_jobs


@dataclass(frozen=True)
class ProviderContext:
    """Everything the eligibility rules need to know about one provider."""

    provider_id: str
    approved_areas: tuple[str, ...]
    approved_category_ids: frozenset[int]
    is_company: bool

    @property
    def provider_type(self) -> str:
        return "company" if self.is_company else "individual"


def approved_areas(profile: dict) -> list[str]:
    """Cities a provider may work in."""
    areas = profile.get("approved_service_areas")
    if areas:
        return list(areas)
    primary = profile.get("primary_city")
    return [primary] if primary else []


def provider_type_matches(is_company: bool, allowed_provider_type: str | None) -> bool:
    """Check the job's allowedProviderType against the provider's classification."""
    allowed = allowed_provider_type or "both"
    if allowed == "both":
        return True
    if allowed == "individual":
        return not is_company
    if allowed == "company":
        return is_company
    return False


def ineligibility_reason(ctx: ProviderContext, job: dict) -> str | None:
    """Return why the provider may not see the job, or None if it may."""
    if job.get("city") not in ctx.approved_areas:
        return "city"
    if job.get("category_id") not in ctx.approved_category_ids:
        return "category"
    if not provider_type_matches(ctx.is_company, job.get("allowed_provider_type")):
        return "provider_type"
    return None


def is_eligible(ctx: ProviderContext, job: dict) -> bool:
    return ineligibility_reason(ctx, job) is None


def ineligibility_message(ctx: ProviderContext, job: dict, reason: str) -> str:
    if reason == "city":
        areas = ", ".join(ctx.approved_areas) or "none"
        return (
            f"This job is in {job.get('city')}. You can only work in: {areas}. "
            "Apply for migration to work in other cities."
        )
    if reason == "category":
        return "You are not verified for this job's category"
    return f"This job is not open to {ctx.provider_type} providers"


async def load_provider_context(db: Client, user_id: str) -> ProviderContext | None:
    """Load a provider's areas, approved categories and classification.

    Returns None when the user has no provider profile.
    """
    profile = await get_provider_profile(db, user_id)
    if not profile:
        return None

    categories = await get_approved_category_ids(db, user_id)
    companies = await get_company_user_ids(db, [user_id])

    return ProviderContext(
        provider_id=user_id,
        approved_areas=tuple(approved_areas(profile)),
        approved_category_ids=frozenset(categories),
        is_company=user_id in companies,
    )


async def has_incomplete_jobs(db: Client, provider_id: str) -> bool:
    """True if the provider holds an assigned job that is not finished."""
    return await count_incomplete_jobs(db, provider_id) > 0
