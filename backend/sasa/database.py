"""Database utilities for Supabase integration.

Holds the shared client, table names, and the read-only lookups into the
account/profile store (users, provider and company profiles, category
verifications) that the marketplace core depends on.
"""

from typing import Annotated

from fastapi import Depends

from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names (keep in sync with supabase/migrations)
# =============================================================================

USERS_TABLE = "users"
PROVIDERS_TABLE = "providers"
COMPANIES_TABLE = "companies"
CATEGORY_VERIFICATIONS_TABLE = "category_verifications"
JOBS_TABLE = "jobs"
JOB_APPLICATIONS_TABLE = "job_applications"
MESSAGES_TABLE = "messages"
NOTIFICATIONS_TABLE = "notifications"


# =============================================================================
# User Lookups
# =============================================================================


async def get_user(db: Client, user_id: str) -> dict | None:
    """Get a user by ID."""
    result = db.table(USERS_TABLE).select("*").eq("id", user_id).execute()
    return result.data[0] if result.data else None


async def get_users(db: Client, user_ids: list[str]) -> dict[str, dict]:
    """Get several users keyed by id."""
    ids = sorted({u for u in user_ids if u})
    if not ids:
        return {}
    result = db.table(USERS_TABLE).select("*").in_("id", ids).execute()
    return {row["id"]: row for row in result.data or []}


async def get_admin_user(db: Client) -> dict | None:
    """Get the primary admin (the oldest admin account)."""
    result = (
        db.table(USERS_TABLE)
        .select("*")
        .eq("role", "admin")
        .order("created_at")
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


async def list_admin_ids(db: Client) -> list[str]:
    """Get the ids of every admin account."""
    result = db.table(USERS_TABLE).select("id").eq("role", "admin").execute()
    return [row["id"] for row in result.data or []]


def public_user(user: dict | None) -> dict | None:
    """Strip a user row down to fields safe to show other users."""
    if not user:
        return None
    return {
        "id": user["id"],
        "name": user.get("name"),
        "role": user.get("role"),
        "profile_photo_url": user.get("profile_photo_url"),
    }


# =============================================================================
# Provider / Company Profile Lookups
# =============================================================================


async def get_provider_profile(db: Client, user_id: str) -> dict | None:
    """Get a provider's extended profile."""
    result = db.table(PROVIDERS_TABLE).select("*").eq("user_id", user_id).execute()
    return result.data[0] if result.data else None


async def get_provider_profiles(db: Client, user_ids: list[str]) -> dict[str, dict]:
    """Get several provider profiles keyed by user id."""
    ids = sorted({u for u in user_ids if u})
    if not ids:
        return {}
    result = db.table(PROVIDERS_TABLE).select("*").in_("user_id", ids).execute()
    return {row["user_id"]: row for row in result.data or []}


async def get_company_user_ids(db: Client, user_ids: list[str]) -> set[str]:
    """Return which of the given users also own a company profile."""
    ids = sorted({u for u in user_ids if u})
    if not ids:
        return set()
    result = db.table(COMPANIES_TABLE).select("user_id").in_("user_id", ids).execute()
    return {row["user_id"] for row in result.data or []}


async def get_approved_category_ids(db: Client, provider_id: str) -> set[int]:
    """Categories the provider has an approved verification for."""
    result = (
        db.table(CATEGORY_VERIFICATIONS_TABLE)
        .select("category_id")
        .eq("provider_id", provider_id)
        .eq("status", "approved")
        .execute()
    )
    return {int(row["category_id"]) for row in result.data or []}


async def get_providers_approved_for_category(db: Client, category_id: int) -> list[str]:
    """Provider ids holding an approved verification for a category."""
    result = (
        db.table(CATEGORY_VERIFICATIONS_TABLE)
        .select("provider_id")
        .eq("category_id", category_id)
        .eq("status", "approved")
        .execute()
    )
    # Preserve first-seen order, drop duplicates
    return list(dict.fromkeys(row["provider_id"] for row in result.data or []))
