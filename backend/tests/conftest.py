"""Pytest configuration and fixtures."""

import os
import secrets

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)

from fakes import FakeSupabase  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sasa.auth import create_access_token  # noqa: E402
from sasa.config import get_settings  # noqa: E402
from sasa.database import get_db  # noqa: E402
from sasa.main import create_app  # noqa: E402
from sasa.rate_limit import limiter  # noqa: E402


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Each test starts with empty rate-limit buckets."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    """In-memory database standing in for supabase."""
    return FakeSupabase()


@pytest.fixture
def app(db, settings):
    """Fresh app (own connection registry and listing cache) backed by the fake db."""
    application = create_app(settings)
    application.dependency_overrides[get_db] = lambda: db
    return application


@pytest.fixture
def client(app):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def token_for(settings):
    """Build a bearer token for a seeded user row."""

    def _token(user: dict, status: str = "active") -> str:
        return create_access_token(settings, user_id=user["id"], role=user["role"], status=status)

    return _token


@pytest.fixture
def headers_for(token_for):
    """Build auth headers for a seeded user row."""

    def _headers(user: dict, status: str = "active") -> dict:
        return {"Authorization": f"Bearer {token_for(user, status)}"}

    return _headers
