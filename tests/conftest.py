from __future__ import annotations

import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from engagement.api.dependencies import activity_repo
from engagement.api.ratelimit import _rate_limiter
from engagement.main import app
from engagement.services import token_service

# Ensure repo root is on sys.path so `import engagement` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

COURSE_ID = "course-101"


@pytest.fixture(autouse=True)
def reset_activity_store() -> None:
    """Clear the in-memory event store between tests."""
    activity_repo.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides() -> Iterator[None]:
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "learner-1",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def at(minute: int, second: int = 0) -> datetime:
    """A fixed morning timestamp; at(5) is 09:05 UTC."""
    return datetime(2026, 3, 2, 9, minute, second, tzinfo=UTC)


@pytest.fixture
def token() -> str:
    """Token with default role (learner)."""
    return mint_token()


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username="instructor-1", roles=["instructor"])


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="platform-admin", roles=["admin"])
