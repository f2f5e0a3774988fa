from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
API_DIR = ROOT / "API"
if str(API_DIR) not in sys.path:
    sys.path.insert(0, str(API_DIR))

# Test-mode runtime guards:
# - throwaway SQLite file instead of Postgres
# - no real identity-provider traffic (no API key)
# - fixed secrets for signing webhooks and session tokens
_DB_DIR = Path(tempfile.mkdtemp(prefix="gcse-platform-tests-"))
TEST_DB_PATH = _DB_DIR / "api.db"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{TEST_DB_PATH}")
os.environ.setdefault("CREATE_SCHEMA_ON_START", "true")
os.environ.setdefault("WORKOS_API_KEY", "")
os.environ.setdefault("WORKOS_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from app.core.identity_provider import IdentityProvider  # noqa: E402
from app.core.errors import IdentityProviderError  # noqa: E402
from app.main import app  # noqa: E402
from app.schemas.identity import ProviderOrganization, ProviderUser  # noqa: E402


class FakeIdentityProvider(IdentityProvider):
    """In-memory provider; records every fetch so tests can assert on lookups."""

    provider_name = "fake"

    def __init__(self):
        self.users: dict[str, ProviderUser] = {}
        self.organizations: dict[str, ProviderOrganization] = {}
        self.calls: list[tuple[str, str]] = []

    def add_user(self, user_id: str, email: str, first_name: str | None = None, last_name: str | None = None):
        self.users[user_id] = ProviderUser(id=user_id, email=email, first_name=first_name, last_name=last_name)

    def add_organization(self, organization_id: str, name: str, domain: str | None = None):
        self.organizations[organization_id] = ProviderOrganization(id=organization_id, name=name, domain=domain)

    async def get_organization(self, organization_id: str) -> ProviderOrganization:
        self.calls.append(("organization", organization_id))
        if organization_id not in self.organizations:
            raise IdentityProviderError(f"organization {organization_id} unknown to provider")
        return self.organizations[organization_id]

    async def get_user(self, user_id: str) -> ProviderUser:
        self.calls.append(("user", user_id))
        if user_id not in self.users:
            raise IdentityProviderError(f"user {user_id} unknown to provider")
        return self.users[user_id]


@pytest.fixture(scope="session")
def client() -> TestClient:
    with TestClient(app) as tc:
        yield tc


@pytest.fixture()
def fake_provider():
    from app.core.identity_provider import get_identity_provider

    provider = FakeIdentityProvider()
    app.dependency_overrides[get_identity_provider] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_identity_provider, None)


@pytest.fixture(scope="session")
def sync_db(client):
    """Synchronous session on the API's SQLite file, for seeding and inspecting rows."""
    engine = create_engine(f"sqlite:///{TEST_DB_PATH}")
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()
