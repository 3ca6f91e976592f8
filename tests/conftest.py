import os

# Settings() is built at import time; provide the required key before importing the app
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from jose import jwt

from dues_ledger.config import Settings
from dues_ledger.main import create_app
from dues_ledger.models.role import TenantStatus, UserRole
from dues_ledger.models.tenant_context import Principal
from dues_ledger.repositories.tenant_repository import TenantRepository
from dues_ledger.repositories.user_repository import UserRepository

TEST_SECRET_KEY = os.environ["SECRET_KEY"]


@pytest.fixture
def tenancy_strategy():
    """Backing strategy under test; modules override this to run under both"""
    return "database"


@pytest.fixture
def test_settings(tmp_path, tenancy_strategy):
    """
    Settings pointing every database at files under tmp_path.

    Real files (not in-memory SQLite) so each tenant partition is a separate
    database and concurrent sessions see each other's commits.
    """
    return Settings(
        SECRET_KEY=TEST_SECRET_KEY,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/registry.db",
        TENANCY_STRATEGY=tenancy_strategy,
        TENANT_DATABASE_URL_TEMPLATE=f"sqlite+aiosqlite:///{tmp_path}/tenants/{{storage_id}}.db",
        SHARED_DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/shared.db",
        HANDLE_CONNECT_TIMEOUT=5.0,
        PROVISION_TIMEOUT=15.0,
        POOL_SWEEP_INTERVAL=0,
    )


@pytest.fixture
async def app(test_settings):
    """Application with its lifespan running (registry, pool, resolver)"""
    application = create_app(test_settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test application"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture
def resolver(app):
    return app.state.resolver


@pytest.fixture
async def registry_db(app):
    """Registry session for direct repository access"""
    async with app.state.registry_sessionmaker() as db:
        yield db


def create_test_token(
    username: str = "test-user-123",
    role: str = "admin",
    tenant_id: int | None = None,
    expired: bool = False,
    secret_key: str = TEST_SECRET_KEY,
) -> str:
    """
    Generate a JWT for testing.

    Args:
        username: Value of the 'sub' claim
        role: Value of the 'role' claim
        tenant_id: Optional 'tenant_id' claim
        expired: If True, create expired token
        secret_key: Signing key

    Returns:
        Encoded JWT token
    """
    if expired:
        exp = datetime.now(UTC) - timedelta(minutes=5)
    else:
        exp = datetime.now(UTC) + timedelta(minutes=15)

    payload = {"sub": username, "role": role, "exp": exp, "iat": datetime.now(UTC)}
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id

    return jwt.encode(payload, secret_key, algorithm="HS256")


@pytest.fixture
def make_headers():
    """Factory for Authorization headers"""

    def _make(username: str = "test-user-123", **kwargs) -> dict:
        return {"Authorization": f"Bearer {create_test_token(username, **kwargs)}"}

    return _make


@pytest.fixture
def auth_headers(make_headers):
    """Admin principal without a tenant claim (bound to the default tenant)"""
    return make_headers("test-user-123")


@pytest.fixture
def system_headers(make_headers):
    return make_headers("platform-operator", role="system")


@pytest.fixture
def tenant_factory(app):
    """Create a registry tenant with the given status (no provisioning)"""

    async def _create(slug: str, status: TenantStatus = TenantStatus.ACTIVE, name: str | None = None):
        async with app.state.registry_sessionmaker() as db:
            return await TenantRepository(db).create(
                name=name or slug.replace("-", " ").title(),
                slug=slug,
                storage_id=slug,
                status=status,
            )

    return _create


@pytest.fixture
def context_factory(app):
    """Resolve a tenant context for a fresh admin bound to `tenant`"""

    async def _context(tenant, username: str | None = None, role: UserRole = UserRole.ADMIN):
        async with app.state.registry_sessionmaker() as db:
            user = await UserRepository(db).create(
                username=username or f"admin-{tenant.slug}", role=role, tenant_id=tenant.id
            )
            principal = Principal(
                user_id=user.id, username=user.username, role=user.role, tenant_id=tenant.id
            )
            return await app.state.resolver.resolve(principal, db)

    return _context
