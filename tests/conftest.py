"""
Shared pytest fixtures.

The whole suite runs against a throw-away SQLite file: every tenant table
is created once per test, one ACTIVE tenant is seeded, and the SMSing
provider is replaced by an httpx.MockTransport so nothing leaves the box.
"""
import os
import tempfile
from decimal import Decimal
from typing import AsyncGenerator

_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="atelier-tests-"), "atelier.db")

# Must be set before atelier.config is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["PAIEMENTPRO_SECRET_KEY"] = ""
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from atelier import models  # noqa: F401
from atelier.core.security import create_access_token, get_password_hash
from atelier.database import Base, engine, async_session_factory
from atelier.main import app
from atelier.models.catalog import Category, Product
from atelier.models.tenant import Tenant, TenantStatus
from atelier.models.user import User, UserRole
from atelier.services import cache_service, messaging_service
from atelier.services.messaging_service import SMSingService


# ============================================================================
# DATABASE
# ============================================================================


@pytest_asyncio.fixture(autouse=True)
async def database():
    """Fresh tables for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    cache_service._cache_instance = None
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session
        await session.commit()


# ============================================================================
# MESSAGING
# ============================================================================


class ProviderStub:
    """Records SMSing calls and answers them like the real API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.fail_types: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        message_type = request.url.params.get("type")
        if message_type in self.fail_types:
            return httpx.Response(200, json={"status": "error", "message": f"{message_type} rejected"})
        return httpx.Response(200, json={"status": "queued", "group_id": f"grp-{len(self.requests)}"})

    def sent(self, message_type: str | None = None) -> list[dict]:
        return [
            dict(r.url.params)
            for r in self.requests
            if message_type is None or r.url.params.get("type") == message_type
        ]


@pytest.fixture
def provider(monkeypatch) -> ProviderStub:
    """Configured SMSing client whose HTTP calls are answered locally."""
    stub = ProviderStub()
    client = SMSingService(
        api_key="key",
        api_token="token",
        sender_id="ATELIER",
        base_url="https://sms.test/smsAPI",
        logo_url="https://cdn.test/logo.png",
        transport=httpx.MockTransport(stub.handler),
    )
    monkeypatch.setattr(messaging_service, "_messaging_service", client)
    return stub


# ============================================================================
# TENANT & USERS
# ============================================================================


@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(
        name="Maison Awa",
        subdomain="awa",
        database_schema="tenant_awa",
        status=TenantStatus.ACTIVE.value,
        settings={},
    )
    db_session.add(tenant)
    await db_session.commit()
    return tenant


async def make_user(
    session: AsyncSession,
    name: str,
    role: UserRole,
    email: str | None = None,
    phone: str | None = None,
    password: str | None = "secret123",
) -> User:
    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=get_password_hash(password) if password else None,
        role=role.value,
        is_active=True,
        tags=[],
    )
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession, tenant: Tenant) -> User:
    return await make_user(db_session, "Awa Admin", UserRole.ADMIN, email="admin@awa.ci", phone="0700000001")


@pytest_asyncio.fixture
async def customer(db_session: AsyncSession, tenant: Tenant) -> User:
    return await make_user(db_session, "Fatou Bamba", UserRole.CUSTOMER, email="fatou@mail.ci", phone="0709757296")


@pytest_asyncio.fixture
async def tailor(db_session: AsyncSession, tenant: Tenant) -> User:
    return await make_user(db_session, "Koffi Tailleur", UserRole.TAILOR, phone="0700000003")


def auth_headers(tenant: Tenant, user: User) -> dict:
    return {
        "X-Tenant-ID": str(tenant.id),
        "Authorization": f"Bearer {create_access_token(user.id, tenant.id)}",
    }


@pytest.fixture
def admin_headers(tenant: Tenant, admin_user: User) -> dict:
    return auth_headers(tenant, admin_user)


@pytest.fixture
def customer_headers(tenant: Tenant, customer: User) -> dict:
    return auth_headers(tenant, customer)


@pytest.fixture
def tailor_headers(tenant: Tenant, tailor: User) -> dict:
    return auth_headers(tenant, tailor)


@pytest.fixture
def tenant_headers(tenant: Tenant) -> dict:
    return {"X-Tenant-ID": str(tenant.id)}


# ============================================================================
# CATALOG
# ============================================================================


@pytest_asyncio.fixture
async def category(db_session: AsyncSession, tenant: Tenant) -> Category:
    category = Category(name="Robes", slug="robes", is_active=True, sort_order=0)
    db_session.add(category)
    await db_session.commit()
    return category


@pytest_asyncio.fixture
async def product(db_session: AsyncSession, category: Category) -> Product:
    product = Product(
        name="Robe wax",
        slug="robe-wax",
        sku="RW-001",
        price=Decimal("25000"),
        stock=10,
        low_stock_threshold=3,
        category_id=category.id,
        images=[],
        is_active=True,
    )
    db_session.add(product)
    await db_session.commit()
    return product


# ============================================================================
# HTTP
# ============================================================================


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
