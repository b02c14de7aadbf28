import uuid

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from atelier.core.permissions import PermissionChecker
from atelier.core.security import create_access_token, create_refresh_token
from atelier.database import async_session_factory
from atelier.main import app
from atelier.models.notification import NotificationTemplate
from atelier.models.tenant import Tenant, TenantStatus
from atelier.models.user import User, UserRole

from tests.conftest import make_user


# ==================== Tenancy ====================


async def test_missing_tenant_is_404(client, admin_user):
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 404
    assert "Tenant not found" in response.json()["detail"]


async def test_tenant_resolved_by_subdomain_header(client, tenant, admin_user):
    token = create_access_token(admin_user.id, tenant.id)
    response = await client.get(
        "/api/v1/auth/me",
        headers={"X-Tenant-ID": "awa", "Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 200
    assert response.json()["email"] == "admin@awa.ci"


async def test_tenant_resolved_from_host(tenant, admin_user):
    token = create_access_token(admin_user.id, tenant.id)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://awa.atelier.ci") as ac:
        response = await ac.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200


async def test_suspended_tenant_is_404(client, db_session, tenant, admin_headers):
    tenant.status = TenantStatus.SUSPENDED.value
    await db_session.commit()

    response = await client.get("/api/v1/auth/me", headers=admin_headers)
    assert response.status_code == 404


async def test_token_from_another_tenant_is_rejected(client, db_session, tenant, admin_user):
    other = Tenant(name="Autre", subdomain="autre", database_schema="tenant_autre",
                   status=TenantStatus.ACTIVE.value, settings={})
    db_session.add(other)
    await db_session.commit()

    token = create_access_token(admin_user.id, other.id)
    response = await client.get(
        "/api/v1/auth/me",
        headers={"X-Tenant-ID": str(tenant.id), "Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


async def test_health_is_public(client):
    response = await client.get("/health")
    assert response.status_code == 200


# ==================== Login ====================


async def test_login_with_email_and_phone(client, tenant_headers, admin_user):
    response = await client.post(
        "/api/v1/auth/login",
        json={"identifier": "ADMIN@awa.ci", "password": "secret123"},
        headers=tenant_headers,
    )
    assert response.status_code == 200
    tokens = response.json()
    assert tokens["token_type"] == "bearer"

    response = await client.get(
        "/api/v1/auth/me",
        headers={**tenant_headers, "Authorization": f"Bearer {tokens['access_token']}"},
    )
    assert response.json()["name"] == "Awa Admin"
    assert response.json()["last_login_at"] is not None

    response = await client.post(
        "/api/v1/auth/login",
        json={"identifier": "0700000001", "password": "secret123"},
        headers=tenant_headers,
    )
    assert response.status_code == 200


async def test_login_wrong_password(client, tenant_headers, admin_user):
    response = await client.post(
        "/api/v1/auth/login",
        json={"identifier": "admin@awa.ci", "password": "nope"},
        headers=tenant_headers,
    )
    assert response.status_code == 401


async def test_deactivated_user(client, db_session, tenant_headers, admin_headers, admin_user):
    admin_user.is_active = False
    await db_session.commit()

    response = await client.post(
        "/api/v1/auth/login",
        json={"identifier": "admin@awa.ci", "password": "secret123"},
        headers=tenant_headers,
    )
    assert response.status_code == 403

    response = await client.get("/api/v1/auth/me", headers=admin_headers)
    assert response.status_code == 403


async def test_refresh_token(client, tenant, tenant_headers, admin_user):
    refresh = create_refresh_token(admin_user.id, tenant.id)
    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh}, headers=tenant_headers)
    assert response.status_code == 200
    assert response.json()["access_token"]

    access = create_access_token(admin_user.id, tenant.id)
    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": access}, headers=tenant_headers)
    assert response.status_code == 401


async def test_customer_registration(client, tenant_headers, customer, provider):
    response = await client.post(
        "/api/v1/auth/register",
        json={"name": "Mariam Koné", "phone": "0505050505", "password": "motdepasse"},
        headers=tenant_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "CUSTOMER"
    assert body["tokens"]["access_token"]

    response = await client.post(
        "/api/v1/auth/register",
        json={"name": "Autre Fatou", "phone": "0709757296", "password": "motdepasse"},
        headers=tenant_headers,
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Phone number already registered"


# ==================== Roles ====================


def test_permission_checker_roles():
    tailor = User(name="T", role=UserRole.TAILOR.value)
    staff = User(name="S", role=UserRole.STAFF.value)
    manager = User(name="M", role=UserRole.MANAGER.value)

    assert PermissionChecker(tailor).has_permission("production")
    assert not PermissionChecker(tailor).has_permission("invoices")
    assert PermissionChecker(staff).has_all_permissions(["orders", "campaigns"])
    assert not PermissionChecker(staff).has_permission("reports")
    assert PermissionChecker(manager).has_permission("anything")
    assert not PermissionChecker(User(name="C", role=UserRole.CUSTOMER.value)).has_any_permission(["orders"])


async def test_tailor_cannot_reach_back_office(client, tailor_headers, customer_headers):
    response = await client.get("/api/v1/campaigns", headers=tailor_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/users/team", headers=tailor_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/users/tailors", headers=customer_headers)
    assert response.status_code == 403


async def test_team_management(client, admin_headers, admin_user):
    response = await client.post(
        "/api/v1/users/team",
        json={"name": "Yao Couture", "role": "tailor", "password": "aiguille1", "phone": "0711111111"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    tailor_id = response.json()["id"]
    assert response.json()["role"] == "TAILOR"

    response = await client.post(
        "/api/v1/users/team",
        json={"name": "Client Déguisé", "role": "CUSTOMER", "password": "aiguille1", "phone": "0722222222"},
        headers=admin_headers,
    )
    assert response.status_code == 400

    response = await client.delete(f"/api/v1/users/team/{admin_user.id}", headers=admin_headers)
    assert response.status_code == 400

    response = await client.delete(f"/api/v1/users/team/{tailor_id}", headers=admin_headers)
    assert response.json()["is_active"] is False

    response = await client.get("/api/v1/users/team?include_inactive=false", headers=admin_headers)
    assert [m["name"] for m in response.json()["items"]] == ["Awa Admin"]


async def test_tailors_listing_counts_work(client, admin_headers, db_session, tailor):
    await make_user(db_session, "Ama Retouches", UserRole.TAILOR, phone="0733333333")

    response = await client.get("/api/v1/users/tailors", headers=admin_headers)

    assert response.status_code == 200
    assert [(t["name"], t["active_items"]) for t in response.json()] == [
        ("Ama Retouches", 0),
        ("Koffi Tailleur", 0),
    ]


# ==================== Onboarding ====================


async def test_check_subdomain(client, tenant):
    response = await client.get("/api/v1/onboarding/check-subdomain", params={"subdomain": "AWA"})
    assert response.json()["available"] is False

    response = await client.get("/api/v1/onboarding/check-subdomain", params={"subdomain": "koffi-couture"})
    assert response.json() == {
        "subdomain": "koffi-couture",
        "available": True,
        "message": "Subdomain 'koffi-couture' is available!",
    }


async def test_register_shop(client, tenant):
    response = await client.post(
        "/api/v1/onboarding/register",
        json={
            "company_name": "Koffi Couture",
            "subdomain": "koffi-couture",
            "admin_email": "Koffi@Couture.ci",
            "admin_password": "couture2026",
            "admin_name": "Koffi Yao",
            "admin_phone": "0744444444",
        },
    )
    assert response.status_code == 201
    body = response.json()
    assert body["database_schema"] == "tenant_koffi_couture"

    async with async_session_factory() as session:
        shop = await session.get(Tenant, uuid.UUID(body["tenant_id"]))
        assert shop.status == TenantStatus.ACTIVE.value
        templates = (await session.execute(select(NotificationTemplate))).scalars().all()
        assert templates

    response = await client.post(
        "/api/v1/auth/login",
        json={"identifier": "koffi@couture.ci", "password": "couture2026"},
        headers={"X-Tenant-ID": "koffi-couture"},
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/v1/onboarding/register",
        json={
            "company_name": "Copie",
            "subdomain": "koffi-couture",
            "admin_email": "autre@couture.ci",
            "admin_password": "couture2026",
            "admin_name": "Autre",
        },
    )
    assert response.status_code == 409
