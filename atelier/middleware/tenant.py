"""
Tenant middleware for multi-tenant request handling
"""
import logging
import uuid
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

IGNORED_SUBDOMAINS = {"www", "api", "admin", "localhost"}

PUBLIC_ROUTES = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

PUBLIC_PREFIXES = (
    "/docs",
    "/api/v1/onboarding",
    # Gateways call back without tenant headers; the tenant comes from ?tenant=
    "/api/v1/payments/webhook",
)


class TenantNotFound(Exception):
    pass


async def get_tenant_by_subdomain(db: AsyncSession, subdomain: str) -> Optional[Tenant]:
    result = await db.execute(
        select(Tenant).where(
            Tenant.subdomain == subdomain,
            Tenant.status == TenantStatus.ACTIVE.value
        )
    )
    return result.scalar_one_or_none()


async def get_tenant_by_id(db: AsyncSession, tenant_id: str) -> Optional[Tenant]:
    try:
        tenant_uuid = uuid.UUID(str(tenant_id))
    except ValueError:
        return None
    result = await db.execute(
        select(Tenant).where(
            Tenant.id == tenant_uuid,
            Tenant.status == TenantStatus.ACTIVE.value
        )
    )
    return result.scalar_one_or_none()


async def resolve_tenant(db: AsyncSession, identifier: str) -> Optional[Tenant]:
    """Resolve an active tenant from an ID or a subdomain."""
    if not identifier:
        return None
    tenant = await get_tenant_by_id(db, identifier)
    if tenant is None:
        tenant = await get_tenant_by_subdomain(db, identifier.lower())
    return tenant


async def get_tenant_from_request(request: Request, db: AsyncSession) -> Tenant:
    """
    Extract the tenant from the request.

    Priority:
    1. Custom header (X-Tenant-ID) - for API calls
    2. Subdomain - for browser access

    Raises:
        TenantNotFound: if no active tenant matches
    """
    header_value = request.headers.get("X-Tenant-ID")
    if header_value:
        tenant = await resolve_tenant(db, header_value)
        if tenant:
            logger.debug(f"Tenant identified by header: {tenant.subdomain}")
            return tenant

    host = request.headers.get("host", "").split(":")[0]
    if "." in host:
        subdomain = host.split(".")[0].lower()
        if subdomain not in IGNORED_SUBDOMAINS:
            tenant = await get_tenant_by_subdomain(db, subdomain)
            if tenant:
                logger.debug(f"Tenant identified by subdomain: {tenant.subdomain}")
                return tenant

    logger.warning(f"Tenant not found for host: {host}")
    raise TenantNotFound()


def is_public_path(path: str) -> bool:
    if path in PUBLIC_ROUTES:
        return True
    return path.startswith(PUBLIC_PREFIXES)


async def tenant_middleware(request: Request, call_next):
    """
    Inject tenant context into request.state.

    Sets request.state.tenant, tenant_id and schema. Public routes
    (health check, docs, onboarding, payment webhooks) skip the check.
    """
    if request.method == "OPTIONS" or is_public_path(request.url.path):
        return await call_next(request)

    from atelier.database import async_session_maker

    async with async_session_maker() as db:
        try:
            tenant = await get_tenant_from_request(request, db)
        except TenantNotFound:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"detail": "Tenant not found. Please check your subdomain or X-Tenant-ID header."},
            )

    request.state.tenant = tenant
    request.state.tenant_id = str(tenant.id)
    request.state.schema = tenant.database_schema

    return await call_next(request)
