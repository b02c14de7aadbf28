"""
Shop Onboarding API Endpoints

Public endpoints for new shop registration.
These endpoints do NOT require authentication.
"""
from fastapi import APIRouter, HTTPException, Query, status

from atelier.api.deps import PublicDB as DB
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.auth import TokenResponse
from atelier.schemas.onboarding import (
    SubdomainCheckResponse,
    TenantRegistrationRequest,
    TenantRegistrationResponse,
)
from atelier.services.tenant_onboarding_service import TenantOnboardingService


router = APIRouter(tags=["Onboarding"])


@router.get("/check-subdomain", response_model=SubdomainCheckResponse)
async def check_subdomain_availability(
    db: DB,
    subdomain: str = Query(..., min_length=1, max_length=63),
):
    """Check if a subdomain is available for registration."""
    service = TenantOnboardingService(db)
    is_available, message = await service.check_subdomain_available(subdomain)

    return SubdomainCheckResponse(
        subdomain=subdomain.lower(),
        available=is_available,
        message=message if not is_available else f"Subdomain '{subdomain.lower()}' is available!"
    )


@router.post("/register", response_model=TenantRegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_tenant(
    data: TenantRegistrationRequest,
    db: DB,
):
    """
    Register a new shop.

    Creates the tenant, provisions its schema, creates the admin account
    and returns tokens for immediate login.
    """
    service = TenantOnboardingService(db)
    try:
        tenant, admin, tokens = await service.register_tenant(
            company_name=data.company_name,
            subdomain=data.subdomain,
            admin_email=data.admin_email,
            admin_password=data.admin_password,
            admin_name=data.admin_name,
            admin_phone=data.admin_phone,
        )
    except AtelierError as e:
        raise http_error(e)

    return TenantRegistrationResponse(
        tenant_id=tenant.id,
        subdomain=tenant.subdomain,
        database_schema=tenant.database_schema,
        admin_user_id=admin.id,
        tokens=TokenResponse(**tokens),
    )
