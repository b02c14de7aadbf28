"""Pydantic schemas for shop onboarding and registration."""
import re
from typing import Optional
import uuid

from pydantic import BaseModel, EmailStr, Field, field_validator

from atelier.schemas.auth import TokenResponse

SUBDOMAIN_PATTERN = r"^[a-z0-9-]+$"


class SubdomainCheckResponse(BaseModel):
    subdomain: str
    available: bool
    message: Optional[str] = None


class TenantRegistrationRequest(BaseModel):
    """Request to register a new shop."""
    company_name: str = Field(..., min_length=2, max_length=200)
    subdomain: str = Field(..., min_length=3, max_length=50)

    admin_email: EmailStr
    admin_password: str = Field(..., min_length=8, max_length=100)
    admin_name: str = Field(..., min_length=2, max_length=200)
    admin_phone: Optional[str] = Field(None, max_length=30)

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str) -> str:
        v = v.lower()
        if not re.match(SUBDOMAIN_PATTERN, v):
            raise ValueError("Subdomain must contain only lowercase letters, numbers, and hyphens.")
        return v


class TenantRegistrationResponse(BaseModel):
    tenant_id: uuid.UUID
    subdomain: str
    database_schema: str
    admin_user_id: uuid.UUID
    tokens: TokenResponse
    message: str = "Shop registered successfully"
