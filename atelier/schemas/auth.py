"""Schemas for authentication, storefront sign-up and team management."""
from datetime import datetime
from typing import Optional, List
import uuid

from pydantic import BaseModel, EmailStr, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class LoginRequest(BaseCreateSchema):
    """E-mail or phone number plus password."""
    identifier: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseCreateSchema):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class CustomerRegisterRequest(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=200)
    phone: str = Field(..., min_length=8, max_length=30)
    password: str = Field(..., min_length=6, max_length=100)
    email: Optional[EmailStr] = None


class CustomerRegisterResponse(BaseModel):
    user: UserResponse
    tokens: TokenResponse


class TeamMemberCreate(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=200)
    role: str = Field(..., description="ADMIN, MANAGER, STAFF or TAILOR")
    password: str = Field(..., min_length=6, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)


class TeamMemberUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    role: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    password: Optional[str] = Field(None, min_length=6, max_length=100)
    is_active: Optional[bool] = None


class TailorResponse(BaseModel):
    id: uuid.UUID
    name: str
    phone: Optional[str] = None
    active_items: int


class TeamListResponse(BaseModel):
    items: List[UserResponse]
    total: int
