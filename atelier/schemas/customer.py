"""CRM customer schemas. Customers are users with role CUSTOMER."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict
import uuid

from pydantic import BaseModel, EmailStr, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from atelier.schemas.custom_order import MeasurementResponse


class CustomerCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=8, max_length=30)
    email: Optional[EmailStr] = None
    whatsapp_number: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field("CI", max_length=5)
    customer_source: Optional[str] = Field(None, description="WALK_IN, WEBSITE, REFERRAL, SOCIAL_MEDIA, ...")
    tags: List[str] = []
    notes: Optional[str] = None


class CustomerUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = Field(None, min_length=8, max_length=30)
    email: Optional[EmailStr] = None
    whatsapp_number: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=5)
    customer_source: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class CustomerResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    whatsapp_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    city: Optional[str] = None
    country: Optional[str] = None
    customer_source: Optional[str] = None
    tags: List[str] = []
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime


class CustomerListResponse(BaseModel):
    items: List[CustomerResponse]
    total: int
    page: int
    size: int
    pages: int


class CustomerDetailResponse(BaseModel):
    customer: CustomerResponse
    orders_count: int
    custom_orders_count: int
    total_spent: Decimal
    last_order_date: Optional[datetime] = None
    latest_measurement: Optional[MeasurementResponse] = None


class CustomerStatsResponse(BaseModel):
    total: int
    new_this_month: int
    by_source: Dict[str, int] = {}


class CustomerNoteCreate(BaseCreateSchema):
    content: str = Field(..., min_length=1)


class CustomerNoteResponse(BaseResponseSchema):
    id: uuid.UUID
    customer_id: uuid.UUID
    content: str
    author_id: Optional[uuid.UUID] = None
    author_name: Optional[str] = None
    created_at: datetime


class CustomerMessageRequest(BaseCreateSchema):
    channel: str = Field(default="WHATSAPP", description="WHATSAPP or SMS")
    message: str = Field(..., min_length=1, max_length=1600)
