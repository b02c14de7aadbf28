from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import BaseModel, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class CouponBase(BaseModel):
    code: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: str = Field(..., description="PERCENTAGE, FIXED_CART or FIXED_PRODUCT")
    discount_value: Decimal = Field(..., gt=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_limit_per_user: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    product_ids: List[uuid.UUID] = []
    excluded_product_ids: List[uuid.UUID] = []
    category_ids: List[uuid.UUID] = []
    excluded_category_ids: List[uuid.UUID] = []


class CouponCreate(CouponBase, BaseCreateSchema):
    pass


class CouponUpdate(BaseUpdateSchema):
    code: Optional[str] = Field(None, min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_limit_per_user: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    product_ids: Optional[List[uuid.UUID]] = None
    excluded_product_ids: Optional[List[uuid.UUID]] = None
    category_ids: Optional[List[uuid.UUID]] = None
    excluded_category_ids: Optional[List[uuid.UUID]] = None


class CouponResponse(BaseResponseSchema):
    id: uuid.UUID
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    minimum_order_amount: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_limit_per_user: Optional[int] = None
    usage_count: int
    is_active: bool
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    product_ids: List[str] = []
    excluded_product_ids: List[str] = []
    category_ids: List[str] = []
    excluded_category_ids: List[str] = []
    created_at: datetime


class CouponCartItem(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(default=1, ge=1)
    category_id: Optional[uuid.UUID] = None


class CouponValidateRequest(BaseCreateSchema):
    code: str = Field(..., min_length=1, max_length=50)
    subtotal: Decimal = Field(..., ge=0)
    items: List[CouponCartItem] = []


class CouponValidateResponse(BaseModel):
    valid: bool
    code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    discount: Decimal = Decimal("0")
    errors: List[str] = []