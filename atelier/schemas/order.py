"""Schemas for storefront checkout and back-office order management."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
import uuid

from pydantic import BaseModel, EmailStr, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class CartItem(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    """Abidjan addresses are located by quartier and cité rather than street numbers."""
    quartier: Optional[str] = None
    cite: Optional[str] = None
    rue: Optional[str] = None
    city: Optional[str] = "Abidjan"
    country: Optional[str] = "CI"
    phone: Optional[str] = None


class CheckoutRequest(BaseCreateSchema):
    items: List[CartItem] = Field(..., min_length=1)
    address: Optional[ShippingAddress] = None
    payment_method: str = Field(..., description="PAIEMENTPRO, CASH, ORANGE_MONEY, ...")
    shipping_method_id: Optional[uuid.UUID] = None
    coupon_code: Optional[str] = Field(None, max_length=50)
    billing_first_name: Optional[str] = Field(None, max_length=100)
    billing_last_name: Optional[str] = Field(None, max_length=100)
    billing_phone: Optional[str] = Field(None, max_length=30)
    billing_email: Optional[EmailStr] = None
    notes: Optional[str] = None


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal


class OrderBrief(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    user_id: Optional[uuid.UUID] = None
    status: str
    payment_status: str
    payment_method: str
    total: Decimal
    billing_first_name: Optional[str] = None
    billing_last_name: Optional[str] = None
    billing_phone: Optional[str] = None
    created_at: datetime


class OrderResponse(OrderBrief):
    payment_reference: Optional[str] = None
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    tax: Decimal
    coupon_code: Optional[str] = None
    shipping_method_id: Optional[uuid.UUID] = None
    shipping_address: dict = {}
    billing_email: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    updated_at: datetime
    items: List[OrderItemResponse] = []


class OrderListResponse(BaseModel):
    items: List[OrderBrief]
    total: int
    page: int
    size: int
    pages: int
    status_counts: Dict[str, int] = {}


class OrderUpdate(BaseUpdateSchema):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    send_notification: bool = True


class OrderNoteCreate(BaseCreateSchema):
    content: str = Field(..., min_length=1)
    note_type: str = Field(default="PRIVATE", description="PRIVATE or CUSTOMER")


class OrderNoteResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    content: str
    note_type: str
    author_id: Optional[uuid.UUID] = None
    author_name: Optional[str] = None
    created_at: datetime


class RefundCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)
    refund_type: str = Field(default="FULL", description="FULL or PARTIAL")


class RefundResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    reason: str
    refund_type: str
    status: str
    processed_by: Optional[uuid.UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class ShippingMethodCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    cost_type: str = Field(default="FIXED", description="FIXED, VARIABLE or FREE")
    is_active: bool = True


class ShippingMethodResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    cost: Decimal
    cost_type: str
    is_active: bool
