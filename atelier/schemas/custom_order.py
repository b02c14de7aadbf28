"""Schemas for made-to-measure orders, their garments, payments and timeline."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict
import uuid

from pydantic import BaseModel, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class CustomOrderItemCreate(BaseCreateSchema):
    garment_type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    tailor_id: Optional[uuid.UUID] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    fabric_details: Optional[str] = None
    notes: Optional[str] = None


class CustomOrderItemUpdate(BaseUpdateSchema):
    """Tailors may only change status, actual_hours and notes."""
    garment_type: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    status: Optional[str] = None
    tailor_id: Optional[uuid.UUID] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    actual_hours: Optional[Decimal] = Field(None, ge=0)
    fabric_details: Optional[str] = None
    notes: Optional[str] = None


class CustomOrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    custom_order_id: uuid.UUID
    garment_type: str
    description: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    status: str
    tailor_id: Optional[uuid.UUID] = None
    estimated_hours: Optional[Decimal] = None
    actual_hours: Optional[Decimal] = None
    fabric_details: Optional[str] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class CustomOrderCreate(BaseCreateSchema):
    customer_id: uuid.UUID
    items: List[CustomOrderItemCreate] = Field(..., min_length=1)
    pickup_date: Optional[date] = None
    priority: str = Field(default="NORMAL", description="NORMAL, URGENT or VIP")
    measurements: Optional[Dict[str, float | str]] = None
    measurement_name: Optional[str] = Field(None, max_length=100)
    measurement_id: Optional[uuid.UUID] = None
    deposit: Optional[Decimal] = Field(None, ge=0)
    deposit_method: str = "CASH"
    material_cost: Decimal = Field(default=Decimal("0"), ge=0)
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None


class CustomOrderUpdate(BaseUpdateSchema):
    status: Optional[str] = None
    priority: Optional[str] = None
    pickup_date: Optional[date] = None
    material_cost: Optional[Decimal] = Field(None, ge=0)
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None


class CustomerBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class CustomOrderPaymentCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = "CASH"
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class CustomOrderPaymentResponse(BaseResponseSchema):
    id: uuid.UUID
    custom_order_id: uuid.UUID
    amount: Decimal
    payment_type: str
    payment_method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: datetime
    received_by_id: Optional[uuid.UUID] = None


class CustomOrderBrief(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    customer: Optional[CustomerBrief] = None
    status: str
    priority: str
    pickup_date: date
    total_cost: Decimal
    amount_paid: Decimal
    balance: Decimal
    item_count: int
    garment_types: List[str] = []
    created_at: datetime


class CustomOrderResponse(CustomOrderBrief):
    measurement_id: Optional[uuid.UUID] = None
    material_cost: Decimal
    deposit: Decimal
    profit: Decimal
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    updated_at: datetime
    items: List[CustomOrderItemResponse] = []
    payments: List[CustomOrderPaymentResponse] = []


class CustomOrderListResponse(BaseModel):
    items: List[CustomOrderBrief]
    total: int
    page: int
    size: int
    pages: int
    status_counts: Dict[str, int] = {}


class PaymentSummaryResponse(BaseModel):
    total_cost: Decimal
    total_paid: Decimal
    balance: Decimal
    is_paid_in_full: bool
    payments: List[CustomOrderPaymentResponse] = []


class TimelineEventCreate(BaseCreateSchema):
    event: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    photos: List[str] = []


class TimelineEventResponse(BaseResponseSchema):
    id: uuid.UUID
    custom_order_id: uuid.UUID
    event: str
    description: Optional[str] = None
    photos: List[str] = []
    user_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    created_at: datetime


class MeasurementCreate(BaseCreateSchema):
    data: Dict[str, float | str]
    name: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class MeasurementResponse(BaseResponseSchema):
    id: uuid.UUID
    customer_id: uuid.UUID
    name: Optional[str] = None
    data: dict
    notes: Optional[str] = None
    taken_by_id: Optional[uuid.UUID] = None
    taken_at: datetime


class MoveCardRequest(BaseCreateSchema):
    status: str
