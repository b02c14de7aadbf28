from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field

from atelier.schemas.base import BaseCreateSchema, BaseResponseSchema


class PaymentInitRequest(BaseCreateSchema):
    order_id: uuid.UUID
    channel: Optional[str] = Field(None, description="OMCIV2, MOMOCI, FLOOZ, WAVECI, CARD, ...")


class InvoicePaymentInitRequest(BaseCreateSchema):
    invoice_id: uuid.UUID
    channel: Optional[str] = None


class PaymentInitResponse(BaseModel):
    gateway: Optional[str] = None
    reference: str
    payment_url: Optional[str] = None
    amount: Optional[Decimal] = None
    # Razorpay checkout
    key_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    currency: Optional[str] = None


class RazorpayConfirmRequest(BaseCreateSchema):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class WebhookResponse(BaseModel):
    status: str
    message: Optional[str] = None


# Free-amount payment links (/payer)

class StandalonePaymentInitRequest(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    customer_name: str = Field(..., min_length=2, max_length=200)
    customer_phone: str = Field(..., min_length=8, max_length=30)
    channel: Optional[str] = None


class StandalonePaymentResponse(BaseResponseSchema):
    id: uuid.UUID
    reference: str
    amount: Decimal
    currency: str
    customer_name: str
    customer_phone: str
    description: Optional[str] = None
    channel: Optional[str] = None
    status: str
    provider_payment_id: Optional[str] = None
    error_message: Optional[str] = None
    paid_at: Optional[datetime] = None
    webhook_received: bool
    notification_sent: bool
    created_at: datetime


class StandalonePaymentStats(BaseModel):
    total: int
    pending: int
    completed: int
    failed: int
    total_amount: Decimal


class StandalonePaymentListResponse(BaseModel):
    items: List[StandalonePaymentResponse]
    total: int
    page: int
    size: int
    pages: int
    stats: StandalonePaymentStats
