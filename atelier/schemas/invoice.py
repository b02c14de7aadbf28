"""Invoice, invoice payment and receipt schemas."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import BaseModel, EmailStr, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class InvoiceItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(..., ge=0)


class InvoiceCreate(BaseCreateSchema):
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_id: Optional[uuid.UUID] = None
    customer_phone: Optional[str] = Field(None, max_length=30)
    customer_email: Optional[EmailStr] = None
    customer_address: Optional[str] = Field(None, max_length=500)
    items: List[InvoiceItemCreate] = Field(..., min_length=1)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceUpdate(BaseUpdateSchema):
    status: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[date] = None


class InvoiceItemResponse(BaseResponseSchema):
    id: uuid.UUID
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


class InvoicePaymentCreate(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(default="CASH", description="CASH, BANK_TRANSFER, ORANGE_MONEY, ...")
    reference: Optional[str] = Field(None, max_length=100)
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None


class InvoicePaymentResponse(BaseResponseSchema):
    id: uuid.UUID
    invoice_id: uuid.UUID
    amount: Decimal
    payment_method: str
    reference: Optional[str] = None
    paid_at: datetime
    notes: Optional[str] = None
    created_at: datetime


class InvoiceBrief(BaseResponseSchema):
    id: uuid.UUID
    invoice_number: str
    order_id: Optional[uuid.UUID] = None
    custom_order_id: Optional[uuid.UUID] = None
    customer_name: str
    customer_phone: Optional[str] = None
    status: str
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    issue_date: date
    due_date: Optional[date] = None
    created_at: datetime


class InvoiceResponse(InvoiceBrief):
    customer_id: Optional[uuid.UUID] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    shipping: Decimal
    paid_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    updated_at: datetime
    items: List[InvoiceItemResponse] = []
    payments: List[InvoicePaymentResponse] = []


class InvoiceListResponse(BaseModel):
    items: List[InvoiceBrief]
    total: int
    page: int
    size: int
    pages: int
    stats: dict = {}


class ReceiptResponse(BaseResponseSchema):
    id: uuid.UUID
    receipt_number: str
    invoice_id: Optional[uuid.UUID] = None
    invoice_payment_id: Optional[uuid.UUID] = None
    custom_order_payment_id: Optional[uuid.UUID] = None
    custom_order_id: Optional[uuid.UUID] = None
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    amount: Decimal
    payment_method: str
    payment_date: datetime
    created_by_name: Optional[str] = None
    created_at: datetime


class ReceiptListResponse(BaseModel):
    items: List[ReceiptResponse]
    total: int
    page: int
    size: int
    pages: int
