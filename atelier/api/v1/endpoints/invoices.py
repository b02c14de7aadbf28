from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, StaffUser, require_permissions, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.user import UserRole
from atelier.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceBrief,
    InvoiceResponse,
    InvoiceListResponse,
    InvoicePaymentCreate,
    InvoicePaymentResponse,
)
from atelier.schemas.notification import SendResult
from atelier.services.invoice_service import InvoiceService


router = APIRouter(tags=["Invoices"], dependencies=[Depends(require_permissions("invoices"))])


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Invoice number, customer name or phone"),
):
    result = await InvoiceService(db).list_invoices(status=status, search=search, page=page, size=size)
    return InvoiceListResponse(
        items=[InvoiceBrief.model_validate(i) for i in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
        stats=result["stats"],
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: uuid.UUID, db: DB):
    try:
        invoice = await InvoiceService(db).get_invoice(invoice_id)
    except AtelierError as e:
        raise http_error(e)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("invoices.create"))],
)
async def create_invoice(data: InvoiceCreate, db: DB, current_user: StaffUser):
    """Manual invoice; numbered from the INVOICE document sequence."""
    try:
        invoice = await InvoiceService(db).create_invoice(
            customer_name=data.customer_name,
            items=[item.model_dump() for item in data.items],
            customer_id=data.customer_id,
            customer_phone=data.customer_phone,
            customer_email=data.customer_email,
            customer_address=data.customer_address,
            tax=data.tax,
            discount=data.discount,
            shipping=data.shipping,
            issue_date=data.issue_date,
            due_date=data.due_date,
            notes=data.notes,
            created_by_id=current_user.id,
        )
    except AtelierError as e:
        raise http_error(e)
    return InvoiceResponse.model_validate(invoice)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(invoice_id: uuid.UUID, data: InvoiceUpdate, db: DB):
    try:
        invoice = await InvoiceService(db).update_invoice(
            invoice_id, status=data.status, notes=data.notes, due_date=data.due_date
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return InvoiceResponse.model_validate(invoice)


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_invoice(invoice_id: uuid.UUID, db: DB):
    try:
        await InvoiceService(db).delete_invoice(invoice_id)
    except AtelierError as e:
        raise http_error(e)


@router.post("/{invoice_id}/send", response_model=SendResult)
async def send_invoice(invoice_id: uuid.UUID, db: DB):
    """Send the invoice to the customer; a DRAFT invoice becomes SENT."""
    try:
        return await InvoiceService(db).send_invoice(invoice_id)
    except AtelierError as e:
        raise http_error(e)


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoicePaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_invoice_payment(
    invoice_id: uuid.UUID,
    data: InvoicePaymentCreate,
    db: DB,
    current_user: StaffUser,
):
    """
    Record a payment against an invoice.

    The invoice status follows the paid amount and a receipt is issued.
    """
    try:
        payment = await InvoiceService(db).add_invoice_payment(
            invoice_id,
            data.amount,
            data.payment_method,
            reference=data.reference,
            paid_at=data.paid_at,
            notes=data.notes,
            user=current_user,
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return InvoicePaymentResponse.model_validate(payment)


@router.delete(
    "/payments/{payment_id}",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_invoice_payment(payment_id: uuid.UUID, db: DB):
    try:
        invoice = await InvoiceService(db).delete_invoice_payment(payment_id)
    except AtelierError as e:
        raise http_error(e)
    return InvoiceResponse.model_validate(invoice)
