"""
Payment initialization, status polling and gateway webhooks.

Webhooks are public: the tenant is taken from the ?tenant= query
parameter (set in the notification URL at initialization) or the
X-Tenant-ID header, then the payload is applied in that tenant's schema.
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from atelier.api.deps import DB, CurrentUser, PublicDB, StaffUser, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.database import get_tenant_session
from atelier.middleware.tenant import resolve_tenant
from atelier.models.tenant import Tenant
from atelier.schemas.payment import (
    PaymentInitRequest,
    InvoicePaymentInitRequest,
    PaymentInitResponse,
    RazorpayConfirmRequest,
    StandalonePaymentInitRequest,
    StandalonePaymentResponse,
    StandalonePaymentListResponse,
)
from atelier.services.cache_service import get_cache
from atelier.services.payment_reconciliation_service import PaymentReconciliationService
from atelier.services.payment_service import get_razorpay_gateway


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


@router.post("/initialize", response_model=PaymentInitResponse)
async def initialize_payment(data: PaymentInitRequest, request: Request, db: DB, current_user: CurrentUser):
    """Start the gateway payment of an order and return where to send the customer."""
    try:
        result = await PaymentReconciliationService(db).initialize_payment(
            current_user, data.order_id, channel=data.channel, tenant=request.state.tenant.subdomain
        )
    except AtelierError as e:
        raise http_error(e)

    if result.get("stock_reserved"):
        await get_cache().invalidate_products(request.state.tenant_id)
    return PaymentInitResponse(**result)


@router.post("/invoices/initialize", response_model=PaymentInitResponse)
async def initialize_invoice_payment(
    data: InvoicePaymentInitRequest,
    request: Request,
    db: DB,
    current_user: StaffUser,
):
    """Payment link for the balance of an invoice, to share with the customer."""
    try:
        result = await PaymentReconciliationService(db).initialize_invoice_payment(
            data.invoice_id, channel=data.channel, tenant=request.state.tenant.subdomain
        )
    except AtelierError as e:
        raise http_error(e)
    return PaymentInitResponse(gateway="paiementpro", **result)


@router.get("/status/{reference}")
async def payment_status(reference: str, db: DB, current_user: CurrentUser):
    try:
        return await PaymentReconciliationService(db).payment_status(reference)
    except AtelierError as e:
        raise http_error(e)


@router.post("/razorpay/confirm")
async def confirm_razorpay_payment(data: RazorpayConfirmRequest, db: DB, current_user: CurrentUser):
    """Browser callback after Razorpay checkout; the signature is checked before anything is applied."""
    try:
        return await PaymentReconciliationService(db).confirm_razorpay_payment(
            data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
        )
    except AtelierError as e:
        raise http_error(e)


# ==================== FREE-AMOUNT PAYMENT LINKS ====================

@router.post("/payer/initialize", response_model=PaymentInitResponse)
async def initialize_standalone_payment(data: StandalonePaymentInitRequest, request: Request, db: DB):
    """Public /payer page: the customer enters an amount and is sent to the gateway."""
    try:
        result = await PaymentReconciliationService(db).initialize_standalone_payment(
            data.amount,
            data.customer_name,
            data.customer_phone,
            channel=data.channel,
            tenant=request.state.tenant.subdomain,
        )
    except AtelierError as e:
        raise http_error(e)
    return PaymentInitResponse(**result)


@router.get(
    "/standalone",
    response_model=StandalonePaymentListResponse,
    dependencies=[Depends(require_permissions("payments"))],
)
async def list_standalone_payments(
    db: DB,
    current_user: StaffUser,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    return await PaymentReconciliationService(db).list_standalone_payments(
        status=status_filter, search=search, page=page, size=size
    )


@router.get(
    "/standalone/{payment_id}",
    response_model=StandalonePaymentResponse,
    dependencies=[Depends(require_permissions("payments"))],
)
async def get_standalone_payment(payment_id: uuid.UUID, db: DB, current_user: StaffUser):
    try:
        return await PaymentReconciliationService(db).get_standalone_payment(payment_id)
    except AtelierError as e:
        raise http_error(e)


@router.post(
    "/standalone/{payment_id}/resend-notification",
    dependencies=[Depends(require_permissions("payments"))],
)
async def resend_standalone_notification(payment_id: uuid.UUID, db: DB, current_user: StaffUser):
    try:
        return await PaymentReconciliationService(db).resend_standalone_notification(payment_id)
    except AtelierError as e:
        raise http_error(e)


# ==================== WEBHOOK ENDPOINTS ====================

async def _webhook_tenant(request: Request, db, tenant: Optional[str]) -> Tenant:
    identifier = tenant or request.headers.get("X-Tenant-ID")
    found = await resolve_tenant(db, identifier) if identifier else None
    if found is None:
        logger.warning(f"Webhook {request.url.path} for unknown tenant {identifier!r}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return found


async def _read_payload(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return await request.json()
        except json.JSONDecodeError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    form = await request.form()
    return dict(form)


async def _apply_webhook(tenant: Tenant, name: str, handler) -> JSONResponse | dict:
    """
    Run a webhook handler in the tenant schema.

    Rejections (bad signature, unknown reference) are answered with their
    status code. Unexpected failures are logged and answered 200 so the
    gateway does not keep retrying a payload we cannot apply. Storefront
    product lists are invalidated once the stock of an order moved.
    """
    try:
        async with get_tenant_session(tenant.database_schema) as session:
            result = await handler(PaymentReconciliationService(session))
    except AtelierError as e:
        return JSONResponse(status_code=e.status_code, content={"status": "error", "message": e.message})
    except Exception as e:
        logger.error(f"Error processing {name} webhook: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}

    if result.get("stock_released") or result.get("stock_reserved"):
        await get_cache().invalidate_products(str(tenant.id))
    return result


@router.post("/webhook/paiementpro", include_in_schema=False)
async def paiementpro_webhook(
    request: Request,
    db: PublicDB,
    tenant: Optional[str] = Query(None),
):
    """
    PaiementPro notification (form-encoded or JSON).

    responsecode "0" means success; the hashcode is verified when a
    secret key is configured. Duplicate notifications are acknowledged
    without side effects.
    """
    found = await _webhook_tenant(request, db, tenant)
    payload = await _read_payload(request)
    logger.info(f"Received PaiementPro webhook for {payload.get('referenceNumber')}")
    return await _apply_webhook(found, "PaiementPro", lambda svc: svc.handle_paiementpro_webhook(payload))


@router.post("/webhook/razorpay", include_in_schema=False)
async def razorpay_webhook(
    request: Request,
    db: PublicDB,
    tenant: Optional[str] = Query(None),
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
):
    found = await _webhook_tenant(request, db, tenant)
    body = await request.body()

    if not x_razorpay_signature or not get_razorpay_gateway().verify_webhook_signature(body, x_razorpay_signature):
        logger.warning("Razorpay webhook signature verification failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    logger.info(f"Received Razorpay webhook: {event.get('event')}")
    return await _apply_webhook(found, "Razorpay", lambda svc: svc.handle_razorpay_webhook(event))
