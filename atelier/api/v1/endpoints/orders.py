from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, Query, Request, status

from atelier.api.deps import DB, CurrentUser, require_permissions, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.user import UserRole
from atelier.schemas.order import (
    OrderResponse,
    OrderBrief,
    OrderListResponse,
    OrderUpdate,
    OrderNoteCreate,
    OrderNoteResponse,
    RefundCreate,
    RefundResponse,
    ShippingMethodCreate,
    ShippingMethodResponse,
)
from atelier.services.cache_service import get_cache
from atelier.services.order_service import OrderService


router = APIRouter(tags=["Orders"], dependencies=[Depends(require_permissions("orders"))])


@router.get("", response_model=OrderListResponse)
async def list_orders(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Order number, billing name or phone"),
):
    result = await OrderService(db).list_orders(
        status=status,
        payment_status=payment_status,
        search=search,
        page=page,
        size=size,
    )
    return OrderListResponse(
        items=[OrderBrief.model_validate(o) for o in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
        status_counts=result["status_counts"],
    )


@router.get("/shipping-methods", response_model=List[ShippingMethodResponse])
async def list_shipping_methods(db: DB, include_inactive: bool = Query(False)):
    methods = await OrderService(db).list_shipping_methods(active_only=not include_inactive)
    return [ShippingMethodResponse.model_validate(m) for m in methods]


@router.post(
    "/shipping-methods",
    response_model=ShippingMethodResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def create_shipping_method(data: ShippingMethodCreate, db: DB):
    data.cost_type = data.cost_type.upper()
    method = await OrderService(db).create_shipping_method(data.model_dump())
    return ShippingMethodResponse.model_validate(method)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: uuid.UUID, db: DB):
    try:
        order = await OrderService(db).get_order(order_id)
    except AtelierError as e:
        raise http_error(e)
    return OrderResponse.model_validate(order)


@router.patch("/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: uuid.UUID,
    data: OrderUpdate,
    request: Request,
    db: DB,
    current_user: CurrentUser,
):
    """
    Update status, payment status, tracking number or notes.

    Status changes write a private note, trigger the matching customer
    notification (unless send_notification is false), restore stock
    on cancellation and take it again when the order is reopened.
    """
    try:
        order = await OrderService(db).update_order(
            order_id,
            user=current_user,
            status=data.status,
            payment_status=data.payment_status,
            tracking_number=data.tracking_number,
            notes=data.notes,
            send_notification=data.send_notification,
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)

    if data.status or data.payment_status:
        await get_cache().invalidate_products(request.state.tenant_id)
    return OrderResponse.model_validate(order)


@router.delete(
    "/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_order(order_id: uuid.UUID, db: DB):
    """Delete an order with its invoice, payments and pending notifications."""
    try:
        await OrderService(db).delete_order(order_id)
    except AtelierError as e:
        raise http_error(e)


@router.get("/{order_id}/notes", response_model=List[OrderNoteResponse])
async def list_order_notes(order_id: uuid.UUID, db: DB):
    try:
        notes = await OrderService(db).list_notes(order_id)
    except AtelierError as e:
        raise http_error(e)
    return [OrderNoteResponse.model_validate(n) for n in notes]


@router.post("/{order_id}/notes", response_model=OrderNoteResponse, status_code=status.HTTP_201_CREATED)
async def add_order_note(order_id: uuid.UUID, data: OrderNoteCreate, db: DB, current_user: CurrentUser):
    """A CUSTOMER note is also sent to the customer."""
    try:
        note = await OrderService(db).add_note(order_id, data.content, data.note_type, user=current_user)
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return OrderNoteResponse.model_validate(note)


@router.get("/{order_id}/refunds", response_model=List[RefundResponse])
async def list_refunds(order_id: uuid.UUID, db: DB):
    try:
        refunds = await OrderService(db).list_refunds(order_id)
    except AtelierError as e:
        raise http_error(e)
    return [RefundResponse.model_validate(r) for r in refunds]


@router.post(
    "/{order_id}/refunds",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def create_refund(
    order_id: uuid.UUID,
    data: RefundCreate,
    request: Request,
    db: DB,
    current_user: CurrentUser,
):
    try:
        refund = await OrderService(db).refund(
            order_id,
            data.amount,
            reason=data.reason,
            refund_type=data.refund_type,
            user=current_user,
        )
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)
    return RefundResponse.model_validate(refund)
