from datetime import date
from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, CurrentUser, require_permissions, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.user import UserRole
from atelier.schemas.custom_order import (
    CustomOrderCreate,
    CustomOrderUpdate,
    CustomOrderBrief,
    CustomOrderResponse,
    CustomOrderListResponse,
    CustomOrderItemCreate,
    CustomOrderItemUpdate,
    CustomOrderItemResponse,
    CustomOrderPaymentCreate,
    CustomOrderPaymentResponse,
    PaymentSummaryResponse,
    TimelineEventCreate,
    TimelineEventResponse,
)
from atelier.services.custom_order_service import CustomOrderService


router = APIRouter(tags=["Custom Orders"], dependencies=[Depends(require_permissions("custom-orders"))])

manager_only = [Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER, UserRole.STAFF))]


@router.get("", response_model=CustomOrderListResponse)
async def list_custom_orders(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    tailor_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None, description="Order number, customer name or phone"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
):
    result = await CustomOrderService(db).list_custom_orders(
        status=status,
        priority=priority,
        tailor_id=tailor_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
        page=page,
        size=size,
    )
    return CustomOrderListResponse(
        items=[CustomOrderBrief.model_validate(o) for o in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
        status_counts=result["status_counts"],
    )


@router.post("", response_model=CustomOrderResponse, status_code=status.HTTP_201_CREATED, dependencies=manager_only)
async def create_custom_order(data: CustomOrderCreate, db: DB, current_user: CurrentUser):
    """
    Open a made-to-measure order.

    Creates the garments, the invoice, an optional deposit with its
    receipt, and stores new measurements on the customer when given.
    """
    try:
        custom_order = await CustomOrderService(db).create_custom_order(
            customer_id=data.customer_id,
            items=[item.model_dump() for item in data.items],
            pickup_date=data.pickup_date,
            user=current_user,
            priority=data.priority,
            measurements=data.measurements,
            measurement_name=data.measurement_name,
            measurement_id=data.measurement_id,
            deposit=data.deposit,
            deposit_method=data.deposit_method,
            material_cost=data.material_cost,
            customer_notes=data.customer_notes,
            internal_notes=data.internal_notes,
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return CustomOrderResponse.model_validate(custom_order)


@router.get("/{custom_order_id}", response_model=CustomOrderResponse)
async def get_custom_order(custom_order_id: uuid.UUID, db: DB):
    try:
        custom_order = await CustomOrderService(db).get_custom_order(custom_order_id)
    except AtelierError as e:
        raise http_error(e)
    return CustomOrderResponse.model_validate(custom_order)


@router.patch("/{custom_order_id}", response_model=CustomOrderResponse, dependencies=manager_only)
async def update_custom_order(
    custom_order_id: uuid.UUID,
    data: CustomOrderUpdate,
    db: DB,
    current_user: CurrentUser,
):
    try:
        custom_order = await CustomOrderService(db).update_custom_order(
            custom_order_id, data.model_dump(exclude_unset=True), user=current_user
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return CustomOrderResponse.model_validate(custom_order)


@router.delete(
    "/{custom_order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_custom_order(custom_order_id: uuid.UUID, db: DB):
    try:
        await CustomOrderService(db).delete_custom_order(custom_order_id)
    except AtelierError as e:
        raise http_error(e)


# ==================== Items ====================

@router.post(
    "/{custom_order_id}/items",
    response_model=CustomOrderItemResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=manager_only,
)
async def add_item(
    custom_order_id: uuid.UUID,
    data: CustomOrderItemCreate,
    db: DB,
    current_user: CurrentUser,
):
    try:
        item = await CustomOrderService(db).add_item(custom_order_id, data.model_dump(), user=current_user)
    except AtelierError as e:
        raise http_error(e)
    return CustomOrderItemResponse.model_validate(item)


@router.patch("/items/{item_id}", response_model=CustomOrderItemResponse)
async def update_item(item_id: uuid.UUID, data: CustomOrderItemUpdate, db: DB, current_user: CurrentUser):
    """Tailors may move their own garments and log hours and notes."""
    try:
        item = await CustomOrderService(db).update_item(
            item_id, data.model_dump(exclude_unset=True), current_user
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return CustomOrderItemResponse.model_validate(item)


@router.delete("/items/{item_id}", response_model=CustomOrderResponse, dependencies=manager_only)
async def delete_item(item_id: uuid.UUID, db: DB, current_user: CurrentUser):
    try:
        custom_order = await CustomOrderService(db).delete_item(item_id, user=current_user)
    except AtelierError as e:
        raise http_error(e)
    return CustomOrderResponse.model_validate(custom_order)


# ==================== Payments ====================

@router.get("/{custom_order_id}/payments", response_model=PaymentSummaryResponse)
async def payment_summary(custom_order_id: uuid.UUID, db: DB):
    try:
        summary = await CustomOrderService(db).payment_summary(custom_order_id)
    except AtelierError as e:
        raise http_error(e)
    return PaymentSummaryResponse(
        total_cost=summary["total_cost"],
        total_paid=summary["total_paid"],
        balance=summary["balance"],
        is_paid_in_full=summary["is_paid_in_full"],
        payments=[CustomOrderPaymentResponse.model_validate(p) for p in summary["payments"]],
    )


@router.post(
    "/{custom_order_id}/payments",
    response_model=CustomOrderPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=manager_only,
)
async def add_payment(
    custom_order_id: uuid.UUID,
    data: CustomOrderPaymentCreate,
    db: DB,
    current_user: CurrentUser,
):
    """DEPOSIT, INSTALLMENT or FINAL is derived from the remaining balance."""
    try:
        payment = await CustomOrderService(db).add_payment(
            custom_order_id,
            data.amount,
            payment_method=data.payment_method,
            reference=data.reference,
            notes=data.notes,
            user=current_user,
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return CustomOrderPaymentResponse.model_validate(payment)


@router.delete(
    "/payments/{payment_id}",
    response_model=CustomOrderResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_payment(payment_id: uuid.UUID, db: DB, current_user: CurrentUser):
    try:
        custom_order = await CustomOrderService(db).delete_payment(payment_id, user=current_user)
    except AtelierError as e:
        raise http_error(e)
    return CustomOrderResponse.model_validate(custom_order)


# ==================== Timeline ====================

@router.get("/{custom_order_id}/timeline", response_model=List[TimelineEventResponse])
async def list_timeline(custom_order_id: uuid.UUID, db: DB):
    events = await CustomOrderService(db).list_timeline(custom_order_id)
    return [TimelineEventResponse.model_validate(e) for e in events]


@router.post(
    "/{custom_order_id}/timeline",
    response_model=TimelineEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_timeline_event(
    custom_order_id: uuid.UUID,
    data: TimelineEventCreate,
    db: DB,
    current_user: CurrentUser,
):
    service = CustomOrderService(db)
    try:
        await service.get_custom_order(custom_order_id)
        entry = await service.add_timeline_event(
            custom_order_id,
            data.event,
            description=data.description,
            photos=data.photos,
            user=current_user,
        )
    except AtelierError as e:
        raise http_error(e)
    return TimelineEventResponse.model_validate(entry)
