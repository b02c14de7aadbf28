from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, CurrentUser, require_permissions, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.user import UserRole
from atelier.schemas.custom_order import MeasurementCreate, MeasurementResponse
from atelier.schemas.customer import (
    CustomerCreate,
    CustomerUpdate,
    CustomerResponse,
    CustomerListResponse,
    CustomerDetailResponse,
    CustomerStatsResponse,
    CustomerNoteCreate,
    CustomerNoteResponse,
    CustomerMessageRequest,
)
from atelier.schemas.notification import SendResult
from atelier.services.customer_service import CustomerService


router = APIRouter(tags=["Customers"], dependencies=[Depends(require_permissions("customers"))])


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Name, phone or email"),
    tag: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
):
    result = await CustomerService(db).list_customers(search=search, tag=tag, source=source, page=page, size=size)
    return CustomerListResponse(
        items=[CustomerResponse.model_validate(c) for c in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/stats", response_model=CustomerStatsResponse)
async def customer_stats(db: DB):
    return CustomerStatsResponse(**await CustomerService(db).customer_stats())


@router.post(
    "",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("customers.create"))],
)
async def create_customer(data: CustomerCreate, db: DB):
    """Walk-in customers are created without a password."""
    try:
        customer = await CustomerService(db).create_customer(data.model_dump())
    except AtelierError as e:
        raise http_error(e)
    return CustomerResponse.model_validate(customer)


@router.get("/{customer_id}", response_model=CustomerDetailResponse)
async def get_customer(customer_id: uuid.UUID, db: DB):
    try:
        detail = await CustomerService(db).customer_detail(customer_id)
    except AtelierError as e:
        raise http_error(e)

    measurement = detail["latest_measurement"]
    return CustomerDetailResponse(
        customer=CustomerResponse.model_validate(detail["customer"]),
        orders_count=detail["orders_count"],
        custom_orders_count=detail["custom_orders_count"],
        total_spent=detail["total_spent"],
        last_order_date=detail["last_order_date"],
        latest_measurement=MeasurementResponse.model_validate(measurement) if measurement else None,
    )


@router.put("/{customer_id}", response_model=CustomerResponse)
async def update_customer(customer_id: uuid.UUID, data: CustomerUpdate, db: DB):
    try:
        customer = await CustomerService(db).update_customer(customer_id, data.model_dump(exclude_unset=True))
    except AtelierError as e:
        raise http_error(e)
    return CustomerResponse.model_validate(customer)


@router.delete(
    "/{customer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))],
)
async def delete_customer(customer_id: uuid.UUID, db: DB):
    """Deactivates the customer; history is kept."""
    try:
        await CustomerService(db).delete_customer(customer_id)
    except AtelierError as e:
        raise http_error(e)


# ==================== Measurements ====================

@router.get("/{customer_id}/measurements", response_model=List[MeasurementResponse])
async def list_measurements(customer_id: uuid.UUID, db: DB):
    try:
        measurements = await CustomerService(db).list_measurements(customer_id)
    except AtelierError as e:
        raise http_error(e)
    return [MeasurementResponse.model_validate(m) for m in measurements]


@router.get("/{customer_id}/measurements/latest", response_model=MeasurementResponse)
async def latest_measurement(customer_id: uuid.UUID, db: DB):
    try:
        measurement = await CustomerService(db).latest_measurement(customer_id)
    except AtelierError as e:
        raise http_error(e)
    return MeasurementResponse.model_validate(measurement)


@router.post(
    "/{customer_id}/measurements",
    response_model=MeasurementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_measurement(
    customer_id: uuid.UUID,
    data: MeasurementCreate,
    db: DB,
    current_user: CurrentUser,
):
    try:
        measurement = await CustomerService(db).add_measurement(
            customer_id, data.data, name=data.name, notes=data.notes, user=current_user
        )
    except AtelierError as e:
        raise http_error(e)
    return MeasurementResponse.model_validate(measurement)


# ==================== Notes & messages ====================

@router.get("/{customer_id}/notes", response_model=List[CustomerNoteResponse])
async def list_notes(customer_id: uuid.UUID, db: DB):
    try:
        notes = await CustomerService(db).list_notes(customer_id)
    except AtelierError as e:
        raise http_error(e)
    return [CustomerNoteResponse.model_validate(n) for n in notes]


@router.post("/{customer_id}/notes", response_model=CustomerNoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(customer_id: uuid.UUID, data: CustomerNoteCreate, db: DB, current_user: CurrentUser):
    try:
        note = await CustomerService(db).add_note(customer_id, data.content, user=current_user)
    except AtelierError as e:
        raise http_error(e)
    return CustomerNoteResponse.model_validate(note)


@router.post(
    "/{customer_id}/message",
    response_model=SendResult,
    dependencies=[Depends(require_permissions("customers.contact"))],
)
async def send_message(customer_id: uuid.UUID, data: CustomerMessageRequest, db: DB):
    """Free-text WhatsApp or SMS to the customer, logged as CUSTOMER_MESSAGE."""
    try:
        return await CustomerService(db).send_message(customer_id, data.channel, data.message)
    except AtelierError as e:
        raise http_error(e)
