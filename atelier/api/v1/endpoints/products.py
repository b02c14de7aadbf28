from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query, Request, status

from atelier.api.deps import DB, CurrentUser, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.catalog import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductListResponse,
    StockAdjustRequest,
    StockMovementResponse,
    StockMovementListResponse,
    InventoryAlertsResponse,
    ProductBrief,
)
from atelier.services.cache_service import get_cache
from atelier.services.catalog_service import CatalogService


router = APIRouter(tags=["Products"])


@router.get("", response_model=ProductListResponse, dependencies=[Depends(require_permissions("products"))])
async def list_products(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    category_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    active_only: bool = Query(False),
):
    """Back-office product list; includes inactive products unless active_only."""
    result = await CatalogService(db).list_products(
        category_id=category_id,
        search=search,
        featured=featured,
        active_only=active_only,
        page=page,
        size=size,
    )
    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get(
    "/inventory/alerts",
    response_model=InventoryAlertsResponse,
    dependencies=[Depends(require_permissions("inventory"))],
)
async def inventory_alerts(db: DB):
    alerts = await CatalogService(db).inventory_alerts()
    return InventoryAlertsResponse(
        low_stock=[ProductBrief.model_validate(p) for p in alerts["low_stock"]],
        out_of_stock=[ProductBrief.model_validate(p) for p in alerts["out_of_stock"]],
    )


@router.get(
    "/inventory/movements",
    response_model=StockMovementListResponse,
    dependencies=[Depends(require_permissions("inventory"))],
)
async def list_stock_movements(
    db: DB,
    product_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
):
    result = await CatalogService(db).list_movements(product_id=product_id, page=page, size=size)
    return StockMovementListResponse(
        items=[StockMovementResponse.model_validate(m) for m in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/{product_id}", response_model=ProductResponse, dependencies=[Depends(require_permissions("products"))])
async def get_product(product_id: uuid.UUID, db: DB):
    try:
        product = await CatalogService(db).get_product(product_id)
    except AtelierError as e:
        raise http_error(e)
    return ProductResponse.model_validate(product)


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("products"))],
)
async def create_product(data: ProductCreate, request: Request, db: DB, current_user: CurrentUser):
    """Create a product; an initial stock is recorded as a RESTOCK movement."""
    try:
        product = await CatalogService(db).create_product(data.model_dump(), user_id=current_user.id)
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)
    return ProductResponse.model_validate(product)


@router.put("/{product_id}", response_model=ProductResponse, dependencies=[Depends(require_permissions("products"))])
async def update_product(
    product_id: uuid.UUID,
    data: ProductUpdate,
    request: Request,
    db: DB,
    current_user: CurrentUser,
):
    try:
        product = await CatalogService(db).update_product(
            product_id, data.model_dump(exclude_unset=True), user_id=current_user.id
        )
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)
    return ProductResponse.model_validate(product)


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permissions("products"))],
)
async def delete_product(product_id: uuid.UUID, request: Request, db: DB):
    try:
        await CatalogService(db).delete_product(product_id)
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)


@router.post(
    "/{product_id}/stock",
    response_model=StockMovementResponse,
    dependencies=[Depends(require_permissions("inventory"))],
)
async def adjust_stock(
    product_id: uuid.UUID,
    data: StockAdjustRequest,
    request: Request,
    db: DB,
    current_user: CurrentUser,
):
    """Manual stock correction; stock can never go below zero."""
    try:
        movement = await CatalogService(db).adjust_stock(
            product_id,
            data.quantity,
            data.movement_type.upper(),
            reason=data.reason,
            reference=data.reference,
            user_id=current_user.id,
        )
    except (AtelierError, ValueError) as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)
    return StockMovementResponse.model_validate(movement)
