"""
Public storefront of a tenant: catalog browsing, coupon check and checkout.

Catalog reads are cached per tenant; back-office writes invalidate them.
"""
from typing import Optional, List
import uuid

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse

from atelier.api.deps import DB, CurrentUser, OptionalUser
from atelier.core.exceptions import AtelierError, BusinessRuleError, http_error
from atelier.schemas.catalog import CategoryResponse, ProductResponse, ProductListResponse
from atelier.schemas.coupon import CouponValidateRequest, CouponValidateResponse
from atelier.schemas.order import (
    CheckoutRequest,
    OrderResponse,
    OrderBrief,
    OrderListResponse,
    ShippingMethodResponse,
)
from atelier.services.cache_service import get_cache
from atelier.services.catalog_service import CatalogService
from atelier.services.coupon_service import CouponService, CartLine, compute_discount
from atelier.services.order_service import OrderService


router = APIRouter(tags=["Storefront"])


@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(request: Request, db: DB):
    cache = get_cache()
    tenant_id = request.state.tenant_id
    cached = await cache.get_categories(tenant_id)
    if cached is not None:
        return cached

    categories = await CatalogService(db).list_categories(active_only=True)
    data = [CategoryResponse.model_validate(c).model_dump(mode="json") for c in categories]
    await cache.set_categories(tenant_id, data)
    return data


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    request: Request,
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    category: Optional[str] = Query(None, description="Category slug"),
    search: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
):
    """Active products only, featured first."""
    cache = get_cache()
    tenant_id = request.state.tenant_id
    params = {"page": page, "size": size, "category": category, "search": search, "featured": featured}

    cached = await cache.get_product_list(tenant_id, params)
    if cached is not None:
        return cached

    result = await CatalogService(db).list_products(
        category_slug=category,
        search=search,
        featured=featured,
        active_only=True,
        page=page,
        size=size,
    )
    response = ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )
    await cache.set_product_list(tenant_id, params, response.model_dump(mode="json"))
    return response


@router.get("/products/{slug}", response_model=ProductResponse)
async def get_product(slug: str, db: DB):
    try:
        product = await CatalogService(db).get_product_by_slug(slug)
    except AtelierError as e:
        raise http_error(e)
    return ProductResponse.model_validate(product)


@router.get("/shipping-methods", response_model=List[ShippingMethodResponse])
async def list_shipping_methods(db: DB):
    methods = await OrderService(db).list_shipping_methods(active_only=True)
    return [ShippingMethodResponse.model_validate(m) for m in methods]


@router.post("/coupons/validate", response_model=CouponValidateResponse)
async def validate_coupon(data: CouponValidateRequest, db: DB, user: OptionalUser):
    """
    Check a coupon against the cart before checkout.

    An invalid coupon answers 400 with valid=false and one message
    per failing rule.
    """
    items = [
        CartLine(product_id=i.product_id, quantity=i.quantity, category_id=i.category_id)
        for i in data.items
    ]
    try:
        coupon = await CouponService(db).validate(data.code, user_id=user.id if user else None, items=items)
    except BusinessRuleError as e:
        invalid = CouponValidateResponse(valid=False, code=data.code.upper(), errors=e.errors or [e.message])
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=invalid.model_dump(mode="json"))

    return CouponValidateResponse(
        valid=True,
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        discount=compute_discount(coupon, data.subtotal),
    )


@router.post("/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def checkout(data: CheckoutRequest, request: Request, db: DB, current_user: CurrentUser):
    """Place an order for the logged-in customer. Stock is reserved immediately."""
    try:
        order = await OrderService(db).place_order(
            current_user,
            items=[item.model_dump() for item in data.items],
            address=data.address.model_dump() if data.address else None,
            payment_method=data.payment_method,
            shipping_method_id=data.shipping_method_id,
            coupon_code=data.coupon_code,
            billing_first_name=data.billing_first_name,
            billing_last_name=data.billing_last_name,
            billing_phone=data.billing_phone,
            billing_email=data.billing_email,
            notes=data.notes,
        )
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_products(request.state.tenant_id)
    return OrderResponse.model_validate(order)


@router.get("/my-orders", response_model=OrderListResponse)
async def list_my_orders(
    db: DB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    result = await OrderService(db).list_my_orders(current_user, page=page, size=size)
    return OrderListResponse(
        items=[OrderBrief.model_validate(o) for o in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/my-orders/{order_id}", response_model=OrderResponse)
async def get_my_order(order_id: uuid.UUID, db: DB, current_user: CurrentUser):
    try:
        order = await OrderService(db).get_my_order(current_user, order_id)
    except AtelierError as e:
        raise http_error(e)
    return OrderResponse.model_validate(order)
