from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.coupon import CouponCreate, CouponUpdate, CouponResponse
from atelier.services.coupon_service import CouponService


router = APIRouter(tags=["Coupons"], dependencies=[Depends(require_permissions("coupons"))])


@router.get("", response_model=List[CouponResponse])
async def list_coupons(
    db: DB,
    active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
):
    coupons = await CouponService(db).list_coupons(active=active, search=search)
    return [CouponResponse.model_validate(c) for c in coupons]


@router.get("/{coupon_id}", response_model=CouponResponse)
async def get_coupon(coupon_id: uuid.UUID, db: DB):
    try:
        coupon = await CouponService(db).get_coupon(coupon_id)
    except AtelierError as e:
        raise http_error(e)
    return CouponResponse.model_validate(coupon)


@router.post("", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(data: CouponCreate, db: DB):
    """Codes are stored upper-case and must be unique."""
    payload = data.model_dump()
    payload["discount_type"] = payload["discount_type"].upper()
    try:
        coupon = await CouponService(db).create_coupon(payload)
    except AtelierError as e:
        raise http_error(e)
    return CouponResponse.model_validate(coupon)


@router.put("/{coupon_id}", response_model=CouponResponse)
async def update_coupon(coupon_id: uuid.UUID, data: CouponUpdate, db: DB):
    changes = data.model_dump(exclude_unset=True)
    if changes.get("discount_type"):
        changes["discount_type"] = changes["discount_type"].upper()
    try:
        coupon = await CouponService(db).update_coupon(coupon_id, changes)
    except AtelierError as e:
        raise http_error(e)
    return CouponResponse.model_validate(coupon)


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coupon(coupon_id: uuid.UUID, db: DB):
    try:
        await CouponService(db).delete_coupon(coupon_id)
    except AtelierError as e:
        raise http_error(e)
