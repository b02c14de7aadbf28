"""
Coupon validation and discount computation.

validate() collects every failing rule instead of stopping at the
first one, so the storefront can show all reasons at once.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.dates import as_aware, utc_now
from atelier.core.exceptions import NotFoundError, BusinessRuleError, ConflictError
from atelier.models.catalog import Product
from atelier.models.coupon import Coupon, CouponUsage, DiscountType

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: uuid.UUID
    quantity: int = 1
    category_id: Optional[uuid.UUID] = None


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Discount for a subtotal; never more than the subtotal itself."""
    subtotal = Decimal(str(subtotal))
    if coupon.minimum_order_amount and subtotal < Decimal(coupon.minimum_order_amount):
        return Decimal("0")

    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = subtotal * Decimal(coupon.discount_value) / Decimal("100")
        if coupon.maximum_discount:
            discount = min(discount, Decimal(coupon.maximum_discount))
    else:
        discount = Decimal(coupon.discount_value)

    return min(discount, subtotal).quantize(Decimal("0.01"))


class CouponService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        return await self.db.scalar(select(Coupon).where(Coupon.code == (code or "").strip().upper()))

    async def _resolve_categories(self, items: List[CartLine]) -> None:
        missing = [line.product_id for line in items if line.category_id is None]
        if not missing:
            return
        result = await self.db.execute(select(Product.id, Product.category_id).where(Product.id.in_(missing)))
        categories = dict(result.all())
        for line in items:
            if line.category_id is None:
                line.category_id = categories.get(line.product_id)

    async def validate(
        self,
        code: str,
        user_id: Optional[uuid.UUID] = None,
        items: Optional[List[CartLine]] = None,
    ) -> Coupon:
        """
        Check every rule of a coupon against a user and a cart.

        Raises:
            BusinessRuleError: with one message per failing rule in `errors`
        """
        coupon = await self.get_by_code(code)
        if coupon is None or not coupon.is_active:
            raise BusinessRuleError("Invalid coupon", errors=["Ce code promo n'existe pas ou n'est plus actif"])

        errors = []
        now = utc_now()
        if coupon.starts_at and as_aware(coupon.starts_at) > now:
            errors.append("Ce code promo n'est pas encore valide")
        if coupon.expires_at and as_aware(coupon.expires_at) < now:
            errors.append("Ce code promo a expiré")
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            errors.append("Ce code promo a atteint sa limite d'utilisation")

        if user_id and coupon.usage_limit_per_user is not None:
            used = await self.db.scalar(
                select(func.count(CouponUsage.id)).where(
                    CouponUsage.coupon_id == coupon.id,
                    CouponUsage.user_id == user_id,
                )
            )
            if (used or 0) >= coupon.usage_limit_per_user:
                errors.append("Vous avez déjà utilisé ce code promo le nombre maximum de fois")

        if items:
            await self._resolve_categories(items)
            product_ids = {str(line.product_id) for line in items}
            category_ids = {str(line.category_id) for line in items if line.category_id}

            if product_ids & set(coupon.excluded_product_ids or []):
                errors.append("Certains produits du panier sont exclus de cette promotion")
            if category_ids & set(coupon.excluded_category_ids or []):
                errors.append("Certaines catégories du panier sont exclues de cette promotion")
            if coupon.product_ids and not product_ids & set(coupon.product_ids):
                errors.append("Ce code promo ne s'applique à aucun produit du panier")
            if coupon.category_ids and not category_ids & set(coupon.category_ids):
                errors.append("Ce code promo ne s'applique à aucune catégorie du panier")

        if errors:
            raise BusinessRuleError("Invalid coupon", errors=errors)
        return coupon

    async def record_usage(
        self,
        coupon: Coupon,
        discount_amount: Decimal,
        user_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
    ) -> CouponUsage:
        usage = CouponUsage(
            coupon_id=coupon.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
        )
        coupon.usage_count += 1
        self.db.add(usage)
        await self.db.flush()
        logger.info(f"Coupon {coupon.code} used on order {order_id} (-{discount_amount})")
        return usage

    # ==================== Admin ====================

    async def list_coupons(self, active: Optional[bool] = None, search: Optional[str] = None) -> List[Coupon]:
        query = select(Coupon).order_by(Coupon.created_at.desc())
        if active is not None:
            query = query.where(Coupon.is_active == active)
        if search:
            query = query.where(Coupon.code.ilike(f"%{search.upper()}%"))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_coupon(self, coupon_id: uuid.UUID) -> Coupon:
        coupon = await self.db.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        return coupon

    @staticmethod
    def _normalize(data: dict) -> dict:
        data = dict(data)
        if data.get("code"):
            data["code"] = data["code"].strip().upper()
        for key in ("product_ids", "excluded_product_ids", "category_ids", "excluded_category_ids"):
            if data.get(key) is not None:
                data[key] = [str(v) for v in data[key]]
        return data

    async def create_coupon(self, data: dict) -> Coupon:
        data = self._normalize(data)
        if await self.get_by_code(data["code"]):
            raise ConflictError(f"Coupon code {data['code']} already exists")
        coupon = Coupon(**data)
        self.db.add(coupon)
        await self.db.flush()
        return coupon

    async def update_coupon(self, coupon_id: uuid.UUID, changes: dict) -> Coupon:
        coupon = await self.get_coupon(coupon_id)
        changes = self._normalize(changes)
        if changes.get("code") and changes["code"] != coupon.code and await self.get_by_code(changes["code"]):
            raise ConflictError(f"Coupon code {changes['code']} already exists")
        for field, value in changes.items():
            setattr(coupon, field, value)
        await self.db.flush()
        return coupon

    async def delete_coupon(self, coupon_id: uuid.UUID) -> None:
        coupon = await self.get_coupon(coupon_id)
        await self.db.delete(coupon)
        await self.db.flush()
