"""
Catalog and inventory service.

Every change of Product.stock goes through adjust_stock() so a
StockMovement with before/after snapshot is always recorded and the
stock alerts (low, out, back in stock) fire exactly when a threshold is
crossed.
"""
import logging
import re
import uuid
from typing import Optional, List

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.exceptions import NotFoundError, BusinessRuleError, ConflictError
from atelier.database import ensure_loaded
from atelier.models.catalog import Category, Product, StockMovement, StockMovementType
from atelier.models.notification import NotificationTrigger
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    """'Robe Wax Été' -> 'robe-wax-ete'."""
    replacements = str.maketrans("àâäéèêëîïôöùûüç", "aaaeeeeiioouuuc")
    slug = (value or "").lower().translate(replacements)
    return re.sub(r"[^a-z0-9]+", "-", slug).strip("-")


class CatalogService:

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Categories ====================

    async def list_categories(self, active_only: bool = False) -> List[Category]:
        query = select(Category).order_by(Category.sort_order, Category.name)
        if active_only:
            query = query.where(Category.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_category(self, category_id: uuid.UUID) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    async def _ensure_unique_slug(self, model, slug: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        query = select(model.id).where(model.slug == slug)
        if exclude_id:
            query = query.where(model.id != exclude_id)
        if await self.db.scalar(query):
            raise ConflictError(f"Slug '{slug}' already exists")

    async def create_category(self, data: dict) -> Category:
        data = dict(data)
        data["slug"] = data.get("slug") or slugify(data["name"])
        await self._ensure_unique_slug(Category, data["slug"])
        category = Category(**data)
        self.db.add(category)
        await self.db.flush()
        return category

    async def update_category(self, category_id: uuid.UUID, changes: dict) -> Category:
        category = await self.get_category(category_id)
        if changes.get("slug") and changes["slug"] != category.slug:
            await self._ensure_unique_slug(Category, changes["slug"], category.id)
        if changes.get("parent_id") == category.id:
            raise BusinessRuleError("A category cannot be its own parent")
        for field, value in changes.items():
            setattr(category, field, value)
        await self.db.flush()
        return category

    async def delete_category(self, category_id: uuid.UUID) -> None:
        category = await self.get_category(category_id)
        await self.db.delete(category)
        await self.db.flush()

    # ==================== Products ====================

    async def get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    async def get_product_by_slug(self, slug: str, active_only: bool = True) -> Product:
        query = select(Product).where(Product.slug == slug)
        if active_only:
            query = query.where(Product.is_active == True)  # noqa: E712
        product = await self.db.scalar(query)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    async def list_products(
        self,
        category_slug: Optional[str] = None,
        category_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        featured: Optional[bool] = None,
        active_only: bool = True,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if active_only:
            conditions.append(Product.is_active == True)  # noqa: E712
        if category_id:
            conditions.append(Product.category_id == category_id)
        if category_slug:
            conditions.append(
                Product.category_id.in_(select(Category.id).where(Category.slug == category_slug))
            )
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.description.ilike(pattern),
            ))
        if featured is not None:
            conditions.append(Product.is_featured == featured)

        total = await self.db.scalar(select(func.count(Product.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Product)
            .where(*conditions)
            .order_by(Product.is_featured.desc(), Product.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def create_product(self, data: dict, user_id: Optional[uuid.UUID] = None) -> Product:
        data = dict(data)
        data["slug"] = data.get("slug") or slugify(data["name"])
        await self._ensure_unique_slug(Product, data["slug"])
        if data.get("sku") and await self.db.scalar(select(Product.id).where(Product.sku == data["sku"])):
            raise ConflictError(f"SKU '{data['sku']}' already exists")

        initial_stock = data.pop("stock", 0) or 0
        product = Product(**data, stock=0)
        self.db.add(product)
        await self.db.flush()

        if initial_stock:
            await self.adjust_stock(
                product.id,
                initial_stock,
                StockMovementType.RESTOCK,
                reason="Stock initial",
                user_id=user_id,
                notify=False,
            )
        await ensure_loaded(self.db, product, "category")
        return product

    async def update_product(self, product_id: uuid.UUID, changes: dict, user_id: Optional[uuid.UUID] = None) -> Product:
        product = await self.get_product(product_id)
        changes = dict(changes)
        if changes.get("slug") and changes["slug"] != product.slug:
            await self._ensure_unique_slug(Product, changes["slug"], product.id)

        new_stock = changes.pop("stock", None)
        for field, value in changes.items():
            setattr(product, field, value)
        await self.db.flush()

        if new_stock is not None and new_stock != product.stock:
            await self.adjust_stock(
                product.id,
                new_stock - product.stock,
                StockMovementType.ADJUSTMENT,
                reason="Mise à jour du produit",
                user_id=user_id,
            )
        await self.db.refresh(product, attribute_names=["category"])
        return product

    async def delete_product(self, product_id: uuid.UUID) -> None:
        product = await self.get_product(product_id)
        await self.db.delete(product)
        await self.db.flush()

    # ==================== Inventory ====================

    async def adjust_stock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        movement_type: StockMovementType | str,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        notify: bool = True,
    ) -> StockMovement:
        """
        Apply a signed stock change and record it.

        Raises:
            NotFoundError: unknown product
            BusinessRuleError: the change would make stock negative
        """
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("Product not found")

        before = product.stock
        after = before + quantity
        if after < 0:
            raise BusinessRuleError(
                f"Insufficient stock for {product.name}: {before} available, {abs(quantity)} requested"
            )

        product.stock = after
        movement = StockMovement(
            product_id=product.id,
            type=StockMovementType(movement_type).value,
            quantity=quantity,
            stock_before=before,
            stock_after=after,
            reference=reference,
            reason=reason,
            created_by_id=user_id,
        )
        self.db.add(movement)
        await self.db.flush()

        if notify:
            await self._stock_alert(product, before, after)
        return movement

    async def _stock_alert(self, product: Product, before: int, after: int) -> None:
        trigger = None
        if before > 0 and after == 0:
            trigger = NotificationTrigger.OUT_OF_STOCK_ADMIN
        elif before > product.low_stock_threshold >= after > 0:
            trigger = NotificationTrigger.LOW_STOCK_ADMIN
        elif before == 0 and after > 0:
            trigger = NotificationTrigger.BACK_IN_STOCK
        if trigger is None:
            return

        logger.info(f"Stock alert {trigger.value} for {product.name} ({before} -> {after})")
        await NotificationService(self.db).send_notification(trigger, {"product_id": product.id})

    async def inventory_alerts(self) -> dict:
        result = await self.db.execute(
            select(Product)
            .where(
                Product.is_active == True,  # noqa: E712
                Product.stock <= Product.low_stock_threshold,
            )
            .order_by(Product.stock, Product.name)
        )
        products = list(result.scalars().all())
        return {
            "low_stock": [p for p in products if p.stock > 0],
            "out_of_stock": [p for p in products if p.stock == 0],
        }

    async def list_movements(
        self,
        product_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 50,
    ) -> dict:
        conditions = [StockMovement.product_id == product_id] if product_id else []
        total = await self.db.scalar(select(func.count(StockMovement.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(StockMovement.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total, "page": page, "size": size,
                "pages": (total + size - 1) // size}
