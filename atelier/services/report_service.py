"""
Reporting Service.

Back-office dashboard figures and the daily sales summary sent to admins.
"""
from datetime import datetime, date, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.models.catalog import Product
from atelier.models.custom_order import CustomOrder, CustomOrderPayment, CustomOrderStatus
from atelier.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from atelier.models.user import User, UserRole


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class ReportService:
    """Aggregates over orders, custom orders and stock."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _order_revenue(self, start: datetime, end: datetime) -> Decimal:
        value = await self.db.scalar(
            select(func.coalesce(func.sum(Order.total), 0)).where(
                Order.payment_status == PaymentStatus.COMPLETED.value,
                Order.created_at >= start,
                Order.created_at < end,
            )
        )
        return Decimal(str(value or 0))

    async def _custom_order_revenue(self, start: datetime, end: datetime) -> Decimal:
        value = await self.db.scalar(
            select(func.coalesce(func.sum(CustomOrderPayment.amount), 0)).where(
                CustomOrderPayment.paid_at >= start,
                CustomOrderPayment.paid_at < end,
            )
        )
        return Decimal(str(value or 0))

    async def revenue_between(self, start: datetime, end: datetime) -> Decimal:
        return await self._order_revenue(start, end) + await self._custom_order_revenue(start, end)

    async def dashboard(self, today: Optional[date] = None) -> dict:
        today = today or datetime.now(timezone.utc).date()
        day_start, day_end = day_bounds(today)
        week_start = day_start - timedelta(days=today.weekday())
        month_start = datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)

        status_rows = await self.db.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status)
        )
        orders_by_status = {status.value: 0 for status in OrderStatus}
        orders_by_status.update({status: count for status, count in status_rows.all()})

        in_production = await self.db.scalar(
            select(func.count(CustomOrder.id)).where(
                CustomOrder.status == CustomOrderStatus.IN_PRODUCTION.value
            )
        )
        low_stock = await self.db.scalar(
            select(func.count(Product.id)).where(
                Product.is_active == True,  # noqa: E712
                Product.stock <= Product.low_stock_threshold,
            )
        )

        return {
            "revenue": {
                "today": await self.revenue_between(day_start, day_end),
                "week": await self.revenue_between(week_start, day_end),
                "month": await self.revenue_between(month_start, day_end),
            },
            "orders_by_status": orders_by_status,
            "custom_orders_in_production": in_production or 0,
            "low_stock_count": low_stock or 0,
        }

    async def daily_sales_report(self, day: date) -> dict:
        start, end = day_bounds(day)

        orders_count = await self.db.scalar(
            select(func.count(Order.id)).where(Order.created_at >= start, Order.created_at < end)
        )
        new_customers = await self.db.scalar(
            select(func.count(User.id)).where(
                User.role == UserRole.CUSTOMER.value,
                User.created_at >= start,
                User.created_at < end,
            )
        )
        pending_orders = await self.db.scalar(
            select(func.count(Order.id)).where(Order.status == OrderStatus.PENDING.value)
        )

        quantity = func.sum(OrderItem.quantity).label("quantity")
        top = (await self.db.execute(
            select(OrderItem.product_name, quantity)
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.created_at >= start, Order.created_at < end)
            .group_by(OrderItem.product_name)
            .order_by(quantity.desc())
            .limit(1)
        )).first()

        return {
            "date": day,
            "orders_count": orders_count or 0,
            "revenue": await self._order_revenue(start, end),
            "new_customers": new_customers or 0,
            "pending_orders": pending_orders or 0,
            "top_product": {"name": top[0], "quantity": int(top[1])} if top else None,
        }
