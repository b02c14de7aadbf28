"""Kanban board of the workshop: garments grouped by production status."""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from atelier.core.exceptions import PermissionDeniedError
from atelier.models.custom_order import (
    CustomOrder,
    CustomOrderItem,
    CustomOrderStatus,
    CustomOrderPriority,
    ItemStatus,
)
from atelier.models.user import User, UserRole
from atelier.services.custom_order_service import CustomOrderService, ITEM_STATUS_LABELS, DONE_ITEM_STATUSES

logger = logging.getLogger(__name__)

BOARD_COLUMNS = [
    ItemStatus.PENDING.value,
    ItemStatus.CUTTING.value,
    ItemStatus.SEWING.value,
    ItemStatus.FITTING.value,
    ItemStatus.ALTERATIONS.value,
    ItemStatus.FINISHING.value,
    ItemStatus.COMPLETED.value,
]

CLOSED_ORDER_STATUSES = (CustomOrderStatus.DELIVERED.value, CustomOrderStatus.CANCELLED.value)

PRIORITY_RANK = case(
    (CustomOrder.priority == CustomOrderPriority.VIP.value, 0),
    (CustomOrder.priority == CustomOrderPriority.URGENT.value, 1),
    else_=2,
)


def _card(item: CustomOrderItem) -> dict:
    order = item.custom_order
    return {
        "id": item.id,
        "garment_type": item.garment_type,
        "description": item.description,
        "quantity": item.quantity,
        "status": item.status,
        "fabric_details": item.fabric_details,
        "notes": item.notes,
        "estimated_hours": item.estimated_hours,
        "actual_hours": item.actual_hours,
        "started_at": item.started_at,
        "tailor": {"id": item.tailor.id, "name": item.tailor.name} if item.tailor else None,
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "priority": order.priority,
            "pickup_date": order.pickup_date,
            "customer_name": order.customer.name if order.customer else None,
        },
    }


class ProductionService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def production_board(self, current_user: User, tailor_id: Optional[uuid.UUID] = None) -> dict:
        """Cards ordered by priority (VIP first), pickup date, then creation."""
        if current_user.role == UserRole.TAILOR.value:
            tailor_id = current_user.id

        query = (
            select(CustomOrderItem)
            .join(CustomOrderItem.custom_order)
            .options(contains_eager(CustomOrderItem.custom_order))
            .where(
                CustomOrder.status.not_in(CLOSED_ORDER_STATUSES),
                CustomOrderItem.status.in_(BOARD_COLUMNS),
            )
            .order_by(PRIORITY_RANK, CustomOrder.pickup_date.asc(), CustomOrderItem.created_at.asc())
        )
        if tailor_id:
            query = query.where(CustomOrderItem.tailor_id == tailor_id)

        result = await self.db.execute(query)
        items = list(result.unique().scalars().all())

        columns = {status: [] for status in BOARD_COLUMNS}
        for item in items:
            columns[item.status].append(_card(item))

        return {
            "columns": [
                {"status": status, "label": ITEM_STATUS_LABELS[status], "cards": columns[status]}
                for status in BOARD_COLUMNS
            ],
            "tailors": await self.tailors_with_workload(),
            "stats": {
                "total": len(items),
                "by_status": {status: len(cards) for status, cards in columns.items()},
                "urgent": sum(1 for i in items if i.custom_order.priority != CustomOrderPriority.NORMAL.value),
                "unassigned": sum(1 for i in items if i.tailor_id is None),
            },
        }

    async def tailors_with_workload(self) -> list[dict]:
        """Active tailors with the number of garments they still have to finish."""
        active_items = (
            select(CustomOrderItem.tailor_id, func.count(CustomOrderItem.id).label("active_items"))
            .join(CustomOrder, CustomOrder.id == CustomOrderItem.custom_order_id)
            .where(
                CustomOrder.status.not_in(CLOSED_ORDER_STATUSES),
                CustomOrderItem.status.not_in(sorted(DONE_ITEM_STATUSES)),
            )
            .group_by(CustomOrderItem.tailor_id)
            .subquery()
        )
        result = await self.db.execute(
            select(User, func.coalesce(active_items.c.active_items, 0))
            .outerjoin(active_items, active_items.c.tailor_id == User.id)
            .where(User.role == UserRole.TAILOR.value, User.is_active == True)  # noqa: E712
            .order_by(User.name)
        )
        return [
            {"id": user.id, "name": user.name, "phone": user.phone, "active_items": count}
            for user, count in result.all()
        ]

    async def move_card(self, item_id: uuid.UUID, status: str, current_user: User) -> CustomOrderItem:
        if not current_user.is_staff:
            raise PermissionDeniedError("Staff only")
        item = await CustomOrderService(self.db).update_item(item_id, {"status": status}, current_user)
        logger.info(f"Card {item_id} moved to {item.status} by {current_user.name}")
        return item
