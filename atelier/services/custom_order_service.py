"""
Tailoring (sur-mesure) orders.

A custom order is numbered SM-DDMMYY-NNNN and gets its invoice at
creation. Every payment on the order is mirrored as an InvoicePayment
(reference CP-<last 8 of the payment id>) with its own receipt, so the
invoice and the order always agree on what was paid.

Garments move through the workshop following ITEM_TRANSITIONS; the order
status follows its garments (PENDING -> IN_PRODUCTION -> READY).
"""
import logging
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.dates import utc_now
from atelier.core.exceptions import NotFoundError, BusinessRuleError, PermissionDeniedError
from atelier.database import ensure_loaded
from atelier.models.custom_order import (
    CustomOrder,
    CustomOrderItem,
    CustomOrderPayment,
    CustomOrderTimeline,
    CustomOrderStatus,
    CustomOrderPriority,
    CustomPaymentType,
    ItemStatus,
    Measurement,
)
from atelier.models.document_sequence import DocumentType
from atelier.models.invoice import Receipt
from atelier.models.notification import NotificationTrigger
from atelier.models.user import User, UserRole
from atelier.services.document_sequence_service import DocumentSequenceService
from atelier.services.invoice_service import InvoiceService, CLOSED_STATUSES, to_invoice_payment_method
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ORDER_STATUS_LABELS = {
    CustomOrderStatus.PENDING.value: "En attente",
    CustomOrderStatus.IN_PRODUCTION.value: "En production",
    CustomOrderStatus.FITTING.value: "Essayage",
    CustomOrderStatus.ALTERATIONS.value: "Retouches",
    CustomOrderStatus.READY.value: "Prête",
    CustomOrderStatus.DELIVERED.value: "Livrée",
    CustomOrderStatus.CANCELLED.value: "Annulée",
}

ITEM_STATUS_LABELS = {
    ItemStatus.PENDING.value: "En attente",
    ItemStatus.CUTTING.value: "Coupe",
    ItemStatus.SEWING.value: "Couture",
    ItemStatus.FITTING.value: "Essayage",
    ItemStatus.ALTERATIONS.value: "Retouches",
    ItemStatus.FINISHING.value: "Finitions",
    ItemStatus.COMPLETED.value: "Terminé",
    ItemStatus.DELIVERED.value: "Livré",
}

PAYMENT_TYPE_LABELS = {
    CustomPaymentType.DEPOSIT.value: "Acompte",
    CustomPaymentType.INSTALLMENT.value: "Versement",
    CustomPaymentType.FINAL.value: "Solde",
}

# Allowed moves of a garment; staying in place is always accepted.
ITEM_TRANSITIONS = {
    ItemStatus.PENDING.value: {ItemStatus.CUTTING.value},
    ItemStatus.CUTTING.value: {ItemStatus.SEWING.value, ItemStatus.PENDING.value},
    ItemStatus.SEWING.value: {ItemStatus.FITTING.value, ItemStatus.FINISHING.value, ItemStatus.CUTTING.value},
    ItemStatus.FITTING.value: {ItemStatus.ALTERATIONS.value, ItemStatus.FINISHING.value, ItemStatus.SEWING.value},
    ItemStatus.ALTERATIONS.value: {ItemStatus.FITTING.value, ItemStatus.FINISHING.value, ItemStatus.SEWING.value},
    ItemStatus.FINISHING.value: {ItemStatus.COMPLETED.value, ItemStatus.ALTERATIONS.value},
    ItemStatus.COMPLETED.value: {ItemStatus.DELIVERED.value, ItemStatus.FINISHING.value},
    ItemStatus.DELIVERED.value: set(),
}

DONE_ITEM_STATUSES = {ItemStatus.COMPLETED.value, ItemStatus.DELIVERED.value}
TAILOR_EDITABLE_FIELDS = {"status", "actual_hours", "notes"}
ITEM_FIELDS = {
    "garment_type", "description", "quantity", "unit_price", "status", "tailor_id",
    "estimated_hours", "actual_hours", "fabric_details", "notes",
}


def can_transition(current: str, target: str) -> bool:
    return current == target or target in ITEM_TRANSITIONS.get(current, set())


class CustomOrderService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.invoices = InvoiceService(db)
        self.notifications = NotificationService(db)

    # ==================== Orders ====================

    async def get_custom_order(self, custom_order_id: uuid.UUID) -> CustomOrder:
        custom_order = await self.db.get(CustomOrder, custom_order_id)
        if custom_order is None:
            raise NotFoundError("Custom order not found")
        await ensure_loaded(self.db, custom_order, "customer", "items", "payments")
        return custom_order

    async def create_custom_order(
        self,
        customer_id: uuid.UUID,
        items: List[dict],
        pickup_date: Optional[date],
        user: Optional[User] = None,
        priority: str = CustomOrderPriority.NORMAL.value,
        measurements: Optional[dict] = None,
        measurement_name: Optional[str] = None,
        measurement_id: Optional[uuid.UUID] = None,
        deposit: Optional[Decimal] = None,
        deposit_method: str = "CASH",
        material_cost: Decimal = Decimal("0"),
        customer_notes: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> CustomOrder:
        """
        Create a custom order with its items, invoice and optional deposit.

        Raises:
            NotFoundError: unknown customer
            BusinessRuleError: no items or no pickup date
        """
        customer = await self.db.get(User, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        if not items:
            raise BusinessRuleError("At least one item is required")
        if not pickup_date:
            raise BusinessRuleError("Pickup date is required")

        if measurements:
            measurement = Measurement(
                customer_id=customer.id,
                name=measurement_name or f"Mesures du {utc_now().strftime('%d/%m/%Y')}",
                data=measurements,
                taken_by_id=user.id if user else None,
            )
            self.db.add(measurement)
            await self.db.flush()
            measurement_id = measurement.id

        lines = [self._build_item(item) for item in items]
        custom_order = CustomOrder(
            order_number=await DocumentSequenceService(self.db).get_next_number(DocumentType.CUSTOM_ORDER),
            customer_id=customer.id,
            customer=customer,
            measurement_id=measurement_id,
            status=CustomOrderStatus.PENDING.value,
            priority=CustomOrderPriority((priority or "NORMAL").upper()).value,
            pickup_date=pickup_date,
            customer_notes=customer_notes,
            internal_notes=internal_notes,
            total_cost=sum((line.line_total for line in lines), Decimal("0")),
            material_cost=Decimal(str(material_cost or 0)),
            created_by_id=user.id if user else None,
            items=lines,
            payments=[],
        )
        self.db.add(custom_order)
        await self.db.flush()

        await self.add_timeline_event(custom_order.id, "Commande créée", user=user)
        await self.invoices.create_from_custom_order(custom_order, customer)

        if deposit and Decimal(str(deposit)) > 0:
            await self.add_payment(
                custom_order.id,
                Decimal(str(deposit)),
                deposit_method,
                user=user,
                notify=False,
            )

        logger.info(f"Custom order {custom_order.order_number} created for {customer.name} ({custom_order.total_cost})")
        await self.notifications.send_notification(
            NotificationTrigger.CUSTOM_ORDER_CREATED,
            {"custom_order_id": custom_order.id, "user_id": customer.id},
        )
        return custom_order

    @staticmethod
    def _build_item(data: dict) -> CustomOrderItem:
        if not data.get("garment_type"):
            raise BusinessRuleError("Garment type is required")
        quantity = int(data.get("quantity") or 1)
        if quantity < 1:
            raise BusinessRuleError("Quantity must be at least 1")
        return CustomOrderItem(
            garment_type=data["garment_type"],
            description=data.get("description"),
            quantity=quantity,
            unit_price=Decimal(str(data.get("unit_price") or 0)),
            status=ItemStatus.PENDING.value,
            tailor_id=data.get("tailor_id"),
            estimated_hours=data.get("estimated_hours"),
            fabric_details=data.get("fabric_details"),
            notes=data.get("notes"),
        )

    async def list_custom_orders(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        tailor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if status:
            conditions.append(CustomOrder.status == status.upper())
        if priority:
            conditions.append(CustomOrder.priority == priority.upper())
        if tailor_id:
            conditions.append(CustomOrder.id.in_(
                select(CustomOrderItem.custom_order_id).where(CustomOrderItem.tailor_id == tailor_id)
            ))
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                CustomOrder.order_number.ilike(pattern),
                CustomOrder.customer_id.in_(
                    select(User.id).where(or_(User.name.ilike(pattern), User.phone.ilike(pattern)))
                ),
            ))
        if date_from:
            conditions.append(CustomOrder.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
        if date_to:
            conditions.append(CustomOrder.created_at <= datetime.combine(date_to, time.max, tzinfo=timezone.utc))

        total = await self.db.scalar(select(func.count(CustomOrder.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(CustomOrder)
            .where(*conditions)
            .order_by(CustomOrder.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        counts = await self.db.execute(
            select(CustomOrder.status, func.count(CustomOrder.id)).group_by(CustomOrder.status)
        )
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
            "status_counts": {status: count for status, count in counts.all()},
        }

    async def update_custom_order(
        self,
        custom_order_id: uuid.UUID,
        changes: dict,
        user: Optional[User] = None,
    ) -> CustomOrder:
        custom_order = await self.get_custom_order(custom_order_id)
        changes = dict(changes)

        new_status = changes.pop("status", None)
        if changes.get("priority"):
            changes["priority"] = CustomOrderPriority(changes["priority"].upper()).value
        for field, value in changes.items():
            setattr(custom_order, field, value)

        if new_status:
            await self._set_status(custom_order, CustomOrderStatus(new_status.upper()).value, user)
        await self.db.flush()
        return custom_order

    async def _set_status(self, custom_order: CustomOrder, new_status: str, user: Optional[User]) -> None:
        old_status = custom_order.status
        if new_status == old_status:
            return
        custom_order.status = new_status
        await self.add_timeline_event(
            custom_order.id,
            f"Statut : {ORDER_STATUS_LABELS[new_status]}",
            description=f"{ORDER_STATUS_LABELS.get(old_status, old_status)} → {ORDER_STATUS_LABELS[new_status]}",
            user=user,
        )
        logger.info(f"Custom order {custom_order.order_number}: {old_status} -> {new_status}")

        if new_status == CustomOrderStatus.READY.value:
            await self.notifications.send_notification(
                NotificationTrigger.CUSTOM_ORDER_READY,
                {"custom_order_id": custom_order.id, "user_id": custom_order.customer_id},
            )

    async def delete_custom_order(self, custom_order_id: uuid.UUID) -> None:
        custom_order = await self.get_custom_order(custom_order_id)
        if custom_order.status == CustomOrderStatus.DELIVERED.value:
            raise BusinessRuleError("A delivered order cannot be deleted")

        invoice = await self.invoices.get_for_custom_order(custom_order.id)
        if invoice is not None:
            await self.invoices.delete_invoice(invoice.id)
        await self.db.execute(delete(Receipt).where(Receipt.custom_order_id == custom_order.id))
        await self.db.execute(
            delete(CustomOrderTimeline).where(CustomOrderTimeline.custom_order_id == custom_order.id)
        )
        await self.db.delete(custom_order)
        await self.db.flush()
        logger.info(f"Custom order {custom_order.order_number} deleted")

    # ==================== Items ====================

    def _recompute_total(self, custom_order: CustomOrder) -> None:
        custom_order.total_cost = sum((item.line_total for item in custom_order.items), Decimal("0"))

    async def get_item(self, item_id: uuid.UUID) -> CustomOrderItem:
        item = await self.db.get(CustomOrderItem, item_id)
        if item is None:
            raise NotFoundError("Item not found")
        return item

    async def add_item(self, custom_order_id: uuid.UUID, data: dict, user: Optional[User] = None) -> CustomOrderItem:
        custom_order = await self.get_custom_order(custom_order_id)
        item = self._build_item(data)
        custom_order.items.append(item)
        self._recompute_total(custom_order)
        await self.db.flush()
        await self.add_timeline_event(custom_order.id, f"Article ajouté : {item.garment_type}", user=user)
        return item

    async def update_item(self, item_id: uuid.UUID, changes: dict, user: User) -> CustomOrderItem:
        """
        Update a garment.

        Raises:
            PermissionDeniedError: a tailor touching another tailor's item or
                a field other than status, actual_hours and notes
            BusinessRuleError: status move not allowed by ITEM_TRANSITIONS
        """
        item = await self.get_item(item_id)
        changes = {k: v for k, v in changes.items() if k in ITEM_FIELDS}

        if user.role == UserRole.TAILOR.value:
            if item.tailor_id != user.id:
                raise PermissionDeniedError("This item is not assigned to you")
            forbidden = set(changes) - TAILOR_EDITABLE_FIELDS
            if forbidden:
                raise PermissionDeniedError(f"Tailors cannot change: {', '.join(sorted(forbidden))}")

        custom_order = await self.get_custom_order(item.custom_order_id)

        new_status = changes.pop("status", None)
        if new_status:
            new_status = ItemStatus(new_status.upper()).value
            if not can_transition(item.status, new_status):
                raise BusinessRuleError(
                    f"Invalid status transition from {item.status} to {new_status}"
                )

        price_changed = "unit_price" in changes or "quantity" in changes
        for field, value in changes.items():
            setattr(item, field, value)
        if price_changed:
            item.quantity = int(item.quantity)
            item.unit_price = Decimal(str(item.unit_price))
            self._recompute_total(custom_order)

        if new_status and new_status != item.status:
            await self._move_item(custom_order, item, new_status, user)

        await self.db.flush()
        return item

    async def _move_item(self, custom_order: CustomOrder, item: CustomOrderItem, new_status: str, user: User) -> None:
        old_status = item.status
        item.status = new_status
        now = utc_now()
        if old_status == ItemStatus.PENDING.value and item.started_at is None:
            item.started_at = now
        if new_status in DONE_ITEM_STATUSES and item.completed_at is None:
            item.completed_at = now

        await self.add_timeline_event(
            custom_order.id,
            f"{item.garment_type}: {ITEM_STATUS_LABELS[new_status]}",
            user=user,
        )

        if (
            custom_order.status == CustomOrderStatus.PENDING.value
            and any(i.status != ItemStatus.PENDING.value for i in custom_order.items)
        ):
            await self._set_status(custom_order, CustomOrderStatus.IN_PRODUCTION.value, user)

        if (
            custom_order.status == CustomOrderStatus.IN_PRODUCTION.value
            and all(i.status in DONE_ITEM_STATUSES for i in custom_order.items)
        ):
            await self._set_status(custom_order, CustomOrderStatus.READY.value, user)

    async def delete_item(self, item_id: uuid.UUID, user: Optional[User] = None) -> CustomOrder:
        item = await self.get_item(item_id)
        custom_order = await self.get_custom_order(item.custom_order_id)
        garment = item.garment_type
        custom_order.items.remove(item)
        self._recompute_total(custom_order)
        await self.db.flush()
        await self.add_timeline_event(custom_order.id, f"Article supprimé : {garment}", user=user)
        return custom_order

    # ==================== Payments ====================

    async def add_payment(
        self,
        custom_order_id: uuid.UUID,
        amount: Decimal,
        payment_method: str = "CASH",
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user: Optional[User] = None,
        notify: bool = True,
    ) -> CustomOrderPayment:
        amount = Decimal(str(amount))
        if amount <= 0:
            raise BusinessRuleError("Payment amount must be greater than 0")

        custom_order = await self.get_custom_order(custom_order_id)
        new_balance = custom_order.balance - amount
        if new_balance <= 0:
            payment_type = CustomPaymentType.FINAL.value
        elif not custom_order.payments:
            payment_type = CustomPaymentType.DEPOSIT.value
        else:
            payment_type = CustomPaymentType.INSTALLMENT.value

        payment = CustomOrderPayment(
            amount=amount,
            payment_type=payment_type,
            payment_method=(payment_method or "CASH").upper(),
            reference=reference,
            notes=notes,
            paid_at=utc_now(),
            received_by_id=user.id if user else None,
        )
        custom_order.payments.append(payment)
        await self.db.flush()

        await self._sync_payment_to_invoice(custom_order, payment, user)
        await self.add_timeline_event(
            custom_order.id,
            f"{PAYMENT_TYPE_LABELS[payment_type]} reçu : {amount:.0f} CFA",
            description=f"Reste à payer : {max(new_balance, Decimal('0')):.0f} CFA",
            user=user,
        )
        logger.info(f"{payment_type} of {amount} on custom order {custom_order.order_number}")

        if notify:
            await self.notifications.send_notification(
                NotificationTrigger.CUSTOM_ORDER_PAYMENT,
                {"custom_order_id": custom_order.id, "user_id": custom_order.customer_id},
            )
        return payment

    async def _sync_payment_to_invoice(
        self,
        custom_order: CustomOrder,
        payment: CustomOrderPayment,
        user: Optional[User],
    ) -> None:
        invoice = await self.invoices.get_for_custom_order(custom_order.id)
        if invoice is None or invoice.status in CLOSED_STATUSES:
            logger.warning(
                f"Custom order {custom_order.order_number} has no open invoice, issuing a standalone receipt"
            )
            customer = custom_order.customer
            receipt = Receipt(
                receipt_number=await DocumentSequenceService(self.db).get_next_number(DocumentType.RECEIPT),
                invoice_id=invoice.id if invoice else None,
                custom_order_payment_id=payment.id,
                custom_order_id=custom_order.id,
                customer_name=customer.name,
                customer_phone=customer.phone,
                customer_email=customer.email,
                amount=payment.amount,
                payment_method=payment.payment_method,
                payment_date=payment.paid_at,
                created_by_id=user.id if user else None,
                created_by_name=user.name if user else None,
            )
            self.db.add(receipt)
            await self.db.flush()
            return

        invoice_payment = await self.invoices.add_invoice_payment(
            invoice.id,
            payment.amount,
            to_invoice_payment_method(payment.payment_method),
            reference=f"CP-{str(payment.id)[-8:]}",
            paid_at=payment.paid_at,
            notes=f"{PAYMENT_TYPE_LABELS[payment.payment_type]} commande {custom_order.order_number}",
            user=user,
            notify=False,
            create_receipt=False,
        )
        payment.invoice_payment_id = invoice_payment.id
        await self.invoices.create_receipt(invoice, invoice_payment, user, custom_order_payment_id=payment.id)

    async def delete_payment(self, payment_id: uuid.UUID, user: Optional[User] = None) -> CustomOrder:
        payment = await self.db.get(CustomOrderPayment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        custom_order = await self.get_custom_order(payment.custom_order_id)

        await self.db.execute(delete(Receipt).where(Receipt.custom_order_payment_id == payment.id))
        if payment.invoice_payment_id:
            await self.invoices.delete_invoice_payment(payment.invoice_payment_id)

        amount = payment.amount
        custom_order.payments.remove(payment)
        await self.db.flush()
        await self.add_timeline_event(
            custom_order.id,
            f"Paiement supprimé : {amount:.0f} CFA",
            user=user,
        )
        return custom_order

    async def payment_summary(self, custom_order_id: uuid.UUID) -> dict:
        custom_order = await self.get_custom_order(custom_order_id)
        return {
            "total_cost": custom_order.total_cost,
            "total_paid": custom_order.amount_paid,
            "balance": custom_order.balance,
            "is_paid_in_full": custom_order.balance <= 0,
            "payments": custom_order.payments,
        }

    # ==================== Timeline ====================

    async def list_timeline(self, custom_order_id: uuid.UUID) -> List[CustomOrderTimeline]:
        result = await self.db.execute(
            select(CustomOrderTimeline)
            .where(CustomOrderTimeline.custom_order_id == custom_order_id)
            .order_by(CustomOrderTimeline.created_at.desc())
        )
        return list(result.scalars().all())

    async def add_timeline_event(
        self,
        custom_order_id: uuid.UUID,
        event: str,
        description: Optional[str] = None,
        photos: Optional[list] = None,
        user: Optional[User] = None,
    ) -> CustomOrderTimeline:
        if not event:
            raise BusinessRuleError("Event is required")
        entry = CustomOrderTimeline(
            custom_order_id=custom_order_id,
            event=event,
            description=description,
            photos=photos or [],
            user_id=user.id if user else None,
            user_name=user.name if user else None,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    # ==================== Measurements ====================

    async def list_measurements(self, customer_id: uuid.UUID) -> List[Measurement]:
        result = await self.db.execute(
            select(Measurement)
            .where(Measurement.customer_id == customer_id)
            .order_by(Measurement.taken_at.desc())
        )
        return list(result.scalars().all())

    async def add_measurement(
        self,
        customer_id: uuid.UUID,
        data: dict,
        name: Optional[str] = None,
        notes: Optional[str] = None,
        user: Optional[User] = None,
    ) -> Measurement:
        if await self.db.get(User, customer_id) is None:
            raise NotFoundError("Customer not found")
        if not data:
            raise BusinessRuleError("Measurements are required")
        measurement = Measurement(
            customer_id=customer_id,
            name=name,
            data=data,
            notes=notes,
            taken_by_id=user.id if user else None,
        )
        self.db.add(measurement)
        await self.db.flush()
        return measurement

    async def latest_measurement(self, customer_id: uuid.UUID) -> Optional[Measurement]:
        return await self.db.scalar(
            select(Measurement)
            .where(Measurement.customer_id == customer_id)
            .order_by(Measurement.taken_at.desc())
            .limit(1)
        )
