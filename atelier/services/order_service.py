"""
Storefront checkout and order administration.

Prices always come from the catalog. Every stock change goes through
CatalogService.adjust_stock() and every status change leaves a private
note on the order.
"""
import logging
import random
import string
import uuid
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.dates import utc_now
from atelier.core.enum_utils import status_in
from atelier.core.exceptions import NotFoundError, BusinessRuleError, PermissionDeniedError
from atelier.database import ensure_loaded
from atelier.models.catalog import Product, StockMovementType
from atelier.models.notification import NotificationTrigger
from atelier.models.order import (
    Order,
    OrderItem,
    OrderNote,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    ShippingMethod,
    ShippingCostType,
    NoteType,
    Refund,
)
from atelier.models.payment import Payment
from atelier.models.user import User
from atelier.services.catalog_service import CatalogService
from atelier.services.coupon_service import CouponService, CartLine, compute_discount
from atelier.services.invoice_service import InvoiceService
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

STATUS_TRIGGERS = {
    OrderStatus.PROCESSING.value: NotificationTrigger.ORDER_PLACED,
    OrderStatus.SHIPPED.value: NotificationTrigger.ORDER_SHIPPED,
    OrderStatus.DELIVERED.value: NotificationTrigger.ORDER_DELIVERED,
    OrderStatus.CANCELLED.value: NotificationTrigger.ORDER_CANCELLED,
}


def generate_order_number() -> str:
    """DDMMYY-XXXXX, e.g. 181026-K3F9Q."""
    suffix = "".join(random.choices(_BASE36, k=5))
    return f"{utc_now().strftime('%d%m%y')}-{suffix}"


def build_shipping_address(address: Optional[dict]) -> dict:
    address = address or {}
    return {
        "quartier": address.get("quartier") or "",
        "cite": address.get("cite") or "",
        "rue": address.get("rue") or "",
        "city": address.get("city") or "Abidjan",
        "country": address.get("country") or "CI",
        "phone": address.get("phone") or "",
    }


class OrderService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)
        self.invoices = InvoiceService(db)
        self.notifications = NotificationService(db)

    # ==================== Checkout ====================

    async def _unique_order_number(self) -> str:
        for _ in range(5):
            number = generate_order_number()
            if not await self.db.scalar(select(Order.id).where(Order.order_number == number)):
                return number
        raise BusinessRuleError("Could not generate a unique order number")

    async def _shipping_cost(self, shipping_method_id: Optional[uuid.UUID]) -> Decimal:
        if not shipping_method_id:
            return Decimal("0")
        method = await self.db.get(ShippingMethod, shipping_method_id)
        if method is None or not method.is_active:
            raise BusinessRuleError("Invalid shipping method")
        if method.cost_type in (ShippingCostType.VARIABLE.value, ShippingCostType.FREE.value):
            return Decimal("0")
        return Decimal(method.cost)

    async def place_order(
        self,
        user: User,
        items: List[dict],
        address: Optional[dict],
        payment_method: str,
        shipping_method_id: Optional[uuid.UUID] = None,
        coupon_code: Optional[str] = None,
        billing_first_name: Optional[str] = None,
        billing_last_name: Optional[str] = None,
        billing_phone: Optional[str] = None,
        billing_email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create an order from a cart.

        Raises:
            BusinessRuleError: empty cart, unknown/inactive product, insufficient
                stock, invalid shipping method or coupon
        """
        if not items:
            raise BusinessRuleError("Cart is empty")
        try:
            method = PaymentMethod((payment_method or "").upper()).value
        except ValueError:
            raise BusinessRuleError(f"Invalid payment method: {payment_method}")

        quantities: dict[uuid.UUID, int] = {}
        for item in items:
            quantity = int(item.get("quantity") or 0)
            if quantity <= 0:
                raise BusinessRuleError("Quantity must be at least 1")
            product_id = uuid.UUID(str(item["product_id"]))
            quantities[product_id] = quantities.get(product_id, 0) + quantity

        result = await self.db.execute(select(Product).where(Product.id.in_(quantities.keys())))
        products = {p.id: p for p in result.scalars().all()}

        lines = []
        subtotal = Decimal("0")
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise BusinessRuleError(f"Product {product_id} is not available")
            if product.stock < quantity:
                raise BusinessRuleError(
                    f"Insufficient stock for {product.name}: {product.stock} available"
                )
            price = Decimal(product.price)
            subtotal += price * quantity
            lines.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                price=price,
                total=price * quantity,
            ))

        shipping_cost = await self._shipping_cost(shipping_method_id)

        coupon = None
        discount = Decimal("0")
        if coupon_code:
            coupons = CouponService(self.db)
            coupon = await coupons.validate(
                coupon_code,
                user_id=user.id,
                items=[CartLine(product_id=pid, quantity=qty, category_id=products[pid].category_id)
                       for pid, qty in quantities.items()],
            )
            discount = compute_discount(coupon, subtotal)

        shipping_address = build_shipping_address(address)
        shipping_address["phone"] = shipping_address["phone"] or billing_phone or user.phone or ""

        order = Order(
            order_number=await self._unique_order_number(),
            user_id=user.id,
            user=user,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=method,
            stock_released=False,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            discount=discount,
            tax=Decimal("0"),
            total=subtotal - discount + shipping_cost,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            shipping_method_id=shipping_method_id,
            shipping_address=shipping_address,
            billing_first_name=billing_first_name or user.first_name,
            billing_last_name=billing_last_name or user.last_name,
            billing_phone=billing_phone or user.phone,
            billing_email=billing_email or user.email,
            notes=notes,
            items=lines,
        )
        self.db.add(order)
        await self.db.flush()

        for line in lines:
            await self.catalog.adjust_stock(
                line.product_id,
                -line.quantity,
                StockMovementType.SALE,
                reason=f"Commande {order.order_number}",
                reference=order.order_number,
                user_id=user.id,
            )

        if coupon:
            await CouponService(self.db).record_usage(coupon, discount, user_id=user.id, order_id=order.id)

        invoice = await self.invoices.create_from_order(order)
        logger.info(f"Order {order.order_number} placed by {user.id}: {order.total} ({method})")

        await self.notifications.send_notification(NotificationTrigger.ORDER_PLACED, {"order_id": order.id})
        await self.notifications.send_notification(NotificationTrigger.NEW_ORDER_ADMIN, {"order_id": order.id})
        await self.notifications.send_notification(
            NotificationTrigger.INVOICE_CREATED,
            {"order_id": order.id, "invoice_number": invoice.invoice_number},
        )
        if method != PaymentMethod.CASH.value:
            await self.notifications.schedule_payment_reminders(order.id)
        return order

    # ==================== Customer ====================

    async def list_my_orders(self, user: User, page: int = 1, size: int = 20) -> dict:
        total = await self.db.scalar(select(func.count(Order.id)).where(Order.user_id == user.id)) or 0
        result = await self.db.execute(
            select(Order)
            .where(Order.user_id == user.id)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total, "page": page, "size": size,
                "pages": (total + size - 1) // size}

    async def get_my_order(self, user: User, order_id: uuid.UUID) -> Order:
        order = await self.get_order(order_id)
        if order.user_id != user.id:
            raise PermissionDeniedError("You do not have access to this order")
        return order

    # ==================== Admin ====================

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        await ensure_loaded(self.db, order, "items", "user")
        return order

    async def list_orders(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if status:
            conditions.append(Order.status == status.upper())
        if payment_status:
            conditions.append(Order.payment_status == payment_status.upper())
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                Order.order_number.ilike(pattern),
                Order.billing_first_name.ilike(pattern),
                Order.billing_last_name.ilike(pattern),
                Order.billing_phone.ilike(pattern),
            ))

        total = await self.db.scalar(select(func.count(Order.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        counts = await self.db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status))
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
            "status_counts": {status: count for status, count in counts.all()},
        }

    async def _add_system_note(self, order: Order, content: str, user: Optional[User]) -> OrderNote:
        note = OrderNote(
            order_id=order.id,
            content=content,
            note_type=NoteType.PRIVATE.value,
            author_id=user.id if user else None,
            author_name=user.name if user else "Système",
        )
        self.db.add(note)
        await self.db.flush()
        return note

    async def restore_stock(self, order: Order, reason: str, user_id: Optional[uuid.UUID] = None) -> bool:
        """
        Put the stock reserved by an order back, at most once.

        Returns False when the stock of the order was already released.
        """
        if order.stock_released:
            logger.info(f"Stock of order {order.order_number} already released, nothing to restore")
            return False

        await ensure_loaded(self.db, order, "items")
        for item in order.items:
            product = await self.db.get(Product, item.product_id)
            if product is None:
                logger.warning(f"Cannot restore stock of deleted product {item.product_id} ({order.order_number})")
                continue
            await self.catalog.adjust_stock(
                item.product_id,
                item.quantity,
                StockMovementType.RETURN,
                reason=reason,
                reference=order.order_number,
                user_id=user_id,
            )
        order.stock_released = True
        await self.db.flush()
        return True

    async def reserve_stock(self, order: Order, reason: str, user_id: Optional[uuid.UUID] = None) -> bool:
        """
        Take the stock of an order again after it was released.

        Nothing is taken unless every line is available.

        Raises:
            BusinessRuleError: a product is gone or no longer in stock
        """
        if not order.stock_released:
            return False

        await ensure_loaded(self.db, order, "items")
        for item in order.items:
            product = await self.db.get(Product, item.product_id)
            if product is None:
                raise BusinessRuleError(f"Product {item.product_name} is no longer available")
            await self.db.refresh(product, attribute_names=["stock"])
            if product.stock < item.quantity:
                raise BusinessRuleError(
                    f"Insufficient stock for {product.name}: {product.stock} available"
                )

        for item in order.items:
            await self.catalog.adjust_stock(
                item.product_id,
                -item.quantity,
                StockMovementType.SALE,
                reason=reason,
                reference=order.order_number,
                user_id=user_id,
            )
        order.stock_released = False
        await self.db.flush()
        logger.info(f"Stock of order {order.order_number} reserved again")
        return True

    async def update_order(
        self,
        order_id: uuid.UUID,
        user: Optional[User] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
        send_notification: bool = True,
    ) -> Order:
        order = await self.get_order(order_id)

        if tracking_number is not None:
            order.tracking_number = tracking_number
        if notes is not None:
            order.notes = notes

        if status:
            new_status = OrderStatus(status.upper()).value
            old_status = order.status
            if new_status != old_status:
                order.status = new_status
                await self._add_system_note(
                    order, f"Statut de commande changé de {old_status} à {new_status}", user
                )
                await self._on_status_change(order, old_status, new_status, user, send_notification)

        if payment_status:
            new_payment = PaymentStatus(payment_status.upper()).value
            old_payment = order.payment_status
            if new_payment != old_payment:
                order.payment_status = new_payment
                await self._add_system_note(
                    order, f"Statut de paiement changé de {old_payment} à {new_payment}", user
                )
                if new_payment == PaymentStatus.COMPLETED.value:
                    await self._on_payment_completed(order, send_notification)

        await self.db.flush()
        return order

    async def _on_status_change(
        self,
        order: Order,
        old_status: str,
        new_status: str,
        user: Optional[User],
        send_notification: bool,
    ) -> None:
        user_id = user.id if user else None
        if new_status == OrderStatus.CANCELLED.value:
            await self.restore_stock(order, f"Annulation {order.order_number}", user_id)
            await self.notifications.cancel_payment_reminders(order.id)
        elif new_status != OrderStatus.REFUNDED.value:
            await self.reserve_stock(order, f"Réouverture {order.order_number}", user_id)

        trigger = STATUS_TRIGGERS.get(new_status)
        if not send_notification or trigger is None:
            return

        data = {"order_id": order.id}
        if new_status == OrderStatus.SHIPPED.value:
            data["tracking_number"] = order.tracking_number or ""
        await self.notifications.send_notification(trigger, data)

        if new_status == OrderStatus.DELIVERED.value:
            await self.notifications.schedule_review_request(order.id)

    async def _on_payment_completed(self, order: Order, send_notification: bool) -> None:
        if not status_in(order.status, OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            await self.reserve_stock(order, f"Paiement reçu {order.order_number}")

        payment = await self.db.scalar(select(Payment).where(Payment.order_id == order.id))
        if payment is not None and payment.status != PaymentStatus.COMPLETED.value:
            payment.status = PaymentStatus.COMPLETED.value
            payment.transaction_date = payment.transaction_date or utc_now()

        invoice = await self.invoices.get_for_order(order.id)
        if invoice is not None:
            await self.invoices.mark_paid(invoice, order.payment_reference)

        await self.notifications.cancel_payment_reminders(order.id)
        if send_notification:
            await self.notifications.send_notification(NotificationTrigger.PAYMENT_RECEIVED, {"order_id": order.id})
            if invoice is not None:
                await self.notifications.send_notification(
                    NotificationTrigger.INVOICE_PAID,
                    {"order_id": order.id, "invoice_number": invoice.invoice_number},
                )

    async def delete_order(self, order_id: uuid.UUID) -> None:
        order = await self.get_order(order_id)
        invoice = await self.invoices.get_for_order(order.id)
        if invoice is not None:
            await self.invoices.delete_invoice(invoice.id)
        await self.db.execute(delete(Payment).where(Payment.order_id == order.id))
        await self.notifications.delete_scheduled_for_order(order.id)
        await self.db.delete(order)
        await self.db.flush()
        logger.info(f"Order {order.order_number} deleted")

    # ==================== Notes ====================

    async def list_notes(self, order_id: uuid.UUID) -> List[OrderNote]:
        await self.get_order(order_id)
        result = await self.db.execute(
            select(OrderNote).where(OrderNote.order_id == order_id).order_by(OrderNote.created_at.desc())
        )
        return list(result.scalars().all())

    async def add_note(
        self,
        order_id: uuid.UUID,
        content: str,
        note_type: str = NoteType.PRIVATE.value,
        user: Optional[User] = None,
    ) -> OrderNote:
        order = await self.get_order(order_id)
        if not content or not content.strip():
            raise BusinessRuleError("Note content is required")
        note = OrderNote(
            order_id=order.id,
            content=content.strip(),
            note_type=NoteType(note_type.upper()).value,
            author_id=user.id if user else None,
            author_name=user.name if user else None,
        )
        self.db.add(note)
        await self.db.flush()

        if note.note_type == NoteType.CUSTOMER.value:
            await self.notifications.send_notification(
                NotificationTrigger.CUSTOMER_NOTE,
                {"order_id": order.id, "note_content": note.content},
            )
        return note

    # ==================== Refunds ====================

    async def list_refunds(self, order_id: uuid.UUID) -> List[Refund]:
        await self.get_order(order_id)
        result = await self.db.execute(
            select(Refund).where(Refund.order_id == order_id).order_by(Refund.created_at.desc())
        )
        return list(result.scalars().all())

    async def refund(
        self,
        order_id: uuid.UUID,
        amount: Decimal,
        reason: Optional[str] = None,
        refund_type: str = "FULL",
        user: Optional[User] = None,
    ) -> Refund:
        """
        Record a refund.

        Raises:
            BusinessRuleError: amount <= 0 or above what is left to refund
        """
        order = await self.get_order(order_id)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise BusinessRuleError("Refund amount must be greater than 0")

        refunded = await self.db.scalar(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.order_id == order.id,
                Refund.status == "PROCESSED",
            )
        )
        refunded = Decimal(str(refunded or 0))
        if refunded + amount > Decimal(order.total):
            raise BusinessRuleError(
                f"Refund exceeds order total: {refunded} already refunded of {order.total}"
            )

        refund_type = (refund_type or "FULL").upper()
        refund = Refund(
            order_id=order.id,
            amount=amount,
            reason=reason or "Remboursement",
            refund_type=refund_type,
            status="PROCESSED",
            processed_by=user.id if user else None,
            processed_at=utc_now(),
        )
        self.db.add(refund)

        if refund_type == "FULL":
            order.status = OrderStatus.REFUNDED.value
            order.payment_status = PaymentStatus.REFUNDED.value
            await self.restore_stock(order, f"Remboursement {order.order_number}", user.id if user else None)

        await self._add_system_note(
            order,
            f"Remboursement {refund_type.lower()} de {amount:.0f} CFA. Motif : {refund.reason}",
            user,
        )
        await self.db.flush()

        await self.notifications.send_notification(
            NotificationTrigger.ORDER_REFUNDED,
            {"order_id": order.id, "refund_amount": f"{amount:.0f} CFA"},
        )
        logger.info(f"Refund of {amount} on order {order.order_number} ({refund_type})")
        return refund

    # ==================== Shipping methods ====================

    async def list_shipping_methods(self, active_only: bool = True) -> List[ShippingMethod]:
        query = select(ShippingMethod).order_by(ShippingMethod.cost)
        if active_only:
            query = query.where(ShippingMethod.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create_shipping_method(self, data: dict) -> ShippingMethod:
        method = ShippingMethod(**data)
        self.db.add(method)
        await self.db.flush()
        return method
