"""
Invoicing: invoices, their payments and receipts.

Invoices are numbered FAC-DDMMYY-NNNN and receipts REC-DDMMYY-NNNN from
the daily document sequences. amount_paid is always derived from the
InvoicePayment rows by recompute_invoice().
"""
import logging
import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.dates import utc_now
from atelier.core.enum_utils import get_enum_value, status_in, to_enum
from atelier.core.exceptions import NotFoundError, BusinessRuleError
from atelier.models.custom_order import CustomOrder
from atelier.models.document_sequence import DocumentType
from atelier.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoicePayment,
    InvoiceStatus,
    InvoicePaymentMethod,
    Receipt,
)
from atelier.models.notification import NotificationTrigger
from atelier.models.order import Order
from atelier.models.user import User
from atelier.services.document_sequence_service import DocumentSequenceService
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CLOSED_STATUSES = {
    InvoiceStatus.PAID.value,
    InvoiceStatus.CANCELLED.value,
    InvoiceStatus.REFUNDED.value,
}


def to_invoice_payment_method(method: Optional[str]) -> str:
    """Map an order/custom-order payment method onto InvoicePaymentMethod."""
    known = to_enum(method, InvoicePaymentMethod)
    if known is not None:
        return known.value
    if (get_enum_value(method) or "").upper() in ("STRIPE", "RAZORPAY"):
        return InvoicePaymentMethod.CARD.value
    return InvoicePaymentMethod.OTHER.value


class InvoiceService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sequences = DocumentSequenceService(db)

    # ==================== Creation ====================

    async def create_invoice(
        self,
        customer_name: str,
        items: List[dict],
        customer_id: Optional[uuid.UUID] = None,
        customer_phone: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_address: Optional[str] = None,
        tax: Decimal = Decimal("0"),
        discount: Decimal = Decimal("0"),
        shipping: Decimal = Decimal("0"),
        status: InvoiceStatus = InvoiceStatus.DRAFT,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
        custom_order_id: Optional[uuid.UUID] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """Create an invoice; total = items + tax + shipping - discount."""
        if not items:
            raise BusinessRuleError("An invoice needs at least one item")

        lines = []
        for item in items:
            quantity = int(item.get("quantity") or 1)
            unit_price = Decimal(str(item["unit_price"]))
            lines.append(InvoiceItem(
                description=item["description"],
                quantity=quantity,
                unit_price=unit_price,
                total=unit_price * quantity,
            ))

        subtotal = sum((line.total for line in lines), Decimal("0"))
        tax, discount, shipping = Decimal(str(tax or 0)), Decimal(str(discount or 0)), Decimal(str(shipping or 0))

        invoice = Invoice(
            invoice_number=await self.sequences.get_next_number(DocumentType.INVOICE),
            order_id=order_id,
            custom_order_id=custom_order_id,
            customer_id=customer_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            customer_address=customer_address,
            status=InvoiceStatus(status).value,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            shipping=shipping,
            total=subtotal + tax + shipping - discount,
            amount_paid=Decimal("0"),
            issue_date=issue_date or utc_now().date(),
            due_date=due_date,
            notes=notes,
            created_by_id=created_by_id,
            items=lines,
            payments=[],
        )
        self.db.add(invoice)
        await self.db.flush()
        logger.info(f"Created invoice {invoice.invoice_number} ({invoice.total})")
        return invoice

    async def create_from_order(self, order: Order) -> Invoice:
        address = order.shipping_address or {}
        return await self.create_invoice(
            customer_name=order.billing_name or "Client",
            customer_id=order.user_id,
            customer_phone=order.billing_phone,
            customer_email=order.billing_email,
            customer_address=", ".join(
                part for part in (address.get("quartier"), address.get("cite"), address.get("rue"), address.get("city")) if part
            ) or None,
            items=[
                {"description": item.product_name, "quantity": item.quantity, "unit_price": item.price}
                for item in order.items
            ],
            tax=order.tax,
            discount=order.discount,
            shipping=order.shipping_cost,
            status=InvoiceStatus.SENT,
            order_id=order.id,
        )

    async def create_from_custom_order(self, custom_order: CustomOrder, customer: User) -> Invoice:
        items = [
            {
                "description": f"{item.garment_type} - {item.description}" if item.description else item.garment_type,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
            }
            for item in custom_order.items
        ]
        if custom_order.material_cost and Decimal(custom_order.material_cost) > 0:
            items.append({"description": "Coût matériaux", "quantity": 1, "unit_price": custom_order.material_cost})

        return await self.create_invoice(
            customer_name=customer.name,
            customer_id=customer.id,
            customer_phone=customer.phone,
            customer_email=customer.email,
            items=items,
            status=InvoiceStatus.SENT,
            due_date=custom_order.pickup_date,
            notes=f"Commande sur-mesure {custom_order.order_number}",
            custom_order_id=custom_order.id,
            created_by_id=custom_order.created_by_id,
        )

    # ==================== Queries ====================

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    async def get_for_order(self, order_id: uuid.UUID) -> Optional[Invoice]:
        return await self.db.scalar(select(Invoice).where(Invoice.order_id == order_id).limit(1))

    async def get_for_custom_order(self, custom_order_id: uuid.UUID) -> Optional[Invoice]:
        return await self.db.scalar(
            select(Invoice).where(Invoice.custom_order_id == custom_order_id).limit(1)
        )

    async def list_invoices(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if status:
            conditions.append(Invoice.status == status.upper())
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                Invoice.invoice_number.ilike(pattern),
                Invoice.customer_name.ilike(pattern),
                Invoice.customer_phone.ilike(pattern),
            ))

        total = await self.db.scalar(select(func.count(Invoice.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
            "stats": await self.invoice_stats(),
        }

    async def invoice_stats(self) -> dict:
        rows = await self.db.execute(
            select(
                Invoice.status,
                func.count(Invoice.id),
                func.coalesce(func.sum(Invoice.total), 0),
                func.coalesce(func.sum(Invoice.amount_paid), 0),
            ).group_by(Invoice.status)
        )
        by_status = {}
        total_invoiced = Decimal("0")
        total_paid = Decimal("0")
        outstanding = Decimal("0")
        for status, count, total, paid in rows.all():
            total, paid = Decimal(str(total)), Decimal(str(paid))
            by_status[status] = {"count": count, "total": total}
            if status_in(status, InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED):
                continue
            total_invoiced += total
            total_paid += paid
            if status != InvoiceStatus.DRAFT.value:
                outstanding += max(total - paid, Decimal("0"))

        return {
            "count": sum(v["count"] for v in by_status.values()),
            "by_status": by_status,
            "total_invoiced": total_invoiced,
            "total_paid": total_paid,
            "outstanding": outstanding,
        }

    # ==================== Updates ====================

    async def update_invoice(
        self,
        invoice_id: uuid.UUID,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        if status:
            invoice.status = InvoiceStatus(status.upper()).value
            if invoice.status == InvoiceStatus.PAID.value and not invoice.paid_date:
                invoice.paid_date = utc_now()
        if notes is not None:
            invoice.notes = notes
        if due_date is not None:
            invoice.due_date = due_date
        await self.db.flush()
        return invoice

    async def send_invoice(self, invoice_id: uuid.UUID) -> dict:
        """(Re)send INVOICE_CREATED to the customer of the invoice."""
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.DRAFT.value:
            invoice.status = InvoiceStatus.SENT.value
            await self.db.flush()
        return await NotificationService(self.db).send_notification(
            NotificationTrigger.INVOICE_CREATED,
            self._notification_data(invoice),
        )

    @staticmethod
    def _notification_data(invoice: Invoice) -> dict:
        data = {
            "invoice_number": invoice.invoice_number,
            "customer_name": invoice.customer_name,
            "order_total": f"{invoice.total:.0f} CFA",
        }
        if invoice.order_id:
            data["order_id"] = invoice.order_id
        if invoice.custom_order_id:
            data["custom_order_id"] = invoice.custom_order_id
        if invoice.customer_phone:
            data["recipient_phone"] = invoice.customer_phone
        if invoice.customer_email:
            data["recipient_email"] = invoice.customer_email
        return data

    async def mark_paid(self, invoice: Invoice, reference: Optional[str] = None) -> Invoice:
        """Settle an order invoice once the order itself is paid."""
        if status_in(invoice.status, InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED):
            return invoice
        invoice.status = InvoiceStatus.PAID.value
        invoice.amount_paid = invoice.total
        invoice.paid_date = invoice.paid_date or utc_now()
        if reference:
            invoice.payment_reference = reference
        await self.db.flush()
        return invoice

    async def delete_invoice(self, invoice_id: uuid.UUID) -> None:
        invoice = await self.get_invoice(invoice_id)
        await self.db.execute(delete(Receipt).where(Receipt.invoice_id == invoice.id))
        await self.db.delete(invoice)
        await self.db.flush()

    # ==================== Payments ====================

    async def add_invoice_payment(
        self,
        invoice_id: uuid.UUID,
        amount: Decimal,
        payment_method: str,
        reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        user: Optional[User] = None,
        notify: bool = True,
        create_receipt: bool = True,
    ) -> InvoicePayment:
        """
        Record a payment against an invoice and issue its receipt.

        Raises:
            BusinessRuleError: non-positive amount or closed invoice
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise BusinessRuleError("Payment amount must be greater than 0")

        invoice = await self.get_invoice(invoice_id)
        if invoice.status in CLOSED_STATUSES:
            raise BusinessRuleError(f"Cannot add a payment to a {invoice.status} invoice")

        if amount > invoice.balance_due:
            logger.warning(
                f"Overpayment on invoice {invoice.invoice_number}: {amount} paid, {invoice.balance_due} due"
            )

        payment = InvoicePayment(
            amount=amount,
            payment_method=to_invoice_payment_method(payment_method),
            reference=reference,
            paid_at=paid_at or utc_now(),
            notes=notes,
            created_by_id=user.id if user else None,
        )
        invoice.payments.append(payment)
        await self.db.flush()

        if create_receipt:
            await self.create_receipt(invoice, payment, user)

        was_paid = invoice.status == InvoiceStatus.PAID.value
        await self.recompute_invoice(invoice.id)
        logger.info(f"Payment of {amount} recorded on invoice {invoice.invoice_number} -> {invoice.status}")

        if notify and not was_paid and invoice.status == InvoiceStatus.PAID.value:
            await NotificationService(self.db).send_notification(
                NotificationTrigger.INVOICE_PAID,
                self._notification_data(invoice),
            )
        return payment

    async def get_invoice_payment(self, payment_id: uuid.UUID) -> InvoicePayment:
        payment = await self.db.get(InvoicePayment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    async def delete_invoice_payment(self, payment_id: uuid.UUID) -> Invoice:
        payment = await self.get_invoice_payment(payment_id)
        invoice = await self.get_invoice(payment.invoice_id)

        await self.db.execute(delete(Receipt).where(Receipt.invoice_payment_id == payment.id))
        invoice.payments.remove(payment)
        await self.db.flush()
        return await self.recompute_invoice(invoice.id)

    async def recompute_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        """amount_paid = sum of payments; status follows, except DRAFT/CANCELLED/REFUNDED."""
        invoice = await self.get_invoice(invoice_id)
        paid = await self.db.scalar(
            select(func.coalesce(func.sum(InvoicePayment.amount), 0)).where(InvoicePayment.invoice_id == invoice.id)
        )
        paid = Decimal(str(paid or 0))
        invoice.amount_paid = paid

        if not status_in(invoice.status, InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED):
            total = Decimal(invoice.total or 0)
            if total > 0 and paid >= total:
                invoice.status = InvoiceStatus.PAID.value
                invoice.paid_date = invoice.paid_date or utc_now()
            elif paid > 0:
                invoice.status = InvoiceStatus.PARTIAL.value
                invoice.paid_date = None
            elif invoice.status != InvoiceStatus.DRAFT.value:
                invoice.status = InvoiceStatus.SENT.value
                invoice.paid_date = None

        await self.db.flush()
        return invoice

    # ==================== Receipts ====================

    async def create_receipt(
        self,
        invoice: Invoice,
        payment: InvoicePayment,
        user: Optional[User] = None,
        custom_order_payment_id: Optional[uuid.UUID] = None,
    ) -> Receipt:
        receipt = Receipt(
            receipt_number=await self.sequences.get_next_number(DocumentType.RECEIPT),
            invoice_id=invoice.id,
            invoice_payment_id=payment.id,
            custom_order_payment_id=custom_order_payment_id,
            custom_order_id=invoice.custom_order_id,
            customer_name=invoice.customer_name,
            customer_phone=invoice.customer_phone,
            customer_email=invoice.customer_email,
            amount=payment.amount,
            payment_method=payment.payment_method,
            payment_date=payment.paid_at,
            created_by_id=user.id if user else None,
            created_by_name=user.name if user else None,
        )
        self.db.add(receipt)
        await self.db.flush()
        return receipt

    async def list_receipts(
        self,
        invoice_id: Optional[uuid.UUID] = None,
        custom_order_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if invoice_id:
            conditions.append(Receipt.invoice_id == invoice_id)
        if custom_order_id:
            conditions.append(Receipt.custom_order_id == custom_order_id)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Receipt.receipt_number.ilike(pattern), Receipt.customer_name.ilike(pattern)))

        total = await self.db.scalar(select(func.count(Receipt.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Receipt)
            .where(*conditions)
            .order_by(Receipt.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total, "page": page, "size": size,
                "pages": (total + size - 1) // size}

    async def get_receipt(self, receipt_id: uuid.UUID) -> Receipt:
        receipt = await self.db.get(Receipt, receipt_id)
        if receipt is None:
            raise NotFoundError("Receipt not found")
        return receipt
