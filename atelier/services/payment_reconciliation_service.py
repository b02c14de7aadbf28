"""
Reconciliation of gateway payments with orders and invoices.

A gateway may notify the same transaction several times and in any
order. Reconciliation is idempotent:

- a COMPLETED payment is never downgraded nor processed twice,
- the stock of an order is released once, whatever the number of
  failed notifications, and taken again when the payment is retried.

References starting with ``INV_`` are payment links of invoices and are
settled as InvoicePayment rows instead of order payments.
References starting with ``PAY_`` are free-amount payment links
(StandalonePayment).
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any, Dict

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.config import settings
from atelier.core.dates import utc_now
from atelier.core.enum_utils import status_in
from atelier.core.exceptions import (
    NotFoundError,
    BusinessRuleError,
    PermissionDeniedError,
    PaymentGatewayError,
)
from atelier.models.invoice import Invoice, InvoicePayment
from atelier.models.notification import NotificationTrigger
from atelier.models.order import Order, OrderStatus, PaymentStatus, PaymentMethod
from atelier.models.payment import Payment, PaymentProvider, StandalonePayment
from atelier.models.user import User
from atelier.services.invoice_service import InvoiceService, CLOSED_STATUSES
from atelier.services.notification_service import NotificationService, format_cfa
from atelier.services.order_service import OrderService
from atelier.services.payment_service import (
    PaiementProInitRequest,
    WebhookEvent,
    generate_reference,
    get_paiementpro_client,
    get_razorpay_gateway,
    map_channel,
    channel_display_name,
    format_phone,
    verify_hashcode,
)

logger = logging.getLogger(__name__)

INVOICE_REFERENCE_PREFIX = "INV_"
STANDALONE_REFERENCE_PREFIX = "PAY_"


def _parse_transaction_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable transaction date {value!r}, using now")
    return utc_now()


class PaymentReconciliationService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.orders = OrderService(db)
        self.invoices = InvoiceService(db)
        self.notifications = NotificationService(db)

    # ==================== Initialization ====================

    async def initialize_payment(
        self,
        user: User,
        order_id: uuid.UUID,
        channel: Optional[str] = None,
        tenant: Optional[str] = None,
    ) -> dict:
        """
        Start (or restart) the gateway payment of an order.

        Raises:
            NotFoundError: unknown order
            PermissionDeniedError: order of another customer
            BusinessRuleError: order already paid or cancelled, or its released
                stock is no longer available for a retry
            PaymentGatewayError: gateway refused the initialization
        """
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.user_id != user.id and not user.is_staff:
            raise PermissionDeniedError("You do not have access to this order")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            raise BusinessRuleError("Order is already paid")
        if order.status == OrderStatus.CANCELLED.value:
            raise BusinessRuleError("Order is cancelled")
        reserved = await self.orders.reserve_stock(
            order, f"Nouvelle tentative de paiement {order.order_number}", user.id
        )

        use_razorpay = settings.PAYMENT_GATEWAY.lower() == "razorpay"
        provider = PaymentProvider.RAZORPAY if use_razorpay else PaymentProvider.PAIEMENTPRO
        reference = generate_reference("ORD")

        payment = await self.db.scalar(select(Payment).where(Payment.order_id == order.id))
        if payment is None:
            payment = Payment(order_id=order.id, provider=provider.value, reference=reference, amount=order.total)
            self.db.add(payment)
        payment.provider = provider.value
        payment.reference = reference
        payment.amount = order.total
        payment.status = PaymentStatus.PENDING.value
        payment.channel = channel
        payment.webhook_received = False

        order.payment_reference = reference
        if channel:
            order.payment_method = map_channel(channel)
        else:
            order.payment_method = PaymentMethod.RAZORPAY.value if use_razorpay else PaymentMethod.PAIEMENTPRO.value
        await self.db.flush()

        if use_razorpay:
            razorpay_order = get_razorpay_gateway().create_order(order.id, reference, Decimal(order.total))
            payment.provider_order_id = razorpay_order["id"]
            await self.db.flush()
            return {
                "gateway": "razorpay",
                "reference": reference,
                "key_id": settings.RAZORPAY_KEY_ID,
                "razorpay_order_id": razorpay_order["id"],
                "amount": razorpay_order["amount"],
                "currency": razorpay_order["currency"],
                "name": settings.STORE_NAME,
                "description": f"Commande {order.order_number}",
                "stock_reserved": reserved,
            }

        result = await get_paiementpro_client().initialize(PaiementProInitRequest(
            amount=order.total,
            reference=reference,
            description=f"Commande {order.order_number}",
            channel=channel or "",
            customer_email=order.billing_email,
            customer_first_name=order.billing_first_name or "",
            customer_last_name=order.billing_last_name or "",
            customer_phone=order.billing_phone or "",
            return_context={"order_id": str(order.id), "order_number": order.order_number},
            tenant=tenant,
        ))
        if not result["success"]:
            raise PaymentGatewayError(result.get("error") or "Payment initialization failed")

        logger.info(f"Payment {reference} initialized for order {order.order_number}")
        return {
            "gateway": "paiementpro",
            "reference": reference,
            "payment_url": result["url"],
            "stock_reserved": reserved,
        }

    async def initialize_invoice_payment(
        self,
        invoice_id: uuid.UUID,
        channel: Optional[str] = None,
        tenant: Optional[str] = None,
    ) -> dict:
        """Payment link for the balance of an invoice; settled through the INV_ reference."""
        invoice = await self.invoices.get_invoice(invoice_id)
        if invoice.status in CLOSED_STATUSES:
            raise BusinessRuleError(f"Invoice is {invoice.status}")
        balance = invoice.balance_due
        if balance <= 0:
            raise BusinessRuleError("Invoice has no balance due")

        reference = f"{INVOICE_REFERENCE_PREFIX}{generate_reference('PAY').replace('-', '')}"
        invoice.payment_reference = reference
        await self.db.flush()

        first_name, _, last_name = (invoice.customer_name or "").partition(" ")
        result = await get_paiementpro_client().initialize(PaiementProInitRequest(
            amount=balance,
            reference=reference,
            description=f"Facture {invoice.invoice_number}",
            channel=channel or "",
            customer_email=invoice.customer_email,
            customer_first_name=first_name,
            customer_last_name=last_name,
            customer_phone=invoice.customer_phone or "",
            return_context={"invoice_id": str(invoice.id)},
            tenant=tenant,
        ))
        if not result["success"]:
            raise PaymentGatewayError(result.get("error") or "Payment initialization failed")
        return {"reference": reference, "payment_url": result["url"], "amount": balance}

    async def initialize_standalone_payment(
        self,
        amount: Decimal,
        customer_name: str,
        customer_phone: str,
        channel: Optional[str] = None,
        tenant: Optional[str] = None,
    ) -> dict:
        """
        Free-amount payment link, not tied to an order or an invoice.

        Raises:
            BusinessRuleError: invalid amount, name or phone number
            PaymentGatewayError: gateway refused the initialization
        """
        amount = Decimal(str(amount or 0))
        if amount <= 0:
            raise BusinessRuleError("Montant invalide")
        customer_name = (customer_name or "").strip()
        if len(customer_name) < 2:
            raise BusinessRuleError("Nom invalide")
        phone = format_phone(customer_phone)
        if len(phone) < 10:
            raise BusinessRuleError("Numéro de téléphone invalide")

        reference = f"{STANDALONE_REFERENCE_PREFIX}{generate_reference('STD').replace('-', '')}"
        first_name, _, last_name = customer_name.partition(" ")
        result = await get_paiementpro_client().initialize(PaiementProInitRequest(
            amount=amount,
            reference=reference,
            description=f"Paiement {format_cfa(amount)}",
            channel=channel or "",
            customer_first_name=first_name,
            customer_last_name=last_name or first_name,
            customer_phone=phone,
            return_context={"type": "standalone", "reference": reference},
            tenant=tenant,
        ))
        if not result["success"]:
            raise PaymentGatewayError(result.get("error") or "Payment initialization failed")

        payment = StandalonePayment(
            reference=reference,
            amount=amount,
            customer_name=customer_name,
            customer_phone=phone,
            description=f"Paiement {format_cfa(amount)}",
            channel=channel,
            status=PaymentStatus.PENDING.value,
        )
        self.db.add(payment)
        await self.db.flush()
        logger.info(f"Standalone payment {reference} initialized: {amount} for {customer_name}")
        return {"gateway": "paiementpro", "reference": reference, "payment_url": result["url"], "amount": amount}

    async def payment_status(self, reference: str) -> dict:
        payment = await self.db.scalar(select(Payment).where(Payment.reference == reference))
        if payment is None:
            raise NotFoundError("Payment not found")

        status = {
            "reference": payment.reference,
            "status": payment.status,
            "amount": payment.amount,
            "channel": payment.channel,
            "channel_name": channel_display_name(payment.channel) if payment.channel else None,
            "transaction_date": payment.transaction_date,
            "order_id": payment.order_id,
        }
        if payment.provider == PaymentProvider.PAIEMENTPRO.value and payment.status == PaymentStatus.PENDING.value:
            status["gateway"] = await get_paiementpro_client().check_status(reference)
        return status

    # ==================== Webhooks ====================

    async def handle_paiementpro_webhook(self, payload: Dict[str, Any]) -> dict:
        """
        Apply a PaiementPro notification.

        Raises:
            PermissionDeniedError: invalid hashcode while a secret is configured
            NotFoundError: reference matches no payment, invoice or payment link
        """
        secret = settings.PAIEMENTPRO_SECRET_KEY
        if secret and not verify_hashcode(payload, secret):
            logger.warning(f"Invalid PaiementPro hashcode for {payload.get('referenceNumber')}")
            raise PermissionDeniedError("Invalid hashcode")

        reference = payload.get("referenceNumber")
        if not reference:
            raise BusinessRuleError("Missing referenceNumber")

        success = str(payload.get("responsecode")) == "0"
        channel = payload.get("channel")
        logger.info(f"PaiementPro webhook for {reference}: responsecode={payload.get('responsecode')}")

        payment = await self.db.scalar(select(Payment).where(Payment.reference == reference))
        if payment is not None:
            return await self.reconcile_order_payment(
                payment,
                success=success,
                channel=channel,
                transaction_date=payload.get("transactiondt") or payload.get("date"),
                raw=dict(payload),
            )

        invoice = await self.db.scalar(select(Invoice).where(Invoice.payment_reference == reference))
        if invoice is not None:
            return await self.reconcile_invoice_payment(
                invoice,
                reference=reference,
                success=success,
                amount=payload.get("amount"),
                channel=channel,
            )

        if reference.startswith(STANDALONE_REFERENCE_PREFIX):
            standalone = await self.db.scalar(
                select(StandalonePayment).where(StandalonePayment.reference == reference)
            )
            if standalone is not None:
                return await self.reconcile_standalone_payment(standalone, success=success, payload=payload)

        logger.warning(f"PaiementPro webhook for unknown reference {reference}")
        raise NotFoundError("Payment not found")

    async def handle_razorpay_webhook(self, event: Dict[str, Any]) -> dict:
        """Map payment.captured / payment.failed onto the order reconciliation."""
        event_type = event.get("event")
        entity = (((event.get("payload") or {}).get("payment") or {}).get("entity")) or {}
        if event_type not in (WebhookEvent.PAYMENT_CAPTURED, WebhookEvent.PAYMENT_FAILED):
            logger.info(f"Ignoring Razorpay event {event_type}")
            return {"status": "ignored", "event": event_type}

        razorpay_order_id = entity.get("order_id")
        reference = (entity.get("notes") or {}).get("reference")
        payment = None
        if razorpay_order_id:
            payment = await self.db.scalar(select(Payment).where(Payment.provider_order_id == razorpay_order_id))
        if payment is None and reference:
            payment = await self.db.scalar(select(Payment).where(Payment.reference == reference))
        if payment is None:
            logger.warning(f"Razorpay webhook for unknown order {razorpay_order_id}")
            raise NotFoundError("Payment not found")

        return await self.reconcile_order_payment(
            payment,
            success=event_type == WebhookEvent.PAYMENT_CAPTURED,
            channel="CARD" if entity.get("method") == "card" else entity.get("method"),
            transaction_date=None,
            raw=entity,
        )

    async def confirm_razorpay_payment(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> dict:
        """Checkout callback from the browser, verified with the payment signature."""
        if not get_razorpay_gateway().verify_payment_signature(razorpay_order_id, razorpay_payment_id, signature):
            raise PermissionDeniedError("Invalid payment signature")
        payment = await self.db.scalar(select(Payment).where(Payment.provider_order_id == razorpay_order_id))
        if payment is None:
            raise NotFoundError("Payment not found")
        return await self.reconcile_order_payment(
            payment,
            success=True,
            channel="CARD",
            transaction_date=None,
            raw={"razorpay_payment_id": razorpay_payment_id, "razorpay_order_id": razorpay_order_id},
        )

    # ==================== Reconciliation ====================

    async def reconcile_order_payment(
        self,
        payment: Payment,
        success: bool,
        channel: Optional[str] = None,
        transaction_date: Any = None,
        raw: Optional[dict] = None,
    ) -> dict:
        if payment.status == PaymentStatus.COMPLETED.value:
            logger.info(f"Payment {payment.reference} already completed, duplicate notification")
            return {"status": "ok", "duplicate": True, "reference": payment.reference}

        order = await self.orders.get_order(payment.order_id)
        payment.webhook_received = True
        payment.provider_response = raw
        if channel:
            payment.channel = channel

        if success:
            payment.status = PaymentStatus.COMPLETED.value
            payment.transaction_date = _parse_transaction_date(transaction_date)

            order.payment_status = PaymentStatus.COMPLETED.value
            reserved = False
            if order.stock_released and not status_in(order.status, OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                try:
                    reserved = await self.orders.reserve_stock(order, f"Paiement reçu {order.order_number}")
                except BusinessRuleError as e:
                    logger.warning(f"Paid order {order.order_number} cannot take its stock again: {e.message}")
                    await self.orders.add_note(
                        order.id, f"Paiement reçu mais stock insuffisant : {e.message}"
                    )
            if order.status == OrderStatus.PENDING.value:
                order.status = OrderStatus.PROCESSING.value
            if channel and payment.provider == PaymentProvider.PAIEMENTPRO.value:
                order.payment_method = map_channel(channel)

            invoice = await self.invoices.get_for_order(order.id)
            if invoice is not None:
                await self.invoices.mark_paid(invoice, payment.reference)
            await self.notifications.cancel_payment_reminders(order.id)
            await self.db.flush()

            logger.info(f"Payment {payment.reference} completed for order {order.order_number}")
            data = {"order_id": order.id}
            await self.notifications.send_notification(NotificationTrigger.PAYMENT_RECEIVED, data)
            await self.notifications.send_notification(NotificationTrigger.PAYMENT_RECEIVED_ADMIN, data)
            if invoice is not None:
                await self.notifications.send_notification(
                    NotificationTrigger.INVOICE_PAID,
                    {"order_id": order.id, "invoice_number": invoice.invoice_number},
                )
            return {
                "status": "ok",
                "payment_status": payment.status,
                "reference": payment.reference,
                "stock_reserved": reserved,
            }

        first_failure = payment.status != PaymentStatus.FAILED.value
        payment.status = PaymentStatus.FAILED.value
        order.payment_status = PaymentStatus.FAILED.value

        released = await self.orders.restore_stock(order, f"Paiement échoué {order.order_number}")
        await self.db.flush()
        if first_failure:
            logger.warning(f"Payment {payment.reference} failed for order {order.order_number}")
            await self.notifications.send_notification(NotificationTrigger.PAYMENT_FAILED, {"order_id": order.id})
        else:
            logger.info(f"Payment {payment.reference} failed again, stock already restored")

        return {
            "status": "ok",
            "payment_status": payment.status,
            "reference": payment.reference,
            "stock_released": released,
        }

    async def reconcile_invoice_payment(
        self,
        invoice: Invoice,
        reference: str,
        success: bool,
        amount: Any = None,
        channel: Optional[str] = None,
    ) -> dict:
        existing = await self.db.scalar(select(InvoicePayment.id).where(InvoicePayment.reference == reference))
        if existing is not None:
            logger.info(f"Invoice payment {reference} already recorded, duplicate notification")
            return {"status": "ok", "duplicate": True, "reference": reference}

        if not success:
            logger.warning(f"Payment {reference} failed for invoice {invoice.invoice_number}")
            return {"status": "ok", "payment_status": PaymentStatus.FAILED.value, "reference": reference}

        if invoice.status in CLOSED_STATUSES:
            logger.warning(f"Payment {reference} received for {invoice.status} invoice {invoice.invoice_number}")
            return {"status": "ok", "duplicate": True, "reference": reference}

        paid_amount = Decimal(str(amount)) if amount else invoice.balance_due
        await self.invoices.add_invoice_payment(
            invoice.id,
            paid_amount,
            map_channel(channel),
            reference=reference,
            notes=f"Paiement en ligne ({channel_display_name(channel) if channel else 'PaiementPro'})",
        )
        logger.info(f"Invoice {invoice.invoice_number} received {paid_amount} via {reference}")
        return {
            "status": "ok",
            "payment_status": PaymentStatus.COMPLETED.value,
            "invoice_status": invoice.status,
            "reference": reference,
        }

    async def reconcile_standalone_payment(
        self,
        payment: StandalonePayment,
        success: bool,
        payload: Dict[str, Any],
    ) -> dict:
        if payment.status == PaymentStatus.COMPLETED.value:
            logger.info(f"Standalone payment {payment.reference} already completed, duplicate notification")
            return {"status": "ok", "duplicate": True, "reference": payment.reference}
        if not success and payment.status == PaymentStatus.FAILED.value:
            logger.info(f"Standalone payment {payment.reference} failed again")
            return {"status": "ok", "duplicate": True, "reference": payment.reference}

        now = utc_now()
        payment.webhook_received = True
        payment.webhook_received_at = now
        payment.provider_response = dict(payload)
        payment.provider_payment_id = payload.get("payid") or payment.provider_payment_id
        payment.channel = payload.get("channel") or payment.channel
        if success:
            payment.status = PaymentStatus.COMPLETED.value
            payment.paid_at = now
            payment.error_message = None
            logger.info(f"Standalone payment {payment.reference} completed: {payment.amount}")
        else:
            payment.status = PaymentStatus.FAILED.value
            payment.error_message = payload.get("responsemsg") or "Paiement refusé"
            logger.warning(f"Standalone payment {payment.reference} failed: {payment.error_message}")
        await self.db.flush()

        await self._notify_standalone(payment)
        return {"status": "ok", "payment_status": payment.status, "reference": payment.reference}

    async def _notify_standalone(self, payment: StandalonePayment) -> dict:
        trigger = (
            NotificationTrigger.STANDALONE_PAYMENT_RECEIVED
            if payment.status == PaymentStatus.COMPLETED.value
            else NotificationTrigger.STANDALONE_PAYMENT_FAILED
        )
        outcome = await self.notifications.send_notification(trigger, {
            "recipient_phone": payment.customer_phone,
            "customer_name": payment.customer_name,
            "amount": format_cfa(payment.amount),
            "reference": payment.reference,
        })
        if outcome.get("success"):
            payment.notification_sent = True
            payment.notification_sent_at = utc_now()
            await self.db.flush()
        return outcome

    # ==================== Standalone payments ====================

    async def list_standalone_payments(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if status:
            conditions.append(StandalonePayment.status == status.upper())
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                StandalonePayment.reference.ilike(pattern),
                StandalonePayment.customer_name.ilike(pattern),
                StandalonePayment.customer_phone.ilike(pattern),
            ))

        total = await self.db.scalar(select(func.count(StandalonePayment.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(StandalonePayment)
            .where(*conditions)
            .order_by(StandalonePayment.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )

        counts = dict((await self.db.execute(
            select(StandalonePayment.status, func.count(StandalonePayment.id)).group_by(StandalonePayment.status)
        )).all())
        collected = await self.db.scalar(
            select(func.coalesce(func.sum(StandalonePayment.amount), 0))
            .where(StandalonePayment.status == PaymentStatus.COMPLETED.value)
        )
        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
            "stats": {
                "total": sum(counts.values()),
                "pending": counts.get(PaymentStatus.PENDING.value, 0),
                "completed": counts.get(PaymentStatus.COMPLETED.value, 0),
                "failed": counts.get(PaymentStatus.FAILED.value, 0),
                "total_amount": Decimal(str(collected or 0)),
            },
        }

    async def get_standalone_payment(self, payment_id: uuid.UUID) -> StandalonePayment:
        payment = await self.db.get(StandalonePayment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    async def resend_standalone_notification(self, payment_id: uuid.UUID) -> dict:
        """Send the received/failed message again; pending payments have nothing to announce."""
        payment = await self.get_standalone_payment(payment_id)
        if payment.status == PaymentStatus.PENDING.value:
            raise BusinessRuleError("Payment is still pending")
        return await self._notify_standalone(payment)
