"""
Customer and admin notifications over SMS, WhatsApp and e-mail.

Templates are stored per (trigger, channel). A send resolves the
variables of the trigger, picks the recipient, then either:

- failover mode: tries channels in NotificationSettings.failover_order
  until one succeeds, or
- dual mode (send_both): SMS and WhatsApp in parallel.

Every attempt is written to NotificationLog. Failures are logged and
returned, never raised, so the business flow that triggered the
notification always completes.
"""
import asyncio
import calendar
import logging
import re
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Any, Dict, List

from sqlalchemy import select, func, update, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.config import settings as app_settings
from atelier.database import ensure_loaded
from atelier.core.dates import format_date, utc_now
from atelier.core.exceptions import NotificationError, BusinessRuleError, ConflictError, NotFoundError
from atelier.models.catalog import Product
from atelier.models.custom_order import CustomOrder
from atelier.models.invoice import Invoice
from atelier.models.notification import (
    NotificationSettings,
    NotificationTemplate,
    NotificationLog,
    ScheduledNotification,
    PaymentFollowUpSettings,
    BirthdayGreetingLog,
    NotificationChannel,
    NotificationTrigger,
    NotificationStatus,
    ScheduledStatus,
    PAYMENT_REMINDER_TRIGGERS,
)
from atelier.models.order import Order, OrderStatus, PaymentStatus
from atelier.models.payment import Payment
from atelier.models.user import User, UserRole
from atelier.services.email_service import EmailService, get_email_service
from atelier.services.messaging_service import SMSingService, MessageResult, get_messaging_service
from atelier.services.report_service import ReportService

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
OTP_RE = re.compile(r"(\d{6})")
MANUAL_PHONE_RE = re.compile(r"^\+?[0-9\s\-()]+$")

PHONE_CHANNELS = {
    NotificationChannel.SMS.value,
    NotificationChannel.WHATSAPP.value,
    NotificationChannel.WHATSAPP_CLOUD.value,
}

PRODUCT_TRIGGERS = {
    NotificationTrigger.LOW_STOCK_ADMIN.value,
    NotificationTrigger.OUT_OF_STOCK_ADMIN.value,
    NotificationTrigger.BACK_IN_STOCK.value,
}

USER_TRIGGERS = {
    NotificationTrigger.NEW_ACCOUNT.value,
    NotificationTrigger.NEW_CUSTOMER_ADMIN.value,
    NotificationTrigger.BIRTHDAY_GREETING.value,
}

SCHEDULED_BATCH_SIZE = 50
MAX_SCHEDULED_ATTEMPTS = 2

SAMPLE_VARIABLES = {
    "customer_name": "Awa Koné",
    "billing_first_name": "Awa",
    "billing_last_name": "Koné",
    "billing_phone": "0709757296",
    "order_number": "181026-A1B2C",
    "order_total": "25000 CFA",
    "order_date": "18/10/2026",
    "order_product": "Robe wax",
    "tracking_number": "TRK123456",
    "invoice_number": "FAC-181026-0001",
    "custom_order_number": "SM-181026-0001",
    "pickup_date": "25/10/2026",
    "balance": "10000 CFA",
    "amount_paid": "15000 CFA",
    "product_name": "Pagne tissé",
    "stock_quantity": 2,
}

# (trigger, name, content) seeded for SMS and WhatsApp when a shop is created
DEFAULT_TEMPLATES = [
    (
        NotificationTrigger.ORDER_PLACED,
        "Commande reçue",
        "Bonjour {customer_name}, votre commande {order_number} de {order_total} a bien été reçue. Merci, {store_name}.",
    ),
    (
        NotificationTrigger.PAYMENT_RECEIVED,
        "Paiement reçu",
        "Bonjour {customer_name}, nous avons reçu votre paiement pour la commande {order_number}. Merci !",
    ),
    (
        NotificationTrigger.ORDER_SHIPPED,
        "Commande expédiée",
        "Bonjour {customer_name}, votre commande {order_number} est en route. Suivi : {tracking_number}.",
    ),
    (
        NotificationTrigger.ORDER_DELIVERED,
        "Commande livrée",
        "Bonjour {customer_name}, votre commande {order_number} a été livrée. Merci pour votre confiance !",
    ),
    (
        NotificationTrigger.CUSTOM_ORDER_READY,
        "Commande sur mesure prête",
        "Bonjour {customer_name}, votre commande {custom_order_number} est prête. Reste à payer : {balance}.",
    ),
    (
        NotificationTrigger.NEW_ORDER_ADMIN,
        "Nouvelle commande",
        "Nouvelle commande {order_number} de {customer_name} : {order_total}.",
    ),
    (
        NotificationTrigger.BIRTHDAY_GREETING,
        "Joyeux anniversaire",
        "Joyeux anniversaire {customer_first_name} ! Toute l'équipe {store_name} vous souhaite une merveilleuse journée.",
    ),
    (
        NotificationTrigger.STANDALONE_PAYMENT_RECEIVED,
        "Paiement libre reçu",
        "Paiement reçu : {amount} - Réf : {reference}. Merci {customer_name} ! {store_name} {store_phone}",
    ),
    (
        NotificationTrigger.STANDALONE_PAYMENT_FAILED,
        "Paiement libre échoué",
        "Bonjour {customer_name}, votre paiement de {amount} (réf. {reference}) n'a pas abouti. Contactez-nous : {store_phone}",
    ),
]


def format_cfa(amount: Any) -> str:
    """4500.00 -> '4500 CFA'."""
    value = Decimal(str(amount or 0)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{value} {app_settings.CURRENCY_LABEL}"


def is_admin_trigger(trigger: str) -> bool:
    return trigger.endswith("_ADMIN")


def clean_phone(phone: str) -> str:
    return re.sub(r"[^0-9+]", "", phone or "")


def _trigger_value(trigger: NotificationTrigger | str) -> str:
    return trigger.value if isinstance(trigger, NotificationTrigger) else str(trigger)


class NotificationService:
    """Template rendering, dispatch and scheduling of notifications for one tenant."""

    def __init__(
        self,
        db: AsyncSession,
        messaging: Optional[SMSingService] = None,
        email: Optional[EmailService] = None,
    ):
        self.db = db
        self.messaging = messaging or get_messaging_service()
        self.email = email or get_email_service()

    # ==================== Settings ====================

    async def get_settings(self) -> NotificationSettings:
        """The single settings row, created with defaults on first access."""
        result = await self.db.execute(select(NotificationSettings).limit(1))
        row = result.scalar_one_or_none()
        if row is None:
            row = NotificationSettings(
                failover_order=[NotificationChannel.WHATSAPP.value, NotificationChannel.SMS.value],
                admin_phones=[],
            )
            self.db.add(row)
            await self.db.flush()
        return row

    async def update_settings(self, changes: Dict[str, Any]) -> NotificationSettings:
        row = await self.get_settings()
        for field, value in changes.items():
            setattr(row, field, value)
        await self.db.flush()
        return row

    async def get_follow_up_settings(self) -> PaymentFollowUpSettings:
        result = await self.db.execute(select(PaymentFollowUpSettings).limit(1))
        row = result.scalar_one_or_none()
        if row is None:
            row = PaymentFollowUpSettings()
            self.db.add(row)
            await self.db.flush()
        return row

    async def update_follow_up_settings(self, changes: Dict[str, Any]) -> PaymentFollowUpSettings:
        row = await self.get_follow_up_settings()
        for field, value in changes.items():
            setattr(row, field, value)
        await self.db.flush()
        return row

    # ==================== Templates ====================

    @staticmethod
    def render_template(content: str, variables: Dict[str, Any]) -> str:
        """Replace {key} with str(value); None renders empty, unknown keys stay as-is."""
        def replace(match: re.Match) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            value = variables[key]
            return "" if value is None else str(value)

        return PLACEHOLDER_RE.sub(replace, content or "")

    async def get_template(self, trigger: str, channel: str) -> Optional[NotificationTemplate]:
        result = await self.db.execute(
            select(NotificationTemplate).where(
                NotificationTemplate.trigger == trigger,
                NotificationTemplate.channel == channel,
            )
        )
        return result.scalar_one_or_none()

    async def list_templates(self, trigger: Optional[str] = None, channel: Optional[str] = None) -> List[NotificationTemplate]:
        query = select(NotificationTemplate).order_by(NotificationTemplate.trigger, NotificationTemplate.channel)
        if trigger:
            query = query.where(NotificationTemplate.trigger == trigger)
        if channel:
            query = query.where(NotificationTemplate.channel == channel)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_template_by_id(self, template_id: uuid.UUID) -> NotificationTemplate:
        template = await self.db.get(NotificationTemplate, template_id)
        if template is None:
            raise NotFoundError("Template not found")
        return template

    async def seed_default_templates(self) -> int:
        """Create the default templates that do not exist yet."""
        created = 0
        for trigger, name, content in DEFAULT_TEMPLATES:
            for channel in (NotificationChannel.SMS.value, NotificationChannel.WHATSAPP.value):
                if await self.get_template(trigger.value, channel) is not None:
                    continue
                self.db.add(NotificationTemplate(
                    name=name,
                    trigger=trigger.value,
                    channel=channel,
                    content=content,
                    enabled=True,
                ))
                created += 1
        await self.db.flush()
        return created

    async def create_template(self, data: Dict[str, Any]) -> NotificationTemplate:
        if await self.get_template(data["trigger"], data["channel"]):
            raise ConflictError(
                f"A template already exists for {data['trigger']} on {data['channel']}"
            )
        template = NotificationTemplate(**data)
        self.db.add(template)
        await self.db.flush()
        return template

    async def update_template(self, template_id: uuid.UUID, changes: Dict[str, Any]) -> NotificationTemplate:
        template = await self.get_template_by_id(template_id)
        trigger = changes.get("trigger", template.trigger)
        channel = changes.get("channel", template.channel)
        if (trigger, channel) != (template.trigger, template.channel):
            existing = await self.get_template(trigger, channel)
            if existing and existing.id != template.id:
                raise ConflictError(f"A template already exists for {trigger} on {channel}")
        for field, value in changes.items():
            setattr(template, field, value)
        await self.db.flush()
        return template

    async def delete_template(self, template_id: uuid.UUID) -> None:
        template = await self.get_template_by_id(template_id)
        await self.db.delete(template)
        await self.db.flush()

    async def test_template(self, template_id: uuid.UUID, phone: str) -> dict:
        """Render a template with sample data and send it to a phone number."""
        template = await self.get_template_by_id(template_id)
        variables = {**self._store_variables(), **SAMPLE_VARIABLES}
        content = self.render_template(template.content, variables)
        if template.channel == NotificationChannel.EMAIL.value:
            raise BusinessRuleError("E-mail templates cannot be tested on a phone number")

        result = await self.send_via_channel(template.channel, phone, content)
        await self._log(
            trigger=template.trigger,
            channel=template.channel,
            phone=phone,
            name="Test",
            content=content,
            result=result,
        )
        return {"success": result.success, "content": content, "error": result.error}

    # ==================== Variables ====================

    @staticmethod
    def _store_variables() -> Dict[str, Any]:
        return {
            "store_name": app_settings.STORE_NAME,
            "store_url": app_settings.STORE_URL,
            "store_phone": app_settings.STORE_PHONE,
            "store_whatsapp": app_settings.STORE_WHATSAPP,
            "store_address": app_settings.STORE_ADDRESS,
        }

    async def _load_order(self, order_id) -> Optional[Order]:
        if not order_id:
            return None
        order = await self.db.get(Order, _as_uuid(order_id))
        if order is not None:
            await ensure_loaded(self.db, order, "items", "user")
        return order

    async def _load_custom_order(self, custom_order_id) -> Optional[CustomOrder]:
        if not custom_order_id:
            return None
        custom_order = await self.db.get(CustomOrder, _as_uuid(custom_order_id))
        if custom_order is not None:
            await ensure_loaded(self.db, custom_order, "customer", "payments")
        return custom_order

    async def extract_variables(self, trigger: str, data: Dict[str, Any]) -> Dict[str, Any]:
        variables = self._store_variables()

        order = await self._load_order(data.get("order_id"))
        if order is not None:
            variables.update(await self._order_variables(order, data))

        custom_order = await self._load_custom_order(data.get("custom_order_id"))
        if custom_order is not None:
            variables.update(self._custom_order_variables(custom_order))

        if trigger in PRODUCT_TRIGGERS and data.get("product_id"):
            product = await self.db.get(Product, _as_uuid(data["product_id"]))
            if product is not None:
                variables.update({
                    "product_name": product.name,
                    "product_sku": product.sku or "",
                    "stock_quantity": product.stock,
                    "product_url": f"{app_settings.STORE_URL}/produits/{product.slug}",
                })

        if trigger in USER_TRIGGERS and data.get("user_id"):
            user = await self.db.get(User, _as_uuid(data["user_id"]))
            if user is not None:
                variables.update({
                    "customer_name": user.name or "Client",
                    "customer_first_name": user.first_name or "Client",
                    "customer_phone": user.phone or "",
                    "customer_email": user.email or "",
                })
                if trigger == NotificationTrigger.NEW_CUSTOMER_ADMIN.value:
                    variables["total_customers"] = await self.db.scalar(
                        select(func.count(User.id)).where(User.role == UserRole.CUSTOMER.value)
                    )

        if trigger == NotificationTrigger.DAILY_REPORT_ADMIN.value:
            variables.update({
                "report_date": data.get("report_date") or format_date(utc_now()),
                "daily_orders": data.get("daily_orders", 0),
                "daily_revenue": data.get("daily_revenue") or format_cfa(0),
                "new_customers": data.get("new_customers", 0),
                "pending_orders": data.get("pending_orders", 0),
            })

        for key, value in data.items():
            variables.setdefault(key, value)
        return variables

    async def _order_variables(self, order: Order, data: Dict[str, Any]) -> Dict[str, Any]:
        address = order.shipping_address or {}
        items = order.items
        first_name = order.billing_first_name or (order.user.first_name if order.user else "") or "Client"

        if items:
            order_product = items[0].product_name
            if len(items) > 1:
                order_product += f" et {len(items) - 1} autre(s)"
        else:
            order_product = ""

        invoice = await self.db.scalar(select(Invoice).where(Invoice.order_id == order.id).limit(1))
        payment = await self.db.scalar(select(Payment).where(Payment.order_id == order.id))

        variables = {
            "customer_name": order.billing_name or (order.user.name if order.user else "Client"),
            "billing_first_name": first_name,
            "billing_last_name": order.billing_last_name or "",
            "billing_phone": order.billing_phone or "",
            "billing_email": order.billing_email or "",
            "billing_address": ", ".join(
                part for part in (address.get("quartier"), address.get("cite"), address.get("rue")) if part
            ),
            "billing_city": address.get("city", ""),
            "billing_country": address.get("country", ""),
            "order_number": order.order_number,
            "order_id": str(order.id),
            "order_date": format_date(order.created_at),
            "order_status": order.status,
            "order_total": format_cfa(order.total),
            "order_subtotal": format_cfa(order.subtotal),
            "order_tax": format_cfa(order.tax),
            "order_shipping": format_cfa(order.shipping_cost),
            "order_discount": format_cfa(order.discount),
            "order_product": order_product,
            "order_product_with_qty": ", ".join(f"{i.product_name} ({i.quantity}x)" for i in items),
            "order_items_count": len(items),
            "payment_method": order.payment_method,
            "payment_reference": (payment.reference if payment else order.payment_reference) or "",
            "payment_status": order.payment_status,
            "tracking_number": order.tracking_number or data.get("tracking_number") or "",
            "delivery_date": "Sous 24-48h",
            "note_content": data.get("note_content", ""),
            "invoice_number": data.get("invoice_number") or (invoice.invoice_number if invoice else ""),
            "invoice_url": data.get("invoice_url") or f"{app_settings.STORE_URL}/account/orders/{order.id}",
        }
        return variables

    @staticmethod
    def _custom_order_variables(custom_order: CustomOrder) -> Dict[str, Any]:
        customer = custom_order.customer
        return {
            "customer_name": customer.name if customer else "Client",
            "custom_order_number": custom_order.order_number,
            "pickup_date": format_date(custom_order.pickup_date),
            "order_total": format_cfa(custom_order.total_cost),
            "balance": format_cfa(custom_order.balance),
            "amount_paid": format_cfa(custom_order.amount_paid),
        }

    # ==================== Recipients ====================

    async def resolve_recipient(
        self,
        trigger: str,
        data: Dict[str, Any],
        notif_settings: NotificationSettings,
    ) -> str:
        """
        Phone number the notification goes to.

        Raises:
            NotificationError: when no phone number can be found
        """
        if notif_settings.test_mode and notif_settings.test_phone_number:
            return notif_settings.test_phone_number

        if is_admin_trigger(trigger):
            phone = (notif_settings.admin_phones or [None])[0] or notif_settings.admin_whatsapp
        else:
            phone = await self._customer_phone(data)

        if not phone:
            raise NotificationError("No recipient phone number")
        return phone

    async def _customer_phone(self, data: Dict[str, Any]) -> Optional[str]:
        if data.get("recipient_phone"):
            return data["recipient_phone"]

        order = await self._load_order(data.get("order_id"))
        if order is not None:
            if order.user and (order.user.whatsapp_number or order.user.phone):
                return order.user.whatsapp_number or order.user.phone
            if order.billing_phone:
                return order.billing_phone
            if (order.shipping_address or {}).get("phone"):
                return order.shipping_address["phone"]

        custom_order = await self._load_custom_order(data.get("custom_order_id"))
        if custom_order is not None and custom_order.customer:
            customer = custom_order.customer
            if customer.whatsapp_number or customer.phone:
                return customer.whatsapp_number or customer.phone

        if data.get("user_id"):
            user = await self.db.get(User, _as_uuid(data["user_id"]))
            if user is not None:
                return user.whatsapp_number or user.phone
        return None

    async def _recipient_email(self, trigger: str, data: Dict[str, Any], notif_settings: NotificationSettings) -> Optional[str]:
        if is_admin_trigger(trigger):
            return notif_settings.admin_email
        if data.get("recipient_email"):
            return data["recipient_email"]
        order = await self._load_order(data.get("order_id"))
        if order is not None:
            return order.billing_email or (order.user.email if order.user else None)
        if data.get("user_id"):
            user = await self.db.get(User, _as_uuid(data["user_id"]))
            return user.email if user else None
        return None

    # ==================== Dispatch ====================

    async def send_via_channel(self, channel: str, phone: str, content: str) -> MessageResult:
        if channel == NotificationChannel.SMS.value:
            return await self.messaging.send_sms(phone, content)
        if channel == NotificationChannel.WHATSAPP.value:
            return await self.messaging.send_whatsapp(phone, content, app_settings.STORE_LOGO_URL or None)
        if channel == NotificationChannel.WHATSAPP_CLOUD.value:
            match = OTP_RE.search(content)
            return await self.messaging.send_whatsapp_cloud(phone, match.group(1) if match else "000000")
        return MessageResult(success=False, error=f"Unsupported channel {channel}")

    @staticmethod
    def _channel_enabled(channel: str, notif_settings: NotificationSettings) -> bool:
        if channel == NotificationChannel.SMS.value:
            return notif_settings.sms_enabled
        if channel in (NotificationChannel.WHATSAPP.value, NotificationChannel.WHATSAPP_CLOUD.value):
            return notif_settings.whatsapp_enabled
        return False

    async def _log(
        self,
        trigger: str,
        channel: str,
        content: str,
        result: Optional[MessageResult] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        error: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> NotificationLog:
        data = data or {}
        success = result is not None and result.success
        log = NotificationLog(
            trigger=trigger,
            channel=channel,
            recipient_phone=phone,
            recipient_email=email,
            recipient_name=name,
            content=content,
            status=NotificationStatus.SENT.value if success else NotificationStatus.FAILED.value,
            error_message=None if success else (error or (result.error if result else None) or "Failed to send"),
            provider_id=result.message_id if result else None,
            provider_response=result.raw if result and result.raw else None,
            order_id=_as_uuid(data.get("order_id")),
            custom_order_id=_as_uuid(data.get("custom_order_id")),
            user_id=_as_uuid(data.get("user_id")),
            cost=Decimal(result.cost) if result and result.cost else None,
            sent_at=utc_now() if success else None,
        )
        self.db.add(log)
        await self.db.flush()
        return log

    async def send_notification(
        self,
        trigger: NotificationTrigger | str,
        data: Optional[Dict[str, Any]] = None,
        send_both: Optional[bool] = None,
    ) -> dict:
        """
        Send the notification for a trigger.

        Returns:
            {"success": bool, "channel": ...} in failover mode,
            {"success": bool, "channels": {...}} in dual mode.
        """
        trigger = _trigger_value(trigger)
        data = data or {}
        notif_settings = await self.get_settings()
        variables = await self.extract_variables(trigger, data)
        name = "Admin" if is_admin_trigger(trigger) else (
            variables.get("customer_name") or variables.get("billing_first_name")
        )

        try:
            phone = await self.resolve_recipient(trigger, data, notif_settings)
        except NotificationError as e:
            logger.warning(f"Notification {trigger} not sent: {e.message}")
            await self._log(trigger, NotificationChannel.SMS.value, "", name=name, error=e.message, data=data)
            result = {"success": False, "error": e.message}
        else:
            dual = notif_settings.send_both if send_both is None else send_both
            if dual:
                result = await self._send_dual(trigger, phone, name, variables, data, notif_settings)
            else:
                result = await self._send_failover(trigger, phone, name, variables, data, notif_settings)

        email_result = await self._send_email(trigger, name, variables, data, notif_settings)
        if email_result is not None:
            result["email"] = email_result
        return result

    async def _send_failover(
        self,
        trigger: str,
        phone: str,
        name: Optional[str],
        variables: Dict[str, Any],
        data: Dict[str, Any],
        notif_settings: NotificationSettings,
    ) -> dict:
        if notif_settings.failover_enabled:
            channels = list(notif_settings.failover_order or [])
        else:
            channels = [NotificationChannel.WHATSAPP.value, NotificationChannel.SMS.value]

        attempted = False
        for channel in channels:
            if channel not in PHONE_CHANNELS or not self._channel_enabled(channel, notif_settings):
                continue
            template = await self.get_template(trigger, channel)
            if template is None or not template.enabled:
                logger.debug(f"Template not found or disabled for {trigger} - {channel}")
                continue

            attempted = True
            content = self.render_template(template.content, variables)
            result = await self.send_via_channel(channel, phone, content)
            await self._log(trigger, channel, content, result, phone=phone, name=name, data=data)

            if result.success:
                logger.info(f"Notification {trigger} sent via {channel} to {phone}")
                return {"success": True, "channel": channel, "message_id": result.message_id}

            logger.warning(f"Notification {trigger} failed via {channel}: {result.error}")
            if not notif_settings.failover_enabled:
                break
            logger.info(f"Failing over {trigger} to next channel")

        error = "All channels failed" if attempted else "No active template"
        await self._log(
            trigger,
            channels[0] if channels else NotificationChannel.SMS.value,
            "",
            phone=phone,
            name=name,
            error=error,
            data=data,
        )
        return {"success": False, "error": error}

    async def _send_dual(
        self,
        trigger: str,
        phone: str,
        name: Optional[str],
        variables: Dict[str, Any],
        data: Dict[str, Any],
        notif_settings: NotificationSettings,
    ) -> dict:
        prepared = []
        for channel, enabled in (
            (NotificationChannel.SMS.value, notif_settings.sms_enabled),
            (NotificationChannel.WHATSAPP.value, notif_settings.whatsapp_enabled),
        ):
            if not enabled:
                continue
            template = await self.get_template(trigger, channel)
            if template is None or not template.enabled:
                continue
            prepared.append((channel, self.render_template(template.content, variables)))

        if not prepared:
            await self._log(trigger, NotificationChannel.SMS.value, "", phone=phone, name=name,
                            error="No active template", data=data)
            return {"success": False, "channels": {}, "error": "No active template"}

        # Provider calls run concurrently; the session is only touched afterwards.
        results = await asyncio.gather(
            *(self.send_via_channel(channel, phone, content) for channel, content in prepared)
        )
        channels = {}
        for (channel, content), result in zip(prepared, results):
            await self._log(trigger, channel, content, result, phone=phone, name=name, data=data)
            channels[channel] = result.success

        success = any(channels.values())
        logger.info(f"Dual notification {trigger}: {channels}")
        return {"success": success, "channels": channels}

    async def _send_email(
        self,
        trigger: str,
        name: Optional[str],
        variables: Dict[str, Any],
        data: Dict[str, Any],
        notif_settings: NotificationSettings,
    ) -> Optional[bool]:
        if not notif_settings.email_enabled:
            return None
        template = await self.get_template(trigger, NotificationChannel.EMAIL.value)
        if template is None or not template.enabled:
            return None
        to_email = await self._recipient_email(trigger, data, notif_settings)
        if not to_email:
            return None

        subject = self.render_template(template.subject or app_settings.STORE_NAME, variables)
        body = self.render_template(template.content, variables)
        sent = await asyncio.to_thread(self.email.send_notification_email, to_email, subject, body)
        await self._log(
            trigger,
            NotificationChannel.EMAIL.value,
            body,
            MessageResult(success=sent, error=None if sent else "E-mail not sent"),
            email=to_email,
            name=name,
            data=data,
        )
        return sent

    async def send_manual(
        self,
        channel: str,
        phone: str,
        message: str,
        user_id: Optional[uuid.UUID] = None,
        name: Optional[str] = None,
    ) -> dict:
        """Free-text message typed in the back office (WhatsApp Business or SMS)."""
        channel = (channel or "").upper()
        if channel not in (NotificationChannel.SMS.value, NotificationChannel.WHATSAPP.value):
            raise BusinessRuleError("Only SMS and WHATSAPP can be used for manual messages")
        if not message or not message.strip():
            raise BusinessRuleError("Message is required")
        if not phone or not MANUAL_PHONE_RE.match(phone):
            raise BusinessRuleError("Invalid phone number")

        cleaned = clean_phone(phone)
        result = await self.send_via_channel(channel, cleaned, message)
        await self._log(
            NotificationTrigger.CUSTOMER_MESSAGE.value,
            channel,
            message,
            result,
            phone=cleaned,
            name=name,
            data={"user_id": user_id},
        )
        return {"success": result.success, "channel": channel, "message_id": result.message_id, "error": result.error}

    # ==================== Scheduling ====================

    async def schedule(
        self,
        trigger: NotificationTrigger | str,
        scheduled_for: datetime,
        order_id: Optional[uuid.UUID] = None,
        custom_order_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        data: Optional[dict] = None,
    ) -> ScheduledNotification:
        row = ScheduledNotification(
            trigger=_trigger_value(trigger),
            order_id=order_id,
            custom_order_id=custom_order_id,
            user_id=user_id,
            scheduled_for=scheduled_for,
            status=ScheduledStatus.PENDING.value,
            attempts=0,
            data=data or {},
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def schedule_payment_reminders(self, order_id: uuid.UUID) -> List[ScheduledNotification]:
        follow_up = await self.get_follow_up_settings()
        if not follow_up.enabled:
            return []

        now = utc_now()
        scheduled = []
        for index, trigger in enumerate((
            NotificationTrigger.PAYMENT_REMINDER_1,
            NotificationTrigger.PAYMENT_REMINDER_2,
            NotificationTrigger.PAYMENT_REMINDER_3,
        ), start=1):
            if not getattr(follow_up, f"reminder{index}_enabled"):
                continue
            delay = getattr(follow_up, f"reminder{index}_delay_hours")
            scheduled.append(await self.schedule(trigger, now + timedelta(hours=delay), order_id=order_id))
        logger.info(f"Scheduled {len(scheduled)} payment reminders for order {order_id}")
        return scheduled

    async def schedule_review_request(self, order_id: uuid.UUID, delay_hours: int = 24) -> ScheduledNotification:
        return await self.schedule(
            NotificationTrigger.REVIEW_REQUEST,
            utc_now() + timedelta(hours=delay_hours),
            order_id=order_id,
        )

    async def cancel_payment_reminders(self, order_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(ScheduledNotification)
            .where(
                ScheduledNotification.order_id == order_id,
                ScheduledNotification.status == ScheduledStatus.PENDING.value,
                ScheduledNotification.trigger.in_(sorted(PAYMENT_REMINDER_TRIGGERS)),
            )
            .values(status=ScheduledStatus.CANCELLED.value, cancelled_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Cancelled {result.rowcount} payment reminders for order {order_id}")
        return result.rowcount or 0

    async def delete_scheduled_for_order(self, order_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(ScheduledNotification).where(ScheduledNotification.order_id == order_id)
        )

    async def process_scheduled_notifications(self, now: Optional[datetime] = None) -> dict:
        """Send due notifications, oldest first, in batches of 50."""
        now = now or utc_now()
        result = await self.db.execute(
            select(ScheduledNotification)
            .where(
                ScheduledNotification.status == ScheduledStatus.PENDING.value,
                ScheduledNotification.scheduled_for <= now,
            )
            .order_by(ScheduledNotification.scheduled_for)
            .limit(SCHEDULED_BATCH_SIZE)
        )
        due = list(result.scalars().all())
        stats = {"processed": 0, "sent": 0, "failed": 0, "cancelled": 0}

        for row in due:
            stats["processed"] += 1

            if row.trigger in PAYMENT_REMINDER_TRIGGERS:
                order = await self._load_order(row.order_id)
                if (
                    order is None
                    or order.payment_status == PaymentStatus.COMPLETED.value
                    or order.status == OrderStatus.CANCELLED.value
                ):
                    row.status = ScheduledStatus.CANCELLED.value
                    row.cancelled_at = now
                    stats["cancelled"] += 1
                    continue

            data = {
                **(row.data or {}),
                "order_id": row.order_id,
                "custom_order_id": row.custom_order_id,
                "user_id": row.user_id,
            }
            outcome = await self.send_notification(row.trigger, {k: v for k, v in data.items() if v is not None})

            if outcome.get("success"):
                row.status = ScheduledStatus.SENT.value
                row.sent_at = now
                stats["sent"] += 1
            else:
                row.attempts += 1
                row.last_error = outcome.get("error") or "Failed to send"
                if row.attempts >= MAX_SCHEDULED_ATTEMPTS:
                    row.status = ScheduledStatus.FAILED.value
                    stats["failed"] += 1

        await self.db.flush()
        if stats["processed"]:
            logger.info(f"Scheduled notifications processed: {stats}")
        return stats

    async def list_scheduled(self, status: Optional[str] = None, page: int = 1, size: int = 50) -> dict:
        query = select(ScheduledNotification)
        count_query = select(func.count(ScheduledNotification.id))
        if status:
            query = query.where(ScheduledNotification.status == status.upper())
            count_query = count_query.where(ScheduledNotification.status == status.upper())
        total = await self.db.scalar(count_query)
        result = await self.db.execute(
            query.order_by(ScheduledNotification.scheduled_for.desc()).offset((page - 1) * size).limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total or 0, "page": page, "size": size,
                "pages": ((total or 0) + size - 1) // size}

    # ==================== Logs & stats ====================

    async def list_logs(
        self,
        trigger: Optional[str] = None,
        channel: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 50,
    ) -> dict:
        filters = []
        if trigger:
            filters.append(NotificationLog.trigger == trigger.upper())
        if channel:
            filters.append(NotificationLog.channel == channel.upper())
        if status:
            filters.append(NotificationLog.status == status.upper())
        if search:
            pattern = f"%{search}%"
            filters.append(or_(
                NotificationLog.recipient_phone.ilike(pattern),
                NotificationLog.recipient_name.ilike(pattern),
                NotificationLog.content.ilike(pattern),
            ))

        total = await self.db.scalar(select(func.count(NotificationLog.id)).where(*filters))
        result = await self.db.execute(
            select(NotificationLog)
            .where(*filters)
            .order_by(NotificationLog.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total or 0, "page": page, "size": size,
                "pages": ((total or 0) + size - 1) // size}

    async def stats(self) -> dict:
        by_status_rows = await self.db.execute(
            select(NotificationLog.status, func.count(NotificationLog.id)).group_by(NotificationLog.status)
        )
        by_status = {status: count for status, count in by_status_rows.all()}
        by_channel_rows = await self.db.execute(
            select(NotificationLog.channel, func.count(NotificationLog.id)).group_by(NotificationLog.channel)
        )
        by_channel = {channel: count for channel, count in by_channel_rows.all()}

        since = utc_now() - timedelta(days=7)
        last_7_days = await self.db.scalar(
            select(func.count(NotificationLog.id)).where(NotificationLog.created_at >= since)
        )

        total = sum(by_status.values())
        sent = by_status.get(NotificationStatus.SENT.value, 0)
        return {
            "total": total,
            "sent": sent,
            "failed": by_status.get(NotificationStatus.FAILED.value, 0),
            "pending": by_status.get(NotificationStatus.PENDING.value, 0),
            "by_channel": by_channel,
            "success_rate": round(sent / total * 100, 1) if total else 0.0,
            "last_7_days": last_7_days or 0,
        }

    # ==================== Birthdays ====================

    @staticmethod
    def is_birthday(born: date, today: date) -> bool:
        """Same day and month; 29 February birthdays fall on 28 February in common years."""
        if (born.month, born.day) == (today.month, today.day):
            return True
        return (
            (born.month, born.day) == (2, 29)
            and (today.month, today.day) == (2, 28)
            and not calendar.isleap(today.year)
        )

    @staticmethod
    def next_birthday(born: date, today: date) -> date:
        def in_year(year: int) -> date:
            if (born.month, born.day) == (2, 29) and not calendar.isleap(year):
                return date(year, 2, 28)
            return date(year, born.month, born.day)

        birthday = in_year(today.year)
        return birthday if birthday >= today else in_year(today.year + 1)

    async def _customers_with_birth_date(self) -> List[User]:
        result = await self.db.execute(
            select(User)
            .where(
                User.role == UserRole.CUSTOMER.value,
                User.is_active == True,  # noqa: E712
                User.date_of_birth.is_not(None),
            )
            .order_by(User.name)
        )
        return list(result.scalars().all())

    async def send_birthday_greetings(self, today: Optional[date] = None) -> dict:
        """Greet the customers whose birthday is today; a failed greeting is retried on the next run of the day."""
        today = today or utc_now().date()
        customers = await self._customers_with_birth_date()
        stats = {"checked": len(customers), "sent": 0, "skipped": 0, "failed": 0}

        for customer in customers:
            if not self.is_birthday(customer.date_of_birth, today):
                continue
            entry = await self.db.scalar(
                select(BirthdayGreetingLog).where(
                    BirthdayGreetingLog.user_id == customer.id,
                    BirthdayGreetingLog.year == today.year,
                )
            )
            if entry is not None and entry.status == NotificationStatus.SENT.value:
                stats["skipped"] += 1
                continue

            outcome = await self.send_notification(NotificationTrigger.BIRTHDAY_GREETING, {"user_id": customer.id})
            if "channels" in outcome:
                channels = [channel for channel, ok in outcome["channels"].items() if ok]
            else:
                channels = [outcome["channel"]] if outcome.get("channel") else []

            success = bool(outcome.get("success"))
            if entry is None:
                entry = BirthdayGreetingLog(user_id=customer.id, year=today.year)
                self.db.add(entry)
            entry.status = NotificationStatus.SENT.value if success else NotificationStatus.FAILED.value
            entry.channels = channels
            stats["sent" if success else "failed"] += 1

        await self.db.flush()
        if stats["sent"] or stats["failed"]:
            logger.info(f"Birthday greetings for {today}: {stats}")
        return stats

    async def upcoming_birthdays(self, days: int = 30, today: Optional[date] = None) -> List[dict]:
        """Customers whose next birthday is within `days`, soonest first."""
        today = today or utc_now().date()
        greeted = await self.db.execute(
            select(BirthdayGreetingLog.user_id, BirthdayGreetingLog.status).where(
                BirthdayGreetingLog.year == today.year
            )
        )
        greeting_status = {user_id: status for user_id, status in greeted.all()}

        upcoming = []
        for customer in await self._customers_with_birth_date():
            birthday = self.next_birthday(customer.date_of_birth, today)
            days_until = (birthday - today).days
            if days_until > days:
                continue
            upcoming.append({
                "user_id": customer.id,
                "name": customer.name,
                "phone": customer.phone,
                "date_of_birth": customer.date_of_birth,
                "next_birthday": birthday,
                "days_until": days_until,
                "age": birthday.year - customer.date_of_birth.year,
                "greeting_status": greeting_status.get(customer.id) if birthday.year == today.year else None,
            })
        upcoming.sort(key=lambda row: (row["days_until"], row["name"]))
        return upcoming

    # ==================== Daily report ====================

    async def send_daily_report(self, report_date: Optional[date] = None) -> Optional[dict]:
        notif_settings = await self.get_settings()
        if not notif_settings.daily_report_enabled:
            return None

        report = await ReportService(self.db).daily_sales_report(report_date or utc_now().date())
        return await self.send_notification(
            NotificationTrigger.DAILY_REPORT_ADMIN,
            {
                "report_date": format_date(report["date"]),
                "daily_orders": report["orders_count"],
                "daily_revenue": format_cfa(report["revenue"]),
                "new_customers": report["new_customers"],
                "pending_orders": report["pending_orders"],
                "top_product": (report.get("top_product") or {}).get("name", ""),
            },
        )


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
