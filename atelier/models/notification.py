"""
Notification models: per-tenant channel settings, message templates,
delivery log, scheduled (deferred) notifications, payment follow-up
configuration and the yearly birthday greeting log.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text, UniqueConstraint, Index, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType, Money


class NotificationChannel(str, Enum):
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"
    WHATSAPP_CLOUD = "WHATSAPP_CLOUD"
    EMAIL = "EMAIL"


class NotificationTrigger(str, Enum):
    # Customer - orders & payments
    ORDER_PLACED = "ORDER_PLACED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_REFUNDED = "ORDER_REFUNDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CUSTOMER_NOTE = "CUSTOMER_NOTE"

    # Customer - account & marketing
    NEW_ACCOUNT = "NEW_ACCOUNT"
    PASSWORD_RESET = "PASSWORD_RESET"
    LOYALTY_POINTS_EARNED = "LOYALTY_POINTS_EARNED"
    ABANDONED_CART = "ABANDONED_CART"
    BACK_IN_STOCK = "BACK_IN_STOCK"
    BIRTHDAY_GREETING = "BIRTHDAY_GREETING"

    # Admin
    NEW_ORDER_ADMIN = "NEW_ORDER_ADMIN"
    PAYMENT_RECEIVED_ADMIN = "PAYMENT_RECEIVED_ADMIN"
    LOW_STOCK_ADMIN = "LOW_STOCK_ADMIN"
    OUT_OF_STOCK_ADMIN = "OUT_OF_STOCK_ADMIN"
    NEW_CUSTOMER_ADMIN = "NEW_CUSTOMER_ADMIN"
    NEW_REVIEW_ADMIN = "NEW_REVIEW_ADMIN"
    DAILY_REPORT_ADMIN = "DAILY_REPORT_ADMIN"

    # Invoices & follow-up
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_PAID = "INVOICE_PAID"
    REVIEW_REQUEST = "REVIEW_REQUEST"
    PAYMENT_REMINDER_1 = "PAYMENT_REMINDER_1"
    PAYMENT_REMINDER_2 = "PAYMENT_REMINDER_2"
    PAYMENT_REMINDER_3 = "PAYMENT_REMINDER_3"

    # Free-amount payment links (/payer)
    STANDALONE_PAYMENT_RECEIVED = "STANDALONE_PAYMENT_RECEIVED"
    STANDALONE_PAYMENT_FAILED = "STANDALONE_PAYMENT_FAILED"

    # Tailoring
    CUSTOM_ORDER_CREATED = "CUSTOM_ORDER_CREATED"
    CUSTOM_ORDER_READY = "CUSTOM_ORDER_READY"
    CUSTOM_ORDER_PAYMENT = "CUSTOM_ORDER_PAYMENT"

    # Manual message from the back office
    CUSTOMER_MESSAGE = "CUSTOMER_MESSAGE"

    @property
    def is_admin(self) -> bool:
        return self.value.endswith("_ADMIN")


PAYMENT_REMINDER_TRIGGERS = {
    NotificationTrigger.PAYMENT_REMINDER_1.value,
    NotificationTrigger.PAYMENT_REMINDER_2.value,
    NotificationTrigger.PAYMENT_REMINDER_3.value,
}


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ScheduledStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class NotificationSettings(Base):
    """Single row per tenant schema."""
    __tablename__ = "notification_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    sms_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    whatsapp_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    failover_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    failover_order: Mapped[list] = mapped_column(
        JSONType,
        default=lambda: [NotificationChannel.WHATSAPP.value, NotificationChannel.SMS.value],
        nullable=False
    )
    send_both: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Dual mode: SMS and WhatsApp at the same time"
    )

    test_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    test_phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    admin_phones: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    admin_whatsapp: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    admin_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    daily_report_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"
    __table_args__ = (
        UniqueConstraint("trigger", "channel", name="uq_notification_template_trigger_channel"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    trigger: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="SMS, WHATSAPP, WHATSAPP_CLOUD, EMAIL"
    )
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (
        Index("ix_notification_logs_created", "created_at"),
        Index("ix_notification_logs_trigger_status", "trigger", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    trigger: Mapped[str] = mapped_column(String(40), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.PENDING.value,
        nullable=False,
        comment="PENDING, SENT, FAILED"
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    custom_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    cost: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class ScheduledNotification(Base):
    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        Index("ix_scheduled_notifications_due", "status", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    trigger: Mapped[str] = mapped_column(String(40), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    custom_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ScheduledStatus.PENDING.value,
        nullable=False,
        comment="PENDING, SENT, FAILED, CANCELLED"
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class PaymentFollowUpSettings(Base):
    __tablename__ = "payment_follow_up_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder1_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder1_delay_hours: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    reminder2_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder2_delay_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    reminder3_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder3_delay_hours: Mapped[int] = mapped_column(Integer, default=72, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class BirthdayGreetingLog(Base):
    """One row per customer and year; a customer is greeted at most once a year."""
    __tablename__ = "birthday_greeting_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "year", name="uq_birthday_greeting_user_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.SENT.value,
        nullable=False,
        comment="SENT, FAILED"
    )
    channels: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
