import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import String, Boolean, DateTime, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType, Money

if TYPE_CHECKING:
    from atelier.models.user import User


class OrderStatus(str, Enum):
    """Order status enum."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    """Payment status enum, shared by orders and gateway payments."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    """How the customer settles a storefront order."""
    PAIEMENTPRO = "PAIEMENTPRO"
    RAZORPAY = "RAZORPAY"
    CASH = "CASH"  # Cash on delivery
    ORANGE_MONEY = "ORANGE_MONEY"
    MTN_MOBILE_MONEY = "MTN_MOBILE_MONEY"
    WAVE = "WAVE"
    STRIPE = "STRIPE"  # Card payments through the gateway
    BANK_TRANSFER = "BANK_TRANSFER"


class ShippingCostType(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"  # Paid to the courier on delivery
    FREE = "FREE"


class NoteType(str, Enum):
    PRIVATE = "PRIVATE"
    CUSTOMER = "CUSTOMER"


class ShippingMethod(Base):
    __tablename__ = "shipping_methods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cost: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    cost_type: Mapped[str] = mapped_column(
        String(20),
        default=ShippingCostType.FIXED.value,
        nullable=False,
        comment="FIXED, VARIABLE, FREE"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Order(Base):
    """Storefront order."""
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.PENDING.value,
        nullable=False,
        comment="PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED, REFUNDED"
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment="PENDING, COMPLETED, FAILED, REFUNDED"
    )
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    stock_released: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Reserved stock was put back (failed payment, cancellation or refund)"
    )

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    discount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    tax: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)

    coupon_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipping_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Address: {quartier, cite, rue, city, country, phone}
    shipping_address: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    billing_first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    billing_last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    billing_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    billing_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    user: Mapped[Optional["User"]] = relationship("User", lazy="selectin")

    @property
    def billing_name(self) -> str:
        return " ".join(p for p in [self.billing_first_name, self.billing_last_name] if p)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderNote(Base):
    __tablename__ = "order_notes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    note_type: Mapped[str] = mapped_column(
        String(20),
        default=NoteType.PRIVATE.value,
        nullable=False,
        comment="PRIVATE, CUSTOMER"
    )
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    author_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class Refund(Base):
    __tablename__ = "refunds"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    refund_type: Mapped[str] = mapped_column(String(20), default="FULL", nullable=False, comment="FULL, PARTIAL")
    status: Mapped[str] = mapped_column(String(20), default="PROCESSED", nullable=False)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
