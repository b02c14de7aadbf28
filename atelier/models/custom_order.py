"""
Tailoring (sur-mesure) models.

A CustomOrder groups garments (items) that move individually through the
workshop; the order itself carries pickup date, priority and money.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import String, DateTime, Date, Integer, Text, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType, Money

if TYPE_CHECKING:
    from atelier.models.user import User


class CustomOrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PRODUCTION = "IN_PRODUCTION"
    FITTING = "FITTING"
    ALTERATIONS = "ALTERATIONS"
    READY = "READY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class CustomOrderPriority(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    VIP = "VIP"


class ItemStatus(str, Enum):
    """Production stages of a single garment, in workshop order."""
    PENDING = "PENDING"
    CUTTING = "CUTTING"
    SEWING = "SEWING"
    FITTING = "FITTING"
    ALTERATIONS = "ALTERATIONS"
    FINISHING = "FINISHING"
    COMPLETED = "COMPLETED"
    DELIVERED = "DELIVERED"


class CustomPaymentType(str, Enum):
    DEPOSIT = "DEPOSIT"
    INSTALLMENT = "INSTALLMENT"
    FINAL = "FINAL"


class Measurement(Base):
    """Body measurements snapshot; keys of `data` are free-form (tour_poitrine, ...)."""
    __tablename__ = "measurements"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    taken_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    taken_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class CustomOrder(Base):
    __tablename__ = "custom_orders"
    __table_args__ = (
        Index("ix_custom_orders_status_pickup", "status", "pickup_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    measurement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("measurements.id", ondelete="SET NULL"),
        nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=CustomOrderStatus.PENDING.value,
        nullable=False,
        comment="PENDING, IN_PRODUCTION, FITTING, ALTERATIONS, READY, DELIVERED, CANCELLED"
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        default=CustomOrderPriority.NORMAL.value,
        nullable=False,
        comment="NORMAL, URGENT, VIP"
    )
    pickup_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    material_cost: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
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

    customer: Mapped["User"] = relationship("User", lazy="selectin")
    items: Mapped[List["CustomOrderItem"]] = relationship(
        "CustomOrderItem",
        back_populates="custom_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CustomOrderItem.created_at",
    )
    payments: Mapped[List["CustomOrderPayment"]] = relationship(
        "CustomOrderPayment",
        back_populates="custom_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CustomOrderPayment.paid_at",
    )

    @property
    def amount_paid(self) -> Decimal:
        return sum((Decimal(p.amount) for p in self.payments), Decimal("0"))

    @property
    def deposit(self) -> Decimal:
        return sum(
            (Decimal(p.amount) for p in self.payments if p.payment_type == CustomPaymentType.DEPOSIT.value),
            Decimal("0"),
        )

    @property
    def balance(self) -> Decimal:
        return Decimal(self.total_cost or 0) - self.amount_paid

    @property
    def profit(self) -> Decimal:
        return Decimal(self.total_cost or 0) - Decimal(self.material_cost or 0)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def garment_types(self) -> list[str]:
        return sorted({item.garment_type for item in self.items})


class CustomOrderItem(Base):
    __tablename__ = "custom_order_items"
    __table_args__ = (
        Index("ix_custom_order_items_tailor_status", "tailor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    custom_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("custom_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    garment_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ItemStatus.PENDING.value,
        nullable=False,
        comment="PENDING, CUTTING, SEWING, FITTING, ALTERATIONS, FINISHING, COMPLETED, DELIVERED"
    )
    tailor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    estimated_hours: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    actual_hours: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    fabric_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    custom_order: Mapped["CustomOrder"] = relationship("CustomOrder", back_populates="items")
    tailor: Mapped[Optional["User"]] = relationship("User", lazy="selectin")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price or 0) * self.quantity


class CustomOrderPayment(Base):
    __tablename__ = "custom_order_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    custom_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("custom_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_type: Mapped[str] = mapped_column(
        String(20),
        default=CustomPaymentType.DEPOSIT.value,
        nullable=False,
        comment="DEPOSIT, INSTALLMENT, FINAL"
    )
    payment_method: Mapped[str] = mapped_column(String(30), default="CASH", nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    received_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    invoice_payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    custom_order: Mapped["CustomOrder"] = relationship("CustomOrder", back_populates="payments")


class CustomOrderTimeline(Base):
    __tablename__ = "custom_order_timeline"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    custom_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("custom_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photos: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
