import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Date, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType


class UserRole(str, Enum):
    """Roles of the shop. CUSTOMER accounts never reach the back office."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    TAILOR = "TAILOR"
    CUSTOMER = "CUSTOMER"


STAFF_ROLES = {UserRole.ADMIN.value, UserRole.MANAGER.value, UserRole.STAFF.value, UserRole.TAILOR.value}


class User(Base):
    """
    Staff member or storefront customer.

    Customers of the CRM are users with role CUSTOMER; they can be created
    by staff without a password and claim the account later.
    """
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), unique=True, nullable=True, index=True)
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.CUSTOMER.value,
        nullable=False,
        comment="ADMIN, MANAGER, STAFF, TAILOR, CUSTOMER"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # CRM fields
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(5), nullable=True, default="CI")
    customer_source: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="WALK_IN, INSTAGRAM, FACEBOOK, REFERRAL, WEBSITE, OTHER"
    )
    tags: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def first_name(self) -> str:
        return self.name.split(" ")[0] if self.name else ""

    @property
    def last_name(self) -> str:
        parts = (self.name or "").split(" ", 1)
        return parts[1] if len(parts) > 1 else ""


class CustomerNote(Base):
    """Free-form CRM note about a customer, written by staff."""
    __tablename__ = "customer_notes"

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
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    author_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
