"""
Coupon Model for the storefront.

Supports percentage and fixed discounts, usage limits and
product/category restrictions.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType, Money


class DiscountType(str, Enum):
    """Discount type enumeration."""
    PERCENTAGE = "PERCENTAGE"  # e.g., 10% off
    FIXED_CART = "FIXED_CART"  # e.g., 5000 CFA off the cart
    FIXED_PRODUCT = "FIXED_PRODUCT"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Stored uppercase"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(
        String(20),
        default=DiscountType.PERCENTAGE.value,
        nullable=False,
        comment="PERCENTAGE, FIXED_CART, FIXED_PRODUCT"
    )
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    minimum_order_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    maximum_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Usage limits
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_limit_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Validity
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Restrictions (lists of UUID strings)
    product_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    excluded_product_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    category_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    excluded_category_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

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


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
