"""
Marketing campaign models.

A campaign is a one-shot bulk message (SMS or WhatsApp) to all customers
or to a hand-picked list of numbers; every individual send is kept in
CampaignLog.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.database import Base
from atelier.db_types import UUIDType, JSONType


class CampaignChannel(str, Enum):
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"


class CampaignTarget(str, Enum):
    ALL = "ALL"
    CUSTOM = "CUSTOM"


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        Index("ix_campaigns_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, comment="SMS, WHATSAPP")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    target: Mapped[str] = mapped_column(
        String(20),
        default=CampaignTarget.ALL.value,
        nullable=False,
        comment="ALL, CUSTOM"
    )
    # [{"phone": ..., "name": ..., "user_id": ...}]
    recipients: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=CampaignStatus.DRAFT.value,
        nullable=False,
        comment="DRAFT, SENDING, SENT, FAILED"
    )
    total_recipients: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    logs: Mapped[List["CampaignLog"]] = relationship(
        "CampaignLog",
        back_populates="campaign",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class CampaignLog(Base):
    __tablename__ = "campaign_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    recipient_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="SENT, FAILED")
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="logs")
