"""
Document sequence model for atomic number generation.

Numbering restarts every day:
    FAC-DDMMYY-NNNN  invoices
    REC-DDMMYY-NNNN  receipts
    SM-DDMMYY-NNNN   custom (sur-mesure) orders
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from atelier.database import Base
from atelier.db_types import UUIDType


class DocumentType(str, Enum):
    INVOICE = "FAC"
    RECEIPT = "REC"
    CUSTOM_ORDER = "SM"


class DocumentSequence(Base):
    """
    One row per document type and day.

    Example:
        document_type = "FAC", period = "181026", current_number = 41
        -> next invoice number: FAC-181026-0042
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("document_type", "period", name="uq_document_type_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="FAC, REC, SM"
    )
    period: Mapped[str] = mapped_column(String(6), nullable=False, comment="DDMMYY")
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    separator: Mapped[str] = mapped_column(String(5), default="-", nullable=False)
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

    def get_next_number(self) -> str:
        """
        Increment and format the next number.

        Does NOT flush; the caller owns the transaction.
        """
        self.current_number += 1
        return self.format(self.current_number)

    def preview_next_number(self) -> str:
        return self.format(self.current_number + 1)

    def format(self, number: int) -> str:
        sep = self.separator
        return f"{self.document_type}{sep}{self.period}{sep}{str(number).zfill(self.padding_length)}"

    @staticmethod
    def get_period(when: datetime = None) -> str:
        """Day key, DDMMYY."""
        return (when or datetime.now(timezone.utc)).strftime("%d%m%y")

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}/{self.period}: {self.current_number})>"
