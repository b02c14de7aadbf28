"""
Atomic daily document numbering.

    from atelier.services.document_sequence_service import DocumentSequenceService

    number = await DocumentSequenceService(db).get_next_number(DocumentType.INVOICE)
    # FAC-181026-0001

The sequence row is locked with SELECT ... FOR UPDATE so concurrent
requests never hand out the same number. SQLite ignores the lock; tests
run single-connection.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.models.document_sequence import DocumentSequence, DocumentType


class DocumentSequenceService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_next_number(self, document_type: DocumentType | str, when: Optional[datetime] = None) -> str:
        """
        Get the next document number with an atomic increment.

        Raises:
            ValueError: If document_type is unknown
        """
        doc_type = DocumentType(document_type).value
        period = DocumentSequence.get_period(when)

        sequence = await self._get_or_create_sequence(doc_type, period)
        number = sequence.get_next_number()
        await self.db.flush()
        return number

    async def preview_next_number(self, document_type: DocumentType | str, when: Optional[datetime] = None) -> str:
        doc_type = DocumentType(document_type).value
        period = DocumentSequence.get_period(when)
        result = await self.db.execute(
            select(DocumentSequence).where(
                DocumentSequence.document_type == doc_type,
                DocumentSequence.period == period,
            )
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence.preview_next_number()
        return DocumentSequence(document_type=doc_type, period=period, padding_length=4, separator="-").format(1)

    async def _get_or_create_sequence(self, doc_type: str, period: str) -> DocumentSequence:
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.document_type == doc_type,
                DocumentSequence.period == period,
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = DocumentSequence(
                document_type=doc_type,
                period=period,
                current_number=0,
                padding_length=4,
                separator="-",
            )
            self.db.add(sequence)
            await self.db.flush()
        return sequence
