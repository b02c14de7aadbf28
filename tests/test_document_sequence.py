from datetime import datetime, timezone

import pytest

from atelier.models.document_sequence import DocumentSequence, DocumentType
from atelier.services.document_sequence_service import DocumentSequenceService

DAY = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def test_format_and_period():
    sequence = DocumentSequence(document_type="FAC", period="181026", current_number=41, padding_length=4, separator="-")
    assert DocumentSequence.get_period(DAY) == "181026"
    assert sequence.preview_next_number() == "FAC-181026-0042"
    assert sequence.get_next_number() == "FAC-181026-0042"
    assert sequence.current_number == 42


async def test_numbers_increment_per_type_and_day(db_session):
    service = DocumentSequenceService(db_session)

    assert await service.get_next_number(DocumentType.INVOICE, DAY) == "FAC-181026-0001"
    assert await service.get_next_number(DocumentType.INVOICE, DAY) == "FAC-181026-0002"
    assert await service.get_next_number(DocumentType.RECEIPT, DAY) == "REC-181026-0001"
    assert await service.get_next_number("SM", DAY) == "SM-181026-0001"

    next_day = datetime(2026, 10, 19, tzinfo=timezone.utc)
    assert await service.get_next_number(DocumentType.INVOICE, next_day) == "FAC-191026-0001"


async def test_preview_does_not_consume(db_session):
    service = DocumentSequenceService(db_session)
    assert await service.preview_next_number(DocumentType.RECEIPT, DAY) == "REC-181026-0001"
    await service.get_next_number(DocumentType.RECEIPT, DAY)
    assert await service.preview_next_number(DocumentType.RECEIPT, DAY) == "REC-181026-0002"
    assert await service.get_next_number(DocumentType.RECEIPT, DAY) == "REC-181026-0002"


async def test_unknown_document_type(db_session):
    with pytest.raises(ValueError):
        await DocumentSequenceService(db_session).get_next_number("XYZ")
