from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query

from atelier.api.deps import DB, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.invoice import ReceiptResponse, ReceiptListResponse
from atelier.services.invoice_service import InvoiceService


router = APIRouter(tags=["Receipts"], dependencies=[Depends(require_permissions("receipts"))])


@router.get("", response_model=ReceiptListResponse)
async def list_receipts(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    invoice_id: Optional[uuid.UUID] = Query(None),
    custom_order_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
):
    result = await InvoiceService(db).list_receipts(
        invoice_id=invoice_id,
        custom_order_id=custom_order_id,
        search=search,
        page=page,
        size=size,
    )
    return ReceiptListResponse(
        items=[ReceiptResponse.model_validate(r) for r in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/{receipt_id}", response_model=ReceiptResponse)
async def get_receipt(receipt_id: uuid.UUID, db: DB):
    try:
        receipt = await InvoiceService(db).get_receipt(receipt_id)
    except AtelierError as e:
        raise http_error(e)
    return ReceiptResponse.model_validate(receipt)
