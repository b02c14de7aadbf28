"""Workshop kanban: tailors see only their own garments."""
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query

from atelier.api.deps import DB, CurrentUser, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.custom_order import CustomOrderItemResponse, MoveCardRequest
from atelier.services.production_service import ProductionService


router = APIRouter(tags=["Production"], dependencies=[Depends(require_permissions("production"))])


@router.get("/board")
async def production_board(
    db: DB,
    current_user: CurrentUser,
    tailor_id: Optional[uuid.UUID] = Query(None),
):
    """Columns PENDING to COMPLETED, VIP and urgent orders first."""
    return await ProductionService(db).production_board(current_user, tailor_id=tailor_id)


@router.get("/tailors")
async def list_tailors(db: DB):
    return await ProductionService(db).tailors_with_workload()


@router.post("/cards/{item_id}/move", response_model=CustomOrderItemResponse)
async def move_card(item_id: uuid.UUID, data: MoveCardRequest, db: DB, current_user: CurrentUser):
    try:
        item = await ProductionService(db).move_card(item_id, data.status, current_user)
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return CustomOrderItemResponse.model_validate(item)
