"""Bulk SMS / WhatsApp campaigns to customers."""
from typing import Optional
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status

from atelier.api.deps import DB, CurrentUser, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.campaign import (
    CampaignCreate,
    CampaignResponse,
    CampaignLogResponse,
    CampaignDetailResponse,
    CampaignListResponse,
    CampaignStatsResponse,
)
from atelier.services.campaign_service import CampaignService, run_campaign


router = APIRouter(tags=["Campaigns"], dependencies=[Depends(require_permissions("campaigns"))])


@router.get("", response_model=CampaignListResponse)
async def list_campaigns(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    channel: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
):
    result = await CampaignService(db).list_campaigns(channel=channel, status=status, page=page, size=size)
    return CampaignListResponse(
        items=[CampaignResponse.model_validate(c) for c in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/stats", response_model=CampaignStatsResponse)
async def campaign_stats(db: DB):
    return CampaignStatsResponse(**await CampaignService(db).campaign_stats())


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_campaign(
    data: CampaignCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: DB,
    current_user: CurrentUser,
):
    """
    Create a campaign and send it in the background.

    Messages are personalised per recipient ({customer_name},
    {total_spent}, ...). Poll GET /{id} for progress.
    """
    try:
        campaign = await CampaignService(db).create_campaign(
            data.name,
            data.channel,
            data.message,
            target=data.target,
            custom_numbers=data.custom_numbers,
            user=current_user,
        )
    except AtelierError as e:
        raise http_error(e)

    response = CampaignResponse.model_validate(campaign)
    # The background task opens its own session; the campaign must be visible to it.
    await db.commit()
    background_tasks.add_task(run_campaign, request.state.schema, campaign.id)
    return response


@router.get("/{campaign_id}", response_model=CampaignDetailResponse)
async def get_campaign(campaign_id: uuid.UUID, db: DB):
    try:
        result = await CampaignService(db).get_campaign(campaign_id)
    except AtelierError as e:
        raise http_error(e)
    return CampaignDetailResponse(
        campaign=CampaignResponse.model_validate(result["campaign"]),
        logs=[CampaignLogResponse.model_validate(log) for log in result["logs"]],
    )
