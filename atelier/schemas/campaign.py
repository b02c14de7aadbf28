from datetime import datetime
from typing import Optional, List, Dict
import uuid

from pydantic import BaseModel, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema


class CampaignCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    channel: str = Field(..., description="SMS or WHATSAPP")
    message: str = Field(..., min_length=1, max_length=1600)
    target: str = Field(default="ALL", description="ALL customers or CUSTOM numbers")
    custom_numbers: Optional[List[str] | str] = None


class CampaignResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    channel: str
    message: str
    target: str
    status: str
    total_recipients: int
    sent_count: int
    failed_count: int
    created_by_id: Optional[uuid.UUID] = None
    sent_at: Optional[datetime] = None
    created_at: datetime


class CampaignLogResponse(BaseResponseSchema):
    id: uuid.UUID
    recipient_phone: str
    recipient_name: Optional[str] = None
    content: str
    status: str
    error: Optional[str] = None
    provider_id: Optional[str] = None
    created_at: datetime


class CampaignDetailResponse(BaseModel):
    campaign: CampaignResponse
    logs: List[CampaignLogResponse] = []


class CampaignListResponse(BaseModel):
    items: List[CampaignResponse]
    total: int
    page: int
    size: int
    pages: int


class CampaignStatsResponse(BaseModel):
    total_campaigns: int
    by_status: Dict[str, int] = {}
    messages_sent: int
    messages_failed: int
    success_rate: float
