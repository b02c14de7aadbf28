"""Notification settings, templates, logs and manual sends."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
import uuid

from pydantic import BaseModel, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class NotificationSettingsResponse(BaseResponseSchema):
    sms_enabled: bool
    whatsapp_enabled: bool
    email_enabled: bool
    failover_enabled: bool
    failover_order: List[str]
    send_both: bool
    test_mode: bool
    test_phone_number: Optional[str] = None
    admin_phones: List[str] = []
    admin_whatsapp: Optional[str] = None
    admin_email: Optional[str] = None
    daily_report_enabled: bool
    updated_at: datetime


class NotificationSettingsUpdate(BaseUpdateSchema):
    sms_enabled: Optional[bool] = None
    whatsapp_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    failover_enabled: Optional[bool] = None
    failover_order: Optional[List[str]] = None
    send_both: Optional[bool] = None
    test_mode: Optional[bool] = None
    test_phone_number: Optional[str] = Field(None, max_length=30)
    admin_phones: Optional[List[str]] = None
    admin_whatsapp: Optional[str] = Field(None, max_length=30)
    admin_email: Optional[str] = Field(None, max_length=255)
    daily_report_enabled: Optional[bool] = None


class FollowUpSettingsResponse(BaseResponseSchema):
    enabled: bool
    reminder1_enabled: bool
    reminder1_delay_hours: int
    reminder2_enabled: bool
    reminder2_delay_hours: int
    reminder3_enabled: bool
    reminder3_delay_hours: int


class FollowUpSettingsUpdate(BaseUpdateSchema):
    enabled: Optional[bool] = None
    reminder1_enabled: Optional[bool] = None
    reminder1_delay_hours: Optional[int] = Field(None, ge=0)
    reminder2_enabled: Optional[bool] = None
    reminder2_delay_hours: Optional[int] = Field(None, ge=0)
    reminder3_enabled: Optional[bool] = None
    reminder3_delay_hours: Optional[int] = Field(None, ge=0)


class TemplateCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    trigger: str
    channel: str = Field(..., description="SMS, WHATSAPP, WHATSAPP_CLOUD or EMAIL")
    subject: Optional[str] = Field(None, max_length=255)
    content: str = Field(..., min_length=1)
    enabled: bool = True


class TemplateUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    subject: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = Field(None, min_length=1)
    enabled: Optional[bool] = None


class TemplateResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    trigger: str
    channel: str
    subject: Optional[str] = None
    content: str
    enabled: bool
    created_at: datetime
    updated_at: datetime


class TemplateTestRequest(BaseCreateSchema):
    phone: str = Field(..., min_length=8, max_length=30)


class NotificationLogResponse(BaseResponseSchema):
    id: uuid.UUID
    trigger: str
    channel: str
    recipient_phone: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    content: str
    status: str
    error_message: Optional[str] = None
    provider_id: Optional[str] = None
    order_id: Optional[uuid.UUID] = None
    custom_order_id: Optional[uuid.UUID] = None
    cost: Optional[Decimal] = None
    sent_at: Optional[datetime] = None
    created_at: datetime


class NotificationLogListResponse(BaseModel):
    items: List[NotificationLogResponse]
    total: int
    page: int
    size: int
    pages: int


class ScheduledNotificationResponse(BaseResponseSchema):
    id: uuid.UUID
    trigger: str
    order_id: Optional[uuid.UUID] = None
    custom_order_id: Optional[uuid.UUID] = None
    scheduled_for: datetime
    status: str
    attempts: int
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class ScheduledNotificationListResponse(BaseModel):
    items: List[ScheduledNotificationResponse]
    total: int
    page: int
    size: int
    pages: int


class ManualSendRequest(BaseCreateSchema):
    channel: str = Field(..., description="WHATSAPP or SMS")
    phone: str = Field(..., min_length=8, max_length=30)
    message: str = Field(..., min_length=1, max_length=1600)


class SendResult(BaseModel):
    success: bool
    channel: Optional[str] = None
    message_id: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None
    channels: Optional[dict] = None


class NotificationStatsResponse(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int
    by_channel: Dict[str, int] = {}
    success_rate: float
    last_7_days: int


class TriggerRequest(BaseCreateSchema):
    """Manually fire a trigger, e.g. resend an order confirmation."""
    trigger: str
    data: Dict[str, Any] = {}
    send_both: Optional[bool] = None


class UpcomingBirthdayResponse(BaseModel):
    user_id: uuid.UUID
    name: str
    phone: Optional[str] = None
    date_of_birth: date
    next_birthday: date
    days_until: int
    age: int
    greeting_status: Optional[str] = None
