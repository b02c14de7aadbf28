"""
Notification center of a tenant: channel settings, payment follow-up,
templates, delivery log, scheduled queue and manual sends.
"""
from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, CurrentUser, require_permissions, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.notification import NotificationChannel, NotificationTrigger
from atelier.models.user import UserRole
from atelier.schemas.notification import (
    NotificationSettingsResponse,
    NotificationSettingsUpdate,
    FollowUpSettingsResponse,
    FollowUpSettingsUpdate,
    TemplateCreate,
    TemplateUpdate,
    TemplateResponse,
    TemplateTestRequest,
    NotificationLogResponse,
    NotificationLogListResponse,
    ScheduledNotificationResponse,
    ScheduledNotificationListResponse,
    ManualSendRequest,
    SendResult,
    NotificationStatsResponse,
    TriggerRequest,
    UpcomingBirthdayResponse,
)
from atelier.services.notification_service import NotificationService


router = APIRouter(tags=["Notifications"], dependencies=[Depends(require_permissions("notifications"))])

admin_only = [Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))]


# ==================== Settings ====================

@router.get("/settings", response_model=NotificationSettingsResponse)
async def get_settings(db: DB):
    return NotificationSettingsResponse.model_validate(await NotificationService(db).get_settings())


@router.put("/settings", response_model=NotificationSettingsResponse, dependencies=admin_only)
async def update_settings(data: NotificationSettingsUpdate, db: DB):
    """Channels, failover order, dual send, test mode and admin recipients."""
    changes = data.model_dump(exclude_unset=True)
    try:
        if changes.get("failover_order"):
            changes["failover_order"] = [NotificationChannel(c.upper()).value for c in changes["failover_order"]]
        notif_settings = await NotificationService(db).update_settings(changes)
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return NotificationSettingsResponse.model_validate(notif_settings)


@router.get("/follow-up", response_model=FollowUpSettingsResponse)
async def get_follow_up_settings(db: DB):
    return FollowUpSettingsResponse.model_validate(await NotificationService(db).get_follow_up_settings())


@router.put("/follow-up", response_model=FollowUpSettingsResponse, dependencies=admin_only)
async def update_follow_up_settings(data: FollowUpSettingsUpdate, db: DB):
    try:
        follow_up = await NotificationService(db).update_follow_up_settings(data.model_dump(exclude_unset=True))
    except AtelierError as e:
        raise http_error(e)
    return FollowUpSettingsResponse.model_validate(follow_up)


# ==================== Templates ====================

@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    db: DB,
    trigger: Optional[str] = Query(None),
    channel: Optional[str] = Query(None),
):
    templates = await NotificationService(db).list_templates(trigger=trigger, channel=channel)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(data: TemplateCreate, db: DB):
    """One template per trigger and channel; placeholders use {variable}."""
    payload = data.model_dump()
    try:
        payload["trigger"] = NotificationTrigger(payload["trigger"].upper()).value
        payload["channel"] = NotificationChannel(payload["channel"].upper()).value
        template = await NotificationService(db).create_template(payload)
    except (AtelierError, ValueError) as e:
        raise http_error(e)
    return TemplateResponse.model_validate(template)


@router.post("/templates/seed", dependencies=admin_only)
async def seed_templates(db: DB):
    """Restore the default templates that are missing; existing ones are kept."""
    created = await NotificationService(db).seed_default_templates()
    return {"created": created}


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(template_id: uuid.UUID, data: TemplateUpdate, db: DB):
    try:
        template = await NotificationService(db).update_template(template_id, data.model_dump(exclude_unset=True))
    except AtelierError as e:
        raise http_error(e)
    return TemplateResponse.model_validate(template)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: uuid.UUID, db: DB):
    try:
        await NotificationService(db).delete_template(template_id)
    except AtelierError as e:
        raise http_error(e)


@router.post("/templates/{template_id}/test", response_model=SendResult)
async def test_template(template_id: uuid.UUID, data: TemplateTestRequest, db: DB):
    """Render with sample values and send to the given phone."""
    try:
        return await NotificationService(db).test_template(template_id, data.phone)
    except AtelierError as e:
        raise http_error(e)


# ==================== Logs, queue & stats ====================

@router.get("/logs", response_model=NotificationLogListResponse)
async def list_logs(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    trigger: Optional[str] = Query(None),
    channel: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Recipient phone, name or content"),
):
    result = await NotificationService(db).list_logs(
        trigger=trigger, channel=channel, status=status, search=search, page=page, size=size
    )
    return NotificationLogListResponse(
        items=[NotificationLogResponse.model_validate(log) for log in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.get("/scheduled", response_model=ScheduledNotificationListResponse)
async def list_scheduled(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    status: Optional[str] = Query(None),
):
    result = await NotificationService(db).list_scheduled(status=status, page=page, size=size)
    return ScheduledNotificationListResponse(
        items=[ScheduledNotificationResponse.model_validate(s) for s in result["items"]],
        total=result["total"],
        page=page,
        size=size,
        pages=result["pages"],
    )


@router.post("/scheduled/process", dependencies=admin_only)
async def process_scheduled(db: DB):
    """Run the due queue now instead of waiting for the scheduler."""
    return await NotificationService(db).process_scheduled_notifications()


@router.get("/stats", response_model=NotificationStatsResponse)
async def notification_stats(db: DB):
    return NotificationStatsResponse(**await NotificationService(db).stats())


# ==================== Birthdays ====================

@router.get("/birthdays", response_model=List[UpcomingBirthdayResponse])
async def upcoming_birthdays(db: DB, days: int = Query(30, ge=0, le=366)):
    """Customers with a birthday in the coming days and whether they were greeted this year."""
    return [UpcomingBirthdayResponse(**row) for row in await NotificationService(db).upcoming_birthdays(days=days)]


@router.post("/birthdays/send", dependencies=admin_only)
async def send_birthday_greetings(db: DB):
    """Greet today's birthdays now instead of waiting for the scheduler."""
    return await NotificationService(db).send_birthday_greetings()


# ==================== Sending ====================

@router.post("/send", response_model=SendResult)
async def send_manual(data: ManualSendRequest, db: DB, current_user: CurrentUser):
    try:
        return await NotificationService(db).send_manual(data.channel, data.phone, data.message)
    except AtelierError as e:
        raise http_error(e)


@router.post("/trigger", response_model=SendResult, dependencies=admin_only)
async def fire_trigger(data: TriggerRequest, db: DB):
    """Fire a trigger by hand with its data, e.g. {"order_id": ...}."""
    try:
        trigger = NotificationTrigger(data.trigger.upper())
    except ValueError as e:
        raise http_error(e)
    return await NotificationService(db).send_notification(trigger, data.data, send_both=data.send_both)
