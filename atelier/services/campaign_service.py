"""
Bulk SMS / WhatsApp campaigns.

A campaign is stored in status SENDING with its resolved recipients and
dispatched in the background with its own tenant session; the HTTP
request returns immediately.
"""
import logging
import re
import uuid
from typing import Optional, List, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.config import settings
from atelier.core.dates import format_date, utc_now
from atelier.core.exceptions import NotFoundError, BusinessRuleError
from atelier.database import get_tenant_session
from atelier.models.campaign import Campaign, CampaignLog, CampaignChannel, CampaignTarget, CampaignStatus
from atelier.models.notification import NotificationStatus
from atelier.models.order import Order
from atelier.models.user import User, UserRole
from atelier.services.customer_service import CustomerService
from atelier.services.messaging_service import get_messaging_service, SMSingService
from atelier.services.notification_service import NotificationService, clean_phone, format_cfa

logger = logging.getLogger(__name__)


def parse_numbers(numbers: Union[str, List[str], None]) -> List[str]:
    """Clean and deduplicate phone numbers, keeping their first-seen order."""
    if not numbers:
        return []
    if isinstance(numbers, str):
        numbers = re.split(r"[,;\n]+", numbers)
    seen = []
    for number in numbers:
        cleaned = clean_phone(number)
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class CampaignService:

    def __init__(self, db: AsyncSession, messaging: Optional[SMSingService] = None):
        self.db = db
        self.messaging = messaging or get_messaging_service()

    async def _all_customers(self) -> List[dict]:
        result = await self.db.execute(
            select(User)
            .where(
                User.role == UserRole.CUSTOMER.value,
                User.is_active == True,  # noqa: E712
                User.phone.is_not(None),
                User.phone != "",
            )
            .order_by(User.name)
        )
        return [
            {"phone": user.phone, "name": user.name, "user_id": str(user.id)}
            for user in result.scalars().all()
        ]

    async def _custom_recipients(self, numbers: List[str]) -> List[dict]:
        result = await self.db.execute(select(User).where(User.phone.in_(numbers)))
        known = {user.phone: user for user in result.scalars().all()}
        return [
            {
                "phone": number,
                "name": known[number].name if number in known else None,
                "user_id": str(known[number].id) if number in known else None,
            }
            for number in numbers
        ]

    async def create_campaign(
        self,
        name: str,
        channel: str,
        message: str,
        target: str = CampaignTarget.ALL.value,
        custom_numbers: Union[str, List[str], None] = None,
        user: Optional[User] = None,
    ) -> Campaign:
        """
        Create a campaign ready to be dispatched.

        Raises:
            BusinessRuleError: missing fields or no recipient
        """
        if not name or not channel or not message:
            raise BusinessRuleError("Name, channel and message are required")
        try:
            channel = CampaignChannel(channel.upper()).value
            target = CampaignTarget((target or "ALL").upper()).value
        except ValueError as e:
            raise BusinessRuleError(str(e))

        if target == CampaignTarget.ALL.value:
            recipients = await self._all_customers()
        else:
            recipients = await self._custom_recipients(parse_numbers(custom_numbers))
        if not recipients:
            raise BusinessRuleError("No recipients for this campaign")

        campaign = Campaign(
            name=name,
            channel=channel,
            message=message,
            target=target,
            recipients=recipients,
            status=CampaignStatus.SENDING.value,
            total_recipients=len(recipients),
            created_by_id=user.id if user else None,
        )
        self.db.add(campaign)
        await self.db.flush()
        logger.info(f"Campaign '{name}' queued for {len(recipients)} recipients on {channel}")
        return campaign

    async def _recipient_variables(self, recipient: dict) -> dict:
        variables = {
            "store_name": settings.STORE_NAME,
            "store_url": settings.STORE_URL,
            "store_phone": settings.STORE_PHONE,
            "store_whatsapp": settings.STORE_WHATSAPP,
            "store_address": settings.STORE_ADDRESS,
            "customer_name": recipient.get("name") or "Client",
            "customer_phone": recipient["phone"],
            "customer_email": "",
            "order_count": 0,
            "total_spent": format_cfa(0),
            "last_order_date": "",
        }
        if not recipient.get("user_id"):
            return variables

        user_id = uuid.UUID(recipient["user_id"])
        user = await self.db.get(User, user_id)
        if user is None:
            return variables
        variables["customer_email"] = user.email or ""
        variables["order_count"] = await self.db.scalar(
            select(func.count(Order.id)).where(Order.user_id == user_id)
        ) or 0
        variables["total_spent"] = format_cfa(await CustomerService(self.db).total_spent(user_id))
        last_order = await self.db.scalar(select(func.max(Order.created_at)).where(Order.user_id == user_id))
        variables["last_order_date"] = format_date(last_order)
        return variables

    async def dispatch(self, campaign_id: uuid.UUID) -> Campaign:
        campaign = await self.db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")

        sent = failed = 0
        for recipient in campaign.recipients:
            variables = await self._recipient_variables(recipient)
            content = NotificationService.render_template(campaign.message, variables)

            if campaign.channel == CampaignChannel.WHATSAPP.value:
                result = await self.messaging.send_whatsapp(recipient["phone"], content)
            else:
                result = await self.messaging.send_sms(recipient["phone"], content)

            self.db.add(CampaignLog(
                campaign_id=campaign.id,
                recipient_phone=recipient["phone"],
                recipient_name=recipient.get("name"),
                content=content,
                status=NotificationStatus.SENT.value if result.success else NotificationStatus.FAILED.value,
                error=result.error,
                provider_id=result.message_id,
            ))
            if result.success:
                sent += 1
            else:
                failed += 1

        campaign.sent_count = sent
        campaign.failed_count = failed
        campaign.status = CampaignStatus.FAILED.value if sent == 0 else CampaignStatus.SENT.value
        campaign.sent_at = utc_now()
        await self.db.flush()
        logger.info(f"Campaign {campaign.name}: {sent} sent, {failed} failed")
        return campaign

    async def list_campaigns(
        self,
        channel: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> dict:
        conditions = []
        if channel:
            conditions.append(Campaign.channel == channel.upper())
        if status:
            conditions.append(Campaign.status == status.upper())
        total = await self.db.scalar(select(func.count(Campaign.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Campaign)
            .where(*conditions)
            .order_by(Campaign.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return {"items": list(result.scalars().all()), "total": total, "page": page, "size": size,
                "pages": (total + size - 1) // size}

    async def get_campaign(self, campaign_id: uuid.UUID) -> dict:
        campaign = await self.db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")
        logs = await self.db.execute(
            select(CampaignLog)
            .where(CampaignLog.campaign_id == campaign.id)
            .order_by(CampaignLog.created_at)
        )
        return {"campaign": campaign, "logs": list(logs.scalars().all())}

    async def campaign_stats(self) -> dict:
        rows = await self.db.execute(
            select(
                Campaign.status,
                func.count(Campaign.id),
                func.coalesce(func.sum(Campaign.sent_count), 0),
                func.coalesce(func.sum(Campaign.failed_count), 0),
            ).group_by(Campaign.status)
        )
        by_status = {}
        total_sent = total_failed = 0
        for status, count, sent, failed in rows.all():
            by_status[status] = count
            total_sent += int(sent)
            total_failed += int(failed)

        attempts = total_sent + total_failed
        return {
            "total_campaigns": sum(by_status.values()),
            "by_status": by_status,
            "messages_sent": total_sent,
            "messages_failed": total_failed,
            "success_rate": round(total_sent / attempts * 100, 1) if attempts else 0.0,
        }


async def run_campaign(schema: str, campaign_id: uuid.UUID) -> None:
    """Background task entry point; one session per campaign."""
    try:
        async with get_tenant_session(schema) as db:
            await CampaignService(db).dispatch(campaign_id)
    except Exception as e:
        logger.error(f"Campaign {campaign_id} dispatch failed in {schema}: {e}", exc_info=True)
        async with get_tenant_session(schema) as db:
            campaign = await db.get(Campaign, campaign_id)
            if campaign is not None:
                campaign.status = CampaignStatus.FAILED.value
