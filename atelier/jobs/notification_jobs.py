"""Per-tenant notification jobs run by the scheduler."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from atelier.jobs.tenant_job_runner import tenant_job
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@tenant_job("process_scheduled_notifications")
async def process_scheduled_notifications_job(session: AsyncSession, tenant: dict) -> dict:
    """Send due payment reminders and review requests."""
    stats = await NotificationService(session).process_scheduled_notifications()
    if stats.get("processed"):
        logger.info(f"Tenant '{tenant['subdomain']}': scheduled notifications {stats}")
    return stats


@tenant_job("send_daily_report")
async def send_daily_report_job(session: AsyncSession, tenant: dict):
    result = await NotificationService(session).send_daily_report()
    if result is None:
        logger.debug(f"Tenant '{tenant['subdomain']}': daily report disabled")
    return result


@tenant_job("send_birthday_greetings")
async def send_birthday_greetings_job(session: AsyncSession, tenant: dict) -> dict:
    stats = await NotificationService(session).send_birthday_greetings()
    if stats.get("sent") or stats.get("failed"):
        logger.info(f"Tenant '{tenant['subdomain']}': birthday greetings {stats}")
    return stats
