"""
APScheduler configuration.

Every job runs across all active tenants through the TenantJobRunner;
a failure in one tenant does not stop the others.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from atelier.config import settings

logger = logging.getLogger(__name__)

jobstores = {
    'default': MemoryJobStore()
}

executors = {
    'default': AsyncIOExecutor(),
}

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_tenant_aware_job(job_name: str):
    """Called by APScheduler; delegates the tenant iteration to the runner."""
    from atelier.jobs.tenant_job_runner import run_tenant_job

    try:
        result = await run_tenant_job(job_name)
        logger.info(
            f"Job '{job_name}' completed: "
            f"{result.get('successful', 0)}/{result.get('tenant_count', 0)} tenants successful"
        )
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Register the tenant jobs and start the scheduler."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background scheduler disabled")
        return

    if not scheduler.running:
        # Registers the @tenant_job functions
        from atelier.jobs import notification_jobs  # noqa: F401

        scheduler.add_job(
            run_tenant_aware_job,
            'interval',
            minutes=settings.SCHEDULED_NOTIFICATIONS_INTERVAL_MINUTES,
            args=['process_scheduled_notifications'],
            id='process_scheduled_notifications',
            name='[Multi-Tenant] Process Scheduled Notifications',
            replace_existing=True,
        )

        scheduler.add_job(
            run_tenant_aware_job,
            'cron',
            hour=settings.DAILY_REPORT_HOUR,
            minute=0,
            args=['send_daily_report'],
            id='send_daily_report',
            name='[Multi-Tenant] Daily Sales Report',
            replace_existing=True,
        )

        scheduler.add_job(
            run_tenant_aware_job,
            'cron',
            hour=settings.BIRTHDAY_GREETING_HOUR,
            minute=0,
            args=['send_birthday_greetings'],
            id='send_birthday_greetings',
            name='[Multi-Tenant] Birthday Greetings',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Multi-tenant background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
