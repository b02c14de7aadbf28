"""
Tenant-aware job runner.

Jobs are registered with @tenant_job and receive a session bound to the
tenant schema plus a dict describing the tenant:

    @tenant_job("process_scheduled_notifications")
    async def process_scheduled(session, tenant):
        ...
"""

import logging
import asyncio
from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone
from functools import wraps

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.database import async_session_factory, get_tenant_session
from atelier.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

# Registry of tenant-aware jobs
_tenant_jobs: Dict[str, Callable] = {}


def tenant_job(name: str):
    """Register a coroutine ``func(session, tenant)`` as a tenant job."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(session: AsyncSession, tenant: dict):
            return await func(session, tenant)

        _tenant_jobs[name] = wrapper
        logger.debug(f"Registered tenant job: {name}")
        return wrapper
    return decorator


def registered_jobs() -> List[str]:
    return sorted(_tenant_jobs)


class TenantJobRunner:
    """
    Executes a job once per active tenant.

    Each tenant gets its own session and transaction; at most
    max_concurrent tenants are processed at the same time.
    """

    def __init__(self, max_concurrent: int = 5):
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def get_active_tenants(self) -> List[dict]:
        async with async_session_factory() as session:
            result = await session.execute(
                select(Tenant)
                .where(Tenant.status == TenantStatus.ACTIVE.value)
                .order_by(Tenant.created_at)
            )
            return [
                {
                    "id": str(tenant.id),
                    "name": tenant.name,
                    "subdomain": tenant.subdomain,
                    "database_schema": tenant.database_schema,
                    "settings": tenant.settings or {},
                }
                for tenant in result.scalars().all()
            ]

    async def run_job_for_tenant(self, job_name: str, job_func: Callable, tenant: dict) -> dict:
        subdomain = tenant["subdomain"]
        start_time = datetime.now(timezone.utc)

        result = {
            "tenant_id": tenant["id"],
            "subdomain": subdomain,
            "job": job_name,
            "status": "pending",
            "started_at": start_time.isoformat(),
            "error": None,
            "duration_ms": 0,
        }

        try:
            async with self._semaphore:
                async with get_tenant_session(tenant["database_schema"]) as session:
                    result["output"] = await job_func(session, tenant)
            result["status"] = "success"
        except Exception as e:
            result["status"] = "failed"
            result["error"] = str(e)
            logger.error(f"Job '{job_name}' failed for tenant '{subdomain}': {e}")

        end_time = datetime.now(timezone.utc)
        result["duration_ms"] = int((end_time - start_time).total_seconds() * 1000)
        result["completed_at"] = end_time.isoformat()
        return result

    async def run_job(self, job_name: str) -> dict:
        if job_name not in _tenant_jobs:
            raise ValueError(f"Unknown job: {job_name}. Registered: {registered_jobs()}")

        job_func = _tenant_jobs[job_name]
        start_time = datetime.now(timezone.utc)
        logger.info(f"Starting tenant job: {job_name}")

        tenants = await self.get_active_tenants()
        if not tenants:
            logger.info(f"No active tenants found. Job '{job_name}' skipped.")
            return {
                "job": job_name,
                "status": "skipped",
                "reason": "no_active_tenants",
                "tenant_count": 0,
            }

        results = await asyncio.gather(
            *(self.run_job_for_tenant(job_name, job_func, tenant) for tenant in tenants)
        )
        successful = sum(1 for r in results if r["status"] == "success")
        failed = len(results) - successful

        end_time = datetime.now(timezone.utc)
        total_duration = int((end_time - start_time).total_seconds() * 1000)
        logger.info(
            f"Job '{job_name}' completed: {successful}/{len(tenants)} successful "
            f"in {total_duration}ms"
        )
        return {
            "job": job_name,
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": total_duration,
            "tenant_count": len(tenants),
            "successful": successful,
            "failed": failed,
            "results": list(results),
        }


_runner: Optional[TenantJobRunner] = None


def get_tenant_job_runner() -> TenantJobRunner:
    global _runner
    if _runner is None:
        _runner = TenantJobRunner()
    return _runner


async def run_tenant_job(job_name: str) -> dict:
    return await get_tenant_job_runner().run_job(job_name)
