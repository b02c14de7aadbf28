from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from atelier.api.deps import DB, require_permissions
from atelier.core.dates import utc_now
from atelier.services.report_service import ReportService


router = APIRouter(tags=["Reports"], dependencies=[Depends(require_permissions("dashboard"))])


@router.get("/dashboard")
async def dashboard(db: DB):
    """Revenue for today, this week and this month, with order and workshop counters."""
    return await ReportService(db).dashboard()


@router.get("/daily")
async def daily_report(db: DB, day: Optional[date] = Query(None, description="Defaults to today (UTC)")):
    return await ReportService(db).daily_sales_report(day or utc_now().date())
