"""
FastAPI router for revenue and funnel reports.

Key Endpoints:
- GET /reports/cohorts?start=&end= - Funnel cohort retention report
- GET /reports/mrr?start=&end= - MRR decomposition report

An end date before the start date is rejected with 400. A report whose MRR
movements fail reconciliation returns 500 (InconsistentState).
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from retention_analytics.core.dependencies import SettingsDep, StoreDep
from retention_analytics.models import FunnelCohortReport, RevenueMrrReport
from retention_analytics.services.cohorts import funnel_cohort_report
from retention_analytics.services.mrr import revenue_mrr_report


logger = logging.getLogger(__name__)

router = APIRouter()


def _check_range(start: date, end: date) -> None:
    if end < start:
        logger.warning(f"Report rejected: end {end} before start {start}")
        raise HTTPException(status_code=400, detail="end must not be before start")


@router.get("/cohorts", response_model=FunnelCohortReport)
async def get_cohort_report(
    store: StoreDep,
    settings: SettingsDep,
    start: date = Query(..., description="First lead creation day"),
    end: date = Query(..., description="Last lead creation day"),
    today: Optional[date] = Query(None, description="Reference date for future offsets"),
) -> FunnelCohortReport:
    _check_range(start, end)
    return await funnel_cohort_report(store, start, end, today=today, settings=settings)


@router.get("/mrr", response_model=RevenueMrrReport)
async def get_mrr_report(
    store: StoreDep,
    settings: SettingsDep,
    start: date = Query(..., description="Any day of the first report month"),
    end: date = Query(..., description="Any day of the last report month"),
) -> RevenueMrrReport:
    _check_range(start, end)
    return await revenue_mrr_report(store, start, end, settings=settings)
