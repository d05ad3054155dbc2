"""
FastAPI router for churn prediction.

Key Endpoints:
- GET /churn/summary - Office churn event statistics
- POST /churn/scan - Open pending events for at-risk clients
- POST /churn/resolve - Resolve pending events from observed revenue
- GET /churn/events - Churn events filtered by client and status, newest first
- POST /churn/events/{event_id}/resolve - Record an observed outcome (409 if resolved)
- GET /churn/clients/{client_id} - Current churn outlook of one client
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query

from retention_analytics.core.dependencies import SettingsDep, StoreDep
from retention_analytics.models import (
    ChurnEvent,
    ChurnEventStatus,
    ChurnResolutionResult,
    ChurnScanResult,
    ChurnSummary,
    ClientChurnRisk,
    ResolveChurnEventRequest,
)
from retention_analytics.services.churn_prediction import (
    churn_summary,
    get_client_churn_risk,
    list_churn_events,
    resolve_churn_event_manually,
    resolve_churn_events,
    scan_churn_risk,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/summary", response_model=ChurnSummary)
async def get_churn_summary(store: StoreDep, settings: SettingsDep) -> ChurnSummary:
    return await churn_summary(store, settings=settings)


@router.post("/scan", response_model=ChurnScanResult)
async def run_churn_scan(store: StoreDep, settings: SettingsDep) -> ChurnScanResult:
    """Open a pending churn event for each critical or lost client without one."""
    return await scan_churn_risk(store, settings=settings)


@router.post("/resolve", response_model=ChurnResolutionResult)
async def run_churn_resolution(
    store: StoreDep,
    settings: SettingsDep,
    as_of: Optional[date] = Query(None, description="Reference date (default: today)"),
) -> ChurnResolutionResult:
    """Mark pending events retained or churned where the outcome is known."""
    return await resolve_churn_events(store, as_of=as_of, settings=settings)


@router.get("/events", response_model=List[ChurnEvent])
async def get_churn_events(
    store: StoreDep,
    settings: SettingsDep,
    client_id: Optional[str] = Query(None, description="Only events of this client"),
    status: Optional[ChurnEventStatus] = Query(None, description="Only events in this status"),
) -> List[ChurnEvent]:
    return await list_churn_events(store, client_id=client_id, status=status, settings=settings)


@router.post("/events/{event_id}/resolve", response_model=ChurnEvent)
async def resolve_churn_event(
    event_id: str,
    request: ResolveChurnEventRequest,
    store: StoreDep,
) -> ChurnEvent:
    """Record whether the client was retained or churned, and what was done."""
    return await resolve_churn_event_manually(
        store, event_id, request.status, action_taken=request.action_taken
    )


@router.get("/clients/{client_id}", response_model=ClientChurnRisk)
async def get_churn_risk(client_id: str, store: StoreDep) -> ClientChurnRisk:
    return await get_client_churn_risk(store, client_id)
