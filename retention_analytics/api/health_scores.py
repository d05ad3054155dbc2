"""
FastAPI router for client health scores.

Key Endpoints:
- GET /health-scores - Stored scores, lowest first, optional classification filter
- GET /health-scores/{client_id} - Latest stored score of one client
- POST /health-scores/recompute - Bulk recomputation for all active clients
- POST /health-scores/{client_id}/compute - Recompute one client

Domain errors (NotFound, AggregationFailure) propagate to the exception
handlers registered in retention_analytics.main.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query

from retention_analytics.core.dependencies import SettingsDep, StoreDep
from retention_analytics.models import BulkRecomputeResult, HealthClassification, HealthScore
from retention_analytics.services.health_score import (
    bulk_compute_health_scores,
    compute_health_score,
    get_latest_health_score,
    list_health_scores,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[HealthScore])
async def get_health_scores(
    store: StoreDep,
    settings: SettingsDep,
    classification: Optional[List[HealthClassification]] = Query(
        None, description="Only scores in these classifications"
    ),
) -> List[HealthScore]:
    """List stored health scores, lowest score first."""
    return await list_health_scores(store, classification, settings=settings)


@router.post("/recompute", response_model=BulkRecomputeResult)
async def recompute_health_scores(
    store: StoreDep,
    settings: SettingsDep,
    as_of: Optional[date] = Query(None, description="Reference date (default: today)"),
) -> BulkRecomputeResult:
    """Recompute the health score of every active client."""
    result = await bulk_compute_health_scores(store, as_of=as_of, settings=settings)
    logger.info(f"POST /health-scores/recompute: {result.computed} clients scored")
    return result


@router.get("/{client_id}", response_model=HealthScore)
async def get_health_score(client_id: str, store: StoreDep) -> HealthScore:
    """Return the latest stored score of a client (404 if never scored)."""
    return await get_latest_health_score(store, client_id)


@router.post("/{client_id}/compute", response_model=HealthScore)
async def compute_client_health_score(
    client_id: str,
    store: StoreDep,
    settings: SettingsDep,
    as_of: Optional[date] = Query(None, description="Reference date (default: today)"),
) -> HealthScore:
    """Recompute and store the health score of one client."""
    return await compute_health_score(store, client_id, as_of=as_of, settings=settings)
