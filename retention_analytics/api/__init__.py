"""
Retention analytics API package.

Router modules:
- health_scores: client health scores and recomputation
- churn: churn summary, scans and resolution
- retention: playbooks, actions, at-risk rows and dashboard
- reports: funnel cohort and MRR reports
"""

from fastapi import APIRouter

from retention_analytics.api.health_scores import router as health_scores_router
from retention_analytics.api.churn import router as churn_router
from retention_analytics.api.retention import router as retention_router
from retention_analytics.api.reports import router as reports_router

api_router = APIRouter()

api_router.include_router(health_scores_router, prefix="/health-scores", tags=["health-scores"])
api_router.include_router(churn_router, prefix="/churn", tags=["churn"])
api_router.include_router(retention_router, prefix="/retention", tags=["retention"])
api_router.include_router(reports_router, prefix="/reports", tags=["reports"])

__all__ = [
    "api_router",
    "health_scores_router",
    "churn_router",
    "retention_router",
    "reports_router",
]
