"""
Retention analytics services.

Business logic of the engine. Every service reads CRM data through the
CrmStore protocol and the paginated aggregator, so each one can be exercised
against an in-memory store in tests.

Services:
- aggregator: exhaustive paged reads from the store
- store: CrmStore protocol and its asyncpg implementation
- health_score: five-component client health score and classification
- churn_prediction: churn probability, churn events and their resolution
- playbooks: retention playbook engine (templates, instances, actions)
- retention_overview: at-risk client rows and retention dashboard
- cohorts: funnel cohort retention report
- mrr: MRR decomposition report
"""

# =============================================================================
# Aggregation and Storage
# =============================================================================

from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.store import CrmStore, PostgresCrmStore

# =============================================================================
# Health Score Service Exports
# =============================================================================

from retention_analytics.services.health_score import (
    HEALTH_SCORE_WEIGHTS,
    build_activity_snapshot,
    build_scoring_context,
    bulk_compute_health_scores,
    classify_score,
    composite_score,
    compute_health_score,
    get_latest_health_score,
    list_health_scores,
    load_scoring_context,
    score_components,
)

# =============================================================================
# Churn Prediction Service Exports
# =============================================================================

from retention_analytics.services.churn_prediction import (
    AT_RISK_CLASSIFICATIONS,
    build_risk_factors,
    churn_summary,
    get_client_churn_risk,
    predict_churn_probability,
    resolve_churn_events,
    scan_churn_risk,
)

# =============================================================================
# Retention Playbook Engine and Overview
# =============================================================================

from retention_analytics.services.playbooks import RetentionPlaybookEngine
from retention_analytics.services.retention_overview import (
    at_risk_clients,
    retention_dashboard,
)

# =============================================================================
# Reports
# =============================================================================

from retention_analytics.services.cohorts import funnel_cohort_report
from retention_analytics.services.mrr import decompose_mrr, revenue_mrr_report

__all__ = [
    # ----- Aggregation and Storage -----
    'fetch_all',
    'CrmStore',
    'PostgresCrmStore',
    # ----- Health Score -----
    'HEALTH_SCORE_WEIGHTS',
    'build_activity_snapshot',
    'build_scoring_context',
    'bulk_compute_health_scores',
    'classify_score',
    'composite_score',
    'compute_health_score',
    'get_latest_health_score',
    'list_health_scores',
    'load_scoring_context',
    'score_components',
    # ----- Churn Prediction -----
    'AT_RISK_CLASSIFICATIONS',
    'build_risk_factors',
    'churn_summary',
    'get_client_churn_risk',
    'predict_churn_probability',
    'resolve_churn_events',
    'scan_churn_risk',
    # ----- Playbooks and Overview -----
    'RetentionPlaybookEngine',
    'at_risk_clients',
    'retention_dashboard',
    # ----- Reports -----
    'funnel_cohort_report',
    'decompose_mrr',
    'revenue_mrr_report',
]
