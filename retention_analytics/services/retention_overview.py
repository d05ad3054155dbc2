"""
At-risk overview and retention dashboard.

Joins the latest health scores with client records, active playbooks and
pending actions into the rows an advisor works from, and aggregates office
retention counters.

Usage:
    rows = await at_risk_clients(store)
    dashboard = await retention_dashboard(store, today=date(2025, 7, 1))
    pending = await list_retention_actions(store, status=RetentionActionStatus.PENDING)
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.models import (
    AtRiskClient,
    HealthClassification,
    HealthScore,
    PlaybookInstance,
    PlaybookInstanceStatus,
    RetentionAction,
    RetentionActionStatus,
    RetentionDashboard,
)
from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.churn_prediction import AT_RISK_CLASSIFICATIONS, churn_summary
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)


async def at_risk_clients(
    store: CrmStore,
    classifications: Optional[Sequence[HealthClassification]] = None,
    settings: Optional[Settings] = None,
) -> List[AtRiskClient]:
    """
    Clients whose latest classification is at risk, lowest score first.

    Args:
        store: CRM store.
        classifications: Classifications to include (default: critical and lost).
        settings: Settings override.

    Returns:
        One row per client with its active playbook name and next pending action.
    """
    settings = settings or get_settings()
    wanted = list(classifications) if classifications else list(AT_RISK_CLASSIFICATIONS)

    scores: List[HealthScore] = await fetch_all(
        store.fetch_health_score_page,
        description="at-risk health scores",
        page_size=settings.page_size,
        classifications=wanted,
    )
    if not scores:
        return []

    client_ids = [s.client_id for s in scores]
    clients = await fetch_all(
        store.fetch_client_page,
        description="at-risk clients",
        page_size=settings.page_size,
        client_ids=client_ids,
    )
    instances: List[PlaybookInstance] = await fetch_all(
        store.fetch_instance_page,
        description="active playbooks of at-risk clients",
        page_size=settings.page_size,
        status=PlaybookInstanceStatus.ACTIVE,
        client_ids=client_ids,
    )
    pending: List[RetentionAction] = await fetch_all(
        store.fetch_action_page,
        description="pending actions of at-risk clients",
        page_size=settings.page_size,
        status=RetentionActionStatus.PENDING,
        client_ids=client_ids,
    )

    client_by_id = {c.id: c for c in clients}
    active_by_client = {i.client_id: i for i in instances}
    next_by_instance: Dict[str, RetentionAction] = {}
    for action in pending:
        current = next_by_instance.get(action.instance_id)
        if current is None or action.order < current.order:
            next_by_instance[action.instance_id] = action

    rows: List[AtRiskClient] = []
    for health in sorted(scores, key=lambda s: (s.score, s.client_id)):
        client = client_by_id.get(health.client_id)
        if client is None:
            logger.warning(f"Health score for unknown client {health.client_id} skipped")
            continue
        instance = active_by_client.get(health.client_id)
        rows.append(
            AtRiskClient(
                client_id=client.id,
                client_name=client.name,
                assessor_id=client.assessor_id,
                score=health.score,
                classification=health.classification,
                churn_probability=health.churn_probability,
                active_playbook=instance.template_name if instance else None,
                next_action=next_by_instance.get(instance.id) if instance else None,
            )
        )
    return rows


async def list_retention_actions(
    store: CrmStore,
    status: Optional[RetentionActionStatus] = None,
    assigned_to: Optional[str] = None,
    client_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> List[RetentionAction]:
    """
    Retention actions across playbooks, earliest due date first.

    Args:
        store: CRM store.
        status: Only actions in this status.
        assigned_to: Only actions assigned to this assessor.
        client_id: Only actions of this client.
        settings: Settings override.
    """
    settings = settings or get_settings()
    return await fetch_all(
        store.fetch_action_page,
        description="retention actions",
        page_size=settings.page_size,
        status=status,
        assigned_to=assigned_to,
        client_ids=[client_id] if client_id is not None else None,
    )


async def retention_dashboard(
    store: CrmStore,
    today: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> RetentionDashboard:
    """
    Office retention counters plus the at-risk rows.

    An action is overdue when it is still pending and its due date is before
    `today`.
    """
    settings = settings or get_settings()
    today = today or datetime.now(timezone.utc).date()

    rows = await at_risk_clients(store, settings=settings)
    active: List[PlaybookInstance] = await fetch_all(
        store.fetch_instance_page,
        description="active playbooks",
        page_size=settings.page_size,
        status=PlaybookInstanceStatus.ACTIVE,
    )
    actions: List[RetentionAction] = await fetch_all(
        store.fetch_action_page,
        description="retention actions",
        page_size=settings.page_size,
    )
    summary = await churn_summary(store, settings=settings)

    by_status: Dict[RetentionActionStatus, int] = defaultdict(int)
    overdue = 0
    for action in actions:
        by_status[action.status] += 1
        if action.status is RetentionActionStatus.PENDING and action.due_date < today:
            overdue += 1

    return RetentionDashboard(
        clients_at_risk=len(rows),
        active_playbooks=len(active),
        actions_pending=by_status[RetentionActionStatus.PENDING],
        actions_overdue=overdue,
        actions_completed=by_status[RetentionActionStatus.COMPLETED],
        retention_rate=summary.retention_rate,
        at_risk_clients=rows,
    )
