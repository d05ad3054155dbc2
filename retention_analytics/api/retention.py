"""
FastAPI router for retention playbooks and the retention dashboard.

Key Endpoints:
- GET /retention/playbooks - Active playbook templates
- GET /retention/at-risk - At-risk client rows
- GET /retention/dashboard - Office retention counters
- POST /retention/clients/{client_id}/playbook - Start a playbook (409 if one is active)
- GET /retention/clients/{client_id}/playbook - Active playbook with its actions
- DELETE /retention/clients/{client_id}/playbook - Abandon the active playbook
- GET /retention/clients/{client_id}/next-action - Lowest-order pending action
- GET /retention/actions - Actions filtered by status, assignee and client
- POST /retention/actions/{action_id}/complete - Complete a pending action
- POST /retention/actions/{action_id}/skip - Skip a pending action

Mutations go through the shared RetentionPlaybookEngine (EngineDep) so they
are serialized per client.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from retention_analytics.core.dependencies import EngineDep, SettingsDep, StoreDep
from retention_analytics.models import (
    ActivePlaybook,
    AtRiskClient,
    HealthClassification,
    PlaybookInstance,
    PlaybookTemplate,
    ResolveActionRequest,
    RetentionAction,
    RetentionActionStatus,
    RetentionDashboard,
    StartPlaybookRequest,
)
from retention_analytics.services.retention_overview import (
    at_risk_clients,
    list_retention_actions,
    retention_dashboard,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Templates and Overview
# =============================================================================


@router.get("/playbooks", response_model=List[PlaybookTemplate])
async def list_playbooks(
    engine: EngineDep,
    classification: Optional[HealthClassification] = Query(
        None, description="Only templates targeting this classification"
    ),
) -> List[PlaybookTemplate]:
    return await engine.list_retention_playbook_templates(classification)


@router.get("/at-risk", response_model=List[AtRiskClient])
async def list_at_risk_clients(
    store: StoreDep,
    settings: SettingsDep,
    classification: Optional[List[HealthClassification]] = Query(
        None, description="Classifications to include (default: critical, lost)"
    ),
) -> List[AtRiskClient]:
    return await at_risk_clients(store, classification, settings=settings)


@router.get("/dashboard", response_model=RetentionDashboard)
async def get_retention_dashboard(
    store: StoreDep,
    settings: SettingsDep,
    today: Optional[date] = Query(None, description="Reference date for overdue actions"),
) -> RetentionDashboard:
    return await retention_dashboard(store, today=today, settings=settings)


# =============================================================================
# Client Playbooks
# =============================================================================


@router.post("/clients/{client_id}/playbook", response_model=ActivePlaybook, status_code=201)
async def start_client_playbook(
    client_id: str,
    request: StartPlaybookRequest,
    engine: EngineDep,
) -> ActivePlaybook:
    """Start a playbook for the client and create its follow-up lead."""
    return await engine.start_playbook(client_id, request.template_id, request.assigned_to)


@router.get("/clients/{client_id}/playbook", response_model=ActivePlaybook)
async def get_client_playbook(client_id: str, engine: EngineDep) -> ActivePlaybook:
    active = await engine.get_active_playbook(client_id)
    if active is None:
        raise HTTPException(status_code=404, detail=f"Client '{client_id}' has no active playbook")
    return active


@router.delete("/clients/{client_id}/playbook", response_model=PlaybookInstance)
async def abandon_client_playbook(
    client_id: str,
    engine: EngineDep,
    notes: Optional[str] = Query(None, description="Reason recorded on skipped actions"),
) -> PlaybookInstance:
    return await engine.abandon_playbook(client_id, notes)


@router.get("/clients/{client_id}/next-action", response_model=Optional[RetentionAction])
async def get_next_action(client_id: str, engine: EngineDep) -> Optional[RetentionAction]:
    """Lowest-order pending action, or null when nothing is pending."""
    return await engine.next_action(client_id)


# =============================================================================
# Actions
# =============================================================================


@router.get("/actions", response_model=List[RetentionAction])
async def list_actions(
    store: StoreDep,
    settings: SettingsDep,
    status: Optional[RetentionActionStatus] = Query(None, description="Only actions in this status"),
    assigned_to: Optional[str] = Query(None, description="Only actions assigned to this assessor"),
    client_id: Optional[str] = Query(None, description="Only actions of this client"),
) -> List[RetentionAction]:
    return await list_retention_actions(
        store,
        status=status,
        assigned_to=assigned_to,
        client_id=client_id,
        settings=settings,
    )


@router.post("/actions/{action_id}/complete", response_model=RetentionAction)
async def complete_retention_action(
    action_id: str,
    engine: EngineDep,
    request: Optional[ResolveActionRequest] = None,
) -> RetentionAction:
    return await engine.complete_action(action_id, request.notes if request else None)


@router.post("/actions/{action_id}/skip", response_model=RetentionAction)
async def skip_retention_action(
    action_id: str,
    engine: EngineDep,
    request: Optional[ResolveActionRequest] = None,
) -> RetentionAction:
    return await engine.skip_action(action_id, request.notes if request else None)
