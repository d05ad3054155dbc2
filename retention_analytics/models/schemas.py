"""
Pydantic models for the retention analytics engine.

This module provides type-safe data validation and serialization for:
- CRM records read through the store (revenues, leads, clients, interactions)
- Health score snapshots, reference context and results
- Churn events, risk factors and summaries
- Retention playbook templates (validated step unions), instances and actions
- At-risk overview and retention dashboard rows
- Funnel cohort and MRR decomposition reports

All models use Pydantic v2 syntax with field validation and examples.
"""

from datetime import datetime, date as DateType
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from retention_analytics.models.enums import (
    ChurnEventStatus,
    HealthClassification,
    LeadStatus,
    PlaybookActionType,
    PlaybookInstanceStatus,
    RetentionActionStatus,
    RiskFactorType,
    RiskSeverity,
)


# =============================================================================
# CRM Records
# =============================================================================


class RevenueEvent(BaseModel):
    """
    A single revenue posting attributed to a client. Immutable once recorded.

    `amount` is the office's share of the posting; it may be negative for
    adjustments and reversals.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "rev_001",
                "client_id": "cli_042",
                "date": "2025-03-14",
                "amount": 1250.0,
            }
        }
    )

    id: str
    client_id: str
    date: DateType
    amount: float

    @property
    def month(self) -> str:
        """Month key in YYYY-MM format."""
        return self.date.strftime("%Y-%m")


class LeadRecord(BaseModel):
    """A CRM lead and its funnel stage."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: LeadStatus
    created_at: datetime
    converted_at: Optional[datetime] = None
    assessor_id: Optional[str] = None


class ClientRecord(BaseModel):
    """A CRM client, optionally linked to the lead it was converted from."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    assessor_id: Optional[str] = None
    active: bool = True
    converted_from_lead_id: Optional[str] = None


class InteractionRecord(BaseModel):
    """A logged touchpoint (call, meeting, message) with a client."""

    model_config = ConfigDict(frozen=True)

    id: str
    client_id: str
    created_at: datetime


class RevenueBounds(BaseModel):
    """First and last revenue posting dates of a client up to an as-of date."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    first_date: DateType
    last_date: DateType


# =============================================================================
# Health Scores
# =============================================================================


class ScoringContext(BaseModel):
    """
    Office-wide reference snapshot used to normalize client sub-scores.

    Computed once per bulk run (or per single computation when not supplied)
    and passed explicitly to every scoring call so all clients of a run are
    measured against the same reference.
    """

    model_config = ConfigDict(frozen=True)

    as_of: DateType
    window_start: DateType = Field(..., description="First day of the trailing window")
    window_end: DateType = Field(..., description="Last day of the trailing window")
    median_monthly_revenue: float = Field(..., ge=0)
    reference_frequency: float = Field(..., gt=0)
    reference_interactions: float = Field(..., gt=0)
    staleness_horizon_days: int = Field(..., gt=0)
    engagement_window_days: int = Field(..., gt=0)
    trend_growth_cap: float = Field(..., gt=0)


class ClientActivitySnapshot(BaseModel):
    """
    Activity features of one client derived from raw events.

    Monthly series cover only the observed months of the trailing window
    (from the client's first revenue within the window), never padded.
    """

    client_id: str
    as_of: DateType
    days_since_last_revenue: Optional[int] = Field(
        None, description="None when the client never posted revenue"
    )
    months_observed: int = Field(0, ge=0)
    monthly_operation_counts: List[int] = Field(default_factory=list)
    monthly_revenue: List[float] = Field(default_factory=list)
    operations_per_month: float = 0.0
    average_monthly_revenue: float = 0.0
    revenue_trend: Optional[float] = Field(
        None, description="Mean capped month-over-month relative change"
    )
    interaction_count: int = Field(0, ge=0)


class HealthScoreComponents(BaseModel):
    """Normalized sub-scores, each in [0, 100]."""

    recency: float = Field(..., ge=0, le=100)
    frequency: float = Field(..., ge=0, le=100)
    monetary: float = Field(..., ge=0, le=100)
    trend: float = Field(..., ge=0, le=100)
    engagement: float = Field(..., ge=0, le=100)


class HealthScore(BaseModel):
    """
    Latest health score of a client. Only the most recent value is stored.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "client_id": "cli_042",
                "score": 63.5,
                "classification": "attention",
                "components": {
                    "recency": 83.33,
                    "frequency": 50.0,
                    "monetary": 70.0,
                    "trend": 60.0,
                    "engagement": 33.33,
                },
                "churn_probability": 35,
                "previous_score": 68.0,
                "as_of": "2025-07-01",
                "computed_at": "2025-07-01T06:00:00",
            }
        }
    )

    client_id: str
    score: float = Field(..., ge=0, le=100)
    classification: HealthClassification
    components: HealthScoreComponents
    churn_probability: int = Field(..., ge=0, le=100)
    previous_score: Optional[float] = Field(
        None, description="Score this computation replaced, if any"
    )
    as_of: DateType
    computed_at: datetime


class BulkRecomputeResult(BaseModel):
    """Outcome of a bulk health recomputation."""

    computed: int
    as_of: DateType
    classification_counts: Dict[HealthClassification, int] = Field(default_factory=dict)


# =============================================================================
# Churn
# =============================================================================


class ChurnRiskFactor(BaseModel):
    """A single explanatory signal attached to a churn prediction."""

    factor: RiskFactorType
    severity: RiskSeverity
    description: str


class ChurnEvent(BaseModel):
    """
    A recorded churn risk. At most one PENDING event exists per client;
    it resolves once to RETAINED or CHURNED.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "chn_7f3a",
                "client_id": "cli_042",
                "predicted_probability": 72,
                "status": "pending",
                "risk_factors": [
                    {
                        "factor": "recency",
                        "severity": "high",
                        "description": "No revenue for 150 days",
                    }
                ],
                "action_taken": None,
                "created_at": "2025-07-01T06:00:00",
                "resolved_at": None,
            }
        }
    )

    id: str
    client_id: str
    predicted_probability: int = Field(..., ge=0, le=100)
    status: ChurnEventStatus = ChurnEventStatus.PENDING
    risk_factors: List[ChurnRiskFactor] = Field(default_factory=list)
    action_taken: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ChurnScanResult(BaseModel):
    """Outcome of a churn risk scan."""

    scanned: int = 0
    opened: int = 0
    already_pending: int = 0
    opened_event_ids: List[str] = Field(default_factory=list)


class ChurnResolutionResult(BaseModel):
    """Outcome of resolving pending churn events."""

    evaluated: int = 0
    retained: int = 0
    churned: int = 0
    still_pending: int = 0


class ResolveChurnEventRequest(BaseModel):
    """Request body for recording the observed outcome of a churn event."""

    status: ChurnEventStatus
    action_taken: Optional[str] = Field(None, description="What the advisor did for the client")

    @field_validator("status")
    @classmethod
    def _terminal_status(cls, v: ChurnEventStatus) -> ChurnEventStatus:
        if v is ChurnEventStatus.PENDING:
            raise ValueError("status must be retained or churned")
        return v


class ChurnSummary(BaseModel):
    """Office-wide churn event statistics."""

    total_events: int = 0
    pending_events: int = 0
    retained_count: int = 0
    churned_count: int = 0
    retention_rate: float = Field(100.0, description="Retained / resolved x 100")
    average_churn_probability: float = 0.0


class ClientChurnRisk(BaseModel):
    """Current churn outlook of a single client."""

    client_id: str
    score: float
    classification: HealthClassification
    churn_probability: int
    risk_factors: List[ChurnRiskFactor] = Field(default_factory=list)
    pending_event_id: Optional[str] = None


# =============================================================================
# Retention Playbook Templates (discriminated step union)
# =============================================================================


class _PlaybookStepBase(BaseModel):
    """Fields shared by every playbook step kind."""

    model_config = ConfigDict(extra="forbid")

    order: int = Field(..., ge=1)
    description: str = Field(..., min_length=1)
    deadline_days: int = Field(..., ge=0, description="Days after playbook start")


class CallStep(_PlaybookStepBase):
    action_type: Literal["call"] = "call"


class EmailStep(_PlaybookStepBase):
    action_type: Literal["email"] = "email"


class MeetingStep(_PlaybookStepBase):
    action_type: Literal["meeting"] = "meeting"


class OfferStep(_PlaybookStepBase):
    action_type: Literal["offer"] = "offer"
    offer_details: str = Field(..., min_length=1)


class ContentStep(_PlaybookStepBase):
    action_type: Literal["content"] = "content"


class WhatsAppStep(_PlaybookStepBase):
    action_type: Literal["whatsapp"] = "whatsapp"


PlaybookStep = Annotated[
    Union[CallStep, EmailStep, MeetingStep, OfferStep, ContentStep, WhatsAppStep],
    Field(discriminator="action_type"),
]


class PlaybookTemplate(BaseModel):
    """
    Ordered list of retention steps targeting a risk classification.

    Steps are validated at load time: orders must be unique and contiguous
    starting at 1. Steps are kept sorted by order.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "pb_critical",
                "name": "Critical client recovery",
                "description": "Three-touch recovery sequence",
                "risk_classification": "critical",
                "is_active": True,
                "steps": [
                    {"order": 1, "action_type": "call", "description": "Check-in call", "deadline_days": 2},
                    {"order": 2, "action_type": "meeting", "description": "Portfolio review", "deadline_days": 7},
                    {
                        "order": 3,
                        "action_type": "offer",
                        "description": "Fee review",
                        "deadline_days": 14,
                        "offer_details": "Reduced custody fee for 6 months",
                    },
                ],
            }
        }
    )

    id: str
    name: str
    description: Optional[str] = None
    risk_classification: HealthClassification
    is_active: bool = True
    steps: List[PlaybookStep] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_step_orders(self) -> "PlaybookTemplate":
        orders = sorted(step.order for step in self.steps)
        if orders != list(range(1, len(orders) + 1)):
            raise ValueError(
                f"Playbook step orders must be unique and contiguous from 1, got {orders}"
            )
        self.steps.sort(key=lambda step: step.order)
        return self


# =============================================================================
# Retention Playbook Execution
# =============================================================================


class FollowUpLeadCreate(BaseModel):
    """Follow-up lead synthesized in the CRM when a playbook starts."""

    name: str
    status: LeadStatus = LeadStatus.NEW
    assessor_id: Optional[str] = None
    observations: str
    source_client_id: str
    created_at: datetime


class PlaybookInstance(BaseModel):
    """Execution of a playbook template for one client."""

    id: str
    client_id: str
    template_id: str
    template_name: str
    churn_event_id: Optional[str] = None
    follow_up_lead_id: Optional[str] = None
    assigned_to: Optional[str] = None
    started_at: datetime
    status: PlaybookInstanceStatus = PlaybookInstanceStatus.ACTIVE
    closed_at: Optional[datetime] = None


class RetentionAction(BaseModel):
    """One step of a playbook instance, scheduled against the client."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "act_01",
                "instance_id": "pbi_9c1d",
                "client_id": "cli_042",
                "order": 1,
                "action_type": "call",
                "description": "Check-in call",
                "offer_details": None,
                "due_date": "2025-07-03",
                "status": "pending",
                "assigned_to": "assessor_7",
                "resolved_at": None,
                "notes": None,
            }
        }
    )

    id: str
    instance_id: str
    client_id: str
    order: int = Field(..., ge=1)
    action_type: PlaybookActionType
    description: str
    offer_details: Optional[str] = None
    due_date: DateType
    status: RetentionActionStatus = RetentionActionStatus.PENDING
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None


class ActivePlaybook(BaseModel):
    """An instance together with its actions and the next pending one."""

    instance: PlaybookInstance
    actions: List[RetentionAction]
    next_action: Optional[RetentionAction] = None


class StartPlaybookRequest(BaseModel):
    """Request body for starting a playbook for a client."""

    template_id: str
    assigned_to: Optional[str] = None


class ResolveActionRequest(BaseModel):
    """Request body for completing or skipping an action."""

    notes: Optional[str] = None


# =============================================================================
# At-Risk Overview
# =============================================================================


class AtRiskClient(BaseModel):
    """Dashboard row for a client in an at-risk classification."""

    client_id: str
    client_name: str
    assessor_id: Optional[str] = None
    score: float
    classification: HealthClassification
    churn_probability: int
    active_playbook: Optional[str] = None
    next_action: Optional[RetentionAction] = None


class RetentionDashboard(BaseModel):
    """Aggregated retention state for the office."""

    clients_at_risk: int = 0
    active_playbooks: int = 0
    actions_pending: int = 0
    actions_overdue: int = 0
    actions_completed: int = 0
    retention_rate: float = 100.0
    at_risk_clients: List[AtRiskClient] = Field(default_factory=list)


# =============================================================================
# Funnel Cohort Report
# =============================================================================


class CohortRetentionPoint(BaseModel):
    """Retention of a cohort k months after conversion."""

    offset: int = Field(..., ge=0)
    calendar_month: str = Field(
        ..., description="First calendar month any tracked lead reaches this offset, YYYY-MM"
    )
    percentage: Optional[float] = Field(None, description="None when the offset is in the future")
    eligible_leads: int = 0
    retained_leads: int = 0
    is_future: bool = False


class CohortBucket(BaseModel):
    """Leads created in one calendar month and their post-conversion retention."""

    cohort_month: str
    total_leads: int = 0
    converted_leads_count: int = 0
    tracked_leads_count: int = 0
    first_conversion_month: Optional[str] = Field(
        None, description="Earliest conversion month among tracked leads, YYYY-MM"
    )
    retention: List[CohortRetentionPoint] = Field(default_factory=list)
    final_conversion_rate: float = 0.0
    average_retention: Optional[float] = None


class OffsetRetentionAverage(BaseModel):
    """Report-wide mean retention at one offset across non-future cohorts."""

    offset: int
    average: Optional[float] = None
    cohorts_counted: int = 0


class AssessorConversion(BaseModel):
    """Leads owned by one assessor and how many of them converted."""

    assessor_id: Optional[str] = Field(None, description="None groups unassigned leads")
    total_leads: int = 0
    converted: int = 0
    conversion_rate: float = Field(0.0, description="Converted / total leads x 100")


class FunnelSummary(BaseModel):
    """Lead funnel stage counts and conversion statistics."""

    total_leads: int = 0
    stage_counts: Dict[LeadStatus, int] = Field(default_factory=dict)
    converted: int = 0
    lost: int = 0
    conversion_rate: float = Field(0.0, description="Converted / non-lost leads x 100")
    average_conversion_days: Optional[float] = None
    leads_by_assessor: List[AssessorConversion] = Field(default_factory=list)


class FunnelCohortReport(BaseModel):
    """Cohort retention report over a lead creation date range."""

    start: DateType
    end: DateType
    today: DateType
    cohorts: List[CohortBucket] = Field(default_factory=list)
    average_retention_by_offset: List[OffsetRetentionAverage] = Field(default_factory=list)
    funnel: FunnelSummary = Field(default_factory=FunnelSummary)


# =============================================================================
# MRR Decomposition Report
# =============================================================================


class MRRMovement(BaseModel):
    """
    Month-over-month MRR decomposition. Contraction and churn are negative.

    Invariant: new + expansion + contraction + churn == net
    == ending_mrr - starting_mrr (within tolerance).
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "month": "2025-02",
                "new": 80.0,
                "expansion": 50.0,
                "contraction": 0.0,
                "churn": -200.0,
                "net": -70.0,
                "starting_mrr": 300.0,
                "ending_mrr": 230.0,
                "active_clients": 2,
            }
        }
    )

    month: str
    new: float = 0.0
    expansion: float = 0.0
    contraction: float = 0.0
    churn: float = 0.0
    net: float = 0.0
    starting_mrr: float = 0.0
    ending_mrr: float = 0.0
    active_clients: int = 0


class MRRTotals(BaseModel):
    """Sum of each movement bucket across the report range."""

    new: float = 0.0
    expansion: float = 0.0
    contraction: float = 0.0
    churn: float = 0.0
    net: float = 0.0


class RevenueMrrReport(BaseModel):
    """MRR decomposition per calendar month of a date range."""

    start_month: str
    end_month: str
    movements: List[MRRMovement] = Field(default_factory=list)
    totals: MRRTotals = Field(default_factory=MRRTotals)
    starting_mrr: float = 0.0
    ending_mrr: float = 0.0
