"""
Package initialization file for retention analytics models.

Re-exports every enumeration and Pydantic schema so other modules can import
them from retention_analytics.models directly.

Usage:
    from retention_analytics.models import (
        HealthClassification,
        HealthScore,
        PlaybookTemplate,
        RevenueMrrReport,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from retention_analytics.models.enums import (
    ChurnEventStatus,
    HealthClassification,
    LeadStatus,
    MovementType,
    PlaybookActionType,
    PlaybookInstanceStatus,
    RetentionActionStatus,
    RiskFactorType,
    RiskSeverity,
)

# =============================================================================
# Schemas
# =============================================================================

from retention_analytics.models.schemas import (
    # CRM records
    RevenueEvent,
    LeadRecord,
    ClientRecord,
    InteractionRecord,
    RevenueBounds,
    # Health scores
    ScoringContext,
    ClientActivitySnapshot,
    HealthScoreComponents,
    HealthScore,
    BulkRecomputeResult,
    # Churn
    ChurnRiskFactor,
    ChurnEvent,
    ChurnScanResult,
    ChurnResolutionResult,
    ChurnSummary,
    ResolveChurnEventRequest,
    ClientChurnRisk,
    # Playbook templates
    CallStep,
    EmailStep,
    MeetingStep,
    OfferStep,
    ContentStep,
    WhatsAppStep,
    PlaybookStep,
    PlaybookTemplate,
    # Playbook execution
    FollowUpLeadCreate,
    PlaybookInstance,
    RetentionAction,
    ActivePlaybook,
    StartPlaybookRequest,
    ResolveActionRequest,
    # Overview
    AtRiskClient,
    RetentionDashboard,
    # Reports
    CohortRetentionPoint,
    CohortBucket,
    OffsetRetentionAverage,
    AssessorConversion,
    FunnelSummary,
    FunnelCohortReport,
    MRRMovement,
    MRRTotals,
    RevenueMrrReport,
)


__all__ = [
    # Enums
    'ChurnEventStatus',
    'HealthClassification',
    'LeadStatus',
    'MovementType',
    'PlaybookActionType',
    'PlaybookInstanceStatus',
    'RetentionActionStatus',
    'RiskFactorType',
    'RiskSeverity',
    # CRM records
    'RevenueEvent',
    'LeadRecord',
    'ClientRecord',
    'InteractionRecord',
    'RevenueBounds',
    # Health scores
    'ScoringContext',
    'ClientActivitySnapshot',
    'HealthScoreComponents',
    'HealthScore',
    'BulkRecomputeResult',
    # Churn
    'ChurnRiskFactor',
    'ChurnEvent',
    'ChurnScanResult',
    'ChurnResolutionResult',
    'ChurnSummary',
    'ResolveChurnEventRequest',
    'ClientChurnRisk',
    # Playbook templates
    'CallStep',
    'EmailStep',
    'MeetingStep',
    'OfferStep',
    'ContentStep',
    'WhatsAppStep',
    'PlaybookStep',
    'PlaybookTemplate',
    # Playbook execution
    'FollowUpLeadCreate',
    'PlaybookInstance',
    'RetentionAction',
    'ActivePlaybook',
    'StartPlaybookRequest',
    'ResolveActionRequest',
    # Overview
    'AtRiskClient',
    'RetentionDashboard',
    # Reports
    'CohortRetentionPoint',
    'CohortBucket',
    'OffsetRetentionAverage',
    'AssessorConversion',
    'FunnelSummary',
    'FunnelCohortReport',
    'MRRMovement',
    'MRRTotals',
    'RevenueMrrReport',
]
