"""
Enumeration types for the retention analytics engine.

Every closed vocabulary used by the CRM analytics models lives here as a
`str, Enum` so values serialize directly to JSON and compare equal to their
stored database strings.
"""

from enum import Enum


# =============================================================================
# CRM Entity Enums
# =============================================================================


class LeadStatus(str, Enum):
    """
    Funnel stage of a lead.

    A lead moves from new through contact (or an advisor switch negotiation)
    until it is either converted into a client or lost.
    """
    NEW = "new"
    CONTACTED = "contacted"
    ADVISOR_SWITCH = "advisor_switch"
    CONVERTED = "converted"
    LOST = "lost"


# =============================================================================
# Health & Churn Enums
# =============================================================================


class HealthClassification(str, Enum):
    """
    Health band derived from the composite score.

    - HEALTHY: score >= 75
    - ATTENTION: 50 <= score < 75
    - CRITICAL: 25 <= score < 50
    - LOST: score < 25
    """
    HEALTHY = "healthy"
    ATTENTION = "attention"
    CRITICAL = "critical"
    LOST = "lost"


class ChurnEventStatus(str, Enum):
    """Lifecycle of a churn event: opened pending, resolved once."""
    PENDING = "pending"
    RETAINED = "retained"
    CHURNED = "churned"


class RiskSeverity(str, Enum):
    """Severity attached to a churn risk factor."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskFactorType(str, Enum):
    """Which signal produced a churn risk factor."""
    RECENCY = "recency"
    FREQUENCY = "frequency"
    MONETARY = "monetary"
    TREND = "trend"
    ENGAGEMENT = "engagement"
    DECLINING_SCORE = "declining_score"


# =============================================================================
# Retention Playbook Enums
# =============================================================================


class PlaybookActionType(str, Enum):
    """Channel of a retention playbook step."""
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    OFFER = "offer"
    CONTENT = "content"
    WHATSAPP = "whatsapp"


class PlaybookInstanceStatus(str, Enum):
    """
    Lifecycle of a playbook instance.

    At most one ACTIVE instance exists per client. An instance becomes
    COMPLETED automatically once every action is terminal.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class RetentionActionStatus(str, Enum):
    """Action state: PENDING moves to COMPLETED or SKIPPED exactly once."""
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# =============================================================================
# Report Enums
# =============================================================================


class MovementType(str, Enum):
    """MRR movement bucket for a client in a month."""
    NEW = "new"
    EXPANSION = "expansion"
    CONTRACTION = "contraction"
    CHURN = "churn"
