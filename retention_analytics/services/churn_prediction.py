"""
Churn Predictor for advisor CRM clients.

Turns health score components into a churn probability, opens churn events
for clients in the critical and lost bands, and later resolves those events
from observed revenue.

Probability model:
    base = 100 - (0.40 * recency + 0.30 * trend + 0.15 * frequency
                  + 0.10 * engagement + 0.05 * monetary)
    score fell more than 5 points since the previous computation: +15
    score rose more than 5 points since the previous computation: -10
    result clamped to [0, 100] and rounded to an integer

Churn event lifecycle:
    - scan_churn_risk opens a PENDING event for each critical/lost client
      without one. At most one pending event exists per client.
    - resolve_churn_events marks a pending event RETAINED once the client
      posts revenue after the event's creation date, or CHURNED once the
      inactivity window has elapsed and the client is still classified lost.
    - resolve_churn_event_manually records an advisor's observed outcome (and
      what was done) on a pending event.

Usage:
    from retention_analytics.services.churn_prediction import (
        scan_churn_risk,
        resolve_churn_events,
        churn_summary,
    )

    scan = await scan_churn_risk(store)
    resolution = await resolve_churn_events(store)
    summary = await churn_summary(store)
"""

import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

import numpy as np

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.core.exceptions import InvariantViolation, NotFound
from retention_analytics.models import (
    ChurnEvent,
    ChurnEventStatus,
    ChurnResolutionResult,
    ChurnRiskFactor,
    ChurnScanResult,
    ChurnSummary,
    ClientChurnRisk,
    HealthClassification,
    HealthScore,
    HealthScoreComponents,
    RiskFactorType,
    RiskSeverity,
)
from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)


# =============================================================================
# Prediction Constants
# =============================================================================

CHURN_SIGNAL_WEIGHTS: Dict[str, float] = {
    "recency": 0.40,
    "trend": 0.30,
    "frequency": 0.15,
    "engagement": 0.10,
    "monetary": 0.05,
}

# Score movement (points) that counts as declining or improving
SCORE_CHANGE_THRESHOLD: float = 5.0
DECLINE_PENALTY: float = 15.0
IMPROVEMENT_CREDIT: float = 10.0

# Score drop (points) reported as a high-severity decline
SHARP_DECLINE_POINTS: float = 15.0

# Components below this produce a risk factor; below the high threshold it is high severity
RISK_FACTOR_THRESHOLD: float = 50.0
HIGH_SEVERITY_THRESHOLD: float = 25.0

AT_RISK_CLASSIFICATIONS: List[HealthClassification] = [
    HealthClassification.CRITICAL,
    HealthClassification.LOST,
]

_FACTOR_DESCRIPTIONS: Dict[RiskFactorType, str] = {
    RiskFactorType.RECENCY: "Revenue activity has gone stale",
    RiskFactorType.FREQUENCY: "Few revenue operations per month",
    RiskFactorType.MONETARY: "Average revenue well below the office median",
    RiskFactorType.TREND: "Monthly revenue is shrinking",
    RiskFactorType.ENGAGEMENT: "Little recent contact with the advisor",
}


# =============================================================================
# Pure Prediction Functions
# =============================================================================


def predict_churn_probability(
    components: HealthScoreComponents,
    score: float,
    previous_score: Optional[float] = None,
) -> int:
    """
    Estimate churn probability (0-100) from health components.

    Args:
        components: Current sub-scores.
        score: Current composite score.
        previous_score: Composite score this computation replaces, if any.

    Returns:
        Integer probability in [0, 100].
    """
    retention_signal = sum(
        weight * getattr(components, name)
        for name, weight in CHURN_SIGNAL_WEIGHTS.items()
    )
    probability = 100.0 - retention_signal

    if previous_score is not None:
        change = score - previous_score
        if change < -SCORE_CHANGE_THRESHOLD:
            probability += DECLINE_PENALTY
        elif change > SCORE_CHANGE_THRESHOLD:
            probability -= IMPROVEMENT_CREDIT

    return int(round(max(0.0, min(100.0, probability))))


def build_risk_factors(
    components: HealthScoreComponents,
    score: Optional[float] = None,
    previous_score: Optional[float] = None,
) -> List[ChurnRiskFactor]:
    """
    Explain a churn prediction as a list of weak signals.

    Every sub-score below 50 contributes a factor (high severity below 25;
    engagement is one level milder), plus a declining-score factor when the
    composite dropped by more than the change threshold.
    """
    factors: List[ChurnRiskFactor] = []
    for factor_type, description in _FACTOR_DESCRIPTIONS.items():
        value = getattr(components, factor_type.value)
        if value >= RISK_FACTOR_THRESHOLD:
            continue
        if factor_type is RiskFactorType.ENGAGEMENT:
            severity = RiskSeverity.MEDIUM if value < HIGH_SEVERITY_THRESHOLD else RiskSeverity.LOW
        else:
            severity = RiskSeverity.HIGH if value < HIGH_SEVERITY_THRESHOLD else RiskSeverity.MEDIUM
        factors.append(
            ChurnRiskFactor(
                factor=factor_type,
                severity=severity,
                description=f"{description} ({factor_type.value} score {value:.0f})",
            )
        )

    if score is not None and previous_score is not None:
        drop = previous_score - score
        if drop > SCORE_CHANGE_THRESHOLD:
            factors.append(
                ChurnRiskFactor(
                    factor=RiskFactorType.DECLINING_SCORE,
                    severity=RiskSeverity.HIGH if drop > SHARP_DECLINE_POINTS else RiskSeverity.MEDIUM,
                    description=f"Health score fell {drop:.1f} points since the last computation",
                )
            )
    return factors


# =============================================================================
# Churn Event Operations
# =============================================================================


async def scan_churn_risk(
    store: CrmStore,
    as_of: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ChurnScanResult:
    """
    Open a pending churn event for every at-risk client without one.

    Running the scan again never creates a second pending event for the same
    client: existing events are skipped, and a concurrent insert rejected by
    the store is counted as already pending.

    Args:
        store: CRM store.
        as_of: Event creation timestamp (default: now, UTC).
        settings: Settings override.

    Returns:
        ChurnScanResult with counts and the ids of newly opened events.
    """
    settings = settings or get_settings()
    created_at = as_of or datetime.now(timezone.utc)

    at_risk: List[HealthScore] = await fetch_all(
        store.fetch_health_score_page,
        description="at-risk health scores",
        page_size=settings.page_size,
        classifications=AT_RISK_CLASSIFICATIONS,
    )

    result = ChurnScanResult()
    for health in at_risk:
        result.scanned += 1
        if await store.get_pending_churn_event(health.client_id) is not None:
            result.already_pending += 1
            continue

        event = ChurnEvent(
            id=f"chn_{uuid4().hex}",
            client_id=health.client_id,
            predicted_probability=health.churn_probability,
            status=ChurnEventStatus.PENDING,
            risk_factors=build_risk_factors(health.components, health.score, health.previous_score),
            created_at=created_at,
        )
        try:
            await store.insert_churn_event(event)
        except InvariantViolation as e:
            logger.warning(f"Skipping churn event for {health.client_id}: {e}")
            result.already_pending += 1
            continue

        result.opened += 1
        result.opened_event_ids.append(event.id)

    logger.info(
        f"Churn scan: {result.scanned} at-risk clients, {result.opened} events opened, "
        f"{result.already_pending} already pending"
    )
    return result


async def resolve_churn_events(
    store: CrmStore,
    as_of: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> ChurnResolutionResult:
    """
    Resolve pending churn events from observed revenue.

    - RETAINED: the client has revenue dated after the event's creation date.
    - CHURNED: no such revenue, the inactivity window has elapsed since
      creation, and the client's latest classification is still lost.
    - Otherwise the event stays pending.

    Returns:
        ChurnResolutionResult with per-outcome counts.
    """
    settings = settings or get_settings()
    today = as_of or datetime.now(timezone.utc).date()
    resolved_at = datetime.now(timezone.utc)

    pending: List[ChurnEvent] = await fetch_all(
        store.fetch_churn_event_page,
        description="pending churn events",
        page_size=settings.page_size,
        status=ChurnEventStatus.PENDING,
    )
    result = ChurnResolutionResult(evaluated=len(pending))
    if not pending:
        return result

    client_ids = sorted({event.client_id for event in pending})
    bounds = await fetch_all(
        store.fetch_revenue_bounds_page,
        description="revenue bounds of pending clients",
        page_size=settings.page_size,
        as_of=today,
        client_ids=client_ids,
    )
    last_revenue = {b.client_id: b.last_date for b in bounds}
    scores = await fetch_all(
        store.fetch_health_score_page,
        description="health scores of pending clients",
        page_size=settings.page_size,
        client_ids=client_ids,
    )
    classification = {s.client_id: s.classification for s in scores}

    for event in pending:
        created = event.created_at.date()
        last = last_revenue.get(event.client_id)

        if last is not None and last > created:
            status = ChurnEventStatus.RETAINED
        elif (
            (today - created).days >= settings.churn_inactivity_window_days
            and classification.get(event.client_id) == HealthClassification.LOST
        ):
            status = ChurnEventStatus.CHURNED
        else:
            result.still_pending += 1
            continue

        resolved = await store.resolve_churn_event(event.id, status, resolved_at)
        if resolved is None:
            # Resolved concurrently by another run
            continue
        if status is ChurnEventStatus.RETAINED:
            result.retained += 1
        else:
            result.churned += 1

    logger.info(
        f"Churn resolution: {result.retained} retained, {result.churned} churned, "
        f"{result.still_pending} still pending"
    )
    return result


async def resolve_churn_event_manually(
    store: CrmStore,
    event_id: str,
    status: ChurnEventStatus,
    action_taken: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ChurnEvent:
    """
    Record the outcome an advisor observed for a pending churn event.

    Args:
        store: CRM store.
        event_id: Churn event to resolve.
        status: RETAINED or CHURNED.
        action_taken: Free-text note of what was done for the client.
        now: Resolution timestamp (default: now, UTC).

    Returns:
        The resolved ChurnEvent.

    Raises:
        ValueError: If status is PENDING.
        NotFound: If the event does not exist.
        InvariantViolation: If the event was already resolved.
    """
    if status is ChurnEventStatus.PENDING:
        raise ValueError("A churn event can only be resolved as retained or churned")

    event = await store.get_churn_event(event_id)
    if event is None:
        raise NotFound("churn event", event_id)
    if event.status is not ChurnEventStatus.PENDING:
        raise InvariantViolation(
            f"Churn event '{event_id}' is already {event.status.value}"
        )

    resolved = await store.resolve_churn_event(
        event_id, status, now or datetime.now(timezone.utc), action_taken
    )
    if resolved is None:
        raise InvariantViolation(f"Churn event '{event_id}' was resolved concurrently")

    logger.info(f"Churn event {event_id} for {event.client_id} resolved as {status.value}")
    return resolved


async def list_churn_events(
    store: CrmStore,
    client_id: Optional[str] = None,
    status: Optional[ChurnEventStatus] = None,
    settings: Optional[Settings] = None,
) -> List[ChurnEvent]:
    """Churn events, newest first, optionally for one client and/or one status."""
    settings = settings or get_settings()
    events: List[ChurnEvent] = await fetch_all(
        store.fetch_churn_event_page,
        description="churn events",
        page_size=settings.page_size,
        status=status,
        client_ids=[client_id] if client_id is not None else None,
    )
    return list(reversed(events))


async def churn_summary(
    store: CrmStore,
    settings: Optional[Settings] = None,
) -> ChurnSummary:
    """
    Summarize all churn events.

    retention_rate is retained / (retained + churned) x 100, or 100 when no
    event has been resolved yet.
    """
    settings = settings or get_settings()
    events: List[ChurnEvent] = await fetch_all(
        store.fetch_churn_event_page,
        description="churn events",
        page_size=settings.page_size,
    )

    pending = sum(1 for e in events if e.status is ChurnEventStatus.PENDING)
    retained = sum(1 for e in events if e.status is ChurnEventStatus.RETAINED)
    churned = sum(1 for e in events if e.status is ChurnEventStatus.CHURNED)
    resolved = retained + churned

    average = (
        float(np.mean([e.predicted_probability for e in events])) if events else 0.0
    )
    return ChurnSummary(
        total_events=len(events),
        pending_events=pending,
        retained_count=retained,
        churned_count=churned,
        retention_rate=round(retained / resolved * 100, 2) if resolved else 100.0,
        average_churn_probability=round(average, 2),
    )


async def get_client_churn_risk(store: CrmStore, client_id: str) -> ClientChurnRisk:
    """
    Current churn outlook of one client from its latest health score.

    Raises:
        NotFound: If the client has never been scored.
    """
    health = await store.get_health_score(client_id)
    if health is None:
        raise NotFound("health score", client_id)

    pending = await store.get_pending_churn_event(client_id)
    factors = (
        pending.risk_factors
        if pending is not None
        else build_risk_factors(health.components, health.score, health.previous_score)
    )
    return ClientChurnRisk(
        client_id=client_id,
        score=health.score,
        classification=health.classification,
        churn_probability=health.churn_probability,
        risk_factors=factors,
        pending_event_id=pending.id if pending else None,
    )
