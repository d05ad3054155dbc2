"""
Health Score Calculator for advisor CRM clients.

Scores each client 0-100 from five weighted sub-scores computed over the six
complete calendar months preceding the as-of month, and classifies the result
into a health band.

Sub-scores (each normalized to 0-100, monotonic in its input):
- Recency (30%): linear decline from 100 (revenue today) to 0 at the
  staleness horizon. A client that never posted revenue scores 0.
- Frequency (25%): revenue operations per observed month relative to the
  office reference frequency, capped at 100.
- Monetary (20%): average monthly revenue relative to the office median,
  capped at 100. No revenue scores 0; a zero median gives any positive
  average 100.
- Trend (15%): mean capped month-over-month revenue change across observed
  months. Flat scores 75, +20% or better scores 100, a full collapse scores 0.
  Fewer than two observed months is neutral (50).
- Engagement (10%): interactions in the engagement window relative to the
  office reference count, capped at 100.

Observed months run from the later of the window start and the client's first
revenue ever, so a young client is measured on the months it existed rather
than penalized for months before it became a client.

Classification bands:
    healthy >= 75 > attention >= 50 > critical >= 25 > lost

Office references (median revenue, reference frequency, reference
interactions) are captured once in a ScoringContext and passed explicitly,
so every client of a bulk run is normalized against the same snapshot and a
recomputation with the same data and as-of date yields the same score.

Usage:
    from retention_analytics.services.health_score import (
        compute_health_score,
        bulk_compute_health_scores,
    )

    score = await compute_health_score(store, "cli_042", as_of=date(2025, 7, 1))
    result = await bulk_compute_health_scores(store)

See Also:
    - retention_analytics/services/churn_prediction.py: churn probability stored with each score
    - retention_analytics/services/aggregator.py: paginated reads used here
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.core.exceptions import NotFound
from retention_analytics.models import (
    BulkRecomputeResult,
    ClientActivitySnapshot,
    HealthClassification,
    HealthScore,
    HealthScoreComponents,
    InteractionRecord,
    RevenueBounds,
    RevenueEvent,
    ScoringContext,
)
from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.churn_prediction import predict_churn_probability
from retention_analytics.services.month_utils import add_months, month_key, month_start
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)


# =============================================================================
# Scoring Constants
# =============================================================================

HEALTH_SCORE_WEIGHTS: Dict[str, float] = {
    "recency": 0.30,
    "frequency": 0.25,
    "monetary": 0.20,
    "trend": 0.15,
    "engagement": 0.10,
}

HEALTHY_THRESHOLD: float = 75.0
ATTENTION_THRESHOLD: float = 50.0
CRITICAL_THRESHOLD: float = 25.0

# Trend score for a flat revenue series
TREND_FLAT_SCORE: float = 75.0

# Trend score when fewer than two months were observed
TREND_NEUTRAL_SCORE: float = 50.0

# Mean monthly growth at which the trend score saturates at 100
TREND_FULL_GROWTH: float = 0.20

# Percentile of office observations used as the 100-point reference
REFERENCE_PERCENTILE: float = 75.0


# =============================================================================
# Classification
# =============================================================================


def classify_score(score: float) -> HealthClassification:
    """
    Map a composite score to its health band.

    Boundaries are inclusive on the lower edge: 75 is healthy, 50 is
    attention, 25 is critical.
    """
    if score >= HEALTHY_THRESHOLD:
        return HealthClassification.HEALTHY
    if score >= ATTENTION_THRESHOLD:
        return HealthClassification.ATTENTION
    if score >= CRITICAL_THRESHOLD:
        return HealthClassification.CRITICAL
    return HealthClassification.LOST


# =============================================================================
# Sub-score Functions
# =============================================================================


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def recency_score(days_since_last_revenue: Optional[int], staleness_horizon_days: int) -> float:
    """Linear decline from 100 at 0 days to 0 at the staleness horizon."""
    if days_since_last_revenue is None:
        return 0.0
    return _clamp(100.0 * (1.0 - days_since_last_revenue / staleness_horizon_days))


def frequency_score(operations_per_month: float, reference_frequency: float) -> float:
    return _clamp(100.0 * operations_per_month / reference_frequency)


def monetary_score(average_monthly_revenue: float, median_monthly_revenue: float) -> float:
    if average_monthly_revenue <= 0:
        return 0.0
    if median_monthly_revenue <= 0:
        return 100.0
    return _clamp(100.0 * average_monthly_revenue / median_monthly_revenue)


def trend_score(revenue_trend: Optional[float]) -> float:
    """
    Map mean month-over-month change to 0-100.

    g >= 0 rises from 75 to 100 at +20%; g < 0 falls linearly to 0 at -100%.
    """
    if revenue_trend is None:
        return TREND_NEUTRAL_SCORE
    if revenue_trend >= 0:
        return _clamp(TREND_FLAT_SCORE + (100.0 - TREND_FLAT_SCORE) * min(revenue_trend / TREND_FULL_GROWTH, 1.0))
    return _clamp(TREND_FLAT_SCORE * (1.0 + revenue_trend))


def engagement_score(interaction_count: int, reference_interactions: float) -> float:
    return _clamp(100.0 * interaction_count / reference_interactions)


# =============================================================================
# Activity Snapshots
# =============================================================================


def trailing_window(as_of: date, months: int) -> List[date]:
    """First days of the `months` complete calendar months before as_of's month."""
    current = month_start(as_of)
    return [add_months(current, -months + i) for i in range(months)]


def _monthly_change(previous: float, current: float, growth_cap: float) -> float:
    if previous > 0:
        change = (current - previous) / previous
    elif current > previous:
        change = growth_cap
    elif current < previous:
        change = -1.0
    else:
        change = 0.0
    return max(-1.0, min(growth_cap, change))


def build_activity_snapshot(
    client_id: str,
    as_of: date,
    window_months: Sequence[date],
    revenues: Iterable[RevenueEvent],
    bounds: Optional[RevenueBounds],
    interaction_count: int,
    trend_growth_cap: float,
) -> ClientActivitySnapshot:
    """
    Derive a client's activity features from raw events.

    Args:
        client_id: Client being described.
        as_of: Reference date.
        window_months: First days of the trailing window months, ascending.
        revenues: The client's revenue events inside the window.
        bounds: First/last revenue dates up to as_of, or None if the client
            never posted revenue.
        interaction_count: Interactions inside the engagement window.
        trend_growth_cap: Upper cap on a single month-over-month change.

    Returns:
        ClientActivitySnapshot with monthly series over observed months only.
    """
    counts: Dict[str, int] = defaultdict(int)
    totals: Dict[str, float] = defaultdict(float)
    for revenue in revenues:
        counts[revenue.month] += 1
        totals[revenue.month] += revenue.amount

    days_since_last = (as_of - bounds.last_date).days if bounds else None

    observed: List[date] = []
    if bounds is not None:
        first_month = month_start(bounds.first_date)
        observed = [m for m in window_months if m >= first_month]

    monthly_counts = [counts.get(month_key(m), 0) for m in observed]
    monthly_revenue = [totals.get(month_key(m), 0.0) for m in observed]
    months_observed = len(observed)

    operations_per_month = sum(monthly_counts) / months_observed if months_observed else 0.0
    average_revenue = sum(monthly_revenue) / months_observed if months_observed else 0.0

    revenue_trend: Optional[float] = None
    if months_observed >= 2:
        changes = [
            _monthly_change(prev, cur, trend_growth_cap)
            for prev, cur in zip(monthly_revenue, monthly_revenue[1:])
        ]
        revenue_trend = float(np.mean(changes))

    return ClientActivitySnapshot(
        client_id=client_id,
        as_of=as_of,
        days_since_last_revenue=days_since_last,
        months_observed=months_observed,
        monthly_operation_counts=monthly_counts,
        monthly_revenue=monthly_revenue,
        operations_per_month=operations_per_month,
        average_monthly_revenue=average_revenue,
        revenue_trend=revenue_trend,
        interaction_count=interaction_count,
    )


# =============================================================================
# Scoring Context
# =============================================================================


def build_scoring_context(
    as_of: date,
    snapshots: Iterable[ClientActivitySnapshot],
    settings: Settings,
) -> ScoringContext:
    """
    Capture the office-wide reference values for one scoring run.

    - median_monthly_revenue: median average monthly revenue of clients with
      at least one observed month.
    - reference_frequency / reference_interactions: 75th percentile of the
      positive office observations, falling back to the configured defaults
      when nobody has any.
    """
    snapshots = list(snapshots)
    averages = [s.average_monthly_revenue for s in snapshots if s.months_observed > 0]
    frequencies = [s.operations_per_month for s in snapshots if s.operations_per_month > 0]
    interactions = [s.interaction_count for s in snapshots if s.interaction_count > 0]

    median_revenue = float(np.median(averages)) if averages else 0.0
    reference_frequency = (
        float(np.percentile(frequencies, REFERENCE_PERCENTILE))
        if frequencies else settings.default_reference_frequency
    )
    reference_interactions = (
        float(np.percentile(interactions, REFERENCE_PERCENTILE))
        if interactions else settings.default_reference_interactions
    )

    window = trailing_window(as_of, settings.trailing_window_months)
    return ScoringContext(
        as_of=as_of,
        window_start=window[0],
        window_end=month_start(as_of) - timedelta(days=1),
        median_monthly_revenue=max(median_revenue, 0.0),
        reference_frequency=reference_frequency,
        reference_interactions=reference_interactions,
        staleness_horizon_days=settings.staleness_horizon_days,
        engagement_window_days=settings.engagement_window_days,
        trend_growth_cap=settings.trend_growth_cap,
    )


# =============================================================================
# Composite Score
# =============================================================================


def score_components(
    snapshot: ClientActivitySnapshot,
    context: ScoringContext,
) -> HealthScoreComponents:
    """Normalize a snapshot's features into the five sub-scores."""
    return HealthScoreComponents(
        recency=round(recency_score(snapshot.days_since_last_revenue, context.staleness_horizon_days), 2),
        frequency=round(frequency_score(snapshot.operations_per_month, context.reference_frequency), 2),
        monetary=round(monetary_score(snapshot.average_monthly_revenue, context.median_monthly_revenue), 2),
        trend=round(trend_score(snapshot.revenue_trend), 2),
        engagement=round(engagement_score(snapshot.interaction_count, context.reference_interactions), 2),
    )


def composite_score(components: HealthScoreComponents) -> float:
    """Weighted sum of the sub-scores, clamped to [0, 100] and rounded to 2 decimals."""
    total = sum(
        weight * getattr(components, name)
        for name, weight in HEALTH_SCORE_WEIGHTS.items()
    )
    return round(_clamp(total), 2)


def score_snapshot(
    snapshot: ClientActivitySnapshot,
    context: ScoringContext,
    previous: Optional[HealthScore],
    computed_at: datetime,
) -> HealthScore:
    """
    Produce a HealthScore record from a snapshot.

    The churn probability is computed alongside, using the previous stored
    score (if any) to detect a declining or improving client.
    """
    components = score_components(snapshot, context)
    score = composite_score(components)
    previous_score = previous.score if previous else None
    return HealthScore(
        client_id=snapshot.client_id,
        score=score,
        classification=classify_score(score),
        components=components,
        churn_probability=predict_churn_probability(components, score, previous_score),
        previous_score=previous_score,
        as_of=context.as_of,
        computed_at=computed_at,
    )


# =============================================================================
# Store-backed Operations
# =============================================================================


@dataclass
class _ActivityData:
    """Raw events of one or all clients for a scoring window."""
    revenues: Dict[str, List[RevenueEvent]] = field(default_factory=lambda: defaultdict(list))
    bounds: Dict[str, RevenueBounds] = field(default_factory=dict)
    interactions: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


def _utc_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


async def _load_activity(
    store: CrmStore,
    as_of: date,
    settings: Settings,
    client_ids: Optional[Sequence[str]] = None,
) -> _ActivityData:
    """Fetch window revenues, revenue bounds and recent interactions."""
    window = trailing_window(as_of, settings.trailing_window_months)
    window_end = month_start(as_of) - timedelta(days=1)

    revenues: List[RevenueEvent] = await fetch_all(
        store.fetch_revenue_page,
        description="window revenues",
        page_size=settings.page_size,
        client_ids=client_ids,
        start=window[0],
        end=window_end,
    )
    bounds: List[RevenueBounds] = await fetch_all(
        store.fetch_revenue_bounds_page,
        description="revenue bounds",
        page_size=settings.page_size,
        as_of=as_of,
        client_ids=client_ids,
    )
    interactions: List[InteractionRecord] = await fetch_all(
        store.fetch_interaction_page,
        description="recent interactions",
        page_size=settings.page_size,
        client_ids=client_ids,
        created_from=_utc_midnight(as_of - timedelta(days=settings.engagement_window_days)),
        created_to=_utc_midnight(as_of + timedelta(days=1)),
    )

    data = _ActivityData()
    for revenue in revenues:
        data.revenues[revenue.client_id].append(revenue)
    for bound in bounds:
        data.bounds[bound.client_id] = bound
    for interaction in interactions:
        data.interactions[interaction.client_id] += 1
    return data


def _snapshots_for(
    client_ids: Iterable[str],
    data: _ActivityData,
    as_of: date,
    settings: Settings,
) -> Dict[str, ClientActivitySnapshot]:
    window = trailing_window(as_of, settings.trailing_window_months)
    return {
        client_id: build_activity_snapshot(
            client_id=client_id,
            as_of=as_of,
            window_months=window,
            revenues=data.revenues.get(client_id, []),
            bounds=data.bounds.get(client_id),
            interaction_count=data.interactions.get(client_id, 0),
            trend_growth_cap=settings.trend_growth_cap,
        )
        for client_id in client_ids
    }


async def load_scoring_context(
    store: CrmStore,
    as_of: date,
    settings: Optional[Settings] = None,
) -> ScoringContext:
    """Build the office reference snapshot from all active clients."""
    settings = settings or get_settings()
    clients = await fetch_all(
        store.fetch_client_page,
        description="active clients",
        page_size=settings.page_size,
        active=True,
    )
    data = await _load_activity(store, as_of, settings)
    snapshots = _snapshots_for((c.id for c in clients), data, as_of, settings)
    return build_scoring_context(as_of, snapshots.values(), settings)


async def compute_health_score(
    store: CrmStore,
    client_id: str,
    as_of: Optional[date] = None,
    context: Optional[ScoringContext] = None,
    settings: Optional[Settings] = None,
) -> HealthScore:
    """
    Compute, persist and return the latest health score of one client.

    Args:
        store: CRM store.
        client_id: Client to score.
        as_of: Reference date (default: today, UTC).
        context: Office reference snapshot; built from the store when omitted.
        settings: Settings override (default: get_settings()).

    Returns:
        The stored HealthScore.

    Raises:
        NotFound: If the client does not exist.
        AggregationFailure: If a paged read fails.
    """
    settings = settings or get_settings()
    as_of = as_of or datetime.now(timezone.utc).date()

    client = await store.get_client(client_id)
    if client is None:
        raise NotFound("client", client_id)

    if context is None:
        context = await load_scoring_context(store, as_of, settings)

    data = await _load_activity(store, as_of, settings, client_ids=[client_id])
    snapshot = _snapshots_for([client_id], data, as_of, settings)[client_id]
    previous = await store.get_health_score(client_id)

    health = score_snapshot(snapshot, context, previous, datetime.now(timezone.utc))
    await store.upsert_health_scores([health])

    logger.info(
        f"Health score for {client_id}: {health.score} ({health.classification.value}), "
        f"churn probability {health.churn_probability}%"
    )
    return health


async def bulk_compute_health_scores(
    store: CrmStore,
    as_of: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> BulkRecomputeResult:
    """
    Recompute the health score of every active client.

    Office activity is read once and a single ScoringContext is shared by the
    whole run. Clients are scored concurrently, bounded by
    Settings.bulk_max_concurrency, and the scores are persisted in one batch
    only after every client succeeded; any store failure aborts the run with
    nothing written.

    Returns:
        BulkRecomputeResult with the number of clients scored and the
        classification distribution.
    """
    settings = settings or get_settings()
    as_of = as_of or datetime.now(timezone.utc).date()
    computed_at = datetime.now(timezone.utc)

    clients = await fetch_all(
        store.fetch_client_page,
        description="active clients",
        page_size=settings.page_size,
        active=True,
    )
    client_ids = [client.id for client in clients]

    data = await _load_activity(store, as_of, settings)
    snapshots = _snapshots_for(client_ids, data, as_of, settings)
    context = build_scoring_context(as_of, snapshots.values(), settings)

    semaphore = asyncio.Semaphore(settings.bulk_max_concurrency)

    async def score_one(client_id: str) -> HealthScore:
        async with semaphore:
            previous = await store.get_health_score(client_id)
        return score_snapshot(snapshots[client_id], context, previous, computed_at)

    scores: List[HealthScore] = list(
        await asyncio.gather(*(score_one(client_id) for client_id in client_ids))
    )
    if scores:
        await store.upsert_health_scores(scores)

    counts: Dict[HealthClassification, int] = {c: 0 for c in HealthClassification}
    for health in scores:
        counts[health.classification] += 1

    logger.info(
        f"Recomputed {len(scores)} health scores as of {as_of} "
        f"(median revenue {context.median_monthly_revenue:.2f}, "
        f"reference frequency {context.reference_frequency:.2f})"
    )
    return BulkRecomputeResult(computed=len(scores), as_of=as_of, classification_counts=counts)


async def get_latest_health_score(store: CrmStore, client_id: str) -> HealthScore:
    """
    Return the stored health score of a client.

    Raises:
        NotFound: If the client has never been scored.
    """
    health = await store.get_health_score(client_id)
    if health is None:
        raise NotFound("health score", client_id)
    return health


async def list_health_scores(
    store: CrmStore,
    classifications: Optional[Sequence[HealthClassification]] = None,
    settings: Optional[Settings] = None,
) -> List[HealthScore]:
    """All stored health scores, lowest first, optionally filtered by band."""
    settings = settings or get_settings()
    return await fetch_all(
        store.fetch_health_score_page,
        description="health scores",
        page_size=settings.page_size,
        classifications=classifications,
    )
