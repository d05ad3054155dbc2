"""
Funnel cohort report.

Groups leads by the calendar month they were created in and follows the
converted ones into revenue:

- total_leads: leads created in the cohort month.
- converted_leads_count: leads with status CONVERTED.
- tracked_leads_count: converted leads whose client (matched through
  `clients.converted_from_lead_id`) has posted revenue at least once.
- retention[k], k = 0..cohort_max_offset: share of tracked leads with
  revenue in the k-th month after conversion (creation month when the
  conversion timestamp is missing), measured over the leads whose k-th
  month has already started.

Each offset is labelled with the first calendar month any tracked lead reaches
it: earliest conversion month + k (cohort_month + k with no tracked leads).
An offset is future exactly when that calendar month is after today's month.
Future offsets carry percentage None and never count toward averages.

Usage:
    report = await funnel_cohort_report(store, date(2025, 1, 1), date(2025, 6, 30))
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Set

import numpy as np

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.models import (
    AssessorConversion,
    ClientRecord,
    CohortBucket,
    CohortRetentionPoint,
    FunnelCohortReport,
    FunnelSummary,
    LeadRecord,
    LeadStatus,
    OffsetRetentionAverage,
    RevenueEvent,
)
from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.month_utils import add_months, month_key, month_start
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2)


def _conversion_month(lead: LeadRecord) -> date:
    moment = lead.converted_at or lead.created_at
    return month_start(moment.date())


def build_cohort_bucket(
    cohort_month: date,
    leads: List[LeadRecord],
    revenue_months: Dict[str, Set[date]],
    client_by_lead: Dict[str, ClientRecord],
    today: date,
    max_offset: int,
) -> CohortBucket:
    """
    Retention curve of one creation-month cohort.

    Args:
        cohort_month: First day of the cohort's creation month.
        leads: Every lead created in that month.
        revenue_months: Client id -> set of months (first days) with revenue.
        client_by_lead: Lead id -> client converted from it.
        today: Reference date for futurity.
        max_offset: Last month offset to report.
    """
    converted = [lead for lead in leads if lead.status is LeadStatus.CONVERTED]
    tracked = []
    for lead in converted:
        client = client_by_lead.get(lead.id)
        if client is not None and revenue_months.get(client.id):
            tracked.append((lead, revenue_months[client.id]))

    current_month = month_start(today)
    base_month = min((_conversion_month(lead) for lead, _ in tracked), default=cohort_month)
    points: List[CohortRetentionPoint] = []
    for offset in range(max_offset + 1):
        eligible = 0
        retained = 0
        for lead, months in tracked:
            relative = add_months(_conversion_month(lead), offset)
            if relative > current_month:
                continue
            eligible += 1
            if relative in months:
                retained += 1

        calendar_month = add_months(base_month, offset)
        is_future = calendar_month > current_month

        points.append(
            CohortRetentionPoint(
                offset=offset,
                calendar_month=month_key(calendar_month),
                percentage=_percentage(retained, eligible) if eligible and not is_future else None,
                eligible_leads=eligible,
                retained_leads=retained,
                is_future=is_future,
            )
        )

    observed = [p.percentage for p in points if p.percentage is not None]
    return CohortBucket(
        cohort_month=month_key(cohort_month),
        total_leads=len(leads),
        converted_leads_count=len(converted),
        tracked_leads_count=len(tracked),
        first_conversion_month=month_key(base_month) if tracked else None,
        retention=points,
        final_conversion_rate=_percentage(len(converted), len(leads)) if leads else 0.0,
        average_retention=round(float(np.mean(observed)), 2) if observed else None,
    )


def average_retention_by_offset(
    cohorts: List[CohortBucket],
    max_offset: int,
) -> List[OffsetRetentionAverage]:
    """Mean retention per offset across cohorts with a measured, non-future value."""
    averages = []
    for offset in range(max_offset + 1):
        values = [
            c.retention[offset].percentage
            for c in cohorts
            if not c.retention[offset].is_future and c.retention[offset].percentage is not None
        ]
        averages.append(
            OffsetRetentionAverage(
                offset=offset,
                average=round(float(np.mean(values)), 2) if values else None,
                cohorts_counted=len(values),
            )
        )
    return averages


def leads_by_assessor(leads: List[LeadRecord]) -> List[AssessorConversion]:
    totals: Dict[Optional[str], int] = defaultdict(int)
    converted: Dict[Optional[str], int] = defaultdict(int)
    for lead in leads:
        totals[lead.assessor_id] += 1
        if lead.status is LeadStatus.CONVERTED:
            converted[lead.assessor_id] += 1

    rows = [
        AssessorConversion(
            assessor_id=assessor_id,
            total_leads=total,
            converted=converted[assessor_id],
            conversion_rate=_percentage(converted[assessor_id], total),
        )
        for assessor_id, total in totals.items()
    ]
    rows.sort(key=lambda r: (-r.total_leads, r.assessor_id is None, r.assessor_id or ""))
    return rows


def summarize_funnel(leads: List[LeadRecord]) -> FunnelSummary:
    """
    Stage counts and conversion statistics.

    conversion_rate is converted / (total - lost) x 100; average_conversion_days
    covers converted leads with a conversion timestamp. leads_by_assessor rates
    each owner over all of their leads, busiest assessor first.
    """
    stage_counts = {status: 0 for status in LeadStatus}
    for lead in leads:
        stage_counts[lead.status] += 1

    converted = stage_counts[LeadStatus.CONVERTED]
    lost = stage_counts[LeadStatus.LOST]
    open_or_won = len(leads) - lost

    days = [
        (lead.converted_at - lead.created_at).total_seconds() / 86400
        for lead in leads
        if lead.status is LeadStatus.CONVERTED and lead.converted_at is not None
    ]
    return FunnelSummary(
        total_leads=len(leads),
        stage_counts=stage_counts,
        converted=converted,
        lost=lost,
        conversion_rate=_percentage(converted, open_or_won) if open_or_won else 0.0,
        average_conversion_days=round(float(np.mean(days)), 1) if days else None,
        leads_by_assessor=leads_by_assessor(leads),
    )


async def funnel_cohort_report(
    store: CrmStore,
    start: date,
    end: date,
    today: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> FunnelCohortReport:
    """
    Build the cohort retention report for leads created in [start, end].

    Args:
        store: CRM store.
        start: First lead creation day (inclusive).
        end: Last lead creation day (inclusive).
        today: Reference date for futurity (default: today, UTC).
        settings: Settings override.

    Returns:
        FunnelCohortReport with one bucket per creation month that has leads.

    Raises:
        ValueError: If end is before start.
        AggregationFailure: If any page fetch fails.
    """
    if end < start:
        raise ValueError(f"Report end {end} is before start {start}")
    settings = settings or get_settings()
    today = today or datetime.now(timezone.utc).date()
    max_offset = settings.cohort_max_offset

    leads: List[LeadRecord] = await fetch_all(
        store.fetch_lead_page,
        description="cohort leads",
        page_size=settings.page_size,
        created_from=datetime.combine(start, time.min, tzinfo=timezone.utc),
        created_to=datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )

    converted_ids = {lead.id for lead in leads if lead.status is LeadStatus.CONVERTED}
    client_by_lead: Dict[str, ClientRecord] = {}
    revenue_months: Dict[str, Set[date]] = defaultdict(set)
    if converted_ids:
        clients: List[ClientRecord] = await fetch_all(
            store.fetch_client_page,
            description="converted clients",
            page_size=settings.page_size,
            converted_only=True,
        )
        client_by_lead = {
            c.converted_from_lead_id: c
            for c in clients
            if c.converted_from_lead_id in converted_ids
        }

    if client_by_lead:
        revenues: List[RevenueEvent] = await fetch_all(
            store.fetch_revenue_page,
            description="converted client revenues",
            page_size=settings.page_size,
            client_ids=sorted(c.id for c in client_by_lead.values()),
        )
        for revenue in revenues:
            revenue_months[revenue.client_id].add(month_start(revenue.date))

    by_month: Dict[date, List[LeadRecord]] = defaultdict(list)
    for lead in leads:
        by_month[month_start(lead.created_at.date())].append(lead)

    cohorts = [
        build_cohort_bucket(month, by_month[month], revenue_months, client_by_lead, today, max_offset)
        for month in sorted(by_month)
    ]

    logger.info(
        f"Cohort report {start}..{end}: {len(leads)} leads in {len(cohorts)} cohorts"
    )
    return FunnelCohortReport(
        start=start,
        end=end,
        today=today,
        cohorts=cohorts,
        average_retention_by_offset=average_retention_by_offset(cohorts, max_offset),
        funnel=summarize_funnel(leads),
    )
