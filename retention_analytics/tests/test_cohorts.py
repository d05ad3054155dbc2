"""
Tests for the funnel cohort report.

Covers:
- Retention per month offset from conversion
- Future offsets excluded from cohort and report-wide averages
- Funnel stage counts, conversion rate and conversion time
- Per-assessor conversion breakdown
"""

from datetime import date, datetime, timezone

import pytest

from retention_analytics.models import LeadRecord, LeadStatus
from retention_analytics.services.cohorts import (
    build_cohort_bucket,
    funnel_cohort_report,
    leads_by_assessor,
    summarize_funnel,
)


def utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


TODAY = date(2025, 7, 15)


@pytest.fixture
def cohort_store(store):
    """
    June cohort: two converted leads with revenue, one open, one lost.
    July cohort: one converted lead with revenue this month.
    """
    store.add_lead("lead_1", LeadStatus.CONVERTED, utc(2025, 6, 10), converted_at=utc(2025, 6, 20))
    store.add_lead("lead_2", LeadStatus.NEW, utc(2025, 6, 11))
    store.add_lead("lead_3", LeadStatus.LOST, utc(2025, 6, 12))
    store.add_lead("lead_4", LeadStatus.CONVERTED, utc(2025, 6, 10), converted_at=utc(2025, 6, 25))
    store.add_lead("lead_5", LeadStatus.CONVERTED, utc(2025, 7, 2), converted_at=utc(2025, 7, 5))
    store.add_lead("lead_old", LeadStatus.CONVERTED, utc(2025, 4, 2), converted_at=utc(2025, 4, 5))

    store.add_client("cli_1", converted_from_lead_id="lead_1")
    store.add_client("cli_4", converted_from_lead_id="lead_4")
    store.add_client("cli_5", converted_from_lead_id="lead_5")
    store.add_client("cli_walk_in")

    store.add_revenue("cli_1", date(2025, 6, 28), 300.0)
    store.add_revenue("cli_1", date(2025, 7, 3), 300.0)
    store.add_revenue("cli_4", date(2025, 6, 30), 150.0)
    store.add_revenue("cli_5", date(2025, 7, 8), 90.0)
    store.add_revenue("cli_walk_in", date(2025, 7, 1), 500.0)
    return store


@pytest.mark.asyncio
class TestFunnelCohortReport:
    """Tests for funnel_cohort_report."""

    async def test_cohort_retention_curve(self, cohort_store, test_settings):
        report = await funnel_cohort_report(
            cohort_store, date(2025, 6, 1), date(2025, 7, 31), today=TODAY, settings=test_settings
        )

        assert [c.cohort_month for c in report.cohorts] == ["2025-06", "2025-07"]
        june = report.cohorts[0]
        assert june.total_leads == 4
        assert june.converted_leads_count == 2
        assert june.tracked_leads_count == 2
        assert june.final_conversion_rate == 50.0
        assert june.retention[0].percentage == 100.0
        assert june.retention[1].percentage == 50.0
        assert june.retention[1].calendar_month == "2025-07"
        assert june.retention[2].is_future
        assert june.retention[2].percentage is None
        assert june.average_retention == 75.0

    async def test_current_month_cohort_has_future_offsets(self, cohort_store, test_settings):
        report = await funnel_cohort_report(
            cohort_store, date(2025, 6, 1), date(2025, 7, 31), today=TODAY, settings=test_settings
        )

        july = report.cohorts[1]
        assert july.retention[0].percentage == 100.0
        assert not july.retention[0].is_future
        assert all(p.is_future and p.percentage is None for p in july.retention[1:])
        assert len(july.retention) == test_settings.cohort_max_offset + 1

    async def test_averages_skip_future_offsets(self, cohort_store, test_settings):
        report = await funnel_cohort_report(
            cohort_store, date(2025, 6, 1), date(2025, 7, 31), today=TODAY, settings=test_settings
        )

        by_offset = {a.offset: a for a in report.average_retention_by_offset}
        assert by_offset[0].average == 100.0
        assert by_offset[0].cohorts_counted == 2
        assert by_offset[1].average == 50.0
        assert by_offset[1].cohorts_counted == 1
        assert by_offset[2].average is None

    async def test_funnel_summary(self, cohort_store, test_settings):
        report = await funnel_cohort_report(
            cohort_store, date(2025, 6, 1), date(2025, 7, 31), today=TODAY, settings=test_settings
        )

        funnel = report.funnel
        assert funnel.total_leads == 5
        assert funnel.converted == 3
        assert funnel.lost == 1
        assert funnel.stage_counts[LeadStatus.NEW] == 1
        assert funnel.stage_counts[LeadStatus.CONTACTED] == 0
        assert funnel.conversion_rate == 75.0
        assert funnel.average_conversion_days == 9.3

    async def test_leads_outside_range_are_ignored(self, cohort_store, test_settings):
        report = await funnel_cohort_report(
            cohort_store, date(2025, 7, 1), date(2025, 7, 1), today=TODAY, settings=test_settings
        )

        assert report.cohorts == []
        assert report.funnel.total_leads == 0

    async def test_late_conversion_offsets_follow_conversion_month(self, store, test_settings):
        store.add_lead("lead_apr", LeadStatus.CONVERTED, utc(2025, 4, 10), converted_at=utc(2025, 6, 20))
        store.add_client("cli_apr", converted_from_lead_id="lead_apr")
        store.add_revenue("cli_apr", date(2025, 6, 25), 400.0)

        report = await funnel_cohort_report(
            store, date(2025, 4, 1), date(2025, 4, 30), today=TODAY, settings=test_settings
        )

        [april] = report.cohorts
        assert april.cohort_month == "2025-04"
        assert april.first_conversion_month == "2025-06"
        june, july, august = april.retention[:3]
        assert (june.calendar_month, june.percentage, june.is_future) == ("2025-06", 100.0, False)
        assert (july.calendar_month, july.percentage, july.is_future) == ("2025-07", 0.0, False)
        assert august.calendar_month == "2025-08" and august.is_future
        assert not any(
            p.is_future for p in april.retention if p.calendar_month <= "2025-07"
        )

    async def test_rejects_inverted_range(self, store, test_settings):
        with pytest.raises(ValueError):
            await funnel_cohort_report(
                store, date(2025, 7, 1), date(2025, 6, 1), today=TODAY, settings=test_settings
            )


class TestCohortBucket:
    """Tests for build_cohort_bucket without tracked leads."""

    def test_untracked_cohort_uses_calendar_futurity(self):
        leads = [LeadRecord(id="l1", name="L1", status=LeadStatus.CONTACTED, created_at=utc(2025, 6, 3))]

        bucket = build_cohort_bucket(date(2025, 6, 1), leads, {}, {}, TODAY, max_offset=3)

        assert [p.is_future for p in bucket.retention] == [False, False, True, True]
        assert all(p.percentage is None for p in bucket.retention)
        assert bucket.average_retention is None
        assert bucket.final_conversion_rate == 0.0

    def test_summarize_funnel_empty(self):
        funnel = summarize_funnel([])

        assert funnel.total_leads == 0
        assert funnel.conversion_rate == 0.0
        assert funnel.average_conversion_days is None
        assert funnel.leads_by_assessor == []

    def test_leads_by_assessor(self):
        def lead(lead_id: str, status: LeadStatus, assessor_id=None) -> LeadRecord:
            return LeadRecord(
                id=lead_id, name=lead_id, status=status, created_at=utc(2025, 6, 1), assessor_id=assessor_id
            )

        leads = [
            lead("l1", LeadStatus.CONVERTED, "as_1"),
            lead("l2", LeadStatus.LOST, "as_1"),
            lead("l3", LeadStatus.NEW, "as_1"),
            lead("l4", LeadStatus.CONVERTED, "as_2"),
            lead("l5", LeadStatus.NEW),
        ]

        rows = leads_by_assessor(leads)

        assert [(r.assessor_id, r.total_leads, r.converted) for r in rows] == [
            ("as_1", 3, 1),
            ("as_2", 1, 1),
            (None, 1, 0),
        ]
        assert rows[0].conversion_rate == 33.33
        assert rows[1].conversion_rate == 100.0
        assert summarize_funnel(leads).leads_by_assessor == rows
