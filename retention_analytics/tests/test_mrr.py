"""
Tests for MRR decomposition.

Covers:
- New / expansion / contraction / churn buckets
- Reconciliation of net movement with the office revenue change
- Prior-month baseline and multi-month ranges
- Inconsistent data and invalid ranges
"""

from datetime import date

import pytest

from retention_analytics.core.exceptions import InconsistentState
from retention_analytics.models import RevenueEvent
from retention_analytics.services.mrr import decompose_mrr, revenue_mrr_report


def revenue(rev_id: str, client_id: str, day: date, amount: float) -> RevenueEvent:
    return RevenueEvent(id=rev_id, client_id=client_id, date=day, amount=amount)


@pytest.fixture
def mrr_store(store):
    """A grows 100 -> 150, B churns 200 -> 0, C is new at 80; March: A contracts to 120."""
    store.add_revenue("A", date(2025, 1, 10), 100.0)
    store.add_revenue("B", date(2025, 1, 15), 120.0)
    store.add_revenue("B", date(2025, 1, 25), 80.0)
    store.add_revenue("A", date(2025, 2, 10), 150.0)
    store.add_revenue("C", date(2025, 2, 12), 80.0)
    store.add_revenue("A", date(2025, 3, 10), 120.0)
    store.add_revenue("C", date(2025, 3, 12), 80.0)
    return store


class TestDecomposeMrr:
    """Tests for decompose_mrr."""

    def test_single_month_buckets(self):
        revenues = [
            revenue("r1", "A", date(2025, 1, 5), 100.0),
            revenue("r2", "B", date(2025, 1, 6), 200.0),
            revenue("r3", "A", date(2025, 2, 5), 150.0),
            revenue("r4", "C", date(2025, 2, 7), 80.0),
        ]

        [february] = decompose_mrr(revenues, [date(2025, 2, 1)], tolerance=0.01)

        assert february.month == "2025-02"
        assert february.new == 80.0
        assert february.expansion == 50.0
        assert february.contraction == 0.0
        assert february.churn == -200.0
        assert february.net == -70.0
        assert february.starting_mrr == 300.0
        assert february.ending_mrr == 230.0
        assert february.active_clients == 2

    def test_no_revenue_reconciles_to_zero(self):
        movements = decompose_mrr([], [date(2025, 1, 1), date(2025, 2, 1)], tolerance=0.01)

        assert [m.net for m in movements] == [0.0, 0.0]
        assert all(m.starting_mrr == 0.0 and m.ending_mrr == 0.0 for m in movements)

    def test_negative_client_month_is_inconsistent(self):
        revenues = [
            revenue("r1", "A", date(2025, 1, 5), 100.0),
            revenue("r2", "A", date(2025, 2, 5), -20.0),
        ]

        with pytest.raises(InconsistentState):
            decompose_mrr(revenues, [date(2025, 2, 1)], tolerance=0.01)

    def test_adjustment_within_positive_month_is_fine(self):
        revenues = [
            revenue("r1", "A", date(2025, 1, 5), 100.0),
            revenue("r2", "A", date(2025, 2, 5), 130.0),
            revenue("r3", "A", date(2025, 2, 20), -10.0),
        ]

        [february] = decompose_mrr(revenues, [date(2025, 2, 1)], tolerance=0.01)

        assert february.expansion == 20.0
        assert february.net == 20.0


@pytest.mark.asyncio
class TestRevenueMrrReport:
    """Tests for revenue_mrr_report."""

    async def test_multi_month_report(self, mrr_store, test_settings):
        report = await revenue_mrr_report(
            mrr_store, date(2025, 2, 1), date(2025, 3, 31), settings=test_settings
        )

        assert report.start_month == "2025-02"
        assert report.end_month == "2025-03"
        february, march = report.movements
        assert february.net == -70.0
        assert march.contraction == -30.0
        assert march.new == 0.0
        assert march.net == -30.0
        assert report.starting_mrr == 300.0
        assert report.ending_mrr == 200.0
        assert report.totals.net == -100.0
        assert report.totals.churn == -200.0

    async def test_movements_sum_to_net(self, mrr_store, test_settings):
        report = await revenue_mrr_report(
            mrr_store, date(2025, 1, 1), date(2025, 4, 30), settings=test_settings
        )

        for m in report.movements:
            assert m.new + m.expansion + m.contraction + m.churn == pytest.approx(m.net, abs=0.01)
            assert m.ending_mrr - m.starting_mrr == pytest.approx(m.net, abs=0.01)
        assert report.movements[0].new == 300.0
        assert report.movements[-1].churn == -200.0

    async def test_fetches_prior_month_baseline(self, mrr_store, test_settings):
        await revenue_mrr_report(mrr_store, date(2025, 2, 14), date(2025, 2, 20), settings=test_settings)

        revenue_pages = [c for c in mrr_store.page_calls if c[0] == "revenues"]
        assert revenue_pages
        assert [offset for _, offset, _ in revenue_pages] == [0, 3]

    async def test_rejects_inverted_range(self, store, test_settings):
        with pytest.raises(ValueError):
            await revenue_mrr_report(store, date(2025, 3, 1), date(2025, 2, 1), settings=test_settings)
