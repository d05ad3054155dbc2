"""
MRR decomposition of office revenue.

For every calendar month of the report range, each client's revenue total is
compared with the same client's total in the prior month:

    NEW          prior <= 0, current > 0            +current
    EXPANSION    prior > 0,  current > prior        +(current - prior)
    CONTRACTION  prior > 0,  0 < current < prior    (current - prior), negative
    CHURN        prior > 0,  current <= 0           -prior

The month's net movement (new + expansion + contraction + churn) must equal
the change in total office revenue (ending_mrr - starting_mrr) within
`reconciliation_tolerance`. A mismatch means the data holds something the
decomposition cannot explain (for example a client whose month nets out
negative) and aborts the report with InconsistentState.

Usage:
    report = await revenue_mrr_report(store, date(2025, 1, 1), date(2025, 6, 30))
    for movement in report.movements:
        print(movement.month, movement.net)
"""

import logging
import math
from datetime import date
from typing import List, Optional

import numpy as np
import pandas as pd

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.core.exceptions import InconsistentState
from retention_analytics.models import (
    MovementType,
    MRRMovement,
    MRRTotals,
    RevenueEvent,
    RevenueMrrReport,
)
from retention_analytics.services.aggregator import fetch_all
from retention_analytics.services.month_utils import (
    add_months,
    month_end,
    month_key,
    month_range,
    month_start,
)
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)

_MOVEMENT_COLUMNS = [m.value for m in MovementType]


def monthly_revenue_matrix(revenues: List[RevenueEvent], months: List[date]) -> pd.DataFrame:
    """
    Client x month revenue totals.

    Rows are client ids, columns are the given month starts; months without
    revenue are 0.
    """
    frame = pd.DataFrame(
        [(r.client_id, month_start(r.date), r.amount) for r in revenues],
        columns=["client_id", "month", "amount"],
    )
    if frame.empty:
        return pd.DataFrame(0.0, index=pd.Index([], name="client_id"), columns=months)

    matrix = frame.pivot_table(
        index="client_id",
        columns="month",
        values="amount",
        aggfunc="sum",
        fill_value=0.0,
    )
    return matrix.reindex(columns=months, fill_value=0.0).astype(float)


def classify_movements(matrix: pd.DataFrame) -> pd.DataFrame:
    """
    Label every (client, month) transition and sum the deltas per bucket.

    Args:
        matrix: Output of monthly_revenue_matrix; the first column is the
            prior month of the report range.

    Returns:
        DataFrame indexed by report month with one column per MovementType.
    """
    months = list(matrix.columns[1:])
    values = matrix.to_numpy(dtype=float)
    prior = values[:, :-1]
    current = values[:, 1:]

    conditions = [
        (prior <= 0) & (current > 0),
        (prior > 0) & (current > prior),
        (prior > 0) & (current > 0) & (current < prior),
        (prior > 0) & (current <= 0),
    ]
    labels = np.select(conditions, _MOVEMENT_COLUMNS, default="")
    amounts = np.select(
        conditions,
        [current, current - prior, current - prior, -prior],
        default=0.0,
    )

    long = pd.DataFrame(
        {
            "month": np.tile(months, len(matrix.index)),
            "movement": labels.ravel(),
            "amount": amounts.ravel(),
        }
    )
    long = long[long["movement"] != ""]
    if long.empty:
        return pd.DataFrame(0.0, index=months, columns=_MOVEMENT_COLUMNS)
    buckets = long.groupby(["month", "movement"])["amount"].sum().unstack(fill_value=0.0)
    return buckets.reindex(index=months, columns=_MOVEMENT_COLUMNS, fill_value=0.0)


def decompose_mrr(
    revenues: List[RevenueEvent],
    months: List[date],
    tolerance: float,
) -> List[MRRMovement]:
    """
    Decompose monthly revenue changes for the given report months.

    `revenues` must cover the month before months[0] so the first month has
    a baseline.

    Raises:
        InconsistentState: If a month's net movement does not reconcile with
            the change in total office revenue.
    """
    if not months:
        return []

    matrix = monthly_revenue_matrix(revenues, [add_months(months[0], -1)] + months)
    buckets = classify_movements(matrix)
    office_totals = matrix.sum(axis=0)
    active = (matrix > 0).sum(axis=0)

    movements: List[MRRMovement] = []
    for month in months:
        row = buckets.loc[month]
        starting = float(office_totals[add_months(month, -1)])
        ending = float(office_totals[month])
        net = float(row.sum())

        if not math.isclose(net, ending - starting, abs_tol=tolerance):
            logger.error(
                f"MRR reconciliation failed for {month_key(month)}: "
                f"movements sum to {net:.2f}, revenue changed by {ending - starting:.2f}"
            )
            raise InconsistentState(
                f"MRR movements for {month_key(month)} sum to {net:.2f} but office revenue "
                f"changed by {ending - starting:.2f}"
            )

        movements.append(
            MRRMovement(
                month=month_key(month),
                new=round(float(row[MovementType.NEW.value]), 2),
                expansion=round(float(row[MovementType.EXPANSION.value]), 2),
                contraction=round(float(row[MovementType.CONTRACTION.value]), 2),
                churn=round(float(row[MovementType.CHURN.value]), 2),
                net=round(net, 2),
                starting_mrr=round(starting, 2),
                ending_mrr=round(ending, 2),
                active_clients=int(active[month]),
            )
        )
    return movements


async def revenue_mrr_report(
    store: CrmStore,
    start: date,
    end: date,
    settings: Optional[Settings] = None,
) -> RevenueMrrReport:
    """
    MRR movement report for every calendar month touched by [start, end].

    Args:
        store: CRM store.
        start: Any day of the first report month.
        end: Any day of the last report month.
        settings: Settings override.

    Raises:
        ValueError: If end is before start.
        AggregationFailure: If any page fetch fails.
        InconsistentState: If any month fails reconciliation.
    """
    if end < start:
        raise ValueError(f"Report end {end} is before start {start}")
    settings = settings or get_settings()
    months = month_range(start, end)

    revenues: List[RevenueEvent] = await fetch_all(
        store.fetch_revenue_page,
        description="MRR revenues",
        page_size=settings.page_size,
        start=add_months(months[0], -1),
        end=month_end(months[-1]),
    )
    movements = decompose_mrr(revenues, months, settings.reconciliation_tolerance)

    totals = MRRTotals(
        new=round(sum(m.new for m in movements), 2),
        expansion=round(sum(m.expansion for m in movements), 2),
        contraction=round(sum(m.contraction for m in movements), 2),
        churn=round(sum(m.churn for m in movements), 2),
        net=round(sum(m.net for m in movements), 2),
    )
    logger.info(
        f"MRR report {month_key(months[0])}..{month_key(months[-1])}: "
        f"{len(revenues)} revenues, net {totals.net:.2f}"
    )
    return RevenueMrrReport(
        start_month=month_key(months[0]),
        end_month=month_key(months[-1]),
        movements=movements,
        totals=totals,
        starting_mrr=movements[0].starting_mrr,
        ending_mrr=movements[-1].ending_mrr,
    )
