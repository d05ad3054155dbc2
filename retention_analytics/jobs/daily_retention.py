"""
Daily retention job.

Runs the nightly retention pipeline in order:
1. Bulk recomputation of every active client's health score
2. Churn scan: pending churn events for critical and lost clients
3. Churn resolution: retained / churned outcomes from observed revenue

Idempotency:
- Completed runs are recorded per date in the job_run_state table
- A second call for the same date is skipped unless force=True
- A run that fails records nothing, so the next call retries it

Usage:
    # Run for today (UTC)
    result = await run_daily_retention()

    # Re-run a date that already completed
    result = await run_daily_retention(run_date=date(2025, 7, 1), force=True)

See Also:
    - retention_analytics/jobs/slack_digest.py: digest posted after the run
    - retention_analytics/sql/schema.py: job_run_state DDL
"""

import asyncio
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional

from retention_analytics.core.database import close_db, get_db_pool, init_db
from retention_analytics.core.exceptions import RetentionAnalyticsError
from retention_analytics.services.churn_prediction import resolve_churn_events, scan_churn_risk
from retention_analytics.services.health_score import bulk_compute_health_scores
from retention_analytics.services.store import CrmStore, PostgresCrmStore


logger = logging.getLogger(__name__)

JOB_TYPE = "daily_retention"


# =============================================================================
# Idempotency Functions
# =============================================================================

async def check_already_run(run_date: date) -> bool:
    """Return True when the pipeline already completed for `run_date`."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT run_date, completed_at
            FROM job_run_state
            WHERE job_type = $1
              AND run_date = $2
            """,
            JOB_TYPE,
            run_date,
        )
        return row is not None


async def mark_run_completed(run_date: date) -> None:
    """Record a completed run; forced re-runs bump run_count."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO job_run_state (job_type, run_date, completed_at, run_count)
            VALUES ($1, $2, $3, 1)
            ON CONFLICT (job_type, run_date)
            DO UPDATE SET
                completed_at = EXCLUDED.completed_at,
                run_count = job_run_state.run_count + 1
            """,
            JOB_TYPE,
            run_date,
            datetime.now(timezone.utc),
        )


# =============================================================================
# Main Entry Point
# =============================================================================

async def run_daily_retention(
    run_date: Optional[date] = None,
    force: bool = False,
    store: Optional[CrmStore] = None,
) -> Dict[str, Any]:
    """
    Run health recomputation, churn scan and churn resolution for a date.

    Args:
        run_date: Reference date (default: today, UTC).
        force: Run even if the date already completed.
        store: CRM store (default: PostgresCrmStore over the shared pool).

    Returns:
        Dict with:
        - success: False when a domain error aborted the run
        - skipped / reason: set when the date already completed
        - date: the run date as string
        - scored, classification_counts: bulk recomputation outcome
        - churn_opened, churn_retained, churn_churned: churn outcomes
        - error: error message (on failure)
    """
    target_date = run_date or datetime.now(timezone.utc).date()

    if not force and await check_already_run(target_date):
        logger.info(f"Daily retention already completed for {target_date}; skipping")
        return {
            'success': True,
            'skipped': True,
            'reason': f'Daily retention already run for {target_date}',
            'date': str(target_date),
        }

    if store is None:
        store = PostgresCrmStore(await get_db_pool())

    try:
        recompute = await bulk_compute_health_scores(store, as_of=target_date)
        scan = await scan_churn_risk(
            store, as_of=datetime.combine(target_date, time.min, tzinfo=timezone.utc)
        )
        resolution = await resolve_churn_events(store, as_of=target_date)
    except RetentionAnalyticsError as e:
        logger.error(f"Daily retention failed for {target_date}: {e}", exc_info=True)
        return {
            'success': False,
            'error': str(e),
            'date': str(target_date),
        }

    await mark_run_completed(target_date)
    logger.info(
        f"Daily retention for {target_date}: {recompute.computed} scored, "
        f"{scan.opened} churn events opened, {resolution.retained} retained, "
        f"{resolution.churned} churned"
    )
    return {
        'success': True,
        'date': str(target_date),
        'scored': recompute.computed,
        'classification_counts': {k.value: v for k, v in recompute.classification_counts.items()},
        'churn_opened': scan.opened,
        'churn_retained': resolution.retained,
        'churn_churned': resolution.churned,
    }


async def _main() -> None:
    await init_db()
    try:
        print(await run_daily_retention())
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(_main())
