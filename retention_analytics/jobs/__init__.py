"""
Scheduled jobs for the retention analytics engine.

- daily_retention: health recomputation, churn scan and churn resolution
- slack_digest: daily Slack Block Kit retention digest

Both jobs are idempotent per date and accept force=True to re-run.
"""

# =============================================================================
# Daily Retention Exports
# =============================================================================
from retention_analytics.jobs.daily_retention import (
    check_already_run,
    run_daily_retention,
)

# =============================================================================
# Slack Digest Exports
# =============================================================================
from retention_analytics.jobs.slack_digest import (
    check_already_sent,
    send_retention_digest,
)

__all__ = [
    'run_daily_retention',
    'check_already_run',
    'send_retention_digest',
    'check_already_sent',
]
