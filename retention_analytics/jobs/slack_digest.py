"""
Slack daily retention digest.

Posts a Block Kit summary of the office's retention state to a Slack
incoming webhook (slack_sdk WebhookClient):
- Health score distribution (healthy / attention / critical / lost)
- Churn summary (pending events, retention rate, average churn probability)
- Playbook workload (active playbooks, pending and overdue actions)
- The lowest-scoring at-risk clients with their next action

Idempotency:
- Sent digests are recorded per date in the job_digest_state table
- A second call for the same date is skipped unless force=True

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL

Usage:
    result = await send_retention_digest()
    result = await send_retention_digest(digest_date=date(2025, 7, 1), force=True)

See Also:
    - retention_analytics/jobs/daily_retention.py: pipeline that produces the scores
    - retention_analytics/core/config.py: slack_webhook_url, digest_top_at_risk
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from slack_sdk.errors import SlackRequestError
from slack_sdk.webhook import WebhookClient

from retention_analytics.core.config import get_settings
from retention_analytics.core.database import get_db_pool
from retention_analytics.core.exceptions import RetentionAnalyticsError
from retention_analytics.models import (
    AtRiskClient,
    ChurnSummary,
    HealthClassification,
    RetentionDashboard,
)
from retention_analytics.services.churn_prediction import churn_summary
from retention_analytics.services.health_score import list_health_scores
from retention_analytics.services.retention_overview import retention_dashboard
from retention_analytics.services.store import CrmStore, PostgresCrmStore


logger = logging.getLogger(__name__)

JOB_TYPE = "slack_retention_digest"

_CLASSIFICATION_EMOJI: Dict[HealthClassification, str] = {
    HealthClassification.HEALTHY: ":large_green_circle:",
    HealthClassification.ATTENTION: ":large_yellow_circle:",
    HealthClassification.CRITICAL: ":large_orange_circle:",
    HealthClassification.LOST: ":red_circle:",
}


# =============================================================================
# Idempotency Functions
# =============================================================================

async def check_already_sent(digest_date: date) -> bool:
    """Return True when a digest was already sent for `digest_date`."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT digest_date, sent_at
            FROM job_digest_state
            WHERE job_type = $1
              AND digest_date = $2
            """,
            JOB_TYPE,
            digest_date,
        )
        return row is not None


async def mark_digest_sent(digest_date: date) -> None:
    """Record a sent digest; forced re-sends bump digest_count."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO job_digest_state (job_type, digest_date, sent_at, digest_count)
            VALUES ($1, $2, $3, 1)
            ON CONFLICT (job_type, digest_date)
            DO UPDATE SET
                sent_at = EXCLUDED.sent_at,
                digest_count = job_digest_state.digest_count + 1
            """,
            JOB_TYPE,
            digest_date,
            datetime.now(timezone.utc),
        )


# =============================================================================
# Slack Message Formatting
# =============================================================================

def format_currency(value: float) -> str:
    if value >= 1_000_000:
        return f"R${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"R${value / 1_000:.1f}K"
    return f"R${value:.2f}"


def format_digest_blocks(
    digest_date: date,
    distribution: Dict[HealthClassification, int],
    summary: ChurnSummary,
    dashboard: RetentionDashboard,
    top_at_risk: List[AtRiskClient],
) -> List[Dict[str, Any]]:
    """
    Build the Slack Block Kit payload for one digest.

    Args:
        digest_date: Date the digest reports on.
        distribution: Number of scored clients per classification.
        summary: Churn event summary.
        dashboard: Retention dashboard counters.
        top_at_risk: Lowest-scoring at-risk clients to list.

    Returns:
        List of Block Kit block dicts ready for WebhookClient.send(blocks=...).
    """
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"Retention Digest - {digest_date.strftime('%B %d, %Y')}",
                "emoji": True,
            },
        },
        {"type": "divider"},
    ]

    total = sum(distribution.values())
    distribution_text = "  |  ".join(
        f"{_CLASSIFICATION_EMOJI[c]} {c.value.title()}: *{distribution.get(c, 0):,}*"
        for c in HealthClassification
    )
    blocks.append({
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": f"*Health Scores*\n\nScored clients: *{total:,}*\n\n{distribution_text}",
        },
    })

    blocks.append({
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": (
                f"*Churn*\n\n"
                f"Pending events: *{summary.pending_events:,}*  |  "
                f"Retained: *{summary.retained_count:,}*  |  "
                f"Churned: *{summary.churned_count:,}*\n"
                f"Retention rate: *{summary.retention_rate:.1f}%*  |  "
                f"Average churn probability: *{summary.average_churn_probability:.0f}%*"
            ),
        },
    })

    overdue_marker = " :warning:" if dashboard.actions_overdue else ""
    blocks.append({
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": (
                f"*Playbooks*\n\n"
                f"Active: *{dashboard.active_playbooks:,}*  |  "
                f"Pending actions: *{dashboard.actions_pending:,}*  |  "
                f"Overdue: *{dashboard.actions_overdue:,}*{overdue_marker}  |  "
                f"Completed: *{dashboard.actions_completed:,}*"
            ),
        },
    })

    blocks.append({"type": "divider"})

    if top_at_risk:
        lines = []
        for i, row in enumerate(top_at_risk, 1):
            playbook = row.active_playbook or "no playbook"
            next_step = (
                f" • next: _{row.next_action.description}_ (due {row.next_action.due_date})"
                if row.next_action
                else ""
            )
            lines.append(
                f"{i}. *{row.client_name}* {_CLASSIFICATION_EMOJI[row.classification]} "
                f"score {row.score:.0f}, churn {row.churn_probability}% | {playbook}{next_step}"
            )
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "*Clients Needing Attention*\n\n" + "\n".join(lines),
            },
        })
    else:
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "*No At-Risk Clients*\n\nNo client is currently critical or lost.",
            },
        })

    blocks.append({"type": "divider"})
    timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Generated at {timestamp} | Retention Analytics"}
        ],
    })
    return blocks


# =============================================================================
# Main Entry Point
# =============================================================================

async def send_retention_digest(
    digest_date: Optional[date] = None,
    force: bool = False,
    store: Optional[CrmStore] = None,
) -> Dict[str, Any]:
    """
    Post the daily retention digest to Slack.

    Args:
        digest_date: Date the digest reports on (default: today, UTC).
        force: Send even if a digest was already sent for the date.
        store: CRM store (default: PostgresCrmStore over the shared pool).

    Returns:
        Dict with:
        - success: True if the digest was sent or skipped appropriately
        - skipped / reason: set when already sent or nothing is scored
        - date: the digest date as string
        - scored_clients, at_risk_clients: counts included in the digest
        - error: error message (if failed)
    """
    settings = get_settings()
    if not settings.slack_webhook_url:
        return {
            'success': False,
            'error': 'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable Slack digests.',
        }

    target_date = digest_date or datetime.now(timezone.utc).date()

    if not force and await check_already_sent(target_date):
        return {
            'success': True,
            'skipped': True,
            'reason': f'Digest already sent for {target_date}',
            'date': str(target_date),
        }

    if store is None:
        store = PostgresCrmStore(await get_db_pool())

    try:
        scores = await list_health_scores(store, settings=settings)
        if not scores:
            return {
                'success': True,
                'skipped': True,
                'reason': f'No health scores to report for {target_date}',
                'date': str(target_date),
            }
        summary = await churn_summary(store, settings=settings)
        dashboard = await retention_dashboard(store, today=target_date, settings=settings)
    except RetentionAnalyticsError as e:
        logger.error(f"Failed to build retention digest for {target_date}: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to build retention digest: {e}',
            'date': str(target_date),
        }

    distribution = {c: 0 for c in HealthClassification}
    for health in scores:
        distribution[health.classification] += 1

    blocks = format_digest_blocks(
        target_date,
        distribution,
        summary,
        dashboard,
        dashboard.at_risk_clients[: settings.digest_top_at_risk],
    )

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = client.send(text=f"Retention digest for {target_date}", blocks=blocks)
    except (SlackRequestError, OSError) as e:
        logger.error(f"Failed to send retention digest for {target_date}: {e}")
        return {
            'success': False,
            'error': f'Failed to send Slack message: {e}',
            'date': str(target_date),
        }

    if response.status_code != 200:
        logger.error(f"Slack returned {response.status_code} for retention digest: {response.body}")
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
            'date': str(target_date),
        }

    await mark_digest_sent(target_date)
    logger.info(f"Retention digest sent for {target_date}")
    return {
        'success': True,
        'date': str(target_date),
        'scored_clients': len(scores),
        'at_risk_clients': dashboard.clients_at_risk,
    }
