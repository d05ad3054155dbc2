"""
SQL query package for the retention analytics engine.

Provides parameterized PostgreSQL query builders for the CRM tables
(crm_queries), the retention tables (retention_queries) and their DDL
(schema). All query functions are re-exported here.

Usage:
    from retention_analytics.sql import get_revenue_page_query

    query, args = get_revenue_page_query(offset=0, limit=1000, client_ids=["cli_1"])
    rows = await conn.fetch(query, *args)
"""

from retention_analytics.sql.builders import QueryWithArgs, paging_clause, where_clause
from retention_analytics.sql.crm_queries import (
    get_revenue_page_query,
    get_revenue_bounds_page_query,
    get_lead_page_query,
    get_insert_lead_query,
    get_client_page_query,
    get_client_by_id_query,
    get_lock_client_query,
    get_interaction_page_query,
)
from retention_analytics.sql.retention_queries import (
    get_health_score_query,
    get_health_score_upsert_query,
    get_health_score_page_query,
    get_pending_churn_event_query,
    get_churn_event_by_id_query,
    get_insert_churn_event_query,
    get_resolve_churn_event_query,
    get_churn_event_page_query,
    get_playbook_templates_query,
    get_playbook_template_by_id_query,
    get_active_instance_query,
    get_instance_by_id_query,
    get_insert_instance_query,
    get_close_instance_query,
    get_instance_page_query,
    get_insert_action_query,
    get_action_by_id_query,
    get_instance_actions_query,
    get_resolve_action_query,
    get_action_page_query,
    get_count_pending_actions_query,
    get_skip_pending_actions_query,
)
from retention_analytics.sql.schema import RETENTION_SCHEMA_STATEMENTS


__all__ = [
    # Builders
    'QueryWithArgs',
    'paging_clause',
    'where_clause',
    # CRM reads
    'get_revenue_page_query',
    'get_revenue_bounds_page_query',
    'get_lead_page_query',
    'get_insert_lead_query',
    'get_client_page_query',
    'get_client_by_id_query',
    'get_lock_client_query',
    'get_interaction_page_query',
    # Health scores
    'get_health_score_query',
    'get_health_score_upsert_query',
    'get_health_score_page_query',
    # Churn events
    'get_pending_churn_event_query',
    'get_churn_event_by_id_query',
    'get_insert_churn_event_query',
    'get_resolve_churn_event_query',
    'get_churn_event_page_query',
    # Playbooks
    'get_playbook_templates_query',
    'get_playbook_template_by_id_query',
    'get_active_instance_query',
    'get_instance_by_id_query',
    'get_insert_instance_query',
    'get_close_instance_query',
    'get_instance_page_query',
    'get_insert_action_query',
    'get_action_by_id_query',
    'get_instance_actions_query',
    'get_resolve_action_query',
    'get_action_page_query',
    'get_count_pending_actions_query',
    'get_skip_pending_actions_query',
    # DDL
    'RETENTION_SCHEMA_STATEMENTS',
]
