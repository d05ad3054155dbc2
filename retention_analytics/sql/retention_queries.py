"""
Parameterized SQL query module for the retention tables.

Covers the latest-wins health score table, churn events, playbook templates,
playbook instances and retention actions. State transitions are written as
conditional updates (`WHERE status = 'pending'` / `'active'`) so a row only
moves out of its initial state once, even under concurrent writers.

Tables:
    - client_health_scores
    - churn_events
    - retention_playbooks
    - retention_playbook_instances
    - retention_actions
"""

from typing import Any, List, Optional, Sequence, Tuple

from retention_analytics.sql.builders import QueryWithArgs, paging_clause, where_clause


HEALTH_SCORE_COLUMNS = (
    "client_id, score::float8 AS score, classification, components, churn_probability, "
    "previous_score::float8 AS previous_score, as_of, computed_at"
)

CHURN_EVENT_COLUMNS = (
    "id, client_id, predicted_probability, status, risk_factors, action_taken, "
    "created_at, resolved_at"
)

INSTANCE_COLUMNS = (
    "id, client_id, template_id, template_name, churn_event_id, follow_up_lead_id, "
    "assigned_to, started_at, status, closed_at"
)

ACTION_COLUMNS = (
    "id, instance_id, client_id, step_order, action_type, description, offer_details, "
    "due_date, status, assigned_to, resolved_at, notes"
)


# =============================================================================
# Health Scores
# =============================================================================


def get_health_score_query() -> str:
    """
    Parameters:
        $1 client id
    """
    return f"""
    SELECT {HEALTH_SCORE_COLUMNS}
    FROM client_health_scores
    WHERE client_id = $1
    """


def get_health_score_upsert_query() -> str:
    """
    Generate the latest-wins upsert for a client health score.

    Parameters:
        $1 client_id, $2 score, $3 classification, $4 components (jsonb),
        $5 churn_probability, $6 previous_score, $7 as_of, $8 computed_at
    """
    return """
    INSERT INTO client_health_scores (
        client_id, score, classification, components, churn_probability,
        previous_score, as_of, computed_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    ON CONFLICT (client_id) DO UPDATE SET
        score = EXCLUDED.score,
        classification = EXCLUDED.classification,
        components = EXCLUDED.components,
        churn_probability = EXCLUDED.churn_probability,
        previous_score = EXCLUDED.previous_score,
        as_of = EXCLUDED.as_of,
        computed_at = EXCLUDED.computed_at
    """


def get_health_score_page_query(
    offset: int,
    limit: int,
    classifications: Optional[Sequence[str]] = None,
    client_ids: Optional[Sequence[str]] = None,
) -> QueryWithArgs:
    """
    Generate a paged health score query ordered by (score, client_id),
    lowest scores first.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if classifications is not None:
        conditions.append(("classification = ANY({}::text[])", list(classifications)))
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT {HEALTH_SCORE_COLUMNS}
    FROM client_health_scores
    {where}
    ORDER BY score, client_id
    {paging}
    """
    return query, args


# =============================================================================
# Churn Events
# =============================================================================


def get_pending_churn_event_query() -> str:
    """
    Parameters:
        $1 client id
    """
    return f"""
    SELECT {CHURN_EVENT_COLUMNS}
    FROM churn_events
    WHERE client_id = $1 AND status = 'pending'
    """


def get_churn_event_by_id_query() -> str:
    """
    Parameters:
        $1 event id
    """
    return f"""
    SELECT {CHURN_EVENT_COLUMNS}
    FROM churn_events
    WHERE id = $1
    """


def get_insert_churn_event_query() -> str:
    """
    Insert a pending churn event. Violates churn_events_one_pending when the
    client already has one.

    Parameters:
        $1 id, $2 client_id, $3 predicted_probability, $4 risk_factors (jsonb),
        $5 created_at
    """
    return """
    INSERT INTO churn_events (id, client_id, predicted_probability, status, risk_factors, created_at)
    VALUES ($1, $2, $3, 'pending', $4, $5)
    """


def get_resolve_churn_event_query() -> str:
    """
    Resolve a pending churn event exactly once.

    Parameters:
        $1 id, $2 status, $3 resolved_at, $4 action_taken (nullable)
    """
    return f"""
    UPDATE churn_events
    SET status = $2, resolved_at = $3, action_taken = $4
    WHERE id = $1 AND status = 'pending'
    RETURNING {CHURN_EVENT_COLUMNS}
    """


def get_churn_event_page_query(
    offset: int,
    limit: int,
    status: Optional[str] = None,
    client_ids: Optional[Sequence[str]] = None,
) -> QueryWithArgs:
    """Generate a paged churn event query ordered by (created_at, id)."""
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if status is not None:
        conditions.append(("status = {}", status))
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT {CHURN_EVENT_COLUMNS}
    FROM churn_events
    {where}
    ORDER BY created_at, id
    {paging}
    """
    return query, args


# =============================================================================
# Playbook Templates
# =============================================================================


def get_playbook_templates_query(
    classification: Optional[str] = None,
    active_only: bool = True,
) -> QueryWithArgs:
    """Generate a template listing ordered by (risk_classification, name)."""
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if classification is not None:
        conditions.append(("risk_classification = {}", classification))
    static = ("is_active",) if active_only else ()

    where = where_clause(conditions, args, static=static)

    query = f"""
    SELECT id, name, description, risk_classification, steps, is_active
    FROM retention_playbooks
    {where}
    ORDER BY risk_classification, name, id
    """
    return query, args


def get_playbook_template_by_id_query() -> str:
    """
    Parameters:
        $1 template id
    """
    return """
    SELECT id, name, description, risk_classification, steps, is_active
    FROM retention_playbooks
    WHERE id = $1
    """


# =============================================================================
# Playbook Instances
# =============================================================================


def get_active_instance_query() -> str:
    """
    Parameters:
        $1 client id
    """
    return f"""
    SELECT {INSTANCE_COLUMNS}
    FROM retention_playbook_instances
    WHERE client_id = $1 AND status = 'active'
    """


def get_instance_by_id_query() -> str:
    """
    Parameters:
        $1 instance id
    """
    return f"""
    SELECT {INSTANCE_COLUMNS}
    FROM retention_playbook_instances
    WHERE id = $1
    """


def get_insert_instance_query() -> str:
    """
    Insert an active playbook instance. Violates playbook_instances_one_active
    when the client already has one.

    Parameters:
        $1 id, $2 client_id, $3 template_id, $4 template_name, $5 churn_event_id,
        $6 follow_up_lead_id, $7 assigned_to, $8 started_at
    """
    return """
    INSERT INTO retention_playbook_instances (
        id, client_id, template_id, template_name, churn_event_id,
        follow_up_lead_id, assigned_to, started_at, status
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 'active')
    """


def get_close_instance_query() -> str:
    """
    Move an active instance to a closed status exactly once.

    Parameters:
        $1 id, $2 status, $3 closed_at
    """
    return f"""
    UPDATE retention_playbook_instances
    SET status = $2, closed_at = $3
    WHERE id = $1 AND status = 'active'
    RETURNING {INSTANCE_COLUMNS}
    """


def get_instance_page_query(
    offset: int,
    limit: int,
    status: Optional[str] = None,
    client_ids: Optional[Sequence[str]] = None,
) -> QueryWithArgs:
    """Generate a paged instance query ordered by (started_at, id)."""
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if status is not None:
        conditions.append(("status = {}", status))
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT {INSTANCE_COLUMNS}
    FROM retention_playbook_instances
    {where}
    ORDER BY started_at, id
    {paging}
    """
    return query, args


# =============================================================================
# Retention Actions
# =============================================================================


def get_insert_action_query() -> str:
    """
    Parameters:
        $1 id, $2 instance_id, $3 client_id, $4 step_order, $5 action_type,
        $6 description, $7 offer_details, $8 due_date, $9 assigned_to
    """
    return """
    INSERT INTO retention_actions (
        id, instance_id, client_id, step_order, action_type, description,
        offer_details, due_date, status, assigned_to
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 'pending', $9)
    """


def get_action_by_id_query() -> str:
    """
    Parameters:
        $1 action id
    """
    return f"""
    SELECT {ACTION_COLUMNS}
    FROM retention_actions
    WHERE id = $1
    """


def get_instance_actions_query() -> str:
    """
    Parameters:
        $1 instance id
    """
    return f"""
    SELECT {ACTION_COLUMNS}
    FROM retention_actions
    WHERE instance_id = $1
    ORDER BY step_order
    """


def get_resolve_action_query() -> str:
    """
    Move a pending action to a terminal status exactly once.

    Parameters:
        $1 id, $2 status, $3 resolved_at, $4 notes
    """
    return f"""
    UPDATE retention_actions
    SET status = $2, resolved_at = $3, notes = COALESCE($4, notes)
    WHERE id = $1 AND status = 'pending'
    RETURNING {ACTION_COLUMNS}
    """


def get_action_page_query(
    offset: int,
    limit: int,
    status: Optional[str] = None,
    client_ids: Optional[Sequence[str]] = None,
    assigned_to: Optional[str] = None,
) -> QueryWithArgs:
    """Generate a paged action query ordered by (due_date, id)."""
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if status is not None:
        conditions.append(("status = {}", status))
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))
    if assigned_to is not None:
        conditions.append(("assigned_to = {}", assigned_to))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT {ACTION_COLUMNS}
    FROM retention_actions
    {where}
    ORDER BY due_date, id
    {paging}
    """
    return query, args


def get_count_pending_actions_query() -> str:
    """
    Parameters:
        $1 instance id
    """
    return """
    SELECT COUNT(*) FROM retention_actions
    WHERE instance_id = $1 AND status = 'pending'
    """


def get_skip_pending_actions_query() -> str:
    """
    Skip every pending action of an instance (used when abandoning it).

    Parameters:
        $1 instance id, $2 resolved_at, $3 notes
    """
    return """
    UPDATE retention_actions
    SET status = 'skipped', resolved_at = $2, notes = COALESCE($3, notes)
    WHERE instance_id = $1 AND status = 'pending'
    """
