"""
Parameterized SQL query module for reading CRM entities page by page.

Every paged query orders by a stable key (event date or creation time,
then id) so LIMIT/OFFSET pagination neither skips nor duplicates rows
while the underlying table is not being modified.

Each builder returns the query text together with its positional asyncpg
arguments, since the optional filters change placeholder numbering.

Tables read:
    - revenues(id, client_id, date, our_share)
    - leads(id, name, status, created_at, converted_at, assessor_id)
    - clients(id, name, assessor_id, active, converted_from_lead_id)
    - interactions(id, client_id, created_at)

Table written:
    - leads: follow-up leads synthesized when a retention playbook starts
"""

from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

from retention_analytics.sql.builders import QueryWithArgs, paging_clause, where_clause


# =============================================================================
# Revenues
# =============================================================================


def get_revenue_page_query(
    offset: int,
    limit: int,
    client_ids: Optional[Sequence[str]] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> QueryWithArgs:
    """
    Generate a paged revenue query ordered by (date, id).

    Args:
        offset: Row offset of the page.
        limit: Maximum rows in the page.
        client_ids: Restrict to these clients.
        start: Inclusive lower bound on revenue date.
        end: Inclusive upper bound on revenue date.

    Returns:
        Query text and positional arguments.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))
    if start is not None:
        conditions.append(("date >= {}", start))
    if end is not None:
        conditions.append(("date <= {}", end))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT id, client_id, date, our_share::float8 AS amount
    FROM revenues
    {where}
    ORDER BY date, id
    {paging}
    """
    return query, args


def get_revenue_bounds_page_query(
    offset: int,
    limit: int,
    as_of: date,
    client_ids: Optional[Sequence[str]] = None,
) -> QueryWithArgs:
    """
    Generate a paged query of first/last revenue dates per client up to as_of.

    Returns:
        Query text and positional arguments.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = [("date <= {}", as_of)]
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT client_id, MIN(date) AS first_date, MAX(date) AS last_date
    FROM revenues
    {where}
    GROUP BY client_id
    ORDER BY client_id
    {paging}
    """
    return query, args


# =============================================================================
# Leads
# =============================================================================


def get_lead_page_query(
    offset: int,
    limit: int,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
) -> QueryWithArgs:
    """
    Generate a paged lead query ordered by (created_at, id).

    Args:
        offset: Row offset of the page.
        limit: Maximum rows in the page.
        created_from: Inclusive lower bound on lead creation time.
        created_to: Exclusive upper bound on lead creation time.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if created_from is not None:
        conditions.append(("created_at >= {}", created_from))
    if created_to is not None:
        conditions.append(("created_at < {}", created_to))

    where = where_clause(conditions, args)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT id, name, status, created_at, converted_at, assessor_id
    FROM leads
    {where}
    ORDER BY created_at, id
    {paging}
    """
    return query, args


def get_insert_lead_query() -> str:
    """
    Generate the insert used for playbook follow-up leads.

    Parameters:
        $1 id, $2 name, $3 status, $4 assessor_id, $5 observations,
        $6 client_id (the client the playbook runs for), $7 created_at
    """
    return """
    INSERT INTO leads (id, name, status, assessor_id, observations, client_id, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    RETURNING id
    """


# =============================================================================
# Clients
# =============================================================================


def get_client_page_query(
    offset: int,
    limit: int,
    active: Optional[bool] = None,
    converted_only: bool = False,
    client_ids: Optional[Sequence[str]] = None,
) -> QueryWithArgs:
    """
    Generate a paged client query ordered by id.

    Args:
        offset: Row offset of the page.
        limit: Maximum rows in the page.
        active: Restrict to active (True) or inactive (False) clients.
        converted_only: Only clients created from a converted lead.
        client_ids: Restrict to these clients.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if active is not None:
        conditions.append(("active = {}", active))
    if client_ids is not None:
        conditions.append(("id = ANY({}::text[])", list(client_ids)))

    static = ("converted_from_lead_id IS NOT NULL",) if converted_only else ()
    where = where_clause(conditions, args, static=static)
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT id, name, assessor_id, active, converted_from_lead_id
    FROM clients
    {where}
    ORDER BY id
    {paging}
    """
    return query, args


def get_client_by_id_query() -> str:
    """
    Generate a single-client lookup.

    Parameters:
        $1 client id
    """
    return """
    SELECT id, name, assessor_id, active, converted_from_lead_id
    FROM clients
    WHERE id = $1
    """


def get_lock_client_query() -> str:
    """
    Generate a row lock on a client, serializing playbook mutations
    for that client across connections.

    Parameters:
        $1 client id
    """
    return """
    SELECT id FROM clients WHERE id = $1 FOR UPDATE
    """


# =============================================================================
# Interactions
# =============================================================================


def get_interaction_page_query(
    offset: int,
    limit: int,
    client_ids: Optional[Sequence[str]] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
) -> QueryWithArgs:
    """
    Generate a paged interaction query ordered by (created_at, id).

    Args:
        offset: Row offset of the page.
        limit: Maximum rows in the page.
        client_ids: Restrict to these clients.
        created_from: Inclusive lower bound on interaction time.
        created_to: Exclusive upper bound on interaction time.
    """
    args: List[Any] = []
    conditions: List[Tuple[str, Any]] = []
    if client_ids is not None:
        conditions.append(("client_id = ANY({}::text[])", list(client_ids)))
    if created_from is not None:
        conditions.append(("created_at >= {}", created_from))
    if created_to is not None:
        conditions.append(("created_at < {}", created_to))

    where = where_clause(conditions, args, static=("client_id IS NOT NULL",))
    paging = paging_clause(offset, limit, args)

    query = f"""
    SELECT id, client_id, created_at
    FROM interactions
    {where}
    ORDER BY created_at, id
    {paging}
    """
    return query, args
