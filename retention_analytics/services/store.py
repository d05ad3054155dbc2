"""
CRM store contract and its PostgreSQL implementation.

The analytics services never talk to the database directly; they depend on
the `CrmStore` protocol below. Page methods share one calling convention,
`fetch_*_page(offset=, limit=, **filters)`, so they plug straight into
`aggregator.fetch_all`.

State rules enforced at this layer:
- `insert_churn_event` raises InvariantViolation when the client already has
  a pending event (partial unique index churn_events_one_pending).
- `create_playbook_instance` persists the instance, its actions and the
  follow-up lead in one transaction, after locking the client row; it raises
  InvariantViolation when an active instance exists
  (partial unique index playbook_instances_one_active).
- `resolve_action` moves a pending action to a terminal status and, in the
  same transaction, completes the instance once no pending action remains.
  It returns None when the action was no longer pending.
- Templates are validated into PlaybookTemplate on load; malformed template
  rows raise InconsistentState.

See Also:
    - retention_analytics/sql/crm_queries.py: CRM reads and lead insert
    - retention_analytics/sql/retention_queries.py: retention table queries
    - retention_analytics/tests/conftest.py: InMemoryCrmStore used by tests
"""

import logging
from datetime import date, datetime
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple

import asyncpg
from asyncpg import Pool
from pydantic import ValidationError

from retention_analytics.core.exceptions import InconsistentState, InvariantViolation
from retention_analytics.models import (
    ChurnEvent,
    ChurnEventStatus,
    ClientRecord,
    FollowUpLeadCreate,
    HealthScore,
    InteractionRecord,
    LeadRecord,
    PlaybookInstance,
    PlaybookInstanceStatus,
    PlaybookTemplate,
    RetentionAction,
    RetentionActionStatus,
    RevenueBounds,
    RevenueEvent,
)
from retention_analytics.sql import (
    get_action_by_id_query,
    get_action_page_query,
    get_active_instance_query,
    get_churn_event_by_id_query,
    get_churn_event_page_query,
    get_client_by_id_query,
    get_client_page_query,
    get_close_instance_query,
    get_count_pending_actions_query,
    get_health_score_page_query,
    get_health_score_query,
    get_health_score_upsert_query,
    get_insert_action_query,
    get_insert_churn_event_query,
    get_insert_instance_query,
    get_insert_lead_query,
    get_instance_actions_query,
    get_instance_by_id_query,
    get_instance_page_query,
    get_interaction_page_query,
    get_lead_page_query,
    get_lock_client_query,
    get_pending_churn_event_query,
    get_playbook_template_by_id_query,
    get_playbook_templates_query,
    get_resolve_action_query,
    get_resolve_churn_event_query,
    get_revenue_bounds_page_query,
    get_revenue_page_query,
    get_skip_pending_actions_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Store Contract
# =============================================================================


class CrmStore(Protocol):
    """Persistence operations the analytics engine consumes."""

    # CRM reads -------------------------------------------------------------

    async def fetch_revenue_page(
        self,
        *,
        offset: int,
        limit: int,
        client_ids: Optional[Sequence[str]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[RevenueEvent]: ...

    async def fetch_revenue_bounds_page(
        self,
        *,
        offset: int,
        limit: int,
        as_of: date,
        client_ids: Optional[Sequence[str]] = None,
    ) -> List[RevenueBounds]: ...

    async def fetch_lead_page(
        self,
        *,
        offset: int,
        limit: int,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[LeadRecord]: ...

    async def fetch_client_page(
        self,
        *,
        offset: int,
        limit: int,
        active: Optional[bool] = None,
        converted_only: bool = False,
        client_ids: Optional[Sequence[str]] = None,
    ) -> List[ClientRecord]: ...

    async def fetch_interaction_page(
        self,
        *,
        offset: int,
        limit: int,
        client_ids: Optional[Sequence[str]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> List[InteractionRecord]: ...

    async def get_client(self, client_id: str) -> Optional[ClientRecord]: ...

    # Health scores ----------------------------------------------------------

    async def get_health_score(self, client_id: str) -> Optional[HealthScore]: ...

    async def upsert_health_scores(self, scores: Sequence[HealthScore]) -> None: ...

    async def fetch_health_score_page(
        self,
        *,
        offset: int,
        limit: int,
        classifications: Optional[Sequence[str]] = None,
        client_ids: Optional[Sequence[str]] = None,
    ) -> List[HealthScore]: ...

    # Churn events -----------------------------------------------------------

    async def get_pending_churn_event(self, client_id: str) -> Optional[ChurnEvent]: ...

    async def get_churn_event(self, event_id: str) -> Optional[ChurnEvent]: ...

    async def insert_churn_event(self, event: ChurnEvent) -> None: ...

    async def resolve_churn_event(
        self,
        event_id: str,
        status: ChurnEventStatus,
        resolved_at: datetime,
        action_taken: Optional[str] = None,
    ) -> Optional[ChurnEvent]: ...

    async def fetch_churn_event_page(
        self,
        *,
        offset: int,
        limit: int,
        status: Optional[str] = None,
        client_ids: Optional[Sequence[str]] = None,
    ) -> List[ChurnEvent]: ...

    # Playbooks --------------------------------------------------------------

    async def list_playbook_templates(
        self,
        classification: Optional[str] = None,
        active_only: bool = True,
    ) -> List[PlaybookTemplate]: ...

    async def get_playbook_template(self, template_id: str) -> Optional[PlaybookTemplate]: ...

    async def get_active_instance(self, client_id: str) -> Optional[PlaybookInstance]: ...

    async def get_instance(self, instance_id: str) -> Optional[PlaybookInstance]: ...

    async def create_playbook_instance(
        self,
        instance: PlaybookInstance,
        actions: Sequence[RetentionAction],
        follow_up_lead: FollowUpLeadCreate,
    ) -> PlaybookInstance: ...

    async def get_action(self, action_id: str) -> Optional[RetentionAction]: ...

    async def list_instance_actions(self, instance_id: str) -> List[RetentionAction]: ...

    async def resolve_action(
        self,
        action_id: str,
        status: RetentionActionStatus,
        resolved_at: datetime,
        notes: Optional[str] = None,
    ) -> Optional[RetentionAction]: ...

    async def abandon_instance(
        self,
        instance_id: str,
        closed_at: datetime,
        notes: Optional[str] = None,
    ) -> Optional[PlaybookInstance]: ...

    async def fetch_instance_page(
        self,
        *,
        offset: int,
        limit: int,
        status: Optional[str] = None,
        client_ids: Optional[Sequence[str]] = None,
    ) -> List[PlaybookInstance]: ...

    async def fetch_action_page(
        self,
        *,
        offset: int,
        limit: int,
        status: Optional[str] = None,
        client_ids: Optional[Sequence[str]] = None,
        assigned_to: Optional[str] = None,
    ) -> List[RetentionAction]: ...


# =============================================================================
# Row Mapping Helpers
# =============================================================================


def _action_from_row(row: Mapping[str, Any]) -> RetentionAction:
    data = dict(row)
    data["order"] = data.pop("step_order")
    return RetentionAction(**data)


def _template_from_row(row: Mapping[str, Any]) -> PlaybookTemplate:
    """Validate a stored template; malformed rows are a data error."""
    try:
        return PlaybookTemplate.model_validate(dict(row))
    except ValidationError as e:
        raise InconsistentState(
            f"Playbook template '{row.get('id')}' is malformed: {e}"
        ) from e


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else str(status)


def _values(items: Optional[Sequence[Any]]) -> Optional[List[str]]:
    if items is None:
        return None
    return [_status_value(item) for item in items]


# =============================================================================
# PostgreSQL Implementation
# =============================================================================


class PostgresCrmStore:
    """
    CrmStore backed by an asyncpg pool.

    Args:
        pool: asyncpg connection pool with JSON codecs registered
            (see core.database.init_db).
    """

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def _fetch(self, query_with_args: Tuple[str, List[Any]]) -> List[asyncpg.Record]:
        query, args = query_with_args
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    # CRM reads -------------------------------------------------------------

    async def fetch_revenue_page(self, *, offset, limit, client_ids=None, start=None, end=None):
        rows = await self._fetch(get_revenue_page_query(offset, limit, client_ids, start, end))
        return [RevenueEvent(**dict(row)) for row in rows]

    async def fetch_revenue_bounds_page(self, *, offset, limit, as_of, client_ids=None):
        rows = await self._fetch(get_revenue_bounds_page_query(offset, limit, as_of, client_ids))
        return [RevenueBounds(**dict(row)) for row in rows]

    async def fetch_lead_page(self, *, offset, limit, created_from=None, created_to=None):
        rows = await self._fetch(get_lead_page_query(offset, limit, created_from, created_to))
        return [LeadRecord(**dict(row)) for row in rows]

    async def fetch_client_page(
        self, *, offset, limit, active=None, converted_only=False, client_ids=None
    ):
        rows = await self._fetch(
            get_client_page_query(offset, limit, active, converted_only, client_ids)
        )
        return [ClientRecord(**dict(row)) for row in rows]

    async def fetch_interaction_page(
        self, *, offset, limit, client_ids=None, created_from=None, created_to=None
    ):
        rows = await self._fetch(
            get_interaction_page_query(offset, limit, client_ids, created_from, created_to)
        )
        return [InteractionRecord(**dict(row)) for row in rows]

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        row = await self._fetchrow(get_client_by_id_query(), client_id)
        return ClientRecord(**dict(row)) if row else None

    # Health scores ----------------------------------------------------------

    async def get_health_score(self, client_id: str) -> Optional[HealthScore]:
        row = await self._fetchrow(get_health_score_query(), client_id)
        return HealthScore(**dict(row)) if row else None

    async def upsert_health_scores(self, scores: Sequence[HealthScore]) -> None:
        records = [
            (
                s.client_id,
                s.score,
                s.classification.value,
                s.components.model_dump(),
                s.churn_probability,
                s.previous_score,
                s.as_of,
                s.computed_at,
            )
            for s in scores
        ]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(get_health_score_upsert_query(), records)

    async def fetch_health_score_page(
        self, *, offset, limit, classifications=None, client_ids=None
    ):
        rows = await self._fetch(
            get_health_score_page_query(offset, limit, _values(classifications), client_ids)
        )
        return [HealthScore(**dict(row)) for row in rows]

    # Churn events -----------------------------------------------------------

    async def get_pending_churn_event(self, client_id: str) -> Optional[ChurnEvent]:
        row = await self._fetchrow(get_pending_churn_event_query(), client_id)
        return ChurnEvent(**dict(row)) if row else None

    async def get_churn_event(self, event_id: str) -> Optional[ChurnEvent]:
        row = await self._fetchrow(get_churn_event_by_id_query(), event_id)
        return ChurnEvent(**dict(row)) if row else None

    async def insert_churn_event(self, event: ChurnEvent) -> None:
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    get_insert_churn_event_query(),
                    event.id,
                    event.client_id,
                    event.predicted_probability,
                    [factor.model_dump(mode="json") for factor in event.risk_factors],
                    event.created_at,
                )
        except asyncpg.UniqueViolationError as e:
            raise InvariantViolation(
                f"Client '{event.client_id}' already has a pending churn event"
            ) from e

    async def resolve_churn_event(self, event_id, status, resolved_at, action_taken=None):
        row = await self._fetchrow(
            get_resolve_churn_event_query(),
            event_id,
            _status_value(status),
            resolved_at,
            action_taken,
        )
        return ChurnEvent(**dict(row)) if row else None

    async def fetch_churn_event_page(self, *, offset, limit, status=None, client_ids=None):
        rows = await self._fetch(
            get_churn_event_page_query(offset, limit, _status_value(status), client_ids)
        )
        return [ChurnEvent(**dict(row)) for row in rows]

    # Playbooks --------------------------------------------------------------

    async def list_playbook_templates(self, classification=None, active_only=True):
        rows = await self._fetch(
            get_playbook_templates_query(_status_value(classification), active_only)
        )
        return [_template_from_row(row) for row in rows]

    async def get_playbook_template(self, template_id: str) -> Optional[PlaybookTemplate]:
        row = await self._fetchrow(get_playbook_template_by_id_query(), template_id)
        return _template_from_row(row) if row else None

    async def get_active_instance(self, client_id: str) -> Optional[PlaybookInstance]:
        row = await self._fetchrow(get_active_instance_query(), client_id)
        return PlaybookInstance(**dict(row)) if row else None

    async def get_instance(self, instance_id: str) -> Optional[PlaybookInstance]:
        row = await self._fetchrow(get_instance_by_id_query(), instance_id)
        return PlaybookInstance(**dict(row)) if row else None

    async def create_playbook_instance(
        self,
        instance: PlaybookInstance,
        actions: Sequence[RetentionAction],
        follow_up_lead: FollowUpLeadCreate,
    ) -> PlaybookInstance:
        """
        Persist instance, actions and follow-up lead atomically.

        Any failure (including the lead insert) rolls back the transaction so
        nothing is left behind.
        """
        lead_id = instance.follow_up_lead_id or f"lead_{instance.id}"
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.fetchrow(get_lock_client_query(), instance.client_id)
                existing = await conn.fetchrow(get_active_instance_query(), instance.client_id)
                if existing is not None:
                    raise InvariantViolation(
                        f"Client '{instance.client_id}' already has an active playbook "
                        f"'{existing['template_name']}'"
                    )

                await conn.fetchval(
                    get_insert_lead_query(),
                    lead_id,
                    follow_up_lead.name,
                    follow_up_lead.status.value,
                    follow_up_lead.assessor_id,
                    follow_up_lead.observations,
                    follow_up_lead.source_client_id,
                    follow_up_lead.created_at,
                )

                try:
                    await conn.execute(
                        get_insert_instance_query(),
                        instance.id,
                        instance.client_id,
                        instance.template_id,
                        instance.template_name,
                        instance.churn_event_id,
                        lead_id,
                        instance.assigned_to,
                        instance.started_at,
                    )
                except asyncpg.UniqueViolationError as e:
                    raise InvariantViolation(
                        f"Client '{instance.client_id}' already has an active playbook"
                    ) from e

                await conn.executemany(
                    get_insert_action_query(),
                    [
                        (
                            a.id,
                            a.instance_id,
                            a.client_id,
                            a.order,
                            a.action_type.value,
                            a.description,
                            a.offer_details,
                            a.due_date,
                            a.assigned_to,
                        )
                        for a in actions
                    ],
                )

        return instance.model_copy(update={"follow_up_lead_id": lead_id})

    async def get_action(self, action_id: str) -> Optional[RetentionAction]:
        row = await self._fetchrow(get_action_by_id_query(), action_id)
        return _action_from_row(row) if row else None

    async def list_instance_actions(self, instance_id: str) -> List[RetentionAction]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(get_instance_actions_query(), instance_id)
        return [_action_from_row(row) for row in rows]

    async def resolve_action(self, action_id, status, resolved_at, notes=None):
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    get_resolve_action_query(),
                    action_id,
                    _status_value(status),
                    resolved_at,
                    notes,
                )
                if row is None:
                    return None
                remaining = await conn.fetchval(
                    get_count_pending_actions_query(), row["instance_id"]
                )
                if remaining == 0:
                    await conn.fetchrow(
                        get_close_instance_query(),
                        row["instance_id"],
                        PlaybookInstanceStatus.COMPLETED.value,
                        resolved_at,
                    )
        return _action_from_row(row)

    async def abandon_instance(self, instance_id, closed_at, notes=None):
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    get_close_instance_query(),
                    instance_id,
                    PlaybookInstanceStatus.ABANDONED.value,
                    closed_at,
                )
                if row is None:
                    return None
                await conn.execute(get_skip_pending_actions_query(), instance_id, closed_at, notes)
        return PlaybookInstance(**dict(row))

    async def fetch_instance_page(self, *, offset, limit, status=None, client_ids=None):
        rows = await self._fetch(
            get_instance_page_query(offset, limit, _status_value(status), client_ids)
        )
        return [PlaybookInstance(**dict(row)) for row in rows]

    async def fetch_action_page(
        self, *, offset, limit, status=None, client_ids=None, assigned_to=None
    ):
        rows = await self._fetch(
            get_action_page_query(offset, limit, _status_value(status), client_ids, assigned_to)
        )
        return [_action_from_row(row) for row in rows]
