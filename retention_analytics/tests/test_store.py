"""
Tests for PostgresCrmStore against a mocked asyncpg pool.

Covers:
- Follow-up lead insert carries the client the playbook runs for
- Manual churn resolution writes the action taken
- Churn event and action page filters
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from retention_analytics.models import (
    ChurnEventStatus,
    FollowUpLeadCreate,
    PlaybookInstance,
    RetentionActionStatus,
)
from retention_analytics.services.store import PostgresCrmStore
from retention_analytics.sql import get_action_page_query, get_churn_event_page_query


pytestmark = pytest.mark.asyncio

STARTED_AT = datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)


def transaction_context() -> AsyncMock:
    context = AsyncMock()
    context.__aenter__ = AsyncMock(return_value=None)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


class TestCreatePlaybookInstance:

    async def test_follow_up_lead_keeps_source_client(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.transaction = Mock(return_value=transaction_context())
        store = PostgresCrmStore(mock_db_pool)

        instance = PlaybookInstance(
            id="pbi_1",
            client_id="cli_001",
            template_id="pb_critical",
            template_name="Critical client recovery",
            started_at=STARTED_AT,
        )
        lead = FollowUpLeadCreate(
            name="Retention: Maria Souza",
            assessor_id="assessor_7",
            observations="Retention playbook started",
            source_client_id="cli_001",
            created_at=STARTED_AT,
        )

        stored = await store.create_playbook_instance(instance, [], lead)

        query, *params = conn.fetchval.call_args[0]
        assert "INSERT INTO leads" in query
        assert "client_id" in query
        assert params == [
            "lead_pbi_1",
            "Retention: Maria Souza",
            "new",
            "assessor_7",
            "Retention playbook started",
            "cli_001",
            STARTED_AT,
        ]
        assert stored.follow_up_lead_id == "lead_pbi_1"


class TestChurnEvents:

    async def test_resolve_writes_action_taken(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        store = PostgresCrmStore(mock_db_pool)

        result = await store.resolve_churn_event(
            "chn_1", ChurnEventStatus.RETAINED, STARTED_AT, "Fee renegotiated"
        )

        assert result is None
        query, *params = conn.fetchrow.call_args[0]
        assert "action_taken = $4" in query
        assert params == ["chn_1", "retained", STARTED_AT, "Fee renegotiated"]

    async def test_page_query_filters_by_client(self) -> None:
        query, args = get_churn_event_page_query(0, 50, "pending", ["cli_001"])

        assert "status = $1" in query
        assert "client_id = ANY($2::text[])" in query
        assert args == ["pending", ["cli_001"], 50, 0]


class TestActions:

    async def test_page_query_filters_by_assignee(self) -> None:
        query, args = get_action_page_query(0, 50, "pending", None, "assessor_7")

        assert "assigned_to = $2" in query
        assert args[:2] == ["pending", "assessor_7"]

    async def test_fetch_action_page_passes_assignee(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        store = PostgresCrmStore(mock_db_pool)

        rows = await store.fetch_action_page(
            offset=0, limit=10, status=RetentionActionStatus.PENDING, assigned_to="assessor_7"
        )

        assert rows == []
        query, *args = conn.fetch.call_args[0]
        assert "assigned_to = $2" in query
        assert args[:2] == ["pending", "assessor_7"]
