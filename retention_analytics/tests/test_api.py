"""
Tests for the FastAPI application.

Stores and the playbook engine are replaced through dependency overrides;
the database pool lifecycle is patched out of the lifespan.
"""

from datetime import date, datetime, timezone
from typing import Generator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from retention_analytics.core.dependencies import (
    get_playbook_engine,
    get_settings_dependency,
    get_store,
)
from retention_analytics.main import app
from retention_analytics.models import ChurnEvent
from retention_analytics.services.playbooks import RetentionPlaybookEngine


@pytest.fixture
def client(seeded_store, test_settings) -> Generator[TestClient, None, None]:
    engine = RetentionPlaybookEngine(seeded_store, settings=test_settings)
    app.dependency_overrides[get_store] = lambda: seeded_store
    app.dependency_overrides[get_playbook_engine] = lambda: engine
    app.dependency_overrides[get_settings_dependency] = lambda: test_settings

    with patch('retention_analytics.main.init_db', new=AsyncMock()), \
            patch('retention_analytics.main.close_db', new=AsyncMock()):
        with TestClient(app) as test_client:
            yield test_client

    app.dependency_overrides.clear()


class TestSystemEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        body = client.get("/").json()

        assert body["name"] == "Retention Analytics API"
        assert body["docs"] == "/docs"


class TestHealthScoreEndpoints:

    def test_compute_and_read_back(self, client, seeded_store):
        seeded_store.add_revenue("cli_001", date(2025, 6, 10), 500.0)

        computed = client.post("/health-scores/cli_001/compute", params={"as_of": "2025-07-01"})
        fetched = client.get("/health-scores/cli_001")

        assert computed.status_code == 200
        assert fetched.status_code == 200
        assert fetched.json()["score"] == computed.json()["score"]

    def test_unknown_client_is_404(self, client):
        response = client.post("/health-scores/cli_missing/compute")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_recompute_and_filter(self, client):
        recompute = client.post("/health-scores/recompute", params={"as_of": "2025-07-01"})
        lost = client.get("/health-scores/", params={"classification": ["lost"]})

        assert recompute.json()["computed"] == 1
        assert [h["client_id"] for h in lost.json()] == ["cli_001"]


class TestChurnEndpoints:

    @pytest.fixture
    def pending_event(self, seeded_store) -> ChurnEvent:
        event = ChurnEvent(
            id="chn_1",
            client_id="cli_001",
            predicted_probability=80,
            created_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
        )
        seeded_store.churn_events[event.id] = event
        return event

    def test_resolve_and_list(self, client, pending_event):
        resolved = client.post(
            "/churn/events/chn_1/resolve",
            json={"status": "retained", "action_taken": "Quarterly review scheduled"},
        )
        again = client.post("/churn/events/chn_1/resolve", json={"status": "churned"})
        listed = client.get("/churn/events", params={"client_id": "cli_001", "status": "retained"})
        pending = client.get("/churn/events", params={"status": "pending"})

        assert resolved.status_code == 200
        assert resolved.json()["action_taken"] == "Quarterly review scheduled"
        assert again.status_code == 409
        assert again.json()["error"] == "InvariantViolation"
        assert [e["id"] for e in listed.json()] == ["chn_1"]
        assert pending.json() == []

    def test_resolve_rejects_pending_status(self, client, pending_event):
        response = client.post("/churn/events/chn_1/resolve", json={"status": "pending"})

        assert response.status_code == 422

    def test_resolve_unknown_event_is_404(self, client):
        response = client.post("/churn/events/chn_missing/resolve", json={"status": "churned"})

        assert response.status_code == 404


class TestRetentionEndpoints:

    def test_playbook_lifecycle(self, client):
        started = client.post("/retention/clients/cli_001/playbook", json={"template_id": "pb_critical"})
        assert started.status_code == 201
        first_action = started.json()["actions"][0]["id"]

        conflict = client.post("/retention/clients/cli_001/playbook", json={"template_id": "pb_critical"})
        assert conflict.status_code == 409
        assert conflict.json()["error"] == "InvariantViolation"

        done = client.post(f"/retention/actions/{first_action}/complete", json={"notes": "Reached"})
        assert done.status_code == 200
        assert done.json()["status"] == "completed"

        again = client.post(f"/retention/actions/{first_action}/skip")
        assert again.status_code == 409

        upcoming = client.get("/retention/clients/cli_001/next-action")
        assert upcoming.json()["order"] == 2

        completed = client.get("/retention/actions", params={"client_id": "cli_001", "status": "completed"})
        assert [a["id"] for a in completed.json()] == [first_action]
        assigned = client.get("/retention/actions", params={"assigned_to": "assessor_7"})
        assert len(assigned.json()) == 3

        abandoned = client.delete("/retention/clients/cli_001/playbook", params={"notes": "Moved"})
        assert abandoned.json()["status"] == "abandoned"
        assert client.get("/retention/clients/cli_001/playbook").status_code == 404

    def test_unknown_template_is_404(self, client):
        response = client.post("/retention/clients/cli_001/playbook", json={"template_id": "pb_missing"})

        assert response.status_code == 404

    def test_list_playbooks(self, client):
        response = client.get("/retention/playbooks", params={"classification": "critical"})

        assert [t["id"] for t in response.json()] == ["pb_critical"]

    def test_dashboard(self, client):
        body = client.get("/retention/dashboard", params={"today": "2025-07-01"}).json()

        assert body["clients_at_risk"] == 0
        assert body["retention_rate"] == 100.0


class TestReportEndpoints:

    def test_inverted_range_is_400(self, client):
        cohorts = client.get("/reports/cohorts", params={"start": "2025-07-01", "end": "2025-06-01"})
        mrr = client.get("/reports/mrr", params={"start": "2025-07-01", "end": "2025-06-01"})

        assert cohorts.status_code == 400
        assert mrr.status_code == 400

    def test_mrr_report(self, client, seeded_store):
        seeded_store.add_revenue("cli_001", date(2025, 1, 10), 100.0)
        seeded_store.add_revenue("cli_001", date(2025, 2, 10), 150.0)

        body = client.get("/reports/mrr", params={"start": "2025-02-01", "end": "2025-02-28"}).json()

        assert body["movements"][0]["expansion"] == 50.0
        assert body["ending_mrr"] == 150.0

    def test_inconsistent_revenue_is_500(self, client, seeded_store):
        seeded_store.add_revenue("cli_001", date(2025, 1, 10), 100.0)
        seeded_store.add_revenue("cli_001", date(2025, 2, 10), -20.0)

        response = client.get("/reports/mrr", params={"start": "2025-02-01", "end": "2025-02-28"})

        assert response.status_code == 500
        assert response.json()["error"] == "InconsistentState"
