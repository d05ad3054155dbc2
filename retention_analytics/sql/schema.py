"""
DDL for the tables owned by the retention analytics engine.

The CRM tables (clients, leads, revenues, interactions) belong to the host
application and are only read here, except for follow-up lead inserts.

Two partial unique indexes back the per-client invariants at the storage
level:
    - churn_events_one_pending: one pending churn event per client
    - playbook_instances_one_active: one active playbook instance per client
"""

from typing import List


RETENTION_SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS client_health_scores (
        client_id TEXT PRIMARY KEY,
        score NUMERIC(5, 2) NOT NULL CHECK (score >= 0 AND score <= 100),
        classification TEXT NOT NULL,
        components JSONB NOT NULL,
        churn_probability INTEGER NOT NULL CHECK (churn_probability BETWEEN 0 AND 100),
        previous_score NUMERIC(5, 2),
        as_of DATE NOT NULL,
        computed_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS churn_events (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        predicted_probability INTEGER NOT NULL CHECK (predicted_probability BETWEEN 0 AND 100),
        status TEXT NOT NULL DEFAULT 'pending',
        risk_factors JSONB NOT NULL DEFAULT '[]'::jsonb,
        action_taken TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        resolved_at TIMESTAMPTZ
    )
    """,
    """
    ALTER TABLE churn_events ADD COLUMN IF NOT EXISTS action_taken TEXT
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS churn_events_one_pending
        ON churn_events (client_id) WHERE status = 'pending'
    """,
    """
    CREATE TABLE IF NOT EXISTS retention_playbooks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        risk_classification TEXT NOT NULL,
        steps JSONB NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retention_playbook_instances (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        template_id TEXT NOT NULL REFERENCES retention_playbooks (id),
        template_name TEXT NOT NULL,
        churn_event_id TEXT REFERENCES churn_events (id),
        follow_up_lead_id TEXT,
        assigned_to TEXT,
        started_at TIMESTAMPTZ NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        closed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS playbook_instances_one_active
        ON retention_playbook_instances (client_id) WHERE status = 'active'
    """,
    """
    CREATE TABLE IF NOT EXISTS retention_actions (
        id TEXT PRIMARY KEY,
        instance_id TEXT NOT NULL REFERENCES retention_playbook_instances (id),
        client_id TEXT NOT NULL,
        step_order INTEGER NOT NULL,
        action_type TEXT NOT NULL,
        description TEXT NOT NULL,
        offer_details TEXT,
        due_date DATE NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        assigned_to TEXT,
        resolved_at TIMESTAMPTZ,
        notes TEXT,
        UNIQUE (instance_id, step_order)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_run_state (
        job_type TEXT NOT NULL,
        run_date DATE NOT NULL,
        completed_at TIMESTAMPTZ NOT NULL,
        run_count INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (job_type, run_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_digest_state (
        job_type TEXT NOT NULL,
        digest_date DATE NOT NULL,
        sent_at TIMESTAMPTZ NOT NULL,
        digest_count INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (job_type, digest_date)
    )
    """,
]
