"""
Retention & Revenue Analytics Engine for the advisor CRM.

Turns time-stamped CRM events (revenue postings, lead conversions, client
interactions) into per-client health scores, churn risk, retention playbook
execution state, and revenue cohort / MRR decomposition reports.

Packages:
- core: configuration, database pool, exceptions, FastAPI dependencies
- models: enums and Pydantic schemas
- sql: parameterized PostgreSQL queries and table DDL
- services: aggregation, scoring, churn, playbooks, cohort and MRR engines
- api: FastAPI routers over the service layer
- jobs: daily retention recompute and Slack digest
"""

__version__ = "1.0.0"
