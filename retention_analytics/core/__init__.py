"""
Core infrastructure package for the retention analytics engine.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- Typed domain errors
- FastAPI dependency injection utilities

Re-exports let other modules write:

    from retention_analytics.core import get_settings, get_db_pool, StoreDep

instead of importing from each submodule.
"""

# =============================================================================
# Re-exports from retention_analytics.core.config
# =============================================================================
from retention_analytics.core.config import Settings, get_settings

# =============================================================================
# Re-exports from retention_analytics.core.exceptions
# =============================================================================
from retention_analytics.core.exceptions import (
    AggregationFailure,
    InconsistentState,
    InvariantViolation,
    NotFound,
    RetentionAnalyticsError,
)

# =============================================================================
# Re-exports from retention_analytics.core.database
# =============================================================================
from retention_analytics.core.database import apply_schema, close_db, get_db_pool, init_db

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Domain errors (from exceptions.py)
    'RetentionAnalyticsError',
    'AggregationFailure',
    'InconsistentState',
    'InvariantViolation',
    'NotFound',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    'apply_schema',
]
