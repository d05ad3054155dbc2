"""
FastAPI dependency injection module for the retention analytics API.

Endpoint handlers never build stores or engines themselves; they declare the
dependencies below, which tests replace through `app.dependency_overrides`.

Key Dependencies Provided:
- get_settings_dependency / SettingsDep: the cached Settings singleton
- get_store / StoreDep: a PostgresCrmStore over the shared asyncpg pool
- get_playbook_engine / EngineDep: the process-wide RetentionPlaybookEngine

The playbook engine is a singleton because its per-client locks only
serialize mutations that go through the same instance.

Usage Examples:
    @router.get("/scores")
    async def list_scores(store: StoreDep, settings: SettingsDep):
        return await list_health_scores(store, settings=settings)

    # In tests
    app.dependency_overrides[get_store] = lambda: in_memory_store

See Also:
    - retention_analytics/core/config.py: Settings management
    - retention_analytics/core/database.py: Connection pool lifecycle
    - retention_analytics/api/*.py: Endpoint handlers using these dependencies
"""

from typing import Annotated, Optional

from fastapi import Depends

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.core.database import get_db_pool
from retention_analytics.services.playbooks import RetentionPlaybookEngine
from retention_analytics.services.store import CrmStore, PostgresCrmStore


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


# =============================================================================
# Store and Engine Dependencies
# =============================================================================

async def get_store() -> CrmStore:
    """
    Return a CrmStore backed by the shared connection pool.

    Raises:
        asyncpg.PostgresError: If the pool cannot be created.
    """
    pool = await get_db_pool()
    return PostgresCrmStore(pool)


_engine: Optional[RetentionPlaybookEngine] = None


async def get_playbook_engine() -> RetentionPlaybookEngine:
    """Return the process-wide playbook engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = RetentionPlaybookEngine(await get_store(), get_settings())
    return _engine


def reset_playbook_engine() -> None:
    """Drop the engine singleton (called when the pool is closed)."""
    global _engine
    _engine = None


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

StoreDep = Annotated[CrmStore, Depends(get_store)]

EngineDep = Annotated[RetentionPlaybookEngine, Depends(get_playbook_engine)]
