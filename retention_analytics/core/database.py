"""
Async PostgreSQL connection pool module for CRM database connectivity.

This module provides an async PostgreSQL connection pool using asyncpg with a
module-level singleton. All PostgreSQL connections used by the store, the API
layer and the daily jobs flow through this module.

Key Components:
- Global connection pool singleton (_pool)
- init_db(): Initialize the connection pool at application startup
- get_db_pool(): Get the pool instance (initializes if needed)
- close_db(): Gracefully close the pool at application shutdown
- apply_schema(): Create retention tables and partial unique indexes

Connection Pool Configuration:
- min_size: 2 (minimum idle connections kept in pool)
- max_size: 10 (maximum connections in pool)
- command_timeout: 60 seconds (query timeout)
- jsonb columns are decoded to Python objects on every connection

Usage:
    # At application startup (in FastAPI lifespan)
    await init_db()

    # In services or endpoints
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch("SELECT * FROM clients")

    # At application shutdown
    await close_db()

See Also:
    - retention_analytics/core/config.py: Settings management with DATABASE_URL
    - retention_analytics/services/store.py: PostgresCrmStore built on this pool
    - retention_analytics/sql/schema.py: Table DDL applied by apply_schema()
"""

import json
import logging
from typing import Optional

import asyncpg
from asyncpg import Connection, Pool

from retention_analytics.core.config import get_settings
from retention_analytics.sql.schema import RETENTION_SCHEMA_STATEMENTS


logger = logging.getLogger(__name__)


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def _init_connection(conn: Connection) -> None:
    """Register JSON codecs so jsonb columns round-trip as dicts and lists."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog',
        )


async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: if the pool already exists it is returned unchanged.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=2,
            max_size=10,
            command_timeout=60,
            init=_init_connection,
        )

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing if needed.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails during lazy init.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Idempotent: calling it when the pool is not initialized has no effect.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def apply_schema() -> None:
    """
    Create the retention tables and indexes if they do not exist.

    The statements run in a single transaction; all of them use
    IF NOT EXISTS so repeated application is harmless.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        async with conn.transaction():
            for statement in RETENTION_SCHEMA_STATEMENTS:
                await conn.execute(statement)

    logger.info(f"Applied {len(RETENTION_SCHEMA_STATEMENTS)} retention schema statements")

