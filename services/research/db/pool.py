"""
asyncpg pool factory and standalone pool context manager.

The research pipeline runs as a background job, so it owns a small pool for
the duration of a run rather than borrowing one from a web process.
"""

from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from services.research.config import Settings, settings as default_settings


async def create_pool(config: Optional[Settings] = None) -> asyncpg.Pool:
    """Create an asyncpg pool sized for sequential pipeline writes."""
    config = config or default_settings
    return await asyncpg.create_pool(
        config.database_url,
        min_size=config.db_pool_min_size,
        max_size=config.db_pool_max_size,
        command_timeout=config.db_command_timeout_s,
    )


@asynccontextmanager
async def standalone_pool(config: Optional[Settings] = None):
    """
    For jobs that run outside a web process.
    Handles pool lifecycle to prevent connection leaks.
    """
    pool = await create_pool(config)
    try:
        yield pool
    finally:
        await pool.close()
