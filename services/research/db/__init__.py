"""
asyncpg database module.

Re-exports the pool factory used by the research pipeline.
"""

from services.research.db.pool import create_pool, standalone_pool

__all__ = [
    "create_pool",
    "standalone_pool",
]
