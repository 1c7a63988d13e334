"""
Infrastructure package for the achievement points core.

Centralizes PostgreSQL connectivity (DSN building, pooling, statement
timeouts). Keep this layer focused on I/O and resource management, decoupled
from ledger and service logic.
"""

from achievement_points.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_sync_pool,
    open_pool,
)

__all__ = [
    "PoolManager",
    "build_dsn",
    "get_sync_pool",
    "open_pool",
]
