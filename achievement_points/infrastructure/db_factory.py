"""
Database connection factory utilities for the PostgreSQL store backend.

Provides centralized management of the psycopg connection pool with proper
lifecycle management. The PoolManager singleton hands every PostgresStore in
the process the same pool and closes it on exit.

Opening the pool is retried with tenacity for transient connection failures.
"""

from __future__ import annotations

import atexit
import threading
from typing import Optional

import psycopg
from psycopg import sql
from psycopg_pool import ConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from achievement_points.config import Settings, get_settings
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def apply_statement_timeout(cur: psycopg.Cursor, timeout_ms: int) -> None:
    """
    Bound every statement of the cursor's current transaction. 0 disables it.
    """
    if timeout_ms and timeout_ms > 0:
        cur.execute(
            sql.SQL("SET LOCAL statement_timeout = {}").format(sql.Literal(int(timeout_ms)))
        )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((PoolTimeout, psycopg.OperationalError)),
    reraise=True,
)
def open_pool(dsn: str, min_size: int = 1, max_size: int = 10, timeout: float = 10.0) -> ConnectionPool:
    """
    Open a connection pool and wait until its first connections are usable.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Raises
    ------
    psycopg_pool.PoolTimeout
        If the pool could not be filled after all retry attempts.
    """
    pool = ConnectionPool(conninfo=dsn, min_size=min_size, max_size=max_size, open=False)
    try:
        pool.open(wait=True, timeout=timeout)
    except Exception:
        pool.close()
        raise
    log.info("Connection pool opened", extra={"min_size": min_size, "max_size": max_size})
    return pool


class PoolManager:
    """
    Thread-safe singleton owning the process-wide connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
                cls._instance._dsn = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_pool(self, settings: Optional[Settings] = None) -> ConnectionPool:
        """
        Get or create the connection pool for the configured database.

        A different DSN than the one the current pool was opened with replaces it.
        """
        settings = settings or get_settings()
        dsn = build_dsn(settings)
        with self._lock:
            if self._pool is not None and self._dsn != dsn:
                self._pool.close()
                self._pool = None
            if self._pool is None:
                self._pool = open_pool(
                    dsn,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                )
                self._dsn = dsn
            return self._pool

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._pool is not None:
                try:
                    self._pool.close()
                finally:
                    self._pool = None
                    self._dsn = None


def get_sync_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    """Get or create the process-wide connection pool via PoolManager."""
    return PoolManager().get_pool(settings)


__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_pool",
    "open_pool",
]
