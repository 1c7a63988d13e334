"""
PostgreSQL store backend.

Implements the store capability on a single ``public.kv_records`` table (see
``init.sql`` next to this module). Every operation is one statement in its own
transaction, so each call is atomic on exactly one row:

- ``put_if_absent``: INSERT ... ON CONFLICT DO NOTHING RETURNING version
- ``update_if_version``: UPDATE ... WHERE version = %s RETURNING version
- ``query``: named server-side cursor drained with fetchmany batches
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Iterator, List, Optional

import psycopg
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from achievement_points.config import Settings, get_settings
from achievement_points.errors import AlreadyExists, StoreUnavailable, VersionConflict
from achievement_points.infrastructure.db_factory import apply_statement_timeout, get_sync_pool, open_pool
from achievement_points.store.abstract import AbstractKeyValueStore, RecordKey, StoredItem
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "init.sql"

_GET_SQL = (
    "SELECT value, version FROM public.kv_records "
    "WHERE partition_key = %s AND sort_key = %s;"
)
_PUT_SQL = (
    "INSERT INTO public.kv_records (partition_key, sort_key, value) VALUES (%s, %s, %s) "
    "ON CONFLICT (partition_key, sort_key) DO UPDATE "
    "SET value = EXCLUDED.value, version = public.kv_records.version + 1, updated_at = now() "
    "RETURNING version;"
)
_PUT_IF_ABSENT_SQL = (
    "INSERT INTO public.kv_records (partition_key, sort_key, value) VALUES (%s, %s, %s) "
    "ON CONFLICT (partition_key, sort_key) DO NOTHING "
    "RETURNING version;"
)
_UPDATE_IF_VERSION_SQL = (
    "UPDATE public.kv_records SET value = %s, version = version + 1, updated_at = now() "
    "WHERE partition_key = %s AND sort_key = %s AND version = %s "
    "RETURNING version;"
)
_QUERY_SQL = (
    "SELECT sort_key, value, version FROM public.kv_records "
    "WHERE partition_key = %s AND sort_key LIKE %s "
    "ORDER BY sort_key;"
)

_TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError, PoolTimeout)


@contextmanager
def _unavailable_on_connect(operation: str) -> Generator[None, None, None]:
    """Report a database that cannot be reached while connecting as StoreUnavailable."""
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        log.warning(
            "Store connection failed",
            extra={"operation": operation, "error": str(exc)},
        )
        raise StoreUnavailable(f"{operation} failed: {exc}") from exc


def _like_prefix(prefix: str) -> str:
    """Escape LIKE wildcards so the prefix matches literally."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def _batched_fetch(cursor: psycopg.Cursor, batch_size: int) -> Iterator[list]:
    """
    Yield batches from a cursor using fetchmany.
    """
    while True:
        batch = cursor.fetchmany(batch_size)
        if not batch:
            break
        yield batch


class PostgresStore(AbstractKeyValueStore):
    """
    KeyValueStore backed by PostgreSQL through a psycopg ConnectionPool.
    """

    name: str = "postgres"

    def __init__(
        self,
        pool: Optional[ConnectionPool] = None,
        settings: Optional[Settings] = None,
        batch_size: Optional[int] = None,
        owns_pool: bool = False,
    ) -> None:
        self._settings = settings or get_settings()
        self._owns_pool = owns_pool
        if pool is None:
            with _unavailable_on_connect("open pool"):
                pool = get_sync_pool(self._settings)
        self._pool: ConnectionPool = pool
        self.batch_size = batch_size or self._settings.query_batch_size

    @classmethod
    def from_dsn(cls, dsn: str, settings: Optional[Settings] = None) -> "PostgresStore":
        """Build a store with a dedicated pool, closed together with the store."""
        settings = settings or get_settings()
        with _unavailable_on_connect("open pool"):
            pool = open_pool(
                dsn,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
            )
        return cls(pool=pool, settings=settings, owns_pool=True)

    @contextmanager
    def _cursor(self, operation: str) -> Generator[psycopg.Cursor, None, None]:
        """
        Borrow a pooled connection and yield a cursor inside one transaction.

        Driver-level connection failures are reported as StoreUnavailable.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    apply_statement_timeout(cur, self._settings.db_statement_timeout_ms)
                    yield cur
        except _TRANSIENT_ERRORS as exc:
            log.warning(
                "Store call failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    def ensure_schema(self, schema_path: Path = SCHEMA_PATH) -> None:
        """Create the records table if it does not exist yet."""
        ddl = schema_path.read_text(encoding="utf-8")
        with self._cursor("ensure_schema") as cur:
            cur.execute(ddl)
        log.info("Schema ensured", extra={"schema": str(schema_path)})

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception_type(StoreUnavailable),
        reraise=True,
    )
    def get(self, key: RecordKey) -> Optional[StoredItem]:
        # Reads are side-effect free, so transient failures are retried here.
        with self._cursor("get") as cur:
            cur.execute(_GET_SQL, (key.partition, key.sort))
            row = cur.fetchone()
        if row is None:
            return None
        value, version = row
        return StoredItem(key=key, value=value, version=int(version))

    def put(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        with self._cursor("put") as cur:
            cur.execute(_PUT_SQL, (key.partition, key.sort, Jsonb(value)))
            (version,) = cur.fetchone()
        return StoredItem(key=key, value=dict(value), version=int(version))

    def put_if_absent(self, key: RecordKey, value: Dict[str, Any]) -> StoredItem:
        with self._cursor("put_if_absent") as cur:
            cur.execute(_PUT_IF_ABSENT_SQL, (key.partition, key.sort, Jsonb(value)))
            row = cur.fetchone()
        if row is None:
            raise AlreadyExists(key)
        return StoredItem(key=key, value=dict(value), version=int(row[0]))

    def update_if_version(
        self, key: RecordKey, value: Dict[str, Any], expected_version: int
    ) -> StoredItem:
        with self._cursor("update_if_version") as cur:
            cur.execute(
                _UPDATE_IF_VERSION_SQL,
                (Jsonb(value), key.partition, key.sort, expected_version),
            )
            row = cur.fetchone()
        if row is None:
            raise VersionConflict(key, expected_version)
        return StoredItem(key=key, value=dict(value), version=int(row[0]))

    def query(self, partition: str, sort_prefix: str = "") -> Iterator[StoredItem]:
        """
        Stream one partition through a server-side cursor.

        The pooled connection is held until the iterator is exhausted or closed.
        """
        with self._cursor("query") as cur:
            conn = cur.connection
            # Use name to trigger server-side cursor
            with conn.cursor(name="kv_partition_query") as named:
                named.execute(_QUERY_SQL, (partition, _like_prefix(sort_prefix)))
                for batch in _batched_fetch(named, self.batch_size):
                    rows: List[StoredItem] = [
                        StoredItem(
                            key=RecordKey(partition=partition, sort=sort_key),
                            value=value,
                            version=int(version),
                        )
                        for sort_key, value, version in batch
                    ]
                    yield from rows

    def close(self) -> None:
        """Close the pool when this store created it."""
        if self._owns_pool:
            self._pool.close()


__all__ = ["PostgresStore", "SCHEMA_PATH"]
