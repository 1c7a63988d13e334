"""
Pytest configuration for the achievement points core.

Provides fixtures for:
- Settings overrides (in-memory backend, fast retries)
- In-memory store and services wired on top of it
- Database connection management for the PostgreSQL integration tests
"""

from __future__ import annotations

import os
from typing import Any, Dict, Generator

import psycopg
import pytest

from achievement_points.config import Settings
from achievement_points.domain.models import RewardCatalogEntry
from achievement_points.errors import VersionConflict
from achievement_points.services.achievements import AchievementService
from achievement_points.services.ledger import PointLedger, RetryPolicy
from achievement_points.services.rewards import RewardCatalog, RewardService
from achievement_points.store.abstract import RecordKey, StoredItem
from achievement_points.store.memory import InMemoryStore

# Zero backoff keeps the conflict tests fast; attempts are generous so that
# thread-pool races never exhaust the budget.
FAST_RETRIES = RetryPolicy(max_attempts=16, backoff_base_seconds=0.0, backoff_cap_seconds=0.0)


class ConflictingStore(InMemoryStore):
    """
    In-memory store that rejects the first ``conflicts`` conditional updates.

    Optionally only for keys whose sort key starts with ``sort_prefix``.
    """

    def __init__(self, conflicts: int = 0, sort_prefix: str = "") -> None:
        super().__init__()
        self.conflicts = conflicts
        self.sort_prefix = sort_prefix
        self.update_calls = 0

    def update_if_version(
        self, key: RecordKey, value: Dict[str, Any], expected_version: int
    ) -> StoredItem:
        if key.sort.startswith(self.sort_prefix):
            self.update_calls += 1
            if self.conflicts > 0:
                self.conflicts -= 1
                raise VersionConflict(key, expected_version)
        return super().update_if_version(key, value, expected_version)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Database values can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        store_backend="memory",
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "achievement_points"),
        log_level="DEBUG",
        ledger_max_attempts=FAST_RETRIES.max_attempts,
        ledger_backoff_base_seconds=0.0,
        ledger_backoff_cap_seconds=0.0,
    )


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def ledger(memory_store: InMemoryStore) -> PointLedger:
    return PointLedger(memory_store, retry_policy=FAST_RETRIES)


@pytest.fixture
def achievements(memory_store: InMemoryStore, ledger: PointLedger) -> AchievementService:
    return AchievementService(memory_store, ledger)


@pytest.fixture
def catalog(memory_store: InMemoryStore) -> RewardCatalog:
    """A catalog with a few rewards already registered."""
    catalog = RewardCatalog(memory_store)
    catalog.register(RewardCatalogEntry(reward_id="mug", title="Mug", cost=80))
    catalog.register(RewardCatalogEntry(reward_id="sticker", title="Sticker", cost=10, stock=5))
    catalog.register(RewardCatalogEntry(reward_id="hoodie", title="Hoodie", cost=500, stock=0))
    return catalog


@pytest.fixture
def rewards(memory_store: InMemoryStore, ledger: PointLedger, catalog: RewardCatalog) -> RewardService:
    return RewardService(memory_store, ledger, catalog)


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def pg_store_session(
    test_dsn: str, test_settings: Settings, db_connection_available: bool
) -> Generator[Any, None, None]:
    """
    Session-scoped PostgresStore with the schema in place.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    from achievement_points.store.postgres import PostgresStore

    store = PostgresStore.from_dsn(test_dsn, settings=test_settings)
    store.ensure_schema()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def pg_store(test_dsn: str, pg_store_session):
    """
    Clean the records table before each test function.

    This ensures test isolation by starting with an empty table.
    """
    with psycopg.connect(test_dsn) as conn:
        conn.execute("TRUNCATE TABLE public.kv_records;")
    yield pg_store_session
    with psycopg.connect(test_dsn) as conn:
        conn.execute("TRUNCATE TABLE public.kv_records;")


@pytest.fixture
def conflicting_store():
    """Factory for stores that inject version conflicts, see ConflictingStore."""
    return ConflictingStore
