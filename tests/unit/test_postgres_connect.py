from __future__ import annotations

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from achievement_points.errors import StoreUnavailable, TransientError
from achievement_points.store import postgres


def test_unreachable_shared_pool_is_store_unavailable(monkeypatch, test_settings) -> None:
    def no_pool(settings):
        raise PoolTimeout("couldn't get a connection after 10.00 sec")

    monkeypatch.setattr(postgres, "get_sync_pool", no_pool)

    with pytest.raises(StoreUnavailable) as excinfo:
        postgres.PostgresStore(settings=test_settings)

    assert isinstance(excinfo.value, TransientError)
    assert isinstance(excinfo.value.__cause__, PoolTimeout)


def test_unreachable_dsn_is_store_unavailable(monkeypatch, test_settings) -> None:
    def refused(dsn, min_size, max_size):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(postgres, "open_pool", refused)

    with pytest.raises(StoreUnavailable, match="connection refused"):
        postgres.PostgresStore.from_dsn("postgresql://nowhere/db", settings=test_settings)


def test_supplied_pool_is_used_without_connecting(monkeypatch, test_settings) -> None:
    def unexpected(settings):
        raise AssertionError("shared pool must not be opened")

    monkeypatch.setattr(postgres, "get_sync_pool", unexpected)
    pool = object()

    store = postgres.PostgresStore(pool=pool, settings=test_settings)

    assert store._pool is pool
