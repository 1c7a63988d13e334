"""
Wiring for the achievement points core.

Builds a store backend from settings and assembles the ledger and the services
on top of it. Callers (CLI, HTTP handlers, workers) use ``build_core`` and keep
the returned PointsCore for the lifetime of the process; nothing in it holds
authoritative state, so any number of replicas can run side by side.

Usage:
    from achievement_points.bootstrap import build_core

    with build_core() as core:
        core.achievements.complete_achievement("u-1", "first-login", 50)
        core.rewards.redeem("u-1", "sticker", request_id="req-42")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from achievement_points.config import Settings, get_settings
from achievement_points.domain.models import PointBalance, PointSummary
from achievement_points.services.achievements import AchievementService
from achievement_points.services.ledger import PointLedger, RetryPolicy
from achievement_points.services.rewards import RewardService
from achievement_points.services.summary import summarize_points
from achievement_points.store.abstract import KeyValueStore
from achievement_points.store.memory import InMemoryStore
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)


def _postgres_store(settings: Settings) -> KeyValueStore:
    # Imported lazily so the in-memory backend works without a database driver.
    from achievement_points.store.postgres import PostgresStore

    return PostgresStore(settings=settings)


def _store_factories() -> Dict[str, Callable[[Settings], KeyValueStore]]:
    """Registry of available store backends."""
    return {
        "memory": lambda settings: InMemoryStore(),
        "postgres": _postgres_store,
    }


def available_backends() -> List[str]:
    """List available store backend names."""
    return sorted(_store_factories().keys())


def build_store(settings: Optional[Settings] = None) -> KeyValueStore:
    settings = settings or get_settings()
    factories = _store_factories()
    name = settings.store_backend
    if name not in factories:
        raise ValueError(f"Unknown store backend '{name}'. Available: {', '.join(sorted(factories))}")
    log.debug("Building store backend", extra={"backend": name})
    return factories[name](settings)


@dataclass
class PointsCore:
    """The ledger and services sharing one store."""

    store: KeyValueStore
    ledger: PointLedger
    achievements: AchievementService
    rewards: RewardService

    def get_balance(self, user_id: str) -> PointBalance:
        return self.ledger.get_balance(user_id)

    def summarize(self, user_id: str) -> PointSummary:
        return summarize_points(self.store, user_id)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "PointsCore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_core(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
) -> PointsCore:
    """
    Assemble the core.

    Parameters
    ----------
    settings : Settings | None
        Defaults to the cached environment settings.
    store : KeyValueStore | None
        Use this store instead of building one from ``settings.store_backend``.
    """
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    ledger = PointLedger(
        store,
        retry_policy=RetryPolicy.from_settings(settings),
        recent_operations=settings.ledger_recent_operations,
    )
    return PointsCore(
        store=store,
        ledger=ledger,
        achievements=AchievementService(store, ledger),
        rewards=RewardService(store, ledger),
    )


__all__ = [
    "PointsCore",
    "available_backends",
    "build_core",
    "build_store",
]
