"""
Reward redemption.

A redemption debits the ledger with a key derived from the caller's request
id and then records a RedemptionRecord. The debit's idempotency is what
prevents double spending; the record is the durable history entry, written
with a conditional put so a replayed request finds the existing one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from achievement_points.domain.models import (
    REDEMPTION_SORT_PREFIX,
    RedemptionRecord,
    RewardCatalogEntry,
    redemption_idempotency_key,
    redemption_key,
    reward_key,
    user_partition,
)
from achievement_points.errors import AlreadyExists, RewardNotFound, RewardOutOfStock, StoreUnavailable
from achievement_points.services.ledger import PointLedger
from achievement_points.services.validation import require_text
from achievement_points.store.abstract import KeyValueStore
from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)


class RewardCatalog:
    """
    Reference lookups of reward definitions.

    The catalog is owned by external tooling; ``register`` exists for that
    tooling and for seeding, the redemption path only reads.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self, reward_id: str) -> RewardCatalogEntry:
        require_text("reward_id", reward_id)
        item = self._store.get(reward_key(reward_id))
        if item is None:
            raise RewardNotFound(reward_id)
        return RewardCatalogEntry.from_item(item)

    def register(self, entry: RewardCatalogEntry) -> RewardCatalogEntry:
        self._store.put(reward_key(entry.reward_id), entry.to_value())
        log.info(
            "Reward registered",
            extra={"reward_id": entry.reward_id, "cost": entry.cost, "stock": entry.stock},
        )
        return entry


@dataclass(frozen=True)
class RedemptionOutcome:
    record: RedemptionRecord
    balance: int
    replayed: bool = False


class RewardService:
    def __init__(
        self,
        store: KeyValueStore,
        ledger: PointLedger,
        catalog: Optional[RewardCatalog] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self.catalog = catalog or RewardCatalog(store)

    def redeem(
        self,
        user_id: str,
        reward_id: str,
        request_id: str,
        context: Optional[OperationContext] = None,
    ) -> RedemptionOutcome:
        """
        Spend points on a reward, exactly once per ``request_id``.

        A retried request returns the redemption recorded the first time
        (``replayed=True``) and never debits again.

        Raises
        ------
        RewardNotFound
            If the reward is not in the catalog.
        RewardOutOfStock
            If the catalog entry has no stock left.
        InsufficientBalance
            If the user cannot afford the reward.
        RetryExhausted
            If the debit kept losing version races.
        """
        require_text("user_id", user_id)
        require_text("reward_id", reward_id)
        require_text("request_id", request_id)
        context = context or OperationContext.background()
        key = redemption_key(user_id, request_id)

        context.raise_if_cancelled()
        existing = self._store.get(key)
        if existing is not None:
            record = RedemptionRecord.from_item(existing)
            log.debug(
                "Redemption replayed",
                extra={"user_id": user_id, "request_id": request_id},
            )
            return RedemptionOutcome(record, record.balance_after, replayed=True)

        context.raise_if_cancelled()
        entry = self.catalog.get(reward_id)
        if not entry.in_stock:
            raise RewardOutOfStock(reward_id)

        # A retried request keeps the amount debited the first time, even if
        # the catalog price has changed since.
        debited = self._ledger.debit_entry(
            user_id, entry.cost, redemption_idempotency_key(request_id), context
        )
        balance = debited.balance_after

        record = RedemptionRecord(
            user_id=user_id,
            request_id=request_id,
            reward_id=reward_id,
            points_spent=-debited.delta,
            balance_after=balance,
        )
        # The debit already happened; a cancellation here would only lose history.
        try:
            self._store.put_if_absent(key, record.to_value())
        except AlreadyExists:
            stored = self._store.get(key)
            if stored is None:
                raise StoreUnavailable(f"record {key} vanished after it was created")
            record = RedemptionRecord.from_item(stored)
            log.debug(
                "Redemption recorded concurrently",
                extra={"user_id": user_id, "request_id": request_id},
            )
            return RedemptionOutcome(record, record.balance_after, replayed=True)

        log.info(
            "Reward redeemed",
            extra={
                "user_id": user_id,
                "reward_id": reward_id,
                "request_id": request_id,
                "points_spent": record.points_spent,
                "balance": balance,
            },
        )
        return RedemptionOutcome(record, balance)

    def list_redemption_history(self, user_id: str) -> Iterator[RedemptionRecord]:
        """Lazily yield a user's recorded redemptions, ordered by request id."""
        require_text("user_id", user_id)
        for item in self._store.query(user_partition(user_id), REDEMPTION_SORT_PREFIX):
            yield RedemptionRecord.from_item(item)


__all__ = ["RedemptionOutcome", "RewardCatalog", "RewardService"]
