"""
Domain models for the achievement points core.

Every persisted record family lives in the user's partition so a single
partition query returns a user's balance, achievements and redemptions:

    USER#<user_id> / BALANCE
    USER#<user_id> / ACHIEVEMENT#<achievement_id>
    USER#<user_id> / REDEMPTION#<request_id>
    REWARD#<reward_id> / CATALOG

Models are frozen; state changes produce new instances via ``model_copy``.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from achievement_points.store.abstract import RecordKey, StoredItem

USER_PARTITION_PREFIX = "USER#"
BALANCE_SORT_KEY = "BALANCE"
ACHIEVEMENT_SORT_PREFIX = "ACHIEVEMENT#"
REDEMPTION_SORT_PREFIX = "REDEMPTION#"
REWARD_PARTITION_PREFIX = "REWARD#"
CATALOG_SORT_KEY = "CATALOG"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def user_partition(user_id: str) -> str:
    return f"{USER_PARTITION_PREFIX}{user_id}"


def balance_key(user_id: str) -> RecordKey:
    return RecordKey(partition=user_partition(user_id), sort=BALANCE_SORT_KEY)


def achievement_key(user_id: str, achievement_id: str) -> RecordKey:
    return RecordKey(partition=user_partition(user_id), sort=f"{ACHIEVEMENT_SORT_PREFIX}{achievement_id}")


def redemption_key(user_id: str, request_id: str) -> RecordKey:
    return RecordKey(partition=user_partition(user_id), sort=f"{REDEMPTION_SORT_PREFIX}{request_id}")


def reward_key(reward_id: str) -> RecordKey:
    return RecordKey(partition=f"{REWARD_PARTITION_PREFIX}{reward_id}", sort=CATALOG_SORT_KEY)


def achievement_idempotency_key(user_id: str, achievement_id: str) -> str:
    """
    Deterministic ledger key for crediting one achievement of one user.

    Hashing keeps the key short and free of separator collisions between
    arbitrary user and achievement ids.
    """
    digest = hashlib.sha256(f"{user_id}\x1f{achievement_id}".encode("utf-8")).hexdigest()
    return f"achievement:{digest[:40]}"


def redemption_idempotency_key(request_id: str) -> str:
    """Ledger key for the debit of one redemption request."""
    return f"redemption:{request_id}"


class _StoredModel(BaseModel):
    """Shared (de)serialisation between models and store values."""

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "ignore",
    }

    def to_value(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_item(cls, item: StoredItem, **overrides: Any):
        return cls.model_validate({**item.value, **overrides})


class AppliedOperation(BaseModel):
    """A ledger mutation remembered on the balance record for replay detection."""

    idempotency_key: str
    delta: int
    balance_after: int = Field(..., ge=0)
    version: int = Field(0, ge=0, description="Balance record version this operation produced.")
    applied_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class PointBalance(_StoredModel):
    """
    Per-user points balance.

    ``version`` mirrors the store's record version and is not part of the
    stored value; it is filled in from StoredItem.version when reading.

    ``evicted_version`` is the highest record version produced by an
    operation that has since dropped out of ``applied``. Every operation that
    produced a later version is still in the window.
    """

    user_id: str
    balance: int = Field(0, ge=0, description="Current spendable points.")
    version: int = Field(0, ge=0, exclude=True, description="Store version; 0 when not persisted.")
    applied: Tuple[AppliedOperation, ...] = Field(default_factory=tuple)
    evicted_version: int = Field(0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_item(cls, item: StoredItem, **overrides: Any) -> "PointBalance":
        return super().from_item(item, version=item.version, **overrides)

    def find_applied(self, idempotency_key: str) -> Optional[AppliedOperation]:
        for op in self.applied:
            if op.idempotency_key == idempotency_key:
                return op
        return None

    def covers_since(self, version: int) -> bool:
        """True when every operation applied after ``version`` is still remembered."""
        return self.evicted_version <= version

    def apply(self, idempotency_key: str, delta: int, window: int) -> "PointBalance":
        """
        Return the balance after applying ``delta``, remembering the key.

        Only the newest ``window`` operations are kept.
        """
        new_balance = self.balance + delta
        now = utcnow()
        op = AppliedOperation(
            idempotency_key=idempotency_key,
            delta=delta,
            balance_after=new_balance,
            version=self.version + 1,
            applied_at=now,
        )
        remembered = self.applied + (op,)
        applied = remembered[-window:]
        evicted = remembered[: len(remembered) - len(applied)]
        evicted_version = max([self.evicted_version] + [o.version for o in evicted])
        return self.model_copy(
            update={
                "balance": new_balance,
                "applied": applied,
                "evicted_version": evicted_version,
                "updated_at": now,
            }
        )


class AchievementStatus(str, Enum):
    PENDING = "Pending"
    CREDITED = "Credited"


class AchievementRecord(_StoredModel):
    user_id: str
    achievement_id: str
    points: int = Field(..., gt=0)
    status: AchievementStatus = AchievementStatus.PENDING
    idempotency_key: str
    ledger_version: int = Field(
        0, ge=0, description="Balance version read before the record was created."
    )
    created_at: datetime = Field(default_factory=utcnow)
    credited_at: Optional[datetime] = None

    @classmethod
    def pending(
        cls, user_id: str, achievement_id: str, points: int, ledger_version: int = 0
    ) -> "AchievementRecord":
        return cls(
            user_id=user_id,
            achievement_id=achievement_id,
            points=points,
            ledger_version=ledger_version,
            idempotency_key=achievement_idempotency_key(user_id, achievement_id),
        )

    @property
    def is_credited(self) -> bool:
        return self.status == AchievementStatus.CREDITED

    def credited(self) -> "AchievementRecord":
        return self.model_copy(update={"status": AchievementStatus.CREDITED, "credited_at": utcnow()})


class RewardCatalogEntry(_StoredModel):
    reward_id: str
    title: str = ""
    description: str = ""
    cost: int = Field(..., gt=0, description="Points debited per redemption.")
    stock: Optional[int] = Field(None, ge=0, description="Remaining units; None means unlimited.")

    @property
    def in_stock(self) -> bool:
        return self.stock is None or self.stock > 0


class RedemptionRecord(_StoredModel):
    user_id: str
    request_id: str
    reward_id: str
    points_spent: int = Field(..., gt=0)
    balance_after: int = Field(..., ge=0)
    redeemed_at: datetime = Field(default_factory=utcnow)


class PointSummary(BaseModel):
    """
    Aggregate view of one user's partition.

    ``difference`` is expected minus actual balance and is 0 at quiescence.
    While achievements are Pending it may be off by up to ``pending_points``:
    their credit can land before the record is marked Credited.
    """

    user_id: str
    credited_achievements: int = 0
    credited_points: int = 0
    pending_achievements: int = 0
    pending_points: int = 0
    redemptions: int = 0
    points_spent: int = 0
    balance: int = 0

    @property
    def expected_balance(self) -> int:
        return self.credited_points - self.points_spent

    @property
    def difference(self) -> int:
        return self.expected_balance - self.balance

    @property
    def in_sync(self) -> bool:
        return self.difference == 0


__all__ = [
    "AchievementRecord",
    "AchievementStatus",
    "AppliedOperation",
    "PointBalance",
    "PointSummary",
    "RedemptionRecord",
    "RewardCatalogEntry",
    "achievement_idempotency_key",
    "achievement_key",
    "balance_key",
    "redemption_idempotency_key",
    "redemption_key",
    "reward_key",
    "user_partition",
    "ACHIEVEMENT_SORT_PREFIX",
    "BALANCE_SORT_KEY",
    "REDEMPTION_SORT_PREFIX",
]
