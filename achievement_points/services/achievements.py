"""
Achievement completion with exactly-once point awards.

Completing an achievement is a two-phase write over records that share no
transaction:

1. create the AchievementRecord in state Pending (conditional put),
2. credit the ledger with a key derived from (user_id, achievement_id),
3. flip the record to Credited (conditional update).

A crash between the phases leaves a Pending record. Re-driving it, either by
the caller retrying or by ``resume_pending``, is safe because the ledger
recognises the derived key and will not credit twice. The Pending record
remembers the balance version it was created after; if the key may have left
the ledger's window since then, the credit is refused instead of repeated.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from achievement_points.domain.models import (
    ACHIEVEMENT_SORT_PREFIX,
    AchievementRecord,
    achievement_key,
    user_partition,
)
from achievement_points.errors import (
    AlreadyExists,
    ReplayWindowExceeded,
    RetryExhausted,
    StoreUnavailable,
    VersionConflict,
)
from achievement_points.services.ledger import PointLedger
from achievement_points.services.validation import require_positive, require_text
from achievement_points.store.abstract import KeyValueStore, StoredItem
from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)


class CompletionOutcome(str, Enum):
    COMPLETED = "completed"
    RESUMED = "resumed"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class AchievementCompletion:
    record: AchievementRecord
    balance: int
    outcome: CompletionOutcome

    @property
    def credited_now(self) -> bool:
        return self.outcome is not CompletionOutcome.ALREADY_COMPLETED


class AchievementService:
    def __init__(self, store: KeyValueStore, ledger: PointLedger) -> None:
        self._store = store
        self._ledger = ledger

    def complete_achievement(
        self,
        user_id: str,
        achievement_id: str,
        points: int,
        context: Optional[OperationContext] = None,
    ) -> AchievementCompletion:
        """
        Record an achievement for a user and award its points once.

        Calling this again for the same (user_id, achievement_id), sequentially
        or concurrently, never changes the balance a second time.

        Returns
        -------
        AchievementCompletion
            The Credited record, the balance after the credit, and whether this
            call did the work, resumed a stuck attempt or found it done.
        """
        require_text("user_id", user_id)
        require_text("achievement_id", achievement_id)
        require_positive("points", points)
        context = context or OperationContext.background()

        key = achievement_key(user_id, achievement_id)
        outcome = CompletionOutcome.COMPLETED

        context.raise_if_cancelled()
        # Any credit for this achievement lands after this version.
        ledger_version = self._ledger.get_balance(user_id).version
        record = AchievementRecord.pending(user_id, achievement_id, points, ledger_version)
        context.raise_if_cancelled()
        try:
            item = self._store.put_if_absent(key, record.to_value())
        except AlreadyExists:
            item = self._require(key)
            record = AchievementRecord.from_item(item)
            if record.is_credited:
                log.debug(
                    "Achievement already completed",
                    extra={"user_id": user_id, "achievement_id": achievement_id},
                )
                balance = self._ledger.get_balance(user_id).balance
                return AchievementCompletion(record, balance, CompletionOutcome.ALREADY_COMPLETED)
            if record.points != points:
                log.warning(
                    "Pending achievement resumed with its recorded points",
                    extra={
                        "user_id": user_id,
                        "achievement_id": achievement_id,
                        "recorded_points": record.points,
                        "requested_points": points,
                    },
                )
            outcome = CompletionOutcome.RESUMED

        return self._credit_and_mark(item, record, outcome, context)

    def resume_pending(
        self, user_id: str, context: Optional[OperationContext] = None
    ) -> List[AchievementCompletion]:
        """
        Re-drive every Pending achievement of one user.

        This is the per-user step of a reconciliation sweep; scheduling the
        sweep across users is left to the caller.
        """
        context = context or OperationContext.background()
        pending = [r for r in self.list_achievements(user_id) if not r.is_credited]
        results: List[AchievementCompletion] = []
        for record in pending:
            context.raise_if_cancelled()
            item = self._require(achievement_key(record.user_id, record.achievement_id))
            current = AchievementRecord.from_item(item)
            if current.is_credited:
                continue
            try:
                results.append(
                    self._credit_and_mark(item, current, CompletionOutcome.RESUMED, context)
                )
            except ReplayWindowExceeded:
                log.error(
                    "Pending achievement needs manual reconciliation",
                    extra={
                        "user_id": current.user_id,
                        "achievement_id": current.achievement_id,
                        "ledger_version": current.ledger_version,
                    },
                )
        if results:
            log.info(
                "Pending achievements resumed",
                extra={"user_id": user_id, "resumed": len(results)},
            )
        return results

    def get_achievement(self, user_id: str, achievement_id: str) -> Optional[AchievementRecord]:
        require_text("user_id", user_id)
        require_text("achievement_id", achievement_id)
        item = self._store.get(achievement_key(user_id, achievement_id))
        return AchievementRecord.from_item(item) if item is not None else None

    def list_achievements(self, user_id: str) -> Iterator[AchievementRecord]:
        require_text("user_id", user_id)
        for item in self._store.query(user_partition(user_id), ACHIEVEMENT_SORT_PREFIX):
            yield AchievementRecord.from_item(item)

    def _credit_and_mark(
        self,
        item: StoredItem,
        record: AchievementRecord,
        outcome: CompletionOutcome,
        context: OperationContext,
    ) -> AchievementCompletion:
        balance = self._ledger.credit(
            record.user_id,
            record.points,
            record.idempotency_key,
            context,
            applied_after=record.ledger_version,
        )
        credited = self._mark_credited(item, record, context)
        log.info(
            "Achievement credited",
            extra={
                "user_id": record.user_id,
                "achievement_id": record.achievement_id,
                "points": record.points,
                "balance": balance,
                "outcome": outcome.value,
            },
        )
        return AchievementCompletion(credited, balance, outcome)

    def _mark_credited(
        self, item: StoredItem, record: AchievementRecord, context: OperationContext
    ) -> AchievementRecord:
        """
        Move the record to Credited.

        Credited is the only transition, so losing the version race means a
        concurrent completion already wrote it; that counts as success.
        """
        credited = record.credited()
        version = item.version
        attempts = self._ledger.retry_policy.max_attempts
        for _ in range(attempts):
            context.raise_if_cancelled()
            try:
                self._store.update_if_version(item.key, credited.to_value(), version)
                return credited
            except VersionConflict:
                current_item = self._require(item.key)
                current = AchievementRecord.from_item(current_item)
                if current.is_credited:
                    return current
                version = current_item.version
        raise RetryExhausted("mark_credited", record.user_id, attempts)

    def _require(self, key) -> StoredItem:
        item = self._store.get(key)
        if item is None:
            # Achievement records are never deleted once created.
            raise StoreUnavailable(f"record {key} vanished after it was created")
        return item


__all__ = ["AchievementCompletion", "AchievementService", "CompletionOutcome"]
