"""
Point ledger: the only component allowed to mutate balance records.

Balances are updated with optimistic concurrency. Each attempt reads the
record, computes the new balance and writes it back with a version-checked
conditional update; a VersionConflict means another replica won the race, so
the whole read-compute-write step is retried with randomised exponential
backoff (tenacity) up to ``RetryPolicy.max_attempts`` times.

Idempotency: every applied mutation is remembered on the balance record itself
(a bounded window of AppliedOperation entries), in the same conditional write
that changes the balance. A replayed key is therefore detected atomically and
returns the balance recorded when it was first applied, whatever amount the
replay carries. Callers that know the balance version preceding any earlier
application pass it as ``applied_after``; once operations newer than that
version have been evicted, an unseen key is refused instead of re-applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from achievement_points.config import Settings
from achievement_points.domain.models import AppliedOperation, PointBalance, balance_key
from achievement_points.errors import (
    AlreadyExists,
    InsufficientBalance,
    ReplayWindowExceeded,
    RetryExhausted,
    VersionConflict,
)
from achievement_points.services.validation import require_positive, require_text
from achievement_points.store.abstract import KeyValueStore
from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_RECENT_OPERATIONS = 128


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounds for the conflict retry loop.

    Attributes
    ----------
    max_attempts : int
        Total read-compute-write attempts, including the first one.
    backoff_base_seconds : float
        Multiplier of the exponential backoff window.
    backoff_cap_seconds : float
        Upper bound of a single backoff sleep.
    """

    max_attempts: int = 5
    backoff_base_seconds: float = 0.05
    backoff_cap_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.ledger_max_attempts,
            backoff_base_seconds=settings.ledger_backoff_base_seconds,
            backoff_cap_seconds=settings.ledger_backoff_cap_seconds,
        )

    def retrying(self, context: OperationContext) -> Retrying:
        """Build a tenacity controller that only retries version conflicts."""
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(
                multiplier=self.backoff_base_seconds, max=self.backoff_cap_seconds
            ),
            retry=retry_if_exception_type(VersionConflict),
            sleep=context.sleep,
            before_sleep=before_sleep_log(log, logging.DEBUG),
            reraise=False,
        )


class PointLedger:
    """
    Idempotent credit/debit operations over per-user balance records.

    Parameters
    ----------
    store : KeyValueStore
        Any backend implementing the store capability.
    retry_policy : RetryPolicy | None
        Conflict retry bounds; defaults to 5 attempts.
    recent_operations : int
        How many applied idempotency keys each balance record remembers.
    """

    def __init__(
        self,
        store: KeyValueStore,
        retry_policy: Optional[RetryPolicy] = None,
        recent_operations: int = DEFAULT_RECENT_OPERATIONS,
    ) -> None:
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy()
        self._recent_operations = require_positive("recent_operations", recent_operations)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def get_balance(self, user_id: str) -> PointBalance:
        """
        Read a user's balance. Users without a record have 0 points at version 0.
        """
        require_text("user_id", user_id)
        item = self._store.get(balance_key(user_id))
        if item is None:
            return PointBalance(user_id=user_id)
        return PointBalance.from_item(item)

    def credit(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        context: Optional[OperationContext] = None,
        applied_after: Optional[int] = None,
    ) -> int:
        """
        Add ``amount`` points and return the resulting balance.

        Replaying ``idempotency_key`` returns the balance recorded when it was
        first applied, without crediting again.

        Parameters
        ----------
        applied_after : int | None
            Balance version known to precede any earlier application of the
            key. When operations newer than it were evicted from the window,
            an unseen key cannot be told apart from a forgotten one.

        Raises
        ------
        RetryExhausted
            If every attempt lost a version race.
        ReplayWindowExceeded
            If ``applied_after`` is given and the window no longer covers it.
        """
        require_text("user_id", user_id)
        require_positive("amount", amount)
        require_text("idempotency_key", idempotency_key)
        entry = self._apply("credit", user_id, amount, idempotency_key, context, applied_after)
        return entry.balance_after

    def debit(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        context: Optional[OperationContext] = None,
    ) -> int:
        """
        Remove ``amount`` points and return the resulting balance.

        Raises
        ------
        InsufficientBalance
            If the balance is lower than ``amount``. Nothing is written and the
            call is not retried.
        RetryExhausted
            If every attempt lost a version race.
        """
        return self.debit_entry(user_id, amount, idempotency_key, context).balance_after

    def debit_entry(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        context: Optional[OperationContext] = None,
    ) -> AppliedOperation:
        """
        Like ``debit``, but return the ledger entry recorded for the key.

        On a replay this is the entry written the first time, so its delta is
        what was actually spent even if ``amount`` differs now.
        """
        require_text("user_id", user_id)
        require_positive("amount", amount)
        require_text("idempotency_key", idempotency_key)
        return self._apply("debit", user_id, -amount, idempotency_key, context, None)

    def _apply(
        self,
        operation: str,
        user_id: str,
        delta: int,
        idempotency_key: str,
        context: Optional[OperationContext],
        applied_after: Optional[int],
    ) -> AppliedOperation:
        context = context or OperationContext.background()
        retrying = self._retry_policy.retrying(context)
        try:
            return retrying(
                self._attempt, operation, user_id, delta, idempotency_key, context, applied_after
            )
        except RetryError as exc:
            attempts = exc.last_attempt.attempt_number
            log.warning(
                "Ledger retry budget exhausted",
                extra={
                    "operation": operation,
                    "user_id": user_id,
                    "idempotency_key": idempotency_key,
                    "attempts": attempts,
                },
            )
            raise RetryExhausted(operation, user_id, attempts) from exc.last_attempt.exception()

    def _attempt(
        self,
        operation: str,
        user_id: str,
        delta: int,
        idempotency_key: str,
        context: OperationContext,
        applied_after: Optional[int],
    ) -> AppliedOperation:
        context.raise_if_cancelled()
        current = self._load(user_id, create=delta > 0, context=context)

        previous = current.find_applied(idempotency_key)
        if previous is not None:
            if previous.delta != delta:
                log.warning(
                    "Ledger operation replayed with a different amount",
                    extra={
                        "operation": operation,
                        "user_id": user_id,
                        "idempotency_key": idempotency_key,
                        "recorded_delta": previous.delta,
                        "requested_delta": delta,
                    },
                )
            else:
                log.debug(
                    "Ledger operation replayed",
                    extra={
                        "operation": operation,
                        "user_id": user_id,
                        "idempotency_key": idempotency_key,
                        "balance": previous.balance_after,
                    },
                )
            return previous

        if applied_after is not None and not current.covers_since(applied_after):
            log.warning(
                "Idempotency window no longer covers the operation",
                extra={
                    "operation": operation,
                    "user_id": user_id,
                    "idempotency_key": idempotency_key,
                    "applied_after": applied_after,
                    "evicted_version": current.evicted_version,
                },
            )
            raise ReplayWindowExceeded(idempotency_key, applied_after, current.evicted_version)

        if current.balance + delta < 0:
            raise InsufficientBalance(user_id, current.balance, -delta)

        updated = current.apply(idempotency_key, delta, self._recent_operations)
        context.raise_if_cancelled()
        stored = self._store.update_if_version(
            balance_key(user_id), updated.to_value(), current.version
        )
        log.info(
            "Points %s", "credited" if delta > 0 else "debited",
            extra={
                "operation": operation,
                "user_id": user_id,
                "idempotency_key": idempotency_key,
                "delta": delta,
                "balance": updated.balance,
                "version": stored.version,
            },
        )
        return updated.applied[-1]

    def _load(self, user_id: str, create: bool, context: OperationContext) -> PointBalance:
        """
        Read the balance record, creating it at 0 points when ``create`` is set.

        A lost creation race (AlreadyExists) is benign: the record is re-read.
        Debits never create the record; an absent record is a 0 balance.
        """
        key = balance_key(user_id)
        item = self._store.get(key)
        if item is None and create:
            context.raise_if_cancelled()
            try:
                item = self._store.put_if_absent(key, PointBalance(user_id=user_id).to_value())
                log.debug("Balance record created", extra={"user_id": user_id})
            except AlreadyExists:
                context.raise_if_cancelled()
                item = self._store.get(key)
        if item is None:
            return PointBalance(user_id=user_id)
        return PointBalance.from_item(item)


__all__ = ["PointLedger", "RetryPolicy", "DEFAULT_RECENT_OPERATIONS"]
