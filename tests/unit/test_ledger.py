from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from achievement_points.domain.models import balance_key
from achievement_points.errors import (
    InsufficientBalance,
    InvalidRequest,
    OperationCancelled,
    ReplayWindowExceeded,
    RetryExhausted,
    VersionConflict,
)
from achievement_points.services.ledger import PointLedger, RetryPolicy
from achievement_points.store.memory import InMemoryStore
from achievement_points.utils.context import OperationContext

NO_BACKOFF = dict(backoff_base_seconds=0.0, backoff_cap_seconds=0.0)


def test_credit_creates_balance_record(ledger: PointLedger, memory_store: InMemoryStore) -> None:
    assert ledger.credit("u-1", 50, "k-1") == 50

    balance = ledger.get_balance("u-1")
    assert balance.balance == 50
    # Created by put_if_absent (1), then updated once (2).
    assert balance.version == 2
    assert memory_store.get(balance_key("u-1")) is not None


def test_get_balance_for_unknown_user_is_zero(ledger: PointLedger) -> None:
    balance = ledger.get_balance("nobody")
    assert balance.balance == 0
    assert balance.version == 0
    assert balance.applied == ()


def test_credit_replay_does_not_credit_twice(ledger: PointLedger) -> None:
    ledger.credit("u-1", 50, "k-1")
    ledger.credit("u-1", 25, "k-2")

    assert ledger.credit("u-1", 50, "k-1") == 50
    assert ledger.get_balance("u-1").balance == 75


def test_replay_with_different_amount_keeps_the_first_entry(ledger: PointLedger, caplog) -> None:
    ledger.credit("u-1", 50, "k-1")

    with caplog.at_level(logging.WARNING, logger="achievement_points.services.ledger"):
        assert ledger.credit("u-1", 60, "k-1") == 50

    assert ledger.get_balance("u-1").balance == 50
    warning = next(r for r in caplog.records if r.levelno == logging.WARNING)
    assert warning.recorded_delta == 50
    assert warning.requested_delta == 60


def test_debit_entry_replay_reports_the_original_delta(ledger: PointLedger) -> None:
    ledger.credit("u-1", 100, "seed")
    first = ledger.debit_entry("u-1", 80, "spend-1")

    again = ledger.debit_entry("u-1", 90, "spend-1")

    assert again.version == first.version
    assert again.delta == -80
    assert again.balance_after == 20
    assert ledger.get_balance("u-1").balance == 20


def test_debit_reduces_balance(ledger: PointLedger) -> None:
    ledger.credit("u-1", 100, "seed")

    assert ledger.debit("u-1", 30, "spend-1") == 70
    assert ledger.get_balance("u-1").balance == 70


def test_debit_replay_returns_recorded_balance(ledger: PointLedger) -> None:
    ledger.credit("u-1", 100, "seed")
    ledger.debit("u-1", 30, "spend-1")
    ledger.credit("u-1", 5, "bonus")

    assert ledger.debit("u-1", 30, "spend-1") == 70
    assert ledger.get_balance("u-1").balance == 75


def test_insufficient_debit_writes_nothing(ledger: PointLedger) -> None:
    ledger.credit("u-1", 20, "seed")
    before = ledger.get_balance("u-1")

    with pytest.raises(InsufficientBalance) as excinfo:
        ledger.debit("u-1", 21, "spend-1")

    after = ledger.get_balance("u-1")
    assert excinfo.value.balance == 20
    assert excinfo.value.requested == 21
    assert after.balance == 20
    assert after.version == before.version


def test_debit_does_not_create_balance_record(ledger: PointLedger, memory_store: InMemoryStore) -> None:
    with pytest.raises(InsufficientBalance):
        ledger.debit("u-1", 1, "spend-1")

    assert memory_store.get(balance_key("u-1")) is None


def test_insufficient_balance_is_not_retried(conflicting_store) -> None:
    store = conflicting_store(sort_prefix="BALANCE")
    ledger = PointLedger(store, retry_policy=RetryPolicy(max_attempts=5, **NO_BACKOFF))
    ledger.credit("u-1", 10, "seed")
    calls_after_seed = store.update_calls

    with pytest.raises(InsufficientBalance):
        ledger.debit("u-1", 11, "spend-1")

    assert store.update_calls == calls_after_seed


@pytest.mark.parametrize(
    "user_id, amount, key",
    [
        ("", 10, "k"),
        ("u-1", 0, "k"),
        ("u-1", -5, "k"),
        ("u-1", True, "k"),
        ("u-1", 1.5, "k"),
        ("u-1", 10, " "),
    ],
)
def test_invalid_requests_are_rejected(ledger: PointLedger, user_id, amount, key) -> None:
    with pytest.raises(InvalidRequest):
        ledger.credit(user_id, amount, key)
    with pytest.raises(ValueError):
        ledger.debit(user_id, amount, key)


def test_version_conflicts_are_retried(conflicting_store) -> None:
    store = conflicting_store(conflicts=3, sort_prefix="BALANCE")
    ledger = PointLedger(store, retry_policy=RetryPolicy(max_attempts=5, **NO_BACKOFF))

    assert ledger.credit("u-1", 40, "k-1") == 40
    assert store.update_calls == 4
    assert ledger.get_balance("u-1").balance == 40


def test_retry_budget_exhaustion_surfaces(conflicting_store) -> None:
    store = conflicting_store(conflicts=100, sort_prefix="BALANCE")
    ledger = PointLedger(store, retry_policy=RetryPolicy(max_attempts=3, **NO_BACKOFF))

    with pytest.raises(RetryExhausted) as excinfo:
        ledger.credit("u-1", 40, "k-1")

    assert excinfo.value.attempts == 3
    assert excinfo.value.transient is True
    assert isinstance(excinfo.value.__cause__, VersionConflict)
    assert store.update_calls == 3
    assert ledger.get_balance("u-1").balance == 0


def test_cancelled_context_stops_before_any_write(ledger: PointLedger, memory_store: InMemoryStore) -> None:
    context = OperationContext()
    context.cancel("client went away")

    with pytest.raises(OperationCancelled, match="client went away"):
        ledger.credit("u-1", 10, "k-1", context=context)

    assert memory_store.get(balance_key("u-1")) is None


def test_expired_deadline_cancels(ledger: PointLedger) -> None:
    with pytest.raises(OperationCancelled, match="deadline exceeded"):
        ledger.credit("u-1", 10, "k-1", context=OperationContext(timeout=0))


def test_cancel_during_retries_stops_the_loop() -> None:
    context = OperationContext()

    class CancellingStore(InMemoryStore):
        """Loses every race and cancels the caller on the first loss."""

        calls = 0

        def update_if_version(self, key, value, expected_version):
            self.calls += 1
            context.cancel("shutting down")
            raise VersionConflict(key, expected_version)

    store = CancellingStore()
    # A long backoff would block the test if cancel did not wake the sleep.
    ledger = PointLedger(
        store,
        retry_policy=RetryPolicy(max_attempts=5, backoff_base_seconds=30.0, backoff_cap_seconds=30.0),
    )

    with pytest.raises(OperationCancelled):
        ledger.credit("u-1", 10, "k-1", context=context)

    assert store.calls == 1


def test_applied_window_is_bounded(memory_store: InMemoryStore) -> None:
    ledger = PointLedger(memory_store, recent_operations=3)
    for i in range(5):
        ledger.credit("u-1", 1, f"k-{i}")

    balance = ledger.get_balance("u-1")
    assert balance.balance == 5
    assert [op.idempotency_key for op in balance.applied] == ["k-2", "k-3", "k-4"]
    assert balance.applied[-1].balance_after == 5
    # Versions 2 and 3 belonged to the evicted k-0 and k-1.
    assert [op.version for op in balance.applied] == [4, 5, 6]
    assert balance.evicted_version == 3
    assert balance.covers_since(3)
    assert not balance.covers_since(2)


def test_key_that_may_have_been_evicted_is_refused(memory_store: InMemoryStore) -> None:
    ledger = PointLedger(memory_store, recent_operations=3)
    for i in range(5):
        ledger.credit("u-1", 1, f"k-{i}")

    with pytest.raises(ReplayWindowExceeded):
        ledger.credit("u-1", 10, "k-late", applied_after=2)

    assert ledger.get_balance("u-1").balance == 5


def test_key_within_the_window_is_checked_and_applied(memory_store: InMemoryStore) -> None:
    ledger = PointLedger(memory_store, recent_operations=3)
    for i in range(5):
        ledger.credit("u-1", 1, f"k-{i}")

    assert ledger.credit("u-1", 1, "k-4", applied_after=3) == 5
    assert ledger.credit("u-1", 10, "k-late", applied_after=3) == 15


def test_applied_after_for_a_new_user_is_accepted(ledger: PointLedger) -> None:
    assert ledger.credit("u-1", 10, "k-1", applied_after=0) == 10


def test_recent_operations_must_be_positive(memory_store: InMemoryStore) -> None:
    with pytest.raises(InvalidRequest):
        PointLedger(memory_store, recent_operations=0)


def test_retry_policy_from_settings(test_settings) -> None:
    policy = RetryPolicy.from_settings(test_settings)
    assert policy.max_attempts == test_settings.ledger_max_attempts
    assert policy.backoff_cap_seconds == 0.0


def test_concurrent_credits_are_all_applied(memory_store: InMemoryStore) -> None:
    workers = 8
    ledger = PointLedger(memory_store, retry_policy=RetryPolicy(max_attempts=workers, **NO_BACKOFF))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(lambda i: ledger.credit("u-1", 10, f"k-{i}"), range(workers)))

    balance = ledger.get_balance("u-1")
    assert balance.balance == 10 * workers
    assert len(balance.applied) == workers


def test_concurrent_debits_never_go_negative(memory_store: InMemoryStore) -> None:
    workers = 8
    ledger = PointLedger(memory_store, retry_policy=RetryPolicy(max_attempts=workers, **NO_BACKOFF))
    ledger.credit("u-1", 100, "seed")

    def spend(i: int) -> bool:
        try:
            ledger.debit("u-1", 30, f"spend-{i}")
            return True
        except InsufficientBalance:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(spend, range(workers)))

    assert results.count(True) == 3
    assert ledger.get_balance("u-1").balance == 10
