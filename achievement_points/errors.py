"""
Error taxonomy for the achievement points core.

Errors are split by what a caller should do about them:

- ``BusinessRuleError``: terminal rejection, retrying the same request will
  fail the same way (insufficient balance, unknown reward, bad input).
- ``TransientError``: the request may succeed if retried later (store outage,
  exhausted conflict retries, cancelled operation).
- ``StoreError``: raised by store backends. ``AlreadyExists`` and
  ``VersionConflict`` are conditional-write outcomes that the services resolve
  internally; they only escape as ``RetryExhausted``.
"""

from __future__ import annotations

from typing import Any, Optional


class PointsError(Exception):
    """Base class for every error raised by the core."""

    transient: bool = False


class BusinessRuleError(PointsError):
    """A request rejected by a business rule; never retried."""


class TransientError(PointsError):
    """A failure the caller may retry with backoff."""

    transient = True


class StoreError(PointsError):
    """Base class for store capability failures."""


class AlreadyExists(StoreError):
    def __init__(self, key: Any) -> None:
        super().__init__(f"record {key} already exists")
        self.key = key


class VersionConflict(StoreError):
    def __init__(self, key: Any, expected_version: int) -> None:
        super().__init__(f"record {key} is no longer at version {expected_version}")
        self.key = key
        self.expected_version = expected_version


class StoreUnavailable(StoreError, TransientError):
    """Network or backend failure while talking to the store."""

    transient = True


class InvalidRequest(BusinessRuleError, ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"invalid {field}: {message}")
        self.field = field


class InsufficientBalance(BusinessRuleError):
    def __init__(self, user_id: str, balance: int, requested: int) -> None:
        super().__init__(
            f"user {user_id} has {balance} points, {requested} requested"
        )
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class RewardNotFound(BusinessRuleError):
    def __init__(self, reward_id: str) -> None:
        super().__init__(f"reward {reward_id} not found")
        self.reward_id = reward_id


class RewardOutOfStock(BusinessRuleError):
    def __init__(self, reward_id: str) -> None:
        super().__init__(f"reward {reward_id} is out of stock")
        self.reward_id = reward_id


class ReplayWindowExceeded(BusinessRuleError):
    """
    An idempotency key may have been applied and then evicted from the window.

    Applying it again could double count, so the ledger refuses; the record
    needs manual reconciliation.
    """

    def __init__(self, idempotency_key: str, applied_after: int, evicted_version: int) -> None:
        super().__init__(
            f"idempotency key {idempotency_key!r} cannot be checked: operations after "
            f"version {applied_after} were evicted up to version {evicted_version}"
        )
        self.idempotency_key = idempotency_key
        self.applied_after = applied_after
        self.evicted_version = evicted_version


class RetryExhausted(TransientError):
    def __init__(self, operation: str, user_id: str, attempts: int) -> None:
        super().__init__(
            f"{operation} for user {user_id} gave up after {attempts} conflicting attempts"
        )
        self.operation = operation
        self.user_id = user_id
        self.attempts = attempts


class OperationCancelled(TransientError):
    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(reason or "operation cancelled")


__all__ = [
    "PointsError",
    "BusinessRuleError",
    "TransientError",
    "StoreError",
    "AlreadyExists",
    "VersionConflict",
    "StoreUnavailable",
    "InvalidRequest",
    "InsufficientBalance",
    "RewardNotFound",
    "RewardOutOfStock",
    "ReplayWindowExceeded",
    "RetryExhausted",
    "OperationCancelled",
]
