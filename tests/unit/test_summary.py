from __future__ import annotations

import pytest

from achievement_points.domain.models import AchievementRecord, achievement_key
from achievement_points.errors import InsufficientBalance
from achievement_points.services.achievements import AchievementService
from achievement_points.services.ledger import PointLedger
from achievement_points.services.rewards import RewardService
from achievement_points.services.summary import summarize_points
from achievement_points.store.memory import InMemoryStore


def test_summary_of_unknown_user_is_empty(memory_store: InMemoryStore) -> None:
    summary = summarize_points(memory_store, "nobody")

    assert summary.balance == 0
    assert summary.expected_balance == 0
    assert summary.in_sync


def test_balance_is_conserved_across_awards_and_redemptions(
    memory_store: InMemoryStore,
    achievements: AchievementService,
    rewards: RewardService,
) -> None:
    achievements.complete_achievement("u-1", "first-login", 50)
    achievements.complete_achievement("u-1", "ten-logins", 70)
    achievements.complete_achievement("u-1", "first-login", 50)
    rewards.redeem("u-1", "mug", "req-1")
    rewards.redeem("u-1", "sticker", "req-2")
    rewards.redeem("u-1", "sticker", "req-2")
    with pytest.raises(InsufficientBalance):
        rewards.redeem("u-1", "mug", "req-3")

    summary = summarize_points(memory_store, "u-1")

    assert summary.credited_achievements == 2
    assert summary.credited_points == 120
    assert summary.redemptions == 2
    assert summary.points_spent == 90
    assert summary.balance == 30
    assert summary.difference == 0
    assert summary.in_sync


def test_pending_achievement_explains_the_gap(memory_store: InMemoryStore, ledger: PointLedger) -> None:
    record = AchievementRecord.pending("u-1", "first-login", 50)
    memory_store.put_if_absent(achievement_key("u-1", "first-login"), record.to_value())
    ledger.credit("u-1", 50, record.idempotency_key)

    summary = summarize_points(memory_store, "u-1")

    assert summary.pending_achievements == 1
    assert summary.pending_points == 50
    assert summary.balance == 50
    assert summary.difference == -50
    assert not summary.in_sync


def test_summary_ignores_other_users(memory_store: InMemoryStore, achievements: AchievementService) -> None:
    achievements.complete_achievement("u-1", "first-login", 50)
    achievements.complete_achievement("u-2", "first-login", 10)

    assert summarize_points(memory_store, "u-2").credited_points == 10
