"""
Services package for the achievement points core.

The ledger owns balance mutation; the achievement and reward services drive
credits and debits into it.
"""

from achievement_points.services.achievements import (
    AchievementCompletion,
    AchievementService,
    CompletionOutcome,
)
from achievement_points.services.ledger import PointLedger, RetryPolicy
from achievement_points.services.rewards import RedemptionOutcome, RewardCatalog, RewardService
from achievement_points.services.summary import summarize_points

__all__ = [
    "AchievementCompletion",
    "AchievementService",
    "CompletionOutcome",
    "PointLedger",
    "RetryPolicy",
    "RedemptionOutcome",
    "RewardCatalog",
    "RewardService",
    "summarize_points",
]
