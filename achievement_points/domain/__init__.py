"""
Domain package for the achievement points core.

Exports the record models and key helpers shared by the services.
Keep this package focused on data definitions and validation concerns.
"""

from achievement_points.domain.models import (
    AchievementRecord,
    AchievementStatus,
    AppliedOperation,
    PointBalance,
    PointSummary,
    RedemptionRecord,
    RewardCatalogEntry,
)

__all__ = [
    "AchievementRecord",
    "AchievementStatus",
    "AppliedOperation",
    "PointBalance",
    "PointSummary",
    "RedemptionRecord",
    "RewardCatalogEntry",
]
