"""
Per-user points aggregation.

Reads one user partition and compares the balance with what the recorded
achievements and redemptions say it should be. Records are read one by one
without a snapshot, so the figures are only exact when no operation for the
user is in flight.
"""

from __future__ import annotations

from achievement_points.domain.models import (
    ACHIEVEMENT_SORT_PREFIX,
    BALANCE_SORT_KEY,
    REDEMPTION_SORT_PREFIX,
    AchievementRecord,
    PointBalance,
    PointSummary,
    RedemptionRecord,
    user_partition,
)
from achievement_points.services.validation import require_text
from achievement_points.store.abstract import KeyValueStore


def summarize_points(store: KeyValueStore, user_id: str) -> PointSummary:
    require_text("user_id", user_id)
    totals = {
        "credited_achievements": 0,
        "credited_points": 0,
        "pending_achievements": 0,
        "pending_points": 0,
        "redemptions": 0,
        "points_spent": 0,
        "balance": 0,
    }
    for item in store.query(user_partition(user_id)):
        sort = item.key.sort
        if sort == BALANCE_SORT_KEY:
            totals["balance"] = PointBalance.from_item(item).balance
        elif sort.startswith(ACHIEVEMENT_SORT_PREFIX):
            achievement = AchievementRecord.from_item(item)
            if achievement.is_credited:
                totals["credited_achievements"] += 1
                totals["credited_points"] += achievement.points
            else:
                totals["pending_achievements"] += 1
                totals["pending_points"] += achievement.points
        elif sort.startswith(REDEMPTION_SORT_PREFIX):
            redemption = RedemptionRecord.from_item(item)
            totals["redemptions"] += 1
            totals["points_spent"] += redemption.points_spent
    return PointSummary(user_id=user_id, **totals)


__all__ = ["summarize_points"]
