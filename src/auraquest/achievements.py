from __future__ import annotations

"""Milestone achievements unlocked from completion counts, streaks and level."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .models import Achievement, User


@dataclass(frozen=True)
class AchievementRule:
    type: str
    name: str
    description: str
    icon: str
    rarity: str
    xp_bonus: int
    target: int
    metric: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "rarity": self.rarity,
            "xp_bonus": self.xp_bonus,
            "target": self.target,
        }


# Checked in this order; a single completion can unlock several.
ACHIEVEMENT_RULES = (
    AchievementRule("first_quest", "First Steps", "Complete your first quest", "🎯", "common", 50, 1, "completed"),
    AchievementRule("quest_master", "Quest Master", "Complete 50 quests", "👑", "epic", 500, 50, "completed"),
    AchievementRule("streak_warrior", "Streak Warrior", "Maintain a 7-day streak", "🔥", "rare", 250, 7, "streak"),
    AchievementRule("consistency_king", "Consistency King", "Maintain a 30-day streak", "👑", "legendary", 1000, 30, "streak"),
    AchievementRule("level_up", "Rising Star", "Reach level 10", "⭐", "epic", 500, 10, "level"),
    AchievementRule(
        "perfectionist", "Perfectionist", "Complete 20 quests with 100% task completion", "💯", "epic", 400, 20, "perfect"
    ),
)


def check_achievements(user: User, *, completed: int, perfect: int, now: datetime, xp_per_level: int) -> list[Achievement]:
    """Unlock every rule the user now meets, award its XP bonus in place, return the new ones."""

    metrics = {
        "completed": completed,
        "perfect": perfect,
        "streak": int(user.stats.get("current_streak", 0)),
        "level": int(user.stats.get("level", 0)),
    }
    owned = {item.type for item in user.achievements}
    unlocked: list[Achievement] = []
    for rule in ACHIEVEMENT_RULES:
        progress = metrics[rule.metric]
        if rule.type in owned or progress < rule.target:
            continue
        achievement = Achievement(
            type=rule.type,
            name=rule.name,
            description=rule.description,
            icon=rule.icon,
            rarity=rule.rarity,
            xp_bonus=rule.xp_bonus,
            current=progress,
            target=rule.target,
            unlocked_at=now.isoformat(),
        )
        user.achievements.append(achievement)
        user.stats["xp"] = int(user.stats.get("xp", 0)) + rule.xp_bonus
        user.stats["level"] = user.stats["xp"] // xp_per_level + 1
        unlocked.append(achievement)
    return unlocked


def available_achievements(user: User) -> list[dict[str, Any]]:
    owned = {item.type for item in user.achievements}
    return [{**rule.to_dict(), "unlocked": rule.type in owned} for rule in ACHIEVEMENT_RULES]
