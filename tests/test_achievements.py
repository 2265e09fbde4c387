from __future__ import annotations

from datetime import UTC, datetime

from auraquest.achievements import ACHIEVEMENT_RULES, available_achievements, check_achievements
from auraquest.models import User


NOW = datetime(2026, 3, 9, 18, 0, tzinfo=UTC)


def _user(xp: int = 0, streak: int = 0) -> User:
    user = User(id="u1")
    user.stats.update({"xp": xp, "level": xp // 1000 + 1, "current_streak": streak})
    return user


def test_one_completion_can_unlock_several() -> None:
    user = _user(xp=900, streak=7)

    unlocked = check_achievements(user, completed=1, perfect=1, now=NOW, xp_per_level=1000)

    assert [item.type for item in unlocked] == ["first_quest", "streak_warrior"]
    assert user.stats["xp"] == 900 + 50 + 250
    assert user.stats["level"] == 2
    assert unlocked[1].current == 7
    assert unlocked[1].unlocked_at == "2026-03-09T18:00:00+00:00"


def test_bonus_levels_can_unlock_rising_star_on_the_next_check() -> None:
    user = _user(xp=8900)
    assert [item.type for item in check_achievements(user, completed=1, perfect=0, now=NOW, xp_per_level=1000)] == [
        "first_quest"
    ]

    user.stats["xp"] = 9000
    user.stats["level"] = 10
    unlocked = check_achievements(user, completed=2, perfect=0, now=NOW, xp_per_level=1000)

    assert [item.type for item in unlocked] == ["level_up"]
    assert check_achievements(user, completed=3, perfect=0, now=NOW, xp_per_level=1000) == []


def test_available_achievements_flags_owned_rules() -> None:
    user = _user()
    check_achievements(user, completed=1, perfect=0, now=NOW, xp_per_level=1000)

    available = available_achievements(user)

    assert [item["type"] for item in available] == [rule.type for rule in ACHIEVEMENT_RULES]
    assert [item["type"] for item in available if item["unlocked"]] == ["first_quest"]
    assert available[0]["xp_bonus"] == 50
