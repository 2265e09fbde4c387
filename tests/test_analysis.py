from __future__ import annotations

import random

from auraquest.analysis import (
    ENCOURAGEMENTS,
    gentler_alternative,
    get_insights,
    momentum_message,
    score_impact,
    select_main_quest,
)
from auraquest.models import DomainSuccessPattern, Quest, RecentCompletion, User


def _pattern(attempts: int, completed: int) -> DomainSuccessPattern:
    return DomainSuccessPattern(total_attempts=attempts, completed=completed, rate=completed / attempts)


def _recent(domain: str, *, time_taken: float = 0, skipped: bool = False) -> RecentCompletion:
    return RecentCompletion(
        quest_id=f"{domain}-q",
        domain=domain,
        difficulty="Medium",
        completed_at=None if skipped else "2026-03-01T10:00:00+00:00",
        time_taken=time_taken,
        skipped=skipped,
    )


def _user(categories: list[str] | None = None) -> User:
    user = User(id="u1")
    user.onboarding["goal_categories"] = categories or []
    return user


def _quest(quest_id: str, domain: str, difficulty: str = "Medium", status: str = "pending", minutes: str = "30") -> Quest:
    return Quest(
        id=quest_id,
        user_id="u1",
        title=f"{domain} quest",
        domain=domain,
        difficulty=difficulty,
        status=status,
        user_inputs={"time_available": minutes},
    )


def test_strength_insight_for_consistent_domain() -> None:
    user = _user()
    user.quest_memory.success_patterns["Fitness"] = _pattern(9, 8)

    insights = get_insights(user)

    assert insights[0].type == "strength"
    assert insights[0].domain == "Fitness"
    assert insights[0].message == "Your Fitness consistency is incredible! 89% success rate"


def test_opportunity_insight_for_struggling_domain() -> None:
    user = _user()
    user.quest_memory.success_patterns["Career"] = _pattern(3, 1)
    user.quest_memory.success_patterns["Health"] = _pattern(2, 0)

    insights = get_insights(user)

    assert [(item.type, item.domain) for item in insights] == [("opportunity", "Career")]
    assert insights[0].message == "Career quests seem challenging (33% completion)"


def test_strength_needs_five_attempts() -> None:
    user = _user()
    user.quest_memory.success_patterns["Fitness"] = _pattern(4, 4)
    assert get_insights(user) == []


def test_time_pattern_insight_over_recent_window() -> None:
    user = _user()
    for minutes in (10, 20, 45, 15):
        user.quest_memory.push_recent(_recent("Fitness", time_taken=minutes))

    insights = get_insights(user)

    assert len(insights) == 1
    assert insights[0].type == "pattern"
    assert insights[0].domain is None
    assert insights[0].message == "You complete 75% of quests under 30 minutes"


def test_no_time_pattern_when_average_is_long_or_zero() -> None:
    user = _user()
    user.quest_memory.push_recent(_recent("Fitness", time_taken=50))
    assert get_insights(user) == []

    skipped_only = _user()
    skipped_only.quest_memory.push_recent(_recent("Fitness", skipped=True))
    assert get_insights(skipped_only) == []


def test_unexplored_category_insight() -> None:
    user = _user(["Fitness", "Finance", "Health"])
    user.quest_memory.success_patterns["Fitness"] = _pattern(1, 1)

    insights = get_insights(user)

    assert [item.message for item in insights] == ["You haven't tried Finance quests yet"]
    assert insights[0].type == "opportunity"


def test_insights_capped_at_three_in_step_order() -> None:
    user = _user(["Mindfulness"])
    for domain in ("Fitness", "Career", "Learning", "Health"):
        user.quest_memory.success_patterns[domain] = _pattern(10, 9)
    user.quest_memory.push_recent(_recent("Fitness", time_taken=10))

    insights = get_insights(user)

    assert len(insights) == 3
    assert [item.domain for item in insights] == ["Fitness", "Career", "Learning"]


def test_impact_score_prefers_proven_momentum_domain() -> None:
    user = _user()
    memory = user.quest_memory
    memory.preferred_difficulty = "Medium"
    memory.success_patterns["Fitness"] = _pattern(5, 4)
    for _ in range(3):
        memory.push_recent(_recent("Fitness", time_taken=20))

    quest_a = _quest("a", "Fitness", "Medium")
    quest_b = _quest("b", "Finance", "Hard")

    # success + momentum + difficulty; Fitness is not fresh
    assert score_impact(quest_a, user) == 30 + 25 + 15
    # freshness only
    assert score_impact(quest_b, user) == 20

    winner, score = select_main_quest([quest_b, quest_a], user)
    assert winner.id == "a"
    assert score == 70


def test_momentum_ignores_skips_and_feasibility_uses_average_time() -> None:
    user = _user()
    memory = user.quest_memory
    memory.preferred_difficulty = "Hard"
    for _ in range(3):
        memory.push_recent(_recent("Learning", skipped=True))
    memory.average_completion_time = 25

    assert score_impact(_quest("q", "Learning", minutes="20"), user) == 10
    assert score_impact(_quest("q", "Learning", minutes="45 minutes"), user) == 0


def test_domainless_quest_scores_under_general_key() -> None:
    user = _user()
    memory = user.quest_memory
    memory.preferred_difficulty = "Hard"
    memory.success_patterns["General"] = _pattern(5, 4)
    for _ in range(3):
        memory.push_recent(_recent("General", time_taken=40))

    quest = Quest(id="g", user_id="u1", title="Tidy the desk", user_inputs={"time_available": "30"})

    # success + momentum; "General" was seen recently so no freshness bonus
    assert score_impact(quest, user) == 30 + 25


def test_select_main_quest_skips_inactive_and_keeps_first_on_ties() -> None:
    user = _user()
    newest = _quest("newest", "Fitness")
    older = _quest("older", "Health")
    done = _quest("done", "Career", status="completed")

    winner, _ = select_main_quest([done, newest, older], user)

    assert winner.id == "newest"
    assert select_main_quest([done], user) is None
    assert select_main_quest([], user) is None


def test_gentler_alternative_steps_down() -> None:
    rng = random.Random(3)
    hard = gentler_alternative(_quest("h", "Fitness", "Hard", minutes="40"), rng)
    assert hard["difficulty"] == "Medium"
    assert hard["time_reduction"] == 0.5
    assert hard["suggested_minutes"] == 20
    assert hard["task_simplification"] is True
    assert hard["encouragement"] in ENCOURAGEMENTS

    assert gentler_alternative(_quest("m", "Fitness", "Medium"), rng)["difficulty"] == "Easy"
    assert gentler_alternative(_quest("e", "Fitness", "Easy"), rng)["difficulty"] == "Easy"


def test_gentler_alternative_encouragement_is_seedable() -> None:
    quest = _quest("q", "Fitness")
    first = gentler_alternative(quest, random.Random(42))["encouragement"]
    again = gentler_alternative(quest, random.Random(42))["encouragement"]
    assert first == again

    seen = {gentler_alternative(quest, random.Random(seed))["encouragement"] for seed in range(50)}
    assert seen == set(ENCOURAGEMENTS)


def test_momentum_message_tiers() -> None:
    assert momentum_message(0) == "🌟 Great start!"
    assert momentum_message(3) == "🔥 You're on fire!"
    assert momentum_message(7) == "⭐ Week warrior - that's consistency!"
    assert momentum_message(14) == "💪 Two weeks strong - you're building habits!"
    assert momentum_message(45) == "👑 Monthly legend - you're unstoppable!"
