from __future__ import annotations

"""Read-only analysis over quest memory: insights, impact scoring and gentler alternatives."""

import random
from typing import Any, Iterable

from .models import Insight, Quest, User, parse_minutes


MAX_INSIGHTS = 3

STRENGTH_RATE = 0.8
STRENGTH_MIN_ATTEMPTS = 5
OPPORTUNITY_RATE = 0.5
OPPORTUNITY_MIN_ATTEMPTS = 3
TIME_PATTERN_WINDOW = 10
QUICK_QUEST_MINUTES = 30

HIGH_SUCCESS_RATE = 0.7
FRESHNESS_WINDOW = 5
MOMENTUM_WINDOW = 7
MOMENTUM_MIN_MATCHES = 3
DEFAULT_TIME_AVAILABLE = 30

SUCCESS_POINTS = 30
FRESHNESS_POINTS = 20
MOMENTUM_POINTS = 25
DIFFICULTY_POINTS = 15
FEASIBILITY_POINTS = 10

GENTLER_DIFFICULTY = {"Hard": "Medium", "Medium": "Easy"}
GENTLER_TIME_REDUCTION = 0.5
ENCOURAGEMENTS = (
    "This is a gentler start. You got this! 💪",
    "Smaller steps, same direction 🚀",
    "Progress over perfection ✨",
)

MOMENTUM_TIERS = (
    (30, "👑 Monthly legend - you're unstoppable!"),
    (14, "💪 Two weeks strong - you're building habits!"),
    (7, "⭐ Week warrior - that's consistency!"),
    (3, "🔥 You're on fire!"),
)
DEFAULT_MOMENTUM = "🌟 Great start!"


def _domain_insights(user: User) -> list[Insight]:
    insights: list[Insight] = []
    for domain, pattern in user.quest_memory.success_patterns.items():
        percent = round(pattern.rate * 100)
        if pattern.rate > STRENGTH_RATE and pattern.total_attempts >= STRENGTH_MIN_ATTEMPTS:
            insights.append(
                Insight(
                    type="strength",
                    message=f"Your {domain} consistency is incredible! {percent}% success rate",
                    action="Keep that momentum going 💪",
                    domain=domain,
                )
            )
        elif pattern.rate < OPPORTUNITY_RATE and pattern.total_attempts >= OPPORTUNITY_MIN_ATTEMPTS:
            insights.append(
                Insight(
                    type="opportunity",
                    message=f"{domain} quests seem challenging ({percent}% completion)",
                    action="Try easier difficulty or shorter time frames",
                    domain=domain,
                )
            )
    return insights


def _time_pattern_insight(user: User) -> Insight | None:
    recent = list(user.quest_memory.recent_completions)[:TIME_PATTERN_WINDOW]
    if not recent:
        return None
    average = sum(entry.time_taken or 0 for entry in recent) / len(recent)
    if not 0 < average < QUICK_QUEST_MINUTES:
        return None
    quick = sum(1 for entry in recent if (entry.time_taken or 0) < QUICK_QUEST_MINUTES)
    return Insight(
        type="pattern",
        message=f"You complete {round(quick / len(recent) * 100)}% of quests under 30 minutes",
        action="Focus on shorter, high-impact tasks",
    )


def _unexplored_insight(user: User) -> Insight | None:
    explored = set(user.quest_memory.success_patterns)
    for category in user.goal_categories:
        if category not in explored:
            return Insight(
                type="opportunity",
                message=f"You haven't tried {category} quests yet",
                action="Ready to explore something new?",
                domain=category,
            )
    return None


def get_insights(user: User) -> list[Insight]:
    """Return up to three insights; per-domain findings outrank time and exploration hints."""

    insights = _domain_insights(user)
    for extra in (_time_pattern_insight(user), _unexplored_insight(user)):
        if extra is not None:
            insights.append(extra)
    return insights[:MAX_INSIGHTS]


def score_impact(quest: Quest, user: User) -> int:
    """Additive relevance score used to rank one user's active quests against each other."""

    memory = user.quest_memory
    domain = quest.memory_domain
    recent = list(memory.recent_completions)
    score = 0

    pattern = memory.success_patterns.get(domain)
    if pattern is not None and pattern.rate > HIGH_SUCCESS_RATE:
        score += SUCCESS_POINTS

    if domain not in {entry.domain for entry in recent[:FRESHNESS_WINDOW]}:
        score += FRESHNESS_POINTS

    # Filter first, then take the window: counts hits among the first seven matching entries.
    streak = [entry for entry in recent if entry.domain == domain and not entry.skipped][:MOMENTUM_WINDOW]
    if len(streak) >= MOMENTUM_MIN_MATCHES:
        score += MOMENTUM_POINTS

    if quest.difficulty == memory.preferred_difficulty:
        score += DIFFICULTY_POINTS

    required = parse_minutes(quest.user_inputs.get("time_available")) or DEFAULT_TIME_AVAILABLE
    if required <= memory.average_completion_time:
        score += FEASIBILITY_POINTS

    return score


def select_main_quest(quests: Iterable[Quest], user: User) -> tuple[Quest, int] | None:
    """Pick the highest-scoring active quest; earlier (newer) quests win ties."""

    best: tuple[Quest, int] | None = None
    for quest in quests:
        if not quest.is_active:
            continue
        score = score_impact(quest, user)
        if best is None or score > best[1]:
            best = (quest, score)
    return best


def gentler_alternative(quest: Quest, rng: random.Random) -> dict[str, Any]:
    minutes = parse_minutes(quest.user_inputs.get("time_available")) or DEFAULT_TIME_AVAILABLE
    return {
        "difficulty": GENTLER_DIFFICULTY.get(quest.difficulty, "Easy"),
        "time_reduction": GENTLER_TIME_REDUCTION,
        "suggested_minutes": max(1, int(minutes * GENTLER_TIME_REDUCTION)),
        "task_simplification": True,
        "encouragement": rng.choice(ENCOURAGEMENTS),
    }


def momentum_message(streak: int) -> str:
    for threshold, message in MOMENTUM_TIERS:
        if streak >= threshold:
            return message
    return DEFAULT_MOMENTUM
