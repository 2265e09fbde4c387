from __future__ import annotations

"""Fold completion and skip outcomes into a user's behavioral memory."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .models import AdaptationNote, DomainSuccessPattern, Quest, RecentCompletion, User


SUCCESS_NOTE_RATE = 0.8
MORNING_END_HOUR = 12
AFTERNOON_END_HOUR = 17


@dataclass(frozen=True)
class OutcomeResult:
    completed: bool = False
    skipped: bool = False
    time_taken: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"completed": self.completed, "skipped": self.skipped, "time_taken": self.time_taken}


def time_of_day(moment: datetime) -> str:
    if moment.hour < MORNING_END_HOUR:
        return "morning"
    if moment.hour < AFTERNOON_END_HOUR:
        return "afternoon"
    return "evening"


def _add_theme(themes: list[str], title: str) -> None:
    theme = title.lower()
    if theme not in themes:
        themes.append(theme)


def _running_mean(current: float, count: int, sample: float) -> float:
    return (current * (count - 1) + sample) / count


def update_memory(user: User, quest: Quest, result: OutcomeResult, *, now: datetime) -> User:
    """Apply one outcome to `user.quest_memory` in place and return the user.

    The caller owns persistence; the service writes the returned user with a
    single conditional put so a lost race re-runs this function on fresh state.
    """

    memory = user.quest_memory
    stamp = now.isoformat()
    domain = quest.memory_domain

    pattern = memory.success_patterns.get(domain)
    if pattern is None:
        pattern = DomainSuccessPattern()
        memory.success_patterns[domain] = pattern

    pattern.total_attempts += 1
    pattern.last_attempt = stamp

    if result.completed:
        pattern.completed += 1
        _add_theme(memory.completed_themes, quest.title)
        if result.time_taken:
            pattern.average_completion_time = _running_mean(
                pattern.average_completion_time, pattern.completed, result.time_taken
            )
            memory.timed_completions += 1
            memory.average_completion_time = _running_mean(
                memory.average_completion_time, memory.timed_completions, result.time_taken
            )
        pattern.preferred_time = time_of_day(now)
    elif result.skipped:
        _add_theme(memory.avoided_themes, quest.title)

    pattern.rate = pattern.completed / pattern.total_attempts if pattern.total_attempts else 0.0

    memory.push_recent(
        RecentCompletion(
            quest_id=quest.id,
            domain=domain,
            difficulty=quest.difficulty,
            completed_at=stamp if result.completed else None,
            time_taken=result.time_taken or 0,
            skipped=result.skipped,
        )
    )

    if result.completed and pattern.rate > SUCCESS_NOTE_RATE:
        memory.push_note(
            AdaptationNote(
                note=f"Strong performance in {domain} ({round(pattern.rate * 100)}% success rate)",
                type="success",
                created_at=stamp,
            )
        )
    if result.skipped:
        memory.push_note(
            AdaptationNote(
                note=f"Skipped {domain} quest ({quest.difficulty} difficulty). Consider easier alternatives.",
                type="skip",
                created_at=stamp,
            )
        )
    return user
