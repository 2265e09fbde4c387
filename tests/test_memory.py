from __future__ import annotations

from datetime import UTC, datetime, timedelta

from auraquest.memory import OutcomeResult, time_of_day, update_memory
from auraquest.models import ADAPTATION_NOTES_LIMIT, RECENT_COMPLETIONS_LIMIT, Quest, User


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


def _quest(domain: str | None = "Fitness", title: str = "Morning Run", **overrides) -> Quest:  # type: ignore[no-untyped-def]
    base = {"id": f"q-{title.lower().replace(' ', '-')}", "user_id": "u1", "title": title, "domain": domain}
    base.update(overrides)
    return Quest(**base)


def test_skip_records_avoided_theme_without_completion() -> None:
    user = User(id="u1")
    quest = _quest(domain="Career", title="Update Resume", difficulty="Hard")

    update_memory(user, quest, OutcomeResult(skipped=True), now=NOW)

    memory = user.quest_memory
    pattern = memory.success_patterns["Career"]
    assert memory.avoided_themes == ["update resume"]
    assert memory.completed_themes == []
    assert pattern.total_attempts == 1
    assert pattern.completed == 0
    assert pattern.rate == 0
    assert memory.recent_completions[0].skipped is True
    assert memory.recent_completions[0].completed_at is None
    assert memory.adaptation_notes[0].type == "skip"
    assert memory.adaptation_notes[0].note == "Skipped Career quest (Hard difficulty). Consider easier alternatives."


def test_completion_updates_pattern_and_running_means() -> None:
    user = User(id="u1")

    update_memory(user, _quest(), OutcomeResult(completed=True, time_taken=20), now=NOW)
    update_memory(user, _quest(), OutcomeResult(completed=True, time_taken=40), now=NOW)

    memory = user.quest_memory
    pattern = memory.success_patterns["Fitness"]
    assert pattern.total_attempts == 2
    assert pattern.completed == 2
    assert pattern.rate == 1.0
    assert pattern.average_completion_time == 30
    assert pattern.preferred_time == "morning"
    assert pattern.last_attempt == NOW.isoformat()
    assert memory.completed_themes == ["morning run"]
    assert memory.average_completion_time == 30
    assert memory.timed_completions == 2
    assert memory.adaptation_notes[0].note == "Strong performance in Fitness (100% success rate)"


def test_untimed_completion_leaves_average_alone() -> None:
    user = User(id="u1")
    update_memory(user, _quest(), OutcomeResult(completed=True, time_taken=20), now=NOW)
    update_memory(user, _quest(), OutcomeResult(completed=True), now=NOW)

    pattern = user.quest_memory.success_patterns["Fitness"]
    assert pattern.completed == 2
    assert pattern.average_completion_time == 20
    assert user.quest_memory.timed_completions == 1
    assert user.quest_memory.recent_completions[0].time_taken == 0


def test_domain_falls_back_to_category() -> None:
    user = User(id="u1")
    update_memory(user, _quest(domain=None, category="Learning"), OutcomeResult(completed=True), now=NOW)
    assert list(user.quest_memory.success_patterns) == ["Learning"]
    assert user.quest_memory.recent_completions[0].domain == "Learning"


def test_rate_tracks_completed_over_attempts() -> None:
    user = User(id="u1")
    outcomes = [True, False, True, True, False, True]
    for completed in outcomes:
        result = OutcomeResult(completed=completed, skipped=not completed, time_taken=15 if completed else None)
        update_memory(user, _quest(), result, now=NOW)
        pattern = user.quest_memory.success_patterns["Fitness"]
        assert pattern.rate == pattern.completed / pattern.total_attempts

    assert user.quest_memory.success_patterns["Fitness"].completed == 4


def test_no_success_note_below_threshold() -> None:
    user = User(id="u1")
    update_memory(user, _quest(), OutcomeResult(skipped=True), now=NOW)
    update_memory(user, _quest(), OutcomeResult(completed=True), now=NOW)
    # rate 0.5: only the skip note exists
    assert [note.type for note in user.quest_memory.adaptation_notes] == ["skip"]


def test_buffers_stay_bounded_and_most_recent_first() -> None:
    user = User(id="u1")
    for idx in range(60):
        quest = _quest(title=f"Quest {idx}")
        update_memory(user, quest, OutcomeResult(completed=True, time_taken=10), now=NOW + timedelta(minutes=idx))

    memory = user.quest_memory
    assert len(memory.recent_completions) == RECENT_COMPLETIONS_LIMIT
    assert len(memory.adaptation_notes) == ADAPTATION_NOTES_LIMIT
    assert memory.recent_completions[0].quest_id == "q-quest-59"
    assert memory.recent_completions[-1].quest_id == "q-quest-40"


def test_buffers_survive_round_trip() -> None:
    user = User(id="u1")
    for idx in range(25):
        update_memory(user, _quest(title=f"Quest {idx}"), OutcomeResult(skipped=True), now=NOW)

    restored = User.from_dict(user.to_dict())
    assert len(restored.quest_memory.recent_completions) == RECENT_COMPLETIONS_LIMIT
    assert restored.quest_memory.recent_completions[0].quest_id == "q-quest-24"
    assert restored.quest_memory.avoided_themes[-1] == "quest 24"


def test_time_of_day_buckets() -> None:
    assert time_of_day(NOW.replace(hour=0)) == "morning"
    assert time_of_day(NOW.replace(hour=11, minute=59)) == "morning"
    assert time_of_day(NOW.replace(hour=12)) == "afternoon"
    assert time_of_day(NOW.replace(hour=16, minute=59)) == "afternoon"
    assert time_of_day(NOW.replace(hour=17)) == "evening"
