from __future__ import annotations

"""Quest lifecycle orchestration over a versioned document store."""

import hashlib
import math
import os
import random
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from .achievements import available_achievements, check_achievements
from .analysis import gentler_alternative, get_insights, momentum_message, select_main_quest
from .drafts import DraftRequest, DraftSource, DraftUnavailable, draft_source_from_env, fallback_draft
from .memory import OutcomeResult, update_memory
from .models import (
    DIFFICULTIES,
    QUEST_STATUSES,
    QUEST_TYPES,
    TERMINAL_STATUSES,
    Achievement,
    Quest,
    QuestDraft,
    Task,
    User,
    parse_minutes,
)
from .paths import data_home, ensure_home_dirs
from .redaction import secret_fields
from .rescope import rescope_quest, suggest_alternative
from .store import ConcurrentWriteError, DocumentStore, JsonFileStore, MemoryStore, validate_key
from .telemetry import TelemetryLogger
from .validator import UserContext, ValidationResult, validate_quest


USERS = "users"
QUESTS = "quests"

DEFAULT_MEMORY_RETRIES = 5
XP_PER_LEVEL = 1000
XP_BASE = {"daily": 50, "weekly": 200, "monthly": 800, "yearly": 5000}
XP_MULTIPLIER = {"Easy": 1.0, "Medium": 1.5, "Hard": 2.0}
QUEST_DURATION = {"weekly": timedelta(days=7), "monthly": timedelta(days=30), "yearly": timedelta(days=365)}
TIME_COMMITMENTS = ("15min", "30min", "1hour", "2hours", "Flexible")
TIME_COMMITMENT_MINUTES = {"15min": 15, "30min": 30, "1hour": 60, "2hours": 120, "Flexible": 120}
DEFAULT_BATCH_CATEGORY = "Personal Development"
MAX_BATCH_SIZE = 5
EDITABLE_FIELDS = ("title", "description", "tasks", "difficulty", "success_criteria")
RECENT_QUESTS_LIMIT = 5


class ServiceError(Exception):
    """Client-visible failure with a stable code and HTTP status."""

    status_code = 400

    def __init__(self, code: str, message: str, *, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class NotFoundError(ServiceError):
    status_code = 404


class NotAuthorizedError(ServiceError):
    status_code = 403


class InvalidTransitionError(ServiceError):
    status_code = 409


class AlreadyExistsError(ServiceError):
    status_code = 409


class ConcurrentMemoryUpdateError(ServiceError):
    status_code = 409


def _env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def xp_for(quest_type: str, difficulty: str) -> int:
    return math.floor(XP_BASE.get(quest_type, XP_BASE["daily"]) * XP_MULTIPLIER.get(difficulty, 1.0))


def end_date_for(quest_type: str, start: datetime) -> datetime:
    if quest_type in QUEST_DURATION:
        return start + QUEST_DURATION[quest_type]
    return start.replace(hour=23, minute=59, second=59, microsecond=0)


def apply_completion_stats(stats: dict[str, Any], xp_reward: int, today: str, yesterday: str) -> None:
    """Bump totals, xp, level and the daily streak for one completion."""

    stats["total_quests_completed"] = int(stats.get("total_quests_completed", 0)) + 1
    stats["xp"] = int(stats.get("xp", 0)) + xp_reward
    stats["level"] = stats["xp"] // XP_PER_LEVEL + 1

    last = stats.get("last_quest_completed_date")
    streak = int(stats.get("current_streak", 0))
    if last == today:
        streak = max(streak, 1)
    elif last == yesterday:
        streak += 1
    else:
        streak = 1
    stats["current_streak"] = streak
    stats["longest_streak"] = max(int(stats.get("longest_streak", 0)), streak)
    stats["last_quest_completed_date"] = today


def _task_specs(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        raise ValueError("tasks must be a list.")
    specs: list[dict[str, Any]] = []
    for idx, item in enumerate(raw):
        title = str(item.get("title") or "").strip() if isinstance(item, dict) else ""
        if not title:
            raise ValueError(f"tasks[{idx}] needs a title.")
        minutes = parse_minutes(item.get("estimated_time", item.get("estimatedTime")))
        if minutes < 0:
            raise ValueError(f"tasks[{idx}].estimated_time must be >= 0.")
        specs.append({"title": title, "description": str(item.get("description") or "").strip(), "estimated_time": minutes})
    return specs


@dataclass
class QuestService:
    """Generate, validate and track quests; adapt per-user memory from outcomes."""

    store: DocumentStore
    telemetry: TelemetryLogger
    draft_source: DraftSource
    now: Callable[[], datetime] = _utc_now
    rng: random.Random = field(default_factory=random.Random)
    memory_retries: int = DEFAULT_MEMORY_RETRIES
    home: Path | None = None

    @classmethod
    def create(cls, home: Path | None = None) -> "QuestService":
        """Build a file-backed service under the data home and log startup."""

        home = home or data_home()
        dirs = ensure_home_dirs(home)
        service = cls(
            store=JsonFileStore(dirs["store"], locks_root=dirs["locks"]),
            telemetry=TelemetryLogger(dirs["logs"] / "events.jsonl"),
            draft_source=draft_source_from_env(),
            memory_retries=_env_int("AURAQUEST_MEMORY_RETRIES", DEFAULT_MEMORY_RETRIES),
            home=home,
        )
        service.telemetry.log_event(
            "service.started",
            source="system",
            data={
                "home_path_hash": hashlib.sha256(str(home).encode("utf-8")).hexdigest(),
                "draft_source": service.draft_source.name,
            },
        )
        return service

    @classmethod
    def in_memory(cls, events_path: Path, **kwargs: Any) -> "QuestService":
        kwargs.setdefault("draft_source", draft_source_from_env())
        return cls(store=MemoryStore(), telemetry=TelemetryLogger(events_path), **kwargs)

    def _now_iso(self) -> str:
        return self.now().isoformat()

    def _emit(self, event_type: str, *, user_id: str | None, source: str, trace_id: str | None, data: dict[str, Any]) -> None:
        self.telemetry.log_event(event_type, actor_id=user_id, source=source, trace_id=trace_id, data=data)

    # Document access

    def _load_user(self, user_id: str) -> User:
        entry = self.store.get(USERS, validate_key(user_id))
        if entry is None:
            raise NotFoundError("USER_NOT_FOUND", f"User not found: {user_id}", user_id=user_id)
        return User.from_dict(entry[0])

    def _check_owner(self, doc: dict[str, Any], user_id: str, quest_id: str) -> Quest:
        quest = Quest.from_dict(doc)
        if quest.user_id != user_id:
            raise NotAuthorizedError("QUEST_NOT_OWNED", "Quest belongs to another user.", quest_id=quest_id)
        return quest

    def _load_quest(self, user_id: str, quest_id: str) -> tuple[Quest, int]:
        entry = self.store.get(QUESTS, validate_key(quest_id))
        if entry is None:
            raise NotFoundError("QUEST_NOT_FOUND", f"Quest not found: {quest_id}", quest_id=quest_id)
        return self._check_owner(entry[0], user_id, quest_id), entry[1]

    def _user_quests(self, user_id: str) -> list[Quest]:
        quests = [Quest.from_dict(doc) for doc, _ in self.store.list(QUESTS) if doc.get("user_id") == user_id]
        quests.sort(key=lambda quest: (quest.created_at or "", quest.sequence), reverse=True)
        return quests

    def _retrying_update(
        self,
        collection: str,
        key: str,
        apply: Callable[[dict[str, Any]], tuple[dict[str, Any], Any]],
        *,
        missing: ServiceError,
        source: str,
        trace_id: str | None,
        user_id: str | None,
    ) -> tuple[Any, dict[str, Any], int]:
        """Read, apply to a fresh copy, conditionally write; re-run `apply` on version conflicts.

        Returns `(apply result, prior document, new version)`.
        """

        for attempt in range(1, self.memory_retries + 1):
            entry = self.store.get(collection, key)
            if entry is None:
                raise missing
            prior, version = entry
            updated, result = apply(dict(prior))
            try:
                new_version = self.store.put(collection, key, updated, expected_version=version)
            except ConcurrentWriteError:
                self._emit(
                    "memory.conflict",
                    user_id=user_id,
                    source=source,
                    trace_id=trace_id,
                    data={"collection": collection, "attempt": attempt, "max_attempts": self.memory_retries},
                )
                continue
            return result, prior, new_version
        raise ConcurrentMemoryUpdateError(
            "CONCURRENT_UPDATE",
            f"Could not apply update to {collection}/{key} after {self.memory_retries} attempts.",
            hint="Retry the request.",
        )

    def _update_user(
        self,
        user_id: str,
        mutate: Callable[[User], Any],
        *,
        source: str,
        trace_id: str | None,
    ) -> tuple[User, Any]:
        def apply(doc: dict[str, Any]) -> tuple[dict[str, Any], Any]:
            user = User.from_dict(doc)
            outcome = mutate(user)
            return user.to_dict(), (user, outcome)

        (user, outcome), _, _ = self._retrying_update(
            USERS,
            validate_key(user_id),
            apply,
            missing=NotFoundError("USER_NOT_FOUND", f"User not found: {user_id}", user_id=user_id),
            source=source,
            trace_id=trace_id,
            user_id=user_id,
        )
        return user, outcome

    def _update_quest(
        self,
        user_id: str,
        quest_id: str,
        mutate: Callable[[Quest], Any],
        *,
        source: str,
        trace_id: str | None,
    ) -> tuple[Quest, Any, dict[str, Any], int]:
        def apply(doc: dict[str, Any]) -> tuple[dict[str, Any], Any]:
            quest = self._check_owner(doc, user_id, quest_id)
            outcome = mutate(quest)
            quest.updated_at = self._now_iso()
            return quest.to_dict(), (quest, outcome)

        (quest, outcome), prior, version = self._retrying_update(
            QUESTS,
            validate_key(quest_id),
            apply,
            missing=NotFoundError("QUEST_NOT_FOUND", f"Quest not found: {quest_id}", quest_id=quest_id),
            source=source,
            trace_id=trace_id,
            user_id=user_id,
        )
        return quest, outcome, prior, version

    def _restore_quest(self, quest_id: str, prior: dict[str, Any], *, user_id: str, source: str, trace_id: str | None) -> None:
        self._retrying_update(
            QUESTS,
            quest_id,
            lambda _doc: (prior, None),
            missing=NotFoundError("QUEST_NOT_FOUND", f"Quest not found: {quest_id}", quest_id=quest_id),
            source=source,
            trace_id=trace_id,
            user_id=user_id,
        )

    # Users

    def create_user(
        self,
        user_id: str,
        name: str = "",
        goal_categories: list[str] | None = None,
        difficulty_level: str = "Medium",
        time_commitment: str = "30min",
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a user record with onboarding preferences and empty memory."""

        validate_key(user_id)
        if difficulty_level not in DIFFICULTIES:
            raise ValueError(f"difficulty_level must be one of: {', '.join(DIFFICULTIES)}.")
        if time_commitment not in TIME_COMMITMENTS:
            raise ValueError(f"time_commitment must be one of: {', '.join(TIME_COMMITMENTS)}.")
        categories = [str(item).strip() for item in goal_categories or [] if str(item).strip()]
        if secret_fields({"name": name, "goal_categories": categories}):
            raise ValueError("User profile must not contain secrets.")

        user = User(
            id=user_id,
            name=name.strip(),
            onboarding={
                "goal_categories": categories,
                "difficulty_level": difficulty_level,
                "time_commitment": time_commitment,
            },
            created_at=self._now_iso(),
        )
        user.quest_memory.preferred_difficulty = difficulty_level
        try:
            self.store.put(USERS, user_id, user.to_dict(), expected_version=None)
        except ConcurrentWriteError as exc:
            raise AlreadyExistsError("USER_EXISTS", f"User already exists: {user_id}", user_id=user_id) from exc
        return user.to_dict()

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._load_user(user_id).to_dict()

    # Generation

    def _reject(
        self,
        user_id: str,
        draft: QuestDraft,
        result: ValidationResult,
        context: UserContext,
        *,
        source: str,
        trace_id: str | None,
    ) -> dict[str, Any]:
        alternative = suggest_alternative(draft, result, context)
        self._emit(
            "quest.rejected",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "domain": draft.domain,
                "blockers": [issue.type for issue in result.blockers],
                "score": result.score,
            },
        )
        return {
            "rejected": True,
            "issues": [issue.to_dict() for issue in result.issues],
            "alternative": alternative.to_dict(),
            "validation": result.to_dict(),
        }

    def generate_and_validate(
        self,
        user_id: str,
        inputs: dict[str, Any],
        *,
        preview: bool = False,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Draft a quest, validate it, rescope once if blocked, then persist or reject."""

        user = self._load_user(user_id)
        leaked = secret_fields(inputs)
        if leaked:
            raise ValueError(f"Quest inputs must not contain secrets: {', '.join(leaked)}")
        request = DraftRequest.from_inputs(inputs)
        return self._generate(user, request, preview=preview, source=source, trace_id=trace_id)

    def generate_batch(
        self,
        user_id: str,
        quest_type: str,
        count: int = 1,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Generate `count` quests of one type, cycling through the user's onboarding categories."""

        user = self._load_user(user_id)
        if quest_type not in QUEST_TYPES:
            raise ValueError(f"quest_type must be one of: {', '.join(QUEST_TYPES)}.")
        if not 1 <= count <= MAX_BATCH_SIZE:
            raise ValueError(f"count must be between 1 and {MAX_BATCH_SIZE}.")

        categories = user.goal_categories or [DEFAULT_BATCH_CATEGORY]
        difficulty = str(user.onboarding.get("difficulty_level") or "Medium")
        if difficulty not in DIFFICULTIES:
            difficulty = "Medium"
        minutes = TIME_COMMITMENT_MINUTES.get(str(user.onboarding.get("time_commitment")), 30)
        year = self.now().year

        quests: list[dict[str, Any]] = []
        rejected: list[dict[str, Any]] = []
        for index in range(count):
            category = categories[index % len(categories)]
            request = DraftRequest(
                domain=category,
                specific_goal=f"make {quest_type} progress in {category.lower()}",
                quest_type=quest_type,
                difficulty=difficulty,
                time_available=str(minutes),
                batch=True,
                year=year,
            )
            result = self._generate(user, request, preview=False, source=source, trace_id=trace_id)
            if result.get("rejected"):
                rejected.append(result)
            else:
                quests.append(result)
        return {"quest_type": quest_type, "quests": quests, "rejected": rejected}

    def _next_sequence(self, user_id: str) -> int:
        return max((quest.sequence for quest in self._user_quests(user_id)), default=0) + 1

    def _generate(
        self,
        user: User,
        request: DraftRequest,
        *,
        preview: bool,
        source: str,
        trace_id: str | None,
    ) -> dict[str, Any]:
        user_id = user.id
        origin: dict[str, Any] = {"source": "generated", "provider": self.draft_source.name, "fallback_reason": None}
        try:
            draft = self.draft_source.draft(request, user_level=int(user.stats.get("level") or 1))
        except DraftUnavailable as exc:
            draft = fallback_draft(request)
            origin = {"source": "fallback", "provider": "template", "fallback_reason": exc.reason}
            self._emit(
                "draft.fallback",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"reason": exc.reason, "provider": self.draft_source.name, "domain": request.domain},
            )

        context = UserContext(
            time_available=request.time_minutes,
            selected_domain=request.domain,
            energy_level=request.energy_level,
        )
        result = validate_quest(draft, context)
        self._emit(
            "quest.validated",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "domain": request.domain,
                "valid": result.valid,
                "score": result.score,
                "issue_types": [issue.type for issue in result.issues],
            },
        )

        changes: list[str] = []
        if not result.valid:
            rescoped = rescope_quest(draft, result, context)
            if not rescoped.auto_fixed:
                return self._reject(user_id, draft, result, context, source=source, trace_id=trace_id)
            revalidated = validate_quest(rescoped.rescoped, context)
            if not revalidated.valid:
                return self._reject(user_id, rescoped.rescoped, revalidated, context, source=source, trace_id=trace_id)
            draft, result, changes = rescoped.rescoped, revalidated, rescoped.changes
            self._emit(
                "quest.rescoped",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"domain": request.domain, "changes": changes, "score": result.score},
            )

        if preview:
            return {
                "preview": True,
                "draft": draft.to_dict(),
                "validation": result.to_dict(),
                "auto_rescoped": bool(changes),
                "rescope_changes": changes,
                "draft_origin": origin,
            }

        moment = self.now()
        quest = Quest(
            **{name: getattr(draft, name) for name in QuestDraft.__dataclass_fields__},
            id=uuid.uuid4().hex,
            user_id=user_id,
            sequence=self._next_sequence(user_id),
            quest_type=request.quest_type,
            xp_reward=xp_for(request.quest_type, draft.difficulty),
            created_at=moment.isoformat(),
            updated_at=moment.isoformat(),
            end_date=end_date_for(request.quest_type, moment).isoformat(),
            validation={
                "validated": True,
                "score": result.score,
                "issues": [issue.to_dict() for issue in [*result.issues, *result.warnings]],
                "auto_rescoped": bool(changes),
                "rescope_changes": changes,
            },
            skip={"skipped": False, "skip_reason": None, "skipped_at": None},
            intent={"impact_score": None, "is_main_quest": False, "confirmed": False, "confirmed_at": None},
            draft_origin=origin,
        )
        self.store.put(QUESTS, quest.id, quest.to_dict(), expected_version=None)
        self._emit(
            "quest.generated",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "quest_id": quest.id,
                "domain": quest.domain,
                "quest_type": quest.quest_type,
                "difficulty": quest.difficulty,
                "task_count": len(quest.tasks or []),
                "auto_rescoped": bool(changes),
                "draft_source": origin["source"],
            },
        )
        return quest.to_dict()

    # Outcomes

    def _record_outcome(
        self,
        user_id: str,
        quest: Quest,
        prior: dict[str, Any],
        outcome: OutcomeResult,
        *,
        source: str,
        trace_id: str | None,
    ) -> tuple[User, list[Achievement]]:
        """Fold an already-persisted quest transition into the user record, undoing it on failure."""

        moment = self.now()
        today = moment.date()
        completed = perfect = 0
        if outcome.completed:
            done = [item for item in self._user_quests(user_id) if item.status == "completed"]
            completed = len(done)
            perfect = sum(1 for item in done if item.progress == 100)

        def mutate(user: User) -> list[Achievement]:
            update_memory(user, quest, outcome, now=moment)
            if not outcome.completed:
                return []
            apply_completion_stats(
                user.stats,
                quest.xp_reward,
                today.isoformat(),
                (today - timedelta(days=1)).isoformat(),
            )
            return check_achievements(user, completed=completed, perfect=perfect, now=moment, xp_per_level=XP_PER_LEVEL)

        try:
            user, unlocked = self._update_user(user_id, mutate, source=source, trace_id=trace_id)
        except ServiceError:
            self._restore_quest(quest.id, prior, user_id=user_id, source=source, trace_id=trace_id)
            raise

        pattern = user.quest_memory.success_patterns.get(quest.memory_domain)
        self._emit(
            "memory.updated",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "quest_id": quest.id,
                "domain": quest.resolved_domain,
                "completed": outcome.completed,
                "skipped": outcome.skipped,
                "rate": pattern.rate if pattern else None,
            },
        )
        for achievement in unlocked:
            self._emit(
                "achievement.unlocked",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"quest_id": quest.id, "achievement": achievement.type, "xp_bonus": achievement.xp_bonus},
            )
        return user, unlocked

    def _completion_payload(self, user: User, quest: Quest, unlocked: list[Achievement]) -> dict[str, Any]:
        return {
            "quest": quest.to_dict(),
            "insights": [insight.to_dict() for insight in get_insights(user)],
            "stats": dict(user.stats),
            "momentum": momentum_message(int(user.stats.get("current_streak", 0))),
            "achievements_unlocked": [item.to_dict() for item in unlocked],
        }

    def _ensure_open(self, quest: Quest) -> None:
        if quest.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                "QUEST_CLOSED",
                f"Quest is already {quest.status}.",
                quest_id=quest.id,
                status=quest.status,
            )

    def record_completion(
        self,
        user_id: str,
        quest_id: str,
        time_taken: float | None = None,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Complete a quest, update memory and stats, and return fresh insights."""

        if time_taken is not None and time_taken < 0:
            raise ValueError("time_taken must be >= 0.")
        self._load_user(user_id)
        completed_at = self._now_iso()

        def complete(quest: Quest) -> None:
            self._ensure_open(quest)
            for task in quest.tasks or []:
                if not task.completed:
                    task.completed = True
                    task.completed_at = completed_at
            quest.progress = 100
            quest.status = "completed"
            quest.completed_at = completed_at

        quest, _, prior, _ = self._update_quest(user_id, quest_id, complete, source=source, trace_id=trace_id)
        user, unlocked = self._record_outcome(
            user_id,
            quest,
            prior,
            OutcomeResult(completed=True, time_taken=time_taken),
            source=source,
            trace_id=trace_id,
        )
        self._emit(
            "quest.completed",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "quest_id": quest.id,
                "domain": quest.resolved_domain,
                "difficulty": quest.difficulty,
                "time_taken": time_taken,
                "xp_awarded": quest.xp_reward,
            },
        )
        return self._completion_payload(user, quest, unlocked)

    def record_skip(
        self,
        user_id: str,
        quest_id: str,
        reason: str | None = None,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Mark a quest failed without penalty and suggest a gentler follow-up."""

        if reason and secret_fields(reason):
            raise ValueError("Skip reason must not contain secrets.")
        self._load_user(user_id)
        skipped_at = self._now_iso()

        def skip(quest: Quest) -> None:
            self._ensure_open(quest)
            quest.status = "failed"
            quest.skip = {"skipped": True, "skip_reason": (reason or "").strip() or None, "skipped_at": skipped_at}

        quest, _, prior, _ = self._update_quest(user_id, quest_id, skip, source=source, trace_id=trace_id)
        self._record_outcome(user_id, quest, prior, OutcomeResult(skipped=True), source=source, trace_id=trace_id)
        suggestion = gentler_alternative(quest, self.rng)
        self._emit(
            "quest.skipped",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={"quest_id": quest.id, "domain": quest.resolved_domain, "difficulty": quest.difficulty},
        )
        return {"quest": quest.to_dict(), "suggestion": suggestion}

    def update_task(
        self,
        user_id: str,
        quest_id: str,
        task_index: int,
        completed: bool,
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Toggle one task; finishing the last task completes the quest."""

        self._load_user(user_id)
        stamp = self._now_iso()

        def toggle(quest: Quest) -> bool:
            self._ensure_open(quest)
            tasks = quest.tasks or []
            if not 0 <= task_index < len(tasks):
                raise ValueError(f"task_index must be between 0 and {len(tasks) - 1}.")
            task = tasks[task_index]
            task.completed = completed
            task.completed_at = stamp if completed else None
            return quest.update_progress(stamp)

        quest, finished, prior, _ = self._update_quest(user_id, quest_id, toggle, source=source, trace_id=trace_id)
        if not finished:
            self._emit(
                "quest.progressed",
                user_id=user_id,
                source=source,
                trace_id=trace_id,
                data={"quest_id": quest.id, "progress": quest.progress, "status": quest.status},
            )
            return {"quest": quest.to_dict(), "completed": False}

        user, unlocked = self._record_outcome(
            user_id, quest, prior, OutcomeResult(completed=True), source=source, trace_id=trace_id
        )
        self._emit(
            "quest.completed",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={
                "quest_id": quest.id,
                "domain": quest.resolved_domain,
                "difficulty": quest.difficulty,
                "time_taken": None,
                "xp_awarded": quest.xp_reward,
            },
        )
        payload = self._completion_payload(user, quest, unlocked)
        payload["completed"] = True
        return payload

    # Edits

    def edit_quest(
        self,
        user_id: str,
        quest_id: str,
        changes: dict[str, Any],
        *,
        source: str = "cli",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Edit an open quest's text, tasks, difficulty or success criteria.

        Empty values are ignored. Replacing the task list resets task completion,
        and a difficulty change recomputes the XP reward for the quest type.
        """

        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(unknown)}.")
        updates = {
            name: value
            for name, value in changes.items()
            if value is not None and value != [] and not (isinstance(value, str) and not value.strip())
        }
        if not updates:
            raise ValueError(f"Provide at least one of: {', '.join(EDITABLE_FIELDS)}.")
        if secret_fields(updates):
            raise ValueError("Quest edits must not contain secrets.")

        difficulty = updates.get("difficulty")
        if difficulty is not None and difficulty not in DIFFICULTIES:
            raise ValueError(f"difficulty must be one of: {', '.join(DIFFICULTIES)}.")
        criteria = updates.get("success_criteria")
        if criteria is not None and not (isinstance(criteria, list) and all(isinstance(item, str) for item in criteria)):
            raise ValueError("success_criteria must be a list of strings.")
        task_specs = _task_specs(updates["tasks"]) if "tasks" in updates else None

        self._load_user(user_id)
        stamp = self._now_iso()

        def edit(quest: Quest) -> None:
            self._ensure_open(quest)
            if "title" in updates:
                quest.title = str(updates["title"]).strip()
            if "description" in updates:
                quest.description = str(updates["description"]).strip()
            if task_specs is not None:
                quest.tasks = [Task(**spec) for spec in task_specs]
                quest.update_progress(stamp)
            if difficulty is not None:
                quest.difficulty = difficulty
                quest.xp_reward = xp_for(quest.quest_type, difficulty)
            if criteria is not None:
                quest.success_criteria = list(criteria)

        quest, _, _, _ = self._update_quest(user_id, quest_id, edit, source=source, trace_id=trace_id)
        self._emit(
            "quest.edited",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={"quest_id": quest.id, "fields": sorted(updates), "xp_reward": quest.xp_reward},
        )
        return quest.to_dict()

    # Queries

    def list_quests(
        self, user_id: str, status: str | None = None, quest_type: str | None = None
    ) -> list[dict[str, Any]]:
        self._load_user(user_id)
        if status is not None and status not in QUEST_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(QUEST_STATUSES)}.")
        if quest_type is not None and quest_type not in QUEST_TYPES:
            raise ValueError(f"quest_type must be one of: {', '.join(QUEST_TYPES)}.")
        return [
            quest.to_dict()
            for quest in self._user_quests(user_id)
            if (status is None or quest.status == status) and (quest_type is None or quest.quest_type == quest_type)
        ]

    def get_overview(self, user_id: str) -> dict[str, Any]:
        """Dashboard totals: user stats, quest counts with completion rate, and the latest quests."""

        user = self._load_user(user_id)
        quests = self._user_quests(user_id)
        total = len(quests)
        completed = sum(1 for quest in quests if quest.status == "completed")
        return {
            "user": {
                "name": user.name,
                "level": user.stats.get("level"),
                "xp": user.stats.get("xp"),
                "current_streak": user.stats.get("current_streak"),
                "longest_streak": user.stats.get("longest_streak"),
            },
            "quests": {
                "total": total,
                "completed": completed,
                "active": sum(1 for quest in quests if quest.is_active),
                "failed": sum(1 for quest in quests if quest.status == "failed"),
                "completion_rate": round(completed * 100 / total, 1) if total else 0.0,
            },
            "achievements_unlocked": len(user.achievements),
            "recent_quests": [quest.to_dict() for quest in quests[:RECENT_QUESTS_LIMIT]],
        }

    def get_achievements(self, user_id: str) -> dict[str, Any]:
        user = self._load_user(user_id)
        return {
            "unlocked": [item.to_dict() for item in user.achievements],
            "available": available_achievements(user),
        }

    def get_quest(self, user_id: str, quest_id: str) -> dict[str, Any]:
        quest, _ = self._load_quest(user_id, quest_id)
        return quest.to_dict()

    def delete_quest(self, user_id: str, quest_id: str) -> dict[str, Any]:
        self._load_quest(user_id, quest_id)
        return {"quest_id": quest_id, "deleted": self.store.delete(QUESTS, quest_id)}

    def get_insights(self, user_id: str) -> list[dict[str, Any]]:
        """Return up to three behavioral insights for the user."""

        return [insight.to_dict() for insight in get_insights(self._load_user(user_id))]

    def get_main_quest(self, user_id: str, *, source: str = "cli", trace_id: str | None = None) -> dict[str, Any] | None:
        """Score active quests, mark the winner as main quest and return it; None when nothing is active.

        Every other quest of the user, closed ones included, loses its main-quest flag.
        """

        user = self._load_user(user_id)
        quests = self._user_quests(user_id)
        active = [quest for quest in quests if quest.is_active]
        selected = select_main_quest(active, user)
        winner_id, score = (selected[0].id, selected[1]) if selected else (None, None)

        for quest in quests:
            is_main = quest.id == winner_id
            if bool(quest.intent.get("is_main_quest")) == is_main and (not is_main or quest.intent.get("impact_score") == score):
                continue

            def mark(current: Quest, is_main: bool = is_main) -> None:
                current.intent["is_main_quest"] = is_main
                if is_main:
                    current.intent["impact_score"] = score

            self._update_quest(user_id, quest.id, mark, source=source, trace_id=trace_id)

        if selected is None:
            return None
        winner = selected[0]
        winner.intent["is_main_quest"] = True
        winner.intent["impact_score"] = score
        self._emit(
            "main_quest.selected",
            user_id=user_id,
            source=source,
            trace_id=trace_id,
            data={"quest_id": winner.id, "impact_score": score, "candidates": len(active)},
        )
        return winner.to_dict()

    def confirm_main_quest(
        self, user_id: str, quest_id: str, *, source: str = "cli", trace_id: str | None = None
    ) -> dict[str, Any]:
        """Record that the user accepted the selected main quest."""

        confirmed_at = self._now_iso()

        def confirm(quest: Quest) -> None:
            self._ensure_open(quest)
            if not quest.intent.get("is_main_quest"):
                raise InvalidTransitionError(
                    "NOT_MAIN_QUEST",
                    "Only the current main quest can be confirmed.",
                    hint="Fetch the main quest first.",
                    quest_id=quest.id,
                )
            quest.intent["confirmed"] = True
            quest.intent["confirmed_at"] = confirmed_at

        quest, _, _, _ = self._update_quest(user_id, quest_id, confirm, source=source, trace_id=trace_id)
        return quest.to_dict()

    # Telemetry

    def telemetry_status(self) -> dict[str, Any]:
        return {
            "enabled": True,
            "path": str(self.telemetry.events_path),
            "event_count": self.telemetry.count_events(),
        }

    def telemetry_export(self, range_value: str, out_path: Path | None = None, actor_id: str | None = None) -> dict[str, Any]:
        """Aggregate quest outcome events for the requested window."""

        return self.telemetry.export_summary(range_value=range_value, out_path=out_path, actor_id=actor_id)
