from __future__ import annotations

"""Quest, user and behavioral-memory records persisted as JSON documents."""

import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any


RECENT_COMPLETIONS_LIMIT = 20
ADAPTATION_NOTES_LIMIT = 50
DEFAULT_DIFFICULTY = "Medium"
GENERAL_DOMAIN = "General"

DIFFICULTIES = ("Easy", "Medium", "Hard")
ENERGY_LEVELS = ("Low", "Medium", "High")
QUEST_TYPES = ("daily", "weekly", "monthly", "yearly")
QUEST_STATUSES = ("pending", "in-progress", "completed", "failed")
ACTIVE_STATUSES = ("pending", "in-progress")
TERMINAL_STATUSES = ("completed", "failed")

OUTPUT_TYPES = {
    "WRITTEN_NOTE": "Written note or summary",
    "CHECKLIST": "Completed checklist",
    "EXERCISE_SET": "Exercise set logged",
    "METRIC_LOGGED": "Measurement recorded",
    "DECISION_MADE": "Decision documented",
    "FILE_CREATED": "File or document created",
    "CODE_SNIPPET": "Working code written",
    "PROTOTYPE": "Working demo or prototype",
    "PLAN_CREATED": "Action plan documented",
    "LIST_COMPILED": "Curated list created",
}

LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")


def parse_minutes(value: Any) -> int:
    """Read a minute count from ints or text like `"10 minutes"`; unparseable values are 0."""

    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = LEADING_INT_PATTERN.match(str(value))
    if not match:
        return 0
    return int(match.group(1))


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class Task:
    title: str
    description: str = ""
    estimated_time: int = 0
    completed: bool = False
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "estimated_time": self.estimated_time,
            "completed": self.completed,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            estimated_time=parse_minutes(data.get("estimated_time", data.get("estimatedTime"))),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completed_at"),
        )


@dataclass
class QuestDraft:
    """Unvalidated quest proposal produced by a draft source."""

    title: str
    description: str = ""
    domain: str | None = None
    category: str | None = None
    difficulty: str = DEFAULT_DIFFICULTY
    tasks: list[Task] | None = field(default_factory=list)
    success_criteria: list[str] = field(default_factory=list)
    output_type: str | None = None
    deliverable: str | None = None
    energy_required: str | None = None
    estimated_time: float | None = None
    user_inputs: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None

    @property
    def resolved_domain(self) -> str | None:
        return self.domain or self.category

    @property
    def memory_domain(self) -> str:
        """Key used for success patterns and recent completions."""

        return self.resolved_domain or GENERAL_DOMAIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "domain": self.domain,
            "category": self.category,
            "difficulty": self.difficulty,
            "tasks": [task.to_dict() for task in self.tasks] if self.tasks is not None else None,
            "success_criteria": list(self.success_criteria),
            "output_type": self.output_type,
            "deliverable": self.deliverable,
            "energy_required": self.energy_required,
            "estimated_time": self.estimated_time,
            "user_inputs": dict(self.user_inputs),
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuestDraft":
        raw_tasks = data.get("tasks")
        tasks = [Task.from_dict(item) for item in raw_tasks if isinstance(item, dict)] if isinstance(raw_tasks, list) else None
        criteria = data.get("success_criteria") or []
        estimated = data.get("estimated_time")
        return cls(
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            domain=_str_or_none(data.get("domain")),
            category=_str_or_none(data.get("category")),
            difficulty=str(data.get("difficulty") or DEFAULT_DIFFICULTY),
            tasks=tasks,
            success_criteria=[str(item) for item in criteria if isinstance(item, str)],
            output_type=_str_or_none(data.get("output_type")),
            deliverable=_str_or_none(data.get("deliverable")),
            energy_required=_str_or_none(data.get("energy_required")),
            estimated_time=float(estimated) if isinstance(estimated, (int, float)) and not isinstance(estimated, bool) else None,
            user_inputs=dict(data.get("user_inputs") or {}),
            reasoning=_str_or_none(data.get("reasoning")),
        )


@dataclass
class Quest(QuestDraft):
    """Durable quest record owned by one user."""

    id: str = ""
    user_id: str = ""
    sequence: int = 0
    quest_type: str = "daily"
    status: str = "pending"
    progress: int = 0
    xp_reward: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None
    end_date: str | None = None
    validation: dict[str, Any] = field(default_factory=dict)
    skip: dict[str, Any] = field(default_factory=dict)
    intent: dict[str, Any] = field(default_factory=dict)
    draft_origin: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def update_progress(self, completed_at: str) -> bool:
        """Recompute progress from task completion; return True when this call completed the quest."""

        tasks = self.tasks or []
        if not tasks:
            self.progress = 0
        else:
            done = sum(1 for task in tasks if task.completed)
            self.progress = round(done * 100 / len(tasks))

        if self.progress == 100 and self.status != "completed":
            self.status = "completed"
            self.completed_at = completed_at
            return True
        if self.progress > 0 and self.status == "pending":
            self.status = "in-progress"
        return False

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "id": self.id,
                "user_id": self.user_id,
                "sequence": self.sequence,
                "quest_type": self.quest_type,
                "status": self.status,
                "progress": self.progress,
                "xp_reward": self.xp_reward,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "completed_at": self.completed_at,
                "end_date": self.end_date,
                "validation": dict(self.validation),
                "skip": dict(self.skip),
                "intent": dict(self.intent),
                "draft_origin": dict(self.draft_origin),
            }
        )
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quest":
        draft = QuestDraft.from_dict(data)
        return cls(
            **{name: getattr(draft, name) for name in QuestDraft.__dataclass_fields__},
            id=str(data.get("id", "")),
            user_id=str(data.get("user_id", "")),
            sequence=int(data.get("sequence") or 0),
            quest_type=str(data.get("quest_type") or "daily"),
            status=str(data.get("status") or "pending"),
            progress=int(data.get("progress") or 0),
            xp_reward=int(data.get("xp_reward") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            completed_at=data.get("completed_at"),
            end_date=data.get("end_date"),
            validation=dict(data.get("validation") or {}),
            skip=dict(data.get("skip") or {}),
            intent=dict(data.get("intent") or {}),
            draft_origin=dict(data.get("draft_origin") or {}),
        )


@dataclass
class DomainSuccessPattern:
    total_attempts: int = 0
    completed: int = 0
    rate: float = 0.0
    preferred_time: str | None = None
    average_completion_time: float = 0.0
    last_attempt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "completed": self.completed,
            "rate": self.rate,
            "preferred_time": self.preferred_time,
            "average_completion_time": self.average_completion_time,
            "last_attempt": self.last_attempt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomainSuccessPattern":
        return cls(
            total_attempts=int(data.get("total_attempts", 0)),
            completed=int(data.get("completed", 0)),
            rate=float(data.get("rate", 0.0)),
            preferred_time=data.get("preferred_time"),
            average_completion_time=float(data.get("average_completion_time", 0.0)),
            last_attempt=data.get("last_attempt"),
        )


@dataclass
class RecentCompletion:
    quest_id: str
    domain: str | None
    difficulty: str | None
    completed_at: str | None
    time_taken: float = 0
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "quest_id": self.quest_id,
            "domain": self.domain,
            "difficulty": self.difficulty,
            "completed_at": self.completed_at,
            "time_taken": self.time_taken,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecentCompletion":
        return cls(
            quest_id=str(data.get("quest_id", "")),
            domain=data.get("domain"),
            difficulty=data.get("difficulty"),
            completed_at=data.get("completed_at"),
            time_taken=data.get("time_taken") or 0,
            skipped=bool(data.get("skipped", False)),
        )


@dataclass
class AdaptationNote:
    note: str
    type: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"note": self.note, "type": self.type, "created_at": self.created_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdaptationNote":
        return cls(note=str(data.get("note", "")), type=str(data.get("type", "pattern")), created_at=str(data.get("created_at", "")))


def _recent_deque(items: Any = ()) -> deque[RecentCompletion]:
    return deque(items, maxlen=RECENT_COMPLETIONS_LIMIT)


def _notes_deque(items: Any = ()) -> deque[AdaptationNote]:
    return deque(items, maxlen=ADAPTATION_NOTES_LIMIT)


@dataclass
class QuestMemory:
    """Per-user behavioral memory; bounded buffers are most-recent-first."""

    completed_themes: list[str] = field(default_factory=list)
    avoided_themes: list[str] = field(default_factory=list)
    success_patterns: dict[str, DomainSuccessPattern] = field(default_factory=dict)
    recent_completions: deque[RecentCompletion] = field(default_factory=_recent_deque)
    adaptation_notes: deque[AdaptationNote] = field(default_factory=_notes_deque)
    preferred_difficulty: str = DEFAULT_DIFFICULTY
    average_completion_time: float = 0.0
    timed_completions: int = 0

    def push_recent(self, entry: RecentCompletion) -> None:
        # maxlen evicts from the tail (oldest) on appendleft.
        self.recent_completions.appendleft(entry)

    def push_note(self, note: AdaptationNote) -> None:
        self.adaptation_notes.appendleft(note)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed_themes": list(self.completed_themes),
            "avoided_themes": list(self.avoided_themes),
            "success_patterns": {domain: pattern.to_dict() for domain, pattern in self.success_patterns.items()},
            "recent_completions": [entry.to_dict() for entry in self.recent_completions],
            "adaptation_notes": [note.to_dict() for note in self.adaptation_notes],
            "preferred_difficulty": self.preferred_difficulty,
            "average_completion_time": self.average_completion_time,
            "timed_completions": self.timed_completions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "QuestMemory":
        data = data or {}
        patterns = data.get("success_patterns") or {}
        return cls(
            completed_themes=[str(item) for item in data.get("completed_themes", [])],
            avoided_themes=[str(item) for item in data.get("avoided_themes", [])],
            success_patterns={
                str(domain): DomainSuccessPattern.from_dict(value)
                for domain, value in patterns.items()
                if isinstance(value, dict)
            },
            recent_completions=_recent_deque(
                RecentCompletion.from_dict(item) for item in data.get("recent_completions", []) if isinstance(item, dict)
            ),
            adaptation_notes=_notes_deque(
                AdaptationNote.from_dict(item) for item in data.get("adaptation_notes", []) if isinstance(item, dict)
            ),
            preferred_difficulty=str(data.get("preferred_difficulty") or DEFAULT_DIFFICULTY),
            average_completion_time=float(data.get("average_completion_time", 0.0)),
            timed_completions=int(data.get("timed_completions", 0)),
        )


@dataclass
class Achievement:
    type: str
    name: str
    description: str
    icon: str
    rarity: str
    xp_bonus: int
    current: int
    target: int
    unlocked_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "rarity": self.rarity,
            "xp_bonus": self.xp_bonus,
            "progress": {"current": self.current, "target": self.target},
            "unlocked_at": self.unlocked_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Achievement":
        progress = data.get("progress") or {}
        return cls(
            type=str(data.get("type", "")),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            icon=str(data.get("icon", "")),
            rarity=str(data.get("rarity") or "common"),
            xp_bonus=int(data.get("xp_bonus") or 0),
            current=int(progress.get("current") or 0),
            target=int(progress.get("target") or 0),
            unlocked_at=data.get("unlocked_at"),
        )


def _default_stats() -> dict[str, Any]:
    return {
        "total_quests_completed": 0,
        "current_streak": 0,
        "longest_streak": 0,
        "level": 0,
        "xp": 0,
        "last_quest_completed_date": None,
    }


def _default_onboarding() -> dict[str, Any]:
    return {"goal_categories": [], "difficulty_level": DEFAULT_DIFFICULTY, "time_commitment": "30min"}


@dataclass
class User:
    id: str
    name: str = ""
    onboarding: dict[str, Any] = field(default_factory=_default_onboarding)
    stats: dict[str, Any] = field(default_factory=_default_stats)
    quest_memory: QuestMemory = field(default_factory=QuestMemory)
    achievements: list[Achievement] = field(default_factory=list)
    created_at: str | None = None

    @property
    def goal_categories(self) -> list[str]:
        categories = self.onboarding.get("goal_categories", [])
        if not isinstance(categories, list):
            return []
        return [item for item in categories if isinstance(item, str)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "onboarding": dict(self.onboarding),
            "stats": dict(self.stats),
            "quest_memory": self.quest_memory.to_dict(),
            "achievements": [item.to_dict() for item in self.achievements],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        stats = _default_stats()
        stats.update(data.get("stats") or {})
        onboarding = _default_onboarding()
        onboarding.update(data.get("onboarding") or {})
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            onboarding=onboarding,
            stats=stats,
            quest_memory=QuestMemory.from_dict(data.get("quest_memory")),
            achievements=[Achievement.from_dict(item) for item in data.get("achievements") or [] if isinstance(item, dict)],
            created_at=data.get("created_at"),
        )


@dataclass(frozen=True)
class Insight:
    type: str
    message: str
    action: str
    domain: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "action": self.action, "domain": self.domain}
