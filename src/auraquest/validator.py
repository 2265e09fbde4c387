from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .models import QuestDraft


BLOCKING = "BLOCKING"
WARNING = "WARNING"

TIME_BUFFER_FACTOR = 1.2
MAX_SESSION_TASKS = 5

BLOCKING_PENALTY = 30
ISSUE_WARNING_PENALTY = 10
WARNING_PENALTY = 5
OUTPUT_TYPE_BONUS = 10
SUCCESS_CRITERIA_BONUS = 10
DELIVERABLE_BONUS = 5

ENERGY_RANK = {"Low": 1, "Medium": 2, "High": 3}
DEFAULT_ENERGY_RANK = 2

VAGUE_WORDS = [
    "work on",
    "research",
    "improve",
    "explore",
    "learn about",
    "study",
    "look into",
    "think about",
    "consider",
    "try to",
]

DOMAIN_BOUNDARIES: dict[str, dict[str, list[str]]] = {
    "Fitness": {
        "keywords": ["exercise", "workout", "cardio", "strength", "yoga", "fitness", "training", "gym"],
        "forbidden": ["code", "programming", "work", "job", "study", "exam"],
    },
    "Career": {
        "keywords": ["job", "career", "resume", "interview", "networking", "skills", "professional"],
        "forbidden": ["exercise", "workout", "meditation", "relationship"],
    },
    "Learning": {
        "keywords": ["study", "course", "tutorial", "practice", "lesson", "skill", "concept"],
        "forbidden": ["exercise", "job search", "meditation"],
    },
    "Personal Development": {
        "keywords": ["growth", "habit", "mindset", "reflection", "journal", "planning"],
        "forbidden": ["exercise routine", "job application", "code project"],
    },
    "Health": {
        "keywords": ["sleep", "nutrition", "meal", "health", "wellness", "medical"],
        "forbidden": ["work", "career", "coding", "job"],
    },
    "Mindfulness": {
        "keywords": ["meditation", "breathing", "mindfulness", "relaxation", "calm"],
        "forbidden": ["exercise", "work", "study", "code"],
    },
    "Creativity": {
        "keywords": ["create", "design", "art", "music", "write", "craft"],
        "forbidden": ["work task", "job", "career"],
    },
    "Productivity": {
        "keywords": ["organize", "plan", "schedule", "system", "workflow", "efficiency"],
        "forbidden": ["exercise", "meditation"],
    },
}


@dataclass(frozen=True)
class UserContext:
    """What the user told us about this session: minutes, domain and energy."""

    time_available: int | None = None
    selected_domain: str | None = None
    energy_level: str | None = None


@dataclass
class Issue:
    type: str
    severity: str
    message: str
    field: str | None = None
    suggestion: str = ""

    @property
    def blocking(self) -> bool:
        return self.severity == BLOCKING

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    issues: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    score: int = 100

    @property
    def blockers(self) -> list[Issue]:
        return [issue for issue in self.issues if issue.blocking]

    @property
    def valid(self) -> bool:
        return not self.blockers

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "warnings": [warning.to_dict() for warning in self.warnings],
            "blockers": [issue.to_dict() for issue in self.blockers],
            "score": self.score,
        }


def estimated_minutes(draft: QuestDraft) -> float:
    """Sum task estimates, falling back to the draft-level estimate when tasks carry none."""

    total = sum(task.estimated_time for task in draft.tasks or [])
    if total:
        return total
    return draft.estimated_time or 0


def quest_text(draft: QuestDraft) -> str:
    task_titles = " ".join(task.title for task in draft.tasks or [])
    return f"{draft.title} {draft.description} {task_titles}".lower()


def has_concrete_output(draft: QuestDraft) -> bool:
    return bool(draft.output_type or draft.deliverable)


def _check_time(draft: QuestDraft, context: UserContext, issues: list[Issue], warnings: list[Issue]) -> None:
    if not context.time_available:
        return
    estimated = estimated_minutes(draft)
    budget = context.time_available * TIME_BUFFER_FACTOR
    if estimated > budget:
        issues.append(
            Issue(
                type="TIME_UNREALISTIC",
                severity=BLOCKING,
                message=f"Quest requires {estimated:g} min but only {context.time_available} min available",
                field="estimated_time",
                suggestion="Reduce scope or split into multiple quests",
            )
        )
    elif estimated > context.time_available:
        warnings.append(
            Issue(
                type="TIME_TIGHT",
                severity=WARNING,
                message=f"Quest uses full time slot ({estimated:g}/{context.time_available} min)",
                suggestion="Consider adding buffer time",
            )
        )


def _check_output(draft: QuestDraft, issues: list[Issue]) -> None:
    if has_concrete_output(draft):
        return
    issues.append(
        Issue(
            type="VAGUE_OUTPUT",
            severity=BLOCKING,
            message="Quest has no concrete deliverable or output type defined",
            field="output_type",
            suggestion="Define what the user will create/produce",
        )
    )


def _check_language(draft: QuestDraft, text: str, issues: list[Issue]) -> None:
    found = [word for word in VAGUE_WORDS if word in text]
    if not found:
        return
    has_output = has_concrete_output(draft)
    quoted = '", "'.join(found)
    issues.append(
        Issue(
            type="VAGUE_LANGUAGE",
            severity=WARNING if has_output else BLOCKING,
            message=f'Quest contains vague language: "{quoted}"',
            field="description",
            suggestion=(
                "Consider more specific action verbs"
                if has_output
                else "Replace with concrete actions (Create, Write, Log, Complete, Build)"
            ),
        )
    )


def _check_domain(draft: QuestDraft, context: UserContext, text: str, issues: list[Issue]) -> None:
    if draft.domain and context.selected_domain and draft.domain != context.selected_domain:
        issues.append(
            Issue(
                type="DOMAIN_MISMATCH",
                severity=BLOCKING,
                message=f"Quest domain ({draft.domain}) doesn't match selected domain ({context.selected_domain})",
                field="domain",
                suggestion=f"Generate quest for {context.selected_domain} instead",
            )
        )

    boundary = DOMAIN_BOUNDARIES.get(draft.domain or "")
    if boundary is None:
        return
    forbidden = [word for word in boundary["forbidden"] if word.lower() in text]
    if forbidden:
        quoted = '", "'.join(forbidden)
        issues.append(
            Issue(
                type="DOMAIN_CONTAMINATION",
                severity=WARNING,
                message=f'Quest contains elements from other domains: "{quoted}"',
                field="tasks",
                suggestion=f"Keep quest strictly within {draft.domain} domain",
            )
        )


def _check_energy(draft: QuestDraft, context: UserContext, issues: list[Issue]) -> None:
    if not (context.energy_level and draft.energy_required):
        return
    user_energy = ENERGY_RANK.get(context.energy_level, DEFAULT_ENERGY_RANK)
    quest_energy = ENERGY_RANK.get(draft.energy_required, DEFAULT_ENERGY_RANK)
    if quest_energy > user_energy + 1:
        issues.append(
            Issue(
                type="ENERGY_MISMATCH",
                severity=WARNING,
                message=f"Quest requires {draft.energy_required} energy but user selected {context.energy_level}",
                field="energy_required",
                suggestion="Simplify tasks or reduce intensity",
            )
        )


def _check_session_shape(draft: QuestDraft, warnings: list[Issue]) -> None:
    task_count = len(draft.tasks or [])
    if task_count > MAX_SESSION_TASKS:
        warnings.append(
            Issue(
                type="TOO_MANY_TASKS",
                severity=WARNING,
                message=f"Quest has {task_count} tasks - may not be single-session",
                suggestion="Consider splitting into multiple focused quests",
            )
        )
    if not draft.success_criteria:
        warnings.append(
            Issue(
                type="NO_SUCCESS_CRITERIA",
                severity=WARNING,
                message="Quest has no defined success criteria",
                suggestion="Add specific completion conditions",
            )
        )


def validation_score(draft: QuestDraft, issues: list[Issue], warnings: list[Issue]) -> int:
    score = 100
    for issue in issues:
        score -= BLOCKING_PENALTY if issue.blocking else ISSUE_WARNING_PENALTY
    score -= WARNING_PENALTY * len(warnings)

    if draft.output_type:
        score += OUTPUT_TYPE_BONUS
    if draft.success_criteria:
        score += SUCCESS_CRITERIA_BONUS
    if draft.deliverable:
        score += DELIVERABLE_BONUS
    return max(0, min(100, score))


def validate_quest(draft: QuestDraft, context: UserContext | None = None) -> ValidationResult:
    """Reality-check a draft; issue order is discovery order and drives alternative selection."""

    context = context or UserContext()
    issues: list[Issue] = []
    warnings: list[Issue] = []
    text = quest_text(draft)

    _check_time(draft, context, issues, warnings)
    _check_output(draft, issues)
    _check_language(draft, text, issues)
    _check_domain(draft, context, text, issues)
    _check_energy(draft, context, issues)
    _check_session_shape(draft, warnings)

    return ValidationResult(issues=issues, warnings=warnings, score=validation_score(draft, issues, warnings))
