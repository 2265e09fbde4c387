from __future__ import annotations

"""Bounded auto-repair of blocked drafts and user-facing alternatives when repair is impossible."""

import math
from dataclasses import dataclass, field, replace
from typing import Any

from .models import QuestDraft
from .validator import UserContext, ValidationResult


DEFAULT_ESTIMATE_MINUTES = 30
RESCOPE_TIME_SHARE = 0.9
SHORTER_VERSION_SHARE = 0.8
FALLBACK_OUTPUT_TYPE = "CHECKLIST"
FALLBACK_DELIVERABLE = "Completed action checklist"


@dataclass
class RescopeResult:
    rescoped: QuestDraft
    changes: list[str] = field(default_factory=list)

    @property
    def auto_fixed(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict[str, Any]:
        return {"rescoped": self.rescoped.to_dict(), "changes": list(self.changes), "auto_fixed": self.auto_fixed}


@dataclass(frozen=True)
class Suggestion:
    title: str
    description: str
    action: str

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "description": self.description, "action": self.action}


@dataclass(frozen=True)
class Alternative:
    message: str
    suggestions: tuple[Suggestion, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "suggestions": [item.to_dict() for item in self.suggestions]}


def _fit_time(draft: QuestDraft, context: UserContext) -> str | None:
    available = context.time_available
    if not available:
        return None
    factor = available / (draft.estimated_time or DEFAULT_ESTIMATE_MINUTES)
    before = (len(draft.tasks) if draft.tasks is not None else None, draft.estimated_time)
    if draft.tasks is not None:
        keep = math.ceil(len(draft.tasks) * factor)
        draft.tasks = draft.tasks[:keep]
    draft.estimated_time = available * RESCOPE_TIME_SHARE
    after = (len(draft.tasks) if draft.tasks is not None else None, draft.estimated_time)
    if before == after:
        return None
    return f"Reduced to fit {available} minutes"


def _force_output(draft: QuestDraft) -> str | None:
    if draft.output_type == FALLBACK_OUTPUT_TYPE and draft.deliverable == FALLBACK_DELIVERABLE:
        return None
    draft.output_type = FALLBACK_OUTPUT_TYPE
    draft.deliverable = FALLBACK_DELIVERABLE
    return "Added concrete deliverable"


def _specify_output(draft: QuestDraft) -> str | None:
    if draft.deliverable:
        return None
    draft.deliverable = f"{draft.output_type or 'Document'} showing completion"
    return "Specified expected output"


def _lower_energy(draft: QuestDraft, context: UserContext) -> str | None:
    if draft.difficulty == "Easy" and draft.energy_required == context.energy_level:
        return None
    draft.difficulty = "Easy"
    draft.energy_required = context.energy_level
    return f"Adjusted to {context.energy_level} energy"


def rescope_quest(draft: QuestDraft, result: ValidationResult, context: UserContext | None = None) -> RescopeResult:
    """Apply one deterministic fix per blocker, in discovery order, to a copy of the draft."""

    context = context or UserContext()
    rescoped = replace(
        draft,
        tasks=list(draft.tasks) if draft.tasks is not None else None,
        success_criteria=list(draft.success_criteria),
        user_inputs=dict(draft.user_inputs),
    )
    changes: list[str] = []
    for issue in result.blockers:
        change: str | None = None
        if issue.type == "TIME_UNREALISTIC":
            change = _fit_time(rescoped, context)
        elif issue.type == "VAGUE_OUTPUT":
            change = _force_output(rescoped)
        elif issue.type == "VAGUE_LANGUAGE":
            change = _specify_output(rescoped)
        elif issue.type == "ENERGY_MISMATCH":
            change = _lower_energy(rescoped, context)
        if change:
            changes.append(change)
    return RescopeResult(rescoped=rescoped, changes=changes)


def _alternative_templates(draft: QuestDraft, context: UserContext) -> dict[str, Alternative]:
    available = context.time_available or 0
    return {
        "TIME_UNREALISTIC": Alternative(
            message=f'"{draft.title}" cannot fit in {available} minutes.',
            suggestions=(
                Suggestion(
                    title="Break it down",
                    description="Complete just the first step as a standalone quest",
                    action="Create smaller quest",
                ),
                Suggestion(
                    title="Shorter version",
                    description=f"{draft.title} - Quick Start ({math.floor(available * SHORTER_VERSION_SHARE)} min)",
                    action="Generate condensed version",
                ),
            ),
        ),
        "VAGUE_OUTPUT": Alternative(
            message=f'"{draft.title}" is too vague. What should you produce?',
            suggestions=(
                Suggestion(
                    title="Create a note",
                    description="Write a short summary or list",
                    action="Define output as WRITTEN_NOTE",
                ),
                Suggestion(
                    title="Make a checklist",
                    description="List specific actions or items",
                    action="Define output as CHECKLIST",
                ),
            ),
        ),
        "DOMAIN_MISMATCH": Alternative(
            message=f"This quest is for {draft.domain} but you selected {context.selected_domain}.",
            suggestions=(
                Suggestion(
                    title="Generate for correct domain",
                    description=f"Create {context.selected_domain} quest instead",
                    action="Regenerate with correct domain",
                ),
            ),
        ),
    }


GENERIC_ALTERNATIVE = Alternative(
    message="This quest has validation issues.",
    suggestions=(
        Suggestion(
            title="Try again",
            description="Generate a new quest with clearer parameters",
            action="Regenerate",
        ),
    ),
)


def suggest_alternative(draft: QuestDraft, result: ValidationResult, context: UserContext | None = None) -> Alternative:
    """Pick remediation options for the first blocker only."""

    context = context or UserContext()
    blockers = result.blockers
    if not blockers:
        return GENERIC_ALTERNATIVE
    return _alternative_templates(draft, context).get(blockers[0].type, GENERIC_ALTERNATIVE)
