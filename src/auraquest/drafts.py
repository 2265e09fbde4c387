from __future__ import annotations

"""Quest draft sources: an OpenAI-compatible generator and a deterministic template."""

import json
import math
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import openai
import yaml
from jsonschema import Draft202012Validator

from .models import DIFFICULTIES, ENERGY_LEVELS, OUTPUT_TYPES, QUEST_TYPES, QuestDraft, Task, parse_minutes


DATA_DIR = Path(__file__).resolve().parent
DOMAINS_PATH = DATA_DIR / "domains.yaml"
DRAFT_SCHEMA_PATH = DATA_DIR / "draft.schema.json"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_TIME_AVAILABLE = 30
MAX_INPUT_CHARS = 500

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")
CAMEL_KEYS = {
    "estimatedTime": "estimated_time",
    "successCriteria": "success_criteria",
    "outputType": "output_type",
    "energyRequired": "energy_required",
}


class DraftUnavailable(RuntimeError):
    """The draft backend failed or returned content we cannot use."""

    reason = "unavailable"


class DraftTimeout(DraftUnavailable):
    reason = "timeout"


@dataclass(frozen=True)
class DraftRequest:
    domain: str
    specific_goal: str
    quest_type: str
    difficulty: str = "Medium"
    time_available: str = str(DEFAULT_TIME_AVAILABLE)
    constraints: str | None = None
    preferences: str | None = None
    energy_level: str | None = None
    batch: bool = False
    year: int | None = None

    @property
    def time_minutes(self) -> int:
        return parse_minutes(self.time_available) or DEFAULT_TIME_AVAILABLE

    @classmethod
    def from_inputs(cls, inputs: dict[str, Any]) -> "DraftRequest":
        """Validate raw generate inputs; raises ValueError on missing or malformed fields."""

        def _text(name: str, *, required: bool = False) -> str | None:
            value = inputs.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                if required:
                    raise ValueError(f"{name} is required.")
                return None
            text = str(value).strip()
            if len(text) > MAX_INPUT_CHARS:
                raise ValueError(f"{name} must be at most {MAX_INPUT_CHARS} characters.")
            return text

        domain = _text("domain", required=True)
        goal = _text("specific_goal", required=True)
        quest_type = _text("quest_type", required=True)
        if quest_type not in QUEST_TYPES:
            raise ValueError(f"quest_type must be one of: {', '.join(QUEST_TYPES)}.")
        difficulty = _text("difficulty") or "Medium"
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"difficulty must be one of: {', '.join(DIFFICULTIES)}.")
        energy = _text("energy_level")
        if energy is not None and energy not in ENERGY_LEVELS:
            raise ValueError(f"energy_level must be one of: {', '.join(ENERGY_LEVELS)}.")
        time_available = _text("time_available") or str(DEFAULT_TIME_AVAILABLE)
        if parse_minutes(time_available) <= 0:
            raise ValueError("time_available must be a positive number of minutes.")
        return cls(
            domain=domain,
            specific_goal=goal,
            quest_type=quest_type,
            difficulty=difficulty,
            time_available=time_available,
            constraints=_text("constraints"),
            preferences=_text("preferences"),
            energy_level=energy,
        )

    def user_inputs(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "specific_goal": self.specific_goal,
            "time_available": self.time_available,
            "constraints": self.constraints,
            "preferences": self.preferences,
        }


@dataclass(frozen=True)
class DomainGuidance:
    focus: str
    example: str
    avoid: str


@dataclass
class GuidanceBook:
    domains: dict[str, DomainGuidance] = field(default_factory=dict)
    default_domain: str = "Personal Development"

    def for_domain(self, domain: str) -> DomainGuidance | None:
        return self.domains.get(domain) or self.domains.get(self.default_domain)


def load_guidance(path: Path = DOMAINS_PATH) -> GuidanceBook:
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict) or not isinstance(payload.get("domains"), dict):
        raise ValueError(f"Domain guidance file must map domains: {path}")
    domains: dict[str, DomainGuidance] = {}
    for name, entry in payload["domains"].items():
        if not isinstance(entry, dict):
            raise ValueError(f"Domain guidance for {name} must be a mapping: {path}")
        domains[str(name)] = DomainGuidance(
            focus=str(entry.get("focus", "")),
            example=str(entry.get("example", "")),
            avoid=str(entry.get("avoid", "")),
        )
    return GuidanceBook(domains=domains, default_domain=str(payload.get("default_domain") or "Personal Development"))


def _load_schema(path: Path = DRAFT_SCHEMA_PATH) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Draft schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Draft schema must be a JSON object: {path}")
    return payload


def _snake_case_keys(payload: dict[str, Any]) -> dict[str, Any]:
    normalized = {CAMEL_KEYS.get(key, key): value for key, value in payload.items()}
    tasks = normalized.get("tasks")
    if isinstance(tasks, list):
        normalized["tasks"] = [
            {CAMEL_KEYS.get(key, key): value for key, value in task.items()} if isinstance(task, dict) else task
            for task in tasks
        ]
    return normalized


def parse_draft_text(text: str, request: DraftRequest, *, schema: dict[str, Any] | None = None) -> QuestDraft:
    """Turn a model reply into a QuestDraft, raising DraftUnavailable on anything unusable."""

    cleaned = CODE_FENCE_PATTERN.sub("", text.strip())
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise DraftUnavailable(f"Draft reply is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise DraftUnavailable("Draft reply must be a JSON object.")

    validator = Draft202012Validator(schema or _load_schema())
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise DraftUnavailable(f"Draft reply failed schema validation at {where}: {first.message}")

    normalized = _snake_case_keys(payload)
    normalized["domain"] = request.domain
    normalized["user_inputs"] = request.user_inputs()
    normalized.setdefault("difficulty", request.difficulty)
    draft = QuestDraft.from_dict(normalized)
    if draft.estimated_time is None:
        total = sum(task.estimated_time for task in draft.tasks or [])
        if total > 0:
            draft.estimated_time = float(total)
    return draft


TYPE_TEMPLATES: dict[str, dict[str, Any]] = {
    "daily": {
        "title": "Daily {category} Challenge",
        "description": "Complete today's {lower} focused tasks to build momentum and progress.",
        "tasks": [
            ("Morning Review", "Review your goals for the day", 5),
            ("Core Activity", "Work on your {lower} goal", 20),
            ("Evening Reflection", "Reflect on what you accomplished", 5),
        ],
    },
    "weekly": {
        "title": "Weekly {category} Sprint",
        "description": "A week-long journey to advance your {lower} goals.",
        "tasks": [
            ("Set Weekly Goals", "Define what you want to achieve this week", 15),
            ("Daily Practice", "Practice daily for 20 minutes", 20),
            ("Mid-Week Review", "Check your progress midway", 10),
            ("Final Push", "Complete remaining tasks", 30),
        ],
    },
    "monthly": {
        "title": "Monthly {category} Milestone",
        "description": "Transform your {lower} journey over the next 30 days.",
        "tasks": [
            ("Month Planning", "Create a detailed monthly plan", 30),
            ("Weekly Checkpoints", "Review progress weekly", 15),
            ("Skill Development", "Learn something new", 60),
            ("Month-End Review", "Celebrate and reflect", 20),
        ],
    },
    "yearly": {
        "title": "{year} {category} Transformation",
        "description": "Your year-long commitment to mastering {lower}.",
        "tasks": [
            ("Vision Board", "Create your vision for the year", 45),
            ("Quarterly Goals", "Break down into quarters", 30),
            ("Monthly Reviews", "Review progress monthly", 20),
            ("Skill Mastery", "Achieve mastery in key area", 120),
        ],
    },
}


def type_template_draft(request: DraftRequest) -> QuestDraft:
    """Per-quest-type template used for batch generation from onboarding categories."""

    template = TYPE_TEMPLATES[request.quest_type]
    values = {
        "category": request.domain,
        "lower": request.domain.lower(),
        "year": request.year or datetime.now(tz=UTC).year,
    }
    tasks = [
        Task(title=title, description=description.format(**values), estimated_time=minutes)
        for title, description, minutes in template["tasks"]
    ]
    return QuestDraft(
        title=template["title"].format(**values),
        description=template["description"].format(**values),
        domain=request.domain,
        category=request.domain,
        difficulty=request.difficulty,
        tasks=tasks,
        estimated_time=float(sum(task.estimated_time for task in tasks)),
        user_inputs=request.user_inputs(),
    )


def fallback_draft(request: DraftRequest) -> QuestDraft:
    """Deterministic draft used when no generator is available."""

    if request.batch:
        return type_template_draft(request)
    minutes = request.time_minutes
    goal = request.specific_goal
    return QuestDraft(
        title=f"{request.domain}: {goal}",
        description=f"Work towards your goal: {goal}. Follow the structured tasks below.",
        domain=request.domain,
        category=request.domain,
        difficulty=request.difficulty,
        tasks=[
            Task(
                title="Research and Plan",
                description=f"Research best practices for {goal}",
                estimated_time=math.floor(minutes * 0.3),
            ),
            Task(
                title="Take Action",
                description=f"Work on {goal} with focus",
                estimated_time=math.floor(minutes * 0.5),
            ),
            Task(
                title="Review and Reflect",
                description="Document progress and learnings",
                estimated_time=math.floor(minutes * 0.2),
            ),
        ],
        success_criteria=["Completed all tasks within time limit", "Made measurable progress toward goal"],
        user_inputs=request.user_inputs(),
        reasoning=f"This quest was generated based on your {request.domain} goal: {goal}",
    )


def build_prompt(request: DraftRequest, guidance: DomainGuidance | None, *, user_level: int = 1) -> str:
    lines = [
        "Generate one hyper-specific, actionable and measurable productivity quest.",
        "",
        "USER INPUT:",
        f"- Domain: {request.domain}",
        f'- Specific Goal: "{request.specific_goal}"',
        f"- Difficulty: {request.difficulty}",
        f"- Time Available: {request.time_minutes} minutes",
        f"- Constraints: {request.constraints or 'None'}",
        f"- Preferences: {request.preferences or 'None'}",
        f"- Quest Type: {request.quest_type}",
        f"- User Level: {user_level}",
    ]
    if guidance is not None:
        lines += [
            "",
            f"DOMAIN GUIDANCE FOR {request.domain}:",
            f"- Focus on: {guidance.focus}",
            f"- Example: {guidance.example}",
            f"- AVOID: {guidance.avoid}",
        ]
    lines += [
        "",
        "REQUIREMENTS:",
        "1. Title must be specific to the goal.",
        "2. 3-5 tasks, each with a measurable outcome and an estimatedTime in minutes.",
        f"3. Task times must sum to at most {request.time_minutes} minutes.",
        "4. Use concrete verbs (complete, build, write, log, measure), never vague ones.",
        "5. Include objectively verifiable successCriteria.",
        f"6. Set outputType to one of {', '.join(OUTPUT_TYPES)} and name the deliverable.",
        "",
        "Return ONLY a JSON object with keys: title, description, category, difficulty, estimatedTime (total minutes), "
        "tasks [{title, description, estimatedTime}], successCriteria, outputType, deliverable, energyRequired, reasoning.",
    ]
    return "\n".join(lines)


class DraftSource(Protocol):
    name: str

    def draft(self, request: DraftRequest, *, user_level: int = 1) -> QuestDraft: ...


class TemplateDraftSource:
    name = "template"

    def draft(self, request: DraftRequest, *, user_level: int = 1) -> QuestDraft:
        return fallback_draft(request)


class OpenAIDraftSource:
    """Chat-completions draft source for any OpenAI-compatible endpoint."""

    name = "openai"

    def __init__(
        self,
        client: Any,
        *,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        guidance: GuidanceBook | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.timeout = timeout
        self.guidance = guidance or load_guidance()
        self.schema = _load_schema()

    @classmethod
    def from_env(cls) -> "OpenAIDraftSource | None":
        api_key = os.environ.get("OPENAI_API_KEY", "").strip()
        if not api_key:
            return None
        client = openai.OpenAI(api_key=api_key, base_url=os.environ.get("OPENAI_BASE_URL") or None)
        return cls(
            client,
            model=os.environ.get("AURAQUEST_DRAFT_MODEL", "").strip() or DEFAULT_MODEL,
            timeout=_env_seconds("AURAQUEST_DRAFT_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        )

    def draft(self, request: DraftRequest, *, user_level: int = 1) -> QuestDraft:
        prompt = build_prompt(request, self.guidance.for_domain(request.domain), user_level=user_level)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You write concrete, single-session quests as strict JSON."},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
        except openai.APITimeoutError as exc:
            raise DraftTimeout(f"Draft request timed out after {self.timeout:g}s") from exc
        except openai.OpenAIError as exc:
            raise DraftUnavailable(f"Draft request failed: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise DraftUnavailable("Draft reply was empty.")
        return parse_draft_text(content, request, schema=self.schema)


def _env_seconds(name: str, fallback: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def draft_source_from_env() -> DraftSource:
    return OpenAIDraftSource.from_env() or TemplateDraftSource()
