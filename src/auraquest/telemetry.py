from __future__ import annotations

"""Structured JSONL event log for quest lifecycle and adaptation, with windowed summaries."""

import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any

from .redaction import payload_contains_pii, payload_contains_secrets


SCHEMA_VERSION = "1.0"
VALID_EVENT_TYPES = {
    "service.started",
    "quest.generated",
    "quest.validated",
    "quest.rescoped",
    "quest.rejected",
    "quest.completed",
    "quest.skipped",
    "quest.progressed",
    "quest.edited",
    "achievement.unlocked",
    "memory.updated",
    "memory.conflict",
    "main_quest.selected",
    "draft.fallback",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "system"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _rfc3339(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


@dataclass(frozen=True)
class BuildInfo:
    engine_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class SanitizeStats:
    """Counts for redactions and truncations applied to one payload."""

    redacted_fields: int = 0
    truncated_fields: int = 0

    def __add__(self, other: SanitizeStats) -> SanitizeStats:
        return SanitizeStats(
            redacted_fields=self.redacted_fields + other.redacted_fields,
            truncated_fields=self.truncated_fields + other.truncated_fields,
        )


def _sanitize_text(value: str) -> tuple[str, SanitizeStats]:
    cleaned = _strip_control_chars(value).strip()
    if payload_contains_secrets(cleaned) or payload_contains_pii(cleaned):
        return "[redacted]", SanitizeStats(redacted_fields=1)
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", SanitizeStats(truncated_fields=1)
    return cleaned, SanitizeStats()


def sanitize_actor_id(value: Any) -> str:
    if value is None:
        return "unknown"
    sanitized, _ = _sanitize_text(str(value))
    return sanitized or "unknown"


def sanitize_event_data(data: Any) -> tuple[Any, SanitizeStats]:
    """Recursively clean an event payload, counting what was redacted or truncated."""

    if isinstance(data, dict):
        cleaned: dict[str, Any] = {}
        stats = SanitizeStats()
        for key, value in data.items():
            key_text, key_stats = _sanitize_text(str(key))
            value_clean, value_stats = sanitize_event_data(value)
            cleaned[key_text] = value_clean
            stats = stats + key_stats + value_stats
        return cleaned, stats
    if isinstance(data, (list, tuple)):
        items: list[Any] = []
        stats = SanitizeStats()
        for item in data:
            item_clean, item_stats = sanitize_event_data(item)
            items.append(item_clean)
            stats = stats + item_stats
        return items, stats
    if data is None or isinstance(data, (int, float, bool)):
        return data, SanitizeStats()
    return _sanitize_text(str(data))


def parse_range(range_value: str) -> timedelta:
    """Parse compact windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if match.group(2) == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_engine_version() -> str:
    try:
        return package_version("auraquest")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Append-only event log; writing never raises into the caller."""

    def __init__(self, events_path: Path) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.build = BuildInfo(
            engine_version=detect_engine_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True))
            handle.write("\n")

    def _base_event(
        self,
        *,
        event_type: str,
        actor_id: str | None,
        source: str,
        trace_id: str | None,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            data = {"reason": "invalid_event_type", "event_type": event_type}
            event_type = "risk.flagged"
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _rfc3339(_utc_now()),
            "event_type": event_type,
            "actor": {"kind": "user" if actor_id else "system", "id": sanitize_actor_id(actor_id or "system")},
            "source": source if source in VALID_SOURCES else "system",
            "trace_id": trace_id,
            "build": self.build.to_dict(),
            "data": data,
        }

    def log_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        actor_id: str | None = None,
        trace_id: str | None = None,
        _emit_sanitize_flag: bool = True,
    ) -> None:
        """Write one sanitized event, followed by a `risk.flagged` event if anything was scrubbed."""

        try:
            sanitized, stats = sanitize_event_data(data)
            self._append_jsonl(
                self._base_event(
                    event_type=event_type,
                    actor_id=actor_id,
                    source=source,
                    trace_id=trace_id,
                    data=sanitized if isinstance(sanitized, dict) else {"value": sanitized},
                )
            )
            if _emit_sanitize_flag and (stats.redacted_fields or stats.truncated_fields):
                self.log_event(
                    "risk.flagged",
                    source=source,
                    actor_id=actor_id,
                    trace_id=trace_id,
                    data={
                        "reason": "telemetry_sanitized",
                        "trigger_event_type": event_type,
                        "fields_redacted_count": stats.redacted_fields,
                        "fields_truncated_count": stats.truncated_fields,
                    },
                    _emit_sanitize_flag=False,
                )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def count_events(self) -> int:
        return len(self.iter_events())

    def export_summary(
        self,
        *,
        range_value: str,
        actor_id: str | None = None,
        out_path: Path | None = None,
    ) -> dict[str, Any]:
        """Aggregate quest outcomes inside a trailing window, optionally for one user."""

        window = parse_range(range_value)
        end = _utc_now()
        start = end - window
        actor_filter = sanitize_actor_id(actor_id) if actor_id is not None else None

        in_window: list[dict[str, Any]] = []
        for event in self.iter_events():
            ts = _parse_ts(event.get("ts"))
            if ts is None or not (start <= ts <= end):
                continue
            actor = event.get("actor") if isinstance(event.get("actor"), dict) else {}
            if actor_filter is not None and actor.get("id") != actor_filter:
                continue
            in_window.append(event)

        by_type = Counter(str(event.get("event_type")) for event in in_window)
        completions = [event for event in in_window if event.get("event_type") == "quest.completed"]
        fallbacks = [event for event in in_window if event.get("event_type") == "draft.fallback"]
        completions_by_domain = Counter(str(event.get("data", {}).get("domain") or "unknown") for event in completions)
        fallbacks_by_reason = Counter(str(event.get("data", {}).get("reason") or "unknown") for event in fallbacks)
        attempts = by_type["quest.completed"] + by_type["quest.skipped"]

        summary = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _rfc3339(end),
            "range": range_value,
            "actor_id_filter": actor_filter,
            "window_start": _rfc3339(start),
            "window_end": _rfc3339(end),
            "events_considered": len(in_window),
            "events_by_type": dict(sorted(by_type.items())),
            "quests_generated": by_type["quest.generated"],
            "quests_rescoped": by_type["quest.rescoped"],
            "quests_rejected": by_type["quest.rejected"],
            "completions_total": by_type["quest.completed"],
            "skips_total": by_type["quest.skipped"],
            "completions_by_domain": dict(sorted(completions_by_domain.items())),
            "quest_success_rate": round(by_type["quest.completed"] / attempts, 4) if attempts else 0.0,
            "draft_fallbacks": dict(sorted(fallbacks_by_reason.items())),
            "achievements_unlocked": by_type["achievement.unlocked"],
            "memory_conflicts": by_type["memory.conflict"],
            "risk_flags_count": by_type["risk.flagged"],
        }
        if out_path is not None:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return summary
