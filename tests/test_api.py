from __future__ import annotations

import copy
from datetime import UTC, datetime
from pathlib import Path

from fastapi.testclient import TestClient

from auraquest.api import TRACE_HEADER, USER_HEADER, create_app
from auraquest.drafts import DraftRequest
from auraquest.models import QuestDraft, Task
from auraquest.service import QuestService
from auraquest.store import MemoryStore
from auraquest.telemetry import TelemetryLogger


class _StaticSource:
    name = "static"

    def __init__(self, draft: QuestDraft) -> None:
        self.template = draft

    def draft(self, request: DraftRequest, *, user_level: int = 1) -> QuestDraft:
        return copy.deepcopy(self.template)


def _draft() -> QuestDraft:
    return QuestDraft(
        title="Write a one page portfolio summary",
        description="Draft the summary section for the portfolio site",
        domain="Career",
        difficulty="Medium",
        tasks=[
            Task(title="Outline three projects", estimated_time=10),
            Task(title="Write the summary", estimated_time=15),
        ],
        success_criteria=["Summary saved"],
        output_type="WRITTEN_NOTE",
        deliverable="Portfolio summary",
    )


def _service_and_client(tmp_path: Path) -> tuple[QuestService, TestClient]:
    service = QuestService(
        store=MemoryStore(),
        telemetry=TelemetryLogger(tmp_path / "events.jsonl"),
        draft_source=_StaticSource(_draft()),
        now=lambda: datetime(2026, 3, 2, 14, 0, tzinfo=UTC),
    )
    return service, TestClient(create_app(service))


def _as(user_id: str) -> dict[str, str]:
    return {USER_HEADER: user_id}


def _signup(client: TestClient, user_id: str = "alice") -> None:
    response = client.post("/v1/users", json={"user_id": user_id, "name": user_id.title(), "goal_categories": ["Career"]})
    assert response.status_code == 201


def _generate(client: TestClient, user_id: str = "alice") -> dict:
    response = client.post(
        "/v1/quests/generate",
        headers=_as(user_id),
        json={"domain": "Career", "specific_goal": "ship my portfolio", "time_available": 30},
    )
    assert response.status_code == 200
    return response.json()


def test_health_reports_draft_source(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["draft_source"] == "static"


def test_user_header_is_required(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    assert client.get("/v1/users/me").status_code == 401
    assert client.get("/v1/quests").status_code == 401


def test_create_user_and_duplicate(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    me = client.get("/v1/users/me", headers=_as("alice"))
    assert me.status_code == 200
    assert me.json()["onboarding"]["goal_categories"] == ["Career"]

    duplicate = client.post("/v1/users", json={"user_id": "alice"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "USER_EXISTS"

    bad = client.post("/v1/users", json={"user_id": "bob", "difficulty_level": "Legendary"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "INVALID_REQUEST"


def test_generate_and_fetch_quest(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    quest = _generate(client)

    assert quest["status"] == "pending"
    assert quest["quest_type"] == "daily"
    fetched = client.get(f"/v1/quests/{quest['id']}", headers=_as("alice"))
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Write a one page portfolio summary"
    assert [item["id"] for item in client.get("/v1/quests", headers=_as("alice")).json()] == [quest["id"]]


def test_generate_preview_and_invalid_inputs(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    preview = client.post(
        "/v1/quests/generate",
        headers=_as("alice"),
        json={"domain": "Career", "specific_goal": "ship my portfolio", "preview": True},
    )
    assert preview.status_code == 200
    assert preview.json()["preview"] is True
    assert client.get("/v1/quests", headers=_as("alice")).json() == []

    invalid = client.post(
        "/v1/quests/generate",
        headers=_as("alice"),
        json={"domain": "Career", "specific_goal": "ship my portfolio", "quest_type": "hourly"},
    )
    assert invalid.status_code == 400
    assert "quest_type" in invalid.json()["message"]

    missing_goal = client.post("/v1/quests/generate", headers=_as("alice"), json={"domain": "Career"})
    assert missing_goal.status_code == 422


def test_trace_header_is_echoed_and_logged(tmp_path: Path) -> None:
    service, client = _service_and_client(tmp_path)
    _signup(client)

    response = client.post(
        "/v1/quests/generate",
        headers={**_as("alice"), TRACE_HEADER: "trace-abc"},
        json={"domain": "Career", "specific_goal": "ship my portfolio"},
    )

    assert response.headers[TRACE_HEADER] == "trace-abc"
    generated = [event for event in service.telemetry.iter_events() if event["event_type"] == "quest.generated"]
    assert generated[0]["trace_id"] == "trace-abc"
    assert generated[0]["source"] == "api"
    assert client.get("/v1/health").headers[TRACE_HEADER].startswith("api:")


def test_quest_errors_map_to_status_codes(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)
    _signup(client, "bob")
    quest = _generate(client)

    missing = client.get("/v1/quests/nope", headers=_as("alice"))
    assert missing.status_code == 404
    assert missing.json()["code"] == "QUEST_NOT_FOUND"

    foreign = client.post(f"/v1/quests/{quest['id']}/complete", headers=_as("bob"), json={})
    assert foreign.status_code == 403
    assert foreign.json()["code"] == "QUEST_NOT_OWNED"

    negative = client.post(f"/v1/quests/{quest['id']}/complete", headers=_as("alice"), json={"time_taken": -5})
    assert negative.status_code == 422

    unknown_user = client.get("/v1/insights", headers=_as("ghost"))
    assert unknown_user.status_code == 404


def test_complete_then_complete_again(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)
    quest = _generate(client)

    done = client.post(f"/v1/quests/{quest['id']}/complete", headers=_as("alice"), json={"time_taken": 20})
    assert done.status_code == 200
    payload = done.json()
    assert payload["quest"]["status"] == "completed"
    assert payload["stats"]["xp"] == 75 + 50
    assert payload["momentum"] == "🌟 Great start!"

    again = client.post(f"/v1/quests/{quest['id']}/complete", headers=_as("alice"), json={})
    assert again.status_code == 409
    assert again.json()["code"] == "QUEST_CLOSED"

    insights = client.get("/v1/insights", headers=_as("alice"))
    assert insights.status_code == 200
    assert insights.json()[0]["type"] == "pattern"


def test_task_updates_skip_and_delete(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)
    first = _generate(client)
    second = _generate(client)

    progressed = client.patch(f"/v1/quests/{first['id']}/tasks/0", headers=_as("alice"), json={"completed": True})
    assert progressed.status_code == 200
    assert progressed.json()["quest"]["progress"] == 50

    out_of_range = client.patch(f"/v1/quests/{first['id']}/tasks/9", headers=_as("alice"), json={})
    assert out_of_range.status_code == 400

    skipped = client.post(f"/v1/quests/{second['id']}/skip", headers=_as("alice"), json={"reason": "busy"})
    assert skipped.status_code == 200
    assert skipped.json()["quest"]["status"] == "failed"
    assert skipped.json()["suggestion"]["difficulty"] == "Easy"

    failed = client.get("/v1/quests", headers=_as("alice"), params={"status": "failed"}).json()
    assert [item["id"] for item in failed] == [second["id"]]

    deleted = client.delete(f"/v1/quests/{second['id']}", headers=_as("alice"))
    assert deleted.json() == {"quest_id": second["id"], "deleted": True}
    assert client.get(f"/v1/quests/{second['id']}", headers=_as("alice")).status_code == 404


def test_main_quest_endpoints(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    empty = client.get("/v1/quests/main", headers=_as("alice"))
    assert empty.status_code == 200
    assert empty.json() == {"main_quest": None}

    quest = _generate(client)
    main = client.get("/v1/quests/main", headers=_as("alice")).json()["main_quest"]
    assert main["id"] == quest["id"]
    assert main["intent"]["is_main_quest"] is True

    confirmed = client.post(f"/v1/quests/{quest['id']}/confirm-main", headers=_as("alice"))
    assert confirmed.status_code == 200
    assert confirmed.json()["intent"]["confirmed"] is True


def test_unexpected_errors_return_500_and_flag_risk(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    service, client = _service_and_client(tmp_path)
    _signup(client)

    def boom(user_id: str) -> list[dict]:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(service, "get_insights", boom)
    response = client.get("/v1/insights", headers=_as("alice"))

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_SERVER_ERROR"
    assert "disk on fire" not in response.text
    flagged = [event for event in service.telemetry.iter_events() if event["event_type"] == "risk.flagged"]
    assert flagged[-1]["data"]["reason"] == "api_internal_error"
    assert flagged[-1]["data"]["endpoint"] == "/v1/insights"


def test_generate_rejects_non_positive_time(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    as_number = client.post(
        "/v1/quests/generate",
        headers=_as("alice"),
        json={"domain": "Career", "specific_goal": "ship my portfolio", "time_available": -5},
    )
    assert as_number.status_code == 422

    as_text = client.post(
        "/v1/quests/generate",
        headers=_as("alice"),
        json={"domain": "Career", "specific_goal": "ship my portfolio", "time_available": "-5"},
    )
    assert as_text.status_code == 400
    assert "time_available" in as_text.json()["message"]
    assert client.get("/v1/quests", headers=_as("alice")).json() == []


def test_edit_and_filter_quests(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)
    quest = _generate(client)

    edited = client.put(
        f"/v1/quests/{quest['id']}/edit",
        headers=_as("alice"),
        json={"difficulty": "Hard", "tasks": [{"title": "Write the summary", "estimated_time": 20}]},
    )
    assert edited.status_code == 200
    assert edited.json()["xp_reward"] == 100
    assert [task["title"] for task in edited.json()["tasks"]] == ["Write the summary"]

    assert client.put(f"/v1/quests/{quest['id']}/edit", headers=_as("alice"), json={}).status_code == 400
    bad = client.put(f"/v1/quests/{quest['id']}/edit", headers=_as("alice"), json={"difficulty": "Epic"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "INVALID_REQUEST"

    assert [item["id"] for item in client.get("/v1/quests", headers=_as("alice"), params={"type": "daily"}).json()] == [
        quest["id"]
    ]
    assert client.get("/v1/quests", headers=_as("alice"), params={"type": "weekly"}).json() == []
    assert client.get("/v1/quests", headers=_as("alice"), params={"type": "hourly"}).status_code == 400


def test_batch_overview_and_achievements(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    _signup(client)

    batch = client.post("/v1/quests/batch", headers=_as("alice"), json={"quest_type": "weekly", "count": 2})
    assert batch.status_code == 200
    assert batch.json()["quest_type"] == "weekly"
    quests = batch.json()["quests"]
    assert len(quests) == 2
    assert all(quest["quest_type"] == "weekly" for quest in quests)

    too_many = client.post("/v1/quests/batch", headers=_as("alice"), json={"count": 6})
    assert too_many.status_code == 422

    client.post(f"/v1/quests/{quests[0]['id']}/complete", headers=_as("alice"), json={})
    overview = client.get("/v1/overview", headers=_as("alice")).json()
    assert overview["quests"]["total"] == 2
    assert overview["quests"]["completion_rate"] == 50.0
    assert overview["achievements_unlocked"] == 1

    achievements = client.get("/v1/achievements", headers=_as("alice")).json()
    assert [item["type"] for item in achievements["unlocked"]] == ["first_quest"]
    assert len(achievements["available"]) == 6
