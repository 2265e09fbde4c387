from __future__ import annotations

"""HTTP API over QuestService; callers identify themselves with `X-AuraQuest-User-Id`."""

from typing import Annotated, Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .service import MAX_BATCH_SIZE, QuestService, ServiceError
from .telemetry import sanitize_actor_id


USER_HEADER = "x-auraquest-user-id"
TRACE_HEADER = "X-AuraQuest-Trace-Id"


class CreateUserRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    name: str = Field(default="", max_length=200)
    goal_categories: list[str] = Field(default_factory=list)
    difficulty_level: str = "Medium"
    time_commitment: str = "30min"


class GenerateRequest(BaseModel):
    """Inputs for one quest draft; `preview` validates without saving."""

    domain: str = Field(min_length=1, max_length=120)
    specific_goal: str = Field(min_length=1, max_length=500)
    quest_type: str = "daily"
    difficulty: str = "Medium"
    time_available: Annotated[int, Field(gt=0)] | str = "30"
    constraints: str | None = Field(default=None, max_length=500)
    preferences: str | None = Field(default=None, max_length=500)
    energy_level: str | None = None
    preview: bool = False


class CompleteRequest(BaseModel):
    time_taken: float | None = Field(default=None, ge=0)


class SkipRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class TaskUpdateRequest(BaseModel):
    completed: bool = True


class EditTask(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=500)
    estimated_time: int = Field(default=0, ge=0)


class EditQuestRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    tasks: list[EditTask] | None = None
    difficulty: str | None = None
    success_criteria: list[str] | None = None


class BatchRequest(BaseModel):
    quest_type: str = "daily"
    count: int = Field(default=1, ge=1, le=MAX_BATCH_SIZE)


def create_app(service: QuestService) -> FastAPI:
    """Create `/v1` routes backed by `QuestService`."""

    app = FastAPI(title="AuraQuest API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get(TRACE_HEADER) or "").strip()
        trace_id = sanitize_actor_id(incoming) if incoming else f"api:{uuid4()}"
        if not trace_id or trace_id in {"unknown", "[redacted]"}:
            trace_id = f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error", "trace_id": trace_id},
            )
        response.headers[TRACE_HEADER] = trace_id
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"code": "INVALID_REQUEST", "message": str(exc)})

    def caller(request: Request) -> str:
        user_id = (request.headers.get(USER_HEADER) or "").strip()
        if not user_id:
            raise HTTPException(status_code=401, detail="X-AuraQuest-User-Id header is required.")
        return user_id

    def request_trace_id(request: Request) -> str:
        value = getattr(request.state, "trace_id", None)
        if isinstance(value, str) and value:
            return value
        return f"api:{uuid4()}"

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": "0.1", "draft_source": service.draft_source.name}

    @app.post("/v1/users", status_code=201)
    def create_user(body: CreateUserRequest, request: Request) -> dict[str, Any]:
        return service.create_user(
            body.user_id,
            body.name,
            body.goal_categories,
            body.difficulty_level,
            body.time_commitment,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.get("/v1/users/me")
    def get_user(request: Request) -> dict[str, Any]:
        return service.get_user(caller(request))

    @app.post("/v1/quests/generate")
    def generate_quest(body: GenerateRequest, request: Request) -> dict[str, Any]:
        inputs = body.model_dump(exclude={"preview"})
        inputs["time_available"] = str(body.time_available)
        return service.generate_and_validate(
            caller(request),
            inputs,
            preview=body.preview,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.post("/v1/quests/batch")
    def generate_batch(body: BatchRequest, request: Request) -> dict[str, Any]:
        return service.generate_batch(
            caller(request),
            body.quest_type,
            body.count,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.get("/v1/quests")
    def list_quests(
        request: Request,
        status: str | None = None,
        quest_type: str | None = Query(default=None, alias="type"),
    ) -> list[dict[str, Any]]:
        return service.list_quests(caller(request), status=status, quest_type=quest_type)

    @app.get("/v1/quests/main")
    def get_main_quest(request: Request) -> dict[str, Any]:
        quest = service.get_main_quest(caller(request), source="api", trace_id=request_trace_id(request))
        return {"main_quest": quest}

    @app.post("/v1/quests/{quest_id}/confirm-main")
    def confirm_main_quest(quest_id: str, request: Request) -> dict[str, Any]:
        return service.confirm_main_quest(caller(request), quest_id, source="api", trace_id=request_trace_id(request))

    @app.get("/v1/quests/{quest_id}")
    def get_quest(quest_id: str, request: Request) -> dict[str, Any]:
        return service.get_quest(caller(request), quest_id)

    @app.put("/v1/quests/{quest_id}/edit")
    def edit_quest(quest_id: str, body: EditQuestRequest, request: Request) -> dict[str, Any]:
        return service.edit_quest(
            caller(request),
            quest_id,
            body.model_dump(exclude_none=True),
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.patch("/v1/quests/{quest_id}/tasks/{task_index}")
    def update_task(quest_id: str, task_index: int, body: TaskUpdateRequest, request: Request) -> dict[str, Any]:
        return service.update_task(
            caller(request),
            quest_id,
            task_index,
            body.completed,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.post("/v1/quests/{quest_id}/complete")
    def complete_quest(quest_id: str, body: CompleteRequest, request: Request) -> dict[str, Any]:
        return service.record_completion(
            caller(request),
            quest_id,
            body.time_taken,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.post("/v1/quests/{quest_id}/skip")
    def skip_quest(quest_id: str, body: SkipRequest, request: Request) -> dict[str, Any]:
        return service.record_skip(
            caller(request),
            quest_id,
            body.reason,
            source="api",
            trace_id=request_trace_id(request),
        )

    @app.delete("/v1/quests/{quest_id}")
    def delete_quest(quest_id: str, request: Request) -> dict[str, Any]:
        return service.delete_quest(caller(request), quest_id)

    @app.get("/v1/insights")
    def insights(request: Request) -> list[dict[str, Any]]:
        return service.get_insights(caller(request))

    @app.get("/v1/overview")
    def overview(request: Request) -> dict[str, Any]:
        return service.get_overview(caller(request))

    @app.get("/v1/achievements")
    def achievements(request: Request) -> dict[str, Any]:
        return service.get_achievements(caller(request))

    return app
