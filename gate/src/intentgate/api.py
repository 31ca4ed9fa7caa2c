from __future__ import annotations

"""HTTP API surface for task runtimes that drive the hook pipeline out of process."""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .models import HookContext, PostHookContext
from .service import GovernanceService, IntentSelectionError, PathOutsideWorkspaceError


logger = logging.getLogger(__name__)


class SnapshotModel(BaseModel):
    """Digest of a file as the agent last read it."""

    sha256: str = Field(min_length=1)
    captured_at: str = "unknown"


class HookContextRequest(BaseModel):
    """Payload for `/v1/hooks/pre`; `cwd` defaults to the service workspace."""

    task_id: str = "unknown"
    tool_name: str = Field(min_length=1)
    tool_args: dict[str, Any] = Field(default_factory=dict)
    cwd: str | None = None
    timestamp: str | None = None
    task_active_intent_id: str | None = None
    task_active_mutation_class: str | None = None
    task_file_read_snapshots: dict[str, SnapshotModel] = Field(default_factory=dict)
    patch: dict[str, Any] = Field(default_factory=dict)


class PostHookContextRequest(HookContextRequest):
    """Payload for `/v1/hooks/post` with the tool result and changed files."""

    tool_result: Any = None
    changed_files: list[str] = Field(default_factory=list)


class SelectIntentRequest(BaseModel):
    intent_id: str
    mutation_class: str


class SnapshotRequest(BaseModel):
    path: str = Field(min_length=1)


def _selection_error(exc: IntentSelectionError) -> HTTPException:
    status = 404 if exc.code in {"INTENT_NOT_FOUND", "REGISTRY_MISSING"} else 400
    return HTTPException(status_code=status, detail=exc.to_dict())


def create_app(service: GovernanceService) -> FastAPI:
    """Create API routes backed by `GovernanceService`."""

    app = FastAPI(title="intentgate API", version="0.1")
    workspace = str(service.workspace)

    @app.middleware("http")
    async def internal_error_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            logger.exception("unhandled error on %s", request.url.path)
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "error_type": exc.__class__.__name__,
                },
            )

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {
            "ok": True,
            "workspace": workspace,
            "trace": service.trace_status(),
            "sidecars": service.sidecar_status(),
        }

    @app.get("/v1/intents")
    def list_intents() -> dict[str, Any]:
        return {"intents": service.list_intents()}

    @app.get("/v1/intents/validate")
    def validate_intents() -> dict[str, Any]:
        return service.validate_registry()

    @app.get("/v1/intents/{intent_id}")
    def get_intent(intent_id: str) -> dict[str, Any]:
        try:
            return service.get_intent(intent_id)
        except IntentSelectionError as exc:
            raise _selection_error(exc) from exc

    @app.post("/v1/intents/select")
    def select_intent(payload: SelectIntentRequest) -> dict[str, Any]:
        try:
            return service.select_intent(payload.intent_id, payload.mutation_class).to_dict()
        except IntentSelectionError as exc:
            raise _selection_error(exc) from exc

    @app.post("/v1/hooks/pre")
    async def run_pre_hooks(payload: HookContextRequest) -> dict[str, Any]:
        context = HookContext.from_dict(payload.model_dump(), default_cwd=workspace)
        decision = await service.pre_check(context)
        return decision.to_dict()

    @app.post("/v1/hooks/post")
    async def run_post_hooks(payload: PostHookContextRequest) -> dict[str, Any]:
        context = PostHookContext.from_dict(payload.model_dump(), default_cwd=workspace)
        report = await service.post_record(context)
        return report.to_dict()

    @app.post("/v1/snapshots")
    def capture_snapshot(payload: SnapshotRequest) -> dict[str, Any]:
        try:
            rel_path, snapshot = service.capture_snapshot(payload.path)
        except PathOutsideWorkspaceError as exc:
            raise HTTPException(status_code=400, detail={"code": "PATH_OUTSIDE_WORKSPACE", "message": str(exc)}) from exc
        except OSError as exc:
            raise HTTPException(status_code=404, detail={"code": "FILE_UNREADABLE", "message": str(exc)}) from exc
        return {"path": rel_path, "snapshot": snapshot.to_dict()}

    @app.get("/v1/trace")
    def trace_tail(limit: int = Query(default=20, ge=1, le=500)) -> dict[str, Any]:
        return {"records": service.trace_tail(limit)}

    return app
