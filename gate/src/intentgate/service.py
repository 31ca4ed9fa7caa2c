from __future__ import annotations

"""Caller-facing governance service: pipeline wiring, intent selection, and trace access."""

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import GateSettings
from .digest import capture_snapshot
from .engine import HookEngine
from .models import MUTATION_CLASSES, Decision, FileReadSnapshot, HookContext, PostHookContext, PostHookReport
from .patterns import WRITE_TOOLS, normalize_path
from .paths import intent_map_path, intents_path, trace_path
from .registry import ActiveIntent, load_registry, render_intent_context, validate_registry
from .require_intent import MUTATING_TOOLS, RequireIntentPreHook
from .scope import ScopeEnforcementPreHook
from .stale_read import StaleReadPreHook
from .trace import TraceLog, TraceMutationPostHook


logger = logging.getLogger(__name__)


class IntentSelectionError(ValueError):
    """Structured intent selection error for stable API and CLI responses."""

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


class PathOutsideWorkspaceError(ValueError):
    """Raised when a caller-supplied path resolves outside the workspace root."""


@dataclass(frozen=True)
class IntentSelection:
    intent: ActiveIntent
    mutation_class: str
    context_xml: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent_id": self.intent.id,
            "mutation_class": self.mutation_class,
            "intent": self.intent.to_dict(),
            "context_xml": self.context_xml,
        }


ToolOutcome = tuple[Any, Sequence[str]]
ToolCall = Callable[[HookContext], "ToolOutcome | Awaitable[ToolOutcome]"]


@dataclass(frozen=True)
class GovernedCall:
    """Outcome of `GovernanceService.run_tool`; `report` is None when the call was blocked."""

    decision: Decision
    tool_result: Any = None
    report: PostHookReport | None = None

    @property
    def executed(self) -> bool:
        return self.decision.allow


def build_default_engine(settings: GateSettings) -> HookEngine:
    """Register the built-in hooks in their canonical order."""

    write_tools = WRITE_TOOLS | settings.extra_write_tools
    engine = HookEngine()
    engine.register_pre_hook(RequireIntentPreHook(MUTATING_TOOLS | settings.extra_mutating_tools))
    engine.register_pre_hook(ScopeEnforcementPreHook(write_tools, orchestration_dir=settings.orchestration_dir))
    engine.register_pre_hook(StaleReadPreHook(write_tools))
    engine.register_post_hook(
        TraceMutationPostHook(
            orchestration_dir=settings.orchestration_dir,
            lock_timeout=settings.lock_timeout_seconds,
            model_identifier=settings.model_identifier,
        )
    )
    return engine


@dataclass
class GovernanceService:
    workspace: Path
    settings: GateSettings
    engine: HookEngine

    @classmethod
    def create(cls, workspace: Path, settings: GateSettings | None = None) -> "GovernanceService":
        resolved = settings or GateSettings.from_env()
        return cls(workspace=workspace.resolve(), settings=resolved, engine=build_default_engine(resolved))

    @property
    def trace_log(self) -> TraceLog:
        return TraceLog(
            trace_path(self.workspace, self.settings.orchestration_dir),
            lock_timeout=self.settings.lock_timeout_seconds,
        )

    async def pre_check(self, context: HookContext) -> Decision:
        return await self.engine.run_pre_hooks(context)

    async def post_record(self, context: PostHookContext) -> PostHookReport:
        report = await self.engine.run_post_hooks(context)
        for error in report.errors:
            logger.warning("%s", error)
        return report

    async def run_tool(self, context: HookContext, tool: ToolCall) -> GovernedCall:
        """Gate one in-process tool call: pre-hooks, the tool, then post-hooks.

        `tool` only runs when the pre-hooks allow it. It receives the context with the
        merged pre-hook patch applied and returns `(tool_result, changed_files)`; the
        same patched context is what the post-hooks record. Errors raised by `tool`
        propagate to the caller and no post-hooks run.
        """

        decision = await self.pre_check(context)
        if not decision.allow:
            return GovernedCall(decision=decision)

        patched = context.with_patch(decision.context_patch)
        outcome = tool(patched)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        tool_result, changed_files = outcome
        report = await self.post_record(patched.to_post(tool_result=tool_result, changed_files=tuple(changed_files)))
        return GovernedCall(decision=decision, tool_result=tool_result, report=report)

    def list_intents(self) -> list[dict[str, Any]]:
        registry = load_registry(self.workspace, self.settings.orchestration_dir)
        if registry is None:
            return []
        return [intent.to_dict() for intent in registry.intents]

    def get_intent(self, intent_id: str) -> dict[str, Any]:
        registry = load_registry(self.workspace, self.settings.orchestration_dir)
        intent = registry.get(intent_id) if registry is not None else None
        if intent is None:
            raise IntentSelectionError("INTENT_NOT_FOUND", f"Unknown intent_id: {intent_id}", intent_id=intent_id)
        return intent.to_dict()

    def validate_registry(self) -> dict[str, Any]:
        findings = validate_registry(self.workspace, self.settings.orchestration_dir)
        return {"ok": not findings, "findings": findings}

    def select_intent(self, intent_id: str, mutation_class: str) -> IntentSelection:
        """Resolve an intent for the task runtime and render its context block."""

        if not isinstance(intent_id, str) or not intent_id.strip():
            raise IntentSelectionError("MISSING_PARAMETER", "intent_id is required.", parameter="intent_id")
        if mutation_class not in MUTATION_CLASSES:
            raise IntentSelectionError(
                "MISSING_PARAMETER",
                "mutation_class must be AST_REFACTOR or INTENT_EVOLUTION.",
                parameter="mutation_class",
            )

        registry = load_registry(self.workspace, self.settings.orchestration_dir)
        if registry is None:
            raise IntentSelectionError(
                "REGISTRY_MISSING",
                "Unable to load the active intent registry.",
                hint="Create the sidecar file and define at least one active intent.",
                path=str(intents_path(self.workspace, self.settings.orchestration_dir)),
            )

        intent_id = intent_id.strip()
        intent = registry.get(intent_id)
        if intent is None:
            raise IntentSelectionError(
                "INTENT_NOT_FOUND",
                f"Invalid intent_id '{intent_id}'. No matching entry found in active_intents.yaml.",
                known_ids=registry.ids(),
            )
        return IntentSelection(
            intent=intent,
            mutation_class=mutation_class,
            context_xml=render_intent_context(intent, mutation_class),
        )

    def capture_snapshot(self, path: str) -> tuple[str, FileReadSnapshot]:
        """Fingerprint a workspace file; paths that escape the workspace are rejected."""

        rel_path = normalize_path(str(self.workspace), path)
        if rel_path == ".." or rel_path.startswith("../"):
            raise PathOutsideWorkspaceError(f"Refusing to snapshot '{path}': it resolves outside the workspace.")
        return rel_path, capture_snapshot(self.workspace / rel_path)

    def trace_tail(self, limit: int = 20) -> list[dict[str, Any]]:
        return self.trace_log.tail(limit)

    def trace_status(self) -> dict[str, Any]:
        log = self.trace_log
        return {"path": str(log.path), "records": log.count()}

    def sidecar_status(self) -> dict[str, Any]:
        """Report which orchestration sidecar files exist in the workspace."""

        dirname = self.settings.orchestration_dir
        files = {
            "registry": intents_path(self.workspace, dirname),
            "trace": trace_path(self.workspace, dirname),
            "intent_map": intent_map_path(self.workspace, dirname),
        }
        return {name: {"path": str(path), "exists": path.is_file()} for name, path in files.items()}
