from __future__ import annotations

"""Action contexts, read snapshots, and pre-hook decisions shared by every hook."""

import posixpath
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Protocol, Union

from .patterns import normalize_path


INTENT_REQUIRED = "INTENT_REQUIRED"
SCOPE_VIOLATION = "SCOPE_VIOLATION"
STALE_CONTEXT = "STALE_CONTEXT"
DESTRUCTIVE_BLOCKED = "DESTRUCTIVE_BLOCKED"
HOOK_ERROR = "HOOK_ERROR"
BLOCK_CODES = frozenset({INTENT_REQUIRED, SCOPE_VIOLATION, STALE_CONTEXT, DESTRUCTIVE_BLOCKED, HOOK_ERROR})

AST_REFACTOR = "AST_REFACTOR"
INTENT_EVOLUTION = "INTENT_EVOLUTION"
UNKNOWN_MUTATION = "UNKNOWN"
MUTATION_CLASSES = frozenset({AST_REFACTOR, INTENT_EVOLUTION})

UNTRACKED_INTENT = "UNTRACKED"


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _snapshot_key(key: str, cwd: str | None) -> str:
    """Normalize a snapshot key the way target paths are normalized before lookup."""

    key = key.replace("\\", "/")
    if cwd is not None and posixpath.isabs(key):
        return normalize_path(cwd, key)
    return posixpath.normpath(key)


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def resolve_intent_id(tool_args: Mapping[str, Any], task_intent_id: str | None) -> str | None:
    """Explicit non-empty `intent_id` argument wins over the task's active intent."""

    explicit = tool_args.get("intent_id")
    if isinstance(explicit, str) and explicit.strip():
        return explicit
    if isinstance(task_intent_id, str) and task_intent_id.strip():
        return task_intent_id
    return None


def recognized_mutation_class(value: Any) -> str | None:
    if isinstance(value, str) and value in MUTATION_CLASSES:
        return value
    return None


@dataclass(frozen=True)
class FileReadSnapshot:
    """Digest of a file as the agent last read it."""

    sha256: str
    captured_at: str

    def to_dict(self) -> dict[str, str]:
        return {"sha256": self.sha256, "captured_at": self.captured_at}

    @classmethod
    def from_dict(cls, payload: Any) -> "FileReadSnapshot | None":
        if isinstance(payload, FileReadSnapshot):
            return payload
        if not isinstance(payload, Mapping):
            return None
        digest = payload.get("sha256", payload.get("digest"))
        if not isinstance(digest, str) or not digest:
            return None
        captured_at = payload.get("captured_at", payload.get("capturedAt"))
        return cls(sha256=digest, captured_at=captured_at if isinstance(captured_at, str) else "unknown")


def _parse_snapshots(raw: Any) -> dict[str, FileReadSnapshot]:
    if not isinstance(raw, Mapping):
        return {}
    snapshots: dict[str, FileReadSnapshot] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            continue
        snapshot = FileReadSnapshot.from_dict(value)
        if snapshot is not None:
            snapshots[key] = snapshot
    return snapshots


@dataclass(frozen=True)
class HookContext:
    """One tool invocation as seen by the pre-hooks.

    Instances are read-only; hooks return patches instead of editing the context.
    """

    task_id: str
    tool_name: str
    tool_args: Mapping[str, Any] = field(default_factory=dict)
    cwd: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)
    task_active_intent_id: str | None = None
    task_active_mutation_class: str | None = None
    task_file_read_snapshots: Mapping[str, FileReadSnapshot] = field(default_factory=dict)
    patch: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tool_args", _freeze(self.tool_args))
        object.__setattr__(self, "patch", _freeze(self.patch))
        if self.cwd is not None:
            object.__setattr__(self, "cwd", str(self.cwd))
        snapshots = {
            _snapshot_key(key, self.cwd): snapshot for key, snapshot in (self.task_file_read_snapshots or {}).items()
        }
        object.__setattr__(self, "task_file_read_snapshots", _freeze(snapshots))

    def with_patch(self, patch: Mapping[str, Any] | None) -> "HookContext":
        """Return a copy whose `patch` has `patch` merged over the existing keys."""

        merged = dict(self.patch)
        merged.update(patch or {})
        return replace(self, patch=merged)

    def to_post(self, *, tool_result: Any = None, changed_files: list[str] | tuple[str, ...] = ()) -> "PostHookContext":
        values = {item.name: getattr(self, item.name) for item in fields(HookContext)}
        return PostHookContext(**values, tool_result=tool_result, changed_files=tuple(changed_files))

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "tool_name": self.tool_name,
            "tool_args": dict(self.tool_args),
            "cwd": self.cwd,
            "timestamp": self.timestamp,
            "task_active_intent_id": self.task_active_intent_id,
            "task_active_mutation_class": self.task_active_mutation_class,
            "task_file_read_snapshots": {
                key: snapshot.to_dict() for key, snapshot in self.task_file_read_snapshots.items()
            },
            "patch": dict(self.patch),
        }

    @classmethod
    def _kwargs_from_payload(cls, payload: Mapping[str, Any], default_cwd: str | None) -> dict[str, Any]:
        tool_args = payload.get("tool_args")
        patch = payload.get("patch")
        kwargs: dict[str, Any] = {
            "task_id": _opt_str(payload.get("task_id")) or "unknown",
            "tool_name": _opt_str(payload.get("tool_name")) or "",
            "tool_args": tool_args if isinstance(tool_args, Mapping) else {},
            "cwd": _opt_str(payload.get("cwd")) or default_cwd,
            "task_active_intent_id": _opt_str(payload.get("task_active_intent_id")),
            "task_active_mutation_class": recognized_mutation_class(payload.get("task_active_mutation_class")),
            "task_file_read_snapshots": _parse_snapshots(payload.get("task_file_read_snapshots")),
            "patch": patch if isinstance(patch, Mapping) else {},
        }
        timestamp = _opt_str(payload.get("timestamp"))
        if timestamp is not None:
            kwargs["timestamp"] = timestamp
        return kwargs

    @classmethod
    def from_dict(cls, payload: Any, *, default_cwd: str | None = None) -> "HookContext":
        """Build a context from an untrusted JSON payload, defaulting any mistyped field."""

        if not isinstance(payload, Mapping):
            raise ValueError("Hook context must be a JSON object.")
        return cls(**cls._kwargs_from_payload(payload, default_cwd))


@dataclass(frozen=True)
class PostHookContext(HookContext):
    """Context handed to post-hooks once the tool call has taken effect."""

    tool_result: Any = None
    changed_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(
            self,
            "changed_files",
            tuple(path for path in self.changed_files if isinstance(path, str) and path),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["tool_result"] = self.tool_result
        payload["changed_files"] = list(self.changed_files)
        return payload

    @classmethod
    def from_dict(cls, payload: Any, *, default_cwd: str | None = None) -> "PostHookContext":
        if not isinstance(payload, Mapping):
            raise ValueError("Hook context must be a JSON object.")
        kwargs = cls._kwargs_from_payload(payload, default_cwd)
        changed = payload.get("changed_files")
        kwargs["changed_files"] = tuple(changed) if isinstance(changed, (list, tuple)) else ()
        kwargs["tool_result"] = payload.get("tool_result")
        return cls(**kwargs)


@dataclass(frozen=True)
class Allow:
    """Pre-hook verdict letting the call proceed, optionally patching the context."""

    context_patch: Mapping[str, Any] | None = None

    @property
    def allow(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"allow": True}
        if self.context_patch:
            payload["context_patch"] = dict(self.context_patch)
        return payload


@dataclass(frozen=True)
class Block:
    """Pre-hook verdict stopping the call; `reason` is shown to the agent verbatim."""

    code: str
    reason: str

    def __post_init__(self) -> None:
        if self.code not in BLOCK_CODES:
            raise ValueError(f"Unknown block code: {self.code}")

    @property
    def allow(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"allow": False, "code": self.code, "reason": self.reason}


Decision = Union[Allow, Block]


@dataclass(frozen=True)
class PostHookReport:
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {"errors": list(self.errors)}


class PreToolHook(Protocol):
    name: str

    def run(self, context: HookContext) -> Decision | Awaitable[Decision]: ...


class PostToolHook(Protocol):
    name: str

    def run(self, context: PostHookContext) -> None | Awaitable[None]: ...
