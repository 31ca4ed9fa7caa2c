from __future__ import annotations

"""Append-only agent trace store and the post-hook that records mutations into it."""

import json
import logging
import os
import subprocess
import uuid
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from filelock import FileLock

from .config import DEFAULT_LOCK_TIMEOUT_SECONDS, DEFAULT_ORCHESTRATION_DIR
from .digest import content_hash
from .models import (
    AST_REFACTOR,
    UNKNOWN_MUTATION,
    UNTRACKED_INTENT,
    PostHookContext,
    recognized_mutation_class,
    resolve_intent_id,
    utc_now_iso,
)
from .patterns import normalize_path
from .paths import trace_path


logger = logging.getLogger(__name__)

TRACED_TOOLS = frozenset({"write_to_file", "apply_diff", "edit_file", "apply_patch", "search_replace"})
REFACTOR_TOOLS = frozenset({"write_to_file", "apply_diff", "edit_file"})
UNKNOWN_REVISION = "unknown"
UNKNOWN_MODEL = "unknown"


def _safe_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=True)


def detect_revision(cwd: str | Path) -> str:
    """Best-effort HEAD commit of the workspace; never raises."""

    try:
        output = subprocess.run(  # noqa: S603
            ["git", "rev-parse", "HEAD"],
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return UNKNOWN_REVISION
    value = output.stdout.strip()
    if output.returncode != 0 or not value:
        return UNKNOWN_REVISION
    return value


def infer_mutation_class(
    tool_name: str,
    tool_args: Mapping[str, Any],
    *fallbacks: Any,
) -> str:
    """Explicit argument, then any resolved fallback, then the tool-name heuristic."""

    for candidate in (tool_args.get("mutation_class"), *fallbacks):
        resolved = recognized_mutation_class(candidate)
        if resolved is not None:
            return resolved
    if tool_name in REFACTOR_TOOLS:
        return AST_REFACTOR
    return UNKNOWN_MUTATION


def build_file_entry(
    relative_path: str,
    content: bytes,
    *,
    task_id: str,
    intent_id: str,
    model_identifier: str,
) -> dict[str, Any]:
    text = content.decode("utf-8", errors="replace")
    return {
        "relative_path": relative_path,
        "conversations": [
            {
                "url": task_id,
                "contributor": {"entity_type": "AI", "model_identifier": model_identifier},
                "ranges": [
                    {
                        "start_line": 1,
                        "end_line": len(text.split("\n")),
                        "content_hash": content_hash(content),
                    }
                ],
                "related": [{"type": "specification", "value": intent_id}],
            }
        ],
    }


class TraceLog:
    """Append-only JSONL audit store guarded by an advisory file lock."""

    def __init__(self, path: Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self.path = path
        self.lock_path = path.with_name(f"{path.name}.lock")
        self.lock_timeout = lock_timeout

    def append(self, build_record: Callable[[str], dict[str, Any]]) -> dict[str, Any]:
        """Stamp and append one record; existing lines are never rewritten.

        The timestamp is taken under the lock so consecutive records stay ordered.
        """

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(self.lock_path), timeout=self.lock_timeout):
            record = build_record(utc_now_iso())
            line = (_safe_json(record) + "\n").encode("utf-8")
            with self.path.open("ab", buffering=0) as handle:
                handle.write(line)
        logger.debug("appended trace record %s to %s", record.get("id"), self.path)
        return record

    def iter_records(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        records: list[dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    records.append(payload)
        return records

    def tail(self, limit: int = 20) -> list[dict[str, Any]]:
        if limit <= 0:
            return []
        return self.iter_records()[-limit:]

    def count(self) -> int:
        if not self.path.exists():
            return 0
        with self.path.open("r", encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())


class TraceMutationPostHook:
    """Records every traced mutation, authorized or not, as one audit record."""

    name = "trace-mutation-post-hook"

    def __init__(
        self,
        tools: Iterable[str] | None = None,
        *,
        orchestration_dir: str = DEFAULT_ORCHESTRATION_DIR,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        model_identifier: str | None = None,
    ) -> None:
        self.tools = frozenset(tools) if tools is not None else TRACED_TOOLS
        self.orchestration_dir = orchestration_dir
        self.lock_timeout = lock_timeout
        self.model_identifier = model_identifier

    def _model_identifier(self, context: PostHookContext) -> str:
        explicit = context.tool_args.get("model_identifier")
        if isinstance(explicit, str) and explicit:
            return explicit
        return self.model_identifier or UNKNOWN_MODEL

    def _intent_id(self, context: PostHookContext) -> str:
        explicit = context.tool_args.get("intent_id")
        if isinstance(explicit, str) and explicit.strip():
            return explicit
        patched = context.patch.get("active_intent_id")
        if isinstance(patched, str) and patched.strip():
            return patched
        return resolve_intent_id({}, context.task_active_intent_id) or UNTRACKED_INTENT

    def run(self, context: PostHookContext) -> None:
        if context.tool_name not in self.tools:
            return

        cwd = context.cwd or os.getcwd()
        log = TraceLog(trace_path(cwd, self.orchestration_dir), lock_timeout=self.lock_timeout)

        intent_id = self._intent_id(context)
        mutation_class = infer_mutation_class(
            context.tool_name,
            context.tool_args,
            context.patch.get("active_mutation_class"),
            context.task_active_mutation_class,
        )
        model_identifier = self._model_identifier(context)
        revision_id = detect_revision(cwd)

        files: list[dict[str, Any]] = []
        for changed in context.changed_files:
            rel_path = normalize_path(cwd, changed)
            try:
                content = (Path(cwd) / rel_path).read_bytes()
            except OSError:
                content = b""
            files.append(
                build_file_entry(
                    rel_path,
                    content,
                    task_id=context.task_id,
                    intent_id=intent_id,
                    model_identifier=model_identifier,
                )
            )

        log.append(
            lambda timestamp: {
                "id": str(uuid.uuid4()),
                "timestamp": timestamp,
                "intent_id": intent_id,
                "mutation_class": mutation_class,
                "vcs": {"revision_id": revision_id},
                "files": files,
            }
        )
