from __future__ import annotations

from pathlib import Path

from .config import DEFAULT_ORCHESTRATION_DIR


INTENTS_FILE = "active_intents.yaml"
TRACE_FILE = "agent_trace.jsonl"
INTENT_MAP_FILE = "intent_map.md"


def discover_workspace_root(start: Path | None = None) -> Path:
    start_path = (start or Path.cwd()).resolve()
    for candidate in [start_path, *start_path.parents]:
        if (candidate / DEFAULT_ORCHESTRATION_DIR).is_dir() or (candidate / ".git").exists():
            return candidate
    return start_path


def orchestration_dir(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> Path:
    return Path(cwd) / dirname


def intents_path(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> Path:
    return orchestration_dir(cwd, dirname) / INTENTS_FILE


def trace_path(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> Path:
    return orchestration_dir(cwd, dirname) / TRACE_FILE


def intent_map_path(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> Path:
    return orchestration_dir(cwd, dirname) / INTENT_MAP_FILE
