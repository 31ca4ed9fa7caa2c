from __future__ import annotations

"""Environment-driven settings for the hook pipeline."""

import os
from dataclasses import dataclass


DEFAULT_ORCHESTRATION_DIR = ".orchestration"
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


def _env_text(name: str, fallback: str | None) -> str | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    return raw


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


def _env_names(name: str) -> frozenset[str]:
    raw = os.environ.get(name, "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class GateSettings:
    """Resolved configuration shared by hooks, service, API and CLI."""

    orchestration_dir: str = DEFAULT_ORCHESTRATION_DIR
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    model_identifier: str | None = None
    extra_mutating_tools: frozenset[str] = frozenset()
    extra_write_tools: frozenset[str] = frozenset()

    @classmethod
    def from_env(cls) -> "GateSettings":
        orchestration_dir = _env_text("INTENTGATE_ORCHESTRATION_DIR", DEFAULT_ORCHESTRATION_DIR)
        return cls(
            orchestration_dir=orchestration_dir or DEFAULT_ORCHESTRATION_DIR,
            lock_timeout_seconds=_env_seconds("INTENTGATE_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS),
            model_identifier=_env_text("INTENTGATE_MODEL_ID", None),
            extra_mutating_tools=_env_names("INTENTGATE_EXTRA_MUTATING_TOOLS"),
            extra_write_tools=_env_names("INTENTGATE_EXTRA_WRITE_TOOLS"),
        )
