from __future__ import annotations

"""Reader for the declarative active-intent registry sidecar file."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape as _xml_escape

import yaml
from jsonschema import Draft202012Validator

from .config import DEFAULT_ORCHESTRATION_DIR
from .paths import intents_path


logger = logging.getLogger(__name__)

REGISTRY_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["active_intents"],
    "properties": {
        "active_intents": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "name", "status", "owned_scope"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string"},
                    "status": {"type": "string"},
                    "owned_scope": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "constraints": {"type": "array", "items": {"type": "string"}},
                    "acceptance_criteria": {"type": "array", "items": {"type": "string"}},
                },
            },
        }
    },
}


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item.strip())


def _parse_scope(payload: dict[str, Any]) -> tuple[tuple[str, ...] | None, str | None]:
    """Return `(patterns, error)`; a malformed scope yields `(None, description)`.

    Only a missing key or an empty list means unrestricted.
    """

    if "owned_scope" not in payload:
        return (), None
    value = payload["owned_scope"]
    if not isinstance(value, list):
        return None, f"owned_scope must be a list of path patterns, got {value!r}"
    invalid = [item for item in value if not isinstance(item, str) or not item.strip()]
    if invalid:
        return None, f"owned_scope entries must be non-empty strings, got {invalid!r}"
    return tuple(value), None


@dataclass(frozen=True)
class ActiveIntent:
    """One declared unit of authorized work. Owned by the registry author, never edited here."""

    id: str
    name: str
    status: str
    owned_scope: tuple[str, ...] | None = ()
    constraints: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    scope_error: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ActiveIntent | None":
        intent_id = payload.get("id")
        if not isinstance(intent_id, str) or not intent_id.strip():
            return None
        name = payload.get("name")
        status = payload.get("status")
        owned_scope, scope_error = _parse_scope(payload)
        return cls(
            id=intent_id.strip(),
            name=name if isinstance(name, str) and name else "Unnamed Intent",
            status=status if isinstance(status, str) and status else "UNKNOWN",
            owned_scope=owned_scope,
            constraints=_string_tuple(payload.get("constraints")),
            acceptance_criteria=_string_tuple(payload.get("acceptance_criteria")),
            scope_error=scope_error,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "owned_scope": list(self.owned_scope) if self.owned_scope is not None else None,
            "constraints": list(self.constraints),
            "acceptance_criteria": list(self.acceptance_criteria),
        }
        if self.scope_error:
            payload["scope_error"] = self.scope_error
        return payload


@dataclass(frozen=True)
class IntentRegistry:
    path: Path
    intents: tuple[ActiveIntent, ...]

    def get(self, intent_id: str) -> ActiveIntent | None:
        for intent in self.intents:
            if intent.id == intent_id:
                return intent
        return None

    def ids(self) -> list[str]:
        return [intent.id for intent in self.intents]


def _read_document(path: Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def load_registry(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> IntentRegistry | None:
    """Load the registry fresh from disk; None when it is absent or not a YAML mapping."""

    path = intents_path(cwd, dirname)
    try:
        document = _read_document(path)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        logger.warning("intent registry at %s is unreadable: %s", path, exc)
        return None
    if not isinstance(document, dict):
        logger.warning("intent registry at %s is not a mapping", path)
        return None

    raw_intents = document.get("active_intents")
    intents: list[ActiveIntent] = []
    if isinstance(raw_intents, list):
        for item in raw_intents:
            if not isinstance(item, dict):
                continue
            intent = ActiveIntent.from_dict(item)
            if intent is not None:
                intents.append(intent)
    return IntentRegistry(path=path, intents=tuple(intents))


def validate_registry(cwd: str | Path, dirname: str = DEFAULT_ORCHESTRATION_DIR) -> list[dict[str, str]]:
    """Check the registry file against `REGISTRY_SCHEMA` and flag duplicate ids."""

    path = intents_path(cwd, dirname)
    if not path.exists():
        return [{"path": "<file>", "message": f"Intent registry not found: {path}"}]
    try:
        document = _read_document(path)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        return [{"path": "<file>", "message": f"Intent registry is not valid YAML: {exc}"}]

    validator = Draft202012Validator(REGISTRY_SCHEMA)
    findings = [
        {"path": ".".join(str(part) for part in error.path) or "<root>", "message": error.message}
        for error in sorted(validator.iter_errors(document), key=lambda err: [str(p) for p in err.path])
    ]

    if isinstance(document, dict) and isinstance(document.get("active_intents"), list):
        seen: set[str] = set()
        for index, item in enumerate(document["active_intents"]):
            intent_id = item.get("id") if isinstance(item, dict) else None
            if not isinstance(intent_id, str):
                continue
            if intent_id in seen:
                findings.append({"path": f"active_intents.{index}.id", "message": f"Duplicate intent id '{intent_id}'"})
            seen.add(intent_id)
    return findings


def escape(value: str) -> str:
    return _xml_escape(value, {'"': "&quot;", "'": "&apos;"})


def _xml_list(tag: str, item_tag: str, items: tuple[str, ...]) -> list[str]:
    if not items:
        return [f"  <{tag}></{tag}>"]
    return [f"  <{tag}>", *[f"    <{item_tag}>{escape(item)}</{item_tag}>" for item in items], f"  </{tag}>"]


def render_intent_context(intent: ActiveIntent, mutation_class: str) -> str:
    """Render the `<intent_context>` block handed back to the agent on intent selection."""

    lines = [
        "<intent_context>",
        f"  <intent_id>{escape(intent.id)}</intent_id>",
        f"  <name>{escape(intent.name)}</name>",
        f"  <status>{escape(intent.status)}</status>",
        f"  <mutation_class>{escape(mutation_class)}</mutation_class>",
        *_xml_list("owned_scope", "path", intent.owned_scope or ()),
        *_xml_list("constraints", "constraint", intent.constraints),
        *_xml_list("acceptance_criteria", "criterion", intent.acceptance_criteria),
        "</intent_context>",
    ]
    return "\n".join(lines)
