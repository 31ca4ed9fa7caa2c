from __future__ import annotations

import asyncio
import hashlib
import json
from pathlib import Path

import pytest

from intentgate.config import GateSettings
from intentgate.models import INTENT_REQUIRED, SCOPE_VIOLATION, STALE_CONTEXT, HookContext
from intentgate.service import GovernanceService, IntentSelectionError, PathOutsideWorkspaceError


REGISTRY = """
active_intents:
  - id: "INT-001"
    name: "Refactor app"
    status: "ACTIVE"
    owned_scope:
      - "src/**"
    constraints:
      - "No new dependencies"
    acceptance_criteria:
      - "Existing callers still compile"
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _service(tmp_path: Path, registry: str | None = REGISTRY, **settings) -> GovernanceService:  # type: ignore[no-untyped-def]
    if registry is not None:
        _write(tmp_path / ".orchestration" / "active_intents.yaml", registry.strip() + "\n")
    return GovernanceService.create(tmp_path, GateSettings(**settings))


def test_governed_write_flow_allows_traces_and_then_detects_stale_reads(tmp_path: Path) -> None:
    service = _service(tmp_path)
    _write(tmp_path / "src" / "app.ts", "export const value = 1\n")

    rel_path, snapshot = service.capture_snapshot("src/app.ts")
    assert rel_path == "src/app.ts"

    context = HookContext(
        task_id="task-42",
        tool_name="write_to_file",
        tool_args={"path": "src/app.ts", "content": "export const value = 2\n"},
        cwd=str(tmp_path),
        task_active_intent_id="INT-001",
        task_active_mutation_class="AST_REFACTOR",
        task_file_read_snapshots={rel_path: snapshot},
    )
    decision = asyncio.run(service.pre_check(context))
    assert decision.allow is True
    assert decision.context_patch == {
        "active_intent_id": "INT-001",
        "active_mutation_class": "AST_REFACTOR",
        "scope_validated": True,
        "intent_name": "Refactor app",
    }

    _write(tmp_path / "src" / "app.ts", "export const value = 2\n")
    post = context.with_patch(decision.context_patch).to_post(tool_result="ok", changed_files=["src/app.ts"])
    report = asyncio.run(service.post_record(post))
    assert report.ok

    records = service.trace_tail(5)
    assert len(records) == 1
    assert records[0]["intent_id"] == "INT-001"
    assert records[0]["mutation_class"] == "AST_REFACTOR"
    expected = "sha256:" + hashlib.sha256(b"export const value = 2\n").hexdigest()
    assert records[0]["files"][0]["conversations"][0]["ranges"][0]["content_hash"] == expected
    assert service.trace_status()["records"] == 1

    # The task still holds the snapshot from before its own write.
    stale = asyncio.run(service.pre_check(context))
    assert stale.allow is False
    assert stale.code == STALE_CONTEXT


def test_valid_intent_does_not_authorize_writes_outside_scope(tmp_path: Path) -> None:
    service = _service(tmp_path)
    context = HookContext(
        task_id="task-1",
        tool_name="write_to_file",
        tool_args={"path": "outside/config.json", "content": "{}", "intent_id": "INT-001"},
        cwd=str(tmp_path),
    )
    decision = asyncio.run(service.pre_check(context))
    assert decision.code == SCOPE_VIOLATION


def test_missing_registry_still_requires_an_intent(tmp_path: Path) -> None:
    service = _service(tmp_path, registry=None)
    without_intent = HookContext(task_id="t", tool_name="write_to_file", tool_args={"path": "x.txt"}, cwd=str(tmp_path))
    assert asyncio.run(service.pre_check(without_intent)).code == INTENT_REQUIRED

    with_intent = HookContext(
        task_id="t",
        tool_name="write_to_file",
        tool_args={"path": "anywhere/x.txt", "intent_id": "INT-001"},
        cwd=str(tmp_path),
    )
    decision = asyncio.run(service.pre_check(with_intent))
    assert decision.allow is True
    assert "scope_validated" not in decision.context_patch


def test_select_intent_renders_context_block(tmp_path: Path) -> None:
    service = _service(tmp_path)
    selection = service.select_intent(" INT-001 ", "INTENT_EVOLUTION")

    payload = selection.to_dict()
    assert payload["intent_id"] == "INT-001"
    assert payload["mutation_class"] == "INTENT_EVOLUTION"
    assert payload["intent"]["owned_scope"] == ["src/**"]
    assert "<constraint>No new dependencies</constraint>" in selection.context_xml
    assert "<criterion>Existing callers still compile</criterion>" in selection.context_xml


@pytest.mark.parametrize(
    ("intent_id", "mutation_class", "parameter"),
    [
        ("", "AST_REFACTOR", "intent_id"),
        ("   ", "AST_REFACTOR", "intent_id"),
        ("INT-001", "REWRITE", "mutation_class"),
    ],
)
def test_select_intent_rejects_missing_parameters(
    tmp_path: Path, intent_id: str, mutation_class: str, parameter: str
) -> None:
    service = _service(tmp_path)
    with pytest.raises(IntentSelectionError) as exc_info:
        service.select_intent(intent_id, mutation_class)
    assert exc_info.value.code == "MISSING_PARAMETER"
    assert exc_info.value.to_dict()["parameter"] == parameter


def test_select_intent_reports_missing_registry(tmp_path: Path) -> None:
    service = _service(tmp_path, registry=None)
    with pytest.raises(IntentSelectionError) as exc_info:
        service.select_intent("INT-001", "AST_REFACTOR")
    payload = exc_info.value.to_dict()
    assert payload["code"] == "REGISTRY_MISSING"
    assert payload["hint"]
    assert payload["path"].endswith("active_intents.yaml")


def test_select_intent_lists_known_ids_for_unknown_intent(tmp_path: Path) -> None:
    service = _service(tmp_path)
    with pytest.raises(IntentSelectionError) as exc_info:
        service.select_intent("INT-404", "AST_REFACTOR")
    payload = exc_info.value.to_dict()
    assert payload["code"] == "INTENT_NOT_FOUND"
    assert payload["known_ids"] == ["INT-001"]


def test_intent_listing_and_lookup(tmp_path: Path) -> None:
    service = _service(tmp_path)
    assert [item["id"] for item in service.list_intents()] == ["INT-001"]
    assert service.get_intent("INT-001")["name"] == "Refactor app"
    with pytest.raises(IntentSelectionError):
        service.get_intent("INT-404")
    assert service.validate_registry() == {"ok": True, "findings": []}
    assert _service(tmp_path / "empty", registry=None).list_intents() == []


def test_capture_snapshot_missing_file_raises(tmp_path: Path) -> None:
    service = _service(tmp_path)
    with pytest.raises(OSError):
        service.capture_snapshot("src/missing.ts")


def test_sidecar_status_reports_each_file(tmp_path: Path) -> None:
    service = _service(tmp_path)
    status = service.sidecar_status()
    assert status["registry"]["exists"] is True
    assert status["trace"]["exists"] is False
    assert status["intent_map"]["exists"] is False
    assert status["intent_map"]["path"].endswith("intent_map.md")


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTENTGATE_ORCHESTRATION_DIR", ".governance")
    monkeypatch.setenv("INTENTGATE_LOCK_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("INTENTGATE_MODEL_ID", "local-model")
    monkeypatch.setenv("INTENTGATE_EXTRA_MUTATING_TOOLS", "apply_diff, , run_script")
    monkeypatch.setenv("INTENTGATE_EXTRA_WRITE_TOOLS", "insert_content")
    settings = GateSettings.from_env()
    assert settings.orchestration_dir == ".governance"
    assert settings.lock_timeout_seconds == 2.5
    assert settings.model_identifier == "local-model"
    assert settings.extra_mutating_tools == frozenset({"apply_diff", "run_script"})
    assert settings.extra_write_tools == frozenset({"insert_content"})


@pytest.mark.parametrize("raw", ["", "abc", "0", "-3"])
def test_invalid_lock_timeout_falls_back_to_default(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("INTENTGATE_LOCK_TIMEOUT_SECONDS", raw)
    assert GateSettings.from_env().lock_timeout_seconds == 10.0


def test_extra_tools_extend_the_default_pipeline(tmp_path: Path) -> None:
    service = _service(
        tmp_path,
        extra_mutating_tools=frozenset({"insert_content"}),
        extra_write_tools=frozenset({"insert_content"}),
        model_identifier="configured-model",
    )
    context = HookContext(task_id="t", tool_name="insert_content", tool_args={"path": "outside/a.txt"}, cwd=str(tmp_path))
    assert asyncio.run(service.pre_check(context)).code == INTENT_REQUIRED

    scoped = HookContext(
        task_id="t",
        tool_name="insert_content",
        tool_args={"path": "outside/a.txt", "intent_id": "INT-001"},
        cwd=str(tmp_path),
    )
    assert asyncio.run(service.pre_check(scoped)).code == SCOPE_VIOLATION


def test_post_record_reports_failing_trace_without_raising(tmp_path: Path) -> None:
    service = _service(tmp_path)
    # A directory where the trace file should be makes the append fail.
    (tmp_path / ".orchestration" / "agent_trace.jsonl").mkdir(parents=True)
    post = HookContext(
        task_id="t", tool_name="write_to_file", tool_args={"intent_id": "INT-001"}, cwd=str(tmp_path)
    ).to_post(changed_files=["src/app.ts"])

    report = asyncio.run(service.post_record(post))

    assert len(report.errors) == 1
    assert report.errors[0].startswith("post-hook trace-mutation-post-hook failed:")
    assert json.dumps(report.to_dict())


@pytest.mark.parametrize("path", ["../secret.txt", "src/../../secret.txt", ".."])
def test_capture_snapshot_rejects_paths_outside_workspace(tmp_path: Path, path: str) -> None:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    _write(tmp_path / "secret.txt", "top secret\n")
    service = _service(workspace)
    with pytest.raises(PathOutsideWorkspaceError):
        service.capture_snapshot(path)
    with pytest.raises(PathOutsideWorkspaceError):
        service.capture_snapshot(str(tmp_path / "secret.txt"))


def test_run_tool_hands_the_patched_context_to_tool_and_trace(tmp_path: Path) -> None:
    service = _service(tmp_path)
    seen: list[HookContext] = []

    def write_tool(context: HookContext):  # type: ignore[no-untyped-def]
        seen.append(context)
        _write(tmp_path / context.tool_args["path"], context.tool_args["content"])
        return "written", [context.tool_args["path"]]

    context = HookContext(
        task_id="task-9",
        tool_name="write_to_file",
        tool_args={"path": "src/new.ts", "content": "a\n"},
        cwd=str(tmp_path),
        task_active_intent_id="INT-001",
    )
    call = asyncio.run(service.run_tool(context, write_tool))

    assert call.executed is True
    assert call.tool_result == "written"
    assert call.report is not None and call.report.ok
    assert seen[0].patch == {"active_intent_id": "INT-001", "scope_validated": True, "intent_name": "Refactor app"}
    record = service.trace_tail(1)[0]
    assert record["intent_id"] == "INT-001"
    assert record["files"][0]["relative_path"] == "src/new.ts"


def test_run_tool_skips_blocked_calls(tmp_path: Path) -> None:
    service = _service(tmp_path)
    calls: list[str] = []

    async def write_tool(context: HookContext):  # type: ignore[no-untyped-def]
        calls.append(context.tool_name)
        return None, []

    context = HookContext(
        task_id="t", tool_name="write_to_file", tool_args={"path": "outside/x.txt", "intent_id": "INT-001"}, cwd=str(tmp_path)
    )
    call = asyncio.run(service.run_tool(context, write_tool))

    assert call.executed is False
    assert call.decision.code == SCOPE_VIOLATION
    assert call.report is None
    assert calls == []
    assert service.trace_status()["records"] == 0
