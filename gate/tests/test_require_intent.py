from __future__ import annotations

from intentgate.models import INTENT_REQUIRED, Allow, HookContext
from intentgate.require_intent import RequireIntentPreHook


def _context(tool_name: str = "write_to_file", **kwargs) -> HookContext:  # type: ignore[no-untyped-def]
    return HookContext(task_id="task-1", tool_name=tool_name, **kwargs)


def test_non_mutating_tool_is_allowed_without_intent() -> None:
    decision = RequireIntentPreHook().run(_context("read_file", tool_args={"path": "src/app.ts"}))
    assert decision == Allow()


def test_mutating_tool_without_intent_is_blocked() -> None:
    decision = RequireIntentPreHook().run(_context("execute_command", tool_args={"command": "rm -rf build"}))
    assert decision.allow is False
    assert decision.code == INTENT_REQUIRED
    assert "select_active_intent" in decision.reason


def test_explicit_intent_argument_wins_over_task_intent() -> None:
    decision = RequireIntentPreHook().run(
        _context(tool_args={"intent_id": "INT-002"}, task_active_intent_id="INT-001")
    )
    assert decision.allow is True
    assert decision.context_patch == {"active_intent_id": "INT-002"}


def test_blank_intent_argument_falls_back_to_task_intent() -> None:
    decision = RequireIntentPreHook().run(
        _context(
            tool_args={"intent_id": "   ", "mutation_class": "BOGUS"},
            task_active_intent_id="INT-001",
            task_active_mutation_class="INTENT_EVOLUTION",
        )
    )
    assert decision.context_patch == {
        "active_intent_id": "INT-001",
        "active_mutation_class": "INTENT_EVOLUTION",
    }


def test_non_string_intent_argument_is_ignored() -> None:
    decision = RequireIntentPreHook().run(_context(tool_args={"intent_id": 42}))
    assert decision.code == INTENT_REQUIRED


def test_explicit_mutation_class_is_normalized_into_patch() -> None:
    decision = RequireIntentPreHook().run(
        _context(
            tool_args={"intent_id": "INT-001", "mutation_class": "AST_REFACTOR"},
            task_active_mutation_class="INTENT_EVOLUTION",
        )
    )
    assert decision.context_patch["active_mutation_class"] == "AST_REFACTOR"


def test_tool_set_is_extendable() -> None:
    hook = RequireIntentPreHook({"write_to_file", "apply_diff"})
    assert hook.run(_context("apply_diff")).code == INTENT_REQUIRED
    assert hook.run(_context("execute_command")) == Allow()
