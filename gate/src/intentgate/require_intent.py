from __future__ import annotations

from collections.abc import Iterable

from .models import (
    INTENT_REQUIRED,
    Allow,
    Block,
    Decision,
    HookContext,
    recognized_mutation_class,
    resolve_intent_id,
)


MUTATING_TOOLS = frozenset({"write_to_file", "execute_command"})


class RequireIntentPreHook:
    """Blocks mutating tool calls that cannot name the intent authorizing them."""

    name = "require-intent-pre-hook"

    def __init__(self, tools: Iterable[str] | None = None) -> None:
        self.tools = frozenset(tools) if tools is not None else MUTATING_TOOLS

    def run(self, context: HookContext) -> Decision:
        if context.tool_name not in self.tools:
            return Allow()

        intent_id = resolve_intent_id(context.tool_args, context.task_active_intent_id)
        if intent_id is None:
            return Block(
                code=INTENT_REQUIRED,
                reason=(
                    f"Mutating tool call '{context.tool_name}' blocked: no active intent. "
                    "Call select_active_intent(intent_id) first or pass intent_id."
                ),
            )

        patch: dict[str, str] = {"active_intent_id": intent_id}
        mutation_class = recognized_mutation_class(context.tool_args.get("mutation_class")) or recognized_mutation_class(
            context.task_active_mutation_class
        )
        if mutation_class is not None:
            patch["active_mutation_class"] = mutation_class
        return Allow(context_patch=patch)
