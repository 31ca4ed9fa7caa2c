from __future__ import annotations

"""Owned-scope enforcement against the active intent registry."""

import os
from collections.abc import Iterable

from .config import DEFAULT_ORCHESTRATION_DIR
from .models import SCOPE_VIOLATION, Allow, Block, Decision, HookContext, resolve_intent_id
from .patterns import WRITE_TOOLS, extract_target_paths, in_scope, normalize_path
from .registry import load_registry


class ScopeEnforcementPreHook:
    """Blocks writes outside the owned scope of the intent they run under.

    Enforcement is opt-in: without a readable registry every write passes.
    A missing intent id is left to `RequireIntentPreHook`.
    """

    name = "scope-enforcement-pre-hook"

    def __init__(
        self,
        tools: Iterable[str] | None = None,
        *,
        orchestration_dir: str = DEFAULT_ORCHESTRATION_DIR,
    ) -> None:
        self.tools = frozenset(tools) if tools is not None else WRITE_TOOLS
        self.orchestration_dir = orchestration_dir

    def run(self, context: HookContext) -> Decision:
        if context.tool_name not in self.tools:
            return Allow()

        intent_id = resolve_intent_id(context.tool_args, context.task_active_intent_id)
        if intent_id is None:
            return Allow()

        cwd = context.cwd or os.getcwd()
        registry = load_registry(cwd, self.orchestration_dir)
        if registry is None:
            return Allow()

        intent = registry.get(intent_id)
        if intent is None:
            return Block(
                code=SCOPE_VIOLATION,
                reason=f"Intent '{intent_id}' not found in active_intents.yaml. Use a valid active intent ID.",
            )

        if intent.owned_scope is None:
            return Block(
                code=SCOPE_VIOLATION,
                reason=(
                    f"Intent '{intent.id}' has a malformed owned_scope in active_intents.yaml: "
                    f"{intent.scope_error}. Fix the registry entry before editing files under this intent."
                ),
            )

        targets = extract_target_paths(context.tool_name, context.tool_args)
        if not targets:
            return Allow()

        for target in targets:
            rel_path = normalize_path(cwd, target)
            if not in_scope(rel_path, intent.owned_scope):
                return Block(
                    code=SCOPE_VIOLATION,
                    reason=(
                        f"Scope Violation: Intent '{intent.id}' ({intent.name}) is not authorized to edit '{rel_path}'. "
                        f"Authorized scope: [{', '.join(intent.owned_scope)}]. "
                        "Request a scope expansion or select the correct intent."
                    ),
                )

        return Allow(context_patch={"scope_validated": True, "intent_name": intent.name})
