from __future__ import annotations

"""Two-phase hook engine: fail-closed pre-hooks and fail-safe post-hooks."""

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from .models import (
    HOOK_ERROR,
    Allow,
    Block,
    Decision,
    HookContext,
    PostHookContext,
    PostHookReport,
    PostToolHook,
    PreToolHook,
)


logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class HookEngine:
    """Runs registered hooks in registration order, one at a time."""

    def __init__(self) -> None:
        self._pre_hooks: list[PreToolHook] = []
        self._post_hooks: list[PostToolHook] = []

    @property
    def pre_hooks(self) -> tuple[PreToolHook, ...]:
        return tuple(self._pre_hooks)

    @property
    def post_hooks(self) -> tuple[PostToolHook, ...]:
        return tuple(self._post_hooks)

    def register_pre_hook(self, hook: PreToolHook) -> None:
        self._pre_hooks.append(hook)

    def register_post_hook(self, hook: PostToolHook) -> None:
        self._post_hooks.append(hook)

    async def run_pre_hooks(self, context: HookContext) -> Decision:
        """Return the first block, or an allow carrying every merged patch.

        A hook that raises is reported as a HOOK_ERROR block; hooks after a
        block never run.
        """

        merged: dict[str, Any] = {}
        for hook in self._pre_hooks:
            try:
                decision = hook.run(context)
                if inspect.isawaitable(decision):
                    decision = await decision
                if not isinstance(decision, (Allow, Block)):
                    raise TypeError(f"returned {type(decision).__name__} instead of a decision")
                patch = decision.context_patch if isinstance(decision, Allow) else None
                if patch is not None and not isinstance(patch, Mapping):
                    raise TypeError(f"returned a {type(patch).__name__} context patch instead of a mapping")
                if patch:
                    merged.update(patch)
            except Exception as exc:  # noqa: BLE001
                logger.warning("pre-hook %s raised on %s: %s", hook.name, context.tool_name, exc)
                return Block(code=HOOK_ERROR, reason=f"pre-hook {hook.name} failed: {_describe(exc)}")

            if not decision.allow:
                logger.info("pre-hook %s blocked %s with %s", hook.name, context.tool_name, decision.code)
                return decision

        return Allow(context_patch=merged or None)

    async def run_post_hooks(self, context: PostHookContext) -> PostHookReport:
        errors: list[str] = []
        for hook in self._post_hooks:
            try:
                outcome = hook.run(context)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:  # noqa: BLE001
                logger.warning("post-hook %s raised on %s: %s", hook.name, context.tool_name, exc)
                errors.append(f"post-hook {hook.name} failed: {_describe(exc)}")
        return PostHookReport(errors=tuple(errors))
