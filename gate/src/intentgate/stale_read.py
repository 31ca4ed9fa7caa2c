from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from .digest import DIGEST_PREFIX, file_sha256_hex
from .models import STALE_CONTEXT, Allow, Block, Decision, HookContext
from .patterns import WRITE_TOOLS, extract_target_paths, normalize_path


def _bare_hex(digest: str) -> str:
    digest = digest.strip().lower()
    if digest.startswith(DIGEST_PREFIX):
        return digest[len(DIGEST_PREFIX):]
    return digest


class StaleReadPreHook:
    """Blocks writes to files whose on-disk content changed since the agent read them.

    Only paths with a recorded read snapshot are checked; first-touch writes pass.
    """

    name = "stale-read-pre-hook"

    def __init__(self, tools: Iterable[str] | None = None) -> None:
        self.tools = frozenset(tools) if tools is not None else WRITE_TOOLS

    def run(self, context: HookContext) -> Decision:
        if context.tool_name not in self.tools:
            return Allow()

        cwd = context.cwd
        snapshots = context.task_file_read_snapshots
        if not cwd or not snapshots:
            return Allow()

        for target in extract_target_paths(context.tool_name, context.tool_args):
            rel_path = normalize_path(cwd, target)
            snapshot = snapshots.get(rel_path)
            if snapshot is None:
                continue

            try:
                current = file_sha256_hex(Path(cwd) / rel_path)
            except OSError:
                return Block(
                    code=STALE_CONTEXT,
                    reason=(
                        f"Stale Context: '{rel_path}' is no longer readable after it was read at "
                        f"{snapshot.captured_at}. Call read_file again before applying edits."
                    ),
                )
            if current != _bare_hex(snapshot.sha256):
                return Block(
                    code=STALE_CONTEXT,
                    reason=(
                        f"Stale Context: '{rel_path}' changed after it was read at {snapshot.captured_at}. "
                        "Call read_file again before applying edits."
                    ),
                )

        return Allow()
