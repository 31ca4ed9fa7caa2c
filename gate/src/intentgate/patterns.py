from __future__ import annotations

"""Scope pattern matching and target path extraction for write-capable tools."""

import os
import re
from collections.abc import Mapping
from typing import Any


WRITE_TOOLS = frozenset(
    {
        "write_to_file",
        "apply_diff",
        "edit",
        "search_and_replace",
        "search_replace",
        "edit_file",
        "apply_patch",
        "generate_image",
    }
)
PATCH_TOOLS = frozenset({"apply_patch"})
PATCH_FILE_MARKERS = (
    "*** Add File: ",
    "*** Delete File: ",
    "*** Update File: ",
    "*** Move to: ",
)
_DOUBLE_STAR = "\x00"


def matches_scope(file_path: str, pattern: str) -> bool:
    """Return True when `file_path` fully matches the glob-like `pattern`.

    `**` matches across any number of segments, `*` stays within one segment.
    Matching is case-sensitive and never touches the filesystem.
    """

    normalized_path = file_path.replace("\\", "/")
    normalized_pattern = pattern.replace("\\", "/")

    escaped = re.escape(normalized_pattern.replace("**", _DOUBLE_STAR))
    # re.escape leaves "\x00" alone but escapes "*".
    regex = escaped.replace(r"\*", "[^/]*").replace(_DOUBLE_STAR, ".*")
    return re.fullmatch(regex, normalized_path, flags=re.DOTALL) is not None


def in_scope(file_path: str, owned_scope: tuple[str, ...] | list[str]) -> bool:
    if not owned_scope:
        return True
    return any(matches_scope(file_path, pattern) for pattern in owned_scope)


def normalize_path(cwd: str, target_path: str) -> str:
    """Express `target_path` relative to `cwd` with forward slashes."""

    base = os.path.abspath(cwd)
    absolute = os.path.normpath(os.path.join(base, target_path))
    return os.path.relpath(absolute, base).replace("\\", "/")


def extract_patch_paths(patch: str) -> list[str]:
    paths: list[str] = []
    for line in patch.split("\n"):
        for marker in PATCH_FILE_MARKERS:
            if line.startswith(marker):
                candidate = line[len(marker):].strip()
                if candidate:
                    paths.append(candidate)
                break
    return paths


def extract_target_paths(tool_name: str, tool_args: Mapping[str, Any]) -> list[str]:
    """Collect every file path a tool call would touch, deduplicated in order."""

    found: dict[str, None] = {}

    for key in ("path", "file_path"):
        value = tool_args.get(key)
        if isinstance(value, str) and value:
            found.setdefault(value)

    many = tool_args.get("paths")
    if isinstance(many, (list, tuple)):
        for value in many:
            if isinstance(value, str) and value:
                found.setdefault(value)

    patch = tool_args.get("patch")
    if tool_name in PATCH_TOOLS and isinstance(patch, str):
        for value in extract_patch_paths(patch):
            found.setdefault(value)

    return list(found)
