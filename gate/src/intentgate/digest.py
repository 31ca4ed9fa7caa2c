from __future__ import annotations

import hashlib
from pathlib import Path

from .models import FileReadSnapshot, utc_now_iso


DIGEST_PREFIX = "sha256:"


def sha256_hex(content: bytes | str) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def content_hash(content: bytes | str) -> str:
    """Return the prefixed `sha256:<64 lowercase hex>` form used in audit records."""

    return f"{DIGEST_PREFIX}{sha256_hex(content)}"


def file_sha256_hex(path: Path) -> str:
    return sha256_hex(path.read_bytes())


def capture_snapshot(path: Path) -> FileReadSnapshot:
    """Fingerprint a file the agent just read so later writes can detect drift."""

    return FileReadSnapshot(sha256=file_sha256_hex(path), captured_at=utc_now_iso())
