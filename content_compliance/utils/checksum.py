"""Checksum helpers for tamper evidence on audit entries and rule catalogues."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Optional


def canonical_json(payload: Any) -> str:
    """Stable JSON encoding used as hashing input."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def sha256_of_payload(payload: Any, previous: Optional[str] = None) -> str:
    hasher = hashlib.sha256()
    if previous:
        hasher.update(previous.encode("utf-8"))
    hasher.update(canonical_json(payload).encode("utf-8"))
    return hasher.hexdigest()


def sha256_of_file(path: Path) -> str:
    hasher = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


__all__ = ["canonical_json", "sha256_of_payload", "sha256_of_file"]
