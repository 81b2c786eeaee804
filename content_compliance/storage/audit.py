"""
Append-only audit trail for approval workflow transitions.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from content_compliance.services.errors import ConflictError
from content_compliance.services.types import AuditEntry
from content_compliance.storage.codec import dump_audit_entry, load_audit_entry
from content_compliance.utils.checksum import sha256_of_payload

logger = logging.getLogger("content_compliance.storage.audit")


def _unsealed(entry: AuditEntry) -> AuditEntry:
    return replace(entry, previous_digest=None, digest=None)


def entry_digest(entry: AuditEntry, previous: Optional[str]) -> str:
    return sha256_of_payload(dump_audit_entry(_unsealed(entry)), previous=previous)


class AuditTrail:
    """
    In-memory audit ledger.

    Entries are never mutated or removed. Appending is idempotent by entry id:
    re-sending an identical entry returns the stored copy, while a different
    entry under an existing id is rejected. Each stored entry is sealed with a
    SHA-256 digest chained to its predecessor so tampering is detectable.
    """

    def __init__(self) -> None:
        self._entries: List[AuditEntry] = []
        self._by_id: Dict[str, AuditEntry] = {}
        self._lock = threading.RLock()

    @property
    def last_digest(self) -> Optional[str]:
        return self._entries[-1].digest if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: AuditEntry) -> AuditEntry:
        return self.extend([entry])[0]

    def extend(self, entries: Sequence[AuditEntry]) -> List[AuditEntry]:
        """
        Seal and store ``entries`` as one batch.

        New entries are persisted with a single write; if that write fails
        none of them become visible.
        """
        with self._lock:
            previous = self.last_digest
            result: List[AuditEntry] = []
            fresh: List[AuditEntry] = []
            for entry in entries:
                existing = self._by_id.get(entry.id)
                if existing is not None:
                    if _unsealed(existing) != _unsealed(entry):
                        raise ConflictError(f"Audit entry '{entry.id}' already recorded with different content.")
                    result.append(existing)
                    continue
                sealed = replace(entry, previous_digest=previous, digest=entry_digest(entry, previous))
                previous = sealed.digest
                fresh.append(sealed)
                result.append(sealed)
            if fresh:
                self._persist(fresh)
            for sealed in fresh:
                self._entries.append(sealed)
                self._by_id[sealed.id] = sealed
            return result

    def _persist(self, entries: Sequence[AuditEntry]) -> None:
        """Hook for durable subclasses; runs before the entries become visible."""

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        return self._by_id.get(entry_id)

    def entries(self) -> List[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def query_by_content(self, content_id: str, as_of: Optional[datetime] = None) -> List[AuditEntry]:
        """Entries for a content id, optionally as they stood at ``as_of``."""
        return [
            entry
            for entry in self.entries()
            if entry.content_id == content_id and (as_of is None or entry.timestamp <= as_of)
        ]

    def query_by_request(self, request_id: str) -> List[AuditEntry]:
        return [entry for entry in self.entries() if entry.request_id == request_id]

    def query_by_practice(
        self,
        practice_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Entries for a practice with ``start <= timestamp <= end``."""
        return [
            entry
            for entry in self.entries()
            if entry.practice_id == practice_id
            and (start is None or entry.timestamp >= start)
            and (end is None or entry.timestamp <= end)
        ]

    def verify_chain(self) -> Tuple[bool, List[str]]:
        """Recompute every digest; return ids of entries that do not match."""
        broken: List[str] = []
        previous: Optional[str] = None
        for entry in self.entries():
            if entry.previous_digest != previous or entry.digest != entry_digest(entry, previous):
                broken.append(entry.id)
            previous = entry.digest
        return not broken, broken

    def _load(self, entry: AuditEntry) -> None:
        self._entries.append(entry)
        self._by_id[entry.id] = entry


class JsonlAuditTrail(AuditTrail):
    """Audit trail persisted as one JSON object per line."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            self._replay()

    def _replay(self) -> None:
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._load(load_audit_entry(json.loads(line)))
                except (json.JSONDecodeError, KeyError, ValueError) as exc:
                    logger.error(
                        "Unreadable audit line skipped",
                        extra={"path": str(self.path), "line_number": line_number, "error": str(exc)},
                    )
        logger.info("Audit trail loaded", extra={"path": str(self.path), "entries": len(self)})

    def _persist(self, entries: Sequence[AuditEntry]) -> None:
        lines = "".join(json.dumps(dump_audit_entry(entry), ensure_ascii=False) + "\n" for entry in entries)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(lines)


__all__ = ["AuditTrail", "JsonlAuditTrail", "entry_digest"]
