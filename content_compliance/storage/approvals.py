"""
Approval request storage with optimistic revision checks.

Every change to a request goes through ``commit``: the caller states the
revision it read, the store refuses stale writes, and the request snapshot
and the audit entries for the transition are written under the same lock.
Either both land or neither does.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from content_compliance.services.errors import ConflictError, NotFoundError
from content_compliance.services.types import ApprovalRequest, AuditEntry
from content_compliance.storage.audit import AuditTrail
from content_compliance.storage.codec import dump_request, load_request

logger = logging.getLogger("content_compliance.storage.approvals")


class ApprovalStore:
    """In-memory approval request store."""

    def __init__(self) -> None:
        self._requests: Dict[str, ApprovalRequest] = {}
        self.lock = threading.RLock()

    def find(self, request_id: str) -> Optional[ApprovalRequest]:
        with self.lock:
            return self._requests.get(request_id)

    def get(self, request_id: str) -> ApprovalRequest:
        request = self.find(request_id)
        if request is None:
            raise NotFoundError(f"Approval request '{request_id}' not found.")
        return request

    def list(self) -> List[ApprovalRequest]:
        with self.lock:
            requests = list(self._requests.values())
        # stable sort: equal timestamps keep insertion order
        return sorted(requests, key=lambda item: item.submitted_at)

    def for_content(self, content_id: str) -> List[ApprovalRequest]:
        """All requests for a content id, oldest version first."""
        return sorted(
            (request for request in self.list() if request.content_id == content_id),
            key=lambda item: (item.version, item.submitted_at),
        )

    def active_for_content(self, content_id: str) -> Optional[ApprovalRequest]:
        for request in self.for_content(content_id):
            if not request.is_terminal:
                return request
        return None

    def commit(
        self,
        request: ApprovalRequest,
        expected_revision: int,
        audit_entries: Sequence[AuditEntry],
        audit: AuditTrail,
    ) -> Tuple[ApprovalRequest, List[AuditEntry]]:
        """
        Store ``request`` if the stored revision still equals ``expected_revision``.

        ``expected_revision`` is 0 for a request that must not exist yet. The
        request snapshot is written first and the audit entries second, as
        one batch. If the audit write fails the previous snapshot is restored
        and the error propagates.
        """
        with self.lock:
            current = self._requests.get(request.id)
            current_revision = current.revision if current is not None else 0
            if current_revision != expected_revision:
                raise ConflictError(
                    f"Approval request '{request.id}' changed concurrently "
                    f"(expected revision {expected_revision}, found {current_revision}).",
                    current_revision=current_revision,
                )
            updated = dict(self._requests)
            updated[request.id] = request
            self._persist(updated)
            try:
                sealed = audit.extend(audit_entries)
            except Exception:
                logger.error(
                    "Audit write failed; restoring previous snapshot",
                    extra={"request_id": request.id, "revision": request.revision},
                )
                self._persist(self._requests)
                raise
            self._requests = updated
        return request, sealed

    def _persist(self, requests: Dict[str, ApprovalRequest]) -> None:
        """Hook for durable subclasses."""


class JsonApprovalStore(ApprovalStore):
    """Approval store snapshotted to a JSON document on every commit."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            self._requests = {item["id"]: load_request(item) for item in payload.get("requests", [])}
            logger.info(
                "Approval store loaded",
                extra={"path": str(self.path), "requests": len(self._requests)},
            )

    def _persist(self, requests: Dict[str, ApprovalRequest]) -> None:
        payload = {"requests": [dump_request(request) for request in requests.values()]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)


__all__ = ["ApprovalStore", "JsonApprovalStore"]
