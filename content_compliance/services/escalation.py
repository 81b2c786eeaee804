"""
Periodic escalation sweep.

Each tick applies pending publish confirmations, escalates requests that sat
at their approval level past the SLA deadline, and expires approvals whose
publish deadline has passed. Re-running a tick never escalates the same
request twice for the same breach: the breach key (level plus SLA deadline)
is stored on the escalation record and checked before escalating.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from content_compliance.services.collaborators import PublishConfirmationSource
from content_compliance.services.errors import ComplianceEngineError
from content_compliance.services.types import APPROVED, SUBMITTED, UNDER_REVIEW, ApprovalRequest
from content_compliance.services.workflow import ApprovalWorkflow, next_level
from content_compliance.storage.codec import to_primitive

logger = logging.getLogger("content_compliance.services.escalation")

SLA_BREACH = "sla_breach"


@dataclass(slots=True)
class SweepResult:
    escalated: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "escalated": list(self.escalated),
            "expired": list(self.expired),
            "published": list(self.published),
            "skipped": list(self.skipped),
            "errors": dict(self.errors),
        }


def breach_key(request: ApprovalRequest) -> str:
    return f"{request.approval_level}@{to_primitive(request.sla_deadline_at)}"


def _already_escalated(request: ApprovalRequest, key: str) -> bool:
    return any(record.breach_key == key for record in request.escalations)


class EscalationSweep:
    """Background job driving time-based workflow transitions."""

    def __init__(
        self,
        workflow: ApprovalWorkflow,
        publish_source: Optional[PublishConfirmationSource] = None,
        *,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.workflow = workflow
        self.publish_source = publish_source
        self.interval_seconds = interval_seconds or workflow.settings.sweep_interval_seconds

    def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self.workflow.clock()
        result = SweepResult()

        if self.publish_source is not None:
            applied, failed = self.workflow.apply_publish_events(self.publish_source.drain())
            result.published.extend(request.id for request in applied)
            for event, exc in failed:
                result.errors[event.request_id] = exc.message

        for request in self.workflow.store.list():
            if request.is_terminal:
                continue
            try:
                self._sweep_request(request, now, result)
            except ComplianceEngineError as exc:
                # retried on the next tick
                logger.warning(
                    "Sweep could not update request",
                    extra={"request_id": request.id, "error": exc.message},
                )
                result.errors[request.id] = exc.message

        logger.info(
            "Escalation sweep finished",
            extra={
                "escalated": len(result.escalated),
                "expired": len(result.expired),
                "published": len(result.published),
                "errors": len(result.errors),
            },
        )
        return result

    def _sweep_request(self, request: ApprovalRequest, now: datetime, result: SweepResult) -> None:
        if request.state in (SUBMITTED, UNDER_REVIEW):
            if request.sla_deadline_at is None or now < request.sla_deadline_at:
                return
            key = breach_key(request)
            if _already_escalated(request, key) or next_level(request.approval_level) is None:
                result.skipped.append(request.id)
                return
            self.workflow.escalate(
                request.id,
                SLA_BREACH,
                breach_key=key,
                expected_revision=request.revision,
            )
            result.escalated.append(request.id)
        elif request.state == APPROVED:
            if request.deadline_at is not None and now >= request.deadline_at:
                self.workflow.expire(request.id, now, expected_revision=request.revision)
                result.expired.append(request.id)

    def run_forever(self, stop_event: threading.Event, interval_seconds: Optional[float] = None) -> None:
        interval = interval_seconds or self.interval_seconds
        logger.info("Escalation sweep started", extra={"interval_seconds": interval})
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # one failed tick must not stop the loop
                logger.exception("Escalation sweep tick failed")
            stop_event.wait(interval)
        logger.info("Escalation sweep stopped")


__all__ = ["EscalationSweep", "SLA_BREACH", "SweepResult", "breach_key"]
