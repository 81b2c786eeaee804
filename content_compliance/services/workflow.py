"""
Approval workflow state machine.

Requests move ``submitted -> under_review -> approved|rejected|requires_changes``
and from ``approved`` to ``published`` or ``expired``. Escalation raises the
approval level without changing state. Every transition is committed through
the approval store together with its audit entries, guarded by the
request revision the caller read.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from content_compliance.compliance.rules import CONSENT_VALIDITY
from content_compliance.config.settings import WorkflowSettings
from content_compliance.services.collaborators import (
    LoggingNotificationSink,
    NotificationSink,
    PublishEvent,
    ReviewerDirectory,
    StaticReviewerDirectory,
    WorkflowEvent,
)
from content_compliance.services.errors import (
    ComplianceEngineError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from content_compliance.services.types import (
    APPROVAL_LEVELS,
    APPROVED,
    DECISIONS,
    DRAFT,
    EXPIRED,
    PUBLISHED,
    REJECTED,
    REQUIRES_CHANGES,
    STATES,
    SUBMITTED,
    TERMINAL_STATES,
    UNDER_REVIEW,
    ApprovalRequest,
    AuditEntry,
    ComplianceReport,
    ContentItem,
    EscalationRecord,
    ReviewerScores,
    VersionSnapshot,
    compliance_snapshot,
    utcnow,
)
from content_compliance.storage.approvals import ApprovalStore
from content_compliance.storage.audit import AuditTrail
from content_compliance.storage.codec import to_primitive

logger = logging.getLogger("content_compliance.services.workflow")

SYSTEM_ACTOR = "system"

LEVEL_BY_CONTENT_TYPE = {
    "marketing_material": "manager_approval",
    "advertisement": "manager_approval",
    "device_promotion": "manager_approval",
    "patient_education": "senior_review",
    "clinical_photo": "senior_review",
}

LEVEL_REVIEWER_ROLES = {
    "junior_review": "practice_manager",
    "senior_review": "senior_practitioner",
    "manager_approval": "practice_manager",
}

# Approval levels each role may see in the review queue
ROLE_LEVELS: Dict[str, Tuple[str, ...]] = {
    "practice_manager": APPROVAL_LEVELS,
    "compliance_officer": APPROVAL_LEVELS,
    "senior_practitioner": ("junior_review", "senior_review"),
    "practitioner": (),
}

# Workflow actions and the states they may be taken from
_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "submit": (DRAFT,),
    "claim": (SUBMITTED, UNDER_REVIEW),
    "decide": (UNDER_REVIEW,),
    "resubmit": (REQUIRES_CHANGES, REJECTED),
    "escalate": (SUBMITTED, UNDER_REVIEW, REQUIRES_CHANGES, APPROVED),
    "publish": (APPROVED,),
    "expire": (APPROVED,),
}


def allowed_actions(state: str) -> List[str]:
    """Actions permitted from ``state`` (empty for terminal or unknown states)."""
    return [action for action, sources in _TRANSITIONS.items() if state in sources]


def validate_transition(state: str, action: str) -> None:
    """
    Raises InvalidTransitionError if ``action`` is not permitted from ``state``.
    """
    if state not in STATES:
        raise InvalidTransitionError(f"Unknown state: {state}", from_state=state, action=action)
    if action not in _TRANSITIONS:
        raise InvalidTransitionError(f"Unknown action: {action}", from_state=state, action=action)
    if state not in _TRANSITIONS[action]:
        raise InvalidTransitionError(
            f"Cannot {action} a request in state '{state}'. Allowed: {allowed_actions(state)}",
            from_state=state,
            action=action,
        )


def initial_level(content_type: str) -> str:
    return LEVEL_BY_CONTENT_TYPE.get(content_type, APPROVAL_LEVELS[0])


def next_level(level: str) -> Optional[str]:
    index = APPROVAL_LEVELS.index(level)
    if index + 1 >= len(APPROVAL_LEVELS):
        return None
    return APPROVAL_LEVELS[index + 1]


@dataclass(slots=True)
class QueueFilter:
    """Review queue selection; ``role`` limits the visible approval levels."""

    role: Optional[str] = None
    actor_id: Optional[str] = None
    practice_id: Optional[str] = None
    states: Optional[Tuple[str, ...]] = None
    approval_level: Optional[str] = None
    assignee_id: Optional[str] = None
    submitter_id: Optional[str] = None


def validate_submission(item: ContentItem, report: Optional[ComplianceReport]) -> None:
    """Reject malformed content or content whose subject consent is not in order."""
    errors: List[str] = []
    if report is None:
        errors.append("a compliance report is required")
    if not item.id:
        errors.append("content id is required")
    if not item.content_type:
        errors.append("content type is required")
    if item.subject_metadata.identifiable_subject and not item.subject_metadata.subject_id:
        errors.append("identifiable subject requires a subject id")
    if report is not None:
        for finding in report.violations + report.warnings:
            if finding.category == CONSENT_VALIDITY:
                errors.append(f"consent: {finding.message}")
    if errors:
        raise ValidationError("Submission rejected: " + "; ".join(errors), errors=errors)


class ApprovalWorkflow:
    """Review state machine over an approval store and audit trail."""

    def __init__(
        self,
        store: Optional[ApprovalStore] = None,
        audit: Optional[AuditTrail] = None,
        *,
        settings: Optional[WorkflowSettings] = None,
        reviewers: Optional[ReviewerDirectory] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        # an empty trail is falsy (it has __len__), so compare against None
        self.store = store if store is not None else ApprovalStore()
        self.audit = audit if audit is not None else AuditTrail()
        self.settings = settings or WorkflowSettings()
        self.reviewers = reviewers or StaticReviewerDirectory()
        self.notifier = notifier or LoggingNotificationSink()
        self.clock = clock

    # ------------------------------------------------------------------ #
    # Core transitions
    # ------------------------------------------------------------------ #

    def submit(
        self,
        item: ContentItem,
        report: Optional[ComplianceReport],
        *,
        actor_id: str,
        practice_id: Optional[str] = None,
    ) -> ApprovalRequest:
        """Create a request for ``item`` (draft -> submitted)."""
        validate_submission(item, report)
        validate_transition(DRAFT, "submit")
        with self.store.lock:
            request, entries = self._open_request(
                item,
                report,
                actor_id=actor_id,
                practice_id=practice_id or item.practice_id,
                action="submitted",
            )
            self.store.commit(request, 0, entries, self.audit)
        logger.info(
            "Content submitted",
            extra={
                "request_id": request.id,
                "content_id": request.content_id,
                "version": request.version,
                "approval_level": request.approval_level,
                "risk_level": report.risk_level,
            },
        )
        self._announce(request, entries, actor_id)
        return request

    def claim(
        self,
        request_id: str,
        reviewer_id: str,
        *,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """Exclusively assign a reviewer (submitted -> under_review)."""
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "claim")
        if current.assignee_id is not None:
            raise ConflictError(
                f"Request '{request_id}' is already claimed by {current.assignee_id}.",
                current_revision=current.revision,
            )
        at = self.clock()
        updated = replace(
            current,
            state=UNDER_REVIEW,
            assignee_id=reviewer_id,
            claimed_at=at,
            revision=current.revision + 1,
        )
        entry = self._entry(current, updated, reviewer_id, "claimed", at, {"assignee_id": reviewer_id})
        self.store.commit(updated, current.revision, [entry], self.audit)
        logger.info("Request claimed", extra={"request_id": request_id, "reviewer_id": reviewer_id})
        self._notify("claimed", updated, reviewer_id, recipient_id=updated.submitter_id)
        return updated

    def decide(
        self,
        request_id: str,
        decision: str,
        *,
        actor_id: str,
        notes: Optional[str] = None,
        reviewer_scores: Optional[ReviewerScores] = None,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """Record the assignee's decision (under_review -> approved/rejected/requires_changes)."""
        if decision not in DECISIONS:
            raise ValidationError(f"Unknown decision '{decision}'.", errors=[f"decision must be one of {list(DECISIONS)}"])
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "decide")
        if current.assignee_id != actor_id:
            raise ConflictError(
                f"Request '{request_id}' is assigned to {current.assignee_id}, not {actor_id}.",
                current_revision=current.revision,
            )
        at = self.clock()
        deadline_at = None
        if decision == APPROVED:
            deadline_at = at + self.settings.publish_window
            scheduled = current.content.scheduled_publish_at
            if scheduled is not None and scheduled > deadline_at:
                deadline_at = scheduled
        updated = replace(
            current,
            state=decision,
            decision_notes=notes,
            reviewer_scores=reviewer_scores,
            decided_at=at,
            deadline_at=deadline_at,
            revision=current.revision + 1,
        )
        details = {"notes": notes, "reviewer_scores": to_primitive(reviewer_scores)}
        if deadline_at is not None:
            details["deadline_at"] = to_primitive(deadline_at)
        entry = self._entry(current, updated, actor_id, decision, at, details)
        self.store.commit(updated, current.revision, [entry], self.audit)
        logger.info("Decision recorded", extra={"request_id": request_id, "decision": decision, "reviewer_id": actor_id})
        self._notify(decision, updated, actor_id, recipient_id=updated.submitter_id)
        return updated

    def resubmit(
        self,
        request_id: str,
        new_content: ContentItem,
        report: Optional[ComplianceReport],
        *,
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """
        Submit a new version of the content.

        From ``requires_changes`` the same request returns to ``submitted``
        with the prior version archived in its history. From ``rejected`` a
        fresh request (new lineage) is opened and the rejected request stays
        untouched.
        """
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "resubmit")
        if new_content.id != current.content_id:
            raise ValidationError(
                f"Resubmitted content id '{new_content.id}' does not match '{current.content_id}'.",
                errors=["content id mismatch"],
            )
        validate_submission(new_content, report)
        at = self.clock()
        snapshot = VersionSnapshot(
            version=current.version,
            content=current.content,
            compliance_report=current.compliance_report,
            decision_notes=current.decision_notes,
            reviewer_scores=current.reviewer_scores,
            archived_at=at,
        )

        if current.state == REJECTED:
            with self.store.lock:
                request, entries = self._open_request(
                    new_content,
                    report,
                    actor_id=actor_id,
                    practice_id=current.practice_id,
                    action="resubmitted",
                    history=current.history + (snapshot,),
                    details={"supersedes": current.id, "previous_version": current.version},
                )
                self.store.commit(request, 0, entries, self.audit)
            self._announce(request, entries, actor_id, event_type="resubmitted")
            return request

        updated = replace(
            current,
            version=current.version + 1,
            state=SUBMITTED,
            content=new_content,
            compliance_report=report,
            submitted_at=at,
            assignee_id=None,
            claimed_at=None,
            decided_at=None,
            decision_notes=None,
            reviewer_scores=None,
            deadline_at=None,
            level_started_at=at,
            sla_deadline_at=at + self.settings.sla_for(current.approval_level),
            history=current.history + (snapshot,),
            revision=current.revision + 1,
        )
        entries = [
            self._entry(
                current,
                updated,
                actor_id,
                "resubmitted",
                at,
                {"previous_version": current.version, "released_assignee_id": current.assignee_id},
            )
        ]
        if report.risk_level == "critical":
            updated, entries = self._escalate_on_risk(updated, entries, at)
        self.store.commit(updated, current.revision, entries, self.audit)
        logger.info(
            "Content resubmitted",
            extra={"request_id": request_id, "version": updated.version, "approval_level": updated.approval_level},
        )
        self._announce(updated, entries, actor_id, event_type="resubmitted")
        return updated

    def escalate(
        self,
        request_id: str,
        reason: str,
        *,
        actor_id: str = SYSTEM_ACTOR,
        breach_key: Optional[str] = None,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """
        Raise the approval level, release the assignee and restart the SLA clock.

        A ``breach_key`` already present in the request's escalation history
        makes the call a no-op.
        """
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "escalate")
        if breach_key and any(record.breach_key == breach_key for record in current.escalations):
            return current
        if next_level(current.approval_level) is None:
            raise InvalidTransitionError(
                f"Request '{request_id}' is already at {current.approval_level}.",
                from_state=current.state,
                action="escalate",
            )
        at = self.clock()
        updated, entry = self._escalated(current, reason, breach_key, actor_id, at)
        updated = replace(updated, revision=current.revision + 1)
        self.store.commit(updated, current.revision, [entry], self.audit)
        logger.warning(
            "Request escalated",
            extra={
                "request_id": request_id,
                "level_from": current.approval_level,
                "level_to": updated.approval_level,
                "reason": reason,
            },
        )
        self._notify(
            "escalated",
            updated,
            actor_id,
            recipient_id=updated.suggested_reviewer_id,
            payload={"reason": reason, "level_from": current.approval_level},
        )
        return updated

    def confirm_publication(
        self,
        request_id: str,
        published_at: Optional[datetime] = None,
        *,
        actor_id: str = "publisher",
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """Apply an external publish confirmation (approved -> published)."""
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "publish")
        at = self.clock()
        published_at = published_at or at
        updated = replace(current, state=PUBLISHED, published_at=published_at, revision=current.revision + 1)
        entry = self._entry(current, updated, actor_id, "published", at, {"published_at": to_primitive(published_at)})
        self.store.commit(updated, current.revision, [entry], self.audit)
        logger.info("Publication confirmed", extra={"request_id": request_id})
        self._notify("published", updated, actor_id, recipient_id=updated.submitter_id)
        return updated

    def apply_publish_events(
        self, events: Iterable[PublishEvent]
    ) -> Tuple[List[ApprovalRequest], List[Tuple[PublishEvent, ComplianceEngineError]]]:
        """Apply drained publish confirmations; failures are returned, not raised."""
        applied: List[ApprovalRequest] = []
        failed: List[Tuple[PublishEvent, ComplianceEngineError]] = []
        for event in events:
            try:
                applied.append(
                    self.confirm_publication(event.request_id, event.published_at, actor_id=event.actor_id)
                )
            except ComplianceEngineError as exc:
                logger.warning(
                    "Publish confirmation not applied",
                    extra={"request_id": event.request_id, "error": exc.message},
                )
                failed.append((event, exc))
        return applied, failed

    def expire(
        self,
        request_id: str,
        now: Optional[datetime] = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        """Close an approved request whose publish deadline passed (approved -> expired)."""
        current = self._read(request_id, expected_revision)
        validate_transition(current.state, "expire")
        now = now or self.clock()
        if current.deadline_at is None or now < current.deadline_at:
            raise InvalidTransitionError(
                f"Request '{request_id}' has not reached its publish deadline.",
                from_state=current.state,
                action="expire",
            )
        updated = replace(current, state=EXPIRED, revision=current.revision + 1)
        entry = self._entry(current, updated, actor_id, "expired", now, {"deadline_at": to_primitive(current.deadline_at)})
        self.store.commit(updated, current.revision, [entry], self.audit)
        logger.info("Approval expired unpublished", extra={"request_id": request_id})
        self._notify("expired", updated, actor_id, recipient_id=updated.submitter_id)
        return updated

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_request(self, request_id: str) -> ApprovalRequest:
        return self.store.get(request_id)

    def get_queue(self, queue_filter: Optional[QueueFilter] = None) -> List[ApprovalRequest]:
        """Requests visible to the filter's role, oldest submission first."""
        queue_filter = queue_filter or QueueFilter()
        if queue_filter.role is not None and queue_filter.role not in ROLE_LEVELS:
            raise ValidationError(f"Unknown role '{queue_filter.role}'.", errors=["role"])
        states = queue_filter.states or tuple(state for state in STATES if state not in TERMINAL_STATES)

        selected = []
        for request in self.store.list():
            if request.state not in states:
                continue
            if queue_filter.practice_id and request.practice_id != queue_filter.practice_id:
                continue
            if queue_filter.approval_level and request.approval_level != queue_filter.approval_level:
                continue
            if queue_filter.assignee_id and request.assignee_id != queue_filter.assignee_id:
                continue
            if queue_filter.submitter_id and request.submitter_id != queue_filter.submitter_id:
                continue
            if queue_filter.role == "practitioner":
                if not queue_filter.actor_id or request.submitter_id != queue_filter.actor_id:
                    continue
            elif queue_filter.role is not None and request.approval_level not in ROLE_LEVELS[queue_filter.role]:
                continue
            selected.append(request)
        return selected

    def get_audit_trail(self, content_id: str, as_of: Optional[datetime] = None) -> List[AuditEntry]:
        return self.audit.query_by_content(content_id, as_of=as_of)

    def get_practice_audit(
        self,
        practice_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        return self.audit.query_by_practice(practice_id, start=start, end=end)

    def history(self, content_id: str) -> List[ApprovalRequest]:
        """Every request opened for ``content_id``, newest version first."""
        return list(reversed(self.store.for_content(content_id)))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _read(self, request_id: str, expected_revision: Optional[int]) -> ApprovalRequest:
        current = self.store.get(request_id)
        if expected_revision is not None and expected_revision != current.revision:
            raise ConflictError(
                f"Request '{request_id}' is at revision {current.revision}, not {expected_revision}.",
                current_revision=current.revision,
            )
        return current

    def _open_request(
        self,
        item: ContentItem,
        report: ComplianceReport,
        *,
        actor_id: str,
        practice_id: Optional[str],
        action: str,
        history: Tuple[VersionSnapshot, ...] = (),
        details: Optional[Dict[str, object]] = None,
    ) -> Tuple[ApprovalRequest, List[AuditEntry]]:
        """Build a new submitted request; the caller commits it while holding the store lock."""
        active = self.store.active_for_content(item.id)
        if active is not None:
            raise ConflictError(
                f"Content '{item.id}' already has an active request ({active.id}, {active.state}).",
                current_revision=active.revision,
            )
        previous = self.store.for_content(item.id)
        version = max((request.version for request in previous), default=0) + 1
        level = initial_level(item.content_type)
        at = self.clock()
        request = ApprovalRequest(
            id=f"apr-{uuid.uuid4().hex[:12]}",
            content_id=item.id,
            version=version,
            state=SUBMITTED,
            approval_level=level,
            content=item,
            compliance_report=report,
            submitted_at=at,
            lineage_id=uuid.uuid4().hex,
            practice_id=practice_id,
            submitter_id=actor_id,
            level_started_at=at,
            sla_deadline_at=at + self.settings.sla_for(level),
            history=history,
        )
        entries = [self._entry(None, request, actor_id, action, at, dict(details or {}), before_state=DRAFT)]
        if report.risk_level == "critical":
            request, entries = self._escalate_on_risk(request, entries, at)
        request = replace(request, suggested_reviewer_id=self._suggest_reviewer(request))
        return request, entries

    def _escalate_on_risk(
        self, request: ApprovalRequest, entries: List[AuditEntry], at: datetime
    ) -> Tuple[ApprovalRequest, List[AuditEntry]]:
        if next_level(request.approval_level) is None:
            return request, entries
        updated, entry = self._escalated(request, "critical_risk", None, SYSTEM_ACTOR, at)
        return updated, entries + [entry]

    def _escalated(
        self,
        current: ApprovalRequest,
        reason: str,
        breach_key: Optional[str],
        actor_id: str,
        at: datetime,
    ) -> Tuple[ApprovalRequest, AuditEntry]:
        level_to = next_level(current.approval_level)
        record = EscalationRecord(
            level_from=current.approval_level,
            level_to=level_to,
            reason=reason,
            breach_key=breach_key,
            at=at,
        )
        updated = replace(
            current,
            approval_level=level_to,
            assignee_id=None,
            claimed_at=None if current.state == UNDER_REVIEW else current.claimed_at,
            level_started_at=at,
            sla_deadline_at=at + self.settings.sla_for(level_to),
            escalations=current.escalations + (record,),
        )
        updated = replace(updated, suggested_reviewer_id=self._suggest_reviewer(updated))
        details = {
            "reason": reason,
            "level_from": current.approval_level,
            "level_to": level_to,
            "breach_key": breach_key,
        }
        if current.state == UNDER_REVIEW and current.assignee_id:
            details["released_assignee_id"] = current.assignee_id
        return updated, self._entry(current, updated, actor_id, "escalated", at, details)

    def _suggest_reviewer(self, request: ApprovalRequest) -> Optional[str]:
        role = LEVEL_REVIEWER_ROLES[request.approval_level]
        return self.reviewers.find_available(role, request.practice_id)

    def _entry(
        self,
        before: Optional[ApprovalRequest],
        after: ApprovalRequest,
        actor_id: str,
        action: str,
        at: datetime,
        details: Dict[str, object],
        *,
        before_state: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            id=f"aud-{uuid.uuid4().hex}",
            request_id=after.id,
            content_id=after.content_id,
            actor_id=actor_id,
            action=action,
            before_state=before.state if before is not None else before_state,
            after_state=after.state,
            timestamp=at,
            practice_id=after.practice_id,
            version=after.version,
            compliance_snapshot=compliance_snapshot(after.compliance_report),
            details=details,
        )

    def _announce(
        self,
        request: ApprovalRequest,
        entries: Sequence[AuditEntry],
        actor_id: str,
        event_type: str = "submitted",
    ) -> None:
        self._notify(
            event_type,
            request,
            actor_id,
            recipient_id=request.suggested_reviewer_id,
            payload={"risk_level": request.compliance_report.risk_level, "score": request.compliance_report.score},
        )
        for entry in entries[1:]:
            self._notify("escalated", request, SYSTEM_ACTOR, recipient_id=request.suggested_reviewer_id, payload=dict(entry.details))

    def _notify(
        self,
        event_type: str,
        request: ApprovalRequest,
        actor_id: str,
        *,
        recipient_id: Optional[str] = None,
        payload: Optional[Dict[str, object]] = None,
    ) -> None:
        event = WorkflowEvent(
            event_type=event_type,
            request_id=request.id,
            content_id=request.content_id,
            state=request.state,
            approval_level=request.approval_level,
            actor_id=actor_id,
            practice_id=request.practice_id,
            recipient_id=recipient_id,
            created_at=self.clock(),
            payload=dict(payload or {}),
        )
        try:
            self.notifier.notify(event)
        except Exception:  # notification delivery must not undo a committed transition
            logger.exception(
                "Notification sink failed",
                extra={"event_type": event_type, "request_id": request.id},
            )


__all__ = [
    "ApprovalWorkflow",
    "LEVEL_BY_CONTENT_TYPE",
    "LEVEL_REVIEWER_ROLES",
    "QueueFilter",
    "ROLE_LEVELS",
    "allowed_actions",
    "initial_level",
    "next_level",
    "validate_submission",
    "validate_transition",
]
