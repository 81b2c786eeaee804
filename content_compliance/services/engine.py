"""
High-level compliance engine coordinating evaluation and the approval workflow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from content_compliance.compliance.catalog import HttpRuleCatalog, JsonRuleCatalog, StaticRuleCatalog
from content_compliance.compliance.consent import ConsentLedger
from content_compliance.compliance.evaluator import average_score, evaluate, evaluate_unavailable
from content_compliance.compliance.rules import RuleSet
from content_compliance.config.settings import WorkflowSettings, load_settings
from content_compliance.services.collaborators import (
    ConsentStore,
    InMemoryConsentStore,
    NotificationSink,
    PublishConfirmationSource,
    ReviewerDirectory,
    RuleCatalogProvider,
)
from content_compliance.services.errors import RuleEvaluationError, ValidationError
from content_compliance.services.escalation import EscalationSweep
from content_compliance.services.stats import ApprovalStats, approval_stats
from content_compliance.services.types import (
    ApprovalRequest,
    AuditEntry,
    ComplianceReport,
    ContentItem,
    ReviewerScores,
)
from content_compliance.services.workflow import ApprovalWorkflow, QueueFilter
from content_compliance.storage.approvals import JsonApprovalStore
from content_compliance.storage.audit import JsonlAuditTrail

logger = logging.getLogger("content_compliance.services.engine")


@dataclass(slots=True)
class ComplianceEngine:
    """Facade that evaluates content and drives it through review end-to-end."""

    catalog: RuleCatalogProvider
    consent_store: ConsentStore
    workflow: ApprovalWorkflow
    publish_source: Optional[PublishConfirmationSource] = None
    consent_ledger: ConsentLedger = field(init=False)

    def __post_init__(self) -> None:
        self.consent_ledger = ConsentLedger(self.consent_store)

    @property
    def pass_score(self) -> float:
        return self.workflow.settings.pass_score

    def rules_for(self, item: ContentItem) -> RuleSet:
        return self.catalog.get_rules(item.jurisdiction, item.profession)

    def evaluate_content(self, item: ContentItem, at_time: Optional[datetime] = None) -> ComplianceReport:
        """Evaluate ``item``; an unreachable catalogue yields the fail-closed report."""
        at_time = at_time or self.workflow.clock()
        try:
            rule_set = self.rules_for(item)
        except RuleEvaluationError as exc:
            logger.error(
                "Rule catalogue unavailable",
                extra={"content_id": item.id, "jurisdiction": item.jurisdiction, "error": exc.message},
            )
            return evaluate_unavailable(item, exc.message, at_time=at_time, pass_score=self.pass_score)
        consent = self.consent_ledger.lookup(item)
        return evaluate(item, rule_set, consent, at_time=at_time, pass_score=self.pass_score)

    def evaluate_batch(self, items: Iterable[ContentItem], at_time: Optional[datetime] = None) -> List[ComplianceReport]:
        at_time = at_time or self.workflow.clock()
        return [self.evaluate_content(item, at_time) for item in items]

    def average_compliance_score(self, items: Iterable[ContentItem], at_time: Optional[datetime] = None) -> float:
        return average_score(self.evaluate_batch(items, at_time))

    def check_consent(self, item: ContentItem, at_time: Optional[datetime] = None) -> Tuple[bool, str]:
        return self.consent_ledger.is_consent_valid(item, at_time or self.workflow.clock())

    def _require_consent(self, item: ContentItem) -> None:
        """Reject identifiable subjects without valid consent before they enter the workflow."""
        if not item.subject_metadata.identifiable_subject:
            return
        valid, reason = self.check_consent(item)
        if not valid:
            raise ValidationError(f"Submission rejected: consent: {reason}", errors=[f"consent: {reason}"])

    def submit_content(
        self,
        item: ContentItem,
        *,
        actor_id: str,
        practice_id: Optional[str] = None,
    ) -> Tuple[ApprovalRequest, ComplianceReport]:
        report = self.evaluate_content(item)
        self._require_consent(item)
        request = self.workflow.submit(item, report, actor_id=actor_id, practice_id=practice_id)
        return request, report

    def resubmit_content(
        self,
        request_id: str,
        item: ContentItem,
        *,
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> Tuple[ApprovalRequest, ComplianceReport]:
        report = self.evaluate_content(item)
        self._require_consent(item)
        request = self.workflow.resubmit(
            request_id, item, report, actor_id=actor_id, expected_revision=expected_revision
        )
        return request, report

    def claim(self, request_id: str, reviewer_id: str, *, expected_revision: Optional[int] = None) -> ApprovalRequest:
        return self.workflow.claim(request_id, reviewer_id, expected_revision=expected_revision)

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
        return self.workflow.decide(
            request_id,
            decision,
            actor_id=actor_id,
            notes=notes,
            reviewer_scores=reviewer_scores,
            expected_revision=expected_revision,
        )

    def escalate(
        self,
        request_id: str,
        reason: str,
        *,
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        return self.workflow.escalate(request_id, reason, actor_id=actor_id, expected_revision=expected_revision)

    def confirm_publication(
        self,
        request_id: str,
        published_at: Optional[datetime] = None,
        *,
        actor_id: str,
        expected_revision: Optional[int] = None,
    ) -> ApprovalRequest:
        return self.workflow.confirm_publication(
            request_id, published_at, actor_id=actor_id, expected_revision=expected_revision
        )

    def get_request(self, request_id: str) -> ApprovalRequest:
        return self.workflow.get_request(request_id)

    def get_queue(self, queue_filter: Optional[QueueFilter] = None) -> List[ApprovalRequest]:
        return self.workflow.get_queue(queue_filter)

    def get_audit_trail(self, content_id: str, as_of: Optional[datetime] = None) -> List[AuditEntry]:
        return self.workflow.get_audit_trail(content_id, as_of=as_of)

    def get_practice_audit(
        self,
        practice_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        return self.workflow.get_practice_audit(practice_id, start=start, end=end)

    def history(self, content_id: str) -> List[ApprovalRequest]:
        return self.workflow.history(content_id)

    def stats(self, practice_id: Optional[str] = None, now: Optional[datetime] = None) -> ApprovalStats:
        requests = self.workflow.store.list()
        if practice_id:
            requests = [request for request in requests if request.practice_id == practice_id]
        return approval_stats(requests, now or self.workflow.clock())

    def create_sweep(self, interval_seconds: Optional[float] = None) -> EscalationSweep:
        return EscalationSweep(self.workflow, self.publish_source, interval_seconds=interval_seconds)


def build_catalog(settings: WorkflowSettings) -> RuleCatalogProvider:
    """Pick the rule catalogue: JSON file, then HTTP endpoint, then built-in rules."""
    if settings.rules_path is not None:
        return JsonRuleCatalog(settings.rules_path)
    if settings.rules_url:
        return HttpRuleCatalog(settings.rules_url, auth_token=settings.rules_auth_token)
    return StaticRuleCatalog()


def build_default_engine(
    settings: Optional[WorkflowSettings] = None,
    *,
    consent_store: Optional[ConsentStore] = None,
    reviewers: Optional[ReviewerDirectory] = None,
    notifier: Optional[NotificationSink] = None,
    publish_source: Optional[PublishConfirmationSource] = None,
) -> ComplianceEngine:
    """
    Engine persisted under ``settings.data_dir``.

    Publish confirmations arrive through ``POST /requests/{id}/publish``.
    Pass ``publish_source`` (for example a ``QueuedPublishConfirmations`` fed
    by a webhook worker in the same process) to have the sweep drain it.
    """
    settings = settings or load_settings()
    data_dir = settings.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    workflow = ApprovalWorkflow(
        JsonApprovalStore(data_dir / "approvals.json"),
        JsonlAuditTrail(data_dir / "audit.jsonl"),
        settings=settings,
        reviewers=reviewers,
        notifier=notifier,
    )
    logger.info("Compliance engine ready", extra={"data_dir": str(data_dir)})
    return ComplianceEngine(
        catalog=build_catalog(settings),
        consent_store=consent_store if consent_store is not None else InMemoryConsentStore(),
        workflow=workflow,
        publish_source=publish_source,
    )


__all__ = ["ComplianceEngine", "build_catalog", "build_default_engine"]
