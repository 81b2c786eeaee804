"""
Dataclasses describing content, compliance reports and approval records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

SEVERITIES: Tuple[str, ...] = ("info", "warning", "error", "critical")
VIOLATION_SEVERITIES = frozenset({"error", "critical"})

RISK_LEVELS: Tuple[str, ...] = ("low", "medium", "high", "critical")

# Workflow states
DRAFT = "draft"
SUBMITTED = "submitted"
UNDER_REVIEW = "under_review"
REQUIRES_CHANGES = "requires_changes"
APPROVED = "approved"
REJECTED = "rejected"
PUBLISHED = "published"
EXPIRED = "expired"

STATES: Tuple[str, ...] = (
    DRAFT,
    SUBMITTED,
    UNDER_REVIEW,
    REQUIRES_CHANGES,
    APPROVED,
    REJECTED,
    PUBLISHED,
    EXPIRED,
)
TERMINAL_STATES = frozenset({PUBLISHED, REJECTED, EXPIRED})

APPROVAL_LEVELS: Tuple[str, ...] = ("junior_review", "senior_review", "manager_approval")

DECISIONS: Tuple[str, ...] = (APPROVED, REJECTED, REQUIRES_CHANGES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def risk_rank(level: str) -> int:
    return RISK_LEVELS.index(level)


@dataclass(frozen=True)
class SubjectMetadata:
    """What the content is about: a patient, a device, a practitioner."""

    identifiable_subject: bool = False
    subject_id: Optional[str] = None
    approved_claims: Tuple[str, ...] = ()
    risk_class: Optional[str] = None  # e.g. "Class IIb", "AIMD"
    registration_number: Optional[str] = None
    registration_expires_at: Optional[datetime] = None
    sponsor_name: Optional[str] = None


@dataclass(frozen=True)
class ContentItem:
    """User-authored content awaiting compliance evaluation."""

    id: str
    body: str
    content_type: str
    target_audience: str = "patients"
    subject_metadata: SubjectMetadata = field(default_factory=SubjectMetadata)
    claims: Tuple[str, ...] = ()
    practice_id: Optional[str] = None
    author_id: Optional[str] = None
    jurisdiction: str = "AU"
    profession: Optional[str] = None
    channel: Optional[str] = None  # consent scope: marketing/social/web
    title: str = ""
    scheduled_publish_at: Optional[datetime] = None


@dataclass(frozen=True)
class ComplianceFinding:
    """Single itemised rule breach."""

    rule_id: str
    category: str
    severity: str
    message: str
    penalty: float = 0.0
    recommendation: Optional[str] = None
    regulation: Optional[str] = None


@dataclass(frozen=True)
class ComplianceReport:
    """Scored outcome of evaluating one content version against a rule set."""

    violations: Tuple[ComplianceFinding, ...] = ()
    warnings: Tuple[ComplianceFinding, ...] = ()
    recommendations: Tuple[str, ...] = ()
    score: float = 100.0
    risk_level: str = "low"
    evaluation_incomplete: bool = False
    rule_set_version: Optional[str] = None
    evaluated_at: Optional[datetime] = None
    pass_score: float = 80.0

    @property
    def is_compliant(self) -> bool:
        return not self.violations and not self.evaluation_incomplete and self.score >= self.pass_score

    def rule_ids(self) -> Tuple[str, ...]:
        return tuple(f.rule_id for f in self.violations + self.warnings)


@dataclass(frozen=True)
class ConsentRecord:
    """Subject consent captured for publishing identifiable content."""

    subject_id: str
    scopes: Tuple[str, ...]
    granted_at: datetime
    duration_months: int = 12
    withdrawn: bool = False
    withdrawn_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReviewerScores:
    """Scores a reviewer records with their decision, kept verbatim."""

    overall_score: Optional[float] = None
    ahpra_compliant: Optional[bool] = None
    tga_compliant: Optional[bool] = None
    professional_boundaries_checked: Optional[bool] = None
    cultural_safety_verified: Optional[bool] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class VersionSnapshot:
    """Archived content version with the report that was produced for it."""

    version: int
    content: ContentItem
    compliance_report: ComplianceReport
    decision_notes: Optional[str]
    reviewer_scores: Optional[ReviewerScores]
    archived_at: datetime


@dataclass(frozen=True)
class EscalationRecord:
    level_from: str
    level_to: str
    reason: str
    breach_key: Optional[str]
    at: datetime


@dataclass(frozen=True)
class ApprovalRequest:
    """One content version moving through the review workflow."""

    id: str
    content_id: str
    version: int
    state: str
    approval_level: str
    content: ContentItem
    compliance_report: ComplianceReport
    submitted_at: datetime
    lineage_id: str
    practice_id: Optional[str] = None
    submitter_id: Optional[str] = None
    revision: int = 1
    assignee_id: Optional[str] = None
    suggested_reviewer_id: Optional[str] = None
    decision_notes: Optional[str] = None
    reviewer_scores: Optional[ReviewerScores] = None
    claimed_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    deadline_at: Optional[datetime] = None
    level_started_at: Optional[datetime] = None
    sla_deadline_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    escalations: Tuple[EscalationRecord, ...] = ()
    history: Tuple[VersionSnapshot, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one workflow transition."""

    id: str
    request_id: str
    content_id: str
    actor_id: str
    action: str
    before_state: Optional[str]
    after_state: str
    timestamp: datetime
    practice_id: Optional[str] = None
    version: Optional[int] = None
    compliance_snapshot: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    previous_digest: Optional[str] = None
    digest: Optional[str] = None


def compliance_snapshot(report: ComplianceReport) -> Dict[str, Any]:
    """Summary of a report embedded in audit entries."""
    return {
        "score": report.score,
        "risk_level": report.risk_level,
        "violations": [f.rule_id for f in report.violations],
        "warnings": [f.rule_id for f in report.warnings],
        "evaluation_incomplete": report.evaluation_incomplete,
        "rule_set_version": report.rule_set_version,
    }


__all__ = [
    "SEVERITIES",
    "VIOLATION_SEVERITIES",
    "RISK_LEVELS",
    "STATES",
    "TERMINAL_STATES",
    "APPROVAL_LEVELS",
    "DECISIONS",
    "DRAFT",
    "SUBMITTED",
    "UNDER_REVIEW",
    "REQUIRES_CHANGES",
    "APPROVED",
    "REJECTED",
    "PUBLISHED",
    "EXPIRED",
    "SubjectMetadata",
    "ContentItem",
    "ComplianceFinding",
    "ComplianceReport",
    "ConsentRecord",
    "ReviewerScores",
    "VersionSnapshot",
    "EscalationRecord",
    "ApprovalRequest",
    "AuditEntry",
    "compliance_snapshot",
    "risk_rank",
    "utcnow",
]
