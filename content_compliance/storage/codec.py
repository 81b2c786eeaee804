"""
JSON serialisation for the engine's dataclass records.

``to_primitive`` flattens dataclasses into JSON-compatible dictionaries (ISO
8601 timestamps, tuples as lists); the ``load_*`` helpers rebuild the frozen
records when stores reload from disk.
"""

from __future__ import annotations

from dataclasses import is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from content_compliance.services.types import (
    ApprovalRequest,
    AuditEntry,
    ComplianceFinding,
    ComplianceReport,
    ConsentRecord,
    ContentItem,
    EscalationRecord,
    ReviewerScores,
    SubjectMetadata,
    VersionSnapshot,
)


def _to_isoformat(value: datetime) -> str:
    """Return an ISO 8601 string (UTC) for the given datetime."""
    if value.tzinfo:
        return value.astimezone(timezone.utc).isoformat()
    return value.isoformat() + "Z"


def to_primitive(obj: Any) -> Any:
    """Recursively serialise dataclasses, converting datetimes to strings."""
    if isinstance(obj, datetime):
        return _to_isoformat(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return {key: to_primitive(getattr(obj, key)) for key in obj.__dataclass_fields__}
    if isinstance(obj, Mapping):
        return {key: to_primitive(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_primitive(item) for item in obj]
    return obj


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def load_subject(data: Optional[Mapping[str, Any]]) -> SubjectMetadata:
    data = data or {}
    return SubjectMetadata(
        identifiable_subject=bool(data.get("identifiable_subject", False)),
        subject_id=data.get("subject_id"),
        approved_claims=tuple(data.get("approved_claims") or ()),
        risk_class=data.get("risk_class"),
        registration_number=data.get("registration_number"),
        registration_expires_at=parse_datetime(data.get("registration_expires_at")),
        sponsor_name=data.get("sponsor_name"),
    )


def load_content(data: Mapping[str, Any]) -> ContentItem:
    return ContentItem(
        id=data["id"],
        body=data.get("body") or "",
        content_type=data["content_type"],
        target_audience=data.get("target_audience") or "patients",
        subject_metadata=load_subject(data.get("subject_metadata")),
        claims=tuple(data.get("claims") or ()),
        practice_id=data.get("practice_id"),
        author_id=data.get("author_id"),
        jurisdiction=data.get("jurisdiction") or "AU",
        profession=data.get("profession"),
        channel=data.get("channel"),
        title=data.get("title") or "",
        scheduled_publish_at=parse_datetime(data.get("scheduled_publish_at")),
    )


def load_consent(data: Mapping[str, Any]) -> ConsentRecord:
    scopes = data.get("scopes") or ([data["scope"]] if data.get("scope") else [])
    return ConsentRecord(
        subject_id=data["subject_id"],
        scopes=tuple(scopes),
        granted_at=parse_datetime(data["granted_at"]),
        duration_months=int(data.get("duration_months", 12)),
        withdrawn=bool(data.get("withdrawn", False)),
        withdrawn_at=parse_datetime(data.get("withdrawn_at")),
    )


def load_finding(data: Mapping[str, Any]) -> ComplianceFinding:
    return ComplianceFinding(
        rule_id=data["rule_id"],
        category=data["category"],
        severity=data["severity"],
        message=data["message"],
        penalty=float(data.get("penalty") or 0.0),
        recommendation=data.get("recommendation"),
        regulation=data.get("regulation"),
    )


def load_report(data: Mapping[str, Any]) -> ComplianceReport:
    return ComplianceReport(
        violations=tuple(load_finding(item) for item in data.get("violations") or ()),
        warnings=tuple(load_finding(item) for item in data.get("warnings") or ()),
        recommendations=tuple(data.get("recommendations") or ()),
        score=float(data.get("score", 100.0)),
        risk_level=data.get("risk_level") or "low",
        evaluation_incomplete=bool(data.get("evaluation_incomplete", False)),
        rule_set_version=data.get("rule_set_version"),
        evaluated_at=parse_datetime(data.get("evaluated_at")),
        pass_score=float(data.get("pass_score", 80.0)),
    )


def load_reviewer_scores(data: Optional[Mapping[str, Any]]) -> Optional[ReviewerScores]:
    if data is None:
        return None
    return ReviewerScores(
        overall_score=data.get("overall_score"),
        ahpra_compliant=data.get("ahpra_compliant"),
        tga_compliant=data.get("tga_compliant"),
        professional_boundaries_checked=data.get("professional_boundaries_checked"),
        cultural_safety_verified=data.get("cultural_safety_verified"),
        notes=data.get("notes"),
    )


def _load_snapshot(data: Mapping[str, Any]) -> VersionSnapshot:
    return VersionSnapshot(
        version=int(data["version"]),
        content=load_content(data["content"]),
        compliance_report=load_report(data["compliance_report"]),
        decision_notes=data.get("decision_notes"),
        reviewer_scores=load_reviewer_scores(data.get("reviewer_scores")),
        archived_at=parse_datetime(data["archived_at"]),
    )


def _load_escalation(data: Mapping[str, Any]) -> EscalationRecord:
    return EscalationRecord(
        level_from=data["level_from"],
        level_to=data["level_to"],
        reason=data["reason"],
        breach_key=data.get("breach_key"),
        at=parse_datetime(data["at"]),
    )


def load_request(data: Mapping[str, Any]) -> ApprovalRequest:
    return ApprovalRequest(
        id=data["id"],
        content_id=data["content_id"],
        version=int(data["version"]),
        state=data["state"],
        approval_level=data["approval_level"],
        content=load_content(data["content"]),
        compliance_report=load_report(data["compliance_report"]),
        submitted_at=parse_datetime(data["submitted_at"]),
        lineage_id=data["lineage_id"],
        practice_id=data.get("practice_id"),
        submitter_id=data.get("submitter_id"),
        revision=int(data.get("revision", 1)),
        assignee_id=data.get("assignee_id"),
        suggested_reviewer_id=data.get("suggested_reviewer_id"),
        decision_notes=data.get("decision_notes"),
        reviewer_scores=load_reviewer_scores(data.get("reviewer_scores")),
        claimed_at=parse_datetime(data.get("claimed_at")),
        decided_at=parse_datetime(data.get("decided_at")),
        deadline_at=parse_datetime(data.get("deadline_at")),
        level_started_at=parse_datetime(data.get("level_started_at")),
        sla_deadline_at=parse_datetime(data.get("sla_deadline_at")),
        published_at=parse_datetime(data.get("published_at")),
        escalations=tuple(_load_escalation(item) for item in data.get("escalations") or ()),
        history=tuple(_load_snapshot(item) for item in data.get("history") or ()),
    )


def load_audit_entry(data: Mapping[str, Any]) -> AuditEntry:
    return AuditEntry(
        id=data["id"],
        request_id=data["request_id"],
        content_id=data["content_id"],
        actor_id=data["actor_id"],
        action=data["action"],
        before_state=data.get("before_state"),
        after_state=data["after_state"],
        timestamp=parse_datetime(data["timestamp"]),
        practice_id=data.get("practice_id"),
        version=data.get("version"),
        compliance_snapshot=dict(data.get("compliance_snapshot") or {}),
        details=dict(data.get("details") or {}),
        previous_digest=data.get("previous_digest"),
        digest=data.get("digest"),
    )


def dump_request(request: ApprovalRequest) -> Dict[str, Any]:
    return to_primitive(request)


def dump_audit_entry(entry: AuditEntry) -> Dict[str, Any]:
    return to_primitive(entry)


__all__ = [
    "dump_audit_entry",
    "dump_request",
    "load_audit_entry",
    "load_consent",
    "load_content",
    "load_report",
    "load_request",
    "load_reviewer_scores",
    "load_subject",
    "parse_datetime",
    "to_primitive",
]
