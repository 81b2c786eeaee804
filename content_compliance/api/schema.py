"""
JSON helpers for compliance API payloads.

Serialisation utilities convert the engine's dataclasses into JSON-friendly
dictionaries (ISO 8601 timestamps, tuples flattened to lists). The report
schema keeps API consumers and the engine in sync on the structure of a
compliance report.
"""

from __future__ import annotations

from typing import Any, Dict

from content_compliance.services.types import (
    APPROVAL_LEVELS,
    RISK_LEVELS,
    SEVERITIES,
    STATES,
    ApprovalRequest,
    AuditEntry,
    ComplianceReport,
)
from content_compliance.storage.codec import to_primitive


def serialize_report(report: ComplianceReport) -> Dict[str, Any]:
    """Report payload with the derived ``is_compliant`` flag."""

    payload = to_primitive(report)
    payload["is_compliant"] = report.is_compliant
    return payload


def serialize_request(request: ApprovalRequest) -> Dict[str, Any]:
    """
    Convert an ApprovalRequest into a JSON-compatible dict.

    Args:
        request: Request as stored by the workflow.

    Returns:
        dict: Payload ready for JSON encoding, with the current report
        (and every archived report) carrying ``is_compliant``.
    """

    payload = to_primitive(request)
    payload["compliance_report"] = serialize_report(request.compliance_report)
    payload["is_terminal"] = request.is_terminal
    for snapshot, archived in zip(payload["history"], request.history):
        snapshot["compliance_report"] = serialize_report(archived.compliance_report)
    return payload


def serialize_audit_entry(entry: AuditEntry) -> Dict[str, Any]:
    return to_primitive(entry)


_FINDING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["rule_id", "category", "severity", "message", "penalty"],
    "properties": {
        "rule_id": {"type": "string"},
        "category": {"type": "string"},
        "severity": {"type": "string", "enum": list(SEVERITIES)},
        "message": {"type": "string"},
        "penalty": {"type": "number", "minimum": 0},
        "recommendation": {"type": ["string", "null"]},
        "regulation": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}


def get_report_schema() -> Dict[str, Any]:
    """
    Return the JSON Schema definition for a compliance report payload.
    """

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "$id": "https://content-compliance/schema/compliance-report.json",
        "title": "ComplianceReport",
        "type": "object",
        "required": ["violations", "warnings", "recommendations", "score", "risk_level", "evaluation_incomplete"],
        "properties": {
            "violations": {"type": "array", "items": {"$ref": "#/definitions/ComplianceFinding"}},
            "warnings": {"type": "array", "items": {"$ref": "#/definitions/ComplianceFinding"}},
            "recommendations": {"type": "array", "items": {"type": "string"}},
            "score": {"type": "number", "minimum": 0, "maximum": 100},
            "risk_level": {"type": "string", "enum": list(RISK_LEVELS)},
            "evaluation_incomplete": {"type": "boolean"},
            "rule_set_version": {"type": ["string", "null"]},
            "evaluated_at": {"type": ["string", "null"], "format": "date-time"},
            "pass_score": {"type": "number"},
            "is_compliant": {"type": "boolean"},
        },
        "additionalProperties": False,
        "definitions": {
            "ComplianceFinding": _FINDING_SCHEMA,
            "WorkflowState": {"type": "string", "enum": list(STATES)},
            "ApprovalLevel": {"type": "string", "enum": list(APPROVAL_LEVELS)},
        },
    }


__all__ = [
    "get_report_schema",
    "serialize_audit_entry",
    "serialize_report",
    "serialize_request",
]
