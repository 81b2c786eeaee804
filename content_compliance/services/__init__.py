"""
Service layer for the compliance engine: records, workflow and facade.

The primary classes are exposed via lazy imports to avoid circular
dependencies (e.g. compliance rules importing
`content_compliance.services.types`).
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict

__all__ = [
    "ApprovalRequest",
    "ApprovalStats",
    "ApprovalWorkflow",
    "AuditEntry",
    "ComplianceEngine",
    "ComplianceReport",
    "ContentItem",
    "EscalationSweep",
    "QueueFilter",
    "SweepResult",
    "approval_stats",
    "build_default_engine",
]

_MODULE_ATTRS: Dict[str, str] = {
    "ApprovalRequest": "content_compliance.services.types",
    "AuditEntry": "content_compliance.services.types",
    "ComplianceReport": "content_compliance.services.types",
    "ContentItem": "content_compliance.services.types",
    "ApprovalStats": "content_compliance.services.stats",
    "approval_stats": "content_compliance.services.stats",
    "ApprovalWorkflow": "content_compliance.services.workflow",
    "QueueFilter": "content_compliance.services.workflow",
    "EscalationSweep": "content_compliance.services.escalation",
    "SweepResult": "content_compliance.services.escalation",
    "ComplianceEngine": "content_compliance.services.engine",
    "build_default_engine": "content_compliance.services.engine",
}


def __getattr__(name: str) -> Any:
    module_path = _MODULE_ATTRS.get(name)
    if not module_path:
        raise AttributeError(f"module 'content_compliance.services' has no attribute '{name}'")  # pragma: no cover
    module = import_module(module_path)
    return getattr(module, name)


def __dir__() -> list[str]:  # pragma: no cover - convenience helper
    return sorted(__all__)
