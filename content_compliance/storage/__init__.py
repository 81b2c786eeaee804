"""
Persistence for approval requests and the audit trail.
"""

from .approvals import ApprovalStore, JsonApprovalStore
from .audit import AuditTrail, JsonlAuditTrail

__all__ = ["ApprovalStore", "AuditTrail", "JsonApprovalStore", "JsonlAuditTrail"]
