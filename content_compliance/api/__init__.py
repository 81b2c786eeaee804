"""
HTTP layer for the compliance engine.

Exposes the FastAPI factory and the JSON helpers shared by the routes.
"""

from .app import create_api
from .schema import get_report_schema, serialize_audit_entry, serialize_report, serialize_request

__all__ = [
    "create_api",
    "get_report_schema",
    "serialize_audit_entry",
    "serialize_report",
    "serialize_request",
]
