"""
Exceptions raised by the compliance evaluator and approval workflow.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ComplianceEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ComplianceEngineError):
    """Malformed content or missing required consent."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []


class ConflictError(ComplianceEngineError):
    """Concurrent claim or stale-revision transition attempt."""

    def __init__(self, message: str, current_revision: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.current_revision = current_revision


class NotFoundError(ComplianceEngineError):
    """Unknown rule, content or request id."""


class InvalidTransitionError(ComplianceEngineError):
    """Action attempted from a state that does not permit it."""

    def __init__(self, message: str, from_state: Optional[str] = None, action: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.from_state = from_state
        self.action = action


class RuleEvaluationError(ComplianceEngineError):
    """Rule catalog could not be fetched."""


__all__ = [
    "ComplianceEngineError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "InvalidTransitionError",
    "RuleEvaluationError",
]
