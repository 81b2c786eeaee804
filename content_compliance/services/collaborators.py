"""
Interfaces for collaborators the engine consumes, plus in-process implementations.

The engine never owns rules, consent or reviewer rosters; it reads them through
these protocols. Notifications are fire-and-forget and publish confirmations
arrive asynchronously through a drained queue.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, Optional, Protocol, Tuple

from content_compliance.services.types import ConsentRecord, utcnow

if TYPE_CHECKING:  # pragma: no cover
    from content_compliance.compliance.rules import RuleSet

logger = logging.getLogger("content_compliance.services.collaborators")


@dataclass(frozen=True)
class WorkflowEvent:
    """Notification payload emitted on every workflow transition."""

    event_type: str  # "submitted", "claimed", "approved", "escalated", ...
    request_id: str
    content_id: str
    state: str
    approval_level: str
    actor_id: str
    practice_id: Optional[str] = None
    recipient_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PublishEvent:
    """External confirmation that approved content went live."""

    request_id: str
    published_at: datetime
    actor_id: str = "publisher"


class RuleCatalogProvider(Protocol):
    def get_rules(self, jurisdiction: str, profession: Optional[str] = None) -> "RuleSet":
        ...


class ConsentStore(Protocol):
    def lookup(self, subject_id: str) -> Optional[ConsentRecord]:
        ...


class ReviewerDirectory(Protocol):
    def find_available(self, role: str, practice_id: Optional[str]) -> Optional[str]:
        ...


class NotificationSink(Protocol):
    def notify(self, event: WorkflowEvent) -> None:
        ...


class PublishConfirmationSource(Protocol):
    def drain(self) -> List[PublishEvent]:
        ...


class InMemoryConsentStore:
    """Dictionary-backed consent store keyed by subject id."""

    def __init__(self, records: Iterable[ConsentRecord] = ()):
        self._records: Dict[str, ConsentRecord] = {record.subject_id: record for record in records}

    def put(self, record: ConsentRecord) -> None:
        self._records[record.subject_id] = record

    def lookup(self, subject_id: str) -> Optional[ConsentRecord]:
        return self._records.get(subject_id)


class StaticReviewerDirectory:
    """Roster of active reviewers per (role, practice)."""

    def __init__(self, roster: Optional[Dict[Tuple[str, Optional[str]], List[str]]] = None):
        self._roster = dict(roster or {})

    def add(self, role: str, practice_id: Optional[str], reviewer_id: str) -> None:
        self._roster.setdefault((role, practice_id), []).append(reviewer_id)

    def find_available(self, role: str, practice_id: Optional[str]) -> Optional[str]:
        reviewers = self._roster.get((role, practice_id)) or self._roster.get((role, None)) or []
        return reviewers[0] if reviewers else None


class LoggingNotificationSink:
    """Sink that records notifications in the application log."""

    def notify(self, event: WorkflowEvent) -> None:
        logger.info(
            "Workflow notification",
            extra={
                "event_type": event.event_type,
                "request_id": event.request_id,
                "content_id": event.content_id,
                "state": event.state,
                "approval_level": event.approval_level,
                "recipient_id": event.recipient_id,
            },
        )


class RecordingNotificationSink:
    """Keeps every notification in memory; handy for dashboards and tests."""

    def __init__(self) -> None:
        self.events: List[WorkflowEvent] = []

    def notify(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[WorkflowEvent]:
        return [event for event in self.events if event.event_type == event_type]


class QueuedPublishConfirmations:
    """Thread-safe queue fed by publish webhooks and drained by the sweep."""

    def __init__(self) -> None:
        self._queue: Deque[PublishEvent] = deque()
        self._lock = threading.Lock()

    def push(self, event: PublishEvent) -> None:
        with self._lock:
            self._queue.append(event)

    def drain(self) -> List[PublishEvent]:
        with self._lock:
            events = list(self._queue)
            self._queue.clear()
        return events


__all__ = [
    "WorkflowEvent",
    "PublishEvent",
    "RuleCatalogProvider",
    "ConsentStore",
    "ReviewerDirectory",
    "NotificationSink",
    "PublishConfirmationSource",
    "InMemoryConsentStore",
    "StaticReviewerDirectory",
    "LoggingNotificationSink",
    "RecordingNotificationSink",
    "QueuedPublishConfirmations",
]
