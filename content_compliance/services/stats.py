"""
Approval queue statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from statistics import mean
from typing import Dict, Iterable, Optional

from content_compliance.services.types import (
    APPROVED,
    REJECTED,
    REQUIRES_CHANGES,
    SUBMITTED,
    UNDER_REVIEW,
    ApprovalRequest,
    utcnow,
)

BACKLOG_STATES = (SUBMITTED, UNDER_REVIEW, REQUIRES_CHANGES)


@dataclass(slots=True)
class ApprovalStats:
    """Dashboard counters for one set of approval requests."""

    total_pending: int = 0
    total_under_review: int = 0
    total_approved: int = 0
    total_rejected: int = 0
    average_approval_time_hours: float = 0.0
    compliance_score_average: float = 0.0
    backlog_items: int = 0
    overdue_reviews: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "total_pending": self.total_pending,
            "total_under_review": self.total_under_review,
            "total_approved": self.total_approved,
            "total_rejected": self.total_rejected,
            "average_approval_time_hours": self.average_approval_time_hours,
            "compliance_score_average": self.compliance_score_average,
            "backlog_items": self.backlog_items,
            "overdue_reviews": self.overdue_reviews,
        }


def _decided_score(request: ApprovalRequest) -> float:
    scores = request.reviewer_scores
    if scores is not None and scores.overall_score is not None:
        return float(scores.overall_score)
    return request.compliance_report.score


def approval_stats(requests: Iterable[ApprovalRequest], now: Optional[datetime] = None) -> ApprovalStats:
    now = now or utcnow()
    requests = list(requests)
    stats = ApprovalStats()
    for request in requests:
        if request.state == SUBMITTED:
            stats.total_pending += 1
        elif request.state == UNDER_REVIEW:
            stats.total_under_review += 1
        elif request.state == APPROVED:
            stats.total_approved += 1
        elif request.state == REJECTED:
            stats.total_rejected += 1
        if request.state in BACKLOG_STATES:
            stats.backlog_items += 1
            if request.sla_deadline_at is not None and now > request.sla_deadline_at:
                stats.overdue_reviews += 1

    decided = [request for request in requests if request.decided_at is not None]
    if decided:
        stats.average_approval_time_hours = round(
            mean((request.decided_at - request.submitted_at).total_seconds() / 3600 for request in decided), 2
        )
        stats.compliance_score_average = round(mean(_decided_score(request) for request in decided), 2)
    return stats


__all__ = ["ApprovalStats", "BACKLOG_STATES", "approval_stats"]
