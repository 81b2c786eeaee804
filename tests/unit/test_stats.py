from datetime import timedelta

from content_compliance.services.stats import approval_stats
from content_compliance.services.types import ReviewerScores


def test_empty_stats():
    stats = approval_stats([])
    assert stats.total_pending == 0
    assert stats.average_approval_time_hours == 0.0
    assert stats.compliance_score_average == 0.0


def test_stats_over_mixed_requests(workflow, make_item, clean_report, clock, t0):
    workflow.submit(make_item("post-1"), clean_report, actor_id="author-1")

    reviewing = workflow.submit(make_item("post-2"), clean_report, actor_id="author-1")
    workflow.claim(reviewing.id, "pm-1")

    approved = workflow.submit(make_item("post-3"), clean_report, actor_id="author-1")
    workflow.claim(approved.id, "pm-1")
    clock.advance(hours=4)
    workflow.decide(approved.id, "approved", actor_id="pm-1", reviewer_scores=ReviewerScores(overall_score=90))

    rejected = workflow.submit(make_item("post-4"), clean_report, actor_id="author-1")
    workflow.claim(rejected.id, "pm-1")
    clock.advance(hours=2)
    workflow.decide(rejected.id, "rejected", actor_id="pm-1")

    stats = approval_stats(workflow.store.list(), now=t0 + timedelta(hours=30))

    assert stats.total_pending == 1
    assert stats.total_under_review == 1
    assert stats.total_approved == 1
    assert stats.total_rejected == 1
    assert stats.backlog_items == 2
    assert stats.overdue_reviews == 2
    # decided after 4h and 2h
    assert stats.average_approval_time_hours == 3.0
    assert stats.compliance_score_average == 95.0
    assert set(stats.as_dict()) >= {"total_pending", "backlog_items", "overdue_reviews"}
