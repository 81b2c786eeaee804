import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from content_compliance.services.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from content_compliance.services.types import ComplianceFinding, ReviewerScores, SubjectMetadata
from content_compliance.services.workflow import ApprovalWorkflow, QueueFilter, allowed_actions
from content_compliance.storage.approvals import ApprovalStore
from content_compliance.storage.audit import AuditTrail


def submit(workflow, make_item, report, **kwargs):
    return workflow.submit(make_item(**kwargs), report, actor_id="author-1")


def claimed(workflow, make_item, report, reviewer="pm-1", **kwargs):
    request = submit(workflow, make_item, report, **kwargs)
    return workflow.claim(request.id, reviewer)


# --------------------------------------------------------------------------- #
# submit
# --------------------------------------------------------------------------- #


def test_submit_opens_request_with_sla(workflow, make_item, clean_report, notifier, t0):
    request = submit(workflow, make_item, clean_report)

    assert request.state == "submitted"
    assert request.version == 1
    assert request.revision == 1
    assert request.approval_level == "junior_review"
    assert request.submitted_at == t0
    assert request.sla_deadline_at == t0 + timedelta(hours=24)
    assert request.practice_id == "practice-1"
    assert request.suggested_reviewer_id == "pm-1"

    [entry] = workflow.get_audit_trail("post-1")
    assert (entry.before_state, entry.after_state, entry.action) == ("draft", "submitted", "submitted")
    assert entry.compliance_snapshot["score"] == 100.0

    [event] = notifier.of_type("submitted")
    assert event.recipient_id == "pm-1"


@pytest.mark.parametrize(
    "content_type, level",
    [
        ("blog_article", "junior_review"),
        ("patient_education", "senior_review"),
        ("advertisement", "manager_approval"),
    ],
)
def test_initial_level_follows_content_type(workflow, make_item, clean_report, content_type, level):
    assert submit(workflow, make_item, clean_report, content_type=content_type).approval_level == level


def test_submit_requires_report_and_subject_id(workflow, make_item, clean_report):
    with pytest.raises(ValidationError) as excinfo:
        workflow.submit(make_item(), None, actor_id="author-1")
    assert "a compliance report is required" in excinfo.value.errors

    item = make_item(subject_metadata=SubjectMetadata(identifiable_subject=True))
    with pytest.raises(ValidationError):
        workflow.submit(item, clean_report, actor_id="author-1")
    assert workflow.store.list() == []


def test_submit_rejects_consent_findings(workflow, make_item, clean_report):
    consent_finding = ComplianceFinding(
        rule_id="ahpra.subject_consent",
        category="consent_validity",
        severity="critical",
        message="No valid consent (consent has been withdrawn)",
    )
    report = replace(clean_report, violations=(consent_finding,), risk_level="critical", score=70.0)
    with pytest.raises(ValidationError) as excinfo:
        workflow.submit(make_item(), report, actor_id="author-1")
    assert any(error.startswith("consent:") for error in excinfo.value.errors)
    assert len(workflow.audit) == 0


def test_duplicate_active_submission_conflicts(workflow, make_item, clean_report):
    submit(workflow, make_item, clean_report)
    with pytest.raises(ConflictError):
        submit(workflow, make_item, clean_report)
    assert len(workflow.store.list()) == 1


def test_critical_submission_escalates_immediately(workflow, make_item, critical_report, notifier):
    request = submit(workflow, make_item, critical_report)

    assert request.state == "submitted"
    assert request.approval_level == "senior_review"
    assert request.suggested_reviewer_id == "sp-1"
    assert [record.reason for record in request.escalations] == ["critical_risk"]
    assert [entry.action for entry in workflow.get_audit_trail("post-1")] == ["submitted", "escalated"]
    assert len(notifier.of_type("escalated")) == 1


def test_critical_submission_at_manager_level_is_not_escalated(workflow, make_item, critical_report):
    request = submit(workflow, make_item, critical_report, content_type="advertisement")
    assert request.approval_level == "manager_approval"
    assert request.escalations == ()
    assert len(workflow.get_audit_trail("post-1")) == 1


# --------------------------------------------------------------------------- #
# claim / decide
# --------------------------------------------------------------------------- #


def test_claim_assigns_reviewer(workflow, make_item, clean_report, clock):
    request = submit(workflow, make_item, clean_report)
    clock.advance(hours=1)

    updated = workflow.claim(request.id, "pm-1", expected_revision=1)

    assert updated.state == "under_review"
    assert updated.assignee_id == "pm-1"
    assert updated.claimed_at == clock.now
    assert updated.revision == 2
    assert workflow.get_audit_trail("post-1")[-1].action == "claimed"


def test_second_claim_conflicts(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    with pytest.raises(ConflictError):
        workflow.claim(request.id, "sp-1")
    assert workflow.get_request(request.id).assignee_id == "pm-1"


def test_concurrent_claims_have_one_winner(workflow, make_item, clean_report):
    request = submit(workflow, make_item, clean_report)
    barrier = threading.Barrier(2)
    outcomes = {}

    def attempt(reviewer_id):
        barrier.wait()
        try:
            workflow.claim(request.id, reviewer_id, expected_revision=request.revision)
            outcomes[reviewer_id] = "claimed"
        except ConflictError:
            outcomes[reviewer_id] = "conflict"

    threads = [threading.Thread(target=attempt, args=(reviewer,)) for reviewer in ("pm-1", "sp-1")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes.values()) == ["claimed", "conflict"]
    winner = next(reviewer for reviewer, outcome in outcomes.items() if outcome == "claimed")
    assert workflow.get_request(request.id).assignee_id == winner
    assert [entry.action for entry in workflow.get_audit_trail("post-1")].count("claimed") == 1


def test_only_assignee_may_decide(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    with pytest.raises(ConflictError):
        workflow.decide(request.id, "approved", actor_id="sp-1")


def test_unknown_decision_is_invalid(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    with pytest.raises(ValidationError):
        workflow.decide(request.id, "maybe", actor_id="pm-1")


def test_approval_sets_publish_deadline(workflow, make_item, clean_report, clock):
    request = claimed(workflow, make_item, clean_report)
    clock.advance(hours=2)
    scores = ReviewerScores(overall_score=92, ahpra_compliant=True, tga_compliant=True)

    approved = workflow.decide(request.id, "approved", actor_id="pm-1", notes="Fine", reviewer_scores=scores)

    assert approved.state == "approved"
    assert approved.decided_at == clock.now
    assert approved.deadline_at == clock.now + timedelta(hours=168)
    assert approved.reviewer_scores == scores
    entry = workflow.get_audit_trail("post-1")[-1]
    assert entry.action == "approved"
    assert entry.details["reviewer_scores"]["overall_score"] == 92


def test_scheduled_publish_extends_deadline(workflow, make_item, clean_report, t0):
    scheduled = t0 + timedelta(days=30)
    request = claimed(workflow, make_item, clean_report, scheduled_publish_at=scheduled)
    approved = workflow.decide(request.id, "approved", actor_id="pm-1")
    assert approved.deadline_at == scheduled


def test_decide_on_published_request_is_rejected(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    workflow.decide(request.id, "approved", actor_id="pm-1")
    published = workflow.confirm_publication(request.id)
    entries_before = len(workflow.audit)

    with pytest.raises(InvalidTransitionError) as excinfo:
        workflow.decide(request.id, "rejected", actor_id="pm-1")

    assert excinfo.value.from_state == "published"
    assert workflow.get_request(request.id) == published
    assert len(workflow.audit) == entries_before


@pytest.mark.parametrize("action", ["decide", "publish", "expire", "resubmit"])
def test_undeclared_transitions_from_submitted(workflow, make_item, clean_report, action):
    request = submit(workflow, make_item, clean_report)
    calls = {
        "decide": lambda: workflow.decide(request.id, "approved", actor_id="pm-1"),
        "publish": lambda: workflow.confirm_publication(request.id),
        "expire": lambda: workflow.expire(request.id),
        "resubmit": lambda: workflow.resubmit(request.id, make_item(), clean_report, actor_id="author-1"),
    }
    with pytest.raises(InvalidTransitionError):
        calls[action]()
    assert workflow.get_request(request.id).state == "submitted"
    assert len(workflow.audit) == 1


def test_stale_expected_revision_conflicts(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    with pytest.raises(ConflictError) as excinfo:
        workflow.decide(request.id, "approved", actor_id="pm-1", expected_revision=1)
    assert excinfo.value.current_revision == 2


def test_unknown_request(workflow):
    with pytest.raises(NotFoundError):
        workflow.claim("apr-missing", "pm-1")


# --------------------------------------------------------------------------- #
# resubmit
# --------------------------------------------------------------------------- #


def test_resubmit_after_changes_requested(workflow, make_item, clean_report, clock):
    request = claimed(workflow, make_item, clean_report)
    workflow.decide(request.id, "requires_changes", actor_id="pm-1", notes="Soften the claims")
    clock.advance(hours=3)

    revised = workflow.resubmit(request.id, make_item(body="Revised copy."), clean_report, actor_id="author-1")

    assert revised.id == request.id
    assert revised.state == "submitted"
    assert revised.version == 2
    assert revised.assignee_id is None
    assert revised.decision_notes is None
    assert revised.sla_deadline_at == clock.now + timedelta(hours=24)
    assert [snapshot.version for snapshot in revised.history] == [1]
    assert revised.history[0].decision_notes == "Soften the claims"
    assert revised.content.body == "Revised copy."


def test_resubmit_after_rejection_opens_new_lineage(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    rejected = workflow.decide(request.id, "rejected", actor_id="pm-1")

    fresh = workflow.resubmit(request.id, make_item(body="Second attempt."), clean_report, actor_id="author-1")

    assert fresh.id != request.id
    assert fresh.lineage_id != request.lineage_id
    assert fresh.version == 2
    assert fresh.state == "submitted"
    assert workflow.get_request(request.id) == rejected
    assert [snapshot.version for snapshot in fresh.history] == [1]
    assert workflow.get_audit_trail("post-1")[-1].details["supersedes"] == request.id
    assert [item.version for item in workflow.history("post-1")] == [2, 1]


def test_resubmit_requires_matching_content_id(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    workflow.decide(request.id, "requires_changes", actor_id="pm-1")
    with pytest.raises(ValidationError):
        workflow.resubmit(request.id, make_item("post-2"), clean_report, actor_id="author-1")


def test_resubmit_from_approved_is_invalid(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    workflow.decide(request.id, "approved", actor_id="pm-1")
    with pytest.raises(InvalidTransitionError):
        workflow.resubmit(request.id, make_item(), clean_report, actor_id="author-1")


# --------------------------------------------------------------------------- #
# escalate / publish / expire
# --------------------------------------------------------------------------- #


def test_escalation_releases_assignee(workflow, make_item, clean_report, clock):
    request = claimed(workflow, make_item, clean_report)
    clock.advance(hours=1)

    escalated = workflow.escalate(request.id, "manual", actor_id="pm-1")

    assert escalated.approval_level == "senior_review"
    assert escalated.state == "under_review"
    assert escalated.assignee_id is None
    assert escalated.sla_deadline_at == clock.now + timedelta(hours=48)
    entry = workflow.get_audit_trail("post-1")[-1]
    assert entry.details["released_assignee_id"] == "pm-1"

    reclaimed = workflow.claim(request.id, "sp-1")
    assert reclaimed.assignee_id == "sp-1"


def test_escalation_with_seen_breach_key_is_noop(workflow, make_item, clean_report):
    request = submit(workflow, make_item, clean_report)
    first = workflow.escalate(request.id, "sla_breach", breach_key="junior_review@x")
    again = workflow.escalate(request.id, "sla_breach", breach_key="junior_review@x")
    assert again == first
    assert len(workflow.audit) == 2


def test_escalation_stops_at_manager(workflow, make_item, clean_report):
    request = submit(workflow, make_item, clean_report, content_type="advertisement")
    with pytest.raises(InvalidTransitionError):
        workflow.escalate(request.id, "manual")


def test_publish_and_expire(workflow, make_item, clean_report, clock):
    first = claimed(workflow, make_item, clean_report)
    workflow.decide(first.id, "approved", actor_id="pm-1")
    published = workflow.confirm_publication(first.id, clock.now + timedelta(hours=1))
    assert published.state == "published"
    assert published.is_terminal

    second = claimed(workflow, make_item, clean_report, item_id="post-2")
    approved = workflow.decide(second.id, "approved", actor_id="pm-1")
    with pytest.raises(InvalidTransitionError):
        workflow.expire(second.id)
    expired = workflow.expire(second.id, approved.deadline_at)
    assert expired.state == "expired"
    with pytest.raises(InvalidTransitionError):
        workflow.confirm_publication(second.id)


def test_notification_failure_does_not_roll_back(settings, reviewers, clock, make_item, clean_report):
    class BrokenSink:
        def notify(self, event):
            raise RuntimeError("smtp down")

    workflow = ApprovalWorkflow(settings=settings, reviewers=reviewers, notifier=BrokenSink(), clock=clock)
    request = workflow.submit(make_item(), clean_report, actor_id="author-1")
    assert workflow.get_request(request.id).state == "submitted"
    assert len(workflow.audit) == 1


# --------------------------------------------------------------------------- #
# queries
# --------------------------------------------------------------------------- #


def test_queue_filters_by_role(workflow, make_item, clean_report, clock):
    junior = submit(workflow, make_item, clean_report, item_id="post-1")
    clock.advance(minutes=1)
    manager = submit(workflow, make_item, clean_report, item_id="post-2", content_type="advertisement")
    clock.advance(minutes=1)
    other = workflow.submit(make_item("post-3"), clean_report, actor_id="author-2")

    all_ids = [request.id for request in workflow.get_queue(QueueFilter(role="practice_manager"))]
    assert all_ids == [junior.id, manager.id, other.id]

    senior_ids = [request.id for request in workflow.get_queue(QueueFilter(role="senior_practitioner"))]
    assert senior_ids == [junior.id, other.id]

    own = workflow.get_queue(QueueFilter(role="practitioner", actor_id="author-2"))
    assert [request.id for request in own] == [other.id]

    with pytest.raises(ValidationError):
        workflow.get_queue(QueueFilter(role="janitor"))


def test_queue_excludes_terminal_requests_by_default(workflow, make_item, clean_report):
    request = claimed(workflow, make_item, clean_report)
    workflow.decide(request.id, "rejected", actor_id="pm-1")
    assert workflow.get_queue() == []
    assert len(workflow.get_queue(QueueFilter(states=("rejected",)))) == 1


def test_audit_trail_as_of(workflow, make_item, clean_report, clock, t0):
    request = submit(workflow, make_item, clean_report)
    clock.advance(hours=1)
    workflow.claim(request.id, "pm-1")

    assert len(workflow.get_audit_trail("post-1", as_of=t0)) == 1
    assert len(workflow.get_audit_trail("post-1")) == 2
    assert len(workflow.get_practice_audit("practice-1", start=t0 + timedelta(minutes=30))) == 1


def test_allowed_actions():
    assert allowed_actions("submitted") == ["claim", "escalate"]
    assert allowed_actions("under_review") == ["claim", "decide", "escalate"]
    assert allowed_actions("approved") == ["escalate", "publish", "expire"]
    assert allowed_actions("published") == []


class BrokenStore(ApprovalStore):
    fail = False

    def _persist(self, requests):
        if self.fail:
            raise OSError("disk full")


def test_empty_store_and_trail_are_kept(settings):
    store, audit = ApprovalStore(), AuditTrail()
    workflow = ApprovalWorkflow(store, audit, settings=settings)
    assert workflow.store is store
    assert workflow.audit is audit


def test_failed_claim_leaves_audit_untouched(settings, reviewers, clock, make_item, clean_report):
    store = BrokenStore()
    workflow = ApprovalWorkflow(store, AuditTrail(), settings=settings, reviewers=reviewers, clock=clock)
    request = submit(workflow, make_item, clean_report)

    store.fail = True
    with pytest.raises(OSError):
        workflow.claim(request.id, "pm-1")

    assert workflow.get_request(request.id).state == "submitted"
    assert [entry.action for entry in workflow.get_audit_trail("post-1")] == ["submitted"]


def test_queue_order_is_stable_for_same_submission_time(workflow, make_item, clean_report):
    for content_id in ("post-3", "post-1", "post-2"):
        submit(workflow, make_item, clean_report, item_id=content_id)
    assert [request.content_id for request in workflow.get_queue()] == ["post-3", "post-1", "post-2"]
