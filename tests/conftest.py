from datetime import datetime, timedelta, timezone

import pytest

from content_compliance.config.settings import WorkflowSettings
from content_compliance.services.collaborators import RecordingNotificationSink, StaticReviewerDirectory
from content_compliance.services.types import ComplianceFinding, ComplianceReport, ContentItem, SubjectMetadata
from content_compliance.services.workflow import ApprovalWorkflow

T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

CLEAN_BODY = "Our clinic will be closed on the public holiday. We look forward to seeing you next week."


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return WorkflowSettings(
        sla_hours={"junior_review": 24, "senior_review": 48, "manager_approval": 72},
        publish_window_hours=168,
        pass_score=80,
        sweep_interval_seconds=300,
        data_dir=tmp_path / "data",
        rules_path=None,
        rules_url=None,
    )


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def reviewers():
    directory = StaticReviewerDirectory()
    directory.add("practice_manager", None, "pm-1")
    directory.add("senior_practitioner", None, "sp-1")
    return directory


@pytest.fixture
def workflow(settings, reviewers, notifier, clock):
    return ApprovalWorkflow(settings=settings, reviewers=reviewers, notifier=notifier, clock=clock)


@pytest.fixture
def make_item():
    def factory(item_id: str = "post-1", body: str = CLEAN_BODY, content_type: str = "blog_article", **kwargs):
        kwargs.setdefault("practice_id", "practice-1")
        kwargs.setdefault("author_id", "author-1")
        return ContentItem(id=item_id, body=body, content_type=content_type, **kwargs)

    return factory


@pytest.fixture
def identifiable_subject():
    return SubjectMetadata(identifiable_subject=True, subject_id="patient-7")


@pytest.fixture
def clean_report():
    return ComplianceReport(score=100.0, risk_level="low", rule_set_version="test", evaluated_at=T0)


@pytest.fixture
def critical_report():
    finding = ComplianceFinding(
        rule_id="ahpra.testimonials",
        category="prohibited_term",
        severity="critical",
        message="Patient testimonial used in advertising",
        penalty=25,
    )
    return ComplianceReport(
        violations=(finding,),
        score=75.0,
        risk_level="critical",
        rule_set_version="test",
        evaluated_at=T0,
    )
