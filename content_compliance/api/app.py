"""
FastAPI application exposing content evaluation and the approval workflow.

Every mutating call names its actor explicitly and may carry the request
revision the caller last read; engine errors are mapped onto HTTP status
codes with a JSON body describing the failure.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

load_dotenv()

logger = logging.getLogger("content_compliance.api.app")
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

from content_compliance import get_version
from content_compliance.services.engine import ComplianceEngine, build_default_engine
from content_compliance.services.errors import (
    ComplianceEngineError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RuleEvaluationError,
    ValidationError,
)
from content_compliance.services.types import ContentItem, ReviewerScores, SubjectMetadata
from content_compliance.services.workflow import QueueFilter

from .schema import get_report_schema, serialize_audit_entry, serialize_report, serialize_request

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (ConflictError, 409),
    (NotFoundError, 404),
    (InvalidTransitionError, 400),
    (RuleEvaluationError, 503),
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SubjectPayload(BaseModel):
    identifiable_subject: bool = False
    subject_id: Optional[str] = None
    approved_claims: List[str] = Field(default_factory=list)
    risk_class: Optional[str] = None
    registration_number: Optional[str] = None
    registration_expires_at: Optional[datetime] = None
    sponsor_name: Optional[str] = None


class ContentPayload(BaseModel):
    id: str
    body: str = ""
    content_type: str
    target_audience: str = "patients"
    subject_metadata: SubjectPayload = Field(default_factory=SubjectPayload)
    claims: List[str] = Field(default_factory=list)
    practice_id: Optional[str] = None
    author_id: Optional[str] = None
    jurisdiction: str = "AU"
    profession: Optional[str] = None
    channel: Optional[str] = None
    title: str = ""
    scheduled_publish_at: Optional[datetime] = None

    def to_item(self) -> ContentItem:
        subject = self.subject_metadata
        return ContentItem(
            id=self.id,
            body=self.body,
            content_type=self.content_type,
            target_audience=self.target_audience,
            subject_metadata=SubjectMetadata(
                identifiable_subject=subject.identifiable_subject,
                subject_id=subject.subject_id,
                approved_claims=tuple(subject.approved_claims),
                risk_class=subject.risk_class,
                registration_number=subject.registration_number,
                registration_expires_at=_aware(subject.registration_expires_at),
                sponsor_name=subject.sponsor_name,
            ),
            claims=tuple(self.claims),
            practice_id=self.practice_id,
            author_id=self.author_id,
            jurisdiction=self.jurisdiction,
            profession=self.profession,
            channel=self.channel,
            title=self.title,
            scheduled_publish_at=_aware(self.scheduled_publish_at),
        )


class ReviewerScoresPayload(BaseModel):
    overall_score: Optional[float] = None
    ahpra_compliant: Optional[bool] = None
    tga_compliant: Optional[bool] = None
    professional_boundaries_checked: Optional[bool] = None
    cultural_safety_verified: Optional[bool] = None
    notes: Optional[str] = None


class EvaluateRequest(BaseModel):
    content: ContentPayload
    at_time: Optional[datetime] = None


class SubmissionRequest(BaseModel):
    actor_id: str
    practice_id: Optional[str] = None
    content: ContentPayload


class ClaimRequest(BaseModel):
    actor_id: str
    expected_revision: Optional[int] = None


class DecisionRequest(BaseModel):
    actor_id: str
    decision: str
    notes: Optional[str] = None
    reviewer_scores: Optional[ReviewerScoresPayload] = None
    expected_revision: Optional[int] = None


class ResubmitRequest(BaseModel):
    actor_id: str
    content: ContentPayload
    expected_revision: Optional[int] = None


class EscalateRequest(BaseModel):
    actor_id: str
    reason: str = "manual"
    expected_revision: Optional[int] = None


class PublishRequest(BaseModel):
    actor_id: str = "publisher"
    published_at: Optional[datetime] = None
    expected_revision: Optional[int] = None


def _error_body(exc: ComplianceEngineError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": type(exc).__name__, "message": exc.message, "details": exc.details}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    if isinstance(exc, ConflictError):
        body["current_revision"] = exc.current_revision
    if isinstance(exc, InvalidTransitionError):
        body["from_state"] = exc.from_state
        body["action"] = exc.action
    return body


def create_api(engine: Optional[ComplianceEngine] = None) -> FastAPI:
    """
    Build a FastAPI app around a compliance engine.

    Args:
        engine: Optional pre-configured engine (useful for tests); defaults
            to the environment-configured engine persisted on disk.

    Returns:
        FastAPI instance with routes registered.
    """

    engine_instance = engine or build_default_engine()

    app = FastAPI(title="Content Compliance API", version=get_version())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("COMPLIANCE_CORS_ORIGINS", "*").split(","),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ComplianceEngineError)
    async def handle_engine_error(request: Request, exc: ComplianceEngineError) -> JSONResponse:
        status_code = 500
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break
        logger.info(
            "Request rejected",
            extra={"path": request.url.path, "error": type(exc).__name__, "status_code": status_code},
        )
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    @app.get("/")
    def root() -> dict:
        """Health endpoint for quick status checks."""

        return {"status": "ok"}

    @app.post("/evaluate")
    def evaluate_content(payload: EvaluateRequest) -> dict:
        report = engine_instance.evaluate_content(payload.content.to_item(), _aware(payload.at_time))
        return serialize_report(report)

    @app.post("/submissions", status_code=201)
    def submit_content(payload: SubmissionRequest) -> dict:
        """
        Evaluate content and open an approval request for it.
        """

        request, report = engine_instance.submit_content(
            payload.content.to_item(),
            actor_id=payload.actor_id,
            practice_id=payload.practice_id,
        )
        return {"request": serialize_request(request), "report": serialize_report(report)}

    @app.post("/requests/{request_id}/claim")
    def claim_request(request_id: str, payload: ClaimRequest) -> dict:
        request = engine_instance.claim(request_id, payload.actor_id, expected_revision=payload.expected_revision)
        return serialize_request(request)

    @app.post("/requests/{request_id}/decision")
    def decide_request(request_id: str, payload: DecisionRequest) -> dict:
        scores = None
        if payload.reviewer_scores is not None:
            scores = ReviewerScores(**payload.reviewer_scores.model_dump())
        request = engine_instance.decide(
            request_id,
            payload.decision,
            actor_id=payload.actor_id,
            notes=payload.notes,
            reviewer_scores=scores,
            expected_revision=payload.expected_revision,
        )
        return serialize_request(request)

    @app.post("/requests/{request_id}/resubmit")
    def resubmit_request(request_id: str, payload: ResubmitRequest) -> dict:
        request, report = engine_instance.resubmit_content(
            request_id,
            payload.content.to_item(),
            actor_id=payload.actor_id,
            expected_revision=payload.expected_revision,
        )
        return {"request": serialize_request(request), "report": serialize_report(report)}

    @app.post("/requests/{request_id}/escalate")
    def escalate_request(request_id: str, payload: EscalateRequest) -> dict:
        request = engine_instance.escalate(
            request_id,
            payload.reason,
            actor_id=payload.actor_id,
            expected_revision=payload.expected_revision,
        )
        return serialize_request(request)

    @app.post("/requests/{request_id}/publish")
    def publish_request(request_id: str, payload: PublishRequest) -> dict:
        """
        Record an external publish confirmation for approved content.
        """

        request = engine_instance.confirm_publication(
            request_id,
            _aware(payload.published_at),
            actor_id=payload.actor_id,
            expected_revision=payload.expected_revision,
        )
        return serialize_request(request)

    @app.get("/requests/{request_id}")
    def get_request(request_id: str) -> dict:
        return serialize_request(engine_instance.get_request(request_id))

    @app.get("/queue")
    def get_queue(
        role: Optional[str] = None,
        actor_id: Optional[str] = None,
        practice_id: Optional[str] = None,
        state: Optional[List[str]] = Query(None),
        approval_level: Optional[str] = None,
        assignee_id: Optional[str] = None,
        submitter_id: Optional[str] = None,
    ) -> List[dict]:
        queue_filter = QueueFilter(
            role=role,
            actor_id=actor_id,
            practice_id=practice_id,
            states=tuple(state) if state else None,
            approval_level=approval_level,
            assignee_id=assignee_id,
            submitter_id=submitter_id,
        )
        return [serialize_request(request) for request in engine_instance.get_queue(queue_filter)]

    @app.get("/content/{content_id}/audit")
    def content_audit(content_id: str, as_of: Optional[datetime] = None) -> List[dict]:
        entries = engine_instance.get_audit_trail(content_id, as_of=_aware(as_of))
        return [serialize_audit_entry(entry) for entry in entries]

    @app.get("/content/{content_id}/history")
    def content_history(content_id: str) -> List[dict]:
        return [serialize_request(request) for request in engine_instance.history(content_id)]

    @app.get("/practices/{practice_id}/audit")
    def practice_audit(
        practice_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[dict]:
        entries = engine_instance.get_practice_audit(practice_id, start=_aware(start), end=_aware(end))
        return [serialize_audit_entry(entry) for entry in entries]

    @app.get("/stats")
    def stats(practice_id: Optional[str] = None) -> dict:
        return engine_instance.stats(practice_id).as_dict()

    @app.get("/schema/report")
    def report_schema() -> dict:
        return get_report_schema()

    return app


__all__ = ["create_api"]
