"""
Rule-based compliance evaluator.

``evaluate`` is pure: the same content, rule set, consent record and
evaluation time always produce an equal report. Scores start at 100, every
breached rule subtracts its penalty weight, and the total is clamped to
[0, 100] once at the end so rule order never changes the outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence

from content_compliance.compliance.rules import (
    CATEGORY_RECOMMENDATIONS,
    PREDICATES,
    ComplianceRule,
    RuleContext,
    RuleSet,
)
from content_compliance.services.types import (
    RISK_LEVELS,
    VIOLATION_SEVERITIES,
    ComplianceFinding,
    ComplianceReport,
    ConsentRecord,
    ContentItem,
    risk_rank,
)

logger = logging.getLogger("content_compliance.compliance.evaluator")

DEFAULT_PASS_SCORE = 80.0
UNRECOGNIZED_RULE = "unrecognized rule"
CATALOG_UNAVAILABLE_RULE_ID = "catalog.unavailable"


def _upgrade(current: str, candidate: str) -> str:
    return candidate if risk_rank(candidate) > risk_rank(current) else current


def derive_risk_level(
    violations: Sequence[ComplianceFinding],
    warnings: Sequence[ComplianceFinding],
    evaluation_incomplete: bool = False,
) -> str:
    """Map findings onto a risk tier; later steps only ever raise the tier."""
    level = RISK_LEVELS[0]
    if violations or len(warnings) >= 4:
        level = _upgrade(level, "medium")
    if len(violations) >= 2:
        level = _upgrade(level, "high")
    if len(violations) >= 3:
        level = _upgrade(level, "critical")
    if any(finding.severity == "critical" for finding in violations):
        level = _upgrade(level, "critical")
    if evaluation_incomplete:
        level = _upgrade(level, "critical")
    return level


def clamp_score(raw: float) -> float:
    return round(max(0.0, min(100.0, raw)), 2)


def _finding(rule: ComplianceRule, detail: str) -> ComplianceFinding:
    message = f"{rule.message} ({detail})" if detail else rule.message
    return ComplianceFinding(
        rule_id=rule.rule_id,
        category=rule.category,
        severity=rule.severity,
        message=message,
        penalty=float(rule.penalty_weight),
        recommendation=rule.recommendation or CATEGORY_RECOMMENDATIONS.get(rule.category),
        regulation=rule.regulation,
    )


def _recommendations(findings: Sequence[ComplianceFinding]) -> tuple:
    """Per-finding remediation first, then one summary per affected category."""
    seen: List[str] = []
    candidates: List[Optional[str]] = [finding.recommendation for finding in findings]
    candidates += [CATEGORY_RECOMMENDATIONS.get(finding.category) for finding in findings]
    for text in candidates:
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


def evaluate(
    item: ContentItem,
    rule_set: Optional[RuleSet],
    consent: Optional[ConsentRecord] = None,
    *,
    at_time: datetime,
    pass_score: float = DEFAULT_PASS_SCORE,
) -> ComplianceReport:
    """
    Score ``item`` against every applicable rule in ``rule_set``.

    ``at_time`` is always supplied by the caller, so the same arguments give
    the same report.
    """

    if rule_set is None:
        return evaluate_unavailable(item, "rule catalog unavailable", at_time=at_time, pass_score=pass_score)

    context = RuleContext(at_time=at_time, consent=consent)
    violations: List[ComplianceFinding] = []
    warnings: List[ComplianceFinding] = []
    incomplete = False
    total_penalty = 0.0

    for rule in rule_set.applicable(item):
        predicate = PREDICATES.get(rule.category)
        if predicate is None:
            warnings.append(
                ComplianceFinding(
                    rule_id=rule.rule_id,
                    category=rule.category,
                    severity="warning",
                    message=f"{UNRECOGNIZED_RULE}: category '{rule.category}' is not supported",
                    recommendation="Ask the rule catalogue owner to correct or retire this rule.",
                    regulation=rule.regulation,
                )
            )
            continue
        try:
            detail = predicate(rule, item, context)
        except Exception as exc:  # custom predicates are supplied by catalogue owners
            logger.error(
                "Rule predicate raised; marking evaluation incomplete",
                extra={"rule_id": rule.rule_id, "content_id": item.id, "error": str(exc)},
            )
            incomplete = True
            warnings.append(
                ComplianceFinding(
                    rule_id=rule.rule_id,
                    category=rule.category,
                    severity="warning",
                    message=f"rule evaluation failed: {exc}",
                    regulation=rule.regulation,
                )
            )
            continue
        if detail is None:
            continue
        finding = _finding(rule, detail)
        total_penalty += float(rule.penalty_weight)
        if rule.severity in VIOLATION_SEVERITIES:
            violations.append(finding)
        else:
            warnings.append(finding)

    report = ComplianceReport(
        violations=tuple(violations),
        warnings=tuple(warnings),
        recommendations=_recommendations(violations + warnings),
        score=clamp_score(100.0 - total_penalty),
        risk_level=derive_risk_level(violations, warnings, incomplete),
        evaluation_incomplete=incomplete,
        rule_set_version=rule_set.version,
        evaluated_at=at_time,
        pass_score=pass_score,
    )
    logger.debug(
        "Content evaluated",
        extra={
            "content_id": item.id,
            "score": report.score,
            "risk_level": report.risk_level,
            "violations": len(report.violations),
            "warnings": len(report.warnings),
        },
    )
    return report


def evaluate_unavailable(
    item: ContentItem,
    reason: str,
    *,
    at_time: datetime,
    pass_score: float = DEFAULT_PASS_SCORE,
) -> ComplianceReport:
    """Fail-closed report used when the rule catalogue cannot be fetched."""

    finding = ComplianceFinding(
        rule_id=CATALOG_UNAVAILABLE_RULE_ID,
        category="catalog",
        severity="critical",
        message=f"Compliance rules could not be loaded: {reason}",
        recommendation="Hold publication until the content can be evaluated against the current rules.",
    )
    logger.warning("Evaluation incomplete; failing closed", extra={"content_id": item.id, "reason": reason})
    return ComplianceReport(
        violations=(finding,),
        warnings=(),
        recommendations=(finding.recommendation,),
        score=0.0,
        risk_level="critical",
        evaluation_incomplete=True,
        rule_set_version=None,
        evaluated_at=at_time,
        pass_score=pass_score,
    )


def evaluate_many(
    items: Iterable[ContentItem],
    rule_set: Optional[RuleSet],
    consents: Optional[Mapping[str, ConsentRecord]] = None,
    *,
    at_time: datetime,
    pass_score: float = DEFAULT_PASS_SCORE,
) -> List[ComplianceReport]:
    """Evaluate a batch at one shared evaluation time."""

    consents = consents or {}
    reports = []
    for item in items:
        subject_id = item.subject_metadata.subject_id
        consent = consents.get(subject_id) if subject_id else None
        reports.append(evaluate(item, rule_set, consent, at_time=at_time, pass_score=pass_score))
    return reports


def average_score(reports: Sequence[ComplianceReport]) -> float:
    if not reports:
        return 100.0
    return round(sum(report.score for report in reports) / len(reports), 2)


__all__ = [
    "CATALOG_UNAVAILABLE_RULE_ID",
    "DEFAULT_PASS_SCORE",
    "UNRECOGNIZED_RULE",
    "average_score",
    "clamp_score",
    "derive_risk_level",
    "evaluate",
    "evaluate_many",
    "evaluate_unavailable",
]
