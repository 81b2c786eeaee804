"""
Compliance rule definitions and evaluators.

Modules under this package score content against regulator rules and
produce itemised, risk-tiered compliance reports.
"""

from .catalog import HttpRuleCatalog, JsonRuleCatalog, StaticRuleCatalog
from .consent import ConsentLedger, check_consent
from .evaluator import derive_risk_level, evaluate, evaluate_unavailable
from .rules import DEFAULT_RULES, ComplianceRule, RuleSet

__all__ = [
    "ComplianceRule",
    "ConsentLedger",
    "DEFAULT_RULES",
    "HttpRuleCatalog",
    "JsonRuleCatalog",
    "RuleSet",
    "StaticRuleCatalog",
    "check_consent",
    "derive_risk_level",
    "evaluate",
    "evaluate_unavailable",
]
