"""
Rule catalogue adapters.

The catalogue is owned outside the engine. These adapters turn the built-in
rule tuple, a JSON document on disk, or an HTTP endpoint into ``RuleSet``
objects, and convert every fetch failure into ``RuleEvaluationError`` so the
evaluator can fail closed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

import requests
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from content_compliance.compliance.rules import DEFAULT_RULES, ComplianceRule, RuleSet
from content_compliance.services.errors import NotFoundError, RuleEvaluationError
from content_compliance.utils.checksum import sha256_of_file, sha256_of_payload

logger = logging.getLogger("content_compliance.compliance.catalog")

BUILTIN_VERSION = "au-builtin-2024.07"


class RuleDefinition(BaseModel):
    """Wire/file representation of a ComplianceRule."""

    id: str
    category: str
    severity: Literal["info", "warning", "error", "critical"]
    penalty_weight: float = Field(ge=0)
    message: str
    description: str = ""
    recommendation: Optional[str] = None
    source: Optional[str] = None
    clause: Optional[str] = None
    jurisdiction: str = "AU"
    professions: List[str] = Field(default_factory=list)
    exempt_professions: List[str] = Field(default_factory=list)
    content_types: List[str] = Field(default_factory=list)
    params: Dict[str, Any] = Field(default_factory=dict)

    def to_rule(self) -> ComplianceRule:
        return ComplianceRule(
            rule_id=self.id,
            category=self.category,
            severity=self.severity,
            penalty_weight=self.penalty_weight,
            message=self.message,
            description=self.description,
            recommendation=self.recommendation,
            source=self.source,
            clause=self.clause,
            jurisdiction=self.jurisdiction,
            professions=tuple(self.professions),
            exempt_professions=tuple(self.exempt_professions),
            content_types=tuple(self.content_types),
            params=_freeze(self.params),
        )

    @classmethod
    def from_rule(cls, rule: ComplianceRule) -> "RuleDefinition":
        return cls(
            id=rule.rule_id,
            category=rule.category,
            severity=rule.severity,
            penalty_weight=rule.penalty_weight,
            message=rule.message,
            description=rule.description,
            recommendation=rule.recommendation,
            source=rule.source,
            clause=rule.clause,
            jurisdiction=rule.jurisdiction,
            professions=list(rule.professions),
            exempt_professions=list(rule.exempt_professions),
            content_types=list(rule.content_types),
            params=json.loads(json.dumps(dict(rule.params))),
        )


class RuleCatalogDocument(BaseModel):
    version: Optional[str] = None
    rules: List[RuleDefinition]


def _freeze(value: Any) -> Any:
    """Lists from JSON become tuples so rule params compare and hash predictably."""
    if isinstance(value, dict):
        return {key: _freeze(item) for key, item in value.items()}
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def parse_catalog(payload: Any) -> Tuple[Optional[str], Tuple[ComplianceRule, ...]]:
    try:
        document = RuleCatalogDocument.model_validate(payload)
    except PydanticValidationError as exc:
        raise RuleEvaluationError(f"Rule catalogue failed validation: {exc.error_count()} error(s)", details={"errors": exc.errors()}) from exc
    return document.version, tuple(definition.to_rule() for definition in document.rules)


def dump_catalog(rules: Iterable[ComplianceRule], version: str) -> Dict[str, Any]:
    return {
        "version": version,
        "rules": [RuleDefinition.from_rule(rule).model_dump() for rule in rules if rule.predicate is None],
    }


def select_rules(
    rules: Iterable[ComplianceRule],
    version: str,
    jurisdiction: str,
    profession: Optional[str] = None,
) -> RuleSet:
    """Filter a catalogue down to one jurisdiction/profession."""
    selected = tuple(
        rule
        for rule in rules
        if rule.jurisdiction == jurisdiction
        and (not rule.professions or profession in rule.professions)
        and not (profession and profession in rule.exempt_professions)
    )
    if not selected:
        raise RuleEvaluationError(f"No compliance rules are published for jurisdiction '{jurisdiction}'.")
    return RuleSet(version=version, rules=selected, jurisdiction=jurisdiction, profession=profession)


class StaticRuleCatalog:
    """Catalogue backed by an in-memory rule tuple (built-in rules by default)."""

    def __init__(self, rules: Iterable[ComplianceRule] = DEFAULT_RULES, version: str = BUILTIN_VERSION):
        self.rules: Tuple[ComplianceRule, ...] = tuple(rules)
        self.version = version

    def get_rules(self, jurisdiction: str, profession: Optional[str] = None) -> RuleSet:
        return select_rules(self.rules, self.version, jurisdiction, profession)

    def get_rule(self, rule_id: str) -> ComplianceRule:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        raise NotFoundError(f"Rule '{rule_id}' is not in catalogue {self.version}.")


class JsonRuleCatalog:
    """Catalogue read from a JSON document; reloaded when the file changes."""

    def __init__(self, path: Path):
        self.path = path
        self._loaded: Optional[StaticRuleCatalog] = None
        self._checksum: Optional[str] = None

    def _load(self) -> StaticRuleCatalog:
        if not self.path.exists():
            raise RuleEvaluationError(f"Rule catalogue not found at {self.path}")
        checksum = sha256_of_file(self.path)
        if self._loaded is not None and checksum == self._checksum:
            return self._loaded
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RuleEvaluationError(f"Rule catalogue at {self.path} is unreadable: {exc}") from exc
        version, rules = parse_catalog(payload)
        self._loaded = StaticRuleCatalog(rules, version=version or f"sha256:{checksum[:12]}")
        self._checksum = checksum
        logger.info("Rule catalogue loaded", extra={"path": str(self.path), "rule_count": len(rules)})
        return self._loaded

    def get_rules(self, jurisdiction: str, profession: Optional[str] = None) -> RuleSet:
        return self._load().get_rules(jurisdiction, profession)

    def get_rule(self, rule_id: str) -> ComplianceRule:
        return self._load().get_rule(rule_id)


class HttpRuleCatalog:
    """Catalogue fetched from a remote rules service on every request."""

    def __init__(self, endpoint: str, *, auth_token: Optional[str] = None, timeout: int = 10):
        self.endpoint = endpoint.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout

    def get_rules(self, jurisdiction: str, profession: Optional[str] = None) -> RuleSet:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        params = {"jurisdiction": jurisdiction}
        if profession:
            params["profession"] = profession
        try:
            response = requests.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RuleEvaluationError(f"Rule catalogue request failed at {self.endpoint}: {exc}") from exc

        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            body = (response.text or "").strip()
            preview = body[:500]
            if len(body) > len(preview):
                preview += "…"
            raise RuleEvaluationError(
                f"Rule catalogue HTTP {response.status_code} at {self.endpoint}: {preview}"
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RuleEvaluationError(f"Rule catalogue at {self.endpoint} returned non-JSON payload") from exc

        version, rules = parse_catalog(payload)
        return select_rules(rules, version or f"sha256:{sha256_of_payload(payload)[:12]}", jurisdiction, profession)


__all__ = [
    "BUILTIN_VERSION",
    "HttpRuleCatalog",
    "JsonRuleCatalog",
    "RuleCatalogDocument",
    "RuleDefinition",
    "StaticRuleCatalog",
    "dump_catalog",
    "parse_catalog",
    "select_rules",
]
