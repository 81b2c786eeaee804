"""
Declarative compliance rules and the predicates that evaluate them.

Every rule names a category; the category selects a predicate that inspects a
content item and returns a short detail string when the rule is breached (or
``None`` when it is not). Rule parameters live in ``params`` so the same
predicate serves every jurisdiction's catalogue.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from content_compliance.compliance.consent import check_consent
from content_compliance.services.errors import NotFoundError
from content_compliance.services.types import SEVERITIES, ConsentRecord, ContentItem
from content_compliance.utils.citations import regulation_label

PROHIBITED_TERM = "prohibited_term"
REQUIRED_DISCLOSURE = "required_disclosure"
CLAIM_SUBSTANTIATION = "claim_substantiation"
AUDIENCE_APPROPRIATENESS = "audience_appropriateness"
CONSENT_VALIDITY = "consent_validity"
TEMPORAL_VALIDITY = "temporal_validity"
CUSTOM = "custom"

CATEGORIES: Tuple[str, ...] = (
    PROHIBITED_TERM,
    REQUIRED_DISCLOSURE,
    CLAIM_SUBSTANTIATION,
    AUDIENCE_APPROPRIATENESS,
    CONSENT_VALIDITY,
    TEMPORAL_VALIDITY,
    CUSTOM,
)

CATEGORY_RECOMMENDATIONS = {
    PROHIBITED_TERM: "Remove or rephrase the flagged wording using factual, evidence-based language.",
    REQUIRED_DISCLOSURE: "Add the required disclosure statement before publishing.",
    CLAIM_SUBSTANTIATION: "Limit claims to those on the approved claims list for this product or service.",
    AUDIENCE_APPROPRIATENESS: "Target healthcare professionals only, or withdraw the promotion.",
    CONSENT_VALIDITY: "Obtain or renew written consent that covers this use before publishing.",
    TEMPORAL_VALIDITY: "Renew the registration or listing before promoting this product.",
}


@dataclass(frozen=True)
class RuleContext:
    """Inputs beside the content item that predicates may consult."""

    at_time: datetime
    consent: Optional[ConsentRecord] = None


Predicate = Callable[["ComplianceRule", ContentItem, RuleContext], Optional[str]]


@dataclass(frozen=True)
class ComplianceRule:
    """Single regulator rule encoded for the generic evaluator."""

    rule_id: str
    category: str
    severity: str
    penalty_weight: float
    message: str
    description: str = ""
    recommendation: Optional[str] = None
    source: Optional[str] = None
    clause: Optional[str] = None
    jurisdiction: str = "AU"
    professions: Tuple[str, ...] = ()
    exempt_professions: Tuple[str, ...] = ()
    content_types: Tuple[str, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)
    predicate: Optional[Predicate] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ValueError(f"Rule '{self.rule_id}' has unknown severity '{self.severity}'.")
        if self.penalty_weight < 0:
            raise ValueError(f"Rule '{self.rule_id}' has a negative penalty weight.")

    @property
    def regulation(self) -> Optional[str]:
        return regulation_label(self.source, self.clause)

    def applies_to(self, item: ContentItem) -> bool:
        if self.content_types and item.content_type not in self.content_types:
            return False
        if self.professions and item.profession not in self.professions:
            return False
        if item.profession and item.profession in self.exempt_professions:
            return False
        return True


@dataclass(frozen=True)
class RuleSet:
    """Versioned collection of rules for one jurisdiction/profession."""

    version: str
    rules: Tuple[ComplianceRule, ...]
    jurisdiction: str = "AU"
    profession: Optional[str] = None

    def applicable(self, item: ContentItem) -> Tuple[ComplianceRule, ...]:
        return tuple(rule for rule in self.rules if rule.applies_to(item))

    def get(self, rule_id: str) -> ComplianceRule:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        raise NotFoundError(f"Rule '{rule_id}' is not in rule set {self.version}.")


def normalize_text(text: str) -> str:
    """Casefold, strip punctuation and collapse whitespace for fuzzy matching."""
    text = unicodedata.normalize("NFKC", text or "").casefold()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def contains_phrase(normalized_text: str, phrase: str) -> bool:
    needle = normalize_text(phrase)
    if not needle:
        return False
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", normalized_text) is not None


def contains_exact(text: str, term: str) -> bool:
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) is not None


def _content_text(item: ContentItem) -> str:
    return f"{item.title}\n{item.body}" if item.title else item.body or ""


def _prohibited_term(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    terms: Iterable[str] = rule.params.get("terms", ())
    raw = _content_text(item)
    if rule.params.get("match", "normalized") == "exact":
        matched = [term for term in terms if contains_exact(raw, term)]
    else:
        normalized = normalize_text(raw)
        matched = [term for term in terms if contains_phrase(normalized, term)]
    if not matched:
        return None
    return "matched: " + ", ".join(f'"{term}"' for term in matched)


def _required_disclosure(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    raw = _content_text(item)
    normalized = normalize_text(raw)
    gate = rule.params.get("when_terms")
    if gate and not any(contains_phrase(normalized, term) for term in gate):
        return None
    min_length = rule.params.get("min_body_length")
    if min_length and len(item.body or "") <= int(min_length):
        return None

    if rule.params.get("include_registration_number"):
        registration = item.subject_metadata.registration_number
        if not registration or registration not in raw:
            return "registration number not displayed"
        return None

    phrases: Iterable[str] = rule.params.get("phrases", ())
    equivalents: Iterable[Iterable[str]] = rule.params.get("equivalents", ())
    expected = list(phrases) + [phrase for group in equivalents for phrase in group]
    if not expected:
        return None
    if any(phrase in raw for phrase in phrases):
        return None
    for group in equivalents:
        if any(contains_phrase(normalized, phrase) for phrase in group):
            return None
    return "missing: " + " / ".join(f'"{phrase}"' for phrase in expected)


def _claim_substantiation(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    approved = tuple(item.subject_metadata.approved_claims) + tuple(rule.params.get("approved_claims", ()))
    unsupported = [
        claim
        for claim in item.claims
        if not any(contains_phrase(normalize_text(claim), allowed) for allowed in approved)
    ]
    if not unsupported:
        return None
    return "unsubstantiated: " + ", ".join(f'"{claim}"' for claim in unsupported)


def _audience_appropriateness(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    risk_class = item.subject_metadata.risk_class
    restricted: Mapping[str, Iterable[str]] = rule.params.get("restricted_audiences", {})
    if not risk_class or item.target_audience not in tuple(restricted.get(risk_class, ())):
        return None
    return f"{risk_class} content may not target '{item.target_audience}'"


def _consent_validity(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    valid, reason = check_consent(context.consent, item, context.at_time)
    return None if valid else reason


def _temporal_validity(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    subject = item.subject_metadata
    expires_at = subject.registration_expires_at
    if expires_at is not None and expires_at <= context.at_time:
        return f"registration expired on {expires_at.date().isoformat()}"
    required_for = rule.params.get("required_for")
    if required_for and subject.risk_class in tuple(required_for) and not subject.registration_number:
        return f"no registration number on file for {subject.risk_class}"
    return None


def _custom(rule: ComplianceRule, item: ContentItem, context: RuleContext) -> Optional[str]:
    if rule.predicate is None:
        raise ValueError(f"Custom rule '{rule.rule_id}' has no predicate.")
    return rule.predicate(rule, item, context)


PREDICATES: Dict[str, Predicate] = {
    PROHIBITED_TERM: _prohibited_term,
    REQUIRED_DISCLOSURE: _required_disclosure,
    CLAIM_SUBSTANTIATION: _claim_substantiation,
    AUDIENCE_APPROPRIATENESS: _audience_appropriateness,
    CONSENT_VALIDITY: _consent_validity,
    TEMPORAL_VALIDITY: _temporal_validity,
    CUSTOM: _custom,
}


# Australian catalogue: AHPRA advertising guidelines and the TGA advertising code.
DEFAULT_RULES: Tuple[ComplianceRule, ...] = (
    ComplianceRule(
        rule_id="tga.prohibited_product_names",
        category=PROHIBITED_TERM,
        severity="critical",
        penalty_weight=15,
        message="Prescription-only product name used in advertising",
        recommendation='Replace product names with a general description such as "cosmetic injectable" or "dermal filler".',
        source="tga-advertising-code",
        clause="Section 4.2",
        params={
            "terms": (
                "botox", "dysport", "xeomin", "azzalure", "brotox",
                "juvederm", "restylane", "teosyal", "belotero", "botulinum toxin",
            ),
        },
    ),
    ComplianceRule(
        rule_id="tga.prohibited_therapeutic_claims",
        category=PROHIBITED_TERM,
        severity="error",
        penalty_weight=25,
        message="Prohibited therapeutic claim",
        recommendation="Replace absolute claims with evidence-based language and qualifying statements.",
        source="tga-advertising-code",
        clause="Section 4.1",
        params={
            "terms": (
                "miracle cure", "miracle", "guaranteed results", "guaranteed", "painless treatment",
                "totally safe", "completely safe", "no side effects", "instant recovery",
                "permanent solution", "cure", "cures", "heals", "treats cancer", "prevents disease",
                "fda approved",
            ),
        },
    ),
    ComplianceRule(
        rule_id="ahpra.testimonials",
        category=PROHIBITED_TERM,
        severity="critical",
        penalty_weight=25,
        message="Patient testimonial used in advertising",
        recommendation="Remove patient testimonials and reviews; focus on educational content instead.",
        source="ahpra-advertising-guidelines",
        clause="Section 7.3",
        params={
            "terms": (
                "testimonial", "patient says", "client feedback", "customer review",
                "before and after story", "success story", "patient experience", "patient journey",
            ),
        },
    ),
    ComplianceRule(
        rule_id="ahpra.professional_boundaries",
        category=PROHIBITED_TERM,
        severity="error",
        penalty_weight=10,
        message="Superiority or guarantee claim about the practitioner",
        recommendation="Use factual, professional language that makes no superiority claims.",
        source="ahpra-code-of-conduct",
        params={
            "terms": (
                "best doctor", "top surgeon", "australia's leading", "number one",
                "award winning doctor", "celebrity doctor", "miracle worker",
                "guaranteed satisfaction", "money back guarantee",
            ),
        },
    ),
    ComplianceRule(
        rule_id="ahpra.protected_title_specialist",
        category=PROHIBITED_TERM,
        severity="critical",
        penalty_weight=20,
        message='Protected title "specialist" used by a non-specialist',
        recommendation='Replace "specialist" with "practitioner" or the registered profession title.',
        source="national-law",
        clause="Section 113-116",
        exempt_professions=("specialist",),
        params={"terms": ("specialist",)},
    ),
    ComplianceRule(
        rule_id="ahpra.risk_disclaimer",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=8,
        message="Missing risk disclaimer for a regulated health service",
        recommendation='Add "Any surgical or invasive procedure carries risks. Before proceeding, seek a second opinion from an appropriately qualified health practitioner."',
        source="ahpra-advertising-guidelines",
        params={
            "when_terms": ("treatment", "procedure", "consultation", "therapy", "injection", "surgery"),
            "equivalents": (
                ("second opinion", "consult your doctor", "consult your practitioner"),
                ("risks", "side effects", "individual results may vary"),
            ),
        },
    ),
    ComplianceRule(
        rule_id="ahpra.registration_number",
        category=REQUIRED_DISCLOSURE,
        severity="error",
        penalty_weight=20,
        message="Registration number not displayed in advertising content",
        recommendation="Include the practitioner's AHPRA registration number.",
        source="national-law",
        clause="s 133(1)",
        content_types=("advertisement", "marketing_material"),
        params={"include_registration_number": True, "min_body_length": 100},
    ),
    ComplianceRule(
        rule_id="ahpra.finance_inducements",
        category=PROHIBITED_TERM,
        severity="warning",
        penalty_weight=8,
        message="Finance offer in social media content",
        recommendation="Remove finance offers or include the full terms and conditions.",
        source="ahpra-advertising-guidelines",
        content_types=("social_post",),
        params={"terms": ("payment plan", "finance", "interest free", "afterpay")},
    ),
    ComplianceRule(
        rule_id="ahpra.contact_information",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=8,
        message="Missing contact information in advertisement",
        recommendation="Include the practice address and contact details.",
        source="ahpra-advertising-guidelines",
        clause="Section 6.2",
        content_types=("advertisement",),
        params={"equivalents": (("phone", "address", "contact", "visit", "clinic"),)},
    ),
    ComplianceRule(
        rule_id="tga.disclosure_medical_device",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=10,
        message="Device promotion does not identify the product as a medical device",
        source="tga-device-regulations",
        content_types=("device_promotion",),
        params={"equivalents": (("medical device",),)},
    ),
    ComplianceRule(
        rule_id="tga.disclosure_read_instructions",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=10,
        message="Device promotion does not tell readers to read the instructions",
        source="tga-device-regulations",
        content_types=("device_promotion",),
        params={"equivalents": (("read instructions", "read the instructions", "always read the label"),)},
    ),
    ComplianceRule(
        rule_id="tga.disclosure_consult_professional",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=10,
        message="Device promotion does not advise consulting a healthcare professional",
        source="tga-device-regulations",
        content_types=("device_promotion",),
        params={
            "equivalents": (
                ("consult healthcare professional", "consult a healthcare professional", "consult your doctor"),
            ),
        },
    ),
    ComplianceRule(
        rule_id="tga.claim_substantiation",
        category=CLAIM_SUBSTANTIATION,
        severity="error",
        penalty_weight=20,
        message="Promotional claim not on the approved claims list",
        recommendation="Use only the therapeutic claims included in the product's ARTG entry.",
        source="tga-advertising-code",
        clause="Section 11",
    ),
    ComplianceRule(
        rule_id="tga.audience_restriction",
        category=AUDIENCE_APPROPRIATENESS,
        severity="critical",
        penalty_weight=40,
        message="High-risk device advertised to an inappropriate audience",
        source="tga-device-regulations",
        params={
            "restricted_audiences": {
                "Class III": ("consumers", "patients", "community", "mixed"),
                "AIMD": ("consumers", "patients", "community"),
            },
        },
    ),
    ComplianceRule(
        rule_id="tga.registration_validity",
        category=TEMPORAL_VALIDITY,
        severity="critical",
        penalty_weight=50,
        message="Product registration missing or expired",
        source="tga-device-regulations",
        params={"required_for": ("Class IIa", "Class IIb", "Class III", "AIMD")},
    ),
    ComplianceRule(
        rule_id="ahpra.subject_consent",
        category=CONSENT_VALIDITY,
        severity="critical",
        penalty_weight=50,
        message="Subject consent missing or invalid",
        source="privacy-act",
        clause="APP 6",
    ),
    ComplianceRule(
        rule_id="ahpra.clinical_photo_disclaimer",
        category=REQUIRED_DISCLOSURE,
        severity="warning",
        penalty_weight=5,
        message="Clinical photo lacks a results-may-vary disclaimer",
        recommendation="State that individual results may vary and are not a guarantee of outcome.",
        source="ahpra-advertising-guidelines",
        content_types=("clinical_photo",),
        params={"equivalents": (("individual results may vary", "results may vary"),)},
    ),
)


__all__ = [
    "CATEGORIES",
    "CATEGORY_RECOMMENDATIONS",
    "ComplianceRule",
    "DEFAULT_RULES",
    "PREDICATES",
    "Predicate",
    "RuleContext",
    "RuleSet",
    "contains_exact",
    "contains_phrase",
    "normalize_text",
    "PROHIBITED_TERM",
    "REQUIRED_DISCLOSURE",
    "CLAIM_SUBSTANTIATION",
    "AUDIENCE_APPROPRIATENESS",
    "CONSENT_VALIDITY",
    "TEMPORAL_VALIDITY",
    "CUSTOM",
]
