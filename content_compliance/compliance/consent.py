"""
Consent validity checks for content that shows an identifiable subject.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime
from typing import Optional, Tuple

from content_compliance.services.collaborators import ConsentStore
from content_compliance.services.types import ConsentRecord, ContentItem

logger = logging.getLogger("content_compliance.compliance.consent")

CONSENT_SCOPES = ("marketing", "social", "web")

CHANNEL_BY_CONTENT_TYPE = {
    "social_post": "social",
    "blog_article": "web",
    "website_content": "web",
    "patient_education": "web",
    "practice_update": "web",
    "marketing_material": "marketing",
    "advertisement": "marketing",
    "device_promotion": "marketing",
    "clinical_photo": "marketing",
}


def required_scope(item: ContentItem) -> str:
    """Consent scope the content will be published under."""
    if item.channel:
        return item.channel
    return CHANNEL_BY_CONTENT_TYPE.get(item.content_type, "marketing")


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def consent_expires_at(record: ConsentRecord) -> datetime:
    return add_months(record.granted_at, record.duration_months)


def check_consent(record: Optional[ConsentRecord], item: ContentItem, at_time: datetime) -> Tuple[bool, str]:
    """
    Decide whether ``record`` covers publishing ``item`` at ``at_time``.

    Content without an identifiable subject needs no consent. Otherwise the
    record must belong to the subject, must not be withdrawn, must still be
    within its duration and must include the scope the content is used under.
    """

    subject = item.subject_metadata
    if not subject.identifiable_subject:
        return True, "no identifiable subject"
    if record is None:
        return False, f"no consent on file for subject '{subject.subject_id or 'unknown'}'"
    if subject.subject_id and record.subject_id != subject.subject_id:
        return False, f"consent belongs to subject '{record.subject_id}', not '{subject.subject_id}'"
    if record.withdrawn or (record.withdrawn_at is not None and record.withdrawn_at <= at_time):
        return False, "consent has been withdrawn"
    if at_time < record.granted_at:
        return False, "consent was granted after the evaluation time"
    expires_at = consent_expires_at(record)
    if at_time >= expires_at:
        return False, f"consent expired on {expires_at.date().isoformat()}"
    scope = required_scope(item)
    if scope not in record.scopes:
        return False, f"consent does not cover '{scope}' use"
    return True, f"consent valid until {expires_at.date().isoformat()}"


class ConsentLedger:
    """Read-only view over the consent store used ahead of evaluation."""

    def __init__(self, store: ConsentStore):
        self.store = store

    def lookup(self, item: ContentItem) -> Optional[ConsentRecord]:
        subject = item.subject_metadata
        if not subject.identifiable_subject or not subject.subject_id:
            return None
        return self.store.lookup(subject.subject_id)

    def is_consent_valid(self, item: ContentItem, at_time: datetime) -> Tuple[bool, str]:
        valid, reason = check_consent(self.lookup(item), item, at_time)
        if not valid:
            logger.info(
                "Consent check failed",
                extra={"content_id": item.id, "subject_id": item.subject_metadata.subject_id, "reason": reason},
            )
        return valid, reason


__all__ = [
    "CONSENT_SCOPES",
    "ConsentLedger",
    "add_months",
    "check_consent",
    "consent_expires_at",
    "required_scope",
]
