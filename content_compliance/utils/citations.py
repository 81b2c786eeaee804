"""
Regulation citation helpers shared across compliance components.
"""

from __future__ import annotations

import re
from typing import Optional

SECTION_PATTERNS = (
    r"(section\s*\d+(?:\.\d+)*(?:\(\d+\))?(?:\s*-\s*\d+)?)",  # Section 7.3, Section 113-116
    r"\b(s\s*\d+[A-Za-z]?(?:\(\d+\))?)",  # s 133(1)
    r"(clause\s*\d+(?:\.\d+)*)",  # clause 4.2
    r"(APP\s*\d+(?:\.\d+)?(?:\([a-z]\))?)",  # APP 6.2(b)
)

SOURCE_TITLES = {
    "ahpra-advertising-guidelines": "Ahpra Guidelines for advertising a regulated health service",
    "ahpra-code-of-conduct": "Ahpra Code of Conduct",
    "national-law": "Health Practitioner Regulation National Law",
    "tga-advertising-code": "Therapeutic Goods Advertising Code",
    "tga-device-regulations": "Therapeutic Goods (Medical Devices) Regulations 2002",
    "privacy-act": "Privacy Act 1988 (Cth)",
}


def short_title(source: str) -> str:
    """Map a source key onto its readable title; unknown keys are tidied."""
    key = re.sub(r"[\s_]+", "-", source.strip().lower())
    if key in SOURCE_TITLES:
        return SOURCE_TITLES[key]
    return re.sub(r"\s+", " ", source.replace("_", " ").replace("-", " ")).strip()


def extract_section(text: str) -> Optional[str]:
    """Extract the first clause/section marker from supplied text."""
    for pattern in SECTION_PATTERNS:
        match = re.search(pattern, text, flags=re.IGNORECASE)
        if match:
            return match.group(1).strip()
    return None


def make_label(title: str, clause: str) -> str:
    """Combine source title with clause annotation when available."""
    section = extract_section(clause or "")
    return f"{title} — {section}" if section else title


def regulation_label(source: Optional[str], clause: Optional[str] = None) -> Optional[str]:
    if not source:
        return None
    return make_label(short_title(source), clause or "")


__all__ = ["short_title", "extract_section", "make_label", "regulation_label", "SECTION_PATTERNS"]
