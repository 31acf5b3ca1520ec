from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .normalization import read_csv_text

logger = logging.getLogger(__name__)

LINKEDIN = "linkedin"
GOOGLE = "google"
ROLODEX = "rolodex"
CUSTOM = "custom"
KNOWN_FORMATS = (ROLODEX, LINKEDIN, GOOGLE)
PARSER_TYPES = KNOWN_FORMATS + (CUSTOM,)

LINKEDIN_REQUIRED = ("first name", "last name", "url")
LINKEDIN_OPTIONAL = ("email address", "company", "position", "connected on")
LINKEDIN_DISTINCTIVE = ("email address", "connected on", "position")

GOOGLE_NUMBERED_PATTERNS = (
    re.compile(r"^e-mail \d+ - value$", re.IGNORECASE),
    re.compile(r"^phone \d+ - value$", re.IGNORECASE),
    re.compile(r"^organization \d+ - name$", re.IGNORECASE),
    re.compile(r"^address \d+ - formatted$", re.IGNORECASE),
)
GOOGLE_SPECIFIC_HEADERS = (
    "given name",
    "additional name",
    "family name",
    "phonetic first name",
    "phonetic middle name",
    "phonetic last name",
    "name prefix",
    "name suffix",
    "nickname",
    "file as",
    "organization name",
    "organization title",
    "organization department",
    "birthday",
    "labels",
    "group membership",
    "photo",
)

ROLODEX_OPTIONAL = (
    "title",
    "role",
    "phone",
    "phones",
    "linkedin",
    "linkedin url",
    "location",
    "notes",
    "other urls",
    "source",
    "created date",
    "updated date",
)


def _lowered(headers: Sequence[str]) -> List[str]:
    return [str(header).strip().lower() for header in headers]


def matches_rolodex(headers: Sequence[str]) -> bool:
    lowered = set(_lowered(headers))
    has_name = "name" in lowered
    has_email = "email" in lowered or "emails" in lowered
    has_company = "company" in lowered
    has_optional = any(header in lowered for header in ROLODEX_OPTIONAL)
    return has_name and has_email and has_company and has_optional


def matches_linkedin(headers: Sequence[str]) -> bool:
    lowered = _lowered(headers)

    def present(wanted: str) -> bool:
        return any(wanted in header for header in lowered)

    return all(present(h) for h in LINKEDIN_REQUIRED) and any(
        present(h) for h in LINKEDIN_OPTIONAL
    )


def matches_google(headers: Sequence[str]) -> bool:
    lowered = _lowered(headers)
    if any(header in LINKEDIN_DISTINCTIVE for header in lowered):
        return False
    if any(pattern.match(header) for header in lowered for pattern in GOOGLE_NUMBERED_PATTERNS):
        return True
    return sum(1 for header in GOOGLE_SPECIFIC_HEADERS if header in lowered) >= 2


_DETECTORS = (
    (ROLODEX, matches_rolodex),
    (LINKEDIN, matches_linkedin),
    (GOOGLE, matches_google),
)


def detect_format(headers: Sequence[str]) -> str:
    for parser_type, matches in _DETECTORS:
        if matches(headers):
            return parser_type
    return CUSTOM


@dataclass
class DetectionResult:
    parser_type: str
    headers: List[str]
    sample_row: Dict[str, str] = field(default_factory=dict)
    row_count: int = 0

    @property
    def is_known_format(self) -> bool:
        return self.parser_type in KNOWN_FORMATS

    def to_dict(self) -> Dict[str, object]:
        return {
            "parser_type": self.parser_type,
            "headers": list(self.headers),
            "sample_row": dict(self.sample_row),
            "row_count": self.row_count,
        }


def inspect_rows(headers: Sequence[str], rows: Sequence[Dict[str, str]]) -> DetectionResult:
    parser_type = detect_format(headers)
    logger.info("Detected %s format (%d rows, %d columns)", parser_type, len(rows), len(headers))
    return DetectionResult(
        parser_type=parser_type,
        headers=list(headers),
        sample_row=dict(rows[0]) if rows else {},
        row_count=len(rows),
    )


def inspect_csv(text: str) -> DetectionResult:
    headers, rows = read_csv_text(text)
    return inspect_rows(headers, rows)


__all__ = [
    "CUSTOM",
    "DetectionResult",
    "GOOGLE",
    "KNOWN_FORMATS",
    "LINKEDIN",
    "PARSER_TYPES",
    "ROLODEX",
    "detect_format",
    "inspect_csv",
    "inspect_rows",
    "matches_google",
    "matches_linkedin",
    "matches_rolodex",
]
