from __future__ import annotations

import logging
import re
from datetime import date, datetime
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pandas as pd
from email_validator import EmailNotValidError, validate_email

from .exceptions import ParseError

logger = logging.getLogger(__name__)

GOOGLE_MULTI_VALUE_SPLIT = re.compile(r"\s*:::+\s*")
LINKEDIN_CONNECTED_RE = re.compile(r"linkedin connected:[^\n\r]*", re.IGNORECASE)
LINKEDIN_CONNECTED_VALUE_RE = re.compile(r"linkedin connected:\s*([^\n\r]*)", re.IGNORECASE)
LINKEDIN_PREAMBLE_HEADER = "First Name,Last Name,URL"

CONNECTED_DATE_FORMATS = (
    "%d-%b-%y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
)

PLACEHOLDER_VALUES = {
    "",
    "n/a",
    "na",
    "none",
    "null",
    "undefined",
    "unknown",
    "<unknown>",
    "tbd",
    "not available",
    "-",
}


def normalize_text_key(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip()).lower()


def collapse_whitespace(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def phone_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def email_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_placeholder(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in PLACEHOLDER_VALUES


def uniq(values: Iterable[str]) -> List[str]:
    """Drop blanks and exact duplicates, keeping first-seen order."""
    seen: Set[str] = set()
    results: List[str] = []
    for value in values:
        text = (value or "").strip()
        if text and text not in seen:
            seen.add(text)
            results.append(text)
    return results


def uniq_casefold(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    results: List[str] = []
    for value in values:
        text = (value or "").strip()
        key = text.lower()
        if text and key not in seen:
            seen.add(key)
            results.append(text)
    return results


def split_multi_values(raw: Optional[str], separators: str = r"[;\r\n]+") -> List[str]:
    """Split joined cell values, including Google's ``a ::: b`` convention."""
    if not raw:
        return []
    values: List[str] = []
    for part in re.split(separators, raw):
        part = part.strip()
        if not part:
            continue
        values.extend(segment for segment in GOOGLE_MULTI_VALUE_SPLIT.split(part) if segment)
    return values


def validate_email_safe(raw: str) -> str:
    candidate = (raw or "").strip()
    if not candidate:
        return ""
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return ""
    return candidate


def guess_name_from_email_local(local: str) -> Tuple[str, str]:
    parts = [part for part in re.split(r"[._-]+", local) if part and not part.isdigit()]
    first = parts[0].title() if parts else ""
    last = parts[1].title() if len(parts) > 1 else ""
    return first, last


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        return ""


def is_blank_row(row: Dict[str, str]) -> bool:
    return all(not _coerce_to_string(value) for value in row.values())


def _strip_preamble(text: str, header_starts_with: Optional[str]) -> str:
    if not header_starts_with:
        return text
    lines = text.splitlines()
    for index, line in enumerate(lines[:100]):
        if line.strip().startswith(header_starts_with):
            return "\n".join(lines[index:])
    return text


def read_csv_text(
    text: str, header_starts_with: Optional[str] = LINKEDIN_PREAMBLE_HEADER
) -> Tuple[List[str], List[Dict[str, str]]]:
    """Parse CSV text into (headers, rows), discarding rows that are entirely blank.

    LinkedIn exports may start with a ``Notes:`` preamble; everything before the
    line beginning with ``header_starts_with`` is skipped when that line exists.
    """
    if not text or not text.strip():
        raise ParseError("CSV file is empty")
    content = _strip_preamble(text.lstrip("\ufeff"), header_starts_with)
    try:
        df = pd.read_csv(
            StringIO(content),
            dtype=str,
            keep_default_na=False,
            index_col=False,
            skip_blank_lines=True,
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ParseError(f"Failed to parse CSV: {exc}") from exc

    headers = [str(column).strip() for column in df.columns]
    if not headers:
        raise ParseError("CSV file has no header row")
    df.columns = headers
    rows: List[Dict[str, str]] = []
    for record in df.to_dict(orient="records"):
        row = {key: _coerce_to_string(value) for key, value in record.items()}
        if not is_blank_row(row):
            rows.append(row)
    logger.debug("Read %d data row(s) with %d column(s)", len(rows), len(headers))
    return headers, rows


def extract_connected_values(notes: Optional[str]) -> List[str]:
    return [match.strip() for match in LINKEDIN_CONNECTED_VALUE_RE.findall(notes or "")]


def parse_connected_date(value: str) -> Optional[date]:
    candidate = collapse_whitespace(value)
    if not candidate:
        return None
    for fmt in CONNECTED_DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    logger.debug("Unrecognized LinkedIn connection date: %s", candidate)
    return None


def connected_dates_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """LinkedIn connection dates only conflict when both parse to different days."""
    values_a = extract_connected_values(a)
    values_b = extract_connected_values(b)
    if not values_a or not values_b:
        return True
    date_a = parse_connected_date(values_a[0])
    date_b = parse_connected_date(values_b[0])
    if date_a is None or date_b is None:
        return True
    return date_a == date_b


def normalize_notes_for_comparison(notes: Optional[str]) -> str:
    stripped = LINKEDIN_CONNECTED_RE.sub("", notes or "")
    return collapse_whitespace(stripped)


def first_non_empty(values: Sequence[str]) -> str:
    return next((value for value in values if value), "")


__all__ = [
    "collapse_whitespace",
    "connected_dates_compatible",
    "email_key",
    "extract_connected_values",
    "first_non_empty",
    "guess_name_from_email_local",
    "is_blank_row",
    "is_placeholder",
    "normalize_notes_for_comparison",
    "normalize_text_key",
    "parse_connected_date",
    "phone_digits",
    "read_csv_text",
    "safe_get",
    "split_multi_values",
    "uniq",
    "uniq_casefold",
    "validate_email_safe",
]
