from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .exceptions import ImportPipelineError
from .formats import CUSTOM, GOOGLE, LINKEDIN, ROLODEX, DetectionResult, inspect_rows
from .models import Contact, ContactInfo, OtherUrl, coerce_datetime
from .normalization import (
    guess_name_from_email_local,
    read_csv_text,
    split_multi_values,
    uniq,
    uniq_casefold,
)

logger = logging.getLogger(__name__)

NUMBERED_SLOTS = range(1, 6)


def _numbered(template: str) -> Tuple[str, ...]:
    return tuple(template.format(n=n) for n in NUMBERED_SLOTS)


# Candidate headers per logical field, tried in order.
FIELD_CANDIDATES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    LINKEDIN: {
        "first_name": ("First Name",),
        "last_name": ("Last Name",),
        "emails": ("Email Address", "Email", "E-mail Address"),
        "company": ("Company",),
        "role": ("Position", "Title"),
        "linkedin_url": ("URL", "Profile URL"),
        "connected_on": ("Connected On",),
    },
    GOOGLE: {
        "name": ("Name",),
        "prefix": ("Name Prefix",),
        "first_name": ("First Name", "Given Name"),
        "middle_name": ("Middle Name", "Additional Name"),
        "last_name": ("Last Name", "Family Name"),
        "suffix": ("Name Suffix",),
        "nickname": ("Nickname",),
        "emails": ("Email", "E-mail") + _numbered("E-mail {n} - Value"),
        "phones": ("Phone",) + _numbered("Phone {n} - Value"),
        "company": ("Organization Name", "Organization 1 - Name"),
        "role": ("Organization Title", "Organization 1 - Title"),
        "department": ("Organization Department", "Organization 1 - Department"),
        "location": ("Address 1 - City", "Address 1 - Formatted", "Location"),
        "notes": ("Notes",),
        "birthday": ("Birthday",),
        "labels": ("Labels", "Group Membership"),
        "relation_value": ("Relation 1 - Value",),
        "relation_label": ("Relation 1 - Label",),
        "address_label": ("Address 1 - Label",),
        "address_street": ("Address 1 - Street",),
        "address_formatted": ("Address 1 - Formatted",),
        "address_city": ("Address 1 - City",),
        "address_region": ("Address 1 - Region",),
        "address_postal_code": ("Address 1 - Postal Code",),
        "address_country": ("Address 1 - Country",),
    },
    ROLODEX: {
        "name": ("Name",),
        "emails": ("Email", "Emails"),
        "phones": ("Phone", "Phones"),
        "company": ("Company",),
        "role": ("Role", "Title"),
        "location": ("Location",),
        "linkedin_url": ("LinkedIn URL", "LinkedIn"),
        "other_urls": ("Other URLs",),
        "notes": ("Notes",),
        "source": ("Source",),
        "created_at": ("Created Date",),
        "updated_at": ("Updated Date",),
    },
}

SCHEME_PREFIXES = ("http", "https")


class FieldLookup:
    """Case-insensitive access to one raw row through the candidate table."""

    def __init__(self, row: Mapping[str, str], candidates: Mapping[str, Tuple[str, ...]]):
        self.row = row
        self.candidates = candidates
        self._keys = {str(key).strip().lower(): key for key in row}

    def raw(self, header: str) -> str:
        key = self._keys.get(header.lower())
        if key is None:
            return ""
        return (self.row.get(key) or "").strip()

    def first(self, field_name: str) -> str:
        for header in self.candidates.get(field_name, ()):
            value = self.raw(header)
            if value:
                return value
        return ""

    def values(self, field_name: str) -> List[str]:
        collected: List[str] = []
        for header in self.candidates.get(field_name, ()):
            collected.extend(split_multi_values(self.raw(header)))
        return uniq(collected)


def parse_other_urls(raw: str) -> List[OtherUrl]:
    """Parse ``Platform: url; Platform: url`` cells into OtherUrl entries."""
    urls: List[OtherUrl] = []
    seen = set()
    for part in (piece.strip() for piece in (raw or "").split(";")):
        if not part:
            continue
        platform, sep, url = part.partition(":")
        platform = platform.strip()
        if not sep or not platform:
            continue
        if platform.lower() in SCHEME_PREFIXES and url.startswith("//"):
            platform, url = "Website", part
        url = url.strip()
        if url and (platform, url) not in seen:
            seen.add((platform, url))
            urls.append(OtherUrl(platform=platform, url=url))
    return urls


def fallback_name(info: ContactInfo, row_number: int) -> str:
    for email in info.emails:
        local = email.split("@", 1)[0]
        first, last = guess_name_from_email_local(local)
        guessed = " ".join(part for part in (first, last) if part)
        if guessed:
            return guessed
    return f"Contact {row_number}"


def _dedupe_info(info: ContactInfo) -> ContactInfo:
    other_urls: List[OtherUrl] = []
    for url in info.other_urls:
        if url not in other_urls:
            other_urls.append(url)
    return ContactInfo(
        emails=uniq_casefold(info.emails),
        phones=uniq(info.phones),
        linkedin_url=(info.linkedin_url or "").strip(),
        other_urls=other_urls,
    )


def finalize_contact(contact: Contact, row_number: int) -> Optional[Contact]:
    """Apply the naming rules shared by every parser; ``None`` means drop the row.

    Emails (case-insensitively), phones and other URLs are de-duplicated first.
    """
    contact = contact.replace(contact_info=_dedupe_info(contact.contact_info))
    if contact.name.strip():
        return contact
    if not contact.has_information():
        logger.debug("Dropping row %d: no name and no contact information", row_number)
        return None
    return contact.replace(name=fallback_name(contact.contact_info, row_number))


def parse_linkedin_row(lookup: FieldLookup, row_number: int) -> Optional[Contact]:
    name = " ".join(
        part for part in (lookup.first("first_name"), lookup.first("last_name")) if part
    )
    connected_on = lookup.first("connected_on")
    contact = Contact(
        name=name,
        company=lookup.first("company"),
        role=lookup.first("role"),
        contact_info=ContactInfo(
            emails=lookup.values("emails"),
            linkedin_url=lookup.first("linkedin_url"),
        ),
        notes=f"LinkedIn connected: {connected_on}" if connected_on else "",
        source="linkedin",
    )
    return finalize_contact(contact, row_number)


def _google_address(lookup: FieldLookup) -> str:
    if not (lookup.first("address_street") or lookup.first("address_formatted")):
        return ""
    parts = [
        lookup.first(key)
        for key in (
            "address_street",
            "address_city",
            "address_region",
            "address_postal_code",
            "address_country",
        )
    ]
    return ", ".join(part for part in parts if part) or lookup.first("address_formatted")


def _google_notes(lookup: FieldLookup) -> str:
    lines: List[str] = []
    if lookup.first("notes"):
        lines.append(lookup.first("notes"))
    for label, key in (("Birthday", "birthday"), ("Department", "department"), ("Labels", "labels")):
        value = lookup.first(key)
        if value:
            lines.append(f"{label}: {value}")
    relation = lookup.first("relation_value")
    if relation:
        lines.append(f"{lookup.first('relation_label') or 'Relation'}: {relation}")
    address = _google_address(lookup)
    if address:
        lines.append(f"{lookup.first('address_label') or 'Address'}: {address}")
    return "\n".join(lines)


def _google_websites(lookup: FieldLookup) -> List[OtherUrl]:
    urls: List[OtherUrl] = []
    for n in NUMBERED_SLOTS:
        for url in split_multi_values(lookup.raw(f"Website {n} - Value")):
            entry = OtherUrl(platform=lookup.raw(f"Website {n} - Label") or "Website", url=url)
            if entry not in urls:
                urls.append(entry)
    return urls


def parse_google_row(lookup: FieldLookup, row_number: int) -> Optional[Contact]:
    name = lookup.first("name")
    if not name:
        name = " ".join(
            part
            for part in (
                lookup.first("prefix"),
                lookup.first("first_name"),
                lookup.first("middle_name"),
                lookup.first("last_name"),
                lookup.first("suffix"),
            )
            if part
        )
    contact = Contact(
        name=name or lookup.first("nickname"),
        company=lookup.first("company"),
        role=lookup.first("role"),
        location=lookup.first("location"),
        contact_info=ContactInfo(
            emails=lookup.values("emails"),
            phones=lookup.values("phones"),
            other_urls=_google_websites(lookup),
        ),
        notes=_google_notes(lookup),
        source="google",
    )
    return finalize_contact(contact, row_number)


def parse_rolodex_row(lookup: FieldLookup, row_number: int) -> Optional[Contact]:
    # Missing or unparseable dates become "now".
    contact = Contact.from_mapping(
        {
            "name": lookup.first("name"),
            "company": lookup.first("company"),
            "role": lookup.first("role"),
            "location": lookup.first("location"),
            "contact_info": ContactInfo(
                emails=lookup.values("emails"),
                phones=lookup.values("phones"),
                linkedin_url=lookup.first("linkedin_url"),
                other_urls=parse_other_urls(lookup.first("other_urls")),
            ),
            "notes": lookup.first("notes"),
            "source": lookup.first("source"),
            "created_at": coerce_datetime(lookup.first("created_at")),
            "updated_at": coerce_datetime(lookup.first("updated_at")),
        }
    )
    return finalize_contact(contact, row_number)


RowParser = Callable[[FieldLookup, int], Optional[Contact]]

ROW_PARSERS: Dict[str, RowParser] = {
    LINKEDIN: parse_linkedin_row,
    GOOGLE: parse_google_row,
    ROLODEX: parse_rolodex_row,
}


def parse_rows(
    parser_type: str, rows: Sequence[Mapping[str, str]], headers: Sequence[str] = ()
) -> List[Contact]:
    """Map raw rows of a known format to contacts, dropping rows that carry nothing."""
    if parser_type == CUSTOM:
        raise ImportPipelineError("Custom CSV formats need a normalization adapter")
    try:
        row_parser = ROW_PARSERS[parser_type]
        candidates = FIELD_CANDIDATES[parser_type]
    except KeyError as exc:
        raise ImportPipelineError(f"Unknown parser type: {parser_type}") from exc

    contacts: List[Contact] = []
    for index, row in enumerate(rows):
        contact = row_parser(FieldLookup(row, candidates), index + 1)
        if contact is not None:
            contacts.append(contact)
    dropped = len(rows) - len(contacts)
    if dropped:
        logger.info("Dropped %d empty %s row(s)", dropped, parser_type)
    logger.info(
        "Parsed %d contact(s) from %d %s row(s) (%d column(s))",
        len(contacts),
        len(rows),
        parser_type,
        len(headers),
    )
    return contacts


def parse_csv(text: str) -> Tuple[DetectionResult, List[Contact]]:
    headers, rows = read_csv_text(text)
    detection = inspect_rows(headers, rows)
    return detection, parse_rows(detection.parser_type, rows, headers)


__all__ = [
    "FIELD_CANDIDATES",
    "FieldLookup",
    "ROW_PARSERS",
    "fallback_name",
    "finalize_contact",
    "parse_csv",
    "parse_google_row",
    "parse_linkedin_row",
    "parse_other_urls",
    "parse_rolodex_row",
    "parse_rows",
]
