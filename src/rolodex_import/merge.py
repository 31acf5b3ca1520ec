from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Set, Tuple, TypeVar, Union

from .models import Contact, ContactInfo, DuplicateMatch, utcnow
from .normalization import (
    connected_dates_compatible,
    email_key,
    extract_connected_values,
    normalize_notes_for_comparison,
    normalize_text_key,
    phone_digits,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCALAR_FIELDS = ("name", "company", "role", "location")
NOTE_LABEL_RE = re.compile(r"^([^:\n]{1,40}?):\s+(.+)$")

IncomingContact = Union[Contact, Mapping[str, Any]]


def _linkedin_key(value: str) -> str:
    return (value or "").strip().lower()


def _email_keys(contact: Contact) -> Set[str]:
    return {email_key(email) for email in contact.contact_info.emails if email_key(email)}


def _phone_keys(contact: Contact) -> Set[str]:
    return {phone_digits(phone) for phone in contact.contact_info.phones if phone_digits(phone)}


def _url_keys(contact: Contact) -> Set[Tuple[str, str]]:
    return {(url.platform, url.url) for url in contact.contact_info.other_urls}


class DuplicateIndex:
    """Hashed lookups over the stored contacts for each duplicate criterion."""

    def __init__(self, existing: Iterable[Contact]):
        self._contacts: Dict[str, Contact] = {}
        self._position: Dict[str, int] = {}
        self._by_name: Dict[str, List[str]] = defaultdict(list)
        self._by_email: Dict[str, List[str]] = defaultdict(list)
        self._by_phone: Dict[str, List[str]] = defaultdict(list)
        self._by_linkedin: Dict[str, List[str]] = defaultdict(list)
        for contact in existing:
            self.add(contact)

    def __len__(self) -> int:
        return len(self._contacts)

    def add(self, contact: Contact) -> None:
        contact_id = contact.contact_id
        if contact_id in self._contacts:
            return
        self._contacts[contact_id] = contact
        self._position[contact_id] = len(self._position)
        name = normalize_text_key(contact.name)
        if name:
            self._by_name[name].append(contact_id)
        for key in _email_keys(contact):
            self._by_email[key].append(contact_id)
        for key in _phone_keys(contact):
            self._by_phone[key].append(contact_id)
        linkedin = _linkedin_key(contact.contact_info.linkedin_url)
        if linkedin:
            self._by_linkedin[linkedin].append(contact_id)

    def _criteria(self, incoming: Contact) -> List[Tuple[str, Dict[str, List[str]], List[Tuple[str, str]]]]:
        info = incoming.contact_info
        return [
            ("name", self._by_name, [(normalize_text_key(incoming.name), incoming.name.strip())]),
            ("email", self._by_email, [(email_key(email), email) for email in info.emails]),
            ("phone", self._by_phone, [(phone_digits(phone), phone) for phone in info.phones]),
            (
                "linkedin",
                self._by_linkedin,
                [(_linkedin_key(info.linkedin_url), info.linkedin_url.strip())],
            ),
        ]

    def find(self, incoming: Contact) -> List[DuplicateMatch]:
        matched: Dict[str, DuplicateMatch] = {}
        for match_type, table, keys in self._criteria(incoming):
            for key, display in keys:
                if not key:
                    continue
                for contact_id in table.get(key, ()):
                    if contact_id not in matched:
                        matched[contact_id] = DuplicateMatch(
                            existing=self._contacts[contact_id],
                            incoming=incoming,
                            match_type=match_type,
                            match_value=display,
                        )
        return sorted(matched.values(), key=lambda match: self._position[match.existing.contact_id])


def find_duplicates(existing: Sequence[Contact], incoming: Contact) -> List[DuplicateMatch]:
    """Every stored contact that looks like ``incoming``, each reported once."""
    if not existing:
        return []
    return DuplicateIndex(existing).find(incoming)


def are_contacts_identical(a: Contact, b: Contact) -> bool:
    for field_name in SCALAR_FIELDS:
        if (getattr(a, field_name) or "").strip() != (getattr(b, field_name) or "").strip():
            return False
    if _email_keys(a) != _email_keys(b):
        return False
    if _phone_keys(a) != _phone_keys(b):
        return False
    if _url_keys(a) != _url_keys(b):
        return False
    url_a = _linkedin_key(a.contact_info.linkedin_url)
    url_b = _linkedin_key(b.contact_info.linkedin_url)
    if url_a and url_b and url_a != url_b:
        return False
    if normalize_notes_for_comparison(a.notes) != normalize_notes_for_comparison(b.notes):
        return False
    return connected_dates_compatible(a.notes, b.notes)


def _notes_add_nothing(existing: str, incoming: str) -> bool:
    incoming_text = normalize_notes_for_comparison(incoming)
    if incoming_text and incoming_text not in normalize_notes_for_comparison(existing):
        return False
    if extract_connected_values(incoming) and not extract_connected_values(existing):
        return False
    return connected_dates_compatible(existing, incoming)


def has_less_or_equal_information(existing: Contact, incoming: Contact) -> bool:
    """True when merging ``incoming`` into ``existing`` could not add anything."""
    if are_contacts_identical(existing, incoming):
        return True
    for field_name in SCALAR_FIELDS:
        value = normalize_text_key(getattr(incoming, field_name))
        if value and value != normalize_text_key(getattr(existing, field_name)):
            return False
    if not _email_keys(incoming) <= _email_keys(existing):
        return False
    if not _phone_keys(incoming) <= _phone_keys(existing):
        return False
    if not _url_keys(incoming) <= _url_keys(existing):
        return False
    linkedin = _linkedin_key(incoming.contact_info.linkedin_url)
    if linkedin and linkedin != _linkedin_key(existing.contact_info.linkedin_url):
        return False
    return _notes_add_nothing(existing.notes, incoming.notes)


def _prefer(existing: str, incoming: str) -> str:
    existing = existing or ""
    incoming = (incoming or "").strip()
    if not existing.strip():
        return incoming
    if incoming and incoming != existing.strip() and len(incoming) > len(existing.strip()):
        return incoming
    return existing


def _union(existing: Sequence[T], incoming: Iterable[T], key: Callable[[T], Any]) -> List[T]:
    merged = list(existing)
    seen = {key(value) for value in existing}
    for value in incoming:
        marker = key(value)
        if marker not in seen:
            seen.add(marker)
            merged.append(value)
    return merged


def merge_notes(existing: str, incoming: str) -> str:
    """Merge two note blobs, keeping the longer value per ``Label: value`` line."""
    if not (incoming or "").strip():
        return existing or ""
    if not (existing or "").strip():
        return incoming

    labeled: Dict[str, Tuple[str, str]] = {}
    free_lines: Set[str] = set()
    order: List[Tuple[str, str]] = []
    for line in existing.splitlines() + incoming.splitlines():
        text = line.strip()
        if not text:
            continue
        match = NOTE_LABEL_RE.match(text)
        if match:
            label, value = match.group(1).strip(), match.group(2).strip()
            key = label.lower()
            if key not in labeled:
                labeled[key] = (label, value)
                order.append(("label", key))
            elif len(value) > len(labeled[key][1]):
                labeled[key] = (labeled[key][0], value)
        elif text not in free_lines:
            free_lines.add(text)
            order.append(("line", text))

    lines = [
        f"{labeled[value][0]}: {labeled[value][1]}" if kind == "label" else value
        for kind, value in order
    ]
    return "\n".join(lines) or existing or incoming


def _as_contact(incoming: IncomingContact) -> Contact:
    if isinstance(incoming, Contact):
        return incoming
    return Contact.from_mapping(incoming)


def merge_contacts(existing: Contact, incoming: IncomingContact) -> Contact:
    """Fold ``incoming`` into ``existing``; id, creation time and source stay put.

    ``incoming`` may be a partial mapping: missing fields leave ``existing``
    untouched.
    """
    other = _as_contact(incoming)
    info = existing.contact_info
    other_info = other.contact_info

    merged_info = ContactInfo(
        emails=_union(info.emails, other_info.emails, email_key),
        phones=_union(info.phones, other_info.phones, lambda phone: phone.strip()),
        linkedin_url=other_info.linkedin_url.strip() or info.linkedin_url,
        other_urls=_union(info.other_urls, other_info.other_urls, lambda url: (url.platform, url.url)),
    )
    merged = existing.replace(
        name=_prefer(existing.name, other.name),
        company=_prefer(existing.company, other.company),
        role=_prefer(existing.role, other.role),
        location=_prefer(existing.location, other.location),
        contact_info=merged_info,
        notes=merge_notes(existing.notes, other.notes),
        updated_at=max(utcnow(), existing.updated_at),
    )
    logger.debug("Merged contact %s (%s)", merged.contact_id, merged.name)
    return merged


__all__ = [
    "DuplicateIndex",
    "are_contacts_identical",
    "find_duplicates",
    "has_less_or_equal_information",
    "merge_contacts",
    "merge_notes",
]
