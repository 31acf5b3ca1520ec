from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .exceptions import ContactLimitExceeded
from .models import Contact
from .tokens import DEFAULT_CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)

MAX_CONTACTS = 10_000
MAX_TOKENS_PER_CONTACT = 500
WARNING_THRESHOLD = 0.9
TOKEN_WARNING_THRESHOLD = 0.8


@dataclass
class OversizedContact:
    contact: Contact
    token_count: int
    index: int


def contact_token_count(contact: Contact, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    return estimate_tokens(contact.to_dict(), chars_per_token)


def is_approaching_contact_limit(
    current_count: int, maximum: int = MAX_CONTACTS, threshold: float = WARNING_THRESHOLD
) -> bool:
    return current_count >= maximum * threshold


def available_slots(current_count: int, maximum: int = MAX_CONTACTS) -> int:
    return max(0, maximum - current_count)


def check_capacity(current_count: int, incoming_count: int, maximum: int = MAX_CONTACTS) -> None:
    if current_count + incoming_count > maximum:
        raise ContactLimitExceeded(current_count, incoming_count, maximum)


def find_oversized(
    contacts: Sequence[Contact],
    max_tokens: int = MAX_TOKENS_PER_CONTACT,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> List[OversizedContact]:
    oversized: List[OversizedContact] = []
    for index, contact in enumerate(contacts):
        tokens = contact_token_count(contact, chars_per_token)
        if tokens > max_tokens:
            oversized.append(OversizedContact(contact=contact, token_count=tokens, index=index))
        elif tokens > max_tokens * TOKEN_WARNING_THRESHOLD:
            logger.debug("Contact %s is close to the token limit (%d)", contact.contact_id, tokens)
    return oversized


def contact_data_score(contact: Contact) -> int:
    """Rough measure of how much a record knows; notes count double."""
    info = contact.contact_info
    score = sum(1 for value in (contact.name, contact.company, contact.role, contact.location) if value)
    if contact.notes.strip():
        score += 2
    score += len(info.emails) + len(info.phones) + len(info.other_urls)
    if info.linkedin_url:
        score += 1
    return score


def find_empty_contacts(contacts: Iterable[Contact]) -> List[Contact]:
    return [contact for contact in contacts if not contact.has_information()]


def find_minimal_contacts(contacts: Iterable[Contact]) -> List[Contact]:
    """Name-only records and records with a single extra field, least detailed first."""
    minimal = [contact for contact in contacts if contact_data_score(contact) <= 2]
    return sorted(minimal, key=contact_data_score)


__all__ = [
    "MAX_CONTACTS",
    "MAX_TOKENS_PER_CONTACT",
    "OversizedContact",
    "TOKEN_WARNING_THRESHOLD",
    "WARNING_THRESHOLD",
    "available_slots",
    "check_capacity",
    "contact_data_score",
    "contact_token_count",
    "find_empty_contacts",
    "find_minimal_contacts",
    "find_oversized",
    "is_approaching_contact_limit",
]
