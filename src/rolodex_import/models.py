from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Sequence

import pandas as pd

CONTACT_SOURCES = ("linkedin", "google", "manual")
MATCH_TYPES = ("name", "email", "phone", "linkedin")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_contact_id() -> str:
    return str(uuid.uuid4())


def _text(payload: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def coerce_datetime(value: Any) -> datetime:
    """Accept datetimes, ISO strings or anything pandas can parse; fall back to now."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if value is None or (isinstance(value, str) and not value.strip()):
        return utcnow()
    parsed = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(parsed):
        return utcnow()
    return parsed.to_pydatetime()


@dataclass(frozen=True)
class OtherUrl:
    platform: str
    url: str

    @staticmethod
    def from_mapping(payload: Mapping[str, Any]) -> "OtherUrl":
        return OtherUrl(platform=_text(payload, "platform"), url=_text(payload, "url"))

    def to_dict(self) -> Dict[str, str]:
        return {"platform": self.platform, "url": self.url}


@dataclass
class ContactInfo:
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    linkedin_url: str = ""
    other_urls: List[OtherUrl] = field(default_factory=list)

    @staticmethod
    def _ensure_url_list(values: Sequence[Any]) -> List[OtherUrl]:
        return [
            value if isinstance(value, OtherUrl) else OtherUrl.from_mapping(value)
            for value in values
        ]

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ContactInfo":
        other_urls = payload.get("other_urls", payload.get("otherUrls")) or []
        return cls(
            emails=[str(v).strip() for v in payload.get("emails") or [] if str(v).strip()],
            phones=[str(v).strip() for v in payload.get("phones") or [] if str(v).strip()],
            linkedin_url=_text(payload, "linkedin_url", "linkedinUrl"),
            other_urls=cls._ensure_url_list(other_urls),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emails": list(self.emails),
            "phones": list(self.phones),
            "linkedin_url": self.linkedin_url,
            "other_urls": [url.to_dict() for url in self.other_urls],
        }

    def is_empty(self) -> bool:
        return not (self.emails or self.phones or self.linkedin_url or self.other_urls)


@dataclass
class Contact:
    name: str = ""
    contact_id: str = field(default_factory=new_contact_id)
    company: str = ""
    role: str = ""
    location: str = ""
    contact_info: ContactInfo = field(default_factory=ContactInfo)
    notes: str = ""
    source: str = "manual"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Contact":
        info = payload.get("contact_info", payload.get("contactInfo"))
        if isinstance(info, ContactInfo):
            contact_info = replace(info)
        else:
            contact_info = ContactInfo.from_mapping(info or {})
        source = _text(payload, "source").lower()
        return cls(
            name=_text(payload, "name"),
            contact_id=_text(payload, "contact_id", "id") or new_contact_id(),
            company=_text(payload, "company"),
            role=_text(payload, "role"),
            location=_text(payload, "location"),
            contact_info=contact_info,
            notes=str(payload.get("notes", "") or "").strip(),
            source=source if source in CONTACT_SOURCES else "manual",
            created_at=coerce_datetime(payload.get("created_at", payload.get("createdAt"))),
            updated_at=coerce_datetime(payload.get("updated_at", payload.get("updatedAt"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "company": self.company,
            "role": self.role,
            "location": self.location,
            "contact_info": self.contact_info.to_dict(),
            "notes": self.notes,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def has_information(self) -> bool:
        """True when anything besides the name is populated."""
        return bool(
            self.company
            or self.role
            or self.location
            or self.notes.strip()
            or not self.contact_info.is_empty()
        )

    def replace(self, **changes: Any) -> "Contact":
        return replace(self, **changes)


@dataclass
class DuplicateMatch:
    existing: Contact
    incoming: Contact
    match_type: str
    match_value: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "existing": self.existing.to_dict(),
            "incoming": self.incoming.to_dict(),
            "match_type": self.match_type,
            "match_value": self.match_value,
        }


__all__ = [
    "CONTACT_SOURCES",
    "Contact",
    "ContactInfo",
    "DuplicateMatch",
    "MATCH_TYPES",
    "OtherUrl",
    "coerce_datetime",
    "new_contact_id",
    "utcnow",
]
