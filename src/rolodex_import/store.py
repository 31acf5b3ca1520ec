from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Union

from .exceptions import PersistenceFailure
from .models import Contact

logger = logging.getLogger(__name__)


class ContactStore(Protocol):
    """Per-user contact storage as the import pipeline sees it."""

    def count(self) -> int:
        ...

    def all(self) -> List[Contact]:
        """Every stored contact in insertion order."""
        ...

    def get(self, contact_id: str) -> Optional[Contact]:
        ...

    def add(self, contact: Contact) -> None:
        ...

    def bulk_put(self, contacts: Iterable[Contact]) -> int:
        """Insert or replace by ``contact_id``; returns how many were written."""
        ...

    def delete(self, contact_id: str) -> bool:
        ...


class InMemoryContactStore:
    def __init__(self, contacts: Iterable[Contact] = ()):
        self._contacts: Dict[str, Contact] = {}
        for contact in contacts:
            self._contacts[contact.contact_id] = contact

    def count(self) -> int:
        return len(self._contacts)

    def all(self) -> List[Contact]:
        return list(self._contacts.values())

    def get(self, contact_id: str) -> Optional[Contact]:
        return self._contacts.get(contact_id)

    def add(self, contact: Contact) -> None:
        if contact.contact_id in self._contacts:
            raise PersistenceFailure(f"Contact {contact.contact_id} already exists")
        self._contacts[contact.contact_id] = contact

    def bulk_put(self, contacts: Iterable[Contact]) -> int:
        written = 0
        for contact in contacts:
            self._contacts[contact.contact_id] = contact
            written += 1
        return written

    def delete(self, contact_id: str) -> bool:
        return self._contacts.pop(contact_id, None) is not None


class JsonContactStore(InMemoryContactStore):
    """Contacts kept in one JSON file; a missing file is an empty store."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> List[Contact]:
        if not self.path.exists():
            logger.debug("No contact store at %s yet", self.path)
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(f"Could not read contact store {self.path}: {exc}") from exc
        if isinstance(payload, dict):
            payload = payload.get("contacts", [])
        contacts = [Contact.from_mapping(item) for item in payload]
        logger.info("Loaded %d contact(s) from %s", len(contacts), self.path)
        return contacts

    def _flush(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps([contact.to_dict() for contact in self.all()], ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceFailure(f"Could not write contact store {self.path}: {exc}") from exc

    def add(self, contact: Contact) -> None:
        super().add(contact)
        self._flush()

    def bulk_put(self, contacts: Iterable[Contact]) -> int:
        written = super().bulk_put(contacts)
        if written:
            self._flush()
        return written

    def delete(self, contact_id: str) -> bool:
        removed = super().delete(contact_id)
        if removed:
            self._flush()
        return removed


__all__ = ["ContactStore", "InMemoryContactStore", "JsonContactStore"]
