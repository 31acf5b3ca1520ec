from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .exceptions import InvalidTransition
from .limits import OversizedContact
from .models import Contact, DuplicateMatch


class ImportStatus(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PREVIEW = "preview"
    PROCESSING = "processing"
    NORMALIZING = "normalizing"
    CHECKING_DUPLICATES = "checking-duplicates"
    RESOLVING = "resolving"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


S = ImportStatus

# ``error`` is reachable from every state and ``idle`` (cancel) from every
# non-idle state; both are added in ``can_transition``.
TRANSITIONS: Dict[ImportStatus, FrozenSet[ImportStatus]] = {
    S.IDLE: frozenset({S.DETECTING}),
    S.DETECTING: frozenset({S.PREVIEW}),
    S.PREVIEW: frozenset({S.PROCESSING, S.NORMALIZING}),
    S.PROCESSING: frozenset({S.CHECKING_DUPLICATES}),
    S.NORMALIZING: frozenset({S.CHECKING_DUPLICATES}),
    S.CHECKING_DUPLICATES: frozenset({S.RESOLVING, S.SAVING}),
    S.RESOLVING: frozenset({S.SAVING}),
    S.SAVING: frozenset({S.COMPLETE}),
    S.COMPLETE: frozenset(),
    S.ERROR: frozenset(),
}


def can_transition(current: ImportStatus, target: ImportStatus) -> bool:
    if target is S.ERROR:
        return True
    if target is S.IDLE:
        return current is not S.IDLE
    return target in TRANSITIONS[current]


@dataclass
class Progress:
    current: int = 0
    total: int = 0
    message: str = ""


@dataclass
class ImportSummary:
    rows: int = 0
    normalized: int = 0
    failed: int = 0
    unique: int = 0
    saved: int = 0
    merged: int = 0
    kept_both: int = 0
    skipped: int = 0
    auto_skipped: int = 0
    oversized_skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ImportSession:
    """Everything one import run has learned so far; owned by the orchestrator."""

    status: ImportStatus = S.IDLE
    parser_type: Optional[str] = None
    progress: Progress = field(default_factory=Progress)
    headers: List[str] = field(default_factory=list)
    sample_row: Dict[str, str] = field(default_factory=dict)
    pending_rows: List[Dict[str, str]] = field(default_factory=list)
    resolved_contacts: List[Contact] = field(default_factory=list)
    duplicate_queue: List[DuplicateMatch] = field(default_factory=list)
    oversized: List[OversizedContact] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)
    cancelled: bool = False

    def transition(self, target: ImportStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransition(self.status.value, target.value)
        self.status = target

    def set_progress(self, current: int, total: int, message: str = "") -> None:
        self.progress = Progress(current=current, total=total, message=message)

    @property
    def current_duplicate(self) -> Optional[DuplicateMatch]:
        return self.duplicate_queue[0] if self.duplicate_queue else None

    @property
    def is_active(self) -> bool:
        return self.status not in (S.IDLE, S.COMPLETE, S.ERROR)


__all__ = [
    "ImportSession",
    "ImportStatus",
    "ImportSummary",
    "Progress",
    "TRANSITIONS",
    "can_transition",
]
