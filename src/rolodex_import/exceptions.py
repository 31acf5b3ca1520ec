from __future__ import annotations

from typing import Optional


class ImportPipelineError(Exception):
    """Base class for every error raised by the import pipeline."""

    fatal = True


class ParseError(ImportPipelineError):
    pass


class NormalizationFailure(ImportPipelineError):
    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.row_number = row_number


class TokenLimitExceeded(ImportPipelineError):
    fatal = False

    def __init__(self, tokens: int, limit: int, operation: str):
        super().__init__(
            f"Token limit exceeded for {operation}: {tokens} tokens (limit: {limit})"
        )
        self.tokens = tokens
        self.limit = limit
        self.operation = operation


class ContactLimitExceeded(ImportPipelineError):
    def __init__(self, current: int, incoming: int, maximum: int):
        self.current = current
        self.incoming = incoming
        self.maximum = maximum
        self.available_slots = max(0, maximum - current)
        super().__init__(
            f"Importing {incoming} contact(s) would exceed the limit of {maximum}: "
            f"{current} stored, {self.available_slots} slot(s) available"
        )


class ImportCancelled(ImportPipelineError):
    fatal = False


class DuplicateResolutionCancelled(ImportCancelled):
    pass


class PersistenceFailure(ImportPipelineError):
    def __init__(self, message: str, committed: int = 0):
        super().__init__(message)
        self.committed = committed


class InvalidTransition(ImportPipelineError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move import from {current!r} to {target!r}")
        self.current = current
        self.target = target


__all__ = [
    "ContactLimitExceeded",
    "DuplicateResolutionCancelled",
    "ImportCancelled",
    "ImportPipelineError",
    "InvalidTransition",
    "NormalizationFailure",
    "ParseError",
    "PersistenceFailure",
    "TokenLimitExceeded",
]
