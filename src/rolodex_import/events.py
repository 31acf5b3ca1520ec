"""
Progress event schemas and the channel that carries them from the import
pipeline to its caller.

Events are plain ``TypedDict`` payloads so they can be handed straight to a
UI layer or written out as JSON lines.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypedDict, Union

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 5


class ImportEventType(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    STATUS = "status"
    WARNING = "warning"


class ProgressEvent(TypedDict):
    type: ImportEventType
    current: int
    total: int


class ProcessedTotals(TypedDict):
    total: int
    normalized: int
    failed: int


class CompleteEvent(TypedDict):
    type: ImportEventType
    processed: ProcessedTotals
    contacts: List[Dict[str, Any]]
    errors: List[str]  # first MAX_REPORTED_ERRORS only


class ErrorEvent(TypedDict):
    type: ImportEventType
    message: str


class StatusProgress(TypedDict):
    current: int
    total: int
    message: str


class StatusEvent(TypedDict):
    type: ImportEventType
    status: str
    parser_type: Optional[str]
    progress: StatusProgress


class WarningEvent(TypedDict):
    type: ImportEventType
    message: str


ImportEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent, StatusEvent, WarningEvent]
Subscriber = Callable[[ImportEvent], Any]


def create_progress_event(current: int, total: int) -> ProgressEvent:
    return ProgressEvent(type=ImportEventType.PROGRESS, current=current, total=total)


def create_complete_event(
    total: int,
    normalized: int,
    failed: int,
    contacts: List[Dict[str, Any]],
    errors: List[str],
    max_errors: int = MAX_REPORTED_ERRORS,
) -> CompleteEvent:
    return CompleteEvent(
        type=ImportEventType.COMPLETE,
        processed=ProcessedTotals(total=total, normalized=normalized, failed=failed),
        contacts=contacts,
        errors=list(errors[:max_errors]),
    )


def create_error_event(message: str) -> ErrorEvent:
    return ErrorEvent(type=ImportEventType.ERROR, message=message)


def create_status_event(
    status: str, parser_type: Optional[str], current: int = 0, total: int = 0, message: str = ""
) -> StatusEvent:
    return StatusEvent(
        type=ImportEventType.STATUS,
        status=status,
        parser_type=parser_type,
        progress=StatusProgress(current=current, total=total, message=message),
    )


def create_warning_event(message: str) -> WarningEvent:
    return WarningEvent(type=ImportEventType.WARNING, message=message)


def encode_event(event: ImportEvent) -> str:
    """One JSON line per event; enum members serialize as their string value."""
    return json.dumps(event, ensure_ascii=False, default=str)


_CLOSED = object()


class ProgressChannel:
    """
    Ordered delivery of import events to subscribers and, optionally, a queue.

    Subscribers may be plain functions or coroutines and are called in the
    order they subscribed. When ``queue_size`` is given, every event is also
    put on a bounded ``asyncio.Queue`` that ``events()`` drains; a full queue
    applies back-pressure to the publisher instead of dropping events.
    """

    def __init__(self, queue_size: Optional[int] = None, keep_history: int = 0):
        self._subscribers: List[Subscriber] = []
        self._queue: Optional[asyncio.Queue] = (
            asyncio.Queue(maxsize=queue_size) if queue_size is not None else None
        )
        self._keep_history = keep_history
        self.history: List[ImportEvent] = []
        self.closed = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: ImportEvent) -> None:
        if self.closed:
            logger.debug("Dropping %s event on a closed channel", event.get("type"))
            return
        if self._keep_history:
            self.history.append(event)
            del self.history[: -self._keep_history]
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Progress subscriber failed for %s event", event.get("type"))
        if self._queue is not None:
            await self._queue.put(event)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue is not None:
            await self._queue.put(_CLOSED)

    async def events(self) -> AsyncIterator[ImportEvent]:
        if self._queue is None:
            raise RuntimeError("ProgressChannel was created without a queue")
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


__all__ = [
    "CompleteEvent",
    "ErrorEvent",
    "ImportEvent",
    "ImportEventType",
    "MAX_REPORTED_ERRORS",
    "ProcessedTotals",
    "ProgressChannel",
    "ProgressEvent",
    "StatusEvent",
    "WarningEvent",
    "create_complete_event",
    "create_error_event",
    "create_progress_event",
    "create_status_event",
    "create_warning_event",
    "encode_event",
]
