from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_CONCURRENCY = 5


@dataclass
class Outcome(Generic[T, R]):
    index: int
    item: T
    value: Optional[R] = None
    error: Optional[Exception] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


@dataclass
class PoolResult(Generic[T, R]):
    outcomes: List[Outcome[T, R]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> List[Outcome[T, R]]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> List[Outcome[T, R]]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]

    @property
    def skipped(self) -> List[Outcome[T, R]]:
        return [outcome for outcome in self.outcomes if outcome.skipped]


ProgressCallback = Callable[[int, int, Outcome], Any]
BatchCallback = Callable[[int, List[Outcome]], Any]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


async def run_in_batches(
    batches: Sequence[Sequence[T]],
    worker: Callable[[T], Awaitable[R]],
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    inter_batch_delay: float = 0.0,
    on_batch_done: Optional[BatchCallback] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PoolResult[T, R]:
    """Run ``worker`` over every item, one batch at a time.

    Inside a batch at most ``max_concurrency`` calls are in flight. Outcomes
    come back in submission order while ``on_progress`` fires as each call
    resolves. Failures are recorded on the outcome and never retried. Once
    ``cancel_event`` is set no new call starts; calls already running finish
    and the remaining items are marked as skipped.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")

    total = sum(len(batch) for batch in batches)
    result: PoolResult[T, R] = PoolResult()
    completed = 0
    offset = 0

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    for batch_index, batch in enumerate(batches):
        semaphore = asyncio.Semaphore(max_concurrency)
        outcomes = [Outcome(index=offset + i, item=item) for i, item in enumerate(batch)]
        offset += len(batch)

        async def run_one(outcome: Outcome[T, R]) -> None:
            nonlocal completed
            async with semaphore:
                if cancelled():
                    outcome.skipped = True
                    return
                try:
                    outcome.value = await worker(outcome.item)
                except Exception as exc:
                    outcome.error = exc
                    logger.warning("Item %d failed: %s", outcome.index + 1, exc)
            completed += 1
            if on_progress is not None:
                await _maybe_await(on_progress(completed, total, outcome))

        if cancelled():
            for outcome in outcomes:
                outcome.skipped = True
        else:
            await asyncio.gather(*(run_one(outcome) for outcome in outcomes))
            if on_batch_done is not None:
                await _maybe_await(on_batch_done(batch_index, outcomes))
        result.outcomes.extend(outcomes)

        is_last = batch_index == len(batches) - 1
        if not is_last and not cancelled() and inter_batch_delay > 0:
            logger.debug("Batch %d/%d done, pausing %.2fs", batch_index + 1, len(batches), inter_batch_delay)
            await sleep(inter_batch_delay)

    result.cancelled = cancelled()
    if result.cancelled:
        logger.info("Batch run cancelled after %d of %d item(s)", completed, total)
    return result


__all__ = [
    "DEFAULT_MAX_CONCURRENCY",
    "Outcome",
    "PoolResult",
    "run_in_batches",
]
