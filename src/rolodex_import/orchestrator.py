"""
The import state machine: detect the format of an uploaded CSV, turn its rows
into contacts (deterministic parsers or a normalization adapter), screen them
against the stored contacts and persist the result.

Every public step is a coroutine operating on ``ImportOrchestrator.session``.
Fatal errors move the session to ``error``, publish an ``error`` event and are
re-raised; ``reset()`` brings the orchestrator back to ``idle``.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .adapter import NormalizationAdapter, row_cost_text
from .concurrency import Outcome, run_in_batches
from .config_loader import PipelineConfig, default_pipeline_config
from .events import (
    ProgressChannel,
    create_complete_event,
    create_error_event,
    create_progress_event,
    create_status_event,
    create_warning_event,
)
from .exceptions import (
    DuplicateResolutionCancelled,
    ImportCancelled,
    ImportPipelineError,
    InvalidTransition,
    NormalizationFailure,
    ParseError,
    PersistenceFailure,
    TokenLimitExceeded,
)
from .formats import CUSTOM, DetectionResult, inspect_rows
from .limits import check_capacity, find_oversized, is_approaching_contact_limit
from .merge import DuplicateIndex, are_contacts_identical, has_less_or_equal_information, merge_contacts
from .models import Contact, DuplicateMatch
from .normalization import read_csv_text
from .parsers import finalize_contact, parse_rows
from .session import ImportSession, ImportStatus, ImportSummary
from .store import ContactStore
from .tokens import TOKEN_LIMITS, batch_items_by_tokens, check_token_limit

logger = logging.getLogger(__name__)

S = ImportStatus

DUPLICATE_DECISIONS = ("merge", "skip", "keep-both", "cancel", "merge-all", "skip-all")
OVERSIZED_CHOICES = ("skip-all", "skip-selected", "continue")

DecisionResolver = Callable[[DuplicateMatch, ImportSession], Union[str, Awaitable[str]]]
MergeGroup = Tuple[Contact, List[Contact]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ImportOrchestrator:
    def __init__(
        self,
        store: ContactStore,
        adapter: Optional[NormalizationAdapter] = None,
        config: Optional[PipelineConfig] = None,
        channel: Optional[ProgressChannel] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.adapter = adapter
        self.config = config or default_pipeline_config()
        self.channel = channel or ProgressChannel()
        self.session = ImportSession()
        self.last_session: Optional[ImportSession] = None
        self.last_summary: Optional[ImportSummary] = None
        self._sleep = sleep
        self._cancel_event = asyncio.Event()

    # -- plumbing -----------------------------------------------------------

    async def _set_status(self, session: ImportSession, status: ImportStatus, message: str = "") -> None:
        session.transition(status)
        session.progress.message = message
        logger.info("Import status -> %s%s", status.value, f" ({message})" if message else "")
        await self.channel.publish(
            create_status_event(
                status.value,
                session.parser_type,
                session.progress.current,
                session.progress.total,
                message,
            )
        )

    async def _fail(self, session: ImportSession, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        session.errors.append(message)
        if session.status is not S.ERROR:
            await self._set_status(session, S.ERROR, message)
        logger.error("Import failed: %s", message)
        await self.channel.publish(create_error_event(message))

    @asynccontextmanager
    async def _guard(self, session: ImportSession) -> AsyncIterator[None]:
        try:
            yield
        except ImportPipelineError as exc:
            if exc.fatal and not session.cancelled:
                await self._fail(session, exc)
            raise
        except Exception as exc:
            await self._fail(session, exc)
            raise

    def _require(self, session: ImportSession, *allowed: ImportStatus) -> None:
        if session.status not in allowed:
            raise InvalidTransition(session.status.value, "/".join(status.value for status in allowed))

    async def _sleep_for(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    # -- detecting / preview ------------------------------------------------

    async def start(self, csv_text: str) -> DetectionResult:
        """Read and classify a CSV file, then park the session in ``preview``."""
        if self.session.status is not S.IDLE:
            raise InvalidTransition(self.session.status.value, S.DETECTING.value)
        headers, rows = read_csv_text(csv_text)
        if not rows:
            raise ParseError("CSV file has no data rows")

        self._cancel_event = asyncio.Event()
        session = self.session = ImportSession()
        await self._set_status(session, S.DETECTING, "Analyzing CSV format")
        async with self._guard(session):
            detection = inspect_rows(headers, rows)
            session.parser_type = detection.parser_type
            session.headers = list(headers)
            session.sample_row = dict(detection.sample_row)
            session.pending_rows = list(rows)
            session.summary.rows = len(rows)

            limits = self.config.limits
            stored = self.store.count()
            check_capacity(stored, len(rows), limits.max_contacts)
            if is_approaching_contact_limit(stored + len(rows), limits.max_contacts, limits.warning_threshold):
                await self.channel.publish(
                    create_warning_event(
                        f"This import brings you to {stored + len(rows)} of {limits.max_contacts} contacts"
                    )
                )

            await self._sleep_for(self.config.imports.detect_delay)
            await self._set_status(
                session, S.PREVIEW, f"Detected {detection.parser_type} format with {len(rows)} row(s)"
            )
        return detection

    # -- processing / normalizing -------------------------------------------

    async def process(self) -> List[Contact]:
        """Turn the pending rows into contacts and flag oversized ones."""
        session = self.session
        self._require(session, S.PREVIEW)
        custom = session.parser_type == CUSTOM
        await self._set_status(
            session,
            S.NORMALIZING if custom else S.PROCESSING,
            "Normalizing rows" if custom else f"Parsing {session.parser_type} rows",
        )
        async with self._guard(session):
            rows = session.pending_rows
            if custom:
                contacts, errors = await self._normalize_rows(session, rows)
            else:
                contacts = parse_rows(session.parser_type, rows, session.headers)
                errors = []
                session.set_progress(len(rows), len(rows), "Parsed")
                await self.channel.publish(create_progress_event(len(rows), len(rows)))

            session.resolved_contacts = contacts
            session.errors.extend(errors)
            session.summary.normalized = len(contacts)
            session.summary.failed = len(errors)
            session.summary.errors = len(session.errors)
            if session.cancelled:
                raise ImportCancelled(f"Import cancelled after {len(contacts)} contact(s) were normalized")
            if rows and not contacts:
                if errors:
                    raise NormalizationFailure(f"All {len(rows)} row(s) failed to normalize: {errors[0]}")
                raise NormalizationFailure("No contacts found in the CSV file")

            await self.channel.publish(
                create_complete_event(
                    total=len(rows),
                    normalized=len(contacts),
                    failed=len(errors),
                    contacts=[contact.to_dict() for contact in contacts],
                    errors=errors,
                    max_errors=self.config.imports.max_reported_errors,
                )
            )

            session.oversized = find_oversized(
                contacts, self.config.limits.max_tokens_per_contact, self.config.tokens.chars_per_token
            )
            if session.oversized:
                await self.channel.publish(
                    create_warning_event(
                        f"{len(session.oversized)} contact(s) exceed "
                        f"{self.config.limits.max_tokens_per_contact} tokens"
                    )
                )
        return contacts

    async def _normalize_rows(
        self, session: ImportSession, rows: Sequence[Dict[str, str]]
    ) -> Tuple[List[Contact], List[str]]:
        if self.adapter is None:
            raise ImportPipelineError("This CSV format is not recognized and no normalization adapter is configured")
        adapter = self.adapter
        headers = list(session.headers)
        imports = self.config.imports
        tokens = self.config.tokens
        budget = TOKEN_LIMITS["import_contact"]

        def cost_text(pair: Tuple[int, Dict[str, str]]) -> str:
            return row_cost_text(pair[1])

        # import_contact is a per-call budget; max_items is the cap that binds per batch.
        batches = batch_items_by_tokens(
            list(enumerate(rows)),
            budget.input * imports.batch_size,
            cost_text,
            base_tokens=budget.base_prompt_tokens,
            safety_margin=tokens.safety_margin,
            max_items=imports.batch_size,
            chars_per_token=tokens.chars_per_token,
        )
        logger.info("Normalizing %d row(s) in %d batch(es)", len(rows), len(batches))

        async def normalize(pair: Tuple[int, Dict[str, str]]) -> Contact:
            index, row = pair
            try:
                check_token_limit(cost_text(pair), budget.input, "import_contact", tokens.chars_per_token)
            except TokenLimitExceeded as exc:
                logger.warning("Row %d is large for a single call: %s", index + 2, exc)
            result = await _resolve(adapter(dict(row), headers))
            contact = result if isinstance(result, Contact) else Contact.from_mapping(result)
            contact = finalize_contact(contact, index + 1)
            if contact is None:
                raise NormalizationFailure("No contact information found", row_number=index + 2)
            return contact

        async def on_progress(current: int, total: int, outcome: Outcome) -> None:
            session.set_progress(current, total, f"Normalized {current} of {total}")
            await self.channel.publish(create_progress_event(current, total))

        result = await run_in_batches(
            batches,
            normalize,
            max_concurrency=imports.max_concurrency,
            on_progress=on_progress,
            cancel_event=self._cancel_event,
            inter_batch_delay=imports.inter_batch_delay,
            sleep=self._sleep,
        )
        contacts = [outcome.value for outcome in result.succeeded]
        errors = [f"Row {outcome.item[0] + 2}: {outcome.error}" for outcome in result.failed]
        return contacts, errors

    def resolve_oversized(self, choice: str, selected: Iterable[str] = ()) -> List[Contact]:
        """Apply the user's choice for contacts over the per-contact token ceiling.

        ``skip-selected`` drops the oversized contacts whose ids are in
        ``selected``; ``skip-all`` drops every oversized contact; ``continue``
        keeps them all.
        """
        session = self.session
        self._require(session, S.PROCESSING, S.NORMALIZING)
        if choice not in OVERSIZED_CHOICES:
            raise ValueError(f"Unknown oversized choice: {choice}")
        if choice == "continue":
            drop = set()
        elif choice == "skip-all":
            drop = {item.contact.contact_id for item in session.oversized}
        else:
            oversized_ids = {item.contact.contact_id for item in session.oversized}
            drop = oversized_ids & set(selected)
        session.resolved_contacts = [c for c in session.resolved_contacts if c.contact_id not in drop]
        session.summary.oversized_skipped += len(drop)
        session.oversized = []
        if drop:
            logger.info("Skipped %d oversized contact(s)", len(drop))
        return session.resolved_contacts

    # -- duplicates ---------------------------------------------------------

    async def check_duplicates(self) -> List[DuplicateMatch]:
        """Split contacts into new ones and meaningful duplicates; save when none remain."""
        session = self.session
        self._require(session, S.PROCESSING, S.NORMALIZING)
        if session.oversized:
            raise InvalidTransition(session.status.value, S.CHECKING_DUPLICATES.value)
        await self._set_status(session, S.CHECKING_DUPLICATES, "Checking for duplicates")
        async with self._guard(session):
            index = DuplicateIndex(self.store.all())
            unique: List[Contact] = []
            queue: List[DuplicateMatch] = []
            auto_skipped = 0
            for contact in session.resolved_contacts:
                matches = index.find(contact)
                if not matches:
                    unique.append(contact)
                    continue
                for match in matches:
                    if are_contacts_identical(match.existing, contact) or has_less_or_equal_information(
                        match.existing, contact
                    ):
                        auto_skipped += 1
                    else:
                        queue.append(match)

            session.resolved_contacts = unique
            session.duplicate_queue = queue
            session.summary.unique = len(unique)
            session.summary.auto_skipped = auto_skipped
            logger.info(
                "%d new contact(s), %d duplicate(s) to resolve, %d auto-skipped",
                len(unique),
                len(queue),
                auto_skipped,
            )
            if auto_skipped:
                await self.channel.publish(
                    create_warning_event(f"Skipped {auto_skipped} duplicate(s) with no new information")
                )

        if queue:
            await self._set_status(session, S.RESOLVING, f"{len(queue)} duplicate(s) need a decision")
        else:
            await self.save()
        return list(queue)

    async def decide(self, decision: str) -> Optional[DuplicateMatch]:
        """Apply one decision to the head of the duplicate queue (or all of it)."""
        session = self.session
        self._require(session, S.RESOLVING)
        if decision not in DUPLICATE_DECISIONS:
            raise ValueError(f"Unknown duplicate decision: {decision}")
        if decision == "cancel":
            await self.cancel()
            raise DuplicateResolutionCancelled("Import cancelled during duplicate resolution")

        async with self._guard(session):
            if decision == "merge-all":
                await self._merge_all(session)
            elif decision == "skip-all":
                session.summary.skipped += len(session.duplicate_queue)
                session.duplicate_queue = []
            else:
                match = session.duplicate_queue.pop(0)
                if decision == "merge":
                    self._merge_one(session, match)
                elif decision == "keep-both":
                    self._keep_both(session, match)
                else:
                    session.summary.skipped += 1

        if session.duplicate_queue:
            return session.current_duplicate
        if session is self.session and not session.cancelled:
            await self.save()
        return None

    def _current_version(self, contact: Contact) -> Contact:
        return self.store.get(contact.contact_id) or contact

    def _put(self, contacts: List[Contact], committed: int = 0) -> int:
        try:
            return self.store.bulk_put(contacts)
        except PersistenceFailure as exc:
            exc.committed = committed
            raise
        except Exception as exc:
            raise PersistenceFailure(f"Failed to write contacts: {exc}", committed=committed) from exc

    def _merge_one(self, session: ImportSession, match: DuplicateMatch) -> None:
        merged = merge_contacts(self._current_version(match.existing), match.incoming)
        self._put([merged])
        session.summary.merged += 1

    def _keep_both(self, session: ImportSession, match: DuplicateMatch) -> None:
        if self.store.get(match.incoming.contact_id) is not None:
            return
        check_capacity(
            self.store.count(), len(session.resolved_contacts) + 1, self.config.limits.max_contacts
        )
        self._put([match.incoming])
        session.summary.kept_both += 1

    async def _merge_all(self, session: ImportSession) -> None:
        # One work item per existing contact so concurrent merges never race on a record.
        groups: "OrderedDict[str, MergeGroup]" = OrderedDict()
        for match in session.duplicate_queue:
            existing_id = match.existing.contact_id
            if existing_id not in groups:
                groups[existing_id] = (match.existing, [])
            groups[existing_id][1].append(match.incoming)

        imports = self.config.imports
        budget = TOKEN_LIMITS["merge_contacts"]

        def cost_text(group: MergeGroup) -> str:
            existing, incoming = group
            return json.dumps(
                [existing.to_dict()] + [contact.to_dict() for contact in incoming], ensure_ascii=False
            )

        batches = batch_items_by_tokens(
            list(groups.values()),
            budget.input * imports.batch_size,
            cost_text,
            base_tokens=budget.base_prompt_tokens,
            safety_margin=self.config.tokens.safety_margin,
            max_items=imports.batch_size,
            chars_per_token=self.config.tokens.chars_per_token,
        )

        async def merge_group(group: MergeGroup) -> Contact:
            existing, incoming = group
            merged = self._current_version(existing)
            for contact in incoming:
                merged = merge_contacts(merged, contact)
            return merged

        total = len(session.duplicate_queue)
        done_ids: set = set()
        committed = 0

        async def on_progress(current: int, count: int, outcome: Outcome) -> None:
            session.set_progress(current, count, f"Merged {current} of {count}")
            await self.channel.publish(create_progress_event(current, count))

        async def commit(batch_index: int, outcomes: List[Outcome]) -> None:
            nonlocal committed
            merged = [outcome.value for outcome in outcomes if outcome.ok]
            if merged:
                committed += self._put(merged, committed)
            for outcome in outcomes:
                if outcome.ok:
                    done_ids.add(outcome.item[0].contact_id)
                    session.summary.merged += len(outcome.item[1])
                elif outcome.error is not None:
                    session.errors.append(f"Merge into {outcome.item[0].name}: {outcome.error}")

        result = await run_in_batches(
            batches,
            merge_group,
            max_concurrency=imports.max_concurrency,
            on_progress=on_progress,
            cancel_event=self._cancel_event,
            inter_batch_delay=imports.inter_batch_delay,
            on_batch_done=commit,
            sleep=self._sleep,
        )
        session.duplicate_queue = [
            match for match in session.duplicate_queue if match.existing.contact_id not in done_ids
        ]
        logger.info("Merged %d of %d duplicate(s) in bulk", total - len(session.duplicate_queue), total)
        if result.cancelled:
            raise ImportCancelled("Import cancelled during bulk merge")
        if result.failed:
            session.summary.skipped += len(session.duplicate_queue)
            session.duplicate_queue = []

    # -- saving / complete --------------------------------------------------

    async def save(self) -> ImportSummary:
        session = self.session
        self._require(session, S.CHECKING_DUPLICATES, S.RESOLVING)
        await self._set_status(session, S.SAVING, f"Saving {len(session.resolved_contacts)} contact(s)")
        async with self._guard(session):
            contacts = session.resolved_contacts
            check_capacity(self.store.count(), len(contacts), self.config.limits.max_contacts)
            size = max(1, self.config.store.save_batch_size)
            committed = 0
            for start in range(0, len(contacts), size):
                committed += self._put(contacts[start : start + size], committed)
                session.set_progress(committed, len(contacts), f"Saved {committed} of {len(contacts)}")
            session.summary.saved = committed
            session.summary.errors = len(session.errors)

        summary = session.summary
        self.last_session = session
        self.last_summary = summary
        await self._set_status(
            session,
            S.COMPLETE,
            f"Imported {summary.saved} new, merged {summary.merged}, kept {summary.kept_both}, "
            f"skipped {summary.skipped + summary.auto_skipped}",
        )
        await self._sleep_for(self.config.imports.complete_delay)
        if self.session is session:
            await self._set_status(session, S.IDLE)
            self.session = ImportSession()
        return summary

    # -- cancel / reset -----------------------------------------------------

    async def cancel(self) -> ImportSession:
        """Stop issuing new calls and return to ``idle``; the old session keeps its data."""
        session = self.session
        if session.status is S.IDLE:
            return session
        self._cancel_event.set()
        session.cancelled = True
        await self._set_status(session, S.IDLE, "Import cancelled")
        self.last_session = session
        self.session = ImportSession()
        return session

    async def reset(self) -> None:
        if self.session.status is not S.IDLE:
            await self.cancel()

    # -- driver -------------------------------------------------------------

    async def run(
        self,
        csv_text: str,
        resolver: Optional[DecisionResolver] = None,
        oversized_choice: str = "skip-all",
        selected: Iterable[str] = (),
    ) -> ImportSummary:
        """Run a whole import; ``resolver`` answers each duplicate (default ``skip-all``)."""
        await self.start(csv_text)
        await self.process()
        session = self.session
        if session.oversized:
            self.resolve_oversized(oversized_choice, selected)
        await self.check_duplicates()
        while session.status is S.RESOLVING and session.duplicate_queue:
            match = session.duplicate_queue[0]
            decision = await _resolve(resolver(match, session)) if resolver else "skip-all"
            await self.decide(decision)
        return session.summary


__all__ = ["DUPLICATE_DECISIONS", "ImportOrchestrator", "OVERSIZED_CHOICES"]
