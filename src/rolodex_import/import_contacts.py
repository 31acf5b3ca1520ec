from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .adapter import load_adapter
from .common import load_config
from .config_loader import DUPLICATE_POLICIES, OVERSIZED_POLICIES, PipelineConfig
from .events import ImportEvent, ImportEventType
from .exceptions import ImportCancelled, ImportPipelineError, ParseError
from .export import write_rolodex_csv
from .logging_utils import configure_logging
from .orchestrator import ImportOrchestrator
from .session import ImportSummary
from .store import ContactStore, InMemoryContactStore, JsonContactStore

logger = logging.getLogger(__name__)


def log_event(event: ImportEvent) -> None:
    kind = event["type"]
    if kind == ImportEventType.PROGRESS:
        logger.debug("Progress %d/%d", event["current"], event["total"])
    elif kind == ImportEventType.COMPLETE:
        processed = event["processed"]
        logger.info(
            "Processed %d row(s): %d normalized, %d failed",
            processed["total"],
            processed["normalized"],
            processed["failed"],
        )
        for error in event["errors"]:
            logger.warning("%s", error)
    elif kind == ImportEventType.WARNING:
        logger.warning("%s", event["message"])
    elif kind == ImportEventType.ERROR:
        logger.error("%s", event["message"])


def read_csv_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"File is not valid UTF-8: {exc}") from exc


def open_store(config: PipelineConfig) -> ContactStore:
    if config.store.path is None:
        logger.warning("No --store given; contacts are imported into memory only")
        return InMemoryContactStore()
    return JsonContactStore(config.store.path)


async def run_import(csv_text: str, config: PipelineConfig, store: ContactStore) -> ImportSummary:
    adapter = load_adapter(config.imports.adapter) if config.imports.adapter else None
    orchestrator = ImportOrchestrator(store, adapter=adapter, config=config)
    orchestrator.channel.subscribe(log_event)
    policy = config.imports.on_duplicate
    return await orchestrator.run(
        csv_text,
        resolver=lambda match, session: policy,
        oversized_choice=config.imports.on_oversized,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import contacts from a LinkedIn, Google or rolodex CSV.")
    parser.add_argument("csv_path", type=str, help="CSV file to import.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--store", type=str, default=None, help="JSON file holding the stored contacts.")
    parser.add_argument("--adapter", type=str, default=None, help="Normalization adapter as module:attribute.")
    parser.add_argument("--on-duplicate", choices=DUPLICATE_POLICIES, default=None)
    parser.add_argument("--on-oversized", choices=OVERSIZED_POLICIES, default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--max-concurrency", type=int, default=None)
    parser.add_argument("--export", type=str, default=None, help="Write all stored contacts to this CSV.")
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    args = parser.parse_args(argv)

    config = load_config(args)
    level = configure_logging(config, level_override=args.log_level)
    logger.debug("Logging at %s", logging.getLevelName(level))

    try:
        csv_text = read_csv_file(args.csv_path)
        store = open_store(config)
        summary = asyncio.run(run_import(csv_text, config, store))
    except ImportCancelled as exc:
        logger.warning("Import cancelled: %s", exc)
        return 1
    except ImportPipelineError as exc:
        logger.error("Import failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.csv_path, exc)
        return 1

    logger.info(
        "Imported %d new, merged %d, kept both %d, skipped %d (%d without new information)",
        summary.saved,
        summary.merged,
        summary.kept_both,
        summary.skipped + summary.auto_skipped,
        summary.auto_skipped,
    )
    print(
        f"Imported {summary.saved} new contact(s), merged {summary.merged}, "
        f"kept both {summary.kept_both}, skipped {summary.skipped + summary.auto_skipped}"
    )
    if config.store.export_csv:
        write_rolodex_csv(store.all(), config.store.export_csv)
        print(f"Saved: {config.store.export_csv}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
