from __future__ import annotations

from typing import Any, Dict

from .config_loader import PipelineConfig, load_pipeline_config
from .formats import DetectionResult, detect_format, inspect_csv
from .merge import (
    DuplicateIndex,
    are_contacts_identical,
    find_duplicates,
    has_less_or_equal_information,
    merge_contacts,
)
from .models import Contact, ContactInfo, DuplicateMatch, OtherUrl
from .normalization import read_csv_text
from .parsers import parse_csv, parse_rows
from .tokens import TOKEN_LIMITS, batch_items_by_tokens, estimate_tokens

__all__ = [
    "Contact",
    "ContactInfo",
    "DetectionResult",
    "DuplicateIndex",
    "DuplicateMatch",
    "OtherUrl",
    "PipelineConfig",
    "TOKEN_LIMITS",
    "are_contacts_identical",
    "batch_items_by_tokens",
    "detect_format",
    "ensure_contact",
    "estimate_tokens",
    "find_duplicates",
    "has_less_or_equal_information",
    "inspect_csv",
    "load_config",
    "load_pipeline_config",
    "merge_contacts",
    "parse_csv",
    "parse_rows",
    "read_csv_text",
    "to_contact",
]


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)


def to_contact(payload: Dict[str, Any]) -> Contact:
    return Contact.from_mapping(payload)


def ensure_contact(obj: Any) -> Contact:
    if isinstance(obj, Contact):
        return obj
    if isinstance(obj, dict):
        return Contact.from_mapping(obj)
    raise TypeError(f"Unsupported contact payload type: {type(obj)!r}")
