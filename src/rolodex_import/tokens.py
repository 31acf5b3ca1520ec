from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .exceptions import TokenLimitExceeded

T = TypeVar("T")

DEFAULT_CHARS_PER_TOKEN = 3.0
DEFAULT_SAFETY_MARGIN = 0.9


@dataclass(frozen=True)
class OperationBudget:
    input: int
    output: int
    base_prompt_tokens: int


TOKEN_LIMITS: Dict[str, OperationBudget] = {
    "query_contacts": OperationBudget(input=10_000, output=1_000, base_prompt_tokens=300),
    "generate_summary": OperationBudget(input=1_500, output=200, base_prompt_tokens=200),
    "voice_to_contact": OperationBudget(input=1_000, output=200, base_prompt_tokens=150),
    "merge_contacts": OperationBudget(input=1_500, output=300, base_prompt_tokens=250),
    "process_results": OperationBudget(input=2_000, output=100, base_prompt_tokens=200),
    "import_contact": OperationBudget(input=400, output=100, base_prompt_tokens=150),
}


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, ensure_ascii=False, default=str)


def estimate_tokens(value: Any, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Conservative token estimate: one token per ``chars_per_token`` characters, rounded up."""
    text = _as_text(value)
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def check_token_limit(
    text: Any, limit: int, operation: str, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN
) -> int:
    tokens = estimate_tokens(text, chars_per_token)
    if tokens > limit:
        raise TokenLimitExceeded(tokens, limit, operation)
    return tokens


def batch_items_by_tokens(
    items: Sequence[T],
    token_limit: int,
    item_to_string: Callable[[T], str],
    base_tokens: int = 0,
    safety_margin: float = DEFAULT_SAFETY_MARGIN,
    max_items: Optional[int] = None,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> List[List[T]]:
    """Greedily split ``items`` into ordered batches that fit the token budget.

    Each batch costs ``base_tokens`` plus the estimate of every item in it and
    stays within ``floor(token_limit * safety_margin)``. A batch is never empty:
    an item too large for the budget on its own becomes a single-item batch
    instead of being dropped. ``max_items`` additionally caps the batch length.
    """
    safe_limit = math.floor(token_limit * safety_margin)
    batches: List[List[T]] = []
    current: List[T] = []
    current_tokens = base_tokens

    for item in items:
        item_tokens = estimate_tokens(item_to_string(item), chars_per_token)
        over_budget = current_tokens + item_tokens > safe_limit
        full = max_items is not None and len(current) >= max_items
        if current and (over_budget or full):
            batches.append(current)
            current = []
            current_tokens = base_tokens
        current.append(item)
        current_tokens += item_tokens

    if current:
        batches.append(current)
    return batches


def batches_for_operation(
    items: Sequence[T],
    operation: str,
    item_to_string: Callable[[T], str],
    max_items: Optional[int] = None,
    safety_margin: float = DEFAULT_SAFETY_MARGIN,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> List[List[T]]:
    budget = TOKEN_LIMITS[operation]
    return batch_items_by_tokens(
        items,
        budget.input,
        item_to_string,
        base_tokens=budget.base_prompt_tokens,
        safety_margin=safety_margin,
        max_items=max_items,
        chars_per_token=chars_per_token,
    )


@dataclass
class BatchInfo:
    total_batches: int
    items_per_batch: List[int]
    tokens_per_batch: List[int]

    @property
    def total_tokens(self) -> int:
        return sum(self.tokens_per_batch)


def get_batch_info(
    items: Sequence[T],
    token_limit: int,
    item_to_string: Callable[[T], str],
    base_tokens: int = 0,
    safety_margin: float = DEFAULT_SAFETY_MARGIN,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> BatchInfo:
    batches = batch_items_by_tokens(
        items,
        token_limit,
        item_to_string,
        base_tokens=base_tokens,
        safety_margin=safety_margin,
        chars_per_token=chars_per_token,
    )
    tokens_per_batch = [
        base_tokens + sum(estimate_tokens(item_to_string(item), chars_per_token) for item in batch)
        for batch in batches
    ]
    return BatchInfo(
        total_batches=len(batches),
        items_per_batch=[len(batch) for batch in batches],
        tokens_per_batch=tokens_per_batch,
    )


__all__ = [
    "BatchInfo",
    "DEFAULT_CHARS_PER_TOKEN",
    "DEFAULT_SAFETY_MARGIN",
    "OperationBudget",
    "TOKEN_LIMITS",
    "batch_items_by_tokens",
    "batches_for_operation",
    "check_token_limit",
    "estimate_tokens",
    "get_batch_info",
]
