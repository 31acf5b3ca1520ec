from __future__ import annotations

import importlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Sequence, Union

from .exceptions import ImportPipelineError, NormalizationFailure
from .models import Contact, ContactInfo
from .normalization import is_placeholder, uniq, validate_email_safe
from .tokens import DEFAULT_CHARS_PER_TOKEN, TOKEN_LIMITS, check_token_limit

logger = logging.getLogger(__name__)

NormalizationAdapter = Callable[[Dict[str, str], List[str]], Union[Contact, Awaitable[Contact]]]
PayloadCompleter = Callable[[str], Awaitable[Mapping[str, Any]]]

IMPORT_OPERATION = "import_contact"

PROMPT_TEMPLATE = """Extract and normalize contact information from this CSV row data.

Headers: {headers}
Data: {data}

Instructions:
1. Extract the person's full name
2. Extract all phone numbers (include the country code when the context makes it evident)
3. Extract all email addresses
4. Extract the LinkedIn URL if available
5. Extract the company name if available
6. Extract the job title, position or role if available
7. Extract the location (city, state, country) if available
8. Put any other relevant information into notes (but NOT company, role or location)

Answer with a JSON object with the keys name, phones, emails, linkedinUrl,
company, role, location and notes."""


def row_cost_text(row: Mapping[str, str]) -> str:
    """Text used to price one raw row against a token budget."""
    return json.dumps(dict(row), ensure_ascii=False)


def build_normalization_prompt(
    row: Mapping[str, str],
    headers: Sequence[str],
    strict: bool = False,
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
) -> str:
    prompt = PROMPT_TEMPLATE.format(
        headers=", ".join(headers),
        data=json.dumps(dict(row), ensure_ascii=False, indent=2),
    )
    if strict:
        check_token_limit(prompt, TOKEN_LIMITS[IMPORT_OPERATION].input, IMPORT_OPERATION, chars_per_token)
    return prompt


def _clean(value: Any) -> str:
    text = str(value).strip() if value is not None else ""
    return "" if is_placeholder(text) else text


def _clean_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.replace(",", ";").split(";")
    return uniq(_clean(item) for item in value)


def contact_from_llm_payload(payload: Mapping[str, Any]) -> Contact:
    """Build a contact from the JSON object a language model returned for one row.

    Placeholder answers such as ``N/A`` are treated as missing and emails that
    do not validate are dropped. The name may come back empty; callers assign
    a fallback name.
    """
    if not isinstance(payload, Mapping):
        raise NormalizationFailure(f"Expected a JSON object, got {type(payload).__name__}")

    emails = [email for email in (validate_email_safe(e) for e in _clean_list(payload.get("emails"))) if email]
    linkedin = _clean(payload.get("linkedinUrl") or payload.get("linkedin_url"))
    if not linkedin:
        linkedin = next(iter(_clean_list(payload.get("linkedinUrls"))), "")

    contact = Contact(
        name=_clean(payload.get("name")),
        company=_clean(payload.get("company")),
        role=_clean(payload.get("role")),
        location=_clean(payload.get("location")),
        contact_info=ContactInfo(
            emails=emails,
            phones=_clean_list(payload.get("phones")),
            linkedin_url=linkedin,
        ),
        notes=_clean(payload.get("notes")),
        source="manual",
    )
    if not contact.name and not contact.has_information():
        raise NormalizationFailure("Model returned no usable contact data")
    return contact


def prompt_adapter(complete: PayloadCompleter) -> NormalizationAdapter:
    """Turn ``complete(prompt) -> JSON object`` into a normalization adapter."""

    async def adapter(row: Dict[str, str], headers: List[str]) -> Contact:
        prompt = build_normalization_prompt(row, headers)
        payload = await complete(prompt)
        return contact_from_llm_payload(payload)

    return adapter


def load_adapter(spec: str) -> NormalizationAdapter:
    """Resolve ``package.module:attribute`` to a normalization adapter."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ImportPipelineError(f"Adapter must look like 'module:attribute', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ImportPipelineError(f"Cannot import adapter module {module_name!r}: {exc}") from exc
    try:
        adapter = getattr(module, attr)
    except AttributeError as exc:
        raise ImportPipelineError(f"Module {module_name!r} has no attribute {attr!r}") from exc
    if not callable(adapter):
        raise ImportPipelineError(f"Adapter {spec!r} is not callable")
    logger.info("Using normalization adapter %s", spec)
    return adapter


__all__ = [
    "IMPORT_OPERATION",
    "NormalizationAdapter",
    "build_normalization_prompt",
    "contact_from_llm_payload",
    "load_adapter",
    "prompt_adapter",
    "row_cost_text",
]
