"""
Header mapping via a single classifier (LLM) call.

The classifier proposes a target for every header; this module builds the
request, calls the model and validates the answer against a closed grammar
before handing a typed MappingResult to the caller. The call has no side
effects, so callers may retry on failure.
"""
import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from contact_importer.core.config import settings
from contact_importer.domain.contacts.models import (
    UNMAPPED,
    CustomFieldDef,
    MappingEntry,
    MappingResult,
    is_unmapped,
    target_from_token,
)
from .errors import ClassifierUnavailable, MalformedResponse
from .mapping_prompt import build_header_message, build_mapping_prompt

logger = logging.getLogger(__name__)

# Entries below this confidence must resolve to Unmapped.
MIN_MAPPING_CONFIDENCE = 0.5

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class _DuplicateKeyError(ValueError):
    pass


def _reject_duplicate_keys(pairs: List[tuple]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise _DuplicateKeyError(key)
        result[key] = value
    return result


_DECODER = json.JSONDecoder(object_pairs_hook=_reject_duplicate_keys)


def get_mapping_llm() -> BaseChatModel:
    """Build the configured classifier model."""
    api_key = (settings.anthropic_api_key or "").strip()
    if not api_key:
        raise ClassifierUnavailable(
            "Anthropic API key not configured. Set ANTHROPIC_API_KEY in your environment "
            "or update settings.anthropic_api_key to enable AI field mapping."
        )

    return ChatAnthropic(
        model=settings.llm_model,
        api_key=api_key,
        temperature=0,  # Deterministic for consistent mappings
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_api_timeout,
        max_retries=settings.llm_max_retries,
    )


def _content_to_text(content: Any) -> str:
    """Normalize chat model content into a single string."""
    if isinstance(content, list):
        text_blocks = []
        for block in content:
            if isinstance(block, str):
                text_blocks.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                text_blocks.append(block.get("text", ""))
        return "\n".join(text_blocks)
    return str(content)


def _decode_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        payload = _DECODER.decode(candidate)
    except _DuplicateKeyError:
        raise
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _first_embedded_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object that decodes starting at any '{'."""
    for match in re.finditer(r"\{", text):
        try:
            payload, _ = _DECODER.raw_decode(text, match.start())
        except _DuplicateKeyError:
            raise
        except ValueError:
            continue
        if isinstance(payload, dict):
            return payload
    return None


def extract_json_payload(text: str) -> Dict[str, Any]:
    """
    Extract the JSON document from a classifier reply.

    Accepts a bare JSON object, one wrapped in a fenced code block, or prose
    with an embedded object (the first decodable object wins).

    Raises:
        MalformedResponse: no JSON object found, or an object repeats a key.
    """
    try:
        fenced = _FENCED_BLOCK.search(text)
        if fenced:
            payload = _decode_object(fenced.group(1))
            if payload is not None:
                return payload

        payload = _decode_object(text.strip())
        if payload is not None:
            return payload

        payload = _first_embedded_object(text)
    except _DuplicateKeyError as exc:
        raise MalformedResponse(f"Classifier response repeats the key '{exc}'", text) from exc

    if payload is None:
        raise MalformedResponse("Could not extract a JSON object from the classifier response", text)
    return payload


def _parse_confidence(header: str, value: Any, raw: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedResponse(f"Header '{header}': confidence must be a number, got {value!r}", raw)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise MalformedResponse(f"Header '{header}': confidence {value!r} is outside [0, 1]", raw)
    return float(value)


def parse_mapping_response(
    text: str,
    headers: Sequence[str],
    known_fields: Iterable[CustomFieldDef],
) -> MappingResult:
    """
    Validate a classifier reply and convert it into a MappingResult.

    Every header must be mapped exactly once, confidences must lie in [0, 1]
    and every ``mappedTo`` must parse into a target. Entries below
    MIN_MAPPING_CONFIDENCE are demoted to Unmapped.

    Raises:
        MalformedResponse: on any violation.
    """
    payload = extract_json_payload(text)

    mapping = payload.get("mapping")
    if not isinstance(mapping, dict):
        raise MalformedResponse("Classifier response has no 'mapping' object", text)

    expected = list(headers)
    missing = [header for header in expected if header not in mapping]
    unexpected = [header for header in mapping if header not in set(expected)]
    if missing or unexpected:
        raise MalformedResponse(
            f"Classifier mapping does not match the input headers "
            f"(missing: {missing}, unexpected: {unexpected})",
            text,
        )

    known_ids = {field.id for field in known_fields}
    entries: Dict[str, MappingEntry] = {}
    for header in expected:
        item = mapping[header]
        if not isinstance(item, dict):
            raise MalformedResponse(f"Header '{header}': expected an object, got {item!r}", text)

        confidence = _parse_confidence(header, item.get("confidence"), text)
        try:
            target = target_from_token(item.get("mappedTo"), known_ids)
        except ValueError as exc:
            raise MalformedResponse(f"Header '{header}': {exc}", text) from exc

        if confidence < MIN_MAPPING_CONFIDENCE and not is_unmapped(target):
            logger.info(
                "Demoting '%s' -> '%s' to unmapped (confidence %.2f)",
                header,
                target.token(),
                confidence,
            )
            target = UNMAPPED

        entries[header] = MappingEntry(header=header, target=target, confidence=confidence)

    claimed_unmapped = payload.get("unmappedHeaders", [])
    if not isinstance(claimed_unmapped, list) or not all(isinstance(h, str) for h in claimed_unmapped):
        raise MalformedResponse("'unmappedHeaders' must be a list of header names", text)

    notes = payload.get("notes")
    if notes is None:
        notes = ""
    if not isinstance(notes, str):
        raise MalformedResponse("'notes' must be a string", text)

    result = MappingResult(entries=entries, notes=notes.strip())
    if set(claimed_unmapped) != set(result.unmapped_headers):
        logger.warning(
            "Classifier unmappedHeaders %s disagree with its mapping; using %s",
            claimed_unmapped,
            result.unmapped_headers,
        )
    return result


def _validate_headers(headers: Sequence[str]) -> List[str]:
    header_list = list(headers)
    if not header_list:
        raise ValueError("At least one header is required to propose a mapping")
    for header in header_list:
        if not isinstance(header, str):
            raise ValueError(f"Headers must be strings, got {header!r}")
    duplicates = sorted({header for header in header_list if header_list.count(header) > 1})
    if duplicates:
        raise ValueError(f"Headers must be unique within an import; duplicated: {duplicates}")
    return header_list


def propose_mapping(
    headers: Sequence[str],
    known_fields: Iterable[CustomFieldDef],
    *,
    llm: Optional[BaseChatModel] = None,
) -> MappingResult:
    """
    Ask the classifier to map headers onto core attributes and custom fields.

    Args:
        headers: Column headers of the uploaded file, in display order.
        known_fields: Custom field definitions currently in the store.
        llm: Chat model to use instead of the configured Anthropic model.

    Returns:
        MappingResult with exactly one entry per header, in header order.

    Raises:
        ClassifierUnavailable: missing configuration, transport error or timeout.
        MalformedResponse: the reply could not be validated.
    """
    header_list = _validate_headers(headers)
    fields = list(known_fields)

    model = llm if llm is not None else get_mapping_llm()
    messages = [
        SystemMessage(content=build_mapping_prompt(fields)),
        HumanMessage(content=build_header_message(header_list)),
    ]

    logger.info("Requesting mapping suggestions for %d headers (%d custom fields)", len(header_list), len(fields))
    try:
        response = model.invoke(messages)
    except Exception as exc:
        logger.error("Error getting mapping suggestions: %s", exc)
        raise ClassifierUnavailable(f"Failed to get AI mapping suggestions: {exc}") from exc

    result = parse_mapping_response(_content_to_text(response.content), header_list, fields)
    logger.info(
        "Classifier mapped %d of %d headers",
        len(header_list) - len(result.unmapped_headers),
        len(header_list),
    )
    return result
