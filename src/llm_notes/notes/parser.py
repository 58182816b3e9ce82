"""Extraction and validation of JSON payloads from model output text.

Models may wrap their JSON in prose or markdown code fences even in
JSON-schema mode, so parsing runs an ordered list of extraction strategies
and returns the first candidate that both decodes as JSON and passes a
strict shape check:

1. the whole text
2. the contents of the first fenced code block (optionally tagged ``json``)
3. the span from the first ``[`` to the last ``]``
4. the span from the first ``{`` to the last ``}``

A candidate with any malformed item is rejected as a whole; items are never
silently dropped.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from typing import Any

import structlog

from src.llm_notes.notes.errors import ParseError
from src.llm_notes.notes.schemas import CitedLine, GeneratedNote

logger = structlog.get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_DIGITS = re.compile(r"^\d+$")


# ── Extraction Strategies ────────────────────────────────────────────────────


def _whole_text(text: str) -> str | None:
    return text


def _fenced_block(text: str) -> str | None:
    match = _FENCED_BLOCK.search(text)
    if match and match.group(1):
        return match.group(1)
    return None


def _bracket_span(text: str, opening: str, closing: str) -> str | None:
    first = text.find(opening)
    last = text.rfind(closing)
    if first >= 0 and last > first:
        return text[first : last + 1]
    return None


def _array_span(text: str) -> str | None:
    return _bracket_span(text, "[", "]")


def _object_span(text: str) -> str | None:
    return _bracket_span(text, "{", "}")


EXTRACTION_STRATEGIES: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("whole_text", _whole_text),
    ("fenced_block", _fenced_block),
    ("array_span", _array_span),
    ("object_span", _object_span),
)


def iter_json_candidates(text: str) -> Iterator[tuple[str, Any]]:
    """Yield ``(strategy_name, decoded_json)`` for each candidate that decodes."""
    for name, strategy in EXTRACTION_STRATEGIES:
        candidate = strategy(text)
        if candidate is None:
            continue
        candidate = candidate.strip()
        if not candidate:
            continue
        try:
            yield name, json.loads(candidate)
        except ValueError:
            continue


# ── Field Helpers ────────────────────────────────────────────────────────────


def _text_field(record: dict, key: str) -> str:
    value = record.get(key)
    return value.strip() if isinstance(value, str) else ""


def _positive_int_field(record: dict, key: str) -> int | None:
    """Read a positive integer, accepting integral numbers and digit strings."""
    value = record.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str):
        trimmed = value.strip()
        if _DIGITS.match(trimmed):
            parsed = int(trimmed)
            return parsed if parsed > 0 else None
    return None


def _unwrap_list(value: Any, key: str) -> list | None:
    if isinstance(value, list):
        return value
    if isinstance(value, dict) and isinstance(value.get(key), list):
        return value[key]
    return None


# ── Shape Validators ─────────────────────────────────────────────────────────


def normalize_notes(value: Any) -> list[GeneratedNote] | None:
    """Validate decoded JSON as a notes array; None if any item is invalid.

    Accepts a bare array or ``{"notes": [...]}``. Answer fields may use the
    ``answer_1..3`` names or the legacy ``q1..q3`` names.
    """
    raw_notes = _unwrap_list(value, "notes")
    if raw_notes is None:
        return None

    notes: list[GeneratedNote] = []
    for item in raw_notes:
        if not isinstance(item, dict):
            return None

        title = _text_field(item, "title")
        answer_1 = _text_field(item, "answer_1") or _text_field(item, "q1")
        answer_2 = _text_field(item, "answer_2") or _text_field(item, "q2")
        answer_3 = _text_field(item, "answer_3") or _text_field(item, "q3")

        if not (title and answer_1 and answer_2 and answer_3):
            return None

        notes.append(
            GeneratedNote(
                title=title,
                answer_1=answer_1,
                answer_2=answer_2,
                answer_3=answer_3,
            )
        )

    return notes


def normalize_assignments(value: Any) -> list[CitedLine] | None:
    """Validate decoded JSON as an assignments array; None if any item is invalid.

    Accepts a bare array or ``{"assignments": [...]}``. ``line`` is accepted
    as an alias for ``line_number``.
    """
    raw_assignments = _unwrap_list(value, "assignments")
    if raw_assignments is None:
        return None

    citations: list[CitedLine] = []
    for item in raw_assignments:
        if not isinstance(item, dict):
            return None

        line_number = _positive_int_field(item, "line_number")
        if line_number is None:
            line_number = _positive_int_field(item, "line")
        if line_number is None:
            return None

        citations.append(
            CitedLine(
                line_number=line_number,
                speaker=_text_field(item, "speaker"),
                utterance=_text_field(item, "utterance"),
            )
        )

    return citations


# ── Public API ───────────────────────────────────────────────────────────────


def parse_notes(text: str) -> list[GeneratedNote]:
    """Parse note creation output into validated notes.

    Raises:
        ParseError: If no extraction strategy yields a valid notes array.
    """
    for strategy, value in iter_json_candidates(text):
        notes = normalize_notes(value)
        if notes is not None:
            logger.debug("output_parser.notes_parsed", strategy=strategy, count=len(notes))
            return notes

    logger.warning("output_parser.notes_unparseable", text_preview=text[:200])
    raise ParseError("OpenAI response could not be parsed as notes JSON.")


def parse_assignments(text: str) -> list[CitedLine]:
    """Parse note assignment output into validated line citations.

    Raises:
        ParseError: If no extraction strategy yields a valid assignments array.
    """
    for strategy, value in iter_json_candidates(text):
        citations = normalize_assignments(value)
        if citations is not None:
            logger.debug(
                "output_parser.assignments_parsed", strategy=strategy, count=len(citations)
            )
            return citations

    logger.warning("output_parser.assignments_unparseable", text_preview=text[:200])
    raise ParseError("OpenAI response could not be parsed as note assignments JSON.")
