"""Prompt composition for note creation and note assignment calls.

The stored per-transcript prompt is combined with a static boilerplate
suffix loaded from the prompts directory, then the transcript (and, for
assignment calls, the note) JSON is substituted into ``<<transcript>>`` /
``<<note>>`` placeholders or appended as labeled sections when a
placeholder is absent.

Exports:
    NOTE_RESPONSE_SCHEMA: JSON schema for the note creation response.
    NOTE_ASSIGNMENT_RESPONSE_SCHEMA: JSON schema for the assignment response.
    PromptBoilerplate: Static prompt suffixes loaded once at startup.
    load_prompt_boilerplate: Read the static suffixes from disk.
    join_template: Combine a stored prompt with its static suffix.
    serialize_transcript: JSON payload of the lines in scope.
    serialize_note: JSON payload of one generated note.
    compose_creation_prompt: Final prompt for the note creation call.
    compose_assignment_prompt: Final prompt for one note assignment call.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

from src.llm_notes.notes.schemas import GeneratedNote, PromptLine

logger = structlog.get_logger(__name__)

TRANSCRIPT_PLACEHOLDER = "<<transcript>>"
NOTE_PLACEHOLDER = "<<note>>"

CREATION_BOILERPLATE_FILE = "note_creation_prompt_part_2_static.md"
ASSIGNMENT_BOILERPLATE_FILE = "note_assignment_prompt_part_2_static.md"


# ── Output Schemas ─────────────────────────────────────────────────────────


_NOTE_ARRAY_SCHEMA: dict = {
    "type": "array",
    "items": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "title": {"type": "string"},
            "answer_1": {"type": "string"},
            "answer_2": {"type": "string"},
            "answer_3": {"type": "string"},
        },
        "required": ["title", "answer_1", "answer_2", "answer_3"],
    },
}

NOTE_RESPONSE_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "properties": {"notes": _NOTE_ARRAY_SCHEMA},
    "required": ["notes"],
}

_NOTE_ASSIGNMENT_ARRAY_SCHEMA: dict = {
    "type": "array",
    "items": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "line_number": {"type": "integer"},
            "speaker": {"type": "string"},
            "utterance": {"type": "string"},
        },
        "required": ["line_number", "speaker", "utterance"],
    },
}

NOTE_ASSIGNMENT_RESPONSE_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "properties": {"assignments": _NOTE_ASSIGNMENT_ARRAY_SCHEMA},
    "required": ["assignments"],
}


# ── Static Boilerplate ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PromptBoilerplate:
    """Static prompt suffixes appended to the stored per-transcript prompts."""

    creation: str = ""
    assignment: str = ""


def load_prompt_boilerplate(prompts_dir: Path) -> PromptBoilerplate:
    """Read the static creation and assignment suffixes from ``prompts_dir``.

    Raises:
        OSError: If either file cannot be read.
    """
    creation = (prompts_dir / CREATION_BOILERPLATE_FILE).read_text(encoding="utf-8")
    assignment = (prompts_dir / ASSIGNMENT_BOILERPLATE_FILE).read_text(encoding="utf-8")
    logger.info(
        "prompts.boilerplate_loaded",
        prompts_dir=str(prompts_dir),
        creation_chars=len(creation),
        assignment_chars=len(assignment),
    )
    return PromptBoilerplate(creation=creation, assignment=assignment)


# ── Prompt Builders ────────────────────────────────────────────────────────


def join_template(stored_prompt: str, boilerplate: str) -> str:
    """Join the stored prompt and static suffix with a blank line, skipping empties."""
    parts = [stored_prompt.strip(), boilerplate.strip()]
    return "\n\n".join(part for part in parts if part)


def serialize_transcript(lines: Iterable[PromptLine]) -> str:
    """Serialize prompt lines as the JSON array the model sees (ids excluded)."""
    payload = [
        {
            "line_number": line.line_number,
            "speaker": line.speaker,
            "utterance": line.utterance,
        }
        for line in lines
    ]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def serialize_note(note: GeneratedNote) -> str:
    """Serialize one generated note for the assignment prompt."""
    return json.dumps(note.model_dump(), indent=2, ensure_ascii=False)


def compose_creation_prompt(template: str, transcript_json: str) -> str:
    """Build the note creation prompt.

    Every ``<<transcript>>`` occurrence is replaced; without the placeholder
    the transcript is appended under a ``Transcript:`` heading.
    """
    if TRANSCRIPT_PLACEHOLDER in template:
        return template.replace(TRANSCRIPT_PLACEHOLDER, transcript_json)
    return f"{template}\n\nTranscript:\n{transcript_json}"


def compose_assignment_prompt(template: str, transcript_json: str, note_json: str) -> str:
    """Build the assignment prompt for a single note.

    ``<<transcript>>`` and ``<<note>>`` are handled independently: present
    placeholders are substituted, absent ones get an appended section.
    """
    has_transcript = TRANSCRIPT_PLACEHOLDER in template
    has_note = NOTE_PLACEHOLDER in template

    prompt = template
    if has_transcript:
        prompt = prompt.replace(TRANSCRIPT_PLACEHOLDER, transcript_json)
    if has_note:
        prompt = prompt.replace(NOTE_PLACEHOLDER, note_json)

    sections = [prompt]
    if not has_transcript:
        sections.append(f"Transcript:\n{transcript_json}")
    if not has_note:
        sections.append(f"Open Ended Note JSON:\n{note_json}")

    return "\n\n".join(section for section in sections if section)
