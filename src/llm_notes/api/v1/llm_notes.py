"""REST endpoints for LLM note generation and prompt settings.

Provides:
- POST  /api/v1/transcripts/{transcript_id}/llm-notes/generate (admin)
- GET   /api/v1/transcripts/{transcript_id}/llm-notes (admin)
- GET   /api/v1/transcripts/{transcript_id}/llm-note-prompts
- PATCH /api/v1/transcripts/{transcript_id}/llm-note-prompts

Every response carries ``success``; failures are rendered as
``{"success": false, "error": message}`` by the NoteGenerationError handler
registered in main.py. Services are accessed from ``request.app.state`` with
503 fallback when not initialized.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.llm_notes.api.deps import get_current_user, require_admin
from src.llm_notes.models.workspace import User
from src.llm_notes.notes.errors import (
    NoteGenerationError,
    NotFound,
    PersistenceError,
    ValidationError,
)
from src.llm_notes.notes.pipeline import NoteGenerationPipeline
from src.llm_notes.notes.repository import NoteRepository
from src.llm_notes.notes.schemas import PromptSettings, StoredNote, TranscriptRef

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/transcripts", tags=["llm-notes"])

_DIGITS = re.compile(r"^\d+$")

LINE_NUMBER_MESSAGE = "Line numbers must be positive whole numbers."


# ── Response Schemas ─────────────────────────────────────────────────────────


class CamelModel(BaseModel):
    """Response base serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateResponse(CamelModel):
    success: bool = True
    transcript_id: str
    notes_created: int
    note_assignments_created: int


class SettingsView(BaseModel):
    """Prompt settings as returned to the admin UI."""

    note_creation_prompt: str
    note_assignment_prompt: str
    annotate_all_lines: bool
    range_start_line: int | None = None
    range_end_line: int | None = None


class SettingsResponse(BaseModel):
    success: bool = True
    settings: SettingsView | None = None


class NoteView(CamelModel):
    note_id: str
    note_number: int
    title: str
    answer_1: str
    answer_2: str
    answer_3: str
    line_numbers: list[int] = Field(default_factory=list)


class NotesResponse(CamelModel):
    success: bool = True
    transcript_id: str
    status: str
    notes: list[NoteView] = Field(default_factory=list)


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_note_repository(request: Request) -> NoteRepository:
    """Retrieve NoteRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "note_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Note repository not initialized",
        )
    return repo


def _get_pipeline(request: Request) -> NoteGenerationPipeline:
    """Retrieve NoteGenerationPipeline from app.state, 503 if not available."""
    pipeline = getattr(request.app.state, "note_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Note generation pipeline not initialized",
        )
    return pipeline


async def _workspace_transcript(
    repository: NoteRepository, user: User, transcript_id: str
) -> TranscriptRef:
    transcript = await repository.get_transcript(str(user.workspace_id), transcript_id)
    if transcript is None:
        raise NotFound("Transcript not found.")
    return transcript


# ── Payload Parsing ──────────────────────────────────────────────────────────


def parse_line_number(value: Any) -> int | None:
    """Parse an optional positive line number from a JSON value.

    ``None`` and ``""`` mean absent. Integers, integral floats and digit
    strings are accepted; anything else (booleans included) is rejected.

    Raises:
        ValidationError: If the value is present but not a positive whole number.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(LINE_NUMBER_MESSAGE)

    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and _DIGITS.match(value.strip()):
        number = int(value.strip())
    else:
        raise ValidationError(LINE_NUMBER_MESSAGE)

    if number < 1:
        raise ValidationError(LINE_NUMBER_MESSAGE)
    return number


def parse_settings_payload(payload: Any) -> PromptSettings:
    """Validate a prompt settings update body.

    Expected keys: ``scope`` ("all" | "range"), ``startLine``, ``endLine``,
    ``noteCreationPrompt``, ``noteAssignmentPrompt``.

    Raises:
        ValidationError: With a message describing the first problem found.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body is required.")

    creation_prompt = payload.get("noteCreationPrompt")
    assignment_prompt = payload.get("noteAssignmentPrompt")
    if not isinstance(creation_prompt, str) or not isinstance(assignment_prompt, str):
        raise ValidationError("Note creation and note assignment prompts must be text values.")

    scope = payload.get("scope")
    if scope not in ("all", "range"):
        raise ValidationError('Scope must be either "all" or "range".')

    start_line = parse_line_number(payload.get("startLine"))
    end_line = parse_line_number(payload.get("endLine"))

    if scope == "all":
        return PromptSettings(
            note_creation_prompt=creation_prompt,
            note_assignment_prompt=assignment_prompt,
            annotate_all_lines=True,
        )

    if start_line is None or end_line is None:
        raise ValidationError("Start and end lines are required when range mode is selected.")
    if start_line > end_line:
        raise ValidationError("Start line cannot be greater than end line.")

    return PromptSettings(
        note_creation_prompt=creation_prompt,
        note_assignment_prompt=assignment_prompt,
        annotate_all_lines=False,
        range_start_line=start_line,
        range_end_line=end_line,
    )


def _settings_view(settings: PromptSettings | None) -> SettingsView | None:
    if settings is None:
        return None
    return SettingsView(
        note_creation_prompt=settings.note_creation_prompt,
        note_assignment_prompt=settings.note_assignment_prompt,
        annotate_all_lines=settings.annotate_all_lines,
        range_start_line=settings.range_start_line,
        range_end_line=settings.range_end_line,
    )


def _note_view(note: StoredNote) -> NoteView:
    return NoteView(
        note_id=note.note_id,
        note_number=note.note_number,
        title=note.title,
        answer_1=note.answer_1,
        answer_2=note.answer_2,
        answer_3=note.answer_3,
        line_numbers=note.line_numbers,
    )


# ── Generation ───────────────────────────────────────────────────────────────


@router.post("/{transcript_id}/llm-notes/generate", response_model=GenerateResponse)
async def generate_llm_notes(
    transcript_id: str,
    request: Request,
    user: User = Depends(require_admin),
) -> GenerateResponse:
    """Generate LLM notes and line assignments for a transcript."""
    pipeline = _get_pipeline(request)
    transcript_id = transcript_id.strip()

    try:
        result = await pipeline.generate(str(user.workspace_id), transcript_id)
    except NoteGenerationError:
        raise
    except Exception as exc:
        logger.error(
            "llm_notes.generate_failed",
            transcript_id=transcript_id,
            user_id=str(user.id),
            exc_info=True,
        )
        raise NoteGenerationError("Unable to generate LLM notes right now.") from exc

    return GenerateResponse(
        transcript_id=result.transcript_id,
        notes_created=result.notes_created,
        note_assignments_created=result.note_assignments_created,
    )


@router.get("/{transcript_id}/llm-notes", response_model=NotesResponse)
async def list_llm_notes(
    transcript_id: str,
    request: Request,
    user: User = Depends(require_admin),
) -> NotesResponse:
    """List generated notes with their assigned line numbers."""
    repository = _get_note_repository(request)
    transcript = await _workspace_transcript(repository, user, transcript_id.strip())
    notes = await repository.list_generated_notes(transcript.id)
    return NotesResponse(
        transcript_id=transcript.id,
        status=transcript.llm_annotation.value,
        notes=[_note_view(n) for n in notes],
    )


# ── Prompt Settings ──────────────────────────────────────────────────────────


@router.get("/{transcript_id}/llm-note-prompts", response_model=SettingsResponse)
async def get_llm_note_prompts(
    transcript_id: str,
    request: Request,
    user: User = Depends(get_current_user),
) -> SettingsResponse:
    """Return the effective (most recently saved) prompt settings."""
    repository = _get_note_repository(request)
    transcript = await _workspace_transcript(repository, user, transcript_id.strip())
    settings = await repository.get_latest_prompt_settings(transcript.id)
    return SettingsResponse(settings=_settings_view(settings))


@router.patch("/{transcript_id}/llm-note-prompts", response_model=SettingsResponse)
async def update_llm_note_prompts(
    transcript_id: str,
    request: Request,
    user: User = Depends(get_current_user),
) -> SettingsResponse:
    """Save new prompt settings; earlier rows are kept as history."""
    repository = _get_note_repository(request)
    transcript = await _workspace_transcript(repository, user, transcript_id.strip())

    try:
        payload = await request.json()
    except ValueError:
        payload = None
    settings = parse_settings_payload(payload)

    try:
        saved = await repository.save_prompt_settings(transcript.id, str(user.id), settings)
    except PersistenceError as exc:
        raise PersistenceError("Unable to save LLM note prompt settings right now.") from exc

    logger.info(
        "llm_notes.prompt_settings_updated",
        transcript_id=transcript.id,
        user_id=str(user.id),
        annotate_all_lines=saved.annotate_all_lines,
    )
    return SettingsResponse(settings=_settings_view(saved))
