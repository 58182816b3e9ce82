"""Pydantic v2 schemas for the LLM note generation domain.

Defines the data contracts shared by the pipeline components: prompt
settings, the transcript lines sent to the model, generated notes, cited
lines, quota reservations, and the generation result.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.llm_notes.notes.errors import ValidationError

UNKNOWN_SPEAKER = "Unknown speaker"


# ── Enums ────────────────────────────────────────────────────────────────────


class AnnotationStatus(str, Enum):
    """Transcript-level LLM generation lifecycle marker."""

    NOT_GENERATED = "not_generated"
    IN_PROCESS = "in_process"
    GENERATED = "generated"


class NoteSource(str, Enum):
    """Who authored a note."""

    USER = "user"
    LLM = "llm"


# ── Transcript Reference ─────────────────────────────────────────────────────


class TranscriptRef(BaseModel):
    """Minimal view of a transcript used for access checks and status."""

    id: str
    workspace_id: str
    title: str = ""
    llm_annotation: AnnotationStatus = AnnotationStatus.NOT_GENERATED


# ── Prompt Settings ──────────────────────────────────────────────────────────


class PromptSettings(BaseModel):
    """Stored prompt configuration for one transcript."""

    note_creation_prompt: str
    note_assignment_prompt: str
    annotate_all_lines: bool = True
    range_start_line: int | None = None
    range_end_line: int | None = None
    created_at: datetime | None = None

    def line_range(self) -> tuple[int, int] | None:
        """Return the inclusive (start, end) line range, or None for all lines.

        Raises:
            ValidationError: If range mode is selected but a bound is missing
                or the start line is greater than the end line.
        """
        if self.annotate_all_lines:
            return None
        if self.range_start_line is None or self.range_end_line is None:
            raise ValidationError("Line range settings are incomplete for this transcript.")
        if self.range_start_line > self.range_end_line:
            raise ValidationError("Start line cannot be greater than end line.")
        return self.range_start_line, self.range_end_line


# ── Transcript Lines ─────────────────────────────────────────────────────────


class PromptLine(BaseModel):
    """A transcript line eligible for annotation, as sent to the model."""

    line_id: str
    line_number: int
    speaker: str = UNKNOWN_SPEAKER
    utterance: str

    @classmethod
    def from_row(
        cls, line_id: str, line_number: int, speaker: str | None, utterance: str | None
    ) -> PromptLine | None:
        """Build a prompt line from raw columns; None when the utterance is blank."""
        text = (utterance or "").strip()
        if not text:
            return None
        return cls(
            line_id=line_id,
            line_number=line_number,
            speaker=(speaker or "").strip() or UNKNOWN_SPEAKER,
            utterance=text,
        )


# ── Model Output ─────────────────────────────────────────────────────────────


class GeneratedNote(BaseModel):
    """A note produced by the creation call."""

    title: str
    answer_1: str
    answer_2: str
    answer_3: str


class CitedLine(BaseModel):
    """A line the model cited as supporting a note."""

    line_number: int = Field(gt=0)
    speaker: str = ""
    utterance: str = ""


# ── Quota & Results ──────────────────────────────────────────────────────────


class UsageReservation(BaseModel):
    """Workspace usage after a successful reservation."""

    used: int
    limit: int


class GenerationResult(BaseModel):
    """Outcome of a committed generation run."""

    transcript_id: str
    notes_created: int
    note_assignments_created: int
    status: AnnotationStatus


class StoredNote(BaseModel):
    """A persisted generated note with the line numbers assigned to it."""

    note_id: str
    note_number: int
    title: str
    answer_1: str
    answer_2: str
    answer_3: str
    line_numbers: list[int] = Field(default_factory=list)
