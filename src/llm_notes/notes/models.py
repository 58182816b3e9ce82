"""Note persistence models -- prompt settings, notes, and note assignments.

Three SQLAlchemy models:
- NotePromptModel: Per-transcript prompt configuration (append-only; latest row wins)
- NoteModel: A note authored by a user or generated by the LLM pipeline
- NoteAssignmentModel: Link from a note to a supporting transcript line

Generated notes are written only by NoteRepository.commit_generated_notes and
are never updated afterwards.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.llm_notes.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotePromptModel(Base):
    """Prompt configuration used to generate notes for one transcript.

    Saving settings inserts a new row, so the history of prompts is kept and
    the most recently created row is the effective configuration.
    """

    __tablename__ = "llm_note_prompts"
    __table_args__ = (
        Index("ix_llm_note_prompts_transcript_created", "transcript_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transcript_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    note_creation_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    note_assignment_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    annotate_all_lines: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    range_start_line: Mapped[int | None] = mapped_column(Integer, nullable=True)
    range_end_line: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=_utcnow,
    )


class NoteModel(Base):
    """A note about a transcript with a title and three answer fields."""

    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_transcript_user_number", "transcript_id", "user_id", "note_number"),
    )

    note_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    transcript_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
    )
    note_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    q1: Mapped[str] = mapped_column(Text, nullable=False)
    q2: Mapped[str] = mapped_column(Text, nullable=False)
    q3: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), default="user", server_default=text("'user'"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class NoteAssignmentModel(Base):
    """Association of a note with a transcript line; unique per pair."""

    __tablename__ = "note_assignments"

    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("notes.note_id", ondelete="CASCADE"),
        primary_key=True,
    )
    line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transcript_lines.line_id", ondelete="CASCADE"),
        primary_key=True,
    )
