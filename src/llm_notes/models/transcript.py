"""Transcript and transcript line models.

Rows here are written by the ingestion collaborator; the note pipeline only
reads lines and updates ``Transcript.llm_annotation``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.llm_notes.core.database import Base


class Transcript(Base):
    """A transcript belonging to a workspace, with its LLM annotation status."""

    __tablename__ = "transcripts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    llm_annotation: Mapped[str] = mapped_column(
        String(50),
        default="not_generated",
        server_default=text("'not_generated'"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TranscriptLine(Base):
    """A single numbered utterance within a transcript."""

    __tablename__ = "transcript_lines"

    line_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transcript_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line: Mapped[int] = mapped_column(Integer, nullable=False)
    speaker: Mapped[str | None] = mapped_column(String(200), nullable=True)
    utterance: Mapped[str | None] = mapped_column(Text, nullable=True)
