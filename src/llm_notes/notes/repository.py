"""Note repository -- async reads and the transactional note writer.

Provides NoteRepository with the session_factory callable pattern. Handles
serialization between SQLAlchemy models and the Pydantic schemas used by the
generation pipeline and the API.

``commit_generated_notes`` is the only writer of generated notes: numbering,
note inserts, assignment inserts, the LLM note recount and the final status
update all happen in one transaction, so a failed commit leaves no partial
notes behind.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.llm_notes.models.transcript import Transcript, TranscriptLine
from src.llm_notes.models.workspace import User
from src.llm_notes.notes.errors import PersistenceError
from src.llm_notes.notes.ids import parse_uuid
from src.llm_notes.notes.models import NoteAssignmentModel, NoteModel, NotePromptModel
from src.llm_notes.notes.schemas import (
    AnnotationStatus,
    GeneratedNote,
    GenerationResult,
    NoteSource,
    PromptLine,
    PromptSettings,
    StoredNote,
    TranscriptRef,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_transcript(model: Transcript) -> TranscriptRef:
    """Convert Transcript to TranscriptRef schema."""
    return TranscriptRef(
        id=str(model.id),
        workspace_id=str(model.workspace_id),
        title=model.title or "",
        llm_annotation=AnnotationStatus(model.llm_annotation),
    )


def _model_to_settings(model: NotePromptModel) -> PromptSettings:
    """Convert NotePromptModel to PromptSettings schema."""
    return PromptSettings(
        note_creation_prompt=model.note_creation_prompt,
        note_assignment_prompt=model.note_assignment_prompt,
        annotate_all_lines=model.annotate_all_lines,
        range_start_line=model.range_start_line,
        range_end_line=model.range_end_line,
        created_at=model.created_at,
    )


def _status_for_count(llm_note_count: int) -> AnnotationStatus:
    if llm_note_count > 0:
        return AnnotationStatus.GENERATED
    return AnnotationStatus.NOT_GENERATED


def _assignment_insert(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert(NoteAssignmentModel)
    return postgresql.insert(NoteAssignmentModel)


# ── Repository ──────────────────────────────────────────────────────────────


class NoteRepository:
    """Async data access for transcripts, prompt settings and generated notes.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Transcripts ──────────────────────────────────────────────────────

    async def get_transcript(
        self, workspace_id: str, transcript_id: str
    ) -> TranscriptRef | None:
        """Get a transcript within a workspace.

        Returns:
            TranscriptRef if found in the workspace, None otherwise (including
            malformed ids).
        """
        workspace_uuid = parse_uuid(workspace_id)
        transcript_uuid = parse_uuid(transcript_id)
        if workspace_uuid is None or transcript_uuid is None:
            return None

        async for session in self._session_factory():
            stmt = select(Transcript).where(
                Transcript.id == transcript_uuid,
                Transcript.workspace_id == workspace_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_transcript(model)
        return None

    async def load_prompt_lines(
        self, transcript_id: str, line_range: tuple[int, int] | None = None
    ) -> list[PromptLine]:
        """Load the lines eligible for annotation, ordered by line number.

        Args:
            transcript_id: Transcript UUID string.
            line_range: Inclusive (start, end) bounds, or None for all lines.

        Returns:
            PromptLine objects; lines with blank utterances are skipped.
        """
        stmt = select(
            TranscriptLine.line_id,
            TranscriptLine.line,
            TranscriptLine.speaker,
            TranscriptLine.utterance,
        ).where(TranscriptLine.transcript_id == uuid.UUID(transcript_id))
        if line_range is not None:
            start, end = line_range
            stmt = stmt.where(TranscriptLine.line >= start, TranscriptLine.line <= end)
        stmt = stmt.order_by(TranscriptLine.line.asc())

        async for session in self._session_factory():
            result = await session.execute(stmt)
            lines = []
            for line_id, line_number, speaker, utterance in result.all():
                prompt_line = PromptLine.from_row(str(line_id), line_number, speaker, utterance)
                if prompt_line is not None:
                    lines.append(prompt_line)
            return lines
        return []

    # ── Users ────────────────────────────────────────────────────────────

    async def get_system_user_id(self, workspace_id: str, username: str) -> str | None:
        """Find the id of the workspace's system user by username."""
        async for session in self._session_factory():
            stmt = select(User.id).where(
                User.workspace_id == uuid.UUID(workspace_id),
                User.username == username,
            )
            result = await session.execute(stmt)
            user_id = result.scalar_one_or_none()
            return str(user_id) if user_id is not None else None
        return None

    # ── Prompt Settings ──────────────────────────────────────────────────

    async def get_latest_prompt_settings(self, transcript_id: str) -> PromptSettings | None:
        """Get the most recently saved prompt settings for a transcript."""
        async for session in self._session_factory():
            stmt = (
                select(NotePromptModel)
                .where(NotePromptModel.transcript_id == uuid.UUID(transcript_id))
                .order_by(NotePromptModel.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_settings(model)
        return None

    async def save_prompt_settings(
        self, transcript_id: str, created_by: str, settings: PromptSettings
    ) -> PromptSettings:
        """Append a new prompt settings row; it becomes the effective one.

        Raises:
            PersistenceError: If the insert fails.
        """
        async for session in self._session_factory():
            model = NotePromptModel(
                transcript_id=uuid.UUID(transcript_id),
                created_by=uuid.UUID(created_by),
                note_creation_prompt=settings.note_creation_prompt,
                note_assignment_prompt=settings.note_assignment_prompt,
                annotate_all_lines=settings.annotate_all_lines,
                range_start_line=settings.range_start_line,
                range_end_line=settings.range_end_line,
            )
            session.add(model)
            try:
                await session.commit()
                await session.refresh(model)
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "prompt_settings.save_failed", transcript_id=transcript_id, exc_info=True
                )
                raise PersistenceError("Failed to save LLM note prompt settings.") from exc

            logger.info(
                "prompt_settings.saved",
                transcript_id=transcript_id,
                annotate_all_lines=model.annotate_all_lines,
            )
            return _model_to_settings(model)
        raise PersistenceError("Failed to save LLM note prompt settings.")

    # ── Generated Notes ──────────────────────────────────────────────────

    async def commit_generated_notes(
        self,
        transcript_id: str,
        author_id: str,
        notes: Sequence[GeneratedNote],
        line_ids_by_note: Sequence[Sequence[str]],
    ) -> GenerationResult:
        """Persist generated notes and their assignments in one transaction.

        Notes are numbered from max(note_number) + 1 for the (transcript,
        author) pair, in model output order. Duplicate (note, line) pairs are
        ignored. The transcript status is derived from a fresh count of LLM
        notes on the transcript.

        Args:
            transcript_id: Transcript UUID string.
            author_id: The workspace system user's UUID string.
            notes: Generated notes in model output order.
            line_ids_by_note: Resolved line ids, parallel to ``notes``.

        Returns:
            GenerationResult with created counts and the final status.

        Raises:
            PersistenceError: If any statement fails; nothing is kept.
        """
        transcript_uuid = uuid.UUID(transcript_id)
        author_uuid = uuid.UUID(author_id)

        async for session in self._session_factory():
            try:
                max_number = await session.scalar(
                    select(func.max(NoteModel.note_number)).where(
                        NoteModel.transcript_id == transcript_uuid,
                        NoteModel.user_id == author_uuid,
                    )
                )
                next_number = (max_number or 0) + 1

                assignments_created = 0
                for index, note in enumerate(notes):
                    model = NoteModel(
                        note_id=uuid.uuid4(),
                        user_id=author_uuid,
                        transcript_id=transcript_uuid,
                        note_number=next_number + index,
                        title=note.title,
                        q1=note.answer_1,
                        q2=note.answer_2,
                        q3=note.answer_3,
                        source=NoteSource.LLM.value,
                    )
                    session.add(model)
                    await session.flush()

                    line_ids = line_ids_by_note[index] if index < len(line_ids_by_note) else []
                    rows = [
                        {"note_id": model.note_id, "line_id": uuid.UUID(line_id)}
                        for line_id in dict.fromkeys(line_ids)
                    ]
                    if not rows:
                        continue
                    stmt = _assignment_insert(session).values(rows).on_conflict_do_nothing()
                    result = await session.execute(stmt)
                    assignments_created += max(result.rowcount or 0, 0)

                llm_note_count = await session.scalar(
                    select(func.count())
                    .select_from(NoteModel)
                    .where(
                        NoteModel.transcript_id == transcript_uuid,
                        NoteModel.source == NoteSource.LLM.value,
                    )
                )
                status = _status_for_count(llm_note_count or 0)
                await session.execute(
                    update(Transcript)
                    .where(Transcript.id == transcript_uuid)
                    .values(llm_annotation=status.value)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "notes.commit_failed", transcript_id=transcript_id, exc_info=True
                )
                raise PersistenceError() from exc

            logger.info(
                "notes.committed",
                transcript_id=transcript_id,
                notes_created=len(notes),
                note_assignments_created=assignments_created,
                status=status.value,
            )
            return GenerationResult(
                transcript_id=transcript_id,
                notes_created=len(notes),
                note_assignments_created=assignments_created,
                status=status,
            )
        raise PersistenceError()

    async def list_generated_notes(self, transcript_id: str) -> list[StoredNote]:
        """List LLM-generated notes for a transcript with their line numbers.

        Returns:
            StoredNote objects ordered by note_number; line numbers ascending.
        """
        transcript_uuid = uuid.UUID(transcript_id)
        async for session in self._session_factory():
            notes_result = await session.execute(
                select(NoteModel)
                .where(
                    NoteModel.transcript_id == transcript_uuid,
                    NoteModel.source == NoteSource.LLM.value,
                )
                .order_by(NoteModel.note_number.asc())
            )
            models = notes_result.scalars().all()
            if not models:
                return []

            lines_result = await session.execute(
                select(NoteAssignmentModel.note_id, TranscriptLine.line)
                .join(TranscriptLine, TranscriptLine.line_id == NoteAssignmentModel.line_id)
                .where(NoteAssignmentModel.note_id.in_([m.note_id for m in models]))
            )
            line_numbers: dict[uuid.UUID, list[int]] = {}
            for note_id, line_number in lines_result.all():
                line_numbers.setdefault(note_id, []).append(line_number)

            return [
                StoredNote(
                    note_id=str(m.note_id),
                    note_number=m.note_number,
                    title=m.title,
                    answer_1=m.q1,
                    answer_2=m.q2,
                    answer_3=m.q3,
                    line_numbers=sorted(line_numbers.get(m.note_id, [])),
                )
                for m in models
            ]
        return []
