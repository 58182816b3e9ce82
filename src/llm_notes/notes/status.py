"""Transcript LLM annotation status tracking.

``set_status`` is a strict write used when entering ``in_process``.
``try_set_status`` is the best-effort variant used on rollback paths: a
failed rollback write is logged and reported as ``False`` so it never
masks the error that triggered the rollback.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.llm_notes.models.transcript import Transcript
from src.llm_notes.notes.errors import NotFound, PersistenceError
from src.llm_notes.notes.ids import parse_uuid
from src.llm_notes.notes.schemas import AnnotationStatus

logger = structlog.get_logger(__name__)


class StatusTracker:
    """Reads and writes ``transcripts.llm_annotation``.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def set_status(self, transcript_id: str, status: AnnotationStatus) -> None:
        """Persist a new status for the transcript.

        Raises:
            NotFound: If the transcript does not exist.
            PersistenceError: If the update fails.
        """
        transcript_uuid = parse_uuid(transcript_id)
        if transcript_uuid is None:
            raise NotFound("Transcript not found.")

        stmt = (
            update(Transcript)
            .where(Transcript.id == transcript_uuid)
            .values(llm_annotation=status.value)
            .execution_options(synchronize_session=False)
        )
        async for session in self._session_factory():
            try:
                result = await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to update LLM annotation status.") from exc
            if result.rowcount == 0:
                raise NotFound("Transcript not found.")

        logger.info("status.updated", transcript_id=transcript_id, status=status.value)

    async def try_set_status(self, transcript_id: str, status: AnnotationStatus) -> bool:
        """Best-effort status write; logs and returns False on any failure."""
        try:
            await self.set_status(transcript_id, status)
        except Exception:
            logger.error(
                "status.update_failed",
                transcript_id=transcript_id,
                status=status.value,
                exc_info=True,
            )
            return False
        return True
