"""Per-workspace LLM annotation quota reservation.

The reservation is one conditional UPDATE ... RETURNING, so concurrent
requests for the same workspace are serialized by the database row lock and
``llm_annotation_used`` can never pass ``llm_annotation_limit``. Quota is
consumed on attempt; there is no release.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.llm_notes.models.workspace import Workspace
from src.llm_notes.notes.errors import NotFound, PersistenceError
from src.llm_notes.notes.ids import parse_uuid
from src.llm_notes.notes.schemas import UsageReservation

logger = structlog.get_logger(__name__)


class QuotaReserver:
    """Atomically consumes one unit of a workspace's LLM annotation quota.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def reserve(self, workspace_id: str) -> UsageReservation | None:
        """Increment usage by one if it is below the limit.

        Args:
            workspace_id: Workspace UUID string.

        Returns:
            The updated usage, or None when the quota is exhausted.

        Raises:
            NotFound: If the workspace id is malformed or unknown.
            PersistenceError: If the update itself fails.
        """
        workspace_uuid = parse_uuid(workspace_id)
        if workspace_uuid is None:
            raise NotFound("Workspace not found.")

        stmt = (
            update(Workspace)
            .where(
                Workspace.id == workspace_uuid,
                Workspace.llm_annotation_used < Workspace.llm_annotation_limit,
            )
            .values(llm_annotation_used=Workspace.llm_annotation_used + 1)
            .returning(Workspace.llm_annotation_used, Workspace.llm_annotation_limit)
            .execution_options(synchronize_session=False)
        )

        async for session in self._session_factory():
            try:
                result = await session.execute(stmt)
                row = result.one_or_none()
                await session.commit()
                workspace_found = row is not None
                if not workspace_found:
                    found_id = await session.scalar(
                        select(Workspace.id).where(Workspace.id == workspace_uuid)
                    )
                    workspace_found = found_id is not None
            except SQLAlchemyError as exc:
                logger.error(
                    "quota.reserve_failed", workspace_id=workspace_id, exc_info=True
                )
                raise PersistenceError("Unable to reserve LLM annotation usage.") from exc

            if not workspace_found:
                raise NotFound("Workspace not found.")

            if row is None:
                logger.info("quota.exhausted", workspace_id=workspace_id)
                return None

            reservation = UsageReservation(used=row[0], limit=row[1])
            logger.info(
                "quota.reserved",
                workspace_id=workspace_id,
                used=reservation.used,
                limit=reservation.limit,
            )
            return reservation
        return None
