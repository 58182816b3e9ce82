"""Test fixtures for the LLM notes service.

Provides:
- A file-backed SQLite (aiosqlite) engine per test with all tables created
- A session_factory matching the repository constructor contract
- seed(): workspace, admin, annotator, llm-system user, transcript,
  lines and prompt settings in one call
- auth_headers / workspace_usage / transcript_status helper fixtures
- fake_client: factory for a scripted stand-in for ModelClient
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import src.llm_notes.models.transcript  # noqa: F401
import src.llm_notes.models.workspace  # noqa: F401
import src.llm_notes.notes.models  # noqa: F401
from src.llm_notes.core.database import Base
from src.llm_notes.core.security import create_access_token
from src.llm_notes.models.transcript import Transcript, TranscriptLine
from src.llm_notes.models.workspace import User, Workspace
from src.llm_notes.notes.models import NotePromptModel

DEFAULT_LINES = [
    (1, "Alice", "We should start with the budget review."),
    (2, "Bob", "The budget is over by ten percent."),
    (3, "Alice", "Then we need to cut travel costs."),
]


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """SQLite engine on a temp file with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'llm_notes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> Callable[..., AsyncGenerator[AsyncSession, None]]:
    """Async-generator session factory bound to the test engine."""

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(db_engine, expire_on_commit=False) as session:
            yield session

    return _factory


# ── Seed Data ────────────────────────────────────────────────────────────────


@dataclass
class Seeded:
    """Identifiers of rows created by the seed fixture."""

    workspace_id: str
    admin_id: str
    annotator_id: str
    system_user_id: str | None
    transcript_id: str
    line_ids: dict[int, str] = field(default_factory=dict)


async def _seed_transcript(
    session_factory,
    *,
    limit: int = 5,
    used: int = 0,
    lines: list[tuple[int, str | None, str | None]] | None = None,
    annotate_all_lines: bool | None = True,
    range_start_line: int | None = None,
    range_end_line: int | None = None,
    with_system_user: bool = True,
) -> Seeded:
    """Create a workspace with one transcript ready for generation.

    Pass ``annotate_all_lines=None`` to skip creating prompt settings.
    """
    lines = DEFAULT_LINES if lines is None else lines
    async for session in session_factory():
        workspace = Workspace(
            id=uuid.uuid4(),
            name="Test Workspace",
            llm_annotation_used=used,
            llm_annotation_limit=limit,
        )
        admin = User(id=uuid.uuid4(), workspace_id=workspace.id, username="admin", role="admin")
        annotator = User(
            id=uuid.uuid4(), workspace_id=workspace.id, username="annotator", role="annotator"
        )
        transcript = Transcript(id=uuid.uuid4(), workspace_id=workspace.id, title="Standup")
        session.add(workspace)
        session.add_all([admin, annotator, transcript])

        system_user = None
        if with_system_user:
            system_user = User(
                id=uuid.uuid4(), workspace_id=workspace.id, username="llm-system", role="system"
            )
            session.add(system_user)

        line_ids: dict[int, str] = {}
        for number, speaker, utterance in lines:
            line = TranscriptLine(
                line_id=uuid.uuid4(),
                transcript_id=transcript.id,
                line=number,
                speaker=speaker,
                utterance=utterance,
            )
            session.add(line)
            line_ids.setdefault(number, str(line.line_id))

        if annotate_all_lines is not None:
            session.add(
                NotePromptModel(
                    transcript_id=transcript.id,
                    created_by=admin.id,
                    note_creation_prompt="Write notes about <<transcript>>",
                    note_assignment_prompt="Find lines for <<note>> in <<transcript>>",
                    annotate_all_lines=annotate_all_lines,
                    range_start_line=range_start_line,
                    range_end_line=range_end_line,
                )
            )

        await session.commit()
        return Seeded(
            workspace_id=str(workspace.id),
            admin_id=str(admin.id),
            annotator_id=str(annotator.id),
            system_user_id=str(system_user.id) if system_user else None,
            transcript_id=str(transcript.id),
            line_ids=line_ids,
        )
    raise RuntimeError("session factory yielded no session")


async def _fetch_workspace(session_factory, workspace_id: str) -> Workspace:
    async for session in session_factory():
        result = await session.execute(
            select(Workspace).where(Workspace.id == uuid.UUID(workspace_id))
        )
        return result.scalar_one()
    raise RuntimeError("session factory yielded no session")


async def _fetch_transcript_status(session_factory, transcript_id: str) -> str:
    async for session in session_factory():
        result = await session.execute(
            select(Transcript.llm_annotation).where(Transcript.id == uuid.UUID(transcript_id))
        )
        return result.scalar_one()
    raise RuntimeError("session factory yielded no session")


def _auth_headers(user_id: str, workspace_id: str | None = None) -> dict[str, str]:
    """Bearer headers carrying an access token for ``user_id``."""
    data = {"sub": user_id}
    if workspace_id:
        data["workspace_id"] = workspace_id
    token = create_access_token(data, expires_delta=timedelta(minutes=5))
    return {"Authorization": f"Bearer {token}"}


# ── Model Client Double ──────────────────────────────────────────────────────


class FakeModelClient:
    """Scripted ModelClient: returns queued outputs per schema name.

    Each queued item is either a string (returned) or an exception (raised).
    Calls are recorded as (schema_name, input) tuples.
    """

    def __init__(
        self,
        notes: list | None = None,
        assignments: list | None = None,
        configured: bool = True,
    ) -> None:
        self._queues = {
            "llm_generated_notes": list(notes or []),
            "llm_generated_note_assignments": list(assignments or []),
        }
        self._configured = configured
        self.calls: list[tuple[str, str]] = []
        self.model = "fake-model"

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def request_json(self, input, schema_name, schema, failure_message="failed"):
        self.calls.append((schema_name, input))
        queue = self._queues[schema_name]
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


# ── Helper Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def seed(session_factory):
    """Async callable creating a seeded transcript; kwargs as _seed_transcript."""

    async def _seed(**kwargs) -> Seeded:
        return await _seed_transcript(session_factory, **kwargs)

    return _seed


@pytest_asyncio.fixture
async def workspace_usage(session_factory):
    """Async callable returning llm_annotation_used for a workspace."""

    async def _usage(workspace_id: str) -> int:
        workspace = await _fetch_workspace(session_factory, workspace_id)
        return workspace.llm_annotation_used

    return _usage


@pytest_asyncio.fixture
async def transcript_status(session_factory):
    """Async callable returning the stored llm_annotation for a transcript."""

    async def _status(transcript_id: str) -> str:
        return await _fetch_transcript_status(session_factory, transcript_id)

    return _status


@pytest.fixture
def auth_headers():
    """Callable building Bearer headers for a user id."""
    return _auth_headers


@pytest.fixture
def fake_client():
    """Factory for FakeModelClient instances."""
    return FakeModelClient
