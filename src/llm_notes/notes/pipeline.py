"""LLM note generation pipeline -- orchestrates one generation run.

Flow for a single run:
1. Load transcript, prompt settings, lines in scope and the llm-system author
   (no side effects; any failure here leaves quota and status untouched)
2. Reserve one unit of workspace quota
3. Mark the transcript ``in_process``
4. Note creation call, then parse the notes
5. One assignment call per note, concurrently; citations resolved to line ids
6. Commit notes, assignments and the recounted final status in one transaction

Failures during steps 4-6 roll the status back to ``not_generated`` on a
best-effort basis and re-raise the original error; a failed commit leaves no
notes behind, so the status matches the persisted data. Quota is never
refunded.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import structlog

from src.llm_notes.core.monitoring import record_generation_outcome
from src.llm_notes.notes.client import ModelClient
from src.llm_notes.notes.errors import (
    ConfigurationError,
    NoteGenerationError,
    NotFound,
    QuotaExceeded,
    ValidationError,
)
from src.llm_notes.notes.parser import parse_assignments, parse_notes
from src.llm_notes.notes.prompts import (
    NOTE_ASSIGNMENT_RESPONSE_SCHEMA,
    NOTE_RESPONSE_SCHEMA,
    PromptBoilerplate,
    compose_assignment_prompt,
    compose_creation_prompt,
    join_template,
    serialize_note,
    serialize_transcript,
)
from src.llm_notes.notes.quota import QuotaReserver
from src.llm_notes.notes.repository import NoteRepository
from src.llm_notes.notes.resolver import LineResolver
from src.llm_notes.notes.schemas import (
    AnnotationStatus,
    GeneratedNote,
    GenerationResult,
    PromptLine,
)
from src.llm_notes.notes.status import StatusTracker

logger = structlog.get_logger(__name__)

NOTES_SCHEMA_NAME = "llm_generated_notes"
ASSIGNMENTS_SCHEMA_NAME = "llm_generated_note_assignments"

NOTES_FAILURE_MESSAGE = "OpenAI request failed while generating notes."
ASSIGNMENTS_FAILURE_MESSAGE = "OpenAI request failed while generating note assignments."


class PipelineState(str, Enum):
    """Orchestrator states, logged at every transition."""

    IDLE = "idle"
    RESERVING = "reserving"
    GENERATING = "generating"
    PARSING_NOTES = "parsing_notes"
    ASSIGNING = "assigning"
    PERSISTING = "persisting"
    ABORTING = "aborting"
    DONE = "done"


def _outcome_for(exc: BaseException) -> str:
    if isinstance(exc, NoteGenerationError):
        return type(exc).__name__
    return "unexpected_error"


class NoteGenerationPipeline:
    """Runs note creation and assignment for one transcript.

    Args:
        repository: Reads transcripts, settings and lines; commits notes.
        quota: Workspace quota reserver.
        status: Transcript status tracker.
        client: Model client shared by every call in a run.
        boilerplate: Static prompt suffixes loaded at startup.
        system_username: Username of the workspace author for generated notes.
    """

    def __init__(
        self,
        repository: NoteRepository,
        quota: QuotaReserver,
        status: StatusTracker,
        client: ModelClient,
        boilerplate: PromptBoilerplate,
        system_username: str = "llm-system",
    ) -> None:
        self._repository = repository
        self._quota = quota
        self._status = status
        self._client = client
        self._boilerplate = boilerplate
        self._system_username = system_username

    async def generate(self, workspace_id: str, transcript_id: str) -> GenerationResult:
        """Generate and persist LLM notes for a transcript.

        Args:
            workspace_id: Caller's workspace UUID string.
            transcript_id: Transcript UUID string.

        Returns:
            GenerationResult with created counts and final status.

        Raises:
            NotFound: Transcript, prompt settings or llm-system user missing.
            ValidationError: Invalid line range or no lines in scope.
            ConfigurationError: No model API key configured.
            QuotaExceeded: Workspace quota exhausted.
            PersistenceError: Quota reservation, status update or commit failed.
            UpstreamError: A model call failed.
            ParseError: Model output could not be parsed.
        """
        log = logger.bind(transcript_id=transcript_id, workspace_id=workspace_id)
        try:
            result = await self._run(log, workspace_id, transcript_id)
        except BaseException as exc:
            record_generation_outcome(_outcome_for(exc))
            raise
        record_generation_outcome("success", notes_created=result.notes_created)
        return result

    async def _run(
        self, log: structlog.stdlib.BoundLogger, workspace_id: str, transcript_id: str
    ) -> GenerationResult:
        log.info("pipeline.state", state=PipelineState.IDLE.value)

        # ── Load inputs (no side effects) ─────────────────────────────────
        transcript = await self._repository.get_transcript(workspace_id, transcript_id)
        if transcript is None:
            raise NotFound("Transcript not found.")

        settings = await self._repository.get_latest_prompt_settings(transcript_id)
        if settings is None:
            raise NotFound("No LLM note prompt settings found for this transcript.")

        lines = await self._repository.load_prompt_lines(transcript_id, settings.line_range())
        if not lines:
            raise ValidationError("No transcript lines are available to generate notes.")

        author_id = await self._repository.get_system_user_id(
            workspace_id, self._system_username
        )
        if author_id is None:
            raise NotFound(
                f"Unable to find the {self._system_username} user for this workspace."
            )

        if not self._client.is_configured:
            raise ConfigurationError("OPENAI_API_KEY is not configured on the server.")

        # ── Reserve quota and mark in process ─────────────────────────────
        log.info("pipeline.state", state=PipelineState.RESERVING.value)
        reservation = await self._quota.reserve(workspace_id)
        if reservation is None:
            raise QuotaExceeded("LLM annotation limit reached for this workspace.")

        await self._status.set_status(transcript_id, AnnotationStatus.IN_PROCESS)

        # ── Model calls (status rolled back on failure) ───────────────────
        transcript_json = serialize_transcript(lines)
        try:
            log.info("pipeline.state", state=PipelineState.GENERATING.value, lines=len(lines))
            creation_prompt = compose_creation_prompt(
                join_template(settings.note_creation_prompt, self._boilerplate.creation),
                transcript_json,
            )
            creation_output = await self._client.request_json(
                creation_prompt,
                NOTES_SCHEMA_NAME,
                NOTE_RESPONSE_SCHEMA,
                failure_message=NOTES_FAILURE_MESSAGE,
            )

            log.info("pipeline.state", state=PipelineState.PARSING_NOTES.value)
            notes = parse_notes(creation_output)

            log.info("pipeline.state", state=PipelineState.ASSIGNING.value, notes=len(notes))
            assignment_template = join_template(
                settings.note_assignment_prompt, self._boilerplate.assignment
            )
            line_ids_by_note = await self._assign_all(
                notes, assignment_template, transcript_json, lines
            )
        except BaseException as exc:
            await self._abort(log, transcript_id, exc)
            raise

        # ── Commit (transaction rolled back, status reset on failure) ────
        log.info("pipeline.state", state=PipelineState.PERSISTING.value)
        try:
            result = await self._repository.commit_generated_notes(
                transcript_id, author_id, notes, line_ids_by_note
            )
        except BaseException as exc:
            await self._abort(log, transcript_id, exc)
            raise

        log.info(
            "pipeline.state",
            state=PipelineState.DONE.value,
            model=self._client.model,
            notes_created=result.notes_created,
            note_assignments_created=result.note_assignments_created,
            status=result.status.value,
            quota_used=reservation.used,
            quota_limit=reservation.limit,
        )
        return result

    async def _abort(
        self, log: structlog.stdlib.BoundLogger, transcript_id: str, exc: BaseException
    ) -> None:
        """Reset the status to ``not_generated``; never replaces ``exc``."""
        log.warning(
            "pipeline.state",
            state=PipelineState.ABORTING.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await self._status.try_set_status(transcript_id, AnnotationStatus.NOT_GENERATED)

    async def _assign_all(
        self,
        notes: list[GeneratedNote],
        template: str,
        transcript_json: str,
        lines: list[PromptLine],
    ) -> list[list[str]]:
        """Run one assignment call per note concurrently.

        Results are parallel to ``notes``. The first failure cancels the
        remaining calls and propagates.
        """
        resolver = LineResolver(lines)
        tasks = [
            asyncio.create_task(self._assign(note, template, transcript_json, resolver))
            for note in notes
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _assign(
        self,
        note: GeneratedNote,
        template: str,
        transcript_json: str,
        resolver: LineResolver,
    ) -> list[str]:
        prompt = compose_assignment_prompt(template, transcript_json, serialize_note(note))
        output = await self._client.request_json(
            prompt,
            ASSIGNMENTS_SCHEMA_NAME,
            NOTE_ASSIGNMENT_RESPONSE_SCHEMA,
            failure_message=ASSIGNMENTS_FAILURE_MESSAGE,
        )
        citations = parse_assignments(output)
        line_ids = resolver.resolve_all(citations)
        logger.debug(
            "pipeline.note_assigned",
            title=note.title,
            cited=len(citations),
            resolved=len(line_ids),
        )
        return line_ids
