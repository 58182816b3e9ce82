"""End-to-end tests for NoteGenerationPipeline.

Uses the SQLite-backed repository, quota reserver and status tracker with a
FakeModelClient, so every run exercises the real persistence path without
network calls. Covers the generation scenarios (success, inverted range,
exhausted quota, failed assignment), the fail-fast checks that must not
consume quota, and best-effort status rollback.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from src.llm_notes.notes.errors import (
    ConfigurationError,
    NotFound,
    ParseError,
    PersistenceError,
    QuotaExceeded,
    UpstreamError,
    ValidationError,
)
from src.llm_notes.notes.pipeline import NoteGenerationPipeline
from src.llm_notes.notes.prompts import PromptBoilerplate
from src.llm_notes.notes.quota import QuotaReserver
from src.llm_notes.notes.repository import NoteRepository
from src.llm_notes.notes.schemas import AnnotationStatus
from src.llm_notes.notes.status import StatusTracker

NOTES_OUTPUT = json.dumps(
    {
        "notes": [
            {"title": "Budget", "answer_1": "Over", "answer_2": "10%", "answer_3": "Cut"},
            {"title": "Travel", "answer_1": "Costs", "answer_2": "High", "answer_3": "Reduce"},
        ]
    }
)


def _assignments(*items: dict) -> str:
    return json.dumps({"assignments": list(items)})


def _pipeline(session_factory, client, status=None, boilerplate=None) -> NoteGenerationPipeline:
    return NoteGenerationPipeline(
        repository=NoteRepository(session_factory),
        quota=QuotaReserver(session_factory),
        status=status or StatusTracker(session_factory),
        client=client,
        boilerplate=boilerplate or PromptBoilerplate(creation="STATIC CREATION", assignment="STATIC ASSIGNMENT"),
    )


# ── Success ──────────────────────────────────────────────────────────────────


async def test_two_notes_generated(session_factory, seed, fake_client, transcript_status, workspace_usage):
    seeded = await seed(limit=5)
    client = fake_client(
        notes=[NOTES_OUTPUT],
        assignments=[
            _assignments(
                {"line_number": 1, "speaker": "Alice", "utterance": "x"},
                {"line_number": 2, "speaker": "Bob", "utterance": "y"},
            ),
            # Unknown number, resolved by speaker + utterance; plus one dropped citation.
            _assignments(
                {"line_number": 40, "speaker": "alice", "utterance": "Then we need to cut travel costs."},
                {"line_number": 41, "speaker": "Nobody", "utterance": "Nothing"},
            ),
        ],
    )

    result = await _pipeline(session_factory, client).generate(
        seeded.workspace_id, seeded.transcript_id
    )

    assert result.notes_created == 2
    assert result.note_assignments_created == 3
    assert result.status == AnnotationStatus.GENERATED
    assert await transcript_status(seeded.transcript_id) == "generated"
    assert await workspace_usage(seeded.workspace_id) == 1

    notes = await NoteRepository(session_factory).list_generated_notes(seeded.transcript_id)
    assert [n.line_numbers for n in notes] == [[1, 2], [3]]


async def test_prompts_include_template_boilerplate_and_payloads(session_factory, seed, fake_client):
    seeded = await seed()
    client = fake_client(
        notes=[NOTES_OUTPUT],
        assignments=[_assignments(), _assignments()],
    )

    await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    creation_schema, creation_prompt = client.calls[0]
    assert creation_schema == "llm_generated_notes"
    assert creation_prompt.startswith("Write notes about [")
    assert creation_prompt.endswith("STATIC CREATION")
    assert '"line_number": 1' in creation_prompt
    assert "line_id" not in creation_prompt

    assignment_prompts = [p for s, p in client.calls if s == "llm_generated_note_assignments"]
    assert len(assignment_prompts) == 2
    assert '"title": "Budget"' in assignment_prompts[0]
    assert '"title": "Travel"' in assignment_prompts[1]
    assert all(p.endswith("STATIC ASSIGNMENT") for p in assignment_prompts)


async def test_empty_notes_array_persists_nothing(session_factory, seed, fake_client, transcript_status):
    seeded = await seed()
    client = fake_client(notes=['{"notes": []}'])

    result = await _pipeline(session_factory, client).generate(
        seeded.workspace_id, seeded.transcript_id
    )

    assert result.notes_created == 0
    assert result.status == AnnotationStatus.NOT_GENERATED
    assert await transcript_status(seeded.transcript_id) == "not_generated"
    assert len(client.calls) == 1


# ── Fail-Fast Checks (no quota, no model call) ──────────────────────────────


async def test_inverted_range_is_validation_error(session_factory, seed, fake_client, workspace_usage):
    seeded = await seed(annotate_all_lines=False, range_start_line=5, range_end_line=3)
    client = fake_client(notes=[NOTES_OUTPUT])

    with pytest.raises(ValidationError) as exc_info:
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Start line cannot be greater than end line."
    assert client.calls == []
    assert await workspace_usage(seeded.workspace_id) == 0


async def test_incomplete_range_is_validation_error(session_factory, seed, fake_client):
    seeded = await seed(annotate_all_lines=False, range_start_line=2, range_end_line=None)

    with pytest.raises(ValidationError) as exc_info:
        await _pipeline(session_factory, fake_client()).generate(
            seeded.workspace_id, seeded.transcript_id
        )
    assert exc_info.value.message == "Line range settings are incomplete for this transcript."


async def test_no_lines_in_scope(session_factory, seed, fake_client, workspace_usage):
    seeded = await seed(annotate_all_lines=False, range_start_line=10, range_end_line=20)
    client = fake_client()

    with pytest.raises(ValidationError) as exc_info:
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    assert exc_info.value.message == "No transcript lines are available to generate notes."
    assert await workspace_usage(seeded.workspace_id) == 0


async def test_missing_prompt_settings(session_factory, seed, fake_client):
    seeded = await seed(annotate_all_lines=None)
    with pytest.raises(NotFound) as exc_info:
        await _pipeline(session_factory, fake_client()).generate(
            seeded.workspace_id, seeded.transcript_id
        )
    assert exc_info.value.message == "No LLM note prompt settings found for this transcript."


async def test_missing_system_user(session_factory, seed, fake_client):
    seeded = await seed(with_system_user=False)
    with pytest.raises(NotFound) as exc_info:
        await _pipeline(session_factory, fake_client()).generate(
            seeded.workspace_id, seeded.transcript_id
        )
    assert exc_info.value.message == "Unable to find the llm-system user for this workspace."


async def test_transcript_in_other_workspace_is_not_found(session_factory, seed, fake_client):
    seeded = await seed()
    other = await seed()
    with pytest.raises(NotFound):
        await _pipeline(session_factory, fake_client()).generate(
            other.workspace_id, seeded.transcript_id
        )


async def test_missing_api_key_is_configuration_error(session_factory, seed, fake_client, workspace_usage):
    seeded = await seed()
    with pytest.raises(ConfigurationError):
        await _pipeline(session_factory, fake_client(configured=False)).generate(
            seeded.workspace_id, seeded.transcript_id
        )
    assert await workspace_usage(seeded.workspace_id) == 0


async def test_quota_exhausted(session_factory, seed, fake_client, workspace_usage, transcript_status):
    seeded = await seed(limit=2, used=2)
    client = fake_client(notes=[NOTES_OUTPUT])

    with pytest.raises(QuotaExceeded) as exc_info:
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    assert exc_info.value.status_code == 429
    assert client.calls == []
    assert await workspace_usage(seeded.workspace_id) == 2
    assert await transcript_status(seeded.transcript_id) == "not_generated"


# ── Failures During Model Calls ──────────────────────────────────────────────


async def test_assignment_failure_rolls_back_status(
    session_factory, seed, fake_client, transcript_status, workspace_usage
):
    seeded = await seed()
    client = fake_client(
        notes=[NOTES_OUTPUT],
        assignments=[
            _assignments({"line_number": 1}),
            UpstreamError("OpenAI request failed while generating note assignments."),
        ],
    )

    with pytest.raises(UpstreamError):
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    assert await transcript_status(seeded.transcript_id) == "not_generated"
    assert await NoteRepository(session_factory).list_generated_notes(seeded.transcript_id) == []
    # Quota is consumed on attempt.
    assert await workspace_usage(seeded.workspace_id) == 1


async def test_unparseable_notes_rolls_back_status(session_factory, seed, fake_client, transcript_status):
    seeded = await seed()
    client = fake_client(notes=["I am unable to help with that."])

    with pytest.raises(ParseError):
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    assert await transcript_status(seeded.transcript_id) == "not_generated"


async def test_first_assignment_failure_cancels_pending_calls(session_factory, seed, transcript_status):
    seeded = await seed()
    started: list[str] = []
    cancelled: list[str] = []

    class SlowClient:
        is_configured = True

        async def request_json(self, input, schema_name, schema, failure_message="failed"):
            if schema_name == "llm_generated_notes":
                return NOTES_OUTPUT
            title = "Budget" if '"title": "Budget"' in input else "Travel"
            started.append(title)
            if title == "Budget":
                raise UpstreamError(failure_message)
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(title)
                raise
            return _assignments()

    with pytest.raises(UpstreamError):
        await _pipeline(session_factory, SlowClient()).generate(
            seeded.workspace_id, seeded.transcript_id
        )

    assert sorted(started) == ["Budget", "Travel"]
    assert cancelled == ["Travel"]
    assert await transcript_status(seeded.transcript_id) == "not_generated"


async def test_failed_status_rollback_does_not_mask_original_error(session_factory, seed, fake_client):
    seeded = await seed()
    status = StatusTracker(session_factory)
    status.try_set_status = AsyncMock(return_value=False)
    client = fake_client(notes=["not json"])

    with pytest.raises(ParseError):
        await _pipeline(session_factory, client, status=status).generate(
            seeded.workspace_id, seeded.transcript_id
        )

    status.try_set_status.assert_awaited_once_with(
        seeded.transcript_id, AnnotationStatus.NOT_GENERATED
    )


async def test_try_set_status_swallows_and_reports_failure(session_factory):
    status = StatusTracker(session_factory)
    assert await status.try_set_status("not-a-uuid", AnnotationStatus.NOT_GENERATED) is False


# ── Failures During Commit ───────────────────────────────────────────────────


async def test_commit_failure_resets_status(
    session_factory, seed, fake_client, transcript_status, workspace_usage
):
    seeded = await seed()
    client = fake_client(
        notes=[NOTES_OUTPUT],
        assignments=[_assignments({"line_number": 1}), _assignments({"line_number": 2})],
    )

    with patch(
        "src.llm_notes.notes.repository._status_for_count",
        side_effect=OperationalError("UPDATE transcripts", {}, Exception("disk I/O error")),
    ):
        with pytest.raises(PersistenceError):
            await _pipeline(session_factory, client).generate(
                seeded.workspace_id, seeded.transcript_id
            )

    assert await transcript_status(seeded.transcript_id) == "not_generated"
    assert await NoteRepository(session_factory).list_generated_notes(seeded.transcript_id) == []
    assert await workspace_usage(seeded.workspace_id) == 1


async def test_unexpected_commit_error_resets_status(session_factory, seed, fake_client, transcript_status):
    seeded = await seed()
    client = fake_client(notes=['{"notes": []}'])

    with patch.object(
        NoteRepository,
        "commit_generated_notes",
        new_callable=AsyncMock,
        side_effect=RuntimeError("boom"),
    ):
        with pytest.raises(RuntimeError):
            await _pipeline(session_factory, client).generate(
                seeded.workspace_id, seeded.transcript_id
            )

    assert await transcript_status(seeded.transcript_id) == "not_generated"


async def test_done_state_logs_model_and_counts(session_factory, seed, fake_client):
    seeded = await seed()
    client = fake_client(notes=['{"notes": []}'])

    with capture_logs() as logs:
        await _pipeline(session_factory, client).generate(seeded.workspace_id, seeded.transcript_id)

    done = [entry for entry in logs if entry.get("state") == "done"]
    assert len(done) == 1
    assert done[0]["model"] == "fake-model"
    assert done[0]["notes_created"] == 0
