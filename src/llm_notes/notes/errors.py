"""Error taxonomy for the note generation pipeline.

Every failure a caller can observe is a NoteGenerationError subclass that
carries the HTTP status it maps to and a client-safe message. The API layer
renders these as ``{"success": false, "error": message}``.
"""

from __future__ import annotations


class NoteGenerationError(Exception):
    """Base class for pipeline failures surfaced to the caller.

    Attributes:
        message: Human-readable message safe to return to the client.
        status_code: HTTP status code the failure maps to.
    """

    status_code: int = 500
    default_message: str = "Unable to generate LLM notes right now."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(NoteGenerationError):
    """No valid credentials were supplied."""

    status_code = 401
    default_message = "Unauthorized"


class Forbidden(NoteGenerationError):
    """Caller is authenticated but lacks the admin role or workspace access."""

    status_code = 403
    default_message = "Only admins can generate LLM notes."


class NotFound(NoteGenerationError):
    """Transcript, prompt settings, or the llm-system author does not exist."""

    status_code = 404
    default_message = "Not found."


class ValidationError(NoteGenerationError):
    """Line range configuration is incomplete or inverted, or no lines in scope."""

    status_code = 400
    default_message = "Invalid request."


class QuotaExceeded(NoteGenerationError):
    """Workspace has used all of its LLM annotation runs."""

    status_code = 429
    default_message = "LLM annotation limit reached for this workspace."


class UpstreamError(NoteGenerationError):
    """The model service failed, returned non-2xx, or returned no text."""

    status_code = 502
    default_message = "OpenAI request failed."


class ParseError(NoteGenerationError):
    """Model output did not contain JSON of the expected shape."""

    status_code = 502
    default_message = "OpenAI response could not be parsed."


class PersistenceError(NoteGenerationError):
    """The transactional write of notes and assignments failed."""

    status_code = 500
    default_message = "Unable to save generated LLM notes right now."


class ConfigurationError(NoteGenerationError):
    """Server-side configuration required for generation is missing."""

    status_code = 500
    default_message = "Note generation is not configured on the server."
