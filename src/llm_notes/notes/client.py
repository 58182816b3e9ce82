"""Async HTTP client for the OpenAI Responses API in JSON-schema mode.

Provides ModelClient, which issues a single POST per call (no retries) and
pulls the output text out of the response envelope regardless of whether
the service returned a flat ``output_text`` field or the nested
``output[].content[].text`` structure. Failures of any kind surface as
UpstreamError with the service's own error message when one is present.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.llm_notes.core.monitoring import track_llm_call
from src.llm_notes.notes.errors import UpstreamError

logger = structlog.get_logger(__name__)

EMPTY_RESPONSE_MESSAGE = "OpenAI returned an empty response."


# ── Envelope Helpers ─────────────────────────────────────────────────────────


def extract_error_message(payload: Any) -> str | None:
    """Return ``payload["error"]["message"]`` when it is a string, else None."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    return message if isinstance(message, str) else None


def extract_output_text(payload: Any) -> str:
    """Extract model output text from a Responses API payload.

    Prefers the flat ``output_text`` field. Otherwise walks ``output`` items
    and their ``content`` entries, collecting non-blank ``text`` values
    joined by newlines. Returns ``""`` when nothing usable is found.
    """
    if not isinstance(payload, dict):
        return ""

    output_text = payload.get("output_text")
    if isinstance(output_text, str):
        return output_text.strip()

    output = payload.get("output")
    if not isinstance(output, list):
        return ""

    chunks: list[str] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for entry in content:
            if not isinstance(entry, dict):
                continue
            text = entry.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text)

    return "\n".join(chunks).strip()


# ── Client ───────────────────────────────────────────────────────────────────


class ModelClient:
    """Client for JSON-schema constrained calls to the model endpoint.

    Args:
        api_key: OpenAI API key sent as a bearer token.
        model: Model identifier (high-capability model with JSON-schema support).
        url: Responses API endpoint URL.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        url: str = "https://api.openai.com/v1/responses",
        timeout: float = 120.0,
    ) -> None:
        self._model = model
        self._url = url
        self._timeout = timeout
        self._configured = bool(api_key.strip())
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_configured(self) -> bool:
        """True when an API key was supplied."""
        return self._configured

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(headers=self._headers, timeout=self._timeout)

    async def request_json(
        self,
        input: str,
        schema_name: str,
        schema: dict,
        failure_message: str = "OpenAI request failed.",
    ) -> str:
        """Request schema-constrained output and return the raw output text.

        Args:
            input: Fully composed prompt text.
            schema_name: Name of the JSON schema format.
            schema: JSON schema the output must satisfy (strict mode).
            failure_message: Message used when the service gives no error detail.

        Returns:
            Non-empty output text (still to be parsed by the caller).

        Raises:
            UpstreamError: On transport failure, non-2xx status, or empty output.
        """
        body = {
            "model": self._model,
            "input": input,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                },
            },
        }

        async with track_llm_call(self._model, schema_name):
            try:
                async with self._client() as client:
                    response = await client.post(self._url, json=body)
            except httpx.HTTPError as exc:
                logger.warning(
                    "model_client.transport_error",
                    schema_name=schema_name,
                    error=str(exc),
                )
                raise UpstreamError(failure_message) from exc

            try:
                payload = response.json()
            except ValueError:
                payload = None

            if not response.is_success:
                message = extract_error_message(payload) or failure_message
                logger.warning(
                    "model_client.request_failed",
                    schema_name=schema_name,
                    status_code=response.status_code,
                    error=message,
                )
                raise UpstreamError(message)

            output_text = extract_output_text(payload)
            if not output_text:
                logger.warning("model_client.empty_response", schema_name=schema_name)
                raise UpstreamError(EMPTY_RESPONSE_MESSAGE)

        logger.debug(
            "model_client.response_received",
            schema_name=schema_name,
            output_chars=len(output_text),
        )
        return output_text
