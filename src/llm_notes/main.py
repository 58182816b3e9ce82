"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and pipeline wiring, the
NoteGenerationError envelope handler, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.llm_notes.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.llm_notes.api.v1.router import router as v1_router
from src.llm_notes.config import Settings, get_settings
from src.llm_notes.core.database import close_db, get_session, init_db
from src.llm_notes.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.llm_notes.notes.client import ModelClient
from src.llm_notes.notes.errors import NoteGenerationError
from src.llm_notes.notes.pipeline import NoteGenerationPipeline
from src.llm_notes.notes.prompts import load_prompt_boilerplate
from src.llm_notes.notes.quota import QuotaReserver
from src.llm_notes.notes.repository import NoteRepository
from src.llm_notes.notes.status import StatusTracker


def init_note_services(app: FastAPI, settings: Settings, session_factory=get_session) -> None:
    """Build the note repository and generation pipeline onto ``app.state``.

    The static prompt boilerplate is read once here; requests never touch
    the prompts directory.
    """
    log = structlog.get_logger(__name__)

    boilerplate = load_prompt_boilerplate(settings.get_prompts_path())
    repository = NoteRepository(session_factory=session_factory)
    client = ModelClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.LLM_MODEL,
        url=settings.OPENAI_RESPONSES_URL,
        timeout=settings.LLM_TIMEOUT,
    )
    if not client.is_configured:
        log.warning("llm_notes.openai_key_missing")

    app.state.note_repository = repository
    app.state.note_pipeline = NoteGenerationPipeline(
        repository=repository,
        quota=QuotaReserver(session_factory=session_factory),
        status=StatusTracker(session_factory=session_factory),
        client=client,
        boilerplate=boilerplate,
        system_username=settings.LLM_SYSTEM_USERNAME,
    )
    log.info("llm_notes.services_initialized", model=settings.LLM_MODEL)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and note services; close DB on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    init_note_services(app, settings)

    yield

    await close_db()


async def note_generation_error_handler(request: Request, exc: NoteGenerationError) -> JSONResponse:
    """Render domain errors as ``{"success": false, "error": message}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LLM Notes API",
        version="0.1.0",
        description="LLM note generation and line assignment for transcripts",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(NoteGenerationError, note_generation_error_handler)

    # Include v1 API router (health, llm notes)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
