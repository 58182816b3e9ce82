"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.llm_notes.api.v1 import health, llm_notes

router = APIRouter()

router.include_router(health.router)
router.include_router(llm_notes.router)
