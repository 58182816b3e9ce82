"""Identifier helpers."""

from __future__ import annotations

import uuid


def parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Parse a UUID string; None for blank or malformed values."""
    if isinstance(value, uuid.UUID):
        return value
    if not value:
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None
