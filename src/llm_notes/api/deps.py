"""FastAPI dependency injection for database sessions and authentication.

These dependencies are used in endpoint function signatures to inject the
database session and the authenticated user. Authentication failures are
raised as Unauthorized / Forbidden so they render with the same
``{"success": false, "error": ...}`` envelope as pipeline errors.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.llm_notes.core.database import get_session
from src.llm_notes.core.security import verify_token
from src.llm_notes.models.workspace import User
from src.llm_notes.notes.errors import Forbidden, Unauthorized
from src.llm_notes.notes.ids import parse_uuid

ADMIN_ROLE = "admin"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    async for session in get_session():
        yield session


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from a Bearer JWT.

    Raises:
        Unauthorized: If no valid token is supplied or the user is unknown
            or inactive.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise Unauthorized()

    payload = verify_token(auth_header[7:], token_type="access")
    user_id = parse_uuid(payload.get("sub"))
    if user_id is None:
        raise Unauthorized("Could not validate credentials")

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if not user:
        raise Unauthorized("User not found or inactive")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the current user to hold the admin role.

    Raises:
        Forbidden: If the user is not an admin.
    """
    if user.role != ADMIN_ROLE:
        raise Forbidden()
    return user
