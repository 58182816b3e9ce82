"""Workspace and user models.

A workspace owns transcripts and users and carries the LLM annotation quota
(``llm_annotation_used`` / ``llm_annotation_limit``). Usernames are unique per
workspace; each workspace has one ``llm-system`` user that authors generated
notes.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.llm_notes.core.database import Base


class Workspace(Base):
    """Workspace with its LLM annotation usage counter."""

    __tablename__ = "workspaces"
    __table_args__ = (
        CheckConstraint(
            "llm_annotation_used <= llm_annotation_limit",
            name="ck_workspaces_llm_usage_within_limit",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    llm_annotation_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    llm_annotation_limit: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class User(Base):
    """User within a workspace."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("workspace_id", "username", name="uq_users_workspace_username"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="annotator", server_default=text("'annotator'"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
