"""Initial schema: workspaces, users, transcripts, prompt settings, notes.

Revision ID: 001_initial_llm_notes
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_llm_notes"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("llm_annotation_used", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("llm_annotation_limit", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "llm_annotation_used <= llm_annotation_limit",
            name="ck_workspaces_llm_usage_within_limit",
        ),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "workspace_id",
            sa.Uuid(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("username", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(50), server_default=sa.text("'annotator'")),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("workspace_id", "username", name="uq_users_workspace_username"),
    )

    op.create_table(
        "transcripts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "workspace_id",
            sa.Uuid(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column(
            "llm_annotation",
            sa.String(50),
            server_default=sa.text("'not_generated'"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "transcript_lines",
        sa.Column("line_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transcript_id",
            sa.Uuid(),
            sa.ForeignKey("transcripts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line", sa.Integer(), nullable=False),
        sa.Column("speaker", sa.String(200), nullable=True),
        sa.Column("utterance", sa.Text(), nullable=True),
    )
    op.create_index("ix_transcript_lines_transcript_id", "transcript_lines", ["transcript_id"])

    op.create_table(
        "llm_note_prompts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transcript_id",
            sa.Uuid(),
            sa.ForeignKey("transcripts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_by",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("note_creation_prompt", sa.Text(), nullable=False),
        sa.Column("note_assignment_prompt", sa.Text(), nullable=False),
        sa.Column("annotate_all_lines", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("range_start_line", sa.Integer(), nullable=True),
        sa.Column("range_end_line", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_llm_note_prompts_transcript_created",
        "llm_note_prompts",
        ["transcript_id", "created_at"],
    )

    op.create_table(
        "notes",
        sa.Column("note_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transcript_id",
            sa.Uuid(),
            sa.ForeignKey("transcripts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("note_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("q1", sa.Text(), nullable=False),
        sa.Column("q2", sa.Text(), nullable=False),
        sa.Column("q3", sa.Text(), nullable=False),
        sa.Column("source", sa.String(20), server_default=sa.text("'user'"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notes_transcript_user_number",
        "notes",
        ["transcript_id", "user_id", "note_number"],
    )

    op.create_table(
        "note_assignments",
        sa.Column(
            "note_id",
            sa.Uuid(),
            sa.ForeignKey("notes.note_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "line_id",
            sa.Uuid(),
            sa.ForeignKey("transcript_lines.line_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )


def downgrade() -> None:
    op.drop_table("note_assignments")
    op.drop_index("ix_notes_transcript_user_number", table_name="notes")
    op.drop_table("notes")
    op.drop_index("ix_llm_note_prompts_transcript_created", table_name="llm_note_prompts")
    op.drop_table("llm_note_prompts")
    op.drop_index("ix_transcript_lines_transcript_id", table_name="transcript_lines")
    op.drop_table("transcript_lines")
    op.drop_table("transcripts")
    op.drop_table("users")
    op.drop_table("workspaces")
