#!/usr/bin/env python3
"""CLI script to provision a workspace for LLM note generation.

Usage:
    python scripts/provision_workspace.py --name "Research Lab" --limit 25 --admin-username alice
    python scripts/provision_workspace.py --name "Research Lab" --admin-username alice --admin-email alice@example.org

Connects directly to the database using DATABASE_URL from environment or .env file.
Creates tables if needed, then a workspace with an LLM annotation limit, an
admin user, and the llm-system user that authors generated notes. Prints an
access token for the admin.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import timedelta

# Ensure project root is on sys.path so we can import src.llm_notes
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def provision(
    name: str,
    limit: int,
    admin_username: str,
    admin_email: str | None,
    token_days: int,
) -> None:
    """Create the workspace, its admin and its llm-system user."""
    from src.llm_notes.config import get_settings
    from src.llm_notes.core.database import get_engine, get_session, init_db
    from src.llm_notes.core.security import create_access_token
    from src.llm_notes.models.workspace import User, Workspace

    settings = get_settings()
    await init_db()

    print(f"Provisioning workspace: name={name}, limit={limit}")
    async for session in get_session():
        workspace = Workspace(name=name, llm_annotation_used=0, llm_annotation_limit=limit)
        session.add(workspace)
        await session.flush()

        admin = User(
            workspace_id=workspace.id,
            username=admin_username,
            email=admin_email,
            role="admin",
        )
        system_user = User(
            workspace_id=workspace.id,
            username=settings.LLM_SYSTEM_USERNAME,
            role="system",
        )
        session.add_all([admin, system_user])
        await session.commit()

        token = create_access_token(
            {"sub": str(admin.id), "workspace_id": str(workspace.id)},
            expires_delta=timedelta(days=token_days),
        )

        print("Workspace provisioned successfully:")
        print(f"  ID:           {workspace.id}")
        print(f"  Name:         {workspace.name}")
        print(f"  LLM limit:    {workspace.llm_annotation_limit}")
        print(f"  Admin user:   {admin.username} ({admin.id})")
        print(f"  System user:  {system_user.username} ({system_user.id})")
        print(f"  Admin token:  {token}")

    # Clean up
    engine = get_engine()
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision a workspace for LLM note generation")
    parser.add_argument("--name", required=True, help="Workspace display name")
    parser.add_argument("--limit", type=int, default=10, help="LLM annotation limit (runs)")
    parser.add_argument("--admin-username", required=True, help="Initial admin username")
    parser.add_argument("--admin-email", default=None, help="Initial admin email")
    parser.add_argument("--token-days", type=int, default=7, help="Admin token lifetime in days")
    args = parser.parse_args()

    if args.limit < 0:
        parser.error("--limit must be zero or greater")

    asyncio.run(
        provision(args.name, args.limit, args.admin_username, args.admin_email, args.token_days)
    )


if __name__ == "__main__":
    main()
