"""Alembic environment for the LLM notes schema.

  alembic upgrade head

Connects with a synchronous engine on DATABASE_URL (the asyncpg driver
suffix is stripped). Every model module is imported so the metadata is complete.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

import src.llm_notes.models.transcript  # noqa: F401
import src.llm_notes.models.workspace  # noqa: F401
import src.llm_notes.notes.models  # noqa: F401
from src.llm_notes.config import get_settings
from src.llm_notes.core.database import Base

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
