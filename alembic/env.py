"""Alembic environment for the Agora community schema.

The target URL comes from ``DATABASE_URL`` (``.env`` is honoured), falling
back to ``sqlalchemy.url`` in ``alembic.ini``.  Production runs PostgreSQL;
SQLite is supported for local development, where ALTER TABLE is limited and
every migration runs in batch mode.

Only :mod:`agora.database.models` is imported.  The engine module installs
the realtime change-capture hooks, which migrations have no use for.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from alembic import context

load_dotenv()

config = context.config

database_url = os.getenv("DATABASE_URL")
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from agora.database.models import Base  # noqa: E402

target_metadata = Base.metadata


def _migration_options(dialect_name: str) -> dict:
    # Timestamps and counters rely on server defaults, so autogenerate
    # compares them along with column types.
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": dialect_name == "sqlite",
    }


def run_migrations_offline() -> None:
    """Emit SQL for the configured URL without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_migration_options(make_url(url).get_backend_name()),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a single unpooled connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            **_migration_options(connection.dialect.name),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
