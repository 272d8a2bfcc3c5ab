"""Alembic environment configuration for the deploy engine state store.

Supports both **online** (connected) and **offline** (SQL-generation) modes.
The database URL is resolved from the ``ALEMBIC_DATABASE_URL`` environment
variable, then ``DEPLOY_DATABASE_URL``, falling back to the local SQLite
file used by ``deployctl``.

The ``target_metadata`` is bound to the shared ``Base.metadata`` from
``deploy_engine.state.tables`` so that ``--autogenerate`` can detect schema
drift against the ORM model definitions.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from deploy_engine.state.tables import Base
from sqlalchemy import engine_from_config, pool

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

# ---------------------------------------------------------------------------
# Database URL resolution
# ---------------------------------------------------------------------------

_DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.deploy/state.db"


def _get_database_url() -> str:
    """Resolve the database URL and convert it to a synchronous driver.

    Priority:
    1. ``ALEMBIC_DATABASE_URL`` environment variable.
    2. ``DEPLOY_DATABASE_URL`` environment variable.
    3. ``sqlalchemy.url`` key in ``alembic.ini``.
    4. The local SQLite default.

    Alembic's ``MigrationContext`` needs a synchronous engine, so
    ``asyncpg`` URLs are rewritten to psycopg3 and ``aiosqlite`` URLs to
    the stdlib ``pysqlite`` driver.
    """
    url = (
        os.environ.get("ALEMBIC_DATABASE_URL")
        or os.environ.get("DEPLOY_DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        url = _DEFAULT_DATABASE_URL
        logger.info("Using default database URL: %s", url)

    if url.startswith("postgresql+asyncpg://"):
        url = "postgresql+psycopg://" + url[len("postgresql+asyncpg://") :]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://") :]
    elif url.startswith("sqlite+aiosqlite://"):
        url = "sqlite://" + url[len("sqlite+aiosqlite://") :]
    url = url.replace("?ssl=require", "?sslmode=require")
    url = url.replace("&ssl=require", "&sslmode=require")
    return url


# ---------------------------------------------------------------------------
# Offline migrations (generate SQL without a live database)
# ---------------------------------------------------------------------------


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL to the script output."""
    context.configure(
        url=_get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# ---------------------------------------------------------------------------
# Online migrations (connected to a live database)
# ---------------------------------------------------------------------------


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a synchronous engine."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = _get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
