"""Engine selection and the session scope every snapshot operation runs in.

A ``sqlite`` URL opens the local state file (see
:mod:`deploy_engine.state.sqlite_adapter`); anything else is handed to
SQLAlchemy as a shared PostgreSQL store reached through asyncpg.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Return an engine for the state store at *database_url*.

    Parameters
    ----------
    database_url:
        ``sqlite+aiosqlite:///<path>`` for a local store, or a
        ``postgresql+asyncpg://`` URL for a shared one.
    pool_size, max_overflow:
        Connection pool limits for the shared store.  A local store keeps
        SQLAlchemy's default SQLite pooling.
    """
    if database_url.startswith("sqlite"):
        from deploy_engine.state.sqlite_adapter import MEMORY, get_local_engine

        _, _, db_path = database_url.partition("///")
        return get_local_engine(db_path or MEMORY)

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )
    logger.info("Connected to shared state store (pool_size=%d, max_overflow=%d)", pool_size, max_overflow)
    return engine


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Run one unit of snapshot work.

    Commits when the block exits normally.  Any exception rolls the whole
    unit back before it propagates, so a deep clone that fails part way
    leaves no partial snapshot behind.
    """
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
