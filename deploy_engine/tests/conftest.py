"""Shared fixtures for deploy engine tests.

Tests run against an in-memory SQLite database via aiosqlite, created with
the same engine factory the CLI uses for local mode so that foreign keys
are enforced.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deploy_engine.state.repository import DeploymentRepository, SnapshotRepository
from deploy_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from deploy_engine.state.tables import DeploymentTable, SnapshotTable


@pytest_asyncio.fixture
async def async_session() -> AsyncIterator[AsyncSession]:
    """Provide an async session backed by an in-memory SQLite database."""
    engine = get_local_engine(":memory:")
    await create_local_tables(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def deployment(async_session: AsyncSession) -> DeploymentTable:
    return await DeploymentRepository(async_session).create("prod", "production cloud")


@pytest_asyncio.fixture
async def make_snapshot(
    async_session: AsyncSession,
) -> Callable[..., Awaitable[SnapshotTable]]:
    """Factory creating snapshots with sensible defaults."""
    repo = SnapshotRepository(async_session)

    async def _make(
        name: str = "openstack",
        *,
        deployment_id: int | None = None,
        element_order: str | None = None,
    ) -> SnapshotTable:
        return await repo.create(name, deployment_id=deployment_id, element_order=element_order)

    return _make
