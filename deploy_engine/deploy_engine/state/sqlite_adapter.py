"""Local state store: a single SQLite file driven through aiosqlite.

``deployctl`` uses this store when ``DEPLOY_DATABASE_URL`` has a
``sqlite`` scheme.  The schema comes straight from the ORM metadata, so a
local store needs no migration step.  Foreign keys are switched on for every
connection because snapshot teardown relies on them being enforced.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def get_local_engine(db_path: Path | str = ".deploy/state.db") -> AsyncEngine:
    """Open (and if needed create) the SQLite state file at *db_path*.

    ``":memory:"`` gives a throwaway database, which is what the tests use.
    """
    in_memory = str(db_path) == MEMORY
    if in_memory:
        url = f"sqlite+aiosqlite:///{MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    logger.info("Opened local state store %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create any missing state tables; existing tables are left untouched."""
    from deploy_engine.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Local state schema ready")
