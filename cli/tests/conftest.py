"""Shared fixtures for CLI tests.

Every test gets its own SQLite state store under ``tmp_path`` and runs with
the working directory moved there so that no stray ``.env`` is picked up.
``configure_logging`` replaces the root handlers on each invocation; they
are restored afterwards so later tests keep pytest's own handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def state_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    db_path = tmp_path / "state.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DEPLOY_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("DEPLOY_LOG_LEVEL", "WARNING")

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield db_path
    root.handlers[:] = handlers
    root.setLevel(level)
