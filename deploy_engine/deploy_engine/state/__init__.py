"""State persistence layer (SQLAlchemy async, PostgreSQL or SQLite)."""

from deploy_engine.state.database import get_engine, get_session
from deploy_engine.state.repository import (
    AttribTypeRepository,
    BarclampRepository,
    DeploymentRepository,
    JigEventRepository,
    NodeRepository,
    RoleRepository,
    SnapshotRepository,
)

__all__ = [
    "AttribTypeRepository",
    "BarclampRepository",
    "DeploymentRepository",
    "JigEventRepository",
    "NodeRepository",
    "RoleRepository",
    "SnapshotRepository",
    "get_engine",
    "get_session",
]
