"""SQLAlchemy 2.0 ORM table definitions for the deploy engine state store.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style
introduced in SQLAlchemy 2.0.  The ``Base`` declarative base is exported for
use by Alembic migrations and the repository layer.

No ORM ``relationship()`` is declared: repositories read and write related
rows with explicit statements, and snapshot destruction deletes dependents
explicitly (see ``SnapshotRepository.destroy``).  The ``ondelete="CASCADE"``
foreign keys are a second line of defence at the database level.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: uses JSONB on PostgreSQL, falls back to plain
# JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all deploy engine tables."""


# ---------------------------------------------------------------------------
# Barclamps
# ---------------------------------------------------------------------------


class BarclampTable(Base):
    """Modules that define the roles and attributes of a snapshot."""

    __tablename__ = "barclamps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Deployments
# ---------------------------------------------------------------------------


class DeploymentTable(Base):
    """A deployment and its three snapshot pointers.

    The pointers are plain integers rather than foreign keys: a snapshot
    belongs to its deployment, and a hard FK in both directions would make
    creation order circular.  ``SnapshotRepository.destroy`` clears any
    pointer to a destroyed snapshot.
    """

    __tablename__ = "deployments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active_snapshot_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    committed_snapshot_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    proposed_snapshot_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class SnapshotTable(Base):
    """Versioned bundle of configuration state with its own commit lifecycle."""

    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column("order", Integer, default=0, nullable=False)
    status: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    element_order: Mapped[str | None] = mapped_column(Text, nullable=True)
    deployment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("deployments.id", ondelete="CASCADE"), nullable=True
    )
    barclamp_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("barclamps.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("status BETWEEN 1 AND 5", name="ck_snapshots_status"),
        UniqueConstraint("deployment_id", "name", name="uq_snapshots_deployment_name"),
        Index("ix_snapshots_deployment", "deployment_id"),
    )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleTable(Base):
    """Named unit of configuration inside a snapshot, ordered by ``(order, run_order)``."""

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column("order", Integer, default=0, nullable=False)
    run_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    snapshot_id: Mapped[int] = mapped_column(Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False)
    barclamp_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("barclamps.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("snapshot_id", "name", name="uq_roles_snapshot_name"),
        Index("ix_roles_snapshot_order", "snapshot_id", "order", "run_order"),
    )


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class NodeTable(Base):
    """A machine that roles can be bound to."""

    __tablename__ = "nodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class NodeRoleTable(Base):
    """Binding of a node to a role."""

    __tablename__ = "node_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    node_id: Mapped[int] = mapped_column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("node_id", "role_id", name="uq_node_roles_node_role"),
        Index("ix_node_roles_role", "role_id"),
    )


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


class AttribTypeTable(Base):
    """Definition of an attribute that can be attached to roles."""

    __tablename__ = "attrib_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class AttribTable(Base):
    """An attribute-type instance attached to a role, optionally for one node."""

    __tablename__ = "attribs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attrib_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("attrib_types.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    node_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_json: Mapped[Any | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_attribs_role", "role_id"),
        Index("ix_attribs_node", "node_id"),
    )


# ---------------------------------------------------------------------------
# Jig events
# ---------------------------------------------------------------------------


class JigEventTable(Base):
    """Execution history entries recorded against a snapshot."""

    __tablename__ = "jig_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_status: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_jig_events_snapshot", "snapshot_id", "id"),)
