"""Initial schema for the deploy engine state store.

Creates barclamps, deployments, snapshots, roles, nodes, node_roles,
attrib_types, attribs and jig_events.  Snapshot names are unique per
deployment and role names unique per snapshot; the role constraint is the
conflict target of the role get-or-create insert.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    # ------------------------------------------------------------------
    # barclamps
    # ------------------------------------------------------------------
    op.create_table(
        "barclamps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )

    # ------------------------------------------------------------------
    # deployments
    # ------------------------------------------------------------------
    op.create_table(
        "deployments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("active_snapshot_id", sa.Integer(), nullable=True),
        sa.Column("committed_snapshot_id", sa.Integer(), nullable=True),
        sa.Column("proposed_snapshot_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # ------------------------------------------------------------------
    # snapshots
    # ------------------------------------------------------------------
    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("failed_reason", sa.Text(), nullable=True),
        sa.Column("element_order", sa.Text(), nullable=True),
        sa.Column(
            "deployment_id",
            sa.Integer(),
            sa.ForeignKey("deployments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "barclamp_id",
            sa.Integer(),
            sa.ForeignKey("barclamps.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("status BETWEEN 1 AND 5", name="ck_snapshots_status"),
        sa.UniqueConstraint("deployment_id", "name", name="uq_snapshots_deployment_name"),
    )
    op.create_index("ix_snapshots_deployment", "snapshots", ["deployment_id"])

    # ------------------------------------------------------------------
    # roles
    # ------------------------------------------------------------------
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("run_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "snapshot_id",
            sa.Integer(),
            sa.ForeignKey("snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "barclamp_id",
            sa.Integer(),
            sa.ForeignKey("barclamps.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.UniqueConstraint("snapshot_id", "name", name="uq_roles_snapshot_name"),
    )
    op.create_index("ix_roles_snapshot_order", "roles", ["snapshot_id", "order", "run_order"])

    # ------------------------------------------------------------------
    # nodes / node_roles
    # ------------------------------------------------------------------
    op.create_table(
        "nodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "node_roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("node_id", sa.Integer(), sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("node_id", "role_id", name="uq_node_roles_node_role"),
    )
    op.create_index("ix_node_roles_role", "node_roles", ["role_id"])

    # ------------------------------------------------------------------
    # attrib_types / attribs
    # ------------------------------------------------------------------
    op.create_table(
        "attrib_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(256), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "attribs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "attrib_type_id",
            sa.Integer(),
            sa.ForeignKey("attrib_types.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("node_id", sa.Integer(), sa.ForeignKey("nodes.id", ondelete="CASCADE"), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value_json", _JSON, nullable=True),
        _created_at(),
    )
    op.create_index("ix_attribs_role", "attribs", ["role_id"])
    op.create_index("ix_attribs_node", "attribs", ["node_id"])

    # ------------------------------------------------------------------
    # jig_events
    # ------------------------------------------------------------------
    op.create_table(
        "jig_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "snapshot_id",
            sa.Integer(),
            sa.ForeignKey("snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_status", sa.Integer(), nullable=True),
        sa.Column("to_status", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_jig_events_snapshot", "jig_events", ["snapshot_id", "id"])


def downgrade() -> None:
    op.drop_table("jig_events")
    op.drop_table("attribs")
    op.drop_table("attrib_types")
    op.drop_table("node_roles")
    op.drop_table("nodes")
    op.drop_table("roles")
    op.drop_table("snapshots")
    op.drop_table("deployments")
    op.drop_table("barclamps")
