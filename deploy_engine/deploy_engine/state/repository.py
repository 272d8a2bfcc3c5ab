"""Repository classes providing CRUD access to the deploy engine state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated ids and defaults are populated; the caller is responsible
for calling ``session.commit()`` (or relying on the ``get_session`` context
manager).
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.errors import (
    BarclampNotFoundError,
    DeploymentNotFoundError,
    NodeNotFoundError,
    RoleConflictError,
    SnapshotNotFoundError,
    SnapshotValidationError,
    StaleStatusError,
)
from deploy_engine.models.snapshot import SnapshotStatus
from deploy_engine.state.tables import (
    AttribTable,
    AttribTypeTable,
    BarclampTable,
    DeploymentTable,
    JigEventTable,
    NodeRoleTable,
    NodeTable,
    RoleTable,
    SnapshotTable,
)

logger = logging.getLogger(__name__)

# Marker for "leave this column alone" in partial updates.
_UNSET: Any = object()

# Deployment pointer slots, keyed by the name used on the CLI and in logs.
DEPLOYMENT_SLOTS: dict[str, str] = {
    "active": "active_snapshot_id",
    "committed": "committed_snapshot_id",
    "proposed": "proposed_snapshot_id",
}

# Role ordering key: (order, run_order), ties broken by insertion order.
_ROLE_ORDER = (RoleTable.order, RoleTable.run_order, RoleTable.id)


async def _dialect_insert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names of the unique constraint used for conflict detection.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# BarclampRepository
# ---------------------------------------------------------------------------


class BarclampRepository:
    """CRUD operations for the ``barclamps`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, barclamp_id: int) -> BarclampTable | None:
        return await self._session.get(BarclampTable, barclamp_id)

    async def get_by_name(self, name: str) -> BarclampTable | None:
        stmt = select(BarclampTable).where(BarclampTable.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str, description: str | None = None) -> BarclampTable:
        """Return the barclamp called *name*, inserting it if absent."""
        await _dialect_insert_nothing(
            self._session,
            BarclampTable,
            values={"name": name, "description": description},
            index_elements=["name"],
        )
        await self._session.flush()
        row = await self.get_by_name(name)
        assert row is not None  # noqa: S101
        return row


# ---------------------------------------------------------------------------
# DeploymentRepository
# ---------------------------------------------------------------------------


class DeploymentRepository:
    """CRUD operations for the ``deployments`` table and its snapshot pointers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, name: str, description: str | None = None) -> DeploymentTable:
        """Insert a new deployment.

        Raises
        ------
        ValueError
            If a deployment with the same name already exists.
        """
        if await self.get_by_name(name) is not None:
            raise ValueError(f"Deployment '{name}' already exists")
        row = DeploymentTable(name=name, description=description)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, deployment_id: int) -> DeploymentTable | None:
        """Fetch a deployment by id."""
        return await self._session.get(DeploymentTable, deployment_id)

    async def get_by_name(self, name: str) -> DeploymentTable | None:
        stmt = select(DeploymentTable).where(DeploymentTable.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[DeploymentTable]:
        """Return every deployment, ordered by name."""
        result = await self._session.execute(select(DeploymentTable).order_by(DeploymentTable.name))
        return list(result.scalars().all())

    async def point(self, deployment_id: int, slot: str, snapshot_id: int | None) -> DeploymentTable:
        """Repoint one of the deployment's snapshot references.

        Only the deployment row changes; the snapshot's status is untouched.

        Parameters
        ----------
        deployment_id:
            Deployment to update.
        slot:
            One of ``"active"``, ``"committed"`` or ``"proposed"``.
        snapshot_id:
            New target, or ``None`` to clear the slot.

        Raises
        ------
        ValueError
            If *slot* is not a known slot name.
        DeploymentNotFoundError
            If the deployment does not exist.
        """
        column = DEPLOYMENT_SLOTS.get(slot)
        if column is None:
            raise ValueError(f"Unknown deployment slot {slot!r}; expected one of {sorted(DEPLOYMENT_SLOTS)}")
        row = await self.get(deployment_id)
        if row is None:
            raise DeploymentNotFoundError(deployment_id)
        setattr(row, column, snapshot_id)
        await self._session.flush()
        logger.info("Deployment %d %s snapshot -> %s", deployment_id, slot, snapshot_id)
        return row

    async def clear_pointers_to(self, snapshot_id: int) -> None:
        """Null every deployment slot that references *snapshot_id*."""
        for column in DEPLOYMENT_SLOTS.values():
            attr = getattr(DeploymentTable, column)
            stmt = update(DeploymentTable).where(attr == snapshot_id).values({column: None})
            await self._session.execute(stmt)
        await self._session.flush()


# ---------------------------------------------------------------------------
# SnapshotRepository
# ---------------------------------------------------------------------------


class SnapshotRepository:
    """CRUD operations for the ``snapshots`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        name: str,
        *,
        deployment_id: int | None = None,
        barclamp_id: int | None = None,
        description: str | None = None,
        element_order: str | None = None,
        order: int = 0,
    ) -> SnapshotTable:
        """Insert a new snapshot in status CREATED and return the persisted row."""
        row = SnapshotTable(
            name=name,
            description=description,
            order=order,
            status=int(SnapshotStatus.CREATED),
            failed_reason=None,
            element_order=element_order,
            deployment_id=deployment_id,
            barclamp_id=barclamp_id,
        )
        return await self.save(row)

    async def save(self, row: SnapshotTable) -> SnapshotTable:
        """Persist the scalar fields of *row*.

        A database-level conflict leaves the session unusable until the
        caller rolls back; ``get_session`` does so when the error propagates.

        Raises
        ------
        DeploymentNotFoundError
            If *row* references a deployment that does not exist.
        BarclampNotFoundError
            If *row* references a barclamp that does not exist.
        SnapshotValidationError
            If the name is empty, the status is not a known state, or the
            name is already taken within the same deployment (templates,
            which have no deployment, share one namespace).
        """
        if not row.name or not row.name.strip():
            raise SnapshotValidationError("Snapshot name must not be empty")
        try:
            SnapshotStatus(row.status)
        except ValueError as exc:
            raise SnapshotValidationError(f"Invalid snapshot status {row.status!r}") from exc

        with self._session.no_autoflush:
            if row.deployment_id is not None and await self._session.get(DeploymentTable, row.deployment_id) is None:
                raise DeploymentNotFoundError(row.deployment_id)
            if row.barclamp_id is not None and await self._session.get(BarclampTable, row.barclamp_id) is None:
                raise BarclampNotFoundError(row.barclamp_id)
            clash = await self.get_by_name(row.name, row.deployment_id)
        if clash is not None and clash is not row:
            raise SnapshotValidationError(
                f"Snapshot '{row.name}' already exists in deployment {row.deployment_id}"
            )

        try:
            self._session.add(row)
            await self._session.flush()
        except IntegrityError as exc:
            raise SnapshotValidationError(f"Snapshot '{row.name}' could not be saved: {exc.orig}") from exc
        return row

    async def get(self, snapshot_id: int) -> SnapshotTable | None:
        """Fetch a snapshot by id."""
        return await self._session.get(SnapshotTable, snapshot_id)

    async def require(self, snapshot_id: int) -> SnapshotTable:
        """Fetch a snapshot by id, raising :class:`SnapshotNotFoundError` if absent."""
        row = await self.get(snapshot_id)
        if row is None:
            raise SnapshotNotFoundError(snapshot_id)
        return row

    async def get_by_name(self, name: str, deployment_id: int | None) -> SnapshotTable | None:
        """Fetch a snapshot by name within a deployment (or among templates)."""
        stmt = select(SnapshotTable).where(SnapshotTable.name == name)
        if deployment_id is None:
            stmt = stmt.where(SnapshotTable.deployment_id.is_(None))
        else:
            stmt = stmt.where(SnapshotTable.deployment_id == deployment_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_for_deployment(self, deployment_id: int | None) -> list[SnapshotTable]:
        """Return the snapshots of a deployment, or templates when ``None``."""
        stmt = select(SnapshotTable)
        if deployment_id is None:
            stmt = stmt.where(SnapshotTable.deployment_id.is_(None))
        else:
            stmt = stmt.where(SnapshotTable.deployment_id == deployment_id)
        stmt = stmt.order_by(SnapshotTable.order, SnapshotTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def duplicate(
        self,
        source: SnapshotTable,
        *,
        deployment_id: int | None,
        name: str,
    ) -> SnapshotTable:
        """Copy every scalar field of *source* into a new, saved row.

        The copy is reset to CREATED with no failure reason; the caller
        chooses its deployment and name.
        """
        row = SnapshotTable(
            name=name,
            description=source.description,
            order=source.order,
            status=int(SnapshotStatus.CREATED),
            failed_reason=None,
            element_order=source.element_order,
            deployment_id=deployment_id,
            barclamp_id=source.barclamp_id,
        )
        return await self.save(row)

    async def update_status(
        self,
        snapshot_id: int,
        status: SnapshotStatus,
        *,
        failed_reason: str | None = _UNSET,
        expected_status: SnapshotStatus | None = None,
    ) -> None:
        """Write a new status, optionally as a compare-and-set.

        Parameters
        ----------
        snapshot_id:
            Snapshot to update.
        status:
            New status value.
        failed_reason:
            New failure reason; omitted leaves the column unchanged.
        expected_status:
            When given, the update only applies if the stored status still
            equals this value.

        Raises
        ------
        StaleStatusError
            If *expected_status* no longer matches.
        SnapshotNotFoundError
            If the snapshot does not exist.
        """
        values: dict[str, Any] = {"status": int(status)}
        if failed_reason is not _UNSET:
            values["failed_reason"] = failed_reason
        stmt = update(SnapshotTable).where(SnapshotTable.id == snapshot_id)
        if expected_status is not None:
            stmt = stmt.where(SnapshotTable.status == int(expected_status))
        result = await self._session.execute(stmt.values(**values))
        await self._session.flush()
        if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
            if expected_status is not None and await self.get(snapshot_id) is not None:
                raise StaleStatusError(snapshot_id, int(expected_status))
            raise SnapshotNotFoundError(snapshot_id)

    async def set_element_order(self, snapshot_id: int, element_order: str | None) -> None:
        row = await self.require(snapshot_id)
        row.element_order = element_order
        await self._session.flush()

    async def destroy(self, snapshot_id: int) -> bool:
        """Delete a snapshot and everything it owns.

        Attributes and node bindings of its roles, the roles themselves, its
        jig events, and any deployment pointer referencing it are removed in
        the caller's transaction before the snapshot row itself.  Returns
        ``False`` if no such snapshot exists.
        """
        if await self.get(snapshot_id) is None:
            return False

        role_ids = select(RoleTable.id).where(RoleTable.snapshot_id == snapshot_id)
        await self._session.execute(delete(AttribTable).where(AttribTable.role_id.in_(role_ids)))
        await self._session.execute(delete(NodeRoleTable).where(NodeRoleTable.role_id.in_(role_ids)))
        roles = await self._session.execute(delete(RoleTable).where(RoleTable.snapshot_id == snapshot_id))
        await self._session.execute(delete(JigEventTable).where(JigEventTable.snapshot_id == snapshot_id))
        await DeploymentRepository(self._session).clear_pointers_to(snapshot_id)
        await self._session.execute(delete(SnapshotTable).where(SnapshotTable.id == snapshot_id))
        await self._session.flush()
        logger.info("Destroyed snapshot %d (%d roles)", snapshot_id, roles.rowcount or 0)
        return True

    async def list_nodes(self, snapshot_id: int) -> list[NodeTable]:
        """Return the distinct nodes bound to any role of the snapshot."""
        stmt = (
            select(NodeTable)
            .join(NodeRoleTable, NodeRoleTable.node_id == NodeTable.id)
            .join(RoleTable, RoleTable.id == NodeRoleTable.role_id)
            .where(RoleTable.snapshot_id == snapshot_id)
            .distinct()
            .order_by(NodeTable.name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_attribs(self, snapshot_id: int) -> list[AttribTable]:
        """Return every attribute attached to any role of the snapshot."""
        stmt = (
            select(AttribTable)
            .join(RoleTable, RoleTable.id == AttribTable.role_id)
            .where(RoleTable.snapshot_id == snapshot_id)
            .order_by(*_ROLE_ORDER, AttribTable.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_attrib_types(self, snapshot_id: int) -> list[AttribTypeTable]:
        """Return the distinct attribute types used by the snapshot."""
        stmt = (
            select(AttribTypeTable)
            .join(AttribTable, AttribTable.attrib_type_id == AttribTypeTable.id)
            .join(RoleTable, RoleTable.id == AttribTable.role_id)
            .where(RoleTable.snapshot_id == snapshot_id)
            .distinct()
            .order_by(AttribTypeTable.name)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# RoleRepository
# ---------------------------------------------------------------------------


class RoleRepository:
    """CRUD operations for the ``roles`` table and the rows roles own.

    ``(snapshot_id, name)`` is unique; :meth:`find_or_create` relies on that
    constraint so that concurrent callers converge on a single row.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_name(self, name: str, snapshot_id: int) -> RoleTable | None:
        """Return the role called *name* in the snapshot, or ``None``."""
        stmt = select(RoleTable).where(
            RoleTable.snapshot_id == snapshot_id,
            RoleTable.name == name,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_or_create(
        self,
        name: str,
        snapshot_id: int,
        *,
        description: str | None = None,
        run_order: int = 0,
        order: int = 0,
    ) -> RoleTable:
        """Return the role called *name*, inserting it if absent.

        An existing role is returned unchanged; *description*, *run_order*
        and *order* only apply to a newly inserted row.

        Raises
        ------
        RoleConflictError
            If the insert conflicted and the winning row could not be read
            back.  Retrying the call is expected to succeed.
        """
        existing = await self.find_by_name(name, snapshot_id)
        if existing is not None:
            return existing

        await _dialect_insert_nothing(
            self._session,
            RoleTable,
            values={
                "name": name,
                "snapshot_id": snapshot_id,
                "description": description,
                "run_order": run_order,
                "order": order,
            },
            index_elements=["snapshot_id", "name"],
        )
        await self._session.flush()
        row = await self.find_by_name(name, snapshot_id)
        if row is None:
            raise RoleConflictError(name, snapshot_id)
        logger.debug("Created role %r in snapshot %d", name, snapshot_id)
        return row

    async def list_for_snapshot(self, snapshot_id: int) -> list[RoleTable]:
        """Return all roles of the snapshot by ``(order, run_order)``."""
        stmt = select(RoleTable).where(RoleTable.snapshot_id == snapshot_id).order_by(*_ROLE_ORDER)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_public(self, snapshot_id: int) -> list[RoleTable]:
        """Return roles with a non-negative run order."""
        stmt = (
            select(RoleTable)
            .where(RoleTable.snapshot_id == snapshot_id, RoleTable.run_order >= 0)
            .order_by(*_ROLE_ORDER)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_private(self, snapshot_id: int) -> list[RoleTable]:
        """Return roles with a negative run order."""
        stmt = (
            select(RoleTable)
            .where(RoleTable.snapshot_id == snapshot_id, RoleTable.run_order < 0)
            .order_by(*_ROLE_ORDER)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def add_attrib(
        self,
        role: RoleTable,
        attrib_type: AttribTypeTable,
        node_id: int | None = None,
        description: str | None = None,
        value: Any = None,
    ) -> AttribTable:
        """Attach an instance of *attrib_type* to *role*."""
        row = AttribTable(
            attrib_type_id=attrib_type.id,
            role_id=role.id,
            node_id=node_id,
            description=description,
            value_json=value,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_attribs(self, role_id: int) -> list[AttribTable]:
        stmt = select(AttribTable).where(AttribTable.role_id == role_id).order_by(AttribTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def bind_node(self, role: RoleTable, node_id: int) -> None:
        """Bind a node to *role*; binding an already bound node is a no-op.

        Raises
        ------
        NodeNotFoundError
            If the node does not exist.
        """
        if await self._session.get(NodeTable, node_id) is None:
            raise NodeNotFoundError(node_id)
        await _dialect_insert_nothing(
            self._session,
            NodeRoleTable,
            values={"node_id": node_id, "role_id": role.id},
            index_elements=["node_id", "role_id"],
        )
        await self._session.flush()

    async def list_node_ids(self, role_id: int) -> list[int]:
        stmt = select(NodeRoleTable.node_id).where(NodeRoleTable.role_id == role_id).order_by(NodeRoleTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def deep_clone(
        self,
        role: RoleTable,
        target_snapshot: SnapshotTable,
        with_nodes: bool = True,
    ) -> RoleTable:
        """Copy *role* and everything it owns into *target_snapshot*.

        Attributes are copied with their values deep-copied.  When
        *with_nodes* is false, node bindings are dropped and so are
        attributes that belong to a specific node.
        """
        clone = RoleTable(
            name=role.name,
            description=role.description,
            order=role.order,
            run_order=role.run_order,
            snapshot_id=target_snapshot.id,
            barclamp_id=role.barclamp_id,
        )
        self._session.add(clone)
        await self._session.flush()

        for attrib in await self.list_attribs(role.id):
            if attrib.node_id is not None and not with_nodes:
                continue
            self._session.add(
                AttribTable(
                    attrib_type_id=attrib.attrib_type_id,
                    role_id=clone.id,
                    node_id=attrib.node_id,
                    description=attrib.description,
                    value_json=copy.deepcopy(attrib.value_json),
                )
            )

        if with_nodes:
            for node_id in await self.list_node_ids(role.id):
                self._session.add(NodeRoleTable(node_id=node_id, role_id=clone.id))

        await self._session.flush()
        return clone


# ---------------------------------------------------------------------------
# NodeRepository
# ---------------------------------------------------------------------------


class NodeRepository:
    """CRUD operations for the ``nodes`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, name: str, description: str | None = None) -> NodeTable:
        row = NodeTable(name=name, description=description)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, node_id: int) -> NodeTable | None:
        return await self._session.get(NodeTable, node_id)

    async def get_by_name(self, name: str) -> NodeTable | None:
        stmt = select(NodeTable).where(NodeTable.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# AttribTypeRepository
# ---------------------------------------------------------------------------


class AttribTypeRepository:
    """CRUD operations for the ``attrib_types`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_name(self, name: str) -> AttribTypeTable | None:
        stmt = select(AttribTypeTable).where(AttribTypeTable.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str, description: str | None = None) -> AttribTypeTable:
        """Return the attribute type called *name*, inserting it if absent."""
        await _dialect_insert_nothing(
            self._session,
            AttribTypeTable,
            values={"name": name, "description": description},
            index_elements=["name"],
        )
        await self._session.flush()
        row = await self.get_by_name(name)
        assert row is not None  # noqa: S101
        return row


# ---------------------------------------------------------------------------
# JigEventRepository
# ---------------------------------------------------------------------------


class JigEventRepository:
    """Append-only execution history per snapshot."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        snapshot_id: int,
        from_status: SnapshotStatus | None,
        to_status: SnapshotStatus,
        message: str | None = None,
    ) -> JigEventTable:
        row = JigEventTable(
            snapshot_id=snapshot_id,
            from_status=int(from_status) if from_status is not None else None,
            to_status=int(to_status),
            message=message,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_snapshot(self, snapshot_id: int) -> list[JigEventTable]:
        """Return the snapshot's events, oldest first."""
        stmt = select(JigEventTable).where(JigEventTable.snapshot_id == snapshot_id).order_by(JigEventTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
