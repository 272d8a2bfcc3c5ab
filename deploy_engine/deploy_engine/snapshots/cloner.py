"""Deep cloning of snapshots.

A clone is a new snapshot row plus a copy of every role the source owns,
each with its attributes and (optionally) node bindings.  Typical uses:

* branch a template (no deployment) into a live deployment;
* re-propose a deployment's configuration under a new name;
* strip node assignments from a live snapshot to make a reusable template
  (``with_nodes=False``).

The new snapshot is flushed before its roles are cloned so that role rows
can reference it.  The clone is not atomic on its own; the caller's
session (see :func:`~deploy_engine.state.database.get_session`) is the
transaction boundary.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.errors import DeploymentNotFoundError
from deploy_engine.state.repository import DeploymentRepository, RoleRepository, SnapshotRepository
from deploy_engine.state.tables import DeploymentTable, SnapshotTable

logger = logging.getLogger(__name__)


class SnapshotCloner:
    """Produces structurally independent copies of snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self._snapshots = SnapshotRepository(session)
        self._deployments = DeploymentRepository(session)
        self._roles = RoleRepository(session)

    async def deep_clone(
        self,
        snapshot: SnapshotTable,
        target_deployment: DeploymentTable | None = None,
        name: str | None = None,
        with_nodes: bool = True,
    ) -> SnapshotTable:
        """Clone *snapshot* and its full role graph.

        Parameters
        ----------
        snapshot:
            Source snapshot; it is not modified.
        target_deployment:
            Deployment that owns the clone.  ``None`` makes the clone a
            template with no deployment.
        name:
            Name of the clone.  Defaults to ``"{source name}_{source id}"``.
        with_nodes:
            Copy node bindings and node-specific attributes.

        Returns
        -------
        SnapshotTable
            The new snapshot in status CREATED with no failure reason.

        Raises
        ------
        SnapshotValidationError
            If the new snapshot row cannot be saved; no role is cloned.
        """
        clone_name = name or f"{snapshot.name}_{snapshot.id}"
        deployment_id = target_deployment.id if target_deployment is not None else None

        clone = await self._snapshots.duplicate(snapshot, deployment_id=deployment_id, name=clone_name)

        roles = await self._roles.list_for_snapshot(snapshot.id)
        for role in roles:
            await self._roles.deep_clone(role, clone, with_nodes=with_nodes)

        logger.info(
            "Cloned snapshot %d -> %d as %r (%d roles, with_nodes=%s)",
            snapshot.id,
            clone.id,
            clone_name,
            len(roles),
            with_nodes,
            extra={"snapshot": {"id": clone.id, "source_id": snapshot.id, "deployment_id": deployment_id}},
        )
        return clone

    async def deep_clone_by_id(
        self,
        snapshot_id: int,
        deployment_id: int | None = None,
        name: str | None = None,
        with_nodes: bool = True,
    ) -> SnapshotTable:
        """Resolve ids and delegate to :meth:`deep_clone`.

        Raises
        ------
        SnapshotNotFoundError
            If the source snapshot does not exist.
        DeploymentNotFoundError
            If *deployment_id* is given but does not exist.
        """
        snapshot = await self._snapshots.require(snapshot_id)
        deployment = None
        if deployment_id is not None:
            deployment = await self._deployments.get(deployment_id)
            if deployment is None:
                raise DeploymentNotFoundError(deployment_id)
        return await self.deep_clone(snapshot, deployment, name, with_nodes)
