"""Snapshot commit lifecycle.

:class:`SnapshotLifecycle` is the only writer of ``snapshots.status``.  Each
operation checks the transition against
:func:`~deploy_engine.models.snapshot.can_transition`, writes the new status
as a compare-and-set on the status it read, and appends a jig event to the
snapshot's history.  Nothing advances on its own: every step is a call.

The active/committed/proposed standing of a snapshot is not stored on the
snapshot.  It is derived from the owning deployment's pointers by
:func:`is_active`, :func:`is_committed` and :func:`is_proposed`.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.errors import InvalidTransitionError
from deploy_engine.models.snapshot import SnapshotStanding, SnapshotStatus, can_transition
from deploy_engine.state.repository import (
    DeploymentRepository,
    JigEventRepository,
    SnapshotRepository,
)
from deploy_engine.state.tables import DeploymentTable, SnapshotTable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Derived predicates
# ---------------------------------------------------------------------------


def _points_at(snapshot: SnapshotTable, deployment: DeploymentTable | None, column: str) -> bool:
    if deployment is None or snapshot.deployment_id is None:
        return False
    if snapshot.deployment_id != deployment.id:
        return False
    return getattr(deployment, column) == snapshot.id


def is_active(snapshot: SnapshotTable, deployment: DeploymentTable | None) -> bool:
    """True if *deployment* is the snapshot's owner and points its active slot at it."""
    return _points_at(snapshot, deployment, "active_snapshot_id")


def is_committed(snapshot: SnapshotTable, deployment: DeploymentTable | None) -> bool:
    """True if *deployment* is the snapshot's owner and points its committed slot at it."""
    return _points_at(snapshot, deployment, "committed_snapshot_id")


def is_proposed(snapshot: SnapshotTable, deployment: DeploymentTable | None) -> bool:
    """True if *deployment* is the snapshot's owner and points its proposed slot at it."""
    return _points_at(snapshot, deployment, "proposed_snapshot_id")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class SnapshotLifecycle:
    """Drives snapshots through CREATED -> QUEUED -> COMMITTING -> APPLIED | FAILED.

    Parameters
    ----------
    session:
        Active database session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._snapshots = SnapshotRepository(session)
        self._deployments = DeploymentRepository(session)
        self._events = JigEventRepository(session)

    async def queue(self, snapshot_id: int) -> SnapshotTable:
        """Request a commit of a freshly created snapshot (CREATED -> QUEUED)."""
        return await self._transition(
            snapshot_id,
            SnapshotStatus.QUEUED,
            sources=(SnapshotStatus.CREATED,),
            message="commit requested",
        )

    async def retry(self, snapshot_id: int) -> SnapshotTable:
        """Re-queue a failed snapshot (FAILED -> QUEUED).

        The previous ``failed_reason`` is kept until the next outcome is
        recorded.  Limiting the number of retries is up to the caller.
        """
        return await self._transition(
            snapshot_id,
            SnapshotStatus.QUEUED,
            sources=(SnapshotStatus.FAILED,),
            message="commit retried",
        )

    async def begin_commit(self, snapshot_id: int) -> SnapshotTable:
        """Mark commit processing as started (QUEUED -> COMMITTING)."""
        return await self._transition(
            snapshot_id,
            SnapshotStatus.COMMITTING,
            sources=(SnapshotStatus.QUEUED,),
            message="commit started",
        )

    async def mark_applied(self, snapshot_id: int) -> SnapshotTable:
        """Record a successful commit (COMMITTING -> APPLIED); clears ``failed_reason``."""
        return await self._transition(
            snapshot_id,
            SnapshotStatus.APPLIED,
            sources=(SnapshotStatus.COMMITTING,),
            failed_reason=None,
            message="commit applied",
        )

    async def mark_failed(self, snapshot_id: int, reason: str = "") -> SnapshotTable:
        """Record a failed commit (COMMITTING -> FAILED) with its cause, which may be empty."""
        return await self._transition(
            snapshot_id,
            SnapshotStatus.FAILED,
            sources=(SnapshotStatus.COMMITTING,),
            failed_reason=reason,
            message=reason or "commit failed",
        )

    async def advance(
        self,
        snapshot_id: int,
        target: SnapshotStatus,
        reason: str | None = None,
    ) -> SnapshotTable:
        """Dispatch to the operation that moves the snapshot to *target*.

        Raises
        ------
        InvalidTransitionError
            If no allowed transition from the current status leads to *target*.
        """
        target = SnapshotStatus(target)
        if target is SnapshotStatus.QUEUED:
            snapshot = await self._snapshots.require(snapshot_id)
            if snapshot.status == SnapshotStatus.FAILED:
                return await self.retry(snapshot_id)
            return await self.queue(snapshot_id)
        if target is SnapshotStatus.COMMITTING:
            return await self.begin_commit(snapshot_id)
        if target is SnapshotStatus.APPLIED:
            return await self.mark_applied(snapshot_id)
        if target is SnapshotStatus.FAILED:
            return await self.mark_failed(snapshot_id, reason or "")
        snapshot = await self._snapshots.require(snapshot_id)
        raise InvalidTransitionError(snapshot_id, SnapshotStatus(snapshot.status), target)

    async def standing(self, snapshot_id: int) -> SnapshotStanding:
        """Return the snapshot's active/committed/proposed flags."""
        snapshot = await self._snapshots.require(snapshot_id)
        deployment = None
        if snapshot.deployment_id is not None:
            deployment = await self._deployments.get(snapshot.deployment_id)
        return SnapshotStanding(
            snapshot_id=snapshot.id,
            deployment_id=snapshot.deployment_id,
            active=is_active(snapshot, deployment),
            committed=is_committed(snapshot, deployment),
            proposed=is_proposed(snapshot, deployment),
        )

    async def _transition(
        self,
        snapshot_id: int,
        target: SnapshotStatus,
        *,
        sources: tuple[SnapshotStatus, ...],
        message: str | None = None,
        **changes: Any,
    ) -> SnapshotTable:
        snapshot = await self._snapshots.require(snapshot_id)
        current = SnapshotStatus(snapshot.status)
        if current not in sources or not can_transition(current, target):
            raise InvalidTransitionError(snapshot_id, current, target)

        await self._snapshots.update_status(snapshot_id, target, expected_status=current, **changes)
        await self._events.record(snapshot_id, current, target, message)
        await self._session.refresh(snapshot)
        logger.info(
            "Snapshot %d: %s -> %s",
            snapshot_id,
            current.name,
            target.name,
            extra={"snapshot": {"id": snapshot_id, "from": current.name, "to": target.name}},
        )
        return snapshot
