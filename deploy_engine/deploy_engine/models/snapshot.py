"""Snapshot status model and read-side views.

A snapshot moves through a caller-driven commit lifecycle::

    CREATED -> QUEUED -> COMMITTING -> APPLIED
                 ^           |
                 |           v
                 +------- FAILED

The ordinal values 1-5 are persisted in the ``snapshots.status`` column
and must not be renumbered.  APPLIED is terminal; a deployment demotes an
applied snapshot by repointing its references, never by changing status.
"""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class SnapshotStatus(IntEnum):
    """Lifecycle state of a snapshot."""

    CREATED = 1
    QUEUED = 2
    COMMITTING = 3
    FAILED = 4
    APPLIED = 5


_TRANSITIONS: dict[SnapshotStatus, frozenset[SnapshotStatus]] = {
    SnapshotStatus.CREATED: frozenset({SnapshotStatus.QUEUED}),
    SnapshotStatus.QUEUED: frozenset({SnapshotStatus.COMMITTING}),
    SnapshotStatus.COMMITTING: frozenset({SnapshotStatus.APPLIED, SnapshotStatus.FAILED}),
    SnapshotStatus.FAILED: frozenset({SnapshotStatus.QUEUED}),
    SnapshotStatus.APPLIED: frozenset(),
}


def can_transition(current: SnapshotStatus | int, target: SnapshotStatus | int) -> bool:
    """Return ``True`` if *current* -> *target* is an allowed transition."""
    try:
        src = SnapshotStatus(current)
        dst = SnapshotStatus(target)
    except ValueError:
        return False
    return dst in _TRANSITIONS[src]


def allowed_targets(current: SnapshotStatus | int) -> frozenset[SnapshotStatus]:
    """Return the statuses reachable in one step from *current*."""
    return _TRANSITIONS[SnapshotStatus(current)]


class SnapshotView(BaseModel):
    """Serialisable projection of a ``snapshots`` row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    order: int = 0
    status: SnapshotStatus = SnapshotStatus.CREATED
    failed_reason: str | None = Field(
        default=None,
        description="Failure cause; only meaningful when status is FAILED.",
    )
    element_order: str | None = Field(
        default=None,
        description="JSON-encoded list of role-name groups.",
    )
    deployment_id: int | None = None
    barclamp_id: int | None = None
    created_at: datetime | None = None


class SnapshotStanding(BaseModel):
    """Derived active/committed/proposed flags for a snapshot."""

    snapshot_id: int
    deployment_id: int | None
    active: bool = False
    committed: bool = False
    proposed: bool = False
