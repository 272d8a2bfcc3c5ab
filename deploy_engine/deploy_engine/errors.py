"""Exception hierarchy for the deploy engine.

Every error raised by the snapshot core derives from :class:`DeployEngineError`
so callers can catch the whole family in one place.  The four families
mirror how a caller is expected to react:

* :class:`NotFoundError` -- a required row is absent; not retryable.
* :class:`ConstraintViolationError` -- a uniqueness or compare-and-set
  conflict; re-reading and retrying is expected to succeed.
* :class:`SnapshotValidationError` -- scalar fields could not be persisted.
* :class:`ElementOrderError` -- the stored role ordering descriptor is
  malformed.
"""

from __future__ import annotations


class DeployEngineError(Exception):
    """Base class for all deploy engine errors."""


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(DeployEngineError):
    """Raised when a referenced row does not exist."""

    entity = "record"

    def __init__(self, key: object) -> None:
        self.key = key
        super().__init__(f"{self.entity.capitalize()} not found: {key!r}")


class SnapshotNotFoundError(NotFoundError):
    entity = "snapshot"


class DeploymentNotFoundError(NotFoundError):
    entity = "deployment"


class BarclampNotFoundError(NotFoundError):
    entity = "barclamp"


class NodeNotFoundError(NotFoundError):
    entity = "node"


# ---------------------------------------------------------------------------
# Constraint violations
# ---------------------------------------------------------------------------


class ConstraintViolationError(DeployEngineError):
    """Raised when a write loses a uniqueness or compare-and-set race."""


class RoleConflictError(ConstraintViolationError):
    """A role insert conflicted but the winning row could not be read back."""

    def __init__(self, role_name: str, snapshot_id: int) -> None:
        self.role_name = role_name
        self.snapshot_id = snapshot_id
        super().__init__(f"Role '{role_name}' in snapshot {snapshot_id} could not be resolved after conflict")


class StaleStatusError(ConstraintViolationError):
    """The snapshot status changed between read and write."""

    def __init__(self, snapshot_id: int, expected: int) -> None:
        self.snapshot_id = snapshot_id
        self.expected = expected
        super().__init__(f"Snapshot {snapshot_id} is no longer in status {expected}")


# ---------------------------------------------------------------------------
# Validation / state
# ---------------------------------------------------------------------------


class SnapshotValidationError(DeployEngineError):
    """Raised when snapshot scalar fields fail to persist."""


class ElementOrderError(DeployEngineError):
    """Raised when a stored ``element_order`` payload cannot be decoded."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class InvalidTransitionError(DeployEngineError):
    """Raised when a snapshot status change is not an allowed transition."""

    def __init__(self, snapshot_id: int | None, current: object, target: object) -> None:
        self.snapshot_id = snapshot_id
        self.current = current
        self.target = target
        src = getattr(current, "name", current)
        dst = getattr(target, "name", target)
        super().__init__(f"Snapshot {snapshot_id}: transition {src} -> {dst} is not allowed")
