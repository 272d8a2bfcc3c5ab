"""Domain models for the deploy engine."""

from deploy_engine.models.role import (
    PRIVATE_ROLE_NAME,
    PRIVATE_RUN_ORDER,
    JigEventView,
    RoleView,
)
from deploy_engine.models.snapshot import (
    SnapshotStanding,
    SnapshotStatus,
    SnapshotView,
    allowed_targets,
    can_transition,
)

__all__ = [
    "PRIVATE_ROLE_NAME",
    "PRIVATE_RUN_ORDER",
    "JigEventView",
    "RoleView",
    "SnapshotStanding",
    "SnapshotStatus",
    "SnapshotView",
    "allowed_targets",
    "can_transition",
]
