"""Snapshot core: commit lifecycle, role ordering and deep cloning."""

from deploy_engine.snapshots.cloner import SnapshotCloner
from deploy_engine.snapshots.descriptions import describe_role, make_describer
from deploy_engine.snapshots.lifecycle import (
    SnapshotLifecycle,
    is_active,
    is_committed,
    is_proposed,
)
from deploy_engine.snapshots.ordering import (
    RoleOrderingEngine,
    dump_element_order,
    parse_element_order,
)

__all__ = [
    "RoleOrderingEngine",
    "SnapshotCloner",
    "SnapshotLifecycle",
    "describe_role",
    "dump_element_order",
    "is_active",
    "is_committed",
    "is_proposed",
    "make_describer",
    "parse_element_order",
]
