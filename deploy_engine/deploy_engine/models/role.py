"""Role read-side views."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

PRIVATE_ROLE_NAME = "private"
PRIVATE_RUN_ORDER = -1


class RoleView(BaseModel):
    """Serialisable projection of a ``roles`` row.

    ``run_order`` is signed: negative values mark private roles, zero and
    above mark public roles.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    order: int = 0
    run_order: int = 0
    snapshot_id: int

    @property
    def is_private(self) -> bool:
        return self.run_order < 0


class JigEventView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    snapshot_id: int
    from_status: int | None = None
    to_status: int
    message: str | None = None
