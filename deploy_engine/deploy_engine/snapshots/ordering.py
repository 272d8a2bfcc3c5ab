"""Role ordering: turn a snapshot's stored ``element_order`` into role rows.

``element_order`` is JSON text describing a two-level nesting of role
names::

    [["database", "keystone"], ["nova-controller"], ["nova-compute"]]

The outer list is an ordered sequence of execution groups; each inner list
names the roles in that group.  :meth:`RoleOrderingEngine.derive_role_order`
materializes every named role (creating missing ones) and returns the
groups as lists of :class:`~deploy_engine.state.tables.RoleTable` rows in
descriptor order.  Whether groups run sequentially and members in parallel
is decided by whoever executes the order; this module only preserves the
structure.

Roles are split by the sign of ``run_order``: negative is *private*
(internal attribute buckets), zero and above is *public*.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from deploy_engine.errors import ElementOrderError, RoleConflictError
from deploy_engine.models.role import PRIVATE_ROLE_NAME, PRIVATE_RUN_ORDER
from deploy_engine.snapshots.descriptions import ROLE_ADDED, Describer, describe_role
from deploy_engine.state.repository import AttribTypeRepository, RoleRepository
from deploy_engine.state.retry import RetryConfig, retry_async
from deploy_engine.state.tables import AttribTable, AttribTypeTable, RoleTable, SnapshotTable

logger = logging.getLogger(__name__)

ElementOrder = list[list[str | None]]

_ELEMENT_ORDER = TypeAdapter(ElementOrder | None)


def parse_element_order(raw: str | None, *, strict: bool = True) -> ElementOrder:
    """Decode a stored ``element_order`` payload.

    An absent payload (``None``, empty or whitespace-only text, JSON
    ``null``) decodes to an empty order.  Inner entries may be ``null``;
    they are kept here and skipped during materialization.

    Parameters
    ----------
    raw:
        JSON text as stored on the snapshot.
    strict:
        When true (the default) a malformed payload raises
        :class:`ElementOrderError`.  When false it is logged and treated
        as an empty order.
    """
    if raw is None or not raw.strip():
        return []
    try:
        parsed = _ELEMENT_ORDER.validate_json(raw)
    except ValidationError as exc:
        if strict:
            raise ElementOrderError(
                f"Malformed element_order ({exc.error_count()} error(s)): {exc.errors()[0]['msg']}",
                raw=raw,
            ) from exc
        logger.warning("Ignoring malformed element_order (%d error(s))", exc.error_count())
        return []
    return parsed or []


def dump_element_order(groups: Iterable[Iterable[str]]) -> str:
    """Encode role-name groups as ``element_order`` JSON text."""
    return json.dumps([list(group) for group in groups])


class RoleOrderingEngine:
    """Materializes and looks up the roles of a snapshot.

    Parameters
    ----------
    session:
        Active database session; all rows are written in its transaction.
    strict:
        Passed to :func:`parse_element_order`.
    retry:
        Backoff used when a role insert loses a uniqueness race.
    describe:
        Formats the description of roles created by :meth:`add_attrib`.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        strict: bool = True,
        retry: RetryConfig | None = None,
        describe: Describer = describe_role,
    ) -> None:
        self._roles = RoleRepository(session)
        self._attrib_types = AttribTypeRepository(session)
        self._strict = strict
        self._retry = retry or RetryConfig()
        self._describe = describe

    async def derive_role_order(self, snapshot: SnapshotTable) -> list[list[RoleTable]]:
        """Return the snapshot's roles grouped as in its ``element_order``.

        Missing roles are created; existing ones are reused.  Falsy entries
        are skipped.  An absent order yields ``[]`` and creates nothing.
        """
        groups = parse_element_order(snapshot.element_order, strict=self._strict)
        ordered: list[list[RoleTable]] = []
        for group in groups:
            roles: list[RoleTable] = []
            for role_name in group:
                if not role_name or not role_name.strip():
                    continue
                roles.append(await self.add_role(snapshot, role_name))
            ordered.append(roles)
        logger.info(
            "Derived role order for snapshot %d: %d group(s), %d role(s)",
            snapshot.id,
            len(ordered),
            sum(len(g) for g in ordered),
        )
        return ordered

    async def add_role(
        self,
        snapshot: SnapshotTable,
        role_name: str,
        *,
        run_order: int = 0,
        description: str | None = None,
    ) -> RoleTable:
        """Get or create the role *role_name* in *snapshot*.

        Calling this twice with the same name returns the same row.

        Raises
        ------
        ValueError
            If *role_name* is empty.
        RoleConflictError
            If the role could not be resolved within the retry budget.
        """
        if not role_name or not role_name.strip():
            raise ValueError("Role name must not be empty")
        return await retry_async(
            lambda: self._roles.find_or_create(
                role_name,
                snapshot.id,
                description=description,
                run_order=run_order,
            ),
            self._retry,
            retry_on=(RoleConflictError,),
        )

    async def private_role(self, snapshot: SnapshotTable) -> RoleTable:
        """Get or create the snapshot's ``"private"`` attribute bucket."""
        return await self.add_role(snapshot, PRIVATE_ROLE_NAME, run_order=PRIVATE_RUN_ORDER)

    async def get_role_by_name(self, snapshot: SnapshotTable, name: str) -> RoleTable | None:
        """Look up a role by name without creating it."""
        return await self._roles.find_by_name(name, snapshot.id)

    async def public_roles(self, snapshot: SnapshotTable) -> list[RoleTable]:
        return await self._roles.list_public(snapshot.id)

    async def private_roles(self, snapshot: SnapshotTable) -> list[RoleTable]:
        return await self._roles.list_private(snapshot.id)

    async def add_attrib(
        self,
        snapshot: SnapshotTable,
        attrib_type: AttribTypeTable | str,
        role_name: str | None = None,
        *,
        value: object = None,
    ) -> AttribTable:
        """Attach an attribute of *attrib_type* to one of the snapshot's roles.

        With no *role_name* the target is the first public role, else the
        first private role, else the ``"private"`` bucket (created on
        demand).  A named role is created if missing, described via the
        injected describer.  The attribute carries no node and is labelled
        with the snapshot name.
        """
        if isinstance(attrib_type, str):
            attrib_type = await self._attrib_types.get_or_create(attrib_type)

        if role_name is None:
            role = await self._default_role(snapshot)
        else:
            role = await self.add_role(
                snapshot,
                role_name,
                description=self._describe(snapshot.name, ROLE_ADDED),
            )

        attrib = await self._roles.add_attrib(role, attrib_type, None, snapshot.name, value)
        logger.debug(
            "Attached attrib type %r to role %r in snapshot %d",
            attrib_type.name,
            role.name,
            snapshot.id,
        )
        return attrib

    async def _default_role(self, snapshot: SnapshotTable) -> RoleTable:
        public = await self._roles.list_public(snapshot.id)
        if public:
            return public[0]
        private = await self._roles.list_private(snapshot.id)
        if private:
            return private[0]
        return await self.private_role(snapshot)
