"""Human-readable descriptions for rows the snapshot core creates on its own.

Descriptions are produced by a plain function of ``(snapshot_name, key)``
that callers inject into :class:`~deploy_engine.snapshots.ordering.RoleOrderingEngine`.
Nothing here consults process-wide locale state; a caller that needs
another language passes its own message catalog via :func:`make_describer`.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping

ROLE_ADDED = "model.role.added"

DEFAULT_MESSAGES: Mapping[str, str] = {
    ROLE_ADDED: "Added by snapshot {name}",
}

Describer = Callable[[str, str], str]


def describe_role(
    snapshot_name: str,
    key: str = ROLE_ADDED,
    messages: Mapping[str, str] | None = None,
) -> str:
    """Format the message *key* for *snapshot_name*.

    Raises
    ------
    KeyError
        If *key* is not present in the catalog.
    """
    catalog = DEFAULT_MESSAGES if messages is None else messages
    return catalog[key].format(name=snapshot_name)


def make_describer(messages: Mapping[str, str]) -> Describer:
    """Bind :func:`describe_role` to a specific message catalog."""
    return functools.partial(describe_role, messages=messages)
