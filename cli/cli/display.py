"""Rich output formatting for the deployctl CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from deploy_engine.models import SnapshotStatus

if TYPE_CHECKING:
    from deploy_engine.models import JigEventView, RoleView, SnapshotStanding, SnapshotView


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "CREATED": "dim",
    "QUEUED": "yellow",
    "COMMITTING": "cyan",
    "FAILED": "red",
    "APPLIED": "green",
}


def _status_name(status: SnapshotStatus | int | None) -> str:
    if status is None:
        return "-"
    try:
        return SnapshotStatus(status).name
    except ValueError:
        return str(status)


def _coloured_status(status: SnapshotStatus | int | None) -> str:
    """Return a Rich markup string with the status colour-coded."""
    name = _status_name(status)
    colour = _STATUS_COLOURS.get(name, "white")
    return f"[{colour}]{name}[/{colour}]"


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def display_snapshot(
    console: Console,
    snapshot: SnapshotView,
    standing: SnapshotStanding | None = None,
) -> None:
    """Render a snapshot's fields and deployment standing.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    snapshot:
        The snapshot to display.
    standing:
        Active/committed/proposed flags; omitted for freshly created rows.
    """
    lines = [
        f"[bold]ID:[/bold]          {snapshot.id}",
        f"[bold]Name:[/bold]        {snapshot.name}",
        f"[bold]Status:[/bold]      {_coloured_status(snapshot.status)}",
        f"[bold]Deployment:[/bold]  {snapshot.deployment_id if snapshot.deployment_id is not None else '(template)'}",
        f"[bold]Barclamp:[/bold]    {snapshot.barclamp_id if snapshot.barclamp_id is not None else '-'}",
        f"[bold]Order:[/bold]       {snapshot.order}",
    ]
    if snapshot.description:
        lines.append(f"[bold]Description:[/bold] {snapshot.description}")
    if snapshot.failed_reason:
        lines.append(f"[bold]Failed:[/bold]      [red]{snapshot.failed_reason}[/red]")
    if snapshot.element_order:
        lines.append(f"[bold]Elements:[/bold]    {snapshot.element_order}")

    if standing is not None:
        flags = [
            name
            for name, enabled in (
                ("active", standing.active),
                ("committed", standing.committed),
                ("proposed", standing.proposed),
            )
            if enabled
        ]
        lines.append(f"[bold]Standing:[/bold]    {', '.join(flags) if flags else '[dim]none[/dim]'}")

    console.print(Panel("\n".join(lines), title="Snapshot", border_style="blue"))


# ---------------------------------------------------------------------------
# Role order
# ---------------------------------------------------------------------------


def display_role_order(
    console: Console,
    snapshot: SnapshotView,
    groups: list[list[RoleView]],
    private: list[RoleView],
) -> None:
    """Render the derived role order as a tree of execution groups.

    Parameters
    ----------
    console:
        Rich console to write to.
    snapshot:
        Snapshot the roles belong to.
    groups:
        Role groups in ``element_order`` order.
    private:
        Private (negative run order) roles, listed separately.
    """
    tree = Tree(f"[bold yellow]{snapshot.name}[/bold yellow]", guide_style="dim")

    if not groups:
        tree.add("[dim]no element order[/dim]")
    for idx, group in enumerate(groups, start=1):
        branch = tree.add(f"[bold blue]group {idx}[/bold blue]")
        if not group:
            branch.add("[dim]empty[/dim]")
        for role in group:
            branch.add(f"[blue]{role.name}[/blue]")

    if private:
        private_branch = tree.add("[bold magenta]private[/bold magenta]")
        for role in private:
            private_branch.add(f"[magenta]{role.name}[/magenta] [dim](run order {role.run_order})[/dim]")

    console.print(Panel(tree, title="Role Order", border_style="yellow"))

    total = sum(len(group) for group in groups)
    console.print(f"[bold]{len(groups)}[/bold] group(s), [bold]{total}[/bold] role(s)")


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def display_history(console: Console, snapshot: SnapshotView, events: list[JigEventView]) -> None:
    """Render the jig events of a snapshot, oldest first."""
    if not events:
        console.print(f"[dim]No history for snapshot {snapshot.id}.[/dim]")
        return

    table = Table(
        title=f"History of {snapshot.name}",
        show_lines=False,
        pad_edge=True,
        expand=False,
    )
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Message")

    for idx, event in enumerate(events, start=1):
        table.add_row(
            str(idx),
            _coloured_status(event.from_status),
            _coloured_status(event.to_status),
            event.message or "",
        )

    console.print(table)
