"""deployctl -- Typer-based operator interface to the snapshot core.

Provides commands for creating deployments and snapshots, driving the
commit lifecycle, deriving role order, cloning and destroying snapshots.
Human-readable output goes to *stderr* via Rich; ``--json`` writes
machine-readable records to *stdout* so that scripts can compose cleanly.

Exit codes: 0 on success, 1 when a row is missing or an operation is
rejected by the core, 3 for configuration errors and malformed input.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from sqlalchemy.ext.asyncio import AsyncSession

from cli.display import display_history, display_role_order, display_snapshot
from deploy_engine.config import Settings, load_settings
from deploy_engine.errors import (
    ConstraintViolationError,
    DeploymentNotFoundError,
    ElementOrderError,
    InvalidTransitionError,
    NotFoundError,
    SnapshotNotFoundError,
    SnapshotValidationError,
)
from deploy_engine.log import configure_logging
from deploy_engine.models import JigEventView, RoleView, SnapshotStanding, SnapshotView
from deploy_engine.snapshots import (
    RoleOrderingEngine,
    SnapshotCloner,
    SnapshotLifecycle,
    parse_element_order,
)
from deploy_engine.state import (
    BarclampRepository,
    DeploymentRepository,
    JigEventRepository,
    SnapshotRepository,
    get_engine,
    get_session,
)
from deploy_engine.state.retry import RetryConfig
from deploy_engine.state.sqlite_adapter import create_local_tables
from deploy_engine.state.tables import RoleTable

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="deployctl",
    help="deployctl - deployment configuration snapshots",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global option populated by the Typer callback.
_json_output: bool = False


class Slot(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    PROPOSED = "proposed"


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output  # noqa: PLW0603
    _json_output = json_mode


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:
    try:
        settings = load_settings()
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc
    configure_logging(settings)
    return settings


def _run(settings: Settings, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run *op* in one session against the configured store.

    Local SQLite stores get their tables created on demand.  Errors raised
    by the core are reported on the console and turned into exit codes.
    """

    async def _main() -> T:
        engine = get_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        try:
            if settings.is_local():
                await create_local_tables(engine)
            async with get_session(engine) as session:
                return await op(session)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_main())
    except ElementOrderError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc
    except (
        NotFoundError,
        InvalidTransitionError,
        ConstraintViolationError,
        SnapshotValidationError,
        ValueError,
    ) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _emit(data: Any) -> None:
    """Write *data* as JSON to stdout."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in data]
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def _parse_json_option(value: str | None, label: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid {label} JSON: {exc}[/red]")
        raise typer.Exit(code=3) from exc


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@app.command()
def init() -> None:
    """Create the state store tables in the configured local database."""
    settings = _load_settings()
    if not settings.is_local():
        console.print("[red]init only manages local SQLite stores; run the Alembic migrations for PostgreSQL.[/red]")
        raise typer.Exit(code=3)

    async def _op(session: AsyncSession) -> None:
        return None

    _run(settings, _op)
    if _json_output:
        _emit({"database_url": settings.database_url, "initialised": True})
    else:
        console.print(f"[green]Initialised state store at {settings.database_url}[/green]")


# ---------------------------------------------------------------------------
# Deployments and snapshots
# ---------------------------------------------------------------------------


@app.command("deployment-create")
def deployment_create(
    name: str = typer.Argument(..., help="Unique deployment name."),
    description: str | None = typer.Option(None, "--description", "-d", help="Free-form description."),
) -> None:
    """Create a deployment."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> dict[str, Any]:
        row = await DeploymentRepository(session).create(name, description)
        return {"id": row.id, "name": row.name, "description": row.description}

    record = _run(settings, _op)
    if _json_output:
        _emit(record)
    else:
        console.print(f"[green]Created deployment[/green] [bold]{record['name']}[/bold] (id {record['id']})")


@app.command("snapshot-create")
def snapshot_create(
    name: str = typer.Argument(..., help="Snapshot name, unique within its deployment."),
    deployment: int | None = typer.Option(
        None,
        "--deployment",
        help="Owning deployment id; omit to create a template.",
    ),
    barclamp: str | None = typer.Option(None, "--barclamp", help="Defining barclamp name."),
    element_order: str | None = typer.Option(
        None,
        "--element-order",
        help='Role groups as JSON, e.g. \'[["database"], ["web", "worker"]]\'.',
    ),
    description: str | None = typer.Option(None, "--description", "-d", help="Free-form description."),
) -> None:
    """Create a snapshot in status CREATED."""
    settings = _load_settings()
    try:
        parse_element_order(element_order)
    except ElementOrderError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc

    async def _op(session: AsyncSession) -> SnapshotView:
        if deployment is not None and await DeploymentRepository(session).get(deployment) is None:
            raise DeploymentNotFoundError(deployment)
        barclamp_id = None
        if barclamp:
            barclamp_id = (await BarclampRepository(session).get_or_create(barclamp)).id
        row = await SnapshotRepository(session).create(
            name,
            deployment_id=deployment,
            barclamp_id=barclamp_id,
            description=description,
            element_order=element_order,
        )
        return SnapshotView.model_validate(row)

    view = _run(settings, _op)
    if _json_output:
        _emit(view)
    else:
        display_snapshot(console, view)


@app.command()
def show(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Show a snapshot's fields, status and standing."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> tuple[SnapshotView, SnapshotStanding]:
        row = await SnapshotRepository(session).require(snapshot_id)
        standing = await SnapshotLifecycle(session).standing(snapshot_id)
        return SnapshotView.model_validate(row), standing

    view, standing = _run(settings, _op)
    if _json_output:
        _emit({**view.model_dump(mode="json"), "standing": standing.model_dump(mode="json")})
    else:
        display_snapshot(console, view, standing)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def _ordering_engine(session: AsyncSession, settings: Settings) -> RoleOrderingEngine:
    return RoleOrderingEngine(
        session,
        strict=settings.strict_element_order,
        retry=RetryConfig.from_settings(settings),
    )


@app.command()
def roles(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Derive the snapshot's role order, creating missing roles."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> tuple[SnapshotView, list[list[RoleView]], list[RoleView]]:
        snapshot = await SnapshotRepository(session).require(snapshot_id)
        engine = _ordering_engine(session, settings)
        groups = await engine.derive_role_order(snapshot)
        private = await engine.private_roles(snapshot)
        return (
            SnapshotView.model_validate(snapshot),
            [[RoleView.model_validate(role) for role in group] for group in groups],
            [RoleView.model_validate(role) for role in private],
        )

    view, groups, private = _run(settings, _op)
    if _json_output:
        _emit(
            {
                "snapshot_id": view.id,
                "groups": [[role.name for role in group] for group in groups],
                "private": [role.name for role in private],
            }
        )
    else:
        display_role_order(console, view, groups, private)


@app.command("add-attrib")
def add_attrib(
    snapshot_id: int = typer.Argument(..., help="Snapshot id."),
    attrib_type: str = typer.Argument(..., help="Attribute type name (created if missing)."),
    role: str | None = typer.Option(
        None,
        "--role",
        help="Target role; defaults to the first public, then private role.",
    ),
    value: str | None = typer.Option(None, "--value", help="Attribute value as JSON."),
) -> None:
    """Attach an attribute to one of the snapshot's roles."""
    settings = _load_settings()
    parsed_value = _parse_json_option(value, "--value")

    async def _op(session: AsyncSession) -> dict[str, Any]:
        snapshot = await SnapshotRepository(session).require(snapshot_id)
        engine = _ordering_engine(session, settings)
        attrib = await engine.add_attrib(snapshot, attrib_type, role, value=parsed_value)
        target = await session.get(RoleTable, attrib.role_id)
        return {
            "id": attrib.id,
            "snapshot_id": snapshot_id,
            "role": target.name if target is not None else None,
            "attrib_type": attrib_type,
            "description": attrib.description,
            "value": attrib.value_json,
        }

    record = _run(settings, _op)
    if _json_output:
        _emit(record)
    else:
        console.print(
            f"[green]Attached[/green] [bold]{record['attrib_type']}[/bold] to role "
            f"[bold]{record['role']}[/bold] of snapshot {snapshot_id}"
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _transition(
    snapshot_id: int,
    step: Callable[[SnapshotLifecycle], Awaitable[Any]],
) -> None:
    settings = _load_settings()

    async def _op(session: AsyncSession) -> SnapshotView:
        row = await step(SnapshotLifecycle(session))
        return SnapshotView.model_validate(row)

    view = _run(settings, _op)
    if _json_output:
        _emit(view)
    else:
        display_snapshot(console, view)


@app.command()
def queue(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Request a commit (CREATED -> QUEUED)."""
    _transition(snapshot_id, lambda lc: lc.queue(snapshot_id))


@app.command()
def begin(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Start commit processing (QUEUED -> COMMITTING)."""
    _transition(snapshot_id, lambda lc: lc.begin_commit(snapshot_id))


@app.command()
def apply(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Record a successful commit (COMMITTING -> APPLIED)."""
    _transition(snapshot_id, lambda lc: lc.mark_applied(snapshot_id))


@app.command()
def fail(
    snapshot_id: int = typer.Argument(..., help="Snapshot id."),
    reason: str = typer.Option(..., "--reason", help="Why the commit failed."),
) -> None:
    """Record a failed commit (COMMITTING -> FAILED)."""
    _transition(snapshot_id, lambda lc: lc.mark_failed(snapshot_id, reason))


@app.command()
def retry(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Re-queue a failed snapshot (FAILED -> QUEUED)."""
    _transition(snapshot_id, lambda lc: lc.retry(snapshot_id))


@app.command()
def promote(
    snapshot_id: int = typer.Argument(..., help="Snapshot id."),
    slot: Slot = typer.Option(..., "--slot", help="Deployment pointer to repoint."),
) -> None:
    """Point the owning deployment's active/committed/proposed slot at a snapshot."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> SnapshotStanding:
        snapshot = await SnapshotRepository(session).require(snapshot_id)
        if snapshot.deployment_id is None:
            raise SnapshotValidationError(f"Snapshot {snapshot_id} is a template and has no deployment")
        await DeploymentRepository(session).point(snapshot.deployment_id, slot.value, snapshot_id)
        return await SnapshotLifecycle(session).standing(snapshot_id)

    standing = _run(settings, _op)
    if _json_output:
        _emit(standing)
    else:
        console.print(
            f"[green]Deployment {standing.deployment_id}[/green] {slot.value} snapshot -> [bold]{snapshot_id}[/bold]"
        )


# ---------------------------------------------------------------------------
# Clone / destroy / history
# ---------------------------------------------------------------------------


@app.command()
def clone(
    snapshot_id: int = typer.Argument(..., help="Source snapshot id."),
    deployment: int | None = typer.Option(
        None,
        "--deployment",
        help="Deployment that owns the clone; omit to produce a template.",
    ),
    name: str | None = typer.Option(None, "--name", help="Clone name (default: '<name>_<id>')."),
    nodes: bool = typer.Option(True, "--nodes/--no-nodes", help="Copy node bindings and node attributes."),
) -> None:
    """Deep-clone a snapshot with its roles and attributes."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> SnapshotView:
        row = await SnapshotCloner(session).deep_clone_by_id(snapshot_id, deployment, name, with_nodes=nodes)
        return SnapshotView.model_validate(row)

    view = _run(settings, _op)
    if _json_output:
        _emit(view)
    else:
        console.print(f"[green]Cloned snapshot {snapshot_id}[/green] -> [bold]{view.name}[/bold] (id {view.id})")


@app.command()
def destroy(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """Delete a snapshot and everything it owns."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> bool:
        if not await SnapshotRepository(session).destroy(snapshot_id):
            raise SnapshotNotFoundError(snapshot_id)
        return True

    _run(settings, _op)
    if _json_output:
        _emit({"snapshot_id": snapshot_id, "destroyed": True})
    else:
        console.print(f"[green]Destroyed snapshot {snapshot_id}[/green]")


@app.command()
def history(snapshot_id: int = typer.Argument(..., help="Snapshot id.")) -> None:
    """List the snapshot's jig events, oldest first."""
    settings = _load_settings()

    async def _op(session: AsyncSession) -> tuple[SnapshotView, list[JigEventView]]:
        snapshot = await SnapshotRepository(session).require(snapshot_id)
        events = await JigEventRepository(session).list_for_snapshot(snapshot_id)
        return SnapshotView.model_validate(snapshot), [JigEventView.model_validate(e) for e in events]

    view, events = _run(settings, _op)
    if _json_output:
        _emit(events)
    else:
        display_history(console, view, events)
