"""Unit tests for the state repositories.

Covers:
- Snapshot persistence validation and name uniqueness
- Compare-and-set status updates
- Role get-or-create and node binding
- Explicit snapshot destruction leaving no orphans
- Deployment pointers and barclamps
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from deploy_engine.errors import (
    BarclampNotFoundError,
    DeploymentNotFoundError,
    NodeNotFoundError,
    SnapshotNotFoundError,
    SnapshotValidationError,
    StaleStatusError,
)
from deploy_engine.models import SnapshotStatus
from deploy_engine.snapshots.lifecycle import SnapshotLifecycle
from deploy_engine.snapshots.ordering import RoleOrderingEngine
from deploy_engine.state.repository import (
    AttribTypeRepository,
    BarclampRepository,
    DeploymentRepository,
    NodeRepository,
    RoleRepository,
    SnapshotRepository,
)
from deploy_engine.state.tables import (
    AttribTable,
    DeploymentTable,
    JigEventTable,
    NodeRoleTable,
    NodeTable,
    RoleTable,
    SnapshotTable,
)


async def _count(session, table) -> int:
    result = await session.execute(select(func.count()).select_from(table))
    return result.scalar_one()


# ---------------------------------------------------------------------------
# SnapshotRepository.save / create
# ---------------------------------------------------------------------------


class TestSnapshotSave:
    @pytest.mark.asyncio
    async def test_create_defaults(self, async_session):
        row = await SnapshotRepository(async_session).create("havana")
        assert row.id is not None
        assert row.status == SnapshotStatus.CREATED
        assert row.order == 0
        assert row.failed_reason is None

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, async_session):
        with pytest.raises(SnapshotValidationError):
            await SnapshotRepository(async_session).create("  ")

    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, async_session):
        row = SnapshotTable(name="havana", status=9, order=0)
        with pytest.raises(SnapshotValidationError):
            await SnapshotRepository(async_session).save(row)

    @pytest.mark.asyncio
    async def test_name_unique_within_deployment(self, async_session, deployment):
        repo = SnapshotRepository(async_session)
        await repo.create("havana", deployment_id=deployment.id)
        with pytest.raises(SnapshotValidationError):
            await repo.create("havana", deployment_id=deployment.id)

    @pytest.mark.asyncio
    async def test_name_unique_among_templates(self, async_session):
        repo = SnapshotRepository(async_session)
        await repo.create("havana")
        with pytest.raises(SnapshotValidationError):
            await repo.create("havana")

    @pytest.mark.asyncio
    async def test_same_name_across_deployments(self, async_session, deployment):
        repo = SnapshotRepository(async_session)
        await repo.create("havana")
        row = await repo.create("havana", deployment_id=deployment.id)
        assert row.deployment_id == deployment.id

    @pytest.mark.asyncio
    async def test_save_existing_row(self, async_session):
        repo = SnapshotRepository(async_session)
        row = await repo.create("havana")
        row.description = "updated"
        await repo.save(row)
        assert (await repo.get_by_name("havana", None)).description == "updated"

    @pytest.mark.asyncio
    async def test_require_missing(self, async_session):
        with pytest.raises(SnapshotNotFoundError, match="Snapshot not found: 7"):
            await SnapshotRepository(async_session).require(7)

    @pytest.mark.asyncio
    async def test_missing_deployment_keeps_earlier_work(self, async_session):
        await DeploymentRepository(async_session).create("keep")

        with pytest.raises(DeploymentNotFoundError, match="Deployment not found: 999"):
            await SnapshotRepository(async_session).create("havana", deployment_id=999)

        assert await _count(async_session, DeploymentTable) == 1
        assert await _count(async_session, SnapshotTable) == 0

    @pytest.mark.asyncio
    async def test_missing_barclamp(self, async_session):
        with pytest.raises(BarclampNotFoundError):
            await SnapshotRepository(async_session).create("havana", barclamp_id=42)

    @pytest.mark.asyncio
    async def test_duplicate_into_missing_deployment(self, async_session, make_snapshot):
        source = await make_snapshot()
        with pytest.raises(DeploymentNotFoundError):
            await SnapshotRepository(async_session).duplicate(source, deployment_id=999, name="copy")
        assert await _count(async_session, SnapshotTable) == 1

    @pytest.mark.asyncio
    async def test_set_element_order(self, async_session):
        repo = SnapshotRepository(async_session)
        row = await repo.create("havana")
        await repo.set_element_order(row.id, '[["a"]]')
        assert row.element_order == '[["a"]]'


# ---------------------------------------------------------------------------
# SnapshotRepository.update_status
# ---------------------------------------------------------------------------


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_compare_and_set(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = SnapshotRepository(async_session)
        await repo.update_status(snapshot.id, SnapshotStatus.QUEUED, expected_status=SnapshotStatus.CREATED)
        await async_session.refresh(snapshot)
        assert snapshot.status == SnapshotStatus.QUEUED

    @pytest.mark.asyncio
    async def test_stale_expected_status(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = SnapshotRepository(async_session)
        with pytest.raises(StaleStatusError):
            await repo.update_status(snapshot.id, SnapshotStatus.COMMITTING, expected_status=SnapshotStatus.QUEUED)
        await async_session.refresh(snapshot)
        assert snapshot.status == SnapshotStatus.CREATED

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, async_session):
        with pytest.raises(SnapshotNotFoundError):
            await SnapshotRepository(async_session).update_status(404, SnapshotStatus.QUEUED)

    @pytest.mark.asyncio
    async def test_failed_reason_left_alone_by_default(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = SnapshotRepository(async_session)
        await repo.update_status(snapshot.id, SnapshotStatus.FAILED, failed_reason="boom")
        await repo.update_status(snapshot.id, SnapshotStatus.QUEUED)
        await async_session.refresh(snapshot)
        assert snapshot.failed_reason == "boom"


# ---------------------------------------------------------------------------
# RoleRepository
# ---------------------------------------------------------------------------


class TestRoleRepository:
    @pytest.mark.asyncio
    async def test_find_or_create(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = RoleRepository(async_session)
        created = await repo.find_or_create("nova", snapshot.id, description="compute", run_order=2, order=1)
        assert (created.description, created.run_order, created.order) == ("compute", 2, 1)

        again = await repo.find_or_create("nova", snapshot.id)
        assert again.id == created.id
        assert await _count(async_session, RoleTable) == 1

    @pytest.mark.asyncio
    async def test_find_by_name(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = RoleRepository(async_session)
        assert await repo.find_by_name("nova", snapshot.id) is None
        role = await repo.find_or_create("nova", snapshot.id)
        assert await repo.find_by_name("nova", snapshot.id) is role

    @pytest.mark.asyncio
    async def test_ordering_key(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = RoleRepository(async_session)
        await repo.find_or_create("late", snapshot.id, order=2)
        await repo.find_or_create("hidden", snapshot.id, run_order=-1)
        await repo.find_or_create("early", snapshot.id, order=0, run_order=1)
        names = [r.name for r in await repo.list_for_snapshot(snapshot.id)]
        assert names == ["hidden", "early", "late"]

    @pytest.mark.asyncio
    async def test_bind_node_is_idempotent(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = RoleRepository(async_session)
        role = await repo.find_or_create("nova", snapshot.id)
        node = await NodeRepository(async_session).create("compute-1")

        await repo.bind_node(role, node.id)
        await repo.bind_node(role, node.id)

        assert await repo.list_node_ids(role.id) == [node.id]

    @pytest.mark.asyncio
    async def test_bind_missing_node(self, async_session, make_snapshot):
        snapshot = await make_snapshot()
        repo = RoleRepository(async_session)
        role = await repo.find_or_create("nova", snapshot.id)

        with pytest.raises(NodeNotFoundError, match="Node not found: 404"):
            await repo.bind_node(role, 404)
        assert await repo.list_node_ids(role.id) == []


# ---------------------------------------------------------------------------
# SnapshotRepository.destroy
# ---------------------------------------------------------------------------


class TestDestroy:
    @pytest.mark.asyncio
    async def test_no_orphans(self, async_session, make_snapshot, deployment):
        snapshot = await make_snapshot(deployment_id=deployment.id, element_order='[["database"], ["nova"]]')
        engine = RoleOrderingEngine(async_session)
        (database,), (nova,) = await engine.derive_role_order(snapshot)
        await engine.add_attrib(snapshot, "ntp")
        node = await NodeRepository(async_session).create("compute-1")
        await RoleRepository(async_session).bind_node(nova, node.id)
        lifecycle = SnapshotLifecycle(async_session)
        await lifecycle.queue(snapshot.id)
        await DeploymentRepository(async_session).point(deployment.id, "proposed", snapshot.id)

        assert await SnapshotRepository(async_session).destroy(snapshot.id) is True

        assert await SnapshotRepository(async_session).get(snapshot.id) is None
        for table in (RoleTable, AttribTable, NodeRoleTable, JigEventTable):
            assert await _count(async_session, table) == 0
        await async_session.refresh(deployment)
        assert deployment.proposed_snapshot_id is None
        # Nodes and attribute types are shared and survive.
        assert await _count(async_session, NodeTable) == 1
        assert await AttribTypeRepository(async_session).get_by_name("ntp") is not None

    @pytest.mark.asyncio
    async def test_other_snapshots_untouched(self, async_session, make_snapshot):
        doomed = await make_snapshot("doomed", element_order='[["a"]]')
        kept = await make_snapshot("kept", element_order='[["a"]]')
        engine = RoleOrderingEngine(async_session)
        await engine.derive_role_order(doomed)
        await engine.derive_role_order(kept)

        await SnapshotRepository(async_session).destroy(doomed.id)

        assert [r.name for r in await RoleRepository(async_session).list_for_snapshot(kept.id)] == ["a"]

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, async_session):
        assert await SnapshotRepository(async_session).destroy(404) is False


# ---------------------------------------------------------------------------
# Deployments / barclamps
# ---------------------------------------------------------------------------


class TestDeploymentRepository:
    @pytest.mark.asyncio
    async def test_duplicate_name(self, async_session, deployment):
        with pytest.raises(ValueError):
            await DeploymentRepository(async_session).create(deployment.name)

    @pytest.mark.asyncio
    async def test_list_all_sorted(self, async_session):
        repo = DeploymentRepository(async_session)
        await repo.create("zeta")
        await repo.create("alpha")
        assert [d.name for d in await repo.list_all()] == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_point_and_clear(self, async_session, deployment, make_snapshot):
        snapshot = await make_snapshot(deployment_id=deployment.id)
        repo = DeploymentRepository(async_session)
        await repo.point(deployment.id, "active", snapshot.id)
        assert deployment.active_snapshot_id == snapshot.id
        await repo.point(deployment.id, "active", None)
        assert deployment.active_snapshot_id is None

    @pytest.mark.asyncio
    async def test_point_unknown_slot(self, async_session, deployment):
        with pytest.raises(ValueError):
            await DeploymentRepository(async_session).point(deployment.id, "staging", 1)

    @pytest.mark.asyncio
    async def test_point_missing_deployment(self, async_session):
        with pytest.raises(DeploymentNotFoundError):
            await DeploymentRepository(async_session).point(404, "active", 1)


class TestBarclampRepository:
    @pytest.mark.asyncio
    async def test_get_or_create(self, async_session):
        repo = BarclampRepository(async_session)
        first = await repo.get_or_create("openstack", "OpenStack roles")
        second = await repo.get_or_create("openstack")
        assert first.id == second.id
        assert second.description == "OpenStack roles"
        assert await repo.get(first.id) is first
