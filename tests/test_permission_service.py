import json

import pytest
from sqlalchemy import select

from erp_access.core.exceptions import ResourceNotFoundError
from erp_access.models.role import RolePermission
from erp_access.schemas.schemas import PermissionUpdate
from erp_access.services.permission_policy import RESOURCES, SUB_PERMISSIONS
from erp_access.services.permission_service import PermissionService, permission_service

pytestmark = pytest.mark.asyncio


async def _row(db, role, resource):
    result = await db.execute(
        select(RolePermission).where(
            RolePermission.role == role, RolePermission.resource == resource
        )
    )
    return result.scalars().one()


async def test_sub_permission_vocabulary():
    labels = permission_service.get_sub_permissions_for_resource("tasks")
    assert labels["canApprove"] == "Approve tasks"
    assert permission_service.get_sub_permission_keys("orders") == list(SUB_PERMISSIONS["orders"])
    assert permission_service.get_sub_permissions_for_resource("unknown") == {}


async def test_bootstrap_is_idempotent(db):
    written = await permission_service.bootstrap_missing_permissions(db)
    assert written == 4 * len(RESOURCES)
    assert await permission_service.bootstrap_missing_permissions(db) == 0


async def test_listing_returns_one_row_per_pair(db):
    permissions = await permission_service.get_role_permissions(db)
    pairs = [(row.role, row.resource) for row in permissions]
    assert len(pairs) == len(set(pairs)) == 4 * len(RESOURCES)


async def test_point_lookup_does_not_heal(db):
    assert await permission_service.get_permission(db, "personnel", "tasks") is None
    with pytest.raises(ResourceNotFoundError):
        await permission_service.require_permission(db, "personnel", "tasks")


async def test_reconcile_restores_drifted_team_leader_row(bootstrapped):
    row = await _row(bootstrapped, "team_leader", "orders")
    row.can_delete = False
    row.sub_permissions_json = json.dumps({"canApprove": True})
    await bootstrapped.commit()

    patched = await permission_service.reconcile_sub_permissions(bootstrapped)
    assert patched == 1

    permission = await permission_service.require_permission(bootstrapped, "team_leader", "orders")
    assert permission.can_delete is True
    assert set(permission.sub_permissions) == set(SUB_PERMISSIONS["orders"])
    assert await permission_service.reconcile_sub_permissions(bootstrapped) == 0


async def test_listing_heals_personnel_sub_permissions(bootstrapped):
    row = await _row(bootstrapped, "personnel", "tasks")
    row.sub_permissions_json = None
    await bootstrapped.commit()

    await permission_service.get_role_permissions(bootstrapped)
    permission = await permission_service.require_permission(bootstrapped, "personnel", "tasks")
    assert permission.sub_permissions["canAddComment"] is True
    assert "canApprove" not in permission.sub_permissions


async def test_update_permission_writes_only_given_fields(bootstrapped, cache_events):
    before = await permission_service.require_permission(bootstrapped, "personnel", "customers")
    cache_events.clear()

    updated = await permission_service.update_permission(
        bootstrapped,
        before.id,
        PermissionUpdate(can_update=True, sub_permissions={"canExport": True, "canViewHistory": None}),
    )

    assert updated.can_update is True
    assert updated.can_read is before.can_read
    assert updated.can_create is before.can_create
    assert updated.sub_permissions == {"canExport": True}
    assert updated.updated_at is not None
    assert cache_events


async def test_update_unknown_permission(bootstrapped):
    with pytest.raises(ResourceNotFoundError):
        await permission_service.update_permission(bootstrapped, 99999, PermissionUpdate(can_read=False))


async def test_update_permission_clears_sub_permissions_with_empty_map(bootstrapped):
    before = await permission_service.require_permission(bootstrapped, "personnel", "tasks")
    assert before.sub_permissions

    updated = await permission_service.update_permission(
        bootstrapped, before.id, PermissionUpdate(sub_permissions={})
    )
    assert updated.sub_permissions == {}

    row = await _row(bootstrapped, "personnel", "tasks")
    await bootstrapped.refresh(row)
    assert row.sub_permissions_json is None
    assert row.can_read is before.can_read


async def test_bootstrap_replans_after_concurrent_insert(session_factory, monkeypatch):
    async with session_factory() as first:
        await permission_service.get_role_permissions(first)

    original = PermissionService._load_rows
    reads = []

    async def stale_first_read(db):
        reads.append(1)
        if len(reads) == 1:
            # Planned before the other session committed its rows.
            return []
        return await original(db)

    monkeypatch.setattr(PermissionService, "_load_rows", staticmethod(stale_first_read))

    async with session_factory() as second:
        permissions = await permission_service.get_role_permissions(second)
        assert len(permissions) == 4 * len(RESOURCES)
        assert await permission_service.bootstrap_missing_permissions(second) == 0

    assert len(reads) > 2
