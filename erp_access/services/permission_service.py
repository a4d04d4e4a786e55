"""Permission service — per-(role, resource) authorization records.

The listing path (get_role_permissions) is self-healing: every call fills in
rows missing for any (role, resource) pair and patches rows whose
sub-permission map lags behind the vocabulary. Point lookups never heal.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.exceptions import PersistenceError, ResourceNotFoundError
from erp_access.models.role import RolePermission
from erp_access.schemas.schemas import Permission, PermissionUpdate
from erp_access.services.cache_service import permission_cache
from erp_access.services.permission_policy import (
    SUB_PERMISSIONS,
    plan_patch,
    plan_reconciliation,
    sub_permission_keys,
)

logger = logging.getLogger("erp_access.permissions")


def permission_row(permission: Permission) -> RolePermission:
    """Build an ORM row from a schema, leaving out an empty sub-permission map."""
    subs = {key: value for key, value in permission.sub_permissions.items() if value is not None}
    return RolePermission(
        role=permission.role,
        resource=permission.resource,
        can_create=permission.can_create,
        can_read=permission.can_read,
        can_update=permission.can_update,
        can_delete=permission.can_delete,
        sub_permissions_json=json.dumps(subs) if subs else None,
        updated_at=datetime.now(timezone.utc),
    )


def permission_out(row: RolePermission) -> Permission:
    subs = json.loads(row.sub_permissions_json) if row.sub_permissions_json else {}
    return Permission(
        id=row.id,
        role=row.role,
        resource=row.resource,
        can_create=row.can_create,
        can_read=row.can_read,
        can_update=row.can_update,
        can_delete=row.can_delete,
        sub_permissions=subs,
        updated_at=row.updated_at,
    )


class PermissionService:
    """Stores, bootstraps and reconciles role permission rows."""

    @staticmethod
    def get_sub_permissions_for_resource(resource: str) -> Dict[str, str]:
        """Sub-permission key -> human label for a resource (empty if none)."""
        return dict(SUB_PERMISSIONS.get(resource, {}))

    @staticmethod
    def get_sub_permission_keys(resource: str) -> List[str]:
        return sub_permission_keys(resource)

    @staticmethod
    async def _load_rows(db: AsyncSession) -> List[RolePermission]:
        result = await db.execute(
            select(RolePermission).order_by(RolePermission.role, RolePermission.resource)
        )
        return list(result.scalars().all())

    @staticmethod
    async def bootstrap_missing_permissions(db: AsyncSession) -> int:
        """Insert a policy row for every (role, resource) pair that has none.

        Returns the number of rows written; 0 once the table is complete.
        A concurrent bootstrap that wins the race makes the insert collide on
        the (role, resource) constraint; the plan is then redone against a
        fresh read, once.
        """
        from erp_access.services.role_service import role_service

        for attempt in range(2):
            roles = await role_service.get_roles(db)
            rows = await PermissionService._load_rows(db)
            to_add, _ = plan_reconciliation(
                [permission_out(row) for row in rows],
                [role.key for role in roles],
            )
            if not to_add:
                return 0

            for permission in to_add:
                db.add(permission_row(permission))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if attempt:
                    raise
                logger.info("Permission rows were written concurrently, re-planning bootstrap")
                continue

            logger.info("Bootstrapped %d missing permission rows", len(to_add))
            permission_cache.publish()
            return len(to_add)
        return 0

    @staticmethod
    async def reconcile_sub_permissions(db: AsyncSession) -> int:
        """Patch existing rows that drifted from tier policy.

        Adds sub-permission keys the vocabulary gained since the row was
        written and restores team-lead coarse flags. Returns rows patched.
        """
        rows = await PermissionService._load_rows(db)
        patched = 0
        for row in rows:
            patch = plan_patch(permission_out(row))
            if patch is None:
                continue
            for flag, value in patch.flags.items():
                setattr(row, flag, value)
            if patch.sub_permissions is not None:
                row.sub_permissions_json = json.dumps(patch.sub_permissions)
            row.updated_at = datetime.now(timezone.utc)
            patched += 1

        if patched:
            await db.commit()
            logger.info("Reconciled %d permission rows with current policy", patched)
            permission_cache.publish()
        return patched

    @staticmethod
    async def get_role_permissions(db: AsyncSession) -> List[Permission]:
        """List every permission row, healing the table first."""
        try:
            await PermissionService.bootstrap_missing_permissions(db)
            await PermissionService.reconcile_sub_permissions(db)
            rows = await PermissionService._load_rows(db)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error loading role permissions: %s", exc)
            raise PersistenceError("Role permissions could not be loaded") from exc
        return [permission_out(row) for row in rows]

    @staticmethod
    async def get_permissions_for_role(db: AsyncSession, role: str) -> List[Permission]:
        result = await db.execute(
            select(RolePermission)
            .where(RolePermission.role == role)
            .order_by(RolePermission.resource)
        )
        return [permission_out(row) for row in result.scalars().all()]

    @staticmethod
    async def get_permission(db: AsyncSession, role: str, resource: str) -> Optional[Permission]:
        """Point lookup. None when the pair has not been bootstrapped yet."""
        result = await db.execute(
            select(RolePermission).where(
                RolePermission.role == role,
                RolePermission.resource == resource,
            )
        )
        row = result.scalars().first()
        return permission_out(row) if row is not None else None

    @staticmethod
    async def require_permission(db: AsyncSession, role: str, resource: str) -> Permission:
        permission = await PermissionService.get_permission(db, role, resource)
        if permission is None:
            raise ResourceNotFoundError(f"No permission for role '{role}' on '{resource}'")
        return permission

    @staticmethod
    async def update_permission(
        db: AsyncSession,
        permission_id: int,
        updates: PermissionUpdate,
    ) -> Permission:
        """Apply an administrative edit. Unset or None fields are not written.

        An explicit empty sub-permission map clears the stored map.
        """
        row = await db.get(RolePermission, permission_id)
        if row is None:
            raise ResourceNotFoundError(f"Permission {permission_id} not found")

        values = updates.model_dump(exclude_none=True)
        subs = values.pop("sub_permissions", None)
        try:
            for field, value in values.items():
                setattr(row, field, value)
            if subs is not None:
                clean = {key: value for key, value in subs.items() if value is not None}
                row.sub_permissions_json = json.dumps(clean) if clean else None
            row.updated_at = datetime.now(timezone.utc)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Error updating permission %s: %s", permission_id, exc)
            raise PersistenceError("Permission could not be updated") from exc

        permission_cache.publish(row.role)
        return permission_out(row)


permission_service = PermissionService()
