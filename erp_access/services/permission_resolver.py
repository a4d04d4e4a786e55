"""Permission resolver — may this principal do X on resource Y?

Multi-role principals get the union of their roles' grants: one granting
role is enough, a denying role never revokes. Every check reads the store
fresh; nothing is cached here.
"""

import logging
from typing import AsyncIterator, Iterable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.config import settings
from erp_access.core.exceptions import PersistenceError, ValidationError
from erp_access.schemas.schemas import Operation, Permission, Principal
from erp_access.services.permission_service import permission_service

logger = logging.getLogger("erp_access.resolver")


def grants(rows: Iterable[Optional[Permission]], operation: Operation) -> bool:
    """True when any present row has the operation's flag set."""
    return any(row is not None and row.flag(operation) for row in rows)


def grants_sub_permission(rows: Iterable[Optional[Permission]], key: str) -> bool:
    return any(row is not None and row.sub_permissions.get(key) is True for row in rows)


def _operation(value: Union[Operation, str]) -> Operation:
    if isinstance(value, Operation):
        return value
    try:
        return Operation(str(value).lower())
    except ValueError:
        raise ValidationError(f"Unknown operation '{value}'")


class PermissionResolver:
    """Answers capability checks for principals."""

    @staticmethod
    def is_super_admin(principal: Optional[Principal]) -> bool:
        return principal is not None and settings.SUPER_ADMIN_ROLE in principal.roles

    @staticmethod
    async def _role_rows(
        db: AsyncSession, principal: Principal, resource: str
    ) -> AsyncIterator[Optional[Permission]]:
        """Yield each role's row lazily so callers can stop at the first grant."""
        for role in principal.roles:
            try:
                yield await permission_service.get_permission(db, role, resource)
            except (PersistenceError, SQLAlchemyError) as exc:
                logger.error("Error reading %s permission for role %s: %s", resource, role, exc)
                yield None

    @staticmethod
    async def can(
        db: AsyncSession,
        principal: Optional[Principal],
        resource: str,
        operation: Union[Operation, str],
    ) -> bool:
        """Check one CRUD operation. Unknown operations raise ValidationError."""
        operation = _operation(operation)
        if principal is None or not principal.roles:
            return False
        if PermissionResolver.is_super_admin(principal):
            return True

        async for row in PermissionResolver._role_rows(db, principal, resource):
            if grants([row], operation):
                return True
        return False

    @staticmethod
    async def can_create(db: AsyncSession, principal: Optional[Principal], resource: str) -> bool:
        return await PermissionResolver.can(db, principal, resource, Operation.create)

    @staticmethod
    async def can_read(db: AsyncSession, principal: Optional[Principal], resource: str) -> bool:
        return await PermissionResolver.can(db, principal, resource, Operation.read)

    @staticmethod
    async def can_update(db: AsyncSession, principal: Optional[Principal], resource: str) -> bool:
        return await PermissionResolver.can(db, principal, resource, Operation.update)

    @staticmethod
    async def can_delete(db: AsyncSession, principal: Optional[Principal], resource: str) -> bool:
        return await PermissionResolver.can(db, principal, resource, Operation.delete)

    @staticmethod
    async def can_perform_sub_permission(
        db: AsyncSession,
        principal: Optional[Principal],
        resource: str,
        sub_permission: str,
    ) -> bool:
        """Check a fine-grained action such as ("tasks", "canApprove")."""
        if principal is None or not principal.roles:
            return False
        if PermissionResolver.is_super_admin(principal):
            return True

        async for row in PermissionResolver._role_rows(db, principal, resource):
            if grants_sub_permission([row], sub_permission):
                return True
        return False


permission_resolver = PermissionResolver()
