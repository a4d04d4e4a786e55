"""Permission-based authorization dependencies for FastAPI routes.

Authentication is the host application's job: it must place a Principal on
request.state.principal before these dependencies run.
"""

from typing import Optional, Union

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from erp_access.core.exceptions import forbidden, unauthorized
from erp_access.db.session import get_db
from erp_access.schemas.schemas import Operation, Principal
from erp_access.services.permission_resolver import permission_resolver


def get_principal(request: Request) -> Optional[Principal]:
    return getattr(request.state, "principal", None)


class RequirePermission:
    """Dependency that checks a CRUD operation or a sub-permission on a resource.

    Usage:
        @router.delete("/orders/{order_id}")
        async def delete_order(principal=Depends(RequirePermission("orders", "delete"))):
            ...
    """

    def __init__(
        self,
        resource: str,
        operation: Optional[Union[Operation, str]] = None,
        sub_permission: Optional[str] = None,
    ):
        if operation is None and sub_permission is None:
            operation = Operation.read
        self.resource = resource
        self.operation = operation
        self.sub_permission = sub_permission

    async def __call__(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        principal = get_principal(request)
        if principal is None:
            raise unauthorized()

        if self.operation is not None:
            if not await permission_resolver.can(db, principal, self.resource, self.operation):
                raise forbidden()
        if self.sub_permission is not None:
            allowed = await permission_resolver.can_perform_sub_permission(
                db, principal, self.resource, self.sub_permission
            )
            if not allowed:
                raise forbidden()
        return principal


# Convenience dependency factories
require_role_admin = RequirePermission("role_permissions", Operation.update)
require_audit_reader = RequirePermission("audit_logs", Operation.read)
