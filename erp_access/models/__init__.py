"""Models package — import all models so metadata.create_all can discover them."""

from erp_access.models.role import Role, RolePermission
from erp_access.models.user import User
from erp_access.models.audit_log import AuditLog

__all__ = ["Role", "RolePermission", "User", "AuditLog"]
