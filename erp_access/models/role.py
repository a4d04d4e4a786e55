"""Role and RolePermission models for RBAC."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint, func
from erp_access.db.base import Base


class Role(Base):
    """Runtime-defined role keyed by a unique slug."""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(64), unique=True, nullable=False, index=True)
    label = Column(String(255), nullable=False)
    color = Column(String(64), nullable=False, default="bg-gray-500")
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RolePermission(Base):
    """Authorization record for one (role, resource) pair.

    Coarse CRUD flags plus a sparse JSON map of resource-specific
    sub-permissions (e.g. {"canApprove": true}).
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "resource", name="uq_role_permissions_role_resource"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String(64), nullable=False, index=True)
    resource = Column(String(64), nullable=False, index=True)
    can_create = Column(Boolean, default=False, nullable=False)
    can_read = Column(Boolean, default=True, nullable=False)
    can_update = Column(Boolean, default=False, nullable=False)
    can_delete = Column(Boolean, default=False, nullable=False)
    sub_permissions_json = Column(Text, nullable=True)  # JSON object of key -> bool
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
