"""Pydantic schemas for roles, permissions, principals and audit entries."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class Operation(str, Enum):
    create = "create"
    read = "read"
    update = "update"
    delete = "delete"


class AuditAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


# ---- Role ----
class RoleDefinition(BaseModel):
    key: str
    label: str
    color: str = "bg-gray-500"
    is_system: bool = False

    class Config:
        from_attributes = True

class RoleCreate(BaseModel):
    label: str = Field(..., min_length=1)
    color: str = "bg-gray-500"
    key: Optional[str] = None


# ---- Permission ----
class Permission(BaseModel):
    id: Optional[int] = None
    role: str
    resource: str
    can_create: bool = False
    can_read: bool = True
    can_update: bool = False
    can_delete: bool = False
    sub_permissions: Dict[str, bool] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def flag(self, operation: Operation) -> bool:
        return bool(getattr(self, f"can_{operation.value}"))

class PermissionUpdate(BaseModel):
    """Partial update; unset or None fields are left untouched."""
    can_create: Optional[bool] = None
    can_read: Optional[bool] = None
    can_update: Optional[bool] = None
    can_delete: Optional[bool] = None
    sub_permissions: Optional[Dict[str, Optional[bool]]] = None

class PermissionPatch(BaseModel):
    """Reconciliation change for an existing row."""
    id: Optional[int] = None
    role: str
    resource: str
    flags: Dict[str, bool] = Field(default_factory=dict)
    sub_permissions: Optional[Dict[str, bool]] = None


# ---- Principal / identity ----
class Principal(BaseModel):
    id: Optional[int] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)

class ActorIdentity(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None

class ClientContext(BaseModel):
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    screen: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    request_id: Optional[str] = None


# ---- Audit ----
class AuditEntry(BaseModel):
    """One enriched audit record, frozen at record() time."""
    action: AuditAction
    resource: str
    record_id: Optional[str] = None
    actor_id: Optional[str] = None
    before: Optional[Any] = None
    after: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        frozen = True

class AuditLogOut(BaseModel):
    id: int
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_name: Optional[str] = None
    old_value_json: Optional[str] = None
    new_value_json: Optional[str] = None
    summary: Optional[str] = None
    session_id: Optional[str] = None
    metadata_json: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
