"""Default permission policy per role tier.

Pure functions only: nothing here touches the database. The permission
service feeds stored rows in and applies whatever comes back.
"""

import enum
from typing import Dict, Iterable, List, Optional, Tuple

from erp_access.core.config import settings
from erp_access.schemas.schemas import Operation, Permission, PermissionPatch

RESOURCES = [
    "tasks",
    "users",
    "departments",
    "orders",
    "production_orders",
    "customers",
    "products",
    "projects",
    "audit_logs",
    "role_permissions",
    "raw_materials",
    "warranty",
]

# Resource -> sub-permission key -> human label
SUB_PERMISSIONS: Dict[str, Dict[str, str]] = {
    "tasks": {
        "canAssign": "Assign tasks",
        "canChangeStatus": "Change status",
        "canAddComment": "Add comments",
        "canAddAttachment": "Add attachments",
        "canViewAll": "View all tasks",
        "canEditOwn": "Edit own tasks",
        "canDeleteOwn": "Delete own tasks",
        "canApprove": "Approve tasks",
        "canAddChecklist": "Add checklist items",
        "canEditChecklist": "Edit or delete checklist items",
        "canViewPrivate": "View private tasks",
    },
    "users": {
        "canChangeRole": "Change roles",
        "canViewSensitiveData": "View sensitive data",
        "canViewAuditLogs": "View audit logs",
    },
    "departments": {
        "canAssignMembers": "Assign members",
        "canChangeLeader": "Change leader",
        "canViewAll": "View all departments",
        "canApproveTeamRequest": "Approve team requests",
        "canViewTeamManagement": "See team management menu",
    },
    "orders": {
        "canApprove": "Approve",
        "canCancel": "Cancel",
        "canExport": "Export",
        "canViewFinancials": "View financials",
        "canEditPrice": "Edit price",
    },
    "production_orders": {
        "canStartProduction": "Start production",
        "canCompleteProduction": "Complete production",
        "canViewSchedule": "View production schedule",
        "canEditSchedule": "Edit production schedule",
    },
    "customers": {
        "canViewFinancials": "View financials",
        "canEditFinancials": "Edit financials",
        "canExport": "Export",
        "canViewHistory": "View history",
    },
    "products": {
        "canEditPrice": "Edit price",
        "canEditStock": "Edit stock",
        "canViewCost": "View cost",
        "canEditCost": "Edit cost",
        "canExport": "Export",
    },
    "projects": {
        "canAssignMembers": "Assign members",
        "canChangeStatus": "Change status",
        "canViewAll": "View all projects",
        "canEditBudget": "Edit budget",
        "canViewPrivate": "View private projects",
    },
    "audit_logs": {
        "canViewAll": "View all records",
        "canExport": "Export",
        "canDelete": "Delete records",
    },
    "role_permissions": {
        "canCreateRoles": "Create roles",
        "canDeleteRoles": "Delete roles",
        "canEditSystemRoles": "Edit system roles",
        "canViewAdminPanel": "See admin panel menu",
    },
    "raw_materials": {
        "canEditStock": "Edit stock",
        "canViewCost": "View cost",
        "canEditCost": "Edit cost",
        "canExport": "Export",
        "canViewTransactions": "View transaction history",
        "canCreateTransactions": "Create stock transactions",
    },
    "warranty": {
        "canApprove": "Approve warranty",
        "canReject": "Reject warranty",
        "canViewFinancials": "View financials",
        "canExport": "Export",
        "canViewHistory": "View history",
    },
}

ADMIN_ROLE = "admin"
TEAM_LEADER_ROLE = "team_leader"
PERSONNEL_ROLE = "personnel"

PERMISSION_ADMIN_RESOURCE = "role_permissions"
AUDIT_RESOURCE = "audit_logs"

PERSONNEL_CREATE = {"production_orders"}
PERSONNEL_UPDATE = {"tasks", "production_orders"}
PERSONNEL_SUB_PERMISSIONS: Dict[str, List[str]] = {
    "tasks": ["canAddComment", "canAddAttachment", "canChangeStatus", "canEditOwn", "canDeleteOwn"],
    "production_orders": ["canViewSchedule"],
}


class Tier(str, enum.Enum):
    highest = "highest"
    team_lead = "team_lead"
    personnel = "personnel"
    custom = "custom"


def tier_for(role: str) -> Tier:
    if role in (settings.SUPER_ADMIN_ROLE, ADMIN_ROLE):
        return Tier.highest
    if role == TEAM_LEADER_ROLE:
        return Tier.team_lead
    if role == PERSONNEL_ROLE:
        return Tier.personnel
    return Tier.custom


def sub_permission_keys(resource: str) -> List[str]:
    return list(SUB_PERMISSIONS.get(resource, {}))


def granted_sub_permissions(role: str, resource: str) -> List[str]:
    """Sub-permission keys the tier policy turns on for this pair."""
    tier = tier_for(role)
    if tier is Tier.highest:
        return sub_permission_keys(resource)
    if tier is Tier.team_lead:
        if resource == PERMISSION_ADMIN_RESOURCE:
            return []
        return sub_permission_keys(resource)
    if tier is Tier.personnel:
        return list(PERSONNEL_SUB_PERMISSIONS.get(resource, []))
    return []


def default_permission(role: str, resource: str) -> Permission:
    """Synthesize the row a freshly bootstrapped (role, resource) pair gets."""
    tier = tier_for(role)
    subs = {key: True for key in granted_sub_permissions(role, resource)}

    if tier is Tier.highest:
        return Permission(
            role=role, resource=resource,
            can_create=True, can_read=True, can_update=True, can_delete=True,
            sub_permissions=subs,
        )
    if tier is Tier.team_lead:
        manages = resource != PERMISSION_ADMIN_RESOURCE
        return Permission(
            role=role, resource=resource,
            can_create=manages, can_read=True, can_update=manages,
            can_delete=manages and resource != AUDIT_RESOURCE,
            sub_permissions=subs,
        )
    if tier is Tier.personnel:
        return Permission(
            role=role, resource=resource,
            can_create=resource in PERSONNEL_CREATE,
            can_read=True,
            can_update=resource in PERSONNEL_UPDATE,
            can_delete=False,
            sub_permissions=subs,
        )
    return custom_role_permission(role, resource)


def custom_role_permission(role: str, resource: str) -> Permission:
    """Conservative row for roles created at runtime: read only."""
    return Permission(role=role, resource=resource, can_read=True)


def plan_patch(row: Permission) -> Optional[PermissionPatch]:
    """Return the change bringing an existing row back in line with policy, if any.

    Only adds grants: sub-permission keys the tier should hold and, for the
    team-lead tier, coarse create/update/delete flags that drifted off.
    """
    tier = tier_for(row.role)
    if tier is Tier.custom:
        return None

    merged = dict(row.sub_permissions)
    subs_changed = False
    for key in granted_sub_permissions(row.role, row.resource):
        if merged.get(key) is not True:
            merged[key] = True
            subs_changed = True

    flags: Dict[str, bool] = {}
    if tier is Tier.team_lead and row.resource != PERMISSION_ADMIN_RESOURCE:
        expected = default_permission(row.role, row.resource)
        for operation in (Operation.create, Operation.update, Operation.delete):
            if expected.flag(operation) and not row.flag(operation):
                flags[f"can_{operation.value}"] = True

    if not subs_changed and not flags:
        return None
    return PermissionPatch(
        id=row.id,
        role=row.role,
        resource=row.resource,
        flags=flags,
        sub_permissions=merged if subs_changed else None,
    )


def plan_reconciliation(
    existing: Iterable[Permission],
    role_keys: Iterable[str],
) -> Tuple[List[Permission], List[PermissionPatch]]:
    """Compute (rows to add, patches to apply) for the stored permission table."""
    existing = list(existing)
    present = {(row.role, row.resource) for row in existing}

    to_add = []
    for role in role_keys:
        for resource in RESOURCES:
            if (role, resource) not in present:
                to_add.append(default_permission(role, resource))
                present.add((role, resource))

    patches = [patch for patch in (plan_patch(row) for row in existing) if patch is not None]
    return to_add, patches
