"""Human-readable change summaries for audit entries.

Pure functions; the audit trail calls summarize_changes() once per entry.
"""

import json
import re
from typing import Any, Dict, List, Optional

from erp_access.core.config import settings

RESOURCE_LABELS: Dict[str, str] = {
    "tasks": "Task",
    "users": "User",
    "user_roles": "User role",
    "departments": "Department",
    "orders": "Order",
    "production_orders": "Production order",
    "production_processes": "Production process",
    "customers": "Customer",
    "customer_notes": "Customer note",
    "products": "Product",
    "projects": "Project",
    "audit_logs": "Audit log",
    "role_permissions": "Role permission",
    "raw_materials": "Raw material",
    "warranty": "Warranty record",
    "notifications": "Notification",
    "reports": "Report",
}

# Keyed by snake_case; camelCase input keys are normalized first.
FIELD_LABELS: Dict[str, str] = {
    "title": "Title",
    "description": "Description",
    "status": "Status",
    "priority": "Priority",
    "due_date": "Due date",
    "assigned_to": "Assignee",
    "created_by": "Created by",
    "updated_at": "Updated at",
    "customer_id": "Customer",
    "customer_name": "Customer name",
    "total_amount": "Total amount",
    "subtotal": "Subtotal",
    "discount_total": "Discount",
    "tax_amount": "Tax",
    "grand_total": "Grand total",
    "order_number": "Order number",
    "delivery_date": "Delivery date",
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "company": "Company",
    "address": "Address",
    "role": "Role",
    "roles": "Roles",
    "full_name": "Full name",
    "department": "Department",
    "is_active": "Active",
    "is_archived": "Archived",
    "approval_status": "Approval status",
    "rejection_reason": "Rejection reason",
    "approved_by": "Approved by",
    "rejected_by": "Rejected by",
    "approved_at": "Approved at",
    "rejected_at": "Rejected at",
    "is_in_pool": "In task pool",
    "pool_requests": "Pool requests",
    "report_type": "Report type",
    "start_date": "Start date",
    "end_date": "End date",
    "can_create": "Create",
    "can_read": "Read",
    "can_update": "Update",
    "can_delete": "Delete",
    "sub_permissions": "Sub-permissions",
}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key).lower()


def resource_label(resource: str) -> str:
    if resource in RESOURCE_LABELS:
        return RESOURCE_LABELS[resource]
    return _snake_case(resource).replace("_", " ").strip().capitalize() or resource


def field_label(key: str) -> str:
    normalized = _snake_case(key)
    if normalized in FIELD_LABELS:
        return FIELD_LABELS[normalized]
    return normalized.replace("_", " ").strip().capitalize() or key


def _serialized(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def changed_fields(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> List[str]:
    """Top-level keys whose serialized values differ.

    Keys come from both sides in order of first appearance; a key present on
    only one side counts as changed.
    """
    before = before or {}
    after = after or {}
    keys = list(before)
    keys.extend(key for key in after if key not in before)

    missing = object()
    changed = []
    for key in keys:
        old = before.get(key, missing)
        new = after.get(key, missing)
        if old is missing or new is missing or _serialized(old) != _serialized(new):
            changed.append(key)
    return changed


def summarize_changes(
    action: str,
    resource: str,
    before: Optional[Any],
    after: Optional[Any],
    max_fields: Optional[int] = None,
) -> str:
    """One-line summary of a mutation.

    >>> summarize_changes("update", "tasks", {"title": "A"}, {"title": "B", "status": "done"})
    'Updated Task: Title, Status'
    """
    label = resource_label(resource)
    if before is None:
        return f"New {label} created"
    if after is None or action == "delete":
        return f"{label} deleted"

    if not isinstance(before, dict) or not isinstance(after, dict):
        if _serialized(before) == _serialized(after):
            return f"{label} updated (no field changes)"
        return f"Updated {label}"

    fields = changed_fields(before, after)
    if not fields:
        return f"{label} updated (no field changes)"

    if max_fields is None:
        max_fields = settings.AUDIT_SUMMARY_MAX_FIELDS
    shown = ", ".join(field_label(key) for key in fields[:max_fields])
    overflow = len(fields) - max_fields
    if overflow > 0:
        return f"Updated {label}: {shown} (+{overflow} more)"
    return f"Updated {label}: {shown}"
