"""Roles, capability table and permission checks."""

from kanban_rbac.auth.guards import ForbiddenError, require_permission, require_role, require_role_change
from kanban_rbac.auth.permissions import (
    Capability,
    PermissionEvaluator,
    can_modify_role,
    has_permission,
    is_role_at_least,
)
from kanban_rbac.auth.roles import Role

__all__ = [
    "Capability",
    "ForbiddenError",
    "PermissionEvaluator",
    "Role",
    "can_modify_role",
    "has_permission",
    "is_role_at_least",
    "require_permission",
    "require_role",
    "require_role_change",
]
