"""RBAC permission checks for kanban workspaces."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from types import MappingProxyType

from kanban_rbac.auth.roles import ROLE_HIERARCHY, Role, parse_role


class Capability(StrEnum):
    WORKSPACE_VIEW = "workspace:view"
    WORKSPACE_CREATE = "workspace:create"
    WORKSPACE_UPDATE = "workspace:update"
    WORKSPACE_DELETE = "workspace:delete"

    MEMBER_VIEW = "member:view"
    MEMBER_INVITE = "member:invite"
    MEMBER_REMOVE = "member:remove"
    MEMBER_UPDATE_ROLE = "member:update_role"

    BOARD_VIEW = "board:view"
    BOARD_CREATE = "board:create"
    BOARD_UPDATE = "board:update"
    BOARD_DELETE = "board:delete"

    LIST_VIEW = "list:view"
    LIST_CREATE = "list:create"
    LIST_UPDATE = "list:update"
    LIST_DELETE = "list:delete"
    LIST_REORDER = "list:reorder"

    CARD_VIEW = "card:view"
    CARD_CREATE = "card:create"
    CARD_UPDATE = "card:update"
    CARD_DELETE = "card:delete"
    CARD_MOVE = "card:move"
    CARD_ASSIGN = "card:assign"

    COMMENT_VIEW = "comment:view"
    COMMENT_CREATE = "comment:create"
    COMMENT_UPDATE = "comment:update"
    COMMENT_UPDATE_OWN = "comment:update_own"
    COMMENT_DELETE = "comment:delete"
    COMMENT_DELETE_OWN = "comment:delete_own"

    LABEL_VIEW = "label:view"
    LABEL_CREATE = "label:create"
    LABEL_UPDATE = "label:update"
    LABEL_DELETE = "label:delete"
    LABEL_ASSIGN = "label:assign"


def _values(capabilities: Iterable[Capability]) -> frozenset[str]:
    return frozenset(c.value for c in capabilities)


_VIEWER = _values(
    {
        Capability.WORKSPACE_VIEW,
        Capability.MEMBER_VIEW,
        Capability.BOARD_VIEW,
        Capability.LIST_VIEW,
        Capability.CARD_VIEW,
        Capability.COMMENT_VIEW,
        Capability.LABEL_VIEW,
    }
)

_MEMBER = _VIEWER | _values(
    {
        Capability.LIST_CREATE,
        Capability.LIST_UPDATE,
        Capability.LIST_DELETE,
        Capability.LIST_REORDER,
        Capability.CARD_CREATE,
        Capability.CARD_UPDATE,
        Capability.CARD_DELETE,
        Capability.CARD_MOVE,
        Capability.CARD_ASSIGN,
        Capability.COMMENT_CREATE,
        Capability.COMMENT_UPDATE_OWN,
        Capability.COMMENT_DELETE_OWN,
        Capability.LABEL_ASSIGN,
    }
)

# Everything except deleting the workspace
_ADMIN = _MEMBER | _values(
    {
        Capability.WORKSPACE_CREATE,
        Capability.WORKSPACE_UPDATE,
        Capability.MEMBER_INVITE,
        Capability.MEMBER_REMOVE,
        Capability.MEMBER_UPDATE_ROLE,
        Capability.BOARD_CREATE,
        Capability.BOARD_UPDATE,
        Capability.BOARD_DELETE,
        Capability.COMMENT_UPDATE,
        Capability.COMMENT_DELETE,
        Capability.LABEL_CREATE,
        Capability.LABEL_UPDATE,
        Capability.LABEL_DELETE,
    }
)

_OWNER = _ADMIN | _values({Capability.WORKSPACE_DELETE})

ROLE_PERMISSIONS: Mapping[Role, frozenset[str]] = MappingProxyType(
    {
        Role.OWNER: _OWNER,
        Role.ADMIN: _ADMIN,
        Role.MEMBER: _MEMBER,
        Role.VIEWER: _VIEWER,
    }
)


def build_role_table(grants: Mapping[str, Iterable[str]]) -> Mapping[Role, frozenset[str]]:
    """Freeze a role -> capabilities mapping into a read-only table.

    Keys that are not known roles are dropped and roles that are missing
    get an empty set, so an incomplete table denies rather than grants.
    A bare string value is a single capability.
    """
    table: dict[Role, frozenset[str]] = {role: frozenset() for role in ROLE_HIERARCHY}
    for key, capabilities in grants.items():
        role = parse_role(key)
        if role is None:
            continue
        if isinstance(capabilities, str):
            capabilities = [capabilities]
        table[role] = frozenset(str(c) for c in capabilities)
    return MappingProxyType(table)


class PermissionEvaluator:
    """Answers role and capability questions against a fixed table.

    The table and hierarchy are passed in once and never mutated, so a
    single evaluator can be shared freely between callers.
    """

    def __init__(
        self,
        table: Mapping[str, Iterable[str]] = ROLE_PERMISSIONS,
        hierarchy: tuple[Role, ...] = ROLE_HIERARCHY,
    ) -> None:
        self._table = build_role_table(table)
        self._hierarchy = hierarchy
        # Higher number = higher privilege
        self._rank = {role: len(hierarchy) - i for i, role in enumerate(hierarchy)}

    @property
    def table(self) -> Mapping[Role, frozenset[str]]:
        return self._table

    @property
    def hierarchy(self) -> tuple[Role, ...]:
        return self._hierarchy

    def _role(self, value: object) -> Role | None:
        role = parse_role(value)
        if role is None or role not in self._rank:
            return None
        return role

    def has_permission(self, role: object, capability: object) -> bool:
        """Check if a role is granted a capability."""
        resolved = self._role(role)
        if resolved is None or not isinstance(capability, str):
            return False
        return str(capability) in self._table[resolved]

    def is_role_at_least(self, role: object, required_role: object) -> bool:
        """Check if a role ranks at or above the required role."""
        resolved = self._role(role)
        required = self._role(required_role)
        if resolved is None or required is None:
            return False
        return self._rank[resolved] >= self._rank[required]

    def can_modify_role(
        self, actor_role: object, target_current_role: object, target_new_role: object
    ) -> bool:
        """Check if an actor may move a target from one role to another.

        Only owners and admins change roles. The owner role is never the
        subject or the result of a change. Admins only act on, and only
        assign, roles below admin.
        """
        actor = self._role(actor_role)
        current = self._role(target_current_role)
        new = self._role(target_new_role)
        if actor is None or current is None or new is None:
            return False

        if actor not in (Role.OWNER, Role.ADMIN):
            return False
        if current is Role.OWNER or new is Role.OWNER:
            return False

        if actor is Role.ADMIN:
            return self._rank[current] < self._rank[Role.ADMIN] and (
                self._rank[new] < self._rank[Role.ADMIN]
            )
        if actor is Role.OWNER:
            return True
        return False

    def get_role_permissions(self, role: object) -> frozenset[str]:
        resolved = self._role(role)
        if resolved is None:
            return frozenset()
        return self._table[resolved]

    def get_all_permissions(self) -> frozenset[str]:
        return frozenset().union(*self._table.values())

    def assignable_roles(self, actor_role: object) -> tuple[Role, ...]:
        """Roles an actor may hand out, highest first."""
        return tuple(
            role
            for role in self._hierarchy
            if any(self.can_modify_role(actor_role, current, role) for current in self._hierarchy)
        )


_default = PermissionEvaluator()


def default_evaluator() -> PermissionEvaluator:
    return _default


def has_permission(role: object, capability: object) -> bool:
    """Check if a role has a specific capability."""
    return _default.has_permission(role, capability)


def is_role_at_least(role: object, required_role: object) -> bool:
    """Check if a role is at least the minimum required role."""
    return _default.is_role_at_least(role, required_role)


def can_modify_role(actor_role: object, target_current_role: object, target_new_role: object) -> bool:
    """Check if a user can change another member's role."""
    return _default.can_modify_role(actor_role, target_current_role, target_new_role)


def get_role_permissions(role: object) -> frozenset[str]:
    """Get all capabilities granted to a role."""
    return _default.get_role_permissions(role)


def get_all_permissions() -> frozenset[str]:
    return _default.get_all_permissions()


def assignable_roles(actor_role: object) -> tuple[Role, ...]:
    return _default.assignable_roles(actor_role)


def can_view(role: object) -> bool:
    """Check if a role can read workspace content."""
    return is_role_at_least(role, Role.VIEWER)


def can_edit(role: object) -> bool:
    """Check if a role can change lists, cards and comments."""
    return is_role_at_least(role, Role.MEMBER)


def can_manage(role: object) -> bool:
    """Check if a role can perform administrative actions."""
    return is_role_at_least(role, Role.ADMIN)
