"""Event type constants for workspace activity."""

from enum import StrEnum


class EventType(StrEnum):
    WORKSPACE_CREATED = "workspace.created"

    MEMBER_INVITED = "member.invited"
    MEMBER_ROLE_CHANGED = "member.role_changed"
    MEMBER_REMOVED = "member.removed"

    PERMISSION_DENIED = "permission.denied"
