"""Workspace member management gated by role permissions."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import aiosqlite

from kanban_rbac.auth.guards import ForbiddenError, require_permission, require_role_change
from kanban_rbac.auth.permissions import Capability, PermissionEvaluator, default_evaluator
from kanban_rbac.auth.roles import Role, parse_role
from kanban_rbac.events.bus import EventBus
from kanban_rbac.events.types import EventType
from kanban_rbac.models.membership import Membership, Workspace
from kanban_rbac.storage.membership_store import MembershipStore

logger = logging.getLogger(__name__)

# Event field naming the user who acted
_ACTOR_FIELDS = {
    EventType.WORKSPACE_CREATED: "owner_id",
    EventType.MEMBER_INVITED: "invited_by",
    EventType.MEMBER_ROLE_CHANGED: "changed_by",
    EventType.MEMBER_REMOVED: "removed_by",
    EventType.PERMISSION_DENIED: "user_id",
}


class MemberService:
    """Invites, role changes and removals for workspace members."""

    def __init__(
        self,
        store: MembershipStore,
        event_bus: EventBus,
        evaluator: PermissionEvaluator | None = None,
    ) -> None:
        """Initialize MemberService.

        Args:
            store: Membership store used to resolve and persist roles
            event_bus: Event bus receiving membership activity; every event
                is also written to the store's activity log
            evaluator: Permission evaluator, the reference table by default
        """
        self._store = store
        self._event_bus = event_bus
        self._evaluator = evaluator or default_evaluator()
        event_bus.subscribe(None, self._persist_activity)

    async def _persist_activity(self, event_type: EventType, data: dict[str, Any]) -> None:
        workspace_id = data.get("workspace_id")
        if not workspace_id:
            return
        await self._store.add_activity(
            workspace_id,
            event_type,
            user_id=data.get(_ACTOR_FIELDS.get(event_type, "user_id")),
            details=data,
        )

    async def list_activity(
        self,
        *,
        workspace_id: str,
        actor_id: str,
        limit: int = 50,
        offset: int = 0,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Recorded activity for a workspace, newest first. Any member may read it."""
        await self._authorize(workspace_id, actor_id, Capability.WORKSPACE_VIEW)
        return await self._store.get_activities(
            workspace_id, limit=limit, offset=offset, event_type=event_type
        )

    async def create_workspace(self, *, name: str, owner_id: str) -> Workspace:
        """Create a workspace and make its creator the owner.

        Raises:
            ValueError: If name is empty or whitespace-only
        """
        if not name or not name.strip():
            raise ValueError("Workspace name cannot be empty")

        row = await self._store.create_workspace(str(uuid.uuid4())[:8], name.strip(), owner_id)
        workspace = Workspace(
            id=row["workspace_id"],
            name=row["name"],
            owner_id=owner_id,
            created_at=row["created_at"],
        )
        logger.info("Created workspace: %s (id=%s)", workspace.name, workspace.id)

        await self._event_bus.emit(
            EventType.WORKSPACE_CREATED,
            {"workspace_id": workspace.id, "name": workspace.name, "owner_id": owner_id},
        )
        return workspace

    async def check(self, *, workspace_id: str, user_id: str, capability: str) -> bool:
        """Whether the user may perform the action. Never raises for a denial."""
        role = await self._store.resolve_role(workspace_id, user_id)
        return self._evaluator.has_permission(role, capability)

    async def list_members(self, *, workspace_id: str, actor_id: str) -> list[Membership]:
        await self._authorize(workspace_id, actor_id, Capability.MEMBER_VIEW)
        rows = await self._store.get_members(workspace_id)
        return [Membership(**row) for row in rows]

    async def invite_member(
        self,
        *,
        workspace_id: str,
        actor_id: str,
        user_id: str,
        role: str = Role.MEMBER,
    ) -> Membership:
        """Add a user to the workspace with a role the actor is allowed to grant.

        Raises:
            ValueError: If the role is unknown or the user is already a member
            ForbiddenError: If the actor may not invite, or may not grant the role
            LookupError: If the workspace does not exist
        """
        new_role = parse_role(role)
        if new_role is None:
            raise ValueError(f"Invalid role: {role}. Must be one of {[r.value for r in Role]}")

        actor_role = await self._authorize(workspace_id, actor_id, Capability.MEMBER_INVITE)
        if new_role not in self._evaluator.assignable_roles(actor_role):
            await self._deny(workspace_id, actor_id, actor_role, f"invite as {new_role}")
            raise ForbiddenError(
                f"A {actor_role} cannot invite members as {new_role}",
                role=actor_role,
                required=str(Capability.MEMBER_INVITE),
            )

        if await self._store.resolve_role(workspace_id, user_id) is not None:
            raise ValueError("User is already a member of this workspace")

        try:
            row = await self._store.add_member(workspace_id, user_id, new_role, invited_by=actor_id)
        except aiosqlite.IntegrityError as e:
            raise ValueError("User is already a member of this workspace") from e

        logger.info("Invited %s to workspace %s as %s", user_id, workspace_id, new_role)
        await self._event_bus.emit(
            EventType.MEMBER_INVITED,
            {
                "workspace_id": workspace_id,
                "user_id": user_id,
                "role": new_role.value,
                "invited_by": actor_id,
            },
        )
        return Membership(**row)

    async def change_role(
        self,
        *,
        workspace_id: str,
        actor_id: str,
        user_id: str,
        new_role: str,
    ) -> Membership:
        """Change a member's role.

        Setting the role a member already has is allowed and writes nothing.

        Raises:
            ValueError: If the role is unknown or the user is not a member
            ForbiddenError: If the rules for role changes deny the actor
            LookupError: If the workspace does not exist
        """
        target_role = parse_role(new_role)
        if target_role is None:
            raise ValueError(f"Invalid role: {new_role}. Must be one of {[r.value for r in Role]}")

        actor_role = await self._authorize(workspace_id, actor_id, Capability.MEMBER_UPDATE_ROLE)
        if actor_id == user_id:
            await self._deny(workspace_id, actor_id, actor_role, "change own role")
            raise ForbiddenError("You cannot change your own role", role=actor_role)

        member = await self._store.get_member(workspace_id, user_id)
        if not member:
            raise ValueError(f"User {user_id} is not a member of this workspace")
        current_role = member["role"]

        try:
            require_role_change(actor_role, current_role, target_role, evaluator=self._evaluator)
        except ForbiddenError:
            await self._record_denial(
                workspace_id, actor_id, actor_role, f"change {current_role} to {target_role}"
            )
            raise

        if current_role == target_role:
            return Membership(**member)

        updated = await self._store.update_member_role(workspace_id, user_id, target_role)
        if updated is None:
            raise ValueError(f"User {user_id} is not a member of this workspace")

        logger.info(
            "Changed role of %s in workspace %s: %s -> %s",
            user_id,
            workspace_id,
            current_role,
            target_role,
        )
        await self._event_bus.emit(
            EventType.MEMBER_ROLE_CHANGED,
            {
                "workspace_id": workspace_id,
                "user_id": user_id,
                "old_role": current_role,
                "new_role": target_role.value,
                "changed_by": actor_id,
            },
        )
        return Membership(**updated)

    async def remove_member(self, *, workspace_id: str, actor_id: str, user_id: str) -> bool:
        """Remove a member, or let a non-owner leave.

        Raises:
            ValueError: If the user is not a member
            ForbiddenError: If the target is the owner or outranks what the actor manages
            LookupError: If the workspace does not exist
        """
        member = await self._store.get_member(workspace_id, user_id)
        leaving = actor_id == user_id

        if leaving:
            actor_role = await self._authorize(workspace_id, actor_id, Capability.WORKSPACE_VIEW)
        else:
            actor_role = await self._authorize(workspace_id, actor_id, Capability.MEMBER_REMOVE)

        if not member:
            raise ValueError(f"User {user_id} is not a member of this workspace")
        target_role = member["role"]

        if target_role == Role.OWNER:
            await self._deny(workspace_id, actor_id, actor_role, "remove owner")
            raise ForbiddenError("The workspace owner cannot be removed", role=actor_role)

        if not leaving and actor_role == Role.ADMIN and self._evaluator.is_role_at_least(
            target_role, Role.ADMIN
        ):
            await self._deny(workspace_id, actor_id, actor_role, f"remove {target_role}")
            raise ForbiddenError(f"A {actor_role} cannot remove a {target_role}", role=actor_role)

        removed = await self._store.remove_member(workspace_id, user_id)
        if removed:
            logger.info("Removed %s from workspace %s", user_id, workspace_id)
            await self._event_bus.emit(
                EventType.MEMBER_REMOVED,
                {
                    "workspace_id": workspace_id,
                    "user_id": user_id,
                    "role": target_role,
                    "removed_by": actor_id,
                },
            )
        return removed

    async def _authorize(self, workspace_id: str, actor_id: str, capability: str) -> str:
        """Resolve the actor's role and require a capability; returns the role."""
        workspace = await self._store.get_workspace(workspace_id)
        if not workspace:
            raise LookupError(f"Workspace {workspace_id} not found")

        role = await self._store.resolve_role(workspace_id, actor_id)
        if role is None:
            logger.info("User %s is not a member of workspace %s", actor_id, workspace_id)
            await self._record_denial(workspace_id, actor_id, None, str(capability))
            raise ForbiddenError("You are not a member of this workspace", required=str(capability))

        try:
            return require_permission(
                role,
                capability,
                user_id=actor_id,
                workspace_id=workspace_id,
                evaluator=self._evaluator,
            )
        except ForbiddenError:
            await self._record_denial(workspace_id, actor_id, role, str(capability))
            raise

    async def _deny(
        self, workspace_id: str, actor_id: str, role: str | None, attempted: str
    ) -> None:
        logger.info(
            "Permission denied: user %s with role %s attempted %s in workspace %s",
            actor_id,
            role,
            attempted,
            workspace_id,
        )
        await self._record_denial(workspace_id, actor_id, role, attempted)

    async def _record_denial(
        self, workspace_id: str, actor_id: str, role: str | None, attempted: str
    ) -> None:
        await self._event_bus.emit(
            EventType.PERMISSION_DENIED,
            {
                "workspace_id": workspace_id,
                "user_id": actor_id,
                "role": role,
                "attempted": attempted,
            },
        )
