"""Tests for the member management service and activity events."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from kanban_rbac.auth.guards import ForbiddenError
from kanban_rbac.auth.permissions import PermissionEvaluator
from kanban_rbac.auth.roles import Role
from kanban_rbac.core.members import MemberService
from kanban_rbac.events.bus import EventBus
from kanban_rbac.events.types import EventType
from kanban_rbac.models.membership import Membership
from kanban_rbac.storage.membership_store import MembershipStore


@pytest.fixture
async def workspace_id(service: MemberService, store: MembershipStore) -> str:
    """A workspace owned by alice with an admin, a member and a viewer."""
    ws = await service.create_workspace(name="Roadmap", owner_id="alice")
    await store.add_member(ws.id, "adam", "admin", invited_by="alice")
    await store.add_member(ws.id, "mia", "member", invited_by="alice")
    await store.add_member(ws.id, "vic", "viewer", invited_by="alice")
    return ws.id


class TestCreateWorkspace:
    async def test_creator_is_owner(self, service: MemberService, store: MembershipStore) -> None:
        ws = await service.create_workspace(name="  Roadmap ", owner_id="alice")

        assert ws.name == "Roadmap"
        assert await store.resolve_role(ws.id, "alice") == "owner"

    async def test_empty_name(self, service: MemberService) -> None:
        with pytest.raises(ValueError, match="cannot be empty"):
            await service.create_workspace(name="   ", owner_id="alice")

    async def test_emits_event(self, service: MemberService, event_bus: EventBus) -> None:
        ws = await service.create_workspace(name="Roadmap", owner_id="alice")

        [activity] = event_bus.recent(workspace_id=ws.id)
        assert activity.type == EventType.WORKSPACE_CREATED
        assert activity.data["owner_id"] == "alice"


class TestCheck:
    async def test_check_by_role(self, service: MemberService, workspace_id: str) -> None:
        assert await service.check(workspace_id=workspace_id, user_id="mia", capability="card:create")
        assert not await service.check(
            workspace_id=workspace_id, user_id="vic", capability="card:create"
        )

    async def test_check_stranger(self, service: MemberService, workspace_id: str) -> None:
        assert not await service.check(
            workspace_id=workspace_id, user_id="mallory", capability="workspace:view"
        )

    async def test_check_legacy_owner(self, service: MemberService, store: MembershipStore) -> None:
        await store.create_workspace("legacy", "Old board", "olga", owner_membership=False)
        assert await service.check(
            workspace_id="legacy", user_id="olga", capability="workspace:delete"
        )


class TestListMembers:
    async def test_viewer_can_list(self, service: MemberService, workspace_id: str) -> None:
        members = await service.list_members(workspace_id=workspace_id, actor_id="vic")

        assert [m.user_id for m in members] == ["alice", "adam", "mia", "vic"]
        assert members[0].role is Role.OWNER

    async def test_stranger_cannot_list(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ForbiddenError, match="not a member"):
            await service.list_members(workspace_id=workspace_id, actor_id="mallory")

    async def test_missing_workspace(self, service: MemberService) -> None:
        with pytest.raises(LookupError):
            await service.list_members(workspace_id="nope", actor_id="alice")


class TestInviteMember:
    async def test_owner_invites_admin(self, service: MemberService, workspace_id: str) -> None:
        m = await service.invite_member(
            workspace_id=workspace_id, actor_id="alice", user_id="bob", role="admin"
        )

        assert m.role is Role.ADMIN
        assert m.invited_by == "alice"

    async def test_admin_invites_member(self, service: MemberService, workspace_id: str) -> None:
        m = await service.invite_member(workspace_id=workspace_id, actor_id="adam", user_id="bob")
        assert m.role is Role.MEMBER

    async def test_admin_cannot_invite_admin(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError, match="cannot invite members as admin"):
            await service.invite_member(
                workspace_id=workspace_id, actor_id="adam", user_id="bob", role="admin"
            )

    async def test_nobody_invites_owner(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ForbiddenError):
            await service.invite_member(
                workspace_id=workspace_id, actor_id="alice", user_id="bob", role="owner"
            )

    async def test_member_cannot_invite(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            await service.invite_member(
                workspace_id=workspace_id, actor_id="mia", user_id="bob", role="viewer"
            )
        assert exc_info.value.required == "member:invite"

    async def test_invalid_role(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ValueError, match="Invalid role"):
            await service.invite_member(
                workspace_id=workspace_id, actor_id="alice", user_id="bob", role="guest"
            )

    async def test_already_member(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ValueError, match="already a member"):
            await service.invite_member(
                workspace_id=workspace_id, actor_id="alice", user_id="mia", role="viewer"
            )

    async def test_emits_event(
        self, service: MemberService, event_bus: EventBus, workspace_id: str
    ) -> None:
        received: list[dict[str, Any]] = []

        async def listener(event_type: EventType, data: dict[str, Any]) -> None:
            received.append(data)

        event_bus.subscribe(EventType.MEMBER_INVITED, listener)
        await service.invite_member(
            workspace_id=workspace_id, actor_id="alice", user_id="bob", role="viewer"
        )

        assert received == [
            {"workspace_id": workspace_id, "user_id": "bob", "role": "viewer", "invited_by": "alice"}
        ]


class TestChangeRole:
    async def test_owner_demotes_admin(self, service: MemberService, workspace_id: str) -> None:
        m = await service.change_role(
            workspace_id=workspace_id, actor_id="alice", user_id="adam", new_role="viewer"
        )
        assert m.role is Role.VIEWER
        assert m.updated_at is not None

    async def test_admin_demotes_member(self, service: MemberService, workspace_id: str) -> None:
        m = await service.change_role(
            workspace_id=workspace_id, actor_id="adam", user_id="mia", new_role="viewer"
        )
        assert m.role is Role.VIEWER

    async def test_admin_cannot_promote_to_admin(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.change_role(
                workspace_id=workspace_id, actor_id="adam", user_id="mia", new_role="admin"
            )

    async def test_admin_cannot_change_owner(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.change_role(
                workspace_id=workspace_id, actor_id="adam", user_id="alice", new_role="member"
            )

    async def test_member_cannot_change_roles(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.change_role(
                workspace_id=workspace_id, actor_id="mia", user_id="vic", new_role="member"
            )

    async def test_cannot_change_own_role(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError, match="own role"):
            await service.change_role(
                workspace_id=workspace_id, actor_id="adam", user_id="adam", new_role="member"
            )

    async def test_same_role_writes_nothing(
        self, service: MemberService, event_bus: EventBus, workspace_id: str
    ) -> None:
        m = await service.change_role(
            workspace_id=workspace_id, actor_id="alice", user_id="mia", new_role="member"
        )

        assert m.role is Role.MEMBER
        assert m.updated_at is None
        assert not any(a.type == EventType.MEMBER_ROLE_CHANGED for a in event_bus.recent())

    async def test_not_a_member(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ValueError, match="not a member"):
            await service.change_role(
                workspace_id=workspace_id, actor_id="alice", user_id="ghost", new_role="viewer"
            )

    async def test_emits_event(
        self, service: MemberService, event_bus: EventBus, workspace_id: str
    ) -> None:
        await service.change_role(
            workspace_id=workspace_id, actor_id="alice", user_id="vic", new_role="member"
        )

        activity = event_bus.recent(workspace_id=workspace_id)[0]
        assert activity.type == EventType.MEMBER_ROLE_CHANGED
        assert activity.data["old_role"] == "viewer"
        assert activity.data["new_role"] == "member"
        assert activity.data["changed_by"] == "alice"

    async def test_denial_emits_event(
        self, service: MemberService, event_bus: EventBus, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.change_role(
                workspace_id=workspace_id, actor_id="adam", user_id="adam", new_role="viewer"
            )

        activity = event_bus.recent(workspace_id=workspace_id)[0]
        assert activity.type == EventType.PERMISSION_DENIED
        assert activity.data["user_id"] == "adam"


class TestRemoveMember:
    async def test_owner_removes_admin(
        self, service: MemberService, store: MembershipStore, workspace_id: str
    ) -> None:
        assert await service.remove_member(
            workspace_id=workspace_id, actor_id="alice", user_id="adam"
        )
        assert await store.get_member(workspace_id, "adam") is None

    async def test_admin_removes_viewer(self, service: MemberService, workspace_id: str) -> None:
        assert await service.remove_member(workspace_id=workspace_id, actor_id="adam", user_id="vic")

    async def test_admin_cannot_remove_admin(
        self, service: MemberService, store: MembershipStore, workspace_id: str
    ) -> None:
        await store.add_member(workspace_id, "ada", "admin")
        with pytest.raises(ForbiddenError):
            await service.remove_member(workspace_id=workspace_id, actor_id="adam", user_id="ada")

    async def test_owner_cannot_be_removed(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError, match="owner cannot be removed"):
            await service.remove_member(
                workspace_id=workspace_id, actor_id="adam", user_id="alice"
            )

    async def test_owner_cannot_leave(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ForbiddenError):
            await service.remove_member(
                workspace_id=workspace_id, actor_id="alice", user_id="alice"
            )

    async def test_member_cannot_remove_others(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.remove_member(workspace_id=workspace_id, actor_id="mia", user_id="vic")

    async def test_viewer_can_leave(
        self, service: MemberService, event_bus: EventBus, workspace_id: str
    ) -> None:
        assert await service.remove_member(workspace_id=workspace_id, actor_id="vic", user_id="vic")

        activity = event_bus.recent(workspace_id=workspace_id)[0]
        assert activity.type == EventType.MEMBER_REMOVED
        assert activity.data["removed_by"] == "vic"

    async def test_not_a_member(self, service: MemberService, workspace_id: str) -> None:
        with pytest.raises(ValueError, match="not a member"):
            await service.remove_member(
                workspace_id=workspace_id, actor_id="alice", user_id="ghost"
            )


class TestActivityLog:
    async def test_events_are_persisted(
        self, service: MemberService, store: MembershipStore, workspace_id: str
    ) -> None:
        await service.invite_member(
            workspace_id=workspace_id, actor_id="alice", user_id="bob", role="viewer"
        )
        await service.change_role(
            workspace_id=workspace_id, actor_id="alice", user_id="bob", new_role="member"
        )

        activities = await store.get_activities(workspace_id)
        assert [a["event_type"] for a in activities] == [
            "member.role_changed",
            "member.invited",
            "workspace.created",
        ]
        assert activities[0]["user_id"] == "alice"
        assert activities[0]["details"]["new_role"] == "member"

    async def test_denial_is_persisted(
        self, service: MemberService, store: MembershipStore, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError):
            await service.invite_member(workspace_id=workspace_id, actor_id="vic", user_id="bob")

        [denied] = await store.get_activities(workspace_id, event_type="permission.denied")
        assert denied["user_id"] == "vic"
        assert denied["details"]["attempted"] == "member:invite"

    async def test_members_can_read_activity(
        self, service: MemberService, workspace_id: str
    ) -> None:
        activities = await service.list_activity(workspace_id=workspace_id, actor_id="vic")
        assert activities[-1]["event_type"] == "workspace.created"

    async def test_strangers_cannot_read_activity(
        self, service: MemberService, workspace_id: str
    ) -> None:
        with pytest.raises(ForbiddenError, match="not a member"):
            await service.list_activity(workspace_id=workspace_id, actor_id="mallory")


class TestMembershipModel:
    def test_role_is_validated(self) -> None:
        assert Membership(workspace_id="ws-1", user_id="bob", role="admin").role is Role.ADMIN
        with pytest.raises(ValidationError):
            Membership(workspace_id="ws-1", user_id="bob", role="superuser")


class TestCustomEvaluator:
    async def test_service_uses_given_table(
        self, store: MembershipStore, event_bus: EventBus
    ) -> None:
        evaluator = PermissionEvaluator({"owner": ["workspace:view"], "viewer": ["member:view"]})
        service = MemberService(store, event_bus, evaluator)
        ws = await service.create_workspace(name="Locked", owner_id="alice")
        await store.add_member(ws.id, "vic", "viewer")

        assert len(await service.list_members(workspace_id=ws.id, actor_id="vic")) == 2
        with pytest.raises(ForbiddenError):
            await service.list_members(workspace_id=ws.id, actor_id="alice")


class TestEventBus:
    async def test_failing_listener_does_not_stop_others(self) -> None:
        bus = EventBus()
        seen: list[EventType] = []

        async def broken(event_type: EventType, data: dict[str, Any]) -> None:
            raise RuntimeError("boom")

        async def recorder(event_type: EventType, data: dict[str, Any]) -> None:
            seen.append(event_type)

        bus.subscribe(EventType.MEMBER_REMOVED, broken)
        bus.subscribe(None, recorder)
        await bus.emit(EventType.MEMBER_REMOVED, {"workspace_id": "ws-1"})

        assert seen == [EventType.MEMBER_REMOVED]

    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[EventType] = []

        async def recorder(event_type: EventType, data: dict[str, Any]) -> None:
            seen.append(event_type)

        bus.subscribe(EventType.MEMBER_INVITED, recorder)
        bus.unsubscribe(EventType.MEMBER_INVITED, recorder)
        await bus.emit(EventType.MEMBER_INVITED)

        assert seen == []

    async def test_history_is_bounded_and_newest_first(self) -> None:
        bus = EventBus(history_size=3)
        for i in range(5):
            await bus.emit(EventType.MEMBER_INVITED, {"workspace_id": "ws-1", "n": i})

        assert [a.data["n"] for a in bus.recent()] == [4, 3, 2]
        assert bus.recent(workspace_id="other") == []
        assert len(bus.recent(limit=1)) == 1
