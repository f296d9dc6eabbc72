"""Workspace and membership models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from kanban_rbac.auth.roles import Role


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Workspace(BaseModel):
    """A workspace; owner_id is the user who created it."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str
    owner_id: str
    created_at: str = Field(default_factory=_now)


class Membership(BaseModel):
    """A user's role in one workspace."""

    workspace_id: str
    user_id: str
    role: Role = Role.MEMBER
    invited_by: str | None = None
    invited_at: str = Field(default_factory=_now)
    updated_at: str | None = None

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "invited_by": self.invited_by,
            "invited_at": self.invited_at,
            "updated_at": self.updated_at,
        }
