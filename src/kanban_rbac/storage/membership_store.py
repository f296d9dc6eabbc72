"""SQLite store for workspaces and their member roles."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from kanban_rbac.auth.roles import Role

logger = logging.getLogger(__name__)


class MembershipStore:
    """Persists workspaces and memberships, and resolves a user's role."""

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_load_sql("members.sql"))
        await self._db.commit()
        logger.info("Initialized membership store at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    # --- Workspaces ---

    async def create_workspace(
        self, workspace_id: str, name: str, owner_id: str, *, owner_membership: bool = True
    ) -> dict[str, Any]:
        """Insert a workspace and, unless disabled, its owner's membership row.

        Both rows are written in one transaction; if either insert fails
        neither is kept.
        """
        now = datetime.now(UTC).isoformat()
        try:
            await self.db.execute(
                """INSERT INTO workspaces (workspace_id, name, owner_id, created_at)
                   VALUES (?, ?, ?, ?)""",
                (workspace_id, name, owner_id, now),
            )
            if owner_membership:
                await self.db.execute(
                    """INSERT INTO workspace_members
                       (workspace_id, user_id, role, invited_by, invited_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (workspace_id, owner_id, Role.OWNER.value, owner_id, now),
                )
        except aiosqlite.Error:
            await self.db.rollback()
            raise
        await self.db.commit()
        return {"workspace_id": workspace_id, "name": name, "owner_id": owner_id, "created_at": now}

    async def get_workspace(self, workspace_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM workspaces WHERE workspace_id = ?", (workspace_id,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_workspaces(self, *, user_id: str | None = None) -> list[dict[str, Any]]:
        """List workspaces, optionally only those a user belongs to or created."""
        if user_id is None:
            cursor = await self.db.execute("SELECT * FROM workspaces ORDER BY created_at")
        else:
            cursor = await self.db.execute(
                """SELECT DISTINCT w.* FROM workspaces w
                   LEFT JOIN workspace_members wm ON w.workspace_id = wm.workspace_id
                   WHERE w.owner_id = ? OR wm.user_id = ?
                   ORDER BY w.created_at""",
                (user_id, user_id),
            )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # --- Members ---

    async def add_member(
        self,
        workspace_id: str,
        user_id: str,
        role: str = Role.MEMBER,
        *,
        invited_by: str | None = None,
    ) -> dict[str, Any]:
        """Add a member. A second row for the same user raises IntegrityError."""
        now = datetime.now(UTC).isoformat()
        await self.db.execute(
            """INSERT INTO workspace_members (workspace_id, user_id, role, invited_by, invited_at)
               VALUES (?, ?, ?, ?, ?)""",
            (workspace_id, user_id, str(role), invited_by, now),
        )
        await self.db.commit()
        return {
            "workspace_id": workspace_id,
            "user_id": user_id,
            "role": str(role),
            "invited_by": invited_by,
            "invited_at": now,
            "updated_at": None,
        }

    async def get_member(self, workspace_id: str, user_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
            (workspace_id, user_id),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def get_members(self, workspace_id: str) -> list[dict[str, Any]]:
        """Members ordered by role rank, then by when they were invited."""
        cursor = await self.db.execute(
            """SELECT * FROM workspace_members WHERE workspace_id = ?
               ORDER BY CASE role
                   WHEN 'owner' THEN 0 WHEN 'admin' THEN 1
                   WHEN 'member' THEN 2 ELSE 3 END,
               invited_at""",
            (workspace_id,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def update_member_role(
        self, workspace_id: str, user_id: str, role: str
    ) -> dict[str, Any] | None:
        now = datetime.now(UTC).isoformat()
        cursor = await self.db.execute(
            """UPDATE workspace_members SET role = ?, updated_at = ?
               WHERE workspace_id = ? AND user_id = ?""",
            (str(role), now, workspace_id, user_id),
        )
        await self.db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_member(workspace_id, user_id)

    async def remove_member(self, workspace_id: str, user_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
            (workspace_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def resolve_role(self, workspace_id: str, user_id: str) -> str | None:
        """Get a user's role in a workspace.

        Workspaces created before membership rows existed have only an
        owner_id; that user is treated as the owner.
        """
        member = await self.get_member(workspace_id, user_id)
        if member:
            return member["role"]

        workspace = await self.get_workspace(workspace_id)
        if workspace and workspace["owner_id"] == user_id:
            return Role.OWNER.value
        return None

    # --- Activity ---

    async def add_activity(
        self,
        workspace_id: str,
        event_type: str,
        *,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
        created_at: str | None = None,
    ) -> int:
        """Append an activity record; returns its row id."""
        cursor = await self.db.execute(
            """INSERT INTO activities (workspace_id, user_id, event_type, details, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                workspace_id,
                user_id,
                str(event_type),
                json.dumps(details or {}),
                created_at or datetime.now(UTC).isoformat(),
            ),
        )
        await self.db.commit()
        return cursor.lastrowid

    async def get_activities(
        self,
        workspace_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Activity for a workspace, newest first."""
        query = "SELECT * FROM activities WHERE workspace_id = ?"
        params: list[Any] = [workspace_id]
        if event_type is not None:
            query += " AND event_type = ?"
            params.append(str(event_type))
        query += " ORDER BY id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        cursor = await self.db.execute(query, params)
        rows = await cursor.fetchall()
        results = []
        for row in rows:
            record = dict(row)
            record["details"] = json.loads(record["details"])
            results.append(record)
        return results


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema directory."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()
