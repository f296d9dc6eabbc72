"""Shared test fixtures for kanban-rbac."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from kanban_rbac.config import Config
from kanban_rbac.core.members import MemberService
from kanban_rbac.events.bus import EventBus
from kanban_rbac.storage.membership_store import MembershipStore


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "members.db"


@pytest.fixture
async def store(tmp_db: Path) -> AsyncGenerator[MembershipStore, None]:
    s = MembershipStore(tmp_db)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def service(store: MembershipStore, event_bus: EventBus) -> MemberService:
    return MemberService(store, event_bus)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(data_path=tmp_path)
