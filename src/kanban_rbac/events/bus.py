"""Async event bus and activity log for workspace membership changes."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from kanban_rbac.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Activity:
    """One recorded event."""

    type: EventType
    data: dict[str, Any]
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def workspace_id(self) -> str | None:
        return self.data.get("workspace_id")


class EventBus:
    """Pub/sub for membership events, keeping the most recent ones in memory."""

    def __init__(self, *, history_size: int = 100) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._any: list[Listener] = []
        self._history: deque[Activity] = deque(maxlen=history_size)

    def subscribe(self, event_type: EventType | None, listener: Listener) -> None:
        """Register a listener for one event type, or for every event when None."""
        if event_type is None:
            self._any.append(listener)
        else:
            self._listeners[event_type].append(listener)

    def unsubscribe(self, event_type: EventType | None, listener: Listener) -> None:
        targets = self._any if event_type is None else self._listeners[event_type]
        if listener in targets:
            targets.remove(listener)

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> Activity:
        """Record an event and deliver it to listeners.

        A failing listener is logged and does not stop the others.
        """
        activity = Activity(type=event_type, data=dict(data or {}))
        self._history.append(activity)

        for listener in [*self._listeners.get(event_type, []), *self._any]:
            try:
                await listener(event_type, activity.data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Activity listener failed for %s", event_type)
        return activity

    def recent(self, *, workspace_id: str | None = None, limit: int = 20) -> list[Activity]:
        """Newest first."""
        items = [a for a in reversed(self._history) if workspace_id in (None, a.workspace_id)]
        return items[:limit]
