"""Membership activity events."""

from kanban_rbac.events.bus import EventBus
from kanban_rbac.events.types import EventType

__all__ = ["EventBus", "EventType"]
