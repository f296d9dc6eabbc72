"""Workspace and membership records."""

from kanban_rbac.models.membership import Membership, Workspace

__all__ = ["Membership", "Workspace"]
