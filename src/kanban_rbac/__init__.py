"""Kanban board workspace roles, permissions and memberships."""

__version__ = "0.1.0"
