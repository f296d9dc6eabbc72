"""Membership storage."""

from kanban_rbac.storage.membership_store import MembershipStore

__all__ = ["MembershipStore"]
