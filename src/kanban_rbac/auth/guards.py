"""Turn denied permission checks into errors for callers that must stop."""

from __future__ import annotations

import logging

from kanban_rbac.auth.permissions import PermissionEvaluator, default_evaluator

logger = logging.getLogger(__name__)


class ForbiddenError(PermissionError):
    """Raised when an authenticated user lacks the role or capability required."""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        *,
        role: str | None = None,
        required: str | None = None,
    ) -> None:
        super().__init__(message)
        self.role = role
        self.required = required


def require_permission(
    role: str | None,
    capability: str,
    *,
    user_id: str | None = None,
    workspace_id: str | None = None,
    evaluator: PermissionEvaluator | None = None,
) -> str:
    """Return the role if it grants the capability, raise ForbiddenError otherwise."""
    evaluator = evaluator or default_evaluator()
    if not evaluator.has_permission(role, capability):
        logger.info(
            "Permission denied: user %s with role %s attempted %s in workspace %s",
            user_id,
            role,
            capability,
            workspace_id,
        )
        raise ForbiddenError(role=role, required=str(capability))

    logger.debug(
        "Permission granted: user %s has %s in workspace %s", user_id, capability, workspace_id
    )
    return role  # type: ignore[return-value]


def require_role(
    role: str | None,
    required_role: str,
    *,
    evaluator: PermissionEvaluator | None = None,
) -> str:
    evaluator = evaluator or default_evaluator()
    if not evaluator.is_role_at_least(role, required_role):
        logger.info("Role %s is below required role %s", role, required_role)
        raise ForbiddenError(
            f"This action requires the {required_role} role or higher",
            role=role,
            required=str(required_role),
        )
    return role  # type: ignore[return-value]


def require_role_change(
    actor_role: str | None,
    current_role: str | None,
    new_role: str | None,
    *,
    evaluator: PermissionEvaluator | None = None,
) -> None:
    evaluator = evaluator or default_evaluator()
    if not evaluator.can_modify_role(actor_role, current_role, new_role):
        logger.info(
            "Role change denied: %s cannot change %s to %s", actor_role, current_role, new_role
        )
        raise ForbiddenError(
            f"A {actor_role} cannot change a {current_role} to {new_role}",
            role=actor_role,
            required=f"{current_role}->{new_role}",
        )
