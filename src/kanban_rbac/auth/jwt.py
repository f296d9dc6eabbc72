"""JWT token creation and validation for identifying the acting user."""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import jwt

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "dev-secret-do-not-use"


class TokenExpiredError(Exception):
    """Raised when a JWT token has expired."""


class TokenInvalidError(Exception):
    """Raised when a JWT token is invalid."""


def jwt_secret() -> str:
    return os.environ.get("KANBAN_RBAC_JWT_SECRET", DEFAULT_SECRET)


def create_token(user_id: str, exp_minutes: int = 60, *, secret: str | None = None) -> str:
    """Create a signed token whose subject is the user ID."""
    now = int(time.time())
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + (exp_minutes * 60),
    }
    return jwt.encode(payload, secret or jwt_secret(), algorithm="HS256")


def verify_token(token: str, secret: str) -> dict[str, Any]:
    """Verify and decode a JWT token."""
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError("Token is invalid") from e

    if not payload.get("sub"):
        raise TokenInvalidError("Token missing user ID")
    return payload
