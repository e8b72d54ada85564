# app/security.py
"""Security dependencies resolving API keys to users and enforcing roles."""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.user import User, UserRole
from app.utils.apikey import find_valid_key
from app.utils.errors import error_response


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_user(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> User:
    """Validate the bearer key and return the active user it belongs to."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    user = db.get(User, key.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_INACTIVE", "User account is not active."),
        )

    key.last_used_at = datetime.now(UTC)
    db.commit()
    return user


def require_role(*allowed: UserRole) -> Callable[..., User]:
    """Require one of ``allowed`` roles; administrators always pass."""

    if not allowed:
        raise RuntimeError("require_role needs at least one UserRole")

    def _dep(user: User = Depends(require_user)) -> User:
        if user.role == UserRole.ADMIN or user.role in allowed:
            return user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_ROLE",
                f"Requires one of: {[role.value for role in allowed]}",
            ),
        )

    return _dep


require_student = require_role(UserRole.STUDENT)
require_teacher = require_role(UserRole.TEACHER)


def owner_scope(user: User) -> int | None:
    """Return the teacher id to enforce ownership with, or ``None`` for admins."""

    return None if user.role == UserRole.ADMIN else user.id


__all__ = ["owner_scope", "require_user", "require_role", "require_student", "require_teacher"]
