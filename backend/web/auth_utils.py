"""
Shared authentication utilities for the web adapters.

Why:
    Every router needs the same small checks (who is calling, which role they
    hold). Keeping them here avoids drift between the
    instructor, learning and admin routers.

Design:
    Role helpers return `(user, error_response)` so handlers can bail out early
    without raising; services never see unauthenticated callers.
"""

from __future__ import annotations

from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from backend.web.envelope import failure

SESSION_COOKIE_NAME = "educademy_session"


def current_user(request: Request) -> Optional[dict]:
    return getattr(request.state, "user", None)


def current_sub(user: Optional[dict]) -> str:
    if not user:
        return ""
    sub = user.get("sub")
    return str(sub) if sub else ""


def role_in(user: Optional[dict], role: str) -> bool:
    if not user:
        return False
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        return False
    return role in roles


def require_role(request: Request, *roles: str) -> Tuple[Optional[dict], Optional[JSONResponse]]:
    """Return (user, error_response) ensuring the caller holds one of `roles`."""
    user = current_user(request)
    if not user:
        return None, failure(request, "UNAUTHENTICATED", "Authentication required", status_code=401)
    if not any(role_in(user, role) for role in roles):
        return None, failure(request, "FORBIDDEN", "You do not have permission to perform this action", status_code=403)
    return user, None
