"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between the web layer and tests.
"""

from __future__ import annotations

from typing import Iterable, List

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "instructor", "admin"})


def normalize_roles(roles: Iterable[object]) -> List[str]:
    """Lower-case known roles, drop unknown ones, keep first-seen order."""
    out: List[str] = []
    for role in roles or []:
        if isinstance(role, str) and role.strip().lower() in ALLOWED_ROLES and role.strip().lower() not in out:
            out.append(role.strip().lower())
    return out


def primary_role(roles: Iterable[str]) -> str:
    lowered = normalize_roles(roles)
    for role in ("admin", "instructor", "student"):
        if role in lowered:
            return role
    return "student"


__all__ = ["ALLOWED_ROLES", "normalize_roles", "primary_role"]
