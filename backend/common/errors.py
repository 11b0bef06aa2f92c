"""
Domain error taxonomy shared by services, repositories and web adapters.

Why:
    Business-rule violations must reach the HTTP boundary as a machine-readable
    `code` plus a human message, independent of where they were detected (pure
    helper, service or repository transaction). Each class also subclasses the
    builtin that matches its meaning so callers that only know `ValueError` /
    `LookupError` / `PermissionError` still behave sensibly.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    status = 400

    def __init__(self, code: str, message: str | None = None, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code)
        self.code = code
        self.message = message or code.replace("_", " ").capitalize()
        self.details = details

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.code


class ValidationFailed(DomainError, ValueError):
    """Missing or malformed input (400)."""

    status = 400


class StateConflict(DomainError, ValueError):
    """Request is well-formed but conflicts with current state (400)."""

    status = 400


class AccessDenied(DomainError, PermissionError):
    status = 403


class NotFound(DomainError, LookupError):
    status = 404


__all__ = ["DomainError", "ValidationFailed", "StateConflict", "AccessDenied", "NotFound"]
