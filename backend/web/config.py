"""
Configuration, logging setup and startup security checks for Educademy.

Why: Misconfigured production deployments (plain-text database connections,
no shared cache, half-configured mail) fail silently at runtime. This module
reads the environment once per call and refuses to start prod-like processes
with obviously unsafe settings, while keeping local development permissive.

Permissions: The caller needs no special privileges. Functions only read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from backend.common.db import resolve_dsn
from backend.notifications.channels import SMTPSettings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    env: str
    database_url: Optional[str]
    redis_url: Optional[str]
    log_level: str
    smtp: Optional[SMTPSettings]

    @property
    def prod_like(self) -> bool:
        return _is_prod_like(self.env)


def _smtp_from_env() -> Optional[SMTPSettings]:
    host = (os.getenv("SMTP_HOST") or "").strip()
    if not host:
        return None
    try:
        port = int(os.getenv("SMTP_PORT", "587"))
    except ValueError:
        port = 587
    return SMTPSettings(
        host=host,
        port=port,
        username=os.getenv("SMTP_USER") or None,
        password=os.getenv("SMTP_PASSWORD") or None,
        sender=os.getenv("SMTP_FROM") or "no-reply@localhost",
        starttls=_flag("SMTP_STARTTLS", True),
    )


def load_settings() -> Settings:
    """Read the current environment into an immutable Settings object."""
    return Settings(
        env=os.getenv("EDUCADEMY_ENV", "dev"),
        database_url=resolve_dsn(),
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        smtp=_smtp_from_env(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    resolved = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("educademy").setLevel(resolved)


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - A database DSN must be configured and must not disable TLS.
    - REDIS_URL must be configured (caches are shared between workers).
    - When SMTP_HOST is set, SMTP_FROM must be set too.
    """

    env = os.getenv("EDUCADEMY_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Postgres DSN present and TLS not explicitly disabled
    dsn = resolve_dsn() or ""
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is unset in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 2) Shared cache
    if not (os.getenv("REDIS_URL") or "").strip():
        raise SystemExit("Refusing to start: REDIS_URL is unset in production.")

    # 3) Mail sender must be explicit
    if (os.getenv("SMTP_HOST") or "").strip() and not (os.getenv("SMTP_FROM") or "").strip():
        raise SystemExit("Refusing to start: SMTP_HOST is set but SMTP_FROM is missing.")
