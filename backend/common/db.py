"""
Shared psycopg helpers for the Postgres-backed repositories.

Design:
- Each repository call opens a short-lived connection; the connection context
  commits on success and rolls back when the block raises.
- Rows are fetched with `dict_row` and normalized to JSON-friendly plain dicts
  (ISO timestamps without microseconds, str UUIDs, float numerics).
"""

from __future__ import annotations

import os
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

JSON_COLUMNS = frozenset({"options", "correct_answer", "response", "data"})


def resolve_dsn() -> Optional[str]:
    """Return the first configured DSN, or None when no database is configured."""
    for key in ("EDUCADEMY_DATABASE_URL", "DATABASE_URL"):
        value = (os.getenv(key) or "").strip()
        if value:
            return value
    return None


def connect(dsn: str) -> psycopg.Connection:
    return psycopg.connect(dsn, row_factory=dict_row)


def probe(dsn: Optional[str], timeout: int = 3) -> bool:
    if not dsn:
        return False
    try:
        with psycopg.connect(dsn, connect_timeout=timeout):
            return True
    except psycopg.Error:
        return False


def iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def normalize_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out: Dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, datetime):
            out[key] = iso(value)
        elif isinstance(value, date):
            out[key] = value.isoformat()
        elif isinstance(value, UUID):
            out[key] = str(value)
        elif isinstance(value, Decimal):
            out[key] = int(value) if value == value.to_integral_value() else float(value)
        else:
            out[key] = value
    return out


def normalize_rows(rows: Iterable[Dict[str, Any]]) -> list[Dict[str, Any]]:
    return [normalize_row(r) for r in rows]  # type: ignore[misc]


def adapt(column: str, value: Any) -> Any:
    """Wrap JSON-typed column values for psycopg."""
    if column in JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value
