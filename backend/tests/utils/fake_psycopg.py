"""
Lightweight psycopg stand-in for unit tests of the DB repositories.

``install_fake_connect`` monkeypatches a repository module's ``connect`` so
that every connection hands out a cursor which records the executed SQL and
bound parameters and returns canned rows in order.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple


class _FakeCursor:
    def __init__(self, owner: "FakeDatabase") -> None:
        self._owner = owner
        self._rows: List[Dict[str, Any]] = []

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        self._owner.executed.append((" ".join(sql.split()), tuple(params or ())))
        self._rows = self._owner.results.pop(0) if self._owner.results else []

    def fetchone(self) -> Optional[Dict[str, Any]]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._rows)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeConnection:
    def __init__(self, owner: "FakeDatabase") -> None:
        self._owner = owner

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self._owner)

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeDatabase:
    """Collects (sql, params) pairs; `results` is a queue of row lists, one per execute."""

    def __init__(self, results: Optional[List[List[Dict[str, Any]]]] = None) -> None:
        self.results = list(results or [])
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.dsns: List[str] = []

    def connect(self, dsn: str) -> _FakeConnection:
        self.dsns.append(dsn)
        return _FakeConnection(self)


def install_fake_connect(monkeypatch, module: Any, results: Optional[List[List[Dict[str, Any]]]] = None) -> FakeDatabase:
    fake = FakeDatabase(results)
    monkeypatch.setattr(module, "connect", fake.connect)
    return fake
