"""
Wire serialization: snake_case rows become camelCase JSON.

Storage calls the sibling index `position`; clients see it as `order`.
Student-facing payloads never carry answer keys.
"""

from __future__ import annotations

from typing import Any, Iterable

from pydantic.alias_generators import to_camel

ANSWER_KEY_FIELDS = frozenset({"correct_answer", "explanation"})
_RENAMED = {"position": "order"}


def camel(value: Any, *, drop: Iterable[str] = ()) -> Any:
    """Recursively convert dict keys to camelCase, skipping `drop` keys at every level."""
    dropped = frozenset(drop)
    if isinstance(value, dict):
        return {
            _RENAMED.get(k, to_camel(k)): camel(v, drop=dropped)
            for k, v in value.items()
            if k not in dropped
        }
    if isinstance(value, list):
        return [camel(item, drop=dropped) for item in value]
    return value


def for_student(value: Any) -> Any:
    return camel(value, drop=ANSWER_KEY_FIELDS)
