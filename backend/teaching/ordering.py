"""
Dense ordering of sibling lists (sections in a course, lessons/quizzes/
assignments in a section, questions in a quiz).

Invariant:
    After every append, delete or reorder the positions of one parent's
    children are exactly 1..N.

The helpers are pure; repositories call them inside their transaction so the
decision and the write happen atomically.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from backend.common.errors import StateConflict, ValidationFailed


def next_position(positions: Iterable[int]) -> int:
    """Position for an appended child: max existing position (or 0) + 1."""
    return max(positions, default=0) + 1


def is_dense(positions: Iterable[int]) -> bool:
    values = sorted(positions)
    return values == list(range(1, len(values) + 1))


def validate_reorder(current_ids: Iterable[str], requested_ids: Sequence[str], code: str) -> List[str]:
    """Ensure `requested_ids` is an exact permutation of `current_ids`.

    Raises `ValidationFailed(code)` listing missing, unexpected and duplicate ids;
    nothing is applied by callers in that case.
    """
    current = [str(x) for x in current_ids]
    requested = [str(x) for x in requested_ids]
    seen: set[str] = set()
    duplicates: List[str] = []
    for rid in requested:
        if rid in seen and rid not in duplicates:
            duplicates.append(rid)
        seen.add(rid)
    current_set = set(current)
    missing = [cid for cid in current if cid not in seen]
    unexpected = [rid for rid in dict.fromkeys(requested) if rid not in current_set]
    if missing or unexpected or duplicates or len(requested) != len(current):
        raise ValidationFailed(
            code,
            "Invalid or incomplete id list",
            details={"missing": missing, "unexpected": unexpected, "duplicates": duplicates},
        )
    return requested


def positions_for(ordered_ids: Sequence[str]) -> Dict[str, int]:
    return {str(item_id): index + 1 for index, item_id in enumerate(ordered_ids)}


def compact_after_delete(siblings: Iterable[Tuple[str, int]], deleted_position: int) -> Dict[str, int]:
    """Return new positions for siblings behind a deleted item (each shifts by -1).

    Only rows that move are returned.
    """
    return {item_id: pos - 1 for item_id, pos in siblings if pos > deleted_position}


def ensure_no_dependents(counts: Mapping[str, int], code: str, message: str) -> None:
    """Reject deletion when any dependent count is positive; report all counts."""
    if any(int(v or 0) > 0 for v in counts.values()):
        raise StateConflict(code, message, details={k: int(v or 0) for k, v in counts.items()})


__all__ = [
    "next_position",
    "is_dense",
    "validate_reorder",
    "positions_for",
    "compact_after_delete",
    "ensure_no_dependents",
]
