"""
Content ordering helpers (pure).

Covers append position, permutation validation with detailed rejection,
gap compaction and dependent-count guards.
"""
from __future__ import annotations

import pytest

from backend.common.errors import StateConflict, ValidationFailed
from backend.teaching.ordering import (
    compact_after_delete,
    ensure_no_dependents,
    is_dense,
    next_position,
    positions_for,
    validate_reorder,
)


def test_next_position_starts_at_one_and_appends_after_max():
    assert next_position([]) == 1
    assert next_position([1, 2, 3]) == 4
    assert next_position([2, 5]) == 6


def test_validate_reorder_accepts_exact_permutation():
    assert validate_reorder(["a", "b", "c"], ["c", "a", "b"], "INVALID_SECTION_IDS") == ["c", "a", "b"]


@pytest.mark.parametrize(
    "requested, key, expected",
    [
        (["a", "b"], "missing", ["c"]),
        (["a", "b", "c", "x"], "unexpected", ["x"]),
        (["a", "a", "b", "c"], "duplicates", ["a"]),
    ],
)
def test_validate_reorder_reports_the_problem(requested, key, expected):
    with pytest.raises(ValidationFailed) as err:
        validate_reorder(["a", "b", "c"], requested, "INVALID_LESSON_IDS")
    assert err.value.code == "INVALID_LESSON_IDS"
    assert err.value.details[key] == expected


def test_validate_reorder_rejects_same_length_with_duplicate():
    with pytest.raises(ValidationFailed) as err:
        validate_reorder(["a", "b"], ["a", "a"], "INVALID_QUIZ_IDS")
    assert err.value.details == {"missing": ["b"], "unexpected": [], "duplicates": ["a"]}


def test_positions_for_is_one_based():
    assert positions_for(["x", "y", "z"]) == {"x": 1, "y": 2, "z": 3}


def test_compact_after_delete_shifts_only_rows_behind_the_gap():
    siblings = [("a", 1), ("c", 3), ("d", 4)]
    assert compact_after_delete(siblings, 2) == {"c": 2, "d": 3}
    assert compact_after_delete([("a", 1)], 2) == {}


def test_is_dense():
    assert is_dense([])
    assert is_dense([2, 1, 3])
    assert not is_dense([1, 3])
    assert not is_dense([1, 1, 2])


def test_ensure_no_dependents_reports_all_counts():
    ensure_no_dependents({"lessons": 0, "quizzes": 0}, "SECTION_HAS_CONTENT", "busy")
    with pytest.raises(StateConflict) as err:
        ensure_no_dependents({"lessons": 2, "quizzes": 0}, "SECTION_HAS_CONTENT", "busy")
    assert err.value.code == "SECTION_HAS_CONTENT"
    assert err.value.details == {"lessons": 2, "quizzes": 0}
