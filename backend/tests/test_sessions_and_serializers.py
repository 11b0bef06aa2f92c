"""Session store, role helpers and wire serialization."""
from __future__ import annotations

import pytest

from backend.common.errors import ValidationFailed
from backend.identity_access.domain import normalize_roles, primary_role
from backend.identity_access.stores import SessionStore
from backend.learning.usecases.attempts import parse_answers
from backend.learning.usecases.progress import progress_percentage
from backend.web.serializers import camel, for_student


def test_session_roundtrip_and_expiry():
    store = SessionStore()
    rec = store.create(sub="u1", roles=["Instructor", "hacker", "student"], email="u1@example.com")
    assert rec.roles == ["instructor", "student"]
    assert store.get(rec.session_id) is rec
    store.delete(rec.session_id)
    assert store.get(rec.session_id) is None

    expired = store.create(sub="u2", roles=["student"], ttl_seconds=-10)
    assert store.get(expired.session_id) is None


def test_primary_role_prefers_highest_privilege():
    assert primary_role(["student", "admin"]) == "admin"
    assert primary_role([]) == "student"
    assert normalize_roles(["ADMIN", "admin", 3]) == ["admin"]


def test_camel_renames_position_and_nested_keys():
    row = {"id": "q1", "position": 2, "passing_score": 70, "questions": [{"correct_answer": "A", "position": 1}]}
    assert camel(row) == {"id": "q1", "order": 2, "passingScore": 70, "questions": [{"correctAnswer": "A", "order": 1}]}


def test_for_student_strips_answer_keys_at_every_level():
    payload = {"quizzes": [{"questions": [{"content": "?", "correct_answer": "A", "explanation": "because"}]}]}
    assert for_student(payload) == {"quizzes": [{"questions": [{"content": "?"}]}]}


def test_parse_answers():
    assert parse_answers([{"questionId": "q1", "answer": "A"}, {"question_id": "q2", "answer": ["B"]}]) == {"q1": "A", "q2": ["B"]}
    for raw in (None, {"q1": "A"}, [{"answer": "A"}], ["q1"]):
        with pytest.raises(ValidationFailed, match="INVALID_ANSWERS_FORMAT"):
            parse_answers(raw)


@pytest.mark.parametrize(
    "counts, expected",
    [
        ({"lessons_total": 0, "lessons_completed": 0, "quizzes_total": 0, "quizzes_passed": 0}, 0.0),
        ({"lessons_total": 2, "lessons_completed": 1, "quizzes_total": 1, "quizzes_passed": 0}, 33.33),
        ({"lessons_total": 2, "lessons_completed": 2, "quizzes_total": 1, "quizzes_passed": 1}, 100.0),
    ],
)
def test_progress_percentage(counts, expected):
    assert progress_percentage(counts) == expected
