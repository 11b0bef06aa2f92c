"""
Postgres repositories against a live database (skipped when unreachable).

Applies `backend/migrations/0001_schema.sql` (idempotent) and checks the
behaviors that depend on row locks and constraints: dense positions,
all-or-nothing reorder and attempt admission.
"""
from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from backend.assessment.scoring import AttemptStatus, summarize_score
from backend.common.errors import StateConflict, ValidationFailed
from utils.db import require_db_or_skip

SCHEMA = Path(__file__).resolve().parents[1] / "migrations" / "0001_schema.sql"


@pytest.fixture(scope="module")
def repos():
    dsn = require_db_or_skip()
    import psycopg

    from backend.learning.repo_db import DBLearningRepo
    from backend.teaching.repo_db import DBTeachingRepo

    with psycopg.connect(dsn, autocommit=True) as conn:
        conn.execute(SCHEMA.read_text(encoding="utf-8"))
    return DBTeachingRepo(dsn), DBLearningRepo(dsn)


def _instructor() -> str:
    return f"it-{uuid.uuid4().hex[:8]}"


def test_section_positions_stay_dense(repos):
    teaching, _ = repos
    course = teaching.create_course(instructor_id=_instructor(), title="DB course", description=None, price=0, level=None)
    ids = [teaching.create_section(course["id"], {"title": t, "is_published": False})["id"] for t in ("A", "B", "C")]
    assert teaching.delete_section(ids[0]) is True
    assert [(s["title"], s["position"]) for s in teaching.list_sections(course["id"])] == [("B", 1), ("C", 2)]

    with pytest.raises(ValidationFailed, match="INVALID_SECTION_IDS"):
        teaching.reorder_sections(course["id"], [ids[1], ids[1]])
    reordered = teaching.reorder_sections(course["id"], [ids[2], ids[1]])
    assert [(s["title"], s["position"]) for s in reordered] == [("C", 1), ("B", 2)]


def test_attempt_admission_respects_max_attempts(repos):
    teaching, learning = repos
    course = teaching.create_course(instructor_id=_instructor(), title="Quiz course", description=None, price=0, level=None)
    section = teaching.create_section(course["id"], {"title": "S", "is_published": True})
    quiz = teaching.create_quiz(
        section["id"],
        {"title": "Q", "passing_score": 50, "max_attempts": 1, "is_randomized": False, "show_results": True, "allow_review": True, "is_published": True},
    )
    student = f"st-{uuid.uuid4().hex[:8]}"
    score = summarize_score(0, 0, 50)
    first = learning.create_submitted_attempt(quiz["id"], student, answers=[], score=score, status=AttemptStatus.GRADED)
    assert first["attempt_number"] == 1
    with pytest.raises(StateConflict, match="MAX_ATTEMPTS_EXCEEDED"):
        learning.create_submitted_attempt(quiz["id"], student, answers=[], score=score, status=AttemptStatus.GRADED)
    assert len(learning.list_attempts(quiz["id"], student_id=student)) == 1
