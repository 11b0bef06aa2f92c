"""
In-memory teaching repository: dense sibling positions and delete/edit guards.

These run without the web layer; the DB repository shares the same policies
and is exercised by `test_repo_db_optional.py` when Postgres is reachable.
"""
from __future__ import annotations

import pytest

from backend.common.errors import NotFound, StateConflict, ValidationFailed
from backend.teaching.ordering import is_dense
from backend.teaching.repo_memory import InMemoryTeachingRepo, MemoryTables


@pytest.fixture
def repo() -> InMemoryTeachingRepo:
    return InMemoryTeachingRepo(MemoryTables())


@pytest.fixture
def course(repo: InMemoryTeachingRepo) -> dict:
    return repo.create_course(instructor_id="teacher-1", title="Biology", description=None, price=0, level=None)


def _positions(rows):
    return [(r["title"], r["position"]) for r in rows]


def test_sections_append_at_end_and_stay_dense_after_delete(repo, course):
    for title in ("A", "B", "C", "D"):
        repo.create_section(course["id"], {"title": title})
    sections = repo.list_sections(course["id"])
    assert _positions(sections) == [("A", 1), ("B", 2), ("C", 3), ("D", 4)]

    assert repo.delete_section(sections[1]["id"]) is True
    remaining = repo.list_sections(course["id"])
    assert _positions(remaining) == [("A", 1), ("C", 2), ("D", 3)]

    created = repo.create_section(course["id"], {"title": "E"})
    assert created["position"] == 4


def test_reorder_then_delete_keeps_positions_dense(repo, course):
    ids = [repo.create_section(course["id"], {"title": t})["id"] for t in ("A", "B", "C")]
    reordered = repo.reorder_sections(course["id"], [ids[2], ids[0], ids[1]])
    assert _positions(reordered) == [("C", 1), ("A", 2), ("B", 3)]
    repo.delete_section(ids[2])
    assert is_dense(s["position"] for s in repo.list_sections(course["id"]))
    assert _positions(repo.list_sections(course["id"])) == [("A", 1), ("B", 2)]


def test_invalid_reorder_changes_nothing(repo, course):
    ids = [repo.create_section(course["id"], {"title": t})["id"] for t in ("A", "B")]
    with pytest.raises(ValidationFailed) as err:
        repo.reorder_sections(course["id"], [ids[1]])
    assert err.value.code == "INVALID_SECTION_IDS"
    assert [s["id"] for s in repo.list_sections(course["id"])] == ids


def test_section_with_content_cannot_be_deleted(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    repo.create_lesson(section["id"], {"title": "L1"})
    with pytest.raises(StateConflict) as err:
        repo.delete_section(section["id"])
    assert err.value.code == "SECTION_HAS_CONTENT"
    assert err.value.details == {"lessons": 1, "quizzes": 0, "assignments": 0}
    assert repo.get_section(section["id"]) is not None


def test_lessons_quizzes_and_assignments_have_independent_sequences(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    l1 = repo.create_lesson(section["id"], {"title": "L1"})
    q1 = repo.create_quiz(section["id"], {"title": "Q1", "passing_score": 70, "max_attempts": 3})
    a1 = repo.create_assignment(section["id"], {"title": "A1"})
    l2 = repo.create_lesson(section["id"], {"title": "L2"})
    assert (l1["position"], q1["position"], a1["position"], l2["position"]) == (1, 1, 1, 2)
    assert l1["course_id"] == course["id"]


def test_create_lesson_under_unknown_section_raises(repo):
    with pytest.raises(NotFound) as err:
        repo.create_lesson("missing", {"title": "x"})
    assert err.value.code == "SECTION_NOT_FOUND"


def test_quiz_scoring_fields_lock_once_attempts_exist(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    quiz = repo.create_quiz(section["id"], {"title": "Q", "passing_score": 70, "max_attempts": 3})
    repo.tables.attempts["a1"] = {"id": "a1", "quiz_id": quiz["id"], "student_id": "s1", "status": "STARTED"}

    with pytest.raises(StateConflict) as err:
        repo.update_quiz(quiz["id"], {"passing_score": 50, "title": "Renamed"})
    assert err.value.code == "QUIZ_HAS_ATTEMPTS"
    assert err.value.details == {"fields": ["passingScore"]}
    assert repo.get_quiz(quiz["id"])["title"] == "Q"

    # same value is not a change
    updated = repo.update_quiz(quiz["id"], {"passing_score": 70, "title": "Renamed"})
    assert updated["title"] == "Renamed"

    with pytest.raises(StateConflict, match="QUIZ_HAS_ATTEMPTS"):
        repo.delete_quiz(quiz["id"])


def test_delete_quiz_removes_questions_and_compacts(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    q1 = repo.create_quiz(section["id"], {"title": "Q1"})
    q2 = repo.create_quiz(section["id"], {"title": "Q2"})
    repo.create_question(q1["id"], {"content": "?", "type": "ESSAY", "points": 1})
    assert repo.delete_quiz(q1["id"]) is True
    assert repo.list_questions(q1["id"]) == []
    assert repo.get_quiz(q2["id"])["position"] == 1


def test_lesson_with_completions_cannot_be_deleted(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    lesson = repo.create_lesson(section["id"], {"title": "L1"})
    repo.tables.lesson_completions["c1"] = {"id": "c1", "lesson_id": lesson["id"], "student_id": "s1"}
    with pytest.raises(StateConflict, match="LESSON_HAS_COMPLETIONS"):
        repo.delete_lesson(lesson["id"])


def test_publish_course_publishes_sections(repo, course):
    section = repo.create_section(course["id"], {"title": "A", "is_published": False})
    published = repo.publish_course(course["id"])
    assert published["status"] == "PUBLISHED"
    assert repo.get_section(section["id"])["is_published"] is True
    assert repo.publish_course("missing") is None


def test_returned_rows_are_copies(repo, course):
    section = repo.create_section(course["id"], {"title": "A"})
    section["title"] = "mutated"
    assert repo.get_section(section["id"])["title"] == "A"
