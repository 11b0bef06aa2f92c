"""
In-memory repositories for tests and offline development.

Why:
    API tests and local work must run without Postgres. The in-memory tables
    mirror the SQL schema closely enough that services cannot tell the
    difference. One re-entrant lock guards all tables so every repository
    operation is atomic, matching the transaction boundaries of the DB repos.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from backend.common.errors import NotFound
from backend.teaching import policies
from backend.teaching.ordering import compact_after_delete, next_position, positions_for, validate_reorder
from backend.teaching.structure import assemble_structure


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class MemoryTables:
    courses: Dict[str, dict] = field(default_factory=dict)
    sections: Dict[str, dict] = field(default_factory=dict)
    lessons: Dict[str, dict] = field(default_factory=dict)
    quizzes: Dict[str, dict] = field(default_factory=dict)
    questions: Dict[str, dict] = field(default_factory=dict)
    assignments: Dict[str, dict] = field(default_factory=dict)
    enrollments: Dict[str, dict] = field(default_factory=dict)
    lesson_completions: Dict[str, dict] = field(default_factory=dict)
    attempts: Dict[str, dict] = field(default_factory=dict)
    answers: Dict[str, dict] = field(default_factory=dict)
    assignment_submissions: Dict[str, dict] = field(default_factory=dict)
    certificates: Dict[str, dict] = field(default_factory=dict)
    notifications: Dict[str, dict] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)


# child table -> parent key
_PARENT_KEYS = {
    "sections": "course_id",
    "lessons": "section_id",
    "quizzes": "section_id",
    "questions": "quiz_id",
    "assignments": "section_id",
}


class InMemoryTeachingRepo:
    def __init__(self, tables: Optional[MemoryTables] = None) -> None:
        self.tables = tables or MemoryTables()

    # --- generic sibling-list helpers ---------------------------------------

    def _table(self, name: str) -> Dict[str, dict]:
        return getattr(self.tables, name)

    def _siblings(self, name: str, parent_id: str) -> List[dict]:
        key = _PARENT_KEYS[name]
        rows = [r for r in self._table(name).values() if r[key] == parent_id]
        return sorted(rows, key=lambda r: r["position"])

    def _append(self, name: str, parent_id: str, values: Dict[str, Any]) -> dict:
        now = now_iso()
        row = dict(values)
        row.update(
            {
                "id": str(uuid4()),
                _PARENT_KEYS[name]: parent_id,
                "position": next_position(r["position"] for r in self._siblings(name, parent_id)),
                "created_at": now,
                "updated_at": now,
            }
        )
        self._table(name)[row["id"]] = row
        return copy.deepcopy(row)

    def _update(self, name: str, row_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        row = self._table(name).get(row_id)
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        row["updated_at"] = now_iso()
        return copy.deepcopy(row)

    def _delete_and_compact(self, name: str, row_id: str) -> None:
        table = self._table(name)
        row = table.pop(row_id)
        siblings = self._siblings(name, row[_PARENT_KEYS[name]])
        shifted = compact_after_delete(((r["id"], r["position"]) for r in siblings), row["position"])
        for sid, pos in shifted.items():
            table[sid]["position"] = pos

    def _reorder(self, name: str, parent_id: str, ids: List[str]) -> List[dict]:
        siblings = self._siblings(name, parent_id)
        ordered = validate_reorder([r["id"] for r in siblings], ids, policies.REORDER_CODES[name])
        table = self._table(name)
        for row_id, pos in positions_for(ordered).items():
            table[row_id]["position"] = pos
        return [copy.deepcopy(r) for r in self._siblings(name, parent_id)]

    def _get(self, name: str, row_id: str) -> Optional[dict]:
        row = self._table(name).get(row_id)
        return copy.deepcopy(row) if row else None

    def _count(self, name: str, key: str, value: str) -> int:
        return sum(1 for r in self._table(name).values() if r.get(key) == value)

    def _section_course(self, section_id: str) -> str:
        section = self.tables.sections.get(section_id)
        if section is None:
            raise NotFound("SECTION_NOT_FOUND", "Section not found")
        return section["course_id"]

    # --- courses ------------------------------------------------------------

    def create_course(self, *, instructor_id: str, title: str, description: Optional[str], price: float, level: Optional[str]) -> dict:
        with self.tables.lock:
            now = now_iso()
            row = {
                "id": str(uuid4()),
                "instructor_id": instructor_id,
                "title": title,
                "description": description,
                "price": price,
                "level": level,
                "status": "DRAFT",
                "created_at": now,
                "updated_at": now,
            }
            self.tables.courses[row["id"]] = row
            return dict(row)

    def list_courses_for_instructor(self, instructor_id: str, *, limit: int, offset: int) -> List[dict]:
        with self.tables.lock:
            rows = [dict(c) for c in self.tables.courses.values() if c["instructor_id"] == instructor_id]
        rows.sort(key=lambda c: c["created_at"], reverse=True)
        return rows[offset : offset + limit]

    def list_published_courses(
        self, *, limit: int, offset: int, search: Optional[str] = None, level: Optional[str] = None
    ) -> Tuple[List[dict], int]:
        needle = (search or "").lower()
        with self.tables.lock:
            rows = [
                dict(c)
                for c in self.tables.courses.values()
                if c["status"] == "PUBLISHED"
                and (level is None or c.get("level") == level)
                and (not needle or needle in c["title"].lower() or needle in (c.get("description") or "").lower())
            ]
        rows.sort(key=lambda c: c["created_at"], reverse=True)
        return rows[offset : offset + limit], len(rows)

    def get_course(self, course_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("courses", course_id)

    def update_course(self, course_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            return self._update("courses", course_id, changes)

    def publish_course(self, course_id: str) -> Optional[dict]:
        with self.tables.lock:
            if course_id not in self.tables.courses:
                return None
            for section in self.tables.sections.values():
                if section["course_id"] == course_id:
                    section["is_published"] = True
            return self._update("courses", course_id, {"status": "PUBLISHED"})

    def get_course_structure(self, course_id: str) -> Optional[dict]:
        with self.tables.lock:
            course = self.tables.courses.get(course_id)
            if course is None:
                return None
            sections = [s for s in self.tables.sections.values() if s["course_id"] == course_id]
            section_ids = {s["id"] for s in sections}
            quizzes = [q for q in self.tables.quizzes.values() if q["section_id"] in section_ids]
            quiz_ids = {q["id"] for q in quizzes}
            return copy.deepcopy(
                assemble_structure(
                    course,
                    sections,
                    [r for r in self.tables.lessons.values() if r["section_id"] in section_ids],
                    quizzes,
                    [r for r in self.tables.questions.values() if r["quiz_id"] in quiz_ids],
                    [r for r in self.tables.assignments.values() if r["section_id"] in section_ids],
                )
            )

    # --- sections -----------------------------------------------------------

    def get_section(self, section_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("sections", section_id)

    def list_sections(self, course_id: str) -> List[dict]:
        with self.tables.lock:
            return [copy.deepcopy(r) for r in self._siblings("sections", course_id)]

    def create_section(self, course_id: str, fields: Dict[str, Any]) -> dict:
        with self.tables.lock:
            if course_id not in self.tables.courses:
                raise NotFound("COURSE_NOT_FOUND", "Course not found")
            return self._append("sections", course_id, fields)

    def update_section(self, section_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            return self._update("sections", section_id, changes)

    def delete_section(self, section_id: str) -> bool:
        with self.tables.lock:
            if section_id not in self.tables.sections:
                return False
            policies.guard_section_delete(
                self._count("lessons", "section_id", section_id),
                self._count("quizzes", "section_id", section_id),
                self._count("assignments", "section_id", section_id),
            )
            self._delete_and_compact("sections", section_id)
            return True

    def reorder_sections(self, course_id: str, section_ids: List[str]) -> List[dict]:
        with self.tables.lock:
            if course_id not in self.tables.courses:
                raise NotFound("COURSE_NOT_FOUND", "Course not found")
            return self._reorder("sections", course_id, section_ids)

    # --- lessons ------------------------------------------------------------

    def get_lesson(self, lesson_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("lessons", lesson_id)

    def create_lesson(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with self.tables.lock:
            course_id = self._section_course(section_id)
            return self._append("lessons", section_id, {**fields, "course_id": course_id})

    def update_lesson(self, lesson_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            return self._update("lessons", lesson_id, changes)

    def delete_lesson(self, lesson_id: str) -> bool:
        with self.tables.lock:
            if lesson_id not in self.tables.lessons:
                return False
            policies.guard_lesson_delete(self._count("lesson_completions", "lesson_id", lesson_id))
            self._delete_and_compact("lessons", lesson_id)
            return True

    def reorder_lessons(self, section_id: str, lesson_ids: List[str]) -> List[dict]:
        with self.tables.lock:
            self._section_course(section_id)
            return self._reorder("lessons", section_id, lesson_ids)

    # --- quizzes ------------------------------------------------------------

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("quizzes", quiz_id)

    def create_quiz(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with self.tables.lock:
            course_id = self._section_course(section_id)
            return self._append("quizzes", section_id, {**fields, "course_id": course_id})

    def update_quiz(self, quiz_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            current = self.tables.quizzes.get(quiz_id)
            if current is None:
                return None
            policies.guard_quiz_update(current, changes, self._count("attempts", "quiz_id", quiz_id))
            return self._update("quizzes", quiz_id, changes)

    def delete_quiz(self, quiz_id: str) -> bool:
        with self.tables.lock:
            if quiz_id not in self.tables.quizzes:
                return False
            policies.guard_quiz_delete(self._count("attempts", "quiz_id", quiz_id))
            for qid in [q["id"] for q in self.tables.questions.values() if q["quiz_id"] == quiz_id]:
                self.tables.questions.pop(qid)
            self._delete_and_compact("quizzes", quiz_id)
            return True

    def reorder_quizzes(self, section_id: str, quiz_ids: List[str]) -> List[dict]:
        with self.tables.lock:
            self._section_course(section_id)
            return self._reorder("quizzes", section_id, quiz_ids)

    # --- questions ----------------------------------------------------------

    def get_question(self, question_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("questions", question_id)

    def list_questions(self, quiz_id: str) -> List[dict]:
        with self.tables.lock:
            return [copy.deepcopy(r) for r in self._siblings("questions", quiz_id)]

    def create_question(self, quiz_id: str, fields: Dict[str, Any]) -> dict:
        with self.tables.lock:
            quiz = self.tables.quizzes.get(quiz_id)
            if quiz is None:
                raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
            return self._append("questions", quiz_id, {**fields, "course_id": quiz["course_id"]})

    def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            current = self.tables.questions.get(question_id)
            if current is None:
                return None
            attempts = self._count("attempts", "quiz_id", current["quiz_id"])
            policies.guard_question_update(current, changes, attempts)
            return self._update("questions", question_id, changes)

    def delete_question(self, question_id: str) -> bool:
        with self.tables.lock:
            if question_id not in self.tables.questions:
                return False
            policies.guard_question_delete(self._count("answers", "question_id", question_id))
            self._delete_and_compact("questions", question_id)
            return True

    def reorder_questions(self, quiz_id: str, question_ids: List[str]) -> List[dict]:
        with self.tables.lock:
            if quiz_id not in self.tables.quizzes:
                raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
            return self._reorder("questions", quiz_id, question_ids)

    # --- assignments --------------------------------------------------------

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        with self.tables.lock:
            return self._get("assignments", assignment_id)

    def create_assignment(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with self.tables.lock:
            course_id = self._section_course(section_id)
            return self._append("assignments", section_id, {**fields, "course_id": course_id})

    def update_assignment(self, assignment_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with self.tables.lock:
            current = self.tables.assignments.get(assignment_id)
            if current is None:
                return None
            submissions = self._count("assignment_submissions", "assignment_id", assignment_id)
            policies.guard_assignment_update(current, changes, submissions)
            return self._update("assignments", assignment_id, changes)

    def delete_assignment(self, assignment_id: str) -> bool:
        with self.tables.lock:
            if assignment_id not in self.tables.assignments:
                return False
            policies.guard_assignment_delete(self._count("assignment_submissions", "assignment_id", assignment_id))
            self._delete_and_compact("assignments", assignment_id)
            return True

    def reorder_assignments(self, section_id: str, assignment_ids: List[str]) -> List[dict]:
        with self.tables.lock:
            self._section_course(section_id)
            return self._reorder("assignments", section_id, assignment_ids)

    def ping(self) -> bool:
        return True
