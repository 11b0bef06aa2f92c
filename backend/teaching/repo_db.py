"""
Postgres-backed repository for course content (courses, sections, lessons,
quizzes, questions, assignments).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection and runs in
  one transaction (committed when the connection block exits cleanly).
- Mutations of a sibling list first lock the parent row (`for update`), so
  concurrent append/delete/reorder on the same parent are serialized and the
  positions stay a dense 1..N permutation.
- Position writes go through one `unnest` update with the per-parent unique
  constraint deferred to commit.
- Returns plain dicts to keep services independent of the driver.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from psycopg import sql

from backend.common.db import adapt, connect, normalize_row, normalize_rows, resolve_dsn
from backend.common.errors import NotFound
from backend.teaching import policies
from backend.teaching.ordering import compact_after_delete, next_position, positions_for, validate_reorder
from backend.teaching.structure import assemble_structure

logger = logging.getLogger("educademy.teaching.repo")

# logical name -> (table, parent column, parent table)
_TABLES = {
    "sections": ("sections", "course_id", "courses"),
    "lessons": ("lessons", "section_id", "sections"),
    "quizzes": ("quizzes", "section_id", "sections"),
    "questions": ("quiz_questions", "quiz_id", "quizzes"),
    "assignments": ("assignments", "section_id", "sections"),
}

# Row selects expose `course_id` for every content row (ownership checks).
_SELECT = {
    "sections": "select t.* from sections t",
    "lessons": "select t.*, s.course_id from lessons t join sections s on s.id = t.section_id",
    "quizzes": "select t.*, s.course_id from quizzes t join sections s on s.id = t.section_id",
    "questions": (
        "select t.*, s.course_id from quiz_questions t "
        "join quizzes q on q.id = t.quiz_id join sections s on s.id = q.section_id"
    ),
    "assignments": "select t.*, s.course_id from assignments t join sections s on s.id = t.section_id",
}

_NOT_FOUND = {
    "courses": ("COURSE_NOT_FOUND", "Course not found"),
    "sections": ("SECTION_NOT_FOUND", "Section not found"),
    "quizzes": ("QUIZ_NOT_FOUND", "Quiz not found"),
}


class DBTeachingRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        resolved = dsn or resolve_dsn()
        if not resolved:
            raise RuntimeError("Database DSN unavailable for DBTeachingRepo")
        self._dsn = resolved

    # --- generic helpers (expect an open cursor inside a transaction) -------

    @staticmethod
    def _lock_parent(cur, parent_table: str, parent_id: str) -> None:
        cur.execute(
            sql.SQL("select id from {} where id = %s for update").format(sql.Identifier(parent_table)),
            (parent_id,),
        )
        if cur.fetchone() is None:
            code, message = _NOT_FOUND[parent_table]
            raise NotFound(code, message)

    @staticmethod
    def _fetch(cur, name: str, row_id: str, *, for_update: bool = False) -> Optional[dict]:
        query = _SELECT[name] + " where t.id = %s"
        if for_update:
            query += " for update of t"
        cur.execute(query, (row_id,))
        return normalize_row(cur.fetchone())

    @staticmethod
    def _siblings(cur, name: str, parent_id: str) -> List[dict]:
        _, parent_col, _ = _TABLES[name]
        cur.execute(_SELECT[name] + f" where t.{parent_col} = %s order by t.position", (parent_id,))
        return normalize_rows(cur.fetchall())

    @staticmethod
    def _apply_positions(cur, name: str, positions: Dict[str, int]) -> None:
        if not positions:
            return
        table, _, _ = _TABLES[name]
        cur.execute("set constraints all deferred")
        cur.execute(
            sql.SQL(
                "update {} t set position = v.position, updated_at = now() "
                "from unnest(%s::uuid[], %s::int[]) as v(id, position) where t.id = v.id"
            ).format(sql.Identifier(table)),
            (list(positions.keys()), list(positions.values())),
        )

    def _append(self, cur, name: str, parent_id: str, values: Dict[str, Any]) -> dict:
        table, parent_col, parent_table = _TABLES[name]
        self._lock_parent(cur, parent_table, parent_id)
        cur.execute(
            sql.SQL("select coalesce(max(position), 0) as max_position from {} where {} = %s").format(
                sql.Identifier(table), sql.Identifier(parent_col)
            ),
            (parent_id,),
        )
        position = next_position([int(cur.fetchone()["max_position"])])
        columns = list(values.keys()) + [parent_col, "position"]
        params = [adapt(c, values[c]) for c in values] + [parent_id, position]
        cur.execute(
            sql.SQL("insert into {} ({}) values ({}) returning id").format(
                sql.Identifier(table),
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            ),
            params,
        )
        new_id = cur.fetchone()["id"]
        return self._fetch(cur, name, str(new_id))  # type: ignore[return-value]

    def _update(self, cur, name: str, row_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        table, _, _ = _TABLES[name]
        if changes:
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in changes
            )
            cur.execute(
                sql.SQL("update {} set {}, updated_at = now() where id = %s").format(sql.Identifier(table), assignments),
                [adapt(c, v) for c, v in changes.items()] + [row_id],
            )
        return self._fetch(cur, name, row_id)

    def _delete_and_compact(self, cur, name: str, row: dict) -> None:
        table, parent_col, _ = _TABLES[name]
        cur.execute(sql.SQL("delete from {} where id = %s").format(sql.Identifier(table)), (row["id"],))
        siblings = self._siblings(cur, name, row[parent_col])
        shifted = compact_after_delete(((s["id"], s["position"]) for s in siblings), int(row["position"]))
        self._apply_positions(cur, name, shifted)

    def _reorder(self, cur, name: str, parent_id: str, ids: List[str]) -> List[dict]:
        _, _, parent_table = _TABLES[name]
        self._lock_parent(cur, parent_table, parent_id)
        siblings = self._siblings(cur, name, parent_id)
        ordered = validate_reorder([s["id"] for s in siblings], ids, policies.REORDER_CODES[name])
        self._apply_positions(cur, name, positions_for(ordered))
        return self._siblings(cur, name, parent_id)

    @staticmethod
    def _count(cur, table: str, column: str, value: str) -> int:
        cur.execute(
            sql.SQL("select count(*) as n from {} where {} = %s").format(sql.Identifier(table), sql.Identifier(column)),
            (value,),
        )
        return int(cur.fetchone()["n"])

    def _lock_for_delete(self, cur, name: str, row_id: str) -> Optional[dict]:
        """Lock parent then row; returns the row or None when missing."""
        row = self._fetch(cur, name, row_id)
        if row is None:
            return None
        _, parent_col, parent_table = _TABLES[name]
        self._lock_parent(cur, parent_table, row[parent_col])
        return self._fetch(cur, name, row_id, for_update=True)

    # --- courses ------------------------------------------------------------

    def create_course(self, *, instructor_id: str, title: str, description: Optional[str], price: float, level: Optional[str]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into courses (instructor_id, title, description, price, level)
                values (%s, %s, %s, %s, %s)
                returning *
                """,
                (instructor_id, title, description, price, level),
            )
            return normalize_row(cur.fetchone())  # type: ignore[return-value]

    def list_courses_for_instructor(self, instructor_id: str, *, limit: int, offset: int) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                "select * from courses where instructor_id = %s order by created_at desc limit %s offset %s",
                (instructor_id, limit, offset),
            )
            return normalize_rows(cur.fetchall())

    def list_published_courses(
        self, *, limit: int, offset: int, search: Optional[str] = None, level: Optional[str] = None
    ) -> Tuple[List[dict], int]:
        pattern = f"%{search}%" if search else None
        where = (
            "status = 'PUBLISHED' and (%(level)s::text is null or level = %(level)s)"
            " and (%(pattern)s::text is null or title ilike %(pattern)s or description ilike %(pattern)s)"
        )
        params = {"level": level, "pattern": pattern, "limit": limit, "offset": offset}
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(f"select count(*) as total from courses where {where}", params)
            total = int(cur.fetchone()["total"])
            cur.execute(
                f"select * from courses where {where} order by created_at desc, id limit %(limit)s offset %(offset)s",
                params,
            )
            return normalize_rows(cur.fetchall()), total

    def get_course(self, course_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from courses where id = %s", (course_id,))
            return normalize_row(cur.fetchone())

    def update_course(self, course_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            if changes:
                assignments = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in changes)
                cur.execute(
                    sql.SQL("update courses set {}, updated_at = now() where id = %s").format(assignments),
                    list(changes.values()) + [course_id],
                )
            cur.execute("select * from courses where id = %s", (course_id,))
            return normalize_row(cur.fetchone())

    def publish_course(self, course_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                "update courses set status = 'PUBLISHED', updated_at = now() where id = %s returning *",
                (course_id,),
            )
            row = normalize_row(cur.fetchone())
            if row is None:
                return None
            cur.execute("update sections set is_published = true, updated_at = now() where course_id = %s", (course_id,))
            return row

    def get_course_structure(self, course_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from courses where id = %s", (course_id,))
            course = normalize_row(cur.fetchone())
            if course is None:
                return None
            where = " where s.course_id = %s"
            cur.execute("select t.* from sections t where t.course_id = %s", (course_id,))
            sections = normalize_rows(cur.fetchall())
            parts: Dict[str, List[dict]] = {}
            for name in ("lessons", "quizzes", "questions", "assignments"):
                cur.execute(_SELECT[name] + where, (course_id,))
                parts[name] = normalize_rows(cur.fetchall())
            return assemble_structure(
                course, sections, parts["lessons"], parts["quizzes"], parts["questions"], parts["assignments"]
            )

    # --- sections -----------------------------------------------------------

    def get_section(self, section_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._fetch(cur, "sections", section_id)

    def list_sections(self, course_id: str) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._siblings(cur, "sections", course_id)

    def create_section(self, course_id: str, fields: Dict[str, Any]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._append(cur, "sections", course_id, fields)

    def update_section(self, section_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            if self._fetch(cur, "sections", section_id, for_update=True) is None:
                return None
            return self._update(cur, "sections", section_id, changes)

    def delete_section(self, section_id: str) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            row = self._lock_for_delete(cur, "sections", section_id)
            if row is None:
                return False
            policies.guard_section_delete(
                self._count(cur, "lessons", "section_id", section_id),
                self._count(cur, "quizzes", "section_id", section_id),
                self._count(cur, "assignments", "section_id", section_id),
            )
            self._delete_and_compact(cur, "sections", row)
            return True

    def reorder_sections(self, course_id: str, section_ids: List[str]) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._reorder(cur, "sections", course_id, section_ids)

    # --- lessons ------------------------------------------------------------

    def get_lesson(self, lesson_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._fetch(cur, "lessons", lesson_id)

    def create_lesson(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._append(cur, "lessons", section_id, fields)

    def update_lesson(self, lesson_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            if self._fetch(cur, "lessons", lesson_id, for_update=True) is None:
                return None
            return self._update(cur, "lessons", lesson_id, changes)

    def delete_lesson(self, lesson_id: str) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            row = self._lock_for_delete(cur, "lessons", lesson_id)
            if row is None:
                return False
            policies.guard_lesson_delete(self._count(cur, "lesson_completions", "lesson_id", lesson_id))
            self._delete_and_compact(cur, "lessons", row)
            return True

    def reorder_lessons(self, section_id: str, lesson_ids: List[str]) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._reorder(cur, "lessons", section_id, lesson_ids)

    # --- quizzes ------------------------------------------------------------

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._fetch(cur, "quizzes", quiz_id)

    def create_quiz(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._append(cur, "quizzes", section_id, fields)

    def update_quiz(self, quiz_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            # Row lock conflicts with the `for share` taken by attempt admission.
            current = self._fetch(cur, "quizzes", quiz_id, for_update=True)
            if current is None:
                return None
            policies.guard_quiz_update(current, changes, self._count(cur, "quiz_attempts", "quiz_id", quiz_id))
            return self._update(cur, "quizzes", quiz_id, changes)

    def delete_quiz(self, quiz_id: str) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            row = self._lock_for_delete(cur, "quizzes", quiz_id)
            if row is None:
                return False
            policies.guard_quiz_delete(self._count(cur, "quiz_attempts", "quiz_id", quiz_id))
            self._delete_and_compact(cur, "quizzes", row)
            return True

    def reorder_quizzes(self, section_id: str, quiz_ids: List[str]) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._reorder(cur, "quizzes", section_id, quiz_ids)

    # --- questions ----------------------------------------------------------

    def get_question(self, question_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._fetch(cur, "questions", question_id)

    def list_questions(self, quiz_id: str) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._siblings(cur, "questions", quiz_id)

    def create_question(self, quiz_id: str, fields: Dict[str, Any]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._append(cur, "questions", quiz_id, fields)

    def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            current = self._fetch(cur, "questions", question_id)
            if current is None:
                return None
            cur.execute("select id from quizzes where id = %s for update", (current["quiz_id"],))
            attempts = self._count(cur, "quiz_attempts", "quiz_id", current["quiz_id"])
            policies.guard_question_update(current, changes, attempts)
            return self._update(cur, "questions", question_id, changes)

    def delete_question(self, question_id: str) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            row = self._lock_for_delete(cur, "questions", question_id)
            if row is None:
                return False
            policies.guard_question_delete(self._count(cur, "quiz_answers", "question_id", question_id))
            self._delete_and_compact(cur, "questions", row)
            return True

    def reorder_questions(self, quiz_id: str, question_ids: List[str]) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._reorder(cur, "questions", quiz_id, question_ids)

    # --- assignments --------------------------------------------------------

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._fetch(cur, "assignments", assignment_id)

    def create_assignment(self, section_id: str, fields: Dict[str, Any]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._append(cur, "assignments", section_id, fields)

    def update_assignment(self, assignment_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            current = self._fetch(cur, "assignments", assignment_id, for_update=True)
            if current is None:
                return None
            submissions = self._count(cur, "assignment_submissions", "assignment_id", assignment_id)
            policies.guard_assignment_update(current, changes, submissions)
            return self._update(cur, "assignments", assignment_id, changes)

    def delete_assignment(self, assignment_id: str) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            row = self._lock_for_delete(cur, "assignments", assignment_id)
            if row is None:
                return False
            policies.guard_assignment_delete(self._count(cur, "assignment_submissions", "assignment_id", assignment_id))
            self._delete_and_compact(cur, "assignments", row)
            return True

    def reorder_assignments(self, section_id: str, assignment_ids: List[str]) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            return self._reorder(cur, "assignments", section_id, assignment_ids)

    def ping(self) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select 1 as ok")
            return cur.fetchone() is not None
