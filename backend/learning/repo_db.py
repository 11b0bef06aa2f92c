"""Postgres-backed repository for the Learning context.

Design:
- One short-lived connection per call; every mutating method is one transaction.
- Attempt admission locks the quiz row `for share` (so scoring settings cannot
  change underneath) and takes a transaction-scoped advisory lock per
  (quiz, student), serializing concurrent admissions of the same student.
- Analytics queries bind every caller-influenced value as a parameter,
  including the `date_trunc` unit.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from backend.assessment.scoring import AttemptStatus, QuizScore, ensure_can_grade, ensure_can_submit, ensure_transition, next_attempt_number
from backend.common.db import adapt, connect, normalize_row, normalize_rows, resolve_dsn
from backend.common.errors import NotFound, StateConflict

logger = logging.getLogger("educademy.learning.repo")

_COURSE_LESSONS = "lessons l join sections s on s.id = l.section_id"
_COURSE_QUIZZES = "quizzes q join sections s on s.id = q.section_id"


class DBLearningRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        resolved = dsn or resolve_dsn()
        if not resolved:
            raise RuntimeError("Database DSN unavailable for DBLearningRepo")
        self._dsn = resolved

    # --- enrollments --------------------------------------------------------

    def get_enrollment(self, student_id: str, course_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from enrollments where student_id = %s and course_id = %s", (student_id, course_id))
            return normalize_row(cur.fetchone())

    def get_enrollment_by_id(self, enrollment_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from enrollments where id = %s", (enrollment_id,))
            return normalize_row(cur.fetchone())

    def create_enrollment(self, student_id: str, course_id: str, *, source: str, student_email: Optional[str] = None) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select id from courses where id = %s", (course_id,))
            if cur.fetchone() is None:
                raise NotFound("COURSE_NOT_FOUND", "Course not found")
            cur.execute(
                """
                insert into enrollments (student_id, course_id, source, student_email)
                values (%s, %s, %s, %s)
                on conflict (student_id, course_id) do nothing
                returning *
                """,
                (student_id, course_id, source, student_email),
            )
            row = cur.fetchone()
            if row is None:
                raise StateConflict("ALREADY_ENROLLED", "Student is already enrolled in this course")
            return normalize_row(row)  # type: ignore[return-value]

    def set_enrollment_status(self, enrollment_id: str, status: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                "update enrollments set status = %s, updated_at = now() where id = %s returning *",
                (status, enrollment_id),
            )
            return normalize_row(cur.fetchone())

    def list_enrollments_for_student(self, student_id: str) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select e.*, c.title as course_title, c.status as course_status
                  from enrollments e
                  join courses c on c.id = e.course_id
                 where e.student_id = %s
                 order by e.created_at desc
                """,
                (student_id,),
            )
            return normalize_rows(cur.fetchall())

    def update_enrollment_progress(
        self, enrollment_id: str, *, progress_percentage: float, lessons_completed: int, quizzes_passed: int
    ) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                update enrollments
                   set progress_percentage = %s, lessons_completed = %s, quizzes_passed = %s, updated_at = now()
                 where id = %s
                returning *
                """,
                (progress_percentage, lessons_completed, quizzes_passed, enrollment_id),
            )
            return normalize_row(cur.fetchone())

    # --- progress -----------------------------------------------------------

    def record_lesson_completion(self, student_id: str, lesson_id: str) -> Tuple[dict, bool]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into lesson_completions (student_id, lesson_id) values (%s, %s)
                on conflict (student_id, lesson_id) do nothing
                returning *
                """,
                (student_id, lesson_id),
            )
            row = cur.fetchone()
            if row is not None:
                return normalize_row(row), True  # type: ignore[return-value]
            cur.execute("select * from lesson_completions where student_id = %s and lesson_id = %s", (student_id, lesson_id))
            return normalize_row(cur.fetchone()), False  # type: ignore[return-value]

    def list_completed_lesson_ids(self, student_id: str, course_id: str) -> List[str]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select lc.lesson_id
                  from lesson_completions lc
                  join {_COURSE_LESSONS} on l.id = lc.lesson_id
                 where lc.student_id = %s and s.course_id = %s
                 order by lc.lesson_id
                """,
                (student_id, course_id),
            )
            return [str(r["lesson_id"]) for r in cur.fetchall()]

    def list_passed_quiz_ids(self, student_id: str, course_id: str) -> List[str]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select distinct a.quiz_id
                  from quiz_attempts a
                  join {_COURSE_QUIZZES} on q.id = a.quiz_id
                 where a.student_id = %s and s.course_id = %s and a.status = 'GRADED' and a.is_passed
                 order by a.quiz_id
                """,
                (student_id, course_id),
            )
            return [str(r["quiz_id"]) for r in cur.fetchall()]

    def progress_counts(self, student_id: str, course_id: str) -> Dict[str, int]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select
                  (select count(*) from {_COURSE_LESSONS} where s.course_id = %(course)s) as lessons_total,
                  (select count(*)
                     from lesson_completions lc join {_COURSE_LESSONS} on l.id = lc.lesson_id
                    where s.course_id = %(course)s and lc.student_id = %(student)s) as lessons_completed,
                  (select count(*) from {_COURSE_QUIZZES} where s.course_id = %(course)s) as quizzes_total,
                  (select count(distinct a.quiz_id)
                     from quiz_attempts a join {_COURSE_QUIZZES} on q.id = a.quiz_id
                    where s.course_id = %(course)s and a.student_id = %(student)s
                      and a.status = 'GRADED' and a.is_passed) as quizzes_passed
                """,
                {"course": course_id, "student": student_id},
            )
            row = cur.fetchone() or {}
            return {k: int(row.get(k) or 0) for k in ("lessons_total", "lessons_completed", "quizzes_total", "quizzes_passed")}

    def get_certificate(self, student_id: str, course_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from certificates where student_id = %s and course_id = %s", (student_id, course_id))
            return normalize_row(cur.fetchone())

    def issue_certificate(self, student_id: str, course_id: str) -> Tuple[dict, bool]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                insert into certificates (student_id, course_id, certificate_code) values (%s, %s, %s)
                on conflict (student_id, course_id) do nothing
                returning *
                """,
                (student_id, course_id, f"CERT-{secrets.token_hex(6).upper()}"),
            )
            row = cur.fetchone()
            if row is not None:
                return normalize_row(row), True  # type: ignore[return-value]
            cur.execute("select * from certificates where student_id = %s and course_id = %s", (student_id, course_id))
            return normalize_row(cur.fetchone()), False  # type: ignore[return-value]

    # --- quiz attempts ------------------------------------------------------

    def list_attempts(self, quiz_id: str, *, student_id: Optional[str] = None) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select * from quiz_attempts
                 where quiz_id = %s and (%s::text is null or student_id = %s)
                 order by student_id, attempt_number
                """,
                (quiz_id, student_id, student_id),
            )
            return normalize_rows(cur.fetchall())

    def get_attempt(self, attempt_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from quiz_attempts where id = %s", (attempt_id,))
            return normalize_row(cur.fetchone())

    def list_answers(self, attempt_id: str) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from quiz_answers where attempt_id = %s", (attempt_id,))
            return normalize_rows(cur.fetchall())

    @staticmethod
    def _admit(cur, quiz_id: str, student_id: str, *, reject_in_progress: bool) -> int:
        cur.execute("select max_attempts from quizzes where id = %s for share", (quiz_id,))
        quiz = cur.fetchone()
        if quiz is None:
            raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
        cur.execute("select pg_advisory_xact_lock(hashtextextended(%s, 0))", (f"quiz_attempt:{quiz_id}:{student_id}",))
        cur.execute(
            "select attempt_number, status from quiz_attempts where quiz_id = %s and student_id = %s order by attempt_number desc",
            (quiz_id, student_id),
        )
        previous = cur.fetchall()
        if reject_in_progress and any(r["status"] == AttemptStatus.STARTED.value for r in previous):
            raise StateConflict("ATTEMPT_IN_PROGRESS", "Finish the attempt in progress before starting a new one")
        last = int(previous[0]["attempt_number"]) if previous else None
        return next_attempt_number(last, quiz["max_attempts"])

    @staticmethod
    def _store_answers(cur, attempt_id: str, answers: Sequence[Mapping[str, Any]]) -> None:
        if not answers:
            return
        cur.executemany(
            """
            insert into quiz_answers (attempt_id, question_id, response, is_correct, points, feedback)
            values (%s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    attempt_id,
                    a["question_id"],
                    adapt("response", a.get("response")),
                    a.get("is_correct"),
                    a.get("points") or 0,
                    a.get("feedback"),
                )
                for a in answers
            ],
        )

    @staticmethod
    def _finish(cur, attempt_id: str, score: QuizScore, status: AttemptStatus) -> dict:
        cur.execute(
            """
            update quiz_attempts
               set score = %s, total_points = %s, percentage = %s, is_passed = %s, status = %s,
                   submitted_at = now(),
                   graded_at = case when %s = 'GRADED' then now() else null end
             where id = %s
            returning *
            """,
            (
                score.earned_points,
                score.total_points,
                score.percentage,
                score.is_passed,
                status.value,
                status.value,
                attempt_id,
            ),
        )
        return normalize_row(cur.fetchone())  # type: ignore[return-value]

    def start_attempt(self, quiz_id: str, student_id: str) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            number = self._admit(cur, quiz_id, student_id, reject_in_progress=True)
            cur.execute(
                "insert into quiz_attempts (quiz_id, student_id, attempt_number) values (%s, %s, %s) returning *",
                (quiz_id, student_id, number),
            )
            return normalize_row(cur.fetchone())  # type: ignore[return-value]

    def submit_attempt(
        self, attempt_id: str, *, answers: Sequence[Mapping[str, Any]], score: QuizScore, status: AttemptStatus
    ) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select status from quiz_attempts where id = %s for update", (attempt_id,))
            row = cur.fetchone()
            if row is None:
                raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
            ensure_can_submit(row["status"])
            ensure_transition(row["status"], status)
            self._store_answers(cur, attempt_id, answers)
            return self._finish(cur, attempt_id, score, status)

    def create_submitted_attempt(
        self,
        quiz_id: str,
        student_id: str,
        *,
        answers: Sequence[Mapping[str, Any]],
        score: QuizScore,
        status: AttemptStatus,
    ) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            number = self._admit(cur, quiz_id, student_id, reject_in_progress=False)
            cur.execute(
                "insert into quiz_attempts (quiz_id, student_id, attempt_number) values (%s, %s, %s) returning id",
                (quiz_id, student_id, number),
            )
            attempt_id = str(cur.fetchone()["id"])
            self._store_answers(cur, attempt_id, answers)
            return self._finish(cur, attempt_id, score, status)

    def grade_attempt(
        self,
        attempt_id: str,
        *,
        answers: Sequence[Mapping[str, Any]],
        score: QuizScore,
        graded_by: str,
        feedback: Optional[str],
    ) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select status from quiz_attempts where id = %s for update", (attempt_id,))
            row = cur.fetchone()
            if row is None:
                raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
            ensure_can_grade(row["status"])
            cur.executemany(
                "update quiz_answers set points = %s, is_correct = %s, feedback = %s where id = %s and attempt_id = %s",
                [(a.get("points") or 0, a.get("is_correct"), a.get("feedback"), a["id"], attempt_id) for a in answers],
            )
            cur.execute(
                """
                update quiz_attempts
                   set score = %s, total_points = %s, percentage = %s, is_passed = %s,
                       status = 'GRADED', graded_by = %s, graded_at = now(), feedback = %s
                 where id = %s
                returning *
                """,
                (score.earned_points, score.total_points, score.percentage, score.is_passed, graded_by, feedback, attempt_id),
            )
            return normalize_row(cur.fetchone())  # type: ignore[return-value]

    # --- assignment submissions ---------------------------------------------

    def create_assignment_submission(self, assignment_id: str, student_id: str, *, content: str, is_late: bool) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select id from assignments where id = %s for share", (assignment_id,))
            if cur.fetchone() is None:
                raise NotFound("ASSIGNMENT_NOT_FOUND", "Assignment not found")
            cur.execute(
                """
                insert into assignment_submissions (assignment_id, student_id, content, is_late)
                values (%s, %s, %s, %s)
                on conflict (assignment_id, student_id) do nothing
                returning *
                """,
                (assignment_id, student_id, content, is_late),
            )
            row = cur.fetchone()
            if row is None:
                raise StateConflict("ALREADY_SUBMITTED", "Assignment has already been submitted")
            return normalize_row(row)  # type: ignore[return-value]

    def list_assignment_submissions(self, assignment_id: str, *, status: Optional[str] = None) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select * from assignment_submissions
                 where assignment_id = %s and (%s::text is null or status = %s)
                 order by submitted_at
                """,
                (assignment_id, status, status),
            )
            return normalize_rows(cur.fetchall())

    def get_assignment_submission(self, submission_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select * from assignment_submissions where id = %s", (submission_id,))
            return normalize_row(cur.fetchone())

    def grade_assignment_submission(
        self, submission_id: str, *, grade: int | float, feedback: Optional[str], graded_by: str
    ) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select status from assignment_submissions where id = %s for update", (submission_id,))
            row = cur.fetchone()
            if row is None:
                raise NotFound("SUBMISSION_NOT_FOUND", "Assignment submission not found")
            if row["status"] == "GRADED":
                raise StateConflict("ALREADY_GRADED", "Assignment submission has already been graded")
            cur.execute(
                """
                update assignment_submissions
                   set grade = %s, feedback = %s, status = 'GRADED', graded_by = %s, graded_at = now()
                 where id = %s
                returning *
                """,
                (grade, feedback, graded_by, submission_id),
            )
            return normalize_row(cur.fetchone())  # type: ignore[return-value]

    def list_pending_grading(self, instructor_id: str, *, course_id: Optional[str] = None) -> Dict[str, List[dict]]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select sub.*, a.title, a.total_points, c.id as course_id, c.title as course_title
                  from assignment_submissions sub
                  join assignments a on a.id = sub.assignment_id
                  join sections s on s.id = a.section_id
                  join courses c on c.id = s.course_id
                 where sub.status = 'SUBMITTED' and c.instructor_id = %s and (%s::uuid is null or c.id = %s::uuid)
                 order by sub.submitted_at
                """,
                (instructor_id, course_id, course_id),
            )
            assignments = normalize_rows(cur.fetchall())
            cur.execute(
                """
                select qa.*, q.title, c.id as course_id, c.title as course_title
                  from quiz_attempts qa
                  join quizzes q on q.id = qa.quiz_id
                  join sections s on s.id = q.section_id
                  join courses c on c.id = s.course_id
                 where qa.status = 'SUBMITTED' and c.instructor_id = %s and (%s::uuid is null or c.id = %s::uuid)
                 order by qa.submitted_at
                """,
                (instructor_id, course_id, course_id),
            )
            return {"assignments": assignments, "quizzes": normalize_rows(cur.fetchall())}

    # --- notifications ------------------------------------------------------

    def create_notification(self, *, user_id: str, type: str, title: str, message: str, data: Optional[dict]) -> dict:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                "insert into notifications (user_id, type, title, message, data) values (%s, %s, %s, %s, %s) returning *",
                (user_id, type, title, message, adapt("data", data)),
            )
            return normalize_row(cur.fetchone())  # type: ignore[return-value]

    def list_notifications(self, user_id: str, *, unread_only: bool, limit: int, offset: int) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select * from notifications
                 where user_id = %s and (not %s or not is_read)
                 order by created_at desc
                 limit %s offset %s
                """,
                (user_id, unread_only, limit, offset),
            )
            return normalize_rows(cur.fetchall())

    def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                "update notifications set is_read = true where id = %s and user_id = %s returning *",
                (notification_id, user_id),
            )
            return normalize_row(cur.fetchone())

    # --- analytics ----------------------------------------------------------

    def enrollment_trends(self, since: datetime, unit: str) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select to_char(date_trunc(%s, created_at at time zone 'utc'), 'YYYY-MM-DD') as period,
                       count(*)::int as enrollments
                  from enrollments
                 where created_at >= %s
                 group by 1
                 order by 1
                """,
                (unit, since),
            )
            return normalize_rows(cur.fetchall())

    def quiz_performance(self, since: datetime) -> List[dict]:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(
                """
                select a.quiz_id,
                       q.title,
                       count(*)::int as attempts,
                       round(avg(coalesce(a.percentage, 0)), 2) as average_percentage,
                       round(100.0 * count(*) filter (where a.is_passed) / count(*), 2) as pass_rate
                  from quiz_attempts a
                  join quizzes q on q.id = a.quiz_id
                 where a.status <> 'STARTED' and a.submitted_at >= %s
                 group by a.quiz_id, q.title
                 order by attempts desc
                """,
                (since,),
            )
            return normalize_rows(cur.fetchall())

    def ping(self) -> bool:
        with connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("select 1 as ok")
            return cur.fetchone() is not None
