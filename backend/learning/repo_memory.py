"""
In-memory repository for the Learning context (enrollments, progress,
quiz attempts, assignment submissions, certificates, notifications).

Shares `MemoryTables` with the in-memory teaching repo so that content and
learning state stay consistent in tests, and uses the same table lock so each
method is atomic.
"""

from __future__ import annotations

import copy
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from backend.assessment.scoring import AttemptStatus, QuizScore, ensure_can_grade, ensure_can_submit, ensure_transition, next_attempt_number, round_half_up
from backend.common.errors import NotFound, StateConflict
from backend.teaching.repo_memory import MemoryTables, now_iso


def _parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts)


def truncate_period(moment: datetime, unit: str) -> date:
    day = moment.astimezone(timezone.utc).date()
    if unit == "day":
        return day
    if unit == "week":
        return day - timedelta(days=day.weekday())
    if unit == "month":
        return day.replace(day=1)
    if unit == "year":
        return day.replace(month=1, day=1)
    raise ValueError(f"unsupported unit: {unit}")


def _score_fields(score: QuizScore) -> Dict[str, Any]:
    return {
        "score": score.earned_points,
        "total_points": score.total_points,
        "percentage": score.percentage,
        "is_passed": score.is_passed,
    }


class InMemoryLearningRepo:
    def __init__(self, tables: Optional[MemoryTables] = None) -> None:
        self.tables = tables or MemoryTables()

    # --- helpers ------------------------------------------------------------

    def _course_lesson_ids(self, course_id: str) -> List[str]:
        return [l["id"] for l in self.tables.lessons.values() if l["course_id"] == course_id]

    def _course_quiz_ids(self, course_id: str) -> List[str]:
        return [q["id"] for q in self.tables.quizzes.values() if q["course_id"] == course_id]

    def _passed_quiz_ids(self, student_id: str, quiz_ids: Sequence[str]) -> List[str]:
        wanted = set(quiz_ids)
        passed = {
            a["quiz_id"]
            for a in self.tables.attempts.values()
            if a["student_id"] == student_id
            and a["quiz_id"] in wanted
            and a["status"] == AttemptStatus.GRADED.value
            and a.get("is_passed")
        }
        return sorted(passed)

    def _attempts_for(self, quiz_id: str, student_id: str) -> List[dict]:
        rows = [a for a in self.tables.attempts.values() if a["quiz_id"] == quiz_id and a["student_id"] == student_id]
        return sorted(rows, key=lambda a: a["attempt_number"], reverse=True)

    def _admit(self, quiz_id: str, student_id: str) -> int:
        quiz = self.tables.quizzes.get(quiz_id)
        if quiz is None:
            raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
        previous = self._attempts_for(quiz_id, student_id)
        last = previous[0]["attempt_number"] if previous else None
        return next_attempt_number(last, quiz.get("max_attempts"))

    def _insert_attempt(self, quiz_id: str, student_id: str, number: int) -> dict:
        row = {
            "id": str(uuid4()),
            "quiz_id": quiz_id,
            "student_id": student_id,
            "attempt_number": number,
            "status": AttemptStatus.STARTED.value,
            "score": None,
            "total_points": None,
            "percentage": None,
            "is_passed": None,
            "feedback": None,
            "graded_by": None,
            "started_at": now_iso(),
            "submitted_at": None,
            "graded_at": None,
        }
        self.tables.attempts[row["id"]] = row
        return row

    def _store_answers(self, attempt_id: str, answers: Sequence[Mapping[str, Any]]) -> None:
        for answer in answers:
            row = {
                "id": str(uuid4()),
                "attempt_id": attempt_id,
                "question_id": answer["question_id"],
                "response": copy.deepcopy(answer.get("response")),
                "is_correct": answer.get("is_correct"),
                "points": answer.get("points") or 0,
                "feedback": answer.get("feedback"),
            }
            self.tables.answers[row["id"]] = row

    def _finish_submission(self, attempt: dict, answers: Sequence[Mapping[str, Any]], score: QuizScore, status: AttemptStatus) -> dict:
        ensure_transition(attempt["status"], status)
        self._store_answers(attempt["id"], answers)
        now = now_iso()
        attempt.update(_score_fields(score))
        attempt["status"] = status.value
        attempt["submitted_at"] = now
        if status is AttemptStatus.GRADED:
            attempt["graded_at"] = now
        return copy.deepcopy(attempt)

    # --- enrollments --------------------------------------------------------

    def get_enrollment(self, student_id: str, course_id: str) -> Optional[dict]:
        with self.tables.lock:
            for row in self.tables.enrollments.values():
                if row["student_id"] == student_id and row["course_id"] == course_id:
                    return dict(row)
            return None

    def get_enrollment_by_id(self, enrollment_id: str) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.enrollments.get(enrollment_id)
            return dict(row) if row else None

    def create_enrollment(self, student_id: str, course_id: str, *, source: str, student_email: Optional[str] = None) -> dict:
        with self.tables.lock:
            if course_id not in self.tables.courses:
                raise NotFound("COURSE_NOT_FOUND", "Course not found")
            if self.get_enrollment(student_id, course_id) is not None:
                raise StateConflict("ALREADY_ENROLLED", "Student is already enrolled in this course")
            now = now_iso()
            row = {
                "id": str(uuid4()),
                "student_id": student_id,
                "student_email": student_email,
                "course_id": course_id,
                "status": "ACTIVE",
                "source": source,
                "progress_percentage": 0,
                "lessons_completed": 0,
                "quizzes_passed": 0,
                "created_at": now,
                "updated_at": now,
            }
            self.tables.enrollments[row["id"]] = row
            return dict(row)

    def set_enrollment_status(self, enrollment_id: str, status: str) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.enrollments.get(enrollment_id)
            if row is None:
                return None
            row["status"] = status
            row["updated_at"] = now_iso()
            return dict(row)

    def list_enrollments_for_student(self, student_id: str) -> List[dict]:
        with self.tables.lock:
            out = []
            for row in self.tables.enrollments.values():
                if row["student_id"] != student_id:
                    continue
                course = self.tables.courses.get(row["course_id"]) or {}
                out.append({**row, "course_title": course.get("title"), "course_status": course.get("status")})
        out.sort(key=lambda r: r["created_at"], reverse=True)
        return out

    def update_enrollment_progress(
        self, enrollment_id: str, *, progress_percentage: float, lessons_completed: int, quizzes_passed: int
    ) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.enrollments.get(enrollment_id)
            if row is None:
                return None
            row.update(
                {
                    "progress_percentage": progress_percentage,
                    "lessons_completed": lessons_completed,
                    "quizzes_passed": quizzes_passed,
                    "updated_at": now_iso(),
                }
            )
            return dict(row)

    # --- progress -----------------------------------------------------------

    def record_lesson_completion(self, student_id: str, lesson_id: str) -> Tuple[dict, bool]:
        with self.tables.lock:
            for row in self.tables.lesson_completions.values():
                if row["student_id"] == student_id and row["lesson_id"] == lesson_id:
                    return dict(row), False
            row = {"id": str(uuid4()), "student_id": student_id, "lesson_id": lesson_id, "completed_at": now_iso()}
            self.tables.lesson_completions[row["id"]] = row
            return dict(row), True

    def list_completed_lesson_ids(self, student_id: str, course_id: str) -> List[str]:
        with self.tables.lock:
            lesson_ids = set(self._course_lesson_ids(course_id))
            return sorted(
                r["lesson_id"]
                for r in self.tables.lesson_completions.values()
                if r["student_id"] == student_id and r["lesson_id"] in lesson_ids
            )

    def list_passed_quiz_ids(self, student_id: str, course_id: str) -> List[str]:
        with self.tables.lock:
            return self._passed_quiz_ids(student_id, self._course_quiz_ids(course_id))

    def progress_counts(self, student_id: str, course_id: str) -> Dict[str, int]:
        with self.tables.lock:
            lesson_ids = self._course_lesson_ids(course_id)
            quiz_ids = self._course_quiz_ids(course_id)
            return {
                "lessons_total": len(lesson_ids),
                "lessons_completed": len(self.list_completed_lesson_ids(student_id, course_id)),
                "quizzes_total": len(quiz_ids),
                "quizzes_passed": len(self._passed_quiz_ids(student_id, quiz_ids)),
            }

    def get_certificate(self, student_id: str, course_id: str) -> Optional[dict]:
        with self.tables.lock:
            for row in self.tables.certificates.values():
                if row["student_id"] == student_id and row["course_id"] == course_id:
                    return dict(row)
            return None

    def issue_certificate(self, student_id: str, course_id: str) -> Tuple[dict, bool]:
        with self.tables.lock:
            existing = self.get_certificate(student_id, course_id)
            if existing is not None:
                return existing, False
            row = {
                "id": str(uuid4()),
                "student_id": student_id,
                "course_id": course_id,
                "certificate_code": f"CERT-{secrets.token_hex(6).upper()}",
                "issued_at": now_iso(),
            }
            self.tables.certificates[row["id"]] = row
            return dict(row), True

    # --- quiz attempts ------------------------------------------------------

    def list_attempts(self, quiz_id: str, *, student_id: Optional[str] = None) -> List[dict]:
        with self.tables.lock:
            rows = [
                copy.deepcopy(a)
                for a in self.tables.attempts.values()
                if a["quiz_id"] == quiz_id and (student_id is None or a["student_id"] == student_id)
            ]
        rows.sort(key=lambda a: (a["student_id"], a["attempt_number"]))
        return rows

    def get_attempt(self, attempt_id: str) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.attempts.get(attempt_id)
            return copy.deepcopy(row) if row else None

    def list_answers(self, attempt_id: str) -> List[dict]:
        with self.tables.lock:
            return [copy.deepcopy(a) for a in self.tables.answers.values() if a["attempt_id"] == attempt_id]

    def start_attempt(self, quiz_id: str, student_id: str) -> dict:
        with self.tables.lock:
            if any(a["status"] == AttemptStatus.STARTED.value for a in self._attempts_for(quiz_id, student_id)):
                raise StateConflict("ATTEMPT_IN_PROGRESS", "Finish the attempt in progress before starting a new one")
            number = self._admit(quiz_id, student_id)
            return copy.deepcopy(self._insert_attempt(quiz_id, student_id, number))

    def submit_attempt(
        self, attempt_id: str, *, answers: Sequence[Mapping[str, Any]], score: QuizScore, status: AttemptStatus
    ) -> dict:
        with self.tables.lock:
            attempt = self.tables.attempts.get(attempt_id)
            if attempt is None:
                raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
            ensure_can_submit(attempt["status"])
            return self._finish_submission(attempt, answers, score, status)

    def create_submitted_attempt(
        self,
        quiz_id: str,
        student_id: str,
        *,
        answers: Sequence[Mapping[str, Any]],
        score: QuizScore,
        status: AttemptStatus,
    ) -> dict:
        with self.tables.lock:
            number = self._admit(quiz_id, student_id)
            attempt = self._insert_attempt(quiz_id, student_id, number)
            return self._finish_submission(attempt, answers, score, status)

    def grade_attempt(
        self,
        attempt_id: str,
        *,
        answers: Sequence[Mapping[str, Any]],
        score: QuizScore,
        graded_by: str,
        feedback: Optional[str],
    ) -> dict:
        with self.tables.lock:
            attempt = self.tables.attempts.get(attempt_id)
            if attempt is None:
                raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
            ensure_can_grade(attempt["status"])
            for answer in answers:
                stored = self.tables.answers.get(answer["id"])
                if stored is not None:
                    stored.update(
                        {"points": answer.get("points") or 0, "is_correct": answer.get("is_correct"), "feedback": answer.get("feedback")}
                    )
            attempt.update(_score_fields(score))
            attempt.update(
                {"status": AttemptStatus.GRADED.value, "graded_by": graded_by, "graded_at": now_iso(), "feedback": feedback}
            )
            return copy.deepcopy(attempt)

    # --- assignment submissions ---------------------------------------------

    def create_assignment_submission(self, assignment_id: str, student_id: str, *, content: str, is_late: bool) -> dict:
        with self.tables.lock:
            if assignment_id not in self.tables.assignments:
                raise NotFound("ASSIGNMENT_NOT_FOUND", "Assignment not found")
            for row in self.tables.assignment_submissions.values():
                if row["assignment_id"] == assignment_id and row["student_id"] == student_id:
                    raise StateConflict("ALREADY_SUBMITTED", "Assignment has already been submitted")
            row = {
                "id": str(uuid4()),
                "assignment_id": assignment_id,
                "student_id": student_id,
                "content": content,
                "status": "SUBMITTED",
                "is_late": is_late,
                "grade": None,
                "feedback": None,
                "graded_by": None,
                "submitted_at": now_iso(),
                "graded_at": None,
            }
            self.tables.assignment_submissions[row["id"]] = row
            return dict(row)

    def list_assignment_submissions(self, assignment_id: str, *, status: Optional[str] = None) -> List[dict]:
        with self.tables.lock:
            rows = [
                dict(s)
                for s in self.tables.assignment_submissions.values()
                if s["assignment_id"] == assignment_id and (status is None or s["status"] == status)
            ]
        rows.sort(key=lambda s: s["submitted_at"])
        return rows

    def get_assignment_submission(self, submission_id: str) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.assignment_submissions.get(submission_id)
            return dict(row) if row else None

    def grade_assignment_submission(
        self, submission_id: str, *, grade: int | float, feedback: Optional[str], graded_by: str
    ) -> dict:
        with self.tables.lock:
            row = self.tables.assignment_submissions.get(submission_id)
            if row is None:
                raise NotFound("SUBMISSION_NOT_FOUND", "Assignment submission not found")
            if row["status"] == "GRADED":
                raise StateConflict("ALREADY_GRADED", "Assignment submission has already been graded")
            row.update(
                {"grade": grade, "feedback": feedback, "status": "GRADED", "graded_by": graded_by, "graded_at": now_iso()}
            )
            return dict(row)

    def list_pending_grading(self, instructor_id: str, *, course_id: Optional[str] = None) -> Dict[str, List[dict]]:
        """SUBMITTED assignment submissions and quiz attempts across the instructor's courses, oldest first."""
        with self.tables.lock:
            courses = {
                c["id"]: c
                for c in self.tables.courses.values()
                if c["instructor_id"] == instructor_id and (course_id is None or c["id"] == course_id)
            }
            assignments = []
            for row in self.tables.assignment_submissions.values():
                assignment = self.tables.assignments.get(row["assignment_id"])
                if row["status"] != "SUBMITTED" or assignment is None or assignment["course_id"] not in courses:
                    continue
                course = courses[assignment["course_id"]]
                assignments.append(
                    {
                        **row,
                        "title": assignment["title"],
                        "total_points": assignment["total_points"],
                        "course_id": course["id"],
                        "course_title": course["title"],
                    }
                )
            quizzes = []
            for row in self.tables.attempts.values():
                quiz = self.tables.quizzes.get(row["quiz_id"])
                if row["status"] != AttemptStatus.SUBMITTED.value or quiz is None or quiz["course_id"] not in courses:
                    continue
                course = courses[quiz["course_id"]]
                quizzes.append(
                    {
                        **copy.deepcopy(row),
                        "title": quiz["title"],
                        "course_id": course["id"],
                        "course_title": course["title"],
                    }
                )
        assignments.sort(key=lambda r: r["submitted_at"])
        quizzes.sort(key=lambda r: r["submitted_at"] or "")
        return {"assignments": assignments, "quizzes": quizzes}

    # --- notifications ------------------------------------------------------

    def create_notification(self, *, user_id: str, type: str, title: str, message: str, data: Optional[dict]) -> dict:
        with self.tables.lock:
            row = {
                "id": str(uuid4()),
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "data": copy.deepcopy(data),
                "is_read": False,
                "created_at": now_iso(),
            }
            self.tables.notifications[row["id"]] = row
            return copy.deepcopy(row)

    def list_notifications(self, user_id: str, *, unread_only: bool, limit: int, offset: int) -> List[dict]:
        with self.tables.lock:
            rows = [
                copy.deepcopy(n)
                for n in self.tables.notifications.values()
                if n["user_id"] == user_id and (not unread_only or not n["is_read"])
            ]
        rows.sort(key=lambda n: n["created_at"], reverse=True)
        return rows[offset : offset + limit]

    def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[dict]:
        with self.tables.lock:
            row = self.tables.notifications.get(notification_id)
            if row is None or row["user_id"] != user_id:
                return None
            row["is_read"] = True
            return copy.deepcopy(row)

    # --- analytics ----------------------------------------------------------

    def enrollment_trends(self, since: datetime, unit: str) -> List[dict]:
        with self.tables.lock:
            buckets: Dict[date, int] = {}
            for row in self.tables.enrollments.values():
                created = _parse(row["created_at"])
                if created < since:
                    continue
                key = truncate_period(created, unit)
                buckets[key] = buckets.get(key, 0) + 1
        return [{"period": k.isoformat(), "enrollments": v} for k, v in sorted(buckets.items())]

    def quiz_performance(self, since: datetime) -> List[dict]:
        with self.tables.lock:
            grouped: Dict[str, List[dict]] = {}
            for row in self.tables.attempts.values():
                if row["status"] == AttemptStatus.STARTED.value or not row["submitted_at"]:
                    continue
                if _parse(row["submitted_at"]) < since:
                    continue
                grouped.setdefault(row["quiz_id"], []).append(row)
            out = []
            for quiz_id, attempts in grouped.items():
                quiz = self.tables.quizzes.get(quiz_id) or {}
                count = len(attempts)
                avg = sum(float(a["percentage"] or 0) for a in attempts) / count
                passed = sum(1 for a in attempts if a.get("is_passed"))
                out.append(
                    {
                        "quiz_id": quiz_id,
                        "title": quiz.get("title"),
                        "attempts": count,
                        "average_percentage": float(round_half_up(avg)),
                        "pass_rate": float(round_half_up(passed / count * 100)),
                    }
                )
        out.sort(key=lambda r: r["attempts"], reverse=True)
        return out

    def ping(self) -> bool:
        return True
