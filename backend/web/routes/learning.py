"""
Learning (student) API routes.

Why:
    Students browse the catalog, enroll, read published content, complete
    lessons, take quizzes and hand in assignments. Routes check the caller's
    role and map domain errors to the envelope; use cases own enrollment,
    admission and scoring rules.

Security:
    Student payloads never contain answer keys. The only exception is the
    per-question review returned after submission when the quiz allows it.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Request

from backend.common.errors import DomainError
from backend.learning.usecases import (
    BrowseCatalogUseCase,
    CatalogCourseUseCase,
    CatalogQuery,
    CompleteLessonInput,
    CompleteLessonUseCase,
    EnrollInCourseUseCase,
    EnrollInput,
    ListMyAttemptsUseCase,
    ListMyCoursesUseCase,
    StartAttemptInput,
    StartAttemptUseCase,
    StudentCourseContentUseCase,
    SubmitAssignmentInput,
    SubmitAssignmentUseCase,
    SubmitAttemptInput,
    SubmitAttemptUseCase,
)
from backend.web import wiring
from backend.web.auth_utils import require_role
from backend.web.envelope import domain_failure, failure, success
from backend.web.payloads import AssignmentSubmissionPayload, AttemptSubmitPayload
from backend.web.serializers import camel, for_student

learning_router = APIRouter(prefix="/api/learning", tags=["Learning"])
logger = logging.getLogger("educademy.web.learning")


def _is_uuid_like(value: str) -> bool:
    try:
        UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _guard(request: Request, **ids: str):
    """Return (user, error_response) for a student caller with well-formed path ids."""
    user, error = require_role(request, "student")
    if error:
        return None, error
    for name, value in ids.items():
        if not _is_uuid_like(value):
            return None, failure(request, "INVALID_ID", f"{name} is not a valid id", status_code=400)
    return user, None


def _submission_body(result) -> dict:
    body = {**camel(result.attempt), "score": result.score.as_dict()}
    if result.review is not None:
        body["review"] = camel(result.review)
    return body


# Any signed-in role may browse what is on offer.
_CATALOG_ROLES = ("student", "instructor", "admin")


@learning_router.get("/catalog")
async def catalog(request: Request, page: str = "1", limit: str = "12", search: str | None = None, level: str | None = None):
    """Published courses, newest first, with page/limit pagination."""
    _user, error = require_role(request, *_CATALOG_ROLES)
    if error:
        return error
    use_case = BrowseCatalogUseCase(wiring.get_teaching_repo(), wiring.get_cache())
    try:
        result = use_case.execute(CatalogQuery(page=page, limit=limit, search=search, level=level))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(result), message="Courses retrieved")


@learning_router.get("/catalog/{course_id}")
async def catalog_course(request: Request, course_id: str):
    _user, error = require_role(request, *_CATALOG_ROLES)
    if error:
        return error
    if not _is_uuid_like(course_id):
        return failure(request, "INVALID_ID", "courseId is not a valid id", status_code=400)
    try:
        outline = CatalogCourseUseCase(wiring.get_teaching_repo(), wiring.get_cache()).execute(course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, for_student(outline), message="Course retrieved")


@learning_router.post("/courses/{course_id}/enroll")
async def enroll(request: Request, course_id: str):
    """Enroll the caller into a published, free course.

    Behavior:
        - 201 with the enrollment.
        - 400 COURSE_NOT_AVAILABLE / PAYMENT_REQUIRED / ALREADY_ENROLLED.
        - 404 COURSE_NOT_FOUND.
    """
    user, error = _guard(request, courseId=course_id)
    if error:
        return error
    use_case = EnrollInCourseUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())
    try:
        enrollment = use_case.execute(EnrollInput(student_id=user["sub"], course_id=course_id, email=user.get("email")))
    except DomainError as exc:
        return domain_failure(request, exc)
    logger.info("Enrolled student=%s course=%s", user["sub"], course_id)
    return success(request, camel(enrollment), message="Enrolled successfully", status_code=201)


@learning_router.get("/courses")
async def my_courses(request: Request):
    user, error = _guard(request)
    if error:
        return error
    items = ListMyCoursesUseCase(wiring.get_learning_repo(), wiring.get_cache()).execute(user["sub"])
    return success(request, camel(items), message="Enrolled courses retrieved")


@learning_router.get("/courses/{course_id}/content")
async def course_content(request: Request, course_id: str):
    user, error = _guard(request, courseId=course_id)
    if error:
        return error
    use_case = StudentCourseContentUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo())
    try:
        data = use_case.execute(user["sub"], course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, for_student(data), message="Course content retrieved")


@learning_router.post("/lessons/{lesson_id}/complete")
async def complete_lesson(request: Request, lesson_id: str, background: BackgroundTasks):
    """Mark a lesson completed (idempotent) and return refreshed progress."""
    user, error = _guard(request, lessonId=lesson_id)
    if error:
        return error
    use_case = CompleteLessonUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())
    try:
        result = use_case.execute(CompleteLessonInput(student_id=user["sub"], lesson_id=lesson_id, email=user.get("email")))
    except DomainError as exc:
        return domain_failure(request, exc)
    background.add_task(wiring.get_dispatcher().deliver_all, result.progress.notifications)
    body = {
        "completion": camel(result.completion),
        "enrollment": camel(result.progress.enrollment),
        "certificate": camel(result.progress.certificate),
    }
    return success(request, body, message="Lesson completed" if result.created else "Lesson already completed")


@learning_router.post("/quizzes/{quiz_id}/attempts")
async def start_attempt(request: Request, quiz_id: str):
    """Start a quiz attempt.

    Behavior:
        - 201 with the attempt and the questions (no answer keys).
        - 400 ATTEMPT_IN_PROGRESS / MAX_ATTEMPTS_EXCEEDED; 403 NOT_ENROLLED.
    """
    user, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    use_case = StartAttemptUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo())
    try:
        result = use_case.execute(StartAttemptInput(student_id=user["sub"], quiz_id=quiz_id))
    except DomainError as exc:
        return domain_failure(request, exc)
    body = {"attempt": camel(result.attempt), "quiz": for_student(result.quiz), "questions": for_student(result.questions)}
    return success(request, body, message="Quiz attempt started", status_code=201)


@learning_router.get("/quizzes/{quiz_id}/attempts")
async def my_attempts(request: Request, quiz_id: str):
    user, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    use_case = ListMyAttemptsUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo())
    try:
        attempts = use_case.execute(user["sub"], quiz_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(attempts), message="Quiz attempts retrieved")


@learning_router.post("/attempts/{attempt_id}/submit")
async def submit_attempt(request: Request, attempt_id: str, payload: AttemptSubmitPayload, background: BackgroundTasks):
    """Submit answers for a started attempt.

    Behavior:
        - 400 INVALID_ANSWERS_FORMAT / ATTEMPT_ALREADY_SUBMITTED.
        - 403 ATTEMPT_UNAUTHORIZED; 404 ATTEMPT_NOT_FOUND.
    """
    user, error = _guard(request, attemptId=attempt_id)
    if error:
        return error
    use_case = SubmitAttemptUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())
    req = SubmitAttemptInput(student_id=user["sub"], answers=payload.answers, attempt_id=attempt_id, email=user.get("email"))
    try:
        result = use_case.execute(req)
    except DomainError as exc:
        return domain_failure(request, exc)
    background.add_task(wiring.get_dispatcher().deliver_all, result.notifications)
    return success(request, _submission_body(result), message="Quiz submitted")


@learning_router.post("/quizzes/{quiz_id}/submit")
async def submit_quiz(request: Request, quiz_id: str, payload: AttemptSubmitPayload, background: BackgroundTasks):
    """Admit and submit a new attempt in one step; a rejected admission writes nothing."""
    user, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    use_case = SubmitAttemptUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())
    req = SubmitAttemptInput(student_id=user["sub"], answers=payload.answers, quiz_id=quiz_id, email=user.get("email"))
    try:
        result = use_case.execute(req)
    except DomainError as exc:
        return domain_failure(request, exc)
    background.add_task(wiring.get_dispatcher().deliver_all, result.notifications)
    return success(request, _submission_body(result), message="Quiz submitted", status_code=201)


@learning_router.post("/assignments/{assignment_id}/submissions")
async def submit_assignment(request: Request, assignment_id: str, payload: AssignmentSubmissionPayload):
    user, error = _guard(request, assignmentId=assignment_id)
    if error:
        return error
    use_case = SubmitAssignmentUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo())
    try:
        submission = use_case.execute(
            SubmitAssignmentInput(student_id=user["sub"], assignment_id=assignment_id, content=payload.content)
        )
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(submission), message="Assignment submitted", status_code=201)
