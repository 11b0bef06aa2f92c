"""
Instructor API routes: courses, sections, lessons, quizzes, questions,
assignments and grading.

Why:
    Authoring keeps the course tree ordered (positions 1..n per parent) and
    guards scoring rules once students have interacted with the content. The
    adapter authenticates (middleware), checks the instructor role and maps
    domain errors to the envelope; services own ownership checks, validation
    and cache invalidation.

Notes:
    - Ids in paths must look like UUIDs; anything else is a 400 before any lookup.
    - Notifications raised by grading are delivered after the response.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Request

from backend.common.errors import DomainError
from backend.teaching.services.content import ContentService
from backend.teaching.services.courses import CoursesService
from backend.teaching.services.grading import GradingService
from backend.teaching.services.quizzes import QuizzesService
from backend.web import wiring
from backend.web.auth_utils import current_sub, require_role
from backend.web.envelope import domain_failure, failure, success
from backend.web.payloads import (
    AssignmentPayload,
    AssignmentGradePayload,
    CoursePayload,
    GradePayload,
    LessonPayload,
    QuestionPayload,
    QuizPayload,
    ReorderPayload,
    SectionPayload,
)
from backend.web.serializers import camel

instructor_router = APIRouter(prefix="/api/instructor", tags=["Instructor"])
logger = logging.getLogger("educademy.web.content")
grading_logger = logging.getLogger("educademy.web.grading")


def _courses() -> CoursesService:
    return CoursesService(wiring.get_teaching_repo(), wiring.get_cache())


def _content() -> ContentService:
    return ContentService(wiring.get_teaching_repo(), wiring.get_cache())


def _quizzes() -> QuizzesService:
    return QuizzesService(wiring.get_teaching_repo(), wiring.get_cache())


def _grading() -> GradingService:
    return GradingService(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())


def _is_uuid_like(value: str) -> bool:
    """Best-effort UUID format check without coercing FastAPI to return 422."""
    try:
        UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _guard(request: Request, **ids: str):
    """Return (sub, error_response) after role and path-id checks."""
    user, error = require_role(request, "instructor")
    if error:
        return None, error
    for name, value in ids.items():
        if not _is_uuid_like(value):
            return None, failure(request, "INVALID_ID", f"{name} is not a valid id", status_code=400)
    return current_sub(user), None


# --- courses --------------------------------------------------------------------


@instructor_router.post("/courses")
async def create_course(request: Request, payload: CoursePayload):
    sub, error = _guard(request)
    if error:
        return error
    try:
        course = _courses().create_course(sub, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    logger.info("Course created id=%s by=%s", course["id"], sub)
    return success(request, camel(course), message="Course created", status_code=201)


@instructor_router.get("/courses")
async def list_courses(request: Request, limit: int = 20, offset: int = 0):
    sub, error = _guard(request)
    if error:
        return error
    items = _courses().list_courses(sub, limit=limit, offset=offset)
    return success(request, camel(items), message="Courses retrieved")


@instructor_router.patch("/courses/{course_id}")
async def update_course(request: Request, course_id: str, payload: CoursePayload):
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        course = _courses().update_course(sub, course_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(course), message="Course updated")


@instructor_router.get("/courses/{course_id}/structure")
async def get_course_structure(request: Request, course_id: str):
    """Full nested tree (sections -> lessons/quizzes/questions/assignments), cached 30 min."""
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        structure = _courses().get_structure(sub, course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(structure), message="Course structure retrieved")


@instructor_router.get("/courses/{course_id}/stats")
async def get_course_stats(request: Request, course_id: str):
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        stats = _courses().get_stats(sub, course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, stats, message="Content statistics retrieved")


@instructor_router.get("/courses/{course_id}/validation")
async def validate_course(request: Request, course_id: str):
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        report = _courses().validate(sub, course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, report, message="Content validation completed")


@instructor_router.post("/courses/{course_id}/publish")
async def publish_course(request: Request, course_id: str):
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        course = _courses().publish(sub, course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    logger.info("Course published id=%s by=%s", course_id, sub)
    return success(request, camel(course), message="Course published")


# --- sections -------------------------------------------------------------------


@instructor_router.get("/courses/{course_id}/sections")
async def list_sections(request: Request, course_id: str):
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        sections = _content().list_sections(sub, course_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(sections), message="Sections retrieved")


@instructor_router.post("/courses/{course_id}/sections")
async def create_section(request: Request, course_id: str, payload: SectionPayload):
    """Append a section at position max + 1 (1 for the first)."""
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        section = _content().create_section(sub, course_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(section), message="Section created", status_code=201)


@instructor_router.patch("/sections/{section_id}")
async def update_section(request: Request, section_id: str, payload: SectionPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        section = _content().update_section(sub, section_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(section), message="Section updated")


@instructor_router.delete("/sections/{section_id}")
async def delete_section(request: Request, section_id: str):
    """Delete an empty section and close the gap in its siblings' positions.

    Behavior:
        - 400 SECTION_HAS_CONTENT (with counts) while lessons, quizzes or
          assignments remain.
    """
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        _content().delete_section(sub, section_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, None, message="Section deleted")


@instructor_router.put("/courses/{course_id}/sections/reorder")
async def reorder_sections(request: Request, course_id: str, payload: ReorderPayload):
    """Reorder sections to positions 1..n as provided.

    Behavior:
        - 400 INVALID_SECTION_IDS unless the ids are exactly the course's sections.
    """
    sub, error = _guard(request, courseId=course_id)
    if error:
        return error
    try:
        ordered = _content().reorder_sections(sub, course_id, payload.requested("section_ids"))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(ordered), message="Sections reordered")


# --- lessons --------------------------------------------------------------------


@instructor_router.post("/sections/{section_id}/lessons")
async def create_lesson(request: Request, section_id: str, payload: LessonPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        lesson = _content().create_lesson(sub, section_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(lesson), message="Lesson created", status_code=201)


@instructor_router.patch("/lessons/{lesson_id}")
async def update_lesson(request: Request, lesson_id: str, payload: LessonPayload):
    sub, error = _guard(request, lessonId=lesson_id)
    if error:
        return error
    try:
        lesson = _content().update_lesson(sub, lesson_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(lesson), message="Lesson updated")


@instructor_router.delete("/lessons/{lesson_id}")
async def delete_lesson(request: Request, lesson_id: str):
    sub, error = _guard(request, lessonId=lesson_id)
    if error:
        return error
    try:
        _content().delete_lesson(sub, lesson_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, None, message="Lesson deleted")


@instructor_router.put("/sections/{section_id}/lessons/reorder")
async def reorder_lessons(request: Request, section_id: str, payload: ReorderPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        ordered = _content().reorder_lessons(sub, section_id, payload.requested("lesson_ids"))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(ordered), message="Lessons reordered")


# --- quizzes --------------------------------------------------------------------


@instructor_router.post("/sections/{section_id}/quizzes")
async def create_quiz(request: Request, section_id: str, payload: QuizPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        quiz = _quizzes().create_quiz(sub, section_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(quiz), message="Quiz created", status_code=201)


@instructor_router.get("/quizzes/{quiz_id}")
async def get_quiz(request: Request, quiz_id: str):
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        quiz = _quizzes().get_quiz(sub, quiz_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(quiz), message="Quiz retrieved")


@instructor_router.patch("/quizzes/{quiz_id}")
async def update_quiz(request: Request, quiz_id: str, payload: QuizPayload):
    """Update quiz settings.

    Behavior:
        - 400 QUIZ_HAS_ATTEMPTS (details.fields) when passingScore, maxAttempts
          or duration would change after the first attempt; nothing is applied.
    """
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        quiz = _quizzes().update_quiz(sub, quiz_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(quiz), message="Quiz updated")


@instructor_router.delete("/quizzes/{quiz_id}")
async def delete_quiz(request: Request, quiz_id: str):
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        _quizzes().delete_quiz(sub, quiz_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, None, message="Quiz deleted")


@instructor_router.put("/sections/{section_id}/quizzes/reorder")
async def reorder_quizzes(request: Request, section_id: str, payload: ReorderPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        ordered = _quizzes().reorder_quizzes(sub, section_id, payload.requested("quiz_ids"))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(ordered), message="Quizzes reordered")


# --- questions ------------------------------------------------------------------


@instructor_router.post("/quizzes/{quiz_id}/questions")
async def create_question(request: Request, quiz_id: str, payload: QuestionPayload):
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        question = _quizzes().create_question(sub, quiz_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(question), message="Question created", status_code=201)


@instructor_router.patch("/questions/{question_id}")
async def update_question(request: Request, question_id: str, payload: QuestionPayload):
    sub, error = _guard(request, questionId=question_id)
    if error:
        return error
    try:
        question = _quizzes().update_question(sub, question_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(question), message="Question updated")


@instructor_router.delete("/questions/{question_id}")
async def delete_question(request: Request, question_id: str):
    sub, error = _guard(request, questionId=question_id)
    if error:
        return error
    try:
        _quizzes().delete_question(sub, question_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, None, message="Question deleted")


@instructor_router.put("/quizzes/{quiz_id}/questions/reorder")
async def reorder_questions(request: Request, quiz_id: str, payload: ReorderPayload):
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        ordered = _quizzes().reorder_questions(sub, quiz_id, payload.requested("question_ids"))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(ordered), message="Questions reordered")


# --- assignments ----------------------------------------------------------------


@instructor_router.post("/sections/{section_id}/assignments")
async def create_assignment(request: Request, section_id: str, payload: AssignmentPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        assignment = _content().create_assignment(sub, section_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(assignment), message="Assignment created", status_code=201)


@instructor_router.patch("/assignments/{assignment_id}")
async def update_assignment(request: Request, assignment_id: str, payload: AssignmentPayload):
    sub, error = _guard(request, assignmentId=assignment_id)
    if error:
        return error
    try:
        assignment = _content().update_assignment(sub, assignment_id, payload.fields_set())
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(assignment), message="Assignment updated")


@instructor_router.delete("/assignments/{assignment_id}")
async def delete_assignment(request: Request, assignment_id: str):
    sub, error = _guard(request, assignmentId=assignment_id)
    if error:
        return error
    try:
        _content().delete_assignment(sub, assignment_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, None, message="Assignment deleted")


@instructor_router.put("/sections/{section_id}/assignments/reorder")
async def reorder_assignments(request: Request, section_id: str, payload: ReorderPayload):
    sub, error = _guard(request, sectionId=section_id)
    if error:
        return error
    try:
        ordered = _content().reorder_assignments(sub, section_id, payload.requested("assignment_ids"))
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(ordered), message="Assignments reordered")


# --- grading --------------------------------------------------------------------


@instructor_router.get("/quizzes/{quiz_id}/attempts")
async def list_quiz_attempts(request: Request, quiz_id: str, status: str | None = None):
    sub, error = _guard(request, quizId=quiz_id)
    if error:
        return error
    try:
        attempts = _grading().list_attempts(sub, quiz_id, status=status)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(attempts), message="Quiz attempts retrieved")


@instructor_router.get("/attempts/{attempt_id}")
async def get_attempt(request: Request, attempt_id: str):
    sub, error = _guard(request, attemptId=attempt_id)
    if error:
        return error
    try:
        attempt = _grading().get_attempt(sub, attempt_id)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(attempt), message="Quiz attempt retrieved")


@instructor_router.post("/attempts/{attempt_id}/grade")
async def grade_attempt(request: Request, attempt_id: str, payload: GradePayload, background: BackgroundTasks):
    """Grade a submitted attempt.

    Behavior:
        - `answers` maps questionId -> {points, feedback}; points within
          [0, question points] (INVALID_POINTS), ids must have answers
          (INVALID_QUESTION_IDS).
        - `overrideGrade` within [0, total points] replaces the sum.
        - 400 ATTEMPT_ALREADY_GRADED / ATTEMPT_NOT_SUBMITTED.
    """
    sub, error = _guard(request, attemptId=attempt_id)
    if error:
        return error
    try:
        result = _grading().grade_attempt(
            sub,
            attempt_id,
            grades=payload.answers,
            override_grade=payload.override_grade,
            feedback=payload.feedback,
        )
    except DomainError as exc:
        return domain_failure(request, exc)
    grading_logger.info("Attempt graded id=%s by=%s passed=%s", attempt_id, sub, result.score.is_passed)
    background.add_task(wiring.get_dispatcher().deliver_all, result.notifications)
    body = {**camel(result.attempt), "answers": camel(result.answers), "score": result.score.as_dict()}
    return success(request, body, message="Quiz graded")


@instructor_router.get("/assignments/{assignment_id}/submissions")
async def list_assignment_submissions(request: Request, assignment_id: str, status: str | None = None):
    sub, error = _guard(request, assignmentId=assignment_id)
    if error:
        return error
    try:
        submissions = _grading().list_submissions(sub, assignment_id, status=status)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(submissions), message="Assignment submissions retrieved")


@instructor_router.post("/submissions/{submission_id}/grade")
async def grade_submission(
    request: Request, submission_id: str, payload: AssignmentGradePayload, background: BackgroundTasks
):
    """Grade an assignment submission.

    Behavior:
        - `points` within [0, assignment totalPoints] (INVALID_POINTS).
        - 400 ALREADY_GRADED for a submission that already has a grade.
        - The student receives an `assignment_graded` notification.
    """
    sub, error = _guard(request, submissionId=submission_id)
    if error:
        return error
    try:
        result = _grading().grade_submission(sub, submission_id, points=payload.points, feedback=payload.feedback)
    except DomainError as exc:
        return domain_failure(request, exc)
    grading_logger.info("Submission graded id=%s by=%s passed=%s", submission_id, sub, result.score.is_passed)
    background.add_task(wiring.get_dispatcher().deliver_all, result.notifications)
    body = {**camel(result.submission), "score": result.score.as_dict()}
    return success(request, body, message="Assignment graded")


@instructor_router.get("/grading/pending")
async def pending_grading(request: Request, courseId: str | None = None, type: str = "all"):
    """Submitted quiz attempts and assignment submissions waiting for a grade.

    Query: `courseId` narrows to one owned course; `type` is all, assignments or quizzes.
    """
    ids = {"courseId": courseId} if courseId is not None else {}
    sub, error = _guard(request, **ids)
    if error:
        return error
    try:
        queue = _grading().pending(sub, course_id=courseId, kind=type)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(queue), message="Pending grading items retrieved")
