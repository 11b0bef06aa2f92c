"""
Request bodies.

Models accept camelCase (and snake_case) keys and keep values loosely typed:
the services own the field rules so every violation is reported with the same
`VALIDATION_ERROR` envelope and field name. `fields_set()` hands the services a
snake_case dict of exactly the keys the client sent.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def fields_set(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CoursePayload(CamelPayload):
    title: Any = None
    description: Any = None
    price: Any = None
    level: Any = None


class SectionPayload(CamelPayload):
    title: Any = None
    description: Any = None
    is_published: Any = None


class LessonPayload(CamelPayload):
    title: Any = None
    description: Any = None
    type: Any = None
    content: Any = None
    video_url: Any = None
    duration: Any = None
    is_free: Any = None
    is_published: Any = None


class QuizPayload(CamelPayload):
    title: Any = None
    description: Any = None
    instructions: Any = None
    duration: Any = None
    passing_score: Any = None
    max_attempts: Any = None
    is_randomized: Any = None
    show_results: Any = None
    allow_review: Any = None
    is_published: Any = None


class QuestionPayload(CamelPayload):
    content: Any = None
    type: Any = None
    points: Any = None
    options: Any = None
    correct_answer: Any = None
    explanation: Any = None


class AssignmentPayload(CamelPayload):
    title: Any = None
    description: Any = None
    instructions: Any = None
    due_date: Any = None
    total_points: Any = None
    allow_late_submission: Any = None
    is_published: Any = None


class ReorderPayload(CamelPayload):
    """Accepts `ids` or the entity-specific key (`sectionIds`, `lessonIds`, ...)."""

    ids: Any = None
    section_ids: Any = None
    lesson_ids: Any = None
    quiz_ids: Any = None
    question_ids: Any = None
    assignment_ids: Any = None

    def requested(self, name: str) -> Any:
        specific = getattr(self, name)
        return specific if specific is not None else self.ids


class GradePayload(CamelPayload):
    answers: Any = None
    override_grade: Optional[float] = None
    feedback: Optional[str] = Field(default=None, max_length=5000)


class AssignmentGradePayload(CamelPayload):
    points: Any = None
    feedback: Optional[str] = Field(default=None, max_length=5000)


class AttemptSubmitPayload(CamelPayload):
    answers: Any = None


class AssignmentSubmissionPayload(CamelPayload):
    content: Any = None


class SettingsUpdatePayload(CamelPayload):
    category: Any = None
    settings: Any = None
    expected_version: Optional[int] = None


class EnrollmentGrantPayload(CamelPayload):
    student_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)


class EnrollmentStatusPayload(CamelPayload):
    status: Any = None

