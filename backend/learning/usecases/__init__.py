"""Use case layer for the Learning context.

Re-export the use cases for convenient imports in routes and tests.
"""

from .assignments import SubmitAssignmentInput, SubmitAssignmentUseCase
from .catalog import BrowseCatalogUseCase, CatalogCourseUseCase, CatalogQuery
from .attempts import (
    ListMyAttemptsUseCase,
    StartAttemptInput,
    StartAttemptUseCase,
    SubmitAttemptInput,
    SubmitAttemptUseCase,
)
from .enrollments import (
    EnrollInCourseUseCase,
    EnrollInput,
    GrantEnrollmentUseCase,
    ListMyCoursesUseCase,
    SetEnrollmentStatusUseCase,
)
from .progress import CompleteLessonInput, CompleteLessonUseCase, ProgressTracker, StudentCourseContentUseCase

__all__ = [
    "SubmitAssignmentInput",
    "SubmitAssignmentUseCase",
    "BrowseCatalogUseCase",
    "CatalogCourseUseCase",
    "CatalogQuery",
    "ListMyAttemptsUseCase",
    "StartAttemptInput",
    "StartAttemptUseCase",
    "SubmitAttemptInput",
    "SubmitAttemptUseCase",
    "EnrollInCourseUseCase",
    "EnrollInput",
    "GrantEnrollmentUseCase",
    "ListMyCoursesUseCase",
    "SetEnrollmentStatusUseCase",
    "CompleteLessonInput",
    "CompleteLessonUseCase",
    "ProgressTracker",
    "StudentCourseContentUseCase",
]
