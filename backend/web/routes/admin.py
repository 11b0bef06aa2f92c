"""
Admin API routes: system settings, analytics and enrollment administration.

Permissions:
    Every route requires the `admin` role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Request

from backend.admin.analytics import AnalyticsService
from backend.common.errors import DomainError
from backend.learning.usecases import EnrollInput, GrantEnrollmentUseCase, SetEnrollmentStatusUseCase
from backend.web import wiring
from backend.web.auth_utils import current_sub, require_role
from backend.web.envelope import domain_failure, success
from backend.web.payloads import EnrollmentGrantPayload, EnrollmentStatusPayload, SettingsUpdatePayload
from backend.web.serializers import camel

admin_router = APIRouter(prefix="/api/admin", tags=["Admin"])
logger = logging.getLogger("educademy.web.admin")


def _analytics() -> AnalyticsService:
    return AnalyticsService(wiring.get_learning_repo(), wiring.get_cache())


@admin_router.get("/settings")
async def get_settings(request: Request):
    _, error = require_role(request, "admin")
    if error:
        return error
    return success(request, wiring.get_settings_store().snapshot().as_dict(), message="System settings retrieved")


@admin_router.put("/settings")
async def update_settings(request: Request, payload: SettingsUpdatePayload, background: BackgroundTasks):
    """Update one settings category.

    Behavior:
        - 400 INVALID_CATEGORY / INVALID_INPUT.
        - 400 SETTINGS_VERSION_CONFLICT when `expectedVersion` is stale.
        - Turning maintenance mode on broadcasts a `maintenance_mode` event.
    """
    user, error = require_role(request, "admin")
    if error:
        return error
    try:
        result = wiring.get_settings_store().update(
            payload.category, payload.settings, current_sub(user), expected_version=payload.expected_version
        )
    except DomainError as exc:
        return domain_failure(request, exc)
    background.add_task(wiring.get_dispatcher().deliver_all, result.notifications)
    return success(request, result.snapshot.as_dict(), message="System settings updated")


@admin_router.get("/settings/changes")
async def settings_changes(request: Request, limit: int = 20):
    _, error = require_role(request, "admin")
    if error:
        return error
    limit = max(1, min(int(limit), 100))
    changes = wiring.get_settings_store().changes(limit)
    return success(request, changes, message="Settings changes retrieved")


@admin_router.get("/analytics/enrollments")
async def enrollment_trends(request: Request, period: str = "30d", groupBy: str = "day"):
    _, error = require_role(request, "admin")
    if error:
        return error
    try:
        report = _analytics().enrollment_trends(period, groupBy)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(report), message="Enrollment trends retrieved")


@admin_router.get("/analytics/quiz-performance")
async def quiz_performance(request: Request, period: str = "30d"):
    _, error = require_role(request, "admin")
    if error:
        return error
    try:
        report = _analytics().quiz_performance(period)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(report), message="Quiz performance retrieved")


@admin_router.post("/enrollments")
async def grant_enrollment(request: Request, payload: EnrollmentGrantPayload):
    user, error = require_role(request, "admin")
    if error:
        return error
    use_case = GrantEnrollmentUseCase(wiring.get_teaching_repo(), wiring.get_learning_repo(), wiring.get_cache())
    try:
        enrollment = use_case.execute(EnrollInput(student_id=payload.student_id, course_id=payload.course_id))
    except DomainError as exc:
        return domain_failure(request, exc)
    logger.info("Enrollment granted student=%s course=%s by=%s", payload.student_id, payload.course_id, current_sub(user))
    return success(request, camel(enrollment), message="Enrollment granted", status_code=201)


@admin_router.patch("/enrollments/{enrollment_id}")
async def set_enrollment_status(request: Request, enrollment_id: str, payload: EnrollmentStatusPayload):
    _, error = require_role(request, "admin")
    if error:
        return error
    use_case = SetEnrollmentStatusUseCase(wiring.get_learning_repo(), wiring.get_cache())
    try:
        enrollment = use_case.execute(enrollment_id, payload.status)
    except DomainError as exc:
        return domain_failure(request, exc)
    return success(request, camel(enrollment), message="Enrollment status updated")
