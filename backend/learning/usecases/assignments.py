from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from backend.common.errors import NotFound, StateConflict
from backend.learning.usecases.enrollments import EnrollmentRepoProtocol, require_active_enrollment
from backend.teaching.services import fields


class AssignmentReaderProtocol(Protocol):
    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        ...

    def get_section(self, section_id: str) -> Optional[dict]:
        ...


class SubmissionRepoProtocol(EnrollmentRepoProtocol, Protocol):
    def create_assignment_submission(self, assignment_id: str, student_id: str, *, content: str, is_late: bool) -> dict:
        ...


@dataclass
class SubmitAssignmentInput:
    student_id: str
    assignment_id: str
    content: object
    now: Optional[datetime] = None


class SubmitAssignmentUseCase:
    def __init__(self, content: AssignmentReaderProtocol, repo: SubmissionRepoProtocol) -> None:
        self._content = content
        self._repo = repo

    def execute(self, req: SubmitAssignmentInput) -> dict:
        """Store the student's single submission for an assignment.

        Behavior:
            - After `due_date` the submission is rejected with ASSIGNMENT_PAST_DUE
              unless the assignment allows late submissions; then it is flagged `is_late`.
            - A second submission by the same student raises ALREADY_SUBMITTED.
        """
        assignment = self._content.get_assignment(req.assignment_id)
        section = self._content.get_section(assignment["section_id"]) if assignment else None
        if assignment is None or section is None or not section.get("is_published"):
            raise NotFound("ASSIGNMENT_NOT_FOUND", "Assignment not found")
        require_active_enrollment(self._repo, req.student_id, assignment["course_id"])
        text = fields.required_text(req.content, "content", max_len=50000)

        now = req.now or datetime.now(timezone.utc)
        due = assignment.get("due_date")
        is_late = bool(due) and now > datetime.fromisoformat(due)
        if is_late and not assignment.get("allow_late_submission"):
            raise StateConflict("ASSIGNMENT_PAST_DUE", "The due date for this assignment has passed")
        return self._repo.create_assignment_submission(req.assignment_id, req.student_id, content=text, is_late=is_late)
