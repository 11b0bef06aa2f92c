"""Teaching quizzes service: quizzes and their questions.

Why:
    Questions carry the answer key, so their fields are validated for internal
    consistency (type vs. options vs. correct answer) before anything reaches
    the repository. Scoring fields become read-only once students have
    attempted the quiz; the repository enforces that atomically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from backend.assessment.scoring import CHOICE_TYPES, QuestionType, parse_question_type
from backend.cache.helpers import invalidate_course_content
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound
from backend.teaching.services import fields
from backend.teaching.services.access import require_owned_row


class QuizzesRepoProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def get_section(self, section_id: str) -> Optional[dict]:
        ...

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        ...

    def create_quiz(self, section_id: str, fields: Dict[str, Any]) -> dict:
        ...

    def update_quiz(self, quiz_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def delete_quiz(self, quiz_id: str) -> bool:
        ...

    def reorder_quizzes(self, section_id: str, quiz_ids: List[str]) -> List[dict]:
        ...

    def get_question(self, question_id: str) -> Optional[dict]:
        ...

    def list_questions(self, quiz_id: str) -> List[dict]:
        ...

    def create_question(self, quiz_id: str, fields: Dict[str, Any]) -> dict:
        ...

    def update_question(self, question_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def delete_question(self, question_id: str) -> bool:
        ...

    def reorder_questions(self, quiz_id: str, question_ids: List[str]) -> List[dict]:
        ...


def _quiz_fields(data: Mapping[str, Any], *, partial: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or "title" in data:
        out["title"] = fields.required_text(data.get("title"), "title")
    if "description" in data:
        out["description"] = fields.optional_text(data["description"], "description", max_len=2000)
    if "instructions" in data:
        out["instructions"] = fields.optional_text(data["instructions"], "instructions", max_len=5000)
    if "duration" in data:
        out["duration"] = fields.optional_integer(data["duration"], "duration", minimum=1, maximum=600)
    defaults = {"passing_score": 70, "max_attempts": 3}
    limits = {"passing_score": ("passingScore", 1, 100), "max_attempts": ("maxAttempts", 1, 100)}
    for name, (label, low, high) in limits.items():
        if name in data:
            out[name] = fields.integer(data[name], label, minimum=low, maximum=high)
        elif not partial:
            out[name] = defaults[name]
    flags = {"is_randomized": ("isRandomized", False), "show_results": ("showResults", True), "allow_review": ("allowReview", True), "is_published": ("isPublished", False)}
    for name, (label, default) in flags.items():
        if name in data:
            out[name] = fields.boolean(data[name], label)
        elif not partial:
            out[name] = default
    return out


def normalize_correct_answer(qtype: QuestionType, options: Optional[List[str]], value: Any) -> Any:
    """Validate a correct answer against the question type and options."""
    if qtype is QuestionType.ESSAY:
        return None
    if qtype in CHOICE_TYPES:
        if not options or len(options) < 2:
            raise fields.invalid("options", "Choice questions need at least two options")
        if qtype is QuestionType.SINGLE_CHOICE:
            if not isinstance(value, str) or value not in options:
                raise fields.invalid("correctAnswer", "correctAnswer must be one of the options")
            return value
        picked = [value] if isinstance(value, str) else value
        if not isinstance(picked, list) or not picked or len(set(map(str, picked))) != len(picked):
            raise fields.invalid("correctAnswer", "correctAnswer must be a non-empty list of distinct options")
        if any(p not in options for p in picked):
            raise fields.invalid("correctAnswer", "correctAnswer must only contain options")
        return list(picked)
    if qtype is QuestionType.TRUE_FALSE:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower()
        raise fields.invalid("correctAnswer", "correctAnswer must be true or false")
    # short answer / fill in blank: text or list of accepted texts, None means manual grading
    if value is None:
        return None
    if isinstance(value, str):
        return fields.required_text(value, "correctAnswer", max_len=1000)
    return fields.string_list(value, "correctAnswer", max_len=1000)


def _question_fields(data: Mapping[str, Any], *, partial: bool, current: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or "content" in data:
        out["content"] = fields.required_text(data.get("content"), "content", max_len=5000)
    if not partial or "type" in data:
        qtype = parse_question_type(data.get("type"))
        if qtype is None:
            raise fields.invalid("type", "type must be a known question type")
        out["type"] = qtype.value
    if "points" in data:
        out["points"] = fields.integer(data["points"], "points", minimum=1, maximum=1000)
    elif not partial:
        out["points"] = 1
    if "options" in data:
        out["options"] = fields.string_list(data["options"], "options") if data["options"] is not None else None
    if "explanation" in data:
        out["explanation"] = fields.optional_text(data["explanation"], "explanation", max_len=5000)

    merged: Dict[str, Any] = {**(current or {}), **out}
    qtype = parse_question_type(merged.get("type"))
    if qtype is None:
        raise fields.invalid("type", "type must be a known question type")
    if qtype is QuestionType.TRUE_FALSE and merged.get("options") is None:
        merged["options"] = out["options"] = ["true", "false"]
    touches_key = any(k in data for k in ("correct_answer", "type", "options"))
    if not partial or touches_key:
        raw = data["correct_answer"] if "correct_answer" in data else merged.get("correct_answer")
        normalized = normalize_correct_answer(qtype, merged.get("options"), raw)
        if "correct_answer" in data or not partial or normalized != merged.get("correct_answer"):
            out["correct_answer"] = normalized
    return out


@dataclass
class QuizzesService:
    repo: QuizzesRepoProtocol
    cache: CacheProtocol

    def _owned_quiz(self, quiz_id: str, instructor_id: str) -> dict:
        return require_owned_row(self.repo, self.repo.get_quiz(quiz_id), instructor_id, code="QUIZ_NOT_FOUND", message="Quiz not found")

    def _owned_question(self, question_id: str, instructor_id: str) -> dict:
        return require_owned_row(
            self.repo, self.repo.get_question(question_id), instructor_id, code="QUESTION_NOT_FOUND", message="Question not found"
        )

    # --- quizzes ------------------------------------------------------------

    def create_quiz(self, instructor_id: str, section_id: str, data: Mapping[str, Any]) -> dict:
        section = require_owned_row(
            self.repo, self.repo.get_section(section_id), instructor_id, code="SECTION_NOT_FOUND", message="Section not found"
        )
        quiz = self.repo.create_quiz(section_id, _quiz_fields(data, partial=False))
        invalidate_course_content(self.cache, section["course_id"])
        return quiz

    def get_quiz(self, instructor_id: str, quiz_id: str) -> dict:
        quiz = self._owned_quiz(quiz_id, instructor_id)
        return {**quiz, "questions": self.repo.list_questions(quiz_id)}

    def update_quiz(self, instructor_id: str, quiz_id: str, data: Mapping[str, Any]) -> dict:
        """Update quiz settings; scoring settings are locked once attempts exist.

        A request that changes any locked field is rejected as a whole, including
        its unrelated fields. Re-sending the stored value is accepted.
        """
        quiz = self._owned_quiz(quiz_id, instructor_id)
        changes = _quiz_fields(data, partial=True)
        if not changes:
            raise fields.invalid("body", "No updatable fields supplied")
        updated = self.repo.update_quiz(quiz_id, changes)
        if updated is None:
            raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
        invalidate_course_content(self.cache, quiz["course_id"])
        return updated

    def delete_quiz(self, instructor_id: str, quiz_id: str) -> None:
        quiz = self._owned_quiz(quiz_id, instructor_id)
        if not self.repo.delete_quiz(quiz_id):
            raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
        invalidate_course_content(self.cache, quiz["course_id"])

    def reorder_quizzes(self, instructor_id: str, section_id: str, quiz_ids: object) -> List[dict]:
        section = require_owned_row(
            self.repo, self.repo.get_section(section_id), instructor_id, code="SECTION_NOT_FOUND", message="Section not found"
        )
        ordered = self.repo.reorder_quizzes(section_id, fields.id_list(quiz_ids, "quizIds"))
        invalidate_course_content(self.cache, section["course_id"])
        return ordered

    # --- questions ----------------------------------------------------------

    def create_question(self, instructor_id: str, quiz_id: str, data: Mapping[str, Any]) -> dict:
        quiz = self._owned_quiz(quiz_id, instructor_id)
        question = self.repo.create_question(quiz_id, _question_fields(data, partial=False))
        invalidate_course_content(self.cache, quiz["course_id"])
        return question

    def update_question(self, instructor_id: str, question_id: str, data: Mapping[str, Any]) -> dict:
        question = self._owned_question(question_id, instructor_id)
        changes = _question_fields(data, partial=True, current=question)
        if not changes:
            raise fields.invalid("body", "No updatable fields supplied")
        updated = self.repo.update_question(question_id, changes)
        if updated is None:
            raise NotFound("QUESTION_NOT_FOUND", "Question not found")
        invalidate_course_content(self.cache, question["course_id"])
        return updated

    def delete_question(self, instructor_id: str, question_id: str) -> None:
        question = self._owned_question(question_id, instructor_id)
        if not self.repo.delete_question(question_id):
            raise NotFound("QUESTION_NOT_FOUND", "Question not found")
        invalidate_course_content(self.cache, question["course_id"])

    def reorder_questions(self, instructor_id: str, quiz_id: str, question_ids: object) -> List[dict]:
        quiz = self._owned_quiz(quiz_id, instructor_id)
        ordered = self.repo.reorder_questions(quiz_id, fields.id_list(question_ids, "questionIds"))
        invalidate_course_content(self.cache, quiz["course_id"])
        return ordered
