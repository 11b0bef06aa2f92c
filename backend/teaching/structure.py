"""Assemble the nested course structure from flat, per-table row lists."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence


def _by_position(rows: Sequence[dict]) -> List[dict]:
    return sorted(rows, key=lambda r: int(r.get("position") or 0))


def assemble_structure(
    course: dict,
    sections: Sequence[dict],
    lessons: Sequence[dict],
    quizzes: Sequence[dict],
    questions: Sequence[dict],
    assignments: Sequence[dict],
) -> Dict[str, Any]:
    """Return `course` with ordered sections, each carrying its ordered children.

    Questions are nested under their quiz. Input rows are not mutated.
    """
    questions_by_quiz: Dict[str, List[dict]] = {}
    for q in questions:
        questions_by_quiz.setdefault(str(q["quiz_id"]), []).append(dict(q))

    def _children(rows: Sequence[dict], section_id: str) -> List[dict]:
        return _by_position([dict(r) for r in rows if str(r["section_id"]) == section_id])

    out_sections = []
    for section in _by_position(sections):
        sid = str(section["id"])
        quiz_rows = _children(quizzes, sid)
        for quiz in quiz_rows:
            quiz["questions"] = _by_position(questions_by_quiz.get(str(quiz["id"]), []))
        out_sections.append(
            {
                **section,
                "lessons": _children(lessons, sid),
                "quizzes": quiz_rows,
                "assignments": _children(assignments, sid),
            }
        )
    return {**course, "sections": out_sections}


def content_counts(structure: Dict[str, Any]) -> Dict[str, int]:
    sections = structure.get("sections") or []
    return {
        "sections": len(sections),
        "lessons": sum(len(s["lessons"]) for s in sections),
        "quizzes": sum(len(s["quizzes"]) for s in sections),
        "questions": sum(len(q["questions"]) for s in sections for q in s["quizzes"]),
        "assignments": sum(len(s["assignments"]) for s in sections),
    }
