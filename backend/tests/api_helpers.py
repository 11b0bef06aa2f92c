"""Shared helpers for API tests: client factory and content seeding via the HTTP API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from httpx import ASGITransport

from backend.web import main

COOKIE = "educademy_session"


def client_for(session_id: Optional[str] = None) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if session_id:
        client.cookies.set(COOKIE, session_id)
    return client


def data(resp: httpx.Response) -> Any:
    body = resp.json()
    assert body["success"] is True, body
    return body["data"]


async def create_course(client: httpx.AsyncClient, title: str = "Algebra", **extra: Any) -> dict:
    resp = await client.post("/api/instructor/courses", json={"title": title, **extra})
    assert resp.status_code == 201, resp.text
    return data(resp)


async def create_section(client: httpx.AsyncClient, course_id: str, title: str, **extra: Any) -> dict:
    resp = await client.post(f"/api/instructor/courses/{course_id}/sections", json={"title": title, **extra})
    assert resp.status_code == 201, resp.text
    return data(resp)


async def create_lesson(client: httpx.AsyncClient, section_id: str, title: str, **extra: Any) -> dict:
    resp = await client.post(f"/api/instructor/sections/{section_id}/lessons", json={"title": title, **extra})
    assert resp.status_code == 201, resp.text
    return data(resp)


async def create_quiz(client: httpx.AsyncClient, section_id: str, title: str = "Quiz", **extra: Any) -> dict:
    resp = await client.post(f"/api/instructor/sections/{section_id}/quizzes", json={"title": title, **extra})
    assert resp.status_code == 201, resp.text
    return data(resp)


async def create_question(client: httpx.AsyncClient, quiz_id: str, **fields: Any) -> dict:
    resp = await client.post(f"/api/instructor/quizzes/{quiz_id}/questions", json=fields)
    assert resp.status_code == 201, resp.text
    return data(resp)


async def seed_quiz_course(
    client: httpx.AsyncClient,
    questions: List[Dict[str, Any]],
    *,
    quiz: Optional[Dict[str, Any]] = None,
    lessons: int = 1,
) -> Dict[str, Any]:
    """Create and publish a free course with one section, `lessons` lessons and one quiz."""
    course = await create_course(client, "Seeded course")
    section = await create_section(client, course["id"], "Basics")
    lesson_rows = [await create_lesson(client, section["id"], f"Lesson {i + 1}", content="Read me") for i in range(lessons)]
    quiz_row = await create_quiz(client, section["id"], "Check", **(quiz or {}))
    question_rows = [await create_question(client, quiz_row["id"], **q) for q in questions]
    resp = await client.post(f"/api/instructor/courses/{course['id']}/publish")
    assert resp.status_code == 200, resp.text
    return {"course": course, "section": section, "lessons": lesson_rows, "quiz": quiz_row, "questions": question_rows}
