"""
Instructor API: authoring with dense ordering, delete/edit guards, publishing
and ownership.
"""
from __future__ import annotations

import uuid

import pytest

from api_helpers import client_for, create_course, create_lesson, create_question, create_quiz, create_section, data, seed_quiz_course

pytestmark = pytest.mark.anyio("asyncio")

CHOICE = {"content": "2 + 2?", "type": "SINGLE_CHOICE", "options": ["3", "4"], "correctAnswer": "4", "points": 10, "explanation": "Count"}


def _orders(rows):
    return [(r["title"], r["order"]) for r in rows]


@pytest.mark.anyio
async def test_sections_append_delete_and_compact(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        assert course["status"] == "DRAFT"
        created = [await create_section(client, course["id"], t) for t in ("A", "B", "C")]
        assert [s["order"] for s in created] == [1, 2, 3]

        resp = await client.delete(f"/api/instructor/sections/{created[0]['id']}")
        assert resp.status_code == 200
        assert resp.json()["data"] is None

        listed = data(await client.get(f"/api/instructor/courses/{course['id']}/sections"))
        assert _orders(listed) == [("B", 1), ("C", 2)]

        appended = await create_section(client, course["id"], "D")
        assert appended["order"] == 3


@pytest.mark.anyio
async def test_section_with_content_is_not_deleted(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        section = await create_section(client, course["id"], "A")
        await create_lesson(client, section["id"], "Intro")

        resp = await client.delete(f"/api/instructor/sections/{section['id']}")
        body = resp.json()
        assert resp.status_code == 400
        assert body["code"] == "SECTION_HAS_CONTENT"
        assert body["details"] == {"lessons": 1, "quizzes": 0, "assignments": 0}


@pytest.mark.anyio
async def test_reorder_sections_requires_exact_permutation(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        ids = [(await create_section(client, course["id"], t))["id"] for t in ("A", "B", "C")]

        ok = await client.put(f"/api/instructor/courses/{course['id']}/sections/reorder", json={"sectionIds": [ids[2], ids[0], ids[1]]})
        assert _orders(data(ok)) == [("C", 1), ("A", 2), ("B", 3)]

        bad = await client.put(f"/api/instructor/courses/{course['id']}/sections/reorder", json={"sectionIds": [ids[0], ids[0], ids[1]]})
        assert bad.status_code == 400
        assert bad.json()["code"] == "INVALID_SECTION_IDS"
        assert bad.json()["details"]["duplicates"] == [ids[0]]

        listed = data(await client.get(f"/api/instructor/courses/{course['id']}/sections"))
        assert _orders(listed) == [("C", 1), ("A", 2), ("B", 3)]


@pytest.mark.anyio
async def test_lessons_reorder_and_delete(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        section = await create_section(client, course["id"], "A")
        lessons = [await create_lesson(client, section["id"], t) for t in ("L1", "L2", "L3")]
        resp = await client.put(
            f"/api/instructor/sections/{section['id']}/lessons/reorder", json={"lessonIds": [l["id"] for l in reversed(lessons)]}
        )
        assert _orders(data(resp)) == [("L3", 1), ("L2", 2), ("L1", 3)]
        await client.delete(f"/api/instructor/lessons/{lessons[2]['id']}")
        structure = data(await client.get(f"/api/instructor/courses/{course['id']}/structure"))
        assert _orders(structure["sections"][0]["lessons"]) == [("L3", 1), ("L2", 2)]


@pytest.mark.anyio
async def test_question_validation_and_answer_key_for_instructor(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        section = await create_section(client, course["id"], "A")
        quiz = await create_quiz(client, section["id"])
        assert (quiz["passingScore"], quiz["maxAttempts"], quiz["showResults"]) == (70, 3, True)

        bad = await client.post(f"/api/instructor/quizzes/{quiz['id']}/questions", json={**CHOICE, "correctAnswer": "5"})
        assert bad.status_code == 400
        assert bad.json()["code"] == "VALIDATION_ERROR"
        assert bad.json()["details"] == {"field": "correctAnswer"}

        await create_question(client, quiz["id"], **CHOICE)
        tf = await create_question(client, quiz["id"], content="Sky is blue", type="TRUE_FALSE", correctAnswer=True)
        assert tf["options"] == ["true", "false"]
        assert tf["correctAnswer"] == "true"
        assert tf["order"] == 2

        full = data(await client.get(f"/api/instructor/quizzes/{quiz['id']}"))
        assert [q["correctAnswer"] for q in full["questions"]] == ["4", "true"]


@pytest.mark.anyio
async def test_publish_requires_valid_content(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        course = await create_course(client)
        resp = await client.post(f"/api/instructor/courses/{course['id']}/publish")
        assert resp.status_code == 400
        assert resp.json()["code"] == "COURSE_CONTENT_INVALID"

        section = await create_section(client, course["id"], "A")
        await create_quiz(client, section["id"])
        report = data(await client.get(f"/api/instructor/courses/{course['id']}/validation"))
        assert report["isValid"] is False
        assert [e["code"] for e in report["errors"]] == ["QUIZ_WITHOUT_QUESTIONS"]


@pytest.mark.anyio
async def test_stats_reflect_content(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        seeded = await seed_quiz_course(client, [CHOICE], lessons=2)
        stats = data(await client.get(f"/api/instructor/courses/{seeded['course']['id']}/stats"))
        assert stats["lessons"] == 2
        assert stats["questions"] == 1
        assert stats["totalQuizPoints"] == 10
        assert stats["publishedSections"] == 1


@pytest.mark.anyio
async def test_quiz_scoring_settings_lock_after_first_attempt(login):
    teacher = login("teacher-1", "instructor")
    student = login("student-1", "student")
    async with client_for(teacher) as t:
        seeded = await seed_quiz_course(t, [CHOICE])
    quiz_id = seeded["quiz"]["id"]
    async with client_for(student) as s:
        assert (await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")).status_code == 201
        assert (await s.post(f"/api/learning/quizzes/{quiz_id}/attempts")).status_code == 201

    async with client_for(teacher) as t:
        locked = await t.patch(f"/api/instructor/quizzes/{quiz_id}", json={"passingScore": 50, "title": "New"})
        assert locked.status_code == 400
        assert locked.json()["code"] == "QUIZ_HAS_ATTEMPTS"
        assert locked.json()["details"] == {"fields": ["passingScore"]}

        same = await t.patch(f"/api/instructor/quizzes/{quiz_id}", json={"passingScore": 70, "title": "New"})
        assert data(same)["title"] == "New"

        q = seeded["questions"][0]
        points = await t.patch(f"/api/instructor/questions/{q['id']}", json={"points": 20})
        assert points.json()["code"] == "QUESTION_HAS_ATTEMPTS"

        delete = await t.delete(f"/api/instructor/quizzes/{quiz_id}")
        assert delete.json()["code"] == "QUIZ_HAS_ATTEMPTS"


@pytest.mark.anyio
async def test_role_and_ownership_checks(login):
    owner = login("teacher-1", "instructor")
    other = login("teacher-2", "instructor")
    student = login("student-1", "student")
    async with client_for(owner) as client:
        course = await create_course(client)

    async with client_for(other) as client:
        resp = await client.get(f"/api/instructor/courses/{course['id']}/sections")
        assert resp.status_code == 403
        assert resp.json()["code"] == "COURSE_ACCESS_DENIED"
        missing = await client.get(f"/api/instructor/courses/{uuid.uuid4()}/sections")
        assert missing.status_code == 404
        assert missing.json()["code"] == "COURSE_NOT_FOUND"
        bad_id = await client.get("/api/instructor/courses/not-a-uuid/sections")
        assert bad_id.status_code == 400
        assert bad_id.json()["code"] == "INVALID_ID"

    async with client_for(student) as client:
        resp = await client.post("/api/instructor/courses", json={"title": "Nope"})
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"


@pytest.mark.anyio
async def test_course_validation_errors_name_the_field(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        resp = await client.post("/api/instructor/courses", json={"title": "  ", "price": 5})
        assert resp.status_code == 400
        assert resp.json()["details"] == {"field": "title"}
        resp = await client.post("/api/instructor/courses", json={"title": "Ok", "price": -1})
        assert resp.json()["details"] == {"field": "price"}


@pytest.mark.anyio
async def test_non_finite_numbers_are_validation_errors(login):
    sid = login("teacher-1", "instructor")
    json_body = {"Content-Type": "application/json"}
    async with client_for(sid) as client:
        course = await create_course(client)
        section = await create_section(client, course["id"], "A")
        for raw, field in (("Infinity", "passingScore"), ("NaN", "passingScore"), ("-Infinity", "maxAttempts")):
            resp = await client.post(
                f"/api/instructor/sections/{section['id']}/quizzes",
                content=f'{{"title": "Q", "{field}": {raw}}}',
                headers=json_body,
            )
            assert resp.status_code == 400, resp.text
            assert resp.json()["code"] == "VALIDATION_ERROR"
            assert resp.json()["details"] == {"field": field}

        resp = await client.post("/api/instructor/courses", content='{"title": "Ok", "price": Infinity}', headers=json_body)
        assert resp.status_code == 400
        assert resp.json()["details"] == {"field": "price"}
        resp = await client.patch(f"/api/instructor/courses/{course['id']}", content='{"price": 1e400}', headers=json_body)
        assert resp.json()["details"] == {"field": "price"}
        assert data(await client.get(f"/api/instructor/courses/{course['id']}/structure"))["price"] == 0
