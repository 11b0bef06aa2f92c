"""
Learning API (student side): enrollment, course content, lesson completion,
quiz attempts with admission control, progress, certificates and assignment
submissions.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from api_helpers import client_for, create_course, create_lesson, create_section, data, seed_quiz_course

pytestmark = pytest.mark.anyio("asyncio")

CHOICE = {"content": "2 + 2?", "type": "SINGLE_CHOICE", "options": ["3", "4"], "correctAnswer": "4", "points": 10, "explanation": "Count"}
TRUE_FALSE = {"content": "Water is wet", "type": "TRUE_FALSE", "correctAnswer": True, "points": 10}


async def _seed(login, *, quiz=None, lessons=1, questions=(CHOICE, TRUE_FALSE)):
    teacher = login("teacher-1", "instructor")
    async with client_for(teacher) as client:
        seeded = await seed_quiz_course(client, list(questions), quiz=quiz, lessons=lessons)
    seeded["teacher"] = teacher
    return seeded


def _answers(seeded, *values):
    return [{"questionId": q["id"], "answer": v} for q, v in zip(seeded["questions"], values)]


@pytest.mark.anyio
async def test_enroll_rules(login):
    seeded = await _seed(login)
    async with client_for(seeded["teacher"]) as t:
        draft = await create_course(t, "Draft")
        paid = await create_course(t, "Paid", price=49.99)
        section = await create_section(t, paid["id"], "Only")
        await create_lesson(t, section["id"], "L", content="x")
        assert (await t.post(f"/api/instructor/courses/{paid['id']}/publish")).status_code == 200

    student = login("student-1", "student")
    async with client_for(student) as s:
        resp = await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        assert resp.status_code == 201
        enrollment = data(resp)
        assert (enrollment["status"], enrollment["source"], enrollment["progressPercentage"]) == ("ACTIVE", "FREE", 0)

        again = await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        assert again.status_code == 400 and again.json()["code"] == "ALREADY_ENROLLED"

        unavailable = await s.post(f"/api/learning/courses/{draft['id']}/enroll")
        assert unavailable.json()["code"] == "COURSE_NOT_AVAILABLE"

        payment = await s.post(f"/api/learning/courses/{paid['id']}/enroll")
        assert payment.json()["code"] == "PAYMENT_REQUIRED"

        mine = data(await s.get("/api/learning/courses"))
        assert [c["courseTitle"] for c in mine] == ["Seeded course"]


@pytest.mark.anyio
async def test_content_requires_enrollment_and_hides_answer_keys(login):
    seeded = await _seed(login)
    student = login("student-1", "student")
    async with client_for(student) as s:
        denied = await s.get(f"/api/learning/courses/{seeded['course']['id']}/content")
        assert denied.status_code == 403
        assert denied.json()["code"] == "NOT_ENROLLED"

        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        content = data(await s.get(f"/api/learning/courses/{seeded['course']['id']}/content"))
        section = content["course"]["sections"][0]
        assert section["lessons"][0]["isCompleted"] is False
        assert section["quizzes"][0]["isPassed"] is False
        for question in section["quizzes"][0]["questions"]:
            assert "correctAnswer" not in question
            assert "explanation" not in question


@pytest.mark.anyio
async def test_attempt_lifecycle_with_review(login):
    seeded = await _seed(login)
    quiz_id = seeded["quiz"]["id"]
    student = login("student-1", "student", email="s1@example.com")
    async with client_for(student) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")

        started = await s.post(f"/api/learning/quizzes/{quiz_id}/attempts")
        assert started.status_code == 201
        body = data(started)
        assert body["attempt"]["status"] == "STARTED"
        assert body["attempt"]["attemptNumber"] == 1
        assert all("correctAnswer" not in q for q in body["questions"])

        in_progress = await s.post(f"/api/learning/quizzes/{quiz_id}/attempts")
        assert in_progress.json()["code"] == "ATTEMPT_IN_PROGRESS"

        attempt_id = body["attempt"]["id"]
        submitted = await s.post(f"/api/learning/attempts/{attempt_id}/submit", json={"answers": _answers(seeded, "4", "false")})
        result = data(submitted)
        assert result["status"] == "GRADED"
        assert result["score"] == {"earnedPoints": 10, "totalPoints": 20, "percentage": 50.0, "passingPoints": 14, "isPassed": False}
        assert [r["isCorrect"] for r in result["review"]] == [True, False]
        assert result["review"][0]["correctAnswer"] == "4"

        twice = await s.post(f"/api/learning/attempts/{attempt_id}/submit", json={"answers": _answers(seeded, "4", "true")})
        assert twice.status_code == 400
        assert twice.json()["code"] == "ATTEMPT_ALREADY_SUBMITTED"

        history = data(await s.get(f"/api/learning/quizzes/{quiz_id}/attempts"))
        assert [a["attemptNumber"] for a in history] == [1]

        feed = data(await s.get("/api/notifications"))
        assert [n["type"] for n in feed] == ["quiz_completed"]
        assert feed[0]["data"]["quizId"] == quiz_id


@pytest.mark.anyio
async def test_review_is_withheld_when_quiz_disallows_it(login):
    seeded = await _seed(login, quiz={"allowReview": False})
    student = login("student-1", "student")
    async with client_for(student) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        resp = await s.post(f"/api/learning/quizzes/{seeded['quiz']['id']}/submit", json={"answers": _answers(seeded, "4", "true")})
        assert resp.status_code == 201
        assert "review" not in data(resp)


@pytest.mark.anyio
async def test_max_attempts_rejection_writes_nothing(login, memory_tables):
    seeded = await _seed(login, quiz={"maxAttempts": 1})
    quiz_id = seeded["quiz"]["id"]
    student = login("student-1", "student")
    async with client_for(student) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        first = await s.post(f"/api/learning/quizzes/{quiz_id}/submit", json={"answers": _answers(seeded, "3", "false")})
        assert first.status_code == 201

        second = await s.post(f"/api/learning/quizzes/{quiz_id}/submit", json={"answers": _answers(seeded, "4", "true")})
        assert second.status_code == 400
        assert second.json()["code"] == "MAX_ATTEMPTS_EXCEEDED"
        assert second.json()["details"] == {"maxAttempts": 1, "attemptsUsed": 1}

        start = await s.post(f"/api/learning/quizzes/{quiz_id}/attempts")
        assert start.json()["code"] == "MAX_ATTEMPTS_EXCEEDED"

    assert len(memory_tables.attempts) == 1
    assert len(memory_tables.answers) == 2


@pytest.mark.anyio
async def test_invalid_answers_and_foreign_attempts(login):
    seeded = await _seed(login)
    owner = login("student-1", "student")
    intruder = login("student-2", "student")
    async with client_for(owner) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        attempt = data(await s.post(f"/api/learning/quizzes/{seeded['quiz']['id']}/attempts"))["attempt"]
        bad = await s.post(f"/api/learning/attempts/{attempt['id']}/submit", json={"answers": {"q": "4"}})
        assert bad.status_code == 400
        assert bad.json()["code"] == "INVALID_ANSWERS_FORMAT"
        dup = _answers(seeded, "4") * 2
        assert (await s.post(f"/api/learning/attempts/{attempt['id']}/submit", json={"answers": dup})).json()["code"] == "INVALID_ANSWERS_FORMAT"

    async with client_for(intruder) as s:
        resp = await s.post(f"/api/learning/attempts/{attempt['id']}/submit", json={"answers": _answers(seeded, "4", "true")})
        assert resp.status_code == 403
        assert resp.json()["code"] == "ATTEMPT_UNAUTHORIZED"


@pytest.mark.anyio
async def test_progress_reaches_certificate(login):
    seeded = await _seed(login, lessons=1, questions=(CHOICE,))
    student = login("student-1", "student", email="s1@example.com")
    lesson_id = seeded["lessons"][0]["id"]
    async with client_for(student) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")

        done = await s.post(f"/api/learning/lessons/{lesson_id}/complete")
        assert done.json()["message"] == "Lesson completed"
        assert data(done)["enrollment"]["progressPercentage"] == 50.0
        assert data(done)["certificate"] is None

        repeat = await s.post(f"/api/learning/lessons/{lesson_id}/complete")
        assert repeat.json()["message"] == "Lesson already completed"
        assert data(repeat)["enrollment"]["lessonsCompleted"] == 1

        passed = await s.post(f"/api/learning/quizzes/{seeded['quiz']['id']}/submit", json={"answers": _answers(seeded, "4")})
        assert data(passed)["score"]["isPassed"] is True

        mine = data(await s.get("/api/learning/courses"))
        assert mine[0]["progressPercentage"] == 100.0
        assert mine[0]["quizzesPassed"] == 1

        content = data(await s.get(f"/api/learning/courses/{seeded['course']['id']}/content"))
        assert content["course"]["sections"][0]["quizzes"][0]["isPassed"] is True

        feed = data(await s.get("/api/notifications"))
        certificate = [n for n in feed if n["type"] == "certificate_issued"]
        assert len(certificate) == 1
        assert certificate[0]["data"]["certificateCode"].startswith("CERT-")


@pytest.mark.anyio
async def test_assignment_submission_rules(login):
    seeded = await _seed(login)
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    async with client_for(seeded["teacher"]) as t:
        section_id = seeded["section"]["id"]
        strict = data(await t.post(f"/api/instructor/sections/{section_id}/assignments", json={"title": "Essay", "dueDate": past}))
        lenient = data(
            await t.post(
                f"/api/instructor/sections/{section_id}/assignments",
                json={"title": "Report", "dueDate": past, "allowLateSubmission": True},
            )
        )
        assert (strict["order"], lenient["order"]) == (1, 2)

    student = login("student-1", "student")
    async with client_for(student) as s:
        await s.post(f"/api/learning/courses/{seeded['course']['id']}/enroll")
        late = await s.post(f"/api/learning/assignments/{strict['id']}/submissions", json={"content": "My essay"})
        assert late.status_code == 400
        assert late.json()["code"] == "ASSIGNMENT_PAST_DUE"

        ok = await s.post(f"/api/learning/assignments/{lenient['id']}/submissions", json={"content": "My report"})
        assert ok.status_code == 201
        assert data(ok)["isLate"] is True

        dup = await s.post(f"/api/learning/assignments/{lenient['id']}/submissions", json={"content": "Again"})
        assert dup.json()["code"] == "ALREADY_SUBMITTED"

        empty = await s.post(f"/api/learning/assignments/{lenient['id']}/submissions", json={"content": ""})
        assert empty.json()["code"] == "VALIDATION_ERROR"

    async with client_for(seeded["teacher"]) as t:
        locked = await t.patch(f"/api/instructor/assignments/{lenient['id']}", json={"totalPoints": 50})
        assert locked.json()["code"] == "ASSIGNMENT_HAS_SUBMISSIONS"
        assert locked.json()["details"] == {"fields": ["totalPoints"]}
        renamed = await t.patch(f"/api/instructor/assignments/{lenient['id']}", json={"title": "Final report"})
        assert data(renamed)["title"] == "Final report"

        blocked = await t.delete(f"/api/instructor/assignments/{lenient['id']}")
        assert blocked.json()["code"] == "ASSIGNMENT_HAS_SUBMISSIONS"

        reordered = data(
            await t.put(
                f"/api/instructor/sections/{seeded['section']['id']}/assignments/reorder",
                json={"assignmentIds": [lenient["id"], strict["id"]]},
            )
        )
        assert [(a["id"], a["order"]) for a in reordered] == [(lenient["id"], 1), (strict["id"], 2)]


async def _published(client, title, **extra):
    course = await create_course(client, title, **extra)
    section = await create_section(client, course["id"], "Intro")
    await create_lesson(client, section["id"], "Welcome", content="Hello", isFree=True)
    await create_lesson(client, section["id"], "Deep dive", content="Paid material", duration=30)
    assert (await client.post(f"/api/instructor/courses/{course['id']}/publish")).status_code == 200
    return course


@pytest.mark.anyio
async def test_catalog_pages_through_published_courses(login):
    teacher = login("teacher-1", "instructor")
    async with client_for(teacher) as t:
        for title in ("Algebra", "Geometry", "Statistics"):
            await _published(t, title, level="BEGINNER" if title == "Geometry" else "ADVANCED")
        await create_course(t, "Unreleased")

    async with client_for(login("student-1", "student")) as s:
        first = data(await s.get("/api/learning/catalog", params={"limit": 2}))
        assert first["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2, "hasNext": True, "hasPrev": False}
        second = data(await s.get("/api/learning/catalog", params={"limit": 2, "page": 2}))
        assert (second["pagination"]["hasNext"], second["pagination"]["hasPrev"]) == (False, True)
        titles = [c["title"] for c in first["courses"] + second["courses"]]
        assert sorted(titles) == ["Algebra", "Geometry", "Statistics"]

        found = data(await s.get("/api/learning/catalog", params={"search": "geoMETRY"}))
        assert [c["title"] for c in found["courses"]] == ["Geometry"]
        beginner = data(await s.get("/api/learning/catalog", params={"level": "beginner"}))
        assert [c["title"] for c in beginner["courses"]] == ["Geometry"]

        clamped = data(await s.get("/api/learning/catalog", params={"limit": 500, "page": "abc"}))
        assert (clamped["pagination"]["limit"], clamped["pagination"]["page"]) == (50, 1)

        bad = await s.get("/api/learning/catalog", params={"level": "expert"})
        assert bad.status_code == 400
        assert bad.json()["code"] == "INVALID_LEVEL"

    async with client_for(teacher) as t:
        assert data(await t.get("/api/learning/catalog"))["pagination"]["total"] == 3
    async with client_for() as anonymous:
        assert (await anonymous.get("/api/learning/catalog")).status_code == 401


@pytest.mark.anyio
async def test_catalog_course_outline_hides_drafts_and_paid_material(login):
    seeded = await _seed(login)
    async with client_for(seeded["teacher"]) as t:
        course = await _published(t, "Geometry")
        draft = await create_course(t, "Unreleased")

    async with client_for(login("student-1", "student")) as s:
        outline = data(await s.get(f"/api/learning/catalog/{course['id']}"))
        assert outline["title"] == "Geometry"
        assert outline["totals"] == {"sections": 1, "lessons": 2, "quizzes": 0, "assignments": 0, "duration": 30}
        free, paid = outline["sections"][0]["lessons"]
        assert (free["title"], free["content"]) == ("Welcome", "Hello")
        assert "content" not in paid

        quiz_outline = data(await s.get(f"/api/learning/catalog/{seeded['course']['id']}"))
        quiz = quiz_outline["sections"][0]["quizzes"][0]
        assert quiz == {"id": seeded["quiz"]["id"], "title": "Check", "order": 1, "questionCount": 2}
        assert "correctAnswer" not in str(quiz_outline)

        hidden = await s.get(f"/api/learning/catalog/{draft['id']}")
        assert hidden.status_code == 404
        assert hidden.json()["code"] == "COURSE_NOT_FOUND"
        malformed = await s.get("/api/learning/catalog/not-an-id")
        assert malformed.json()["code"] == "INVALID_ID"
