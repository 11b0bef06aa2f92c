"""
Response envelope, request ids, security headers, authentication middleware
and the health endpoint.
"""
from __future__ import annotations

import pytest

from api_helpers import client_for, data
from backend.cache.store import RedisCache
from backend.web import wiring

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_success_envelope_shape_and_headers(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        resp = await client.get("/api/instructor/courses", headers={"X-Request-ID": "req-123"})
    body = resp.json()
    assert set(body) == {"success", "message", "data", "meta"}
    assert body["success"] is True and body["data"] == []
    assert body["meta"]["requestId"] == "req-123"
    assert body["meta"]["executionTime"].endswith("ms")
    assert "T" in body["meta"]["timestamp"]
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["Cache-Control"] == "private, no-store"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.anyio
async def test_request_id_is_generated_when_absent(login):
    sid = login("teacher-1", "instructor")
    async with client_for(sid) as client:
        resp = await client.get("/api/instructor/courses")
    assert resp.headers["X-Request-ID"] == resp.json()["meta"]["requestId"]
    assert len(resp.headers["X-Request-ID"]) >= 32


@pytest.mark.anyio
async def test_unauthenticated_requests_get_401_envelope():
    async with client_for() as client:
        resp = await client.get("/api/learning/courses")
    body = resp.json()
    assert resp.status_code == 401
    assert body["success"] is False
    assert body["code"] == "UNAUTHENTICATED"
    assert body["data"] is None
    assert "requestId" in body["meta"]


@pytest.mark.anyio
async def test_unknown_session_cookie_is_rejected():
    async with client_for("forged-session") as client:
        resp = await client.get("/api/learning/courses")
    assert resp.status_code == 401


@pytest.mark.anyio
async def test_malformed_body_maps_to_validation_error(login):
    sid = login("admin-1", "admin")
    async with client_for(sid) as client:
        resp = await client.post("/api/admin/enrollments", json={"studentId": "s1"})
    body = resp.json()
    assert resp.status_code == 400
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"][0]["field"] == "courseId"


@pytest.mark.anyio
async def test_health_is_public_and_reports_dependencies():
    async with client_for() as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert data(resp) == {"status": "healthy", "database": "ok", "cache": "disabled"}


@pytest.mark.anyio
async def test_health_degrades_when_cache_is_down():
    class _DownCache(RedisCache):
        def __init__(self):
            pass

        def ping(self):
            raise ConnectionError("refused")

    wiring.set_cache(_DownCache())
    async with client_for() as client:
        resp = await client.get("/health")
    assert data(resp) == {"status": "degraded", "database": "ok", "cache": "unavailable"}


@pytest.mark.anyio
async def test_notification_mark_read(login):
    sid = login("student-1", "student")
    row = wiring.get_learning_repo().create_notification(user_id="student-1", type="info", title="Hi", message="m", data=None)
    async with client_for(sid) as client:
        unread = data(await client.get("/api/notifications", params={"unread": "true"}))
        assert [n["id"] for n in unread] == [row["id"]]
        marked = data(await client.post(f"/api/notifications/{row['id']}/read"))
        assert marked["isRead"] is True
        assert data(await client.get("/api/notifications", params={"unread": "true"})) == []
    other = login("student-2", "student")
    async with client_for(other) as client:
        resp = await client.post(f"/api/notifications/{row['id']}/read")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOTIFICATION_NOT_FOUND"
