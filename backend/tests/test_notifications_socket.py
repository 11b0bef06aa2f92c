"""
WebSocket notification push (`/ws/notifications`).

Uses Starlette's TestClient because httpx has no WebSocket transport.
"""
from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.web import main, wiring

COOKIE = "educademy_session"


def _wait_for_socket(timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while wiring.get_hub().connected_users() == 0:
        if time.monotonic() > deadline:
            raise AssertionError("socket never registered with the hub")
        time.sleep(0.01)


def test_socket_without_session_is_closed():
    with TestClient(main.app) as client:
        with pytest.raises(WebSocketDisconnect) as err:
            with client.websocket_connect("/ws/notifications"):
                pass
    assert err.value.code == 1008


def test_socket_receives_maintenance_broadcast(login):
    student = login("student-1", "student")
    admin = login("admin-1", "admin")
    with TestClient(main.app) as client:
        with client.websocket_connect("/ws/notifications", headers={"cookie": f"{COOKIE}={student}"}) as ws:
            _wait_for_socket()
            resp = client.put(
                "/api/admin/settings",
                json={"category": "maintenance", "settings": {"enabled": True}},
                headers={"cookie": f"{COOKIE}={admin}"},
            )
            assert resp.status_code == 200
            event = ws.receive_json()
            assert event["event"] == "maintenance_mode"
            assert event["data"] == {"enabled": True}
