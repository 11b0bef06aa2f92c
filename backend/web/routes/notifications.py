"""Notification feed (HTTP) and live push (WebSocket)."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from backend.web import wiring
from backend.web.auth_utils import SESSION_COOKIE_NAME, current_sub, require_role
from backend.web.envelope import failure, success
from backend.web.serializers import camel

notifications_router = APIRouter(tags=["Notifications"])
logger = logging.getLogger("educademy.notifications")


def _clamp_pagination(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(int(limit), 100)), max(0, int(offset))


@notifications_router.get("/api/notifications")
async def list_notifications(request: Request, unread: bool = False, limit: int = 20, offset: int = 0):
    user, error = require_role(request, "student", "instructor", "admin")
    if error:
        return error
    limit, offset = _clamp_pagination(limit, offset)
    items = wiring.get_learning_repo().list_notifications(current_sub(user), unread_only=unread, limit=limit, offset=offset)
    return success(request, camel(items), message="Notifications retrieved")


@notifications_router.post("/api/notifications/{notification_id}/read")
async def mark_read(request: Request, notification_id: str):
    user, error = require_role(request, "student", "instructor", "admin")
    if error:
        return error
    row = wiring.get_learning_repo().mark_notification_read(notification_id, current_sub(user))
    if row is None:
        return failure(request, "NOTIFICATION_NOT_FOUND", "Notification not found", status_code=404)
    return success(request, camel(row), message="Notification marked as read")


@notifications_router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    """Push events for the session owner; closes with 1008 without a valid session."""
    sid = websocket.cookies.get(SESSION_COOKIE_NAME)
    rec = wiring.SESSION_STORE.get(sid) if sid else None
    if rec is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    hub = wiring.get_hub()
    queue = await hub.register(rec.sub)

    async def _pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(_pump())
    try:
        while True:
            # inbound frames are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Notification socket closed sub=%s", rec.sub)
    finally:
        sender.cancel()
        await hub.unregister(rec.sub, queue)
