"""Notification channels. Each `send` may raise; the dispatcher isolates failures."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import TYPE_CHECKING, Optional, Protocol

from backend.notifications.hub import NotificationHub

if TYPE_CHECKING:  # pragma: no cover
    from backend.notifications.dispatch import Notification

logger = logging.getLogger("educademy.notifications")


class NotificationStoreProtocol(Protocol):
    def create_notification(self, *, user_id: str, type: str, title: str, message: str, data: Optional[dict]) -> dict:
        ...


class InAppChannel:
    name = "in_app"

    def __init__(self, store: NotificationStoreProtocol) -> None:
        self._store = store

    async def send(self, notification: "Notification") -> None:
        if notification.recipient_id is None:
            return
        await asyncio.to_thread(
            self._store.create_notification,
            user_id=notification.recipient_id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            data=notification.data,
        )


class WebSocketChannel:
    name = "websocket"

    def __init__(self, hub: NotificationHub) -> None:
        self._hub = hub

    async def send(self, notification: "Notification") -> None:
        event = {"event": notification.type, "title": notification.title, "message": notification.message, "data": notification.data}
        if notification.recipient_id is None:
            await self._hub.broadcast(event)
        else:
            await self._hub.publish(notification.recipient_id, event)


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: str = "no-reply@localhost"
    starttls: bool = True
    timeout: float = 10.0


class EmailChannel:
    """Send plain-text mail over SMTP in a worker thread (smtplib is blocking)."""

    name = "email"

    def __init__(self, settings: SMTPSettings) -> None:
        self._settings = settings

    def _deliver(self, to: str, subject: str, body: str) -> None:
        cfg = self._settings
        msg = EmailMessage()
        msg["From"] = cfg.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as smtp:
            if cfg.starttls:
                smtp.starttls()
            if cfg.username:
                smtp.login(cfg.username, cfg.password or "")
            smtp.send_message(msg)

    async def send(self, notification: "Notification") -> None:
        if not notification.email:
            return
        await asyncio.to_thread(self._deliver, notification.email, notification.title, notification.message)
        logger.info("Email sent type=%s", notification.type)
