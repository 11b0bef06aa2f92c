"""Fire-and-forget notification delivery (in-app feed, websocket push, email)."""

from .dispatch import Notification, NotificationDispatcher

__all__ = ["Notification", "NotificationDispatcher"]
