"""
Notification dispatcher.

Why:
    Content and grading events notify users through several channels. Delivery
    is best-effort: routes schedule `deliver` after the response and every
    channel failure is logged without affecting other channels or the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger("educademy.notifications")


@dataclass(frozen=True)
class Notification:
    """A structured message for one recipient (or everybody when `recipient_id` is None).

    `email` is set only when the triggering request knows the recipient's address.
    """

    type: str
    title: str
    message: str
    recipient_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    email: Optional[str] = None
    channels: Optional[Sequence[str]] = None


class ChannelProtocol(Protocol):
    name: str

    async def send(self, notification: Notification) -> None:
        ...


class NotificationDispatcher:
    def __init__(self, channels: Sequence[ChannelProtocol] = ()) -> None:
        self._channels: List[ChannelProtocol] = list(channels)

    @property
    def channel_names(self) -> List[str]:
        return [c.name for c in self._channels]

    async def deliver(self, notification: Notification) -> List[str]:
        """Send through every applicable channel; returns the names that succeeded."""
        delivered: List[str] = []
        for channel in self._channels:
            if notification.channels is not None and channel.name not in notification.channels:
                continue
            try:
                await channel.send(notification)
            except Exception as exc:
                logger.warning(
                    "Notification delivery failed channel=%s type=%s recipient=%s err=%s",
                    channel.name,
                    notification.type,
                    notification.recipient_id,
                    exc.__class__.__name__,
                )
                continue
            delivered.append(channel.name)
        return delivered

    async def deliver_all(self, notifications: Sequence[Notification]) -> None:
        for notification in notifications:
            await self.deliver(notification)
