"""Per-user websocket fan-out.

Each connected socket owns a bounded queue; publishing never blocks. A client
that falls behind (full queue) is dropped and has to reconnect.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Set


class NotificationHub:
    def __init__(self, max_queue: int = 100) -> None:
        self._clients: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._max_queue = max_queue

    async def register(self, user_id: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        async with self._lock:
            self._clients.setdefault(user_id, set()).add(q)
        return q

    async def unregister(self, user_id: str, q: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._clients.get(user_id)
            if queues is None:
                return
            queues.discard(q)
            if not queues:
                self._clients.pop(user_id, None)

    async def publish(self, user_id: str, item: Any) -> int:
        """Queue `item` for every socket of `user_id`; returns the number of sockets reached."""
        async with self._lock:
            return self._offer(user_id, item)

    async def broadcast(self, item: Any) -> int:
        async with self._lock:
            return sum(self._offer(user_id, item) for user_id in list(self._clients))

    def _offer(self, user_id: str, item: Any) -> int:
        queues = self._clients.get(user_id) or set()
        delivered = 0
        dead = []
        for q in queues:
            try:
                q.put_nowait(item)
                delivered += 1
            except asyncio.QueueFull:
                dead.append(q)
        for q in dead:
            queues.discard(q)
        return delivered

    def connected_users(self) -> int:
        return len(self._clients)
