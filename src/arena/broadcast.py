"""Broadcast port: one publish per ply.

QueueBroadcaster fans payloads out to per-match asyncio queues, the same
shape a WebSocket or SSE endpoint would drain.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Broadcaster(ABC):
    @abstractmethod
    async def publish(self, match_id: str, payload: dict) -> None:
        """Deliver ``{"match": ..., "latest_ply": ...}`` to subscribers."""


class QueueBroadcaster(Broadcaster):
    def __init__(self, maxsize: int = 0):
        self._maxsize = maxsize
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, match_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.setdefault(match_id, []).append(queue)
        return queue

    def unsubscribe(self, match_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(match_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(match_id, None)

    async def publish(self, match_id: str, payload: dict) -> None:
        for queue in self._subscribers.get(match_id, []):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("Dropping update for slow subscriber on match %s", match_id)
