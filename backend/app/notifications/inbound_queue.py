"""
inbound_queue.py — Inbound notification queue contract and in-memory reference.

A delivery is acknowledged once processed, or rejected with or without
requeue. InMemoryQueue records every ack and reject for inspection.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Protocol


class QueueDelivery(Protocol):
    body: Any

    async def ack(self) -> None:
        ...

    async def reject(self, requeue: bool) -> None:
        ...


class MessageQueue(Protocol):
    async def publish(self, body: Any) -> None:
        ...

    async def get(self) -> QueueDelivery:
        ...


class InMemoryDelivery:
    def __init__(self, queue: "InMemoryQueue", body: Any, redelivered: bool = False):
        self._queue = queue
        self.body = body
        self.redelivered = redelivered
        self.settled: Optional[str] = None

    async def ack(self) -> None:
        self.settled = "ack"
        self._queue.acked.append(self.body)

    async def reject(self, requeue: bool) -> None:
        self.settled = "requeue" if requeue else "reject"
        if requeue:
            await self._queue._put(self.body, redelivered=True)
        else:
            self._queue.dead_letters.append(self.body)


class InMemoryQueue:
    """asyncio.Queue-backed message queue."""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.acked: List[Any] = []
        self.dead_letters: List[Any] = []

    async def publish(self, body: Any) -> None:
        await self._put(body)

    async def _put(self, body: Any, redelivered: bool = False) -> None:
        await self._queue.put(InMemoryDelivery(self, body, redelivered))

    async def get(self) -> InMemoryDelivery:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()
