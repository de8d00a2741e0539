"""Concurrency controls for conversation turns."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar

T = TypeVar("T")


class TurnGate:
    """Serialize turns on one conversation using an asyncio.Semaphore.

    A conversation engine mutates its history on every turn, so at most one
    turn may be in flight. Later callers wait and run strictly in arrival
    order (asyncio semaphores wake waiters FIFO).
    """

    def __init__(self, max_concurrent: Optional[int] = None) -> None:
        self._limit = int(max_concurrent) if max_concurrent is not None else 1
        self._semaphore = asyncio.Semaphore(self._limit)
        self._waiting = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def busy(self) -> bool:
        return self._semaphore.locked()

    @property
    def waiting(self) -> int:
        """Turns queued behind the one currently running."""
        return self._waiting

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        try:
            yield
        finally:
            self._semaphore.release()

    async def run(self, coro: Awaitable[T]) -> T:
        async with self.acquire():
            return await coro
