"""
Reader/writer lock for asyncio.

Readers share the lock; a writer holds it alone. Waiting writers block new
readers so a steady stream of queries cannot starve a mutation.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from app.core.errors import LockTimeout


class AsyncRWLock:
    def __init__(self, name: str, timeout: Optional[float] = None):
        self.name = name
        self.timeout = timeout
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    async def _wait_for(self, predicate) -> None:
        try:
            await asyncio.wait_for(self._cond.wait_for(predicate), self.timeout)
        except asyncio.TimeoutError:
            raise LockTimeout(f"timed out waiting for lock on {self.name}") from None

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._wait_for(lambda: not self._writer and self._readers == 0)
            except LockTimeout:
                self._waiting_writers -= 1
                # readers held back by this writer may proceed now
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def locked(self) -> bool:
        return self._writer or self._readers > 0
