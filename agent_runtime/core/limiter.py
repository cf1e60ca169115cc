"""Global bound on simultaneously running executions."""
from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict


@dataclass(frozen=True, slots=True)
class Permit:
    """Proof that the holder owns one concurrency slot."""

    permit_id: int


class ConcurrencyLimiter:
    """Hands out at most ``max_concurrent`` permits at a time."""

    def __init__(self, max_concurrent: int = 5) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._held: Dict[int, Permit] = {}
        self._ids = itertools.count(1)
        self._released = asyncio.Event()
        self._peak = 0

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def in_use(self) -> int:
        return len(self._held)

    @property
    def available(self) -> int:
        return self._max - len(self._held)

    @property
    def peak(self) -> int:
        """Highest number of permits ever held at once."""
        return self._peak

    async def acquire(self) -> Permit:
        """Suspend until a slot is free and claim it."""
        await self._semaphore.acquire()
        permit = Permit(next(self._ids))
        self._held[permit.permit_id] = permit
        self._peak = max(self._peak, len(self._held))
        return permit

    def release(self, permit: Permit) -> None:
        if self._held.pop(permit.permit_id, None) is None:
            raise ValueError(f"Permit {permit.permit_id} is not held")
        self._semaphore.release()
        self._released.set()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[Permit]:
        """Hold one permit for the duration of the block."""
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)

    async def wait_for_capacity(self) -> None:
        """Suspend until at least one slot is free, without claiming it."""
        while not self.available:
            self._released.clear()
            await self._released.wait()
