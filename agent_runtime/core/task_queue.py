"""Priority-ordered, unbounded buffer of pending tasks."""
from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import List, Optional, Tuple

from agent_runtime.core.models import Task


class TaskQueue:
    """Tasks ordered by priority, FIFO within one priority.

    ``enqueue`` never blocks and nothing is ever evicted; callers that need
    backpressure refuse submissions upstream. ``dequeue_next`` returns
    ``None`` instead of waiting; use ``wait_for_task`` as the wake signal.
    """

    def __init__(self) -> None:
        self._heap: List[Tuple[int, int, Task]] = []
        self._arrivals = itertools.count()
        self._not_empty = asyncio.Event()

    def enqueue(self, task: Task) -> None:
        heapq.heappush(self._heap, (task.priority.rank, next(self._arrivals), task))
        self._not_empty.set()

    def dequeue_next(self) -> Optional[Task]:
        if not self._heap:
            return None
        _, _, task = heapq.heappop(self._heap)
        if not self._heap:
            self._not_empty.clear()
        return task

    def peek(self) -> Optional[Task]:
        return self._heap[0][2] if self._heap else None

    async def wait_for_task(self) -> None:
        """Suspend until at least one task is queued."""
        while not self._heap:
            self._not_empty.clear()
            await self._not_empty.wait()

    def drain(self) -> List[Task]:
        """Remove every queued task, returned in dequeue order."""
        drained = [task for _, _, task in sorted(self._heap)]
        self._heap.clear()
        self._not_empty.clear()
        return drained

    def snapshot(self) -> List[Task]:
        return [task for _, _, task in sorted(self._heap)]

    @property
    def depth(self) -> int:
        return len(self._heap)

    def __len__(self) -> int:
        return len(self._heap)
