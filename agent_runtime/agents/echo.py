"""Simple agent implementation used by the demo catalog and tests."""
from __future__ import annotations

import asyncio
import random
from typing import Any, Dict

from agent_runtime.agents.base import Agent
from agent_runtime.core.models import Task


class EchoAgent(Agent):
    """Agent that echoes the task payload back after simulated work."""

    async def process(self, task: Task) -> Dict[str, Any]:
        delay = self.descriptor.metadata.get("delay")
        if delay is None:
            delay = random.uniform(0.05, 0.2)
        await asyncio.sleep(float(delay))
        return {
            "echo": f"{self.name} heard {task.description or task.payload!r}",
            "payload": task.payload,
        }
