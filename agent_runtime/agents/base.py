"""Base agent definition used by the orchestrator."""
from __future__ import annotations

import abc
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from agent_runtime.core.errors import AgentNotReadyError, SetupError
from agent_runtime.core.models import AgentDescriptor, AgentState, AgentStatus, Task

logger = logging.getLogger(__name__)

_CLOSED = (AgentState.SHUTTING_DOWN, AgentState.TERMINATED)


class Agent(abc.ABC):
    """Abstract agent encapsulating lifecycle hooks and task processing.

    Subclasses implement ``process`` and optionally ``setup``/``cleanup``.
    Callers never invoke ``process`` directly; they go through
    ``execution_slot`` (or ``execute``), which enforces that one instance
    runs at most one task at a time.
    """

    def __init__(self, descriptor: AgentDescriptor) -> None:
        self.descriptor = descriptor
        self.task_count = 0
        self.last_error: Optional[str] = None
        self._state = AgentState.UNINITIALIZED
        self._state_changed = asyncio.Condition()
        self._setup_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def state(self) -> AgentState:
        return self._state

    async def initialize(self) -> bool:
        """Run ``setup`` once per instance lifetime.

        Returns ``True`` if this call performed setup and ``False`` if the
        instance was already initialized.
        """
        async with self._setup_lock:
            if self._state in _CLOSED:
                raise AgentNotReadyError(self.name, self._state)
            if self._state is not AgentState.UNINITIALIZED:
                return False
            logger.info("Initializing agent %s", self.name)
            try:
                await self.setup()
            except Exception as exc:
                self.last_error = str(exc)
                logger.error("Agent %s failed setup: %s", self.name, exc)
                raise SetupError(self.name, exc) from exc
            await self._transition(AgentState.READY)
            return True

    @asynccontextmanager
    async def execution_slot(self) -> AsyncIterator[None]:
        """Hold the instance in EXECUTING for the duration of the block.

        Waits while another call is executing on this instance.
        """
        async with self._state_changed:
            await self._state_changed.wait_for(lambda: self._state is not AgentState.EXECUTING)
            if self._state is not AgentState.READY:
                raise AgentNotReadyError(self.name, self._state)
            self._state = AgentState.EXECUTING
            self.task_count += 1
        try:
            yield
        finally:
            async with self._state_changed:
                if self._state is AgentState.EXECUTING:
                    self._state = AgentState.READY
                self._state_changed.notify_all()

    async def execute(self, task: Task) -> Any:
        """Process a task on a READY instance, failing fast otherwise."""
        if self._state is not AgentState.READY:
            raise AgentNotReadyError(self.name, self._state)
        async with self.execution_slot():
            return await self.process(task)

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Let an in-flight call finish (up to ``grace`` seconds), then clean up."""
        async with self._state_changed:
            if self._state in _CLOSED:
                return
            was_initialized = self._state is not AgentState.UNINITIALIZED
            if self._state is AgentState.EXECUTING and grace:
                try:
                    await asyncio.wait_for(
                        self._state_changed.wait_for(
                            lambda: self._state is not AgentState.EXECUTING
                        ),
                        timeout=grace,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Agent %s still executing after %.1fs grace", self.name, grace)
            self._state = AgentState.SHUTTING_DOWN
            self._state_changed.notify_all()

        logger.info("Shutting down agent %s", self.name)
        try:
            if was_initialized:
                await self.cleanup()
        except Exception as exc:
            self.last_error = str(exc)
            raise
        finally:
            await self._transition(AgentState.TERMINATED)

    def status(self, queue_depth: int = 0) -> AgentStatus:
        return AgentStatus(
            name=self.name,
            role=self.descriptor.role,
            category=self.descriptor.category,
            state=self._state,
            queue_depth=queue_depth,
            task_count=self.task_count,
            last_error=self.last_error,
        )

    async def _transition(self, state: AgentState) -> None:
        async with self._state_changed:
            self._state = state
            self._state_changed.notify_all()

    @abc.abstractmethod
    async def process(self, task: Task) -> Any:
        """Compute this agent's output for a task."""

    async def setup(self) -> None:
        """Hook executed once before the first task."""
        return None

    async def cleanup(self) -> None:
        """Hook executed when the agent shuts down."""
        return None
