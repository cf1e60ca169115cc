"""Typed failures raised by the agent runtime."""
from __future__ import annotations

from typing import Iterable, Optional, Tuple


class AgentRuntimeError(Exception):
    """Base class for every error surfaced by the runtime."""


class SetupError(AgentRuntimeError):
    """An agent failed its ``setup()`` hook."""

    def __init__(self, agent_name: str, cause: Optional[BaseException] = None) -> None:
        self.agent_name = agent_name
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Agent '{agent_name}' failed setup{detail}")


class AgentNotReadyError(AgentRuntimeError):
    """An agent was asked to execute outside of the READY state."""

    def __init__(self, agent_name: str, state: object) -> None:
        self.agent_name = agent_name
        self.state = state
        state_name = getattr(state, "name", state)
        super().__init__(f"Agent '{agent_name}' is not ready (state={state_name})")


class SelectionError(AgentRuntimeError):
    """Base class for agent selection failures."""


class NoMatchingAgentError(SelectionError):
    """No registered agent is relevant enough for a task description."""

    def __init__(self, description: str, threshold: float) -> None:
        self.description = description
        self.threshold = threshold
        super().__init__(
            f"No agent scored above {threshold} for task: {description[:80]!r}"
        )


class UnknownAgentError(SelectionError):
    """One or more explicitly requested agents are not registered."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names: Tuple[str, ...] = tuple(names)
        super().__init__(f"Unknown agent(s): {', '.join(self.names)}")


class ExecutionTimeoutError(AgentRuntimeError):
    """A single ``process`` attempt exceeded its deadline."""

    def __init__(self, agent_name: str, task_id: str, timeout: float) -> None:
        self.agent_name = agent_name
        self.task_id = task_id
        self.timeout = timeout
        super().__init__(
            f"Agent '{agent_name}' timed out after {timeout:.3f}s on task {task_id}"
        )


class ExecutionFailure(AgentRuntimeError):
    """An agent's ``process`` raised."""

    def __init__(self, agent_name: str, task_id: str, cause: BaseException) -> None:
        self.agent_name = agent_name
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Agent '{agent_name}' failed task {task_id}: {cause}")


class RuntimeStateError(AgentRuntimeError):
    """An operation is not allowed in the runtime's current state."""


class RuntimeNotAcceptingTasksError(RuntimeStateError):
    """Task submitted while the runtime is not RUNNING."""

    def __init__(self, state: object) -> None:
        self.state = state
        state_name = getattr(state, "name", state)
        super().__init__(f"Runtime is not accepting tasks (state={state_name})")


class RegistrationError(AgentRuntimeError):
    """Invalid agent registration."""


class DuplicateAgentError(RegistrationError):
    """A different descriptor was registered under an existing name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Agent '{name}' is already registered")


class SessionHostError(AgentRuntimeError):
    """The external session host failed to provision, poll or tear down."""


class WorkflowError(AgentRuntimeError):
    """A workflow definition cannot be executed."""
