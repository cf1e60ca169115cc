"""Core data models shared across runtime components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskPriority(Enum):
    """Task priority; lower rank is dequeued first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Union[str, "TaskPriority"]) -> "TaskPriority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise ValueError(f"Unknown priority '{value}'") from exc


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


class AgentState(Enum):
    """Lifecycle states of a single agent instance."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    EXECUTING = "executing"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class RuntimeState(Enum):
    """Lifecycle states of the orchestrator."""

    UNSTARTED = "unstarted"
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ErrorKind(Enum):
    """Classification of a failed attempt."""

    TIMEOUT = "timeout"
    EXCEPTION = "exception"
    SETUP = "setup"
    UNAVAILABLE = "unavailable"
    ABANDONED = "abandoned"


def normalize_tags(tags: Iterable[str]) -> FrozenSet[str]:
    return frozenset(t.strip().lower() for t in tags if t and t.strip())


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    """Identity and capability metadata for one registered agent."""

    name: str
    role: str
    category: str
    capabilities: FrozenSet[str] = frozenset()
    kind: str = "echo"
    description: str = ""
    max_retries: Optional[int] = None
    timeout: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Agent descriptor requires a name")
        object.__setattr__(self, "capabilities", normalize_tags(self.capabilities))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "category": self.category,
            "capabilities": sorted(self.capabilities),
            "kind": self.kind,
            "description": self.description,
            "maxRetries": self.max_retries,
            "timeout": self.timeout,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDescriptor":
        return cls(
            name=data["name"],
            role=data.get("role", data["name"]),
            category=data.get("category", ""),
            capabilities=frozenset(data.get("capabilities") or ()),
            kind=data.get("kind", "echo"),
            description=data.get("description", ""),
            max_retries=data.get("maxRetries"),
            timeout=data.get("timeout"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Caller-supplied knobs for one submission."""

    priority: TaskPriority = TaskPriority.MEDIUM
    deadline: Optional[datetime] = None
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    task_id: Optional[str] = None

    def resolve_deadline(self, now: datetime) -> Optional[datetime]:
        """Earliest of the absolute deadline and ``now + timeout``."""
        candidates = []
        if self.deadline is not None:
            candidates.append(self.deadline)
        if self.timeout is not None:
            candidates.append(now + timedelta(seconds=self.timeout))
        return min(candidates) if candidates else None


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of work. Immutable once submitted."""

    task_id: str
    priority: TaskPriority = TaskPriority.MEDIUM
    payload: Any = None
    description: str = ""
    deadline: Optional[datetime] = None
    context: Dict[str, Any] = field(default_factory=dict)
    max_retries: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def remaining(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds left until the deadline, or ``None`` without one."""
        if self.deadline is None:
            return None
        return (self.deadline - (now or utcnow())).total_seconds()


@dataclass(frozen=True, slots=True)
class ExecutionAttempt:
    """One try of a (Task, Agent) pair."""

    task_id: str
    agent_name: str
    attempt: int
    started_at: datetime
    finished_at: datetime
    outcome: AttemptOutcome
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    delay_before: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS

    @property
    def elapsed_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "attempt": self.attempt,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "outcome": self.outcome.value,
            "delayBefore": self.delay_before,
        }
        if self.error is not None:
            data["error"] = self.error
            data["errorKind"] = self.error_kind.value if self.error_kind else None
        return data


@dataclass(frozen=True, slots=True)
class AgentResult:
    """Terminal outcome of one agent inside a job."""

    agent_name: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0
    elapsed_ms: float = 0.0
    history: Tuple[ExecutionAttempt, ...] = ()

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "agentName": self.agent_name,
            "success": self.success,
            "attempts": self.attempts,
            "elapsedMs": round(self.elapsed_ms, 3),
        }
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
            data["errorKind"] = self.error_kind.value if self.error_kind else None
        if include_history:
            data["history"] = [attempt.to_dict() for attempt in self.history]
        return data


@dataclass(frozen=True, slots=True)
class JobResult:
    """Aggregate of every selected agent's outcome for one Task."""

    task_id: str
    success: bool
    per_agent: Tuple[AgentResult, ...]
    total_elapsed_ms: float
    retry_count: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    session_id: Optional[str] = None

    @classmethod
    def aggregate(
        cls,
        task_id: str,
        per_agent: Iterable[AgentResult],
        *,
        started_at: datetime,
        finished_at: datetime,
        session_id: Optional[str] = None,
    ) -> "JobResult":
        entries = tuple(per_agent)
        return cls(
            task_id=task_id,
            success=any(entry.success for entry in entries),
            per_agent=entries,
            total_elapsed_ms=(finished_at - started_at).total_seconds() * 1000.0,
            retry_count=sum(max(entry.attempts - 1, 0) for entry in entries),
            started_at=started_at,
            finished_at=finished_at,
            session_id=session_id,
        )

    @property
    def status(self) -> str:
        succeeded = sum(1 for entry in self.per_agent if entry.success)
        if succeeded == len(self.per_agent):
            return "completed"
        return "partial" if succeeded else "failed"

    def for_agent(self, agent_name: str) -> Optional[AgentResult]:
        return next((e for e in self.per_agent if e.agent_name == agent_name), None)

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "success": self.success,
            "status": self.status,
            "perAgent": [entry.to_dict(include_history) for entry in self.per_agent],
            "totalElapsedMs": round(self.total_elapsed_ms, 3),
            "retryCount": self.retry_count,
            "sessionId": self.session_id,
        }


@dataclass(frozen=True, slots=True)
class AgentStatus:
    name: str
    role: str
    category: str
    state: AgentState
    queue_depth: int = 0
    task_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "category": self.category,
            "state": self.state.value,
            "queueDepth": self.queue_depth,
            "taskCount": self.task_count,
            "lastError": self.last_error,
        }


@dataclass(frozen=True, slots=True)
class SystemStatus:
    """Point-in-time snapshot of the whole runtime."""

    state: RuntimeState
    total_agents: int
    queue_depth: int
    active_executions: int
    max_concurrency: int
    per_agent: Tuple[AgentStatus, ...]
    total_workflows: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "totalAgents": self.total_agents,
            "queueDepth": self.queue_depth,
            "activeExecutions": self.active_executions,
            "maxConcurrency": self.max_concurrency,
            "totalWorkflows": self.total_workflows,
            "perAgent": [status.to_dict() for status in self.per_agent],
        }
