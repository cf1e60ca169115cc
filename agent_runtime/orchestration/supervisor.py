"""Retry/timeout supervision of one task on one agent."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, List, Optional

from agent_runtime.agents.base import Agent
from agent_runtime.core.errors import (
    AgentNotReadyError,
    ExecutionFailure,
    ExecutionTimeoutError,
    SetupError,
)
from agent_runtime.core.limiter import ConcurrencyLimiter, Permit
from agent_runtime.core.models import (
    AgentDescriptor,
    AgentResult,
    AgentState,
    AttemptOutcome,
    ErrorKind,
    ExecutionAttempt,
    Task,
    utcnow,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# Failures that retrying the same instance cannot fix.
_TERMINAL_KINDS = (ErrorKind.SETUP, ErrorKind.UNAVAILABLE, ErrorKind.ABANDONED)


class SupervisorPhase(Enum):
    ATTEMPTING = auto()
    BACKOFF = auto()
    TERMINAL = auto()


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to retry, how long to wait, and per-attempt timeout."""

    max_retries: int = 3
    backoff_base: float = 1.0
    timeout: Optional[float] = 300.0

    def delay_for(self, attempt: int) -> float:
        """Backoff slept after the failed attempt ``attempt`` (0-based)."""
        return self.backoff_base * (2 ** attempt)

    def next_phase(self, attempt: ExecutionAttempt, deadline_passed: bool = False) -> SupervisorPhase:
        if attempt.succeeded:
            return SupervisorPhase.TERMINAL
        if attempt.error_kind in _TERMINAL_KINDS or deadline_passed:
            return SupervisorPhase.TERMINAL
        if attempt.attempt < self.max_retries:
            return SupervisorPhase.BACKOFF
        return SupervisorPhase.TERMINAL

    @classmethod
    def resolve(
        cls,
        defaults: "RetryPolicy",
        descriptor: Optional[AgentDescriptor] = None,
        task: Optional[Task] = None,
    ) -> "RetryPolicy":
        """Task options override descriptor overrides, which override defaults."""
        max_retries = defaults.max_retries
        timeout = defaults.timeout
        if descriptor is not None:
            if descriptor.max_retries is not None:
                max_retries = descriptor.max_retries
            if descriptor.timeout is not None:
                timeout = descriptor.timeout
        if task is not None and task.max_retries is not None:
            max_retries = task.max_retries
        return cls(max_retries=max_retries, backoff_base=defaults.backoff_base, timeout=timeout)


class ExecutionSupervisor:
    """Runs ``agent.process(task)`` until success or retries run out.

    Every attempt holds a limiter permit only while it runs; backoff sleeps
    happen without a permit so other tasks keep flowing. A ``permit``
    passed in by the dispatcher is consumed by the first attempt.
    """

    def __init__(
        self,
        agent: Agent,
        task: Task,
        limiter: ConcurrencyLimiter,
        policy: RetryPolicy,
        *,
        sleep: Sleep = asyncio.sleep,
        permit: Optional[Permit] = None,
    ) -> None:
        self.agent = agent
        self.task = task
        self.policy = policy
        self._limiter = limiter
        self._sleep = sleep
        self._attempts: List[ExecutionAttempt] = []
        self._phase = SupervisorPhase.ATTEMPTING
        self._started_at = None
        self._handoff = permit

    @property
    def phase(self) -> SupervisorPhase:
        return self._phase

    @property
    def attempts(self) -> List[ExecutionAttempt]:
        return list(self._attempts)

    async def run(self) -> AgentResult:
        self._started_at = utcnow()
        attempt = 0
        delay = 0.0
        while self._phase is not SupervisorPhase.TERMINAL:
            if self._phase is SupervisorPhase.BACKOFF:
                delay = self.policy.delay_for(attempt - 1)
                remaining = self.task.remaining()
                if remaining is not None and remaining <= delay:
                    logger.info(
                        "task=%s agent=%s deadline falls inside backoff before attempt %d; stopping",
                        self.task.task_id, self.agent.name, attempt,
                    )
                    self._phase = SupervisorPhase.TERMINAL
                    continue
                logger.info(
                    "task=%s agent=%s backing off %.3fs before attempt %d",
                    self.task.task_id, self.agent.name, delay, attempt,
                )
                await self._sleep(delay)
                self._phase = SupervisorPhase.ATTEMPTING
                continue

            record = await self._attempt(attempt, delay)
            remaining = self.task.remaining()
            self._phase = self.policy.next_phase(record, remaining is not None and remaining <= 0)
            attempt += 1
        return self._result()

    def abandoned_result(self, reason: str) -> AgentResult:
        """Result for a supervisor that was cancelled before reaching TERMINAL."""
        self._phase = SupervisorPhase.TERMINAL
        return self._result(fallback_error=reason)

    def release_unused_permit(self) -> None:
        """Give back a dispatcher permit that no attempt consumed."""
        if self._handoff is not None:
            self._limiter.release(self._handoff)
            self._handoff = None

    async def _attempt(self, attempt: int, delay: float) -> ExecutionAttempt:
        permit, self._handoff = self._handoff, None
        if permit is None:
            permit = await self._limiter.acquire()
        try:
            started = utcnow()
            try:
                result = await self._invoke()
            except asyncio.CancelledError:
                self._record(attempt, started, delay, error="abandoned: execution cancelled",
                             kind=ErrorKind.ABANDONED)
                raise
            except SetupError as exc:
                return self._record(attempt, started, delay, error=str(exc), kind=ErrorKind.SETUP)
            except AgentNotReadyError as exc:
                return self._record(attempt, started, delay, error=str(exc), kind=ErrorKind.UNAVAILABLE)
            except ExecutionTimeoutError as exc:
                return self._record(attempt, started, delay, error=str(exc), kind=ErrorKind.TIMEOUT)
            except ExecutionFailure as exc:
                return self._record(attempt, started, delay, error=str(exc), kind=ErrorKind.EXCEPTION)
            return self._record(attempt, started, delay, result=result)
        finally:
            self._limiter.release(permit)

    async def _invoke(self) -> Any:
        if self.agent.state is AgentState.UNINITIALIZED:
            await self.agent.initialize()

        timeout = self._attempt_timeout()
        if timeout is not None and timeout <= 0:
            raise ExecutionTimeoutError(self.agent.name, self.task.task_id, 0.0)

        async with self.agent.execution_slot():
            try:
                return await asyncio.wait_for(self.agent.process(self.task), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise ExecutionTimeoutError(self.agent.name, self.task.task_id, timeout or 0.0) from exc
            except Exception as exc:
                self.agent.last_error = str(exc)
                raise ExecutionFailure(self.agent.name, self.task.task_id, exc) from exc

    def _attempt_timeout(self) -> Optional[float]:
        remaining = self.task.remaining()
        if remaining is None:
            return self.policy.timeout
        if self.policy.timeout is None:
            return remaining
        return min(self.policy.timeout, remaining)

    def _record(
        self,
        attempt: int,
        started,
        delay: float,
        *,
        result: Any = None,
        error: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
    ) -> ExecutionAttempt:
        record = ExecutionAttempt(
            task_id=self.task.task_id,
            agent_name=self.agent.name,
            attempt=attempt,
            started_at=started,
            finished_at=utcnow(),
            outcome=AttemptOutcome.FAILURE if kind else AttemptOutcome.SUCCESS,
            result=result,
            error=error,
            error_kind=kind,
            delay_before=delay,
        )
        self._attempts.append(record)
        if record.succeeded:
            logger.info(
                "task=%s agent=%s attempt=%d outcome=success elapsed_ms=%.1f",
                self.task.task_id, self.agent.name, attempt, record.elapsed_ms,
            )
        else:
            logger.warning(
                "task=%s agent=%s attempt=%d outcome=%s error=%s",
                self.task.task_id, self.agent.name, attempt, kind.value, error,
            )
        return record

    def _result(self, fallback_error: Optional[str] = None) -> AgentResult:
        finished = utcnow()
        started = self._started_at or finished
        history = tuple(self._attempts)
        last = history[-1] if history else None
        success = last is not None and last.succeeded
        error = None
        kind = None
        if not success:
            error = last.error if last is not None else fallback_error
            kind = last.error_kind if last is not None else ErrorKind.ABANDONED
            if fallback_error and (last is None or last.error_kind is not ErrorKind.ABANDONED):
                error, kind = fallback_error, ErrorKind.ABANDONED
        return AgentResult(
            agent_name=self.agent.name,
            success=success,
            result=last.result if success else None,
            error=error,
            error_kind=kind,
            attempts=len(history),
            elapsed_ms=(finished - started).total_seconds() * 1000.0,
            history=history,
        )
