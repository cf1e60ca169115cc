"""Tests for retry, backoff and timeout supervision."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, List

import pytest

from agent_runtime.agents.base import Agent
from agent_runtime.core.limiter import ConcurrencyLimiter
from agent_runtime.core.models import AgentDescriptor, ErrorKind, Task, utcnow
from agent_runtime.orchestration.supervisor import ExecutionSupervisor, RetryPolicy, SupervisorPhase


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FlakyAgent(Agent):
    """Fails ``metadata['failures']`` times, then succeeds."""

    def __init__(self, descriptor: AgentDescriptor) -> None:
        super().__init__(descriptor)
        self.calls = 0

    async def process(self, task: Task) -> Any:
        self.calls += 1
        if self.calls <= self.descriptor.metadata.get("failures", 0):
            raise RuntimeError(f"boom {self.calls}")
        return {"calls": self.calls}


class SleepyAgent(Agent):
    async def process(self, task: Task) -> Any:
        await asyncio.sleep(self.descriptor.metadata.get("delay", 1.0))
        return "late"


class BrokenSetupAgent(Agent):
    async def setup(self) -> None:
        raise RuntimeError("missing credentials")

    async def process(self, task: Task) -> Any:
        return "never"


def _descriptor(name: str, **metadata: Any) -> AgentDescriptor:
    return AgentDescriptor(name=name, role=name, category="test", metadata=metadata)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.anyio
async def test_always_failing_agent_exhausts_retries_with_doubling_backoff() -> None:
    agent = FlakyAgent(_descriptor("flaky", failures=100))
    limiter = ConcurrencyLimiter(2)
    sleep = RecordingSleep()
    supervisor = ExecutionSupervisor(
        agent,
        Task(task_id="t-1"),
        limiter,
        RetryPolicy(max_retries=3, backoff_base=1.0, timeout=5.0),
        sleep=sleep,
    )

    result = await supervisor.run()

    assert result.success is False
    assert result.attempts == 4
    assert result.error_kind is ErrorKind.EXCEPTION
    assert "boom 4" in result.error
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert [a.delay_before for a in result.history] == [0.0, 1.0, 2.0, 4.0]
    assert supervisor.phase is SupervisorPhase.TERMINAL
    assert limiter.in_use == 0
    assert agent.last_error == "boom 4"


@pytest.mark.anyio
async def test_success_after_transient_failures() -> None:
    agent = FlakyAgent(_descriptor("flaky", failures=2))
    supervisor = ExecutionSupervisor(
        agent,
        Task(task_id="t-2"),
        ConcurrencyLimiter(1),
        RetryPolicy(max_retries=3, backoff_base=0.5),
        sleep=RecordingSleep(),
    )

    result = await supervisor.run()

    assert result.success is True
    assert result.attempts == 3
    assert result.result == {"calls": 3}
    assert [a.succeeded for a in result.history] == [False, False, True]


@pytest.mark.anyio
async def test_attempt_timeout_is_classified_and_retried() -> None:
    agent = SleepyAgent(_descriptor("sleepy", delay=1.0))
    supervisor = ExecutionSupervisor(
        agent,
        Task(task_id="t-3"),
        ConcurrencyLimiter(1),
        RetryPolicy(max_retries=1, backoff_base=0.0, timeout=0.05),
        sleep=RecordingSleep(),
    )

    result = await supervisor.run()

    assert result.success is False
    assert result.attempts == 2
    assert all(a.error_kind is ErrorKind.TIMEOUT for a in result.history)
    assert agent.state.name == "READY"


@pytest.mark.anyio
async def test_passed_deadline_stops_retrying() -> None:
    agent = SleepyAgent(_descriptor("sleepy", delay=1.0))
    task = Task(task_id="t-4", deadline=utcnow() + timedelta(seconds=0.05))
    supervisor = ExecutionSupervisor(
        agent,
        task,
        ConcurrencyLimiter(1),
        RetryPolicy(max_retries=5, backoff_base=0.0, timeout=10.0),
        sleep=RecordingSleep(),
    )

    result = await supervisor.run()

    assert result.success is False
    assert result.error_kind is ErrorKind.TIMEOUT
    assert result.attempts <= 2


@pytest.mark.anyio
async def test_backoff_never_sleeps_past_the_deadline() -> None:
    agent = FlakyAgent(_descriptor("flaky", failures=100))
    task = Task(task_id="t-4b", deadline=utcnow() + timedelta(seconds=0.15))
    supervisor = ExecutionSupervisor(
        agent,
        task,
        ConcurrencyLimiter(1),
        RetryPolicy(max_retries=5, backoff_base=0.1, timeout=10.0),
    )
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await supervisor.run()

    assert loop.time() - started < 0.2
    assert result.attempts == agent.calls == 2
    assert [a.error_kind for a in result.history] == [ErrorKind.EXCEPTION, ErrorKind.EXCEPTION]
    assert supervisor.phase is SupervisorPhase.TERMINAL


@pytest.mark.anyio
async def test_backoff_holds_no_permit() -> None:
    agent = FlakyAgent(_descriptor("flaky", failures=100))
    limiter = ConcurrencyLimiter(1)
    in_use_while_sleeping: List[int] = []

    async def sleep(delay: float) -> None:
        in_use_while_sleeping.append(limiter.in_use)

    supervisor = ExecutionSupervisor(
        agent, Task(task_id="t-4c"), limiter, RetryPolicy(max_retries=3, backoff_base=1.0), sleep=sleep
    )

    await supervisor.run()

    assert in_use_while_sleeping == [0, 0, 0]


@pytest.mark.anyio
async def test_setup_failure_is_terminal() -> None:
    agent = BrokenSetupAgent(_descriptor("broken"))
    sleep = RecordingSleep()
    supervisor = ExecutionSupervisor(
        agent, Task(task_id="t-5"), ConcurrencyLimiter(1), RetryPolicy(max_retries=3), sleep=sleep
    )

    result = await supervisor.run()

    assert result.attempts == 1
    assert result.error_kind is ErrorKind.SETUP
    assert "missing credentials" in result.error
    assert sleep.delays == []


@pytest.mark.anyio
async def test_terminated_agent_is_unavailable() -> None:
    agent = FlakyAgent(_descriptor("flaky"))
    await agent.initialize()
    await agent.shutdown()
    supervisor = ExecutionSupervisor(
        agent, Task(task_id="t-6"), ConcurrencyLimiter(1), RetryPolicy(max_retries=3), sleep=RecordingSleep()
    )

    result = await supervisor.run()

    assert result.attempts == 1
    assert result.error_kind is ErrorKind.UNAVAILABLE


@pytest.mark.anyio
async def test_cancellation_closes_the_attempt_as_abandoned() -> None:
    agent = SleepyAgent(_descriptor("sleepy", delay=5.0))
    limiter = ConcurrencyLimiter(1)
    supervisor = ExecutionSupervisor(
        agent, Task(task_id="t-7"), limiter, RetryPolicy(max_retries=3, timeout=10.0)
    )
    run = asyncio.create_task(supervisor.run())
    await asyncio.sleep(0.05)
    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run

    result = supervisor.abandoned_result("abandoned: test")

    assert result.success is False
    assert result.error_kind is ErrorKind.ABANDONED
    assert [a.error_kind for a in result.history] == [ErrorKind.ABANDONED]
    assert limiter.in_use == 0


def test_policy_resolution_prefers_task_then_descriptor() -> None:
    defaults = RetryPolicy(max_retries=3, backoff_base=1.0, timeout=300.0)
    descriptor = AgentDescriptor(name="a", role="a", category="c", max_retries=1, timeout=20.0)

    assert RetryPolicy.resolve(defaults) == defaults
    assert RetryPolicy.resolve(defaults, descriptor) == RetryPolicy(1, 1.0, 20.0)
    assert RetryPolicy.resolve(defaults, descriptor, Task(task_id="t", max_retries=0)).max_retries == 0
    assert defaults.delay_for(0) == 1.0
    assert defaults.delay_for(3) == 8.0
