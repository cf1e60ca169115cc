"""Tests for the per-instance state gate."""
from __future__ import annotations

import asyncio
from typing import Any, List

import pytest

from agent_runtime.agents.base import Agent
from agent_runtime.agents.echo import EchoAgent
from agent_runtime.agents.template import TemplateAgent
from agent_runtime.core.errors import AgentNotReadyError, SetupError
from agent_runtime.core.models import AgentDescriptor, AgentState, Task


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class TrackingAgent(Agent):
    def __init__(self, descriptor: AgentDescriptor) -> None:
        super().__init__(descriptor)
        self.events: List[str] = []
        self.active = 0
        self.max_active = 0

    async def setup(self) -> None:
        self.events.append("setup")
        if self.descriptor.metadata.get("fail_setup"):
            raise RuntimeError("cannot connect")

    async def process(self, task: Task) -> Any:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(self.descriptor.metadata.get("delay", 0.01))
        self.active -= 1
        self.events.append(f"process:{task.task_id}")
        return task.task_id

    async def cleanup(self) -> None:
        self.events.append("cleanup")


def _agent(**metadata: Any) -> TrackingAgent:
    return TrackingAgent(AgentDescriptor(name="tracker", role="Tracker", category="test", metadata=metadata))


@pytest.mark.anyio
async def test_execute_before_initialize_is_rejected() -> None:
    agent = _agent()

    with pytest.raises(AgentNotReadyError):
        await agent.execute(Task(task_id="t"))
    assert agent.events == []


@pytest.mark.anyio
async def test_initialize_runs_setup_once() -> None:
    agent = _agent()

    assert await agent.initialize() is True
    assert await agent.initialize() is False
    assert agent.events == ["setup"]
    assert agent.state is AgentState.READY


@pytest.mark.anyio
async def test_failed_setup_leaves_agent_uninitialized() -> None:
    agent = _agent(fail_setup=True)

    with pytest.raises(SetupError) as excinfo:
        await agent.initialize()

    assert excinfo.value.agent_name == "tracker"
    assert agent.state is AgentState.UNINITIALIZED
    assert agent.last_error == "cannot connect"


@pytest.mark.anyio
async def test_process_calls_on_one_instance_are_serialized() -> None:
    agent = _agent(delay=0.01)
    await agent.initialize()

    async def run(task_id: str) -> Any:
        async with agent.execution_slot():
            return await agent.process(Task(task_id=task_id))

    results = await asyncio.gather(*(run(f"t-{i}") for i in range(5)))

    assert results == [f"t-{i}" for i in range(5)]
    assert agent.max_active == 1
    assert agent.task_count == 5
    assert agent.state is AgentState.READY


@pytest.mark.anyio
async def test_shutdown_waits_for_in_flight_call_then_cleans_up() -> None:
    agent = _agent(delay=0.1)
    await agent.initialize()
    running = asyncio.create_task(agent.execute(Task(task_id="slow")))
    await asyncio.sleep(0.02)
    assert agent.state is AgentState.EXECUTING

    await agent.shutdown(grace=5)

    assert await running == "slow"
    assert agent.events == ["setup", "process:slow", "cleanup"]
    assert agent.state is AgentState.TERMINATED


@pytest.mark.anyio
async def test_terminated_agent_rejects_work_and_reinitialization() -> None:
    agent = _agent()
    await agent.initialize()
    await agent.shutdown()
    await agent.shutdown()

    assert agent.events == ["setup", "cleanup"]
    with pytest.raises(AgentNotReadyError):
        await agent.execute(Task(task_id="late"))
    with pytest.raises(AgentNotReadyError):
        await agent.initialize()


@pytest.mark.anyio
async def test_shutdown_of_uninitialized_agent_skips_cleanup() -> None:
    agent = _agent()
    await agent.shutdown()

    assert agent.events == []
    assert agent.state is AgentState.TERMINATED


@pytest.mark.anyio
async def test_status_reports_counters() -> None:
    agent = _agent()
    await agent.initialize()
    await agent.execute(Task(task_id="one"))

    status = agent.status(queue_depth=2)

    assert status.to_dict() == {
        "name": "tracker",
        "role": "Tracker",
        "category": "test",
        "state": "ready",
        "queueDepth": 2,
        "taskCount": 1,
        "lastError": None,
    }


@pytest.mark.anyio
async def test_echo_agent_echoes_payload() -> None:
    agent = EchoAgent(AgentDescriptor(name="echo", role="Echo", category="test", metadata={"delay": 0}))
    await agent.initialize()

    result = await agent.execute(Task(task_id="e", payload="ping"))

    assert result == {"echo": "echo heard 'ping'", "payload": "ping"}


@pytest.mark.anyio
async def test_template_agent_renders_by_task_type() -> None:
    agent = TemplateAgent(
        AgentDescriptor(
            name="legal",
            role="Legal Advisor",
            category="business",
            kind="template",
            metadata={"templates": {"review": "Review of {subject} ({missing})"}},
        )
    )
    await agent.initialize()

    result = await agent.execute(Task(task_id="r", payload={"type": "review", "subject": "NDA"}))
    assert result["content"] == "Review of NDA ({missing})"
    assert result["taskType"] == "review"

    with pytest.raises(ValueError):
        await agent.execute(Task(task_id="x", payload={"type": "unknown"}))


@pytest.mark.anyio
async def test_template_agent_rejects_malformed_templates() -> None:
    agent = TemplateAgent(
        AgentDescriptor(name="t", role="T", category="c", kind="template", metadata={"templates": ["nope"]})
    )

    with pytest.raises(SetupError):
        await agent.initialize()
