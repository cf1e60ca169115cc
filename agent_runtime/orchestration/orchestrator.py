"""Orchestrator responsible for provisioning agents and running tasks on them."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Type, Union

from agent_runtime.agents.base import Agent
from agent_runtime.config import RuntimeSettings, config
from agent_runtime.core.errors import (
    DuplicateAgentError,
    RegistrationError,
    RuntimeNotAcceptingTasksError,
    RuntimeStateError,
    SessionHostError,
    SetupError,
    WorkflowError,
)
from agent_runtime.core.limiter import ConcurrencyLimiter, Permit
from agent_runtime.core.models import (
    AgentDescriptor,
    AgentResult,
    AgentStatus,
    ErrorKind,
    ExecutionOptions,
    JobResult,
    RuntimeState,
    SystemStatus,
    Task,
    utcnow,
)
from agent_runtime.core.redaction import preview
from agent_runtime.core.task_queue import TaskQueue
from agent_runtime.orchestration.selector import AgentRegistry, AgentSelector
from agent_runtime.orchestration.session_host import (
    ExecutionPlan,
    PaneStatus,
    SessionHandle,
    SessionHost,
    SessionResultCollector,
)
from agent_runtime.orchestration.supervisor import ExecutionSupervisor, RetryPolicy, Sleep
from agent_runtime.orchestration.workflows import Workflow, WorkflowResult, WorkflowRunner
from agent_runtime.services.history import JobHistory
from agent_runtime.services.task_files import TaskSubmission

logger = logging.getLogger(__name__)

Target = Union[str, Sequence[str]]


@dataclass(slots=True)
class _Job:
    task: Task
    agents: List[Agent]
    future: asyncio.Future
    supervisors: List[ExecutionSupervisor] = field(default_factory=list)
    runs: List[asyncio.Task] = field(default_factory=list)
    started_at: Optional[datetime] = None


class Orchestrator:
    """Coordinate agent lifecycle, task dispatch and result aggregation."""

    def __init__(
        self,
        *,
        agent_catalog: Dict[str, Type[Agent]],
        settings: Optional[RuntimeSettings] = None,
        session_host: Optional[SessionHost] = None,
        history: Optional[JobHistory] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._agent_catalog = agent_catalog
        self._settings = settings or config
        self._session_host = session_host
        self._history = history or JobHistory(self._settings.history_limit, self._settings.output_dir)
        self._sleep = sleep

        self._registry = AgentRegistry()
        self._selector = AgentSelector(
            self._registry,
            max_candidates=self._settings.max_candidates,
            min_relevance=self._settings.min_relevance,
        )
        self._defaults = RetryPolicy(
            max_retries=self._settings.max_retries,
            backoff_base=self._settings.backoff_base,
            timeout=self._settings.default_timeout,
        )
        self._queue = TaskQueue()
        self._limiter = ConcurrencyLimiter(self._settings.max_concurrency)
        self._agents: Dict[str, Agent] = {}
        self._pending: Dict[str, int] = {}
        self._jobs: Dict[str, _Job] = {}
        self._runners: Set[asyncio.Task] = set()
        self._collectors: Dict[str, SessionResultCollector] = {}
        self._workflows: Dict[str, Workflow] = {}
        self._dispatcher: Optional[asyncio.Task] = None
        self._state = RuntimeState.UNSTARTED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def settings(self) -> RuntimeSettings:
        return self._settings

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    @property
    def selector(self) -> AgentSelector:
        return self._selector

    # -- registration and lifecycle -------------------------------------

    def register_agents(self, descriptors: Iterable[AgentDescriptor]) -> List[AgentDescriptor]:
        """Register a batch of agents; nothing is registered if any entry is invalid."""
        if self._state is not RuntimeState.UNSTARTED:
            raise RuntimeStateError(f"Agents can only be registered before start (state={self._state.name})")

        batch = list(descriptors)
        seen: Dict[str, AgentDescriptor] = {}
        for descriptor in batch:
            if descriptor.kind not in self._agent_catalog:
                raise RegistrationError(f"No agent registered for kind '{descriptor.kind}'")
            prior = seen.get(descriptor.name) or self._registry.get(descriptor.name)
            if prior is not None and prior != descriptor:
                raise DuplicateAgentError(descriptor.name)
            seen[descriptor.name] = descriptor

        registered = []
        for descriptor in batch:
            if self._registry.register(descriptor):
                self._agents[descriptor.name] = self._instantiate(descriptor)
                self._pending[descriptor.name] = 0
                registered.append(descriptor)
        return registered

    async def initialize_all(self) -> None:
        """Initialize every agent concurrently and start dispatching."""
        async with self._lock:
            if self._state is RuntimeState.RUNNING:
                logger.info("Runtime already running; initialize_all is a no-op")
                return
            if self._state is not RuntimeState.UNSTARTED:
                raise RuntimeStateError(f"Cannot initialize runtime in state {self._state.name}")

            self._state = RuntimeState.INITIALIZING
            agents = list(self._agents.values())
            outcomes = await asyncio.gather(
                *(agent.initialize() for agent in agents), return_exceptions=True
            )
            failures = [(agent, exc) for agent, exc in zip(agents, outcomes) if isinstance(exc, BaseException)]
            if failures:
                await self._abort_initialization(agents, outcomes)
                agent, exc = failures[0]
                if isinstance(exc, SetupError):
                    raise exc
                raise SetupError(agent.name, exc) from exc

            self._state = RuntimeState.RUNNING
            self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="agent-runtime-dispatcher")
            logger.info(
                "Runtime running with %d agent(s), max concurrency %d",
                len(self._agents), self._limiter.max_concurrent,
            )

    async def _abort_initialization(self, agents: List[Agent], outcomes: List[Any]) -> None:
        ready = [agent for agent, outcome in zip(agents, outcomes) if not isinstance(outcome, BaseException)]
        results = await asyncio.gather(*(agent.shutdown() for agent in ready), return_exceptions=True)
        for agent, outcome in zip(ready, results):
            if isinstance(outcome, BaseException):
                logger.error("Cleanup of %s after failed start raised: %s", agent.name, outcome)
        self._agents = {
            name: self._instantiate(self._registry.require(name)) for name in self._registry.names()
        }
        self._state = RuntimeState.UNSTARTED
        logger.error("Runtime initialization failed; %d agent(s) rolled back", len(ready))

    async def shutdown_all(self, grace: Optional[float] = None) -> None:
        """Drain in-flight work for up to ``grace`` seconds, then stop every agent."""
        async with self._lock:
            if self._state is RuntimeState.STOPPED:
                return
            was_running = self._state is RuntimeState.RUNNING
            self._state = RuntimeState.DRAINING
        grace = self._settings.shutdown_grace if grace is None else grace
        logger.info("Runtime draining (grace %.1fs, %d job(s) in flight)", grace, len(self._jobs))

        if was_running:
            await self._drain(grace)

        agents = list(self._agents.values())
        outcomes = await asyncio.gather(*(agent.shutdown() for agent in agents), return_exceptions=True)
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Agent %s cleanup failed: %s", agent.name, outcome)
        self._state = RuntimeState.STOPPED
        logger.info("Runtime stopped")

    async def _drain(self, grace: float) -> None:
        pending = [job.future for job in self._jobs.values()]
        if pending and grace > 0:
            await asyncio.wait(pending, timeout=grace)

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

        for task in self._queue.drain():
            job = self._jobs.get(task.task_id)
            if job is None:
                continue
            for agent in job.agents:
                self._pending[agent.name] -= 1
            reason = "abandoned: runtime shut down before dispatch"
            self._finish(job, [AgentResult(agent.name, False, error=reason, error_kind=ErrorKind.ABANDONED)
                               for agent in job.agents])

        for job in list(self._jobs.values()):
            for run in job.runs:
                run.cancel()
        if self._runners:
            await asyncio.gather(*list(self._runners), return_exceptions=True)

        for collector in self._collectors.values():
            collector.expire("abandoned: runtime shut down")

    # -- task execution --------------------------------------------------

    async def execute_task(
        self,
        target: Target,
        payload: Any = None,
        *,
        options: Optional[ExecutionOptions] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> JobResult:
        """Run a task on the agents chosen for ``target`` and wait for all of them.

        ``target`` is either a free-text description routed by capability or
        an explicit list of agent names.
        """
        self._ensure_accepting()
        options = options or ExecutionOptions()
        task_context = dict(context or {})
        selected = self._selector.select(target, task_context)
        task = self._build_task(target, payload, options, task_context)
        if task.task_id in self._jobs:
            raise RuntimeStateError(f"Task {task.task_id} is already in flight")

        job = _Job(
            task=task,
            agents=[self._agents[descriptor.name] for descriptor in selected],
            future=asyncio.get_running_loop().create_future(),
        )
        self._jobs[task.task_id] = job
        for agent in job.agents:
            self._pending[agent.name] += 1
        self._queue.enqueue(task)
        logger.info(
            "Task %s queued (priority=%s) for %s: %s",
            task.task_id, task.priority.value, [a.name for a in job.agents], preview(task.payload),
        )
        return await asyncio.shield(job.future)

    async def execute_parallel(self, submissions: Sequence[TaskSubmission]) -> List[JobResult]:
        """Run several submissions at once; results come back in submission order.

        Every submission is routed first, so a selection error rejects the
        whole batch before anything is queued.
        """
        self._ensure_accepting()
        for submission in submissions:
            self._selector.select(submission.target, submission.context)
        logger.info("Executing %d task(s) in parallel", len(submissions))
        return list(
            await asyncio.gather(
                *(
                    self.execute_task(
                        submission.target,
                        submission.payload,
                        options=submission.options(),
                        context=submission.context,
                    )
                    for submission in submissions
                )
            )
        )

    def _build_task(
        self,
        target: Target,
        payload: Any,
        options: ExecutionOptions,
        context: Dict[str, Any],
    ) -> Task:
        description = target if isinstance(target, str) else str(context.get("description", ""))
        if payload is None and isinstance(target, str):
            payload = target
        now = utcnow()
        return Task(
            task_id=options.task_id or f"task-{uuid.uuid4()}",
            priority=options.priority,
            payload=payload,
            description=description,
            deadline=options.resolve_deadline(now),
            context=context,
            max_retries=options.max_retries,
            created_at=now,
        )

    async def _dispatch_loop(self) -> None:
        """Dequeue in priority order whenever the limiter grants a permit."""
        while True:
            await self._queue.wait_for_task()
            permit = await self._limiter.acquire()
            task = self._queue.dequeue_next()
            job = self._jobs.get(task.task_id) if task is not None else None
            if job is None or job.future.done():
                self._limiter.release(permit)
                continue
            self._launch(job, permit)

    def _launch(self, job: _Job, permit: Permit) -> None:
        job.started_at = utcnow()
        for agent in job.agents:
            self._pending[agent.name] -= 1
        job.supervisors = [
            ExecutionSupervisor(
                agent,
                job.task,
                self._limiter,
                RetryPolicy.resolve(self._defaults, agent.descriptor, job.task),
                sleep=self._sleep,
                permit=permit if index == 0 else None,
            )
            for index, agent in enumerate(job.agents)
        ]
        job.runs = [
            asyncio.create_task(supervisor.run(), name=f"{job.task.task_id}:{supervisor.agent.name}")
            for supervisor in job.supervisors
        ]
        runner = asyncio.create_task(self._collect(job), name=f"job-{job.task.task_id}")
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

    async def _collect(self, job: _Job) -> None:
        outcomes = await asyncio.gather(*job.runs, return_exceptions=True)
        per_agent = []
        for supervisor, outcome in zip(job.supervisors, outcomes):
            if isinstance(outcome, AgentResult):
                per_agent.append(outcome)
                continue
            supervisor.release_unused_permit()
            if isinstance(outcome, asyncio.CancelledError):
                reason = "abandoned: runtime shut down"
            else:
                logger.error("Supervisor for %s crashed: %r", supervisor.agent.name, outcome)
                reason = f"abandoned: supervisor crashed: {outcome}"
            per_agent.append(supervisor.abandoned_result(reason))
        self._finish(job, per_agent)

    def _finish(self, job: _Job, per_agent: List[AgentResult], session_id: Optional[str] = None) -> None:
        result = JobResult.aggregate(
            job.task.task_id,
            per_agent,
            started_at=job.started_at or job.task.created_at,
            finished_at=utcnow(),
            session_id=session_id,
        )
        self._jobs.pop(job.task.task_id, None)
        self._history.record(result, job.task)
        if not job.future.done():
            job.future.set_result(result)
        log = logger.info if result.success else logger.warning
        log(
            "Task %s %s in %.1fms (%d retries)",
            result.task_id, result.status, result.total_elapsed_ms, result.retry_count,
        )

    def _ensure_accepting(self) -> None:
        if self._state is not RuntimeState.RUNNING:
            raise RuntimeNotAcceptingTasksError(self._state)

    # -- session host execution -----------------------------------------

    async def execute_in_session(
        self,
        target: Target,
        payload: Any = None,
        *,
        options: Optional[ExecutionOptions] = None,
        context: Optional[Mapping[str, Any]] = None,
        session_name: Optional[str] = None,
    ) -> JobResult:
        """Run each selected agent in its own pane of an external session."""
        self._ensure_accepting()
        if self._session_host is None:
            raise SessionHostError("No session host is configured")
        options = options or ExecutionOptions()
        task_context = dict(context or {})
        selected = self._selector.select(target, task_context)
        task = self._build_task(target, payload, options, task_context)
        timeout = options.timeout or self._settings.default_timeout
        remaining = task.remaining()
        if remaining is not None:
            timeout = min(timeout, max(remaining, 0.0))
        plan = ExecutionPlan.build(task, selected, timeout=timeout, session_name=session_name)

        handle = await self._host_call("provision", self._session_host.provision(plan))
        collector = SessionResultCollector(plan, session_id=handle.session_id)
        self._collectors[handle.session_id] = collector
        try:
            await self._poll_session(handle, collector)
        finally:
            self._collectors.pop(handle.session_id, None)
            try:
                await self._session_host.teardown(handle)
            except Exception as exc:
                logger.error("Teardown of session %s failed: %s", handle.session_id, exc)

        result = collector.result()
        self._history.record(result, task)
        logger.info("Session task %s %s", result.task_id, result.status)
        return result

    async def _poll_session(self, handle: SessionHandle, collector: SessionResultCollector) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + handle.plan.timeout
        while not collector.complete:
            for status in await self._host_call("poll", self._session_host.poll_status(handle)):
                try:
                    collector.report(status)
                except (KeyError, ValueError) as exc:
                    raise SessionHostError(
                        f"Session {handle.session_id} reported a bad pane status: {exc}"
                    ) from exc
            if collector.complete:
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                collector.expire(f"timed out after {handle.plan.timeout:.1f}s")
                return
            await asyncio.sleep(min(self._settings.session_poll_interval, remaining))

    @staticmethod
    async def _host_call(action: str, call: Any) -> Any:
        try:
            return await call
        except SessionHostError:
            raise
        except Exception as exc:
            raise SessionHostError(f"Session host {action} failed: {exc}") from exc

    async def report_pane_status(self, session_id: str, status: PaneStatus) -> bool:
        """Push a pane status from a session host into an active session.

        Raises ``KeyError`` for an unknown session or pane and ``ValueError``
        when the status names another agent than the pane runs.
        """
        collector = self._collectors.get(session_id)
        if collector is None:
            raise KeyError(f"No active session '{session_id}'")
        return collector.report(status)

    # -- workflows ---------------------------------------------------------

    def register_workflow(self, workflow: Workflow) -> None:
        workflow.validate()
        self._selector.select_explicit(step.agent_name for step in workflow.steps)
        self._workflows[workflow.workflow_id] = workflow
        logger.info("Workflow registered: %s (%d steps)", workflow.workflow_id, len(workflow.steps))

    def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())

    async def execute_workflow(
        self,
        workflow_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowResult:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowError(f"Unknown workflow '{workflow_id}'")
        self._ensure_accepting()
        return await WorkflowRunner(self.execute_task).run(workflow, context)

    # -- inspection ----------------------------------------------------------

    def list_agents(self, category: Optional[str] = None) -> List[AgentDescriptor]:
        if category is None:
            return self._registry.descriptors()
        return self._registry.by_category(category)

    def get_agent(self, name: str) -> Optional[AgentDescriptor]:
        return self._registry.get(name)

    def agent_status(self, name: str) -> Optional[AgentStatus]:
        agent = self._agents.get(name)
        return agent.status(self._pending.get(name, 0)) if agent else None

    def get_system_status(self) -> SystemStatus:
        return SystemStatus(
            state=self._state,
            total_agents=len(self._agents),
            queue_depth=self._queue.depth,
            active_executions=self._limiter.in_use,
            max_concurrency=self._limiter.max_concurrent,
            per_agent=tuple(
                agent.status(self._pending.get(name, 0)) for name, agent in self._agents.items()
            ),
            total_workflows=len(self._workflows),
        )

    def task_history(self, limit: Optional[int] = None) -> List[JobResult]:
        return self._history.recent(limit)

    def get_task_result(self, task_id: str) -> Optional[JobResult]:
        return self._history.get(task_id)

    def _instantiate(self, descriptor: AgentDescriptor) -> Agent:
        return self._agent_catalog[descriptor.kind](descriptor)
