"""Running a task's agents inside an external terminal-multiplexer session."""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import shlex
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from agent_runtime.core.errors import SessionHostError
from agent_runtime.core.models import (
    AgentDescriptor,
    AgentResult,
    ErrorKind,
    JobResult,
    Task,
    TaskPriority,
    utcnow,
)

logger = logging.getLogger(__name__)

PLAN_FILE = "plan.json"


def choose_layout(pane_count: int) -> str:
    if pane_count <= 2:
        return "even-horizontal"
    if pane_count <= 4:
        return "tiled-2x2"
    if pane_count <= 6:
        return "tiled-2x3"
    return "windows"


@dataclass(frozen=True, slots=True)
class PanePlan:
    index: int
    agent_name: str
    descriptor: Optional[AgentDescriptor] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "agentName": self.agent_name}
        if self.descriptor is not None:
            data["descriptor"] = self.descriptor.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PanePlan":
        descriptor = data.get("descriptor")
        return cls(
            index=int(data["index"]),
            agent_name=data["agentName"],
            descriptor=AgentDescriptor.from_dict(descriptor) if descriptor else None,
        )


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Everything a session host needs to run one task, one pane per agent."""

    session_name: str
    task_id: str
    layout: str
    panes: Tuple[PanePlan, ...]
    payload: Any = None
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    timeout: float = 300.0
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        task: Task,
        agents: Sequence[Union[str, AgentDescriptor]],
        *,
        timeout: float,
        session_name: Optional[str] = None,
    ) -> "ExecutionPlan":
        """Plan one pane per agent.

        Descriptors travel with the plan so a pane process can rebuild the
        agent it was given.
        """
        if not agents:
            raise ValueError("An execution plan needs at least one agent")
        panes = tuple(
            PanePlan(index, agent) if isinstance(agent, str) else PanePlan(index, agent.name, agent)
            for index, agent in enumerate(agents)
        )
        return cls(
            session_name=session_name or f"agents-{task.task_id}",
            task_id=task.task_id,
            layout=choose_layout(len(panes)),
            panes=panes,
            payload=task.payload,
            description=task.description,
            priority=task.priority,
            timeout=timeout,
            context=dict(task.context),
        )

    def pane(self, index: int) -> PanePlan:
        for pane in self.panes:
            if pane.index == index:
                return pane
        raise KeyError(f"Plan {self.session_name} has no pane {index}")

    def to_task(self) -> Task:
        return Task(
            task_id=self.task_id,
            priority=self.priority,
            payload=self.payload,
            description=self.description,
            context=dict(self.context),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionName": self.session_name,
            "taskId": self.task_id,
            "layout": self.layout,
            "panes": [pane.to_dict() for pane in self.panes],
            "payload": self.payload,
            "description": self.description,
            "priority": self.priority.value,
            "timeout": self.timeout,
            "context": self.context,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=2, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionPlan":
        return cls(
            session_name=data["sessionName"],
            task_id=data["taskId"],
            layout=data["layout"],
            panes=tuple(PanePlan.from_dict(pane) for pane in data["panes"]),
            payload=data.get("payload"),
            description=data.get("description", ""),
            priority=TaskPriority.parse(data.get("priority", "medium")),
            timeout=float(data.get("timeout", 300.0)),
            context=dict(data.get("context") or {}),
        )


class PaneState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PaneStatus:
    pane_index: int
    agent_name: str
    state: PaneState = PaneState.PENDING
    exit_code: Optional[int] = None
    output: Any = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def terminal(self) -> bool:
        return self.state is not PaneState.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paneIndex": self.pane_index,
            "agentName": self.agent_name,
            "state": self.state.value,
            "exitCode": self.exit_code,
            "output": self.output,
            "error": self.error,
            "elapsedMs": self.elapsed_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaneStatus":
        return cls(
            pane_index=int(data["paneIndex"]),
            agent_name=data["agentName"],
            state=PaneState(data.get("state", PaneState.PENDING.value)),
            exit_code=data.get("exitCode"),
            output=data.get("output"),
            error=data.get("error"),
            elapsed_ms=float(data.get("elapsedMs", 0.0)),
        )


@dataclass(slots=True)
class SessionHandle:
    session_id: str
    plan: ExecutionPlan
    workdir: Optional[Path] = None
    started_at: datetime = field(default_factory=utcnow)


class SessionHost(abc.ABC):
    """Adapter to a process host that runs one pane per agent."""

    @abc.abstractmethod
    async def provision(self, plan: ExecutionPlan) -> SessionHandle:
        ...

    @abc.abstractmethod
    async def poll_status(self, handle: SessionHandle) -> List[PaneStatus]:
        ...

    @abc.abstractmethod
    async def teardown(self, handle: SessionHandle) -> None:
        ...


class SessionResultCollector:
    """Fold pane statuses into a ``JobResult``. The first terminal status per pane wins."""

    def __init__(self, plan: ExecutionPlan, *, session_id: Optional[str] = None) -> None:
        self.plan = plan
        self.session_id = session_id or plan.session_name
        self.started_at = utcnow()
        self._statuses: Dict[int, PaneStatus] = {}
        self._expired: set = set()

    def report(self, status: PaneStatus) -> bool:
        """Record a pane status; returns ``True`` if it changed the outcome.

        Raises ``KeyError`` for an unknown pane and ``ValueError`` when the
        status names a different agent than the pane was planned for.
        """
        pane = self.plan.pane(status.pane_index)
        if status.agent_name != pane.agent_name:
            raise ValueError(
                f"Pane {pane.index} runs '{pane.agent_name}', not '{status.agent_name}'"
            )
        if not status.terminal or status.pane_index in self._statuses:
            return False
        self._statuses[status.pane_index] = status
        logger.info(
            "session=%s pane=%d agent=%s state=%s",
            self.session_id, status.pane_index, status.agent_name, status.state.value,
        )
        return True

    @property
    def complete(self) -> bool:
        return len(self._statuses) == len(self.plan.panes)

    def pending(self) -> List[PanePlan]:
        return [pane for pane in self.plan.panes if pane.index not in self._statuses]

    def expire(self, reason: str = "timed out") -> None:
        elapsed = (utcnow() - self.started_at).total_seconds() * 1000.0
        for pane in self.pending():
            self._expired.add(pane.index)
            self._statuses[pane.index] = PaneStatus(
                pane_index=pane.index,
                agent_name=pane.agent_name,
                state=PaneState.FAILED,
                error=f"Pane {pane.index} ({pane.agent_name}) {reason}",
                elapsed_ms=elapsed,
            )

    def result(self) -> JobResult:
        per_agent = []
        for pane in self.plan.panes:
            status = self._statuses.get(pane.index)
            if status is None:
                per_agent.append(
                    AgentResult(
                        agent_name=pane.agent_name,
                        success=False,
                        error="No status reported",
                        error_kind=ErrorKind.ABANDONED,
                    )
                )
                continue
            succeeded = status.state is PaneState.SUCCEEDED
            kind = None
            if not succeeded:
                kind = ErrorKind.TIMEOUT if pane.index in self._expired else ErrorKind.EXCEPTION
            per_agent.append(
                AgentResult(
                    agent_name=pane.agent_name,
                    success=succeeded,
                    result=status.output if succeeded else None,
                    error=None if succeeded else status.error or f"exit code {status.exit_code}",
                    error_kind=kind,
                    attempts=1,
                    elapsed_ms=status.elapsed_ms,
                )
            )
        return JobResult.aggregate(
            self.plan.task_id,
            per_agent,
            started_at=self.started_at,
            finished_at=utcnow(),
            session_id=self.session_id,
        )


def default_pane_command() -> List[str]:
    return [sys.executable, "-m", "agent_runtime.pane_runner"]


class TmuxSessionHost(SessionHost):
    """Session host backed by ``tmux``.

    Each pane runs ``command --plan <plan.json> --pane <i> --status-dir <dir>``;
    the command writes ``pane-<i>.json`` and the shell wrapper records the
    exit code in ``pane-<i>.exit`` so crashes are still observed.
    """

    def __init__(
        self,
        session_dir: Path,
        *,
        command: Optional[Sequence[str]] = None,
        tmux: str = "tmux",
    ) -> None:
        self.session_dir = Path(session_dir)
        self.command = list(command or default_pane_command())
        self.tmux = tmux

    async def provision(self, plan: ExecutionPlan) -> SessionHandle:
        workdir = self.session_dir / plan.session_name
        workdir.mkdir(parents=True, exist_ok=True)
        plan_path = workdir / PLAN_FILE
        plan_path.write_text(plan.to_json(), encoding="utf-8")

        handle = SessionHandle(session_id=plan.session_name, plan=plan, workdir=workdir)
        pane_ids = await self._create_panes(plan, workdir)
        for pane, pane_id in zip(plan.panes, pane_ids):
            await self._run("send-keys", "-t", pane_id, self.pane_command(plan_path, pane, workdir), "Enter")
        logger.info(
            "Provisioned tmux session %s with %d pane(s), layout %s",
            plan.session_name, len(plan.panes), plan.layout,
        )
        return handle

    def pane_command(self, plan_path: Path, pane: PanePlan, workdir: Path) -> str:
        argv = self.command + [
            "--plan", str(plan_path),
            "--pane", str(pane.index),
            "--status-dir", str(workdir),
        ]
        exit_path = workdir / f"pane-{pane.index}.exit"
        return f"{shlex.join(argv)}; echo $? > {shlex.quote(str(exit_path))}"

    async def _create_panes(self, plan: ExecutionPlan, workdir: Path) -> List[str]:
        name = plan.session_name
        first = await self._run(
            "new-session", "-d", "-s", name, "-c", str(workdir), "-P", "-F", "#{pane_id}",
        )
        pane_ids = [first]
        for _ in plan.panes[1:]:
            if plan.layout == "windows":
                pane_id = await self._run(
                    "new-window", "-t", name, "-c", str(workdir), "-P", "-F", "#{pane_id}",
                )
            else:
                pane_id = await self._run(
                    "split-window", "-t", name, "-c", str(workdir), "-P", "-F", "#{pane_id}",
                )
                await self._run("select-layout", "-t", name, "tiled")
            pane_ids.append(pane_id)
        if plan.layout == "even-horizontal" and len(plan.panes) > 1:
            await self._run("select-layout", "-t", name, "even-horizontal")
        return pane_ids

    async def poll_status(self, handle: SessionHandle) -> List[PaneStatus]:
        workdir = handle.workdir or self.session_dir / handle.session_id
        return [self._read_pane(workdir, pane) for pane in handle.plan.panes]

    def _read_pane(self, workdir: Path, pane: PanePlan) -> PaneStatus:
        status_path = workdir / f"pane-{pane.index}.json"
        if status_path.exists():
            try:
                return PaneStatus.from_dict(json.loads(status_path.read_text(encoding="utf-8")))
            except (ValueError, KeyError) as exc:
                # Partially written file; try again on the next poll.
                logger.debug("Unreadable status file %s: %s", status_path, exc)
                return PaneStatus(pane.index, pane.agent_name)

        exit_path = workdir / f"pane-{pane.index}.exit"
        if not exit_path.exists():
            return PaneStatus(pane.index, pane.agent_name)
        text = exit_path.read_text(encoding="utf-8").strip()
        if not text:
            return PaneStatus(pane.index, pane.agent_name)
        code = int(text)
        return PaneStatus(
            pane_index=pane.index,
            agent_name=pane.agent_name,
            state=PaneState.FAILED,
            exit_code=code,
            error=f"Pane process exited with code {code} without reporting a status",
        )

    async def teardown(self, handle: SessionHandle) -> None:
        await self._run("kill-session", "-t", handle.session_id)
        logger.info("Killed tmux session %s", handle.session_id)

    async def _run(self, *args: str) -> str:
        logger.debug("Running: %s %s", self.tmux, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.tmux,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise SessionHostError(f"'{self.tmux}' executable not found") from exc
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip() or "no output"
            raise SessionHostError(f"tmux {args[0]} failed with exit code {proc.returncode}: {detail}")
        return stdout.decode("utf-8", errors="replace").strip()
