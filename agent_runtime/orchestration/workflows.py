"""Sequential multi-step workflows built on top of task execution."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from agent_runtime.core.errors import WorkflowError
from agent_runtime.core.models import ExecutionOptions, JobResult, TaskPriority, utcnow

logger = logging.getLogger(__name__)

ExecuteStep = Callable[..., Awaitable[JobResult]]


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    agent_name: str
    payload: Any = None
    name: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    priority: TaskPriority = TaskPriority.MEDIUM

    @property
    def step_name(self) -> str:
        return self.name or self.agent_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.step_name,
            "agent": self.agent_name,
            "payload": self.payload,
            "dependsOn": list(self.depends_on),
            "priority": self.priority.value,
        }


@dataclass(frozen=True, slots=True)
class Workflow:
    workflow_id: str
    name: str
    steps: Tuple[WorkflowStep, ...]
    stop_on_failure: bool = True

    def validate(self) -> None:
        """Step names must be unique and dependencies must point backwards."""
        if not self.steps:
            raise WorkflowError(f"Workflow '{self.workflow_id}' has no steps")
        seen: List[str] = []
        for step in self.steps:
            if step.step_name in seen:
                raise WorkflowError(f"Workflow '{self.workflow_id}' repeats step '{step.step_name}'")
            missing = [dep for dep in step.depends_on if dep not in seen]
            if missing:
                raise WorkflowError(
                    f"Step '{step.step_name}' depends on {missing}, which do not run before it"
                )
            seen.append(step.step_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "name": self.name,
            "stopOnFailure": self.stop_on_failure,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass(slots=True)
class WorkflowResult:
    workflow_id: str
    steps: Dict[str, JobResult] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.skipped and all(result.success for result in self.steps.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "success": self.success,
            "steps": {name: result.to_dict() for name, result in self.steps.items()},
            "skipped": list(self.skipped),
            "elapsedMs": round(self.elapsed_ms, 3),
        }


class WorkflowRunner:
    """Runs a workflow's steps in order through ``execute``.

    ``execute`` has the signature of ``Orchestrator.execute_task``.
    """

    def __init__(self, execute: ExecuteStep) -> None:
        self._execute = execute

    async def run(self, workflow: Workflow, context: Optional[Mapping[str, Any]] = None) -> WorkflowResult:
        workflow.validate()
        started = utcnow()
        result = WorkflowResult(workflow_id=workflow.workflow_id)
        previous: Dict[str, Any] = {}
        stopped = False

        for step in workflow.steps:
            if stopped or not self._dependencies_met(step, result):
                logger.warning("Workflow %s skipping step %s", workflow.workflow_id, step.step_name)
                result.skipped.append(step.step_name)
                continue

            step_context = dict(context or {})
            step_context.update(
                {
                    "workflow_id": workflow.workflow_id,
                    "workflow_step": step.step_name,
                    "previous_results": dict(previous),
                }
            )
            job = await self._execute(
                [step.agent_name],
                step.payload,
                options=ExecutionOptions(priority=step.priority),
                context=step_context,
            )
            result.steps[step.step_name] = job
            previous[step.step_name] = _step_output(job)
            logger.info(
                "Workflow %s step %s finished: %s", workflow.workflow_id, step.step_name, job.status
            )
            if not job.success and workflow.stop_on_failure:
                stopped = True

        result.elapsed_ms = (utcnow() - started).total_seconds() * 1000.0
        return result

    @staticmethod
    def _dependencies_met(step: WorkflowStep, result: WorkflowResult) -> bool:
        return all(dep in result.steps and result.steps[dep].success for dep in step.depends_on)


def _step_output(job: JobResult) -> Any:
    outputs = [entry.result for entry in job.per_agent if entry.success]
    if len(outputs) == 1:
        return outputs[0]
    return outputs


def build_workflow(
    workflow_id: str,
    name: str,
    steps: Sequence[Mapping[str, Any]],
    *,
    stop_on_failure: bool = True,
) -> Workflow:
    """Build a workflow from plain mappings such as an HTTP body or a YAML file."""
    built = []
    for index, step in enumerate(steps):
        if not isinstance(step, Mapping) or not step.get("agent"):
            raise WorkflowError(f"Step {index} of workflow '{workflow_id}' needs an 'agent'")
        try:
            priority = TaskPriority.parse(step.get("priority", "medium"))
        except ValueError as exc:
            raise WorkflowError(str(exc)) from exc
        built.append(
            WorkflowStep(
                agent_name=str(step["agent"]),
                payload=step.get("payload"),
                name=step.get("name"),
                depends_on=tuple(step.get("depends_on") or ()),
                priority=priority,
            )
        )
    return Workflow(workflow_id=workflow_id, name=name, steps=tuple(built), stop_on_failure=stop_on_failure)
