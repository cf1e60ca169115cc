"""Loading task submissions and workflows from JSON, YAML or plain-text files."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from agent_runtime.core.models import ExecutionOptions, TaskPriority
from agent_runtime.orchestration.workflows import Workflow, build_workflow

_STRUCTURED = {"json", "yaml", "yml"}
_TEXT = {"txt", "md"}


@dataclass(slots=True)
class TaskSubmission:
    """A task as described in a file, ready for ``Orchestrator.execute_task``."""

    description: str = ""
    agents: List[str] = field(default_factory=list)
    payload: Any = None
    priority: TaskPriority = TaskPriority.MEDIUM
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> Union[str, List[str]]:
        """Explicit agent names win over the description."""
        return self.agents or self.description

    def options(self) -> ExecutionOptions:
        return ExecutionOptions(
            priority=self.priority,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "TaskSubmission":
        description = data.get("description") or data.get("task") or ""
        agents = data.get("agents") or []
        if isinstance(agents, str):
            agents = [agents]
        if not description and not agents:
            raise ValueError("Task file needs a 'description' or an 'agents' list")
        return cls(
            description=str(description),
            agents=[str(name) for name in agents],
            payload=data.get("payload", description),
            priority=TaskPriority.parse(data.get("priority", "medium")),
            timeout=float(data["timeout"]) if data.get("timeout") is not None else None,
            max_retries=int(data["max_retries"]) if data.get("max_retries") is not None else None,
            context=dict(data.get("context") or {}),
        )


def load_task_file(path: Union[str, Path], fmt: Optional[str] = None) -> TaskSubmission:
    """Read a task file. The format defaults to the file extension."""
    path = Path(path)
    fmt = (fmt or path.suffix.lstrip(".")).lower()
    text = path.read_text(encoding="utf-8")

    if fmt in _TEXT:
        description = text.strip()
        if not description:
            raise ValueError(f"Task file {path} is empty")
        return TaskSubmission(description=description, payload=description)
    if fmt not in _STRUCTURED:
        raise ValueError(f"Unsupported task file format '{fmt}'")

    data = _load_mapping(path, text, fmt)
    return TaskSubmission.from_mapping(data)


def load_workflow_file(path: Union[str, Path]) -> Workflow:
    """Read a workflow definition with ``id``, ``name`` and ``steps`` keys."""
    path = Path(path)
    fmt = path.suffix.lstrip(".").lower()
    if fmt not in _STRUCTURED:
        raise ValueError(f"Unsupported workflow file format '{fmt}'")
    data = _load_mapping(path, path.read_text(encoding="utf-8"), fmt)
    steps = data.get("steps")
    if not data.get("id") or not isinstance(steps, list):
        raise ValueError(f"Workflow file {path} needs an 'id' and a 'steps' list")
    return build_workflow(
        str(data["id"]),
        str(data.get("name") or data["id"]),
        steps,
        stop_on_failure=bool(data.get("stop_on_failure", True)),
    )


def _load_mapping(path: Path, text: str, fmt: str) -> Dict[str, Any]:
    data = json.loads(text) if fmt == "json" else yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"File {path} must contain a mapping at the top level")
    return data
