"""Agent that answers with static response templates selected by task type."""
from __future__ import annotations

from typing import Any, Dict, Mapping

from agent_runtime.agents.base import Agent
from agent_runtime.core.models import AgentDescriptor, Task


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class TemplateAgent(Agent):
    """Render ``metadata["templates"][task_type]`` with the task payload.

    The task type comes from ``task.context["task_type"]`` or, failing that,
    ``task.payload["type"]``. ``metadata["default_template"]`` is used for
    unknown types; with no default the task fails.
    """

    def __init__(self, descriptor: AgentDescriptor) -> None:
        super().__init__(descriptor)
        self.templates: Mapping[str, str] = {}
        self.default_template = descriptor.metadata.get("default_template")

    async def setup(self) -> None:
        templates = self.descriptor.metadata.get("templates", {})
        if not isinstance(templates, Mapping):
            raise TypeError("metadata['templates'] must be a mapping of task type to template")
        self.templates = dict(templates)

    async def process(self, task: Task) -> Dict[str, Any]:
        payload = task.payload if isinstance(task.payload, Mapping) else {"input": task.payload}
        task_type = task.context.get("task_type") or payload.get("type") or "default"
        template = self.templates.get(task_type, self.default_template)
        if template is None:
            raise ValueError(f"{self.name} has no template for task type '{task_type}'")

        return {
            "agent": self.name,
            "role": self.descriptor.role,
            "taskType": task_type,
            "content": template.format_map(_KeepMissing(payload)),
        }

    async def cleanup(self) -> None:
        self.templates = {}
