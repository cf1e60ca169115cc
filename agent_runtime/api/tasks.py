"""Task submission and history routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from agent_runtime.api.routes import http_error
from agent_runtime.core.errors import AgentRuntimeError
from agent_runtime.core.models import ExecutionOptions, TaskPriority
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.runtime import get_orchestrator

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskRequest(BaseModel):
    description: Optional[str] = Field(None, description="Free-text task routed by capability")
    agents: Optional[List[str]] = Field(None, description="Explicit agent names; overrides routing")
    payload: Any = None
    priority: str = Field("medium", description="critical, high, medium or low")
    timeout: Optional[float] = Field(None, gt=0, description="Overall deadline in seconds")
    max_retries: Optional[int] = Field(None, ge=0)
    task_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def target(self) -> Union[str, List[str]]:
        return self.agents or self.description or ""

    def options(self) -> ExecutionOptions:
        try:
            priority = TaskPriority.parse(self.priority)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        return ExecutionOptions(
            priority=priority,
            timeout=self.timeout,
            max_retries=self.max_retries,
            task_id=self.task_id,
        )

    def task_context(self) -> Dict[str, Any]:
        context = dict(self.context)
        if self.agents and self.description:
            context.setdefault("description", self.description)
        return context


@router.post("")
async def submit_task(
    request: TaskRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    if not request.description and not request.agents:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Either 'description' or 'agents' is required",
        )
    try:
        result = await orchestrator.execute_task(
            request.target,
            request.payload,
            options=request.options(),
            context=request.task_context(),
        )
    except AgentRuntimeError as exc:
        raise http_error(exc) from exc
    return result.to_dict(include_history=True)


@router.get("/history")
async def task_history(
    limit: int = Query(20, ge=1, le=1000),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[dict]:
    return [result.to_dict() for result in orchestrator.task_history(limit)]


@router.get("/{task_id}")
async def task_result(
    task_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    result = orchestrator.get_task_result(task_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No finished task '{task_id}'")
    return result.to_dict(include_history=True)
