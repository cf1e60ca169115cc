"""Workflow registration and execution routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from agent_runtime.api.routes import http_error
from agent_runtime.core.errors import AgentRuntimeError
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.orchestration.workflows import build_workflow
from agent_runtime.runtime import get_orchestrator

router = APIRouter(prefix="/workflows", tags=["workflows"])


class WorkflowRequest(BaseModel):
    workflow_id: str
    name: str = ""
    steps: List[Dict[str, Any]] = Field(..., description="Steps with agent, name, payload, depends_on, priority")
    stop_on_failure: bool = True


class WorkflowRunRequest(BaseModel):
    context: Dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def list_workflows(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[dict]:
    return [workflow.to_dict() for workflow in orchestrator.list_workflows()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_workflow(
    request: WorkflowRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        workflow = build_workflow(
            request.workflow_id,
            request.name or request.workflow_id,
            request.steps,
            stop_on_failure=request.stop_on_failure,
        )
        orchestrator.register_workflow(workflow)
    except AgentRuntimeError as exc:
        raise http_error(exc) from exc
    return workflow.to_dict()


@router.post("/{workflow_id}/run")
async def run_workflow(
    workflow_id: str,
    request: Optional[WorkflowRunRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        result = await orchestrator.execute_workflow(workflow_id, request.context if request else None)
    except AgentRuntimeError as exc:
        raise http_error(exc) from exc
    return result.to_dict()
