"""Session-host execution routes."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from agent_runtime.api.routes import http_error
from agent_runtime.api.tasks import TaskRequest
from agent_runtime.core.errors import AgentRuntimeError
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.orchestration.session_host import PaneState, PaneStatus
from agent_runtime.runtime import get_orchestrator

router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionTaskRequest(TaskRequest):
    session_name: Optional[str] = Field(None, description="Session name; derived from the task id if omitted")


class PaneStatusRequest(BaseModel):
    agent_name: str
    state: str = Field(..., description="pending, succeeded or failed")
    exit_code: Optional[int] = None
    output: Any = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0


@router.post("/tasks")
async def submit_session_task(
    request: SessionTaskRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    """Run the selected agents in panes of a new session and wait for them."""
    if not request.description and not request.agents:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Either 'description' or 'agents' is required",
        )
    try:
        result = await orchestrator.execute_in_session(
            request.target,
            request.payload,
            options=request.options(),
            context=request.task_context(),
            session_name=request.session_name,
        )
    except AgentRuntimeError as exc:
        raise http_error(exc) from exc
    return result.to_dict()


@router.post("/{session_id}/panes/{index}/status", status_code=status.HTTP_202_ACCEPTED)
async def report_pane_status(
    session_id: str,
    index: int,
    request: PaneStatusRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        pane_state = PaneState(request.state.lower())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    pane_status = PaneStatus(
        pane_index=index,
        agent_name=request.agent_name,
        state=pane_state,
        exit_code=request.exit_code,
        output=request.output,
        error=request.error,
        elapsed_ms=request.elapsed_ms,
    )
    try:
        accepted = await orchestrator.report_pane_status(session_id, pane_status)
    except KeyError as exc:
        detail = exc.args[0] if exc.args else str(exc)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return {"accepted": accepted}
