"""HTTP API exposing registered agents and runtime status."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from agent_runtime.core.errors import (
    AgentRuntimeError,
    NoMatchingAgentError,
    RuntimeNotAcceptingTasksError,
    RuntimeStateError,
    SelectionError,
    SessionHostError,
    UnknownAgentError,
    WorkflowError,
)
from agent_runtime.core.models import AgentDescriptor, AgentStatus
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.runtime import get_orchestrator

router = APIRouter(tags=["agents"])


def http_error(exc: AgentRuntimeError) -> HTTPException:
    """Translate a runtime error into the matching HTTP status."""
    if isinstance(exc, UnknownAgentError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (NoMatchingAgentError, SelectionError, WorkflowError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, RuntimeNotAcceptingTasksError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, SessionHostError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, RuntimeStateError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


class AgentResponse(BaseModel):
    name: str
    role: str
    category: str
    kind: str
    capabilities: List[str]
    description: str = ""
    state: Optional[str] = None
    queue_depth: int = 0
    task_count: int = 0
    last_error: Optional[str] = None

    @classmethod
    def from_descriptor(
        cls,
        descriptor: AgentDescriptor,
        agent_status: Optional[AgentStatus] = None,
    ) -> "AgentResponse":
        return cls(
            name=descriptor.name,
            role=descriptor.role,
            category=descriptor.category,
            kind=descriptor.kind,
            capabilities=sorted(descriptor.capabilities),
            description=descriptor.description,
            state=agent_status.state.value if agent_status else None,
            queue_depth=agent_status.queue_depth if agent_status else 0,
            task_count=agent_status.task_count if agent_status else 0,
            last_error=agent_status.last_error if agent_status else None,
        )


@router.get("/agents", response_model=List[AgentResponse])
async def list_agents(
    category: Optional[str] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[AgentResponse]:
    return [
        AgentResponse.from_descriptor(descriptor, orchestrator.agent_status(descriptor.name))
        for descriptor in orchestrator.list_agents(category)
    ]


@router.get("/agents/{name}", response_model=AgentResponse)
async def get_agent(name: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> AgentResponse:
    descriptor = orchestrator.get_agent(name)
    if descriptor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown agent")
    return AgentResponse.from_descriptor(descriptor, orchestrator.agent_status(name))


@router.get("/status")
async def system_status(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    return orchestrator.get_system_status().to_dict()
