"""FastAPI entry-point exposing the agent runtime."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from agent_runtime.api.routes import router as agents_router
from agent_runtime.api.sessions import router as sessions_router
from agent_runtime.api.tasks import router as tasks_router
from agent_runtime.api.workflows import router as workflows_router
from agent_runtime.config import config, configure_logging
from agent_runtime.runtime import get_orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize every agent on startup and drain them on shutdown."""
    configure_logging(config.log_level)
    orchestrator = get_orchestrator()
    await orchestrator.initialize_all()
    yield
    await orchestrator.shutdown_all()


app = FastAPI(title="Agent Task Runtime", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(tasks_router)
app.include_router(sessions_router)
app.include_router(workflows_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "environment": config.environment}
