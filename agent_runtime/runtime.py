"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional, Sequence, Type

from agent_runtime.agents.base import Agent
from agent_runtime.agents.echo import EchoAgent
from agent_runtime.agents.template import TemplateAgent
from agent_runtime.config import RuntimeSettings, config
from agent_runtime.core.models import AgentDescriptor
from agent_runtime.orchestration.orchestrator import Orchestrator
from agent_runtime.orchestration.session_host import SessionHost, TmuxSessionHost
from agent_runtime.services.history import JobHistory

DEFAULT_CATALOG: Dict[str, Type[Agent]] = {
    "echo": EchoAgent,
    "template": TemplateAgent,
}

DEFAULT_AGENTS = (
    AgentDescriptor(
        name="legal-advisor",
        role="Legal Advisor",
        category="business",
        capabilities=frozenset({"legal", "contract", "compliance"}),
        kind="template",
        metadata={
            "templates": {"review": "Contract review for {subject}: no blocking clauses found."},
            "default_template": "Legal notes on {input}",
        },
    ),
    AgentDescriptor(
        name="financial-analyst",
        role="Financial Analyst",
        category="business",
        capabilities=frozenset({"finance", "audit", "budget", "forecast"}),
    ),
    AgentDescriptor(
        name="marketer",
        role="Marketer",
        category="business",
        capabilities=frozenset({"marketing", "campaign", "seo", "brand"}),
    ),
    AgentDescriptor(
        name="sales",
        role="Sales Representative",
        category="business",
        capabilities=frozenset({"sales", "pricing", "proposal"}),
    ),
    AgentDescriptor(
        name="data-engineer",
        role="Data Engineer",
        category="development",
        capabilities=frozenset({"data", "pipeline", "etl", "database"}),
    ),
    AgentDescriptor(
        name="designer",
        role="Designer",
        category="creative",
        capabilities=frozenset({"design", "landing page", "illustration"}),
    ),
)


def build_session_host(settings: RuntimeSettings) -> Optional[SessionHost]:
    if settings.session_host == "tmux":
        return TmuxSessionHost(settings.session_dir)
    if settings.session_host not in ("", "none"):
        raise ValueError(f"Unknown session host '{settings.session_host}'")
    return None


def build_orchestrator(
    settings: Optional[RuntimeSettings] = None,
    *,
    agents: Optional[Sequence[AgentDescriptor]] = None,
    catalog: Optional[Dict[str, Type[Agent]]] = None,
    session_host: Optional[SessionHost] = None,
) -> Orchestrator:
    """Create an orchestrator with agents registered but not yet initialized."""
    settings = settings or config
    orchestrator = Orchestrator(
        agent_catalog=catalog or DEFAULT_CATALOG,
        settings=settings,
        session_host=session_host or build_session_host(settings),
        history=JobHistory(settings.history_limit, settings.output_dir),
    )
    orchestrator.register_agents(DEFAULT_AGENTS if agents is None else agents)
    return orchestrator


def find_default_agent(name: str) -> AgentDescriptor:
    for descriptor in DEFAULT_AGENTS:
        if descriptor.name == name:
            return descriptor
    raise KeyError(f"No default agent named '{name}'")


@lru_cache
def get_orchestrator() -> Orchestrator:
    return build_orchestrator(config)
