"""Tests for capability-based agent selection."""
from __future__ import annotations

import pytest

from agent_runtime.core.errors import (
    DuplicateAgentError,
    NoMatchingAgentError,
    SelectionError,
    UnknownAgentError,
)
from agent_runtime.core.models import AgentDescriptor
from agent_runtime.orchestration.selector import AgentRegistry, AgentSelector, shares_stem, tokenize
from agent_runtime.runtime import DEFAULT_AGENTS


def _descriptor(name: str, *capabilities: str, category: str = "business") -> AgentDescriptor:
    return AgentDescriptor(name=name, role=name.title(), category=category, capabilities=frozenset(capabilities))


@pytest.fixture
def registry() -> AgentRegistry:
    registry = AgentRegistry()
    registry.register(_descriptor("legal", "legal"))
    registry.register(_descriptor("finance", "finance"))
    registry.register(_descriptor("marketing", "marketing"))
    return registry


def test_financial_audit_routes_to_finance_only(registry: AgentRegistry) -> None:
    selector = AgentSelector(registry)

    selected = selector.select("Run a financial audit for Q3")

    assert [d.name for d in selected] == ["finance"]


def test_explicit_list_with_unknown_name_reports_every_unknown(registry: AgentRegistry) -> None:
    selector = AgentSelector(registry)

    with pytest.raises(UnknownAgentError) as excinfo:
        selector.select(["legal", "agentY", "agentZ"])

    assert excinfo.value.names == ("agentY", "agentZ")


def test_explicit_list_keeps_order_and_drops_duplicates(registry: AgentRegistry) -> None:
    selector = AgentSelector(registry)

    selected = selector.select(["marketing", "legal", "marketing"])

    assert [d.name for d in selected] == ["marketing", "legal"]


def test_empty_explicit_list_is_a_selection_error(registry: AgentRegistry) -> None:
    with pytest.raises(SelectionError):
        AgentSelector(registry).select([])


def test_no_agent_above_threshold_is_never_guessed(registry: AgentRegistry) -> None:
    selector = AgentSelector(registry)

    with pytest.raises(NoMatchingAgentError):
        selector.select("quantum chromodynamics lecture")


def test_threshold_filters_weak_stem_matches(registry: AgentRegistry) -> None:
    strict = AgentSelector(registry, min_relevance=1.0)

    with pytest.raises(NoMatchingAgentError):
        strict.select("financial review")
    assert [d.name for d in strict.select("finance review")] == ["finance"]


def test_context_hints_outrank_description_matches(registry: AgentRegistry) -> None:
    selector = AgentSelector(registry)

    ranked = selector.explain("marketing plan", {"capabilities": ["legal"]})

    assert ranked[0] == ("legal", 2.0)
    assert ranked[1] == ("marketing", 1.0)


def test_ties_break_by_declaration_order_and_candidates_are_capped() -> None:
    registry = AgentRegistry()
    for index in range(8):
        registry.register(_descriptor(f"writer-{index}", "writing"))
    selector = AgentSelector(registry, max_candidates=5)

    selected = selector.select("writing task")

    assert [d.name for d in selected] == [f"writer-{index}" for index in range(5)]


def test_selection_is_deterministic(registry: AgentRegistry) -> None:
    registry.register(_descriptor("growth", "marketing", "finance"))
    selector = AgentSelector(registry)

    first = selector.explain("marketing and finance plan")
    second = selector.explain("marketing and finance plan")

    assert first == second
    assert first[0][0] == "growth"


def test_registry_rejects_conflicting_descriptor() -> None:
    registry = AgentRegistry()
    assert registry.register(_descriptor("legal", "legal")) is True
    assert registry.register(_descriptor("legal", "legal")) is False

    with pytest.raises(DuplicateAgentError):
        registry.register(_descriptor("legal", "contracts"))


def test_registry_indexes_by_capability_and_category() -> None:
    registry = AgentRegistry()
    registry.register(_descriptor("legal", "Legal", "Compliance"))
    registry.register(_descriptor("data", "etl", category="development"))

    assert [d.name for d in registry.by_capability("compliance")] == ["legal"]
    assert [d.name for d in registry.by_category("development")] == ["data"]
    assert "legal" in registry
    assert len(registry) == 2


def test_tokenize_and_stem_helpers() -> None:
    assert tokenize("Please review the Contract") == ["review", "contract"]
    assert shares_stem("financial", "finance")
    assert not shares_stem("legal", "legacy")
    assert shares_stem("marketing", "markets")
    assert not shares_stem("audition", "audit")
    assert not shares_stem("contrast", "contract")


def _default_selector() -> AgentSelector:
    registry = AgentRegistry()
    for descriptor in DEFAULT_AGENTS:
        registry.register(descriptor)
    return AgentSelector(registry)


def test_unrelated_word_sharing_a_prefix_is_not_a_match() -> None:
    selector = _default_selector()

    with pytest.raises(NoMatchingAgentError):
        selector.select("Schedule an audition for the jingle")
    assert selector.explain("Schedule an audition for the jingle") == []


def test_contrast_does_not_pull_in_contract_work() -> None:
    selector = _default_selector()

    selected = selector.select("Raise the color contrast on the landing page")

    assert [d.name for d in selected] == ["designer"]


def test_inflected_forms_still_route_with_default_catalog() -> None:
    selector = _default_selector()

    selected = selector.select("Draft financial forecasts for the board")

    assert [d.name for d in selected] == ["financial-analyst"]
