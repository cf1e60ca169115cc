"""Agent registry and capability-based task routing."""
from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from agent_runtime.core.errors import (
    DuplicateAgentError,
    NoMatchingAgentError,
    SelectionError,
    UnknownAgentError,
)
from agent_runtime.core.models import AgentDescriptor, normalize_tags

logger = logging.getLogger(__name__)

HINT_WEIGHT = 2.0
EXACT_WEIGHT = 1.0
STEM_WEIGHT = 0.5

_TOKEN = re.compile(r"\w+", re.UNICODE)
_STOP_WORDS = frozenset(
    {"a", "an", "and", "the", "of", "for", "to", "in", "on", "with", "by", "or", "please", "our", "my"}
)


def tokenize(text: str) -> List[str]:
    return [token for token in _TOKEN.findall(text.lower()) if token not in _STOP_WORDS]


# Word endings that may differ between two forms of the same word.
_INFLECTIONS = frozenset({"", "e", "s", "es", "ed", "ing", "al", "ial", "er", "ers", "ly"})


def shares_stem(left: str, right: str, min_prefix: int = 5, min_ratio: float = 0.7) -> bool:
    """True for inflections of one word, e.g. ``financial`` and ``finance``.

    Both words must share a long prefix and differ only by an inflectional
    ending, so ``audition`` does not match ``audit``.
    """
    prefix = len(os.path.commonprefix([left, right]))
    if prefix < min_prefix or prefix < min_ratio * min(len(left), len(right)):
        return False
    return left[prefix:] in _INFLECTIONS and right[prefix:] in _INFLECTIONS


class AgentRegistry:
    """Registered descriptors in declaration order plus a tag index."""

    def __init__(self) -> None:
        self._descriptors: Dict[str, AgentDescriptor] = {}
        self._index: Dict[str, List[str]] = {}
        self._order: Dict[str, int] = {}

    def register(self, descriptor: AgentDescriptor) -> bool:
        """Register a descriptor. Returns ``False`` if it was already present."""
        existing = self._descriptors.get(descriptor.name)
        if existing is not None:
            if existing == descriptor:
                return False
            raise DuplicateAgentError(descriptor.name)
        self._descriptors[descriptor.name] = descriptor
        self._order[descriptor.name] = len(self._order)
        for tag in sorted(descriptor.capabilities):
            self._index.setdefault(tag, []).append(descriptor.name)
        logger.info("Agent registered: %s (%s)", descriptor.name, descriptor.role)
        return True

    def get(self, name: str) -> Optional[AgentDescriptor]:
        return self._descriptors.get(name)

    def require(self, name: str) -> AgentDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise UnknownAgentError([name])
        return descriptor

    def names(self) -> List[str]:
        return list(self._descriptors)

    def descriptors(self) -> List[AgentDescriptor]:
        return list(self._descriptors.values())

    def by_category(self, category: str) -> List[AgentDescriptor]:
        return [d for d in self._descriptors.values() if d.category == category]

    def by_capability(self, capability: str) -> List[AgentDescriptor]:
        return [self._descriptors[name] for name in self._index.get(capability.lower(), [])]

    def capability_index(self) -> Mapping[str, Sequence[str]]:
        return self._index

    def position(self, name: str) -> int:
        return self._order[name]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


class AgentSelector:
    """Maps a task description, or an explicit name list, to agents.

    Each capability tag contributes the best of: ``HINT_WEIGHT`` when it is
    named in ``context["capabilities"]``, ``EXACT_WEIGHT`` when a word of the
    tag appears in the description, ``STEM_WEIGHT`` when a description word
    shares its stem. Agents below ``min_relevance`` are never guessed.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        max_candidates: int = 5,
        min_relevance: float = 0.5,
    ) -> None:
        self._registry = registry
        self.max_candidates = max_candidates
        self.min_relevance = min_relevance

    def select(
        self,
        target: Union[str, Sequence[str]],
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[AgentDescriptor]:
        if isinstance(target, str):
            return self.select_candidates(target, context)
        return self.select_explicit(target)

    def select_candidates(
        self,
        description: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[AgentDescriptor]:
        ranked = self.explain(description, context)
        selected = [name for name, score in ranked if score >= self.min_relevance]
        if not selected:
            raise NoMatchingAgentError(description, self.min_relevance)
        chosen = [self._registry.require(name) for name in selected[: self.max_candidates]]
        logger.debug("Selected %s for %r", [d.name for d in chosen], description[:80])
        return chosen

    def select_explicit(self, names: Iterable[str]) -> List[AgentDescriptor]:
        requested = list(dict.fromkeys(names))
        if not requested:
            raise SelectionError("Explicit agent list is empty")
        unknown = [name for name in requested if name not in self._registry]
        if unknown:
            raise UnknownAgentError(unknown)
        return [self._registry.require(name) for name in requested]

    def explain(
        self,
        description: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[Tuple[str, float]]:
        """Every agent with a non-zero score, best first, ties by declaration order."""
        tokens = frozenset(tokenize(description))
        hints = _extract_hints(context)
        scores: Dict[str, float] = {}
        for tag, names in self._registry.capability_index().items():
            weight = self._tag_weight(tag, tokens, hints)
            if not weight:
                continue
            for name in names:
                scores[name] = scores.get(name, 0.0) + weight
        return sorted(
            scores.items(),
            key=lambda item: (-item[1], self._registry.position(item[0])),
        )

    @staticmethod
    def _tag_weight(tag: str, tokens: FrozenSet[str], hints: FrozenSet[str]) -> float:
        if tag in hints:
            return HINT_WEIGHT
        words = tokenize(tag) or [tag]
        if any(word in tokens for word in words):
            return EXACT_WEIGHT
        if any(shares_stem(word, token) for word in words for token in tokens):
            return STEM_WEIGHT
        return 0.0


def _extract_hints(context: Optional[Mapping[str, Any]]) -> FrozenSet[str]:
    if not context:
        return frozenset()
    hints = context.get("capabilities")
    if hints is None:
        return frozenset()
    if isinstance(hints, str):
        hints = [hints]
    return normalize_tags(hints)
