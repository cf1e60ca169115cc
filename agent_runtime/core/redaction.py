"""Masking of secrets before payloads reach logs or disk."""
from __future__ import annotations

import re
from typing import Any

SENSITIVE_KEYS = (
    "password",
    "passwd",
    "token",
    "secret",
    "credential",
    "api_key",
    "apikey",
    "authorization",
    "private_key",
    "certificate",
)

# Markers that only count as a whole word of the key, so ``author`` stays visible.
SENSITIVE_WORDS = frozenset({"auth"})

_KEY_WORDS = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")

_SENSITIVE_PATTERNS = (
    re.compile(r"(?i)\b(password|token|secret|api_key|credential)\s*[:=]\s*\S+"),
    re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
)


def mask(value: str) -> str:
    """Keep the first and last two characters of long values."""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:2]}{'*' * max(4, len(value) - 4)}{value[-2:]}"


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in SENSITIVE_KEYS):
        return True
    return any(word.lower() in SENSITIVE_WORDS for word in _KEY_WORDS.findall(key))


def redact_text(text: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub(lambda match: mask(match.group(0)), text)
    return text


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive keys and patterns masked."""
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {
            key: mask(str(item)) if is_sensitive_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def preview(value: Any, limit: int = 100) -> str:
    """Short, redacted, single-line rendering for log messages."""
    text = redact_text(str(value)) if not isinstance(value, (dict, list, tuple)) else str(redact(value))
    text = " ".join(text.split())
    return text if len(text) <= limit else f"{text[:limit]}..."
