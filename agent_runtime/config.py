"""Configuration management for the agent runtime."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime configuration loaded from environment variables."""

    max_concurrency: int = 5
    max_retries: int = 3
    backoff_base: float = 1.0
    default_timeout: float = 300.0
    max_candidates: int = 5
    min_relevance: float = 0.5
    shutdown_grace: float = 30.0
    history_limit: int = 100
    output_dir: Optional[Path] = None
    session_host: str = "none"
    session_dir: Path = Path(".agent-sessions")
    session_poll_interval: float = 1.0
    log_level: str = "INFO"
    environment: str = "development"

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.backoff_base < 0:
            raise ValueError("backoff_base cannot be negative")

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        """Load configuration from environment variables."""
        output_dir = os.getenv("AGENT_RUNTIME_OUTPUT_DIR")
        return cls(
            max_concurrency=_env_int("AGENT_RUNTIME_MAX_CONCURRENCY", 5),
            max_retries=_env_int("AGENT_RUNTIME_MAX_RETRIES", 3),
            backoff_base=_env_float("AGENT_RUNTIME_BACKOFF_BASE", 1.0),
            default_timeout=_env_float("AGENT_RUNTIME_DEFAULT_TIMEOUT", 300.0),
            max_candidates=_env_int("AGENT_RUNTIME_MAX_CANDIDATES", 5),
            min_relevance=_env_float("AGENT_RUNTIME_MIN_RELEVANCE", 0.5),
            shutdown_grace=_env_float("AGENT_RUNTIME_SHUTDOWN_GRACE", 30.0),
            history_limit=_env_int("AGENT_RUNTIME_HISTORY_LIMIT", 100),
            output_dir=Path(output_dir) if output_dir else None,
            session_host=os.getenv("AGENT_RUNTIME_SESSION_HOST", "none").lower(),
            session_dir=Path(os.getenv("AGENT_RUNTIME_SESSION_DIR", ".agent-sessions")),
            session_poll_interval=_env_float("AGENT_RUNTIME_SESSION_POLL_INTERVAL", 1.0),
            log_level=os.getenv("AGENT_RUNTIME_LOG_LEVEL", "INFO").upper(),
            environment=os.getenv("ENVIRONMENT", "development"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a timestamped root handler once."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


# Global config instance
config = RuntimeSettings.from_env()
