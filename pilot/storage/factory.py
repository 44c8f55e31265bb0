"""Factory helpers for session store resolution from configuration."""

from __future__ import annotations

from ..config import OrchestratorConfig
from .base import BaseSessionStore
from .memory import InMemorySessionStore


def create_session_store(config: OrchestratorConfig) -> BaseSessionStore:
    """Create the session store sized by the orchestrator bounds."""
    return InMemorySessionStore(
        idle_timeout_seconds=config.session_idle_seconds,
        max_entries=config.max_sessions,
    )
