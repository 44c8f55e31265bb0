"""Session stores holding per-conversation state."""

from .base import BaseSessionStore
from .factory import create_session_store
from .memory import InMemorySessionStore

__all__ = [
    "BaseSessionStore",
    "InMemorySessionStore",
    "create_session_store",
]
