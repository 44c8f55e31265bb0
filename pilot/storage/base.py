"""Base abstraction for conversation session stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from ..models.adapter import ConversationState


class BaseSessionStore(ABC):
    """Maps session ids to conversation state with bounded lifetime."""

    @abstractmethod
    def get_or_create(
        self,
        session_id: str,
        factory: Callable[[], ConversationState],
    ) -> ConversationState:
        """Return the live state for `session_id`, creating it atomically if absent."""

    @abstractmethod
    def get(self, session_id: str) -> ConversationState | None:
        """Return the live state for `session_id` without creating one."""

    @abstractmethod
    def invalidate(self, session_id: str) -> None:
        """Remove the session immediately."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of live sessions."""

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None
