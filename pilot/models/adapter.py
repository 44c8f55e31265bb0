"""Provider port and the value types exchanged across it."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol


USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """One entry of a conversation history."""
    role: Role
    content: str


@dataclass
class ConversationState:
    """History and system prompt for a single session.

    The system prompt is captured once at creation. Messages are only ever
    appended; the lock serialises the one adapter call that owns the state.
    """
    system_prompt: str
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def append(self, role: Role, content: str) -> None:
        self.messages.append(ChatMessage(role=role, content=content))

    @property
    def last_role(self) -> Role | None:
        return self.messages[-1].role if self.messages else None


@dataclass(frozen=True)
class ToolCall:
    """A tool call extracted from model output.

    `arguments` is the raw JSON text; nothing here checks it against the
    catalog.
    """
    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution, fed back to the model."""
    tool_call_id: str
    result: str
    is_error: bool = False
    name: str | None = None


@dataclass
class AiChatResponse:
    """Normalized response from any chat provider."""
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    is_complete: bool = True
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass(frozen=True)
class ModelSettings:
    """Frozen settings for remote model calls."""
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_s: float | None = None


class ProviderError(RuntimeError):
    """The remote model call failed."""

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class ProviderTimeoutError(ProviderError, TimeoutError):
    """The remote model call did not finish before its deadline."""

    def __init__(self, message: str):
        super().__init__(message, transient=True)


class SessionNotFoundError(LookupError):
    """Tool results arrived for a session that does not exist (or expired)."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ChatProvider(Protocol):
    """Protocol for chat providers. Any LLM backend must implement this."""

    def chat(
        self,
        session_id: str,
        user_message: str,
        system_prompt: str | None = None,
        *,
        timeout: float | None = None,
    ) -> AiChatResponse:
        """Send a user turn, creating the session on first use."""
        ...

    def continue_with_tool_results(
        self,
        session_id: str,
        tool_results: list[ToolResult],
        *,
        timeout: float | None = None,
    ) -> AiChatResponse:
        """Feed tool results into an existing session.

        `timeout` is the time left on the caller's deadline in seconds; the
        call should give up (raising ProviderTimeoutError) once it is spent.
        """
        ...

    def clear_session(self, session_id: str) -> None:
        """Drop a session and its history."""
        ...
