"""Chat provider base that owns conversation state.

Remote models used here have no native function calling and no tool-result
role: the whole history is replayed on every call, tool results go back as
user messages, and tool calls are recovered from the reply text. Concrete
adapters only implement `_complete`, one blocking round trip.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from ..prompts import TOOL_RESULT_FRAMING
from ..storage.base import BaseSessionStore
from .adapter import (
    ASSISTANT_ROLE,
    USER_ROLE,
    AiChatResponse,
    ChatMessage,
    ConversationState,
    ProviderTimeoutError,
    SessionNotFoundError,
    ToolCall,
    ToolResult,
)
from .parser import extract_think_tags, new_call_id, parse_response

logger = logging.getLogger(__name__)

EMPTY_COMPLETION_TEXT = "I couldn't generate a response. Please try again."


@dataclass
class Completion:
    """Raw outcome of one remote model call."""
    text: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _deadline(timeout: float | None) -> float | None:
    return None if timeout is None else time.monotonic() + timeout


def serialize_history(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert history to chat-completion messages.

    Consecutive messages with the same role (left behind when an earlier call
    failed after the user turn was recorded) are merged so the outbound
    request still alternates.
    """
    out: list[dict[str, str]] = []
    for message in messages:
        if out and out[-1]["role"] == message.role:
            out[-1]["content"] = f"{out[-1]['content']}\n\n{message.content}"
        else:
            out.append({"role": message.role, "content": message.content})
    return out


def format_tool_results(tool_results: list[ToolResult]) -> str:
    """Render tool results as a single user message."""
    blocks = [TOOL_RESULT_FRAMING]
    for result in tool_results:
        status = "error" if result.is_error else "ok"
        label = f" name={result.name}" if result.name else ""
        blocks.append(f"[tool_result id={result.tool_call_id}{label} status={status}]\n{result.result}")
    return "\n\n".join(blocks)


def _history_entry_for_call(tool_call: ToolCall) -> str:
    try:
        arguments: Any = json.loads(tool_call.arguments)
    except (json.JSONDecodeError, ValueError):
        arguments = tool_call.arguments
    payload = json.dumps({"name": tool_call.name, "arguments": arguments}, ensure_ascii=False)
    return f"```tool_call\n{payload}\n```"


class SessionChatProvider(ABC):
    """Implements the chat provider port on top of a session store."""

    def __init__(
        self,
        store: BaseSessionStore,
        default_system_prompt: Callable[[], str],
        *,
        id_factory: Callable[[], str] = new_call_id,
    ):
        self.store = store
        self._default_system_prompt = default_system_prompt
        self._id_factory = id_factory

    @abstractmethod
    def _complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        timeout: float | None = None,
    ) -> Completion:
        """Perform exactly one remote call. Raise ProviderError on failure.

        `timeout` is the time left before the caller gives up; adapters pass
        it to their transport so the request is cut off there.
        """

    @contextmanager
    def _session_lock(self, session_id: str, state: ConversationState, deadline: float | None) -> Iterator[None]:
        if deadline is None:
            acquired = state.lock.acquire()
        else:
            acquired = state.lock.acquire(timeout=max(deadline - time.monotonic(), 0.0))
        if not acquired:
            logger.warning("Session %s is still busy with an earlier call", session_id)
            raise ProviderTimeoutError(f"Session {session_id} is busy with an earlier request")
        try:
            yield
        finally:
            state.lock.release()

    def chat(
        self,
        session_id: str,
        user_message: str,
        system_prompt: str | None = None,
        *,
        timeout: float | None = None,
    ) -> AiChatResponse:
        deadline = _deadline(timeout)

        def new_state() -> ConversationState:
            logger.info("Creating session %s", session_id)
            return ConversationState(system_prompt=system_prompt or self._default_system_prompt())

        state = self.store.get_or_create(session_id, new_state)
        logger.info("Session %s user: %s", session_id, _preview(user_message))
        with self._session_lock(session_id, state, deadline):
            state.append(USER_ROLE, user_message)
            return self._respond(session_id, state, deadline)

    def continue_with_tool_results(
        self,
        session_id: str,
        tool_results: list[ToolResult],
        *,
        timeout: float | None = None,
    ) -> AiChatResponse:
        deadline = _deadline(timeout)
        state = self.store.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        with self._session_lock(session_id, state, deadline):
            state.append(USER_ROLE, format_tool_results(tool_results))
            return self._respond(session_id, state, deadline)

    def clear_session(self, session_id: str) -> None:
        logger.info("Clearing session %s", session_id)
        self.store.invalidate(session_id)

    def _respond(self, session_id: str, state: ConversationState, deadline: float | None) -> AiChatResponse:
        messages = serialize_history(state.messages)
        logger.info("Model call for session %s (%d messages)", session_id, len(messages))
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProviderTimeoutError(f"No time left to call the model for session {session_id}")
        completion = self._complete(state.system_prompt, messages, remaining)
        if deadline is not None and time.monotonic() > deadline:
            # The caller has already given up; nobody will see this reply.
            logger.warning("Discarding late completion for session %s", session_id)
            raise ProviderTimeoutError(f"Model reply for session {session_id} arrived after the deadline")

        _, text = extract_think_tags(completion.text)
        text = (text or "").strip()
        if not text:
            logger.warning("Empty completion for session %s (finish_reason=%s)", session_id, completion.finish_reason)
            state.append(ASSISTANT_ROLE, EMPTY_COMPLETION_TEXT)
            return AiChatResponse(
                text=EMPTY_COMPLETION_TEXT,
                is_complete=True,
                stop_reason=completion.finish_reason or "empty",
                usage=completion.usage,
            )

        parsed = parse_response(text, self._id_factory)
        if parsed.tool_call is None:
            state.append(ASSISTANT_ROLE, parsed.text)
            return AiChatResponse(
                text=parsed.text,
                is_complete=True,
                stop_reason=completion.finish_reason,
                usage=completion.usage,
            )

        logger.debug("Session %s tool call %s %s", session_id, parsed.tool_call.name, parsed.tool_call.arguments)
        state.append(ASSISTANT_ROLE, parsed.text or _history_entry_for_call(parsed.tool_call))
        return AiChatResponse(
            text=parsed.text,
            tool_calls=[parsed.tool_call],
            is_complete=False,
            stop_reason="tool_call",
            usage=completion.usage,
        )
