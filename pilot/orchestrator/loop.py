"""Pilot conversation loop: drives a chat provider through bounded tool rounds."""

from __future__ import annotations

import concurrent.futures
import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping

from ..config import OrchestratorConfig
from ..models.adapter import (
    AiChatResponse,
    ChatProvider,
    ProviderError,
    SessionNotFoundError,
    ToolCall,
    ToolResult,
)
from ..tools.catalog import ToolCatalog
from ..tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

FAILED_TEXT = "Sorry, something went wrong while handling your request. Please try again."
TIMED_OUT_TEXT = "This is taking longer than expected. Please try again."
EXCEEDED_ROUNDS_TEXT = "I wasn't able to complete that request. Could you try rephrasing it?"
EMPTY_ANSWER_TEXT = "I couldn't generate a response. Please try again."


class LoopState(str, Enum):
    AWAITING_MODEL = "AWAITING_MODEL"
    EXECUTING_TOOL = "EXECUTING_TOOL"
    DONE = "DONE"
    EXCEEDED_ROUNDS = "EXCEEDED_ROUNDS"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


class TurnTimeoutError(TimeoutError):
    """The turn deadline passed while waiting on the model or a tool."""


@dataclass
class LoopEvent:
    """A single event in the turn timeline."""

    type: str
    data: dict[str, Any]
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolExecutionRecord:
    """One tool call seen during a turn and what came back for it."""

    tool_call: ToolCall
    result: ToolResult
    executed: bool
    round: int


@dataclass
class TurnOutcome:
    """Everything the caller needs about one user turn."""

    session_id: str
    text: str = ""
    state: LoopState = LoopState.AWAITING_MODEL
    rounds: int = 0
    response: AiChatResponse | None = None
    executions: list[ToolExecutionRecord] = field(default_factory=list)
    events: list[LoopEvent] = field(default_factory=list)
    stop_reason: str | None = None
    error: str | None = None

    @property
    def tool_calls(self) -> list[ToolCall]:
        """Pending tool calls; always empty once the loop has finished."""
        if self.state is LoopState.DONE and self.response is not None:
            return list(self.response.tool_calls)
        return []

    @property
    def last_successful_execution(self) -> ToolExecutionRecord | None:
        for record in reversed(self.executions):
            if record.executed and not record.result.is_error:
                return record
        return None

    def tool_call_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.executions:
            counts[record.tool_call.name] = counts.get(record.tool_call.name, 0) + 1
        return counts


def _error_result(call: ToolCall, payload: dict[str, Any]) -> ToolResult:
    return ToolResult(
        tool_call_id=call.id,
        result=json.dumps(payload, ensure_ascii=False),
        is_error=True,
        name=call.name,
    )


class ChatOrchestrator:
    """Runs user turns: model call, tool dispatch, continue, until a final answer.

    Blocking provider and executor calls run on a worker pool so the turn
    deadline can be enforced at both boundaries. Model calls are also handed
    the time left, so the transport cuts them off and a late reply is never
    written to the session history.
    """

    def __init__(
        self,
        provider: ChatProvider,
        executor: ToolExecutor,
        catalog: ToolCatalog,
        config: OrchestratorConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.executor = executor
        self.catalog = catalog
        self.config = config or OrchestratorConfig()
        self._clock = clock
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="pilot-turn",
        )

    def close(self) -> None:
        self._pool.shutdown(wait=False)

    def __enter__(self) -> "ChatOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())

    def clear_session(self, session_id: str) -> None:
        self.provider.clear_session(session_id)

    # ─── Internals ─────────────────────────────────────────────────────────

    def _transition(self, outcome: TurnOutcome, state: LoopState) -> None:
        outcome.state = state
        outcome.events.append(LoopEvent(type="state", data={"state": state.value, "round": outcome.rounds}))

    def _call(self, deadline: float, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise TurnTimeoutError("turn deadline already passed")
        future = self._pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=remaining)
        except concurrent.futures.TimeoutError as err:
            future.cancel()
            raise TurnTimeoutError(f"no result within {remaining:.1f}s") from err

    def _model_call(
        self,
        outcome: TurnOutcome,
        deadline: float,
        fn: Callable[..., AiChatResponse],
        *args: Any,
    ) -> AiChatResponse:
        self._transition(outcome, LoopState.AWAITING_MODEL)
        started = time.time()

        def invoke() -> AiChatResponse:
            return fn(*args, timeout=max(deadline - self._clock(), 0.0))

        response = self._call(deadline, invoke)
        outcome.events.append(
            LoopEvent(
                type="model_call",
                data={
                    "round": outcome.rounds,
                    "tool_calls": [call.name for call in response.tool_calls],
                    "is_complete": response.is_complete,
                    "stop_reason": response.stop_reason,
                    "usage": dict(response.usage),
                    "duration_s": round(time.time() - started, 3),
                },
            )
        )
        outcome.response = response
        return response

    def _dispatch(
        self,
        outcome: TurnOutcome,
        deadline: float,
        call: ToolCall,
        context: Mapping[str, Any] | None,
    ) -> ToolResult:
        outcome.events.append(
            LoopEvent(
                type="tool_call",
                data={"id": call.id, "name": call.name, "arguments": call.arguments, "round": outcome.rounds},
            )
        )

        executed = False
        if call.name not in self.catalog:
            logger.warning("Session %s: model asked for unknown tool %r", outcome.session_id, call.name)
            result = _error_result(call, {"error": f"unknown tool: {call.name}", "available_tools": self.catalog.names})
        else:
            errors = self.catalog.validate_arguments(call.name, call.arguments)
            if errors:
                logger.warning("Session %s: %d schema error(s) in arguments for %s", outcome.session_id, len(errors), call.name)
                logger.debug("Schema errors for %s: %s", call.name, errors)
                result = _error_result(call, {"error": f"invalid arguments for {call.name}", "details": errors})
            else:
                logger.info("Session %s: executing tool %s", outcome.session_id, call.name)
                logger.debug("Tool %s arguments: %s", call.name, call.arguments)
                try:
                    result = self._call(
                        deadline, self.executor.execute, call.name, call.arguments, context=context
                    )
                    executed = True
                except TurnTimeoutError:
                    result = _error_result(call, {"error": f"{call.name} did not finish in time"})
                    outcome.executions.append(
                        ToolExecutionRecord(tool_call=call, result=result, executed=False, round=outcome.rounds)
                    )
                    raise
                except Exception as err:
                    logger.exception("Session %s: tool %s raised", outcome.session_id, call.name)
                    result = _error_result(call, {"error": str(err) or type(err).__name__})
                    executed = True
                else:
                    result = replace(result, tool_call_id=call.id, name=result.name or call.name)

        outcome.executions.append(ToolExecutionRecord(tool_call=call, result=result, executed=executed, round=outcome.rounds))
        outcome.events.append(
            LoopEvent(
                type="tool_result",
                data={
                    "id": call.id,
                    "name": call.name,
                    "is_error": result.is_error,
                    "executed": executed,
                    "round": outcome.rounds,
                },
            )
        )
        return result

    def _finish(self, outcome: TurnOutcome, state: LoopState, text: str, *, error: str | None = None) -> TurnOutcome:
        self._transition(outcome, state)
        outcome.text = text
        outcome.error = error
        if outcome.stop_reason is None:
            outcome.stop_reason = state.value.lower()
        if error is not None:
            outcome.events.append(LoopEvent(type="error", data={"state": state.value, "error": error}))
        return outcome

    # ─── Public API ────────────────────────────────────────────────────────

    def run_turn(
        self,
        session_id: str,
        message: str,
        *,
        timeout: float | None = None,
        system_prompt: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> TurnOutcome:
        """Process one user message and return the final user-visible outcome.

        `context` is caller-supplied request data (signed-in user, current
        PNR and the like) handed to every tool execution of the turn.
        Provider and tool failures never raise: they end the turn in a
        terminal state with a generic message in `text`.
        """
        budget = self.config.request_timeout_seconds if timeout is None else timeout
        deadline = self._clock() + budget
        outcome = TurnOutcome(session_id=session_id)
        logger.info("Turn start for session %s", session_id)

        try:
            response = self._model_call(outcome, deadline, self.provider.chat, session_id, message, system_prompt)
            while response.has_tool_calls:
                if outcome.rounds >= self.config.max_tool_rounds:
                    logger.warning(
                        "Session %s: tool round limit (%d) reached", session_id, self.config.max_tool_rounds
                    )
                    outcome.stop_reason = "max_tool_rounds"
                    return self._finish(outcome, LoopState.EXCEEDED_ROUNDS, EXCEEDED_ROUNDS_TEXT)

                outcome.rounds += 1
                self._transition(outcome, LoopState.EXECUTING_TOOL)
                results = [self._dispatch(outcome, deadline, call, context) for call in response.tool_calls]
                response = self._model_call(
                    outcome, deadline, self.provider.continue_with_tool_results, session_id, results
                )
        except TimeoutError as err:
            # ProviderTimeoutError and TurnTimeoutError both land here.
            logger.warning("Session %s: turn timed out: %s", session_id, err)
            return self._finish(outcome, LoopState.TIMED_OUT, TIMED_OUT_TEXT, error=str(err))
        except SessionNotFoundError as err:
            logger.error("Session %s: %s", session_id, err)
            return self._finish(outcome, LoopState.FAILED, FAILED_TEXT, error=str(err))
        except ProviderError as err:
            logger.error("Session %s: provider failure (transient=%s): %s", session_id, err.transient, err)
            return self._finish(outcome, LoopState.FAILED, FAILED_TEXT, error=str(err))
        except Exception as err:
            logger.exception("Session %s: unexpected provider failure", session_id)
            return self._finish(outcome, LoopState.FAILED, FAILED_TEXT, error=f"{type(err).__name__}: {err}")

        outcome.stop_reason = response.stop_reason
        text = response.text.strip() or EMPTY_ANSWER_TEXT
        logger.info("Turn finished for session %s after %d tool round(s)", session_id, outcome.rounds)
        return self._finish(outcome, LoopState.DONE, text)
