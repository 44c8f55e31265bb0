"""Tests for the bounded tool-calling conversation loop."""

from __future__ import annotations

import json
import threading
import time
import unittest

from pilot.config import OrchestratorConfig
from pilot.models.adapter import (
    AiChatResponse,
    ProviderError,
    ProviderTimeoutError,
    SessionNotFoundError,
    ToolCall,
    ToolResult,
)
from pilot.models.session_provider import Completion, SessionChatProvider
from pilot.orchestrator.loop import (
    EXCEEDED_ROUNDS_TEXT,
    FAILED_TEXT,
    TIMED_OUT_TEXT,
    ChatOrchestrator,
    LoopState,
)
from pilot.storage import InMemorySessionStore
from pilot.tools.booking_catalog import BOOKING_CATALOG
from pilot.tools.mock_booking import create_mock_booking_executor, reset_mock_booking_state


def _call(name: str, arguments: dict, call_id: str = "call-1") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=json.dumps(arguments))


def _tool_reply(*calls: ToolCall, text: str = "") -> AiChatResponse:
    return AiChatResponse(text=text, tool_calls=list(calls), is_complete=False, stop_reason="tool_call")


def _final(text: str) -> AiChatResponse:
    return AiChatResponse(text=text, is_complete=True, stop_reason="stop")


class ScriptedProvider:
    """Replays a list of responses (or exceptions) and records what it was sent."""

    def __init__(self, responses: list):
        self._responses = list(responses)
        self.chats: list[tuple[str, str]] = []
        self.timeouts: list[float | None] = []
        self.continuations: list[list[ToolResult]] = []
        self.cleared: list[str] = []

    def _next(self) -> AiChatResponse:
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def chat(self, session_id, user_message, system_prompt=None, *, timeout=None):  # noqa: ANN001
        self.chats.append((session_id, user_message))
        self.timeouts.append(timeout)
        return self._next()

    def continue_with_tool_results(self, session_id, tool_results, *, timeout=None):  # noqa: ANN001
        self.continuations.append(list(tool_results))
        return self._next()

    def clear_session(self, session_id):  # noqa: ANN001
        self.cleared.append(session_id)


class LoopingProvider(ScriptedProvider):
    """Asks for the same tool call forever."""

    def __init__(self) -> None:
        super().__init__([])

    def _next(self) -> AiChatResponse:
        return _tool_reply(_call("get_booking", {"pnr": "ABC123"}, f"call-{len(self.continuations)}"))


class RecordingExecutor:
    def __init__(self, result: str = '{"status": "CONFIRMED"}', error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[str, str]] = []
        self.contexts: list = []

    def execute(self, name: str, arguments_json: str, context=None) -> ToolResult:  # noqa: ANN001
        self.calls.append((name, arguments_json))
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return ToolResult(tool_call_id="", result=self.result, name=name)


class OrchestratorTestCase(unittest.TestCase):
    def _orchestrator(self, provider, executor=None, **config) -> ChatOrchestrator:  # noqa: ANN001
        orchestrator = ChatOrchestrator(
            provider,
            executor or RecordingExecutor(),
            BOOKING_CATALOG,
            OrchestratorConfig(**config),
        )
        self.addCleanup(orchestrator.close)
        return orchestrator


class CompletionTests(OrchestratorTestCase):
    def test_single_tool_round_ends_done(self) -> None:
        provider = ScriptedProvider(
            [
                _tool_reply(_call("get_booking", {"pnr": "ABC123"})),
                _final("Your booking is confirmed."),
            ]
        )
        executor = RecordingExecutor()
        orchestrator = self._orchestrator(provider, executor)

        outcome = orchestrator.run_turn("S1", "check PNR ABC123")

        self.assertIs(outcome.state, LoopState.DONE)
        self.assertEqual(outcome.text, "Your booking is confirmed.")
        self.assertEqual(outcome.tool_calls, [])
        self.assertEqual(outcome.rounds, 1)
        self.assertEqual(len(executor.calls), 1)
        name, arguments = executor.calls[0]
        self.assertEqual(name, "get_booking")
        self.assertEqual(json.loads(arguments)["pnr"], "ABC123")

        results = provider.continuations[0]
        self.assertEqual(results[0].tool_call_id, "call-1")
        self.assertEqual(results[0].name, "get_booking")
        self.assertFalse(results[0].is_error)

    def test_plain_answer_runs_no_tools(self) -> None:
        provider = ScriptedProvider([_final("  Hello! How can I help?  ")])
        executor = RecordingExecutor()

        outcome = self._orchestrator(provider, executor).run_turn("S1", "hi")

        self.assertIs(outcome.state, LoopState.DONE)
        self.assertEqual(outcome.text, "Hello! How can I help?")
        self.assertEqual(outcome.rounds, 0)
        self.assertEqual(executor.calls, [])
        self.assertEqual(outcome.stop_reason, "stop")

    def test_blank_final_answer_is_replaced(self) -> None:
        outcome = self._orchestrator(ScriptedProvider([_final("   ")])).run_turn("S1", "hi")
        self.assertIs(outcome.state, LoopState.DONE)
        self.assertTrue(outcome.text)

    def test_request_context_is_passed_to_every_tool(self) -> None:
        provider = ScriptedProvider([_tool_reply(_call("get_booking", {"pnr": "ABC123"})), _final("Done.")])
        executor = RecordingExecutor()

        self._orchestrator(provider, executor).run_turn("S1", "check", context={"userId": "u-1", "currentPnr": "ABC123"})

        self.assertEqual(executor.contexts, [{"userId": "u-1", "currentPnr": "ABC123"}])

    def test_every_call_in_a_reply_is_dispatched_in_order(self) -> None:
        provider = ScriptedProvider(
            [
                _tool_reply(
                    _call("get_booking", {"pnr": "ABC123"}, "a"),
                    _call("get_seat_map", {"pnr": "ABC123"}, "b"),
                ),
                _final("Done."),
            ]
        )
        executor = RecordingExecutor()

        self._orchestrator(provider, executor).run_turn("S1", "seats for ABC123")

        self.assertEqual([name for name, _ in executor.calls], ["get_booking", "get_seat_map"])
        self.assertEqual([r.tool_call_id for r in provider.continuations[0]], ["a", "b"])


class RoundLimitTests(OrchestratorTestCase):
    def test_endless_tool_calls_stop_at_round_limit(self) -> None:
        provider = LoopingProvider()
        executor = RecordingExecutor()

        outcome = self._orchestrator(provider, executor, max_tool_rounds=3).run_turn("S1", "loop")

        self.assertIs(outcome.state, LoopState.EXCEEDED_ROUNDS)
        self.assertEqual(outcome.text, EXCEEDED_ROUNDS_TEXT)
        self.assertEqual(outcome.stop_reason, "max_tool_rounds")
        self.assertEqual(outcome.rounds, 3)
        self.assertEqual(len(executor.calls), 3)
        self.assertEqual(len(provider.chats) + len(provider.continuations), 4)
        self.assertEqual(outcome.tool_calls, [])

    def test_zero_rounds_never_executes(self) -> None:
        executor = RecordingExecutor()
        outcome = self._orchestrator(LoopingProvider(), executor, max_tool_rounds=0).run_turn("S1", "loop")

        self.assertIs(outcome.state, LoopState.EXCEEDED_ROUNDS)
        self.assertEqual(executor.calls, [])


class DispatchTests(OrchestratorTestCase):
    def test_unknown_tool_is_not_executed(self) -> None:
        provider = ScriptedProvider(
            [_tool_reply(_call("launch_rocket", {"target": "moon"})), _final("I can't do that.")]
        )
        executor = RecordingExecutor()

        outcome = self._orchestrator(provider, executor).run_turn("S1", "launch")

        self.assertIs(outcome.state, LoopState.DONE)
        self.assertEqual(executor.calls, [])
        result = provider.continuations[0][0]
        self.assertTrue(result.is_error)
        payload = json.loads(result.result)
        self.assertIn("unknown tool", payload["error"])
        self.assertIn("get_booking", payload["available_tools"])
        self.assertFalse(outcome.executions[0].executed)

    def test_schema_invalid_arguments_are_not_executed(self) -> None:
        provider = ScriptedProvider(
            [_tool_reply(_call("add_baggage", {"pnr": "ABC123", "passenger_name": "Sara"})), _final("Which weight?")]
        )
        executor = RecordingExecutor()

        self._orchestrator(provider, executor).run_turn("S1", "add bags")

        self.assertEqual(executor.calls, [])
        payload = json.loads(provider.continuations[0][0].result)
        self.assertEqual(payload["error"], "invalid arguments for add_baggage")
        self.assertTrue(any("weight_kg" in detail for detail in payload["details"]))

    def test_executor_exception_becomes_error_result(self) -> None:
        provider = ScriptedProvider(
            [_tool_reply(_call("get_booking", {"pnr": "ABC123"})), _final("The system is unavailable.")]
        )
        executor = RecordingExecutor(error=RuntimeError("backend down"))

        outcome = self._orchestrator(provider, executor).run_turn("S1", "check ABC123")

        self.assertIs(outcome.state, LoopState.DONE)
        result = provider.continuations[0][0]
        self.assertTrue(result.is_error)
        self.assertIn("backend down", result.result)
        self.assertTrue(outcome.executions[0].executed)
        self.assertIsNone(outcome.last_successful_execution)

    def test_tool_call_counts(self) -> None:
        provider = ScriptedProvider(
            [
                _tool_reply(_call("get_booking", {"pnr": "ABC123"}, "a")),
                _tool_reply(_call("get_booking", {"pnr": "XYZ789"}, "b")),
                _final("Both found."),
            ]
        )
        outcome = self._orchestrator(provider).run_turn("S1", "two bookings")

        self.assertEqual(outcome.tool_call_counts(), {"get_booking": 2})
        self.assertEqual(outcome.last_successful_execution.tool_call.id, "b")


class FailureTests(OrchestratorTestCase):
    def test_provider_error_ends_failed(self) -> None:
        provider = ScriptedProvider([ProviderError("Unauthorized", transient=False)])

        outcome = self._orchestrator(provider).run_turn("S1", "hi")

        self.assertIs(outcome.state, LoopState.FAILED)
        self.assertEqual(outcome.text, FAILED_TEXT)
        self.assertIn("Unauthorized", outcome.error)
        self.assertNotIn("Unauthorized", outcome.text)

    def test_session_not_found_during_continue_ends_failed(self) -> None:
        provider = ScriptedProvider(
            [_tool_reply(_call("get_booking", {"pnr": "ABC123"})), SessionNotFoundError("S1")]
        )

        outcome = self._orchestrator(provider).run_turn("S1", "check ABC123")

        self.assertIs(outcome.state, LoopState.FAILED)
        self.assertIn("Session S1 not found", outcome.error)

    def test_unexpected_exception_ends_failed(self) -> None:
        outcome = self._orchestrator(ScriptedProvider([KeyError("boom")])).run_turn("S1", "hi")

        self.assertIs(outcome.state, LoopState.FAILED)
        self.assertEqual(outcome.text, FAILED_TEXT)

    def test_provider_timeout_ends_timed_out(self) -> None:
        provider = ScriptedProvider([ProviderTimeoutError("read timed out")])

        outcome = self._orchestrator(provider).run_turn("S1", "hi")

        self.assertIs(outcome.state, LoopState.TIMED_OUT)
        self.assertEqual(outcome.text, TIMED_OUT_TEXT)

    def test_slow_provider_hits_turn_deadline(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        class SlowProvider(ScriptedProvider):
            def chat(self, session_id, user_message, system_prompt=None, *, timeout=None):  # noqa: ANN001
                release.wait(5)
                return _final("too late")

        outcome = self._orchestrator(SlowProvider([])).run_turn("S1", "hi", timeout=0.05)

        self.assertIs(outcome.state, LoopState.TIMED_OUT)
        self.assertEqual(outcome.text, TIMED_OUT_TEXT)
        self.assertEqual(outcome.stop_reason, "timed_out")

    def test_model_calls_receive_time_left_on_deadline(self) -> None:
        provider = ScriptedProvider([_final("Hello.")])

        self._orchestrator(provider).run_turn("S1", "hi", timeout=5.0)

        self.assertGreater(provider.timeouts[0], 0.0)
        self.assertLessEqual(provider.timeouts[0], 5.0)

    def test_slow_tool_hits_turn_deadline(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        class SlowExecutor(RecordingExecutor):
            def execute(self, name, arguments_json, context=None):  # noqa: ANN001
                release.wait(5)
                return super().execute(name, arguments_json, context)

        provider = ScriptedProvider([_tool_reply(_call("get_booking", {"pnr": "ABC123"})), _final("late")])

        outcome = self._orchestrator(provider, SlowExecutor()).run_turn("S1", "check ABC123", timeout=0.1)

        self.assertIs(outcome.state, LoopState.TIMED_OUT)
        self.assertEqual(outcome.text, TIMED_OUT_TEXT)
        self.assertEqual(len(outcome.executions), 1)
        self.assertFalse(outcome.executions[0].executed)
        self.assertTrue(outcome.executions[0].result.is_error)
        self.assertIsNone(outcome.last_successful_execution)
        self.assertEqual(provider.continuations, [])


class EventTimelineTests(OrchestratorTestCase):
    def test_events_trace_the_turn(self) -> None:
        provider = ScriptedProvider(
            [_tool_reply(_call("get_booking", {"pnr": "ABC123"})), _final("Confirmed.")]
        )

        outcome = self._orchestrator(provider).run_turn("S1", "check ABC123")

        types = [event.type for event in outcome.events]
        self.assertEqual(types.count("model_call"), 2)
        self.assertLess(types.index("tool_call"), types.index("tool_result"))
        states = [event.data["state"] for event in outcome.events if event.type == "state"]
        self.assertEqual(states, ["AWAITING_MODEL", "EXECUTING_TOOL", "AWAITING_MODEL", "DONE"])

    def test_error_event_is_recorded(self) -> None:
        outcome = self._orchestrator(ScriptedProvider([ProviderError("boom")])).run_turn("S1", "hi")
        self.assertEqual(outcome.events[-1].type, "error")

    def test_clear_session_delegates_to_provider(self) -> None:
        provider = ScriptedProvider([])
        self._orchestrator(provider).clear_session("S1")
        self.assertEqual(provider.cleared, ["S1"])


class ScriptedCompletionProvider(SessionChatProvider):
    def __init__(self, completions: list[str]):
        super().__init__(InMemorySessionStore(idle_timeout_seconds=60, max_entries=10), lambda: "system")
        self._completions = list(completions)
        self.requests: list[list[dict[str, str]]] = []

    def _complete(self, system_prompt, messages, timeout=None):  # noqa: ANN001
        self.requests.append([dict(m) for m in messages])
        return Completion(text=self._completions.pop(0), finish_reason="stop")


class DelayedCompletionProvider(SessionChatProvider):
    """Answers after `delay` seconds; with `honor_timeout` it gives up at the timeout like a transport would."""

    def __init__(self, delay: float, *, honor_timeout: bool = True):
        super().__init__(InMemorySessionStore(idle_timeout_seconds=60, max_entries=10), lambda: "system")
        self.delay = delay
        self.honor_timeout = honor_timeout
        self.timeouts: list[float | None] = []

    def _complete(self, system_prompt, messages, timeout=None):  # noqa: ANN001
        self.timeouts.append(timeout)
        if self.honor_timeout and timeout is not None and timeout < self.delay:
            time.sleep(timeout)
            raise ProviderTimeoutError("read timed out")
        time.sleep(self.delay)
        return Completion(text=f"answer {len(self.timeouts)}", finish_reason="stop")


class FollowUpAfterTimeoutTests(OrchestratorTestCase):
    def _history(self, provider: SessionChatProvider) -> list[tuple[str, str]]:
        return [(m.role, m.content) for m in provider.store.get("S1").messages]

    def test_next_turn_succeeds_after_transport_gives_up(self) -> None:
        provider = DelayedCompletionProvider(1.0)
        orchestrator = self._orchestrator(provider)

        first = orchestrator.run_turn("S1", "hello", timeout=0.2)
        provider.delay = 0.05
        second = orchestrator.run_turn("S1", "hello again", timeout=2.0)

        self.assertIs(first.state, LoopState.TIMED_OUT)
        self.assertLessEqual(provider.timeouts[0], 0.2)
        self.assertIs(second.state, LoopState.DONE)
        self.assertEqual(second.text, "answer 2")
        self.assertEqual(
            self._history(provider),
            [("user", "hello"), ("user", "hello again"), ("assistant", "answer 2")],
        )

    def test_late_reply_is_not_written_to_history(self) -> None:
        provider = DelayedCompletionProvider(0.3, honor_timeout=False)
        orchestrator = self._orchestrator(provider)

        first = orchestrator.run_turn("S1", "hello", timeout=0.1)
        provider.delay = 0.05
        second = orchestrator.run_turn("S1", "hello again", timeout=2.0)

        self.assertIs(first.state, LoopState.TIMED_OUT)
        self.assertIs(second.state, LoopState.DONE)
        self.assertEqual(second.text, "answer 2")
        self.assertEqual(
            self._history(provider),
            [("user", "hello"), ("user", "hello again"), ("assistant", "answer 2")],
        )


class MockBackendIntegrationTests(OrchestratorTestCase):
    def setUp(self) -> None:
        reset_mock_booking_state()

    def test_booking_lookup_against_mock_backend(self) -> None:
        provider = ScriptedCompletionProvider(
            [
                'Let me check.\n```tool_call\n{"name": "get_booking", "arguments": {"pnr": "ABC123"}}\n```',
                "Your booking ABC123 on F3100 is confirmed.",
            ]
        )

        outcome = self._orchestrator(provider, create_mock_booking_executor()).run_turn("S1", "check PNR ABC123")

        self.assertIs(outcome.state, LoopState.DONE)
        self.assertEqual(outcome.text, "Your booking ABC123 on F3100 is confirmed.")
        record = outcome.last_successful_execution
        self.assertEqual(json.loads(record.result.result)["status"], "CONFIRMED")
        tool_message = provider.requests[1][-1]
        self.assertEqual(tool_message["role"], "user")
        self.assertIn("F3100", tool_message["content"])

    def test_second_turn_reuses_session_history(self) -> None:
        provider = ScriptedCompletionProvider(["Hi there.", "Sure, which PNR?"])
        orchestrator = self._orchestrator(provider, create_mock_booking_executor())

        orchestrator.run_turn("S1", "hello")
        orchestrator.run_turn("S1", "I want to change my seat")

        self.assertEqual(
            [m["role"] for m in provider.requests[1]],
            ["user", "assistant", "user"],
        )


if __name__ == "__main__":
    unittest.main()
