"""Tool executor port and a registry-backed implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, Protocol

from ..models.adapter import ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any], Mapping[str, Any]], Any]


class ToolExecutor(Protocol):
    """Backend that actually performs tool calls (the booking domain)."""

    def execute(
        self,
        name: str,
        arguments_json: str,
        context: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        """Run one tool. `tool_call_id` on the result is filled in by the caller."""
        ...


class ToolFailure(Exception):
    """Expected domain failure raised by a tool handler (e.g. booking not found)."""


def _encode(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


def _error_result(name: str, message: str) -> ToolResult:
    return ToolResult(tool_call_id="", result=_encode({"error": message}), is_error=True, name=name)


def parse_arguments(arguments_json: str | None) -> dict[str, Any]:
    """Decode tool arguments; anything that is not a JSON object becomes `{}`."""
    if not arguments_json:
        return {}
    try:
        parsed = json.loads(arguments_json)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Tool arguments are not valid JSON: %r", arguments_json)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class RegistryToolExecutor:
    """Dispatch tool calls to plain handler functions keyed by tool name.

    A handler receives the decoded arguments plus the request context (an
    empty mapping when the caller sent none) and returns any
    JSON-serialisable value. Raising `ToolFailure` reports an expected error
    to the model; any other exception is logged and reported the same way.
    """

    def __init__(self, handlers: Mapping[str, ToolHandler]):
        self._handlers = dict(handlers)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def execute(
        self,
        name: str,
        arguments_json: str,
        context: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            return _error_result(name, f"Unknown tool: {name}")

        arguments = parse_arguments(arguments_json)
        try:
            output = handler(arguments, dict(context or {}))
        except ToolFailure as err:
            logger.info("Tool %s failed: %s", name, err)
            return _error_result(name, str(err))
        except Exception as err:
            logger.exception("Tool %s raised", name)
            return _error_result(name, str(err) or type(err).__name__)

        return ToolResult(tool_call_id="", result=_encode(output), is_error=False, name=name)
