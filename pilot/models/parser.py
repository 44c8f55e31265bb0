"""Tool-call extraction from free-form model output.

Models without native function calling announce tool requests inside their
text, either as a fenced block::

    ```tool_call
    {"name": "get_booking", "arguments": {"pnr": "ABC123"}}
    ```

or as a bare JSON object somewhere in the prose. Two strategies are tried in
that order; whatever is consumed is cut out of the text shown to users. Any
parse failure degrades to "no tool call" instead of raising.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from .adapter import ToolCall


_FENCE_RE = re.compile(r"```[ \t]*(?:tool_call|json)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_BARE_START_RE = re.compile(r'\{\s*"name"\s*:')
_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ParsedResponse:
    """Model text split into user-visible text and an optional tool call."""
    text: str
    tool_call: ToolCall | None = None

    @property
    def has_tool_call(self) -> bool:
        return self.tool_call is not None


def extract_think_tags(content: str | None) -> tuple[str | None, str | None]:
    """Extract <think>...</think> blocks from content. Returns (think_content, remaining_content)."""
    if not content:
        return None, content

    match = _THINK_RE.search(content)
    if match:
        think_content = match.group(1).strip()
        remaining_content = _THINK_RE.sub("", content).strip()
        return think_content, remaining_content

    return None, content


def find_balanced_object(text: str, start: int) -> int | None:
    """Return the index just past the object opening at `start`, or None.

    Braces inside JSON string literals are ignored.
    """
    if start >= len(text) or text[start] != "{":
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx + 1
    return None


def _encode_arguments(raw: Any) -> str:
    """Keep arguments as raw JSON text; the catalog decides later whether they fit."""
    if raw is None:
        return "{}"
    if isinstance(raw, str):
        # Some models double-encode the arguments object.
        return raw.strip() or "{}"
    return json.dumps(raw, separators=(",", ":"), ensure_ascii=False)


def _tool_call_from_json(
    candidate: str,
    id_factory: Callable[[], str],
) -> ToolCall | None:
    try:
        payload = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    # Llama-family models say "parameters" where others say "arguments".
    raw_args = payload.get("arguments", payload.get("parameters"))
    arguments = _encode_arguments(raw_args)

    call_id = payload.get("id")
    if not isinstance(call_id, str) or not call_id.strip():
        call_id = id_factory()
    return ToolCall(id=call_id, name=name.strip(), arguments=arguments)


def _cut(text: str, start: int, end: int) -> str:
    remaining = f"{text[:start].rstrip()}\n\n{text[end:].lstrip()}"
    return _EXCESS_NEWLINES_RE.sub("\n\n", remaining).strip()


def try_parse_fenced_block(
    text: str,
    id_factory: Callable[[], str] = new_call_id,
) -> ParsedResponse | None:
    """Extract a tool call from the first fenced block that holds one."""
    for match in _FENCE_RE.finditer(text):
        tool_call = _tool_call_from_json(match.group(1).strip(), id_factory)
        if tool_call is not None:
            return ParsedResponse(text=_cut(text, match.start(), match.end()), tool_call=tool_call)
    return None


def try_parse_bare_json(
    text: str,
    id_factory: Callable[[], str] = new_call_id,
) -> ParsedResponse | None:
    """Extract the first balanced `{"name": ...}` object found in the text.

    Only one call is returned even when several are present.
    """
    fences = [(m.start(), m.end()) for m in _FENCE_RE.finditer(text)]
    for match in _BARE_START_RE.finditer(text):
        start = match.start()
        end = find_balanced_object(text, start)
        if end is None:
            continue
        tool_call = _tool_call_from_json(text[start:end], id_factory)
        if tool_call is None:
            continue

        # Drop the surrounding fence too so no empty ``` pair is left behind.
        cut_start, cut_end = start, end
        for fence_start, fence_end in fences:
            if fence_start <= start and end <= fence_end:
                cut_start, cut_end = fence_start, fence_end
                break
        return ParsedResponse(text=_cut(text, cut_start, cut_end), tool_call=tool_call)
    return None


def parse_response(
    text: str | None,
    id_factory: Callable[[], str] = new_call_id,
) -> ParsedResponse:
    """Split raw model output into visible text and at most one tool call.

    Text without a valid tool call is returned unchanged.
    """
    if not text:
        return ParsedResponse(text=text or "")

    parsed = try_parse_fenced_block(text, id_factory)
    if parsed is None:
        parsed = try_parse_bare_json(text, id_factory)
    if parsed is None:
        return ParsedResponse(text=text)
    return parsed
