"""System prompt assembly for the booking assistant."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from .tools.catalog import ToolCatalog


PERSONA = """You are Pilot, the booking assistant of an airline.
You help travellers search and book flights, and manage existing bookings:
seats, meals, baggage, flight changes, check-in and boarding passes.
Be concise and friendly. Never invent flight numbers, prices, PNRs or
passenger details; get them from a tool or ask the user."""

TOOL_CALL_INSTRUCTIONS = """## Calling tools
To call a tool, reply with exactly one fenced block and nothing else:

```tool_call
{"name": "<tool name>", "arguments": {<arguments as JSON>}}
```

Call at most one tool per reply. After you call a tool you will receive its
result in the next message; answer the user from that data only."""

TOOL_RESULT_FRAMING = (
    "Here are the tool results. Use ONLY the literal values below when you answer. "
    "Never write placeholder text such as [PNR] or <flight number>. If a tool "
    "returned an error, explain it to the user or call another tool to recover."
)


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def build_system_prompt(
    catalog: ToolCatalog,
    *,
    timezone: str = "Asia/Riyadh",
    today: date | None = None,
    persona: str = PERSONA,
) -> str:
    """Persona, current date, tool-call format and the rendered catalog."""
    current = today or today_in(timezone)
    parts = [
        persona.strip(),
        f"Today is {current.strftime('%A')}, {current.isoformat()} ({timezone}). "
        "Resolve relative dates like 'tomorrow' against this date.",
        TOOL_CALL_INSTRUCTIONS,
        "## Available tools\n" + catalog.prompt_text,
    ]
    return "\n\n".join(parts)
