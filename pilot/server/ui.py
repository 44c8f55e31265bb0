"""Map tool outcomes onto UI hints for chat clients."""

from __future__ import annotations

import json
import re
from typing import Any

from ..orchestrator.loop import TurnOutcome


UI_TYPE_BY_TOOL: dict[str, str] = {
    "search_flights": "FLIGHT_LIST",
    "select_flight": "FLIGHT_SELECTED",
    "create_booking": "BOOKING_CONFIRMED",
    "get_booking": "BOOKING_SUMMARY",
    "calculate_change_fees": "FLIGHT_COMPARISON",
    "get_seat_map": "SEAT_MAP",
    "get_available_meals": "ANCILLARY_OPTIONS",
    "get_boarding_pass": "BOARDING_PASS",
}

_SUGGESTIONS: dict[str | None, tuple[list[str], list[str]]] = {
    "FLIGHT_LIST": (
        ["I'll take the first one", "Show more options", "Different search"],
        ["أريد الرحلة الأولى", "أظهر المزيد", "بحث مختلف"],
    ),
    "BOOKING_SUMMARY": (
        ["Change my seat", "Cancel booking", "Check in"],
        ["غير المقعد", "إلغاء الحجز", "تسجيل الدخول"],
    ),
    "SEAT_MAP": (
        ["Window seat", "Aisle seat", "Cancel"],
        ["مقعد نافذة", "مقعد ممر", "إلغاء"],
    ),
    "BOARDING_PASS": (
        ["Show my booking", "Help"],
        ["أظهر الحجز", "مساعدة"],
    ),
    None: (
        ["Search flights", "Manage booking", "Check in"],
        ["بحث عن رحلة", "إدارة حجز", "تسجيل دخول"],
    ),
}

_ARABIC_RE = re.compile(r"[\u0600-\u06FF]")


def ui_payload(outcome: TurnOutcome) -> tuple[str | None, Any]:
    """UI type and data from the last successful tool that has a UI."""
    for record in reversed(outcome.executions):
        if not record.executed or record.result.is_error:
            continue
        ui_type = UI_TYPE_BY_TOOL.get(record.tool_call.name)
        if ui_type is None:
            continue
        try:
            data = json.loads(record.result.result)
        except (json.JSONDecodeError, ValueError):
            data = record.result.result
        return ui_type, data
    return None, None


def suggestions_for(ui_type: str | None, locale: str | None) -> list[str]:
    english, arabic = _SUGGESTIONS.get(ui_type, _SUGGESTIONS[None])
    return list(arabic if (locale or "").lower().startswith("ar") else english)


def detect_language(text: str) -> str:
    letters = sum(1 for ch in text if ch.isalpha())
    arabic = len(_ARABIC_RE.findall(text))
    return "ar" if letters and arabic / letters > 0.3 else "en"
