"""Tests for system prompt assembly."""

from __future__ import annotations

import unittest
from datetime import date

from pilot.prompts import TOOL_CALL_INSTRUCTIONS, build_system_prompt, today_in
from pilot.tools.booking_catalog import BOOKING_CATALOG


class SystemPromptTests(unittest.TestCase):
    def test_prompt_contains_date_format_and_catalog(self) -> None:
        prompt = build_system_prompt(BOOKING_CATALOG, timezone="Asia/Riyadh", today=date(2026, 11, 2))

        self.assertIn("Today is Monday, 2026-11-02 (Asia/Riyadh)", prompt)
        self.assertIn(TOOL_CALL_INSTRUCTIONS, prompt)
        self.assertIn("```tool_call", prompt)
        self.assertIn("## Available tools\n### search_flights", prompt)

    def test_custom_persona(self) -> None:
        prompt = build_system_prompt(BOOKING_CATALOG, today=date(2026, 11, 2), persona="  You are Faris.  ")
        self.assertTrue(prompt.startswith("You are Faris.\n\n"))

    def test_today_in_timezone(self) -> None:
        self.assertIsInstance(today_in("Asia/Riyadh"), date)


if __name__ == "__main__":
    unittest.main()
