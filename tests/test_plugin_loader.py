"""Tests for plugin loader helpers."""

from __future__ import annotations

import tempfile
import textwrap
import unittest
from pathlib import Path
import sys

from pilot.plugins.loader import build_from_spec, load_callable_from_spec


class PluginLoaderTests(unittest.TestCase):
    def _plugin_module(self, name: str, source: str) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        (Path(td.name) / f"{name}.py").write_text(textwrap.dedent(source))
        sys.path.insert(0, td.name)
        self.addCleanup(sys.path.remove, td.name)
        self.addCleanup(sys.modules.pop, name, None)

    def test_build_from_spec_passes_keyword_arguments(self) -> None:
        self._plugin_module(
            "pilot_plugin_ok",
            """
            class Executor:
                def __init__(self, catalog):
                    self.catalog = catalog

                def execute(self, name, arguments_json, context=None):
                    return name

            def make_executor(catalog=None):
                return Executor(catalog)
            """,
        )

        executor = build_from_spec("pilot_plugin_ok:make_executor", required_method="execute", catalog="tools")

        self.assertEqual(executor.catalog, "tools")
        self.assertEqual(executor.execute("get_booking", "{}"), "get_booking")

    def test_build_from_spec_rejects_missing_method(self) -> None:
        self._plugin_module(
            "pilot_plugin_bad",
            """
            def make_executor(**kwargs):
                return object()
            """,
        )

        with self.assertRaises(ValueError) as ctx:
            build_from_spec("pilot_plugin_bad:make_executor", required_method="execute")
        self.assertIn("execute()", str(ctx.exception))

    def test_invalid_spec_raises_value_error(self) -> None:
        for spec in ("bad_spec", ":fn", "module:"):
            with self.subTest(spec=spec):
                with self.assertRaises(ValueError):
                    _ = load_callable_from_spec(spec)

    def test_missing_module_raises_value_error(self) -> None:
        with self.assertRaises(ValueError):
            _ = load_callable_from_spec("no_such_module:fn")

    def test_missing_callable_raises_value_error(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            _ = load_callable_from_spec("json:no_such_function")
        self.assertIn("no_such_function", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
