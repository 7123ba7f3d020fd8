"""Tests for the plugin registry and the health plugin.

Tests cover:
  - PluginBase ABC
  - PluginRegistry tools, commands and hooks
  - HealthPlugin registration, tool output and context injection
"""
from __future__ import annotations

import asyncio
import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config
from monitoring._base import DaemonCheck
from plugins.base import (
    HOOK_BEFORE_AGENT_START,
    CommandSpec,
    PluginBase,
    PluginRegistry,
    ToolSpec,
)
from plugins.health_plugin import HealthPlugin
from plugins.loader import load_plugins


class TestPluginBase(unittest.TestCase):
    """Test PluginBase abstract class."""

    def test_must_implement_register(self):
        with self.assertRaises(TypeError):
            PluginBase()  # type: ignore[abstract]

    def test_get_info(self):
        class EchoPlugin(PluginBase):
            name = "echo"
            version = "1.0.0"
            description = "Echo plugin"

            def register(self, registry):
                pass

        plugin = EchoPlugin()
        self.assertEqual(
            plugin.get_info(),
            {"name": "echo", "version": "1.0.0", "description": "Echo plugin"},
        )
        self.assertIn("echo", repr(plugin))


class TestPluginRegistry(unittest.TestCase):
    """Test registry operations."""

    def setUp(self):
        self.registry = PluginRegistry()

    def test_nameless_plugin_rejected(self):
        class Nameless(PluginBase):
            def register(self, registry):
                pass

        with self.assertRaises(ValueError):
            self.registry.register(Nameless())
        self.assertEqual(len(self.registry), 0)

    def test_tools_and_commands(self):
        async def shout(args):
            return args.upper()

        self.registry.register_tool(ToolSpec(
            name="echo", description="", execute=lambda params: params.get("text"),
        ))
        self.registry.register_command(CommandSpec(name="shout", description="", handler=shout))

        self.assertEqual(self.registry.tool_names(), ["echo"])
        self.assertEqual(self.registry.command_names(), ["shout"])
        self.assertEqual(asyncio.run(self.registry.call_tool("echo", {"text": "hi"})), "hi")
        self.assertEqual(asyncio.run(self.registry.run_command("shout", "hey")), "HEY")

    def test_unknown_tool_and_command(self):
        with self.assertRaises(KeyError):
            asyncio.run(self.registry.call_tool("missing"))
        with self.assertRaises(KeyError):
            asyncio.run(self.registry.run_command("missing"))

    def test_emit_skips_failing_and_empty_handlers(self):
        def broken(event):
            raise RuntimeError("boom")

        self.registry.on("start", broken)
        self.registry.on("start", lambda event: None)
        self.registry.on("start", lambda event: {"seen": event["n"]})

        with self.assertLogs("plugins.base", level="WARNING"):
            results = asyncio.run(self.registry.emit("start", {"n": 1}))
        self.assertEqual(results, [{"seen": 1}])
        self.assertEqual(asyncio.run(self.registry.emit("other")), [])


class HealthPluginTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        home = Path(self._tmp.name)
        with patch.object(config, "LLM_PRIMARY_API_KEY", ""), \
                patch.object(config, "LLM_FALLBACK_API_KEY", ""):
            self.cfg = config.default_config(home)
        self.cfg.health_injection.enabled = True
        self.status_path = Path(self.cfg.status_path)
        self.status_path.parent.mkdir(parents=True)
        self.registry = PluginRegistry()

    def tearDown(self):
        self._tmp.cleanup()

    def write_status(self, *daemon_checks: DaemonCheck) -> None:
        doc = {
            "last_check": "2026-10-19T08:00:00Z",
            "overall_severity": "ok",
            "daemon_checks": [c.to_dict() for c in daemon_checks],
            "cognitive_checks": [
                {"check_name": "cognitive:goal_quality", "severity": "ok", "detail": "fine"},
            ],
        }
        self.status_path.write_text(json.dumps(doc), encoding="utf-8")


class TestHealthPluginRegistration(HealthPluginTestCase):
    def test_registers_tool_command_and_hook(self):
        self.registry.register(HealthPlugin(self.cfg))
        self.assertIn(config.PLUGIN_ID, self.registry)
        self.assertEqual(self.registry.tool_names(), ["health_status"])
        self.assertEqual(self.registry.command_names(), ["health"])

    def test_disabled_config_registers_nothing(self):
        self.cfg.enabled = False
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(self.registry.tool_names(), [])
        self.assertEqual(self.registry.command_names(), [])
        self.assertEqual(asyncio.run(self.registry.emit(HOOK_BEFORE_AGENT_START)), [])

    def test_injection_disabled_skips_hook(self):
        self.cfg.health_injection.enabled = False
        self.cfg.health_injection.only_on_issues = False
        self.write_status()
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(asyncio.run(self.registry.emit(HOOK_BEFORE_AGENT_START)), [])


class TestPluginLoader(HealthPluginTestCase):
    def test_default_modules_load_health_plugin(self):
        loaded = load_plugins(self.cfg, self.registry)
        self.assertEqual(loaded, [config.PLUGIN_ID])
        self.assertIsInstance(self.registry.get(config.PLUGIN_ID), HealthPlugin)
        self.assertEqual(self.registry.tool_names(), ["health_status"])

    def test_module_without_plugin_class_is_skipped(self):
        self.assertEqual(load_plugins(self.cfg, self.registry, modules=["plugins.base"]), [])
        self.assertEqual(len(self.registry), 0)

    def test_import_failure_is_logged_and_skipped(self):
        with self.assertLogs("plugins.loader", level="ERROR"):
            loaded = load_plugins(
                self.cfg, self.registry,
                modules=["plugins.does_not_exist", "plugins.health_plugin"],
            )
        self.assertEqual(loaded, [config.PLUGIN_ID])

    def test_plugin_system_disabled(self):
        with patch.object(config, "PLUGIN_ENABLED", False):
            self.assertEqual(load_plugins(self.cfg, self.registry), [])
        self.assertEqual(len(self.registry), 0)


class TestHealthTool(HealthPluginTestCase):
    def test_tool_returns_json_view(self):
        self.write_status(DaemonCheck(check_name="disk:root", severity="warn", detail="91%"))
        self.registry.register(HealthPlugin(self.cfg))

        raw = asyncio.run(self.registry.call_tool("health_status", {"section": "daemon"}))
        view = json.loads(raw)
        self.assertEqual(view["daemon_checks"][0]["check_name"], "disk:root")

    def test_tool_without_status_file(self):
        self.registry.register(HealthPlugin(self.cfg))
        raw = asyncio.run(self.registry.call_tool("health_status"))
        self.assertEqual(json.loads(raw), {"error": "Status file not available"})


class TestContextInjection(HealthPluginTestCase):
    def emit(self):
        return asyncio.run(self.registry.emit(HOOK_BEFORE_AGENT_START, {"prompt": "hi"}))

    def test_issues_are_prepended(self):
        self.write_status(DaemonCheck(check_name="output_freshness:digest", severity="critical",
                                      detail="failed"))
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(self.emit(), [{
            "prepend_context": "⚕️ Vigil Health: CRITICAL - 1 issue(s): digest (critical)",
        }])

    def test_healthy_status_silent_when_only_on_issues(self):
        self.write_status(DaemonCheck(check_name="disk:root", severity="ok", detail="40%"))
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(self.emit(), [])

    def test_healthy_status_reported_when_always_on(self):
        self.cfg.health_injection.only_on_issues = False
        self.write_status()
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(self.emit(), [{"prepend_context": "⚕️ Vigil Health: All systems OK"}])

    def test_missing_status_injects_nothing(self):
        self.cfg.health_injection.only_on_issues = False
        self.registry.register(HealthPlugin(self.cfg))
        self.assertEqual(self.emit(), [])


if __name__ == "__main__":
    unittest.main()
