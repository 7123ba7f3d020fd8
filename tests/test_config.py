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


class ConfigTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.home = Path(self._tmp.name)
        self._patches = [
            patch.object(config, "CONFIG_PATH", ""),
            patch.object(config, "LLM_PRIMARY_API_KEY", ""),
            patch.object(config, "LLM_FALLBACK_API_KEY", ""),
        ]
        for p in self._patches:
            p.start()

    def tearDown(self):
        for p in reversed(self._patches):
            p.stop()
        self._tmp.cleanup()


class TestDefaults(ConfigTestCase):
    def test_paths_rooted_at_home(self):
        cfg = config.default_config(self.home)
        self.assertEqual(cfg.status_path, str(self.home / "clawd" / "memory" / "health-status.json"))
        self.assertEqual(cfg.checks.goal_quality.input_path,
                         str(self.home / ".cortex" / "pending-goals.json"))
        self.assertEqual(cfg.checks.bootstrap_integrity.input_path,
                         str(self.home / "clawd" / "BOOTSTRAP.md"))
        self.assertEqual(
            [d.label for d in cfg.checks.anomaly_detection.monitored_dirs],
            ["memory", "membrane", "lancedb"],
        )
        self.assertEqual(cfg.llm.primary.model_id, "ollama/qwen3:14b")
        self.assertEqual(cfg.checks.thread_health.stale_days, 5)
        self.assertEqual(cfg.checks.recommendations.max_recommendations, 5)
        self.assertEqual(len(cfg.checks.enabled_names()), 6)

    def test_api_key_from_environment(self):
        with patch.object(config, "LLM_PRIMARY_API_KEY", "sk-env"):
            cfg = config.default_config(self.home)
        self.assertEqual(cfg.llm.primary.api_key, "sk-env")
        self.assertIsNone(cfg.llm.fallback.api_key)


class TestResolveConfig(ConfigTestCase):
    def test_camel_case_keys(self):
        cfg = config.resolve_config({
            "statusPath": "/srv/status.json",
            "intervalMinutes": 30,
            "llm": {"primary": {"model": "llama3", "baseUrl": "http://gpu:11434"}},
            "checks": {
                "thread_health": {"staleDays": 9, "enabled": False},
                "pipeline_correlation": {
                    "natsStream": "events",
                    "businessHours": {"start": 7, "utcOffsetHours": 2},
                },
                "anomaly_detection": {"monitoredDirs": [
                    {"path": "/data", "label": "data"},
                    {"path": 3, "label": "bad"},
                ]},
                "recommendations": {"maxRecommendations": 2},
            },
            "healthInjection": {"onlyOnIssues": False, "maxLength": 80},
        }, self.home)

        self.assertEqual(cfg.status_path, "/srv/status.json")
        self.assertEqual(cfg.interval_minutes, 30)
        self.assertEqual(cfg.llm.primary.model, "llama3")
        self.assertEqual(cfg.llm.primary.provider, "ollama")
        self.assertEqual(cfg.llm.primary.base_url, "http://gpu:11434")
        self.assertEqual(cfg.checks.thread_health.stale_days, 9)
        self.assertFalse(cfg.checks.thread_health.enabled)
        pc = cfg.checks.pipeline_correlation
        self.assertEqual(pc.nats_stream, "events")
        self.assertEqual((pc.business_hours.start, pc.business_hours.end), (7, 22))
        self.assertEqual(pc.business_hours.utc_offset_hours, 2)
        self.assertEqual(
            [(d.path, d.label) for d in cfg.checks.anomaly_detection.monitored_dirs],
            [("/data", "data")],
        )
        self.assertEqual(cfg.checks.recommendations.max_recommendations, 2)
        self.assertFalse(cfg.health_injection.only_on_issues)
        self.assertEqual(cfg.health_injection.max_length, 80)

    def test_wrong_types_fall_back(self):
        cfg = config.resolve_config({
            "enabled": "yes",
            "intervalMinutes": "often",
            "checks": {"thread_health": {"staleDays": True}, "goal_quality": []},
            "llm": "nope",
        }, self.home)
        default = config.default_config(self.home)
        self.assertEqual(cfg, default)

    def test_raw_round_trip_without_api_keys(self):
        cfg = config.default_config(self.home)
        cfg.llm.primary.api_key = "secret"
        raw = config.config_to_raw(cfg)
        self.assertNotIn("apiKey", raw["llm"]["primary"])
        self.assertIn("thread_health", raw["checks"])
        self.assertEqual(raw["checks"]["thread_health"]["staleDays"], 5)
        self.assertEqual(raw["healthInjection"]["onlyOnIssues"], True)

        cfg.llm.primary.api_key = None
        self.assertEqual(config.resolve_config(raw, self.home), cfg)


class TestLoadConfig(ConfigTestCase):
    def test_inline_config_wins(self):
        result = config.load_config({"statusPath": "/tmp/inline.json"}, home=self.home)
        self.assertEqual(result.source, "inline")
        self.assertEqual(result.config.status_path, "/tmp/inline.json")
        self.assertFalse((self.home / ".vigil" / "config.json").exists())

    def test_missing_file_is_created_from_defaults(self):
        result = config.load_config(None, home=self.home)
        path = self.home / ".vigil" / "config.json"
        self.assertEqual(result.source, "file")
        self.assertEqual(result.file_path, str(path))
        self.assertTrue(path.exists())
        self.assertEqual(result.config, config.default_config(self.home))

    def test_inline_enabled_overrides_file(self):
        path = self.home / "custom.json"
        path.write_text(json.dumps({"enabled": True, "intervalMinutes": 15}), encoding="utf-8")
        result = config.load_config({"enabled": False, "configPath": str(path)}, home=self.home)
        self.assertEqual(result.source, "file")
        self.assertFalse(result.config.enabled)
        self.assertEqual(result.config.interval_minutes, 15)

    def test_malformed_file_falls_back_to_defaults(self):
        path = self.home / "broken.json"
        path.write_text("{oops", encoding="utf-8")
        with self.assertLogs("config", level="WARNING"):
            result = config.load_config({"configPath": str(path)}, home=self.home)
        self.assertEqual(result.source, "defaults")
        self.assertEqual(result.config, config.default_config(self.home))


if __name__ == "__main__":
    unittest.main()
