import json
import os
import subprocess
import sys
import tempfile
import time
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import BusinessHours, PipelineCorrelationConfig
from monitoring._base import DaemonCheck
from monitoring.agents.pipeline_correlation import (
    CHECK_NAME,
    cron_status,
    is_business_hours,
    nats_event_count,
    run_pipeline_correlation_check,
)


def _threads_file(directory: str, age_hours: float) -> Path:
    path = Path(directory) / "threads.json"
    path.write_text("{}", encoding="utf-8")
    mtime = time.time() - age_hours * 3600
    os.utime(path, (mtime, mtime))
    return path


def _daemon(name: str, severity: str) -> DaemonCheck:
    return DaemonCheck(check_name=name, severity=severity, detail="")


# 02:00 UTC is outside 08-22 at any small offset.
NIGHT = datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc)


class TestPipelineCorrelation(unittest.TestCase):
    def setUp(self):
        self.cfg = PipelineCorrelationConfig(enabled=True, correlation_window_hours=2)

    def test_events_with_old_threads_is_consumer_disconnected(self):
        with tempfile.TemporaryDirectory() as td:
            threads = _threads_file(td, age_hours=5)
            result = run_pipeline_correlation_check(
                self.cfg, threads, [], event_counter=lambda stream: 100,
            )

        self.assertEqual(result.check_name, CHECK_NAME)
        self.assertEqual(result.severity, "critical")
        self.assertEqual(len(result.correlations), 1)
        corr = result.correlations[0]
        self.assertEqual(corr.diagnosis, "consumer_disconnected")
        self.assertEqual(corr.input_value, 100)
        self.assertAlmostEqual(corr.output_value, 5.0, places=1)
        self.assertEqual(result.detail, "1 correlation issue(s) detected")

    def test_consumer_slow_contributes_warn(self):
        with tempfile.TemporaryDirectory() as td:
            threads = _threads_file(td, age_hours=3)
            result = run_pipeline_correlation_check(
                self.cfg, threads, [], event_counter=lambda stream: 12,
            )
        self.assertEqual(result.severity, "warn")
        self.assertEqual(result.correlations[0].diagnosis, "consumer_slow")

    def test_fresh_threads_are_normal(self):
        with tempfile.TemporaryDirectory() as td:
            threads = _threads_file(td, age_hours=0.5)
            result = run_pipeline_correlation_check(
                self.cfg, threads, [], event_counter=lambda stream: 12,
            )
        self.assertEqual(result.severity, "ok")
        self.assertEqual(result.correlations, [])
        self.assertEqual(result.detail, "All pipeline correlations normal")

    def test_crons_ok_but_outputs_stale(self):
        checks = [
            _daemon("cron_health:nightly", "ok"),
            _daemon("output_freshness:digest", "warn"),
            _daemon("output_freshness:threads", "critical"),
        ]
        result = run_pipeline_correlation_check(
            self.cfg, "/nonexistent/threads.json", checks,
            event_counter=lambda stream: None, now=NIGHT,
        )
        self.assertEqual(result.severity, "warn")
        self.assertEqual(result.correlations[0].diagnosis, "pipeline_disconnected")
        self.assertEqual(result.correlations[0].output_value, 2)

    def test_silent_source_during_business_hours(self):
        morning = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
        result = run_pipeline_correlation_check(
            self.cfg, "/nonexistent/threads.json", [],
            event_counter=lambda stream: 0, now=morning,
        )
        self.assertEqual(result.severity, "warn")
        self.assertEqual(result.correlations[0].diagnosis, "event_source_silent")

    def test_silent_source_at_night_is_fine(self):
        result = run_pipeline_correlation_check(
            self.cfg, "/nonexistent/threads.json", [],
            event_counter=lambda stream: 0, now=NIGHT,
        )
        self.assertEqual(result.severity, "ok")

    def test_stream_name_passed_to_counter(self):
        seen = []
        cfg = PipelineCorrelationConfig(enabled=True, nats_stream="custom-events")
        run_pipeline_correlation_check(
            cfg, "/nonexistent", [], event_counter=lambda s: seen.append(s), now=NIGHT,
        )
        self.assertEqual(seen, ["custom-events"])


class TestSignals(unittest.TestCase):
    def test_cron_status(self):
        checks = [
            _daemon("cron_health:a", "ok"),
            _daemon("cron_health:b", "warn"),
            _daemon("output_freshness:x", "warn"),
            _daemon("disk:root", "critical"),
        ]
        self.assertEqual(cron_status(checks), (False, 1))
        self.assertEqual(cron_status([]), (True, 0))

    def test_business_hours_uses_fixed_offset(self):
        hours = BusinessHours(start=8, end=22, utc_offset_hours=1)
        at = lambda h: datetime(2026, 7, 1, h, 30, tzinfo=timezone.utc)
        self.assertTrue(is_business_hours(hours, at(7)))
        self.assertFalse(is_business_hours(hours, at(6)))
        self.assertTrue(is_business_hours(hours, at(20)))
        self.assertFalse(is_business_hours(hours, at(21)))

    def test_nats_count_from_cli(self):
        proc = MagicMock(stdout=json.dumps({"state": {"messages": 345}}))
        with patch("monitoring.agents.pipeline_correlation.subprocess.run",
                   return_value=proc) as run:
            self.assertEqual(nats_event_count("memory-events"), 345)
        self.assertEqual(
            run.call_args.args[0], ["nats", "stream", "info", "memory-events", "--json"],
        )
        self.assertEqual(run.call_args.kwargs["timeout"], 5)

    def test_nats_count_failures_are_none(self):
        target = "monitoring.agents.pipeline_correlation.subprocess.run"
        with patch(target, side_effect=FileNotFoundError("nats")):
            self.assertIsNone(nats_event_count("s"))
        with patch(target, side_effect=subprocess.TimeoutExpired("nats", 5)):
            self.assertIsNone(nats_event_count("s"))
        with patch(target, return_value=MagicMock(stdout="not json")):
            self.assertIsNone(nats_event_count("s"))
        with patch(target, return_value=MagicMock(stdout='{"state": {}}')):
            self.assertIsNone(nats_event_count("s"))


if __name__ == "__main__":
    unittest.main()
