import asyncio
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from utils import (
    LatencyTracker,
    atomic_write,
    parse_timestamp,
    track_latency,
    utc_now_iso,
)


class TestTimestamps(unittest.TestCase):
    def test_utc_now_iso_format(self):
        stamp = utc_now_iso()
        self.assertTrue(stamp.endswith("Z"))
        self.assertEqual(len(stamp), len("2026-10-19T08:00:00.000Z"))

    def test_epoch_units_normalised(self):
        expected = datetime(2026, 10, 19, 8, tzinfo=timezone.utc)
        seconds = int(expected.timestamp())
        for raw in (seconds, seconds * 1_000, seconds * 1_000_000, seconds * 1_000_000_000):
            self.assertEqual(parse_timestamp(str(raw)), expected)
            self.assertEqual(parse_timestamp(raw), expected)

    def test_parse_timestamp(self):
        parsed = parse_timestamp("2026-10-19T08:00:00Z")
        self.assertEqual(parsed, datetime(2026, 10, 19, 8, tzinfo=timezone.utc))
        naive = parse_timestamp("2026-10-19T08:00:00")
        self.assertEqual(naive.tzinfo, timezone.utc)
        shifted = parse_timestamp("2026-10-19T10:00:00+02:00")
        self.assertEqual(shifted, datetime(2026, 10, 19, 8, tzinfo=timezone.utc))
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp("next tuesday"))

    def test_any_fractional_second_precision(self):
        base = datetime(2026, 10, 19, 8, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp("2026-10-19T08:00:00.12Z"),
                         base.replace(microsecond=120000))
        self.assertEqual(parse_timestamp("2026-10-19T08:00:00.5"),
                         base.replace(microsecond=500000))
        self.assertEqual(parse_timestamp("2026-10-19T08:00:00.123456789+00:00"),
                         base.replace(microsecond=123456))


class TestAtomicWrite(unittest.TestCase):
    def test_writes_text_and_bytes(self):
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "out.json"
            atomic_write(target, '{"a": 1}')
            self.assertEqual(target.read_text(encoding="utf-8"), '{"a": 1}')
            atomic_write(target, b"raw")
            self.assertEqual(target.read_bytes(), b"raw")
            self.assertEqual([p.name for p in Path(td).iterdir()], ["out.json"])

    def test_failed_rename_cleans_temp_file(self):
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "out.json"
            target.write_text("old", encoding="utf-8")
            with patch("utils.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(OSError):
                    atomic_write(target, "new")
            self.assertEqual(target.read_text(encoding="utf-8"), "old")
            self.assertEqual([p.name for p in Path(td).iterdir()], ["out.json"])


class TestLatency(unittest.TestCase):
    def test_tracker_records_elapsed(self):
        async def run():
            async with LatencyTracker("checks", "goal_quality") as tracker:
                await asyncio.sleep(0)
            return tracker

        with self.assertLogs("latency.checks", level="DEBUG") as logs:
            tracker = asyncio.run(run())
        self.assertGreaterEqual(tracker.elapsed_ms, 0)
        self.assertTrue(any("checks.goal_quality latency=" in line for line in logs.output))

    def test_track_latency_logs_at_debug(self):
        @track_latency("llm")
        async def call():
            return "done"

        with self.assertLogs("latency.llm", level="DEBUG") as logs:
            self.assertEqual(asyncio.run(call()), "done")
        self.assertTrue(any("llm.call latency=" in line for line in logs.output))

    def test_track_latency_rejects_sync_functions(self):
        with self.assertRaises(TypeError):
            track_latency("llm")(lambda: 1)


if __name__ == "__main__":
    unittest.main()
