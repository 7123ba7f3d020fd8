"""Anomaly Detection: directory growth and shrinking metric trends."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from config import AnomalyDetectionConfig, MonitoredDir
from monitoring._base import (
    SEVERITY_CRITICAL,
    SEVERITY_WARN,
    Anomaly,
    CheckResult,
    HistoryDocument,
    elapsed_ms,
    worst_severity,
)
from utils import parse_timestamp, utc_now_iso

log = logging.getLogger(__name__)

CHECK_NAME = "cognitive:anomaly_detection"
TRACKED_METRICS = ("fact_count", "goal_count", "thread_count")
GROWTH_LOOKBACK = timedelta(days=7)
GROWTH_WARN_RATIO = 2
GROWTH_CRITICAL_RATIO = 5
TREND_WARN_STEPS = 3
TREND_CRITICAL_STEPS = 5


@dataclass
class Trend:
    direction: str  # growing | shrinking | stable
    steps: int = 0
    current: float = 0
    start: float = 0


def dir_size_mb(path: str | Path) -> float | None:
    """Sum of top-level regular file sizes in MB, or None if unreadable."""
    total = 0
    try:
        with os.scandir(Path(path).expanduser()) as entries:
            for entry in entries:
                try:
                    if entry.is_file(follow_symlinks=False):
                        total += entry.stat(follow_symlinks=False).st_size
                except OSError:
                    continue
    except OSError:
        return None
    return round(total / (1024 * 1024), 2)


def growth_baseline(
    history: HistoryDocument | None,
    key: str,
    now: datetime | None = None,
) -> float | None:
    """Most recent value of *key* recorded more than a week ago."""
    if history is None:
        return None
    cutoff = (now or datetime.now(timezone.utc)) - GROWTH_LOOKBACK
    for snapshot in reversed(history.snapshots):
        taken = parse_timestamp(snapshot.timestamp)
        if taken is None or taken >= cutoff:
            continue
        value = snapshot.metrics.get(key)
        if value is not None and value > 0:
            return value
    return None


def check_dir_growth(
    dirs: list[MonitoredDir],
    history: HistoryDocument | None,
    now: datetime | None = None,
) -> tuple[dict[str, float], list[Anomaly]]:
    baselines: dict[str, float] = {}
    anomalies: list[Anomaly] = []

    for monitored in dirs:
        current = dir_size_mb(monitored.path)
        if current is None:
            log.debug("Monitored dir unavailable: %s", monitored.path)
            continue
        key = f"{monitored.label}_dir_mb"
        baselines[key] = current

        baseline = growth_baseline(history, key, now)
        if baseline is None:
            continue
        ratio = current / baseline
        if ratio > GROWTH_CRITICAL_RATIO:
            severity = SEVERITY_CRITICAL
        elif ratio > GROWTH_WARN_RATIO:
            severity = SEVERITY_WARN
        else:
            continue
        anomalies.append(Anomaly(
            metric=key,
            current=current,
            baseline=baseline,
            deviation=f"{ratio:.1f}x growth in 7 days",
            severity=severity,
        ))

    return baselines, anomalies


def detect_trend(values: list[float]) -> Trend:
    """Count consecutive steps in the latest direction, walking backward.

    A flat step or a change of direction ends the streak.
    """
    if len(values) < 2:
        return Trend("stable")

    direction = "stable"
    steps = 0
    index = len(values) - 1
    while index > 0:
        curr, prev = values[index], values[index - 1]
        step = "growing" if curr > prev else "shrinking" if curr < prev else "stable"
        if step == "stable" or (direction != "stable" and step != direction):
            break
        direction = step
        steps += 1
        index -= 1

    return Trend(direction, steps, current=values[-1], start=values[index])


def check_metric_trends(history: HistoryDocument | None) -> list[Anomaly]:
    if history is None:
        return []
    anomalies: list[Anomaly] = []

    for metric in TRACKED_METRICS:
        values = [s.metrics[metric] for s in history.snapshots if metric in s.metrics]
        trend = detect_trend(values)
        if trend.direction == "growing" and trend.steps >= TREND_WARN_STEPS:
            log.debug("%s growing for %d snapshots", metric, trend.steps)
        if trend.direction != "shrinking" or trend.steps < TREND_WARN_STEPS:
            continue
        if trend.steps >= TREND_CRITICAL_STEPS:
            severity = SEVERITY_CRITICAL
            deviation = f"{trend.steps} consecutive decreases - possible data loss"
        else:
            severity = SEVERITY_WARN
            deviation = f"{trend.steps} consecutive decreases"
        anomalies.append(Anomaly(
            metric=metric,
            current=trend.current,
            baseline=trend.start,
            deviation=deviation,
            severity=severity,
        ))

    return anomalies


def run_anomaly_detection_check(
    cfg: AnomalyDetectionConfig,
    history: HistoryDocument | None,
    *,
    now: datetime | None = None,
) -> CheckResult:
    start = time.monotonic()
    timestamp = utc_now_iso()

    baselines, anomalies = check_dir_growth(cfg.monitored_dirs, history, now)
    anomalies.extend(check_metric_trends(history))

    return CheckResult(
        check_name=CHECK_NAME,
        severity=worst_severity(*(a.severity for a in anomalies)),
        detail=(
            f"{len(anomalies)} anomaly(s) detected"
            if anomalies
            else "All metrics within normal range"
        ),
        anomalies=anomalies,
        baselines=baselines,
        timestamp=timestamp,
        duration_ms=elapsed_ms(start),
    )
