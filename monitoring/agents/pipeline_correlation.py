"""Pipeline Correlation: deterministic cross-signal diagnosis.

Signals gathered each run:
  - total messages on the event stream (``nats stream info``; None when the
    CLI is missing or fails)
  - hours since the threads file was last modified
  - cron health and stale-output counts from the L1 daemon checks
  - whether the current hour falls inside business hours (fixed UTC offset)
"""
from __future__ import annotations

import json
import logging
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from config import BusinessHours, PipelineCorrelationConfig
from monitoring._base import (
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARN,
    CheckResult,
    Correlation,
    DaemonCheck,
    elapsed_ms,
    worst_severity,
)
from utils import utc_now_iso

log = logging.getLogger(__name__)

CHECK_NAME = "cognitive:pipeline_correlation"
NATS_TIMEOUT_SEC = 5
DISCONNECTED_AFTER_HOURS = 4

EventCounter = Callable[[str], "int | None"]

_DIAGNOSIS_SEVERITY = {
    "consumer_disconnected": SEVERITY_CRITICAL,
    "consumer_slow": SEVERITY_WARN,
    "pipeline_disconnected": SEVERITY_WARN,
    "event_source_silent": SEVERITY_WARN,
}


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

def nats_event_count(stream: str) -> int | None:
    """Total messages on *stream* according to the ``nats`` CLI."""
    try:
        proc = subprocess.run(
            ["nats", "stream", "info", stream, "--json"],
            capture_output=True,
            text=True,
            timeout=NATS_TIMEOUT_SEC,
            check=True,
        )
        data = json.loads(proc.stdout)
    except (OSError, subprocess.SubprocessError, ValueError):
        log.debug("NATS CLI not available or stream %s not found", stream)
        return None

    state = data.get("state") if isinstance(data, dict) else None
    messages = state.get("messages") if isinstance(state, dict) else None
    if isinstance(messages, bool) or not isinstance(messages, (int, float)):
        return None
    return int(messages)


def file_age_hours(path: str | Path, now: float | None = None) -> float | None:
    try:
        mtime = Path(path).stat().st_mtime
    except OSError:
        return None
    now = time.time() if now is None else now
    return max(0.0, (now - mtime) / 3600)


def cron_status(daemon_checks: list[DaemonCheck]) -> tuple[bool, int]:
    """Return ``(all_crons_ok, stale_output_count)``."""
    all_ok = True
    stale_outputs = 0
    for check in daemon_checks:
        if check.check_name.startswith("cron_health:") and check.severity != SEVERITY_OK:
            all_ok = False
        if check.check_name.startswith("output_freshness:") and check.severity != SEVERITY_OK:
            stale_outputs += 1
    return all_ok, stale_outputs


def is_business_hours(hours: BusinessHours, now: datetime | None = None) -> bool:
    # Fixed offset; daylight saving time is not applied.
    now = now or datetime.now(timezone.utc)
    hour = (now.astimezone(timezone.utc).hour + hours.utc_offset_hours) % 24
    return hours.start <= hour < hours.end


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def correlate(
    events: int | None,
    threads_age_h: float | None,
    crons_all_ok: bool,
    stale_outputs: int,
    in_business_hours: bool,
    window_hours: float,
) -> list[Correlation]:
    correlations: list[Correlation] = []

    if events is not None and events > 0 and threads_age_h is not None:
        age = round(threads_age_h, 1)
        if threads_age_h > DISCONNECTED_AFTER_HOURS:
            diagnosis = "consumer_disconnected"
        elif threads_age_h > window_hours:
            diagnosis = "consumer_slow"
        else:
            diagnosis = None
        if diagnosis:
            correlations.append(Correlation(
                input="nats_total_messages",
                input_value=events,
                output="threads_age_hours",
                output_value=age,
                diagnosis=diagnosis,
            ))

    if crons_all_ok and stale_outputs >= 2:
        correlations.append(Correlation(
            input="crons_all_ok",
            input_value=1,
            output="stale_outputs",
            output_value=stale_outputs,
            diagnosis="pipeline_disconnected",
        ))

    if events == 0 and in_business_hours:
        correlations.append(Correlation(
            input="nats_events",
            input_value=0,
            output="business_hours",
            output_value=1,
            diagnosis="event_source_silent",
        ))

    return correlations


def run_pipeline_correlation_check(
    cfg: PipelineCorrelationConfig,
    threads_path: str | Path,
    daemon_checks: list[DaemonCheck],
    *,
    event_counter: EventCounter | None = None,
    now: datetime | None = None,
) -> CheckResult:
    start = time.monotonic()
    timestamp = utc_now_iso()
    counter = event_counter or nats_event_count

    events = counter(cfg.nats_stream)
    threads_age_h = file_age_hours(
        threads_path, now.timestamp() if now is not None else None,
    )
    crons_all_ok, stale_outputs = cron_status(daemon_checks)
    in_hours = is_business_hours(cfg.business_hours, now)

    correlations = correlate(
        events, threads_age_h, crons_all_ok, stale_outputs, in_hours,
        cfg.correlation_window_hours,
    )
    severity = worst_severity(*(_DIAGNOSIS_SEVERITY[c.diagnosis] for c in correlations))
    if correlations:
        log.info(
            "Pipeline correlation: %s",
            ", ".join(c.diagnosis for c in correlations),
        )

    return CheckResult(
        check_name=CHECK_NAME,
        severity=severity,
        detail=(
            f"{len(correlations)} correlation issue(s) detected"
            if correlations
            else "All pipeline correlations normal"
        ),
        correlations=correlations,
        timestamp=timestamp,
        duration_ms=elapsed_ms(start),
    )
