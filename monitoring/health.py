"""Cognitive check orchestrator.

Check implementations live in monitoring/agents/*.py. This module runs them
in order, isolates crashes, applies critical escalation, and hands the
results to the status writer.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import config
from config import HealthConfig
from llm_client import LlmClient
from monitoring._base import (
    CheckResult,
    CognitiveMeta,
    elapsed_ms,
    worst_severity,
)
from monitoring.agents.anomaly_detection import run_anomaly_detection_check
from monitoring.agents.bootstrap_integrity import run_bootstrap_integrity_check
from monitoring.agents.critical_escalation import apply_critical_escalation
from monitoring.agents.goal_quality import run_goal_quality_check
from monitoring.agents.pipeline_correlation import EventCounter, run_pipeline_correlation_check
from monitoring.agents.recommendations import run_recommendations_check
from monitoring.agents.thread_health import run_thread_health_check
from monitoring.status import read_history_file, read_status_file, write_cognitive_results
from utils import LatencyTracker, utc_now_iso

log = logging.getLogger(__name__)

CheckFn = Callable[[], "CheckResult | Awaitable[CheckResult]"]


@dataclass
class _RunContext:
    results: list[CheckResult] = field(default_factory=list)
    total_tokens: int = 0
    checks_failed: int = 0


def compute_overall_severity(results: list[CheckResult]) -> str:
    return worst_severity(*(r.severity for r in results))


async def _run_check(ctx: _RunContext, label: str, fn: CheckFn) -> None:
    """Run one check; a crash is logged and counted, never propagated."""
    try:
        async with LatencyTracker("checks", label):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
    except Exception:
        log.error("%s failed", label, exc_info=True)
        ctx.checks_failed += 1
        return
    ctx.results.append(result)
    ctx.total_tokens += result.tokens_used or 0


async def run_all_checks(
    cfg: HealthConfig,
    *,
    llm: Any = None,
    event_counter: EventCounter | None = None,
) -> tuple[list[CheckResult], CognitiveMeta]:
    """Run every enabled check in order and return ``(results, meta)``.

    Pipeline correlation and anomaly detection run in a worker thread.
    """
    start = time.monotonic()
    ctx = _RunContext()
    checks = cfg.checks

    status = read_status_file(cfg.status_path)
    history = read_history_file(cfg.history_path)
    client = llm or LlmClient.from_config(cfg.llm)

    if checks.goal_quality.enabled:
        await _run_check(
            ctx, "goal_quality",
            lambda: run_goal_quality_check(checks.goal_quality, client),
        )
    if checks.thread_health.enabled:
        await _run_check(
            ctx, "thread_health",
            lambda: run_thread_health_check(checks.thread_health, client),
        )
    if checks.pipeline_correlation.enabled:
        await _run_check(
            ctx, "pipeline_correlation",
            lambda: asyncio.to_thread(
                run_pipeline_correlation_check,
                checks.pipeline_correlation,
                checks.thread_health.input_path,
                status.daemon_checks if status else [],
                event_counter=event_counter,
            ),
        )
    if checks.anomaly_detection.enabled:
        await _run_check(
            ctx, "anomaly_detection",
            lambda: asyncio.to_thread(
                run_anomaly_detection_check, checks.anomaly_detection, history,
            ),
        )
    if checks.bootstrap_integrity.enabled:
        await _run_check(
            ctx, "bootstrap_integrity",
            lambda: run_bootstrap_integrity_check(checks.bootstrap_integrity, client, status),
        )
    if checks.recommendations.enabled:
        await _run_check(
            ctx, "recommendations",
            lambda: run_recommendations_check(
                checks.recommendations, client, list(ctx.results), status,
            ),
        )

    results = apply_critical_escalation(ctx.results, status)

    meta = CognitiveMeta(
        last_run=utc_now_iso(),
        total_duration_ms=elapsed_ms(start),
        total_tokens=ctx.total_tokens,
        total_cost_usd=0,
        model=cfg.llm.primary.model_id,
        checks_completed=len(results),
        checks_failed=ctx.checks_failed,
        plugin_version=config.PLUGIN_VERSION,
    )
    log.info(
        "Cognitive checks complete: %d ok, %d failed (%dms, %d tokens)",
        meta.checks_completed, meta.checks_failed,
        meta.total_duration_ms, meta.total_tokens,
    )
    return results, meta


async def refresh(
    cfg: HealthConfig,
    *,
    llm: Any = None,
    event_counter: EventCounter | None = None,
) -> str:
    """Run all checks, persist them, and return a one-line summary."""
    results, meta = await run_all_checks(cfg, llm=llm, event_counter=event_counter)
    if not write_cognitive_results(cfg.status_path, results, meta):
        return (
            f"⚕️ Vigil L2 refresh failed: could not write {cfg.status_path} "
            f"({len(results)} checks ran)"
        )
    overall = compute_overall_severity(results)
    return (
        f"⚕️ Vigil L2 refresh complete: {overall.upper()} - {len(results)} checks "
        f"({meta.total_duration_ms}ms, {meta.total_tokens} tokens)"
    )
