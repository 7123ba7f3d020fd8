"""Thread Health: stale and malformed conversation threads."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from config import ThreadHealthConfig
from llm_client import LlmClient
from monitoring._base import SEVERITY_OK, SEVERITY_WARN, CheckResult, Finding
from monitoring.runner import (
    InputResult,
    LlmCheck,
    PreFilterResult,
    current_date,
    run_llm_check,
    truncate_json,
)
from monitoring.status import read_json_input
from utils import parse_timestamp

log = logging.getLogger(__name__)

CHECK_NAME = "cognitive:thread_health"

SYSTEM_PROMPT = """\
You are a system health evaluator. Analyze the conversation threads and assess their health.
Respond ONLY with valid JSON matching this schema:
{
  "severity": "ok" | "warn" | "critical",
  "detail": "single line summary",
  "findings": [
    {
      "thread_id": "thread id",
      "issue": "stale" | "duplicate" | "incomplete" | "accumulating",
      "detail": "explanation",
      "days_since_update": 0,
      "recommendation": "what to do"
    }
  ]
}

Evaluation rules:
- Open threads with no update for > staleDays → WARN: stale
- Threads with identical or near-identical titles → WARN: duplicate
- Threads with empty or minimal description → WARN: incomplete
- Ratio of open to total (>80% open with >10 total) → WARN: accumulating
- ALL threads current and well-formed → severity "ok"
- ≥1 stale/duplicate/incomplete → severity "warn"
- ≥50% threads are stale or noise → severity "critical"
"""


def extract_threads(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("threads")
    if not isinstance(data, list):
        return []
    return [thread for thread in data if isinstance(thread, dict)]


def pre_filter_threads(
    threads: list[dict[str, Any]],
    stale_days: int,
    now: datetime | None = None,
) -> list[Finding]:
    """Flag open threads whose last activity is older than *stale_days*."""
    now = now or datetime.now(timezone.utc)
    findings: list[Finding] = []

    for thread in threads:
        if thread.get("status") != "open":
            continue
        last_activity = parse_timestamp(thread.get("last_activity"))
        if last_activity is None or now - last_activity <= timedelta(days=stale_days):
            continue
        days_since = round((now - last_activity).total_seconds() / 86400)
        findings.append(Finding(
            thread_id=str(thread["id"]) if thread.get("id") is not None else None,
            issue="stale",
            detail=f'Thread "{thread.get("title", "")}" has no update for {days_since} days',
            days_since_update=days_since,
            recommendation="Archive or update thread",
        ))

    return findings


class ThreadHealthCheck(LlmCheck):
    name = CHECK_NAME
    system_prompt = SYSTEM_PROMPT

    def __init__(self, cfg: ThreadHealthConfig):
        self.cfg = cfg
        self.uses_llm = cfg.uses_llm

    def read_input(self, timestamp: str, start: float) -> InputResult:
        raw = read_json_input(self.cfg.input_path)
        if raw is None:
            return self.skip(SEVERITY_OK, "Threads file not found - check skipped", timestamp, start)
        threads = extract_threads(raw)
        if not threads:
            return self.skip(SEVERITY_OK, "No threads found", timestamp, start)
        return InputResult(subject=threads)

    def pre_filter(self, subject: list[dict[str, Any]]) -> PreFilterResult:
        findings = pre_filter_threads(subject, self.cfg.stale_days)
        return PreFilterResult(
            severity=SEVERITY_WARN if findings else SEVERITY_OK,
            findings=findings,
        )

    def build_prompt(self, subject: list[dict[str, Any]]) -> str:
        return (
            f"Current date: {current_date()}\n"
            f"Stale threshold: {self.cfg.stale_days} days\n\n"
            f"Threads ({len(subject)} total):\n{truncate_json(subject)}"
        )


async def run_thread_health_check(cfg: ThreadHealthConfig, llm: LlmClient) -> CheckResult:
    return await run_llm_check(ThreadHealthCheck(cfg), llm)
