"""Recommendations: housekeeping advice from this run's results."""
from __future__ import annotations

import logging

import config
from config import RecommendationsConfig
from llm_client import LlmClient
from monitoring._base import (
    SEVERITY_OK,
    CheckResult,
    Recommendation,
    StatusDocument,
    elapsed_ms,
    parse_severity,
)
from monitoring.runner import (
    FailOpenContext,
    InputResult,
    LlmCheck,
    MergeContext,
    current_date,
    run_llm_check,
)

log = logging.getLogger(__name__)

CHECK_NAME = "cognitive:recommendations"
ITEMS_PER_RESULT = 5

SYSTEM_PROMPT = """\
You are a system health advisor. Based on the current check results and system history, generate housekeeping recommendations.
Respond ONLY with valid JSON matching this schema:
{
  "severity": "ok" | "warn" | "critical",
  "detail": "N recommendations generated",
  "recommendations": [
    {
      "type": "archive_thread" | "cleanup_goals" | "adjust_config" | "investigate" | "maintenance",
      "target": "what to act on",
      "reason": "why this is recommended",
      "priority": "low" | "medium" | "high"
    }
  ]
}

Rules:
- Patterns in heal history (same check failing repeatedly → systemic issue)
- Stale threads/goals → archive candidates
- Cron jobs with repeated warnings → config change suggestion
- L1 checks stuck on warn for > 48h → needs human investigation
- severity "ok" when there are only low-priority suggestions
- severity "warn" when there are medium/high priority recommendations
- Maximum recommendations: as specified
"""


def build_findings_summary(
    results: list[CheckResult],
    status: StatusDocument | None,
    max_chars: int = config.LLM_INPUT_MAX_CHARS,
) -> str:
    lines = ["=== Current Cognitive Check Results ==="]

    for result in results:
        lines.append(f"{result.check_name}: {result.severity} - {result.detail}")
        for f in (result.findings or [])[:ITEMS_PER_RESULT]:
            lines.append(f"  - {f.issue}: {f.detail}")
        for c in (result.correlations or [])[:ITEMS_PER_RESULT]:
            lines.append(
                f"  - {c.diagnosis}: {c.input}={c.input_value} → {c.output}={c.output_value}"
            )
        for a in (result.anomalies or [])[:ITEMS_PER_RESULT]:
            lines.append(f"  - {a.metric}: {a.deviation}")

    issues = [c for c in (status.daemon_checks if status else []) if c.severity != SEVERITY_OK]
    if issues:
        lines.append("\n=== Current Daemon Issues ===")
        lines.extend(f"{c.check_name}: {c.severity} - {c.detail}" for c in issues)

    return "\n".join(lines)[:max_chars]


def parse_recommendations(raw: object, limit: int) -> list[Recommendation]:
    if not isinstance(raw, list):
        return []
    parsed = [r for r in (Recommendation.from_raw(entry) for entry in raw) if r is not None]
    return parsed[:max(0, limit)]


class RecommendationsCheck(LlmCheck):
    name = CHECK_NAME
    system_prompt = SYSTEM_PROMPT

    def __init__(
        self,
        cfg: RecommendationsConfig,
        results: list[CheckResult],
        status: StatusDocument | None,
    ):
        self.cfg = cfg
        self.results = results
        self.status = status
        self.uses_llm = cfg.uses_llm

    def read_input(self, timestamp: str, start: float) -> InputResult:
        return InputResult(subject=build_findings_summary(self.results, self.status))

    def build_prompt(self, subject: str) -> str:
        return "\n".join([
            f"Current date: {current_date()}",
            f"Maximum recommendations: {self.cfg.max_recommendations}",
            "",
            subject,
        ])

    def build_fail_open(self, ctx: FailOpenContext) -> CheckResult:
        return CheckResult(
            check_name=self.name,
            severity=SEVERITY_OK,
            detail=f"{ctx.message} - no recommendations",
            recommendations=[],
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )

    def merge_results(self, ctx: MergeContext) -> CheckResult:
        recs = parse_recommendations(
            ctx.parsed.get("recommendations"), self.cfg.max_recommendations,
        )
        detail = ctx.parsed.get("detail")
        return CheckResult(
            check_name=self.name,
            severity=parse_severity(ctx.parsed.get("severity")),
            detail=detail if isinstance(detail, str) else f"{len(recs)} recommendations generated",
            recommendations=recs,
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )


async def run_recommendations_check(
    cfg: RecommendationsConfig,
    llm: LlmClient,
    results: list[CheckResult],
    status: StatusDocument | None,
) -> CheckResult:
    return await run_llm_check(RecommendationsCheck(cfg, results, status), llm)
