"""Bootstrap Integrity: is the bootstrap manifest still true?"""
from __future__ import annotations

import logging

import config
from config import BootstrapIntegrityConfig
from llm_client import LlmClient
from monitoring._base import (
    SEVERITY_OK,
    SEVERITY_WARN,
    CheckResult,
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
    parse_llm_findings,
    run_llm_check,
)
from monitoring.status import read_text_input

log = logging.getLogger(__name__)

CHECK_NAME = "cognitive:bootstrap_integrity"

SYSTEM_PROMPT = """\
You are a system health evaluator. Verify that the BOOTSTRAP.md file is factually current and complete.
Respond ONLY with valid JSON matching this schema:
{
  "severity": "ok" | "warn" | "critical",
  "detail": "single line summary",
  "findings": [
    {
      "issue": "stale_reference" | "missing_subsystem" | "factual_error" | "outdated_state",
      "line": "the problematic text from BOOTSTRAP.md",
      "detail": "explanation of what's wrong",
      "recommendation": "what to fix"
    }
  ]
}

Evaluation rules:
- Does it reference services/crons that no longer exist?
- Are file paths correct?
- Is "current state" aligned with actual system status?
- Are key subsystems mentioned (NATS, Membrane, Cortex, health monitor, Governance)?
- Content aligns with system state → "ok"
- Minor omissions or stale references → "warn"
- Major factual errors or missing critical subsystems → "critical"
"""


def build_system_context(status: StatusDocument | None) -> str:
    """Summarise the L1 status document for the prompt."""
    if status is None:
        return "System status: unavailable"

    issues = [
        f"{c.check_name}: {c.severity} - {c.detail}"
        for c in status.daemon_checks
        if c.severity != SEVERITY_OK
    ]
    lines = [
        f"Last check: {status.last_check}",
        f"Overall severity: {status.overall_severity}",
        f"Daemon checks: {len(status.daemon_checks)} total",
    ]
    lines.append("Issues:\n" + "\n".join(issues) if issues else "All daemon checks OK")
    return "\n".join(lines)


class BootstrapIntegrityCheck(LlmCheck):
    name = CHECK_NAME
    system_prompt = SYSTEM_PROMPT

    def __init__(self, cfg: BootstrapIntegrityConfig, status: StatusDocument | None):
        self.cfg = cfg
        self.status = status
        self.uses_llm = cfg.uses_llm

    def read_input(self, timestamp: str, start: float) -> InputResult:
        content = read_text_input(self.cfg.input_path, config.LLM_INPUT_MAX_CHARS)
        if content is None:
            # A missing manifest is itself a finding.
            return self.skip(
                SEVERITY_WARN,
                "Bootstrap manifest not found - cannot verify integrity",
                timestamp,
                start,
            )
        return InputResult(subject=content)

    def build_prompt(self, subject: str) -> str:
        return "\n".join([
            f"Current date: {current_date()}",
            "",
            "=== System State ===",
            build_system_context(self.status),
            "",
            "=== BOOTSTRAP.md Content ===",
            subject,
        ])

    def build_fail_open(self, ctx: FailOpenContext) -> CheckResult:
        return CheckResult(
            check_name=self.name,
            severity=SEVERITY_OK,
            detail=f"{ctx.message} - check skipped",
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )

    def merge_results(self, ctx: MergeContext) -> CheckResult:
        findings = parse_llm_findings(ctx.parsed)
        detail = ctx.parsed.get("detail")
        return CheckResult(
            check_name=self.name,
            severity=parse_severity(ctx.parsed.get("severity")),
            detail=detail if isinstance(detail, str) else f"{len(findings)} findings",
            findings=findings,
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )


async def run_bootstrap_integrity_check(
    cfg: BootstrapIntegrityConfig,
    llm: LlmClient,
    status: StatusDocument | None,
) -> CheckResult:
    return await run_llm_check(BootstrapIntegrityCheck(cfg, status), llm)
