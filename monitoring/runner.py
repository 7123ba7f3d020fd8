"""Generic runner for LLM-backed cognitive checks.

Flow: read_input → pre_filter → build_prompt → LLM call → parse → merge.
When the LLM is unreachable, times out, or answers with something that is
not a JSON object, the check fails open: the pre-filter result becomes the
final result and the severity never rises above the pre-filter floor.
"""
from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import config
from monitoring._base import (
    SEVERITY_OK,
    CheckResult,
    Finding,
    elapsed_ms,
    extract_json_object,
    worst_severity,
)
from utils import utc_now_iso

log = logging.getLogger(__name__)


@dataclass
class InputResult:
    """Either a subject to evaluate or a terminal result that skips the LLM."""
    subject: Any = None
    skip: CheckResult | None = None


@dataclass
class PreFilterResult:
    severity: str = SEVERITY_OK
    findings: list[Finding] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def finding_count(self) -> int:
        return len(self.findings)


@dataclass
class FailOpenContext:
    pre: PreFilterResult
    message: str
    model: str | None
    tokens: int
    timestamp: str
    start: float


@dataclass
class MergeContext:
    parsed: dict[str, Any]
    pre: PreFilterResult
    model: str
    tokens: int
    timestamp: str
    start: float


def current_date() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def truncate_json(value: Any, max_chars: int = config.LLM_INPUT_MAX_CHARS) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)[:max_chars]


def merge_findings(pre_findings: list[Finding], llm_findings: list[Finding]) -> list[Finding]:
    """Pre-filter findings first; LLM findings for an already-flagged subject are dropped."""
    seen = {f.subject_id for f in pre_findings if f.subject_id}
    unique = [f for f in llm_findings if not f.subject_id or f.subject_id not in seen]
    return [*pre_findings, *unique]


def parse_llm_findings(parsed: dict[str, Any]) -> list[Finding]:
    raw = parsed.get("findings")
    if not isinstance(raw, list):
        return []
    return [f for f in (Finding.from_raw(entry) for entry in raw) if f is not None]


class LlmCheck(ABC):
    """One LLM-backed check. Subclasses supply the subject and the prompt.

    The default ``build_fail_open`` / ``merge_results`` implement the
    findings protocol (pre-filter floor, dedup by subject id); checks with a
    different result shape override them.
    """

    name: str = ""
    system_prompt: str = ""
    uses_llm: bool = True
    timeout_ms: int = config.LLM_CHECK_TIMEOUT_MS

    @abstractmethod
    def read_input(self, timestamp: str, start: float) -> InputResult:
        ...

    def pre_filter(self, subject: Any) -> PreFilterResult:
        return PreFilterResult()

    @abstractmethod
    def build_prompt(self, subject: Any) -> str:
        ...

    def skip(self, severity: str, detail: str, timestamp: str, start: float) -> InputResult:
        return InputResult(skip=CheckResult(
            check_name=self.name,
            severity=severity,
            detail=detail,
            timestamp=timestamp,
            duration_ms=elapsed_ms(start),
        ))

    def build_fail_open(self, ctx: FailOpenContext) -> CheckResult:
        return CheckResult(
            check_name=self.name,
            severity=ctx.pre.severity,
            detail=f"{ctx.message} - {ctx.pre.finding_count} pre-filter findings",
            findings=list(ctx.pre.findings),
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )

    def merge_results(self, ctx: MergeContext) -> CheckResult:
        findings = merge_findings(ctx.pre.findings, parse_llm_findings(ctx.parsed))
        detail = ctx.parsed.get("detail")
        return CheckResult(
            check_name=self.name,
            severity=worst_severity(ctx.parsed.get("severity"), ctx.pre.severity),
            detail=detail if isinstance(detail, str) else f"{len(findings)} findings",
            findings=findings,
            timestamp=ctx.timestamp,
            model_used=ctx.model,
            tokens_used=ctx.tokens,
            duration_ms=elapsed_ms(ctx.start),
        )


async def run_llm_check(check: LlmCheck, llm: Any) -> CheckResult:
    """Run *check* against *llm* (anything with an async ``generate``)."""
    start = time.monotonic()
    timestamp = utc_now_iso()

    read = check.read_input(timestamp, start)
    if read.skip is not None:
        log.debug("%s skipped: %s", check.name, read.skip.detail)
        return read.skip

    pre = check.pre_filter(read.subject)

    if not check.uses_llm:
        return check.build_fail_open(FailOpenContext(
            pre=pre, message="LLM disabled", model=None, tokens=0,
            timestamp=timestamp, start=start,
        ))

    prompt = check.build_prompt(read.subject)
    response = await llm.generate(check.system_prompt, prompt, check.timeout_ms)

    if response.content is None:
        message = f"LLM unavailable ({response.error})" if response.error else "LLM timeout"
        log.info("%s failing open: %s", check.name, message)
        return check.build_fail_open(FailOpenContext(
            pre=pre, message=message, model=response.model, tokens=0,
            timestamp=timestamp, start=start,
        ))

    parsed = extract_json_object(response.content)
    if parsed is None:
        log.warning(
            "%s: unparseable LLM response: %s", check.name, response.content[:200],
        )
        return check.build_fail_open(FailOpenContext(
            pre=pre, message="LLM response parsing failed", model=response.model,
            tokens=response.tokens, timestamp=timestamp, start=start,
        ))

    return check.merge_results(MergeContext(
        parsed=parsed, pre=pre, model=response.model, tokens=response.tokens,
        timestamp=timestamp, start=start,
    ))
