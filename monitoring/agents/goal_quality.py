"""Goal Quality: pending-goal hygiene, LLM-assisted."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from config import GoalQualityConfig
from llm_client import LlmClient
from monitoring._base import (
    SEVERITY_OK,
    SEVERITY_WARN,
    CheckResult,
    Finding,
)
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

CHECK_NAME = "cognitive:goal_quality"
STALE_PROPOSAL_HOURS = 48

SYSTEM_PROMPT = """\
You are a system health evaluator. Analyze the pending goals and assess their quality.
Respond ONLY with valid JSON matching this schema:
{
  "severity": "ok" | "warn" | "critical",
  "detail": "single line summary",
  "findings": [
    {
      "item_id": "goal id",
      "issue": "vague_title" | "duplicate" | "expired" | "no_action" | "noise",
      "detail": "explanation",
      "recommendation": "what to do"
    }
  ]
}

Evaluation rules:
- Is each goal specific enough to act on? Vague goals like "Fix recurring general failures" are WARN
- Are there near-duplicates? Multiple similar "Fix recurring X failures" → WARN: consolidate
- Does proposed_action contain a real plan or just a placeholder?
- Are expired goals present? (expires < current date → WARN)
- If ALL goals are specific and actionable → severity "ok"
- If ≥1 vague/duplicate/expired goal → severity "warn"
- If ≥50% of goals are noise → severity "critical"
"""


def extract_goals(data: Any) -> list[dict[str, Any]]:
    """Goals come as a bare list or wrapped under ``goals`` / ``pending_goals``."""
    if isinstance(data, dict):
        for key in ("goals", "pending_goals"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        return []
    return [goal for goal in data if isinstance(goal, dict)]


def pre_filter_goals(
    goals: list[dict[str, Any]],
    now: datetime | None = None,
) -> list[Finding]:
    """Flag expired goals and proposals left unapproved for over 48h."""
    now = now or datetime.now(timezone.utc)
    findings: list[Finding] = []

    for goal in goals:
        goal_id = str(goal["id"]) if goal.get("id") is not None else None
        title = goal.get("title", "")

        expires = parse_timestamp(goal.get("expires"))
        if expires is not None and expires < now:
            findings.append(Finding(
                item_id=goal_id,
                issue="expired",
                detail=f'Goal "{title}" expired on {goal.get("expires")}',
                recommendation="Remove or renew this goal",
            ))

        proposed_at = parse_timestamp(goal.get("proposed_at"))
        if (
            goal.get("status") == "proposed"
            and proposed_at is not None
            and now - proposed_at > timedelta(hours=STALE_PROPOSAL_HOURS)
        ):
            hours = round((now - proposed_at).total_seconds() / 3600)
            findings.append(Finding(
                item_id=goal_id,
                issue="stale_proposal",
                detail=f'Goal "{title}" proposed {hours}h ago, still not approved',
                recommendation="Review and approve or reject this goal",
            ))

    return findings


class GoalQualityCheck(LlmCheck):
    name = CHECK_NAME
    system_prompt = SYSTEM_PROMPT

    def __init__(self, cfg: GoalQualityConfig):
        self.cfg = cfg
        self.uses_llm = cfg.uses_llm

    def read_input(self, timestamp: str, start: float) -> InputResult:
        raw = read_json_input(self.cfg.input_path)
        if raw is None:
            return self.skip(SEVERITY_OK, "Goals file not found - check skipped", timestamp, start)
        goals = extract_goals(raw)
        if not goals:
            return self.skip(SEVERITY_OK, "No pending goals found", timestamp, start)
        return InputResult(subject=goals)

    def pre_filter(self, subject: list[dict[str, Any]]) -> PreFilterResult:
        findings = pre_filter_goals(subject)
        return PreFilterResult(
            severity=SEVERITY_WARN if findings else SEVERITY_OK,
            findings=findings,
        )

    def build_prompt(self, subject: list[dict[str, Any]]) -> str:
        return (
            f"Current date: {current_date()}\n\n"
            f"Pending goals ({len(subject)} total):\n{truncate_json(subject)}"
        )


async def run_goal_quality_check(cfg: GoalQualityConfig, llm: LlmClient) -> CheckResult:
    return await run_llm_check(GoalQualityCheck(cfg), llm)
