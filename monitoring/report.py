"""Read-side views over the status document: query sections, summaries, text."""
from __future__ import annotations

from typing import Any

from config import HealthConfig
from monitoring._base import (
    CHECK_PREFIX,
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARN,
    CheckResult,
    Recommendation,
    StatusDocument,
    severity_emoji,
    severity_rank,
    worst_severity,
)

SECTIONS = ("summary", "daemon", "cognitive", "recommendations", "all")
SEVERITY_FILTERS = ("all", SEVERITY_WARN, SEVERITY_CRITICAL)
TOP_ISSUES_LIMIT = 10
RECOMMENDATIONS_CHECK = f"{CHECK_PREFIX}recommendations"

_ISSUE_NAME_PREFIXES = ("output_freshness:", "daemon:", CHECK_PREFIX)


def status_severity(status: StatusDocument) -> str:
    """Worst severity across daemon and cognitive checks."""
    return worst_severity(
        *(c.severity for c in status.daemon_checks),
        *(c.severity for c in status.cognitive_checks or []),
    )


def _count_by_severity(checks: list[Any]) -> dict[str, int]:
    counts = {"total": len(checks), SEVERITY_OK: 0, SEVERITY_WARN: 0, SEVERITY_CRITICAL: 0}
    for check in checks:
        counts[check.severity] += 1
    return counts


def _filter_by_severity(items: list[Any], severity_filter: str | None) -> list[Any]:
    if severity_filter == SEVERITY_CRITICAL:
        return [i for i in items if i.severity == SEVERITY_CRITICAL]
    if severity_filter == SEVERITY_WARN:
        return [i for i in items if i.severity in (SEVERITY_WARN, SEVERITY_CRITICAL)]
    return list(items)


def _top_issues(status: StatusDocument) -> list[dict[str, str]]:
    issues = [
        {"source": c.check_name, "severity": c.severity, "detail": c.detail}
        for c in [*status.daemon_checks, *(status.cognitive_checks or [])]
        if c.severity != SEVERITY_OK
    ]
    # Stable sort: critical first, original order within a severity.
    issues.sort(key=lambda issue: -severity_rank(issue["severity"]))
    return issues[:TOP_ISSUES_LIMIT]


def _recommendations(status: StatusDocument) -> list[Recommendation]:
    return [
        rec
        for check in status.cognitive_checks or []
        if check.check_name == RECOMMENDATIONS_CHECK
        for rec in check.recommendations or []
    ]


def _meta(status: StatusDocument) -> dict[str, Any] | None:
    return status.cognitive_meta.to_dict() if status.cognitive_meta else None


def _summary(status: StatusDocument) -> dict[str, Any]:
    return {
        "overall": status_severity(status),
        "daemon_summary": _count_by_severity(status.daemon_checks),
        "cognitive_summary": _count_by_severity(status.cognitive_checks or []),
        "top_issues": _top_issues(status),
        "recommendations": len(_recommendations(status)),
        "last_l1_run": status.last_check,
        "last_l2_run": status.cognitive_meta.last_run if status.cognitive_meta else None,
    }


def format_status_view(
    status: StatusDocument | None,
    section: str = "summary",
    severity_filter: str | None = None,
) -> dict[str, Any]:
    """Build the ``health_status`` tool payload for *section*.

    Unknown sections fall back to ``summary``; unknown filters mean ``all``.
    """
    if status is None:
        return {"error": "Status file not available"}

    daemon = [c.to_dict() for c in _filter_by_severity(status.daemon_checks, severity_filter)]
    cognitive = [
        c.to_dict()
        for c in _filter_by_severity(status.cognitive_checks or [], severity_filter)
    ]

    if section == "daemon":
        return {"daemon_checks": daemon, "last_check": status.last_check}
    if section == "cognitive":
        return {"cognitive_checks": cognitive, "cognitive_meta": _meta(status)}
    if section == "recommendations":
        return {"recommendations": [r.to_dict() for r in _recommendations(status)]}
    if section == "all":
        return {
            **_summary(status),
            "daemon_checks": daemon,
            "cognitive_checks": cognitive,
            "sitrep_collectors": (
                [c.to_dict() for c in status.sitrep_collectors]
                if status.sitrep_collectors is not None
                else None
            ),
            "cognitive_meta": _meta(status),
        }
    return _summary(status)


def _issue_name(check_name: str) -> str:
    for prefix in _ISSUE_NAME_PREFIXES:
        check_name = check_name.replace(prefix, "")
    return check_name


def collect_issue_names(status: StatusDocument) -> list[str]:
    return [
        f"{_issue_name(c.check_name)} ({c.severity})"
        for c in [*status.daemon_checks, *(status.cognitive_checks or [])]
        if c.severity != SEVERITY_OK
    ]


def build_health_summary(status: StatusDocument, max_length: int) -> str:
    """One-line issue digest, or "" when everything is ok."""
    issues = collect_issue_names(status)
    if not issues:
        return ""
    summary = f"{status_severity(status).upper()} - {len(issues)} issue(s): {', '.join(issues)}"
    if len(summary) > max_length:
        summary = summary[:max(0, max_length - 3)] + "..."
    return summary


def render_detail(status: StatusDocument | None) -> str:
    if status is None or not status.cognitive_checks:
        return "⚕️ No cognitive check results available. Run `/health refresh` first."
    lines = ["⚕️ Vigil L2 Detail:"]
    lines.extend(_render_check(check) for check in status.cognitive_checks)
    return "\n".join(lines)


def _render_check(check: CheckResult) -> str:
    line = f"{severity_emoji(check.severity)} {check.check_name}: {check.detail}"
    if check.escalation_needed:
        line += f" (critical x{check.consecutive_critical_count}, escalation needed)"
    return line


def render_config(cfg: HealthConfig) -> str:
    return "\n".join([
        "⚕️ Vigil Config:",
        f"- Status: {cfg.status_path}",
        f"- Interval: {cfg.interval_minutes}min",
        f"- Model: {cfg.llm.primary.model_id}",
        f"- Checks: {', '.join(cfg.checks.enabled_names())}",
    ])
