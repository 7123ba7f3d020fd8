"""Shared types, constants, and helpers for cognitive checks."""
from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from utils import utc_now_iso

log = logging.getLogger(__name__)

SEVERITY_OK = "ok"
SEVERITY_WARN = "warn"
SEVERITY_CRITICAL = "critical"

_SEVERITY_RANK = {SEVERITY_OK: 0, SEVERITY_WARN: 1, SEVERITY_CRITICAL: 2}
_SEVERITY_EMOJI = {SEVERITY_OK: "✅", SEVERITY_WARN: "⚠️", SEVERITY_CRITICAL: "🔴"}

RECOMMENDATION_PRIORITIES = ("low", "medium", "high")
CHECK_PREFIX = "cognitive:"


# ---------------------------------------------------------------------------
# Severity lattice
# ---------------------------------------------------------------------------

def parse_severity(value: Any) -> str:
    """Map any value to a severity; anything unrecognised is ``ok``."""
    if isinstance(value, str) and value in _SEVERITY_RANK:
        return value
    return SEVERITY_OK


def severity_rank(value: Any) -> int:
    return _SEVERITY_RANK[parse_severity(value)]


def worst_severity(*severities: Any) -> str:
    """Return the most severe of *severities* (ok < warn < critical)."""
    worst = SEVERITY_OK
    for severity in severities:
        candidate = parse_severity(severity)
        if _SEVERITY_RANK[candidate] > _SEVERITY_RANK[worst]:
            worst = candidate
    return worst


def severity_emoji(value: Any) -> str:
    return _SEVERITY_EMOJI[parse_severity(value)]


# ---------------------------------------------------------------------------
# Untrusted JSON
# ---------------------------------------------------------------------------

def is_record(value: Any) -> bool:
    return isinstance(value, dict)


def parse_json(raw: Any) -> Any | None:
    """Parse a JSON string; ``None`` on any failure."""
    if not isinstance(raw, (str, bytes, bytearray)):
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return None


def extract_json_object(text: Any) -> dict | None:
    """Extract the first JSON object from LLM response text.

    Handles common LLM quirks: markdown code blocks, leading text, etc.
    """
    if not isinstance(text, str) or not text:
        return None

    # Strip markdown code fences
    cleaned = re.sub(r"```(?:json)?\s*", "", text)
    cleaned = re.sub(r"```\s*$", "", cleaned.strip())

    data = parse_json(cleaned)
    if isinstance(data, dict):
        return data

    brace_depth = 0
    start = -1
    for i, ch in enumerate(cleaned):
        if ch == "{":
            if brace_depth == 0:
                start = i
            brace_depth += 1
        elif ch == "}" and brace_depth > 0:
            brace_depth -= 1
            if brace_depth == 0 and start >= 0:
                data = parse_json(cleaned[start:i + 1])
                if isinstance(data, dict):
                    return data
                start = -1

    return None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _opt_num(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------------
# Check result shapes
# ---------------------------------------------------------------------------

@dataclass
class Finding:
    issue: str
    detail: str
    recommendation: str | None = None
    item_id: str | None = None
    thread_id: str | None = None
    days_since_update: float | None = None
    line: str | None = None

    @property
    def subject_id(self) -> str | None:
        return self.item_id or self.thread_id

    @classmethod
    def from_raw(cls, raw: Any) -> Finding | None:
        if not isinstance(raw, dict):
            return None
        return cls(
            issue=_opt_str(raw.get("issue")) or "unknown",
            detail=_opt_str(raw.get("detail")) or "",
            recommendation=_opt_str(raw.get("recommendation")),
            item_id=_opt_str(raw.get("item_id")),
            thread_id=_opt_str(raw.get("thread_id")),
            days_since_update=_opt_num(raw.get("days_since_update")),
            line=_opt_str(raw.get("line")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class Correlation:
    input: str
    input_value: float
    output: str
    output_value: float
    diagnosis: str

    @classmethod
    def from_raw(cls, raw: Any) -> Correlation | None:
        if not isinstance(raw, dict):
            return None
        diagnosis = _opt_str(raw.get("diagnosis"))
        if not diagnosis:
            return None
        return cls(
            input=_opt_str(raw.get("input")) or "",
            input_value=_opt_num(raw.get("input_value")) or 0,
            output=_opt_str(raw.get("output")) or "",
            output_value=_opt_num(raw.get("output_value")) or 0,
            diagnosis=diagnosis,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Anomaly:
    metric: str
    current: float
    baseline: float
    deviation: str
    severity: str

    @classmethod
    def from_raw(cls, raw: Any) -> Anomaly | None:
        if not isinstance(raw, dict):
            return None
        metric = _opt_str(raw.get("metric"))
        if not metric:
            return None
        return cls(
            metric=metric,
            current=_opt_num(raw.get("current")) or 0,
            baseline=_opt_num(raw.get("baseline")) or 0,
            deviation=_opt_str(raw.get("deviation")) or "",
            severity=parse_severity(raw.get("severity")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    type: str
    target: str
    reason: str
    priority: str = "low"

    @classmethod
    def from_raw(cls, raw: Any) -> Recommendation | None:
        if not isinstance(raw, dict):
            return None
        priority = raw.get("priority")
        return cls(
            type=_opt_str(raw.get("type")) or "maintenance",
            target=_opt_str(raw.get("target")) or "unknown",
            reason=_opt_str(raw.get("reason")) or "",
            priority=priority if priority in RECOMMENDATION_PRIORITIES else "low",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_list(raw: Any, parser) -> list | None:
    if not isinstance(raw, list):
        return None
    return [item for item in (parser(entry) for entry in raw) if item is not None]


@dataclass
class CheckResult:
    check_name: str
    severity: str
    detail: str
    timestamp: str = field(default_factory=utc_now_iso)
    duration_ms: int = 0
    findings: list[Finding] | None = None
    correlations: list[Correlation] | None = None
    anomalies: list[Anomaly] | None = None
    baselines: dict[str, float] | None = None
    recommendations: list[Recommendation] | None = None
    escalation_needed: bool | None = None
    consecutive_critical_count: int | None = None
    first_critical_at: str | None = None
    model_used: str | None = None
    tokens_used: int | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> CheckResult | None:
        if not isinstance(raw, dict):
            return None
        baselines = raw.get("baselines")
        count = _opt_num(raw.get("consecutive_critical_count"))
        tokens = _opt_num(raw.get("tokens_used"))
        duration = _opt_num(raw.get("duration_ms"))
        return cls(
            check_name=_opt_str(raw.get("check_name")) or "",
            severity=parse_severity(raw.get("severity")),
            detail=_opt_str(raw.get("detail")) or "",
            timestamp=_opt_str(raw.get("timestamp")) or utc_now_iso(),
            duration_ms=int(duration) if duration is not None and duration >= 0 else 0,
            findings=_parse_list(raw.get("findings"), Finding.from_raw),
            correlations=_parse_list(raw.get("correlations"), Correlation.from_raw),
            anomalies=_parse_list(raw.get("anomalies"), Anomaly.from_raw),
            baselines=(
                {k: v for k, v in baselines.items() if _opt_num(v) is not None}
                if isinstance(baselines, dict)
                else None
            ),
            recommendations=_parse_list(raw.get("recommendations"), Recommendation.from_raw),
            escalation_needed=(
                raw["escalation_needed"]
                if isinstance(raw.get("escalation_needed"), bool)
                else None
            ),
            consecutive_critical_count=int(count) if count is not None else None,
            first_critical_at=_opt_str(raw.get("first_critical_at")),
            model_used=_opt_str(raw.get("model_used")),
            tokens_used=int(tokens) if tokens is not None else None,
        )

    @property
    def short_name(self) -> str:
        return self.check_name.removeprefix(CHECK_PREFIX)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "check_name": self.check_name,
            "severity": self.severity,
            "detail": self.detail,
        }
        for name in ("findings", "correlations", "anomalies", "recommendations"):
            items = getattr(self, name)
            if items is not None:
                data[name] = [item.to_dict() for item in items]
        data.update(_compact({
            "baselines": self.baselines,
            "escalation_needed": self.escalation_needed,
            "consecutive_critical_count": self.consecutive_critical_count,
            "first_critical_at": self.first_critical_at,
            "timestamp": self.timestamp,
            "model_used": self.model_used,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
        }))
        return data


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading, never negative."""
    return max(0, int((time.monotonic() - start) * 1000))


# ---------------------------------------------------------------------------
# Status document shapes
# ---------------------------------------------------------------------------

@dataclass
class DaemonCheck:
    check_name: str
    severity: str
    detail: str
    auto_healed: bool = False
    timestamp: str = ""
    heal_action: str | None = None
    heal_key: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> DaemonCheck | None:
        if not isinstance(raw, dict):
            return None
        return cls(
            check_name=_opt_str(raw.get("check_name")) or "",
            severity=parse_severity(raw.get("severity")),
            detail=_opt_str(raw.get("detail")) or "",
            auto_healed=raw["auto_healed"] if isinstance(raw.get("auto_healed"), bool) else False,
            timestamp=_opt_str(raw.get("timestamp")) or "",
            heal_action=_opt_str(raw.get("heal_action")),
            heal_key=_opt_str(raw.get("heal_key")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SitrepCollectorResult:
    collector_name: str
    status: str
    items: list[dict[str, Any]] = field(default_factory=list)
    summary: str = ""
    duration_ms: int = 0
    timestamp: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> SitrepCollectorResult | None:
        if not isinstance(raw, dict):
            return None
        items = raw.get("items")
        duration = _opt_num(raw.get("duration_ms"))
        return cls(
            collector_name=_opt_str(raw.get("collector_name")) or "",
            status=parse_severity(raw.get("status")),
            items=[i for i in items if isinstance(i, dict)] if isinstance(items, list) else [],
            summary=_opt_str(raw.get("summary")) or "",
            duration_ms=int(duration) if duration is not None else 0,
            timestamp=_opt_str(raw.get("timestamp")) or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CognitiveMeta:
    last_run: str = ""
    total_duration_ms: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0
    model: str = ""
    checks_completed: int = 0
    checks_failed: int = 0
    plugin_version: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> CognitiveMeta | None:
        if not isinstance(raw, dict):
            return None
        defaults = cls()
        values: dict[str, Any] = {}
        for name, default in asdict(defaults).items():
            value = raw.get(name)
            if isinstance(default, str):
                values[name] = value if isinstance(value, str) else default
            else:
                num = _opt_num(value)
                values[name] = type(default)(num) if num is not None else default
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StatusDocument:
    last_check: str = ""
    overall_severity: str = SEVERITY_OK
    daemon_checks: list[DaemonCheck] = field(default_factory=list)
    auto_heal_history: list[Any] | None = None
    cognitive_checks: list[CheckResult] | None = None
    cognitive_meta: CognitiveMeta | None = None
    sitrep_collectors: list[SitrepCollectorResult] | None = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> StatusDocument:
        history = raw.get("auto_heal_history")
        return cls(
            last_check=_opt_str(raw.get("last_check")) or "",
            overall_severity=parse_severity(raw.get("overall_severity")),
            daemon_checks=_parse_list(raw.get("daemon_checks"), DaemonCheck.from_raw) or [],
            auto_heal_history=history if isinstance(history, list) else None,
            cognitive_checks=_parse_list(raw.get("cognitive_checks"), CheckResult.from_raw),
            cognitive_meta=CognitiveMeta.from_raw(raw.get("cognitive_meta")),
            sitrep_collectors=_parse_list(
                raw.get("sitrep_collectors"), SitrepCollectorResult.from_raw
            ),
        )

    def previous_result(self, check_name: str) -> CheckResult | None:
        for check in self.cognitive_checks or []:
            if check.check_name == check_name:
                return check
        return None


@dataclass
class HistorySnapshot:
    timestamp: str
    metrics: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> HistorySnapshot | None:
        if not isinstance(raw, dict):
            return None
        metrics = raw.get("metrics")
        return cls(
            timestamp=_opt_str(raw.get("timestamp")) or "",
            metrics=(
                {k: v for k, v in metrics.items() if _opt_num(v) is not None}
                if isinstance(metrics, dict)
                else {}
            ),
        )


@dataclass
class HistoryDocument:
    snapshots: list[HistorySnapshot] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> HistoryDocument:
        return cls(snapshots=_parse_list(raw.get("snapshots"), HistorySnapshot.from_raw) or [])
