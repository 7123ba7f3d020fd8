import json
import logging as _logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv(Path.home() / ".vigil" / ".env")

_log = _logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    """Parse an integer env var with safe fallback on invalid input."""
    raw = os.getenv(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw.strip())
        except ValueError:
            value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


# Identity
PLUGIN_ID = "vigil-health"
PLUGIN_VERSION = "0.1.0"

# Paths
HOME_DIR = Path(os.getenv("VIGIL_HOME", str(Path.home()))).expanduser()
CONFIG_PATH = os.getenv("VIGIL_CONFIG_PATH", "").strip()
LOG_DIR = HOME_DIR / ".vigil" / "logs"
LOG_LEVEL = os.getenv("VIGIL_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# LLM
LLM_CHECK_TIMEOUT_MS = _env_int("VIGIL_LLM_TIMEOUT_MS", 30000, minimum=1000)
LLM_PRIMARY_API_KEY = os.getenv("VIGIL_LLM_PRIMARY_API_KEY", "")
LLM_FALLBACK_API_KEY = os.getenv("VIGIL_LLM_FALLBACK_API_KEY", "")

# Checks
LLM_INPUT_MAX_CHARS = 4000
ESCALATION_THRESHOLD = _env_int("VIGIL_ESCALATION_THRESHOLD", 3, minimum=1)
HEALTH_INJECTION_ENABLED = _env_bool("VIGIL_HEALTH_INJECTION_ENABLED", True)

# Plugins
PLUGIN_ENABLED = _env_bool("VIGIL_PLUGIN_ENABLED", True)
PLUGIN_MODULES = tuple(
    name.strip()
    for name in os.getenv("VIGIL_PLUGIN_MODULES", "plugins.health_plugin").split(",")
    if name.strip()
)


# ---------------------------------------------------------------------------
# Structured plugin config
# ---------------------------------------------------------------------------

@dataclass
class LlmProviderConfig:
    provider: str
    model: str
    base_url: str
    timeout_sec: int = 30
    api_key: str | None = None
    max_cost_usd: float | None = None

    @property
    def model_id(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class LlmConfig:
    primary: LlmProviderConfig
    fallback: LlmProviderConfig


@dataclass
class GoalQualityConfig:
    enabled: bool
    input_path: str
    uses_llm: bool = True


@dataclass
class ThreadHealthConfig:
    enabled: bool
    input_path: str
    uses_llm: bool = True
    stale_days: int = 5


@dataclass
class BusinessHours:
    start: int = 8
    end: int = 22
    tz: str = "Europe/Berlin"
    # Fixed offset stand-in for tz; daylight saving is not applied.
    utc_offset_hours: int = 1


@dataclass
class PipelineCorrelationConfig:
    enabled: bool
    uses_llm: bool = False
    nats_stream: str = "memory-events"
    correlation_window_hours: int = 2
    business_hours: BusinessHours = field(default_factory=BusinessHours)


@dataclass
class MonitoredDir:
    path: str
    label: str


@dataclass
class AnomalyDetectionConfig:
    enabled: bool
    uses_llm: bool = False
    monitored_dirs: list[MonitoredDir] = field(default_factory=list)


@dataclass
class BootstrapIntegrityConfig:
    enabled: bool
    input_path: str
    uses_llm: bool = True


@dataclass
class RecommendationsConfig:
    enabled: bool
    uses_llm: bool = True
    max_recommendations: int = 5


@dataclass
class ChecksConfig:
    goal_quality: GoalQualityConfig
    thread_health: ThreadHealthConfig
    pipeline_correlation: PipelineCorrelationConfig
    anomaly_detection: AnomalyDetectionConfig
    bootstrap_integrity: BootstrapIntegrityConfig
    recommendations: RecommendationsConfig

    def enabled_names(self) -> list[str]:
        return [name for name, value in vars(self).items() if value.enabled]


@dataclass
class HealthInjectionConfig:
    enabled: bool = True
    only_on_issues: bool = True
    max_length: int = 200


@dataclass
class HealthConfig:
    enabled: bool
    status_path: str
    history_path: str
    interval_minutes: int
    run_timeout_sec: int
    llm: LlmConfig
    checks: ChecksConfig
    health_injection: HealthInjectionConfig


@dataclass
class ConfigLoadResult:
    config: HealthConfig
    source: str  # inline | file | defaults
    file_path: str | None = None


def default_config(home: Path | None = None) -> HealthConfig:
    """Build the default config with every path rooted at *home*."""
    base = Path(home or HOME_DIR)
    return HealthConfig(
        enabled=True,
        status_path=str(base / "clawd" / "memory" / "health-status.json"),
        history_path=str(base / "clawd" / "memory" / "health-history.json"),
        interval_minutes=120,
        run_timeout_sec=120,
        llm=LlmConfig(
            primary=LlmProviderConfig(
                provider="ollama",
                model="qwen3:14b",
                base_url="http://localhost:11434",
                timeout_sec=30,
                api_key=LLM_PRIMARY_API_KEY or None,
            ),
            fallback=LlmProviderConfig(
                provider="litellm",
                model="gemini/gemini-2.0-flash-lite",
                base_url="http://localhost:4000",
                timeout_sec=30,
                api_key=LLM_FALLBACK_API_KEY or None,
                max_cost_usd=0.05,
            ),
        ),
        checks=ChecksConfig(
            goal_quality=GoalQualityConfig(
                enabled=True,
                input_path=str(base / ".cortex" / "pending-goals.json"),
            ),
            thread_health=ThreadHealthConfig(
                enabled=True,
                input_path=str(base / "clawd" / "memory" / "reboot" / "threads.json"),
            ),
            pipeline_correlation=PipelineCorrelationConfig(enabled=True),
            anomaly_detection=AnomalyDetectionConfig(
                enabled=True,
                monitored_dirs=[
                    MonitoredDir(path=str(base / "clawd" / "memory"), label="memory"),
                    MonitoredDir(path=str(base / ".membrane"), label="membrane"),
                    MonitoredDir(path=str(base / ".lancedb"), label="lancedb"),
                ],
            ),
            bootstrap_integrity=BootstrapIntegrityConfig(
                enabled=True,
                input_path=str(base / "clawd" / "BOOTSTRAP.md"),
            ),
            recommendations=RecommendationsConfig(enabled=True),
        ),
        health_injection=HealthInjectionConfig(enabled=HEALTH_INJECTION_ENABLED),
    )


# ---------------------------------------------------------------------------
# Raw dict -> typed config
# ---------------------------------------------------------------------------

def _bool(value: Any, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _int(value: Any, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if value != value or value in (float("inf"), float("-inf")):
        return fallback
    return int(round(value))


def _str(value: Any, fallback: str) -> str:
    return value if isinstance(value, str) else fallback


def _rec(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _resolve_provider(raw: dict[str, Any], default: LlmProviderConfig) -> LlmProviderConfig:
    max_cost = raw.get("maxCostUsd")
    return LlmProviderConfig(
        provider=_str(raw.get("provider"), default.provider),
        model=_str(raw.get("model"), default.model),
        base_url=_str(raw.get("baseUrl"), default.base_url),
        timeout_sec=_int(raw.get("timeoutSec"), default.timeout_sec),
        api_key=raw["apiKey"] if isinstance(raw.get("apiKey"), str) else default.api_key,
        max_cost_usd=(
            float(max_cost)
            if isinstance(max_cost, (int, float)) and not isinstance(max_cost, bool)
            else default.max_cost_usd
        ),
    )


def _resolve_monitored_dirs(raw: Any, default: list[MonitoredDir]) -> list[MonitoredDir]:
    if not isinstance(raw, list):
        return [MonitoredDir(d.path, d.label) for d in default]
    return [
        MonitoredDir(path=item["path"], label=item["label"])
        for item in raw
        if isinstance(item, dict)
        and isinstance(item.get("path"), str)
        and isinstance(item.get("label"), str)
    ]


def _resolve_checks(raw: dict[str, Any], d: ChecksConfig) -> ChecksConfig:
    gq = _rec(raw.get("goal_quality"))
    th = _rec(raw.get("thread_health"))
    pc = _rec(raw.get("pipeline_correlation"))
    bh = _rec(pc.get("businessHours"))
    ad = _rec(raw.get("anomaly_detection"))
    bi = _rec(raw.get("bootstrap_integrity"))
    rm = _rec(raw.get("recommendations"))
    dbh = d.pipeline_correlation.business_hours

    return ChecksConfig(
        goal_quality=GoalQualityConfig(
            enabled=_bool(gq.get("enabled"), d.goal_quality.enabled),
            input_path=_str(gq.get("inputPath"), d.goal_quality.input_path),
            uses_llm=_bool(gq.get("usesLlm"), d.goal_quality.uses_llm),
        ),
        thread_health=ThreadHealthConfig(
            enabled=_bool(th.get("enabled"), d.thread_health.enabled),
            input_path=_str(th.get("inputPath"), d.thread_health.input_path),
            uses_llm=_bool(th.get("usesLlm"), d.thread_health.uses_llm),
            stale_days=_int(th.get("staleDays"), d.thread_health.stale_days),
        ),
        pipeline_correlation=PipelineCorrelationConfig(
            enabled=_bool(pc.get("enabled"), d.pipeline_correlation.enabled),
            uses_llm=_bool(pc.get("usesLlm"), d.pipeline_correlation.uses_llm),
            nats_stream=_str(pc.get("natsStream"), d.pipeline_correlation.nats_stream),
            correlation_window_hours=_int(
                pc.get("correlationWindowHours"),
                d.pipeline_correlation.correlation_window_hours,
            ),
            business_hours=BusinessHours(
                start=_int(bh.get("start"), dbh.start),
                end=_int(bh.get("end"), dbh.end),
                tz=_str(bh.get("tz"), dbh.tz),
                utc_offset_hours=_int(bh.get("utcOffsetHours"), dbh.utc_offset_hours),
            ),
        ),
        anomaly_detection=AnomalyDetectionConfig(
            enabled=_bool(ad.get("enabled"), d.anomaly_detection.enabled),
            uses_llm=_bool(ad.get("usesLlm"), d.anomaly_detection.uses_llm),
            monitored_dirs=_resolve_monitored_dirs(
                ad.get("monitoredDirs"), d.anomaly_detection.monitored_dirs
            ),
        ),
        bootstrap_integrity=BootstrapIntegrityConfig(
            enabled=_bool(bi.get("enabled"), d.bootstrap_integrity.enabled),
            input_path=_str(bi.get("inputPath"), d.bootstrap_integrity.input_path),
            uses_llm=_bool(bi.get("usesLlm"), d.bootstrap_integrity.uses_llm),
        ),
        recommendations=RecommendationsConfig(
            enabled=_bool(rm.get("enabled"), d.recommendations.enabled),
            uses_llm=_bool(rm.get("usesLlm"), d.recommendations.uses_llm),
            max_recommendations=_int(
                rm.get("maxRecommendations"), d.recommendations.max_recommendations
            ),
        ),
    )


def resolve_config(raw: dict[str, Any] | None = None, home: Path | None = None) -> HealthConfig:
    """Build a typed config from a raw JSON dict, falling back field by field."""
    d = default_config(home)
    raw = _rec(raw)
    llm = _rec(raw.get("llm"))
    hi = _rec(raw.get("healthInjection"))
    return HealthConfig(
        enabled=_bool(raw.get("enabled"), d.enabled),
        status_path=_str(raw.get("statusPath"), d.status_path),
        history_path=_str(raw.get("historyPath"), d.history_path),
        interval_minutes=_int(raw.get("intervalMinutes"), d.interval_minutes),
        run_timeout_sec=_int(raw.get("runTimeoutSec"), d.run_timeout_sec),
        llm=LlmConfig(
            primary=_resolve_provider(_rec(llm.get("primary")), d.llm.primary),
            fallback=_resolve_provider(_rec(llm.get("fallback")), d.llm.fallback),
        ),
        checks=_resolve_checks(_rec(raw.get("checks")), d.checks),
        health_injection=HealthInjectionConfig(
            enabled=_bool(hi.get("enabled"), d.health_injection.enabled),
            only_on_issues=_bool(hi.get("onlyOnIssues"), d.health_injection.only_on_issues),
            max_length=_int(hi.get("maxLength"), d.health_injection.max_length),
        ),
    )


_CHECK_KEYS = {
    "goal_quality",
    "thread_health",
    "pipeline_correlation",
    "anomaly_detection",
    "bootstrap_integrity",
    "recommendations",
}


def config_to_raw(cfg: HealthConfig) -> dict[str, Any]:
    """Serialise a config back into the camelCase JSON shape read by resolve_config.

    API keys are never written to disk.
    """

    def _camel(name: str) -> str:
        head, *rest = name.split("_")
        return head + "".join(part.capitalize() for part in rest)

    def _convert(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                # check names stay snake_case
                (k if k in _CHECK_KEYS else _camel(k)): _convert(v)
                for k, v in value.items()
                if v is not None
            }
        if isinstance(value, list):
            return [_convert(v) for v in value]
        return value

    raw = _convert(asdict(cfg))
    for provider in raw.get("llm", {}).values():
        provider.pop("apiKey", None)
    return raw


# ---------------------------------------------------------------------------
# Loading from disk
# ---------------------------------------------------------------------------

def default_config_path(home: Path | None = None) -> Path:
    if CONFIG_PATH:
        return Path(CONFIG_PATH).expanduser()
    return Path(home or HOME_DIR) / ".vigil" / "config.json"


def _is_inline_config(raw: dict[str, Any]) -> bool:
    return any(key not in {"enabled", "configPath"} for key in raw)


def _read_config_file(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _log.warning("Failed to read config file %s: %s", path, exc)
        return None
    if not isinstance(parsed, dict):
        _log.warning("Config file is not an object: %s", path)
        return None
    return parsed


def _write_default_config(path: Path, home: Path | None) -> dict[str, Any] | None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(config_to_raw(default_config(home)), indent=2) + "\n",
            encoding="utf-8",
        )
    except OSError as exc:
        _log.warning("Failed to write default config to %s: %s", path, exc)
        return None
    _log.info("Created default config at %s", path)
    return _read_config_file(path)


def load_config(
    inline: dict[str, Any] | None = None,
    home: Path | None = None,
) -> ConfigLoadResult:
    """Resolve the plugin config.

    Inline config with real keys wins. Otherwise the JSON file at
    ``configPath`` (or the default location) is read, and created from
    defaults when missing. Inline ``enabled`` always overrides the file.
    """
    raw = _rec(inline)

    if _is_inline_config(raw):
        _log.info("Using inline health config")
        return ConfigLoadResult(resolve_config(raw, home), "inline")

    path = (
        Path(raw["configPath"]).expanduser()
        if isinstance(raw.get("configPath"), str)
        else default_config_path(home)
    )

    file_config = _read_config_file(path)
    if file_config is None and not path.exists():
        file_config = _write_default_config(path, home)

    if file_config is not None:
        if isinstance(raw.get("enabled"), bool):
            file_config = {**file_config, "enabled": raw["enabled"]}
        _log.info("Loaded health config from %s", path)
        return ConfigLoadResult(resolve_config(file_config, home), "file", str(path))

    _log.warning("Falling back to default health config")
    return ConfigLoadResult(resolve_config(None, home), "defaults")
