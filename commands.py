import logging

from config import HealthConfig
from monitoring.health import refresh
from monitoring.report import build_health_summary, render_config, render_detail
from monitoring.status import read_status_file

log = logging.getLogger(__name__)


async def handle_command(text: str, cfg: HealthConfig, *, llm=None) -> str | None:
    """Process a slash command. Returns response text or None."""
    parts = text.strip().split(maxsplit=1)
    if not parts:
        return None
    cmd = parts[0]
    args = parts[1] if len(parts) > 1 else ""

    if cmd == "/help":
        return (
            "Vigil Commands\n"
            "\n"
            "/help - Show this list\n"
            "/health - Show the current health summary\n"
            "/health refresh - Run all cognitive checks now\n"
            "/health detail - Show every cognitive check result\n"
            "/health config - Show the active configuration"
        )

    if cmd == "/health":
        return await handle_health(args, cfg, llm=llm)

    return None


async def handle_health(args: str, cfg: HealthConfig, *, llm=None) -> str:
    sub = args.strip().lower()
    try:
        if sub == "refresh":
            return await refresh(cfg, llm=llm)
        if sub == "detail":
            return render_detail(read_status_file(cfg.status_path))
        if sub == "config":
            return render_config(cfg)

        status = read_status_file(cfg.status_path)
        if status is None:
            return "⚕️ Vigil status file not available."
        summary = build_health_summary(status, cfg.health_injection.max_length)
        return f"⚕️ Vigil Health: {summary}" if summary else "⚕️ Vigil Health: All systems OK ✅"
    except Exception as e:
        log.error("/health %s failed", sub or "summary", exc_info=True)
        return f"Health check failed: {e}"
