#!/usr/bin/env python3
"""Vigil command-line entry point.

  refresh   run every enabled cognitive check and merge results into the status file
  status    print a JSON view of the status file
  summary   print the one-line health summary
  detail    print every cognitive check result
  config    print the active configuration
  context   print the health context the plugin prepends before an agent run
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import config
from monitoring.health import refresh
from monitoring.report import (
    SECTIONS,
    SEVERITY_FILTERS,
    build_health_summary,
    format_status_view,
    render_config,
    render_detail,
)
from monitoring.status import read_status_file
from plugins.base import HOOK_BEFORE_AGENT_START, PluginRegistry
from plugins.health_plugin import TOOL_NAME
from plugins.loader import load_plugins

log = logging.getLogger("vigil")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
def setup_logging(level: str = config.LOG_LEVEL) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        config.LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.LOG_DIR / "vigil.log"))
    except OSError:
        pass  # console logging only
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
async def watch(cfg: config.HealthConfig, iterations: int | None = None) -> None:
    """Refresh every ``interval_minutes`` until interrupted."""
    interval = max(1, cfg.interval_minutes) * 60
    runs = 0
    while iterations is None or runs < iterations:
        try:
            message = await asyncio.wait_for(refresh(cfg), timeout=cfg.run_timeout_sec)
            log.info(message)
        except asyncio.TimeoutError:
            log.error("Refresh exceeded %ds; skipping this cycle", cfg.run_timeout_sec)
        except Exception:
            log.error("Refresh failed", exc_info=True)
        runs += 1
        if iterations is None or runs < iterations:
            await asyncio.sleep(interval)


def _print_status(
    registry: PluginRegistry,
    cfg: config.HealthConfig,
    section: str,
    severity_filter: str,
) -> int:
    params = {"section": section, "severity_filter": severity_filter}
    if TOOL_NAME in registry.tool_names():
        payload = asyncio.run(registry.call_tool(TOOL_NAME, params))
    else:
        # plugin disabled: same view, read directly
        view = format_status_view(read_status_file(cfg.status_path), section, severity_filter)
        payload = json.dumps(view, indent=2, ensure_ascii=False)
    print(payload)
    return 1 if "error" in json.loads(payload) else 0


def _print_context(registry: PluginRegistry) -> int:
    results = asyncio.run(registry.emit(HOOK_BEFORE_AGENT_START, {}))
    for result in results:
        print(result["prepend_context"])
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run Vigil cognitive health checks and query the status file.",
    )
    parser.add_argument(
        "--config",
        default="",
        help="Path to a JSON config file (defaults to ~/.vigil/config.json).",
    )
    parser.add_argument(
        "--home",
        default="",
        help="Base directory for default paths (defaults to VIGIL_HOME or the user home).",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL)

    sub = parser.add_subparsers(dest="command")
    refresh_parser = sub.add_parser("refresh", help="Run all enabled checks now.")
    refresh_parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running, refreshing every intervalMinutes.",
    )
    status_parser = sub.add_parser("status", help="Print a JSON view of the status file.")
    status_parser.add_argument("--section", choices=SECTIONS, default="summary")
    status_parser.add_argument("--severity-filter", choices=SEVERITY_FILTERS, default="all")
    sub.add_parser("summary", help="Print the one-line health summary.")
    sub.add_parser("detail", help="Print every cognitive check result.")
    sub.add_parser("config", help="Print the active configuration.")
    sub.add_parser("context", help="Print the health context injected before agent runs.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level.upper())

    inline = {"configPath": args.config} if args.config else None
    home = Path(args.home).expanduser() if args.home else None
    loaded = config.load_config(inline, home=home)
    cfg = loaded.config
    log.debug("Config source=%s path=%s", loaded.source, loaded.file_path)

    command = args.command or "summary"

    if command == "refresh":
        if not cfg.enabled:
            print("Vigil is disabled via config.")
            return 0
        if args.watch:
            try:
                asyncio.run(watch(cfg))
            except KeyboardInterrupt:
                log.info("Watch loop stopped")
            return 0
        message = asyncio.run(refresh(cfg))
        print(message)
        return 1 if "refresh failed" in message else 0

    if command == "config":
        print(render_config(cfg))
        return 0

    if command in ("status", "context"):
        registry = PluginRegistry()
        load_plugins(cfg, registry)
        if command == "status":
            return _print_status(registry, cfg, args.section, args.severity_filter)
        return _print_context(registry)

    status = read_status_file(cfg.status_path)

    if command == "detail":
        print(render_detail(status))
        return 0

    if status is None:
        print("⚕️ Vigil status file not available.")
        return 1
    summary = build_health_summary(status, cfg.health_injection.max_length)
    print(f"⚕️ Vigil Health: {summary or 'All systems OK ✅'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
