"""Health plugin: exposes the status document to the host agent runtime.

Registers:
  - ``health_status`` tool (JSON view of one section of the status file)
  - ``/health`` slash command (summary, refresh, detail, config)
  - ``before_agent_start`` hook that prepends a one-line health summary
"""
from __future__ import annotations

import json
import logging
from typing import Any

import config
from commands import handle_health
from config import HealthConfig
from monitoring.report import (
    SECTIONS,
    SEVERITY_FILTERS,
    build_health_summary,
    format_status_view,
)
from monitoring.status import read_status_file
from plugins.base import (
    HOOK_BEFORE_AGENT_START,
    CommandSpec,
    PluginBase,
    PluginRegistry,
    ToolSpec,
)

log = logging.getLogger(__name__)

TOOL_NAME = "health_status"
COMMAND_NAME = "health"

TOOL_PARAMETERS = {
    "type": "object",
    "properties": {
        "section": {
            "type": "string",
            "enum": list(SECTIONS),
            "description": "Which section of health data to return (default: summary)",
        },
        "severity_filter": {
            "type": "string",
            "enum": list(SEVERITY_FILTERS),
            "description": "Filter results by minimum severity (default: all)",
        },
    },
}


class HealthPlugin(PluginBase):
    name = config.PLUGIN_ID
    version = config.PLUGIN_VERSION
    description = "Cognitive health checks, status queries, and health context injection"

    def __init__(self, cfg: HealthConfig, *, llm: Any = None):
        self.cfg = cfg
        self.llm = llm

    def register(self, registry: PluginRegistry) -> None:
        if not self.cfg.enabled:
            log.info("Health plugin disabled via config")
            return

        registry.register_tool(ToolSpec(
            name=TOOL_NAME,
            description=(
                "Get current system health status "
                "(L1 heuristic + L2 cognitive checks)"
            ),
            parameters=TOOL_PARAMETERS,
            execute=self.execute_tool,
        ))
        registry.register_command(CommandSpec(
            name=COMMAND_NAME,
            description="Show system health summary",
            handler=self.handle_command,
        ))
        if self.cfg.health_injection.enabled:
            registry.on(HOOK_BEFORE_AGENT_START, self.before_agent_start)

        log.info(
            "Health plugin registered (%d checks enabled)",
            len(self.cfg.checks.enabled_names()),
        )

    def execute_tool(self, params: dict[str, Any]) -> str:
        section = params.get("section")
        severity_filter = params.get("severity_filter")
        view = format_status_view(
            read_status_file(self.cfg.status_path),
            section=section if isinstance(section, str) else "summary",
            severity_filter=severity_filter if isinstance(severity_filter, str) else None,
        )
        return json.dumps(view, indent=2, ensure_ascii=False)

    async def handle_command(self, args: str) -> str:
        return await handle_health(args, self.cfg, llm=self.llm)

    def before_agent_start(self, event: dict[str, Any]) -> dict[str, str] | None:
        status = read_status_file(self.cfg.status_path)
        if status is None:
            return None
        injection = self.cfg.health_injection
        summary = build_health_summary(status, injection.max_length)
        if not summary and injection.only_on_issues:
            return None
        return {"prepend_context": f"⚕️ Vigil Health: {summary or 'All systems OK'}"}


PLUGIN_CLASS = HealthPlugin
