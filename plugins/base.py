"""Plugin base class and registry.

Provides:
  - ``PluginBase``: abstract base all plugins extend
  - ``ToolSpec`` / ``CommandSpec``: what a plugin exposes to the host
  - ``PluginRegistry``: tracks plugins plus the tools, slash commands and
    lifecycle hooks they registered
"""
from __future__ import annotations

import inspect
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

log = logging.getLogger(__name__)

HOOK_BEFORE_AGENT_START = "before_agent_start"


@dataclass
class ToolSpec:
    name: str
    description: str
    execute: Callable[[dict[str, Any]], Any]
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class CommandSpec:
    name: str
    description: str
    handler: Callable[[str], Any]


class PluginBase(ABC):
    """Abstract base class for host plugins.

    Subclass this and implement ``register()`` to expose tools, commands
    and hooks through the registry.
    """

    name: str = ""
    version: str = "0.1.0"
    description: str = ""

    @abstractmethod
    def register(self, registry: PluginRegistry) -> None:
        ...

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
        }

    def __repr__(self) -> str:
        return f"<Plugin {self.name} v{self.version}>"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PluginRegistry:
    """Thread-safe registry of plugins and the extension points they use."""

    def __init__(self):
        self._plugins: dict[str, PluginBase] = {}
        self._tools: dict[str, ToolSpec] = {}
        self._commands: dict[str, CommandSpec] = {}
        self._hooks: dict[str, list[Callable[[dict[str, Any]], Any]]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def register(self, plugin: PluginBase) -> None:
        """Register a plugin instance and let it wire its extension points."""
        if not plugin.name:
            raise ValueError("Plugin must have a name")
        with self._lock:
            if plugin.name in self._plugins:
                log.warning("Plugin '%s' already registered, replacing", plugin.name)
            self._plugins[plugin.name] = plugin
        plugin.register(self)
        log.info("Plugin registered: %s", plugin)

    def unregister(self, name: str) -> bool:
        with self._lock:
            removed = self._plugins.pop(name, None)
        if removed is not None:
            log.info("Plugin unregistered: %s", name)
        return removed is not None

    def get(self, name: str) -> PluginBase | None:
        with self._lock:
            return self._plugins.get(name)

    def list_plugins(self) -> list[dict[str, Any]]:
        with self._lock:
            plugins = sorted(self._plugins.values(), key=lambda p: p.name)
        return [p.get_info() for p in plugins]

    # ------------------------------------------------------------------
    # Extension points
    # ------------------------------------------------------------------

    def register_tool(self, tool: ToolSpec) -> None:
        with self._lock:
            self._tools[tool.name] = tool
        log.debug("Tool registered: %s", tool.name)

    def register_command(self, command: CommandSpec) -> None:
        with self._lock:
            self._commands[command.name] = command
        log.debug("Command registered: /%s", command.name)

    def on(self, hook: str, handler: Callable[[dict[str, Any]], Any]) -> None:
        with self._lock:
            self._hooks.setdefault(hook, []).append(handler)

    def tool_names(self) -> list[str]:
        with self._lock:
            return sorted(self._tools)

    def command_names(self) -> list[str]:
        with self._lock:
            return sorted(self._commands)

    async def call_tool(self, name: str, params: dict[str, Any] | None = None) -> Any:
        with self._lock:
            tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")
        return await _resolve(tool.execute(params or {}))

    async def run_command(self, name: str, args: str = "") -> Any:
        with self._lock:
            command = self._commands.get(name)
        if command is None:
            raise KeyError(f"Unknown command: /{name}")
        return await _resolve(command.handler(args))

    async def emit(self, hook: str, event: dict[str, Any] | None = None) -> list[Any]:
        """Run every handler for *hook*; failing handlers are logged and skipped."""
        with self._lock:
            handlers = list(self._hooks.get(hook, []))
        results: list[Any] = []
        for handler in handlers:
            try:
                result = await _resolve(handler(event or {}))
            except Exception:
                log.warning("Hook '%s' handler failed", hook, exc_info=True)
                continue
            if result is not None:
                results.append(result)
        return results

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._plugins

    def __len__(self) -> int:
        with self._lock:
            return len(self._plugins)

    def __repr__(self) -> str:
        with self._lock:
            count = len(self._plugins)
        return f"<PluginRegistry [{count} plugins]>"
