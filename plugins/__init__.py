"""Host plugin surface.

``PluginRegistry`` collects the tools, slash commands and lifecycle hooks a
plugin exposes; ``HealthPlugin`` wires the health checks into it.
"""
from plugins.base import CommandSpec, PluginBase, PluginRegistry, ToolSpec

__all__ = [
    "CommandSpec",
    "PluginBase",
    "PluginRegistry",
    "ToolSpec",
]
