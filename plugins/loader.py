"""Plugin loading.

Imports each module named in ``config.PLUGIN_MODULES`` and registers the
plugin its ``PLUGIN_CLASS`` attribute points at.

Usage::

    from plugins.loader import load_plugins
    registry = PluginRegistry()
    loaded = load_plugins(cfg, registry)  # returns list of loaded plugin names

Loading rules:
  1. Module must have a top-level ``PLUGIN_CLASS`` attribute
  2. ``PLUGIN_CLASS`` must be a subclass of ``PluginBase``
  3. It is instantiated as ``PLUGIN_CLASS(cfg, llm=llm)``
  4. A plugin that fails to import or register is logged and skipped
"""
from __future__ import annotations

import importlib
import logging
from typing import Any, Iterable

import config
from config import HealthConfig
from plugins.base import PluginBase, PluginRegistry

log = logging.getLogger(__name__)


def load_plugins(
    cfg: HealthConfig,
    registry: PluginRegistry,
    *,
    modules: Iterable[str] | None = None,
    llm: Any = None,
) -> list[str]:
    """Load and register plugins into *registry*.

    Returns the names of successfully loaded plugins.
    """
    if not config.PLUGIN_ENABLED:
        log.debug("Plugin system disabled (VIGIL_PLUGIN_ENABLED=False)")
        return []

    loaded_names: list[str] = []
    errors: list[str] = []

    for module_name in modules if modules is not None else config.PLUGIN_MODULES:
        try:
            plugin = _load_plugin_module(module_name, cfg, llm)
        except Exception as exc:
            errors.append(f"{module_name}: {exc}")
            log.error("Failed to load plugin from %s", module_name, exc_info=True)
            continue
        if plugin is None:
            continue

        try:
            registry.register(plugin)
        except Exception as exc:
            errors.append(f"{module_name}: {exc}")
            log.warning("Plugin '%s' register() failed, unregistering", plugin.name,
                        exc_info=True)
            registry.unregister(plugin.name)
            continue

        loaded_names.append(plugin.name)

    if loaded_names:
        log.info("Loaded %d plugin(s): %s", len(loaded_names), ", ".join(loaded_names))
    if errors:
        log.warning("Failed to load %d plugin(s): %s", len(errors), "; ".join(errors))

    return loaded_names


def _load_plugin_module(module_name: str, cfg: HealthConfig, llm: Any) -> PluginBase | None:
    """Import *module_name* and instantiate its PLUGIN_CLASS, or return None."""
    module = importlib.import_module(module_name)

    plugin_class = getattr(module, "PLUGIN_CLASS", None)
    if plugin_class is None:
        log.debug("Skipping %s: no PLUGIN_CLASS attribute", module_name)
        return None

    if not isinstance(plugin_class, type) or not issubclass(plugin_class, PluginBase):
        log.warning("Skipping %s: PLUGIN_CLASS is not a PluginBase subclass", module_name)
        return None

    return plugin_class(cfg, llm=llm)
