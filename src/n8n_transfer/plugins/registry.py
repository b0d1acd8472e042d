"""Plugin registry.

This module provides the PluginRegistry class that handles:
- Validating and registering plugins
- Resolving plugins by name and type
- Loading the bundled plugins and third-party plugins from entry points
"""

from dataclasses import dataclass, field
from importlib.metadata import entry_points
from typing import Any

from n8n_transfer.client.exceptions import PluginError
from n8n_transfer.plugins.base import BasePlugin, PluginType
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "n8n_transfer.plugins"


@dataclass
class PluginLoadResult:
    """Result of loading plugins.

    Attributes:
        loaded: Names of successfully registered plugins
        failed: (name, error) tuples for plugins that could not be loaded
    """

    loaded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.loaded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


class PluginRegistry:
    """Registry of deduplicators, validators and reporters keyed by name.

    Names are unique and matched case-insensitively. ``get`` returns None for
    unknown names; deciding whether an absence is fatal is the caller's job.
    """

    def __init__(self) -> None:
        self._plugins: dict[str, BasePlugin] = {}

    @classmethod
    def with_builtins(cls, options: dict[str, dict[str, Any]] | None = None) -> "PluginRegistry":
        """Create a registry pre-loaded with the bundled plugins.

        Args:
            options: Optional per-plugin options keyed by plugin name
        """
        from n8n_transfer.plugins.builtin import create_builtin_plugins

        registry = cls()
        for plugin in create_builtin_plugins(options):
            registry.register(plugin)
        return registry

    def register(self, plugin: BasePlugin) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance

        Raises:
            PluginError: If the plugin is not a BasePlugin, lacks a method its
                type requires, or its name is already taken
        """
        if not isinstance(plugin, BasePlugin):
            raise PluginError(
                f"Plugin must be an instance of BasePlugin, got {type(plugin).__name__}"
            )

        plugin_type = getattr(plugin, "plugin_type", None)
        if not isinstance(plugin_type, PluginType):
            raise PluginError(f"Plugin '{plugin.name}' has an unknown type: {plugin_type!r}")

        missing = [m for m in plugin.required_methods if not callable(getattr(plugin, m, None))]
        if missing:
            raise PluginError(
                f"Plugin '{plugin.name}' of type '{plugin_type.value}' must implement: "
                f"{', '.join(missing)}"
            )

        key = plugin.name.lower()
        if key in self._plugins:
            raise PluginError(
                f"Plugin '{plugin.name}' is already registered. "
                "Use a unique name or unregister the existing plugin first."
            )

        self._plugins[key] = plugin
        logger.debug("plugin_registered", name=plugin.name, type=plugin_type.value)

    def get(self, name: str | None, plugin_type: PluginType | str | None = None) -> Any:
        """Resolve a plugin by name.

        Args:
            name: Plugin name (case-insensitive)
            plugin_type: Optional type the plugin must have

        Returns:
            The plugin, or None if no plugin of that name (and type) exists
        """
        if not name or not isinstance(name, str):
            return None
        plugin = self._plugins.get(name.lower())
        if plugin is None:
            return None
        if plugin_type is not None:
            try:
                wanted = PluginType(plugin_type)
            except ValueError:
                return None
            if plugin.plugin_type != wanted:
                return None
        return plugin

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def list_by_type(self, plugin_type: PluginType | str) -> list[BasePlugin]:
        """Return the plugins of one type, in registration order."""
        wanted = PluginType(plugin_type)
        return [p for p in self._plugins.values() if p.plugin_type == wanted]

    def get_all(self) -> list[BasePlugin]:
        return list(self._plugins.values())

    def unregister(self, name: str) -> bool:
        """Remove a plugin.

        Returns:
            True if a plugin was removed
        """
        removed = self._plugins.pop(name.lower(), None) if name else None
        if removed is not None:
            logger.debug("plugin_unregistered", name=removed.name)
        return removed is not None

    def clear(self) -> None:
        self._plugins.clear()

    def get_stats(self) -> dict[str, Any]:
        """Count plugins by state and type."""
        plugins = self.get_all()
        return {
            "total": len(plugins),
            "enabled": sum(1 for p in plugins if p.is_enabled()),
            "disabled": sum(1 for p in plugins if not p.is_enabled()),
            "by_type": {t.value: len(self.list_by_type(t)) for t in PluginType},
        }

    def discover(self, group: str = ENTRY_POINT_GROUP) -> PluginLoadResult:
        """Register plugins advertised by installed packages.

        Each entry point may reference a BasePlugin subclass (instantiated
        without arguments) or a ready-made instance.

        Args:
            group: Entry-point group to scan

        Returns:
            PluginLoadResult with registered and failed plugins
        """
        result = PluginLoadResult()

        for entry_point in entry_points(group=group):
            try:
                obj = entry_point.load()
                plugin = obj() if isinstance(obj, type) and issubclass(obj, BasePlugin) else obj
                self.register(plugin)
                result.loaded.append(plugin.name)
                logger.info("plugin_discovered", name=plugin.name, entry_point=entry_point.name)
            except Exception as e:
                result.failed.append((entry_point.name, str(e)))
                logger.error("plugin_discovery_failed", entry_point=entry_point.name, error=str(e))

        return result

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._plugins
