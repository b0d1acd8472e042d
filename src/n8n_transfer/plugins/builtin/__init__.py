"""Bundled transfer plugins.

This module exports the bundled plugins and the BUILTIN_PLUGINS registry.
"""

from n8n_transfer.plugins.base import BasePlugin
from n8n_transfer.plugins.builtin.integrity_validator import IntegrityValidator
from n8n_transfer.plugins.builtin.json_reporter import JsonReporter
from n8n_transfer.plugins.builtin.markdown_reporter import MarkdownReporter
from n8n_transfer.plugins.builtin.standard_deduplicator import StandardDeduplicator

# Registry of bundled plugins by name
BUILTIN_PLUGINS: dict[str, type[BasePlugin]] = {
    "standard-deduplicator": StandardDeduplicator,
    "integrity-validator": IntegrityValidator,
    "json-reporter": JsonReporter,
    "markdown-reporter": MarkdownReporter,
}


def create_builtin_plugins(options: dict[str, dict] | None = None) -> list[BasePlugin]:
    """Instantiate every bundled plugin.

    Args:
        options: Optional per-plugin options keyed by plugin name
    """
    options = options or {}
    return [cls(options.get(name)) for name, cls in BUILTIN_PLUGINS.items()]


__all__ = [
    "BUILTIN_PLUGINS",
    "IntegrityValidator",
    "JsonReporter",
    "MarkdownReporter",
    "StandardDeduplicator",
    "create_builtin_plugins",
]
