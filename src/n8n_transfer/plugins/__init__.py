"""Plugin contracts and registry for the transfer pipeline."""

from n8n_transfer.plugins.base import (
    BasePlugin,
    Deduplicator,
    PluginType,
    Reporter,
    Validator,
)
from n8n_transfer.plugins.registry import PluginLoadResult, PluginRegistry

__all__ = [
    "BasePlugin",
    "Deduplicator",
    "PluginLoadResult",
    "PluginRegistry",
    "PluginType",
    "Reporter",
    "Validator",
]
