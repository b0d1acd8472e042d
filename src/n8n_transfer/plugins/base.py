"""Plugin base classes.

Every plugin derives from one of the three capability classes below and
identifies itself by name. Concrete plugins are resolved by name through the
PluginRegistry.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from n8n_transfer.models import TransferSummary, ValidationResult


class PluginType(str, Enum):
    """Capability a plugin provides."""

    DEDUPLICATOR = "deduplicator"
    VALIDATOR = "validator"
    REPORTER = "reporter"


class BasePlugin(ABC):
    """Base class for all transfer plugins.

    Attributes:
        plugin_type: Capability implemented by the subclass
        required_methods: Methods the registry checks before accepting the plugin
    """

    plugin_type: PluginType
    required_methods: tuple[str, ...] = ()

    def __init__(
        self,
        name: str,
        version: str = "1.0.0",
        options: dict[str, Any] | None = None,
        description: str = "",
    ):
        """Initialize the plugin.

        Args:
            name: Unique plugin name (case-insensitive in the registry)
            version: Plugin version
            options: Plugin-specific options
            description: Human-readable description
        """
        if not name or not name.strip():
            raise ValueError("Plugin name is required")
        self._name = name
        self._version = version
        self._enabled = True
        self.options: dict[str, Any] = dict(options or {})
        self.description = description

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    def get_name(self) -> str:
        return self._name

    def get_version(self) -> str:
        return self._version

    def get_type(self) -> PluginType:
        return self.plugin_type

    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def set_options(self, options: dict[str, Any]) -> None:
        """Merge ``options`` into the current options."""
        self.options.update(options)

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def get_info(self) -> dict[str, Any]:
        """Describe the plugin for listings."""
        return {
            "name": self._name,
            "version": self._version,
            "type": self.plugin_type.value,
            "enabled": self._enabled,
            "description": self.description,
            "options": dict(self.options),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, version={self._version!r})"


class Deduplicator(BasePlugin):
    """Decides whether a SOURCE workflow already exists on TARGET."""

    plugin_type = PluginType.DEDUPLICATOR
    required_methods = ("is_duplicate", "get_reason")

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._last_reason: str | None = None

    @abstractmethod
    def is_duplicate(self, candidate: dict[str, Any], existing: list[dict[str, Any]]) -> bool:
        """Check ``candidate`` against the TARGET workflows.

        Args:
            candidate: SOURCE workflow payload
            existing: TARGET workflow payloads

        Returns:
            True when the candidate should be skipped as a duplicate
        """

    def get_reason(self) -> str:
        """Describe the last duplicate decision."""
        return self._last_reason or "No duplicate check performed"


class Validator(BasePlugin):
    """Checks a workflow before it is created on TARGET."""

    plugin_type = PluginType.VALIDATOR
    required_methods = ("validate",)

    @abstractmethod
    def validate(self, workflow: dict[str, Any]) -> ValidationResult:
        """Validate a workflow payload.

        Args:
            workflow: SOURCE workflow payload

        Returns:
            ValidationResult; ``valid=False`` blocks the transfer
        """


class Reporter(BasePlugin):
    """Writes the TransferSummary somewhere once a run ends.

    Attributes:
        report_format: Format label recorded in ``summary.reports``
    """

    plugin_type = PluginType.REPORTER
    required_methods = ("generate",)
    report_format: str = "unknown"

    @abstractmethod
    def generate(self, summary: TransferSummary) -> str:
        """Write a report.

        Args:
            summary: Final summary of the run (read-only)

        Returns:
            Path or identifier of the written report
        """
