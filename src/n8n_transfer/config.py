"""Configuration management for n8n Bridge using Pydantic.

This module provides type-safe configuration models for the SOURCE and TARGET
instances, logging, reports and default transfer options, plus YAML loading
with ``${VAR}`` environment expansion.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from n8n_transfer.client.exceptions import ConfigurationError
from n8n_transfer.models import TransferOptions

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class InstanceConfig(BaseModel):
    """Configuration for an n8n instance (SOURCE or TARGET)."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., description="n8n instance URL")
    api_key: str = Field(
        ...,
        validation_alias=AliasChoices("api_key", "apiKey"),
        description="n8n public API key",
    )
    timeout: float = Field(default=10.0, gt=0, le=600, description="Per-attempt timeout in seconds")
    max_retries: int = Field(default=3, ge=1, le=10, description="Total attempts per request")
    rate_limit: int = Field(default=10, ge=0, le=1000, description="Requests per second (0 = off)")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key is not empty."""
        if not v or v.strip() == "":
            raise ValueError("API key cannot be empty")
        return v.strip()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Console log level")
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="Log file format (json or console)")
    file: str | None = Field(default=None, description="Log file path")

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class ReportConfig(BaseModel):
    """Report and mapping output configuration."""

    output_dir: str = Field(default="reports", description="Directory for report files")
    id_mapping_file: str | None = Field(
        default=None, description="Optional JSON file the id mappings are exported to"
    )


class TransferConfig(BaseSettings):
    """Main transfer configuration.

    SOURCE and TARGET may be given upper- or lower-case, and from the
    environment as ``SOURCE__URL``, ``TARGET__API_KEY`` and so on.
    """

    model_config = SettingsConfigDict(
        env_prefix="N8N_TRANSFER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    source: InstanceConfig = Field(
        ..., validation_alias=AliasChoices("SOURCE", "source"), description="Source instance"
    )
    target: InstanceConfig = Field(
        ..., validation_alias=AliasChoices("TARGET", "target"), description="Target instance"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    reports: ReportConfig = Field(default_factory=ReportConfig)
    defaults: TransferOptions = Field(
        default_factory=TransferOptions, description="Default transfer options"
    )

    @classmethod
    def from_mapping(cls, data: "TransferConfig | dict[str, Any]") -> "TransferConfig":
        """Build a configuration, converting validation failures to ConfigurationError.

        Args:
            data: Existing configuration or a mapping shaped like
                ``{"SOURCE": {"url", "apiKey"}, "TARGET": {...}}``

        Returns:
            Validated configuration

        Raises:
            ConfigurationError: If a required value is missing or invalid
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping with SOURCE and TARGET")
        try:
            return cls(**data)
        except ValidationError as e:
            problems = []
            for err in e.errors():
                location = ".".join(str(p) for p in err["loc"]).upper() or "config"
                problems.append(f"{location}: {err['msg']}")
            raise ConfigurationError(f"Invalid configuration: {'; '.join(problems)}") from e


def load_config_from_yaml(config_path: str | Path) -> TransferConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        TransferConfig: Loaded configuration

    Raises:
        ConfigurationError: If the file is missing, empty or invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        try:
            config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not config_data:
        raise ConfigurationError(f"Empty configuration file: {config_path}")

    return TransferConfig.from_mapping(_expand_env_vars(config_data))


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ``${VAR_NAME}`` references in config values.

    Args:
        data: Parsed YAML value

    Returns:
        The value with every reference replaced by the environment value

    Raises:
        ConfigurationError: If a referenced variable is not set
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):

        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '{var_name}' not found. "
                    "Please set it in your environment."
                )
            return env_value

        return _ENV_VAR_PATTERN.sub(replace, data)
    else:
        return data


def save_config_to_yaml(config: TransferConfig, output_path: str | Path) -> None:
    """Save configuration to YAML file with API keys removed.

    Args:
        config: Configuration to save
        output_path: Path to output YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json")
    for instance in ("source", "target"):
        config_dict[instance]["api_key"] = "${" + f"{instance.upper()}_API_KEY" + "}"

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
