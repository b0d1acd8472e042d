"""Data model for n8n workflow transfers.

Workflow payloads travel through the pipeline as plain dictionaries, exactly as
the n8n API returns them. The pydantic models below describe only the fields
this tool reads, and are used to validate structure and to shape results.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from n8n_transfer.client.exceptions import ConfigurationError


class Tag(BaseModel):
    """Workflow tag."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str = Field(..., min_length=1)


class Node(BaseModel):
    """A single step of a workflow."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    typeVersion: int | float = 1
    position: list[float] = Field(default_factory=lambda: [0, 0])
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] | None = None

    @field_validator("position")
    @classmethod
    def validate_position(cls, v: list[float]) -> list[float]:
        """Validate position is an [x, y] pair."""
        if len(v) != 2:
            raise ValueError("position must contain exactly two coordinates")
        return v

    @property
    def requires_credentials(self) -> bool:
        """True when the node references at least one credential."""
        return bool(self.credentials)


class Workflow(BaseModel):
    """Workflow definition as exchanged with the n8n REST API."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str = Field(..., min_length=1)
    nodes: list[Node] = Field(..., min_length=1)
    connections: dict[str, Any] = Field(default_factory=dict)
    tags: list[Tag | str] = Field(default_factory=list)
    active: bool = False
    settings: dict[str, Any] = Field(default_factory=dict)
    createdAt: str | None = None
    updatedAt: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Accept numeric ids from older n8n versions."""
        return str(v) if isinstance(v, int) else v


def tag_name(tag: Any) -> str | None:
    """Return the name of a tag given as a mapping or a plain string."""
    if isinstance(tag, dict):
        name = tag.get("name")
        return str(name) if name is not None else None
    if isinstance(tag, str):
        return tag
    return None


def workflow_tag_names(workflow: dict[str, Any]) -> set[str]:
    """Collect the tag names of a raw workflow payload."""
    names = set()
    for tag in workflow.get("tags") or []:
        name = tag_name(tag)
        if name:
            names.add(name)
    return names


def workflow_has_credentials(workflow: dict[str, Any]) -> bool:
    """True when any node of a raw workflow payload references a credential."""
    for node in workflow.get("nodes") or []:
        if isinstance(node, dict) and isinstance(node.get("credentials"), dict):
            if node["credentials"]:
                return True
    return False


class TransferStatus(str, Enum):
    """Lifecycle of a single workflow within a run."""

    PENDING = "pending"
    TRANSFERRING = "transferring"
    TRANSFERRED = "transferred"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Lifecycle of a transfer run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ValidationResult(BaseModel):
    """Outcome of a Validator run on one workflow."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TransferState(BaseModel):
    """Per-workflow state while it moves through the pipeline."""

    workflow: dict[str, Any]
    status: TransferStatus = TransferStatus.PENDING
    source: str | None = None
    target: str | None = None
    validation: list[ValidationResult] = Field(default_factory=list)
    reason: str | None = None
    error: str | None = None
    error_code: str | None = None
    target_id: str | None = None
    duplicate: bool = False
    simulated: bool = False

    @property
    def name(self) -> str:
        return str(self.workflow.get("name") or "unnamed")

    @property
    def source_id(self) -> str | None:
        value = self.workflow.get("id")
        return str(value) if value is not None else None


class TransferErrorEntry(BaseModel):
    """A failure recorded in the summary."""

    workflow: str
    error: str
    code: str | None = None


class WorkflowOutcome(BaseModel):
    """Final row for one workflow in the summary."""

    name: str
    source_id: str | None = None
    target_id: str | None = None
    status: TransferStatus
    reason: str | None = None
    simulated: bool = False


class ReportFile(BaseModel):
    """A report written by a Reporter plugin."""

    reporter: str
    path: str
    format: str


class TransferSummary(BaseModel):
    """Aggregated result of a transfer run."""

    total: int = 0
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    duplicates: int = 0
    processed: int = 0
    duration: int = 0
    errors: list[TransferErrorEntry] = Field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False
    reports: list[ReportFile] = Field(default_factory=list)
    workflows: list[WorkflowOutcome] = Field(default_factory=list)
    source_url: str | None = None
    target_url: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    reference_stats: dict[str, Any] = Field(default_factory=dict)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TransferFilters(_CamelModel):
    """Narrow the SOURCE workflow set before processing."""

    workflow_ids: list[str] = Field(default_factory=list)
    workflow_names: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    exclude_tags: list[str] = Field(default_factory=list)

    @field_validator("workflow_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        """Accept numeric workflow ids."""
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


class TransferOptions(_CamelModel):
    """Options controlling a transfer or validation run."""

    filters: TransferFilters = Field(default_factory=TransferFilters)
    dry_run: bool = False
    parallelism: int = Field(default=3, ge=1, le=10)
    skip_credentials: bool = False
    deduplicator: str = "standard-deduplicator"
    validators: list[str] = Field(default_factory=lambda: ["integrity-validator"])
    reporters: list[str] = Field(default_factory=lambda: ["markdown-reporter"])

    @classmethod
    def parse(cls, options: "TransferOptions | dict[str, Any] | None") -> "TransferOptions":
        """Build options from a mapping, raising ConfigurationError when invalid.

        Args:
            options: Existing options, a mapping (snake_case or camelCase keys) or None

        Returns:
            Validated TransferOptions

        Raises:
            ConfigurationError: If any option is invalid
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid transfer options: {problems}") from e


class TransferProgress(BaseModel):
    """Snapshot of run progress."""

    total: int = 0
    processed: int = 0
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    percentage: int = 0
    status: RunStatus = RunStatus.IDLE


class ValidationIssue(BaseModel):
    """Validation findings for one workflow."""

    workflow: str
    source_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Result of ``TransferManager.validate``."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    errors: int = 0
    warnings: int = 0
    issues: list[ValidationIssue] = Field(default_factory=list)
    validators: list[str] = Field(default_factory=list)


class ConnectionResult(BaseModel):
    """Outcome of a connectivity check."""

    success: bool
    message: str | None = None
    error: str | None = None
    suggestion: str | None = None
    original_error: str | None = None
