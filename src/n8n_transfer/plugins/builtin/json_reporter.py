"""JSON transfer report."""

import json
from datetime import UTC, datetime
from typing import Any

from n8n_transfer.models import TransferStatus, TransferSummary
from n8n_transfer.plugins.builtin.file_reporter import FileReporter, format_duration, rate


class JsonReporter(FileReporter):
    """Writes a machine-readable report with metadata, statistics, workflows and errors."""

    report_format = "json"
    extension = "json"

    def __init__(self, options: dict[str, Any] | None = None):
        super().__init__(
            "json-reporter",
            {"pretty_print": True, "include_workflows": True, **(options or {})},
            description="Full transfer report in JSON",
        )

    def build(self, summary: TransferSummary) -> dict[str, Any]:
        """Build the report document."""
        data = summary.model_dump(mode="json")
        return {
            "metadata": {
                "generated_at": datetime.now(UTC).isoformat(),
                "source": summary.source_url or "unknown",
                "target": summary.target_url or "unknown",
                "started_at": data["started_at"],
                "finished_at": data["finished_at"],
                "duration": {
                    "milliseconds": summary.duration,
                    "formatted": format_duration(summary.duration),
                },
                "dry_run": summary.dry_run,
                "cancelled": summary.cancelled,
            },
            "statistics": {
                "total": summary.total,
                "processed": summary.processed,
                "transferred": summary.transferred,
                "skipped": summary.skipped,
                "duplicates": summary.duplicates,
                "failed": summary.failed,
                "success_rate": f"{rate(summary.transferred, summary.total):.2f}%",
                "failure_rate": f"{rate(summary.failed, summary.total):.2f}%",
                "references": data["reference_stats"],
            },
            "workflows": [
                {**row, "transferred": row["status"] == TransferStatus.TRANSFERRED.value}
                for row in data["workflows"]
            ]
            if self.get_option("include_workflows", True)
            else [],
            "errors": data["errors"],
            "report": {"generated_by": self.name, "version": self.version},
        }

    def render(self, summary: TransferSummary) -> str:
        indent = 2 if self.get_option("pretty_print", True) else None
        return json.dumps(self.build(summary), indent=indent, default=str)
