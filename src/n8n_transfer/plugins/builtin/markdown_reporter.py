"""Markdown transfer report."""

from typing import Any

from n8n_transfer.models import TransferStatus, TransferSummary
from n8n_transfer.plugins.builtin.file_reporter import FileReporter, format_duration, rate


class MarkdownReporter(FileReporter):
    """Writes a human-readable report.

    Options:
        max_items: Maximum rows listed per section (default 50)
    """

    report_format = "markdown"
    extension = "md"

    def __init__(self, options: dict[str, Any] | None = None):
        super().__init__(
            "markdown-reporter",
            {"max_items": 50, **(options or {})},
            description="Transfer report in Markdown",
        )

    def render(self, summary: TransferSummary) -> str:
        max_items = int(self.get_option("max_items", 50))
        started = summary.started_at.strftime("%Y-%m-%d %H:%M:%S UTC") if summary.started_at else "N/A"
        finished = (
            summary.finished_at.strftime("%Y-%m-%d %H:%M:%S UTC") if summary.finished_at else "N/A"
        )

        lines = [
            "# n8n Workflow Transfer Report",
            "",
            f"**Source:** {summary.source_url or 'unknown'}  ",
            f"**Target:** {summary.target_url or 'unknown'}  ",
            f"**Started:** {started}  ",
            f"**Finished:** {finished}  ",
            f"**Duration:** {format_duration(summary.duration)}  ",
            f"**Dry Run:** {'Yes' if summary.dry_run else 'No'}  ",
        ]
        if summary.cancelled:
            lines.append("**Cancelled:** Yes  ")

        lines.extend(
            [
                "",
                "## Summary",
                "",
                "| Metric | Count |",
                "|--------|------:|",
                f"| Total | {summary.total:,} |",
                f"| Processed | {summary.processed:,} |",
                f"| Transferred | {summary.transferred:,} |",
                f"| Skipped | {summary.skipped:,} |",
                f"| Duplicates | {summary.duplicates:,} |",
                f"| Failed | {summary.failed:,} |",
                f"| Success Rate | {rate(summary.transferred, summary.total):.1f}% |",
                "",
            ]
        )

        transferred = [w for w in summary.workflows if w.status == TransferStatus.TRANSFERRED]
        if transferred:
            lines.extend(["## Transferred", "", "| Workflow | Source ID | Target ID |", "|---|---|---|"])
            for row in transferred[:max_items]:
                lines.append(f"| {row.name} | {row.source_id or ''} | {row.target_id or ''} |")
            if len(transferred) > max_items:
                lines.append(f"\n*... and {len(transferred) - max_items} more*")
            lines.append("")

        skipped = [w for w in summary.workflows if w.status == TransferStatus.SKIPPED]
        if skipped:
            lines.extend(["## Skipped", ""])
            for row in skipped[:max_items]:
                lines.append(f"- **{row.name}**: {row.reason or 'No reason provided'}")
            if len(skipped) > max_items:
                lines.append(f"- *... and {len(skipped) - max_items} more*")
            lines.append("")

        if summary.errors:
            lines.extend(["## Errors", "", f"Total errors: {len(summary.errors)}", ""])
            for error in summary.errors[:max_items]:
                code = f" `{error.code}`" if error.code else ""
                lines.append(f"- **{error.workflow}**{code}: {error.error}")
            if len(summary.errors) > max_items:
                lines.append(f"- *... and {len(summary.errors) - max_items} more errors*")
            lines.append("")

        references = summary.reference_stats
        if references:
            lines.extend(
                [
                    "## References",
                    "",
                    f"- **Updated:** {references.get('references_updated', 0)}",
                    f"- **Unresolved:** {references.get('references_failed', 0)}",
                    f"- **Success Rate:** {references.get('success_rate', '0%')}",
                    "",
                ]
            )

        return "\n".join(lines)
