"""Shared behaviour of reporters that write a file per run."""

from abc import abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from n8n_transfer.models import TransferSummary
from n8n_transfer.plugins.base import Reporter
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)


def format_duration(milliseconds: int) -> str:
    """Format a duration as ``1h 2m``, ``3m 4s`` or ``5s``."""
    seconds = int(milliseconds // 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def rate(count: int, total: int) -> float:
    """Percentage of ``count`` in ``total``, 0 when total is 0."""
    return count / total * 100 if total else 0.0


class FileReporter(Reporter):
    """Reporter that renders the summary and writes it under ``output_dir``.

    Options:
        output_dir: Directory for report files (default ``reports``)
    """

    extension = "txt"

    def __init__(self, name: str, options: dict[str, Any] | None = None, description: str = ""):
        super().__init__(
            name, "1.0.0", {"output_dir": "reports", **(options or {})}, description=description
        )

    @abstractmethod
    def render(self, summary: TransferSummary) -> str:
        """Render the report content."""

    def report_path(self) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
        return Path(self.get_option("output_dir", "reports")) / f"transfer-{timestamp}.{self.extension}"

    def generate(self, summary: TransferSummary) -> str:
        """Render the summary and write it to a new file.

        Args:
            summary: Final summary of the run

        Returns:
            Path of the written report
        """
        content = self.render(summary)
        path = self.report_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info(f"{self.report_format}_report_saved", path=str(path))
        return str(path)
