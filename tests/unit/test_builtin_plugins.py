"""Unit tests for the bundled plugins."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from n8n_transfer.models import (
    TransferErrorEntry,
    TransferStatus,
    TransferSummary,
    WorkflowOutcome,
)
from n8n_transfer.plugins.builtin import (
    BUILTIN_PLUGINS,
    IntegrityValidator,
    JsonReporter,
    MarkdownReporter,
    StandardDeduplicator,
)
from n8n_transfer.plugins.builtin.file_reporter import format_duration


class TestStandardDeduplicator:
    """Tests for StandardDeduplicator."""

    @pytest.fixture
    def dedup(self):
        return StandardDeduplicator()

    def test_same_name_and_tags_is_duplicate(self, dedup, workflow_factory):
        """Test an exact match, ignoring tag order and tag shape."""
        candidate = workflow_factory("1", "Sync", tags=["a", "b"])
        existing = [{"id": "9", "name": "Sync", "tags": ["b", {"name": "a"}]}]

        assert dedup.is_duplicate(candidate, existing) is True
        assert "Sync" in dedup.get_reason()
        assert dedup.get_duplicate_workflow()["id"] == "9"

    def test_different_tags_is_not_duplicate(self, dedup, workflow_factory):
        """Test that the tag set must match."""
        candidate = workflow_factory("1", "Sync", tags=["a"])
        existing = [workflow_factory("9", "Sync", tags=["a", "b"])]

        assert dedup.is_duplicate(candidate, existing) is False
        assert dedup.get_duplicate_workflow() is None

    def test_different_name_is_not_duplicate(self, dedup, workflow_factory):
        """Test that names must match exactly."""
        candidate = workflow_factory("1", "Sync")
        existing = [workflow_factory("9", "sync")]

        assert dedup.is_duplicate(candidate, existing) is False

    def test_invalid_input_is_not_duplicate(self, dedup):
        """Test that malformed inputs never count as duplicates."""
        assert dedup.is_duplicate(None, []) is False
        assert dedup.is_duplicate({"name": "x"}, None) is False
        assert dedup.get_reason()


class TestIntegrityValidator:
    """Tests for IntegrityValidator."""

    @pytest.fixture
    def validator(self):
        return IntegrityValidator()

    def test_valid_workflow(self, validator, workflow_factory):
        """Test a well-formed workflow."""
        result = validator.validate(workflow_factory("1", "OK"))

        assert result.valid is True
        assert result.errors == []
        assert result.metadata["node_count"] == 2
        assert result.metadata["connection_count"] == 1

    def test_missing_nodes_is_invalid(self, validator):
        """Test that a workflow without nodes fails."""
        result = validator.validate({"name": "Empty", "nodes": []})

        assert result.valid is False
        assert any("nodes" in error for error in result.errors)

    def test_missing_name_is_invalid(self, validator, workflow_factory):
        """Test that a workflow without a name fails."""
        workflow = workflow_factory("1", "x")
        del workflow["name"]

        assert validator.validate(workflow).valid is False

    def test_dangling_connection_is_invalid(self, validator, workflow_factory):
        """Test that connections must point at existing nodes."""
        workflow = workflow_factory("1", "Broken")
        workflow["connections"]["Start"]["main"][0].append({"node": "Ghost", "type": "main", "index": 0})

        result = validator.validate(workflow)

        assert result.valid is False
        assert any("Ghost" in error for error in result.errors)

    def test_connection_by_node_id_is_accepted(self, validator, workflow_factory):
        """Test that node ids are accepted as connection endpoints."""
        workflow = workflow_factory("1", "Ids")
        workflow["connections"] = {"1-1": {"main": [[{"node": "1-2", "type": "main", "index": 0}]]}}

        assert validator.validate(workflow).valid is True

    def test_cycle_is_invalid_by_default(self, validator, workflow_factory):
        """Test that cyclic connections are errors."""
        workflow = workflow_factory("1", "Loop")
        workflow["connections"]["HTTP Request"] = {
            "main": [[{"node": "Start", "type": "main", "index": 0}]]
        }

        result = validator.validate(workflow)

        assert result.valid is False
        assert result.metadata["circular_dependencies"] is True

    def test_cycle_allowed_by_option(self, workflow_factory):
        """Test that allow_cycles downgrades cycles to warnings."""
        workflow = workflow_factory("1", "Loop")
        workflow["connections"]["HTTP Request"] = {
            "main": [[{"node": "Start", "type": "main", "index": 0}]]
        }

        result = IntegrityValidator({"allow_cycles": True}).validate(workflow)

        assert result.valid is True
        assert any("Circular" in warning for warning in result.warnings)

    def test_warnings_do_not_block(self, validator, workflow_factory):
        """Test credential and disabled-node warnings."""
        workflow = workflow_factory("1", "Warn", credentials=True)
        workflow["nodes"][1]["credentials"] = {"httpBasicAuth": {}}
        workflow["nodes"][1]["disabled"] = True

        result = validator.validate(workflow)

        assert result.valid is True
        assert len(result.warnings) == 2
        assert result.metadata["credential_node_count"] == 1


@pytest.fixture
def summary():
    return TransferSummary(
        total=3,
        transferred=1,
        skipped=1,
        failed=1,
        duplicates=1,
        processed=3,
        duration=65000,
        source_url="https://source.example.com",
        target_url="https://target.example.com",
        started_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        finished_at=datetime(2024, 5, 1, 12, 1, 5, tzinfo=UTC),
        errors=[TransferErrorEntry(workflow="Gamma", error="Server error", code="SERVER_ERROR")],
        workflows=[
            WorkflowOutcome(name="Alpha", source_id="1", target_id="10", status=TransferStatus.TRANSFERRED),
            WorkflowOutcome(name="Beta", source_id="2", status=TransferStatus.SKIPPED, reason="Duplicate"),
            WorkflowOutcome(name="Gamma", source_id="3", status=TransferStatus.FAILED, reason="Server error"),
        ],
        reference_stats={"references_updated": 2, "references_failed": 0, "success_rate": "100.00%"},
    )


class TestReporters:
    """Tests for JsonReporter and MarkdownReporter."""

    def test_format_duration(self):
        """Test duration formatting."""
        assert format_duration(5000) == "5s"
        assert format_duration(65000) == "1m 5s"
        assert format_duration(3_720_000) == "1h 2m"

    def test_json_report(self, summary, tmp_path):
        """Test the JSON report sections and file output."""
        reporter = JsonReporter({"output_dir": str(tmp_path)})

        path = Path(reporter.generate(summary))
        data = json.loads(path.read_text())

        assert path.parent == tmp_path
        assert path.suffix == ".json"
        assert data["statistics"]["transferred"] == 1
        assert data["statistics"]["success_rate"] == "33.33%"
        assert data["metadata"]["duration"]["formatted"] == "1m 5s"
        assert data["workflows"][0]["transferred"] is True
        assert data["errors"][0]["code"] == "SERVER_ERROR"

    def test_markdown_report(self, summary, tmp_path):
        """Test the Markdown report sections."""
        reporter = MarkdownReporter({"output_dir": str(tmp_path)})

        content = Path(reporter.generate(summary)).read_text()

        assert content.startswith("# n8n Workflow Transfer Report")
        assert "| Transferred | 1 |" in content
        assert "| Alpha | 1 | 10 |" in content
        assert "- **Beta**: Duplicate" in content
        assert "`SERVER_ERROR`" in content
        assert "## References" in content

    def test_reporters_do_not_modify_summary(self, summary, tmp_path):
        """Test that generating reports leaves the summary unchanged."""
        before = summary.model_dump()

        JsonReporter({"output_dir": str(tmp_path)}).generate(summary)
        MarkdownReporter({"output_dir": str(tmp_path)}).generate(summary)

        assert summary.model_dump() == before

    def test_builtin_names(self):
        """Test that bundled plugins carry their registry names."""
        for name, cls in BUILTIN_PLUGINS.items():
            assert cls().name == name
