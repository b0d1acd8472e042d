"""Unit tests for TransferManager."""

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from n8n_transfer.client.exceptions import (
    ConfigurationError,
    ConnectivityError,
    PluginNotFoundError,
)
from n8n_transfer.client.http_client import ResilientHttpClient
from n8n_transfer.models import RunStatus, TransferStatus, ValidationResult
from n8n_transfer.plugins.base import Reporter, Validator
from n8n_transfer.transfer import manager as manager_module
from n8n_transfer.transfer.manager import TransferManager, build_create_payload


class FakeN8n:
    """In-memory n8n instance served through httpx.MockTransport."""

    def __init__(self, workflows=None, status: int | None = None, reject: set[str] | None = None):
        self.workflows = list(workflows or [])
        self.status = status
        self.reject = reject or set()
        self.created: list[dict] = []
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.status is not None:
            return httpx.Response(self.status, json={"message": "forced"})
        if request.method == "GET" and request.url.path == "/api/v1/workflows":
            return httpx.Response(200, json={"data": self.workflows, "nextCursor": None})
        if request.method == "POST" and request.url.path == "/api/v1/workflows":
            body = json.loads(request.content)
            if body["name"] in self.reject:
                return httpx.Response(400, json={"message": "request/body must have required property"})
            self.created.append(body)
            return httpx.Response(200, json={"id": f"new-{len(self.created)}", **body})
        return httpx.Response(404, json={"message": "not found"})


class SlowCreateN8n(FakeN8n):
    """FakeN8n whose creates take a moment and record their concurrency."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method != "POST":
            return super().__call__(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return super().__call__(request)
        finally:
            self.in_flight -= 1


def call_subworkflow(workflow: dict, name: str, old_id: str) -> dict:
    """Turn the second node of a workflow into an Execute Workflow call."""
    workflow["nodes"][1]["type"] = "n8n-nodes-base.executeWorkflow"
    workflow["nodes"][1]["parameters"] = {
        "workflowId": {"__rl": True, "value": old_id, "mode": "list", "cachedResultName": name}
    }
    return workflow


class ExplodingReporter(Reporter):
    def __init__(self):
        super().__init__("exploding-reporter")

    def generate(self, summary):
        raise RuntimeError("disk full")


class CancellingValidator(Validator):
    """Validator that cancels the run the first time it is called."""

    def __init__(self, manager_ref: list):
        super().__init__("cancelling-validator")
        self.manager_ref = manager_ref

    def validate(self, workflow):
        self.manager_ref[0].cancel()
        return ValidationResult(valid=True)


@pytest.fixture
def make_manager(tmp_path, no_sleep):

    def factory(source: FakeN8n, target: FakeN8n, **config) -> TransferManager:
        data = {
            "SOURCE": {"url": "https://source.example.com", "apiKey": "source-key-111"},
            "TARGET": {"url": "https://target.example.com", "apiKey": "target-key-222"},
            "reports": {"output_dir": str(tmp_path / "reports")},
            **config,
        }

        def client(fake: FakeN8n, url: str, key: str, label: str) -> ResilientHttpClient:
            return ResilientHttpClient(
                url,
                key,
                max_requests_per_second=0,
                label=label,
                transport=httpx.MockTransport(fake),
                sleep=no_sleep,
            )

        manager = TransferManager(
            data,
            source_client=client(source, data["SOURCE"]["url"], "source-key-111", "SOURCE"),
            target_client=client(target, data["TARGET"]["url"], "target-key-222", "TARGET"),
        )
        return manager

    return factory


class TestTransfer:
    """Tests for TransferManager.transfer."""

    @pytest.mark.asyncio
    async def test_transfers_all_and_rewrites_references(self, make_manager, workflow_factory):
        """Test a full run including a cross-workflow reference."""
        source = FakeN8n(
            [
                workflow_factory("1", "Alpha", tags=["prod"]),
                workflow_factory("2", "Beta"),
                call_subworkflow(workflow_factory("3", "Caller"), "Alpha", "1"),
            ]
        )
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"parallelism": 1, "reporters": []})

        assert summary.total == 3
        assert summary.transferred == 3
        assert summary.failed == 0
        assert [c["name"] for c in target.created] == ["Alpha", "Beta", "Caller"]
        caller = target.created[2]
        assert caller["nodes"][1]["parameters"]["workflowId"]["value"] == "new-1"
        assert "id" not in caller
        assert manager.id_mapper.get_id_by_old_id("2") == "new-2"
        assert [w.target_id for w in summary.workflows] == ["new-1", "new-2", "new-3"]
        assert source.workflows[2]["nodes"][1]["parameters"]["workflowId"]["value"] == "1"

    @pytest.mark.asyncio
    async def test_duplicates_compared_with_target_snapshot(self, make_manager, workflow_factory):
        """Test SOURCE [A, A, B] against TARGET [A]."""
        source = FakeN8n(
            [
                workflow_factory("1", "A", tags=["x"]),
                workflow_factory("2", "A", tags=["x"]),
                workflow_factory("3", "B"),
            ]
        )
        target = FakeN8n([workflow_factory("99", "A", tags=["x"])])
        manager = make_manager(source, target)

        summary = await manager.transfer({"reporters": []})

        assert summary.skipped == 2
        assert summary.duplicates == 2
        assert summary.transferred == 1
        assert [c["name"] for c in target.created] == ["B"]
        skipped = [w for w in summary.workflows if w.status == TransferStatus.SKIPPED]
        assert all("already exists" in w.reason for w in skipped)

    @pytest.mark.asyncio
    async def test_repeated_source_workflow_not_deduplicated_against_itself(
        self, make_manager, workflow_factory
    ):
        """Test that SOURCE [A, A] with an empty TARGET transfers both."""
        source = FakeN8n([workflow_factory("1", "A"), workflow_factory("2", "A")])
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"reporters": []})

        assert summary.transferred == 2
        assert len(target.created) == 2

    @pytest.mark.asyncio
    async def test_dry_run_creates_nothing(self, make_manager, workflow_factory):
        """Test that a dry run simulates without side effects."""
        source = FakeN8n([workflow_factory("1", "A"), workflow_factory("2", "B")])
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"dryRun": True, "reporters": []})

        assert summary.dry_run is True
        assert summary.transferred == 2
        assert all(w.simulated for w in summary.workflows)
        assert target.created == []
        assert len(manager.id_mapper) == 0

    @pytest.mark.asyncio
    async def test_skip_credentials(self, make_manager, workflow_factory):
        """Test that workflows using credentials are skipped on request."""
        source = FakeN8n(
            [workflow_factory("1", "Plain"), workflow_factory("2", "Secret", credentials=True)]
        )
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"skipCredentials": True, "reporters": []})

        assert summary.transferred == 1
        assert summary.skipped == 1
        assert summary.duplicates == 0
        assert [c["name"] for c in target.created] == ["Plain"]


    @pytest.mark.asyncio
    async def test_transfer_without_credential_skip_keeps_credentials(
        self, make_manager, workflow_factory
    ):
        """Test that workflows using credentials transfer when skipping is off."""
        source = FakeN8n(
            [workflow_factory("1", "Plain"), workflow_factory("2", "Secret", credentials=True)]
        )
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"skipCredentials": False, "reporters": []})

        assert summary.transferred == 2
        assert summary.skipped == 0
        secret = next(c for c in target.created if c["name"] == "Secret")
        assert secret["nodes"][1]["credentials"] == {"httpBasicAuth": {"id": "1", "name": "Basic"}}

    @pytest.mark.asyncio
    async def test_parallelism_bounds_creates_in_flight(self, make_manager, workflow_factory):
        """Test that no more than ``parallelism`` creates run at once."""
        source = FakeN8n([workflow_factory(str(i), f"WF {i}") for i in range(1, 11)])
        target = SlowCreateN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"parallelism": 3, "reporters": []})

        assert summary.transferred == 10
        assert len(target.created) == 10
        assert target.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_reference_stats_are_per_run(self, make_manager, workflow_factory):
        """Test that a second run reports only its own reference counts."""
        source = FakeN8n(
            [
                workflow_factory("1", "Alpha"),
                call_subworkflow(workflow_factory("2", "Caller"), "Alpha", "1"),
            ]
        )
        manager = make_manager(source, FakeN8n())

        first = await manager.transfer({"parallelism": 1, "reporters": []})
        assert first.reference_stats["references_updated"] == 1

        source.workflows = [workflow_factory("3", "Plain")]
        second = await manager.transfer({"reporters": []})

        assert second.total == 1
        assert second.reference_stats["workflows_processed"] == 1
        assert second.reference_stats["references_updated"] == 0
    @pytest.mark.asyncio
    async def test_invalid_workflow_is_skipped(self, make_manager, workflow_factory):
        """Test that validation errors skip the workflow with the reasons."""
        source = FakeN8n([{"id": "1", "name": "Empty", "nodes": []}, workflow_factory("2", "Good")])
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"reporters": []})

        assert summary.skipped == 1
        assert summary.transferred == 1
        assert "nodes" in summary.workflows[0].reason
        assert [c["name"] for c in target.created] == ["Good"]

    @pytest.mark.asyncio
    async def test_creation_failure_is_recorded(self, make_manager, workflow_factory):
        """Test that a rejected create fails one workflow and the run continues."""
        source = FakeN8n([workflow_factory("1", "Bad"), workflow_factory("2", "Good")])
        target = FakeN8n(reject={"Bad"})
        manager = make_manager(source, target)

        summary = await manager.transfer({"reporters": []})

        assert summary.failed == 1
        assert summary.transferred == 1
        assert summary.errors[0].workflow == "Bad"
        assert summary.errors[0].code == "CLIENT_ERROR"
        assert summary.total == summary.transferred + summary.skipped + summary.failed

    @pytest.mark.asyncio
    async def test_filters_applied(self, make_manager, workflow_factory):
        """Test that only filtered workflows are counted and processed."""
        source = FakeN8n(
            [workflow_factory("1", "A", tags=["prod"]), workflow_factory("2", "B", tags=["dev"])]
        )
        target = FakeN8n()
        manager = make_manager(source, target)

        summary = await manager.transfer({"filters": {"tags": ["prod"]}, "reporters": []})

        assert summary.total == 1
        assert [c["name"] for c in target.created] == ["A"]

    @pytest.mark.asyncio
    async def test_failing_reporter_does_not_abort(self, make_manager, workflow_factory, tmp_path):
        """Test that a reporter error is logged and other reports are kept."""
        source = FakeN8n([workflow_factory("1", "A")])
        manager = make_manager(source, FakeN8n())
        manager.register_plugin(ExplodingReporter())

        summary = await manager.transfer({"reporters": ["exploding-reporter", "json-reporter"]})

        assert summary.transferred == 1
        assert [r.reporter for r in summary.reports] == ["json-reporter"]
        assert summary.reports[0].format == "json"
        assert Path(summary.reports[0].path).parent == tmp_path / "reports"

    @pytest.mark.asyncio
    async def test_unknown_validator_is_skipped(self, make_manager, workflow_factory):
        """Test that an unregistered validator does not stop the run."""
        source = FakeN8n([workflow_factory("1", "A")])
        manager = make_manager(source, FakeN8n())

        summary = await manager.transfer({"validators": ["nope"], "reporters": []})

        assert summary.transferred == 1

    @pytest.mark.asyncio
    async def test_unknown_deduplicator_raises(self, make_manager, workflow_factory):
        """Test that a missing deduplicator is fatal."""
        manager = make_manager(FakeN8n([workflow_factory("1", "A")]), FakeN8n())

        with pytest.raises(PluginNotFoundError):
            await manager.transfer({"deduplicator": "nope"})

        assert manager.get_progress().status == RunStatus.FAILED
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_source_unreachable_raises(self, make_manager):
        """Test that a SOURCE authentication failure aborts before any work."""
        target = FakeN8n()
        manager = make_manager(FakeN8n(status=401), target)

        with pytest.raises(ConnectivityError) as exc_info:
            await manager.transfer()

        assert str(exc_info.value).startswith("SOURCE connection failed")
        assert exc_info.value.suggestion
        assert target.calls == 0

    @pytest.mark.asyncio
    async def test_target_unreachable_raises(self, make_manager):
        """Test that a TARGET failure is reported against TARGET."""
        manager = make_manager(FakeN8n(), FakeN8n(status=403))

        with pytest.raises(ConnectivityError, match="TARGET"):
            await manager.transfer()

    @pytest.mark.asyncio
    async def test_invalid_options_raise(self, make_manager):
        """Test that out-of-range parallelism is rejected."""
        manager = make_manager(FakeN8n(), FakeN8n())

        with pytest.raises(ConfigurationError):
            await manager.transfer({"parallelism": 20})

    @pytest.mark.asyncio
    async def test_empty_source(self, make_manager):
        """Test a run with nothing to transfer."""
        manager = make_manager(FakeN8n(), FakeN8n())

        summary = await manager.transfer({"reporters": []})

        assert summary.total == 0
        assert summary.processed == 0
        assert manager.get_progress().status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_after_run(self, make_manager, workflow_factory):
        """Test the final progress snapshot."""
        manager = make_manager(
            FakeN8n([workflow_factory("1", "A"), workflow_factory("2", "B")]), FakeN8n()
        )

        await manager.transfer({"reporters": []})
        progress = manager.get_progress()

        assert progress.status == RunStatus.COMPLETED
        assert progress.processed == 2
        assert progress.transferred == 2
        assert progress.percentage == 100

    @pytest.mark.asyncio
    async def test_cancel(self, make_manager, workflow_factory):
        """Test that cancelling stops new workflows from starting."""
        source = FakeN8n([workflow_factory(str(i), f"WF {i}") for i in range(1, 4)])
        manager = make_manager(source, FakeN8n())
        manager.register_plugin(CancellingValidator([manager]))

        summary = await manager.transfer(
            {"parallelism": 1, "validators": ["cancelling-validator"], "reporters": []}
        )

        assert summary.cancelled is True
        assert summary.total == 3
        assert summary.processed == 1
        assert manager.get_progress().status == RunStatus.CANCELLED

    def test_cancel_when_idle(self, make_manager):
        """Test that cancel outside a run is a no-op."""
        manager = make_manager(FakeN8n(), FakeN8n())

        assert manager.cancel() is False

    @pytest.mark.asyncio
    async def test_id_mappings_exported(self, make_manager, workflow_factory, tmp_path):
        """Test that mappings are written when a mapping file is configured."""
        mapping_file = tmp_path / "state" / "ids.json"
        manager = make_manager(
            FakeN8n([workflow_factory("1", "A")]),
            FakeN8n(),
            reports={"output_dir": str(tmp_path / "reports"), "id_mapping_file": str(mapping_file)},
        )

        await manager.transfer({"reporters": []})

        data = json.loads(mapping_file.read_text())
        assert data["mappings"] == [{"old_id": "1", "name": "A", "new_id": "new-1"}]


class TestValidate:
    """Tests for TransferManager.validate."""

    @pytest.mark.asyncio
    async def test_validate_reports_issues_without_target(self, make_manager, workflow_factory):
        """Test validation of SOURCE workflows only."""
        target = FakeN8n()
        manager = make_manager(
            FakeN8n([workflow_factory("1", "Good"), {"id": "2", "name": "Empty", "nodes": []}]),
            target,
        )

        report = await manager.validate()

        assert report.total == 2
        assert report.valid == 1
        assert report.invalid == 1
        assert report.issues[0].workflow == "Empty"
        assert report.validators == ["integrity-validator"]
        assert target.calls == 0

    @pytest.mark.asyncio
    async def test_validate_requires_a_validator(self, make_manager):
        """Test that validate fails when no validator resolves."""
        manager = make_manager(FakeN8n(), FakeN8n())

        with pytest.raises(PluginNotFoundError):
            await manager.validate({"validators": ["nope"]})


class TestConstruction:
    """Tests for manager construction helpers."""

    def test_missing_target_config(self):
        """Test that configuration errors surface from the constructor."""
        with pytest.raises(ConfigurationError):
            TransferManager({"SOURCE": {"url": "https://a.example.com", "apiKey": "key-1234"}})

    def test_build_create_payload(self, workflow_factory):
        """Test that only creatable fields are sent."""
        workflow = workflow_factory("1", "A", tags=["x"], versionId="v1")
        workflow["connections"] = None

        payload = build_create_payload(workflow)

        assert set(payload) == {"name", "nodes", "connections", "settings", "tags", "active"}
        assert payload["connections"] == {}

    @pytest.mark.asyncio
    async def test_from_config_file_applies_logging(self, tmp_path, monkeypatch):
        """Test that the logging section of a YAML config is applied."""
        applied = []
        monkeypatch.setattr(manager_module, "configure_logging", lambda **kw: applied.append(kw))
        log_file = tmp_path / "logs" / "transfer.log"
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "SOURCE:\n"
            "  url: https://source.example.com\n"
            "  apiKey: source-key-111\n"
            "TARGET:\n"
            "  url: https://target.example.com\n"
            "  apiKey: target-key-222\n"
            "logging:\n"
            "  level: warning\n"
            "  file_level: info\n"
            "  format: console\n"
            f"  file: {log_file}\n"
        )

        manager = TransferManager.from_config_file(config_file)

        assert applied == [
            {
                "level": "WARNING",
                "log_format": "console",
                "log_file": str(log_file),
                "file_level": "INFO",
            }
        ]
        assert manager.source.label == "SOURCE"
        await manager.close()

    def test_from_config_file_missing(self, tmp_path):
        """Test that a missing config file is a configuration error."""
        with pytest.raises(ConfigurationError):
            TransferManager.from_config_file(tmp_path / "absent.yaml")
