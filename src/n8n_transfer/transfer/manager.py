"""Transfer manager orchestrating a SOURCE to TARGET workflow run.

This module provides the TransferManager, which runs the full pipeline:
connectivity checks, plugin resolution, SOURCE/TARGET enumeration, filtering,
then per-workflow deduplication, credential check, validation and creation
on TARGET with bounded parallelism, and finally reporting.
"""

import asyncio
import inspect
import threading
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from n8n_transfer.client.exceptions import (
    APIError,
    ConnectivityError,
    PluginNotFoundError,
    TransferError,
)
from n8n_transfer.client.http_client import ResilientHttpClient
from n8n_transfer.config import InstanceConfig, TransferConfig, load_config_from_yaml
from n8n_transfer.mapping.id_mapper import IdMapper
from n8n_transfer.mapping.reference_updater import ReferenceUpdater
from n8n_transfer.models import (
    ReportFile,
    RunStatus,
    TransferErrorEntry,
    TransferOptions,
    TransferProgress,
    TransferState,
    TransferStatus,
    TransferSummary,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
    WorkflowOutcome,
    workflow_has_credentials,
)
from n8n_transfer.plugins.base import BasePlugin, Deduplicator, PluginType, Reporter, Validator
from n8n_transfer.plugins.registry import PluginRegistry
from n8n_transfer.transfer.filters import apply_filters
from n8n_transfer.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_create_payload(workflow: dict[str, Any]) -> dict[str, Any]:
    """Reduce a SOURCE workflow to the body accepted by ``POST /workflows``.

    Args:
        workflow: Workflow payload (already rewritten)

    Returns:
        ``{name, nodes, connections, settings}`` plus ``tags``/``active`` when present
    """
    payload: dict[str, Any] = {
        "name": workflow.get("name"),
        "nodes": workflow.get("nodes") or [],
        "connections": workflow.get("connections") or {},
        "settings": workflow.get("settings") or {},
    }
    for key in ("tags", "active"):
        if workflow.get(key) is not None:
            payload[key] = workflow[key]
    return payload


class TransferManager:
    """Coordinates a transfer run between two n8n instances.

    One logical run at a time. Progress counters are updated under a lock
    after each workflow, so ``get_progress`` may be called from any thread.
    Cancellation is cooperative: workflows already in flight finish, no new
    workflow starts.
    """

    def __init__(
        self,
        config: TransferConfig | dict[str, Any],
        source_client: ResilientHttpClient | None = None,
        target_client: ResilientHttpClient | None = None,
        registry: PluginRegistry | None = None,
        id_mapper: IdMapper | None = None,
    ):
        """Initialize the manager.

        Args:
            config: Configuration object or ``{SOURCE: {url, apiKey}, TARGET: {...}}``
            source_client: Optional pre-built SOURCE client
            target_client: Optional pre-built TARGET client
            registry: Plugin registry (defaults to one holding the bundled plugins)
            id_mapper: Id mapping shared with other components

        Raises:
            ConfigurationError: If SOURCE or TARGET lacks a url or API key
        """
        self.config = TransferConfig.from_mapping(config)

        if self.config.source.url == self.config.target.url:
            logger.warning(
                "source_equals_target",
                url=self.config.source.url,
                message="SOURCE and TARGET point at the same instance",
            )

        self.source = source_client or self._build_client(self.config.source, "SOURCE")
        self.target = target_client or self._build_client(self.config.target, "TARGET")

        report_options = {"output_dir": self.config.reports.output_dir}
        self.registry = registry or PluginRegistry.with_builtins(
            {"json-reporter": report_options, "markdown-reporter": report_options}
        )
        self.id_mapper = id_mapper or IdMapper()
        self.reference_updater = ReferenceUpdater(self.id_mapper)

        self._progress = TransferProgress()
        self._progress_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._running = False

        logger.info(
            "transfer_manager_initialized",
            source=self.config.source.url,
            target=self.config.target.url,
        )

    @classmethod
    def from_config_file(cls, config_path: str | Path, **kwargs: Any) -> "TransferManager":
        """Build a manager from a YAML file and apply its logging section.

        Args:
            config_path: Path to the YAML configuration
            **kwargs: Passed through to the constructor

        Returns:
            Manager with clients built from the file

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        config = load_config_from_yaml(config_path)
        configure_logging(
            level=config.logging.level,
            log_format=config.logging.format,
            log_file=config.logging.file,
            file_level=config.logging.file_level,
        )
        logger.debug("config_loaded", path=str(config_path), log_level=config.logging.level)
        return cls(config, **kwargs)

    @staticmethod
    def _build_client(instance: InstanceConfig, label: str) -> ResilientHttpClient:
        return ResilientHttpClient(
            base_url=instance.url,
            api_key=instance.api_key,
            max_retries=instance.max_retries,
            timeout=instance.timeout,
            max_requests_per_second=instance.rate_limit,
            verify_ssl=instance.verify_ssl,
            label=label,
        )

    # Plugins

    def register_plugin(self, plugin: BasePlugin) -> None:
        """Register a plugin; registry errors propagate unchanged."""
        self.registry.register(plugin)

    def get_plugin_registry(self) -> PluginRegistry:
        return self.registry

    def _resolve_plugin(self, name: str, plugin_type: PluginType) -> Any:
        plugin = self.registry.get(name, plugin_type)
        if plugin is not None and not plugin.is_enabled():
            logger.debug("plugin_enabled_for_run", name=plugin.name, type=plugin_type.value)
            plugin.enable()
        return plugin

    def _resolve_optional(self, names: list[str], plugin_type: PluginType) -> list[Any]:
        resolved = []
        for name in names:
            plugin = self._resolve_plugin(name, plugin_type)
            if plugin is None:
                logger.warning("plugin_not_found", name=name, type=plugin_type.value)
                continue
            resolved.append(plugin)
        return resolved

    def _resolve_plugins(
        self, options: TransferOptions
    ) -> tuple[Deduplicator, list[Validator], list[Reporter]]:
        deduplicator = self._resolve_plugin(options.deduplicator, PluginType.DEDUPLICATOR)
        if deduplicator is None:
            raise PluginNotFoundError(f"Deduplicator '{options.deduplicator}' is not registered")

        validators = self._resolve_optional(options.validators, PluginType.VALIDATOR)
        reporters = self._resolve_optional(options.reporters, PluginType.REPORTER)

        logger.info(
            "plugins_resolved",
            deduplicator=deduplicator.name,
            validators=[v.name for v in validators],
            reporters=[r.name for r in reporters],
        )
        return deduplicator, validators, reporters

    # Progress and cancellation

    def get_progress(self) -> TransferProgress:
        """Return a snapshot of the current run's progress."""
        with self._progress_lock:
            return self._progress.model_copy()

    def _update_progress(self, **changes: Any) -> None:
        with self._progress_lock:
            self._progress = self._progress.model_copy(update=changes)

    def _record(self, state: TransferState) -> None:
        with self._progress_lock:
            progress = self._progress
            progress.processed += 1
            if state.status == TransferStatus.TRANSFERRED:
                progress.transferred += 1
            elif state.status == TransferStatus.SKIPPED:
                progress.skipped += 1
            elif state.status == TransferStatus.FAILED:
                progress.failed += 1
            if progress.total:
                progress.percentage = round(progress.processed / progress.total * 100)

    def cancel(self) -> bool:
        """Request cancellation of the running transfer.

        Returns:
            False when no transfer is running, True otherwise
        """
        if not self._running:
            return False
        self._cancel_event.set()
        logger.info("transfer_cancel_requested")
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    # Pipeline

    async def _check_connectivity(self, include_target: bool = True) -> None:
        checks = [("SOURCE", self.source)]
        if include_target:
            checks.append(("TARGET", self.target))

        for label, client in checks:
            result = await client.test_connection()
            if not result.success:
                logger.error(
                    "connectivity_check_failed",
                    instance=label,
                    error=result.error,
                    suggestion=result.suggestion,
                )
                raise ConnectivityError(
                    f"{label} connection failed: {result.error}", suggestion=result.suggestion
                )
            logger.info("connectivity_check_passed", instance=label)

    @staticmethod
    def _run_validators(
        validators: list[Validator], workflow: dict[str, Any], stop_on_invalid: bool = True
    ) -> list[tuple[str, ValidationResult]]:
        results = []
        for validator in validators:
            try:
                raw = validator.validate(workflow)
                result = (
                    raw if isinstance(raw, ValidationResult) else ValidationResult.model_validate(raw)
                )
            except Exception as e:
                logger.error(
                    "validator_error", validator=validator.name, workflow=workflow.get("name"), error=str(e)
                )
                result = ValidationResult(
                    valid=False, errors=[f"Validator '{validator.name}' failed: {e}"]
                )
            results.append((validator.name, result))
            if stop_on_invalid and not result.valid:
                break
        return results

    async def _process_workflow(
        self,
        workflow: dict[str, Any],
        target_snapshot: list[dict[str, Any]],
        deduplicator: Deduplicator,
        validators: list[Validator],
        options: TransferOptions,
    ) -> TransferState:
        """Run one workflow through dedup, credential check, validation and create."""
        state = TransferState(
            workflow=workflow, source=self.config.source.url, target=self.config.target.url
        )

        try:
            if deduplicator.is_duplicate(workflow, target_snapshot):
                state.status = TransferStatus.SKIPPED
                state.duplicate = True
                state.reason = deduplicator.get_reason()
                logger.info("workflow_skipped_duplicate", name=state.name, reason=state.reason)
                return state

            if options.skip_credentials and workflow_has_credentials(workflow):
                state.status = TransferStatus.SKIPPED
                state.reason = "Workflow uses credentials"
                logger.info("workflow_skipped_credentials", name=state.name)
                return state

            results = self._run_validators(validators, workflow)
            state.validation = [result for _, result in results]
            errors = [error for _, result in results if not result.valid for error in result.errors]
            if any(not result.valid for _, result in results):
                state.status = TransferStatus.SKIPPED
                state.reason = "; ".join(errors) or "Validation failed"
                logger.warning("workflow_skipped_invalid", name=state.name, reason=state.reason)
                return state

            if options.dry_run:
                state.status = TransferStatus.TRANSFERRED
                state.simulated = True
                logger.info("workflow_transfer_simulated", name=state.name)
                return state

            state.status = TransferStatus.TRANSFERRING
            payload = build_create_payload(self.reference_updater.update_workflow(workflow))
            created = await self.target.create_workflow(payload)

            new_id = created.get("id") if isinstance(created, dict) else None
            if new_id is None:
                raise APIError("TARGET response did not include a workflow id", response=created)

            self.id_mapper.register(state.source_id, state.name, new_id)
            state.target_id = str(new_id)
            state.status = TransferStatus.TRANSFERRED
            logger.info(
                "workflow_transferred",
                name=state.name,
                source_id=state.source_id,
                target_id=state.target_id,
            )

        except TransferError as e:
            state.status = TransferStatus.FAILED
            state.error = str(e)
            state.error_code = e.code
            logger.error("workflow_transfer_failed", name=state.name, error=str(e), code=e.code)
        except Exception as e:
            state.status = TransferStatus.FAILED
            state.error = str(e)
            state.error_code = type(e).__name__
            logger.error(
                "workflow_transfer_failed", name=state.name, error=str(e), exc_info=True
            )

        return state

    async def _process_all(
        self,
        workflows: list[dict[str, Any]],
        target_snapshot: list[dict[str, Any]],
        deduplicator: Deduplicator,
        validators: list[Validator],
        options: TransferOptions,
    ) -> list[TransferState]:
        """Process workflows with at most ``options.parallelism`` in flight.

        Returns:
            States of the workflows that were started, in SOURCE order
        """
        semaphore = asyncio.Semaphore(options.parallelism)

        async def process_with_semaphore(workflow: dict[str, Any]) -> TransferState | None:
            async with semaphore:
                if self._cancel_event.is_set():
                    return None
                state = await self._process_workflow(
                    workflow, target_snapshot, deduplicator, validators, options
                )
                self._record(state)
                return state

        tasks = [process_with_semaphore(workflow) for workflow in workflows]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        states = []
        for workflow, result in zip(workflows, results):
            if isinstance(result, BaseException):
                logger.error("workflow_task_error", name=workflow.get("name"), error=str(result))
                state = TransferState(
                    workflow=workflow,
                    status=TransferStatus.FAILED,
                    error=str(result),
                    error_code=type(result).__name__,
                )
                self._record(state)
                states.append(state)
            elif result is not None:
                states.append(result)
        return states

    @staticmethod
    def _fill_summary(summary: TransferSummary, states: list[TransferState]) -> None:
        for state in states:
            summary.processed += 1
            if state.status == TransferStatus.TRANSFERRED:
                summary.transferred += 1
            elif state.status == TransferStatus.SKIPPED:
                summary.skipped += 1
                if state.duplicate:
                    summary.duplicates += 1
            elif state.status == TransferStatus.FAILED:
                summary.failed += 1
                summary.errors.append(
                    TransferErrorEntry(
                        workflow=state.name, error=state.error or "", code=state.error_code
                    )
                )
            summary.workflows.append(
                WorkflowOutcome(
                    name=state.name,
                    source_id=state.source_id,
                    target_id=state.target_id,
                    status=state.status,
                    reason=state.reason or state.error,
                    simulated=state.simulated,
                )
            )

    async def _generate_reports(
        self, reporters: list[Reporter], summary: TransferSummary
    ) -> list[ReportFile]:
        reports = []
        for reporter in reporters:
            try:
                result = reporter.generate(summary.model_copy(deep=True))
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.error("reporter_failed", reporter=reporter.name, error=str(e))
                continue
            reports.append(
                ReportFile(
                    reporter=reporter.name,
                    path=str(result),
                    format=getattr(reporter, "report_format", "unknown"),
                )
            )
        return reports

    def _save_id_mappings(self) -> None:
        path = self.config.reports.id_mapping_file
        if not path:
            return
        try:
            self.id_mapper.save(path)
        except TransferError as e:
            logger.error("id_mapping_export_failed", path=path, error=str(e))

    async def transfer(
        self, options: TransferOptions | dict[str, Any] | None = None
    ) -> TransferSummary:
        """Transfer SOURCE workflows to TARGET.

        Args:
            options: Transfer options (defaults to the configured defaults)

        Returns:
            TransferSummary of the run, also when every workflow failed

        Raises:
            ConfigurationError: If the options are invalid
            ConnectivityError: If SOURCE or TARGET cannot be reached
            PluginNotFoundError: If the deduplicator is not registered
            TransferError: If a transfer is already running or listing fails
        """
        options = TransferOptions.parse(options if options is not None else self.config.defaults)
        if self._running:
            raise TransferError("A transfer is already running")

        self._running = True
        self._cancel_event.clear()
        self.reference_updater.reset_statistics()
        self._update_progress(**TransferProgress(status=RunStatus.RUNNING).model_dump())

        started_at = datetime.now(UTC)
        start = time.monotonic()
        summary = TransferSummary(
            dry_run=options.dry_run,
            source_url=self.config.source.url,
            target_url=self.config.target.url,
            started_at=started_at,
        )

        logger.info(
            "transfer_started",
            dry_run=options.dry_run,
            parallelism=options.parallelism,
            skip_credentials=options.skip_credentials,
        )

        try:
            await self._check_connectivity(include_target=True)
            deduplicator, validators, reporters = self._resolve_plugins(options)

            source_workflows = await self.source.get_workflows()
            target_workflows = await self.target.get_workflows()
            candidates = apply_filters(source_workflows, options.filters)

            summary.total = len(candidates)
            self._update_progress(total=len(candidates))
            logger.info(
                "workflows_selected",
                source=len(source_workflows),
                target=len(target_workflows),
                selected=len(candidates),
            )

            if candidates:
                states = await self._process_all(
                    candidates, target_workflows, deduplicator, validators, options
                )
                self._fill_summary(summary, states)
            else:
                logger.warning("no_workflows_to_transfer", filters=options.filters.model_dump())

            summary.cancelled = self._cancel_event.is_set()
            summary.duration = int((time.monotonic() - start) * 1000)
            summary.finished_at = datetime.now(UTC)
            summary.reference_stats = self.reference_updater.get_statistics()
            summary.reports = await self._generate_reports(reporters, summary)

            if not options.dry_run:
                self._save_id_mappings()

            status = RunStatus.CANCELLED if summary.cancelled else RunStatus.COMPLETED
            self._update_progress(status=status)

            logger.info(
                "transfer_completed",
                status=status.value,
                total=summary.total,
                transferred=summary.transferred,
                skipped=summary.skipped,
                failed=summary.failed,
                duration_ms=summary.duration,
            )
            return summary

        except Exception:
            self._update_progress(status=RunStatus.FAILED)
            logger.error("transfer_aborted", exc_info=True)
            raise
        finally:
            self._running = False

    async def validate(
        self, options: TransferOptions | dict[str, Any] | None = None
    ) -> ValidationReport:
        """Validate SOURCE workflows without contacting TARGET.

        Args:
            options: Options; only ``filters`` and ``validators`` are used

        Returns:
            ValidationReport with per-workflow issues

        Raises:
            ConnectivityError: If SOURCE cannot be reached
            PluginNotFoundError: If none of the requested validators is registered
        """
        options = TransferOptions.parse(options if options is not None else self.config.defaults)

        await self._check_connectivity(include_target=False)

        validators = self._resolve_optional(options.validators, PluginType.VALIDATOR)
        if not validators:
            raise PluginNotFoundError(
                f"No validator could be resolved from: {', '.join(options.validators) or 'none'}"
            )

        workflows = apply_filters(await self.source.get_workflows(), options.filters)
        report = ValidationReport(total=len(workflows), validators=[v.name for v in validators])

        for workflow in workflows:
            results = self._run_validators(validators, workflow, stop_on_invalid=False)
            errors = [error for _, result in results for error in result.errors]
            warnings = [warning for _, result in results for warning in result.warnings]
            valid = all(result.valid for _, result in results)

            if valid:
                report.valid += 1
            else:
                report.invalid += 1
            report.errors += len(errors)
            report.warnings += len(warnings)

            if errors or warnings:
                source_id = workflow.get("id")
                report.issues.append(
                    ValidationIssue(
                        workflow=str(workflow.get("name") or "unnamed"),
                        source_id=str(source_id) if source_id is not None else None,
                        errors=errors,
                        warnings=warnings,
                    )
                )

        logger.info(
            "validation_completed",
            total=report.total,
            valid=report.valid,
            invalid=report.invalid,
            errors=report.errors,
            warnings=report.warnings,
        )
        return report

    async def close(self) -> None:
        """Close both HTTP clients."""
        await self.source.close()
        await self.target.close()

    async def __aenter__(self) -> "TransferManager":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
