"""Structural integrity checks for n8n workflows."""

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from n8n_transfer.models import ValidationResult, Workflow
from n8n_transfer.plugins.base import Validator
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)


def _iter_connections(connections: dict[str, Any]) -> Iterator[tuple[str, Any]]:
    """Yield (source node, connection) pairs from an n8n connections mapping."""
    for source, by_type in connections.items():
        if not isinstance(by_type, dict):
            continue
        for outputs in by_type.values():
            if not isinstance(outputs, list):
                continue
            for output in outputs:
                if not isinstance(output, list):
                    continue
                for connection in output:
                    yield source, connection


class IntegrityValidator(Validator):
    """Validates workflow structure before it is sent to TARGET.

    Errors (block the transfer):
    - the payload does not match the Workflow model (no nodes, bad node shape)
    - a connection references a node that does not exist
    - the connection graph contains a cycle (unless ``allow_cycles`` is set)

    Warnings:
    - missing connections, malformed connection entries
    - empty credential bags, credentials without id or name
    - disabled nodes, orphaned nodes

    n8n keys connections by node name; node ids are accepted as well.
    """

    def __init__(self, options: dict[str, Any] | None = None):
        super().__init__(
            "integrity-validator",
            "1.0.0",
            {"allow_cycles": False, **(options or {})},
            description="Structural integrity of nodes, connections and credentials",
        )

    def validate(self, workflow: dict[str, Any]) -> ValidationResult:
        """Validate a workflow payload.

        Args:
            workflow: Workflow payload

        Returns:
            ValidationResult with errors, warnings and node/connection counts
        """
        errors: list[str] = []
        warnings: list[str] = []
        nodes = workflow.get("nodes") if isinstance(workflow, dict) else None
        metadata: dict[str, Any] = {
            "workflow_name": workflow.get("name") if isinstance(workflow, dict) else None,
            "node_count": len(nodes) if isinstance(nodes, list) else 0,
            "connection_count": 0,
            "credential_node_count": 0,
            "orphaned_node_count": 0,
            "circular_dependencies": False,
            "validated_at": datetime.now(UTC).isoformat(),
        }

        try:
            Workflow.model_validate(workflow)
        except ValidationError as e:
            for err in e.errors():
                location = ".".join(str(p) for p in err["loc"]) or "workflow"
                errors.append(f"{location}: {err['msg']}")
            return ValidationResult(valid=False, errors=errors, warnings=warnings, metadata=metadata)

        connections = workflow.get("connections")
        if not isinstance(connections, dict):
            warnings.append("Workflow has no connections defined")
            connections = {}

        known = set()
        for node in nodes:
            known.add(node.get("name"))
            if node.get("id"):
                known.add(node["id"])

        metadata["connection_count"] = self._check_connections(connections, known, errors, warnings)
        metadata["credential_node_count"] = self._check_credentials(nodes, warnings)
        metadata["orphaned_node_count"] = self._check_orphans(nodes, connections, warnings)

        cycle = self._find_cycle(connections)
        if cycle:
            metadata["circular_dependencies"] = True
            message = f"Circular dependency detected: {' -> '.join(cycle)}"
            if self.get_option("allow_cycles"):
                warnings.append(message)
            else:
                errors.append(message)

        result = ValidationResult(
            valid=not errors, errors=errors, warnings=warnings, metadata=metadata
        )
        logger.debug(
            "workflow_validated",
            workflow=workflow.get("name"),
            valid=result.valid,
            errors=len(errors),
            warnings=len(warnings),
        )
        return result

    @staticmethod
    def _check_connections(
        connections: dict[str, Any], known: set[Any], errors: list[str], warnings: list[str]
    ) -> int:
        count = 0
        for source, by_type in connections.items():
            if source not in known:
                errors.append(f'Connection source "{source}" references a missing node')
                continue
            if not isinstance(by_type, dict):
                warnings.append(f'Connections of node "{source}" are not a mapping')
                continue
            for connection_type, outputs in by_type.items():
                if not isinstance(outputs, list):
                    warnings.append(
                        f'Connection type "{connection_type}" of node "{source}" is not a list'
                    )

        for source, connection in _iter_connections(connections):
            if source not in known:
                continue
            if not isinstance(connection, dict):
                warnings.append(f'Invalid connection entry on node "{source}"')
                continue
            target = connection.get("node")
            if not target:
                errors.append(f'Connection on node "{source}" has no target node')
            elif target not in known:
                errors.append(f'Connection from "{source}" to "{target}" references a missing node')
            else:
                count += 1
        return count

    @staticmethod
    def _check_credentials(nodes: list[dict[str, Any]], warnings: list[str]) -> int:
        count = 0
        for node in nodes:
            label = node.get("name")
            credentials = node.get("credentials")
            if isinstance(credentials, dict):
                if not credentials:
                    warnings.append(f'Node "{label}" has an empty credentials mapping')
                else:
                    count += 1
                    for cred_type, cred in credentials.items():
                        if not isinstance(cred, dict):
                            warnings.append(f'Node "{label}" has an invalid credential "{cred_type}"')
                        elif not cred.get("id") and not cred.get("name"):
                            warnings.append(
                                f'Node "{label}" has credential "{cred_type}" without id or name'
                            )
            if node.get("disabled") is True:
                warnings.append(f'Node "{label}" is disabled')
        return count

    @staticmethod
    def _check_orphans(
        nodes: list[dict[str, Any]], connections: dict[str, Any], warnings: list[str]
    ) -> int:
        if len(nodes) <= 1:
            return 0
        if not connections:
            warnings.append(f"Workflow has {len(nodes)} nodes but no connections")
            return len(nodes)

        linked = set(connections)
        for _, connection in _iter_connections(connections):
            if isinstance(connection, dict) and connection.get("node"):
                linked.add(connection["node"])

        orphaned = 0
        for node in nodes:
            if node.get("name") not in linked and node.get("id") not in linked:
                warnings.append(f'Node "{node.get("name")}" has no incoming or outgoing connections')
                orphaned += 1
        return orphaned

    @staticmethod
    def _find_cycle(connections: dict[str, Any]) -> list[str] | None:
        graph: dict[str, list[str]] = {}
        for source, connection in _iter_connections(connections):
            if isinstance(connection, dict) and connection.get("node"):
                graph.setdefault(source, []).append(connection["node"])

        visited: set[str] = set()
        on_path: list[str] = []

        def dfs(node: str) -> list[str] | None:
            visited.add(node)
            on_path.append(node)
            for neighbour in graph.get(node, []):
                if neighbour in on_path:
                    return on_path[on_path.index(neighbour) :] + [neighbour]
                if neighbour not in visited:
                    found = dfs(neighbour)
                    if found:
                        return found
            on_path.pop()
            return None

        for start in list(graph):
            if start not in visited:
                found = dfs(start)
                if found:
                    return found
        return None
