"""Cross-workflow reference rewriting.

Nodes such as "Execute Workflow" point at other workflows by id. Once a
workflow is recreated on TARGET it gets a new id, so every such pointer has
to be rewritten using the IdMapper before the payload is sent.
"""

import copy
import threading
from typing import Any

from n8n_transfer.mapping.id_mapper import IdMapper
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)

MAX_DEPTH = 50


class ReferenceUpdater:
    """Rewrites embedded workflow references to their TARGET ids.

    Two reference shapes are recognised:

    * a structured reference, i.e. any mapping with a ``cachedResultName``
      key. It is resolved by name first, then by its ``value`` as an old id,
      and ``value`` is overwritten in place.
    * a bare string ``workflowId`` directly under a node's ``parameters``,
      resolved through ``IdMapper.resolve``.

    Unresolved references are counted and left untouched. The walk tracks the
    containers on the active recursion path by identity, so cyclic payloads
    terminate, and stops descending past ``MAX_DEPTH``.
    """

    def __init__(self, id_mapper: IdMapper, max_depth: int = MAX_DEPTH):
        """Initialize the updater.

        Args:
            id_mapper: Mapping consulted for every reference
            max_depth: Maximum nesting depth visited below a node
        """
        self.id_mapper = id_mapper
        self.max_depth = max_depth
        self._lock = threading.Lock()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "workflows_processed": 0,
            "nodes_processed": 0,
            "references_updated": 0,
            "references_failed": 0,
        }

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def update_workflow(self, workflow: dict[str, Any]) -> dict[str, Any]:
        """Return a deep copy of ``workflow`` with references rewritten.

        The input is never mutated.

        Args:
            workflow: Workflow payload

        Returns:
            Independent, rewritten copy
        """
        logger.debug("updating_references", workflow=workflow.get("name"))
        updated = copy.deepcopy(workflow)

        nodes = updated.get("nodes")
        if isinstance(nodes, list):
            for node in nodes:
                if isinstance(node, dict):
                    self.update_node(node)
                self._count("nodes_processed")

        self._count("workflows_processed")
        return updated

    def update_node(self, node: dict[str, Any]) -> None:
        """Rewrite references inside a single node, in place."""
        parameters = node.get("parameters")
        if isinstance(parameters, dict) and isinstance(parameters.get("workflowId"), str):
            old_id = parameters["workflowId"]
            new_id = self.id_mapper.resolve(old_id)
            if new_id is not None:
                parameters["workflowId"] = new_id
                self._count("references_updated")
                logger.debug("reference_updated", old_id=old_id, new_id=new_id)
            else:
                self._count("references_failed")
                logger.warning("reference_unresolved", node=node.get("name"), old_id=old_id)

        self.update_object_recursively(node)

    def update_reference(self, reference: dict[str, Any]) -> bool:
        """Resolve one structured reference and overwrite its ``value``.

        Returns:
            True when the reference was rewritten
        """
        old_id = reference.get("value")
        cached_name = reference.get("cachedResultName")

        new_id = self.id_mapper.get_id_by_name(cached_name) if cached_name else None
        if new_id is None and old_id not in (None, ""):
            new_id = self.id_mapper.get_id_by_old_id(old_id)

        if new_id is None:
            self._count("references_failed")
            logger.warning("reference_unresolved", name=cached_name, old_id=old_id)
            return False

        reference["value"] = new_id
        self._count("references_updated")
        logger.debug("reference_updated", name=cached_name, old_id=old_id, new_id=new_id)
        return True

    def update_object_recursively(
        self, obj: Any, depth: int = 0, active: set[int] | None = None
    ) -> None:
        """Walk ``obj`` depth-first and rewrite every structured reference in place.

        Args:
            obj: Mapping, list or scalar
            depth: Current depth
            active: Identities of the containers on the current recursion path
        """
        if not isinstance(obj, (dict, list)):
            return

        if depth > self.max_depth:
            logger.warning("reference_walk_max_depth", max_depth=self.max_depth)
            return

        if active is None:
            active = set()
        if id(obj) in active:
            logger.debug("reference_walk_cycle", depth=depth)
            return

        active.add(id(obj))
        try:
            if isinstance(obj, list):
                for item in obj:
                    self.update_object_recursively(item, depth + 1, active)
                return

            if "cachedResultName" in obj:
                self.update_reference(obj)

            for value in obj.values():
                if isinstance(value, (dict, list)):
                    self.update_object_recursively(value, depth + 1, active)
        finally:
            active.discard(id(obj))

    def update_batch(self, workflows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Rewrite a sequence of workflows.

        Args:
            workflows: Workflow payloads

        Returns:
            Rewritten copies, in input order
        """
        updated = [self.update_workflow(workflow) for workflow in workflows]
        stats = self.get_statistics()
        logger.info("references_updated", **stats)
        return updated

    def validate_references(self, workflow: dict[str, Any]) -> dict[str, Any]:
        """Compare every named reference with the id the IdMapper expects.

        Read-only; intended for post-transfer auditing.

        Args:
            workflow: Workflow payload (typically as stored on TARGET)

        Returns:
            ``{"valid": bool, "issues": [...]}``
        """
        issues: list[dict[str, Any]] = []
        active: set[int] = set()

        def check(obj: Any, path: str, depth: int) -> None:
            if not isinstance(obj, (dict, list)) or depth > self.max_depth or id(obj) in active:
                return
            active.add(id(obj))
            try:
                if isinstance(obj, list):
                    for index, item in enumerate(obj):
                        check(item, f"{path}[{index}]", depth + 1)
                    return

                name = obj.get("cachedResultName")
                current = obj.get("value")
                if name and current:
                    expected = self.id_mapper.get_id_by_name(name)
                    if expected is not None and str(current) != expected:
                        issues.append(
                            {
                                "path": path,
                                "name": name,
                                "current_id": current,
                                "expected_id": expected,
                                "message": "Reference does not match the expected mapping",
                            }
                        )

                for key, value in obj.items():
                    check(value, f"{path}.{key}" if path else str(key), depth + 1)
            finally:
                active.discard(id(obj))

        check(workflow, "", 0)
        return {"valid": not issues, "issues": issues}

    def get_statistics(self) -> dict[str, Any]:
        """Return counters plus the derived success rate."""
        with self._lock:
            stats: dict[str, Any] = dict(self._stats)
        attempted = stats["references_updated"] + stats["references_failed"]
        if attempted:
            stats["success_rate"] = f"{stats['references_updated'] / attempted * 100:.2f}%"
        else:
            stats["success_rate"] = "0%"
        return stats

    def reset_statistics(self) -> None:
        with self._lock:
            self._stats = self._empty_stats()
