"""Name and tag based duplicate detection."""

from typing import Any

from n8n_transfer.models import workflow_tag_names
from n8n_transfer.plugins.base import Deduplicator


class StandardDeduplicator(Deduplicator):
    """A workflow is a duplicate when TARGET has one with the same name and tag set.

    Tag order is ignored; tags given as objects are compared by name.
    """

    def __init__(self, options: dict[str, Any] | None = None):
        super().__init__(
            "standard-deduplicator",
            "1.0.0",
            options,
            description="Exact name match plus identical tag set",
        )
        self._last_duplicate: dict[str, Any] | None = None

    def is_duplicate(self, candidate: dict[str, Any], existing: list[dict[str, Any]]) -> bool:
        self._last_reason = None
        self._last_duplicate = None

        if not isinstance(candidate, dict):
            self._last_reason = "Invalid workflow given for duplicate check"
            return False
        if not isinstance(existing, list):
            self._last_reason = "Invalid list of existing workflows"
            return False

        name = candidate.get("name")
        tags = workflow_tag_names(candidate)

        for other in existing:
            if not isinstance(other, dict) or other.get("name") != name:
                continue
            if workflow_tag_names(other) == tags:
                self._last_duplicate = other
                self._last_reason = (
                    f"Workflow '{name}' with tags {sorted(tags)} already exists on target"
                )
                return True

        return False

    def get_duplicate_workflow(self) -> dict[str, Any] | None:
        """Return the TARGET workflow matched by the last check."""
        return self._last_duplicate
