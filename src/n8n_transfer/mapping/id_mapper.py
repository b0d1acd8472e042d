"""
Workflow id mapping.

This module provides the IdMapper class, which records how SOURCE workflow
ids and names map to the ids the TARGET instance assigned during a transfer.
The ReferenceUpdater consults it to rewrite cross-workflow references.
"""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from n8n_transfer.client.exceptions import StateError
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)


class IdMapper:
    """
    Thread-safe lookup from SOURCE id / workflow name to TARGET id.

    Entries are only ever added during a run. Registering a name or old id a
    second time replaces the earlier TARGET id and logs a warning.

    Usage:
        mapper = IdMapper()
        mapper.register("abc", "Billing sync", "xyz")
        mapper.resolve("abc")                  # "xyz"
        mapper.resolve("zzz", "Billing sync")  # "xyz"
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._name_to_new_id: dict[str, str] = {}
        self._old_id_to_new_id: dict[str, str] = {}
        self._entries: list[dict[str, Any]] = []
        self._stats = {"lookups": 0, "hits": 0, "misses": 0}

    def register(self, old_id: Any, name: str | None, new_id: Any) -> None:
        """
        Record a transferred workflow.

        Args:
            old_id: Workflow id on SOURCE (may be None)
            name: Workflow name (may be None)
            new_id: Workflow id assigned by TARGET
        """
        if new_id is None:
            raise ValueError("new_id is required")
        new_id = str(new_id)

        with self._lock:
            if name:
                previous = self._name_to_new_id.get(name)
                if previous is not None and previous != new_id:
                    logger.warning(
                        "id_mapping_name_replaced", name=name, previous=previous, new_id=new_id
                    )
                self._name_to_new_id[name] = new_id
            if old_id is not None:
                self._old_id_to_new_id[str(old_id)] = new_id
            self._entries.append(
                {
                    "old_id": str(old_id) if old_id is not None else None,
                    "name": name,
                    "new_id": new_id,
                }
            )

        logger.debug("id_mapping_registered", old_id=old_id, name=name, new_id=new_id)

    def _lookup(self, table: dict[str, str], key: Any) -> str | None:
        with self._lock:
            self._stats["lookups"] += 1
            value = table.get(str(key)) if key is not None else None
            self._stats["hits" if value is not None else "misses"] += 1
            return value

    def get_id_by_name(self, name: str | None) -> str | None:
        """Return the TARGET id registered for a workflow name, or None."""
        if not name:
            return None
        return self._lookup(self._name_to_new_id, name)

    def get_id_by_old_id(self, old_id: Any) -> str | None:
        """Return the TARGET id registered for a SOURCE id, or None."""
        return self._lookup(self._old_id_to_new_id, old_id)

    def resolve(self, old_id: Any, cached_result_name: str | None = None) -> str | None:
        """
        Resolve a reference to its TARGET id.

        The name is tried first when given, then the old id.

        Args:
            old_id: SOURCE workflow id
            cached_result_name: Workflow name stored alongside the reference

        Returns:
            TARGET id, or None when neither key is known
        """
        if cached_result_name:
            new_id = self.get_id_by_name(cached_result_name)
            if new_id is not None:
                return new_id
        return self.get_id_by_old_id(old_id)

    def has_name(self, name: str) -> bool:
        with self._lock:
            return name in self._name_to_new_id

    def has_old_id(self, old_id: Any) -> bool:
        with self._lock:
            return str(old_id) in self._old_id_to_new_id

    def get_all_mappings(self) -> list[dict[str, Any]]:
        """Return every registered entry in registration order."""
        with self._lock:
            return [entry.copy() for entry in self._entries]

    def get_stats(self) -> dict[str, int]:
        """
        Get mapping statistics.

        Returns:
            Dictionary with mapping counts and lookup counters
        """
        with self._lock:
            return {
                "names": len(self._name_to_new_id),
                "old_ids": len(self._old_id_to_new_id),
                "entries": len(self._entries),
                **self._stats,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def to_dict(self) -> dict[str, Any]:
        """Serialize all entries for export."""
        with self._lock:
            return {
                "exported_at": datetime.now(UTC).isoformat(),
                "mappings": [entry.copy() for entry in self._entries],
            }

    def save(self, output_path: str | Path) -> None:
        """
        Export mappings to a JSON file.

        Args:
            output_path: Path to output JSON file

        Raises:
            StateError: If the file cannot be written
        """
        path = Path(output_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self.to_dict(), indent=2))
        except OSError as e:
            raise StateError(f"Failed to save id mappings to {path}: {e}") from e
        logger.info("id_mappings_saved", path=str(path), count=len(self))

    def load(self, input_path: str | Path) -> int:
        """
        Import mappings from a JSON file written by ``save``.

        Args:
            input_path: Path to JSON file

        Returns:
            Number of entries loaded

        Raises:
            StateError: If the file is missing or malformed
        """
        path = Path(input_path)
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise StateError(f"Failed to load id mappings from {path}: {e}") from e

        mappings = data.get("mappings") if isinstance(data, dict) else None
        if not isinstance(mappings, list):
            raise StateError(f"Invalid id mapping file: {path}")

        count = 0
        for entry in mappings:
            if isinstance(entry, dict) and entry.get("new_id") is not None:
                self.register(entry.get("old_id"), entry.get("name"), entry["new_id"])
                count += 1

        logger.info("id_mappings_loaded", path=str(path), count=count)
        return count
