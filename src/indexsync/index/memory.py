"""
In-memory search index.

Implements SearchIndexClient with plain dicts behind a lock. Used by tests
and for local dry runs; ``reject`` makes selected document ids fail in bulk
upserts so partial-failure handling can be exercised.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Sequence
from typing import Any

from indexsync.core.errors import SearchIndexError
from indexsync.index.client import BulkResponse


class InMemoryIndex:
    """Thread-safe SearchIndexClient backed by dictionaries.

    Example:
        >>> index = InMemoryIndex()
        >>> index.create_index("executions", {}, {"properties": {}})
        >>> index.bulk_upsert("executions", [("a", {"success": True})]).errors
        False
        >>> index.count("executions")
        1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: dict[str, dict[str, dict[str, Any]]] = {}
        self.settings: dict[str, dict[str, Any]] = {}
        self.mappings: dict[str, dict[str, Any]] = {}
        self.bulk_calls: list[tuple[str, int]] = []
        self._rejected: set[str] = set()

    # ── Test hooks ──────────────────────────────────────────────────────

    def reject(self, *doc_ids: str) -> None:
        """Make bulk upserts report these ids as failed."""
        with self._lock:
            self._rejected.update(doc_ids)

    def documents(self, name: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._docs.get(name, {}))

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._docs.get(name, {}))

    # ── SearchIndexClient ───────────────────────────────────────────────

    def index_exists(self, name: str) -> bool:
        with self._lock:
            return name in self._docs

    def create_index(
        self, name: str, settings: dict[str, Any], mapping: dict[str, Any]
    ) -> None:
        with self._lock:
            if name in self._docs:
                raise SearchIndexError(f"Index {name} already exists").with_context(
                    index=name, http_status=400
                )
            self._docs[name] = {}
            self.settings[name] = copy.deepcopy(settings)
            self.mappings[name] = copy.deepcopy(mapping)

    def update_mapping(self, name: str, mapping: dict[str, Any]) -> None:
        with self._lock:
            self._require(name)
            current = self.mappings.setdefault(name, {})
            properties = current.setdefault("properties", {})
            properties.update(copy.deepcopy(mapping.get("properties", {})))

    def bulk_upsert(
        self, name: str, docs: Sequence[tuple[str, dict[str, Any]]]
    ) -> BulkResponse:
        with self._lock:
            self.bulk_calls.append((name, len(docs)))
            # Indexing into a missing index creates it, as Elasticsearch does.
            target = self._docs.setdefault(name, {})
            failed = []
            for doc_id, body in docs:
                if doc_id in self._rejected:
                    failed.append(doc_id)
                    continue
                target[doc_id] = copy.deepcopy(body)
        if failed:
            return BulkResponse(
                errors=True,
                failed_ids=tuple(failed),
                details={doc_id: {"type": "rejected"} for doc_id in failed},
            )
        return BulkResponse()

    def get_document(self, name: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._docs.get(name, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def index_document(self, name: str, doc_id: str, body: dict[str, Any]) -> None:
        with self._lock:
            self._docs.setdefault(name, {})[doc_id] = copy.deepcopy(body)

    def close(self) -> None:
        pass

    def _require(self, name: str) -> None:
        if name not in self._docs:
            raise SearchIndexError(f"No such index: {name}").with_context(
                index=name, http_status=404
            )
