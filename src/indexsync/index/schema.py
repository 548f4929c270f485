"""
Index provisioning.

The sync cycle starts by making sure both indexes exist with the expected
mappings. ``IndexSchemaManager.ensure`` creates a missing index with its
settings and mapping, or applies the mapping to an existing one as an
additive update. Shard and replica counts cannot change after creation,
so settings are only ever sent on create.

Manifesto:
    A cycle that writes into an index with the wrong mapping corrupts data
    silently; a cycle that stops on a provisioning error only delays it.
    Every rejection here is an IndexProvisioningError and ends the cycle
    before anything is read from the source.

Architecture:
    ::

        ensure(spec)
          │
          ├── index_exists(name)? ──yes──► update_mapping(name, mapping)
          │                        no
          └──────────────────────────────► create_index(name, settings, mapping)

        SearchIndexError (any cause) ──► IndexProvisioningError

    Built-in specs:
        EXECUTIONS_INDEX       "executions"       5 shards, _source off,
                                                  stored strict fields
        EXECUTIONS_META_INDEX  "executions-meta"  1 shard, last_indexed_date

Examples:
    >>> manager = IndexSchemaManager(ElasticsearchClient("http://es:9200"))
    >>> manager.ensure_all(EXECUTIONS_INDEX, EXECUTIONS_META_INDEX)

    Index names come from settings; rename a built-in spec with ``named()``:

    >>> manager.ensure(EXECUTIONS_INDEX.named("executions-staging"))

Tags:
    elasticsearch, index, mapping, provisioning, schema, indexsync
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any

from indexsync.core.errors import IndexProvisioningError, SearchIndexError
from indexsync.core.logging import get_logger
from indexsync.index.client import SearchIndexClient

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IndexSpec:
    """Name, creation settings and mapping of one index."""

    name: str
    settings: dict[str, Any] = field(default_factory=dict)
    mapping: dict[str, Any] = field(default_factory=dict)

    def named(self, name: str) -> IndexSpec:
        return replace(self, name=name)


_KEYWORD = {"type": "keyword", "store": True}
_DATE = {"type": "date", "store": True}
_LONG = {"type": "long", "store": True}
_BOOLEAN = {"type": "boolean", "store": True}


EXECUTIONS_INDEX = IndexSpec(
    name="executions",
    settings={"index": {"number_of_shards": 5, "number_of_replicas": 1}},
    mapping={
        "dynamic": "strict",
        "_source": {"enabled": False},
        "properties": {
            "workflow_id": _KEYWORD,
            "collection_id": _KEYWORD,
            "granule_id": _KEYWORD,
            "start_date": _DATE,
            "stop_date": _DATE,
            "elapsed_ms": _LONG,
            "success": _BOOLEAN,
        },
    },
)

EXECUTIONS_META_INDEX = IndexSpec(
    name="executions-meta",
    settings={"index": {"number_of_shards": 1, "number_of_replicas": 1}},
    mapping={
        "dynamic": "strict",
        "_source": {"enabled": True},
        "properties": {"last_indexed_date": _DATE},
    },
)


class IndexSchemaManager:
    """Creates or updates indexes through a SearchIndexClient."""

    def __init__(self, client: SearchIndexClient) -> None:
        self.client = client

    def ensure(self, spec: IndexSpec) -> bool:
        """Create the index or update its mapping.

        Returns:
            True if the index was created, False if it already existed

        Raises:
            IndexProvisioningError: The index could not be checked, created
                or updated.
        """
        try:
            if self.client.index_exists(spec.name):
                self.client.update_mapping(spec.name, _updatable(spec.mapping))
                logger.debug("index_mapping_ensured", index=spec.name)
                return False
            self.client.create_index(
                spec.name, copy.deepcopy(spec.settings), copy.deepcopy(spec.mapping)
            )
        except SearchIndexError as exc:
            raise IndexProvisioningError(
                f"Could not provision index {spec.name}: {exc.message}",
                context=exc.context,
                cause=exc,
            ).with_context(index=spec.name) from exc

        logger.info("index_provisioned", index=spec.name)
        return True

    def ensure_all(self, *specs: IndexSpec) -> list[str]:
        """Ensure each spec in order; returns the names that were created."""
        return [spec.name for spec in specs if self.ensure(spec)]


def _updatable(mapping: dict[str, Any]) -> dict[str, Any]:
    # _source is fixed at creation.
    return {
        key: copy.deepcopy(value) for key, value in mapping.items() if key != "_source"
    }


__all__ = [
    "EXECUTIONS_INDEX",
    "EXECUTIONS_META_INDEX",
    "IndexSchemaManager",
    "IndexSpec",
]
