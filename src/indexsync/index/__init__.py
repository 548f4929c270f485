"""Search index access and provisioning for indexsync."""

from indexsync.index.client import BulkResponse, ElasticsearchClient, SearchIndexClient
from indexsync.index.memory import InMemoryIndex
from indexsync.index.schema import (
    EXECUTIONS_INDEX,
    EXECUTIONS_META_INDEX,
    IndexSchemaManager,
    IndexSpec,
)

__all__ = [
    "BulkResponse",
    "ElasticsearchClient",
    "EXECUTIONS_INDEX",
    "EXECUTIONS_META_INDEX",
    "InMemoryIndex",
    "IndexSchemaManager",
    "IndexSpec",
    "SearchIndexClient",
]
