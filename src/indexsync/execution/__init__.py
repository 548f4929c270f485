"""Execution indexing: records, the per-partition indexer and the sync cycle."""

from indexsync.execution.cycle import CycleResult, CycleStatus, SyncCycle
from indexsync.execution.indexer import (
    IncrementalIndexer,
    PartitionOutcome,
    PartitionState,
    StopReason,
)
from indexsync.execution.models import (
    ExecutionRecord,
    ExecutionStatus,
    IndexDocument,
    ParsedExecutionName,
    Partition,
    execution_to_document,
    parse_execution_name,
)

__all__ = [
    "CycleResult",
    "CycleStatus",
    "ExecutionRecord",
    "ExecutionStatus",
    "IncrementalIndexer",
    "IndexDocument",
    "ParsedExecutionName",
    "Partition",
    "PartitionOutcome",
    "PartitionState",
    "StopReason",
    "SyncCycle",
    "execution_to_document",
    "parse_execution_name",
]
