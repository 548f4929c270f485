"""
Incremental per-partition execution indexer.

Walks one partition (workflow) of the execution source from the most
recent execution backwards, upserting terminal executions into the search
index page by page, and stops as soon as it has provably caught up with
what previous cycles indexed.

Manifesto:
    Never re-scan. The source returns executions most recent first, so a
    partition is caught up the moment a page contains an execution that
    stopped before the watermark. The overlap window (five minutes by
    default) re-reads a little of the previous cycle so executions the
    source reported late are not missed. Re-reading is harmless because the
    document id is the execution name.

    - **At-least-once:** A document may be written in several cycles, never lost
    - **Bounded:** ``max_records`` caps a first run or a long outage
    - **Isolated:** A failure ends this partition only, never its siblings
    - **Read-only watermark:** The indexer reads it; only the cycle writes it

Architecture:
    ::

        index_partition(partition, last_indexed_date, max_records)
              │
              ▼  state = PAGING
        ┌──────────────────────────────────────────────────────────────┐
        │ page = reader.next_page()                                    │
        │ batch = [doc(r) for r in page if r.status != RUNNING]        │
        │                                                              │
        │ batch empty ───────────────────────────► EXHAUSTED/EMPTY_PAGE │
        │ bulk_upsert(batch) fails ───────────────► FAILED/ERROR        │
        │ total += len(batch)                                          │
        │ total >= max_records ───────────────────► CAPPED/CAP_REACHED  │
        │ page.next_cursor is None ───────────────► EXHAUSTED/NO_CURSOR │
        │ any stop_time < watermark - overlap ────► EXHAUSTED/          │
        │                                           REACHED_WATERMARK  │
        │ otherwise loop                                               │
        └──────────────────────────────────────────────────────────────┘
              │
              ▼
        PartitionOutcome(state, stop_reason, indexed, pages_fetched, error)

Examples:
    >>> indexer = IncrementalIndexer(source, index, page_size=100)
    >>> outcome = indexer.index_partition(
    ...     Partition("IngestGranule", "arn:aws:states:...:IngestGranule"),
    ...     last_indexed_date=None,
    ...     max_records=50_000,
    ... )
    >>> outcome.state, outcome.indexed, outcome.pages_fetched
    (<PartitionState.EXHAUSTED: 'EXHAUSTED'>, 240, 3)

Guardrails:
    ❌ DON'T: Retry a failed page inside the partition loop
    ✅ DO: Let the partition fail; the next cycle re-covers the window

    ❌ DON'T: Advance the watermark from here
    ✅ DO: Return the outcome and let the cycle decide

Tags:
    incremental, indexing, pagination, watermark, overlap, elasticsearch,
    indexsync
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from indexsync.core.errors import (
    BulkWriteError,
    IndexSyncError,
    SearchIndexError,
    error_summary,
)
from indexsync.core.logging import LogContext, get_logger
from indexsync.execution.models import (
    ExecutionRecord,
    IndexDocument,
    NameParser,
    Partition,
    execution_to_document,
    parse_execution_name,
)
from indexsync.index.client import SearchIndexClient
from indexsync.sources.pager import PageReader
from indexsync.sources.protocol import Page, PagedSource

logger = get_logger(__name__)

# Executions that stopped this long before the watermark are known indexed.
DEFAULT_OVERLAP = timedelta(minutes=5)
DEFAULT_MAX_RECORDS = 50_000
DEFAULT_PAGE_SIZE = 100


class PartitionState(str, Enum):
    PAGING = "PAGING"
    EXHAUSTED = "EXHAUSTED"
    CAPPED = "CAPPED"
    FAILED = "FAILED"


class StopReason(str, Enum):
    EMPTY_PAGE = "EMPTY_PAGE"
    NO_CURSOR = "NO_CURSOR"
    REACHED_WATERMARK = "REACHED_WATERMARK"
    CAP_REACHED = "CAP_REACHED"
    ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class PartitionOutcome:
    """How one partition's indexing loop ended."""

    partition: Partition
    state: PartitionState
    stop_reason: StopReason
    indexed: int
    pages_fetched: int
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is not PartitionState.FAILED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "partition": self.partition.workflow_id,
            "state": self.state.value,
            "stop_reason": self.stop_reason.value,
            "indexed": self.indexed,
            "pages_fetched": self.pages_fetched,
        }
        if self.error is not None:
            result["error"] = error_summary(self.error)
        return result


class IncrementalIndexer:
    """Indexes one partition at a time; safe to share across worker threads.

    Args:
        source: Paged source of ExecutionRecords, most recent first
        index: Search index client
        index_name: Target index
        page_size: Records requested per page
        overlap_threshold: Slack subtracted from the watermark
        parse_name: Execution name parser for collection and granule ids
    """

    def __init__(
        self,
        source: PagedSource[ExecutionRecord],
        index: SearchIndexClient,
        *,
        index_name: str = "executions",
        page_size: int = DEFAULT_PAGE_SIZE,
        overlap_threshold: timedelta = DEFAULT_OVERLAP,
        parse_name: NameParser = parse_execution_name,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if overlap_threshold < timedelta(0):
            raise ValueError("overlap_threshold must not be negative")
        self.source = source
        self.index = index
        self.index_name = index_name
        self.page_size = page_size
        self.overlap_threshold = overlap_threshold
        self.parse_name = parse_name

    def index_partition(
        self,
        partition: Partition,
        last_indexed_date: datetime | None,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> PartitionOutcome:
        """Run the paging loop for one partition until a stop condition holds.

        Never raises for partition-scoped failures: source errors, bulk
        write errors and unexpected exceptions end in ``FAILED`` with the
        error on the outcome.
        """
        if max_records <= 0:
            raise ValueError("max_records must be positive")

        cutoff = (
            last_indexed_date - self.overlap_threshold
            if last_indexed_date is not None
            else None
        )
        reader: PageReader[ExecutionRecord] = PageReader(
            self.source, partition.source_key, self.page_size
        )
        total_indexed = 0

        with LogContext(partition=partition.workflow_id):
            logger.info(
                "partition_indexing_started",
                source_key=partition.source_key,
                cutoff=cutoff.isoformat() if cutoff else None,
            )
            try:
                while True:
                    cursor = reader.cursor
                    page = reader.next_page()
                    if page is None:
                        return self._finish(
                            partition, PartitionState.EXHAUSTED, StopReason.NO_CURSOR,
                            total_indexed, reader,
                        )

                    batch = self._to_documents(partition, page)
                    if not batch:
                        return self._finish(
                            partition, PartitionState.EXHAUSTED, StopReason.EMPTY_PAGE,
                            total_indexed, reader,
                        )

                    self._upsert(batch, cursor)
                    total_indexed += len(batch)
                    logger.debug(
                        "partition_page_indexed",
                        page=reader.pages_fetched,
                        batch=len(batch),
                        total=total_indexed,
                    )

                    if total_indexed >= max_records:
                        return self._finish(
                            partition, PartitionState.CAPPED, StopReason.CAP_REACHED,
                            total_indexed, reader,
                        )
                    if page.next_cursor is None:
                        return self._finish(
                            partition, PartitionState.EXHAUSTED, StopReason.NO_CURSOR,
                            total_indexed, reader,
                        )
                    if cutoff is not None and _reached(page, cutoff):
                        return self._finish(
                            partition, PartitionState.EXHAUSTED,
                            StopReason.REACHED_WATERMARK, total_indexed, reader,
                        )
            except IndexSyncError as exc:
                logger.error(
                    "partition_indexing_failed",
                    indexed=total_indexed,
                    **exc.to_dict(),
                )
                return self._failed(partition, exc, total_indexed, reader)
            except Exception as exc:
                logger.exception(
                    "partition_indexing_crashed",
                    indexed=total_indexed,
                    cursor=reader.cursor,
                )
                return self._failed(partition, exc, total_indexed, reader)

    # ── Internal ────────────────────────────────────────────────────────

    def _to_documents(
        self, partition: Partition, page: Page[ExecutionRecord]
    ) -> list[IndexDocument]:
        docs = []
        for record in page.items:
            if not record.is_indexable:
                continue
            if record.workflow_id != partition.workflow_id:
                record = replace(record, workflow_id=partition.workflow_id)
            docs.append(execution_to_document(record, self.parse_name))
        return docs

    def _upsert(self, batch: list[IndexDocument], cursor: str | None) -> None:
        try:
            response = self.index.bulk_upsert(
                self.index_name, [(doc.id, doc.fields()) for doc in batch]
            )
        except SearchIndexError as exc:
            raise BulkWriteError(
                f"Bulk upsert of {len(batch)} documents failed: {exc.message}",
                failed_ids=[doc.id for doc in batch],
                context=exc.context,
                cause=exc,
            ).with_context(index=self.index_name, cursor=cursor) from exc

        if response.errors:
            raise BulkWriteError(
                f"{len(response.failed_ids)} of {len(batch)} documents rejected",
                failed_ids=list(response.failed_ids),
            ).with_context(index=self.index_name, cursor=cursor)

    def _finish(
        self,
        partition: Partition,
        state: PartitionState,
        reason: StopReason,
        indexed: int,
        reader: PageReader[ExecutionRecord],
    ) -> PartitionOutcome:
        logger.info(
            "partition_indexing_finished",
            state=state.value,
            stop_reason=reason.value,
            indexed=indexed,
            pages=reader.pages_fetched,
        )
        return PartitionOutcome(
            partition=partition,
            state=state,
            stop_reason=reason,
            indexed=indexed,
            pages_fetched=reader.pages_fetched,
        )

    def _failed(
        self,
        partition: Partition,
        error: Exception,
        indexed: int,
        reader: PageReader[ExecutionRecord],
    ) -> PartitionOutcome:
        return PartitionOutcome(
            partition=partition,
            state=PartitionState.FAILED,
            stop_reason=StopReason.ERROR,
            indexed=indexed,
            pages_fetched=reader.pages_fetched,
            error=error,
        )


def _reached(page: Page[ExecutionRecord], cutoff: datetime) -> bool:
    return any(
        record.stop_time is not None and record.stop_time < cutoff
        for record in page.items
    )


__all__ = [
    "DEFAULT_MAX_RECORDS",
    "DEFAULT_OVERLAP",
    "DEFAULT_PAGE_SIZE",
    "IncrementalIndexer",
    "PartitionOutcome",
    "PartitionState",
    "StopReason",
]
