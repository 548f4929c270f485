"""
Sync cycle orchestration.

One cycle brings the executions index up to date with the source:

    1. take the ``execution-indexer`` lease (skip the cycle if it is held)
    2. make sure the executions and executions-meta indexes exist
    3. read the watermark
    4. capture the cycle start time
    5. index every partition in parallel
    6. if every partition succeeded, write the start time as the new watermark

Manifesto:
    The watermark may only move past instants that are known to be indexed
    in every partition. Capturing the start time before the first page is
    requested, and writing it only after all partitions joined without
    error, gives exactly that. Anything less than full success leaves the
    watermark alone, and the next cycle simply covers the window again.

Architecture:
    ::

        run_sync_cycle(partitions, max_records)
              │
              ▼
        SyncRunLock.with_lease("execution-indexer", ttl)
              │  Busy ──────────────────────────────► CycleResult(SKIPPED)
              ▼
        IndexSchemaManager.ensure_all(executions, executions-meta)
              │  IndexProvisioningError ────────────► raised to caller
              ▼
        WatermarkStore.read()
              │  WatermarkError ────────────────────► raised to caller
              ▼
        started_at = now()
              │
              ▼
        ThreadPoolExecutor ─┬─ index_partition(p1) ─┐
                            ├─ index_partition(p2) ─┤ join
                            └─ index_partition(pN) ─┘
              │
              ▼
        all succeeded? ── yes ──► WatermarkStore.write(started_at)
              │ no
              ▼
        CycleResult(PARTIAL | FAILED, watermark_advanced=False)

Examples:
    >>> cycle = SyncCycle.from_settings(get_settings())
    >>> result = cycle.run_sync_cycle(get_settings().partitions())
    >>> result.status, result.indexed_counts
    (<CycleStatus.SUCCEEDED: 'SUCCEEDED'>, {'IngestGranule': 240})

Tags:
    sync-cycle, orchestration, watermark, lease, thread-pool, indexsync
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from indexsync.core.errors import WatermarkError, error_summary
from indexsync.core.logging import LogContext, get_logger
from indexsync.core.scheduling.lock_manager import LeaseStore, SqliteLeaseStore
from indexsync.core.scheduling.run_lock import Busy, Ran, SyncRunLock
from indexsync.core.timestamps import generate_ulid, utc_now
from indexsync.core.watermarks import WatermarkStore
from indexsync.execution.indexer import (
    DEFAULT_MAX_RECORDS,
    IncrementalIndexer,
    PartitionOutcome,
    PartitionState,
    StopReason,
)
from indexsync.execution.models import ExecutionRecord, Partition
from indexsync.index.client import ElasticsearchClient, SearchIndexClient
from indexsync.index.schema import (
    EXECUTIONS_INDEX,
    EXECUTIONS_META_INDEX,
    IndexSchemaManager,
    IndexSpec,
)
from indexsync.sources.protocol import PagedSource

if TYPE_CHECKING:
    from indexsync.core.settings import IndexSyncSettings

logger = get_logger(__name__)


class CycleStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"  # every partition succeeded, watermark written
    PARTIAL = "PARTIAL"      # some work succeeded, watermark not advanced
    FAILED = "FAILED"        # every partition failed
    SKIPPED = "SKIPPED"      # another runner held the lease


@dataclass
class CycleResult:
    """Summary of one sync cycle."""

    status: CycleStatus
    cycle_id: str
    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[PartitionOutcome] = field(default_factory=list)
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    watermark_advanced: bool = False
    watermark_error: Exception | None = None
    busy: Busy | None = None

    @property
    def indexed_counts(self) -> dict[str, int]:
        """Documents indexed per successful partition."""
        return {o.partition.workflow_id: o.indexed for o in self.outcomes if o.succeeded}

    @property
    def failures(self) -> dict[str, dict[str, Any]]:
        return {
            o.partition.workflow_id: error_summary(o.error)
            for o in self.outcomes
            if not o.succeeded and o.error is not None
        }

    @property
    def ok(self) -> bool:
        return self.status is CycleStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "indexed_counts": self.indexed_counts,
            "failures": self.failures,
            "partitions": [o.to_dict() for o in self.outcomes],
            "watermark_before": _iso(self.watermark_before),
            "watermark_after": _iso(self.watermark_after),
            "watermark_advanced": self.watermark_advanced,
        }
        if self.watermark_error is not None:
            result["watermark_error"] = error_summary(self.watermark_error)
        if self.busy is not None:
            result["busy"] = self.busy.to_dict()
        return result


class SyncCycle:
    """Runs lease-guarded, watermark-bounded sync cycles.

    Args:
        source: Paged source of executions
        index: Search index client (executions and meta index)
        watermarks: Watermark store
        run_lock: Lease runner shared with every competing instance
        index_name: Executions index name
        meta_index_name: Index holding the watermark document
        page_size: Records per source page
        overlap_threshold_seconds: Slack subtracted from the watermark
        lease_key: Lease that makes cycles mutually exclusive
        lease_ttl_seconds: Lease lifetime; never renewed during a cycle
        max_parallel_partitions: Upper bound on worker threads
        clock: Source of the cycle start time
    """

    def __init__(
        self,
        source: PagedSource[ExecutionRecord],
        index: SearchIndexClient,
        watermarks: WatermarkStore,
        run_lock: SyncRunLock,
        *,
        index_name: str = "executions",
        meta_index_name: str = "executions-meta",
        page_size: int = 100,
        overlap_threshold_seconds: float = 300,
        lease_key: str = "execution-indexer",
        lease_ttl_seconds: float = 600,
        max_parallel_partitions: int = 16,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.indexer = IncrementalIndexer(
            source,
            index,
            index_name=index_name,
            page_size=page_size,
            overlap_threshold=timedelta(seconds=overlap_threshold_seconds),
        )
        self.schema = IndexSchemaManager(index)
        self.index_specs: tuple[IndexSpec, ...] = (
            EXECUTIONS_INDEX.named(index_name),
            EXECUTIONS_META_INDEX.named(meta_index_name),
        )
        self.watermarks = watermarks
        self.run_lock = run_lock
        self.lease_key = lease_key
        self.lease_ttl_seconds = lease_ttl_seconds
        self.max_parallel_partitions = max_parallel_partitions
        self._clock = clock
        self._owned: list[Any] = []

    @classmethod
    def from_settings(
        cls,
        settings: IndexSyncSettings,
        *,
        source: PagedSource[ExecutionRecord] | None = None,
        index: SearchIndexClient | None = None,
        lease_store: LeaseStore | None = None,
    ) -> SyncCycle:
        """Wire a cycle from settings; any collaborator can be injected."""
        from indexsync.sources.http import HttpExecutionSource

        owned: list[Any] = []
        if source is None:
            source = HttpExecutionSource(
                settings.source_url,
                timeout=settings.source_timeout_seconds,
                workflow_ids={p.source_key: p.workflow_id for p in settings.partitions()},
            )
            owned.append(source)
        if index is None:
            index = ElasticsearchClient(
                settings.elasticsearch_url, timeout=settings.elasticsearch_timeout_seconds
            )
            owned.append(index)
        if lease_store is None:
            lease_store = SqliteLeaseStore.open(settings.lock_database)
            owned.append(lease_store)

        cycle = cls(
            source,
            index,
            WatermarkStore(
                index,
                meta_index=settings.executions_meta_index,
                stream=settings.executions_index,
            ),
            SyncRunLock(lease_store, instance_id=settings.instance_id),
            index_name=settings.executions_index,
            meta_index_name=settings.executions_meta_index,
            page_size=settings.page_size,
            overlap_threshold_seconds=settings.overlap_threshold_seconds,
            lease_key=settings.lease_key,
            lease_ttl_seconds=settings.lease_ttl_seconds,
            max_parallel_partitions=settings.max_parallel_partitions,
        )
        cycle._owned = owned
        return cycle

    def close(self) -> None:
        """Close the clients and connections that ``from_settings`` opened.

        Injected collaborators belong to the caller and are left open.
        """
        while self._owned:
            self._owned.pop().close()

    def __enter__(self) -> SyncCycle:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ── Trigger ─────────────────────────────────────────────────────────

    def run_sync_cycle(
        self,
        partitions: Sequence[Partition],
        max_records_per_partition: int = DEFAULT_MAX_RECORDS,
    ) -> CycleResult:
        """Run one cycle over *partitions*.

        Safe to invoke at any time: a concurrent invocation returns a
        ``SKIPPED`` result, and re-running after any failure re-covers the
        same window.

        Raises:
            IndexProvisioningError: An index could not be created or updated.
            WatermarkError: The watermark could not be read.
        """
        cycle_id = generate_ulid()
        with LogContext(cycle_id=cycle_id):
            outcome = self.run_lock.with_lease(
                self.lease_key,
                self.lease_ttl_seconds,
                self._run,
                cycle_id,
                list(dict.fromkeys(partitions)),
                max_records_per_partition,
            )
            if isinstance(outcome, Ran):
                return outcome.value

            logger.info("cycle_skipped", holder_id=outcome.holder_id)
            now = self._clock()
            return CycleResult(
                status=CycleStatus.SKIPPED,
                cycle_id=cycle_id,
                started_at=now,
                finished_at=now,
                busy=outcome,
            )

    # ── Internal ────────────────────────────────────────────────────────

    def _run(
        self,
        cycle_id: str,
        partitions: list[Partition],
        max_records: int,
    ) -> CycleResult:
        self.schema.ensure_all(*self.index_specs)
        watermark_before = self.watermarks.read()
        started_at = self._clock()

        logger.info(
            "cycle_started",
            partitions=len(partitions),
            watermark=_iso(watermark_before),
        )

        outcomes = self._index_all(partitions, watermark_before, max_records)
        result = CycleResult(
            status=_status(outcomes),
            cycle_id=cycle_id,
            started_at=started_at,
            outcomes=outcomes,
            watermark_before=watermark_before,
            watermark_after=watermark_before,
        )

        if result.status is CycleStatus.SUCCEEDED:
            try:
                written = self.watermarks.write(started_at)
            except WatermarkError as exc:
                logger.error("cycle_watermark_write_failed", **exc.to_dict())
                result.status = CycleStatus.PARTIAL
                result.watermark_error = exc
            else:
                result.watermark_after = written.last_indexed_date
                result.watermark_advanced = written.last_indexed_date != watermark_before
                logger.info("cycle_watermark_written", watermark=_iso(result.watermark_after))
        else:
            logger.warning(
                "cycle_watermark_held",
                failed=sorted(result.failures),
                watermark=_iso(watermark_before),
            )

        result.finished_at = self._clock()
        logger.info(
            "cycle_finished",
            status=result.status.value,
            indexed=sum(result.indexed_counts.values()),
            failed=len(result.failures),
        )
        return result

    def _index_all(
        self,
        partitions: list[Partition],
        watermark: datetime | None,
        max_records: int,
    ) -> list[PartitionOutcome]:
        if not partitions:
            return []

        by_partition: dict[Partition, PartitionOutcome] = {}
        max_workers = min(self.max_parallel_partitions, len(partitions))

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="indexsync") as pool:
            futures = {
                # Each task gets its own copy so cycle_id reaches worker logs.
                pool.submit(
                    contextvars.copy_context().run,
                    self.indexer.index_partition,
                    partition,
                    watermark,
                    max_records,
                ): partition
                for partition in partitions
            }
            for future in as_completed(futures):
                partition = futures[future]
                try:
                    by_partition[partition] = future.result()
                except Exception as exc:
                    logger.exception("partition_task_crashed", partition=partition.workflow_id)
                    by_partition[partition] = PartitionOutcome(
                        partition=partition,
                        state=PartitionState.FAILED,
                        stop_reason=StopReason.ERROR,
                        indexed=0,
                        pages_fetched=0,
                        error=exc,
                    )

        return [by_partition[p] for p in partitions]


def _status(outcomes: list[PartitionOutcome]) -> CycleStatus:
    failed = sum(1 for o in outcomes if not o.succeeded)
    if failed == 0:
        return CycleStatus.SUCCEEDED
    if failed == len(outcomes):
        return CycleStatus.FAILED
    return CycleStatus.PARTIAL


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


__all__ = ["CycleResult", "CycleStatus", "SyncCycle"]
