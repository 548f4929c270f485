"""Retention sweeps over a partition.

Walks a partition through ``LazyPagedQueue`` and yields the executions that
are old enough to clean up or report on. Nothing is deleted here; callers
decide what to do with each record.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from indexsync.core.logging import get_logger
from indexsync.core.timestamps import utc_now
from indexsync.execution.models import ExecutionRecord
from indexsync.sources.queue import LazyPagedQueue

logger = get_logger(__name__)


def compute_cutoff(days: int, *, now: datetime | None = None) -> datetime:
    """Instant before which executions are out of retention."""
    if days < 0:
        raise ValueError("days must not be negative")
    return (now or utc_now()) - timedelta(days=days)


def iter_expired(
    queue: LazyPagedQueue[ExecutionRecord],
    *,
    older_than: datetime,
    extra_names: Iterable[str] = (),
) -> Iterator[ExecutionRecord]:
    """Yield terminal executions that stopped at or before *older_than*.

    Executions named in *extra_names* are yielded regardless of age.
    Running executions are never yielded. The queue is drained with
    peek/shift, so a fetch failure propagates and the same queue can be
    iterated again to resume from the failed page.
    """
    names = frozenset(extra_names)
    while (record := queue.peek()) is not None:
        if _is_expired(record, older_than, names):
            yield record
        queue.shift()


@dataclass
class SweepReport:
    """Counts from a retention sweep of one partition."""

    partition: str
    scanned: int = 0
    expired: list[str] = field(default_factory=list)
    pages_fetched: int = 0


def sweep_partition(
    queue: LazyPagedQueue[ExecutionRecord],
    *,
    older_than: datetime,
    extra_names: Iterable[str] = (),
) -> SweepReport:
    """Collect the names of expired executions in one partition."""
    report = SweepReport(partition=queue.partition_key)
    names = frozenset(extra_names)
    while (record := queue.peek()) is not None:
        report.scanned += 1
        if _is_expired(record, older_than, names):
            report.expired.append(record.name)
        queue.shift()
    report.pages_fetched = queue.pages_fetched
    logger.info(
        "retention_sweep_finished",
        partition=report.partition,
        scanned=report.scanned,
        expired=len(report.expired),
    )
    return report


def _is_expired(record: ExecutionRecord, older_than: datetime, names: frozenset[str]) -> bool:
    if not record.is_indexable:
        return False
    if record.name in names:
        return True
    return record.stop_time is not None and record.stop_time <= older_than


__all__ = ["SweepReport", "compute_cutoff", "iter_expired", "sweep_partition"]
