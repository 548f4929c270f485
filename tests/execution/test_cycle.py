"""Tests for indexsync.execution.cycle.SyncCycle - the sync trigger."""

from __future__ import annotations

import sqlite3
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import structlog

from indexsync.core.errors import IndexProvisioningError, SearchIndexError, WatermarkError
from indexsync.core.scheduling.lock_manager import MemoryLeaseStore
from indexsync.core.scheduling.run_lock import SyncRunLock
from indexsync.core.settings import IndexSyncSettings
from indexsync.core.watermarks import META_DOCUMENT_ID, WatermarkStore
from indexsync.execution.cycle import CycleStatus, SyncCycle
from indexsync.execution.indexer import PartitionState, StopReason
from indexsync.execution.models import Partition
from indexsync.index.memory import InMemoryIndex
from indexsync.sources.http import HttpExecutionSource
from indexsync.sources.memory import InMemoryPagedSource

INGEST = Partition("IngestGranule", "arn:ingest")
SYNC = Partition("SyncGranule", "arn:sync")


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture()
def source():
    return InMemoryPagedSource()


@pytest.fixture()
def index():
    return InMemoryIndex()


@pytest.fixture()
def leases(clock):
    return MemoryLeaseStore(clock=clock)


@pytest.fixture()
def watermarks(index):
    return WatermarkStore(index)


@pytest.fixture()
def cycle(source, index, watermarks, leases, clock):
    return SyncCycle(
        source,
        index,
        watermarks,
        SyncRunLock(leases, instance_id="test"),
        page_size=100,
        clock=clock,
    )


@pytest.fixture()
def populated(source, make_history):
    source.add("arn:ingest", make_history(240, prefix="ingest", workflow_id="IngestGranule"))
    source.add("arn:sync", make_history(50, prefix="sync", workflow_id="SyncGranule"))
    return source


# ── Successful cycles ───────────────────────────────────────────────────


class TestSuccessfulCycle:
    def test_first_cycle(self, cycle, populated, index, watermarks, clock):
        result = cycle.run_sync_cycle([INGEST, SYNC])

        assert result.status is CycleStatus.SUCCEEDED
        assert result.ok
        assert result.indexed_counts == {"IngestGranule": 240, "SyncGranule": 50}
        assert result.failures == {}
        assert result.watermark_before is None
        assert result.watermark_after == clock.now
        assert result.watermark_advanced is True
        assert watermarks.read() == clock.now
        assert index.count("executions") == 290

    def test_provisions_both_indexes(self, cycle, populated, index):
        cycle.run_sync_cycle([INGEST])
        assert index.mappings["executions"]["_source"] == {"enabled": False}
        assert index.mappings["executions-meta"]["_source"] == {"enabled": True}
        assert META_DOCUMENT_ID in index.documents("executions-meta")

    def test_outcomes_in_input_order(self, cycle, populated):
        result = cycle.run_sync_cycle([SYNC, INGEST])
        assert [o.partition for o in result.outcomes] == [SYNC, INGEST]

    def test_second_cycle_is_idempotent_and_short(self, cycle, populated, index, clock):
        cycle.run_sync_cycle([INGEST])
        fetches = populated.fetch_count("arn:ingest")
        clock.advance(minutes=1)

        result = cycle.run_sync_cycle([INGEST])

        assert result.status is CycleStatus.SUCCEEDED
        assert populated.fetch_count("arn:ingest") == fetches + 1
        (outcome,) = result.outcomes
        assert outcome.stop_reason is StopReason.REACHED_WATERMARK
        assert index.count("executions") == 240
        assert result.watermark_after == clock.now

    def test_duplicate_partitions_run_once(self, cycle, populated):
        result = cycle.run_sync_cycle([INGEST, INGEST])
        assert len(result.outcomes) == 1
        assert populated.fetch_count("arn:ingest") == 3

    def test_empty_partition_list(self, cycle, watermarks, clock):
        result = cycle.run_sync_cycle([])
        assert result.status is CycleStatus.SUCCEEDED
        assert result.outcomes == []
        assert watermarks.read() == clock.now

    def test_many_partitions_in_parallel(self, source, index, watermarks, leases, clock, make_history):
        partitions = [Partition(f"wf{i}", f"key{i}") for i in range(10)]
        for p in partitions:
            source.add(p.source_key, make_history(15, prefix=p.workflow_id, workflow_id=p.workflow_id))
        cycle = SyncCycle(
            source,
            index,
            watermarks,
            SyncRunLock(leases),
            page_size=4,
            max_parallel_partitions=3,
            clock=clock,
        )

        result = cycle.run_sync_cycle(partitions)

        assert result.ok
        assert [o.partition for o in result.outcomes] == partitions
        assert all(o.pages_fetched == 4 for o in result.outcomes)
        assert index.count("executions") == 150

    def test_max_records_per_partition(self, cycle, populated):
        result = cycle.run_sync_cycle([INGEST], max_records_per_partition=100)
        (outcome,) = result.outcomes
        assert outcome.state is PartitionState.CAPPED
        assert result.status is CycleStatus.SUCCEEDED


# ── Watermark safety ────────────────────────────────────────────────────


class TestWatermarkSafety:
    def test_start_time_captured_before_paging(self, index, watermarks, leases, clock, make_history):
        inner = InMemoryPagedSource({"arn:ingest": make_history(10)})
        started = clock.now

        class SlowSource:
            def list_page(self, partition_key, cursor, page_size):
                clock.advance(minutes=30)
                return inner.list_page(partition_key, cursor, page_size)

        cycle = SyncCycle(SlowSource(), index, watermarks, SyncRunLock(leases), clock=clock)
        result = cycle.run_sync_cycle([INGEST])

        assert result.started_at == started
        assert watermarks.read() == started
        assert result.finished_at > started

    def test_partial_failure_holds_watermark(self, cycle, populated, watermarks, index):
        populated.fail_next("arn:sync")

        result = cycle.run_sync_cycle([INGEST, SYNC])

        assert result.status is CycleStatus.PARTIAL
        assert not result.ok
        assert result.watermark_advanced is False
        assert result.watermark_after is None
        assert watermarks.read() is None
        assert set(result.failures) == {"SyncGranule"}
        assert result.failures["SyncGranule"]["error_type"] == "SourceUnavailableError"
        assert result.indexed_counts == {"IngestGranule": 240}
        assert index.count("executions") == 240

    def test_recovers_on_next_cycle(self, cycle, populated, watermarks, index, clock):
        populated.fail_next("arn:sync")
        cycle.run_sync_cycle([INGEST, SYNC])
        clock.advance(minutes=1)

        result = cycle.run_sync_cycle([INGEST, SYNC])

        assert result.ok
        assert watermarks.read() == clock.now
        assert index.count("executions") == 290

    def test_failed_partition_keeps_previous_watermark(self, cycle, populated, watermarks, clock):
        cycle.run_sync_cycle([INGEST, SYNC])
        first = watermarks.read()
        clock.advance(minutes=5)
        populated.fail_next("arn:ingest")

        result = cycle.run_sync_cycle([INGEST, SYNC])

        assert result.status is CycleStatus.PARTIAL
        assert result.watermark_before == first
        assert watermarks.read() == first

    def test_all_partitions_failed(self, cycle, populated, watermarks):
        populated.fail_next("arn:ingest")
        populated.fail_next("arn:sync")
        result = cycle.run_sync_cycle([INGEST, SYNC])
        assert result.status is CycleStatus.FAILED
        assert watermarks.read() is None

    def test_bulk_rejection_holds_watermark(self, cycle, populated, index, watermarks):
        index.reject("sync-00010")
        result = cycle.run_sync_cycle([INGEST, SYNC])
        assert result.status is CycleStatus.PARTIAL
        assert result.failures["SyncGranule"]["failed_ids"] == ["sync-00010"]
        assert watermarks.read() is None

    def test_watermark_never_moves_back(self, cycle, populated, watermarks, clock):
        cycle.run_sync_cycle([INGEST])
        first = watermarks.read()
        clock.advance(minutes=-10)

        result = cycle.run_sync_cycle([INGEST])

        assert result.status is CycleStatus.SUCCEEDED
        assert result.watermark_advanced is False
        assert result.watermark_after == first
        assert watermarks.read() == first

    def test_watermark_write_failure(self, cycle, populated, watermarks, monkeypatch):
        def refuse(instant):
            raise WatermarkError("meta index read-only")

        monkeypatch.setattr(watermarks, "write", refuse)

        result = cycle.run_sync_cycle([INGEST])

        assert result.status is CycleStatus.PARTIAL
        assert isinstance(result.watermark_error, WatermarkError)
        assert result.to_dict()["watermark_error"]["error_type"] == "WatermarkError"
        assert result.watermark_advanced is False

    def test_crashed_partition_task_is_isolated(self, cycle, populated, watermarks):
        result = cycle.run_sync_cycle([INGEST, SYNC], max_records_per_partition=0)
        assert result.status is CycleStatus.FAILED
        assert all(o.state is PartitionState.FAILED for o in result.outcomes)
        assert all(isinstance(o.error, ValueError) for o in result.outcomes)
        assert watermarks.read() is None


# ── Exclusivity and fatal errors ────────────────────────────────────────


class TestExclusivity:
    def test_busy_lease_skips_cycle(self, cycle, populated, leases, index):
        leases.try_acquire("execution-indexer", "other-host:01", 600)

        result = cycle.run_sync_cycle([INGEST])

        assert result.status is CycleStatus.SKIPPED
        assert not result.ok
        assert result.busy.holder_id == "other-host:01"
        assert result.outcomes == []
        assert populated.fetch_count("arn:ingest") == 0
        assert not index.index_exists("executions")
        assert result.to_dict()["busy"]["holder_id"] == "other-host:01"

    def test_expired_lease_is_taken_over(self, cycle, populated, leases, clock):
        leases.try_acquire("execution-indexer", "crashed-host:01", 60)
        clock.advance(seconds=61)
        assert cycle.run_sync_cycle([INGEST]).ok

    def test_lease_released_after_cycle(self, cycle, populated, leases):
        cycle.run_sync_cycle([INGEST])
        assert leases.get_lease("execution-indexer") is None

    def test_lease_held_during_cycle(self, index, watermarks, leases, clock, make_history):
        seen = []
        inner = InMemoryPagedSource({"arn:ingest": make_history(3)})

        class Spy:
            def list_page(self, partition_key, cursor, page_size):
                seen.append(leases.get_lease("execution-indexer"))
                return inner.list_page(partition_key, cursor, page_size)

        SyncCycle(Spy(), index, watermarks, SyncRunLock(leases), clock=clock).run_sync_cycle([INGEST])
        assert seen and seen[0] is not None

    def test_provisioning_error_is_raised_and_lease_released(self, watermarks, leases, clock):
        index = MagicMock()
        index.index_exists.side_effect = SearchIndexError("cluster unreachable")
        cycle = SyncCycle(InMemoryPagedSource(), index, watermarks, SyncRunLock(leases), clock=clock)

        with pytest.raises(IndexProvisioningError):
            cycle.run_sync_cycle([INGEST])
        assert leases.get_lease("execution-indexer") is None

    def test_unreadable_watermark_is_raised(self, index, leases, clock):
        watermarks = MagicMock()
        watermarks.read.side_effect = WatermarkError("meta index unreachable")
        cycle = SyncCycle(InMemoryPagedSource(), index, watermarks, SyncRunLock(leases), clock=clock)

        with pytest.raises(WatermarkError):
            cycle.run_sync_cycle([INGEST])


# ── Logging context and reporting ───────────────────────────────────────


class TestReporting:
    def test_cycle_and_partition_reach_worker_threads(self, index, watermarks, leases, clock, make_history):
        seen = []
        inner = InMemoryPagedSource({"arn:ingest": make_history(3)})

        class ContextSpy:
            def list_page(self, partition_key, cursor, page_size):
                seen.append(structlog.contextvars.get_contextvars())
                return inner.list_page(partition_key, cursor, page_size)

        cycle = SyncCycle(ContextSpy(), index, watermarks, SyncRunLock(leases), clock=clock)
        result = cycle.run_sync_cycle([INGEST])

        assert seen[0]["cycle_id"] == result.cycle_id
        assert seen[0]["partition"] == "IngestGranule"
        assert structlog.contextvars.get_contextvars() == {}

    def test_to_dict(self, cycle, populated, clock):
        d = cycle.run_sync_cycle([INGEST]).to_dict()
        assert d["status"] == "SUCCEEDED"
        assert d["indexed_counts"] == {"IngestGranule": 240}
        assert d["watermark_before"] is None
        assert d["watermark_after"] == clock.now.isoformat()
        assert d["partitions"][0]["stop_reason"] == "NO_CURSOR"
        assert "busy" not in d

    def test_cycle_events_logged(self, cycle, populated, captured_logs):
        cycle.run_sync_cycle([INGEST])
        events = [e["event"] for e in captured_logs]
        assert events.index("cycle_started") < events.index("cycle_finished")
        assert "cycle_watermark_written" in events


class TestFromSettings:
    def test_wiring(self, index):
        settings = IndexSyncSettings(
            workflows={"IngestGranule": "arn:ingest"},
            page_size=25,
            overlap_threshold_seconds=60,
            lease_key="custom-lease",
            executions_index="exec-v2",
            executions_meta_index="exec-v2-meta",
            instance_id="host-9",
        )
        cycle = SyncCycle.from_settings(settings, index=index, lease_store=MemoryLeaseStore())

        assert isinstance(cycle.indexer.source, HttpExecutionSource)
        assert cycle.indexer.source._workflow_ids == {"arn:ingest": "IngestGranule"}
        assert cycle.indexer.page_size == 25
        assert cycle.indexer.overlap_threshold == timedelta(seconds=60)
        assert cycle.indexer.index_name == "exec-v2"
        assert [s.name for s in cycle.index_specs] == ["exec-v2", "exec-v2-meta"]
        assert cycle.watermarks.meta_index == "exec-v2-meta"
        assert cycle.lease_key == "custom-lease"
        assert cycle.run_lock.instance_id == "host-9"

    def test_close_releases_only_what_it_opened(self, tmp_path):
        settings = IndexSyncSettings(
            workflows={"IngestGranule": "arn:ingest"},
            lock_database=tmp_path / "leases.db",
        )
        index = MagicMock()
        with SyncCycle.from_settings(settings, index=index) as cycle:
            source = cycle.indexer.source
            lease_conn = cycle.run_lock.store.conn
        assert source._client.is_closed
        with pytest.raises(sqlite3.ProgrammingError):
            lease_conn.execute("SELECT 1")
        index.close.assert_not_called()
        cycle.close()
