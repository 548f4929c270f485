"""Tests for indexsync.core.watermarks - forward-only sync watermark."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from indexsync.core.errors import SearchIndexError, WatermarkError
from indexsync.core.timestamps import to_epoch_ms
from indexsync.core.watermarks import META_DOCUMENT_ID, Watermark, WatermarkStore
from indexsync.index.memory import InMemoryIndex

T1 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
T2 = T1 + timedelta(minutes=10)


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture(params=["memory", "index"])
def store(request):
    if request.param == "memory":
        return WatermarkStore()
    return WatermarkStore(InMemoryIndex())


# ── Read / write ─────────────────────────────────────────────────────────


class TestReadWrite:
    def test_absent_before_first_write(self, store):
        assert store.read() is None
        assert store.get() is None

    def test_write_then_read(self, store):
        wm = store.write(T1)
        assert isinstance(wm, Watermark)
        assert wm.stream == "executions"
        assert store.read() == T1

    def test_advances(self, store):
        store.write(T1)
        store.write(T2)
        assert store.read() == T2

    def test_never_moves_backwards(self, store):
        store.write(T2)
        returned = store.write(T1)
        assert returned.last_indexed_date == T2
        assert store.read() == T2

    def test_equal_instant_is_a_noop(self, store, captured_logs):
        store.write(T1)
        store.write(T1)
        assert store.read() == T1
        assert [e["event"] for e in captured_logs].count("watermark_written") == 1

    def test_naive_instant_is_treated_as_utc(self, store):
        store.write(datetime(2024, 3, 1, 12, 0))
        assert store.read() == T1


class TestIndexBackend:
    def test_document_shape(self):
        index = InMemoryIndex()
        store = WatermarkStore(index, meta_index="executions-meta")
        store.write(T1)
        assert index.documents("executions-meta") == {
            META_DOCUMENT_ID: {"last_indexed_date": to_epoch_ms(T1)}
        }

    def test_survives_store_restart(self):
        index = InMemoryIndex()
        WatermarkStore(index).write(T1)
        assert WatermarkStore(index).read() == T1

    @pytest.mark.parametrize(
        "stored",
        [to_epoch_ms(T1), str(to_epoch_ms(T1)), "2024-03-01T12:00:00Z", float(to_epoch_ms(T1))],
    )
    def test_reads_stored_formats(self, stored):
        index = InMemoryIndex()
        index.index_document("executions-meta", META_DOCUMENT_ID, {"last_indexed_date": stored})
        assert WatermarkStore(index).read() == T1

    def test_null_field_means_no_watermark(self):
        index = InMemoryIndex()
        index.index_document("executions-meta", META_DOCUMENT_ID, {"last_indexed_date": None})
        assert WatermarkStore(index).read() is None

    def test_unreadable_value(self):
        index = InMemoryIndex()
        index.index_document("executions-meta", META_DOCUMENT_ID, {"last_indexed_date": "soon"})
        with pytest.raises(WatermarkError):
            WatermarkStore(index).read()

    def test_read_failure_is_watermark_error(self):
        index = MagicMock()
        index.get_document.side_effect = SearchIndexError("unreachable")
        with pytest.raises(WatermarkError) as exc_info:
            WatermarkStore(index).read()
        assert exc_info.value.context.index == "executions-meta"
        assert isinstance(exc_info.value.__cause__, SearchIndexError)

    def test_write_failure_is_watermark_error(self):
        index = MagicMock()
        index.get_document.return_value = None
        index.index_document.side_effect = SearchIndexError("read-only")
        with pytest.raises(WatermarkError):
            WatermarkStore(index).write(T1)


class TestWatermarkValue:
    def test_to_dict(self):
        wm = Watermark(stream="executions", last_indexed_date=T1)
        assert wm.to_dict() == {
            "stream": "executions",
            "last_indexed_date": "2024-03-01T12:00:00+00:00",
            "updated_at": None,
        }


class TestBackendSelection:
    def test_index_store_reads_and_writes_through_client(self):
        index = MagicMock()
        index.get_document.return_value = None
        store = WatermarkStore(index, meta_index="meta")
        store.write(T1)
        index.get_document.assert_called_once_with("meta", META_DOCUMENT_ID)
        (name, doc_id, body), _ = index.index_document.call_args
        assert (name, doc_id) == ("meta", META_DOCUMENT_ID)
        assert set(body) == {"last_indexed_date"}

    def test_memory_store_never_touches_an_index(self):
        store = WatermarkStore()
        store.write(T1)
        assert store.read() == T1
