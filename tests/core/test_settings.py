"""Tests for indexsync.core.settings."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from indexsync.core.settings import IndexSyncSettings, clear_settings_cache, get_settings
from indexsync.execution.models import Partition


class TestDefaults:
    def test_defaults(self):
        s = IndexSyncSettings()
        assert s.page_size == 100
        assert s.max_records_per_partition == 50000
        assert s.overlap_threshold == timedelta(minutes=5)
        assert s.lease_key == "execution-indexer"
        assert s.executions_index == "executions"
        assert s.executions_meta_index == "executions-meta"
        assert s.workflows == {}
        assert s.partitions() == []


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_PAGE_SIZE", "25")
        monkeypatch.setenv("INDEXSYNC_ELASTICSEARCH_URL", "http://es:9200")
        s = IndexSyncSettings()
        assert s.page_size == 25
        assert s.elasticsearch_url == "http://es:9200"

    def test_workflows_json(self, monkeypatch):
        monkeypatch.setenv(
            "INDEXSYNC_WORKFLOWS",
            '{"SyncGranule": "arn:sync", "IngestGranule": "arn:ingest"}',
        )
        assert IndexSyncSettings().partitions() == [
            Partition("IngestGranule", "arn:ingest"),
            Partition("SyncGranule", "arn:sync"),
        ]

    def test_empty_source_key_defaults_to_workflow_id(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_WORKFLOWS", '{"IngestGranule": ""}')
        assert IndexSyncSettings().partitions() == [
            Partition("IngestGranule", "IngestGranule")
        ]

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("INDEXSYNC_LEASE_TTL_SECONDS=900\n")
        assert IndexSyncSettings().lease_ttl_seconds == 900


class TestValidation:
    @pytest.mark.parametrize(
        "field", ["PAGE_SIZE", "MAX_RECORDS_PER_PARTITION", "MAX_PARALLEL_PARTITIONS", "LEASE_TTL_SECONDS"]
    )
    def test_positive_fields(self, monkeypatch, field):
        monkeypatch.setenv(f"INDEXSYNC_{field}", "0")
        with pytest.raises(ValidationError):
            IndexSyncSettings()

    def test_overlap_may_be_zero(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_OVERLAP_THRESHOLD_SECONDS", "0")
        assert IndexSyncSettings().overlap_threshold == timedelta(0)

    def test_overlap_must_not_be_negative(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_OVERLAP_THRESHOLD_SECONDS", "-1")
        with pytest.raises(ValidationError):
            IndexSyncSettings()

    def test_log_format(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_LOG_FORMAT", "JSON")
        s = IndexSyncSettings()
        assert s.log_format == "json"
        assert s.json_logs is True

    def test_unknown_log_format(self, monkeypatch):
        monkeypatch.setenv("INDEXSYNC_LOG_FORMAT", "xml")
        with pytest.raises(ValidationError):
            IndexSyncSettings()

    def test_auto_log_format(self):
        assert IndexSyncSettings().json_logs is None


class TestCache:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_clear(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("INDEXSYNC_PAGE_SIZE", "7")
        assert get_settings().page_size == first.page_size
        clear_settings_cache()
        assert get_settings().page_size == 7

    def test_force_reload(self):
        first = get_settings()
        assert get_settings(_force_reload=True) is not first
