"""
Centralized settings for indexsync.

One validated, cached settings object holds everything the sync engine
needs: where the source and the index live, paging limits, the overlap
window, lease parameters and the partitions to synchronize. Values come
from ``INDEXSYNC_*`` environment variables or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["INDEXSYNC_PAGE_SIZE"] = "50"
    >>> clear_settings_cache()
    >>> get_settings().page_size
    50

    Partitions are a JSON object of workflow id → source key::

        INDEXSYNC_WORKFLOWS='{"IngestGranule": "arn:aws:states:...:IngestGranule"}'

Tags:
    settings, configuration, pydantic, environment, indexsync
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from indexsync.execution.models import Partition


class IndexSyncSettings(BaseSettings):
    """indexsync configuration.

    All fields can be set via ``INDEXSYNC_*`` environment variables (e.g.
    ``INDEXSYNC_ELASTICSEARCH_URL=http://es:9200``) or through ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="INDEXSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Search index ─────────────────────────────────────────────
    elasticsearch_url: str = Field(default="http://localhost:9200")
    elasticsearch_timeout_seconds: float = Field(default=30.0)
    executions_index: str = Field(default="executions")
    executions_meta_index: str = Field(default="executions-meta")

    # ── Source ───────────────────────────────────────────────────
    source_url: str = Field(default="http://localhost:8080")
    source_timeout_seconds: float = Field(default=30.0)

    # ── Paging ───────────────────────────────────────────────────
    page_size: int = Field(default=100, description="Records requested per page")
    max_records_per_partition: int = Field(
        default=50000, description="Safety cap against unbounded backfill"
    )
    overlap_threshold_seconds: int = Field(
        default=300, description="Slack subtracted from the watermark"
    )
    max_parallel_partitions: int = Field(default=16)

    # ── Leases ───────────────────────────────────────────────────
    lease_key: str = Field(default="execution-indexer")
    lease_ttl_seconds: int = Field(default=600)
    lock_database: Path = Field(
        default_factory=lambda: Path.home() / ".indexsync" / "leases.db",
    )
    instance_id: str | None = Field(default=None)

    # ── Scheduling ───────────────────────────────────────────────
    schedule_interval_seconds: float = Field(default=30.0)

    # ── Partitions ───────────────────────────────────────────────
    workflows: dict[str, str] = Field(default_factory=dict)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json | console | auto")

    @field_validator(
        "page_size",
        "max_records_per_partition",
        "max_parallel_partitions",
        "lease_ttl_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("overlap_threshold_seconds")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"json", "console", "auto"}:
            raise ValueError("must be one of json, console, auto")
        return value

    @property
    def overlap_threshold(self) -> timedelta:
        return timedelta(seconds=self.overlap_threshold_seconds)

    @property
    def json_logs(self) -> bool | None:
        """``configure_logging`` flag: None means auto-detect."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"

    def partitions(self) -> list[Partition]:
        """Configured partitions in a stable (sorted) order."""
        from indexsync.execution.models import Partition

        return [
            Partition(workflow_id=wid, source_key=key or wid)
            for wid, key in sorted(self.workflows.items())
        ]


_settings_cache: dict[str, IndexSyncSettings] = {}


def get_settings(*, _force_reload: bool = False) -> IndexSyncSettings:
    """Return the process-wide settings, loading them on first use."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = IndexSyncSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
