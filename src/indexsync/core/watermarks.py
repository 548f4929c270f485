"""
Watermark tracking for the incremental execution indexer.

A watermark answers "up to when have executions been indexed?". Each sync
cycle reads it, pages back through the source only until it passes the
watermark (minus an overlap window), and writes the cycle's start time
back only when every partition succeeded.

Manifesto:
    The watermark is the only state that makes the indexer incremental.
    Lose it and the next cycle re-scans everything up to the record cap;
    move it too far and executions are silently never indexed. Key
    principles:

    - **Forward-only advancement:** An older instant never replaces a newer one
    - **Single writer:** Only the sync cycle writes, after all partitions join
    - **Persistence-agnostic:** Search index (production) or in-memory (tests)

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                  WatermarkStore                           │
        └──────────────────────────────────────────────────────────┘

        read()                      write(cycle_started_at)
          │                                │ forward-only
          ▼                                ▼
        ┌──────────────────────────────────────────────────────────┐
        │ executions-meta index (or in-memory)                     │
        │ _id: executionMeta-id                                    │
        │ last_indexed_date: 1510000000000   (epoch millis)        │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> store = WatermarkStore()
    >>> store.read() is None
    True
    >>> store.write(datetime(2026, 2, 15, tzinfo=UTC)).last_indexed_date.year
    2026
    >>> store.write(datetime(2025, 1, 1, tzinfo=UTC)).last_indexed_date.year
    2026

    Backed by the meta index:

    >>> store = WatermarkStore(index=ElasticsearchClient("http://es:9200"))

Guardrails:
    ❌ DON'T: Write the watermark from inside a partition task
    ✅ DO: Write once, after every partition finished successfully

    ❌ DON'T: Write the time the cycle *finished*
    ✅ DO: Write the time captured before the first page was requested

Tags:
    watermark, incremental, resume, forward-only, indexsync
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from indexsync.core.errors import SearchIndexError, WatermarkError
from indexsync.core.logging import get_logger
from indexsync.core.timestamps import (
    from_epoch_ms,
    from_iso8601,
    to_epoch_ms,
    to_iso8601,
    utc_now,
)

if TYPE_CHECKING:
    from indexsync.index.client import SearchIndexClient

logger = get_logger(__name__)

META_DOCUMENT_ID = "executionMeta-id"
META_FIELD = "last_indexed_date"


# ---------------------------------------------------------------------------
# Value object
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Watermark:
    """Last indexed instant of one stream.

    Attributes:
        stream: What the watermark tracks (the executions index name).
        last_indexed_date: Start time of the last fully successful cycle.
        updated_at: When this watermark was written, if known. The index
            backend stores only ``last_indexed_date``.
    """

    stream: str
    last_indexed_date: datetime
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream": self.stream,
            "last_indexed_date": to_iso8601(self.last_indexed_date),
            "updated_at": to_iso8601(self.updated_at),
        }


# ---------------------------------------------------------------------------
# WatermarkStore
# ---------------------------------------------------------------------------


class WatermarkStore:
    """Persistence-agnostic watermark store.

    If *index* is supplied, the watermark is the single document
    ``executionMeta-id`` in *meta_index*. Otherwise an in-memory value is
    used.

    Args:
        index: Optional search index client.
        meta_index: Index holding the watermark document.
        stream: Name reported on returned watermarks.
    """

    def __init__(
        self,
        index: SearchIndexClient | None = None,
        *,
        meta_index: str = "executions-meta",
        stream: str = "executions",
    ) -> None:
        self._index = index
        self.meta_index = meta_index
        self.stream = stream
        self._mem: Watermark | None = None
        self._lock = threading.Lock()

    # -- core operations -----------------------------------------------------

    def read(self) -> datetime | None:
        """Last indexed instant, or ``None`` before the first successful cycle.

        Raises:
            WatermarkError: The backing index could not be read.
        """
        wm = self.get()
        return wm.last_indexed_date if wm is not None else None

    def get(self) -> Watermark | None:
        """Current watermark, or ``None`` if none was ever written."""
        if self._index is not None:
            return self._get_index(self._index)
        return self._mem

    def write(self, instant: datetime) -> Watermark:
        """Move the watermark forward (forward-only).

        If *instant* is not after the current watermark the call is a no-op
        and the existing watermark is returned unchanged.

        Raises:
            WatermarkError: The backing index could not be read or written.
        """
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)

        with self._lock:
            existing = self.get()
            if existing is not None and instant <= existing.last_indexed_date:
                logger.debug(
                    "watermark_not_advanced",
                    current=existing.last_indexed_date.isoformat(),
                    proposed=instant.isoformat(),
                )
                return existing

            wm = Watermark(stream=self.stream, last_indexed_date=instant, updated_at=utc_now())
            if self._index is not None:
                self._put_index(self._index, wm)
            else:
                self._mem = wm

        logger.info("watermark_written", last_indexed_date=instant.isoformat())
        return wm

    # -- internal: index backend ---------------------------------------------

    def _get_index(self, index: SearchIndexClient) -> Watermark | None:
        try:
            doc = index.get_document(self.meta_index, META_DOCUMENT_ID)
        except SearchIndexError as exc:
            raise WatermarkError(
                f"Could not read watermark: {exc.message}", cause=exc
            ).with_context(index=self.meta_index) from exc

        if doc is None or doc.get(META_FIELD) is None:
            return None
        return Watermark(stream=self.stream, last_indexed_date=_parse_stored(doc[META_FIELD]))

    def _put_index(self, index: SearchIndexClient, wm: Watermark) -> None:
        try:
            index.index_document(
                self.meta_index,
                META_DOCUMENT_ID,
                {META_FIELD: to_epoch_ms(wm.last_indexed_date)},
            )
        except SearchIndexError as exc:
            raise WatermarkError(
                f"Could not write watermark: {exc.message}", cause=exc
            ).with_context(index=self.meta_index) from exc


def _parse_stored(value: Any) -> datetime:
    """Stored dates come back as epoch millis or as a formatted string."""
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return from_epoch_ms(value)
        if isinstance(value, str):
            if value.lstrip("-").isdigit():
                return from_epoch_ms(int(value))
            parsed = from_iso8601(value)
            if parsed is not None:
                return parsed
    except ValueError as exc:
        raise WatermarkError(f"Unreadable watermark value: {value!r}", cause=exc) from exc
    raise WatermarkError(f"Unreadable watermark value: {value!r}")


__all__ = ["META_DOCUMENT_ID", "Watermark", "WatermarkStore"]
