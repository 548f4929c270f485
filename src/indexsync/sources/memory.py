"""
In-memory paged source.

Serves pre-loaded lists page by page with opaque offset cursors. Used by
tests, by ``--dry-run`` style local runs, and anywhere a PagedSource has to
be faked. Optional failure injection makes a specific fetch raise.
"""

from __future__ import annotations

import base64
import threading
from collections.abc import Iterable, Sequence
from typing import Generic, TypeVar

from indexsync.core.errors import SourceUnavailableError
from indexsync.sources.protocol import Page, PageCursor

T = TypeVar("T")


class InMemoryPagedSource(Generic[T]):
    """Paged source over in-memory lists, one list per partition key.

    Items are served in the order given. ``calls`` records every fetch as
    ``(partition_key, cursor, page_size)``.

    Example:
        >>> source = InMemoryPagedSource({"wf": [1, 2, 3]})
        >>> page = source.list_page("wf", None, 2)
        >>> page.items, page.next_cursor is not None
        ((1, 2), True)
    """

    def __init__(self, partitions: dict[str, Sequence[T]] | None = None) -> None:
        self._partitions: dict[str, list[T]] = {
            key: list(items) for key, items in (partitions or {}).items()
        }
        self._failures: dict[str, list[Exception]] = {}
        self._lock = threading.Lock()
        self.calls: list[tuple[str, PageCursor | None, int]] = []

    def add(self, partition_key: str, items: Iterable[T]) -> None:
        """Append items to a partition."""
        with self._lock:
            self._partitions.setdefault(partition_key, []).extend(items)

    def fail_next(self, partition_key: str, error: Exception | None = None) -> None:
        """Make the next fetch for *partition_key* raise *error*."""
        with self._lock:
            self._failures.setdefault(partition_key, []).append(
                error or SourceUnavailableError(f"Injected failure for {partition_key}")
            )

    def fetch_count(self, partition_key: str) -> int:
        return sum(1 for key, _, _ in self.calls if key == partition_key)

    def list_page(
        self,
        partition_key: str,
        cursor: PageCursor | None,
        page_size: int,
    ) -> Page[T]:
        with self._lock:
            self.calls.append((partition_key, cursor, page_size))
            pending = self._failures.get(partition_key)
            if pending:
                raise pending.pop(0)
            items = self._partitions.get(partition_key, [])

        offset = _decode_cursor(cursor) if cursor is not None else 0
        chunk = items[offset : offset + page_size]
        end = offset + len(chunk)
        next_cursor = _encode_cursor(end) if end < len(items) else None
        return Page(items=tuple(chunk), next_cursor=next_cursor)


def _encode_cursor(offset: int) -> PageCursor:
    return PageCursor(base64.urlsafe_b64encode(f"offset:{offset}".encode()).decode())


def _decode_cursor(cursor: PageCursor) -> int:
    raw = base64.urlsafe_b64decode(cursor.encode()).decode()
    return int(raw.removeprefix("offset:"))
