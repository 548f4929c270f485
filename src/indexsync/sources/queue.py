"""
Lazy paginated queue over a PagedSource.

Presents an unbounded, sorted remote collection as a single-consumer queue.
Nothing is fetched until the caller looks at the head, and never more than
one page ahead of it.

Manifesto:
    Enumerating every execution (or granule) of a partition must not load
    the partition into memory, and must not lose data when the remote side
    hiccups. The queue keeps exactly one page buffered, fetches the next one
    on demand, and on a failed fetch stays where it was so the caller can
    try again.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                    LazyPagedQueue                         │
        │                                                          │
        │   peek() ──buffer empty?──► PageReader.next_page()       │
        │     │            │                 │                     │
        │     │            no                ├─ ok: fill buffer    │
        │     ▼            ▼                 └─ err: raise,        │
        │   head of buffer (not consumed)       cursor unchanged   │
        │                                                          │
        │   shift() ──► drop head                                  │
        └──────────────────────────────────────────────────────────┘

        Exhausted: peek() → None forever. Build a new queue to restart.

Examples:
    >>> queue = LazyPagedQueue(source, "MOD09GQ___006", page_size=100)
    >>> while (record := queue.peek()) is not None:
    ...     handle(record)
    ...     queue.shift()

    Iteration drains the queue the same way:

    >>> for record in LazyPagedQueue(source, "MOD09GQ___006"):
    ...     handle(record)

Guardrails:
    ❌ DON'T: Share one queue between consumers
    ✅ DO: Build one queue per consumer; they are cheap until peeked

    ❌ DON'T: Skip past a SourceUnavailableError by calling shift()
    ✅ DO: Retry peek() or give up on the partition

Tags:
    queue, pagination, lazy, cursor, peek, shift, indexsync
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

from indexsync.sources.pager import PageReader
from indexsync.sources.protocol import PagedSource

T = TypeVar("T")


class LazyPagedQueue(Generic[T]):
    """Pull-based queue with non-destructive lookahead.

    Args:
        source: Paged source to read from
        partition_key: Stream within the source
        page_size: Items requested per page
    """

    def __init__(
        self,
        source: PagedSource[T],
        partition_key: str,
        page_size: int = 100,
    ) -> None:
        self._reader: PageReader[T] = PageReader(source, partition_key, page_size)
        self._buffer: deque[T] = deque()
        self._fetch_lock = threading.Lock()

    @property
    def partition_key(self) -> str:
        return self._reader.partition_key

    @property
    def pages_fetched(self) -> int:
        return self._reader.pages_fetched

    @property
    def exhausted(self) -> bool:
        """True once the source has no more pages and the buffer is empty."""
        return self._reader.exhausted and not self._buffer

    def peek(self) -> T | None:
        """Return the head without consuming it, or None when exhausted.

        Raises:
            SourceUnavailableError: A page fetch failed. The queue is left as
                it was; calling peek() again retries the same page.
        """
        if not self._buffer:
            self._fill()
        return self._buffer[0] if self._buffer else None

    def shift(self) -> None:
        """Drop the current head. No-op when nothing is buffered."""
        if self._buffer:
            self._buffer.popleft()

    def __iter__(self) -> Iterator[T]:
        while (item := self.peek()) is not None:
            yield item
            self.shift()

    def _fill(self) -> None:
        with self._fetch_lock:
            # Empty intermediate pages are legal; keep reading until items
            # arrive or the source is done.
            while not self._buffer and not self._reader.exhausted:
                page = self._reader.next_page()
                if page is None:
                    break
                self._buffer.extend(page.items)
