"""
Cursor discipline for a single paged stream.

PageReader is the one place that holds a cursor. It advances only after a
successful fetch, so a failed fetch can simply be repeated, and it turns
every source failure into SourceUnavailableError with the partition key and
cursor attached. Both the incremental indexer (page at a time) and the lazy
queue (item at a time) read through it.

Example::

    reader = PageReader(source, "arn:...:IngestGranule", page_size=100)
    while (page := reader.next_page()) is not None:
        handle(page.items)
    reader.pages_fetched  # 3
"""

from __future__ import annotations

from typing import Generic, TypeVar

from indexsync.core.errors import IndexSyncError, SourceUnavailableError
from indexsync.core.logging import get_logger
from indexsync.sources.protocol import Page, PageCursor, PagedSource

logger = get_logger(__name__)

T = TypeVar("T")


class PageReader(Generic[T]):
    """Reads a PagedSource page by page, remembering the cursor."""

    def __init__(
        self,
        source: PagedSource[T],
        partition_key: str,
        page_size: int = 100,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.source = source
        self.partition_key = partition_key
        self.page_size = page_size
        self._cursor: PageCursor | None = None
        self._exhausted = False
        self._pages_fetched = 0

    @property
    def cursor(self) -> PageCursor | None:
        """Cursor the next fetch will use (None before the first page)."""
        return self._cursor

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    def next_page(self) -> Page[T] | None:
        """Fetch the next page, or return None once the stream is exhausted.

        Raises:
            SourceUnavailableError: The fetch failed. The cursor is unchanged,
                so calling again retries the same page.
        """
        if self._exhausted:
            return None

        try:
            page = self.source.list_page(self.partition_key, self._cursor, self.page_size)
        except SourceUnavailableError as exc:
            exc.with_context(partition=self.partition_key, cursor=self._cursor)
            raise
        except IndexSyncError:
            raise
        except Exception as exc:
            raise SourceUnavailableError(
                f"Page fetch failed for {self.partition_key}: {exc}", cause=exc
            ).with_context(partition=self.partition_key, cursor=self._cursor) from exc

        self._pages_fetched += 1
        if page.next_cursor is None:
            self._exhausted = True
        else:
            self._cursor = page.next_cursor

        logger.debug(
            "page_fetched",
            partition=self.partition_key,
            items=len(page.items),
            has_more=not self._exhausted,
        )
        return page
