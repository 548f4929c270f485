"""
Paged source protocol.

A PagedSource is any remote API that returns results a page at a time
together with an opaque continuation cursor. The sync engine and the lazy
queue consume sources only through this contract.

Contract:
    list_page(partition_key, cursor, page_size) -> Page
      - cursor None requests the first page
      - Page.next_cursor None means no more pages
      - items come in the source's declared order (executions: most recent
        stop time first)
      - failures raise SourceUnavailableError (or any exception, which
        PageReader wraps)

Cursors are opaque. Consumers pass back exactly what the source returned;
they never parse, build or persist one.

Usage:
    class MySource:
        def list_page(self, partition_key, cursor, page_size):
            resp = api.list(key=partition_key, token=cursor, limit=page_size)
            return Page(items=tuple(resp.items), next_cursor=resp.token)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NewType, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

PageCursor = NewType("PageCursor", str)


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of results plus the cursor for the next one."""

    items: tuple[T, ...]
    next_cursor: PageCursor | None = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None

    def __len__(self) -> int:
        return len(self.items)


@runtime_checkable
class PagedSource(Protocol[T_co]):
    """Protocol for cursor-paginated remote collections."""

    def list_page(
        self,
        partition_key: str,
        cursor: PageCursor | None,
        page_size: int,
    ) -> Page[T_co]:
        """Fetch one page.

        Args:
            partition_key: Which stream to read (e.g. state machine ARN)
            cursor: Cursor returned with the previous page, None for the first
            page_size: Maximum number of items to return

        Returns:
            Page with items and the next cursor (None when exhausted)
        """
        ...
