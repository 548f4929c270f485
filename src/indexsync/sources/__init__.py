"""Paged sources for indexsync.

A source returns a remote, sorted collection one page at a time with an
opaque cursor. Everything above this package (the incremental indexer, the
lazy queue, retention sweeps) sees only the PagedSource protocol.

Modules:
    protocol  PagedSource, Page, PageCursor
    pager     PageReader, the single owner of a stream's cursor
    queue     LazyPagedQueue (peek / shift over a paged stream)
    http      HttpExecutionSource for the workflow-execution service
    memory    InMemoryPagedSource for tests and local runs
"""

from indexsync.sources.memory import InMemoryPagedSource
from indexsync.sources.pager import PageReader
from indexsync.sources.protocol import Page, PageCursor, PagedSource
from indexsync.sources.queue import LazyPagedQueue

__all__ = [
    "InMemoryPagedSource",
    "LazyPagedQueue",
    "Page",
    "PageCursor",
    "PageReader",
    "PagedSource",
]
