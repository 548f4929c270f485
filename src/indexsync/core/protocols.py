"""
Shared protocol definitions.

``Connection`` is the minimal synchronous DB-API shape the lease store
needs. ``sqlite3.Connection`` satisfies it as-is; any other driver with
``?``-style parameters works too.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface.

    This is the canonical definition; import it from here rather than
    redeclaring it next to each store.
    """

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> Any:
        """Execute a SQL statement and return a cursor-like object."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...
