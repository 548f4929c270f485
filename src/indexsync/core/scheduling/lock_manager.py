"""Lease storage for exclusive sync runs.

Manifesto:
    Two sync cycles for the same index must never run at once, whether
    they come from two threads, two processes or two hosts sharing a lock
    database. A lease store grants a key to one holder at a time with a
    TTL, so a crashed holder blocks others only until its lease expires.
    INSERT-or-ignore semantics give O(1) conflict detection.

This module provides the lease store contract and two implementations:
``SqliteLeaseStore`` (table ``core_sync_leases``, shared by every process
that opens the same database file) and ``MemoryLeaseStore`` (one process).

Tags:
    indexsync, scheduling, leases, TTL, concurrency, safety

    Lease Flow::

        holder A: try_acquire("execution-indexer", A, ttl) → True
        holder B: try_acquire("execution-indexer", B, ttl) → False (A holds)
        holder A: release("execution-indexer", A)          → True
        holder B: try_acquire("execution-indexer", B, ttl) → True

        Expired leases are deleted before the insert, so a lease whose
        holder died is taken over on the next attempt.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from indexsync.core.errors import StorageError
from indexsync.core.logging import get_logger
from indexsync.core.protocols import Connection
from indexsync.core.timestamps import from_iso8601, utc_now

logger = get_logger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class Lease:
    """A time-bounded exclusive claim on a key."""

    key: str
    holder_id: str
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "holder_id": self.holder_id,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@runtime_checkable
class LeaseStore(Protocol):
    """Atomic lease storage."""

    def try_acquire(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        """Grant *key* to *holder_id* unless another unexpired lease exists."""
        ...

    def release(self, key: str, holder_id: str) -> bool:
        """Release *key* if *holder_id* holds it."""
        ...

    def get_lease(self, key: str) -> Lease | None: ...

    def list_active(self) -> list[Lease]: ...

    def force_release(self, key: str) -> bool: ...

    def cleanup_expired(self) -> int: ...

    def close(self) -> None: ...


# =============================================================================
# SQLITE
# =============================================================================

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS core_sync_leases (
    lease_key   TEXT PRIMARY KEY,
    holder_id   TEXT NOT NULL,
    acquired_at TEXT NOT NULL,
    expires_at  TEXT NOT NULL
)
"""


class SqliteLeaseStore:
    """Lease store on a SQL connection (table ``core_sync_leases``).

    Every operation runs under one lock and commits before returning, so a
    single connection can be shared by worker threads. Cross-process
    exclusivity comes from the database's own write lock.

    Example:
        >>> store = SqliteLeaseStore.open(Path("~/.indexsync/leases.db"))
        >>> if store.try_acquire("execution-indexer", "host-1:01J...", 600):
        ...     try:
        ...         run()
        ...     finally:
        ...         store.release("execution-indexer", "host-1:01J...")
    """

    def __init__(self, conn: Connection, *, clock: Clock = utc_now) -> None:
        self.conn = conn
        self._clock = clock
        self._lock = threading.Lock()
        self._owned_conn: sqlite3.Connection | None = None

    @classmethod
    def open(cls, path: Path | str, *, clock: Clock = utc_now) -> SqliteLeaseStore:
        """Open (and create if needed) a lease database file."""
        if str(path) != ":memory:":
            path = Path(path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False, timeout=10.0)
        store = cls(conn, clock=clock)
        store._owned_conn = conn
        store.create_table()
        return store

    def close(self) -> None:
        """Close the connection if this store opened it."""
        if self._owned_conn is not None:
            self._owned_conn.close()
            self._owned_conn = None

    def create_table(self) -> None:
        with self._guard("create_table"):
            self.conn.execute(_CREATE_TABLE)
            self.conn.commit()

    def try_acquire(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        now = self._clock()
        expires = now + timedelta(seconds=ttl_seconds)

        with self._guard("try_acquire", key):
            self.conn.execute(
                "DELETE FROM core_sync_leases WHERE lease_key = ? AND expires_at <= ?",
                (key, _ts(now)),
            )
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO core_sync_leases "
                "(lease_key, holder_id, acquired_at, expires_at) VALUES (?, ?, ?, ?)",
                (key, holder_id, _ts(now), _ts(expires)),
            )
            acquired = cursor.rowcount > 0
            if not acquired:
                # Same holder asking again extends its own lease.
                cursor = self.conn.execute(
                    "UPDATE core_sync_leases SET expires_at = ? "
                    "WHERE lease_key = ? AND holder_id = ?",
                    (_ts(expires), key, holder_id),
                )
                acquired = cursor.rowcount > 0
            self.conn.commit()

        logger.debug("lease_acquire", key=key, holder_id=holder_id, acquired=acquired)
        return acquired

    def release(self, key: str, holder_id: str) -> bool:
        with self._guard("release", key):
            cursor = self.conn.execute(
                "DELETE FROM core_sync_leases WHERE lease_key = ? AND holder_id = ?",
                (key, holder_id),
            )
            self.conn.commit()
        released = cursor.rowcount > 0
        logger.debug("lease_release", key=key, holder_id=holder_id, released=released)
        return released

    def get_lease(self, key: str) -> Lease | None:
        """Unexpired lease on *key*, if any."""
        with self._guard("get_lease", key):
            row = self.conn.execute(
                "SELECT lease_key, holder_id, acquired_at, expires_at "
                "FROM core_sync_leases WHERE lease_key = ? AND expires_at > ?",
                (key, _ts(self._clock())),
            ).fetchone()
        return _row_to_lease(row) if row else None

    def list_active(self) -> list[Lease]:
        with self._guard("list_active"):
            rows = self.conn.execute(
                "SELECT lease_key, holder_id, acquired_at, expires_at "
                "FROM core_sync_leases WHERE expires_at > ? ORDER BY acquired_at",
                (_ts(self._clock()),),
            ).fetchall()
        return [_row_to_lease(row) for row in rows]

    def force_release(self, key: str) -> bool:
        """Drop the lease on *key* whoever holds it (operator recovery)."""
        with self._guard("force_release", key):
            cursor = self.conn.execute(
                "DELETE FROM core_sync_leases WHERE lease_key = ?", (key,)
            )
            self.conn.commit()
        released = cursor.rowcount > 0
        if released:
            logger.warning("lease_force_released", key=key)
        return released

    def cleanup_expired(self) -> int:
        with self._guard("cleanup_expired"):
            cursor = self.conn.execute(
                "DELETE FROM core_sync_leases WHERE expires_at <= ?",
                (_ts(self._clock()),),
            )
            self.conn.commit()
        count = cursor.rowcount
        if count > 0:
            logger.info("leases_expired_removed", count=count)
        return count

    @contextmanager
    def _guard(self, operation: str, key: str | None = None) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise StorageError(
                    f"Lease {operation} failed: {exc}", retryable=True, cause=exc
                ).with_context(lease_key=key) from exc


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _row_to_lease(row: Any) -> Lease:
    return Lease(
        key=row[0],
        holder_id=row[1],
        acquired_at=from_iso8601(row[2]),
        expires_at=from_iso8601(row[3]),
    )


# =============================================================================
# MEMORY
# =============================================================================


class MemoryLeaseStore:
    """Thread-safe in-process lease store."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._leases: dict[str, Lease] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        pass

    def try_acquire(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            current = self._leases.get(key)
            acquired_at = now
            if current is not None and not current.is_expired(now):
                if current.holder_id != holder_id:
                    return False
                acquired_at = current.acquired_at
            self._leases[key] = Lease(
                key=key,
                holder_id=holder_id,
                acquired_at=acquired_at,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            return True

    def release(self, key: str, holder_id: str) -> bool:
        with self._lock:
            current = self._leases.get(key)
            if current is None or current.holder_id != holder_id:
                return False
            del self._leases[key]
            return True

    def get_lease(self, key: str) -> Lease | None:
        now = self._clock()
        with self._lock:
            lease = self._leases.get(key)
        return lease if lease is not None and not lease.is_expired(now) else None

    def list_active(self) -> list[Lease]:
        now = self._clock()
        with self._lock:
            leases = [lease for lease in self._leases.values() if not lease.is_expired(now)]
        return sorted(leases, key=lambda lease: lease.acquired_at)

    def force_release(self, key: str) -> bool:
        with self._lock:
            return self._leases.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, lease in self._leases.items() if lease.is_expired(now)]
            for key in expired:
                del self._leases[key]
        return len(expired)


__all__ = ["Lease", "LeaseStore", "MemoryLeaseStore", "SqliteLeaseStore"]
