"""
Lease-guarded execution of exclusive tasks.

``SyncRunLock`` runs a function only while holding a lease on a key. If
another holder has an unexpired lease, the function is not called and a
``Busy`` value comes back immediately: no waiting, no retry. The lease is
released on every exit path, including when the function raises.

Manifesto:
    The scheduler may fire while the previous cycle is still running, and
    several hosts may run the scheduler. Skipping a tick is always safe
    (the next cycle re-covers the window); running two cycles at once is
    not. Contention is therefore an ordinary outcome, returned as a value,
    and exceptions are kept for real failures.

Architecture:
    ::

        with_lease(key, ttl, fn, *args)
              │
              ▼
        holder_id = "<instance>:<ulid>"     (unique per call)
              │
        store.try_acquire(key, holder_id, ttl)
              │
        ┌─────┴──────────────┐
        │ False               │ True
        ▼                     ▼
        Busy(key,            try:   value = fn(*args)
             holder_id,      finally: store.release(key, holder_id)
             expires_at)            │
                                    ▼
                              Ran(value, key, holder_id)

Examples:
    >>> lock = SyncRunLock(MemoryLeaseStore(), instance_id="host-1")
    >>> outcome = lock.with_lease("execution-indexer", 600, cycle.run)
    >>> match outcome:
    ...     case Ran(value=result):
    ...         report(result)
    ...     case Busy(holder_id=holder):
    ...         logger.info("skipped", holder=holder)

    Decorator form for other exclusive tasks:

    >>> @lock.exclusive("generate-mrf")
    ... def generate_mrf(): ...
    >>> generate_mrf()   # Ran(...) or Busy(...)

Guardrails:
    ❌ DON'T: Choose a TTL shorter than the longest expected run
    ✅ DO: Size the TTL for the worst case; leases are never renewed

    ❌ DON'T: Reuse a holder id across calls
    ✅ DO: Let SyncRunLock generate one per call

Tags:
    lease, lock, exclusive, scheduling, skip-if-busy, indexsync
"""

from __future__ import annotations

import functools
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, ParamSpec, TypeVar

from indexsync.core.logging import get_logger
from indexsync.core.scheduling.lock_manager import LeaseStore
from indexsync.core.timestamps import generate_ulid

logger = get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

# Lease TTL for exclusive tasks other than the indexer.
DEFAULT_EXCLUSIVE_TTL_SECONDS = 20 * 60


@dataclass(frozen=True, slots=True)
class Ran(Generic[T]):
    """The function ran while holding the lease."""

    value: T
    key: str
    holder_id: str


@dataclass(frozen=True, slots=True)
class Busy:
    """Another holder had the lease; the function did not run."""

    key: str
    holder_id: str | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "holder_id": self.holder_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


LeaseOutcome = Ran[T] | Busy


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class SyncRunLock:
    """Runs callables under a lease from a LeaseStore.

    Args:
        store: Lease storage shared by every competing runner
        instance_id: Prefix of generated holder ids (host and pid by default)
    """

    def __init__(self, store: LeaseStore, instance_id: str | None = None) -> None:
        self.store = store
        self.instance_id = instance_id or default_instance_id()

    def new_holder_id(self) -> str:
        return f"{self.instance_id}:{generate_ulid()}"

    def with_lease(
        self,
        key: str,
        ttl_seconds: float,
        fn: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> Ran[T] | Busy:
        """Call ``fn(*args, **kwargs)`` while holding the lease on *key*.

        Returns:
            ``Ran`` with the function's return value, or ``Busy`` if another
            holder has the lease.

        Raises:
            Whatever *fn* raises, after the lease has been released.
        """
        holder_id = self.new_holder_id()
        if not self.store.try_acquire(key, holder_id, ttl_seconds):
            current = self.store.get_lease(key)
            busy = Busy(
                key=key,
                holder_id=current.holder_id if current else None,
                expires_at=current.expires_at if current else None,
            )
            logger.info("lease_busy", **busy.to_dict())
            return busy

        logger.debug("lease_acquired", key=key, holder_id=holder_id, ttl_seconds=ttl_seconds)
        try:
            value = fn(*args, **kwargs)
        finally:
            if not self.store.release(key, holder_id):
                # Expired and taken over, or force-released by an operator.
                logger.warning("lease_lost_before_release", key=key, holder_id=holder_id)
        return Ran(value=value, key=key, holder_id=holder_id)

    def exclusive(
        self,
        key: str,
        ttl_seconds: float = DEFAULT_EXCLUSIVE_TTL_SECONDS,
    ) -> Callable[[Callable[P, T]], Callable[P, Ran[T] | Busy]]:
        """Decorator: every call of the wrapped function runs under the lease."""

        def decorator(fn: Callable[P, T]) -> Callable[P, Ran[T] | Busy]:
            @functools.wraps(fn)
            def wrapper(*args: P.args, **kwargs: P.kwargs) -> Ran[T] | Busy:
                return self.with_lease(key, ttl_seconds, fn, *args, **kwargs)

            return wrapper

        return decorator


__all__ = [
    "Busy",
    "DEFAULT_EXCLUSIVE_TTL_SECONDS",
    "LeaseOutcome",
    "Ran",
    "SyncRunLock",
    "default_instance_id",
]
