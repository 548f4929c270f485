"""Scheduling primitives for indexsync.

Manifesto:
    A sync cycle is only safe to run periodically if two cycles can never
    overlap. The scheduling package pairs a timing backend (when to fire)
    with lease-guarded execution (whether this firing may run), so that a
    slow cycle, a restart or a second host turns into a skipped tick
    instead of a duplicate run.

    ┌──────────────────┐  tick()  ┌───────────────────────┐  try_acquire  ┌────────────┐
    │ ThreadScheduler  │ ───────► │ SyncRunLock            │ ────────────► │ LeaseStore │
    │ Backend          │          │ .with_lease(key, ttl)  │               │ (SQLite or │
    └──────────────────┘          └───────────────────────┘               │  memory)   │
                                                                           └────────────┘
"""

from indexsync.core.scheduling.lock_manager import (
    Lease,
    LeaseStore,
    MemoryLeaseStore,
    SqliteLeaseStore,
)
from indexsync.core.scheduling.protocol import BackendHealth, SchedulerBackend, TickCallback
from indexsync.core.scheduling.run_lock import (
    DEFAULT_EXCLUSIVE_TTL_SECONDS,
    Busy,
    LeaseOutcome,
    Ran,
    SyncRunLock,
)
from indexsync.core.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    "BackendHealth",
    "Busy",
    "DEFAULT_EXCLUSIVE_TTL_SECONDS",
    "Lease",
    "LeaseOutcome",
    "LeaseStore",
    "MemoryLeaseStore",
    "Ran",
    "SchedulerBackend",
    "SqliteLeaseStore",
    "SyncRunLock",
    "ThreadSchedulerBackend",
    "TickCallback",
]
