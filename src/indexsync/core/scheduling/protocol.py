"""Pluggable timing for periodic sync cycles.

A backend only decides when to call the tick. The tick itself takes the
lease, runs the cycle and logs the result, so a tick that fires while
another cycle holds the lease is skipped by the cycle, not by the backend.

    backend.start(tick, interval_seconds)
          │  every interval
          ▼
    tick() ──► SyncCycle.run_sync_cycle(partitions)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Any]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Anything that can fire a tick on an interval and report its health.

    ``ThreadSchedulerBackend`` is the one shipped implementation; a cron or
    systemd-timer wrapper only needs the same three methods and ``name``.
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 30.0) -> None: ...

    def stop(self) -> None:
        """Stop firing; a tick in progress is allowed to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """``BackendHealth.to_dict()`` shaped status."""
        ...


@dataclass
class BackendHealth:
    healthy: bool
    backend: str
    tick_count: int = 0
    failed_ticks: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
        }
        data.update(self.extra)
        return data
