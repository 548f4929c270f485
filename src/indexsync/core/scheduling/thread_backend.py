"""Threading-based scheduler backend.

The default way to run sync cycles periodically in one long-lived process.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND                                                               │
│                                                                               │
│   start(tick, interval)                                                       │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                │
│   │              Daemon Thread (loop)                       │                │
│   │                                                         │                │
│   │   [run_immediately: tick()]                             │                │
│   │   while not stop_event.wait(interval):                  │                │
│   │       tick_count += 1                                   │                │
│   │       last_tick = now()                                 │                │
│   │       tick()            ◄── failures logged, loop lives │                │
│   └─────────────────────────────────────────────────────────┘                │
│                                                                               │
│   stop() ──► stop_event.set(); thread.join(timeout)                          │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from indexsync.core.logging import get_logger
from indexsync.core.timestamps import utc_now

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Fires a tick callback on a daemon thread at a fixed interval.

    Args:
        run_immediately: Fire the first tick at start instead of after one
            interval.
        join_timeout: Seconds ``stop()`` waits for a running tick.

    Example:
        >>> backend = ThreadSchedulerBackend(run_immediately=True)
        >>> backend.start(lambda: cycle.run_sync_cycle(partitions), 30.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, *, run_immediately: bool = False, join_timeout: float = 60.0) -> None:
        self.run_immediately = run_immediately
        self.join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._interval: float = 30.0
        self._started = False
        self._lock = threading.Lock()

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 30.0,
    ) -> None:
        """Start the loop in a daemon thread. A second call is ignored."""
        if self._started:
            logger.warning("scheduler_already_started", backend=self.name)
            return
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler_started", backend=self.name, interval_seconds=interval_seconds)
            if self.run_immediately:
                self._tick(tick_callback)
            while not self._stop_event.wait(interval_seconds):
                self._tick(tick_callback)
            logger.info("scheduler_stopped", backend=self.name, tick_count=self._tick_count)

        self._thread = threading.Thread(target=_loop, daemon=True, name="indexsync-scheduler")
        self._thread.start()
        self._started = True

    def _tick(self, tick_callback: TickCallback) -> None:
        with self._lock:
            self._tick_count += 1
            self._last_tick = utc_now()
        try:
            tick_callback()
        except Exception:
            with self._lock:
                self._failed_ticks += 1
            logger.exception("scheduler_tick_failed", tick=self._tick_count)

    def stop(self) -> None:
        """Stop the loop, waiting up to ``join_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                logger.warning("scheduler_stop_timeout", join_timeout=self.join_timeout)

        self._started = False

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop()`` is called or *timeout* elapses.

        Returns True if the backend was stopped.
        """
        return self._stop_event.wait(timeout)

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            failed_ticks=self._failed_ticks,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def failed_ticks(self) -> int:
        return self._failed_ticks

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
