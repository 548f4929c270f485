"""Tests for indexsync.core.scheduling.thread_backend."""

from __future__ import annotations

import threading

import pytest

from indexsync.core.scheduling.protocol import BackendHealth, SchedulerBackend
from indexsync.core.scheduling.thread_backend import ThreadSchedulerBackend


@pytest.fixture()
def backend():
    b = ThreadSchedulerBackend(join_timeout=5.0)
    yield b
    b.stop()


class TestLifecycle:
    def test_satisfies_protocol(self, backend):
        assert isinstance(backend, SchedulerBackend)

    def test_not_running_before_start(self, backend):
        assert backend.is_running is False
        assert backend.tick_count == 0

    def test_ticks_repeatedly(self, backend):
        fired = threading.Event()
        calls = []

        def tick():
            calls.append(1)
            if len(calls) >= 3:
                fired.set()

        backend.start(tick, 0.01)
        assert fired.wait(5.0)
        assert backend.is_running
        backend.stop()
        assert not backend.is_running
        assert backend.tick_count >= 3
        assert backend.last_tick is not None

    def test_run_immediately(self):
        backend = ThreadSchedulerBackend(run_immediately=True)
        fired = threading.Event()
        try:
            backend.start(fired.set, 3600)
            assert fired.wait(5.0)
        finally:
            backend.stop()
        assert backend.tick_count == 1

    def test_failing_tick_keeps_loop_alive(self, backend, captured_logs):
        done = threading.Event()
        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("cycle exploded")
            done.set()

        backend.start(tick, 0.01)
        assert done.wait(5.0)
        backend.stop()
        assert backend.failed_ticks == 1
        assert any(e["event"] == "scheduler_tick_failed" for e in captured_logs)

    def test_second_start_is_ignored(self, backend, captured_logs):
        backend.start(lambda: None, 3600)
        backend.start(lambda: None, 3600)
        assert any(e["event"] == "scheduler_already_started" for e in captured_logs)

    def test_invalid_interval(self, backend):
        with pytest.raises(ValueError):
            backend.start(lambda: None, 0)

    def test_stop_without_start(self, backend):
        backend.stop()
        assert backend.is_running is False

    def test_wait_returns_after_stop(self, backend):
        backend.start(lambda: None, 3600)
        assert backend.wait(0.01) is False
        backend.stop()
        assert backend.wait(0.01) is True


class TestHealth:
    def test_health_dict(self, backend):
        backend.start(lambda: None, 3600)
        health = backend.health()
        assert health["healthy"] is True
        assert health["backend"] == "thread"
        assert health["interval_seconds"] == 3600
        assert health["last_tick"] is None

    def test_backend_health_to_dict(self):
        health = BackendHealth(healthy=False, backend="thread", extra={"x": 1})
        assert health.to_dict() == {
            "healthy": False,
            "backend": "thread",
            "tick_count": 0,
            "failed_ticks": 0,
            "last_tick": None,
            "x": 1,
        }
