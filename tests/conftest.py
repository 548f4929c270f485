"""
Shared pytest fixtures for indexsync tests.

This module provides:
- Settings and logging-context cleanup for test isolation
- Captured structlog output (``captured_logs``)
- Deterministic execution records and a controllable clock
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import structlog
from structlog.testing import capture_logs

from indexsync.core.logging import clear_context
from indexsync.core.settings import clear_settings_cache
from indexsync.execution.models import ExecutionRecord, ExecutionStatus


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(
    monkeypatch: pytest.MonkeyPatch, tmp_path
) -> Generator[None, None, None]:
    """Fresh settings per test, never read from a developer's .env."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("INDEXSYNC_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def captured_logs() -> Generator[list[dict[str, Any]], None, None]:
    """Capture structlog events instead of printing them."""
    clear_context()
    with capture_logs() as logs:
        yield logs
    clear_context()
    structlog.reset_defaults()


# =============================================================================
# Records and Time
# =============================================================================

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_record() -> Callable[..., ExecutionRecord]:
    """Factory for ExecutionRecords that stopped *minutes_ago* before T0."""

    def _make(
        name: str,
        *,
        minutes_ago: float = 0,
        status: ExecutionStatus = ExecutionStatus.SUCCEEDED,
        workflow_id: str = "IngestGranule",
        duration_s: float = 30,
    ) -> ExecutionRecord:
        stop = T0 - timedelta(minutes=minutes_ago)
        return ExecutionRecord(
            workflow_id=workflow_id,
            name=name,
            status=status,
            start_time=stop - timedelta(seconds=duration_s),
            stop_time=None if status is ExecutionStatus.RUNNING else stop,
        )

    return _make


@pytest.fixture
def make_history(make_record) -> Callable[..., list[ExecutionRecord]]:
    """Most-recent-first history of *count* executions, one minute apart."""

    def _make(count: int, *, prefix: str = "exec", start_minutes_ago: float = 0,
              workflow_id: str = "IngestGranule") -> list[ExecutionRecord]:
        return [
            make_record(
                f"{prefix}-{i:05d}",
                minutes_ago=start_minutes_ago + i,
                workflow_id=workflow_id,
            )
            for i in range(count)
        ]

    return _make


@pytest.fixture
def t0() -> datetime:
    """Reference instant every fixture record is relative to."""
    return T0
