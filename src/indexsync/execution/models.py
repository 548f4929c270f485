"""
Execution records and their indexed projection.

ExecutionRecord is one run of a named workflow as reported by the
workflow-execution service. IndexDocument is what lands in the
``executions`` index. The document id is the execution name, so writing
the same record twice overwrites a single document (idempotent upsert).

Architecture:
    ::

        source payload ──from_api()──► ExecutionRecord
                                          │  is_indexable (status is terminal)
                                          ▼
                        execution_to_document(record, parse_name)
                                          │
                                          ▼
                               IndexDocument(id=name, ...)
                                          │ fields()
                                          ▼
                          {"workflow_id": ..., "stop_date": <epoch ms>, ...}

Tags:
    execution, workflow, index-document, status, indexsync
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from indexsync.core.errors import ExecutionParseError
from indexsync.core.timestamps import parse_instant, to_epoch_ms


class ExecutionStatus(str, Enum):
    """Lifecycle status of a workflow execution.

    Status strings the source invents later (``CANCELLED``, ``PENDING_REDRIVE``)
    map to ``OTHER``, which is terminal like every status but ``RUNNING``.
    """

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"
    OTHER = "OTHER"

    @classmethod
    def _missing_(cls, value: object) -> ExecutionStatus | None:
        if isinstance(value, str) and value.strip():
            return cls.OTHER
        return None

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING

    @property
    def is_success(self) -> bool:
        return self is ExecutionStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class Partition:
    """An independently paged stream of executions (one per workflow).

    Attributes:
        workflow_id: Logical workflow name, written into each document.
        source_key: What the source pages over (e.g. a state machine ARN).
    """

    workflow_id: str
    source_key: str

    @classmethod
    def parse(cls, value: str) -> Partition:
        """Build from ``"<workflow_id>"`` or ``"<workflow_id>=<source_key>"``."""
        workflow_id, _, source_key = value.partition("=")
        workflow_id = workflow_id.strip()
        if not workflow_id:
            raise ValueError(f"Empty workflow id in {value!r}")
        return cls(workflow_id=workflow_id, source_key=source_key.strip() or workflow_id)

    def __str__(self) -> str:
        return self.workflow_id


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    """One run of a named workflow.

    Immutable once terminal. ``stop_time`` is ``None`` while running.
    """

    workflow_id: str
    name: str
    status: ExecutionStatus
    start_time: datetime
    stop_time: datetime | None = None

    @property
    def elapsed_ms(self) -> int | None:
        if self.stop_time is None:
            return None
        return to_epoch_ms(self.stop_time) - to_epoch_ms(self.start_time)

    @property
    def is_indexable(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_api(cls, workflow_id: str, payload: Mapping[str, Any]) -> ExecutionRecord:
        """Build a record from a workflow-execution API item.

        Expects ``name``, ``status``, ``startDate`` and (for terminal runs)
        ``stopDate``. Dates are ISO 8601 strings or epoch seconds.

        Raises:
            ExecutionParseError: On a missing field, non-string status or bad date.
        """
        try:
            name = payload["name"]
            status = ExecutionStatus(payload["status"])
            start_time = parse_instant(payload["startDate"])
            stop_time = parse_instant(payload.get("stopDate"))
        except (KeyError, ValueError, TypeError) as exc:
            raise ExecutionParseError(
                f"Malformed execution payload: {exc}", cause=exc
            ).with_context(
                partition=workflow_id,
                execution=payload.get("name") if isinstance(payload, Mapping) else None,
            )

        if start_time is None:
            raise ExecutionParseError("Execution has no start date").with_context(
                partition=workflow_id, execution=name
            )
        if status.is_terminal and stop_time is None:
            raise ExecutionParseError("Terminal execution has no stop date").with_context(
                partition=workflow_id, execution=name
            )

        return cls(
            workflow_id=workflow_id,
            name=name,
            status=status,
            start_time=start_time,
            stop_time=stop_time,
        )


@dataclass(frozen=True, slots=True)
class ParsedExecutionName:
    collection_id: str | None
    granule_id: str | None


NameParser = Callable[[str], ParsedExecutionName]

# Exactly two underscores: collection ids themselves use "___" before the version.
_NAME_SEPARATOR = re.compile(r"(?<!_)__(?!_)")


def parse_execution_name(name: str) -> ParsedExecutionName:
    """Split ``<collectionId>__<granuleId>[__<suffix>]``.

    Names that don't follow the convention parse to ``None`` ids; the
    execution is still indexed.

    >>> parse_execution_name("MOD09GQ___006__MOD09GQ.A2017025.h21v00__a1b2")
    ParsedExecutionName(collection_id='MOD09GQ___006', granule_id='MOD09GQ.A2017025.h21v00')
    >>> parse_execution_name("adhoc-run")
    ParsedExecutionName(collection_id=None, granule_id=None)
    """
    parts = _NAME_SEPARATOR.split(name)
    if len(parts) not in (2, 3) or not all(parts):
        return ParsedExecutionName(collection_id=None, granule_id=None)
    return ParsedExecutionName(collection_id=parts[0], granule_id=parts[1])


@dataclass(frozen=True, slots=True)
class IndexDocument:
    """The indexed projection of a terminal ExecutionRecord."""

    id: str
    workflow_id: str
    collection_id: str | None
    granule_id: str | None
    start_date: int
    stop_date: int
    elapsed_ms: int
    success: bool

    def fields(self) -> dict[str, Any]:
        """Index body (everything except the id)."""
        return {
            "workflow_id": self.workflow_id,
            "collection_id": self.collection_id,
            "granule_id": self.granule_id,
            "start_date": self.start_date,
            "stop_date": self.stop_date,
            "elapsed_ms": self.elapsed_ms,
            "success": self.success,
        }


def execution_to_document(
    record: ExecutionRecord,
    parse_name: NameParser = parse_execution_name,
) -> IndexDocument:
    """Project a terminal execution into its index document.

    Raises:
        ValueError: If the record is still running.
    """
    if not record.is_indexable or record.stop_time is None:
        raise ValueError(f"Execution {record.name} is not terminal")

    parsed = parse_name(record.name)
    start_ms = to_epoch_ms(record.start_time)
    stop_ms = to_epoch_ms(record.stop_time)
    return IndexDocument(
        id=record.name,
        workflow_id=record.workflow_id,
        collection_id=parsed.collection_id,
        granule_id=parsed.granule_id,
        start_date=start_ms,
        stop_date=stop_ms,
        elapsed_ms=stop_ms - start_ms,
        success=record.status.is_success,
    )
