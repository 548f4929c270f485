"""
Structured logging for indexsync.

Sync cycles run unattended on a schedule, so every log line has to stand on
its own: which cycle, which partition, which cursor. This module configures
structlog once per process and hands out bound loggers.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="indexsync")
              │
              ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars   ← cycle_id / partition bound per task
          3. add_log_level (logger_name bound by get_logger)
          4. stamp service.name
          5. ECS field names (JSON only)
          6. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.info("partition_page_indexed", partition="ingest", indexed=100)

Examples:
    >>> from indexsync.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("cycle_started", partitions=3)

    Scoped context (thread-local through contextvars):

    >>> with LogContext(cycle_id="c-123"):
    ...     logger.info("cycle_watermark_read")

Tags:
    logging, structlog, observability, json-logging, indexsync
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "indexsync"


def _stamp_service(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_field_names(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename structlog keys to their ECS field names."""
    for plain, ecs in (
        ("timestamp", "@timestamp"),
        ("level", "log.level"),
        ("logger_name", "log.logger"),
    ):
        if plain in event_dict:
            event_dict[ecs] = event_dict.pop(plain)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "indexsync",
    add_timestamp: bool = True,
) -> None:
    """Set up structlog for the process; safe to call again to reconfigure.

    Args:
        level: Minimum level name, case-insensitive
        json_format: JSON lines when True, colored console when False; when
            None, JSON unless stderr is a terminal
        service: Value of ``service.name`` on every event
        add_timestamp: Prepend an ISO-8601 ``timestamp``
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service
    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        raise ValueError(f"Unknown log level: {level!r}")

    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _stamp_service,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [structlog.processors.format_exc_info, _ecs_field_names]
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx logs every request at INFO through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=threshold)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, with ``logger_name=name`` bound when given.

    ``logger`` itself is the positional parameter of ``structlog.wrap_logger``
    and cannot be used as a bound key.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind keys for the duration of a ``with`` block.

    On exit the keys go back to what they were before the block, so an inner
    ``LogContext(partition=...)`` never strips an outer ``cycle_id``.

        with LogContext(partition="IngestGranule"):
            logger.info("partition_started")
    """

    def __init__(self, **kwargs: Any):
        self._values = kwargs
        self._bound: Any = None

    def __enter__(self) -> LogContext:
        self._bound = structlog.contextvars.bound_contextvars(**self._values)
        self._bound.__enter__()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._bound.__exit__(*exc)
        self._bound = None


__all__ = [
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
