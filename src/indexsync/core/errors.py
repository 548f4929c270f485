"""
Structured error types for indexsync.

Every failure the synchronization engine can hit is represented by a typed
error that carries a category, a retry flag, structured context and an
optional chained cause. The sync cycle relies on these types to decide
what is isolated to a single partition and what aborts the whole cycle.

Manifesto:
    - **Typed hierarchy:** One error type per failure mode of the engine
    - **Explicit retry semantics:** Each error knows if a later cycle can retry
    - **Rich context:** Partition key, index name and cursor travel with the error
    - **Error chaining:** The transport exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       IndexSyncError                            │
        │          (category, retryable, context, cause)                  │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  SourceError         SearchIndexError          StorageError     │
        │  (SOURCE)               (INDEX)                (STORAGE)        │
        │     │                      │                      │             │
        │  SourceUnavailableError  BulkWriteError        WatermarkError   │
        │  ExecutionParseError     IndexProvisioningError                 │
        │                                                                 │
        │  ConfigError (CONFIG)                                           │
        └─────────────────────────────────────────────────────────────────┘

    Propagation policy:
        partition-scoped  : SourceUnavailableError, BulkWriteError
                            → recorded on the partition outcome
        cycle-fatal       : IndexProvisioningError, WatermarkError on read
                            → raised to the trigger caller

Examples:
    >>> err = SourceUnavailableError("listExecutions timed out")
    >>> err.retryable
    True
    >>> err.with_context(partition="ingest-granule", cursor="abc").context.partition
    'ingest-granule'

    >>> BulkWriteError("2 documents rejected", failed_ids=["a", "b"]).failed_ids
    ['a', 'b']

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    indexsync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"       # Connection, timeout, DNS
    STORAGE = "STORAGE"       # Watermark / lease persistence
    SOURCE = "SOURCE"         # Paged source (workflow execution API)
    PARSE = "PARSE"           # Payload could not be interpreted
    INDEX = "INDEX"           # Search index admin or writes
    CONFIG = "CONFIG"         # Missing or invalid settings
    INTERNAL = "INTERNAL"     # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields relevant to a failure are set; ``to_dict()`` drops the
    rest so log lines stay compact.

    Attributes:
        partition: Partition (workflow) being synchronized
        index: Search index name
        cursor: Opaque page cursor at the time of failure
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    partition: str | None = None
    index: str | None = None
    cursor: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["partition", "index", "cursor", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class IndexSyncError(Exception):
    """
    Base exception for all indexsync errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.

    Example:
        >>> try:
        ...     raise ConnectionError("DNS lookup failed")
        ... except ConnectionError as e:
        ...     err = SourceUnavailableError("source unreachable", cause=e)
        >>> err.__cause__.__class__.__name__
        'ConnectionError'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> IndexSyncError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SourceUnavailableError("Failed").with_context(
                partition="ingest-granule",
                cursor=cursor,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization and cycle summaries."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SOURCE ERRORS
# =============================================================================


class SourceError(IndexSyncError):
    """Error from the paged source of execution records."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class SourceUnavailableError(SourceError):
    """
    A page fetch failed.

    Retryable by a later cycle; the indexer never retries within a cycle and
    the lazy queue stays positioned on the failed cursor.
    """

    default_retryable = True


class ExecutionParseError(SourceError):
    """An execution payload could not be turned into a record."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# INDEX ERRORS
# =============================================================================


class SearchIndexError(IndexSyncError):
    """Search index admin or write error."""

    default_category = ErrorCategory.INDEX
    default_retryable = False


class BulkWriteError(SearchIndexError):
    """
    A bulk upsert reported one or more failed documents.

    Aborts the affected partition; the cycle does not advance the watermark.
    """

    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        failed_ids: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failed_ids = failed_ids or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.failed_ids:
            result["failed_ids"] = list(self.failed_ids)
        return result


class IndexProvisioningError(SearchIndexError):
    """Index creation or mapping update was rejected. Fatal to the cycle."""

    pass


# =============================================================================
# STORAGE / CONFIG ERRORS
# =============================================================================


class StorageError(IndexSyncError):
    """Persistence error for watermarks or leases."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class WatermarkError(StorageError):
    """The sync watermark could not be read or written."""

    default_retryable = True


class ConfigError(IndexSyncError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, IndexSyncError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        ConnectionResetError,
        ConnectionRefusedError,
        BrokenPipeError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, IndexSyncError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.PARSE
    return ErrorCategory.UNKNOWN


def error_summary(error: Exception) -> dict[str, Any]:
    """Serializable summary of any exception for cycle results."""
    if isinstance(error, IndexSyncError):
        return error.to_dict()
    return {
        "error_type": type(error).__name__,
        "message": str(error),
        "category": categorize_error(error).value,
        "retryable": is_retryable(error),
    }


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "IndexSyncError",
    # Source
    "SourceError",
    "SourceUnavailableError",
    "ExecutionParseError",
    # Index
    "SearchIndexError",
    "BulkWriteError",
    "IndexProvisioningError",
    # Storage / config
    "StorageError",
    "WatermarkError",
    "ConfigError",
    # Utilities
    "is_retryable",
    "categorize_error",
    "error_summary",
]
