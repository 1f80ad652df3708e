"""
Custom exceptions for the synchronization engine with structured error context.

Each exception carries a context dictionary for debugging and monitoring and
can be serialized with ``to_dict()`` for structured logging.

Exception Hierarchy:
    SyncException (base)
    ├── ConfigurationMissing         no config / no mappings: "nothing to do"
    ├── SourceUnreachable            aborts the current source's run
    │   ├── SourceNetworkError       (retryable)
    │   ├── SourceRateLimitError     (retryable)
    │   ├── SourceAuthenticationError
    │   ├── SourceQueryError
    │   └── SourceConfigurationError
    ├── SchemaEvolutionFailure       logged and swallowed
    ├── RowSyncFailure               logged, row skipped
    ├── PersistenceFailure           stats/last_synced_at could not be written
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all synchronization errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, table, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Run-level signals
# ============================================================================

class ConfigurationMissing(SyncException):
    """
    No SourceConfig or no enabled field mappings for a source.

    Not a failure: the orchestrator turns it into a "nothing to do" result.
    """
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Unusable connection settings
    """
    pass


# ============================================================================
# Source errors
# ============================================================================

class SourceUnreachable(SyncException):
    """
    Base exception for source adapter failures.

    Aborts the current source's run without touching ``last_synced_at``.

    Context should include:
        - source_kind: billing / analytical
        - entity_type: entity being fetched
        - url or query: what was requested
    """
    pass


class SourceNetworkError(RetryableError, SourceUnreachable):
    """Timeouts, connection errors and 5xx responses."""
    pass


class SourceRateLimitError(RetryableError, SourceUnreachable):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class SourceAuthenticationError(NonRetryableError, SourceUnreachable):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class SourceQueryError(SourceUnreachable):
    """A read query against the analytical source failed."""
    pass


class SourceConfigurationError(NonRetryableError, SourceUnreachable):
    """Connection settings are missing or cannot be used to build an adapter."""
    pass


# ============================================================================
# Destination errors
# ============================================================================

class SchemaEvolutionFailure(SyncException):
    """
    Adding a column (or table) to the destination store failed.

    Usually a lost race ("column already exists"); the evolver logs it and
    the run continues.

    Context should include:
        - table_name
        - column_name
        - column_type
    """
    pass


class RowSyncFailure(SyncException):
    """
    Looking up, inserting or updating a single destination row failed.

    Context should include:
        - table_name
        - entity_type
        - key_values: key fields present on the row
        - operation: lookup / insert / update
    """
    pass


class PersistenceFailure(SyncException):
    """
    Writing ``last_synced_at`` / ``last_sync_stats`` failed after data was synchronized.

    Surfaces as a failed run: the next run repeats the work, which is safe
    because synchronization is idempotent.
    """
    pass
