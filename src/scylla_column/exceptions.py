"""
Error taxonomy for the column-family manager.

Argument errors are raised before anything reaches the cluster. Execution
errors wrap the Cassandra driver exception that caused them.
"""

import logging
from typing import Any

from cassandra import (
    AuthenticationFailed,
    CoordinationFailure,
    DriverException,
    InvalidRequest,
    OperationTimedOut,
    ReadTimeout,
    RequestExecutionException,
    Unauthorized,
    Unavailable,
    WriteTimeout,
)
from cassandra.cluster import NoHostAvailable

logger = logging.getLogger(__name__)


class ColumnStoreError(Exception):
    """
    Base exception for column store errors.

    Wraps underlying Cassandra driver exceptions with additional context.
    Construction only logs at DEBUG; whoever handles the failure reports it.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """
        Initialize store error.

        Args:
            message: Human-readable error message
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error
        self.message = message

        if original_error:
            logger.debug(
                f"{self.__class__.__name__}: {message}",
                exc_info=original_error,
                extra={
                    "error_type": type(original_error).__name__,
                    "error_message": str(original_error)
                }
            )
        else:
            logger.debug(f"{self.__class__.__name__}: {message}")

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, original_error={self.original_error!r})"


class InvalidArgumentError(ColumnStoreError, ValueError):
    """
    Raised when an operation is called with an unusable argument.

    This includes:
    - An explicit ``None`` consistency level
    - Negative or non-numeric TTLs
    - Invalid CQL identifiers
    - Empty entities

    Never retried; nothing has been sent to the store.
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        self.field = field
        self.value = value
        if field:
            message = f"Invalid argument '{field}': {message}"
        super().__init__(message)


class UnsupportedQueryError(InvalidArgumentError):
    """Raised when a query cannot be expressed in CQL (e.g. OR conditions)."""


class StoreExecutionError(ColumnStoreError):
    """
    Raised when the session fails to execute a statement.

    Covers network failures, timeouts and server-side rejections. Not
    retried here; retry policy belongs to the driver's execution profile.
    """

    def __init__(self, message: str, original_error: Exception | None = None, query: str | None = None):
        self.query = query
        if query:
            message = f"{message} [Query: {query[:100]}]"
        super().__init__(message, original_error)


class StoreConnectionError(StoreExecutionError):
    """Raised when no host is available to serve the request."""


class StoreTimeoutError(StoreExecutionError):
    """
    Raised when an operation times out.

    Indicates that replicas failed to respond before the configured timeout,
    or that the client gave up waiting.
    """

    def __init__(
        self,
        message: str = "Operation timed out",
        original_error: Exception | None = None,
        query: str | None = None,
        operation_type: str | None = None
    ):
        self.operation_type = operation_type
        if operation_type:
            message = f"{message} (operation={operation_type})"
        super().__init__(message, original_error, query)


class StoreUnavailableError(StoreExecutionError):
    """
    Raised when required replicas are unavailable.

    Not enough live replicas exist to satisfy the requested consistency level.
    """

    def __init__(
        self,
        message: str = "Required replicas unavailable",
        original_error: Exception | None = None,
        query: str | None = None,
        consistency_level: str | None = None,
        required_replicas: int | None = None,
        alive_replicas: int | None = None
    ):
        self.consistency_level = consistency_level
        self.required_replicas = required_replicas
        self.alive_replicas = alive_replicas

        details = []
        if consistency_level:
            details.append(f"consistency={consistency_level}")
        if required_replicas is not None and alive_replicas is not None:
            details.append(f"required={required_replicas}, alive={alive_replicas}")
        if details:
            message = f"{message} ({', '.join(details)})"

        super().__init__(message, original_error, query)


class StoreAuthenticationError(StoreExecutionError):
    """Raised when authentication or authorization fails."""


class StoreQueryError(StoreExecutionError):
    """Raised when the cluster rejects or fails a query."""


class StoreResultError(StoreExecutionError, TypeError):
    """Raised when a row returned by the store cannot be converted to an entity."""


def map_driver_error(error: BaseException, query: str | None = None) -> StoreExecutionError:
    """
    Translate a driver exception into the matching ``StoreExecutionError``.

    Args:
        error: Exception raised by ``Session.execute`` or delivered to an errback
        query: CQL text of the failed statement, for context

    Returns:
        The wrapped error (already-wrapped errors are returned as-is)
    """
    if isinstance(error, StoreExecutionError):
        return error

    if isinstance(error, NoHostAvailable):
        return StoreConnectionError("No hosts available for query execution", error, query)

    if isinstance(error, (ReadTimeout, WriteTimeout)):
        operation = "read" if isinstance(error, ReadTimeout) else "write"
        return StoreTimeoutError(
            f"{operation.capitalize()} operation timed out",
            original_error=error,
            query=query,
            operation_type=operation
        )

    if isinstance(error, OperationTimedOut):
        return StoreTimeoutError("Client-side operation timeout", error, query)

    if isinstance(error, Unavailable):
        consistency = getattr(error, "consistency", None)
        return StoreUnavailableError(
            original_error=error,
            query=query,
            consistency_level=str(consistency) if consistency is not None else None,
            required_replicas=getattr(error, "required_replicas", None),
            alive_replicas=getattr(error, "alive_replicas", None)
        )

    if isinstance(error, (Unauthorized, AuthenticationFailed)):
        return StoreAuthenticationError("Authentication or authorization failed", error, query)

    if isinstance(error, InvalidRequest):
        return StoreQueryError(f"Invalid query: {error}", error, query)

    if isinstance(error, CoordinationFailure):
        return StoreQueryError("Coordination failure", error, query)

    if isinstance(error, RequestExecutionException):
        return StoreQueryError(f"Query execution failed: {error}", error, query)

    if isinstance(error, DriverException):
        return StoreQueryError(f"Driver error: {error}", error, query)

    return StoreQueryError(f"Unexpected error: {error}", error, query)
