"""
Bridge between a driver ``ResponseFuture`` and a caller's callback.

The driver invokes future callbacks on its own event-loop thread, or inline
when the future has already finished. ``CompletionListener`` never runs user
code there: it only gathers result pages and then hands the single
completion to the manager's executor, where rows are converted and the
caller's callback runs.
"""

import logging
import threading
from concurrent.futures import Executor
from typing import Any, Callable

from scylla_column.exceptions import StoreExecutionError, map_driver_error

logger = logging.getLogger(__name__)

Converter = Callable[[list[Any]], Any]
Completion = Callable[[Any], None]
ErrorCallback = Callable[[StoreExecutionError], None]


class CompletionListener:
    """
    Run a completion exactly once after a pending operation finishes.

    Example:
        future = session.execute_async(statement, parameters)
        CompletionListener(
            future,
            executor,
            callback,
            operation="find",
            convert=rows_to_entities,
        ).register()

    Args:
        future: Pending driver operation (``ResponseFuture``)
        executor: Execution context the completion runs on
        on_complete: Receives the converted result (or the raw rows without ``convert``)
        operation: Operation name used in logs
        errback: Receives the mapped ``StoreExecutionError`` on failure
        query: CQL text for error context
        convert: Turns the gathered rows into the callback payload; failures
            are delivered like store failures
    """

    def __init__(
        self,
        future: Any,
        executor: Executor,
        on_complete: Completion,
        operation: str,
        errback: ErrorCallback | None = None,
        query: str | None = None,
        convert: Converter | None = None,
    ):
        self._future = future
        self._executor = executor
        self._on_complete = on_complete
        self._operation = operation
        self._errback = errback
        self._query = query
        self._convert = convert
        self._rows: list[Any] = []
        self._fired = False
        self._lock = threading.Lock()

    def register(self) -> "CompletionListener":
        """Attach to the future as its completion listener."""
        self._future.add_callbacks(self._on_page, self._on_failure)
        return self

    def _claim(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return True

    def _on_page(self, rows: Any) -> None:
        if self._fired:
            return
        if rows is not None:
            self._rows.extend(rows)

        if getattr(self._future, "has_more_pages", False):
            # callbacks stay registered; the next page lands in _on_page again
            self._future.start_fetching_next_page()
            return

        if self._claim():
            self._executor.submit(self._complete, list(self._rows))

    def _on_failure(self, error: BaseException) -> None:
        if self._claim():
            self._executor.submit(self._fail, map_driver_error(error, self._query))

    def _complete(self, rows: list[Any]) -> None:
        try:
            result = self._convert(rows) if self._convert else rows
        except Exception as e:
            self._fail(map_driver_error(e, self._query))
            return

        try:
            self._on_complete(result)
        except Exception:
            logger.exception(f"Callback for async {self._operation} raised")

    def _fail(self, error: StoreExecutionError) -> None:
        if self._errback is None:
            logger.error(
                f"Async {self._operation} failed and no errback was registered: {error}",
                exc_info=error.original_error or error,
                extra={"operation": self._operation}
            )
            return
        try:
            self._errback(error)
        except Exception:
            logger.exception(f"Errback for async {self._operation} raised")


def log_async_failure(error: BaseException, operation: str, query: str | None = None) -> None:
    """Errback for fire-and-forget dispatches, so failures still reach the logs."""
    mapped = map_driver_error(error, query)
    logger.warning(
        f"Fire-and-forget {operation} failed: {mapped}",
        extra={"operation": operation}
    )
