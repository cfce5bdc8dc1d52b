"""
Column-family manager for Cassandra and ScyllaDB.

``ColumnFamilyManager`` maps entity operations (save, update, delete, find)
onto CQL statements and runs them on a driver session, either blocking the
calling thread or asynchronously with completion delivered on an executor.

Every public entry point funnels into two routines: ``_dispatch`` for
blocking calls and ``_dispatch_async`` for non-blocking ones. Per-call
overrides (TTL, consistency level, callbacks) travel in an
``ExecutionOptions`` value and are applied to the built statement just
before it is sent.
"""

import logging
import time
from concurrent.futures import Executor
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from cassandra import ConsistencyLevel

from scylla_column.async_adapter import CompletionListener, ErrorCallback, log_async_failure
from scylla_column.converter import rows_to_entities, table_from_cql
from scylla_column.entity import ColumnEntity, ColumnQuery
from scylla_column.exceptions import InvalidArgumentError, map_driver_error
from scylla_column.logging_utils import PerformanceLogger
from scylla_column.observability import OperationMetrics, Tracer
from scylla_column.prepared import PreparedQuery
from scylla_column.query_builder import BuiltStatement, build_delete, build_insert, build_select, validate_identifier

logger = logging.getLogger(__name__)

# CQL rejects TTLs above 20 years.
MAX_TTL_SECONDS = 630_720_000


class NOT_PROVIDED:
    """Sentinel value for optional parameters."""
    pass


def coerce_ttl(ttl: timedelta | int | float | None) -> int | None:
    """
    Convert a TTL to whole seconds, dropping any fractional part.

    0 disables expiry. Positive values below one second are rejected since
    they would truncate to 0.

    Raises:
        InvalidArgumentError: If the TTL is negative, not a number or too large
    """
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    elif isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
        seconds = ttl
    else:
        raise InvalidArgumentError(
            f"must be a timedelta or a number of seconds, got {type(ttl).__name__}",
            field="ttl",
            value=ttl
        )

    if seconds != seconds or seconds < 0:
        raise InvalidArgumentError("must be a non-negative duration", field="ttl", value=ttl)
    if 0 < seconds < 1:
        # USING TTL 0 means no expiry
        raise InvalidArgumentError("must be 0 or at least one second", field="ttl", value=ttl)
    if seconds > MAX_TTL_SECONDS:
        raise InvalidArgumentError(
            f"exceeds the maximum of {MAX_TTL_SECONDS} seconds", field="ttl", value=ttl
        )
    return int(seconds)


def coerce_consistency_level(level: Any) -> int | None:
    """
    Resolve a consistency override to the driver's integer constant.

    ``NOT_PROVIDED`` means "use the session default" and yields ``None``.
    Accepts ``ConsistencyLevel`` constants or their names ("QUORUM").

    Raises:
        InvalidArgumentError: If the level is ``None`` or unknown
    """
    if level is NOT_PROVIDED:
        return None
    if level is None:
        raise InvalidArgumentError("ConsistencyLevel is required", field="consistency_level")
    if isinstance(level, str):
        value = ConsistencyLevel.name_to_value.get(level.upper())
        if value is None:
            raise InvalidArgumentError("unknown consistency level", field="consistency_level", value=level)
        return value
    if isinstance(level, int) and not isinstance(level, bool) and level in ConsistencyLevel.value_to_name:
        return level
    raise InvalidArgumentError("unknown consistency level", field="consistency_level", value=level)


@dataclass(frozen=True)
class ExecutionOptions:
    """Per-call overrides applied between building and dispatching a statement."""
    consistency_level: int | None = None
    ttl: int | None = None
    callback: Callable[..., None] | None = None
    errback: ErrorCallback | None = None

    @property
    def observed(self) -> bool:
        return self.callback is not None or self.errback is not None

    def decorate(self, statement: BuiltStatement) -> BuiltStatement:
        if self.ttl is not None:
            statement.using_ttl(self.ttl)
        if self.consistency_level is not None:
            statement.set_consistency_level(self.consistency_level)
        return statement


class ColumnFamilyManager:
    """
    Entity manager bound to one keyspace of a Cassandra/ScyllaDB session.

    The session, executor and keyspace are supplied once and never change.
    The manager keeps no other mutable state, so one instance may be shared
    across threads.

    Example:
        manager = ColumnFamilyManager(session, executor, "app")
        manager.save(ColumnEntity.of("users", {"id": "u1", "name": "Ann"}), ttl=3600)
        users = manager.find(ColumnQuery.select("users", where=ColumnCondition.eq("id", "u1")))
        manager.find_async(query, callback=lambda users: print(users))
    """

    def __init__(
        self,
        session: Any,
        executor: Executor,
        keyspace: str,
        *,
        metrics: OperationMetrics | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            session: Driver ``Session`` (or anything with execute/execute_async/prepare/shutdown)
            executor: Execution context that runs async callbacks
            keyspace: Keyspace every built statement targets
            metrics: Optional metrics sink for synchronous operations
            tracer: Optional tracer; each synchronous operation runs in a span
        """
        if session is None:
            raise InvalidArgumentError("session is required", field="session")
        if executor is None:
            raise InvalidArgumentError("executor is required", field="executor")

        self._session = session
        self._executor = executor
        self._keyspace = validate_identifier(keyspace, "keyspace")
        self._metrics = metrics
        self._tracer = tracer

    @property
    def session(self) -> Any:
        return self._session

    @property
    def keyspace(self) -> str:
        return self._keyspace

    # Write operations

    def save(
        self,
        entity: ColumnEntity,
        ttl: timedelta | int | float | None = None,
        *,
        consistency_level: Any = NOT_PROVIDED,
    ) -> ColumnEntity:
        """
        Insert ``entity`` and return it unchanged.

        Args:
            entity: Entity to write
            ttl: Optional expiry; fractional seconds are dropped
            consistency_level: Override for this statement only

        Raises:
            InvalidArgumentError: Bad TTL or consistency level (nothing is sent)
            StoreExecutionError: The session failed to execute the insert
        """
        return self._save("save", entity, self._options(ttl, consistency_level))

    def save_async(
        self,
        entity: ColumnEntity,
        callback: Callable[[ColumnEntity], None] | None = None,
        *,
        ttl: timedelta | int | float | None = None,
        consistency_level: Any = NOT_PROVIDED,
        errback: ErrorCallback | None = None,
    ) -> Any:
        """
        Insert ``entity`` without waiting for the store.

        Without ``callback`` this is fire-and-forget. With it, ``callback(entity)``
        runs once on the executor after the insert completes; failures go to
        ``errback`` instead.

        Returns:
            The driver ``ResponseFuture``
        """
        return self._save_async("save", entity, self._options(ttl, consistency_level, callback, errback))

    def update(
        self,
        entity: ColumnEntity,
        ttl: timedelta | int | float | None = None,
        *,
        consistency_level: Any = NOT_PROVIDED,
    ) -> ColumnEntity:
        """Upsert ``entity``. CQL inserts and updates share one statement shape."""
        return self._save("update", entity, self._options(ttl, consistency_level))

    def update_async(
        self,
        entity: ColumnEntity,
        callback: Callable[[ColumnEntity], None] | None = None,
        *,
        ttl: timedelta | int | float | None = None,
        consistency_level: Any = NOT_PROVIDED,
        errback: ErrorCallback | None = None,
    ) -> Any:
        return self._save_async("update", entity, self._options(ttl, consistency_level, callback, errback))

    def delete(self, query: ColumnQuery, *, consistency_level: Any = NOT_PROVIDED) -> None:
        options = self._options(consistency_level=consistency_level)
        self._dispatch("delete", build_delete(query, self._keyspace), options)

    def delete_async(
        self,
        query: ColumnQuery,
        callback: Callable[[], None] | None = None,
        *,
        consistency_level: Any = NOT_PROVIDED,
        errback: ErrorCallback | None = None,
    ) -> Any:
        """Delete asynchronously; ``callback()`` takes no arguments."""
        options = self._options(consistency_level=consistency_level, callback=callback, errback=errback)
        return self._dispatch_async(
            "delete",
            build_delete(query, self._keyspace),
            options,
            lambda rows: options.callback() if options.callback else None,
        )

    # Read operations

    def find(self, query: ColumnQuery, *, consistency_level: Any = NOT_PROVIDED) -> list[ColumnEntity]:
        """
        Run a select and convert every row, in store order.

        Returns:
            Matching entities; an empty list when nothing matches
        """
        options = self._options(consistency_level=consistency_level)
        result = self._dispatch("find", build_select(query, self._keyspace), options)
        return rows_to_entities(result, query.column_family)

    def find_async(
        self,
        query: ColumnQuery,
        callback: Callable[[list[ColumnEntity]], None],
        *,
        consistency_level: Any = NOT_PROVIDED,
        errback: ErrorCallback | None = None,
    ) -> Any:
        """Run a select asynchronously; ``callback`` receives all converted rows at once."""
        self._require_callback(callback)
        options = self._options(consistency_level=consistency_level, callback=callback, errback=errback)
        return self._dispatch_async(
            "find",
            build_select(query, self._keyspace),
            options,
            callback,
            convert=lambda rows: rows_to_entities(rows, query.column_family),
        )

    def native_query(self, query: str) -> list[ColumnEntity]:
        """Execute raw CQL, bypassing the statement builder."""
        self._require_cql(query)
        result = self._dispatch("native_query", query, ExecutionOptions())
        return rows_to_entities(result, table_from_cql(query))

    def native_query_async(
        self,
        query: str,
        callback: Callable[[list[ColumnEntity]], None],
        *,
        errback: ErrorCallback | None = None,
    ) -> Any:
        self._require_cql(query)
        self._require_callback(callback)
        name = table_from_cql(query)
        return self._dispatch_async(
            "native_query",
            query,
            ExecutionOptions(callback=callback, errback=errback),
            callback,
            convert=lambda rows: rows_to_entities(rows, name),
        )

    def native_query_prepare(self, query: str) -> PreparedQuery:
        """Prepare raw CQL once for repeated execution by the caller."""
        self._require_cql(query)
        try:
            prepared = self._session.prepare(query)
        except Exception as e:
            raise map_driver_error(e, query) from e
        logger.debug(f"Prepared statement for keyspace '{self._keyspace}': {query}")
        return PreparedQuery(prepared, self._executor, self._session)

    def close(self) -> None:
        """Shut the session down. Do not use the manager afterwards."""
        logger.info(f"Closing column family manager for keyspace '{self._keyspace}'")
        self._session.shutdown()

    def __enter__(self) -> "ColumnFamilyManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ColumnFamilyManager(keyspace={self._keyspace!r}, session={self._session!r})"

    # Internal helper methods

    def _options(
        self,
        ttl: Any = None,
        consistency_level: Any = NOT_PROVIDED,
        callback: Callable[..., None] | None = None,
        errback: ErrorCallback | None = None,
    ) -> ExecutionOptions:
        if callback is not None:
            self._require_callback(callback)
        if errback is not None and not callable(errback):
            raise InvalidArgumentError("must be callable", field="errback", value=errback)
        return ExecutionOptions(
            consistency_level=coerce_consistency_level(consistency_level),
            ttl=coerce_ttl(ttl),
            callback=callback,
            errback=errback,
        )

    @staticmethod
    def _require_callback(callback: Any) -> None:
        if not callable(callback):
            raise InvalidArgumentError("must be callable", field="callback", value=callback)

    @staticmethod
    def _require_cql(query: Any) -> None:
        if not isinstance(query, str) or not query.strip():
            raise InvalidArgumentError("must be a non-empty CQL string", field="query", value=query)

    def _save(self, operation: str, entity: ColumnEntity, options: ExecutionOptions) -> ColumnEntity:
        self._dispatch(operation, build_insert(entity, self._keyspace), options)
        return entity

    def _save_async(self, operation: str, entity: ColumnEntity, options: ExecutionOptions) -> Any:
        return self._dispatch_async(
            operation,
            build_insert(entity, self._keyspace),
            options,
            lambda rows: options.callback(entity) if options.callback else None,
        )

    def _prepare(self, statement: BuiltStatement | str, options: ExecutionOptions) -> tuple[Any, tuple | None, str]:
        if isinstance(statement, str):
            return statement, None, statement
        options.decorate(statement)
        return statement.to_statement(), statement.parameters or None, statement.query_string

    def _dispatch(self, operation: str, statement: BuiltStatement | str, options: ExecutionOptions) -> Any:
        """
        Execute a statement on the calling thread.

        Raises:
            StoreExecutionError: Mapped from whatever the session raised
        """
        driver_statement, parameters, query_string = self._prepare(statement, options)

        span = (
            self._tracer.span(
                f"scylla_column.{operation}",
                {"db.system": "cassandra", "db.name": self._keyspace, "db.statement": query_string},
            )
            if self._tracer
            else nullcontext()
        )

        start_time = time.perf_counter()
        with span, PerformanceLogger(operation, logger, keyspace=self._keyspace):
            try:
                result = self._session.execute(driver_statement, parameters)
            except Exception as e:
                self._record(operation, start_time, error=e)
                raise map_driver_error(e, query_string) from e

        self._record(operation, start_time)
        return result

    def _dispatch_async(
        self,
        operation: str,
        statement: BuiltStatement | str,
        options: ExecutionOptions,
        on_complete: Callable[[Any], None],
        convert: Callable[[list[Any]], Any] | None = None,
    ) -> Any:
        """
        Send a statement without blocking.

        Unobserved calls get a logging errback only. Observed calls get a
        ``CompletionListener`` that runs ``on_complete`` once on the executor,
        passing it the rows after ``convert``.
        """
        driver_statement, parameters, query_string = self._prepare(statement, options)

        try:
            future = self._session.execute_async(driver_statement, parameters)
        except Exception as e:
            raise map_driver_error(e, query_string) from e

        if not options.observed:
            future.add_errback(log_async_failure, operation, query_string)
            return future

        CompletionListener(
            future,
            self._executor,
            on_complete,
            operation=operation,
            errback=options.errback,
            query=query_string,
            convert=convert,
        ).register()
        return future

    def _record(self, operation: str, start_time: float, error: Exception | None = None) -> None:
        if self._metrics is None:
            return
        latency_ms = (time.perf_counter() - start_time) * 1000
        self._metrics.record_query(
            operation,
            latency_ms,
            success=error is None,
            error_type=type(error).__name__ if error else None,
        )
