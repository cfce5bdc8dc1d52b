"""
Reusable prepared statements returned by ``ColumnFamilyManager.native_query_prepare``.
"""

import logging
from concurrent.futures import Executor
from typing import Any, Callable

from scylla_column.async_adapter import CompletionListener, ErrorCallback
from scylla_column.converter import rows_to_entities, table_from_cql
from scylla_column.entity import ColumnEntity
from scylla_column.exceptions import InvalidArgumentError, map_driver_error

logger = logging.getLogger(__name__)


class PreparedQuery:
    """
    A prepared CQL statement bound to the manager's session and executor.

    The handle belongs to the caller; the manager neither caches nor expires
    it. ``bind`` never changes the handle it is called on: it returns a new
    handle carrying the bound values, so one prepared handle can be shared
    across threads and bound once per execution.

    Example:
        prepared = manager.native_query_prepare("SELECT * FROM ks.users WHERE id = ?")
        users = prepared.bind("u1").execute()
    """

    def __init__(self, prepared: Any, executor: Executor, session: Any, bound: Any = None):
        self._prepared = prepared
        self._executor = executor
        self._session = session
        self._bound = bound
        self.name = table_from_cql(getattr(prepared, "query_string", "") or "")

    @property
    def statement(self) -> Any:
        """The driver ``PreparedStatement``."""
        return self._prepared

    @property
    def query_string(self) -> str:
        return getattr(self._prepared, "query_string", "")

    @property
    def bound(self) -> bool:
        return self._bound is not None

    def bind(self, *values: Any) -> "PreparedQuery":
        """Return a new handle with ``values`` bound to the markers, in order."""
        try:
            bound = self._prepared.bind(values)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(str(e), field="values", value=values) from e
        return PreparedQuery(self._prepared, self._executor, self._session, bound=bound)

    def _statement(self) -> Any:
        if self._bound is not None:
            return self._bound
        if getattr(self._prepared, "column_metadata", None):
            raise InvalidArgumentError(
                "statement has bind markers; call bind() before executing",
                field="values"
            )
        return self._prepared

    def execute(self) -> list[ColumnEntity]:
        statement = self._statement()
        try:
            result = self._session.execute(statement)
        except Exception as e:
            raise map_driver_error(e, self.query_string) from e
        return rows_to_entities(result, self.name)

    def execute_async(
        self,
        callback: Callable[[list[ColumnEntity]], None],
        errback: ErrorCallback | None = None,
    ) -> Any:
        if not callable(callback):
            raise InvalidArgumentError("must be callable", field="callback", value=callback)

        statement = self._statement()
        try:
            future = self._session.execute_async(statement)
        except Exception as e:
            raise map_driver_error(e, self.query_string) from e

        CompletionListener(
            future,
            self._executor,
            callback,
            operation="prepared_query",
            errback=errback,
            query=self.query_string,
            convert=lambda rows: rows_to_entities(rows, self.name),
        ).register()
        return future

    def __repr__(self) -> str:
        return f"PreparedQuery(query={self.query_string!r}, bound={self.bound})"
