"""
Scylla Column - entity manager for Cassandra and ScyllaDB column families.

This package maps entity operations (save, update, delete, find) onto CQL
statements and runs them synchronously or asynchronously, with per-call
consistency and TTL overrides, raw CQL passthrough and prepared statements.
"""

from scylla_column.entity import (
    Column,
    ColumnEntity,
    ColumnCondition,
    ColumnQuery,
    Operator,
    Sort,
    SortDirection,
)

from scylla_column.exceptions import (
    ColumnStoreError,
    InvalidArgumentError,
    UnsupportedQueryError,
    StoreExecutionError,
    StoreConnectionError,
    StoreTimeoutError,
    StoreUnavailableError,
    StoreAuthenticationError,
    StoreQueryError,
    StoreResultError,
    map_driver_error,
)

from scylla_column.query_builder import (
    BuiltStatement,
    build_insert,
    build_delete,
    build_select,
)

from scylla_column.converter import row_to_entity, rows_to_entities
from scylla_column.async_adapter import CompletionListener
from scylla_column.prepared import PreparedQuery

from scylla_column.manager import (
    ColumnFamilyManager,
    ExecutionOptions,
    NOT_PROVIDED,
    MAX_TTL_SECONDS,
)

from scylla_column.config import (
    ColumnStoreConfig,
    AuthConfig,
    PoolConfig,
    RetryConfig,
    MetricsConfig,
    load_config_from_env,
)

from scylla_column.factory import ColumnFamilyManagerFactory

from scylla_column.observability import Tracer, OperationMetrics

__version__ = "1.0.0"

__all__ = [
    # Data model
    "Column",
    "ColumnEntity",
    "ColumnCondition",
    "ColumnQuery",
    "Operator",
    "Sort",
    "SortDirection",
    # Errors
    "ColumnStoreError",
    "InvalidArgumentError",
    "UnsupportedQueryError",
    "StoreExecutionError",
    "StoreConnectionError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    "StoreAuthenticationError",
    "StoreQueryError",
    "StoreResultError",
    "map_driver_error",
    # Statements and rows
    "BuiltStatement",
    "build_insert",
    "build_delete",
    "build_select",
    "row_to_entity",
    "rows_to_entities",
    # Manager
    "ColumnFamilyManager",
    "ExecutionOptions",
    "NOT_PROVIDED",
    "MAX_TTL_SECONDS",
    "CompletionListener",
    "PreparedQuery",
    "ColumnFamilyManagerFactory",
    # Configuration
    "ColumnStoreConfig",
    "AuthConfig",
    "PoolConfig",
    "RetryConfig",
    "MetricsConfig",
    "load_config_from_env",
    # Observability
    "Tracer",
    "OperationMetrics",
]
