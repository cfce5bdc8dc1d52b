"""
Statement builder: turns entities and queries into CQL statements.

Builders are pure functions. They return a ``BuiltStatement`` which the
manager may decorate (TTL, consistency level) before handing the rendered
``SimpleStatement`` and its parameters to the session.
"""

import re
from typing import Any

from cassandra.query import SimpleStatement, ValueSequence

from scylla_column.entity import ColumnCondition, ColumnEntity, ColumnQuery, Operator
from scylla_column.exceptions import InvalidArgumentError, UnsupportedQueryError

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 48

CQL_KEYWORDS = {
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "truncate", "use", "grant", "revoke", "from", "where", "and", "or",
    "table", "keyspace", "index", "materialized", "view", "type",
}


def validate_identifier(name: str, field: str = "identifier") -> str:
    """
    Validate a keyspace, table or column name to prevent CQL injection.

    Args:
        name: Identifier to check
        field: Argument name reported in the error

    Returns:
        The identifier, unchanged

    Raises:
        InvalidArgumentError: If the name is empty, too long, malformed or reserved
    """
    if not isinstance(name, str):
        raise InvalidArgumentError(
            f"must be a string, got {type(name).__name__}", field=field, value=name
        )
    if not name:
        raise InvalidArgumentError("cannot be empty", field=field, value=name)
    if not IDENTIFIER_PATTERN.match(name):
        raise InvalidArgumentError(
            "must start with a letter and contain only alphanumeric characters and underscores",
            field=field,
            value=name
        )
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidArgumentError(
            f"exceeds maximum length ({MAX_IDENTIFIER_LENGTH} characters): {len(name)}",
            field=field,
            value=name
        )
    if name.lower() in CQL_KEYWORDS:
        raise InvalidArgumentError(f"'{name}' is a reserved CQL keyword", field=field, value=name)
    return name


class BuiltStatement:
    """
    A CQL statement under construction.

    Holds the statement body, its bound parameters and the optional
    decorations applied after building. Each manager call builds a fresh
    instance, so decorating in place is safe.
    """

    def __init__(self, kind: str, table: str, body: str, parameters: tuple[Any, ...]):
        self.kind = kind
        self.table = table
        self.body = body
        self.parameters = parameters
        self.ttl: int | None = None
        self.consistency_level: int | None = None

    def using_ttl(self, seconds: int) -> "BuiltStatement":
        if self.kind != "insert":
            raise InvalidArgumentError(
                f"TTL can only be applied to insert statements, not {self.kind}",
                field="ttl",
                value=seconds
            )
        self.ttl = seconds
        return self

    def set_consistency_level(self, level: int) -> "BuiltStatement":
        self.consistency_level = level
        return self

    @property
    def query_string(self) -> str:
        if self.ttl is not None:
            return f"{self.body} USING TTL {self.ttl}"
        return self.body

    def to_statement(self) -> SimpleStatement:
        """Render as a driver statement, carrying the consistency override if any."""
        return SimpleStatement(self.query_string, consistency_level=self.consistency_level)

    def __repr__(self) -> str:
        return (
            f"BuiltStatement(kind={self.kind!r}, query={self.query_string!r}, "
            f"consistency_level={self.consistency_level!r})"
        )


def _qualified(keyspace: str, table: str) -> str:
    return f"{validate_identifier(keyspace, 'keyspace')}.{validate_identifier(table, 'column_family')}"


def _where(condition: ColumnCondition) -> tuple[str, list[Any]]:
    if condition.operator is Operator.AND:
        if not condition.conditions:
            raise UnsupportedQueryError("AND condition requires at least one operand", field="condition")
        clauses: list[str] = []
        parameters: list[Any] = []
        for operand in condition.conditions:
            clause, values = _where(operand)
            clauses.append(clause)
            parameters.extend(values)
        return " AND ".join(clauses), parameters

    if condition.column is None:
        raise UnsupportedQueryError(
            f"Condition {condition.operator.name} requires a column", field="condition"
        )

    name = validate_identifier(condition.column.name, "column")
    if condition.operator is Operator.IN:
        return f"{name} IN %s", [ValueSequence(condition.column.value)]
    if condition.operator in (
        Operator.EQUALS,
        Operator.GREATER_THAN,
        Operator.GREATER_EQUALS_THAN,
        Operator.LESSER_THAN,
        Operator.LESSER_EQUALS_THAN,
    ):
        return f"{name} {condition.operator.value} %s", [condition.column.value]

    raise UnsupportedQueryError(
        f"Operator {condition.operator!r} is not supported by CQL", field="condition"
    )


def build_insert(entity: ColumnEntity, keyspace: str) -> BuiltStatement:
    """Build ``INSERT INTO keyspace.table (...) VALUES (...)`` for ``entity``."""
    if not len(entity):
        raise InvalidArgumentError("entity has no columns to insert", field="entity", value=entity.name)

    table = _qualified(keyspace, entity.name)
    names = [validate_identifier(column.name, "column") for column in entity]
    markers = ", ".join(["%s"] * len(names))
    body = f"INSERT INTO {table} ({', '.join(names)}) VALUES ({markers})"
    return BuiltStatement("insert", entity.name, body, tuple(column.value for column in entity))


def build_delete(query: ColumnQuery, keyspace: str) -> BuiltStatement:
    """Build ``DELETE [columns] FROM keyspace.table WHERE ...`` for ``query``."""
    table = _qualified(keyspace, query.column_family)
    if query.condition is None:
        raise InvalidArgumentError(
            "delete requires a condition", field="query", value=query.column_family
        )

    columns = [validate_identifier(name, "column") for name in query.columns]
    where, parameters = _where(query.condition)
    prefix = f"DELETE {', '.join(columns)} FROM" if columns else "DELETE FROM"
    body = f"{prefix} {table} WHERE {where}"
    return BuiltStatement("delete", query.column_family, body, tuple(parameters))


def build_select(query: ColumnQuery, keyspace: str) -> BuiltStatement:
    """Build ``SELECT ... FROM keyspace.table [WHERE] [ORDER BY] [LIMIT]`` for ``query``."""
    table = _qualified(keyspace, query.column_family)
    projection = ", ".join(validate_identifier(name, "column") for name in query.columns) or "*"
    parts = [f"SELECT {projection} FROM {table}"]
    parameters: list[Any] = []

    if query.condition is not None:
        where, parameters = _where(query.condition)
        parts.append(f"WHERE {where}")

    if query.sorts:
        order = ", ".join(
            f"{validate_identifier(sort.name, 'sort')} {sort.direction.value}" for sort in query.sorts
        )
        parts.append(f"ORDER BY {order}")

    if query.limit < 0:
        raise InvalidArgumentError("must not be negative", field="limit", value=query.limit)
    if query.limit:
        parts.append(f"LIMIT {int(query.limit)}")

    return BuiltStatement("select", query.column_family, " ".join(parts), tuple(parameters))
