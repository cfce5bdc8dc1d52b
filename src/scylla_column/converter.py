"""
Result converter: maps driver rows to ``ColumnEntity`` objects.

Supports both row shapes the driver produces: named tuples from the default
``named_tuple_factory`` and plain dicts from ``dict_factory``.
"""

import re
from typing import Any, Iterable, Mapping

from scylla_column.entity import Column, ColumnEntity
from scylla_column.exceptions import StoreResultError

_FROM_CLAUSE = re.compile(r"\bFROM\s+(?:\"?\w+\"?\.)?\"?(\w+)\"?", re.IGNORECASE)


def row_to_entity(row: Any, name: str = "") -> ColumnEntity:
    """
    Convert one result row into an entity.

    Args:
        row: Named tuple or mapping returned by the driver
        name: Column family the row was read from

    Returns:
        Entity whose columns follow the row's column order

    Raises:
        StoreResultError: If the row is neither a mapping nor a named tuple
    """
    if isinstance(row, Mapping):
        items = row.items()
    elif hasattr(row, "_asdict"):
        items = row._asdict().items()
    else:
        raise StoreResultError(f"Cannot convert row of type {type(row).__name__} to an entity")
    return ColumnEntity(name=name, columns=tuple(Column(key, value) for key, value in items))


def rows_to_entities(rows: Iterable[Any], name: str = "") -> list[ColumnEntity]:
    """Convert every row, preserving result order. ``None`` yields an empty list."""
    if rows is None:
        return []
    return [row_to_entity(row, name) for row in rows]


def table_from_cql(cql: str) -> str:
    """Best-effort column family name from a raw query's FROM clause."""
    match = _FROM_CLAUSE.search(cql)
    return match.group(1) if match else ""
