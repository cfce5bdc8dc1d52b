"""
Column-family data model: entities, conditions and queries.

Everything here is immutable. The manager forwards these objects to the
statement builder and hands write-path entities back to the caller unchanged.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping


@dataclass(frozen=True)
class Column:
    """A named value inside a column-family row."""
    name: str
    value: Any


@dataclass(frozen=True, eq=False)
class ColumnEntity:
    """
    One persisted record: the column family it belongs to plus its ordered columns.

    Equality compares the name and the column name/value mapping. Column order
    is ignored, since the store returns key columns first and the rest sorted
    by name regardless of how the entity was written.

    Example:
        entity = ColumnEntity.of("users", {"id": "u1", "name": "Ann"})
        entity.find("name").value  # "Ann"
    """

    name: str
    columns: tuple[Column, ...] = ()

    @classmethod
    def of(
        cls,
        name: str,
        columns: Mapping[str, Any] | Iterable[Column] | None = None,
    ) -> "ColumnEntity":
        """Build an entity from a mapping or an iterable of ``Column``."""
        if columns is None:
            return cls(name=name)
        if isinstance(columns, Mapping):
            return cls(name=name, columns=tuple(Column(k, v) for k, v in columns.items()))
        return cls(name=name, columns=tuple(columns))

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def find(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> dict[str, Any]:
        return {column.name: column.value for column in self.columns}

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnEntity):
            return NotImplemented
        return self.name == other.name and self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        # values may be unhashable collections
        return hash((self.name, frozenset(self.column_names)))


class Operator(str, Enum):
    """Condition operators that CQL can express."""
    EQUALS = "="
    GREATER_THAN = ">"
    GREATER_EQUALS_THAN = ">="
    LESSER_THAN = "<"
    LESSER_EQUALS_THAN = "<="
    IN = "IN"
    AND = "AND"


@dataclass(frozen=True)
class ColumnCondition:
    """
    A predicate over a column, or a conjunction of predicates.

    For ``AND`` conditions ``column`` is ``None`` and ``conditions`` holds the
    operands.
    """

    operator: Operator
    column: Column | None = None
    conditions: tuple["ColumnCondition", ...] = ()

    @classmethod
    def eq(cls, name: str, value: Any) -> "ColumnCondition":
        return cls(Operator.EQUALS, Column(name, value))

    @classmethod
    def gt(cls, name: str, value: Any) -> "ColumnCondition":
        return cls(Operator.GREATER_THAN, Column(name, value))

    @classmethod
    def gte(cls, name: str, value: Any) -> "ColumnCondition":
        return cls(Operator.GREATER_EQUALS_THAN, Column(name, value))

    @classmethod
    def lt(cls, name: str, value: Any) -> "ColumnCondition":
        return cls(Operator.LESSER_THAN, Column(name, value))

    @classmethod
    def lte(cls, name: str, value: Any) -> "ColumnCondition":
        return cls(Operator.LESSER_EQUALS_THAN, Column(name, value))

    @classmethod
    def in_(cls, name: str, values: Iterable[Any]) -> "ColumnCondition":
        return cls(Operator.IN, Column(name, list(values)))

    @classmethod
    def and_(cls, *conditions: "ColumnCondition") -> "ColumnCondition":
        flattened: list[ColumnCondition] = []
        for condition in conditions:
            # keep nested ANDs flat so WHERE clauses read naturally
            if condition.operator is Operator.AND:
                flattened.extend(condition.conditions)
            else:
                flattened.append(condition)
        return cls(Operator.AND, conditions=tuple(flattened))

    def and_also(self, other: "ColumnCondition") -> "ColumnCondition":
        """Combine this condition with ``other``."""
        return ColumnCondition.and_(self, other)


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class Sort:
    name: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def asc(cls, name: str) -> "Sort":
        return cls(name, SortDirection.ASC)

    @classmethod
    def desc(cls, name: str) -> "Sort":
        return cls(name, SortDirection.DESC)


@dataclass(frozen=True)
class ColumnQuery:
    """
    Declarative read or delete request against one column family.

    Attributes:
        column_family: Target table
        condition: Optional WHERE predicate
        columns: Projection (SELECT) or columns to clear (DELETE); empty means all
        sorts: ORDER BY clauses
        limit: Maximum rows to return, ``0`` for no limit
    """

    column_family: str
    condition: ColumnCondition | None = None
    columns: tuple[str, ...] = ()
    sorts: tuple[Sort, ...] = ()
    limit: int = 0

    @classmethod
    def select(
        cls,
        column_family: str,
        *columns: str,
        where: ColumnCondition | None = None,
        order_by: Iterable[Sort] = (),
        limit: int = 0,
    ) -> "ColumnQuery":
        return cls(
            column_family=column_family,
            condition=where,
            columns=tuple(columns),
            sorts=tuple(order_by),
            limit=limit,
        )

    @classmethod
    def delete(
        cls,
        column_family: str,
        *columns: str,
        where: ColumnCondition | None = None,
    ) -> "ColumnQuery":
        return cls(column_family=column_family, condition=where, columns=tuple(columns))
