"""Filter and sort descriptors used to build WHERE and ORDER BY clauses."""

from __future__ import annotations

import copy
from enum import IntEnum, StrEnum
from typing import Any

from simpleprovider.errors import UsageError

_MISSING: Any = object()


class EqualityType(IntEnum):
    """Comparison applied by an :class:`Option` in a WHERE clause."""

    NONE = 0x0000
    """Not a filter; the option only takes part in ORDER BY."""
    EQUALS = 0x0001
    GREATER_THAN = 0x0002
    LESS_THAN = 0x0003
    STARTS_WITH = 0x0004
    """``LIKE 'value%'``"""
    ENDS_WITH = 0x0005
    """``LIKE '%value'``"""
    CONTAINS = 0x0006
    """``LIKE '%value%'``"""
    NOT_EQUAL = 0x0007
    IS_NULL = 0x0008
    IS_NOT_NULL = 0x0009


class Join(StrEnum):
    """Connective placed before a filter in a WHERE clause."""

    AND = "AND"
    OR = "OR"


_OPERATORS = {
    EqualityType.EQUALS: "=",
    EqualityType.NOT_EQUAL: "!=",
    EqualityType.GREATER_THAN: ">",
    EqualityType.LESS_THAN: "<",
    EqualityType.STARTS_WITH: "LIKE",
    EqualityType.ENDS_WITH: "LIKE",
    EqualityType.CONTAINS: "LIKE",
    EqualityType.IS_NULL: "IS NULL",
    EqualityType.IS_NOT_NULL: "IS NOT NULL",
}

_NULL_CHECKS = frozenset({EqualityType.IS_NULL, EqualityType.IS_NOT_NULL})


class Option:
    """A named parameter with a comparison, an ordering directive, or both.

    Example:
        >>> Option("CustomerName", "Ann")                      # CustomerName = @CustomerName
        >>> Option("Total", 100, EqualityType.GREATER_THAN)    # Total > @Total
        >>> Option("Total", descending=True)                   # ORDER BY Total DESC
        >>> Option.order_by("Name", ascending=True)            # ORDER BY Name ASC
        >>> Option("Name", "A", EqualityType.STARTS_WITH, ascending=True)
        >>> Option("Closed", equality=EqualityType.IS_NULL, join=Join.OR)
    """

    __slots__ = ("_field_name", "_value", "_equality", "_order_by", "_ascending", "_join", "_parameter_name")

    def __init__(
        self,
        field_name: str,
        value: Any = _MISSING,
        equality: EqualityType = EqualityType.EQUALS,
        *,
        ascending: bool | None = None,
        descending: bool | None = None,
        join: Join | str = Join.AND,
    ) -> None:
        if ascending is not None and descending is not None and ascending == descending:
            raise UsageError("ascending and descending cannot agree")

        name = (field_name or "").lstrip("@:")
        if not name:
            raise UsageError("Option requires a field name")

        equality = EqualityType(equality)
        sort_only = value is _MISSING and equality not in _NULL_CHECKS
        if sort_only:
            equality = EqualityType.NONE

        self._field_name = name
        self._value = None if value is _MISSING else value
        self._equality = equality
        self._order_by = sort_only or ascending is not None or descending is not None
        if ascending is not None:
            self._ascending = ascending
        elif descending is not None:
            self._ascending = not descending
        else:
            self._ascending = False
        self._join = Join(join.upper() if isinstance(join, str) else join)
        self._parameter_name = name

    @classmethod
    def order_by(cls, field_name: str, ascending: bool = False) -> Option:
        """Create a pure sort directive (descending unless ``ascending`` is set)."""
        return cls(field_name, ascending=ascending)

    @property
    def field_name(self) -> str:
        return self._field_name

    @property
    def parameter_name(self) -> str:
        """Name of the bound parameter; differs from the field name after disambiguation."""
        return self._parameter_name

    @property
    def equality(self) -> EqualityType:
        return self._equality

    @property
    def is_order_by(self) -> bool:
        return self._order_by

    @property
    def is_ascending(self) -> bool:
        return self._ascending

    @property
    def join(self) -> Join:
        return self._join

    @property
    def raw_value(self) -> Any:
        """The value exactly as supplied."""
        return self._value

    @property
    def value(self) -> Any:
        """The value to bind, with LIKE wildcards applied for pattern comparisons."""
        pattern = "" if self._value is None else self._value
        match self._equality:
            case EqualityType.NONE:
                return None
            case EqualityType.STARTS_WITH:
                return f"{pattern}%"
            case EqualityType.ENDS_WITH:
                return f"%{pattern}"
            case EqualityType.CONTAINS:
                return f"%{pattern}%"
            case _:
                return self._value

    @property
    def is_filter(self) -> bool:
        """Whether the option takes part in the WHERE clause."""
        return self._equality is not EqualityType.NONE

    @property
    def operator(self) -> str | None:
        """SQL operator for the comparison, ``None`` for sort directives.

        Equality against ``None`` becomes a null check since ``= NULL`` never matches.
        """
        if self._value is None and self._equality is EqualityType.EQUALS:
            return _OPERATORS[EqualityType.IS_NULL]
        if self._value is None and self._equality is EqualityType.NOT_EQUAL:
            return _OPERATORS[EqualityType.IS_NOT_NULL]
        return _OPERATORS.get(self._equality)

    @property
    def binds_parameter(self) -> bool:
        """Whether compiling this option produces a bound parameter."""
        if not self.is_filter or self._equality in _NULL_CHECKS:
            return False
        return not (
            self._value is None
            and self._equality in (EqualityType.EQUALS, EqualityType.NOT_EQUAL)
        )

    def with_parameter_name(self, name: str) -> Option:
        """Return a copy bound under a different parameter name."""
        clone = copy.copy(self)
        clone._parameter_name = name
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Option):
            return NotImplemented
        return (
            self._field_name == other._field_name
            and self._value == other._value
            and self._equality == other._equality
            and self._order_by == other._order_by
            and self._ascending == other._ascending
            and self._join == other._join
            and self._parameter_name == other._parameter_name
        )

    def __hash__(self) -> int:
        return hash((self._field_name, self._equality, self._order_by, self._ascending, self._parameter_name))

    def __repr__(self) -> str:
        return f"Option({self._field_name!r}, {self._value!r}, {self._equality.name})"

    def __str__(self) -> str:
        return f"Field: {self._field_name} | Value: {self._value}"
