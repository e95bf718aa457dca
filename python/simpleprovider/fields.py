"""Column definitions for mapped types."""

from __future__ import annotations

import dataclasses
import types
import typing
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

T = TypeVar("T")

# Types that can never hold NULL unless declared as ``T | None``.
VALUE_TYPES: tuple[type, ...] = (int, float, bool, Decimal, datetime, date, time, timedelta, UUID, Enum)


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Example:
        >>> class Order(Model):
        ...     Id: Mapped[int] = column(identity=True)
        ...     CustomerName: Mapped[str] = column(max_length=50)
        ...     Total: Mapped[Decimal | None]
    """

    pass


@dataclass(frozen=True)
class Relationship:
    """Foreign key reference to another table.

    Args:
        source: The referenced table name
        column_name: The referenced column (defaults to the mapped column name)

    Example:
        >>> CustomerId: Mapped[int] = column(foreign_key=Relationship("Customer", "Id"))
    """

    source: str
    column_name: str | None = None


@dataclass(frozen=True)
class ColumnInfo:
    """Metadata binding one attribute to one database field."""

    name: str | None = None
    attribute: str | None = None
    data_type: Any = None
    optional: bool = False
    nullable: bool | None = None
    identity: bool = False
    virtual: bool = False
    max_length: int = -1
    primary_key: bool = False
    unique: bool = False
    foreign_key: Relationship | None = None
    default: Any = None

    @property
    def writable(self) -> bool:
        """Whether the column is written by INSERT/UPDATE and tracked for changes."""
        return not (self.virtual or self.identity)

    @property
    def bounded(self) -> bool:
        return self.max_length is not None and self.max_length > 0

    @property
    def is_enum(self) -> bool:
        return isinstance(self.data_type, type) and issubclass(self.data_type, Enum)

    def resolve(self, attribute: str, hint: Any) -> ColumnInfo:
        """Fill the unset facts of this column from its attribute name and type hint.

        Explicit values win; anything left unset falls back to a structural default.
        """
        data_type, optional = unwrap_type(hint)
        if self.data_type is not None:
            data_type = self.data_type
        return dataclasses.replace(
            self,
            name=self.name or attribute,
            attribute=attribute,
            data_type=data_type,
            optional=optional,
            nullable=infer_nullable(data_type, optional, self.nullable),
        )


def is_value_type(data_type: Any) -> bool:
    """Check whether values of ``data_type`` can never be ``None`` on their own."""
    return isinstance(data_type, type) and issubclass(data_type, VALUE_TYPES)


def infer_nullable(data_type: Any, optional: bool, declared: bool | None) -> bool:
    """Resolve column nullability.

    A non-optional value type is never nullable. Everything else is nullable
    unless the column declaration says otherwise.
    """
    if is_value_type(data_type) and not optional:
        return False
    if declared is not None:
        return declared
    return True


def unwrap_type(hint: Any) -> tuple[Any, bool]:
    """Extract ``(inner_type, optional)`` from an annotation.

    Handles ``Mapped[T]``, ``Annotated[T, ...]``, ``T | None`` and ``Optional[T]``.
    """
    if hint is None:
        return None, False

    origin = typing.get_origin(hint)
    if origin is typing.Annotated:
        return unwrap_type(typing.get_args(hint)[0])
    if origin is Mapped:
        args = typing.get_args(hint)
        return unwrap_type(args[0]) if args else (None, False)
    if origin is typing.Union or origin is types.UnionType:
        args = typing.get_args(hint)
        non_none = [a for a in args if a is not type(None)]
        optional = len(non_none) != len(args)
        if len(non_none) == 1:
            inner, _ = unwrap_type(non_none[0])
            return inner, optional
        return None, optional
    return hint, False


def column(
    name: str | None = None,
    /,
    *,
    data_type: Any = None,
    nullable: bool | None = None,
    identity: bool = False,
    virtual: bool = False,
    max_length: int = -1,
    primary_key: bool = False,
    unique: bool = False,
    foreign_key: Relationship | None = None,
    default: Any = None,
) -> Any:
    """Define a database column.

    Args:
        name: Database field name when it differs from the attribute name
        data_type: Overrides the type taken from the annotation
        nullable: Whether NULL is allowed (ignored for non-optional value types)
        identity: Database-generated value, never written, read back after insert
        virtual: Computed attribute with no backing field
        max_length: Maximum length in characters/bytes, ``<= 0`` means unchecked
        primary_key: Part of the primary key when the type declares no keys
        unique: Unique in the database (informational)
        foreign_key: Reference to another table (informational)
        default: Value assigned on construction (can be callable)

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> Id: Mapped[int] = column(identity=True)
        >>> CustomerName: Mapped[str] = column(max_length=50)
        >>> Code: Annotated[str, column("order_code", max_length=10)]
    """
    return ColumnInfo(
        name=name,
        data_type=data_type,
        nullable=nullable,
        identity=identity,
        virtual=virtual,
        max_length=max_length if max_length is not None else -1,
        primary_key=primary_key,
        unique=unique,
        foreign_key=foreign_key,
        default=default,
    )
