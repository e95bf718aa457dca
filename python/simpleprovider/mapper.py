"""Hydration of result rows into mapped objects, dynamic records and scalars."""

from __future__ import annotations

import collections.abc
import typing
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum, StrEnum
from typing import Any, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from simpleprovider.base import new_instance, resolve
from simpleprovider.errors import ConversionError

T = TypeVar("T")


@runtime_checkable
class Row(Protocol):
    """A tabular result row addressed by field index."""

    @property
    def field_count(self) -> int: ...

    def get_name(self, index: int) -> str: ...

    def is_null(self, index: int) -> bool: ...

    def get_value(self, index: int) -> Any: ...


class TupleRow:
    """In-memory row over a tuple of field names and a tuple of values."""

    __slots__ = ("_names", "_values")

    def __init__(self, names: Sequence[str], values: Sequence[Any]) -> None:
        if len(names) != len(values):
            raise ValueError(f"Row has {len(names)} names but {len(values)} values")
        self._names = tuple(names)
        self._values = tuple(values)

    @property
    def field_count(self) -> int:
        return len(self._names)

    def get_name(self, index: int) -> str:
        return self._names[index]

    def is_null(self, index: int) -> bool:
        return self._values[index] is None

    def get_value(self, index: int) -> Any:
        return self._values[index]

    def __repr__(self) -> str:
        pairs = ", ".join(f"{n}={v!r}" for n, v in zip(self._names, self._values))
        return f"TupleRow({pairs})"


class ValueKind(StrEnum):
    """Scalar kinds a dynamic record value can hold."""

    NULL = "null"
    BOOL = "bool"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    TEXT = "text"
    BYTES = "bytes"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    UUID = "uuid"
    OTHER = "other"


_KINDS: tuple[tuple[type | tuple[type, ...], ValueKind], ...] = (
    # Order matters: bool before int, datetime before date
    (bool, ValueKind.BOOL),
    (int, ValueKind.INTEGER),
    (Decimal, ValueKind.DECIMAL),
    (float, ValueKind.FLOAT),
    (str, ValueKind.TEXT),
    ((bytes, bytearray, memoryview), ValueKind.BYTES),
    (datetime, ValueKind.DATETIME),
    (date, ValueKind.DATE),
    (time, ValueKind.TIME),
    (UUID, ValueKind.UUID),
)


def kind_of(value: Any) -> ValueKind:
    """Classify a database value."""
    if value is None:
        return ValueKind.NULL
    for types, kind in _KINDS:
        if isinstance(value, types):
            return kind
    return ValueKind.OTHER


_TRUE = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE = frozenset({"0", "false", "f", "no", "n", "off"})


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return bool(value)
    raise TypeError(f"cannot read {type(value).__name__} as bool")


def _to_int(value: Any) -> int:
    if isinstance(value, (float, Decimal)) and value != int(value):
        raise ValueError(f"{value!r} is not integral")
    if isinstance(value, str):
        return int(value.strip())
    return int(value)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    return Decimal(value)


def _to_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8")
    return str(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot read {type(value).__name__} as bytes")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"cannot read {type(value).__name__} as datetime")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        return date.fromisoformat(text) if len(text) <= 10 else datetime.fromisoformat(text).date()
    raise TypeError(f"cannot read {type(value).__name__} as date")


def _to_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        # TIME columns come back as durations from some drivers
        return (datetime.min + value).time()
    if isinstance(value, str):
        return time.fromisoformat(value.strip())
    raise TypeError(f"cannot read {type(value).__name__} as time")


def _to_timedelta(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, time):
        return timedelta(hours=value.hour, minutes=value.minute, seconds=value.second, microseconds=value.microsecond)
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return timedelta(seconds=float(value))
    raise TypeError(f"cannot read {type(value).__name__} as timedelta")


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return UUID(bytes=bytes(value))
    return UUID(str(value).strip())


def _to_enum(value: Any, enum_type: type[Enum]) -> Enum:
    try:
        return enum_type(value)
    except ValueError:
        pass
    if isinstance(value, str):
        text = value.strip()
        if text in enum_type.__members__:
            return enum_type[text]
        if text.lstrip("-").isdigit():
            return enum_type(int(text))
    raise ValueError(f"{value!r} is not a member of {enum_type.__name__}")


_CONVERTERS: dict[type, Callable[[Any], Any]] = {
    bool: _to_bool,
    int: _to_int,
    float: float,
    Decimal: _to_decimal,
    str: _to_text,
    bytes: _to_bytes,
    datetime: _to_datetime,
    date: _to_date,
    time: _to_time,
    timedelta: _to_timedelta,
    UUID: _to_uuid,
}


def convert(value: Any, target: Any) -> Any:
    """Convert a database value to the declared type of an attribute.

    ``None`` stays ``None``. Enumerations are matched by value, then by
    member name. Unknown or untyped targets receive the value unchanged.

    Raises:
        ConversionError: If the value cannot be represented as ``target``
    """
    if value is None:
        return None
    target = typing.get_origin(target) or target
    if not isinstance(target, type) or target is object:
        return value
    if type(value) is target:
        return value

    try:
        if issubclass(target, Enum):
            return _to_enum(value, target)
        converter = _CONVERTERS.get(target)
        if converter is not None:
            return converter(value)
        if isinstance(value, target):
            return value
        return target(value)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ConversionError(
            f"Cannot convert {type(value).__name__} value {value!r} to {target.__name__}"
        ) from exc


class Record(collections.abc.Mapping):
    """An ordered, case-insensitive view of one dynamic result row.

    Example:
        >>> record = map_dynamic(TupleRow(("Id", "Name"), (1, "Ann")))
        >>> record["name"], record.Id, record.get_as("Id", str)
        ('Ann', 1, '1')
    """

    __slots__ = ("_names", "_values", "_index")

    def __init__(self, names: Sequence[str], values: Sequence[Any]) -> None:
        self._names = tuple(names)
        self._values = tuple(values)
        self._index: dict[str, int] = {}
        for position, name in enumerate(self._names):
            self._index.setdefault(name.lower(), position)

    def __getitem__(self, name: str) -> Any:
        try:
            return self._values[self._index[name.lower()]]
        except KeyError:
            raise KeyError(name) from None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._index

    def kind(self, name: str) -> ValueKind:
        """Kind of the value stored under ``name``."""
        return kind_of(self[name])

    def get_as(self, name: str, target: type[T]) -> T | None:
        """Value under ``name`` converted to ``target``."""
        return convert(self[name], target)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{n}={v!r}" for n, v in zip(self._names, self._values))
        return f"Record({pairs})"


def _field_index(row: Row) -> dict[str, int]:
    index: dict[str, int] = {}
    for position in range(row.field_count):
        if row.is_null(position):
            continue
        index.setdefault(row.get_name(position).lower(), position)
    return index


def map_one(cls: type[T], row: Row) -> T | None:
    """Hydrate one instance of ``cls`` from a row.

    Columns are matched to non-null fields by database name, then by
    attribute name, case-insensitively. An empty string in an optional
    non-text column is treated as NULL.

    Returns:
        The instance, or None when no column of ``cls`` matches a field

    Raises:
        ConversionError: If a matched value cannot be converted
    """
    fields = _field_index(row)
    if not fields:
        return None

    instance = None
    for col in resolve(cls).mapped:
        position = fields.get(col.name.lower())
        if position is None:
            position = fields.get(col.attribute.lower())
        if position is None:
            continue
        if instance is None:
            instance = new_instance(cls)

        value = row.get_value(position)
        if col.optional and col.data_type is not str and isinstance(value, str) and value == "":
            continue
        setattr(instance, col.attribute, convert(value, col.data_type))
    return instance


def map_many(cls: type[T], rows: Iterable[Row]) -> list[T]:
    """Hydrate every row, preserving order and skipping rows that match nothing."""
    items = []
    for row in rows:
        item = map_one(cls, row)
        if item is not None:
            items.append(item)
    return items


def map_dynamic(row: Row) -> Record:
    """Expose every field of a row, nulls included, as a Record."""
    count = row.field_count
    return Record(
        [row.get_name(i) for i in range(count)],
        [None if row.is_null(i) else row.get_value(i) for i in range(count)],
    )


def map_scalar(target: type[T], row: Row) -> T | None:
    """First field of a row converted to ``target``; None for a NULL or empty row."""
    if row.field_count == 0 or row.is_null(0):
        return None
    return convert(row.get_value(0), target)


def map_values(target: type[T], rows: Iterable[Row]) -> list[T | None]:
    """First field of every row converted to ``target``."""
    return [map_scalar(target, row) for row in rows]


__all__ = [
    "Record",
    "Row",
    "TupleRow",
    "ValueKind",
    "convert",
    "kind_of",
    "map_dynamic",
    "map_many",
    "map_one",
    "map_scalar",
    "map_values",
]
