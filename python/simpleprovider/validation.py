"""Column contract checks run before any SQL is produced."""

from __future__ import annotations

import typing
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from simpleprovider.base import columns_of, get_value
from simpleprovider.errors import ValidationError
from simpleprovider.fields import ColumnInfo

_SIZED = (str, bytes, bytearray, list, tuple)


def _accepts(data_type: Any, value: Any) -> bool:
    expected = typing.get_origin(data_type) or data_type
    if not isinstance(expected, type) or expected is object:
        return True
    if expected is bool:
        return isinstance(value, bool)
    if isinstance(value, bool):
        # bool subclasses int but is never a number column value
        return False
    if expected is float:
        return isinstance(value, (int, float))
    if expected is Decimal:
        return isinstance(value, (int, Decimal))
    if expected is date:
        return isinstance(value, date) and not isinstance(value, datetime)
    return isinstance(value, expected)


def validate_column(col: ColumnInfo, value: Any) -> None:
    """Check one value against its column declaration.

    Raises:
        ValidationError: If the value breaks the column contract
    """
    if value is None:
        if col.nullable:
            return
        raise ValidationError(f"{col.attribute} contains a null value", field=col.name)

    if not _accepts(col.data_type, value):
        raise ValidationError(
            f"{col.attribute} - Invalid data type: expected {getattr(col.data_type, '__name__', col.data_type)}, "
            f"got {type(value).__name__}",
            field=col.name,
        )

    if col.bounded and isinstance(value, _SIZED) and len(value) > col.max_length:
        raise ValidationError(
            f"{col.attribute} - Exceeds the size allowed for the field ({len(value)} > {col.max_length})",
            field=col.name,
        )


def validate(record: Any) -> bool:
    """Check every writable column of a record.

    Identity and virtual columns are not checked.

    Returns:
        True when the record is valid

    Raises:
        ValidationError: On the first column that breaks its contract
    """
    for col in columns_of(record):
        if not col.writable:
            continue
        validate_column(col, get_value(record, col))
    return True
