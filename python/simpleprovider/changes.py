"""Change detection between two instances of the same mapped type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from simpleprovider.base import columns_of, get_value
from simpleprovider.errors import UsageError


@dataclass(frozen=True)
class ChangeRecord:
    """One column whose value differs between two instances."""

    field_name: str
    old_value: Any
    new_value: Any


def has_equality(a: Any, b: Any) -> bool:
    """Compare two column values.

    Text is compared with surrounding whitespace removed, so padded
    fixed-width fields read back from the database do not count as changed.

    Example:
        >>> has_equality("Ann   ", "Ann")
        True
        >>> has_equality(1, 2)
        False
    """
    if a is b:
        return True
    if isinstance(a, str) and isinstance(b, str):
        return a.strip() == b.strip()
    return a == b


def compare(source: Any, target: Any) -> list[ChangeRecord]:
    """List the writable columns whose values differ from ``source`` to ``target``.

    Args:
        source: The original instance
        target: The modified instance

    Returns:
        One ChangeRecord per differing column, keyed by database field name,
        in declaration order

    Raises:
        UsageError: If either argument is None or the exact types differ
    """
    if source is None or target is None:
        raise UsageError("Both source and target are required to compare")
    if type(source) is not type(target):
        raise UsageError(
            f"Cannot compare {type(source).__name__} with {type(target).__name__}"
        )

    changes = []
    for col in columns_of(target):
        if not col.writable:
            continue
        old = get_value(source, col)
        new = get_value(target, col)
        if not has_equality(old, new):
            changes.append(ChangeRecord(col.name, old, new))
    return changes
