"""Exception hierarchy for SimpleProvider.

Every exception raised by the package derives from :class:`ProviderError` and
also from the builtin exception a caller would naturally expect, so existing
``except ValueError`` / ``except TypeError`` handlers keep working.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for all SimpleProvider errors."""


class ValidationError(ProviderError, ValueError):
    """A mapped value violates its column contract.

    Raised before any SQL is produced: null in a non-nullable column,
    a value longer than the declared length, or a value whose type does
    not match the declared column type.
    """

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UsageError(ProviderError, TypeError):
    """The API was called incorrectly (missing argument, mismatched types...)."""


class ReadOnlyError(ProviderError, PermissionError):
    """A mutating command against a read-only table or view reached execution."""


class ExecutionError(ProviderError, RuntimeError):
    """The database driver reported an error while running a statement."""

    def __init__(self, message: str, *, command_text: str | None = None) -> None:
        super().__init__(message)
        self.command_text = command_text


class CommandTimeoutError(ExecutionError):
    """A statement did not finish within the configured command timeout."""


class ConversionError(ExecutionError):
    """A database value could not be converted to the declared attribute type."""
