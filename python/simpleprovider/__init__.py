"""SimpleProvider - A lightweight async ORM that compiles mapped objects to SQL."""

from __future__ import annotations

from simpleprovider.base import (
    DEFAULT_SCHEMA,
    Definition,
    Model,
    columns_of,
    definition,
    describe,
)
from simpleprovider.changes import ChangeRecord, compare
from simpleprovider.commands import Command, CommandBuilder, Parameter
from simpleprovider.config import ProviderConfig, create_provider_from_config
from simpleprovider.dialects import ProviderType
from simpleprovider.errors import (
    CommandTimeoutError,
    ConversionError,
    ExecutionError,
    ProviderError,
    ReadOnlyError,
    UsageError,
    ValidationError,
)
from simpleprovider.fields import ColumnInfo, Mapped, Relationship, column
from simpleprovider.mapper import Record, TupleRow, ValueKind, map_dynamic, map_many, map_one, map_scalar
from simpleprovider.options import EqualityType, Join, Option
from simpleprovider.provider import Provider, create_provider
from simpleprovider.validation import validate

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_provider",
    "create_provider_from_config",
    "Provider",
    "ProviderConfig",
    "ProviderType",
    # Model definition
    "Model",
    "Mapped",
    "column",
    "definition",
    "Relationship",
    "ColumnInfo",
    "Definition",
    "DEFAULT_SCHEMA",
    "describe",
    "columns_of",
    # Filtering
    "Option",
    "EqualityType",
    "Join",
    # Compilation
    "Command",
    "CommandBuilder",
    "Parameter",
    "ChangeRecord",
    "compare",
    "validate",
    # Materialization
    "Record",
    "TupleRow",
    "ValueKind",
    "map_one",
    "map_many",
    "map_dynamic",
    "map_scalar",
    # Errors
    "ProviderError",
    "ValidationError",
    "UsageError",
    "ReadOnlyError",
    "ExecutionError",
    "CommandTimeoutError",
    "ConversionError",
]
