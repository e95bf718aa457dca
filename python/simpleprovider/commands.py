"""SQL compilation of mapped objects and filter descriptors into Commands.

Every method of :class:`CommandBuilder` is pure: it reads metadata and the
supplied values and returns a new :class:`Command`. Nothing here touches a
connection.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from simpleprovider.base import DEFAULT_SCHEMA, Mapping, get_value, resolve
from simpleprovider.changes import compare
from simpleprovider.dialects import Dialect, ProviderType, get_dialect
from simpleprovider.errors import UsageError
from simpleprovider.fields import ColumnInfo
from simpleprovider.options import EqualityType, Option
from simpleprovider.validation import validate

ALIAS = "tab"
"""Table alias used by SELECT statements."""

_NON_WORD = re.compile(r"\W")


@dataclass(frozen=True)
class Parameter:
    """A named value bound to a command.

    Args:
        name: Parameter name without the dialect marker
        value: Value sent to the driver
        size: Declared column length, ``-1`` when unbounded
        field: Database field the parameter is compared with or written to
    """

    name: str
    value: Any
    size: int = -1
    field: str | None = None


@dataclass(frozen=True)
class Command:
    """Compiled SQL text plus the parameters it binds.

    Attributes:
        text: SQL text using the dialect's parameter markers
        parameters: Bound parameters, unique by name
        options: Filter descriptors as compiled, carrying disambiguated parameter names
        scope: Identity column to read back after an INSERT
        read_only: The target table rejects writes; the command must not run
        name: Label given by :meth:`CommandBuilder.create_command_sets`
        noop: Differential update with nothing to write; skip execution
    """

    text: str = ""
    parameters: tuple[Parameter, ...] = ()
    options: tuple[Option, ...] = ()
    scope: ColumnInfo | None = None
    read_only: bool = False
    name: str | None = None
    noop: bool = False

    @property
    def has_scope(self) -> bool:
        return self.scope is not None

    @property
    def has_parameters(self) -> bool:
        return len(self.parameters) > 0

    def parameter(self, name: str) -> Parameter:
        """Look up a bound parameter by name."""
        for param in self.parameters:
            if param.name == name:
                return param
        raise LookupError(f"Command has no parameter named {name!r}")

    @classmethod
    def no_changes(cls) -> Command:
        """The sentinel returned by a differential update with zero changes."""
        return cls(noop=True)

    @classmethod
    def from_text(cls, text: str, *options: Option) -> Command:
        """Wrap caller-written SQL, binding each filter option under its parameter name.

        Example:
            >>> Command.from_text("SELECT * FROM Orders WHERE Total > @Total", Option("Total", 10))
        """
        if not text or not text.strip():
            raise UsageError("Command text is required")
        return cls(
            text=text,
            parameters=tuple(
                Parameter(opt.parameter_name, opt.value, field=opt.field_name)
                for opt in options
                if opt.binds_parameter
            ),
            options=tuple(options),
        )


def parameter_name(name: str) -> str:
    """Turn a field name into a valid parameter name."""
    return _NON_WORD.sub("_", name)


def _claim(name: str, index: int, used: set[str]) -> str:
    """Reserve a parameter name, suffixing the descriptor index on collision."""
    candidate = name
    if candidate in used:
        candidate = f"{name}{index}"
    suffix = 0
    while candidate in used:
        suffix += 1
        candidate = f"{name}{index}_{suffix}"
    used.add(candidate)
    return candidate


def _size(mapping: Mapping | None, field_name: str) -> int:
    if mapping is None:
        return -1
    col = mapping.column(field_name)
    return col.max_length if col is not None and col.bounded else -1


class CommandBuilder:
    """Compiles statements for one database kind.

    Example:
        >>> builder = CommandBuilder(ProviderType.SQLSERVER)
        >>> builder.create_insert(Order(CustomerName="Ann")).text
        'INSERT INTO dbo.Order (CustomerName) VALUES (@CustomerName)'
    """

    def __init__(self, provider_type: ProviderType | int = ProviderType.SQLSERVER) -> None:
        self._dialect = get_dialect(provider_type)

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def provider_type(self) -> ProviderType:
        return self._dialect.provider_type

    # ------------------------------------------------------------------
    # Shared clause compilation
    # ------------------------------------------------------------------

    def where(
        self,
        options: Sequence[Option],
        used: set[str] | None = None,
        mapping: Mapping | None = None,
    ) -> tuple[str, tuple[Option, ...], tuple[Parameter, ...]]:
        """Compile the filter options into a WHERE condition.

        Sort-only options are skipped. Null checks, and equality against
        ``None``, bind no parameter. A parameter name already present in
        ``used`` is suffixed with the option's position in ``options``.

        Args:
            options: Filter descriptors in caller order
            used: Parameter names already taken by the command; updated in place
            mapping: Metadata used to resolve attribute names and column lengths

        Returns:
            ``(condition, compiled_options, parameters)``; the condition has
            no ``WHERE`` keyword and is empty when nothing filters
        """
        used = set() if used is None else used
        parts: list[str] = []
        compiled: list[Option] = []
        parameters: list[Parameter] = []

        for index, opt in enumerate(options):
            if not opt.is_filter:
                continue
            field = self._field(opt.field_name, mapping)

            if opt.binds_parameter:
                name = _claim(parameter_name(opt.parameter_name), index, used)
                if name != opt.parameter_name:
                    opt = opt.with_parameter_name(name)
                condition = f"{field} {opt.operator} {self._dialect.parameter(name)}"
                parameters.append(Parameter(name, opt.value, _size(mapping, opt.field_name), field))
            else:
                condition = f"{field} {opt.operator}"

            parts.append(condition if not parts else f"{opt.join.value} {condition}")
            compiled.append(opt)

        return " ".join(parts), tuple(compiled), tuple(parameters)

    def order_by(self, options: Iterable[Option], mapping: Mapping | None = None) -> str:
        """Compile sort directives, in caller order, into an ORDER BY list (no keyword)."""
        return ", ".join(
            f"{self._field(opt.field_name, mapping)} {'ASC' if opt.is_ascending else 'DESC'}"
            for opt in options
            if opt.is_order_by
        )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def create_insert(self, record: Any) -> Command:
        """INSERT of every writable column holding a value.

        Columns whose value is ``None`` are left to the database default.
        The identity column is recorded as the command's scope for read-back.

        Raises:
            ValidationError: If the record breaks a column contract
        """
        mapping = self._mapping(record)
        validate(record)

        names: list[str] = []
        markers: list[str] = []
        parameters: list[Parameter] = []
        scope: ColumnInfo | None = None
        used: set[str] = set()

        for index, col in enumerate(mapping.columns):
            if col.virtual:
                continue
            if col.identity:
                scope = scope or col
                continue
            value = get_value(record, col)
            if value is None:
                continue
            name = _claim(parameter_name(col.name), index, used)
            names.append(col.name)
            markers.append(self._dialect.parameter(name))
            parameters.append(Parameter(name, value, col.max_length if col.bounded else -1, col.name))

        source = self._source(mapping)
        if names:
            text = f"INSERT INTO {source} ({', '.join(names)}) VALUES ({', '.join(markers)})"
        else:
            text = self._dialect.empty_insert(source)

        return Command(
            text=text,
            parameters=tuple(parameters),
            scope=scope,
            read_only=not mapping.definition.is_mutable,
        )

    def create_select(self, record: Any) -> Command:
        """SELECT of the single row matching the record's keys."""
        mapping = self._mapping(record)
        condition, options, parameters = self.where(self._key_options(record, mapping), mapping=mapping)
        return Command(
            text=self._dialect.select(f"{ALIAS}.*", self._aliased(mapping), condition, limit=1),
            parameters=parameters,
            options=options,
        )

    def create_select_for(self, cls: type, *options: Option) -> Command:
        """SELECT of every row of a type matching the filters, in the requested order.

        Example:
            >>> builder.create_select_for(Order, Option("CustomerName", "Ann"), Option("Total", descending=True)).text
            'SELECT tab.* FROM dbo.Order tab WHERE CustomerName = @CustomerName ORDER BY Total DESC'
        """
        mapping = self._mapping(cls)
        condition, compiled, parameters = self.where(options, mapping=mapping)
        return Command(
            text=self._dialect.select(
                f"{ALIAS}.*",
                self._aliased(mapping),
                condition,
                self.order_by(options, mapping),
            ),
            parameters=parameters,
            options=compiled,
        )

    def create_top(self, cls: type, number: int, *options: Option) -> Command:
        """SELECT of at most ``number`` rows; the bound is written into the text."""
        if isinstance(number, bool) or not isinstance(number, int) or number < 0:
            raise UsageError(f"Row count must be a non-negative integer, got {number!r}")
        mapping = self._mapping(cls)
        condition, compiled, parameters = self.where(options, mapping=mapping)
        return Command(
            text=self._dialect.select(
                f"{ALIAS}.*",
                self._aliased(mapping),
                condition,
                self.order_by(options, mapping),
                limit=number,
            ),
            parameters=parameters,
            options=compiled,
        )

    def create_exists(self, record: Any) -> Command:
        """``SELECT COUNT(key)`` over the rows matching the record's keys."""
        mapping = self._mapping(record)
        key_options = self._key_options(record, mapping)
        condition, options, parameters = self.where(key_options, mapping=mapping)
        counted = self._field(key_options[0].field_name, mapping)
        return Command(
            text=self._dialect.select(f"COUNT({ALIAS}.{counted})", self._aliased(mapping), condition),
            parameters=parameters,
            options=options,
        )

    def create_exists_for(self, cls: type, *options: Option) -> Command:
        """``SELECT COUNT(key)`` over the rows of a type matching the filters."""
        mapping = self._mapping(cls)
        condition, compiled, parameters = self.where(options, mapping=mapping)
        return Command(
            text=self._dialect.select(
                f"COUNT({self._counted(mapping)})", self._aliased(mapping), condition
            ),
            parameters=parameters,
            options=compiled,
        )

    def create_count(self, cls: type, field_name: str, *options: Option, distinct: bool = False) -> Command:
        """``SELECT COUNT([DISTINCT] field)`` over the rows matching the filters.

        Sort directives are ignored since the result is a single aggregate.
        """
        if not field_name or not field_name.strip():
            raise UsageError("A field name is required to count")
        mapping = self._mapping(cls)
        condition, compiled, parameters = self.where(options, mapping=mapping)
        field = self._field(field_name.strip(), mapping)
        counted = f"DISTINCT {ALIAS}.{field}" if distinct else f"{ALIAS}.{field}"
        return Command(
            text=self._dialect.select(f"COUNT({counted})", self._aliased(mapping), condition),
            parameters=parameters,
            options=compiled,
        )

    def create_update(self, target: Any, *options: Option) -> Command:
        """UPDATE writing every writable column of ``target``.

        The row is located by the filter options when any filter is given,
        otherwise by the primary keys.

        Raises:
            ValidationError: If the record breaks a column contract
            UsageError: If there is neither a filter nor a primary key
        """
        mapping = self._mapping(target)
        validate(target)
        return self._update(mapping, target, target, mapping.writable, options)

    def create_update_changes(self, target: Any, source: Any, *options: Option) -> Command:
        """UPDATE writing only the columns where ``target`` differs from ``source``.

        Args:
            target: The desired state
            source: The current state, usually as read from the database
            options: Filters locating the row; the source's keys are used when empty

        Returns:
            The update command, or :meth:`Command.no_changes` when nothing differs

        Raises:
            ValidationError: If the target breaks a column contract
            UsageError: On a missing argument, differing types, or the same object twice
        """
        if target is None or source is None:
            raise UsageError("Both target and source are required")
        if type(target) is not type(source):
            raise UsageError(
                f"Objects are not of the same type: {type(target).__name__} and {type(source).__name__}"
            )
        if target is source:
            raise UsageError("Target and source are the same object")

        mapping = self._mapping(target)
        validate(target)

        changed = {change.field_name.lower() for change in compare(source, target)}
        if not changed:
            return Command.no_changes()

        columns = tuple(col for col in mapping.writable if col.name.lower() in changed)
        return self._update(mapping, target, source, columns, options)

    def create_delete(self, record: Any) -> Command:
        """DELETE of the row matching the record's keys."""
        mapping = self._mapping(record)
        condition, options, parameters = self.where(self._key_options(record, mapping), mapping=mapping)
        return Command(
            text=f"DELETE FROM {self._source(mapping)} WHERE {condition}",
            parameters=parameters,
            options=options,
            read_only=not mapping.definition.is_mutable,
        )

    def create_delete_for(self, cls: type, *options: Option) -> Command:
        """DELETE of every row of a type matching the filters."""
        mapping = self._mapping(cls)
        condition, compiled, parameters = self.where(options, mapping=mapping)
        where = f" WHERE {condition}" if condition else ""
        return Command(
            text=f"DELETE FROM {self._source(mapping)}{where}",
            parameters=parameters,
            options=compiled,
            read_only=not mapping.definition.is_mutable,
        )

    def create_execute(self, procedure: str, *parameters: Any, schema: str | None = DEFAULT_SCHEMA) -> Command:
        """Stored procedure call binding positional values as ``p_0, p_1, ...``."""
        if not procedure or not procedure.strip():
            raise UsageError("A procedure name is required")
        bound = tuple(Parameter(f"p_{index}", value) for index, value in enumerate(parameters))
        return Command(
            text=self._dialect.procedure(
                self._dialect.qualify(schema, procedure.strip()),
                [self._dialect.parameter(param.name) for param in bound],
            ),
            parameters=bound,
        )

    def create_identity(self, target: Any, row_id: Any = None) -> Command:
        """Query returning the identity generated by the last INSERT into the target's table.

        Args:
            target: Mapped type or instance with an identity column
            row_id: Driver row locator of the inserted row, for dialects that need one
        """
        mapping = self._mapping(target)
        scope = next((col for col in mapping.columns if col.identity), None)
        if scope is None:
            raise UsageError(f"{mapping.definition.table_name} has no identity column")
        definition = mapping.definition
        parameters: tuple[Parameter, ...] = ()
        if self._dialect.identity_uses_row_id:
            parameters = (Parameter("row_id", row_id),)
        return Command(
            text=self._dialect.identity(definition.schema_name, definition.table_name, scope.name),
            parameters=parameters,
            scope=scope,
        )

    def create_command_sets(self, record: Any) -> list[Command]:
        """The standard statements of a record, labelled for inspection."""
        cls = type(record)
        return [
            dataclasses.replace(self.create_insert(record), name="Insert"),
            dataclasses.replace(self.create_delete(record), name="Delete"),
            dataclasses.replace(self.create_exists(record), name="Exists"),
            dataclasses.replace(self.create_select(record), name="Select"),
            dataclasses.replace(self.create_top(cls, 1000), name="Top (1000)"),
            dataclasses.replace(self.create_update(record), name="Update"),
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _update(
        self,
        mapping: Mapping,
        target: Any,
        source: Any,
        columns: Sequence[ColumnInfo],
        options: Sequence[Option],
    ) -> Command:
        if not columns:
            raise UsageError(f"{mapping.definition.table_name} has no writable columns to update")

        assignments: list[str] = []
        parameters: list[Parameter] = []
        used: set[str] = set()
        for index, col in enumerate(columns):
            name = _claim(f"u_{index}", index, used)
            assignments.append(f"{col.name} = {self._dialect.parameter(name)}")
            parameters.append(Parameter(name, get_value(target, col), col.max_length if col.bounded else -1, col.name))

        filters = [opt for opt in options if opt.equality is not EqualityType.NONE]
        if not filters:
            if not mapping.definition.primary_keys:
                raise UsageError(
                    f"{mapping.definition.table_name} declares no primary key; pass filters to update"
                )
            filters = [Option(col.name, get_value(source, col)) for col in mapping.keys]

        condition, compiled, where_parameters = self.where(filters, used, mapping)
        return Command(
            text=f"UPDATE {self._source(mapping)} SET {', '.join(assignments)} WHERE {condition}",
            parameters=tuple(parameters) + where_parameters,
            options=compiled,
            read_only=not mapping.definition.is_mutable,
        )

    def _mapping(self, target: Any) -> Mapping:
        if target is None:
            raise UsageError("A mapped type or instance is required")
        return resolve(target if isinstance(target, type) else type(target))

    def _source(self, mapping: Mapping) -> str:
        definition = mapping.definition
        return self._dialect.qualify(definition.schema_name, definition.table_name)

    def _aliased(self, mapping: Mapping) -> str:
        return f"{self._source(mapping)} {ALIAS}"

    def _field(self, name: str, mapping: Mapping | None) -> str:
        if mapping is None:
            return name
        col = mapping.column(name)
        if col is None:
            return name
        if col.virtual:
            raise UsageError(f"{name} is a virtual column and has no database field")
        return col.name

    def _counted(self, mapping: Mapping) -> str:
        if mapping.definition.primary_keys:
            return f"{ALIAS}.{mapping.keys[0].name}"
        if mapping.mapped:
            return f"{ALIAS}.{mapping.mapped[0].name}"
        return "*"

    def _key_options(self, record: Any, mapping: Mapping) -> list[Option]:
        columns = mapping.lookup_columns
        if not columns:
            raise UsageError(f"{mapping.definition.table_name} has no columns to locate a row by")
        return [Option(col.name, get_value(record, col)) for col in columns]


__all__ = ["ALIAS", "Command", "CommandBuilder", "Parameter", "parameter_name"]
