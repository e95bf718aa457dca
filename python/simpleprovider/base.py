"""Table metadata and the declarative base for mapped types."""

from __future__ import annotations

import sys
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar, get_type_hints

from simpleprovider.errors import UsageError
from simpleprovider.fields import ColumnInfo, Mapped, Relationship

DEFAULT_SCHEMA = "dbo"

T = TypeVar("T")


@dataclass(frozen=True)
class Definition:
    """Maps a type to a database table or view."""

    table_name: str
    schema_name: str = DEFAULT_SCHEMA
    primary_keys: tuple[str, ...] = ()
    is_read_only: bool = False
    is_view: bool = False

    @property
    def keys_lower(self) -> tuple[str, ...]:
        return tuple(key.lower() for key in self.primary_keys)

    @property
    def is_mutable(self) -> bool:
        """Views and read-only tables reject INSERT/UPDATE/DELETE."""
        return not (self.is_read_only or self.is_view)


@dataclass(frozen=True)
class Mapping:
    """Resolved metadata of one mapped type."""

    definition: Definition
    columns: tuple[ColumnInfo, ...]

    def column(self, name: str) -> ColumnInfo | None:
        """Find a column by database name or attribute name, case-insensitively."""
        lowered = name.lower()
        for col in self.columns:
            if col.name is not None and col.name.lower() == lowered:
                return col
        for col in self.columns:
            if col.attribute is not None and col.attribute.lower() == lowered:
                return col
        return None

    @property
    def mapped(self) -> tuple[ColumnInfo, ...]:
        """Columns with a backing database field."""
        return tuple(col for col in self.columns if not col.virtual)

    @property
    def writable(self) -> tuple[ColumnInfo, ...]:
        return tuple(col for col in self.columns if col.writable)

    @property
    def keys(self) -> tuple[ColumnInfo, ...]:
        """Primary key columns in declaration order of the key list."""
        result = []
        for key in self.definition.primary_keys:
            col = self.column(key)
            if col is None:
                raise UsageError(
                    f"Primary key '{key}' is not a column of {self.definition.table_name}"
                )
            result.append(col)
        return tuple(result)

    @property
    def lookup_columns(self) -> tuple[ColumnInfo, ...]:
        """Columns identifying a row: the primary keys, else every writable column."""
        return self.keys if self.definition.primary_keys else self.writable


# Descriptor table, populated when a Model subclass is created or a plain
# class is first resolved.
_registry: dict[type, Mapping] = {}


def _namespace(klass: type) -> dict[str, Any]:
    module = sys.modules.get(klass.__module__, None)
    globalns = dict(getattr(module, "__dict__", {})) if module else {}
    # Names used by the annotations of Model itself
    globalns.setdefault("Mapped", Mapped)
    globalns.setdefault("ClassVar", ClassVar)
    globalns.setdefault("Any", Any)
    globalns.setdefault("ColumnInfo", ColumnInfo)
    globalns.setdefault("Definition", Definition)
    return globalns


def _type_hints(cls: type) -> dict[str, Any]:
    try:
        return get_type_hints(cls, globalns=_namespace(cls), include_extras=True)
    except Exception:
        pass

    # Resolve base by base; a class whose annotations cannot be resolved yet
    # maps its own columns as untyped
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        own = vars(klass).get("__annotations__", {})
        if not own:
            continue
        # Bare holder so a failing base does not hide this class's own hints
        holder = type(klass.__name__, (), {"__annotations__": dict(own), "__module__": klass.__module__})
        try:
            resolved = get_type_hints(
                holder, globalns=_namespace(klass), localns=dict(vars(klass)), include_extras=True
            )
        except Exception:
            resolved = {}
        for name in own:
            hints[name] = resolved.get(name)
    return hints


def _is_classvar(hint: Any) -> bool:
    return hint is ClassVar or typing.get_origin(hint) is ClassVar


def _annotated_column(hint: Any) -> ColumnInfo | None:
    if typing.get_origin(hint) is typing.Annotated:
        for extra in typing.get_args(hint)[1:]:
            if isinstance(extra, ColumnInfo):
                return extra
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        if args:
            return _annotated_column(args[0])
    return None


def build_columns(cls: type, namespace: dict[str, Any] | None = None) -> tuple[ColumnInfo, ...]:
    """Collect the columns of a type from its annotations.

    Columns come from ``column(...)`` assignments, ``Annotated[T, column(...)]``
    hints, or bare annotations that use the structural defaults.
    """
    hints = _type_hints(cls)
    columns: dict[str, ColumnInfo] = {}

    # Inherited columns first so subclasses keep the parent's declaration order
    for base in reversed(cls.__mro__[1:]):
        for col in getattr(base, "__columns__", {}).values():
            columns[col.attribute] = col

    for attr_name, hint in hints.items():
        if attr_name.startswith("_") or _is_classvar(hint):
            continue
        declared = None
        if namespace is not None:
            declared = namespace.get(attr_name)
        else:
            declared = vars(cls).get(attr_name)
        if not isinstance(declared, ColumnInfo):
            declared = _annotated_column(hint)
        if declared is None:
            if attr_name in columns:
                continue
            default = vars(cls).get(attr_name) if namespace is None else namespace.get(attr_name)
            declared = ColumnInfo(default=default if not callable(default) else None)
        columns[attr_name] = declared.resolve(attr_name, hint)

    return tuple(columns.values())


def _default_keys(columns: tuple[ColumnInfo, ...]) -> tuple[str, ...]:
    return tuple(col.name for col in columns if col.primary_key and col.name)


class ModelMeta(type):
    """Metaclass for mapped models that resolves and registers their metadata."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Model class itself
        if name == "Model" and not any(isinstance(b, ModelMeta) for b in bases):
            return cls

        columns = build_columns(cls, namespace)

        # Column declarations must not shadow instance attributes
        for col in columns:
            if isinstance(namespace.get(col.attribute), ColumnInfo):
                delattr(cls, col.attribute)

        keys = tuple(getattr(cls, "__primary_keys__", ()) or ()) or _default_keys(columns)
        definition = Definition(
            table_name=namespace.get("__tablename__") or name,
            schema_name=getattr(cls, "__schema__", DEFAULT_SCHEMA) or DEFAULT_SCHEMA,
            primary_keys=keys,
            is_read_only=bool(getattr(cls, "__readonly__", False)),
            is_view=bool(getattr(cls, "__view__", False)),
        )

        cls.__tablename__ = definition.table_name  # type: ignore[attr-defined]
        cls.__columns__ = {col.attribute: col for col in columns}  # type: ignore[attr-defined]
        cls.__definition__ = definition  # type: ignore[attr-defined]
        _registry[cls] = Mapping(definition, columns)
        return cls


class Model(metaclass=ModelMeta):
    """Base class for mapped types.

    Example:
        >>> class Order(Model):
        ...     __tablename__ = "Order"
        ...     __primary_keys__ = ("Id",)
        ...     Id: Mapped[int] = column(identity=True)
        ...     CustomerName: Mapped[str] = column(max_length=50)
        ...     Total: Mapped[Decimal | None]
    """

    __tablename__: ClassVar[str]
    __schema__: ClassVar[str] = DEFAULT_SCHEMA
    __primary_keys__: ClassVar[tuple[str, ...]] = ()
    __readonly__: ClassVar[bool] = False
    __view__: ClassVar[bool] = False
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __definition__: ClassVar[Definition]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a model instance with the given column values."""
        columns = self.__columns__
        for key, value in kwargs.items():
            if key not in columns:
                raise TypeError(f"Unknown column: {key}")
            setattr(self, key, value)

        for col_name, col_info in columns.items():
            if col_name in kwargs:
                continue
            default = col_info.default
            setattr(self, col_name, default() if callable(default) else default)

    def __repr__(self) -> str:
        keys = describe(self).primary_keys
        mapping = resolve(type(self))
        parts = []
        for key in keys:
            col = mapping.column(key)
            if col is not None:
                parts.append(f"{col.attribute}={getattr(self, col.attribute, None)!r}")
        if parts:
            return f"<{type(self).__name__} {' '.join(parts)}>"
        return f"<{type(self).__name__}>"

    def to_dict(self) -> dict[str, Any]:
        """Convert the mapped attributes to a dictionary keyed by attribute name."""
        return {name: getattr(self, name, None) for name in self.__columns__}

    @classmethod
    def from_dict(cls: type[T], data: dict[str, Any]) -> T:
        """Create an instance from a dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__columns__})  # type: ignore[attr-defined]


def definition(
    table: str | None = None,
    schema: str = DEFAULT_SCHEMA,
    *keys: str,
    read_only: bool = False,
    view: bool = False,
) -> Callable[[type[T]], type[T]]:
    """Register table facts for a plain class (for example a dataclass).

    Example:
        >>> @definition("Customer", "sales", "Id")
        ... @dataclass
        ... class Customer:
        ...     Id: Annotated[int, column(identity=True)] = 0
        ...     Name: str | None = None
    """

    def decorator(cls: type[T]) -> type[T]:
        columns = build_columns(cls)
        _registry[cls] = Mapping(
            Definition(
                table_name=table or cls.__name__,
                schema_name=schema or DEFAULT_SCHEMA,
                primary_keys=tuple(keys) or _default_keys(columns),
                is_read_only=read_only,
                is_view=view,
            ),
            columns,
        )
        return cls

    return decorator


def resolve(cls: type) -> Mapping:
    """Return the metadata of a mapped type, synthesizing defaults when absent."""
    mapping = _registry.get(cls)
    if mapping is None:
        columns = build_columns(cls)
        mapping = Mapping(
            Definition(table_name=cls.__name__, primary_keys=_default_keys(columns)),
            columns,
        )
        _registry[cls] = mapping
    return mapping


def _type_of(target: Any) -> type:
    if target is None:
        raise UsageError("A mapped type or instance is required")
    return target if isinstance(target, type) else type(target)


def describe(target: Any) -> Definition:
    """Return the table descriptor of a mapped type or instance."""
    return resolve(_type_of(target)).definition


def columns_of(target: Any) -> tuple[ColumnInfo, ...]:
    """Return the column descriptors of a mapped type or instance in declaration order."""
    return resolve(_type_of(target)).columns


def get_value(record: Any, col: ColumnInfo) -> Any:
    """Read the current value of a column from an instance."""
    return getattr(record, col.attribute, None)


def new_instance(cls: type[T]) -> T:
    """Create an empty instance of a mapped type for hydration."""
    if isinstance(cls, ModelMeta):
        return cls()
    instance = object.__new__(cls)
    for col in columns_of(cls):
        default = col.default
        setattr(instance, col.attribute, default() if callable(default) else default)
    return instance


__all__ = [
    "DEFAULT_SCHEMA",
    "Definition",
    "Mapping",
    "Model",
    "ModelMeta",
    "Relationship",
    "columns_of",
    "definition",
    "describe",
    "get_value",
    "new_instance",
    "resolve",
]
