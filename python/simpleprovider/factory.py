"""Dispatch from database kind to driver, paramstyle and dialect.

``BACKENDS`` holds one :class:`Backend` per :class:`ProviderType`. A backend
opens connections, turns a compiled :class:`Command` into an executable
:class:`Statement` for its driver, and sizes parameters from the column
lengths recorded at compile time.

Drivers are imported when a backend connects, so only the drivers that are
actually used need to be installed:

=============  ============  ==========
Database       Driver        Paramstyle
=============  ============  ==========
SQLite         aiosqlite     named
PostgreSQL     asyncpg       numeric
MySQL          aiomysql      pyformat
SQL Server     aioodbc       qmark
Oracle         oracledb      named
=============  ============  ==========
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum, StrEnum
from typing import Any, Protocol
from urllib.parse import parse_qsl, unquote, urlsplit
from uuid import UUID

from simpleprovider.commands import Command, Parameter
from simpleprovider.dialects import Dialect, ProviderType, get_dialect
from simpleprovider.errors import UsageError
from simpleprovider.mapper import TupleRow


class ParamStyle(StrEnum):
    """How a driver expects parameters in SQL text (PEP 249 names)."""

    NAMED = "named"
    """``:name``"""
    PYFORMAT = "pyformat"
    """``%(name)s``"""
    QMARK = "qmark"
    """``?``"""
    NUMERIC = "numeric"
    """``$1``"""


# Quoted literals are matched first so markers inside them stay untouched.
# The lookbehind skips ``@@IDENTITY``, ``::type`` casts and ``user@host``.
_TOKEN = re.compile(r"('(?:[^']|'')*')|(?<![@:\w])[@:](\w+)")


def translate(text: str, names: Collection[str], style: ParamStyle) -> tuple[str, list[str]]:
    """Rewrite ``@name`` / ``:name`` markers into the driver's paramstyle.

    Only markers naming one of ``names`` are rewritten.

    Args:
        text: Command text
        names: Names of the parameters bound to the command
        style: Target paramstyle

    Returns:
        ``(driver_text, order)`` where ``order`` lists the parameter name of
        each positional slot (repeats included for qmark)

    Example:
        >>> translate("SELECT * FROM t WHERE a = @a AND b = @b", {"a", "b"}, ParamStyle.QMARK)
        ('SELECT * FROM t WHERE a = ? AND b = ?', ['a', 'b'])
    """
    order: list[str] = []
    numbers: dict[str, int] = {}

    def replace(token: re.Match[str]) -> str:
        literal, name = token.group(1), token.group(2)
        if literal is not None:
            return literal.replace("%", "%%") if style is ParamStyle.PYFORMAT and names else literal
        if name not in names:
            return token.group(0)
        match style:
            case ParamStyle.NAMED:
                if name not in order:
                    order.append(name)
                return f":{name}"
            case ParamStyle.PYFORMAT:
                if name not in order:
                    order.append(name)
                return f"%({name})s"
            case ParamStyle.QMARK:
                order.append(name)
                return "?"
            case ParamStyle.NUMERIC:
                if name not in numbers:
                    order.append(name)
                    numbers[name] = len(order)
                return f"${numbers[name]}"
        raise UsageError(f"Unknown paramstyle: {style}")

    if style is ParamStyle.PYFORMAT and names:
        # Bare percent signs outside literals must survive %-formatting
        pieces = []
        last = 0
        for token in _TOKEN.finditer(text):
            pieces.append(text[last : token.start()].replace("%", "%%"))
            pieces.append(replace(token))
            last = token.end()
        pieces.append(text[last:].replace("%", "%%"))
        return "".join(pieces), order

    return _TOKEN.sub(replace, text), order


@dataclass(frozen=True)
class Statement:
    """A Command bound for one driver.

    Attributes:
        text: SQL in the driver's paramstyle
        arguments: Mapping for named styles, sequence for positional ones, None without parameters
        sizes: Declared length of each bounded text/binary parameter
        command: The compiled command this statement executes
    """

    text: str
    arguments: dict[str, Any] | list[Any] | None
    sizes: dict[str, int] = field(default_factory=dict)
    command: Command | None = None


@dataclass
class Result:
    """Buffered outcome of one statement."""

    columns: tuple[str, ...] = ()
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Any = None

    def records(self) -> list[TupleRow]:
        return [TupleRow(self.columns, row) for row in self.rows]


class Connection(Protocol):
    """Async connection adapter shared by every backend."""

    async def execute(self, statement: Statement) -> Result: ...

    async def begin(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def close(self) -> None: ...


# ----------------------------------------------------------------------
# Value adaptation
# ----------------------------------------------------------------------


def adapt_value(value: Any) -> Any:
    """Driver-neutral form of a value: enumerations are sent as their value."""
    if isinstance(value, Enum):
        return value.value
    return value


def adapt_sqlite(value: Any) -> Any:
    value = adapt_value(value)
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    return value


def adapt_text_uuid(value: Any) -> Any:
    value = adapt_value(value)
    if isinstance(value, UUID):
        return str(value)
    return value


# ----------------------------------------------------------------------
# Connection adapters
# ----------------------------------------------------------------------

_SQLITE_URL = re.compile(r"^sqlite(\+\w+)?:", re.IGNORECASE)


def sqlite_path(dsn: str) -> str:
    """Database path of a SQLite URL; anything else is taken as a path.

    Example:
        >>> sqlite_path("sqlite::memory:"), sqlite_path("sqlite:///app.db"), sqlite_path("sqlite:////tmp/app.db")
        (':memory:', 'app.db', '/tmp/app.db')
    """
    match = _SQLITE_URL.match(dsn)
    if match is None:
        return dsn
    rest = dsn[match.end() :]
    if rest.startswith("//"):
        rest = rest[3:] if rest.startswith("///") else rest[2:]
    return rest or ":memory:"


class SQLiteConnection:
    """aiosqlite connection in autocommit mode with explicit transactions."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @classmethod
    async def open(cls, dsn: str) -> SQLiteConnection:
        import aiosqlite

        return cls(await aiosqlite.connect(sqlite_path(dsn), isolation_level=None))

    async def execute(self, statement: Statement) -> Result:
        async with self._conn.execute(statement.text, statement.arguments or ()) as cursor:
            rows = await cursor.fetchall()
            columns = tuple(d[0] for d in cursor.description or ())
            return Result(columns, [tuple(r) for r in rows], cursor.rowcount, cursor.lastrowid)

    async def begin(self) -> None:
        await self._conn.execute("BEGIN")

    async def commit(self) -> None:
        await self._conn.execute("COMMIT")

    async def rollback(self) -> None:
        await self._conn.execute("ROLLBACK")

    async def close(self) -> None:
        await self._conn.close()


def _status_rowcount(status: str | None) -> int:
    # "INSERT 0 1", "UPDATE 3", "SELECT 2"
    if not status:
        return -1
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else -1


class PostgresConnection:
    """asyncpg connection; statements are prepared to report their row count."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._transaction: Any = None

    @classmethod
    async def open(cls, dsn: str) -> PostgresConnection:
        import asyncpg

        return cls(await asyncpg.connect(re.sub(r"^postgres(ql)?\+\w+:", "postgresql:", dsn)))

    async def execute(self, statement: Statement) -> Result:
        prepared = await self._conn.prepare(statement.text)
        records = await prepared.fetch(*(statement.arguments or ()))
        columns = tuple(attr.name for attr in prepared.get_attributes())
        return Result(columns, [tuple(r) for r in records], _status_rowcount(prepared.get_statusmsg()))

    async def begin(self) -> None:
        self._transaction = self._conn.transaction()
        await self._transaction.start()

    async def commit(self) -> None:
        transaction, self._transaction = self._transaction, None
        await transaction.commit()

    async def rollback(self) -> None:
        transaction, self._transaction = self._transaction, None
        await transaction.rollback()

    async def close(self) -> None:
        await self._conn.close()


def _url_parts(dsn: str) -> dict[str, Any]:
    parts = urlsplit(dsn)
    return {
        "host": parts.hostname or "localhost",
        "port": parts.port,
        "user": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else None,
        "database": unquote(parts.path.lstrip("/")) or None,
        "query": dict(parse_qsl(parts.query)),
    }


class MySQLConnection:
    """aiomysql connection in autocommit mode with explicit transactions."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @classmethod
    async def open(cls, dsn: str) -> MySQLConnection:
        import aiomysql

        parts = _url_parts(dsn)
        conn = await aiomysql.connect(
            host=parts["host"],
            port=parts["port"] or 3306,
            user=parts["user"],
            password=parts["password"] or "",
            db=parts["database"],
            autocommit=True,
            **parts["query"],
        )
        return cls(conn)

    async def execute(self, statement: Statement) -> Result:
        async with self._conn.cursor() as cursor:
            await cursor.execute(statement.text, statement.arguments)
            rows = await cursor.fetchall() if cursor.description else ()
            columns = tuple(d[0] for d in cursor.description or ())
            return Result(columns, [tuple(r) for r in rows], cursor.rowcount, cursor.lastrowid)

    async def begin(self) -> None:
        await self._conn.begin()

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def close(self) -> None:
        self._conn.close()


class _AutocommitConnection:
    """Adapter for drivers that start transactions by turning autocommit off."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def begin(self) -> None:
        self._conn.autocommit = False

    async def commit(self) -> None:
        try:
            await self._conn.commit()
        finally:
            self._conn.autocommit = True

    async def rollback(self) -> None:
        try:
            await self._conn.rollback()
        finally:
            self._conn.autocommit = True

    async def close(self) -> None:
        await self._conn.close()


ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


def odbc_connection_string(dsn: str) -> str:
    """Turn an ``mssql://`` URL into an ODBC connection string.

    Query parameters are appended as extra keywords; ``driver`` replaces the
    default ODBC driver. Anything that is not a URL is returned unchanged.

    Example:
        >>> odbc_connection_string("mssql://sa:pw@db:1433/shop?TrustServerCertificate=yes")
        'DRIVER={ODBC Driver 18 for SQL Server};SERVER=db,1433;DATABASE=shop;UID=sa;PWD=pw;TrustServerCertificate=yes'
    """
    if "://" not in dsn:
        return dsn
    parts = _url_parts(dsn)
    query = parts["query"]
    driver = query.pop("driver", ODBC_DRIVER)
    server = parts["host"] if parts["port"] is None else f"{parts['host']},{parts['port']}"
    pairs = [f"DRIVER={{{driver}}}", f"SERVER={server}"]
    if parts["database"]:
        pairs.append(f"DATABASE={parts['database']}")
    if parts["user"]:
        pairs.append(f"UID={parts['user']}")
    if parts["password"]:
        pairs.append(f"PWD={parts['password']}")
    pairs.extend(f"{key}={value}" for key, value in query.items())
    return ";".join(pairs)


class SQLServerConnection(_AutocommitConnection):
    """aioodbc connection."""

    @classmethod
    async def open(cls, dsn: str) -> SQLServerConnection:
        import aioodbc

        return cls(await aioodbc.connect(dsn=odbc_connection_string(dsn), autocommit=True))

    async def execute(self, statement: Statement) -> Result:
        async with self._conn.cursor() as cursor:
            if statement.arguments:
                await cursor.execute(statement.text, *statement.arguments)
            else:
                await cursor.execute(statement.text)
            rows = await cursor.fetchall() if cursor.description else ()
            columns = tuple(d[0] for d in cursor.description or ())
            return Result(columns, [tuple(r) for r in rows], cursor.rowcount)


class OracleConnection(_AutocommitConnection):
    """python-oracledb connection in async mode."""

    @classmethod
    async def open(cls, dsn: str) -> OracleConnection:
        import oracledb

        if "://" in dsn:
            parts = _url_parts(dsn)
            conn = await oracledb.connect_async(
                user=parts["user"],
                password=parts["password"],
                dsn=f"{parts['host']}:{parts['port'] or 1521}/{parts['database'] or ''}",
            )
        else:
            conn = await oracledb.connect_async(dsn=dsn)
        conn.autocommit = True
        return cls(conn)

    async def execute(self, statement: Statement) -> Result:
        with self._conn.cursor() as cursor:
            if statement.sizes:
                cursor.setinputsizes(**statement.sizes)
            await cursor.execute(statement.text, statement.arguments or {})
            rows = await cursor.fetchall() if cursor.description else ()
            columns = tuple(d[0] for d in cursor.description or ())
            return Result(columns, [tuple(r) for r in rows], cursor.rowcount, cursor.lastrowid)


# ----------------------------------------------------------------------
# Backends
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Backend:
    """Everything that varies per database kind outside SQL generation.

    Attributes:
        provider_type: The database kind
        connect: Opens a connection adapter from a URL or driver DSN
        paramstyle: Parameter syntax the driver expects
        dialect: SQL conventions used by the compiler
        adapt: Converts a Python value into one the driver accepts
    """

    provider_type: ProviderType
    connect: Callable[[str], Awaitable[Connection]]
    paramstyle: ParamStyle
    dialect: Dialect
    adapt: Callable[[Any], Any] = adapt_value

    def make_parameter(self, parameter: Parameter) -> tuple[str, Any, int]:
        """Driver form of one parameter: ``(name, value, size)``.

        The column length travels with text and binary values only.
        """
        value = self.adapt(parameter.value)
        size = parameter.size if isinstance(value, (str, bytes, bytearray)) and parameter.size > 0 else -1
        return parameter.name, value, size

    def prepare(self, command: Command) -> Statement:
        """Bind a compiled command for this backend's driver."""
        if not command.text:
            raise UsageError("Command has no text to execute")

        values: dict[str, Any] = {}
        sizes: dict[str, int] = {}
        for parameter in command.parameters:
            name, value, size = self.make_parameter(parameter)
            values[name] = value
            if size > 0:
                sizes[name] = size

        text, order = translate(command.text, values.keys(), self.paramstyle)
        if not order:
            # Nothing was rewritten; keep the original text unescaped
            return Statement(command.text, None, command=command)
        if self.paramstyle in (ParamStyle.QMARK, ParamStyle.NUMERIC):
            return Statement(text, [values[name] for name in order], sizes, command)
        return Statement(text, {name: values[name] for name in order}, sizes, command)


BACKENDS: dict[ProviderType, Backend] = {
    ProviderType.SQLSERVER: Backend(
        ProviderType.SQLSERVER,
        SQLServerConnection.open,
        ParamStyle.QMARK,
        get_dialect(ProviderType.SQLSERVER),
        adapt_text_uuid,
    ),
    ProviderType.MYSQL: Backend(
        ProviderType.MYSQL,
        MySQLConnection.open,
        ParamStyle.PYFORMAT,
        get_dialect(ProviderType.MYSQL),
        adapt_text_uuid,
    ),
    ProviderType.SQLITE: Backend(
        ProviderType.SQLITE,
        SQLiteConnection.open,
        ParamStyle.NAMED,
        get_dialect(ProviderType.SQLITE),
        adapt_sqlite,
    ),
    ProviderType.POSTGRES: Backend(
        ProviderType.POSTGRES,
        PostgresConnection.open,
        ParamStyle.NUMERIC,
        get_dialect(ProviderType.POSTGRES),
    ),
    ProviderType.ORACLE: Backend(
        ProviderType.ORACLE,
        OracleConnection.open,
        ParamStyle.NAMED,
        get_dialect(ProviderType.ORACLE),
        adapt_text_uuid,
    ),
}


def get_backend(provider_type: ProviderType | int) -> Backend:
    """Return the backend of a database kind."""
    try:
        return BACKENDS[ProviderType(provider_type)]
    except ValueError:
        raise UsageError(f"Unknown provider type: {provider_type!r}") from None
