"""SQL dialect differences between the supported database back-ends.

This module is the single place where SQL generation branches per database:
parameter markers, row limiting, schema qualification, identity retrieval and
stored procedure calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum
from urllib.parse import urlsplit

from simpleprovider.errors import UsageError


class ProviderType(IntEnum):
    """Database kind."""

    SQLSERVER = 0
    """Microsoft SQL Server (default)."""
    MYSQL = 1
    SQLITE = 2
    POSTGRES = 3
    ORACLE = 4

    @classmethod
    def from_url(cls, url: str) -> ProviderType:
        """Infer the database kind from a connection URL.

        Example:
            >>> ProviderType.from_url("postgresql://localhost/shop")
            <ProviderType.POSTGRES: 3>
            >>> ProviderType.from_url("sqlite::memory:")
            <ProviderType.SQLITE: 2>
        """
        if not url:
            raise UsageError("Connection URL provided is null or empty")
        scheme = url.split(":", 1)[0] if "://" not in url else urlsplit(url).scheme
        scheme = scheme.split("+", 1)[0].lower()
        try:
            return _SCHEMES[scheme]
        except KeyError:
            raise UsageError(f"Unsupported database URL scheme: {scheme!r}") from None


_SCHEMES = {
    "mssql": ProviderType.SQLSERVER,
    "sqlserver": ProviderType.SQLSERVER,
    "mysql": ProviderType.MYSQL,
    "mariadb": ProviderType.MYSQL,
    "sqlite": ProviderType.SQLITE,
    "postgres": ProviderType.POSTGRES,
    "postgresql": ProviderType.POSTGRES,
    "oracle": ProviderType.ORACLE,
}


class RowLimit(StrEnum):
    """How a dialect restricts the number of returned rows."""

    TOP = "top"
    """``SELECT TOP(n) ...``"""
    ROWNUM = "rownum"
    """``... WHERE ROWNUM <= n``"""
    LIMIT = "limit"
    """``... LIMIT n``"""


@dataclass(frozen=True)
class Dialect:
    """SQL text conventions of one database kind."""

    provider_type: ProviderType
    marker: str
    row_limit: RowLimit
    supports_schemas: bool = True
    identity_template: str = "SELECT IDENT_CURRENT('{source}')"
    identity_uses_row_id: bool = False
    procedure_template: str = "CALL {name}({arguments})"
    empty_insert_template: str = "INSERT INTO {source} DEFAULT VALUES"

    def parameter(self, name: str) -> str:
        """Parameter reference as it appears in command text."""
        return f"{self.marker}{name}"

    def qualify(self, schema: str | None, table: str) -> str:
        """Schema-qualified table name."""
        if schema and self.supports_schemas:
            return f"{schema}.{table}"
        return table

    def select(
        self,
        columns: str,
        source: str,
        condition: str = "",
        order: str = "",
        limit: int | None = None,
    ) -> str:
        """Compose a SELECT statement, applying the dialect's row limit.

        Args:
            columns: Select list (for example ``tab.*``)
            source: Table reference including alias
            condition: WHERE condition without the keyword
            order: ORDER BY list without the keyword
            limit: Maximum number of rows, embedded as a literal
        """
        where = f" WHERE {condition}" if condition else ""
        order_by = f" ORDER BY {order}" if order else ""

        if limit is None:
            return f"SELECT {columns} FROM {source}{where}{order_by}"

        if self.row_limit is RowLimit.TOP:
            return f"SELECT TOP({limit}) {columns} FROM {source}{where}{order_by}"

        if self.row_limit is RowLimit.ROWNUM:
            if order_by:
                # ROWNUM is assigned before sorting, so limit the sorted rows
                inner = f"SELECT {columns} FROM {source}{where}{order_by}"
                return f"SELECT * FROM ({inner}) WHERE ROWNUM <= {limit}"
            if condition:
                return f"SELECT {columns} FROM {source} WHERE ({condition}) AND ROWNUM <= {limit}"
            return f"SELECT {columns} FROM {source} WHERE ROWNUM <= {limit}"

        return f"SELECT {columns} FROM {source}{where}{order_by} LIMIT {limit}"

    def identity(self, schema: str | None, table: str, column: str) -> str:
        """Query returning the identity value generated by the last insert."""
        return self.identity_template.format(
            source=self.qualify(schema, table),
            column=column,
            row_id=self.parameter("row_id"),
        )

    def procedure(self, name: str, arguments: list[str]) -> str:
        """Stored procedure call with the given parameter references."""
        if self.provider_type is ProviderType.SQLSERVER:
            return f"EXEC {name} {', '.join(arguments)}" if arguments else f"EXEC {name}"
        return self.procedure_template.format(name=name, arguments=", ".join(arguments))

    def empty_insert(self, source: str) -> str:
        """INSERT statement for a row where every column takes its default."""
        return self.empty_insert_template.format(source=source)


DIALECTS: dict[ProviderType, Dialect] = {
    ProviderType.SQLSERVER: Dialect(
        provider_type=ProviderType.SQLSERVER,
        marker="@",
        row_limit=RowLimit.TOP,
        identity_template="SELECT IDENT_CURRENT('{source}')",
    ),
    ProviderType.MYSQL: Dialect(
        provider_type=ProviderType.MYSQL,
        marker="@",
        row_limit=RowLimit.LIMIT,
        identity_template="SELECT LAST_INSERT_ID()",
        empty_insert_template="INSERT INTO {source} () VALUES ()",
    ),
    ProviderType.SQLITE: Dialect(
        provider_type=ProviderType.SQLITE,
        marker="@",
        row_limit=RowLimit.LIMIT,
        supports_schemas=False,
        identity_template="SELECT last_insert_rowid()",
    ),
    ProviderType.POSTGRES: Dialect(
        provider_type=ProviderType.POSTGRES,
        marker="@",
        row_limit=RowLimit.LIMIT,
        identity_template="SELECT LASTVAL()",
    ),
    ProviderType.ORACLE: Dialect(
        provider_type=ProviderType.ORACLE,
        marker=":",
        row_limit=RowLimit.ROWNUM,
        identity_template="SELECT tab.{column} FROM {source} tab WHERE ROWID = {row_id}",
        identity_uses_row_id=True,
        procedure_template="BEGIN {name}({arguments}); END;",
        empty_insert_template="INSERT INTO {source} VALUES (DEFAULT)",
    ),
}


def get_dialect(provider_type: ProviderType | int) -> Dialect:
    """Return the dialect of a database kind."""
    return DIALECTS[ProviderType(provider_type)]
