"""Tests for per-database SQL conventions."""

import pytest

from simpleprovider import ProviderType, UsageError
from simpleprovider.dialects import DIALECTS, RowLimit, get_dialect


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("sqlite::memory:", ProviderType.SQLITE),
        ("sqlite:///app.db", ProviderType.SQLITE),
        ("postgresql://localhost/shop", ProviderType.POSTGRES),
        ("postgres+asyncpg://localhost/shop", ProviderType.POSTGRES),
        ("mysql://root@localhost/shop", ProviderType.MYSQL),
        ("mariadb://root@localhost/shop", ProviderType.MYSQL),
        ("mssql://sa:pw@db/shop", ProviderType.SQLSERVER),
        ("oracle://scott:tiger@db/orcl", ProviderType.ORACLE),
    ],
)
def test_provider_type_from_url(url, expected):
    assert ProviderType.from_url(url) is expected


def test_provider_type_from_bad_url():
    with pytest.raises(UsageError):
        ProviderType.from_url("")
    with pytest.raises(UsageError, match="Unsupported"):
        ProviderType.from_url("redis://localhost")


def test_sqlserver_is_the_default_kind():
    assert ProviderType(0) is ProviderType.SQLSERVER


def test_parameter_markers():
    assert get_dialect(ProviderType.SQLSERVER).parameter("Id") == "@Id"
    assert get_dialect(ProviderType.ORACLE).parameter("Id") == ":Id"


def test_qualify():
    assert get_dialect(ProviderType.POSTGRES).qualify("sales", "Orders") == "sales.Orders"
    assert get_dialect(ProviderType.POSTGRES).qualify(None, "Orders") == "Orders"
    assert get_dialect(ProviderType.SQLITE).qualify("sales", "Orders") == "Orders"


def test_row_limits():
    """Test each way of restricting the number of rows."""
    assert get_dialect(ProviderType.SQLSERVER).row_limit is RowLimit.TOP
    assert get_dialect(ProviderType.ORACLE).row_limit is RowLimit.ROWNUM
    assert get_dialect(ProviderType.MYSQL).row_limit is RowLimit.LIMIT

    assert get_dialect(ProviderType.MYSQL).select("tab.*", "Orders tab", "Id = @Id", "Id DESC", 5) == (
        "SELECT tab.* FROM Orders tab WHERE Id = @Id ORDER BY Id DESC LIMIT 5"
    )
    assert get_dialect(ProviderType.SQLSERVER).select("tab.*", "Orders tab", limit=0) == (
        "SELECT TOP(0) tab.* FROM Orders tab"
    )


def test_oracle_rownum_forms():
    oracle = get_dialect(ProviderType.ORACLE)
    assert oracle.select("tab.*", "Orders tab", "A = :A OR B = :B", limit=1) == (
        "SELECT tab.* FROM Orders tab WHERE (A = :A OR B = :B) AND ROWNUM <= 1"
    )
    assert oracle.select("tab.*", "Orders tab", order="Id ASC", limit=1) == (
        "SELECT * FROM (SELECT tab.* FROM Orders tab ORDER BY Id ASC) WHERE ROWNUM <= 1"
    )


def test_procedure_calls():
    assert get_dialect(ProviderType.SQLSERVER).procedure("dbo.Go", ["@p_0"]) == "EXEC dbo.Go @p_0"
    assert get_dialect(ProviderType.POSTGRES).procedure("dbo.Go", []) == "CALL dbo.Go()"
    assert get_dialect(ProviderType.ORACLE).procedure("dbo.Go", [":p_0"]) == "BEGIN dbo.Go(:p_0); END;"


def test_every_kind_has_a_dialect():
    assert set(DIALECTS) == set(ProviderType)
