"""Tests for the async provider.

Most tests run against an in-memory SQLite database. Tests that need to
observe the connection (timeouts, serialization, transaction boundaries)
use a scripted connection instead.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio

from simpleprovider import (
    Command,
    CommandTimeoutError,
    EqualityType,
    ExecutionError,
    Mapped,
    Model,
    Option,
    Provider,
    ProviderType,
    ReadOnlyError,
    Record,
    UsageError,
    ValidationError,
    column,
    create_provider,
)
from simpleprovider.factory import Result


class Order(Model):
    __tablename__ = "Orders"
    __primary_keys__ = ("Id",)

    Id: Mapped[int] = column(identity=True)
    CustomerName: Mapped[str] = column(max_length=50, nullable=False)
    Total: Mapped[Decimal | None]
    CreatedAt: Mapped[datetime | None] = column("created_at")
    Note: Mapped[str | None] = column(virtual=True)


class CustomerTotal(Model):
    __tablename__ = "CustomerTotals"
    __primary_keys__ = ("CustomerName",)
    __view__ = True

    CustomerName: Mapped[str]
    OrderCount: Mapped[int]


SCHEMA = [
    """
    CREATE TABLE Orders (
        Id INTEGER PRIMARY KEY AUTOINCREMENT,
        CustomerName TEXT NOT NULL,
        Total TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE VIEW CustomerTotals AS
    SELECT CustomerName, COUNT(*) AS OrderCount FROM Orders GROUP BY CustomerName
    """,
]


@pytest_asyncio.fixture
async def provider(sqlite_provider):
    """SQLite provider with the order tables created."""
    for statement in SCHEMA:
        await sqlite_provider.execute(statement)
    return sqlite_provider


async def seed(provider, *names):
    orders = [Order(CustomerName=name, Total=Decimal(index + 1)) for index, name in enumerate(names)]
    for order in orders:
        await provider.insert(order)
    return orders


# ========== Connection ==========


@pytest.mark.asyncio
async def test_create_provider_infers_type(sqlite_provider):
    """Test that the URL scheme selects the database kind."""
    assert sqlite_provider.provider_type is ProviderType.SQLITE
    assert sqlite_provider.dialect.supports_schemas is False
    assert sqlite_provider.commands.provider_type is ProviderType.SQLITE


@pytest.mark.asyncio
async def test_connect_requires_connection_string():
    with pytest.raises(UsageError):
        await Provider.connect("", ProviderType.SQLITE)


@pytest.mark.asyncio
async def test_provider_as_context_manager():
    async with await create_provider("sqlite::memory:") as provider:
        assert await provider.get_value(int, "SELECT 1") == 1


@pytest.mark.asyncio
async def test_command_timeout_floor(sqlite_provider):
    """Test that the per-statement timeout never drops below 30 seconds."""
    assert sqlite_provider.command_timeout == 30
    sqlite_provider.command_timeout = 5
    assert sqlite_provider.command_timeout == 30
    sqlite_provider.command_timeout = 90
    assert sqlite_provider.command_timeout == 90


# ========== Insert ==========


@pytest.mark.asyncio
async def test_insert_reads_back_identity(provider):
    """Test that the generated key is written back to the record."""
    order = Order(CustomerName="Ann", Total=Decimal("12.50"), CreatedAt=datetime(2024, 5, 1, 8, 30))

    assert await provider.insert(order) is True
    assert order.Id == 1

    second = Order(CustomerName="Bob")
    await provider.insert(second)
    assert second.Id == 2


@pytest.mark.asyncio
async def test_insert_round_trip(provider):
    order = Order(CustomerName="Ann", Total=Decimal("12.50"), CreatedAt=datetime(2024, 5, 1, 8, 30))
    await provider.insert(order)

    stored = await provider.get_record_for(order)
    assert stored.Id == order.Id
    assert stored.CustomerName == "Ann"
    assert stored.Total == Decimal("12.50")
    assert stored.CreatedAt == datetime(2024, 5, 1, 8, 30)
    assert stored.Note is None


@pytest.mark.asyncio
async def test_insert_skips_existing_row(provider):
    order = Order(CustomerName="Ann")
    assert await provider.insert(order)
    assert await provider.insert(order) is False
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 1


@pytest.mark.asyncio
async def test_insert_validates_before_sql(provider):
    with pytest.raises(ValidationError):
        await provider.insert(Order(CustomerName="x" * 60))
    with pytest.raises(ValidationError):
        await provider.insert(Order())
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 0


@pytest.mark.asyncio
async def test_insert_requires_record(provider):
    with pytest.raises(UsageError):
        await provider.insert(None)


@pytest.mark.asyncio
async def test_insert_all(provider):
    count = await provider.insert_all([Order(CustomerName="Ann"), Order(CustomerName="Bob")])
    assert count == 2
    assert await provider.exists_for(Order, Option("CustomerName", "Bob"))


# ========== Read ==========


@pytest.mark.asyncio
async def test_get_records_filtered_and_sorted(provider):
    await seed(provider, "Ann", "Bob", "Ann")

    orders = await provider.get_records(Order, Option("CustomerName", "Ann"), Option("Id", descending=True))
    assert [order.Id for order in orders] == [3, 1]
    assert all(order.CustomerName == "Ann" for order in orders)


@pytest.mark.asyncio
async def test_get_record(provider):
    await seed(provider, "Ann", "Bob")

    order = await provider.get_record(Order, Option("CustomerName", "Bob"))
    assert order.Id == 2
    assert await provider.get_record(Order, Option("CustomerName", "Zed")) is None


@pytest.mark.asyncio
async def test_get_record_for_missing_row(provider):
    assert await provider.get_record_for(Order(Id=99, CustomerName="Ann")) is None


@pytest.mark.asyncio
async def test_get_top_records(provider):
    await seed(provider, "Ann", "Bob", "Cid", "Dee")

    orders = await provider.get_top_records(Order, 2, Option("Total", descending=True))
    assert [order.CustomerName for order in orders] == ["Dee", "Cid"]


@pytest.mark.asyncio
async def test_filter_parameter_collision(provider):
    """Test that two filters on the same field both apply."""
    await seed(provider, "Ann", "Bob", "Cid", "Dee")

    orders = await provider.get_records(
        Order,
        Option("Id", 1, EqualityType.GREATER_THAN),
        Option("Id", 4, EqualityType.LESS_THAN),
        Option("Id"),
    )
    assert [order.Id for order in orders] == [3, 2]


@pytest.mark.asyncio
async def test_get_records_sql(provider):
    await seed(provider, "Ann", "Bob")

    orders = await provider.get_records_sql(
        Order,
        "SELECT * FROM Orders WHERE CustomerName = @CustomerName",
        Option("CustomerName", "Bob"),
    )
    assert [order.Id for order in orders] == [2]


@pytest.mark.asyncio
async def test_get_dynamic_records(provider):
    await seed(provider, "Ann", "Bob")

    records = await provider.get_dynamic_records(
        "SELECT Id, CustomerName, created_at FROM Orders WHERE Id > @Id ORDER BY Id",
        Option("Id", 0, EqualityType.GREATER_THAN),
    )
    assert len(records) == 2
    assert isinstance(records[0], Record)
    assert records[0]["customername"] == "Ann"
    assert records[1].Id == 2
    assert records[0]["CREATED_AT"] is None


@pytest.mark.asyncio
async def test_get_value_and_values(provider):
    await seed(provider, "Ann", "Bob")

    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 2
    assert await provider.get_value(str, "SELECT CustomerName FROM Orders WHERE Id = 99") is None
    assert await provider.get_values(str, "SELECT CustomerName FROM Orders ORDER BY Id") == ["Ann", "Bob"]


@pytest.mark.asyncio
async def test_exists_and_count(provider):
    await seed(provider, "Ann", "Bob", "Ann")

    assert await provider.exists(Order(Id=1, CustomerName="Ann"))
    assert not await provider.exists(Order(Id=9, CustomerName="Ann"))
    assert await provider.exists_for(Order, Option("CustomerName", "Bob"))
    assert not await provider.exists_for(Order, Option("CustomerName", "Zed"))

    assert await provider.count(Order, "CustomerName") == 3
    assert await provider.count(Order, "CustomerName", distinct=True) == 2
    assert await provider.count(Order, "Id", Option("CustomerName", "Ann")) == 2


@pytest.mark.asyncio
async def test_read_from_view(provider):
    await seed(provider, "Ann", "Bob", "Ann")

    totals = await provider.get_records(CustomerTotal, Option("CustomerName", ascending=True))
    assert [(t.CustomerName, t.OrderCount) for t in totals] == [("Ann", 2), ("Bob", 1)]


# ========== Update ==========


@pytest.mark.asyncio
async def test_update_writes_changes(provider):
    (order,) = await seed(provider, "Ann")

    order.Total = Decimal("99.90")
    assert await provider.update(order) is True

    stored = await provider.get_record_for(order)
    assert stored.Total == Decimal("99.90")


@pytest.mark.asyncio
async def test_update_without_changes(provider):
    """Test that an unchanged record sends no statement."""
    (order,) = await seed(provider, "Ann")

    assert await provider.update(order) is False


@pytest.mark.asyncio
async def test_update_ignores_virtual_changes(provider):
    (order,) = await seed(provider, "Ann")

    order.Note = "changed"
    assert await provider.update(order) is False


@pytest.mark.asyncio
async def test_update_inserts_missing_row(provider):
    order = Order(CustomerName="Ann")

    assert await provider.update(order) is True
    assert order.Id == 1


@pytest.mark.asyncio
async def test_update_all(provider):
    first, second = await seed(provider, "Ann", "Bob")
    first.CustomerName = "Anne"

    written = await provider.update_all([first, second, Order(CustomerName="Cid")])
    assert written == 2
    assert await provider.get_values(str, "SELECT CustomerName FROM Orders ORDER BY Id") == ["Anne", "Bob", "Cid"]


# ========== Delete ==========


@pytest.mark.asyncio
async def test_delete(provider):
    first, second = await seed(provider, "Ann", "Bob")

    assert await provider.delete(first) is True
    assert await provider.delete(first) is False
    assert await provider.exists(second)


@pytest.mark.asyncio
async def test_delete_for(provider):
    await seed(provider, "Ann", "Bob", "Ann")

    assert await provider.delete_for(Order, Option("CustomerName", "Ann")) is True
    assert await provider.delete_for(Order, Option("CustomerName", "Ann")) is False
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 1


# ========== Read-only tables ==========


@pytest.mark.asyncio
async def test_view_writes_are_vetoed(provider):
    """Test that high-level writes against a view report failure without SQL."""
    summary = CustomerTotal(CustomerName="Ann", OrderCount=1)

    assert await provider.insert(summary) is False
    assert await provider.update(summary) is False
    assert await provider.delete(summary) is False
    assert await provider.delete_for(CustomerTotal) is False


@pytest.mark.asyncio
async def test_execute_read_only_command_raises(provider):
    command = provider.commands.create_insert(CustomerTotal(CustomerName="Ann", OrderCount=1))
    with pytest.raises(ReadOnlyError):
        await provider.execute(command)


# ========== Execute ==========


@pytest.mark.asyncio
async def test_execute_text_with_options(provider):
    await seed(provider, "Ann", "Bob")

    affected = await provider.execute(
        "UPDATE Orders SET Total = NULL WHERE CustomerName = @CustomerName",
        Option("CustomerName", "Ann"),
    )
    assert affected == 1


@pytest.mark.asyncio
async def test_execute_compiled_command(provider):
    command = provider.commands.create_insert(Order(CustomerName="Ann"))
    assert await provider.execute(command) == 1


@pytest.mark.asyncio
async def test_execute_noop_command(provider):
    assert await provider.execute(Command.no_changes()) == 0


@pytest.mark.asyncio
async def test_execute_options_need_text(provider):
    with pytest.raises(UsageError):
        await provider.execute(Command.from_text("SELECT 1"), Option("Id", 1))


@pytest.mark.asyncio
async def test_execute_driver_error(provider):
    with pytest.raises(ExecutionError) as excinfo:
        await provider.execute("SELECT * FROM missing_table")
    assert excinfo.value.command_text == "SELECT * FROM missing_table"


# ========== Transactions ==========


@pytest.mark.asyncio
async def test_process_commands_commits(provider):
    builder = provider.commands
    committed = await provider.process_commands(
        builder.create_insert(Order(CustomerName="Ann")),
        Command.no_changes(),
        builder.create_insert(Order(CustomerName="Bob")),
    )
    assert committed is True
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 2


@pytest.mark.asyncio
async def test_process_commands_rolls_back(provider):
    """Test that one failing command undoes the whole batch."""
    builder = provider.commands
    with pytest.raises(ExecutionError):
        await provider.process_commands(
            builder.create_insert(Order(CustomerName="Ann")),
            Command.from_text("INSERT INTO missing_table (Id) VALUES (1)"),
        )
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 0
    assert not provider.in_transaction


@pytest.mark.asyncio
async def test_process_commands_read_only_rolls_back(provider):
    builder = provider.commands
    with pytest.raises(ReadOnlyError):
        await provider.process_commands(
            builder.create_insert(Order(CustomerName="Ann")),
            builder.create_delete_for(CustomerTotal),
        )
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 0


@pytest.mark.asyncio
async def test_nested_transaction_joins(provider):
    with pytest.raises(RuntimeError):
        async with provider.transaction():
            await provider.insert(Order(CustomerName="Ann"))
            async with provider.transaction():
                await provider.insert(Order(CustomerName="Bob"))
            assert provider.in_transaction
            raise RuntimeError("abort")
    assert await provider.get_value(int, "SELECT COUNT(*) FROM Orders") == 0


@pytest.mark.asyncio
async def test_concurrent_inserts(provider):
    orders = [Order(CustomerName=f"Customer {i}") for i in range(10)]
    results = await asyncio.gather(*(provider.insert(order) for order in orders))

    assert all(results)
    assert sorted(order.Id for order in orders) == list(range(1, 11))


# ========== Scripted connection ==========


class ScriptedConnection:
    """Connection that records calls and answers every statement with one row."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def execute(self, statement):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append(statement.text)
            await asyncio.sleep(self.delay)
            return Result(("value",), [(1,)], 1)
        finally:
            self.active -= 1

    async def begin(self):
        self.calls.append("BEGIN")

    async def commit(self):
        self.calls.append("COMMIT")

    async def rollback(self):
        self.calls.append("ROLLBACK")

    async def close(self):
        self.calls.append("CLOSE")


@pytest.mark.asyncio
async def test_statements_are_serialized():
    """Test that concurrent callers never overlap on the connection."""
    connection = ScriptedConnection(delay=0.01)
    provider = Provider(connection, ProviderType.POSTGRES)

    await asyncio.gather(*(provider.get_value(int, f"SELECT {i}") for i in range(5)))
    assert connection.max_active == 1
    assert len(connection.calls) == 5


@pytest.mark.asyncio
async def test_transaction_holds_connection():
    connection = ScriptedConnection(delay=0.01)
    provider = Provider(connection, ProviderType.POSTGRES)

    async def batch():
        async with provider.transaction():
            await provider.execute("UPDATE a SET b = 1")
            await provider.execute("UPDATE a SET b = 2")

    await asyncio.gather(batch(), provider.execute("DELETE FROM a"))

    first = connection.calls.index("BEGIN")
    assert connection.calls[first : first + 4] == [
        "BEGIN",
        "UPDATE a SET b = 1",
        "UPDATE a SET b = 2",
        "COMMIT",
    ]


@pytest.mark.asyncio
async def test_transaction_shared_with_child_tasks(provider):
    """Test that tasks gathered inside a transaction run in it instead of waiting on it."""
    first, second = Order(CustomerName="Ann"), Order(CustomerName="Bob")

    async with asyncio.timeout(5):
        async with provider.transaction():
            results = await asyncio.gather(provider.insert(first), provider.insert(second))

    assert results == [True, True]
    assert {first.Id, second.Id} == {1, 2}
    assert (await provider.get_record(Order, Option("Id", first.Id))).CustomerName == "Ann"
    assert (await provider.get_record(Order, Option("Id", second.Id))).CustomerName == "Bob"
    assert await provider.count(Order, "Id") == 2


@pytest.mark.asyncio
async def test_child_task_statements_are_serialized():
    connection = ScriptedConnection(delay=0.01)
    provider = Provider(connection, ProviderType.POSTGRES)

    async with asyncio.timeout(5):
        async with provider.transaction():
            await asyncio.gather(*(provider.execute(f"UPDATE a SET b = {i}") for i in range(4)))
        await provider.execute("DELETE FROM a")

    assert connection.max_active == 1
    assert connection.calls[0] == "BEGIN"
    assert connection.calls[5:] == ["COMMIT", "DELETE FROM a"]


class UnchangedConnection(ScriptedConnection):
    """Connection where counts find nothing and writes touch no rows."""

    async def execute(self, statement):
        self.calls.append(statement.text)
        if statement.text.startswith("SELECT COUNT("):
            return Result(("value",), [(0,)], 1)
        return Result((), [], 0)


@pytest.mark.asyncio
async def test_insert_without_affected_rows():
    """Test that an insert the database ignored reports False and reads back no identity."""
    connection = UnchangedConnection()
    provider = Provider(connection, ProviderType.POSTGRES)
    order = Order(CustomerName="Ann")

    assert await provider.insert(order) is False
    assert order.Id is None
    assert len(connection.calls) == 2
    assert connection.calls[1].startswith("INSERT INTO dbo.Orders")


@pytest.mark.asyncio
async def test_command_timeout(monkeypatch):
    monkeypatch.setattr("simpleprovider.provider.MIN_COMMAND_TIMEOUT", 0)
    provider = Provider(ScriptedConnection(delay=1), ProviderType.POSTGRES, command_timeout=0.01)

    with pytest.raises(CommandTimeoutError):
        await provider.execute("SELECT pg_sleep(1)")


@pytest.mark.asyncio
async def test_close():
    connection = ScriptedConnection()
    async with Provider(connection, ProviderType.SQLSERVER):
        pass
    assert connection.calls == ["CLOSE"]


@pytest.mark.asyncio
async def test_run_procedure():
    connection = ScriptedConnection()
    provider = Provider(connection, ProviderType.SQLSERVER, schema="sales")

    records = await provider.run_procedure("GetOrders", 7)
    assert connection.calls == ["EXEC sales.GetOrders ?"]
    assert records[0]["value"] == 1


# ========== PostgreSQL ==========


@pytest.mark.asyncio
async def test_postgres_round_trip(postgres_provider):
    """Test insert and read-back against a real PostgreSQL server."""

    class Visit(Model):
        __tablename__ = "sp_visits"
        __schema__ = "public"

        Id: Mapped[int] = column(identity=True, primary_key=True)
        Page: Mapped[str] = column(max_length=100)

    await postgres_provider.execute("DROP TABLE IF EXISTS public.sp_visits")
    await postgres_provider.execute("CREATE TABLE public.sp_visits (Id SERIAL PRIMARY KEY, Page TEXT)")
    try:
        visit = Visit(Page="/home")
        assert await postgres_provider.insert(visit)
        assert visit.Id == 1

        visits = await postgres_provider.get_records(Visit, Option("Page", "/home"))
        assert [v.Id for v in visits] == [1]
    finally:
        await postgres_provider.execute("DROP TABLE public.sp_visits")
