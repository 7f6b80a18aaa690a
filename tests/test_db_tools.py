"""Tests for the database and session tools against a mocked connection."""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from hostbridge_mcp.errors import ToolInputError
from hostbridge_mcp.mcp.db_tools import (
    create_table_from_json,
    create_user,
    describe_table,
    drop_database,
    drop_user,
    execute_sql,
    execute_transaction,
    export_data,
    export_schema,
    grant_privileges,
    import_data,
    json_type_to_sql,
    list_databases,
    list_tables,
)
from hostbridge_mcp.mcp.session_tools import (
    get_session_status,
    log_accomplishment,
    note_next_step,
)


def make_statement(rows, attributes=("id",), status="SELECT 1"):
    stmt = MagicMock()
    stmt.fetch = AsyncMock(return_value=rows)
    stmt.get_attributes.return_value = attributes
    stmt.get_statusmsg.return_value = status
    return stmt


@pytest.mark.asyncio
async def test_execute_sql_returns_rows(fake_ctx):
    fake_ctx.conn.prepare = AsyncMock(return_value=make_statement([{"id": 1}, {"id": 2}]))

    result = await execute_sql(fake_ctx, "SELECT id FROM t WHERE x = $1", parameters=[5])

    assert result["success"]
    assert result["rows"] == [{"id": 1}, {"id": 2}]
    assert result["row_count"] == 2
    fake_ctx.conn.prepare.return_value.fetch.assert_awaited_once_with(5)


@pytest.mark.asyncio
async def test_execute_sql_command_returns_status(fake_ctx):
    fake_ctx.conn.prepare = AsyncMock(return_value=make_statement([], attributes=(), status="UPDATE 3"))

    result = await execute_sql(fake_ctx, "UPDATE t SET x = 1")

    assert result == {"success": True, "message": "UPDATE 3", "query": "UPDATE t SET x = 1"}


@pytest.mark.asyncio
async def test_execute_sql_runs_multi_statement_script(fake_ctx):
    fake_ctx.conn.prepare = AsyncMock(
        side_effect=asyncpg.exceptions.PostgresSyntaxError("cannot insert multiple commands")
    )
    fake_ctx.conn.execute = AsyncMock(return_value="CREATE TABLE")

    result = await execute_sql(fake_ctx, "CREATE TABLE a (id int); CREATE TABLE b (id int);")

    assert result["success"]
    assert result["message"] == "CREATE TABLE"


@pytest.mark.asyncio
async def test_execute_sql_database_error_is_reported(fake_ctx):
    fake_ctx.conn.prepare = AsyncMock(
        side_effect=asyncpg.exceptions.UndefinedTableError('relation "nope" does not exist')
    )

    result = await execute_sql(fake_ctx, "SELECT * FROM nope", database="other")

    assert not result["success"]
    assert "nope" in result["error"]
    assert fake_ctx.databases == ["other"]


@pytest.mark.asyncio
async def test_execute_sql_requires_query(fake_ctx):
    with pytest.raises(ToolInputError):
        await execute_sql(fake_ctx, "   ")


@pytest.mark.asyncio
async def test_list_tables(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[
        {"schemaname": "public", "table_name": "users"},
        {"schemaname": "public", "table_name": "orders"},
    ])

    result = await list_tables(fake_ctx)

    assert result["total"] == 2
    assert result["tables"][0]["table_name"] == "users"


@pytest.mark.asyncio
async def test_describe_missing_table(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[])

    result = await describe_table(fake_ctx, "sales.missing")

    assert not result["success"]
    assert "sales.missing" in result["error"]
    assert fake_ctx.conn.fetch.await_args.args[1:] == ("sales", "missing")


@pytest.mark.asyncio
async def test_describe_table(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[{"column_name": "id", "data_type": "integer"}])
    fake_ctx.conn.fetchrow = AsyncMock(return_value={"table_size": "16 kB", "row_count": 3})

    result = await describe_table(fake_ctx, "users")

    assert result["schema"] == "public"
    assert result["columns"] == [{"column_name": "id", "data_type": "integer"}]
    assert result["row_count"] == 3
    assert '"public"."users"' in fake_ctx.conn.fetchrow.await_args.args[0]


@pytest.mark.asyncio
async def test_create_user_quotes_identifier_and_password(fake_ctx):
    fake_ctx.conn.execute = AsyncMock()

    result = await create_user(fake_ctx, 'we"ird', "it's")

    assert result["success"]
    fake_ctx.conn.execute.assert_awaited_once_with(
        'CREATE USER "we""ird" WITH PASSWORD \'it\'\'s\''
    )


@pytest.mark.asyncio
async def test_import_json_casts_through_column_types(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[
        {"attname": "id", "type_name": "integer"},
        {"attname": "name", "type_name": "text"},
        {"attname": "tags", "type_name": "jsonb"},
    ])
    fake_ctx.conn.executemany = AsyncMock()

    data = json.dumps([
        {"id": 1, "name": "a", "tags": ["x"]},
        {"id": 2, "name": None, "tags": {"k": True}},
    ])
    result = await import_data(fake_ctx, "items", data)

    assert result["success"]
    assert result["imported"] == 2
    assert result["table"] == "public.items"
    sql, rows = fake_ctx.conn.executemany.await_args.args
    assert sql == (
        'INSERT INTO "public"."items" ("id", "name", "tags") '
        "VALUES ($1::text::integer, $2::text::text, $3::text::jsonb)"
    )
    assert rows == [["1", "a", '["x"]'], ["2", None, '{"k": true}']]
    fake_ctx.conn.transaction.assert_called_once()


@pytest.mark.asyncio
async def test_import_csv(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[
        {"attname": "id", "type_name": "integer"},
        {"attname": "name", "type_name": "character varying(20)"},
    ])
    fake_ctx.conn.executemany = AsyncMock()

    result = await import_data(fake_ctx, "people", "id;name\n1;ann\n2;bob\n", format="csv", delimiter=";")

    assert result["imported"] == 2
    _, rows = fake_ctx.conn.executemany.await_args.args
    assert rows == [["1", "ann"], ["2", "bob"]]


@pytest.mark.asyncio
async def test_import_unknown_column_fails_before_insert(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[{"attname": "id", "type_name": "integer"}])
    fake_ctx.conn.executemany = AsyncMock()

    result = await import_data(fake_ctx, "items", '[{"id": 1, "color": "red"}]')

    assert not result["success"]
    assert "color" in result["error"]
    fake_ctx.conn.executemany.assert_not_awaited()


@pytest.mark.asyncio
async def test_import_rejects_malformed_input(fake_ctx):
    with pytest.raises(ToolInputError):
        await import_data(fake_ctx, "items", "not json")
    with pytest.raises(ToolInputError):
        await import_data(fake_ctx, "items", "a,b\n1\n", format="csv")
    with pytest.raises(ToolInputError):
        await import_data(fake_ctx, "items", "[]", format="xml")


@pytest.mark.asyncio
async def test_import_failure_reports_error(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[{"attname": "id", "type_name": "integer"}])
    fake_ctx.conn.executemany = AsyncMock(
        side_effect=asyncpg.exceptions.UniqueViolationError("duplicate key value")
    )

    result = await import_data(fake_ctx, "items", '[{"id": 1}]')

    assert not result["success"]
    assert "duplicate key" in result["error"]


@pytest.mark.asyncio
async def test_export_data_csv(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[{"id": 1, "name": "ann"}, {"id": 2, "name": "bob"}])

    result = await export_data(fake_ctx, "people", format="csv", limit=10)

    assert result["row_count"] == 2
    assert result["data"].splitlines() == ["id,name", "1,ann", "2,bob"]
    assert fake_ctx.conn.fetch.await_args.args == ('SELECT * FROM "public"."people" LIMIT $1', 10)


@pytest.mark.asyncio
async def test_export_schema_writes_output_file(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(side_effect=[
        [{"schemaname": "public", "tablename": "users"}],
        [{"column_name": "id", "data_type": "integer"}],
    ])

    result = await export_schema(fake_ctx, "appdb", output_file="exports/schema.json")

    assert result["table_count"] == 1
    saved = json.loads((fake_ctx.file_base_dir / "exports" / "schema.json").read_text())
    assert saved[0]["tablename"] == "users"
    assert fake_ctx.databases == ["appdb"]


@pytest.mark.asyncio
async def test_log_accomplishment(fake_ctx):
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)
    fake_ctx.conn.execute = AsyncMock()
    fake_ctx.conn.fetchrow = AsyncMock(return_value={"id": 7, "created_at": created})

    result = await log_accomplishment(
        fake_ctx, "s-1", "hostbridge", "Added pool", files_created=["pool.py"]
    )

    assert result["accomplishment_id"] == 7
    assert result["created_at"] == created.isoformat()
    args = fake_ctx.conn.fetchrow.await_args.args
    assert args[1:4] == ("s-1", "hostbridge", "feature")
    assert args[7] == ["pool.py"]


@pytest.mark.asyncio
async def test_session_tools_validate_input(fake_ctx):
    with pytest.raises(ToolInputError):
        await log_accomplishment(fake_ctx, "s-1", "", "title")
    with pytest.raises(ToolInputError):
        await note_next_step(fake_ctx, "s-1", "title", priority="urgent")
    with pytest.raises(ToolInputError):
        await get_session_status(fake_ctx, "")


@pytest.mark.asyncio
async def test_session_status_orders_by_priority_and_filters_repositories(fake_ctx):
    fake_ctx.conn.execute = AsyncMock()
    fake_ctx.conn.fetch = AsyncMock(side_effect=[
        [{"id": 1, "title": "done"}],
        [{"id": 3, "priority": "critical"}, {"id": 2, "priority": "low"}],
    ])

    result = await get_session_status(fake_ctx, "s-1", repository_filter=["hostbridge"])

    assert result["success"]
    assert result["data"]["accomplishments"] == [{"id": 1, "title": "done"}]
    assert [s["id"] for s in result["data"]["next_steps"]] == [3, 2]

    steps_call = fake_ctx.conn.fetch.await_args_list[1]
    sql = steps_call.args[0]
    assert "repository = ANY($2::text[])" in sql
    assert sql.index("'critical' THEN 1") < sql.index("'low' THEN 4")
    assert steps_call.args[1:] == ("s-1", ["hostbridge"])


@pytest.mark.asyncio
async def test_list_databases(fake_ctx):
    fake_ctx.conn.fetch = AsyncMock(return_value=[
        {"name": "appdb", "owner": "postgres", "encoding": "UTF8"},
        {"name": "reporting", "owner": "analyst", "encoding": "UTF8"},
    ])

    result = await list_databases(fake_ctx)

    assert result["total"] == 2
    assert result["databases"][1]["owner"] == "analyst"
    assert fake_ctx.databases == [None]


@pytest.mark.asyncio
async def test_execute_transaction_reports_each_status(fake_ctx):
    fake_ctx.conn.execute = AsyncMock(side_effect=["INSERT 0 1", "UPDATE 2"])

    result = await execute_transaction(
        fake_ctx, ["INSERT INTO t VALUES (1)", "UPDATE t SET x = 2"], database="reporting"
    )

    assert result["success"]
    assert [r["status"] for r in result["results"]] == ["INSERT 0 1", "UPDATE 2"]
    fake_ctx.conn.transaction.assert_called_once()
    assert fake_ctx.databases == ["reporting"]


@pytest.mark.asyncio
async def test_execute_transaction_failure_rolls_back(fake_ctx):
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock()
    transaction.__aexit__ = AsyncMock(return_value=False)
    fake_ctx.conn.transaction = MagicMock(return_value=transaction)
    fake_ctx.conn.execute = AsyncMock(side_effect=[
        "INSERT 0 1",
        asyncpg.exceptions.UndefinedTableError('relation "missing" does not exist'),
    ])

    result = await execute_transaction(fake_ctx, ["INSERT INTO t VALUES (1)", "DELETE FROM missing"])

    assert not result["success"]
    assert result["failed_at"] == 2
    assert result["rolled_back"]
    exc_type = transaction.__aexit__.await_args.args[0]
    assert exc_type is asyncpg.exceptions.UndefinedTableError


@pytest.mark.asyncio
async def test_execute_transaction_requires_queries(fake_ctx):
    with pytest.raises(ToolInputError):
        await execute_transaction(fake_ctx, [])


@pytest.mark.asyncio
async def test_drop_database_with_force_terminates_sessions(fake_ctx):
    fake_ctx.pool.config.dbname = "appdb"
    fake_ctx.conn.fetchval = AsyncMock(return_value=1)
    fake_ctx.conn.execute = AsyncMock(return_value="DROP DATABASE")

    result = await drop_database(fake_ctx, "scratch", force=True)

    assert result["success"]
    calls = fake_ctx.conn.execute.await_args_list
    assert "pg_terminate_backend" in calls[0].args[0]
    assert calls[0].args[1] == "scratch"
    assert calls[1].args == ('DROP DATABASE "scratch"',)


@pytest.mark.asyncio
async def test_drop_database_refuses_protected_and_missing(fake_ctx):
    fake_ctx.pool.config.dbname = "appdb"
    fake_ctx.conn.fetchval = AsyncMock(return_value=None)
    fake_ctx.conn.execute = AsyncMock()

    with pytest.raises(ToolInputError):
        await drop_database(fake_ctx, "template1")
    with pytest.raises(ToolInputError):
        await drop_database(fake_ctx, "appdb")

    result = await drop_database(fake_ctx, "ghost")
    assert not result["success"]
    assert "does not exist" in result["error"]
    fake_ctx.conn.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_drop_user(fake_ctx):
    fake_ctx.conn.fetchval = AsyncMock(return_value=1)
    fake_ctx.conn.execute = AsyncMock(return_value="DROP ROLE")

    result = await drop_user(fake_ctx, "old_app")

    assert result["success"]
    fake_ctx.conn.execute.assert_awaited_once_with('DROP ROLE "old_app"')


@pytest.mark.asyncio
async def test_grant_table_privileges_in_named_database(fake_ctx):
    fake_ctx.conn.execute = AsyncMock(return_value="GRANT")

    result = await grant_privileges(
        fake_ctx, "reader", ["select", "insert"], database="reporting", table="sales.orders"
    )

    assert result["success"]
    fake_ctx.conn.execute.assert_awaited_once_with(
        'GRANT SELECT, INSERT ON TABLE "sales"."orders" TO "reader"'
    )
    assert fake_ctx.databases == ["reporting"]


@pytest.mark.asyncio
async def test_grant_database_privileges(fake_ctx):
    fake_ctx.conn.execute = AsyncMock(return_value="GRANT")

    result = await grant_privileges(fake_ctx, "reader", ["CONNECT"], database="reporting")

    assert result["success"]
    fake_ctx.conn.execute.assert_awaited_once_with('GRANT CONNECT ON DATABASE "reporting" TO "reader"')
    assert fake_ctx.databases == [None]


@pytest.mark.asyncio
async def test_grant_rejects_bad_input(fake_ctx):
    with pytest.raises(ToolInputError):
        await grant_privileges(fake_ctx, "reader", ["SELECT"])
    with pytest.raises(ToolInputError):
        await grant_privileges(fake_ctx, "reader", [], table="orders")
    with pytest.raises(ToolInputError):
        await grant_privileges(fake_ctx, "reader", ["SELECT; DROP TABLE x"], table="orders")


def test_json_type_mapping():
    assert json_type_to_sql({"type": "string", "format": "date-time"}) == "TIMESTAMP"
    assert json_type_to_sql({"type": "string", "maxLength": 40}) == "VARCHAR(40)"
    assert json_type_to_sql({"type": "string"}) == "TEXT"
    assert json_type_to_sql({"type": "number"}) == "DECIMAL"
    assert json_type_to_sql({"type": "object"}) == "JSONB"
    assert json_type_to_sql({}) == "TEXT"
    with pytest.raises(ToolInputError):
        json_type_to_sql({"type": "string", "maxLength": "40); DROP"})


@pytest.mark.asyncio
async def test_create_table_from_json(fake_ctx):
    fake_ctx.conn.execute = AsyncMock(return_value="CREATE TABLE")
    definition = json.dumps({
        "properties": {
            "id": {"type": "integer", "nullable": False},
            "email": {"type": "string", "format": "email"},
            "active": {"type": "boolean", "default": True},
            "note": {"type": "string", "default": "it's new"},
        },
        "primary_key": "id",
    })

    result = await create_table_from_json(fake_ctx, "crm.contacts", definition)

    assert result["success"]
    assert result["table"] == "crm.contacts"
    fake_ctx.conn.execute.assert_awaited_once_with(
        'CREATE TABLE "crm"."contacts" (\n'
        '    "id" INTEGER NOT NULL,\n'
        '    "email" VARCHAR(255),\n'
        '    "active" BOOLEAN DEFAULT true,\n'
        '    "note" TEXT DEFAULT \'it\'\'s new\',\n'
        '    PRIMARY KEY ("id")\n'
        ')'
    )


@pytest.mark.asyncio
async def test_create_table_from_json_validates_definition(fake_ctx):
    with pytest.raises(ToolInputError):
        await create_table_from_json(fake_ctx, "t", "{not json")
    with pytest.raises(ToolInputError):
        await create_table_from_json(fake_ctx, "t", {"type": "object"})
    with pytest.raises(ToolInputError):
        await create_table_from_json(
            fake_ctx, "t", {"properties": {"id": {"type": "integer"}}, "primary_key": ["uuid"]}
        )
