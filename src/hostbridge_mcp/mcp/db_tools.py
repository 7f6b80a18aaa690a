"""PostgreSQL query and administration tools."""
from __future__ import annotations

import csv
import io
import json
import logging
from typing import Any

import asyncpg

from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import ToolInputError
from hostbridge_mcp.mcp.file_tools import resolve_path
from hostbridge_mcp.mcp.registry import tool
from hostbridge_mcp.mcp.sql import (
    qualified_name,
    quote_ident,
    quote_literal,
    quote_table,
    records_to_dicts,
)

logger = logging.getLogger(__name__)

LIST_TABLES_SQL = """
SELECT
    schemaname,
    tablename AS table_name,
    tableowner AS owner,
    hasindexes AS has_indexes,
    hasrules AS has_rules,
    hastriggers AS has_triggers
FROM pg_tables
WHERE schemaname NOT IN ('information_schema', 'pg_catalog')
ORDER BY schemaname, tablename
"""

COLUMNS_SQL = """
SELECT
    column_name,
    data_type,
    character_maximum_length,
    is_nullable,
    column_default,
    ordinal_position
FROM information_schema.columns
WHERE table_schema = $1 AND table_name = $2
ORDER BY ordinal_position
"""


def _failure(message: str, **extra: Any) -> dict[str, Any]:
    logger.error(message)
    return {"success": False, "error": message, **extra}


@tool("ping")
async def ping(ctx: ToolContext) -> dict[str, str]:
    return {"ok": "true"}


@tool("execute_sql")
async def execute_sql(
    ctx: ToolContext,
    query: str,
    parameters: list[Any] | None = None,
    database: str | None = None
) -> dict[str, Any]:
    """Execute a SQL statement.

    Row-returning statements come back as a list of dicts. Without parameters,
    scripts of several statements are run as-is.

    Args:
        query: SQL to execute
        parameters: Optional positional parameters bound to $1, $2, ...
        database: Optional database name (defaults to the configured one)

    Returns:
        Dict with rows/row_count, or the command status
    """
    if not query or not query.strip():
        raise ToolInputError("SQL query is required")
    params = list(parameters or [])

    async with ctx.connection(database) as conn:
        try:
            try:
                stmt = await conn.prepare(query)
            except asyncpg.exceptions.PostgresSyntaxError:
                if params:
                    raise
                # Multi-statement scripts cannot be prepared
                status = await conn.execute(query)
                return {"success": True, "message": status, "query": query}

            rows = await stmt.fetch(*params)
            if stmt.get_attributes():
                return {
                    "success": True,
                    "rows": records_to_dicts(rows),
                    "row_count": len(rows),
                    "query": query,
                }
            return {"success": True, "message": stmt.get_statusmsg(), "query": query}

        except (asyncpg.PostgresError, asyncpg.exceptions.DataError) as e:
            return _failure(f"SQL execution failed: {e}", query=query)


@tool("list_tables")
async def list_tables(ctx: ToolContext, database: str | None = None) -> dict[str, Any]:
    """List user tables with their schemas."""
    async with ctx.connection(database) as conn:
        rows = await conn.fetch(LIST_TABLES_SQL)
    tables = records_to_dicts(rows)
    return {"tables": tables, "total": len(tables)}


@tool("describe_table")
async def describe_table(
    ctx: ToolContext,
    table_name: str,
    schema: str | None = None,
    database: str | None = None
) -> dict[str, Any]:
    """Describe a table's columns, size and row count.

    Args:
        table_name: Table name, optionally schema-qualified
        schema: Schema name (defaults to public)
        database: Optional database name
    """
    schema_name, table = qualified_name(table_name, schema)
    qualified = quote_table(table, schema_name)

    async with ctx.connection(database) as conn:
        columns = await conn.fetch(COLUMNS_SQL, schema_name, table)
        if not columns:
            return _failure(f"Table not found: {schema_name}.{table}")
        size = await conn.fetchrow(
            f"SELECT pg_size_pretty(pg_total_relation_size($1::regclass)) AS table_size, "
            f"(SELECT COUNT(*) FROM {qualified}) AS row_count",
            f"{quote_ident(schema_name)}.{quote_ident(table)}",
        )

    return {
        "table_name": table,
        "schema": schema_name,
        "columns": records_to_dicts(columns),
        "table_size": size["table_size"] if size else "unknown",
        "row_count": size["row_count"] if size else 0,
    }


@tool("create_database")
async def create_database(
    ctx: ToolContext,
    database_name: str,
    owner: str | None = None
) -> dict[str, Any]:
    """Create a new database."""
    query = f"CREATE DATABASE {quote_ident(database_name)}"
    if owner:
        query += f" OWNER {quote_ident(owner)}"

    async with ctx.connection() as conn:
        try:
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to create database: {e}")

    return {
        "success": True,
        "message": f"Database '{database_name}' created successfully",
        "database_name": database_name,
    }


@tool("create_user")
async def create_user(
    ctx: ToolContext,
    username: str,
    password: str,
    superuser: bool = False
) -> dict[str, Any]:
    """Create a login role."""
    if not password:
        raise ToolInputError("username and password are required")

    query = f"CREATE USER {quote_ident(username)} WITH PASSWORD {quote_literal(password)}"
    if superuser:
        query += " SUPERUSER"

    async with ctx.connection() as conn:
        try:
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to create user: {e}")

    return {
        "success": True,
        "message": f"User '{username}' created successfully",
        "username": username,
        "superuser": superuser,
    }


@tool("export_schema")
async def export_schema(
    ctx: ToolContext,
    database: str,
    output_file: str | None = None
) -> dict[str, Any]:
    """Export table and column definitions of a database.

    Args:
        database: Database to export
        output_file: Optional path (inside the file base directory) to write the
            schema JSON to
    """
    async with ctx.connection(database) as conn:
        tables = await conn.fetch(
            "SELECT schemaname, tablename FROM pg_tables "
            "WHERE schemaname NOT IN ('information_schema', 'pg_catalog') "
            "ORDER BY schemaname, tablename"
        )
        schema_info = []
        for t in tables:
            columns = await conn.fetch(COLUMNS_SQL, t["schemaname"], t["tablename"])
            schema_info.append({
                "schemaname": t["schemaname"],
                "tablename": t["tablename"],
                "columns": records_to_dicts(columns),
            })

    result: dict[str, Any] = {
        "success": True,
        "database": database,
        "schema": schema_info,
        "table_count": len(schema_info),
    }

    if output_file:
        path = resolve_path(ctx.file_base_dir, output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(schema_info, indent=2, default=str))
        result["output_file"] = str(path)

    return result


def _parse_records(data: str, fmt: str, delimiter: str) -> tuple[list[str], list[list[Any]]]:
    if fmt == "json":
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise ToolInputError(f"Invalid JSON data: {e}") from e
        records = parsed if isinstance(parsed, list) else [parsed]
        if not records or not all(isinstance(r, dict) for r in records):
            raise ToolInputError("JSON data must be an object or a non-empty array of objects")
        columns = list(records[0].keys())
        return columns, [[r.get(c) for c in columns] for r in records]

    if fmt == "csv":
        reader = csv.reader(io.StringIO(data), delimiter=delimiter)
        rows = [row for row in reader if row and any(cell.strip() for cell in row)]
        if len(rows) < 2:
            raise ToolInputError("CSV data must have at least a header row and one data row")
        header = [h.strip() for h in rows[0]]
        values = []
        for line_no, row in enumerate(rows[1:], start=2):
            if len(row) != len(header):
                raise ToolInputError(
                    f"Row {line_no} has {len(row)} values but expected {len(header)}"
                )
            values.append([cell.strip() for cell in row])
        return header, values

    raise ToolInputError(f"Unsupported format '{fmt}'. Use 'json' or 'csv'")


@tool("import_data")
async def import_data(
    ctx: ToolContext,
    table_name: str,
    data: str,
    format: str = "json",
    schema: str | None = None,
    delimiter: str = ",",
    database: str | None = None
) -> dict[str, Any]:
    """Insert JSON or CSV records into an existing table in one transaction.

    Every value is sent as text and cast to the column's declared type, so CSV
    cells and JSON scalars go through the same Postgres input parsing.
    """
    columns, values = _parse_records(data, format.lower(), delimiter)
    schema_name, table = qualified_name(table_name, schema)
    target = quote_table(table, schema_name)

    async with ctx.connection(database) as conn:
        try:
            types = await _column_types(conn, schema_name, table)
            unknown = [c for c in columns if c not in types]
            if unknown:
                return _failure(f"Unknown columns for {schema_name}.{table}: {', '.join(unknown)}")

            column_list = ", ".join(quote_ident(c) for c in columns)
            placeholders = ", ".join(
                f"${i}::text::{types[c]}" for i, c in enumerate(columns, start=1)
            )
            insert = f"INSERT INTO {target} ({column_list}) VALUES ({placeholders})"

            async with conn.transaction():
                await conn.executemany(insert, [[_as_text(v) for v in row] for row in values])
        except asyncpg.PostgresError as e:
            return _failure(f"Import failed: {e}")

    return {
        "success": True,
        "imported": len(values),
        "table": f"{schema_name}.{table}",
        "message": f"Successfully imported {len(values)} records",
    }


async def _column_types(conn: asyncpg.Connection, schema_name: str, table: str) -> dict[str, str]:
    rows = await conn.fetch(
        "SELECT a.attname, format_type(a.atttypid, a.atttypmod) AS type_name "
        "FROM pg_attribute a "
        "WHERE a.attrelid = $1::regclass AND a.attnum > 0 AND NOT a.attisdropped",
        f"{quote_ident(schema_name)}.{quote_ident(table)}",
    )
    return {r["attname"]: r["type_name"] for r in rows}


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


@tool("export_data")
async def export_data(
    ctx: ToolContext,
    table_name: str,
    format: str = "json",
    schema: str | None = None,
    limit: int = 1000,
    database: str | None = None
) -> dict[str, Any]:
    """Export table rows as JSON records or CSV text."""
    fmt = format.lower()
    if fmt not in ("json", "csv"):
        raise ToolInputError(f"Unsupported format '{format}'. Use 'json' or 'csv'")
    if limit < 1:
        raise ToolInputError("limit must be positive")

    target = quote_table(table_name, schema)
    async with ctx.connection(database) as conn:
        try:
            rows = await conn.fetch(f"SELECT * FROM {target} LIMIT $1", limit)
        except asyncpg.PostgresError as e:
            return _failure(f"Export failed: {e}")

    records = records_to_dicts(rows)
    if fmt == "json":
        return {"success": True, "format": "json", "rows": records, "row_count": len(records)}

    buf = io.StringIO()
    if records:
        writer = csv.DictWriter(buf, fieldnames=list(records[0].keys()))
        writer.writeheader()
        writer.writerows(records)
    return {"success": True, "format": "csv", "data": buf.getvalue(), "row_count": len(records)}


LIST_DATABASES_SQL = """
SELECT
    datname AS name,
    pg_get_userbyid(datdba) AS owner,
    pg_encoding_to_char(encoding) AS encoding,
    datcollate AS collation,
    datctype AS ctype
FROM pg_database
WHERE datistemplate = false
ORDER BY datname
"""

SYSTEM_DATABASES = frozenset({"postgres", "template0", "template1"})

TABLE_PRIVILEGES = frozenset({
    "SELECT", "INSERT", "UPDATE", "DELETE", "TRUNCATE", "REFERENCES", "TRIGGER", "ALL",
})
DATABASE_PRIVILEGES = frozenset({"CREATE", "CONNECT", "TEMPORARY", "TEMP", "ALL"})

STRING_FORMATS = {
    "date": "DATE",
    "datetime": "TIMESTAMP",
    "date-time": "TIMESTAMP",
    "time": "TIME",
    "email": "VARCHAR(255)",
    "uuid": "UUID",
}

JSON_TYPES = {
    "integer": "INTEGER",
    "number": "DECIMAL",
    "boolean": "BOOLEAN",
    "array": "JSONB",
    "object": "JSONB",
}


@tool("list_databases")
async def list_databases(ctx: ToolContext) -> dict[str, Any]:
    """List non-template databases with owner and encoding."""
    async with ctx.connection() as conn:
        rows = await conn.fetch(LIST_DATABASES_SQL)
    databases = records_to_dicts(rows)
    return {"databases": databases, "total": len(databases)}


@tool("execute_transaction")
async def execute_transaction(
    ctx: ToolContext,
    queries: list[str],
    database: str | None = None
) -> dict[str, Any]:
    """Run several statements in one transaction.

    The first failing statement rolls back everything before it.

    Args:
        queries: SQL statements, run in order
        database: Optional database name

    Returns:
        Dict with the command status of each statement, or the failing index
    """
    if not queries or not all(isinstance(q, str) and q.strip() for q in queries):
        raise ToolInputError("queries must be a non-empty list of SQL statements")

    results = []
    async with ctx.connection(database) as conn:
        index = 0
        try:
            async with conn.transaction():
                for index, query in enumerate(queries, start=1):
                    status = await conn.execute(query)
                    results.append({"index": index, "query": query, "status": status})
        except asyncpg.PostgresError as e:
            return _failure(
                f"Transaction failed at query {index}: {e}. Transaction rolled back.",
                failed_at=index,
                rolled_back=True,
            )

    return {"success": True, "results": results, "statement_count": len(results)}


@tool("drop_database")
async def drop_database(ctx: ToolContext, database_name: str, force: bool = False) -> dict[str, Any]:
    """Drop a database, optionally terminating its sessions first.

    System databases and the configured database cannot be dropped.
    """
    if database_name in SYSTEM_DATABASES:
        raise ToolInputError(f"Cannot drop system database '{database_name}'")
    if database_name == ctx.pool.config.dbname:
        raise ToolInputError(f"Cannot drop the configured database '{database_name}'")
    query = f"DROP DATABASE {quote_ident(database_name)}"

    async with ctx.connection() as conn:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", database_name)
        if not exists:
            return _failure(f"Database '{database_name}' does not exist")
        try:
            if force:
                await conn.execute(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = $1 AND pid <> pg_backend_pid()",
                    database_name,
                )
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to drop database: {e}")

    return {
        "success": True,
        "message": f"Database '{database_name}' dropped successfully",
        "database_name": database_name,
    }


@tool("drop_user")
async def drop_user(ctx: ToolContext, username: str) -> dict[str, Any]:
    """Drop a role."""
    query = f"DROP ROLE {quote_ident(username)}"

    async with ctx.connection() as conn:
        exists = await conn.fetchval("SELECT 1 FROM pg_roles WHERE rolname = $1", username)
        if not exists:
            return _failure(f"User '{username}' does not exist")
        try:
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to drop user: {e}")

    return {"success": True, "message": f"User '{username}' dropped successfully", "username": username}


def _privilege_list(privileges: list[str], allowed: frozenset[str]) -> str:
    if not privileges:
        raise ToolInputError("At least one privilege is required")
    normalized = [p.strip().upper() for p in privileges]
    invalid = [p for p in normalized if p not in allowed]
    if invalid:
        raise ToolInputError(
            f"Unsupported privileges: {', '.join(invalid)}. Allowed: {', '.join(sorted(allowed))}"
        )
    return ", ".join(normalized)


@tool("grant_privileges")
async def grant_privileges(
    ctx: ToolContext,
    username: str,
    privileges: list[str],
    database: str | None = None,
    table: str | None = None,
    schema: str | None = None
) -> dict[str, Any]:
    """Grant table or database privileges to a role.

    With ``table`` the grant is on that table inside ``database`` (or the
    configured one); otherwise ``database`` itself is the grant target.
    """
    if table:
        privilege_str = _privilege_list(privileges, TABLE_PRIVILEGES)
        schema_name, table_name = qualified_name(table, schema)
        target = f"table '{schema_name}.{table_name}'"
        query = f"GRANT {privilege_str} ON TABLE {quote_table(table_name, schema_name)} TO {quote_ident(username)}"
    elif database:
        privilege_str = _privilege_list(privileges, DATABASE_PRIVILEGES)
        target = f"database '{database}'"
        query = f"GRANT {privilege_str} ON DATABASE {quote_ident(database)} TO {quote_ident(username)}"
    else:
        raise ToolInputError("Either database or table must be specified")

    async with ctx.connection(database if table else None) as conn:
        try:
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to grant privileges: {e}")

    return {
        "success": True,
        "message": f"Privileges '{privilege_str}' granted to user '{username}' on {target}",
        "query": query,
    }


def json_type_to_sql(field_def: dict[str, Any]) -> str:
    """Map a JSON-schema property to a PostgreSQL column type."""
    json_type = field_def.get("type", "string")
    if json_type == "string":
        fmt = field_def.get("format", "")
        if fmt in STRING_FORMATS:
            return STRING_FORMATS[fmt]
        max_length = field_def.get("maxLength")
        if max_length is None:
            return "TEXT"
        if not isinstance(max_length, int) or isinstance(max_length, bool) or max_length < 1:
            raise ToolInputError(f"maxLength must be a positive integer, got {max_length!r}")
        return f"VARCHAR({max_length})"
    return JSON_TYPES.get(json_type, "TEXT")


def _column_default(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list)):
        return quote_literal(json.dumps(value))
    return quote_literal(str(value))


@tool("create_table_from_json")
async def create_table_from_json(
    ctx: ToolContext,
    table_name: str,
    json_schema: dict[str, Any] | str,
    schema: str | None = None,
    database: str | None = None
) -> dict[str, Any]:
    """Create a table from a JSON-schema style definition.

    Each entry of ``properties`` becomes a column. Properties may set
    ``nullable: false`` and a ``default``; a top-level ``primary_key`` (one name
    or a list) adds the key constraint.

    Example:
        {"properties": {"id": {"type": "integer", "nullable": false},
                        "email": {"type": "string", "format": "email"}},
         "primary_key": "id"}
    """
    if isinstance(json_schema, str):
        try:
            json_schema = json.loads(json_schema)
        except json.JSONDecodeError as e:
            raise ToolInputError(f"Invalid JSON schema: {e}") from e
    properties = json_schema.get("properties") if isinstance(json_schema, dict) else None
    if not properties or not isinstance(properties, dict):
        raise ToolInputError("JSON schema must have a non-empty 'properties' object")

    columns = []
    for field_name, field_def in properties.items():
        if not isinstance(field_def, dict):
            raise ToolInputError(f"Property '{field_name}' must be an object")
        column = f"{quote_ident(field_name)} {json_type_to_sql(field_def)}"
        if field_def.get("nullable", True) is False:
            column += " NOT NULL"
        if "default" in field_def:
            column += f" DEFAULT {_column_default(field_def['default'])}"
        columns.append(column)

    primary_key = json_schema.get("primary_key")
    if primary_key:
        keys = [primary_key] if isinstance(primary_key, str) else list(primary_key)
        missing = [k for k in keys if k not in properties]
        if missing:
            raise ToolInputError(f"Primary key columns not in properties: {', '.join(missing)}")
        columns.append(f"PRIMARY KEY ({', '.join(quote_ident(k) for k in keys)})")

    schema_name, table = qualified_name(table_name, schema)
    column_sql = ",\n    ".join(columns)
    query = f"CREATE TABLE {quote_table(table, schema_name)} (\n    {column_sql}\n)"

    async with ctx.connection(database) as conn:
        try:
            await conn.execute(query)
        except asyncpg.PostgresError as e:
            return _failure(f"Failed to create table: {e}", sql=query)

    return {
        "success": True,
        "message": f"Table '{schema_name}.{table}' created successfully from JSON schema",
        "table": f"{schema_name}.{table}",
        "sql": query,
    }
