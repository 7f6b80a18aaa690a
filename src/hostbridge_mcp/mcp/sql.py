"""SQL helpers shared by the database tools."""
from __future__ import annotations

import re
from typing import Any

import asyncpg

from hostbridge_mcp.errors import ToolInputError

_QUALIFIED_RE = re.compile(r"^[^.]+(\.[^.]+)?$")


def quote_ident(name: str) -> str:
    """Quote an identifier for interpolation into DDL."""
    if not name or "\x00" in name:
        raise ToolInputError(f"Invalid identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string literal for statements that cannot take parameters."""
    if "\x00" in value:
        raise ToolInputError("String literal contains a NUL byte")
    return "'" + value.replace("'", "''") + "'"


def qualified_name(table_name: str, schema: str | None = None) -> tuple[str, str]:
    """Split ``schema.table`` (or use ``schema``) and return (schema, table)."""
    if not table_name or not _QUALIFIED_RE.match(table_name):
        raise ToolInputError(f"Invalid table name: {table_name!r}")
    if "." in table_name and schema is None:
        schema, table_name = table_name.split(".", 1)
    return schema or "public", table_name


def quote_table(table_name: str, schema: str | None = None) -> str:
    schema, table = qualified_name(table_name, schema)
    return f"{quote_ident(schema)}.{quote_ident(table)}"


def records_to_dicts(records: list[asyncpg.Record]) -> list[dict[str, Any]]:
    return [dict(r) for r in records]
