"""MCP stdio server with JSON-RPC framing.

Implements Model Context Protocol (MCP) for PostgreSQL administration and
sandboxed file access. Supports tool listing, schemas, and robust error
handling. A database host that moved is recovered transparently; when no host
answers, tool calls fail with a "Database unavailable" error instead of
crashing the server.
"""
import asyncio
import inspect
import json
import logging
import sys
import traceback
from typing import Any

import asyncpg

from hostbridge_mcp import __version__
from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import ConnectivityError, PathAccessError, ToolInputError
from hostbridge_mcp.mcp.schemas import TOOL_SCHEMAS
from hostbridge_mcp.mcp.tools import TOOL_REGISTRY

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "hostbridge-mcp"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000
DATABASE_UNAVAILABLE = -32002


# MCP Protocol Implementation


async def handle_initialize(ctx: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
    """Handle MCP initialize request."""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {
            "tools": {}
        },
        "serverInfo": {
            "name": SERVER_NAME,
            "version": __version__
        }
    }


async def handle_tools_list(ctx: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
    """List all available tools with their schemas."""
    tools = []

    for tool_name in TOOL_REGISTRY.keys():
        schema = TOOL_SCHEMAS.get(tool_name, {})
        tools.append({
            "name": tool_name,
            "description": schema.get("description", ""),
            "inputSchema": schema.get("inputSchema", {
                "type": "object",
                "properties": {},
                "required": []
            })
        })

    return {"tools": tools}


async def call_tool(ctx: ToolContext, tool_name: str | None, arguments: dict[str, Any] | None) -> Any:
    """Run a registered tool and return its raw result."""
    if tool_name not in TOOL_REGISTRY:
        raise ToolInputError(f"Unknown tool: {tool_name}")
    if arguments is not None and not isinstance(arguments, dict):
        raise ToolInputError("Tool arguments must be an object")

    handler = TOOL_REGISTRY[tool_name]
    arguments = arguments or {}
    try:
        inspect.signature(handler).bind(ctx, **arguments)
    except TypeError as e:
        raise ToolInputError(f"Invalid arguments for {tool_name}: {e}") from e
    return await handler(ctx, **arguments)


async def handle_tools_call(ctx: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
    """Call a tool with given parameters."""
    result = await call_tool(ctx, params.get("name"), params.get("arguments", {}))

    return {
        "content": [
            {
                "type": "text",
                "text": json.dumps(result, indent=2, default=str)
            }
        ]
    }


# JSON-RPC Handler


MCP_METHODS = {
    "initialize": handle_initialize,
    "tools/list": handle_tools_list,
    "tools/call": handle_tools_call,
}


def _error(req_id: Any, code: int, message: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": error}


async def handle_request(ctx: ToolContext, request: dict[str, Any]) -> dict[str, Any]:
    """Handle a single JSON-RPC request.

    Returns:
        JSON-RPC response dictionary
    """
    req_id = request.get("id")
    method = request.get("method")
    params = request.get("params") or {}

    try:
        if method in MCP_METHODS:
            handler = MCP_METHODS[method]
            result = await handler(ctx, params)
            return {
                "jsonrpc": "2.0",
                "id": req_id,
                "result": result
            }

        return _error(
            req_id,
            METHOD_NOT_FOUND,
            f"Method not found: {method}",
            {"available_methods": list(MCP_METHODS.keys())},
        )

    except ConnectivityError as e:
        return _error(req_id, DATABASE_UNAVAILABLE, "Database unavailable", e.to_dict())

    except (ToolInputError, PathAccessError) as e:
        # Parameter validation errors
        return _error(req_id, INVALID_PARAMS, "Invalid params", {
            "error": str(e),
            "error_type": type(e).__name__,
        })

    except (ValueError, asyncpg.PostgresError) as e:
        # Tool-specific errors
        return _error(req_id, TOOL_ERROR, str(e), {"error_type": type(e).__name__})

    except Exception as e:
        logger.error(f"Unhandled error in {method}: {e}", exc_info=True)
        return _error(req_id, INTERNAL_ERROR, "Internal error", {
            "error": str(e),
            "error_type": type(e).__name__,
            "traceback": traceback.format_exc(),
        })


async def _read_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


def _write(response: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(response, default=str) + "\n")
    sys.stdout.flush()


async def run_stdio_server(ctx: ToolContext) -> None:
    """Run MCP server over stdio with robust JSON-RPC framing.

    Reads JSON-RPC requests from stdin (one per line).
    Writes JSON-RPC responses to stdout (one per line).
    Logs go to stderr. The connection pool is closed on exit.
    """
    logger.info("HostBridge MCP server starting on stdio...")
    logger.info(f"Available tools: {', '.join(TOOL_REGISTRY.keys())}")

    try:
        while True:
            line = await _read_line()
            if not line:
                # EOF - client disconnected
                break

            line = line.strip()
            if not line:
                continue

            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                _write(_error(None, PARSE_ERROR, "Parse error", {"error": str(e)}))
                continue

            if not isinstance(request, dict):
                _write(_error(None, PARSE_ERROR, "Parse error", {"error": "Request must be an object"}))
                continue

            response = await handle_request(ctx, request)
            # Notifications (no id) get no response
            if "id" in request:
                _write(response)

    except asyncio.CancelledError:
        logger.info("Server shutting down...")

    finally:
        await ctx.close()


def main() -> None:
    """Entry point for MCP server."""
    from hostbridge_mcp.cli.commands import run
    run(["serve"])


if __name__ == "__main__":
    main()
