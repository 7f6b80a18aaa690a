# Tool registry for MCP server
from __future__ import annotations

from typing import Any, Awaitable, Callable

ToolHandler = Callable[..., Awaitable[Any]]

TOOL_REGISTRY: dict[str, ToolHandler] = {}


def tool(name: str):
    def deco(fn):
        TOOL_REGISTRY[name] = fn
        return fn
    return deco
