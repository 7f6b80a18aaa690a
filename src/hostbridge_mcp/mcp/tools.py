"""MCP tool handlers.

Importing this module registers every tool in ``TOOL_REGISTRY``.
"""
from hostbridge_mcp.mcp import connectivity_tools, db_tools, file_tools, session_tools  # noqa: F401
from hostbridge_mcp.mcp.registry import TOOL_REGISTRY, tool

__all__ = ["TOOL_REGISTRY", "tool"]
