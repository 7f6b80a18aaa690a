"""MCP protocol layer: tool registry, handlers and the stdio server."""
