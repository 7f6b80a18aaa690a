"""HostBridge MCP - PostgreSQL and file tools for MCP clients.

Keeps database connectivity alive across guest network address changes.
"""

__version__ = "0.1.0"
