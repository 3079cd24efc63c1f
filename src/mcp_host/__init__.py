"""Client-side MCP host: protocol engine, server connections, tool execution and permissions."""

__version__ = "0.1.0"
