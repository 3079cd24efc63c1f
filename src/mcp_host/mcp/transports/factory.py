"""
MCP Transport Factory

Creates the transport implementation matching a server configuration.
"""

from typing import Callable

from ..exceptions import MCPTransportError
from .base import MCPTransport
from .http import HttpTransport
from .stdio import StdioTransport
from ...core.server_registry import ServerConfig


TransportFactory = Callable[[ServerConfig], MCPTransport]


def create_transport(config: ServerConfig) -> MCPTransport:
    """
    Create a transport based on configuration.

    Raises:
        MCPTransportError: If the transport type is unsupported
    """
    if config.type == "stdio":
        return StdioTransport(config)
    if config.type == "http":
        return HttpTransport(config)
    raise MCPTransportError(f"Unsupported transport type: {config.type}", transport_type=config.type)
