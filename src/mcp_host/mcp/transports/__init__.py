"""Transports carrying JSON-RPC frames to MCP servers."""

from .base import MCPTransport, FrameHandler, CloseHandler
from .factory import create_transport, TransportFactory
from .framing import NDJSONFrameBuffer, SSEEventParser
from .http import HttpTransport
from .stdio import StdioTransport

__all__ = [
    "MCPTransport",
    "FrameHandler",
    "CloseHandler",
    "create_transport",
    "TransportFactory",
    "NDJSONFrameBuffer",
    "SSEEventParser",
    "HttpTransport",
    "StdioTransport",
]
