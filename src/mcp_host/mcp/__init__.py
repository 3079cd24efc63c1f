"""
MCP Client Module

JSON-RPC message codec, request correlation, the protocol client and the
connection manager that owns one client per configured server.
"""

from .client import MCPProtocolClient
from .connection_manager import ConnectionManager, ServerInfo, ServerStatus
from .correlator import MessageCorrelator
from .messages import NotificationKind, ServerNotification
from .exceptions import (
    MCPClientError, MCPTransportError, MCPConnectionClosedError, MCPProtocolError,
    MCPRemoteError, MCPTimeoutError, MCPNotInitializedError, ServerConfigError,
    ServerNotFoundError, ServerNotConnectedError, ToolNotFoundError,
    ToolValidationError, PermissionDeniedError, PermissionLimitError,
    ToolExecutionCancelledError
)

__all__ = [
    "MCPProtocolClient",
    "ConnectionManager",
    "ServerInfo",
    "ServerStatus",
    "MessageCorrelator",
    "NotificationKind",
    "ServerNotification",
    "MCPClientError",
    "MCPTransportError",
    "MCPConnectionClosedError",
    "MCPProtocolError",
    "MCPRemoteError",
    "MCPTimeoutError",
    "MCPNotInitializedError",
    "ServerConfigError",
    "ServerNotFoundError",
    "ServerNotConnectedError",
    "ToolNotFoundError",
    "ToolValidationError",
    "PermissionDeniedError",
    "PermissionLimitError",
    "ToolExecutionCancelledError",
]
