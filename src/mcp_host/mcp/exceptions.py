"""
MCP Client Exception Classes

Custom exceptions for the protocol engine. Every class carries a stable
``error_type`` so callers can render a message that distinguishes timeouts,
validation failures, permission denials and transport problems.
"""

from typing import Optional, Dict, Any, Union


class MCPClientError(Exception):
    """Base exception for all MCP client errors."""

    error_type = "client_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for logging and UI rendering."""
        return {
            "error_type": self.error_type,
            "exception": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class MCPTransportError(MCPClientError):
    """Raised when a transport cannot connect, write, or keep its process alive."""

    error_type = "transport_error"

    def __init__(
        self,
        message: str,
        transport_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.transport_type = transport_type


class MCPConnectionClosedError(MCPTransportError):
    """Raised for requests still pending when their connection goes away."""

    error_type = "connection_closed"

    def __init__(self, message: str = "Connection closed", transport_type: Optional[str] = None):
        super().__init__(message, transport_type)


class MCPProtocolError(MCPClientError):
    """Raised when a frame is malformed or violates the JSON-RPC envelope."""

    error_type = "protocol_error"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.method = method


class MCPRemoteError(MCPProtocolError):
    """Raised when the server answered a request with a JSON-RPC error object."""

    error_type = "server_error"

    def __init__(
        self,
        message: str,
        code: int,
        data: Any = None,
        method: Optional[str] = None
    ):
        super().__init__(message, method, details={"code": code, "data": data})
        self.code = code
        self.data = data


class MCPTimeoutError(MCPClientError):
    """Raised when a request received no response before its deadline."""

    error_type = "timeout"

    def __init__(self, method: str, request_id: Union[int, str], timeout: float):
        super().__init__(
            f"Request timeout: {method} received no response within {timeout:g}s",
            details={"method": method, "request_id": request_id, "timeout": timeout}
        )
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class MCPNotInitializedError(MCPClientError):
    """Raised when an operation is attempted before the initialize handshake."""

    error_type = "not_initialized"

    def __init__(self, operation: str, server_id: Optional[str] = None):
        super().__init__(
            f"MCP client not initialized: cannot call {operation}",
            details={"operation": operation, "server_id": server_id}
        )
        self.operation = operation


class ServerConfigError(MCPClientError):
    """Raised synchronously when a server configuration cannot be used."""

    error_type = "invalid_config"

    def __init__(self, message: str, server_id: Optional[str] = None, errors: Optional[list] = None):
        super().__init__(message, details={"server_id": server_id, "errors": errors or []})
        self.server_id = server_id
        self.errors = errors or []


class ServerNotFoundError(MCPClientError):
    """Raised when no connection is registered under the requested id."""

    error_type = "server_not_found"

    def __init__(self, server_id: str):
        super().__init__(f"MCP server not found: {server_id}", details={"server_id": server_id})
        self.server_id = server_id


class ServerNotConnectedError(MCPClientError):
    """Raised when the requested server exists but is not connected."""

    error_type = "server_not_connected"

    def __init__(self, server_id: str, status: str):
        super().__init__(
            f"MCP server not connected: {server_id} (status: {status})",
            details={"server_id": server_id, "status": status}
        )
        self.server_id = server_id
        self.status = status


class ToolNotFoundError(MCPClientError):
    """Raised when a server does not declare the requested tool."""

    error_type = "tool_not_found"

    def __init__(self, tool_name: str, server_id: str):
        super().__init__(
            f"Tool not found: {tool_name} on server {server_id}",
            details={"tool_name": tool_name, "server_id": server_id}
        )
        self.tool_name = tool_name
        self.server_id = server_id


class ToolValidationError(MCPClientError):
    """Raised when tool arguments do not satisfy the declared input schema."""

    error_type = "validation_error"

    def __init__(self, message: str, field: str, tool_name: Optional[str] = None):
        super().__init__(message, details={"field": field, "tool_name": tool_name})
        self.field = field
        self.tool_name = tool_name


class PermissionDeniedError(MCPClientError):
    """Raised when the permission engine refuses an invocation."""

    error_type = "permission_denied"

    def __init__(self, server_id: str, tool_name: str, scope: str, resource: Optional[str] = None):
        target = f" on {resource}" if resource else ""
        super().__init__(
            f"Permission denied: {tool_name} on server {server_id} requires {scope} access{target}",
            details={"server_id": server_id, "tool_name": tool_name, "scope": scope, "resource": resource}
        )
        self.server_id = server_id
        self.tool_name = tool_name
        self.scope = scope
        self.resource = resource


class PermissionLimitError(MCPClientError):
    """Raised when storing another grant would exceed the per-server maximum."""

    error_type = "permission_limit"

    def __init__(self, server_id: str, limit: int):
        super().__init__(
            f"Maximum permissions exceeded for server {server_id} (limit: {limit})",
            details={"server_id": server_id, "limit": limit}
        )
        self.server_id = server_id
        self.limit = limit


class ToolExecutionCancelledError(MCPClientError):
    """Raised when a tracked tool execution was cancelled through the executor."""

    error_type = "cancelled"

    def __init__(self, execution_id: str):
        super().__init__(f"Tool execution cancelled: {execution_id}", details={"execution_id": execution_id})
        self.execution_id = execution_id
