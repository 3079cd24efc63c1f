"""
JSON-RPC 2.0 envelopes and MCP notification decoding.

Frames are parsed once at the transport boundary into one of three message
models. Server notifications are further decoded into a ``ServerNotification``
carrying a ``NotificationKind`` so routing never switches on raw strings.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import MCPProtocolError


JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Union[int, str]


class JSONRPCError(BaseModel):
    """Error object carried by a failed response."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Optional[Any] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            wire["data"] = self.data
        return wire


class JSONRPCRequest(BaseModel):
    """A request expecting exactly one response with the same id."""

    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: str = Field(..., min_length=1)
    params: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            wire["params"] = self.params
        return wire


class JSONRPCNotification(BaseModel):
    """A one-way message without an id."""

    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str = Field(..., min_length=1)
    params: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            wire["params"] = self.params
        return wire


class JSONRPCResponse(BaseModel):
    """A response carrying either ``result`` or ``error``."""

    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId]
    result: Optional[Any] = None
    error: Optional[JSONRPCError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            wire["error"] = self.error.to_wire()
        else:
            wire["result"] = self.result
        return wire


JSONRPCMessage = Union[JSONRPCRequest, JSONRPCResponse, JSONRPCNotification]


def encode_message(message: JSONRPCMessage) -> str:
    """Serialize a message as one compact JSON document (no trailing newline)."""
    return json.dumps(message.to_wire(), separators=(",", ":"), ensure_ascii=False)


def parse_message(data: Any) -> JSONRPCMessage:
    """
    Classify an already JSON-decoded frame.

    Raises:
        MCPProtocolError: If the frame is not a valid JSON-RPC 2.0 envelope
    """
    if not isinstance(data, dict):
        raise MCPProtocolError(
            f"JSON-RPC frame must be an object, got {type(data).__name__}",
            details={"frame": data}
        )

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise MCPProtocolError(
            f"Unsupported JSON-RPC version: {data.get('jsonrpc')!r}",
            method=data.get("method"),
            details={"frame": data}
        )

    has_id = "id" in data
    has_method = "method" in data

    try:
        if has_method and has_id:
            return JSONRPCRequest.model_validate(data)
        if has_method:
            return JSONRPCNotification.model_validate(data)
        if has_id and ("result" in data or "error" in data):
            if "result" in data and "error" in data:
                raise MCPProtocolError("Response carries both result and error", details={"frame": data})
            return JSONRPCResponse.model_validate(data)
    except ValidationError as e:
        raise MCPProtocolError(
            f"Malformed JSON-RPC frame: {e.error_count()} validation error(s)",
            method=data.get("method") if isinstance(data.get("method"), str) else None,
            details={"frame": data, "errors": e.errors(include_url=False)}
        ) from e

    raise MCPProtocolError("Frame is neither a request, a response nor a notification", details={"frame": data})


def decode_message(raw: Union[str, bytes]) -> JSONRPCMessage:
    """Decode one serialized frame."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MCPProtocolError(f"Invalid JSON frame: {e}") from e
    return parse_message(data)


class NotificationKind(str, Enum):
    """Server-to-client notifications understood by the client."""

    TOOLS_LIST_CHANGED = "notifications/tools/list_changed"
    RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
    RESOURCE_UPDATED = "notifications/resources/updated"
    PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
    PROGRESS = "notifications/progress"
    UNKNOWN = "unknown"

    @classmethod
    def from_method(cls, method: str) -> "NotificationKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == method:
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class ServerNotification:
    """A decoded server notification; ``method`` keeps the raw name for UNKNOWN."""

    kind: NotificationKind
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: JSONRPCNotification) -> "ServerNotification":
        return cls(
            kind=NotificationKind.from_method(message.method),
            method=message.method,
            params=dict(message.params or {}),
        )

    @property
    def uri(self) -> Optional[str]:
        """Resource URI of a resources/updated notification."""
        return self.params.get("uri")

    @property
    def progress_token(self) -> Optional[RequestId]:
        return self.params.get("progressToken")


# Method names used by the client
METHOD_INITIALIZE = "initialize"
METHOD_PING = "ping"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"
NOTIFICATION_INITIALIZED = "notifications/initialized"
