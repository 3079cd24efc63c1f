"""
MCP Protocol Client

The MCP operation surface (handshake, listing, invocation) layered on a
MessageCorrelator, which in turn writes through any MCPTransport.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from .correlator import MessageCorrelator
from .exceptions import MCPNotInitializedError, MCPProtocolError
from .messages import (
    METHOD_INITIALIZE, METHOD_PING, METHOD_PROMPTS_GET, METHOD_PROMPTS_LIST,
    METHOD_RESOURCES_LIST, METHOD_RESOURCES_READ, METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST, NOTIFICATION_INITIALIZED,
    JSONRPCNotification, JSONRPCRequest, NotificationKind, ServerNotification,
    parse_message
)
from .models import (
    CallToolResult, GetPromptResult, InitializeResult, Prompt,
    ReadResourceResult, Resource, Tool
)
from .transports.base import MCPTransport
from ..core.config import settings
from ..core.logging import get_logger


logger = get_logger(__name__)

NotificationCallback = Callable[[ServerNotification], None]
ServerRequestHandler = Callable[[JSONRPCRequest], Awaitable[Any]]


class MCPProtocolClient:
    """
    Client side of one MCP session.

    Owns the initialized/uninitialized state and routes server
    notifications to typed callbacks. Every operation other than
    ``initialize`` raises ``MCPNotInitializedError`` until the handshake
    has completed.
    """

    def __init__(
        self,
        transport: MCPTransport,
        server_id: str,
        request_timeout: Optional[float] = None,
        client_name: Optional[str] = None,
        client_version: Optional[str] = None,
        protocol_version: Optional[str] = None,
        request_handler: Optional[ServerRequestHandler] = None
    ):
        self.server_id = server_id
        self._transport = transport
        self._client_name = client_name or settings.CLIENT_NAME
        self._client_version = client_version or settings.CLIENT_VERSION
        self._protocol_version = protocol_version or settings.PROTOCOL_VERSION
        self._correlator = MessageCorrelator(
            send=transport.write,
            request_timeout=request_timeout or settings.REQUEST_TIMEOUT,
            on_notification=self._dispatch_notification,
            on_request=request_handler,
            name=server_id
        )
        self._handlers: Dict[NotificationKind, List[NotificationCallback]] = {}
        self._initialize_result: Optional[InitializeResult] = None
        self._initialized = False
        transport.set_frame_handler(self._on_frame)

    @property
    def transport(self) -> MCPTransport:
        return self._transport

    @property
    def correlator(self) -> MessageCorrelator:
        return self._correlator

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def server_capabilities(self) -> Dict[str, Any]:
        return dict(self._initialize_result.capabilities) if self._initialize_result else {}

    @property
    def capability_names(self) -> List[str]:
        """Top-level capability keys advertised by the server, e.g. ``tools``."""
        return sorted(self.server_capabilities)

    @property
    def server_info(self) -> Optional[Dict[str, Any]]:
        return self._initialize_result.server_info.to_wire() if self._initialize_result else None

    @property
    def negotiated_protocol_version(self) -> Optional[str]:
        return self._initialize_result.protocol_version if self._initialize_result else None

    async def initialize(self) -> InitializeResult:
        """
        Perform the initialize handshake.

        Returns:
            The server's protocol version, capabilities and identity

        Raises:
            MCPProtocolError: If the server's answer is not a valid initialize result
        """
        raw = await self._correlator.request(METHOD_INITIALIZE, {
            "protocolVersion": self._protocol_version,
            "capabilities": {
                "roots": {"listChanged": True},
                "sampling": {}
            },
            "clientInfo": {
                "name": self._client_name,
                "version": self._client_version
            }
        })

        try:
            result = InitializeResult.model_validate(raw)
        except ValueError as e:
            raise MCPProtocolError(
                f"Invalid initialize result from {self.server_id}: {e}",
                method=METHOD_INITIALIZE
            ) from e

        if result.protocol_version != self._protocol_version:
            logger.info(
                f"Server {self.server_id} negotiated protocol {result.protocol_version} "
                f"(offered {self._protocol_version})"
            )

        self._initialize_result = result
        self._initialized = True
        await self._correlator.notify(NOTIFICATION_INITIALIZED)
        logger.info(f"MCP session with {self.server_id} initialized ({result.server_info.name} {result.server_info.version})")
        return result

    async def ping(self) -> None:
        self._ensure_initialized("ping")
        await self._correlator.request(METHOD_PING)

    async def list_tools(self) -> List[Tool]:
        self._ensure_initialized("list_tools")
        result = await self._correlator.request(METHOD_TOOLS_LIST)
        return [self._validate(Tool, item, METHOD_TOOLS_LIST) for item in self._items(result, "tools", METHOD_TOOLS_LIST)]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        """
        Invoke a tool. The content list and ``isError`` flag are returned as
        the server sent them; interpreting them is left to the caller.
        """
        self._ensure_initialized("call_tool")
        result = await self._correlator.request(METHOD_TOOLS_CALL, {
            "name": name,
            "arguments": arguments or {}
        })
        return self._validate(CallToolResult, result, METHOD_TOOLS_CALL)

    async def list_resources(self) -> List[Resource]:
        self._ensure_initialized("list_resources")
        result = await self._correlator.request(METHOD_RESOURCES_LIST)
        return [self._validate(Resource, item, METHOD_RESOURCES_LIST) for item in self._items(result, "resources", METHOD_RESOURCES_LIST)]

    async def read_resource(self, uri: str) -> ReadResourceResult:
        self._ensure_initialized("read_resource")
        result = await self._correlator.request(METHOD_RESOURCES_READ, {"uri": uri})
        return self._validate(ReadResourceResult, result, METHOD_RESOURCES_READ)

    async def list_prompts(self) -> List[Prompt]:
        self._ensure_initialized("list_prompts")
        result = await self._correlator.request(METHOD_PROMPTS_LIST)
        return [self._validate(Prompt, item, METHOD_PROMPTS_LIST) for item in self._items(result, "prompts", METHOD_PROMPTS_LIST)]

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> GetPromptResult:
        self._ensure_initialized("get_prompt")
        params: Dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = arguments
        result = await self._correlator.request(METHOD_PROMPTS_GET, params)
        return self._validate(GetPromptResult, result, METHOD_PROMPTS_GET)

    def add_notification_handler(self, kind: NotificationKind, callback: NotificationCallback) -> None:
        self._handlers.setdefault(kind, []).append(callback)

    def remove_notification_handler(self, kind: NotificationKind, callback: NotificationCallback) -> None:
        callbacks = self._handlers.get(kind, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def close(self, reason: str = "Connection closed") -> None:
        """Fail every pending request and mark the session uninitialized."""
        self._initialized = False
        self._correlator.close(reason)

    def _on_frame(self, frame: Dict[str, Any]) -> None:
        try:
            message = parse_message(frame)
        except MCPProtocolError as e:
            logger.warning(f"Dropping malformed frame from {self.server_id}: {e.message}")
            return
        self._correlator.handle_incoming(message)

    def _dispatch_notification(self, message: JSONRPCNotification) -> None:
        notification = ServerNotification.from_message(message)
        if notification.kind is NotificationKind.UNKNOWN:
            logger.info(f"Unknown MCP notification from {self.server_id}: {notification.method}")
        else:
            logger.debug(f"Notification from {self.server_id}: {notification.kind.name}")

        for callback in list(self._handlers.get(notification.kind, [])):
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification callback failed for {notification.method} from {self.server_id}: {e}")

    def _ensure_initialized(self, operation: str) -> None:
        if not self._initialized:
            raise MCPNotInitializedError(operation, self.server_id)

    def _items(self, result: Any, key: str, method: str) -> List[Any]:
        if result is None:
            return []
        if not isinstance(result, dict):
            raise MCPProtocolError(f"Unexpected {method} result from {self.server_id}", method=method)
        items = result.get(key)
        if items is None:
            return []
        if not isinstance(items, list):
            raise MCPProtocolError(f"{method} result field '{key}' is not a list", method=method)
        return items

    def _validate(self, model, result: Any, method: str):
        try:
            return model.model_validate(result if result is not None else {})
        except ValueError as e:
            raise MCPProtocolError(f"Invalid {method} result from {self.server_id}: {e}", method=method) from e
