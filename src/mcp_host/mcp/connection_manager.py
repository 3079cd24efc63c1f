"""
MCP Connection Manager

Registry and lifecycle of named server connections. The connection map is
the only shared mutable state; it is guarded by an asyncio lock and every
mutation publishes a full status snapshot to registered observers.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel, ValidationError

from .client import MCPProtocolClient
from .exceptions import ServerConfigError, ServerNotConnectedError, ServerNotFoundError, ToolNotFoundError
from .messages import NotificationKind
from .models import CallToolResult, GetPromptResult, Prompt, ReadResourceResult, Resource, Tool
from .transports.base import MCPTransport
from .transports.factory import TransportFactory, create_transport
from ..core.logging import get_logger
from ..core.server_registry import ServerConfig, validate_server_config


logger = get_logger(__name__)


class ServerStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ServerInfo(BaseModel):
    """Snapshot of one connection, as published to observers."""
    id: str
    name: str
    type: str
    url: Optional[str] = None
    status: ServerStatus
    capabilities: List[str] = []
    last_error: Optional[str] = None
    connected_at: Optional[datetime] = None


@dataclass
class ServerConnection:
    """One registered server: its config, transport, protocol client and status."""
    config: ServerConfig
    transport: MCPTransport
    client: MCPProtocolClient
    status: ServerStatus = ServerStatus.DISCONNECTED
    capabilities: List[str] = field(default_factory=list)
    last_error: Optional[str] = None
    connected_at: Optional[datetime] = None
    tools_cache: Optional[List[Tool]] = None

    def info(self) -> ServerInfo:
        return ServerInfo(
            id=self.config.id,
            name=self.config.name,
            type=self.config.type,
            url=self.config.url,
            status=self.status,
            capabilities=list(self.capabilities),
            last_error=self.last_error,
            connected_at=self.connected_at,
        )


ServersListener = Callable[[List[ServerInfo]], None]


class ConnectionManager:
    """Owns the set of server connections and aggregates their capabilities."""

    def __init__(
        self,
        transport_factory: TransportFactory = create_transport,
        request_timeout: Optional[float] = None
    ):
        self._transport_factory = transport_factory
        self._request_timeout = request_timeout
        self._connections: Dict[str, ServerConnection] = {}
        self._connecting: Set[str] = set()
        self._listeners: List[ServersListener] = []
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect_all()

    async def connect_server(self, config: Union[ServerConfig, Dict[str, Any]]) -> ServerInfo:
        """
        Connect to and initialize a server, then register it.

        Args:
            config: Server configuration, or a raw mapping to validate

        Returns:
            Snapshot of the new connection

        Raises:
            ServerConfigError: Invalid configuration or id already registered
            MCPClientError: Transport or handshake failure; nothing is registered
        """
        config = self._coerce_config(config)

        async with self._lock:
            if config.id in self._connections or config.id in self._connecting:
                raise ServerConfigError(f"Server {config.id} is already connected", server_id=config.id)
            self._connecting.add(config.id)

        try:
            transport = self._transport_factory(config)
            client = MCPProtocolClient(
                transport,
                server_id=config.id,
                request_timeout=self._request_timeout or config.timeout
            )
            connection = ServerConnection(config=config, transport=transport, client=client,
                                          status=ServerStatus.CONNECTING)

            # Until registration a lost transport only fails the handshake in flight
            transport.set_close_handler(
                lambda error: client.close(
                    f"Connection to {config.id} lost during initialization: {error or 'transport closed'}"
                )
            )

            logger.info(f"Connecting to MCP server {config.id} ({config.type})")
            try:
                await transport.connect()
                result = await client.initialize()
            except BaseException as e:
                client.close(f"Connection to {config.id} failed")
                try:
                    await transport.disconnect()
                except Exception as cleanup_error:
                    logger.warning(f"Error tearing down transport for {config.id}: {cleanup_error}")
                if isinstance(e, Exception):
                    logger.error(f"Failed to connect to MCP server {config.id}: {e}")
                raise

            connection.status = ServerStatus.CONNECTED
            connection.capabilities = sorted(result.capabilities)
            connection.connected_at = datetime.now(timezone.utc)
            client.add_notification_handler(
                NotificationKind.TOOLS_LIST_CHANGED,
                lambda _notification: self._invalidate_tools(config.id)
            )

            async with self._lock:
                self._connections[config.id] = connection
            transport.set_close_handler(lambda error: self._on_transport_lost(config.id, error))
            if not transport.is_connected:
                self._on_transport_lost(config.id, None)
            # Optional push channel of HTTP transports; losing it degrades but keeps the connection
            if hasattr(transport, "set_events_lost_handler"):
                transport.set_events_lost_handler(lambda error: self._on_events_lost(config.id, error))
                if getattr(transport, "events_error", None):
                    connection.last_error = transport.events_error
        finally:
            self._connecting.discard(config.id)

        logger.info(f"Connected to MCP server {config.id} with capabilities {connection.capabilities}")
        self._notify_listeners()
        return connection.info()

    async def disconnect_server(self, server_id: str) -> None:
        """Tear down a connection. Unknown ids are ignored."""
        async with self._lock:
            connection = self._connections.pop(server_id, None)
        if connection is None:
            return

        # Pending requests fail synchronously, before any awaiting
        connection.client.close(f"Connection closed: server {server_id} disconnected")
        connection.status = ServerStatus.DISCONNECTED
        self._notify_listeners()

        try:
            await connection.transport.disconnect()
        except Exception as e:
            logger.warning(f"Error closing transport for {server_id}: {e}")
        logger.info(f"Disconnected from MCP server {server_id}")

    async def disconnect_all(self) -> None:
        for server_id in list(self._connections):
            await self.disconnect_server(server_id)

    def get_servers(self) -> List[ServerInfo]:
        return [connection.info() for connection in self._connections.values()]

    def get_server(self, server_id: str) -> Optional[ServerInfo]:
        connection = self._connections.get(server_id)
        return connection.info() if connection else None

    def get_client(self, server_id: str) -> MCPProtocolClient:
        """
        Get the protocol client of a connected server.

        Raises:
            ServerNotFoundError: Unknown server id
            ServerNotConnectedError: Server registered but not connected
        """
        return self._require_connected(server_id).client

    def add_listener(self, callback: ServersListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: ServersListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def list_tools(self) -> Dict[str, List[Tool]]:
        return await self._fan_out("tools", self._fetch_tools)

    async def list_resources(self) -> Dict[str, List[Resource]]:
        return await self._fan_out("resources", lambda c: c.client.list_resources())

    async def list_prompts(self) -> Dict[str, List[Prompt]]:
        return await self._fan_out("prompts", lambda c: c.client.list_prompts())

    async def get_server_tools(self, server_id: str, refresh: bool = False) -> List[Tool]:
        """Tools declared by one server, cached until it reports a change."""
        connection = self._require_connected(server_id)
        if refresh:
            connection.tools_cache = None
        return await self._fetch_tools(connection)

    async def get_tool(self, server_id: str, tool_name: str) -> Tool:
        """
        Look up one declared tool.

        Raises:
            ToolNotFoundError: The server does not declare the tool
        """
        for tool in await self.get_server_tools(server_id):
            if tool.name == tool_name:
                return tool
        raise ToolNotFoundError(tool_name, server_id)

    async def call_tool(self, server_id: str, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        return await self.get_client(server_id).call_tool(tool_name, arguments)

    async def read_resource(self, server_id: str, uri: str) -> ReadResourceResult:
        return await self.get_client(server_id).read_resource(uri)

    async def get_prompt(self, server_id: str, prompt_name: str, arguments: Optional[Dict[str, Any]] = None) -> GetPromptResult:
        return await self.get_client(server_id).get_prompt(prompt_name, arguments)

    def _coerce_config(self, config: Union[ServerConfig, Dict[str, Any]]) -> ServerConfig:
        if isinstance(config, ServerConfig):
            return config
        if not isinstance(config, dict):
            raise ServerConfigError(f"Unsupported server configuration type: {type(config).__name__}")
        errors = validate_server_config(config)
        if errors:
            raise ServerConfigError(
                f"Invalid configuration for server {config.get('id')}: {'; '.join(errors)}",
                server_id=config.get('id'),
                errors=errors
            )
        try:
            return ServerConfig(**config)
        except ValidationError as e:
            raise ServerConfigError(str(e), server_id=config.get('id')) from e

    def _require_connected(self, server_id: str) -> ServerConnection:
        connection = self._connections.get(server_id)
        if connection is None:
            raise ServerNotFoundError(server_id)
        if connection.status is not ServerStatus.CONNECTED:
            raise ServerNotConnectedError(server_id, connection.status.value)
        return connection

    async def _fetch_tools(self, connection: ServerConnection) -> List[Tool]:
        if connection.tools_cache is None:
            connection.tools_cache = await connection.client.list_tools()
        return list(connection.tools_cache)

    async def _fan_out(self, what: str, fetch: Callable[[ServerConnection], Any]) -> Dict[str, List[Any]]:
        connections = [c for c in self._connections.values() if c.status is ServerStatus.CONNECTED]
        results = await asyncio.gather(*(fetch(c) for c in connections), return_exceptions=True)

        listing: Dict[str, List[Any]] = {}
        for connection, result in zip(connections, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(f"Failed to list {what} from server {connection.config.id}: {result}")
                continue
            listing[connection.config.id] = result
        return listing

    def _invalidate_tools(self, server_id: str) -> None:
        connection = self._connections.get(server_id)
        if connection is not None:
            connection.tools_cache = None
            logger.info(f"Tool list of {server_id} changed; cache invalidated")

    def _on_transport_lost(self, server_id: str, error: Optional[Exception]) -> None:
        connection = self._connections.get(server_id)
        if connection is None:
            return
        message = str(error) if error else "Transport closed"
        connection.status = ServerStatus.ERROR
        connection.last_error = message
        connection.tools_cache = None
        connection.client.close(f"Connection closed: {message}")
        logger.error(f"Lost connection to MCP server {server_id}: {message}")
        self._notify_listeners()

    def _on_events_lost(self, server_id: str, error: Optional[Exception]) -> None:
        connection = self._connections.get(server_id)
        if connection is None:
            return
        connection.last_error = str(error) if error else "Event stream lost"
        logger.warning(f"MCP server {server_id} no longer pushes notifications: {connection.last_error}")
        self._notify_listeners()

    def _notify_listeners(self) -> None:
        snapshot = self.get_servers()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Server listener failed: {e}")
