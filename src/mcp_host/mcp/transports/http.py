"""
HTTP transport

Requests and notifications are POSTed to ``<base>/jsonrpc``; the response
body of a request is the JSON-RPC response. Server-initiated notifications
arrive over a server-sent events stream at ``<base>/events``. A health probe
at ``<base>/health`` must succeed before the transport counts as connected.
"""

import asyncio
import json
from typing import Optional

import httpx

from ..exceptions import MCPConnectionClosedError, MCPProtocolError, MCPTransportError
from ..messages import JSONRPCMessage, JSONRPCRequest, encode_message
from .base import CloseHandler, FrameHandler
from .framing import SSEEventParser, decode_event_payload
from ...core.config import settings
from ...core.logging import get_logger
from ...core.server_registry import ServerConfig


logger = get_logger(__name__)


class HttpTransport:
    """JSON-RPC over HTTP POST with a server-sent events push channel."""

    transport_type = "http"

    def __init__(
        self,
        config: ServerConfig,
        client: Optional[httpx.AsyncClient] = None,
        sse_max_retries: Optional[int] = None,
        sse_backoff_initial: Optional[float] = None,
        sse_backoff_max: float = 8.0,
    ):
        if config.type != "http" or not config.url:
            raise MCPTransportError(
                f"HttpTransport requires an HTTP server with a URL (server {config.id})",
                transport_type=self.transport_type
            )
        self._config = config
        self._base_url = config.base_url
        self._client = client
        self._own_client = client is None
        self._sse_max_retries = settings.SSE_MAX_RETRIES if sse_max_retries is None else sse_max_retries
        self._sse_backoff_initial = sse_backoff_initial or settings.SSE_BACKOFF_INITIAL
        self._sse_backoff_max = sse_backoff_max
        self._frame_handler: Optional[FrameHandler] = None
        self._close_handler: Optional[CloseHandler] = None
        self._events_lost_handler: Optional[CloseHandler] = None
        self._events_error: Optional[str] = None
        self._events_task: Optional[asyncio.Task] = None
        self._events_connected = asyncio.Event()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def events_connected(self) -> bool:
        """Whether the push channel is currently subscribed."""
        return self._events_connected.is_set()

    def set_frame_handler(self, handler: FrameHandler) -> None:
        self._frame_handler = handler

    def set_close_handler(self, handler: CloseHandler) -> None:
        self._close_handler = handler

    def set_events_lost_handler(self, handler: CloseHandler) -> None:
        """Called once the event stream is abandoned after its last retry; requests keep working."""
        self._events_lost_handler = handler

    @property
    def events_error(self) -> Optional[str]:
        """Why the push channel was abandoned, None while it is alive or retrying."""
        return self._events_error

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Accept": "application/json", **self._config.headers}

    async def connect(self) -> None:
        """
        Probe ``/health`` and subscribe to ``/events``.

        Raises:
            MCPTransportError: If the health probe fails or returns non-200
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._config.timeout or settings.REQUEST_TIMEOUT,
                    connect=settings.CONNECT_TIMEOUT,
                ),
                follow_redirects=True,
            )

        health_url = f"{self._base_url}/health"
        logger.info(f"Connecting to HTTP MCP server {self._config.id} at {self._base_url}")
        try:
            response = await self._client.get(
                health_url,
                headers=self._headers(),
                timeout=settings.HEALTH_CHECK_TIMEOUT
            )
        except httpx.HTTPError as e:
            await self._close_client()
            raise MCPTransportError(
                f"Failed to connect to MCP server {self._config.id}: {e}",
                transport_type=self.transport_type,
                details={"url": health_url, "error_type": type(e).__name__}
            ) from e

        if response.status_code != 200:
            await self._close_client()
            raise MCPTransportError(
                f"Health check failed for MCP server {self._config.id}: HTTP {response.status_code}",
                transport_type=self.transport_type,
                details={"url": health_url, "status_code": response.status_code}
            )

        self._connected = True
        self._events_task = asyncio.create_task(self._listen_events())

    async def write(self, message: JSONRPCMessage) -> None:
        """
        POST one frame; for requests, decode the body as the response.

        Raises:
            MCPConnectionClosedError: If the transport is not connected
            MCPTransportError: On network failure or non-2xx status
            MCPProtocolError: If a request's response body is not a JSON object
        """
        if not self._connected or self._client is None:
            raise MCPConnectionClosedError(
                f"Not connected to HTTP server {self._config.id}",
                transport_type=self.transport_type
            )

        url = f"{self._base_url}/jsonrpc"
        try:
            response = await self._client.post(url, content=encode_message(message), headers=self._headers())
        except httpx.HTTPError as e:
            raise MCPTransportError(
                f"Failed to send message to {self._config.id}: {e}",
                transport_type=self.transport_type,
                details={"url": url, "error_type": type(e).__name__}
            ) from e

        if response.is_error:
            raise MCPTransportError(
                f"HTTP {response.status_code} from {self._config.id}: {response.reason_phrase}",
                transport_type=self.transport_type,
                details={"url": url, "status_code": response.status_code}
            )

        if not isinstance(message, JSONRPCRequest):
            return

        try:
            frame = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MCPProtocolError(
                f"Invalid JSON response from {self._config.id}: {e}",
                method=message.method
            ) from e
        if not isinstance(frame, dict):
            raise MCPProtocolError(
                f"Response from {self._config.id} is not a JSON object",
                method=message.method
            )

        if self._frame_handler is not None:
            self._frame_handler(frame)

    async def disconnect(self) -> None:
        """Stop the event stream and release the HTTP client."""
        self._connected = False
        if self._events_task is not None:
            self._events_task.cancel()
            await asyncio.gather(self._events_task, return_exceptions=True)
            self._events_task = None
        self._events_connected.clear()
        await self._close_client()
        logger.info(f"Disconnected from HTTP MCP server {self._config.id}")

    async def wait_for_events(self, timeout: float = 5.0) -> bool:
        """Wait until the push channel is subscribed."""
        try:
            await asyncio.wait_for(self._events_connected.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _close_client(self) -> None:
        if self._client is not None and self._own_client:
            await self._client.aclose()
            self._client = None

    async def _listen_events(self) -> None:
        """Consume the server-sent events stream, reconnecting with backoff."""
        url = f"{self._base_url}/events"
        headers = {"Accept": "text/event-stream", **self._config.headers}
        retries = 0
        last_error = "stream ended"

        while self._connected:
            try:
                async with self._client.stream("GET", url, headers=headers, timeout=None) as response:
                    response.raise_for_status()
                    self._events_connected.set()
                    retries = 0
                    self._events_error = None
                    logger.debug(f"Subscribed to events from {self._config.id}")
                    parser = SSEEventParser()
                    async for line in response.aiter_lines():
                        payload = parser.feed_line(line)
                        if payload is not None:
                            self._dispatch_event(payload)
                    # Final event may lack its blank-line terminator
                    payload = parser.feed_line("")
                    if payload is not None:
                        self._dispatch_event(payload)
                self._events_connected.clear()
                if not self._connected:
                    return
                logger.warning(f"Event stream from {self._config.id} ended")
                last_error = "stream ended"
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                self._events_connected.clear()
                logger.warning(f"Event stream error from {self._config.id}: {e}")
                last_error = str(e)

            if retries >= self._sse_max_retries:
                logger.error(f"Giving up on event stream from {self._config.id} after {retries} retries")
                self._abandon_events(last_error, retries)
                return
            delay = min(self._sse_backoff_initial * (2 ** retries), self._sse_backoff_max)
            retries += 1
            logger.info(f"Reconnecting event stream for {self._config.id} in {delay}s (attempt {retries})")
            await asyncio.sleep(delay)

    def _dispatch_event(self, payload: str) -> None:
        frame = decode_event_payload(payload)
        if frame is None or self._frame_handler is None:
            return
        try:
            self._frame_handler(frame)
        except Exception as e:
            logger.error(f"Frame handler failed for event from {self._config.id}: {e}")

    def _abandon_events(self, reason: str, retries: int) -> None:
        self._events_error = f"Event stream from {self._config.id} abandoned after {retries} retries: {reason}"
        if self._events_lost_handler is None:
            return
        try:
            self._events_lost_handler(MCPTransportError(
                self._events_error,
                transport_type=self.transport_type,
                details={"retries": retries}
            ))
        except Exception as e:
            logger.error(f"Event stream handler failed for {self._config.id}: {e}")
