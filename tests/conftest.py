"""Shared fixtures: an in-memory transport and a real stdio MCP server."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from mcp_host.core.server_registry import ServerConfig
from mcp_host.mcp.messages import JSONRPCRequest


MOCK_SERVER_SCRIPT = Path(__file__).parent / "fixtures" / "mock_stdio_server.py"

DEFAULT_TOOLS = [
    {
        "name": "echo",
        "description": "Echo the given text",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "read_file",
        "description": "Read a file",
        "inputSchema": {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
    },
]


def make_mcp_responder(
    tools: Optional[List[Dict[str, Any]]] = None,
    handlers: Optional[Dict[str, Callable[[Dict[str, Any]], Any]]] = None,
) -> Callable[[Any], Optional[Dict[str, Any]]]:
    """
    Build a responder answering MCP requests like a well-behaved server.

    ``handlers`` maps a method (or ``tools/call:<tool>``) to a function of the
    params returning the result; returning ``None`` leaves the request
    unanswered and raising an exception answers with an error.
    """
    tools = DEFAULT_TOOLS if tools is None else tools
    handlers = handlers or {}

    def respond(message):
        if not isinstance(message, JSONRPCRequest):
            return None
        params = message.params or {}
        key = message.method
        if message.method == "tools/call":
            key = f"tools/call:{params.get('name')}"

        try:
            if key in handlers:
                result = handlers[key](params)
                if result is None:
                    return None
            elif message.method == "initialize":
                result = {
                    "protocolVersion": "2024-11-05",
                    "capabilities": {"tools": {"listChanged": True}},
                    "serverInfo": {"name": "fake-server", "version": "0.0.1"},
                }
            elif message.method == "tools/list":
                result = {"tools": tools}
            elif message.method == "tools/call":
                arguments = params.get("arguments") or {}
                result = {"content": [{"type": "text", "text": f"{params.get('name')}:{arguments}"}]}
            elif message.method in ("resources/list", "prompts/list"):
                result = {}
            elif message.method == "ping":
                result = {}
            else:
                return {"jsonrpc": "2.0", "id": message.id,
                        "error": {"code": -32601, "message": f"Method not found: {message.method}"}}
        except Exception as e:
            return {"jsonrpc": "2.0", "id": message.id, "error": {"code": -32000, "message": str(e)}}

        return {"jsonrpc": "2.0", "id": message.id, "result": result}

    return respond


class FakeTransport:
    """In-memory MCPTransport; answers are delivered on the next loop iteration."""

    transport_type = "fake"

    def __init__(self, responder=None, connect_error: Optional[Exception] = None):
        self.responder = responder
        self.connect_error = connect_error
        self.written: List[Any] = []
        self.connected = False
        self.disconnect_calls = 0
        self._frame_handler = None
        self._close_handler = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    def set_frame_handler(self, handler) -> None:
        self._frame_handler = handler

    def set_close_handler(self, handler) -> None:
        self._close_handler = handler

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def write(self, message) -> None:
        self.written.append(message)
        if self.responder is not None:
            frame = self.responder(message)
            if frame is not None:
                asyncio.get_running_loop().call_soon(self.deliver, frame)

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnect_calls += 1

    def deliver(self, frame: Dict[str, Any]) -> None:
        self._frame_handler(frame)

    def drop(self, error: Optional[Exception] = None) -> None:
        """Simulate the channel dying underneath the client."""
        self.connected = False
        if self._close_handler is not None:
            self._close_handler(error)

    def requests(self, method: str) -> List[JSONRPCRequest]:
        return [m for m in self.written if isinstance(m, JSONRPCRequest) and m.method == method]


@pytest.fixture
def fake_transport():
    """A FakeTransport answering like a default MCP server."""
    return FakeTransport(responder=make_mcp_responder())


@pytest.fixture
def fake_transport_cls():
    return FakeTransport


@pytest.fixture
def mcp_responder():
    return make_mcp_responder


@pytest.fixture
def stdio_config():
    """Configuration spawning the mock stdio server with this interpreter."""
    return ServerConfig(
        id="mock-stdio",
        name="Mock stdio server",
        type="stdio",
        command=sys.executable,
        args=["-u", str(MOCK_SERVER_SCRIPT)],
        timeout=10.0,
    )


@pytest.fixture
def http_config():
    return ServerConfig(id="mock-http", name="Mock HTTP server", type="http", url="http://mcp.test/api/")
