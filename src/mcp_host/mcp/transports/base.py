"""
Transport interface.

Transports are structural: anything with these members can carry frames for
a protocol client. Implementations do not share a base class.
"""

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from ..messages import JSONRPCMessage


FrameHandler = Callable[[Dict[str, Any]], None]
CloseHandler = Callable[[Optional[Exception]], None]


@runtime_checkable
class MCPTransport(Protocol):
    """
    Byte-level channel carrying JSON-RPC frames to one server.

    - ``connect()`` establishes the channel and raises ``MCPTransportError``
      on failure
    - ``write(message)`` sends one frame
    - the frame handler receives every decoded incoming frame as a dict
    - the close handler is invoked once if the channel is lost while
      connected (not on an explicit ``disconnect()``)
    """

    transport_type: str

    @property
    def is_connected(self) -> bool: ...

    def set_frame_handler(self, handler: FrameHandler) -> None: ...

    def set_close_handler(self, handler: CloseHandler) -> None: ...

    async def connect(self) -> None: ...

    async def write(self, message: JSONRPCMessage) -> None: ...

    async def disconnect(self) -> None: ...
