"""
Message Correlator

Turns a bidirectional frame channel into request/response/notification
semantics. Each correlator instance owns its pending-request map; all
mutation happens on the event loop thread, so no additional locking is
needed.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .exceptions import (
    MCPClientError, MCPConnectionClosedError, MCPRemoteError,
    MCPTimeoutError, MCPTransportError
)
from .messages import (
    INTERNAL_ERROR, METHOD_NOT_FOUND, METHOD_PING,
    JSONRPCError, JSONRPCMessage, JSONRPCNotification,
    JSONRPCRequest, JSONRPCResponse, RequestId
)
from ..core.logging import get_logger


logger = get_logger(__name__)

SendFunc = Callable[[JSONRPCMessage], Awaitable[None]]
NotificationHandler = Callable[[JSONRPCNotification], None]
RequestHandler = Callable[[JSONRPCRequest], Awaitable[Any]]


@dataclass
class PendingRequest:
    """An outgoing request awaiting its response."""
    request_id: RequestId
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class MessageCorrelator:
    """
    Correlates responses with outgoing requests by id.

    Guarantees exactly one terminal outcome for every request sent:
    the matching response, a server error, a timeout, a write failure,
    or a close. Responses are matched strictly by id, so out-of-order
    delivery is tolerated; unknown ids (late or duplicate responses) are
    dropped.
    """

    def __init__(
        self,
        send: SendFunc,
        request_timeout: float = 30.0,
        on_notification: Optional[NotificationHandler] = None,
        on_request: Optional[RequestHandler] = None,
        name: str = "correlator"
    ):
        self._send = send
        self._request_timeout = request_timeout
        self._on_notification = on_notification
        self._on_request = on_request
        self._name = name
        self._ids = itertools.count(1)
        self._pending: Dict[RequestId, PendingRequest] = {}
        self._closed = False
        self._close_reason = "Connection closed"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Send a request and wait for its result.

        Args:
            method: JSON-RPC method name
            params: Optional params object
            timeout: Deadline in seconds, defaults to the correlator timeout

        Returns:
            The ``result`` member of the matching response

        Raises:
            MCPRemoteError: The server answered with an error object
            MCPTimeoutError: No response arrived before the deadline
            MCPTransportError: The frame could not be written
            MCPConnectionClosedError: The correlator was closed
        """
        if self._closed:
            raise MCPConnectionClosedError(self._close_reason)

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        deadline = timeout if timeout is not None else self._request_timeout
        future = loop.create_future()
        timer = loop.call_later(deadline, self._expire, request_id, deadline)
        self._pending[request_id] = PendingRequest(request_id, method, future, timer)

        message = JSONRPCRequest(id=request_id, method=method, params=params)
        logger.debug(f"[{self._name}] -> {method} (id={request_id})")

        # The deadline covers the write too, so a stalled write cannot outlive it
        send_task = loop.create_task(self._send(message))
        try:
            await asyncio.wait({future, send_task}, return_when=asyncio.FIRST_COMPLETED)
            if send_task.done() and not send_task.cancelled():
                error = send_task.exception()
                if isinstance(error, MCPClientError):
                    self._reject(request_id, error)
                elif error is not None:
                    self._reject(request_id, MCPTransportError(
                        f"Failed to send {method}: {error}",
                        details={"method": method, "request_id": request_id}
                    ))
            return await future
        finally:
            if not send_task.done():
                send_task.cancel()
            elif not send_task.cancelled():
                send_task.exception()
            # Cancellation of the awaiting task only removes its own entry
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification; no response is expected."""
        if self._closed:
            raise MCPConnectionClosedError(self._close_reason)
        logger.debug(f"[{self._name}] -> notification {method}")
        await self._send(JSONRPCNotification(method=method, params=params))

    def handle_incoming(self, message: JSONRPCMessage) -> None:
        """Route an incoming message to its pending request or handler."""
        if isinstance(message, JSONRPCResponse):
            self._handle_response(message)
        elif isinstance(message, JSONRPCNotification):
            if self._on_notification is None:
                logger.debug(f"[{self._name}] dropping notification {message.method}: no handler")
                return
            try:
                self._on_notification(message)
            except Exception as e:
                logger.error(f"[{self._name}] notification handler failed for {message.method}: {e}")
        elif isinstance(message, JSONRPCRequest):
            if self._closed:
                return
            asyncio.get_running_loop().create_task(self._answer_request(message))

    def close(self, reason: str = "Connection closed") -> None:
        """Reject every pending request and refuse new ones. Idempotent."""
        if not self._closed:
            self._closed = True
            self._close_reason = reason
        if not self._pending:
            return

        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(MCPConnectionClosedError(reason))
        logger.info(f"[{self._name}] closed with {len(pending)} pending request(s) rejected: {reason}")

    def _handle_response(self, response: JSONRPCResponse) -> None:
        entry = self._pending.pop(response.id, None) if response.id is not None else None
        if entry is None:
            logger.debug(f"[{self._name}] dropping response for unknown id {response.id!r}")
            return

        entry.timer.cancel()
        if entry.future.done():
            return
        if response.error is not None:
            entry.future.set_exception(MCPRemoteError(
                response.error.message,
                code=response.error.code,
                data=response.error.data,
                method=entry.method
            ))
        else:
            entry.future.set_result(response.result)

    def _expire(self, request_id: RequestId, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning(f"[{self._name}] request {entry.method} (id={request_id}) timed out after {timeout:g}s")
        entry.future.set_exception(MCPTimeoutError(entry.method, request_id, timeout))

    def _reject(self, request_id: RequestId, error: Exception) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_exception(error)

    async def _answer_request(self, request: JSONRPCRequest) -> None:
        """Answer a server-initiated request."""
        try:
            if self._on_request is not None:
                result = await self._on_request(request)
            elif request.method == METHOD_PING:
                result = {}
            else:
                raise LookupError(request.method)
            response = JSONRPCResponse(id=request.id, result=result)
        except LookupError:
            response = JSONRPCResponse(
                id=request.id,
                error=JSONRPCError(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}")
            )
        except Exception as e:
            logger.error(f"[{self._name}] failed to answer server request {request.method}: {e}")
            response = JSONRPCResponse(
                id=request.id,
                error=JSONRPCError(code=INTERNAL_ERROR, message=str(e))
            )

        try:
            await self._send(response)
        except Exception as e:
            logger.warning(f"[{self._name}] could not send response for {request.method}: {e}")
