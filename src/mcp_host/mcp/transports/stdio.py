"""
Stdio transport

Spawns the server as a child process and exchanges newline-delimited JSON
over its standard input and output. Standard error is forwarded to the log.
"""

import asyncio
import os
from typing import Optional

from ..exceptions import MCPConnectionClosedError, MCPTransportError
from ..messages import JSONRPCMessage, encode_message
from .base import CloseHandler, FrameHandler
from .framing import NDJSONFrameBuffer
from ...core.config import settings
from ...core.logging import get_logger
from ...core.server_registry import ServerConfig


logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class StdioTransport:
    """Newline-delimited JSON-RPC over a child process's stdin/stdout."""

    transport_type = "stdio"

    def __init__(self, config: ServerConfig, shutdown_timeout: Optional[float] = None):
        if config.type != "stdio" or not config.command:
            raise MCPTransportError(
                f"StdioTransport requires a stdio server with a command (server {config.id})",
                transport_type=self.transport_type
            )
        self._config = config
        self._shutdown_timeout = shutdown_timeout or settings.STDIO_SHUTDOWN_TIMEOUT
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._frame_handler: Optional[FrameHandler] = None
        self._close_handler: Optional[CloseHandler] = None
        self._write_lock = asyncio.Lock()
        self._closing = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def set_frame_handler(self, handler: FrameHandler) -> None:
        self._frame_handler = handler

    def set_close_handler(self, handler: CloseHandler) -> None:
        self._close_handler = handler

    async def connect(self) -> None:
        """
        Spawn the server process and start reading its output.

        Raises:
            MCPTransportError: If the process cannot be started
        """
        if self._process is not None:
            raise MCPTransportError("Stdio transport already connected", transport_type=self.transport_type)

        full_env = dict(os.environ)
        full_env.update(self._config.env)

        logger.info(f"Spawning stdio MCP server {self._config.id}: {self._config.command} {' '.join(self._config.args)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._config.command,
                *self._config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=full_env,
                cwd=self._config.cwd,
            )
        except (OSError, ValueError) as e:
            raise MCPTransportError(
                f"Failed to start stdio server {self._config.id}: {e}",
                transport_type=self.transport_type,
                details={"command": self._config.command, "args": self._config.args, "cwd": self._config.cwd}
            ) from e

        self._closing = False
        self._connected = True
        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        logger.debug(f"Stdio server {self._config.id} started with pid {self._process.pid}")

    async def write(self, message: JSONRPCMessage) -> None:
        """
        Write one frame followed by a newline.

        Raises:
            MCPConnectionClosedError: If the process is not running
            MCPTransportError: If the pipe is broken
        """
        if not self.is_connected or self._process.stdin is None:
            raise MCPConnectionClosedError(
                f"Not connected to stdio server {self._config.id}",
                transport_type=self.transport_type
            )

        data = (encode_message(message) + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                self._process.stdin.write(data)
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
                raise MCPTransportError(
                    f"Failed to write to stdio server {self._config.id}: {e}",
                    transport_type=self.transport_type
                ) from e

    async def disconnect(self) -> None:
        """Close stdin, wait for the process to exit, then terminate or kill it."""
        process = self._process
        if process is None:
            return

        self._closing = True
        self._connected = False

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=self._shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Stdio server {self._config.id} did not exit, terminating")
                try:
                    process.terminate()
                    await asyncio.wait_for(process.wait(), timeout=self._shutdown_timeout)
                except ProcessLookupError:
                    pass
                except asyncio.TimeoutError:
                    logger.warning(f"Stdio server {self._config.id} ignored SIGTERM, killing")
                    process.kill()
                    await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._reader_task, self._stderr_task) if t is not None),
            return_exceptions=True
        )
        self._reader_task = None
        self._stderr_task = None
        self._process = None
        logger.info(f"Stdio server {self._config.id} stopped (exit code {process.returncode})")

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        buffer = NDJSONFrameBuffer()
        error: Optional[Exception] = None

        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for frame in buffer.feed(chunk):
                    self._deliver(frame)
            for frame in buffer.flush():
                self._deliver(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
            logger.error(f"Error reading from stdio server {self._config.id}: {e}")

        if self._closing:
            return

        returncode = await self._process.wait() if self._process is not None else None
        self._connected = False
        reason = MCPTransportError(
            f"Stdio server {self._config.id} exited (code {returncode})" if error is None
            else f"Stdio server {self._config.id} stream error: {error}",
            transport_type=self.transport_type,
            details={"returncode": returncode}
        )
        logger.warning(reason.message)
        if self._close_handler is not None:
            self._close_handler(reason)

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # Oversized stderr line; drop what is buffered and continue
                await stderr.read(READ_CHUNK_SIZE)
                continue
            if not line:
                return
            logger.debug(f"[{self._config.id} stderr] {line.decode('utf-8', errors='replace').rstrip()}")

    def _deliver(self, frame) -> None:
        if self._frame_handler is None:
            logger.debug(f"Dropping frame from {self._config.id}: no handler")
            return
        try:
            self._frame_handler(frame)
        except Exception as e:
            logger.error(f"Frame handler failed for {self._config.id}: {e}")
