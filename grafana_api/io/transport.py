"""
Grafana API wire-level transport.

This module wraps a single duplex websocket connection. A transport is opened
once, delivers its lifecycle signals to a TransportHandler, and is thrown away
when it closes. Reconnecting means creating a new transport.

Terms:
- Transport = One websocket connection to the aggregator
- Handler = The object receiving the transport's signals (the connection state machine)

Signals, in the order a healthy connection sees them:
    connection_made -> message_received* / ping_received* -> connection_lost
A transport that never opens reports error_received instead.

Example usage:
class Printer(TransportHandler):
    def message_received(self, transport, data):
        print("Frame:", data)

async def main():
    transport = WebSocketTransport("ws://localhost:3000/connect", Printer())
    transport.open()
    await transport.wait_closed()

asyncio.run(main())
"""

import asyncio
import logging
from typing import Optional, Set

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI

from .codec import CloseCode
from ..exceptions import GrafanaConnectionError


class TransportHandler:
    """Receives signals from a Transport. All methods are called on the event loop."""

    def connection_made(self, transport: "Transport") -> None:
        pass

    def message_received(self, transport: "Transport", data: str | bytes) -> None:
        pass

    def ping_received(self, transport: "Transport", data: bytes) -> None:
        pass

    def error_received(self, transport: "Transport", exc: Exception) -> None:
        pass

    def connection_lost(self, transport: "Transport", code: int, reason: str) -> None:
        pass


class Transport:
    """Base class for a message-oriented, connection-oriented transport"""

    def __init__(self, uri: str, handler: TransportHandler, logger: Optional[logging.Logger] = None):
        self.uri = uri
        self.handler = handler
        self.logger = logger or logging.getLogger(__name__)

    def open(self) -> None:
        """Start connecting. Returns immediately; the outcome arrives as a signal."""
        raise NotImplementedError

    async def send(self, data: str) -> None:
        """Hand a frame to the transport. Returns once it has been accepted for sending."""
        raise NotImplementedError

    def pong(self, data: bytes = b"") -> None:
        """Answer a transport-level ping"""
        raise NotImplementedError

    def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        """Start closing. connection_lost follows."""
        raise NotImplementedError

    def is_open(self) -> bool:
        raise NotImplementedError

    async def wait_closed(self) -> None:
        pass


class WebSocketTransport(Transport):
    """
    Transport over a `websockets` client connection.

    The websockets protocol layer answers every ping frame with a pong as soon as
    it is read, so this transport never raises ping_received and pong() is only
    needed for unsolicited pongs.

    Client-side keepalive pings are disabled; the aggregator owns liveness.
    """

    def __init__(self,
                 uri: str,
                 handler: TransportHandler,
                 logger: Optional[logging.Logger] = None,
                 open_timeout: Optional[float] = 10.0):
        super().__init__(uri, handler, logger)
        self.open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._background: Set[asyncio.Task] = set()

    def open(self) -> None:
        if self._task is not None:
            raise RuntimeError("Transport has already been opened")
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._run_done)

    async def _run(self) -> None:
        try:
            self._ws = await connect(self.uri, ping_interval=None, open_timeout=self.open_timeout)
        except (OSError, TimeoutError, InvalidURI, InvalidHandshake) as e:
            self.logger.error(f"Websocket connection to {self.uri} failed: {e}")
            self.handler.error_received(self, e)
            return

        self.logger.info(f"Connected to {self.uri}")
        self.handler.connection_made(self)

        try:
            async for message in self._ws:
                self.handler.message_received(self, message)
        except ConnectionClosedError:
            pass  # close code and reason are read below

        code = self._ws.close_code if self._ws.close_code is not None else CloseCode.ABNORMAL
        reason = self._ws.close_reason or ""
        self.logger.info(f"Connection to {self.uri} closed: {code} {reason}".rstrip())
        self.handler.connection_lost(self, code, reason)

    def _run_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Nobody awaits the reader task, so hand the failure to the loop
            task.get_loop().call_exception_handler({
                "message": f"Unhandled error on transport to {self.uri}",
                "exception": exc,
                "task": task,
            })

    async def send(self, data: str) -> None:
        if self._ws is None or self._closing:
            raise GrafanaConnectionError("Transport is not open")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else CloseCode.ABNORMAL
            raise GrafanaConnectionError(f"Send rejected, connection closed: {e}", code) from e

    def pong(self, data: bytes = b"") -> None:
        if self._ws is None or self._closing:
            return
        self._spawn(self._ws.pong(data))

    def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        if self._closing:
            return
        self._closing = True
        if self._ws is None:
            # Still connecting: abandon the attempt and report the close ourselves
            if self._task is not None:
                self._task.cancel()
            asyncio.get_running_loop().call_soon(self.handler.connection_lost, self, int(code), reason)
            return
        self._spawn(self._ws.close(int(code), reason))

    def is_open(self) -> bool:
        return self._ws is not None and not self._closing and self._ws.close_code is None

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
