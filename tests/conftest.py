import asyncio
import logging
from typing import Any, Optional

import pytest

from grafana_api import GrafanaAPIClient, GrafanaConnectionError, OpCode, Transport, decode, encode


class FakeTransport(Transport):
    """In-memory transport. The test plays the aggregator through the server_* helpers."""

    def __init__(self, uri: str, handler, logger: Optional[logging.Logger] = None):
        super().__init__(uri, handler, logger)
        self.opened = False
        self.accept_sends = True
        self.sent: list[str] = []
        self.pongs: list[bytes] = []
        self.closed_with: Optional[tuple[int, str]] = None

    def open(self) -> None:
        self.opened = True

    async def send(self, data: str) -> None:
        if not self.accept_sends or self.closed_with is not None:
            raise GrafanaConnectionError("Transport is not open")
        self.sent.append(data)

    def pong(self, data: bytes = b"") -> None:
        self.pongs.append(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed_with is None:
            self.closed_with = (int(code), reason)

    def is_open(self) -> bool:
        return self.opened and self.closed_with is None

    # Aggregator side

    def server_open(self) -> None:
        self.handler.connection_made(self)

    def server_send(self, op: int, d: Any = None) -> None:
        self.handler.message_received(self, encode(op, d))

    def server_raw(self, raw: str | bytes) -> None:
        self.handler.message_received(self, raw)

    def server_ping(self, data: bytes = b"") -> None:
        self.handler.ping_received(self, data)

    def server_close(self, code: int, reason: str = "") -> None:
        self.handler.connection_lost(self, code, reason)

    def server_error(self, exc: Exception) -> None:
        self.handler.error_received(self, exc)

    def finish_close(self) -> None:
        """Deliver the close signal for a close the client started"""
        code, reason = self.closed_with
        self.handler.connection_lost(self, code, reason)

    def frames(self) -> list:
        return [decode(raw) for raw in self.sent]


class TransportRecorder:
    """Transport factory that keeps every transport it made"""

    def __init__(self):
        self.transports: list[FakeTransport] = []

    def __call__(self, uri: str, handler, logger: Optional[logging.Logger] = None) -> FakeTransport:
        transport = FakeTransport(uri, handler, logger)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def settle(rounds: int = 5) -> None:
    """Let tasks scheduled by the client run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def handshake(client: GrafanaAPIClient, recorder: TransportRecorder) -> FakeTransport:
    """Connect and complete HELLO -> IDENTIFY -> READY_ACK"""
    await client.connect()
    transport = recorder.last
    transport.server_open()
    transport.server_send(OpCode.HELLO, {"heartbeatIntervalMs": 45000})
    await settle()
    transport.server_send(OpCode.READY_ACK)
    return transport


@pytest.fixture
def recorder() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def client(recorder: TransportRecorder) -> GrafanaAPIClient:
    return GrafanaAPIClient("secret-token", 2, 4, transport_factory=recorder, reconnect_base_delay=0.01)
