import asyncio
import logging
from typing import Any, Callable, Optional, Set

from colorama import Fore, Style

from ..events import EventRegistry
from ..exceptions import GrafanaConnectionError, GrafanaMalformedMessageError, GrafanaNotConnectedError, GrafanaProtocolViolationError
from ..io import CloseCode, Envelope, OpCode, Transport, TransportHandler, WebSocketTransport, decode, encode
from .correlation import CorrelationTracker
from .types import BackoffState, ClientIdentity, ConnectionState, Const

"""
===================================================================================
This module implements the Grafana API connection: handshake, opcode dispatch
and reconnecting, on top of one transport at a time.
===================================================================================

    IDLE -> CONNECTING -> AWAITING_HELLO -> IDENTIFYING -> READY
                 ^                                           |
                 +------ RECONNECTING <----- CLOSING <-------+

HELLO (0) -> we send IDENTIFY (2) -> READY_ACK (1). Any other opcode before
READY, or an opcode we don't handle in READY, closes the socket with 4001.
"""

TransportFactory = Callable[..., Transport]


class GrafanaConnection(TransportHandler):

    def __init__(self,
                 identity: ClientIdentity,
                 path: str = Const.DEFAULT_PATH,
                 events: Optional[EventRegistry] = None,
                 logger: Optional[logging.Logger] = None,
                 transport_factory: TransportFactory = WebSocketTransport,
                 auto_reconnect: bool = True,
                 reconnect_base_delay: float = Const.BASE_WAIT_TIME,
                 eval_timeout: Optional[float] = None,
                 print_traffic: bool = False):
        self.identity = identity
        self.path = path
        self.logger = logger or logging.getLogger(__name__)
        self.events = events or EventRegistry(logger=self.logger)
        self.transport_factory = transport_factory
        self.auto_reconnect = auto_reconnect
        self.backoff = BackoffState(base=reconnect_base_delay)
        self.print_traffic = print_traffic

        self.state: ConnectionState = ConnectionState.IDLE
        self.heartbeat_interval: Optional[int] = None
        self.tracker = CorrelationTracker(self.send, self.events, logger=self.logger, timeout=eval_timeout)

        self._transport: Optional[Transport] = None
        self._closing: Set[Transport] = set()  # closed by us, close signal not seen yet
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY and self._transport is not None

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            self.logger.debug(f"Connection state {self.state.name} -> {state.name}")
            self.state = state

    # ============================
    # CONNECT / DISCONNECT
    # ============================

    def connect(self) -> None:
        """Open a new transport. Does nothing if one is already open or opening."""
        if self._transport is not None:
            self.logger.warning(f"Already connected to {self.path} ({self.state.name})")
            return
        self._cancel_reconnect()
        self._set_state(ConnectionState.CONNECTING)
        self.logger.info(f"Connecting to {self.path}")
        self._transport = self.transport_factory(self.path, self, logger=self.logger)
        self._transport.open()

    def disconnect(self, reconnect: Optional[bool] = None) -> Optional[Transport]:
        """
        Close the transport cleanly (1000). `reconnect` replaces the auto-reconnect
        flag unless it is None. Returns the transport being closed, if there was one.
        """
        if reconnect is not None:
            self.auto_reconnect = reconnect
        transport = self._transport
        if transport is None:
            if not self.auto_reconnect and self._reconnect_timer is not None:
                self._cancel_reconnect()
                self._set_state(ConnectionState.IDLE)
            return None
        self._teardown()
        self._set_state(ConnectionState.CLOSING)
        self._closing.add(transport)
        transport.close(CloseCode.NORMAL, "Client disconnect")
        return transport

    def _teardown(self) -> None:
        self._transport = None
        self.tracker.cancel_all()

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect()
        self._set_state(ConnectionState.RECONNECTING)
        self.logger.info(f"Reconnecting to {self.path} in {delay:.2f}s")
        self._reconnect_timer = asyncio.get_running_loop().call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _surface(self, err: GrafanaConnectionError) -> None:
        """Deliver to 'error' listeners. Without any, the error is unhandled and propagates."""
        if self.events.listener_count("error"):
            self.events.emit("error", err)
        else:
            raise err

    # ============================
    # PACKET SENDING
    # ============================

    async def send(self, op: OpCode, d: Any = None) -> None:
        """Send one frame. Returns once the transport has accepted it."""
        transport = self._transport
        if transport is None:
            raise GrafanaNotConnectedError("API isn't connected")
        wire = encode(op, d)
        self._print_traffic("SEND", wire)
        await transport.send(wire)

    def _send_soon(self, op: OpCode, d: Any = None) -> None:
        task = asyncio.get_running_loop().create_task(self.send(op, d))
        self._tasks.add(task)
        task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Failed to send frame: {task.exception()}")

    def _print_traffic(self, direction: str, data: str | bytes) -> None:
        if not self.print_traffic:
            return
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8", errors="replace")
        colour = Fore.MAGENTA if direction == "SEND" else Fore.CYAN
        print(colour + f"{direction}: ".ljust(6) + Style.DIM + data + Style.RESET_ALL)

    # ============================
    # TRANSPORT SIGNALS
    # ============================

    def connection_made(self, transport: Transport) -> None:
        if transport is not self._transport:
            return
        self._set_state(ConnectionState.AWAITING_HELLO)
        self.events.emit("connect")

    def ping_received(self, transport: Transport, data: bytes) -> None:
        if transport is self._transport:
            transport.pong(data)

    def message_received(self, transport: Transport, data: str | bytes) -> None:
        if transport is not self._transport:
            self.logger.debug("Dropping frame from a transport that is no longer current")
            return
        self._print_traffic("RECV", data)
        try:
            envelope = decode(data)
        except GrafanaMalformedMessageError as e:
            self.logger.error(f"Dropping malformed frame: {e}")
            return
        try:
            self._dispatch(envelope)
        except GrafanaProtocolViolationError as e:
            self._protocol_violation(e)

    def error_received(self, transport: Transport, exc: Exception) -> None:
        if transport is self._transport:
            self._teardown()
        elif transport in self._closing:
            self._closing.discard(transport)
        else:
            return
        # Grow first so disconnect listeners see the delay about to be used
        wait_time = self.backoff.grow() if self._transport is None else None
        self.events.emit("disconnect")
        if self._transport is not None:
            return
        self._schedule_reconnect(wait_time)
        err = exc if isinstance(exc, GrafanaConnectionError) else GrafanaConnectionError(str(exc) or type(exc).__name__)
        if err is not exc:
            err.__cause__ = exc
        self._surface(err)

    def connection_lost(self, transport: Transport, code: int, reason: str) -> None:
        if transport is self._transport:
            self._teardown()
            closed_by_us = False
        elif transport in self._closing:
            self._closing.discard(transport)
            closed_by_us = True
        else:
            return
        wait_time = self.backoff.grow() if self._transport is None else None
        self.events.emit("disconnect")
        if self._transport is not None:
            # connect() was called again, before this close arrived or from a listener
            return

        if self.auto_reconnect:
            self._schedule_reconnect(wait_time)
        else:
            self._set_state(ConnectionState.IDLE)

        err = GrafanaConnectionError(reason or "Connection closed", code)
        if closed_by_us:
            self.logger.info(f"Disconnected: {err}")
        else:
            self.logger.warning(f"Connection lost: {err}")
            self._surface(err)

    # ============================
    # OPCODE DISPATCH
    # ============================

    def _dispatch(self, envelope: Envelope) -> None:
        op = envelope.opcode
        match self.state:
            case ConnectionState.AWAITING_HELLO:
                if op == OpCode.HELLO:
                    return self._hello(envelope.d)
            case ConnectionState.IDENTIFYING:
                if op == OpCode.READY_ACK:
                    return self._ready()
            case ConnectionState.READY:
                match op:
                    case OpCode.SEND_ACK:
                        self.logger.debug("Data sent successfully!")
                        self.events.emit("send")
                        return
                    case OpCode.CLUSTER_DATA_UPDATE:
                        self.logger.info(f"Clustered data updated: {envelope.d}")
                        self.events.emit("clustersDataUpdate", envelope.d)
                        return
                    case OpCode.CLUSTER_STATUS_UPDATE:
                        all_connected = True if envelope.d is None else bool(envelope.d)
                        self.logger.info("All clusters connected!" if all_connected else "Not all clusters are connected")
                        self.events.emit("clusterStatusUpdate", all_connected)
                        return
                    case OpCode.REMOTE_EVAL:
                        self.tracker.handle(envelope.d)
                        return
        raise GrafanaProtocolViolationError(f"Unexpected opcode {envelope.op} while {self.state.name}", CloseCode.PROTOCOL_ERROR)

    def _hello(self, d: Any) -> None:
        if isinstance(d, dict):
            self.heartbeat_interval = d.get("heartbeatIntervalMs", d.get("heartbeatInterval"))
        self._set_state(ConnectionState.IDENTIFYING)
        self._send_soon(OpCode.IDENTIFY, self.identity.to_payload())

    def _ready(self) -> None:
        self.backoff.reset()
        self._set_state(ConnectionState.READY)
        self.logger.debug("Successfully Identified!")
        self.events.emit("ready")

    def _protocol_violation(self, err: GrafanaProtocolViolationError) -> None:
        self.logger.error(f"{err}! Closing and reconnecting")
        transport = self._transport
        self._teardown()
        self._set_state(ConnectionState.RECONNECTING)
        self._closing.add(transport)
        transport.close(CloseCode.PROTOCOL_ERROR, "Invalid opcode")
