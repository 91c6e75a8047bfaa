import asyncio
import logging
import numbers
import traceback
from typing import Any, Optional, Self

from ..api import ClientIdentity, ConnectionState, Const, GrafanaConnection
from ..api.connection import TransportFactory
from ..api.types import coerce_int
from ..config import ClientConfig
from ..events import EventRegistry, Listener
from ..exceptions import GrafanaInvalidArgumentError, GrafanaNotConnectedError
from ..io import OpCode, WebSocketTransport

"""
===================================================================================
This module takes the Grafana API connection and provides the interface a
cluster uses: connect, report stats/logs/errors, evaluate code on other
clusters, and listen for events from the aggregator.
===================================================================================

Terms:
GrafanaAPIClient = The client a cluster holds for its whole lifetime.
GrafanaConnection = The protocol state machine underneath (one transport at a time).
Cluster = One worker among cluster_count, identified by cluster_id.

Example:
    client = GrafanaAPIClient(token, cluster_id=0, cluster_count=4)

    @client.on("remoteEval")
    def remote_eval(code, reply):
        reply(None, evaluate(code))

    async with client:
        await client.wait_until_ready()
        await client.send_stats(guild_count=120, cpu_usage=0.3, mem_usage=512.0, ping=48)
        result = await client.remote_eval(1, "guilds.size")
"""


class GrafanaAPIClient:
    def __init__(self,
                 token: str,
                 cluster_id: int,
                 cluster_count: int,
                 path: Optional[str] = None,
                 *,
                 logger: Optional[logging.Logger] = None,
                 auto_reconnect: bool = True,
                 reconnect_base_delay: float = Const.BASE_WAIT_TIME,
                 eval_timeout: Optional[float] = None,
                 print_traffic: bool = False,
                 transport_factory: TransportFactory = WebSocketTransport
                 ):
        self.logger = logger or logging.getLogger(__name__)
        self.identity = ClientIdentity.create(token, cluster_id, cluster_count)
        self.events = EventRegistry(logger=self.logger)
        self.connection = GrafanaConnection(
            identity=self.identity,
            path=path or Const.DEFAULT_PATH,
            events=self.events,
            logger=self.logger,
            transport_factory=transport_factory,
            auto_reconnect=auto_reconnect,
            reconnect_base_delay=reconnect_base_delay,
            eval_timeout=eval_timeout,
            print_traffic=print_traffic,
        )

    @classmethod
    def from_config(cls, config: ClientConfig, logger: Optional[logging.Logger] = None, **kwargs) -> Self:
        return cls(
            config.token,
            config.cluster_id,
            config.cluster_count,
            config.path,
            logger=logger,
            auto_reconnect=config.auto_reconnect,
            reconnect_base_delay=config.reconnect_base_delay,
            eval_timeout=config.eval_timeout,
            print_traffic=config.print_traffic,
            **kwargs,
        )

    def __repr__(self) -> str:
        return f"GrafanaAPIClient<cluster {self.cluster_id}/{self.cluster_count} {self.state.name}>"

    @property
    def token(self) -> str:
        return self.identity.token

    @property
    def cluster_id(self) -> int:
        return self.identity.cluster_id

    @property
    def cluster_count(self) -> int:
        return self.identity.cluster_count

    @property
    def path(self) -> str:
        return self.connection.path

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_ready(self) -> bool:
        return self.connection.is_ready()

    @property
    def wait_time(self) -> float:
        """Seconds the next reconnect will wait"""
        return self.connection.backoff.wait_time

    @property
    def heartbeat_interval(self) -> Optional[int]:
        """Heartbeat interval announced by the aggregator in HELLO, in ms"""
        return self.connection.heartbeat_interval

    # ============================
    # Events
    # ============================

    def on(self, event: str, callback: Optional[Listener] = None):
        return self.events.on(event, callback)

    def once(self, event: str, callback: Optional[Listener] = None):
        return self.events.once(event, callback)

    def off(self, event: str, callback: Optional[Listener] = None) -> None:
        self.events.off(event, callback)

    # ============================
    # Connect / Disconnect
    # ============================

    async def connect(self) -> None:
        """Start connecting to the API. Returns before the handshake completes; see wait_until_ready()."""
        self.connection.connect()

    async def disconnect(self, reconnect: Optional[bool] = None) -> None:
        """Disconnect from the API cleanly. reconnect=False stops the client reconnecting by itself."""
        transport = self.connection.disconnect(reconnect)
        if transport is not None:
            await transport.wait_closed()

    async def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        """Wait for the next successful handshake, unless already identified"""
        if self.is_ready:
            return
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        def ready() -> None:
            if not fut.done():
                fut.set_result(None)
        self.events.once("ready", ready)
        try:
            await asyncio.wait_for(fut, timeout=timeout)
        finally:
            self.events.off("ready", ready)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect(False)

    # ============================
    # API commands
    # ============================

    def _require_ready(self) -> None:
        if not self.connection.is_ready():
            raise GrafanaNotConnectedError("API isn't connected")

    async def send_error(self, err: str | BaseException) -> None:
        """Send an error to the API. Exceptions are sent as their formatted traceback."""
        self._require_ready()
        if isinstance(err, BaseException):
            err = "".join(traceback.format_exception(err)).rstrip()
        elif not isinstance(err, str):
            raise GrafanaInvalidArgumentError(f"err must be a string or an exception, got {type(err).__name__}")
        await self.connection.send(OpCode.ERROR, err)

    async def send_log(self, log: str) -> None:
        """Send a log line to the API"""
        self._require_ready()
        if not isinstance(log, str):
            raise GrafanaInvalidArgumentError(f"log must be a string, got {type(log).__name__}")
        await self.connection.send(OpCode.LOG, log)

    async def send_stats(self,
                         guild_count: Optional[float] = None,
                         cpu_usage: Optional[float] = None,
                         mem_usage: Optional[float] = None,
                         ping: Optional[float] = None) -> None:
        """
        Send this cluster's stats to the API. All four are required; a missing
        one is rejected with GrafanaInvalidArgumentError like a non-numeric one.

        Args:
            guild_count: How many guilds this cluster is in
            cpu_usage: The current CPU usage of this cluster
            mem_usage: The current memory usage of this cluster
            ping: The average ping of all shards on this cluster
        """
        self._require_ready()
        stats = {"guildCount": guild_count, "cpuUsage": cpu_usage, "memUsage": mem_usage, "ping": ping}
        for name, value in stats.items():
            if not isinstance(value, numbers.Real) or isinstance(value, bool):
                raise GrafanaInvalidArgumentError(f"{name} must be a number, got {value!r}")
        await self.connection.send(OpCode.STATS, stats)

    async def remote_eval(self, cluster_id: int, code: str) -> Any:
        """
        Evaluate code on another cluster and return its result.

        There is no timeout unless eval_timeout was given. If the connection drops
        before the reply arrives the call is cancelled.
        """
        self._require_ready()
        cluster_id = coerce_int("cluster_id", cluster_id)
        if not isinstance(code, str):
            raise GrafanaInvalidArgumentError(f"code must be a string, got {type(code).__name__}")
        return await self.connection.tracker.request(cluster_id, code)
