"""
API-level type definitions.

This module contains types that belong to the API layer:
- Connection states
- The identity a cluster presents during the handshake
- Reconnect backoff
- Constants used by the API layer
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self

from ..exceptions import GrafanaInvalidArgumentError


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"           # transport allocated, not open yet
    AWAITING_HELLO = "awaiting_hello"   # transport open, handshake not started
    IDENTIFYING = "identifying"         # IDENTIFY sent, waiting for READY_ACK
    READY = "ready"
    CLOSING = "closing"                 # we asked the transport to close
    RECONNECTING = "reconnecting"       # reconnect timer is armed


def coerce_int(name: str, value: Any) -> int:
    """int() a value, raising GrafanaInvalidArgumentError instead of ValueError/TypeError"""
    if isinstance(value, bool):
        raise GrafanaInvalidArgumentError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise GrafanaInvalidArgumentError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class ClientIdentity:
    """Who this cluster is. Sent once per connection, in IDENTIFY."""
    token: str = field(repr=False)
    cluster_id: int
    cluster_count: int

    @classmethod
    def create(cls, token: str, cluster_id: Any, cluster_count: Any) -> Self:
        if not isinstance(token, str):
            raise GrafanaInvalidArgumentError(f"token must be a string, got {type(token).__name__}")
        return cls(
            token=token,
            cluster_id=coerce_int("cluster_id", cluster_id),
            cluster_count=coerce_int("cluster_count", cluster_count),
        )

    def to_payload(self) -> dict:
        return {"token": self.token, "clusterCount": self.cluster_count, "clusterID": self.cluster_id}


@dataclass
class BackoffState:
    """
    Delay before the next reconnect attempt.

    Grows by half on every disconnect and goes back to base once a handshake completes.
    It has no ceiling.
    """
    base: float = 3.0
    wait_time: float = field(init=False)

    def __post_init__(self):
        self.wait_time = self.base

    def grow(self) -> float:
        self.wait_time += self.wait_time / 2
        return self.wait_time

    def reset(self) -> None:
        self.wait_time = self.base


# API-level constants
class Const:
    """API-level constants"""
    DEFAULT_PATH = "ws://localhost:3000/connect"
    BASE_WAIT_TIME = 3.0  # seconds
