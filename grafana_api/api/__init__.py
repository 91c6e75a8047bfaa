"""
API-level connection and protocol implementation.

This module contains the components that speak the Grafana API protocol:
- GrafanaConnection (handshake, opcode dispatch, reconnect with backoff)
- CorrelationTracker, PendingEval (remote eval requests and replies)
- ClientIdentity, BackoffState, ConnectionState (API-level types)
"""

from .connection import GrafanaConnection
from .correlation import CorrelationTracker, PendingEval
from .types import BackoffState, ClientIdentity, ConnectionState, Const

__all__ = [
    # Protocol
    "GrafanaConnection",
    "CorrelationTracker",
    "PendingEval",

    # API-level types
    "BackoffState",
    "ClientIdentity",
    "ConnectionState",
    "Const",
]
