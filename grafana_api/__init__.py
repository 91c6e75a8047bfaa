"""
Grafana API Client

A Python client that lets one cluster of a sharded worker report stats to a
central Grafana API aggregator and coordinate with the other clusters.

This library provides three distinct layers of abstraction:

1. **io**: Wire-level protocol implementation (websocket transport, {op, d} envelope)
2. **api**: The Grafana API protocol using io (handshake, reconnect, remote eval)
3. **interface**: The client a cluster uses (stats, logs, errors, events)

Example usage:
    import grafana_api

    client = grafana_api.GrafanaAPIClient(token="secret", cluster_id=0, cluster_count=4)
    client.on("ready", lambda: print("Identified!"))

    async with client:
        await client.wait_until_ready()
        await client.send_stats(120, 0.3, 512.0, 48)
"""

# High-level interface (recommended for most users)
from .interface import GrafanaAPIClient

# API-level models
from .api import GrafanaConnection, CorrelationTracker, PendingEval, ClientIdentity, BackoffState, ConnectionState

# Low-level models
from .io import OpCode, CloseCode, Envelope, Transport, TransportHandler, WebSocketTransport, encode, decode

# Events, configuration and exceptions
from .events import EventRegistry, EVENT_NAMES
from .config import ClientConfig, load_config
from .exceptions import (
    GrafanaAPIError,
    GrafanaNotConnectedError,
    GrafanaInvalidArgumentError,
    GrafanaMalformedMessageError,
    GrafanaProtocolViolationError,
    GrafanaConnectionError,
    GrafanaEvalTimeoutError,
    GrafanaConfigurationError,
)

# Utilities
from .utils import setup_logging, run_with_keyboard_interrupt

__version__ = "0.1.0"

# Public API - these are the main classes users should import
__all__ = [
    # High-level interface (recommended)
    "GrafanaAPIClient",

    # API-level models (for advanced users)
    "GrafanaConnection",
    "CorrelationTracker",
    "PendingEval",
    "ClientIdentity",
    "BackoffState",
    "ConnectionState",

    # Low-level models (for advanced users)
    "OpCode",
    "CloseCode",
    "Envelope",
    "Transport",
    "TransportHandler",
    "WebSocketTransport",
    "encode",
    "decode",

    # Events and configuration
    "EventRegistry",
    "EVENT_NAMES",
    "ClientConfig",
    "load_config",

    # Exceptions
    "GrafanaAPIError",
    "GrafanaNotConnectedError",
    "GrafanaInvalidArgumentError",
    "GrafanaMalformedMessageError",
    "GrafanaProtocolViolationError",
    "GrafanaConnectionError",
    "GrafanaEvalTimeoutError",
    "GrafanaConfigurationError",

    # Utilities
    "setup_logging",
    "run_with_keyboard_interrupt",
]
