"""
Wire-level protocol implementation.

This module contains the lowest-level communication components:
- OpCode, Envelope, encode, decode - The JSON {op, d} envelope
- Transport, WebSocketTransport - One duplex websocket connection
- TransportHandler - The receiver of a transport's lifecycle signals
"""

from .codec import OpCode, CloseCode, Envelope, encode, decode
from .transport import Transport, TransportHandler, WebSocketTransport

__all__ = [
    "OpCode",
    "CloseCode",
    "Envelope",
    "encode",
    "decode",
    "Transport",
    "TransportHandler",
    "WebSocketTransport",
]
