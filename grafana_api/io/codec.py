"""
Grafana API wire codec.

Every frame on the socket is one JSON object:

    {"op": <integer opcode>, "d": <payload>}

The codec only deals with that envelope. Whether an opcode is allowed in the
current connection state is decided by the connection, not here.

Example usage:
    wire = encode(OpCode.STATS, {"guildCount": 5, "cpuUsage": 0.1, "memUsage": 0.2, "ping": 42})
    envelope = decode(wire)
    envelope.opcode  # OpCode.STATS
"""

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

from ..exceptions import GrafanaMalformedMessageError


class OpCode(IntEnum):
    """Opcodes exchanged with the aggregator"""
    HELLO = 0                   # in:   {heartbeatIntervalMs}
    READY_ACK = 1               # in:   identify accepted
    IDENTIFY = 2                # out:  {token, clusterCount, clusterID}
    STATS = 3                   # out:  {guildCount, cpuUsage, memUsage, ping}
    SEND_ACK = 4                # in:   last frame was accepted
    LOG = 5                     # out:  string
    ERROR = 6                   # out:  string
    CLUSTER_DATA_UPDATE = 7     # in:   aggregator-defined object
    CLUSTER_STATUS_UPDATE = 8   # in:   all clusters connected
    REMOTE_EVAL = 9             # both: {id, data, uid}


class CloseCode(IntEnum):
    """Websocket close codes used by this client"""
    NORMAL = 1000
    ABNORMAL = 1006
    PROTOCOL_ERROR = 4001


@dataclass(frozen=True)
class Envelope:
    """A decoded frame"""
    op: int
    d: Any = None

    @property
    def opcode(self) -> Optional[OpCode]:
        """The OpCode for this frame, or None if the op isn't one we know"""
        if self.op in OpCode._value2member_map_:
            return OpCode(self.op)
        return None

    def to_dict(self) -> dict:
        return {"op": int(self.op), "d": self.d}


def encode(op: int, d: Any = None) -> str:
    """Convert an opcode and payload to wire format"""
    return json.dumps({"op": int(op), "d": d}, separators=(",", ":"))


def decode(raw: str | bytes | bytearray) -> Envelope:
    """Convert a wire frame to an Envelope, raising GrafanaMalformedMessageError if it isn't one"""
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise GrafanaMalformedMessageError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(msg, dict):
        raise GrafanaMalformedMessageError(f"Frame is not an object: {type(msg).__name__}")
    op = msg.get("op")
    # bool is an int subclass, but true/false is never an opcode
    if not isinstance(op, int) or isinstance(op, bool):
        raise GrafanaMalformedMessageError(f"Frame has no integer op: {op!r}")
    return Envelope(op=op, d=msg.get("d"))
