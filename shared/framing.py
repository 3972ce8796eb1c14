"""
Socket.IO (protocol v2) over Engine.IO (v3) framing, as spoken by the Scatter wallet.

Every WebSocket text frame is one Engine.IO packet:

    <engine type digit>[<socket type digit>][/<namespace>,][<ack id>][<json>]

Examples:
    0{"sid":"abc","upgrades":[],"pingInterval":25000,"pingTimeout":60000}   open
    2 / 3                                                                   ping / pong
    40/scatter                                                              namespace connect
    42/scatter,["api",{"id":"123","result":true}]                           event

Control packets are surfaced as ControlFrame, events as EventFrame.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from shared.errors import ProtocolViolation

NAMESPACE = "/scatter"
SOCKET_PATH = "/socket.io/?EIO=3&transport=websocket"
DEFAULT_PING_INTERVAL_MS = 25000


class EnginePacket(IntEnum):
    OPEN = 0
    CLOSE = 1
    PING = 2
    PONG = 3
    MESSAGE = 4
    UPGRADE = 5
    NOOP = 6


class SocketPacket(IntEnum):
    CONNECT = 0
    DISCONNECT = 1
    EVENT = 2
    ACK = 3
    ERROR = 4
    BINARY_EVENT = 5
    BINARY_ACK = 6


class ControlKind(str, Enum):
    """Frames handled by the transport itself and never shown to callers."""
    OPEN = "open"
    CLOSE = "close"
    PING = "ping"
    PONG = "pong"
    UPGRADE = "upgrade"
    NOOP = "noop"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ACK = "ack"
    ERROR = "error"


@dataclass(frozen=True)
class ControlFrame:
    kind: ControlKind
    namespace: Optional[str] = None
    data: Any = None


@dataclass(frozen=True)
class EventFrame:
    """An application frame: an event name plus a JSON payload."""
    event: str
    payload: Any = None
    namespace: str = "/"
    ack_id: Optional[int] = None

    def to_wire(self) -> str:
        return encode_event(self.event, self.payload, namespace=self.namespace)


Frame = Union[ControlFrame, EventFrame]


# ========================================
#           ENCODING
# ========================================

def _dumps(obj: Any) -> str:
    # Compact separators and raw UTF-8, matching what the wallet emits and expects
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _socket_prefix(packet: SocketPacket, namespace: str) -> str:
    prefix = f"{EnginePacket.MESSAGE.value}{packet.value}"
    if namespace and namespace != "/":
        prefix += namespace
    return prefix


def encode_event(event: str, payload: Any = None, namespace: str = NAMESPACE) -> str:
    """Encode an application event, e.g. 42/scatter,["pair",{...}]"""
    if not isinstance(event, str) or not event:
        raise ValueError("event name must be a non-empty string")
    args = [event] if payload is None else [event, payload]
    prefix = _socket_prefix(SocketPacket.EVENT, namespace)
    separator = "," if namespace and namespace != "/" else ""
    return f"{prefix}{separator}{_dumps(args)}"


def encode_connect(namespace: str = NAMESPACE) -> str:
    return _socket_prefix(SocketPacket.CONNECT, namespace)


def encode_disconnect(namespace: str = NAMESPACE) -> str:
    return _socket_prefix(SocketPacket.DISCONNECT, namespace)


def encode_ping(probe: str = "") -> str:
    return f"{EnginePacket.PING.value}{probe}"


def encode_pong(probe: str = "") -> str:
    return f"{EnginePacket.PONG.value}{probe}"


# ========================================
#           DECODING
# ========================================

def _loads(body: str, raw: Any) -> Any:
    try:
        return json.loads(body)
    except (ValueError, RecursionError) as e:
        raise ProtocolViolation(f"invalid JSON body: {e}", raw) from e


def _as_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolViolation("frame is not valid UTF-8", raw) from e
    raise ProtocolViolation(f"unsupported frame type {type(raw).__name__}", raw)


def decode(raw: Union[str, bytes]) -> Frame:
    """
    Decode one WebSocket frame.

    Total: anything that is not a well-formed packet raises ProtocolViolation
    (and nothing else).
    """
    text = _as_text(raw)
    if not text:
        raise ProtocolViolation("empty frame", raw)
    if not text[0].isdigit():
        raise ProtocolViolation(f"unknown engine packet {text[0]!r}", raw)
    try:
        engine = EnginePacket(int(text[0]))
    except ValueError as e:
        raise ProtocolViolation(f"unknown engine packet {text[0]!r}", raw) from e

    body = text[1:]
    if engine is EnginePacket.OPEN:
        data = _loads(body, raw) if body else {}
        if not isinstance(data, dict):
            raise ProtocolViolation("open packet must carry a JSON object", raw)
        return ControlFrame(ControlKind.OPEN, data=data)
    if engine is EnginePacket.CLOSE:
        return ControlFrame(ControlKind.CLOSE)
    if engine is EnginePacket.PING:
        return ControlFrame(ControlKind.PING, data=body or None)
    if engine is EnginePacket.PONG:
        return ControlFrame(ControlKind.PONG, data=body or None)
    if engine is EnginePacket.UPGRADE:
        return ControlFrame(ControlKind.UPGRADE)
    if engine is EnginePacket.NOOP:
        return ControlFrame(ControlKind.NOOP)
    return _decode_socket_packet(body, raw)


def _decode_socket_packet(body: str, raw: Any) -> Frame:
    if not body or not body[0].isdigit():
        raise ProtocolViolation("message packet without socket type", raw)
    try:
        packet = SocketPacket(int(body[0]))
    except ValueError as e:
        raise ProtocolViolation(f"unknown socket packet {body[0]!r}", raw) from e
    if packet in (SocketPacket.BINARY_EVENT, SocketPacket.BINARY_ACK):
        raise ProtocolViolation("binary packets are not supported", raw)

    rest = body[1:]
    namespace = "/"
    if rest.startswith("/"):
        comma = rest.find(",")
        if comma == -1:
            namespace, rest = rest, ""
        else:
            namespace, rest = rest[:comma], rest[comma + 1:]
        # Engine.IO v3 servers may echo the query string on the namespace
        namespace = namespace.split("?", 1)[0]

    digits = 0
    while digits < len(rest) and rest[digits].isdigit():
        digits += 1
    ack_id = int(rest[:digits]) if digits else None
    rest = rest[digits:]

    if packet is SocketPacket.CONNECT:
        return ControlFrame(ControlKind.CONNECT, namespace, _loads(rest, raw) if rest else None)
    if packet is SocketPacket.DISCONNECT:
        return ControlFrame(ControlKind.DISCONNECT, namespace)
    if packet is SocketPacket.ERROR:
        return ControlFrame(ControlKind.ERROR, namespace, _loads(rest, raw) if rest else None)

    if not rest:
        raise ProtocolViolation("event packet without body", raw)
    data = _loads(rest, raw)
    if packet is SocketPacket.ACK:
        if not isinstance(data, list):
            raise ProtocolViolation("ack packet must carry a JSON array", raw)
        return ControlFrame(ControlKind.ACK, namespace, data)

    if not isinstance(data, list) or not data or not isinstance(data[0], str):
        raise ProtocolViolation("event packet must be a JSON array starting with the event name", raw)
    payload = data[1] if len(data) > 1 else None
    return EventFrame(event=data[0], payload=payload, namespace=namespace, ack_id=ack_id)
