import pytest

from shared.errors import ProtocolViolation
from shared.framing import (
    ControlFrame,
    ControlKind,
    EventFrame,
    decode,
    encode_connect,
    encode_disconnect,
    encode_event,
    encode_ping,
    encode_pong,
)


def test_encode_event_is_compact_and_namespaced():
    wire = encode_event("pair", {"data": {"appkey": "appkey:1", "passthrough": True}, "plugin": "dapp"})
    assert wire == '42/scatter,["pair",{"data":{"appkey":"appkey:1","passthrough":true},"plugin":"dapp"}]'


def test_encode_event_keeps_non_ascii():
    assert encode_event("api", {"origin": "Ünïcode"}) == '42/scatter,["api",{"origin":"Ünïcode"}]'


def test_encode_event_without_payload():
    assert encode_event("rekey") == '42/scatter,["rekey"]'
    assert encode_event("rekey", namespace="/") == '42["rekey"]'


def test_encode_event_rejects_empty_name():
    with pytest.raises(ValueError):
        encode_event("")


def test_control_encoders():
    assert encode_connect() == "40/scatter"
    assert encode_disconnect() == "41/scatter"
    assert encode_ping() == "2"
    assert encode_pong("probe") == "3probe"


def test_decode_open_packet():
    frame = decode('0{"sid":"abc","upgrades":[],"pingInterval":25000,"pingTimeout":60000}')
    assert frame == ControlFrame(ControlKind.OPEN, data={
        "sid": "abc", "upgrades": [], "pingInterval": 25000, "pingTimeout": 60000,
    })


def test_decode_engine_control_packets():
    assert decode("1").kind is ControlKind.CLOSE
    assert decode("2").kind is ControlKind.PING
    assert decode("3probe") == ControlFrame(ControlKind.PONG, data="probe")
    assert decode("6").kind is ControlKind.NOOP


def test_decode_namespace_connect_and_disconnect():
    assert decode("40") == ControlFrame(ControlKind.CONNECT, "/")
    assert decode("40/scatter") == ControlFrame(ControlKind.CONNECT, "/scatter")
    assert decode("40/scatter?EIO=3,") == ControlFrame(ControlKind.CONNECT, "/scatter")
    assert decode("41/scatter") == ControlFrame(ControlKind.DISCONNECT, "/scatter")


def test_decode_event_with_payload():
    frame = decode('42/scatter,["api",{"id":"123","result":true}]')
    assert frame == EventFrame(event="api", payload={"id": "123", "result": True}, namespace="/scatter")


def test_decode_event_accepts_bytes_and_ack_id():
    frame = decode(b'42/scatter,7["paired",false]')
    assert isinstance(frame, EventFrame)
    assert frame.event == "paired"
    assert frame.payload is False
    assert frame.ack_id == 7


def test_decode_event_on_default_namespace():
    frame = decode('42["rekey"]')
    assert frame == EventFrame(event="rekey", payload=None, namespace="/")


def test_encoded_event_decodes_to_same_frame():
    frame = EventFrame(event="api", payload={"data": {"type": "getVersion"}}, namespace="/scatter")
    assert decode(frame.to_wire()) == frame


def test_decode_error_packet():
    frame = decode('44/scatter,"Invalid namespace"')
    assert frame == ControlFrame(ControlKind.ERROR, "/scatter", "Invalid namespace")


@pytest.mark.parametrize("raw", [
    "",
    b"",
    "x",
    "9",
    "4",
    "49",
    "0[1,2]",
    "0{not json",
    "42/scatter,",
    "42/scatter,not json",
    '42/scatter,{"event":"api"}',
    "42/scatter,[]",
    "42/scatter,[1,2]",
    '45/scatter,1-["api",{"_placeholder":true,"num":0}]',
    '43/scatter,1{"a":1}',
    b"\xff\xfe",
])
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(ProtocolViolation) as info:
        decode(raw)
    assert info.value.raw == raw


def test_decode_rejects_non_frame_types():
    with pytest.raises(ProtocolViolation):
        decode(42)
