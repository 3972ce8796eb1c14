import asyncio
from contextlib import suppress

import pytest

from fake_wallet import FakeWallet, unused_port, wait_for
from scatter.ws_client import Connection, TransportConnector
from shared.config import Endpoint
from shared.errors import Cancelled, ConnectionUnavailable, Disconnected, ProtocolViolation


@pytest.mark.asyncio
async def test_connection_completes_namespace_handshake():
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint)
        await connection.open()
        try:
            assert connection.is_connected
            assert connection.sid == "fake-1"
            assert wallet.frames[0] == "40/scatter"
        finally:
            await connection.close()
        assert not connection.is_connected


@pytest.mark.asyncio
async def test_events_on_our_namespace_reach_the_handler():
    received = []
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_event=received.append)
        await connection.open()
        try:
            await wallet.send_raw('42["api",{"id":"1","result":true}]')
            await wallet.emit("paired", True)
            assert await wait_for(lambda: len(received) == 1)
            assert received[0].event == "paired"
            assert received[0].payload is True
        finally:
            await connection.close()


@pytest.mark.asyncio
async def test_malformed_frame_goes_to_protocol_sink_and_loop_survives():
    errors = []
    received = []
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_event=received.append, on_protocol_error=errors.append)
        await connection.open()
        try:
            await wallet.send_raw("42/scatter,not json")
            await wallet.emit("paired", False)
            assert await wait_for(lambda: len(received) == 1)
            assert len(errors) == 1
            assert isinstance(errors[0], ProtocolViolation)
            assert errors[0].raw == "42/scatter,not json"
            assert connection.is_connected
        finally:
            await connection.close()


@pytest.mark.asyncio
async def test_failing_event_handler_does_not_stop_receive_loop():
    calls = []

    async def handler(frame):
        calls.append(frame.event)
        if frame.event == "boom":
            raise RuntimeError("handler failure")

    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_event=handler)
        await connection.open()
        try:
            await wallet.emit("boom")
            await wallet.emit("after")
            assert await wait_for(lambda: calls == ["boom", "after"])
        finally:
            await connection.close()


@pytest.mark.asyncio
async def test_remote_ping_is_answered_and_keepalive_pings_are_sent():
    async with FakeWallet(ping_interval=50) as wallet:
        connection = Connection(wallet.endpoint)
        await connection.open()
        try:
            assert connection.ping_interval == 0.05
            assert await wait_for(lambda: "2" in wallet.frames)
            assert await wait_for(lambda: connection.last_pong is not None)

            await wallet.send_raw("2probe")
            assert await wait_for(lambda: "3probe" in wallet.frames)
        finally:
            await connection.close()


@pytest.mark.asyncio
async def test_remote_close_fires_on_close_once():
    closed = []
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_close=closed.append)
        await connection.open()
        await wallet.drop()
        assert await wait_for(lambda: connection.closed)
        await asyncio.sleep(0.05)
        await connection.close()
        assert closed == [connection]
        with pytest.raises(Disconnected):
            await connection.send_event("api", {})


@pytest.mark.asyncio
async def test_namespace_disconnect_from_wallet_closes_connection():
    closed = []
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_close=closed.append)
        await connection.open()
        await wallet.send_raw("41/scatter")
        assert await wait_for(lambda: closed == [connection])
        assert not connection.is_connected


@pytest.mark.asyncio
async def test_local_close_sends_namespace_disconnect_and_does_not_fire_on_close():
    closed = []
    async with FakeWallet() as wallet:
        connection = Connection(wallet.endpoint, on_close=closed.append)
        await connection.open()
        await connection.close()
        await connection.close()
        assert await wait_for(lambda: wallet.namespace_disconnects == 1)
        assert closed == []


@pytest.mark.asyncio
async def test_connector_falls_back_to_next_candidate():
    async with FakeWallet() as wallet:
        dead = Endpoint("ws", "127.0.0.1", unused_port())
        connector = TransportConnector(connect_timeout=2.0)
        connection = await connector.connect([dead, wallet.endpoint])
        try:
            assert connector.is_connected()
            assert connection.endpoint == wallet.endpoint
        finally:
            await connector.dispose()
        assert connector.connection is None


@pytest.mark.asyncio
async def test_connector_reports_every_failed_candidate():
    candidates = [Endpoint("ws", "127.0.0.1", unused_port()), Endpoint("ws", "127.0.0.1", unused_port())]
    connector = TransportConnector(connect_timeout=1.0)

    with pytest.raises(ConnectionUnavailable) as info:
        await connector.connect(candidates)

    assert [url for url, _ in info.value.attempts] == [str(c) for c in candidates]
    assert all(isinstance(err, OSError) for _, err in info.value.attempts)
    assert not connector.is_connected()


@pytest.mark.asyncio
async def test_connector_cancel_aborts_hanging_attempt():
    async def silent(reader, writer):
        # Accept TCP but never answer the WebSocket upgrade
        with suppress(Exception):
            await reader.read()
        writer.close()

    server = await asyncio.start_server(silent, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        connector = TransportConnector(connect_timeout=5.0)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)

        with pytest.raises(Cancelled):
            await connector.connect([Endpoint("ws", "127.0.0.1", port)], cancel=cancel)
        assert not connector.is_connected()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_connector_times_out_hanging_candidate_and_moves_on():
    async def silent(reader, writer):
        with suppress(Exception):
            await reader.read()
        writer.close()

    server = await asyncio.start_server(silent, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        async with FakeWallet() as wallet:
            connector = TransportConnector(connect_timeout=0.2)
            connection = await connector.connect([Endpoint("ws", "127.0.0.1", port), wallet.endpoint])
            assert connection.endpoint == wallet.endpoint
            await connector.dispose()
    finally:
        server.close()
        await server.wait_closed()
