from __future__ import annotations
import asyncio
import inspect
import time
from contextlib import suppress
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.config import Endpoint
from shared.errors import Cancelled, ConnectionUnavailable, Disconnected, ProtocolViolation
from shared.framing import (
    DEFAULT_PING_INTERVAL_MS,
    NAMESPACE,
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
from shared.log import get_logger, log_frame

logger = get_logger(__name__)


EventHandler = Callable[[EventFrame], Union[Awaitable[None], None]]
ProtocolErrorHandler = Callable[[ProtocolViolation], None]
CloseHandler = Callable[["Connection"], None]

# Failures that send the connector on to the next candidate
_TRANSPORT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    WebSocketException,
    Disconnected,
)


class Connection:
    """
    One WebSocket to one endpoint, speaking Engine.IO v3 / Socket.IO v2.

    Control frames (open, ping/pong, namespace connect/disconnect, close) are
    handled here. Application frames on our namespace go to `on_event`;
    undecodable frames go to `on_protocol_error`. `on_close` fires once when the
    remote side ends a connection that was not closed locally.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        on_event: Optional[EventHandler] = None,
        on_protocol_error: Optional[ProtocolErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
        namespace: str = NAMESPACE,
        open_timeout: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.namespace = namespace
        self.open_timeout = open_timeout
        self.websocket: Optional[websockets.ClientConnection] = None
        self.sid: Optional[str] = None
        self.ping_interval: float = DEFAULT_PING_INTERVAL_MS / 1000
        self.last_pong: Optional[float] = None

        self._on_event = on_event
        self._on_protocol_error = on_protocol_error
        self._on_close = on_close
        self._opened = asyncio.Event()
        self._namespace_joined = asyncio.Event()
        self._connected = False
        self._closed = False
        self._recv_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        """True only once the namespace handshake has completed."""
        return self._connected and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Open the WebSocket and complete the Engine.IO + namespace handshake."""
        if self._closed:
            raise Disconnected(f"Connection to {self.endpoint} was already closed")
        self.websocket = await websockets.connect(
            self.endpoint.url,
            open_timeout=self.open_timeout,
            # Engine.IO runs its own keepalive
            ping_interval=None,
            compression=None,
            proxy=None,
        )
        self._recv_task = asyncio.create_task(self._recv_loop())

        await self._wait_for(self._opened, "open packet")
        await self.send_text(encode_connect(self.namespace))
        await self._wait_for(self._namespace_joined, "namespace acknowledgement")

        self._connected = True
        self._ping_task = asyncio.create_task(self._ping_loop())
        logger.info(f"Connected (sid={self.sid})", extra={"endpoint": str(self.endpoint)})

    async def _wait_for(self, event: asyncio.Event, what: str) -> None:
        waiter = asyncio.ensure_future(event.wait())
        try:
            await asyncio.wait({waiter, self._recv_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not waiter.done():
                waiter.cancel()
        if not event.is_set():
            raise Disconnected(f"{self.endpoint} closed before {what}")

    async def send_text(self, text: str) -> None:
        if self.websocket is None or self._closed:
            raise Disconnected(f"Connection to {self.endpoint} is closed")
        try:
            await self.websocket.send(text)
        except ConnectionClosed as e:
            raise Disconnected(f"Connection to {self.endpoint} closed while sending") from e

    async def send_event(self, event: Any, payload: Any = None) -> None:
        name = getattr(event, "value", event)
        await self.send_text(encode_event(name, payload, namespace=self.namespace))
        logger.debug("Sent event", extra={"event": name, "endpoint": str(self.endpoint)})

    async def _recv_loop(self) -> None:
        assert self.websocket is not None
        try:
            async for raw in self.websocket:
                await self._handle_raw(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}", extra={"endpoint": str(self.endpoint)})
        finally:
            lost = self._connected and not self._closed
            self._connected = False
            self._closed = True
            if self._ping_task is not None and not self._ping_task.done():
                self._ping_task.cancel()
            if lost:
                logger.warning("Connection lost", extra={"endpoint": str(self.endpoint)})
                if self._on_close is not None:
                    try:
                        self._on_close(self)
                    except Exception as e:
                        logger.error(f"Close handler failed: {e}")

    async def _handle_raw(self, raw: Union[str, bytes]) -> None:
        try:
            frame = decode(raw)
        except ProtocolViolation as e:
            self._report(e)
            return

        if isinstance(frame, ControlFrame):
            await self._handle_control(frame)
            return

        if frame.namespace != self.namespace:
            log_frame(logger, "debug", f"Ignoring event on namespace {frame.namespace}", frame=frame)
            return
        if self._on_event is None:
            return
        try:
            result = self._on_event(frame)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_frame(logger, "error", f"Event handler failed: {e}", frame=frame)

    async def _handle_control(self, frame: ControlFrame) -> None:
        kind = frame.kind
        if kind is ControlKind.OPEN:
            self.sid = frame.data.get("sid")
            interval = frame.data.get("pingInterval")
            if isinstance(interval, (int, float)) and interval > 0:
                self.ping_interval = interval / 1000
            self._opened.set()
        elif kind is ControlKind.PING:
            with suppress(Disconnected):
                await self.send_text(encode_pong(frame.data or ""))
        elif kind is ControlKind.PONG:
            self.last_pong = time.monotonic()
        elif kind is ControlKind.CONNECT:
            if frame.namespace == self.namespace:
                self._namespace_joined.set()
        elif kind in (ControlKind.DISCONNECT, ControlKind.CLOSE):
            if kind is ControlKind.CLOSE or frame.namespace == self.namespace:
                log_frame(logger, "info", "Remote ended the session", frame=frame,
                          endpoint=str(self.endpoint))
                await self._close_socket()
        elif kind is ControlKind.ERROR:
            if frame.namespace == self.namespace:
                self._report(ProtocolViolation(f"namespace error: {frame.data!r}", frame.data))
                await self._close_socket()
        else:
            log_frame(logger, "debug", "Ignoring control frame", frame=frame)

    def _report(self, error: ProtocolViolation) -> None:
        logger.warning(str(error), extra={"endpoint": str(self.endpoint)})
        if self._on_protocol_error is not None:
            try:
                self._on_protocol_error(error)
            except Exception as e:
                logger.error(f"Protocol error handler failed: {e}")

    async def _ping_loop(self) -> None:
        try:
            while not self._closed:
                await asyncio.sleep(self.ping_interval)
                await self.send_text(encode_ping())
        except Disconnected:
            pass

    async def _close_socket(self) -> None:
        if self.websocket is None:
            return
        try:
            await self.websocket.close()
        except (WebSocketException, OSError) as e:
            logger.debug(f"Error closing socket: {e}")

    async def close(self) -> None:
        """Close the connection and stop its loops. Idempotent."""
        if self._closed and (self._recv_task is None or self._recv_task.done()):
            return
        was_connected = self._connected
        self._closed = True
        self._connected = False

        if self._ping_task is not None and not self._ping_task.done():
            self._ping_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._ping_task

        if self.websocket is not None:
            if was_connected:
                with suppress(WebSocketException, OSError):
                    await self.websocket.send(encode_disconnect(self.namespace))
            await self._close_socket()

        if self._recv_task is not None and not self._recv_task.done():
            done, _ = await asyncio.wait({self._recv_task}, timeout=1.0)
            if not done:
                self._recv_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._recv_task
        logger.debug("Connection closed locally", extra={"endpoint": str(self.endpoint)})


class TransportConnector:
    """
    Opens a Connection to the first reachable endpoint of an ordered candidate list.

    Each candidate gets a fresh Connection; a failed attempt is closed and
    discarded before the next one starts.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 5.0,
        on_event: Optional[EventHandler] = None,
        on_protocol_error: Optional[ProtocolErrorHandler] = None,
        on_close: Optional[CloseHandler] = None,
        namespace: str = NAMESPACE,
        connection_factory: Callable[..., Connection] = Connection,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.namespace = namespace
        self.connection: Optional[Connection] = None
        self._on_event = on_event
        self._on_protocol_error = on_protocol_error
        self._on_close = on_close
        self._connection_factory = connection_factory

    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_connected

    async def connect(self, candidates: Iterable[Endpoint],
                      cancel: Optional[asyncio.Event] = None) -> Connection:
        """
        Connect to the first candidate that completes the handshake.

        Raises:
            ConnectionUnavailable: every candidate failed
            Cancelled: `cancel` was set during an attempt
        """
        if self.is_connected():
            return self.connection
        if self.connection is not None:
            await self.dispose()

        attempts: List[Tuple[str, BaseException]] = []
        for endpoint in candidates:
            if cancel is not None and cancel.is_set():
                raise Cancelled("connect")
            connection = self._connection_factory(
                endpoint,
                on_event=self._on_event,
                on_protocol_error=self._on_protocol_error,
                on_close=self._handle_close,
                namespace=self.namespace,
                open_timeout=self.connect_timeout,
            )
            try:
                await self._attempt(connection, cancel)
            except _TRANSPORT_ERRORS as e:
                logger.warning(f"Connection attempt failed: {e!r}", extra={"endpoint": str(endpoint)})
                await connection.close()
                attempts.append((str(endpoint), e))
                continue
            except BaseException:
                await connection.close()
                raise

            self.connection = connection
            return connection

        raise ConnectionUnavailable(attempts)

    async def _attempt(self, connection: Connection, cancel: Optional[asyncio.Event]) -> None:
        opener = asyncio.ensure_future(asyncio.wait_for(connection.open(), self.connect_timeout))
        if cancel is None:
            await opener
            return

        cancel_waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({opener, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            opener.cancel()
            raise
        finally:
            if not cancel_waiter.done():
                cancel_waiter.cancel()

        if opener.done():
            opener.result()
            return
        opener.cancel()
        await asyncio.gather(opener, return_exceptions=True)
        logger.info("Connection attempt cancelled", extra={"endpoint": str(connection.endpoint)})
        raise Cancelled("connect")

    def _handle_close(self, connection: Connection) -> None:
        if self.connection is connection:
            self.connection = None
        if self._on_close is not None:
            self._on_close(connection)

    async def dispose(self) -> None:
        """Close the current connection, if any. Idempotent."""
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.close()
