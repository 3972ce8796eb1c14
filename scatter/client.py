#!/usr/bin/env python3
"""
Scatter wallet client.

Typed operations over one correlated request/response connection to a locally
running Scatter wallet:

    async with ScatterClient("my-dapp", network=network) as scatter:
        identity = await scatter.get_identity(IdentityRequiredFields(accounts=[network]))
        signature = await scatter.authenticate("some-nonce")

Each operation checks the connection before touching the network, pairs the
app with the wallet on first use, sends exactly one request, and maps the
answer into a typed result or a typed error. Nothing is retried.
"""

from __future__ import annotations
import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, TypeVar, Union

from scatter.core.ApiTypes import (
    ApiRequest,
    Identity,
    IdentityRequiredFields,
    Network,
    SignaturesResult,
)
from scatter.core.MessageTypes import ApiRequestType, SocketEvent
from scatter.core.RequestCorrelator import RequestCorrelator
from shared.config import ScatterConfig
from shared.errors import (
    Cancelled,
    ConfigError,
    Disconnected,
    NotAuthenticated,
    NotConnected,
    ProtocolViolation,
    Timeout,
)
from shared.framing import EventFrame
from shared.log import get_logger

from .keys import AppKeyManager
from .signer import ScatterSignatureProvider
from .state import SessionCache
from .storage import FileStorageProvider, MemoryStorageProvider, StorageProvider
from .ws_client import Connection, TransportConnector

logger = get_logger(__name__)

T = TypeVar("T")
EventListener = Callable[[Any], Union[Awaitable[None], None]]


class ScatterClient:
    """Client for one application talking to the user's Scatter wallet."""

    def __init__(
        self,
        app_name: Optional[str] = None,
        network: Optional[Network] = None,
        storage: Optional[StorageProvider] = None,
        *,
        config: Optional[ScatterConfig] = None,
    ) -> None:
        config = config or ScatterConfig(app_name=app_name or ScatterConfig.app_name)
        if app_name and config.app_name != app_name:
            config = config.update(app_name=app_name)
        self.config = config
        self.network = network

        if storage is None:
            storage = FileStorageProvider(config.storage_path) if config.storage_path else MemoryStorageProvider()
        self.storage = storage
        self.keys = AppKeyManager(storage)
        self.session = SessionCache(storage)
        self.session.load()

        self.handlers: Dict[str, EventListener] = {}
        self.diagnostics: Deque[ProtocolViolation] = deque(maxlen=50)
        self.handler_errors: Deque[BaseException] = deque(maxlen=50)
        self._handler_tasks: Set[asyncio.Task] = set()

        self._connector = TransportConnector(
            connect_timeout=config.connect_timeout,
            on_event=self._on_event,
            on_protocol_error=self._on_protocol_error,
            on_close=self._on_connection_lost,
        )
        self._correlator = RequestCorrelator(self._write_request, default_timeout=config.request_timeout)
        self._paired = False
        self._pair_waiter: Optional[asyncio.Future] = None
        self._pair_lock = asyncio.Lock()
        self._identity_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._disposed = False

    # ========================================
    #           LIFECYCLE
    # ========================================

    @property
    def app_name(self) -> str:
        return self.config.app_name

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.get()

    @property
    def paired(self) -> bool:
        return self._paired

    @property
    def connection(self) -> Optional[Connection]:
        return self._connector.connection

    @property
    def pending_requests(self) -> int:
        return self._correlator.pending_count

    def is_connected(self) -> bool:
        return self._connector.is_connected()

    async def connect(self, cancel: Optional[asyncio.Event] = None) -> bool:
        """
        Connect to the wallet, pair, and refresh the identity from existing permissions.

        Returns:
            Whether the wallet accepted the pairing. A refusal is not an error
            here; later requests fail with NotAuthenticated.
        """
        if self._disposed:
            raise Disconnected("Client was disposed")
        await self._connector.connect(self.config.endpoints, cancel=cancel)
        paired = await self.pair(passthrough=True, cancel=cancel)
        if paired:
            await self.get_identity_from_permissions(cancel=cancel)
        return paired

    async def disconnect(self) -> None:
        """Close the transport and fail every pending request with Disconnected."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        await self._cancel_handler_tasks()
        self._reset_pairing()
        self._correlator.fail_all(Disconnected)
        await self._connector.dispose()
        logger.info("Disconnected from Scatter")

    async def dispose(self) -> None:
        """Disconnect for good; the client cannot be reconnected afterwards."""
        self._disposed = True
        await self.disconnect()
        self._correlator.dispose()

    async def __aenter__(self) -> "ScatterClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    async def reconnect(self, max_retries: Optional[int] = None, base_delay: Optional[float] = None) -> bool:
        """Reconnect with exponential backoff"""
        max_retries = self.config.reconnect_max_retries if max_retries is None else max_retries
        base_delay = self.config.reconnect_base_delay if base_delay is None else base_delay
        for attempt in range(max_retries):
            delay = base_delay * (2 ** attempt)
            logger.info(f"Reconnecting in {delay}s (attempt {attempt + 1}/{max_retries})")
            await asyncio.sleep(delay)
            try:
                await self.connect()
                return True
            except Exception as e:
                logger.warning(f"Reconnect attempt {attempt + 1} failed: {e}")
        return False

    def on(self, event: str, handler: EventListener) -> None:
        """Register a listener for unsolicited wallet events."""
        self.handlers[event] = handler

    # ========================================
    #           PAIRING
    # ========================================

    async def pair(self, passthrough: bool = False, cancel: Optional[asyncio.Event] = None) -> bool:
        """Ask the wallet to accept this app's key. Returns the wallet's decision."""
        connection = self._require_connection()
        async with self._pair_lock:
            return await self._pair(connection, passthrough, cancel)

    async def _pair(self, connection: Connection, passthrough: bool,
                    cancel: Optional[asyncio.Event] = None) -> bool:
        if cancel is not None and cancel.is_set():
            raise Cancelled("pairing")
        waiter = asyncio.get_running_loop().create_future()
        self._pair_waiter = waiter
        cancel_task: Optional[asyncio.Future] = None
        try:
            await connection.send_event(SocketEvent.PAIR, {
                "data": {
                    "appkey": self.keys.appkey,
                    "passthrough": passthrough,
                    "origin": self.app_name,
                },
                "plugin": self.app_name,
            })
            waiters = {waiter}
            if cancel is not None:
                cancel_task = asyncio.ensure_future(cancel.wait())
                waiters.add(cancel_task)
            await asyncio.wait(waiters, timeout=self.config.pair_timeout, return_when=asyncio.FIRST_COMPLETED)
            if waiter.done():
                return waiter.result()
            if cancel is not None and cancel.is_set():
                logger.info("Pairing cancelled by caller", extra={"event": "pair"})
                raise Cancelled("pairing")
            raise Timeout("pairing", self.config.pair_timeout)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()
            if not waiter.done():
                waiter.cancel()
            if self._pair_waiter is waiter:
                self._pair_waiter = None

    async def _ensure_paired(self, cancel: Optional[asyncio.Event] = None) -> None:
        if self._paired:
            return
        connection = self._require_connection()
        async with self._pair_lock:
            # Another caller may have paired while we waited for the lock
            if self._paired:
                return
            if not await self._pair(connection, False, cancel):
                raise NotAuthenticated()

    def _reset_pairing(self) -> None:
        self._paired = False
        waiter = self._pair_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(Disconnected())

    def _on_paired(self, payload: Any) -> None:
        paired = payload is True
        self._paired = paired
        if paired:
            self.keys.confirm_paired()
        logger.info(f"Wallet pairing {'accepted' if paired else 'refused'}", extra={"event": "paired"})
        waiter = self._pair_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(paired)

    async def _on_rekey(self) -> None:
        connection = self._require_connection()
        appkey = self.keys.rekey()
        await connection.send_event(SocketEvent.REKEYED, {
            "data": {"origin": self.app_name, "appkey": appkey},
            "plugin": self.app_name,
        })

    # ========================================
    #           INBOUND ROUTING
    # ========================================

    async def _on_event(self, frame: EventFrame) -> None:
        if frame.event == SocketEvent.API.value:
            self._correlator.dispatch(frame.payload)
        elif frame.event == SocketEvent.PAIRED.value:
            self._on_paired(frame.payload)
        elif frame.event == SocketEvent.REKEY.value:
            await self._on_rekey()
        elif frame.event in self.handlers:
            # Off the receive loop so a handler can await requests of its own
            self._track_handler_task(asyncio.create_task(self._run_handler(frame.event, frame.payload)))
        else:
            logger.debug("Unhandled wallet event", extra={"event": frame.event})

    async def _run_handler(self, event: str, payload: Any) -> None:
        result = self.handlers[event](payload)
        if asyncio.iscoroutine(result):
            await result

    def _track_handler_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to a handler task and record how it failed."""
        self._handler_tasks.add(task)

        def _done(_task: asyncio.Task) -> None:
            self._handler_tasks.discard(_task)
            if _task.cancelled():
                return
            error = _task.exception()
            if error is not None:
                self.handler_errors.append(error)
                logger.warning(f"Event handler failed: {error!r}")

        task.add_done_callback(_done)

    async def _cancel_handler_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._handler_tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_protocol_error(self, error: ProtocolViolation) -> None:
        self.diagnostics.append(error)

    def _on_connection_lost(self, connection: Connection) -> None:
        self._reset_pairing()
        self._correlator.fail_all(lambda: Disconnected(f"Connection to {connection.endpoint} was lost"))
        if self.config.reconnect_enabled and not self._disposed:
            if self._reconnect_task is None or self._reconnect_task.done():
                self._reconnect_task = asyncio.create_task(self.reconnect())

    # ========================================
    #           REQUEST PLUMBING
    # ========================================

    def _require_connection(self) -> Connection:
        connection = self._connector.connection
        if connection is None or not connection.is_connected:
            raise NotConnected()
        return connection

    def _require_network(self, operation: str) -> Network:
        if self.network is None:
            raise ConfigError(f"A network is required for {operation}")
        return self.network

    async def _write_request(self, request: ApiRequest) -> None:
        connection = self._connector.connection
        if connection is None or not connection.is_connected:
            raise Disconnected()
        nonce, next_nonce = self.keys.advance_nonce()
        await connection.send_event(SocketEvent.API, {
            "data": request.to_wire(self.keys.appkey, nonce, next_nonce),
            "plugin": self.app_name,
        })

    async def _request(self, request_type: ApiRequestType, payload: Any, *,
                       timeout: Optional[float] = None,
                       cancel: Optional[asyncio.Event] = None) -> Any:
        self._require_connection()
        await self._ensure_paired(cancel)
        return await self._correlator.send(request_type, payload, timeout=timeout, cancel=cancel)

    @staticmethod
    def _expect(value: Any, kind: type, request_type: ApiRequestType) -> Any:
        if not isinstance(value, kind):
            raise ProtocolViolation(
                f"{request_type.value} returned {type(value).__name__}, expected {kind.__name__}", value
            )
        return value

    @staticmethod
    def _parse(parser: Callable[[Any], T], value: Any, request_type: ApiRequestType) -> T:
        try:
            return parser(value)
        except (ValueError, TypeError, KeyError) as e:
            raise ProtocolViolation(f"{request_type.value} returned an unexpected result: {e}", value) from e

    # ========================================
    #           OPERATIONS
    # ========================================

    async def get_version(self, **kwargs: Any) -> str:
        result = await self._request(ApiRequestType.GET_VERSION, {"origin": self.app_name}, **kwargs)
        return self._expect(result, str, ApiRequestType.GET_VERSION)

    async def get_identity(self, required_fields: Optional[IdentityRequiredFields] = None, **kwargs: Any) -> Identity:
        """Ask the user for an identity carrying `required_fields`; caches it."""
        fields = (required_fields or IdentityRequiredFields()).to_dict()
        async with self._identity_lock:
            result = await self._request(
                ApiRequestType.GET_OR_REQUEST_IDENTITY,
                {"fields": fields, "origin": self.app_name},
                **kwargs,
            )
            identity = self._parse(Identity.from_dict, result, ApiRequestType.GET_OR_REQUEST_IDENTITY)
            self.session.set(identity)
        return identity

    async def get_identity_from_permissions(self, **kwargs: Any) -> Optional[Identity]:
        """
        Identity the user already granted this app, without prompting.

        Returns the cached identity when the wallet has nothing new; makes no
        round trip at all while the app is not paired.
        """
        self._require_connection()
        if not self._paired:
            return self.session.get()
        async with self._identity_lock:
            result = await self._request(
                ApiRequestType.IDENTITY_FROM_PERMISSIONS, {"origin": self.app_name}, **kwargs
            )
            if isinstance(result, dict):
                identity = self._parse(Identity.from_dict, result, ApiRequestType.IDENTITY_FROM_PERMISSIONS)
                self.session.set(identity)
        return self.session.get()

    async def forget_identity(self, **kwargs: Any) -> bool:
        async with self._identity_lock:
            result = await self._request(ApiRequestType.FORGET_IDENTITY, {"origin": self.app_name}, **kwargs)
            self.session.clear()
        return bool(result)

    async def authenticate(self, nonce: str, **kwargs: Any) -> str:
        result = await self._request(
            ApiRequestType.AUTHENTICATE, {"nonce": nonce, "origin": self.app_name}, **kwargs
        )
        return self._expect(result, str, ApiRequestType.AUTHENTICATE)

    async def get_arbitrary_signature(self, public_key: str, data: str, whatfor: str = "",
                                      is_hash: bool = False, **kwargs: Any) -> str:
        result = await self._request(ApiRequestType.REQUEST_ARBITRARY_SIGNATURE, {
            "publicKey": public_key,
            "data": data,
            "whatfor": whatfor,
            "isHash": is_hash,
            "origin": self.app_name,
        }, **kwargs)
        return self._expect(result, str, ApiRequestType.REQUEST_ARBITRARY_SIGNATURE)

    async def get_public_key(self, blockchain: str, **kwargs: Any) -> str:
        result = await self._request(
            ApiRequestType.GET_PUBLIC_KEY, {"blockchain": blockchain, "origin": self.app_name}, **kwargs
        )
        return self._expect(result, str, ApiRequestType.GET_PUBLIC_KEY)

    async def link_account(self, public_key: str, **kwargs: Any) -> bool:
        self._require_connection()
        network = self._require_network("linkAccount")
        result = await self._request(ApiRequestType.LINK_ACCOUNT, {
            "publicKey": public_key,
            "network": network.to_dict(),
            "origin": self.app_name,
        }, **kwargs)
        return bool(result)

    async def has_account_for(self, **kwargs: Any) -> bool:
        self._require_connection()
        network = self._require_network("hasAccountFor")
        result = await self._request(
            ApiRequestType.HAS_ACCOUNT_FOR, {"network": network.to_dict(), "origin": self.app_name}, **kwargs
        )
        return bool(result)

    async def suggest_network(self, **kwargs: Any) -> bool:
        self._require_connection()
        network = self._require_network("requestAddNetwork")
        result = await self._request(
            ApiRequestType.REQUEST_ADD_NETWORK, {"network": network.to_dict(), "origin": self.app_name}, **kwargs
        )
        return bool(result)

    async def request_transfer(self, to: str, amount: str, options: Optional[Dict[str, Any]] = None,
                               **kwargs: Any) -> Any:
        self._require_connection()
        network = self._require_network("requestTransfer")
        return await self._request(ApiRequestType.REQUEST_TRANSFER, {
            "network": network.to_dict(),
            "to": to,
            "amount": amount,
            "options": options,
            "origin": self.app_name,
        }, **kwargs)

    async def request_signature(self, payload: Dict[str, Any], **kwargs: Any) -> SignaturesResult:
        result = await self._request(ApiRequestType.REQUEST_SIGNATURE, payload, **kwargs)
        return self._parse(SignaturesResult.from_dict, result, ApiRequestType.REQUEST_SIGNATURE)

    async def get_encryption_key(self, from_public_key: str, to_public_key: str, nonce: int,
                                 **kwargs: Any) -> str:
        result = await self._request(ApiRequestType.GET_ENCRYPTION_KEY, {
            "fromPublicKey": from_public_key,
            "toPublicKey": to_public_key,
            "nonce": nonce,
            "origin": self.app_name,
        }, **kwargs)
        return self._expect(result, str, ApiRequestType.GET_ENCRYPTION_KEY)

    def signature_provider(self) -> ScatterSignatureProvider:
        """Signature provider for a blockchain library, bound to this client's network."""
        self._require_connection()
        return ScatterSignatureProvider(self, self._require_network("signature provider"))
