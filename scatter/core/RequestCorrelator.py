from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from scatter.core.ApiTypes import ApiRequest, ApiResponse
from scatter.core.MessageTypes import ApiRequestType
from shared.errors import Cancelled, Disconnected, RemoteError, Timeout
from shared.log import get_logger, log_frame
from shared.utils import random_number

logger = get_logger(__name__)

Writer = Callable[[ApiRequest], Awaitable[None]]
ErrorFactory = Callable[[], BaseException]


@dataclass
class PendingRequest:
    request_id: str
    request_type: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


def _consume(future: asyncio.Future) -> None:
    # Mark a failed future's exception as retrieved so asyncio does not warn about it
    if future.done() and not future.cancelled():
        future.exception()


class RequestCorrelator:
    """
    Matches asynchronous wallet responses to the callers waiting on them.

    Every request gets a fresh correlation id and a single-assignment future in
    the in-flight table. An entry leaves the table exactly once: when its
    response is dispatched, when it times out, when the caller cancels, or when
    the correlator fails everything on disconnect.

    The table is owned by the event loop: inserts and removals never straddle
    an await, so the receive loop and callers cannot interleave inside them.
    """

    def __init__(
        self,
        writer: Writer,
        *,
        default_timeout: Optional[float] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._writer = writer
        self.default_timeout = default_timeout
        self._id_factory = id_factory or (lambda: random_number(24))
        self._pending: Dict[str, PendingRequest] = {}
        self._disposed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def in_flight(self, request_id: str) -> bool:
        return request_id in self._pending

    def _new_id(self) -> str:
        for _ in range(16):
            request_id = self._id_factory()
            if request_id not in self._pending:
                return request_id
        raise RuntimeError("Could not allocate a unique request id")

    async def send(
        self,
        request_type: Union[ApiRequestType, str],
        payload: Any,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Send one request and wait for its response.

        Returns:
            The wallet's success value.

        Raises:
            RemoteError: the wallet answered with an error envelope
            Timeout: no answer within `timeout` (or the default timeout)
            Cancelled: `cancel` was set before the answer arrived
            Disconnected: the connection went away, or the correlator was disposed
            ValueError: `request_type` is not a known wallet request type
        """
        if self._disposed:
            raise Disconnected("Request correlator was disposed")
        type_tag = ApiRequestType.from_string(request_type).value
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"{type_tag} request")

        loop = asyncio.get_running_loop()
        request = ApiRequest(type=type_tag, payload=payload, id=self._new_id())
        entry = PendingRequest(request_id=request.id, request_type=type_tag, future=loop.create_future())
        self._pending[request.id] = entry
        logger.debug("Sending request", extra={"request_id": request.id, "request_type": type_tag})

        try:
            await self._writer(request)
            effective_timeout = timeout if timeout is not None else self.default_timeout
            return await self._wait(entry, effective_timeout, cancel)
        finally:
            if self._pending.get(request.id) is entry:
                del self._pending[request.id]
            if not entry.future.done():
                entry.future.cancel()
            _consume(entry.future)

    async def _wait(self, entry: PendingRequest, timeout: Optional[float],
                    cancel: Optional[asyncio.Event]) -> Any:
        cancel_task: Optional[asyncio.Future] = None
        waiters = {entry.future}
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)

        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if entry.future.done():
            return entry.future.result()

        # Remove first so a late response is treated as stale
        self._pending.pop(entry.request_id, None)
        context = {"request_id": entry.request_id, "request_type": entry.request_type}
        if cancel_task is not None and cancel.is_set():
            logger.info("Request cancelled by caller", extra=context)
            raise Cancelled(f"{entry.request_type} request")
        logger.warning(f"Request timed out after {timeout}s", extra=context)
        raise Timeout(f"{entry.request_type} request", timeout)

    def dispatch(self, message: Any) -> bool:
        """
        Resolve the waiter for an inbound `api` message of the form {"id": ..., "result": ...}.

        Never raises; unknown ids and malformed messages are logged and dropped.

        Returns:
            True if a pending request was resolved
        """
        if not isinstance(message, dict) or message.get("id") is None:
            logger.warning(f"Dropping API response without a request id: {message!r}")
            return False

        request_id = str(message["id"])
        entry = self._pending.pop(request_id, None)
        if entry is None:
            log_frame(logger, "warning", "Dropping response for unknown or stale request",
                      request_id=request_id)
            return False
        if entry.future.done():
            return False

        response = ApiResponse.from_wire(message.get("result"))
        context = {"request_id": request_id, "request_type": entry.request_type}
        if response.ok:
            entry.future.set_result(response.value)
            logger.debug(f"Resolved after {entry.age:.3f}s", extra=context)
        else:
            entry.future.set_exception(RemoteError(response.error))
            logger.info(f"Wallet returned error: {response.error.message}", extra=context)
        return True

    def fail_all(self, make_error: ErrorFactory = Disconnected) -> int:
        """Fail every pending request and empty the table. Returns how many were failed."""
        entries = list(self._pending.values())
        self._pending.clear()
        failed = 0
        for entry in entries:
            if not entry.future.done():
                entry.future.set_exception(make_error())
                failed += 1
        if failed:
            logger.info(f"Failed {failed} pending request(s)")
        return failed

    def dispose(self) -> int:
        self._disposed = True
        return self.fail_all(Disconnected)
