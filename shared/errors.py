"""
Error taxonomy for the Scatter client.

Every public operation either returns a typed value or raises one of these.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

if TYPE_CHECKING:
    from scatter.core.ApiTypes import ApiError

DEFAULT_MODULE = "scatter"


class ScatterError(Exception):
    """Base exception for all client errors."""

    code = "SCATTER_ERROR"

    def __init__(self, message: str, module: str = DEFAULT_MODULE) -> None:
        super().__init__(message)
        self.message = message
        self.module = module

    def to_dict(self) -> dict:
        return {"code": self.code, "module": self.module, "message": self.message}


class ConfigError(ScatterError, ValueError):
    """Configuration could not be loaded or is invalid."""

    code = "CONFIG"

    def __init__(self, message: str) -> None:
        super().__init__(message, module="config")


class ConnectionUnavailable(ScatterError):
    """Every transport candidate failed."""

    code = "CONNECTION_UNAVAILABLE"

    def __init__(self, attempts: List[Tuple[str, BaseException]]) -> None:
        self.attempts = attempts
        if attempts:
            detail = "; ".join(f"{url}: {err!r}" for url, err in attempts)
            message = f"Could not connect to Scatter ({detail})"
        else:
            message = "Could not connect to Scatter (no endpoints configured)"
        super().__init__(message, module="transport")


class ProtocolViolation(ScatterError):
    """An inbound frame could not be decoded."""

    code = "PROTOCOL_VIOLATION"

    def __init__(self, detail: str, raw: Any = None) -> None:
        self.raw = raw
        super().__init__(f"Protocol violation: {detail}", module="framing")


class Timeout(ScatterError):
    """No response within the deadline."""

    code = "TIMEOUT"

    def __init__(self, operation: str = "request", timeout: Optional[float] = None) -> None:
        self.timeout = timeout
        if timeout is not None:
            message = f"{operation} timed out after {timeout}s"
        else:
            message = f"{operation} timed out"
        super().__init__(message)


class Cancelled(ScatterError):
    """The caller aborted the operation."""

    code = "CANCELLED"

    def __init__(self, operation: str = "request") -> None:
        super().__init__(f"{operation} was cancelled")


class Disconnected(ScatterError):
    """The connection went away while the request was pending."""

    code = "DISCONNECTED"

    def __init__(self, message: str = "Connection to Scatter was closed") -> None:
        super().__init__(message, module="transport")


class NotConnected(ScatterError):
    """Raised before any network call when there is no live connection."""

    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Connect and authenticate first - scatter.connect(app_name)") -> None:
        super().__init__(message)


class NotAuthenticated(ScatterError):
    """The wallet refused to pair with this application."""

    code = "NOT_AUTHENTICATED"

    def __init__(self, message: str = "The user did not allow this app to connect to their Scatter") -> None:
        super().__init__(message)


class RemoteError(ScatterError):
    """The wallet reported a failure; its message is kept verbatim."""

    code = "REMOTE_ERROR"

    def __init__(self, api_error: "ApiError") -> None:
        self.api_error = api_error
        super().__init__(api_error.message or "Scatter returned an error", module="wallet")

    @property
    def remote_code(self) -> Any:
        return self.api_error.code

    @property
    def remote_type(self) -> Optional[str]:
        return self.api_error.type
