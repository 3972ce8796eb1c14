"""
Configuration for the Scatter client.

Values come from (lowest to highest precedence): dataclass defaults, a YAML
file, then SCATTER_* environment variables.

Example scatter.yaml:

    app_name: my-dapp
    connect_timeout: 5
    request_timeout: 120
    endpoints:
      - {scheme: wss, host: local.get-scatter.com, port: 50006}
      - {scheme: ws, host: 127.0.0.1, port: 50005}
    reconnect:
      enabled: true
      max_retries: 5
      base_delay: 1.0
"""

from __future__ import annotations
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from shared.errors import ConfigError
from shared.framing import SOCKET_PATH
from shared.log import get_logger
from shared.utils import is_port, parse_hostport

logger = get_logger(__name__)

_SCHEMES = ("ws", "wss")


@dataclass(frozen=True)
class Endpoint:
    scheme: str
    host: str
    port: int

    def __post_init__(self) -> None:
        if self.scheme not in _SCHEMES:
            raise ConfigError(f"Invalid endpoint scheme {self.scheme!r}; expected one of {_SCHEMES}")
        if not isinstance(self.host, str) or not self.host.strip():
            raise ConfigError("Endpoint host must be a non-empty string")
        if not is_port(self.port):
            raise ConfigError(f"Invalid endpoint port {self.port!r}")

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{SOCKET_PATH}"

    @classmethod
    def parse(cls, value: Union[str, Dict[str, Any], "Endpoint"]) -> "Endpoint":
        """Accepts an Endpoint, a {scheme, host, port} mapping, or 'scheme://host:port'."""
        if isinstance(value, Endpoint):
            return value
        if isinstance(value, dict):
            return cls(
                scheme=str(value.get("scheme", "ws")),
                host=value.get("host", ""),
                port=value.get("port", 0),
            )
        if isinstance(value, str) and "://" in value:
            scheme, hostport = value.split("://", 1)
            parsed = parse_hostport(hostport.rstrip("/"))
            if parsed is None:
                raise ConfigError(f"Invalid endpoint {value!r}")
            return cls(scheme=scheme, host=parsed[0], port=parsed[1])
        raise ConfigError(f"Invalid endpoint {value!r}")

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


# Secure relay first, plaintext localhost second
DEFAULT_ENDPOINTS: List[Endpoint] = [
    Endpoint("wss", "local.get-scatter.com", 50006),
    Endpoint("ws", "127.0.0.1", 50005),
]


@dataclass
class ScatterConfig:
    """Client configuration."""

    app_name: str = "scatter-client"
    endpoints: List[Endpoint] = field(default_factory=lambda: list(DEFAULT_ENDPOINTS))
    connect_timeout: float = 5.0
    request_timeout: Optional[float] = None
    pair_timeout: float = 60.0
    reconnect_enabled: bool = False
    reconnect_max_retries: int = 5
    reconnect_base_delay: float = 1.0
    storage_path: Optional[Path] = None
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.app_name, str) or not self.app_name.strip():
            raise ConfigError("app_name must be a non-empty string")
        self.endpoints = [Endpoint.parse(e) for e in self.endpoints]
        if not self.endpoints:
            raise ConfigError("At least one endpoint is required")
        for name in ("connect_timeout", "pair_timeout", "reconnect_base_delay"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")
        if self.request_timeout is not None and (
            not isinstance(self.request_timeout, (int, float)) or self.request_timeout <= 0
        ):
            raise ConfigError(f"request_timeout must be positive or null, got {self.request_timeout!r}")
        if not isinstance(self.reconnect_max_retries, int) or self.reconnect_max_retries < 0:
            raise ConfigError("reconnect_max_retries must be a non-negative integer")
        if self.storage_path is not None:
            self.storage_path = Path(self.storage_path).expanduser()

    def update(self, **kwargs: Any) -> "ScatterConfig":
        """Create a copy with updated values."""
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["endpoints"] = [str(e) for e in self.endpoints]
        data["storage_path"] = str(self.storage_path) if self.storage_path else None
        return data


def _from_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    for key in ("app_name", "connect_timeout", "request_timeout", "pair_timeout", "storage_path", "log_level"):
        if key in data:
            kwargs[key] = data[key]
    if "endpoints" in data:
        entries = data["endpoints"]
        if isinstance(entries, (dict, str)):
            entries = [entries]
        if not isinstance(entries, list):
            raise ConfigError("endpoints must be a list")
        kwargs["endpoints"] = [Endpoint.parse(e) for e in entries]
    reconnect = data.get("reconnect")
    if isinstance(reconnect, dict):
        if "enabled" in reconnect:
            kwargs["reconnect_enabled"] = bool(reconnect["enabled"])
        if "max_retries" in reconnect:
            kwargs["reconnect_max_retries"] = reconnect["max_retries"]
        if "base_delay" in reconnect:
            kwargs["reconnect_base_delay"] = reconnect["base_delay"]
    elif reconnect is not None:
        raise ConfigError("reconnect must be a mapping")
    return kwargs


def _from_env(environ: Dict[str, str]) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if environ.get("SCATTER_APP_NAME"):
        kwargs["app_name"] = environ["SCATTER_APP_NAME"]
    if environ.get("SCATTER_ENDPOINTS"):
        kwargs["endpoints"] = [
            Endpoint.parse(item.strip())
            for item in environ["SCATTER_ENDPOINTS"].split(",")
            if item.strip()
        ]
    try:
        if environ.get("SCATTER_CONNECT_TIMEOUT"):
            kwargs["connect_timeout"] = float(environ["SCATTER_CONNECT_TIMEOUT"])
        if environ.get("SCATTER_REQUEST_TIMEOUT"):
            kwargs["request_timeout"] = float(environ["SCATTER_REQUEST_TIMEOUT"])
    except ValueError as e:
        raise ConfigError(f"Invalid timeout in environment: {e}") from e
    if environ.get("SCATTER_STORAGE"):
        kwargs["storage_path"] = environ["SCATTER_STORAGE"]
    if environ.get("SCATTER_LOG_LEVEL"):
        kwargs["log_level"] = environ["SCATTER_LOG_LEVEL"]
    return kwargs


def load_config(path: Optional[Union[str, Path]] = None,
                environ: Optional[Dict[str, str]] = None) -> ScatterConfig:
    """
    Load configuration from an optional YAML file plus SCATTER_* overrides.

    Raises:
        ConfigError: unreadable file, invalid YAML, or invalid values
    """
    kwargs: Dict[str, Any] = {}
    if path is not None:
        file_path = Path(path).expanduser()
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {file_path} must contain a mapping")
        kwargs.update(_from_mapping(data))
        logger.debug(f"Loaded config from {file_path}")

    kwargs.update(_from_env(dict(os.environ) if environ is None else environ))
    return ScatterConfig(**kwargs)
