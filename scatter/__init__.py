"""Async client for the Scatter desktop wallet."""

from scatter.client import ScatterClient
from scatter.core.ApiTypes import (
    ApiError,
    Identity,
    IdentityAccount,
    IdentityRequiredFields,
    Network,
    SignaturesResult,
)
from scatter.signer import ScatterSignatureProvider, SignatureProvider
from scatter.storage import FileStorageProvider, MemoryStorageProvider, StorageProvider

__version__ = "0.1.0"

__all__ = [
    "ScatterClient",
    "ApiError",
    "Identity",
    "IdentityAccount",
    "IdentityRequiredFields",
    "Network",
    "SignaturesResult",
    "ScatterSignatureProvider",
    "SignatureProvider",
    "FileStorageProvider",
    "MemoryStorageProvider",
    "StorageProvider",
]
