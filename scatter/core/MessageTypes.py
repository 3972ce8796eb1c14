from __future__ import annotations

from enum import Enum


class SocketEvent(str, Enum):
    """Application events exchanged with the wallet on the /scatter namespace."""

    # Client -> wallet
    PAIR = "pair"              # Ask the wallet to pair this app key
    REKEYED = "rekeyed"        # Answer to REKEY with a fresh app key
    API = "api"                # Correlated API request

    # Wallet -> client
    PAIRED = "paired"          # Pairing decision (bool)
    REKEY = "rekey"            # Wallet wants a new app key


class ApiRequestType(str, Enum):
    """Type tags of the wallet's API requests."""

    GET_VERSION = "getVersion"
    GET_OR_REQUEST_IDENTITY = "getOrRequestIdentity"
    IDENTITY_FROM_PERMISSIONS = "identityFromPermissions"
    FORGET_IDENTITY = "forgetIdentity"
    AUTHENTICATE = "authenticate"
    REQUEST_ARBITRARY_SIGNATURE = "requestArbitrarySignature"
    GET_PUBLIC_KEY = "getPublicKey"
    LINK_ACCOUNT = "linkAccount"
    HAS_ACCOUNT_FOR = "hasAccountFor"
    REQUEST_ADD_NETWORK = "requestAddNetwork"
    REQUEST_TRANSFER = "requestTransfer"
    REQUEST_SIGNATURE = "requestSignature"
    GET_ENCRYPTION_KEY = "getEncryptionKey"

    @classmethod
    def from_string(cls, value: str) -> "ApiRequestType":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown request type: {value}")


class Blockchain(str, Enum):
    EOSIO = "eos"
    ETH = "eth"
    TRX = "trx"

