from __future__ import annotations
from typing import Tuple

from shared.log import get_logger
from shared.utils import random_number, sha256_hex

from .storage import StorageProvider

logger = get_logger(__name__)

APPKEY_KEY = "appkey"
NONCE_KEY = "nonce"

# Unpaired keys carry this prefix; once the wallet accepts one it is stored hashed
RAW_APPKEY_PREFIX = "appkey:"


class AppKeyManager:
    """App key and request nonce chain, persisted through a StorageProvider."""

    def __init__(self, storage: StorageProvider) -> None:
        self.storage = storage

    @property
    def appkey(self) -> str:
        value = self.storage.load(APPKEY_KEY)
        if not isinstance(value, str) or not value:
            value = self.generate()
        return value

    def generate(self) -> str:
        value = RAW_APPKEY_PREFIX + random_number(24)
        self.storage.save(APPKEY_KEY, value)
        return value

    def rekey(self) -> str:
        logger.info("Wallet requested a new app key")
        return self.generate()

    def confirm_paired(self) -> str:
        """Replace a raw app key by its hash once the wallet has accepted it."""
        stored = self.appkey
        hashed = sha256_hex(stored) if stored.startswith(RAW_APPKEY_PREFIX) else stored
        if hashed != stored:
            self.storage.save(APPKEY_KEY, hashed)
        return hashed

    @property
    def is_raw(self) -> bool:
        return self.appkey.startswith(RAW_APPKEY_PREFIX)

    @property
    def nonce(self) -> str:
        value = self.storage.load(NONCE_KEY)
        return value if isinstance(value, str) else ""

    def advance_nonce(self) -> Tuple[str, str]:
        """
        Returns (nonce, next_nonce_hash) for the request about to be sent.

        The wallet checks that each request's nonce hashes to the previous
        request's nextNonce, so the unhashed next value is stored for later.
        """
        current = self.nonce
        upcoming = random_number(24)
        self.storage.save(NONCE_KEY, upcoming)
        return current, sha256_hex(upcoming)
